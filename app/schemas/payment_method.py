from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class PaymentMethodLinkRequest(BaseModel):
    tenant_id: str


class PaymentMethodLinkOut(BaseModel):
    client_secret: str
    customer_ref: str

    class Config:
        from_attributes = True


class PaymentMethodConfirm(BaseModel):
    tenant_id: str
    payment_method_ref: str  # processor's id for the verified bank account
    customer_ref: str
    set_default: bool = True


class PaymentMethodOut(BaseModel):
    id: str
    tenant_id: str
    method_type: str
    bank_name: Optional[str]
    last_four: Optional[str]
    is_default: bool
    is_verified: bool
    created_at: datetime

    class Config:
        from_attributes = True
