from pydantic import BaseModel, field_validator
from datetime import date, datetime
from typing import List, Optional


class RentPaymentCreate(BaseModel):
    tenant_id: str
    property_id: Optional[str] = None  # defaults to the tenant's property
    payment_method_id: str
    amount: int  # cents
    fee_payer: str = "landlord"  # landlord / tenant / split
    rent_period_start: Optional[date] = None
    rent_period_end: Optional[date] = None
    due_date: Optional[date] = None
    description: Optional[str] = None

    @field_validator('fee_payer', mode='before')
    @classmethod
    def normalize_fee_payer(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('description')
    @classmethod
    def blank_description_is_none(cls, v):
        if v is None:
            return None
        return v.strip() or None


class RentPaymentOut(BaseModel):
    id: str
    landlord_id: str
    tenant_id: Optional[str]
    property_id: Optional[str]
    payment_method_id: Optional[str]
    amount: int
    charged_amount: int
    fee_amount: int
    net_amount: int
    fee_payer: str
    fee_schedule_version: str
    status: str
    processor_ref: Optional[str]
    failure_reason: Optional[str]
    rent_period_start: Optional[date]
    rent_period_end: Optional[date]
    due_date: Optional[date]
    description: Optional[str]
    submitted_at: Optional[datetime]
    paid_at: Optional[datetime]
    returned_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class OriginationOut(BaseModel):
    payment: RentPaymentOut
    submission: str  # accepted / ambiguous
    detail: Optional[str] = None


class RentPaymentPageOut(BaseModel):
    items: List[RentPaymentOut]
    total: int
    page: int
    page_size: int
    total_pages: int

    class Config:
        from_attributes = True


class RentPaymentSummaryOut(BaseModel):
    """Only succeeded payments count as collected."""
    total_collected: int
    total_in_flight: int
    total_failed: int
    total_returned: int
    collected_this_month: int
    succeeded_count: int


class ReconcileOut(BaseModel):
    examined: int
    submitted: List[str]
    failed: List[str]
    unresolved: List[str]

    class Config:
        from_attributes = True
