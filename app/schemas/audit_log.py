from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class AuditLogOut(BaseModel):
    id: int
    actor_id: str
    action: str
    entity_type: str
    entity_id: str
    source: Optional[str] = None
    status: Optional[str] = None
    tenant_id: Optional[str] = None
    amount: Optional[int] = None
    risk_level: str
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
