from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.sql import func
from app.core.database import Base


class ProcessorEvent(Base):
    """Webhook events already handled, keyed by the processor's event id."""
    __tablename__ = "processor_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String, nullable=False, unique=True)
    event_type = Column(String, nullable=False, index=True)
    operation_ref = Column(String, nullable=True, index=True)
    # applied / ignored / dropped
    result = Column(String, nullable=False)
    detail = Column(String, nullable=True)
    received_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
