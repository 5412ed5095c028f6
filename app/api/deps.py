from typing import Generator

from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.stripe_processor import StripeProcessor

_processor = None


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_processor() -> StripeProcessor:
    """Shared Stripe client; tests override this dependency with a fake."""
    global _processor
    if _processor is None:
        _processor = StripeProcessor()
    return _processor
