import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.core.config import settings
from app.core.database import SessionLocal
from app.core.errors import RentCollectionError, rent_collection_error_handler
from app.api.routes.rent_payments import router as rent_payments_router
from app.api.routes.payment_methods import router as payment_methods_router
from app.api.routes.payout_account import router as payout_account_router
from app.api.routes.webhooks import router as webhooks_router
from app.api.routes.audit_logs import router as audit_logs_router

# Register every model on Base.metadata
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.landlord import LandlordProfile  # noqa: F401
from app.models.payment_method import PaymentMethod  # noqa: F401
from app.models.processor_event import ProcessorEvent  # noqa: F401
from app.models.property import Property  # noqa: F401
from app.models.rent_payments import RentPayment  # noqa: F401
from app.models.tenant import Tenant  # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# 1) Create the app FIRST
app = FastAPI(title="Rent Collection Backend")

# 2) Add CORS Middleware BEFORE routes
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RentCollectionError, rent_collection_error_handler)

# 3) Include routers AFTER app is created
app.include_router(rent_payments_router)
app.include_router(payment_methods_router)
app.include_router(payout_account_router)
app.include_router(webhooks_router)
app.include_router(audit_logs_router)


# 4) Health check endpoints
@app.get("/health")
def health():
    return {"ok": True, "service": "rent-collection"}


@app.get("/db-health")
def db_health():
    db = SessionLocal()
    try:
        db.execute(text("select 1"))
        return {"ok": True, "db": "connected"}
    finally:
        db.close()
