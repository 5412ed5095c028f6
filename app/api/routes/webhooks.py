from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_db, get_processor
from app.services.webhook_events import WebhookProcessor

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    processor=Depends(get_processor),
):
    """
    Stripe event endpoint. Unauthenticated; trust comes from the signature.

    Anything that passes signature verification is acknowledged with 200,
    including events that were dropped, so Stripe does not retry them.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    result = await run_in_threadpool(WebhookProcessor(db, processor).process, payload, signature)
    return {
        "received": True,
        "event_id": result.event_id,
        "result": result.result,
        "duplicate": result.duplicate,
    }
