"""
ZapPlanner webhook receiver.

Every decodable delivery is acknowledged with 200 so ZapPlanner does not
retry; events that cannot be applied are logged instead.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from subscriptn.database import get_db
from subscriptn.schemas import decode_event
from subscriptn.services.rate_limiter import webhook_rate_limiter, rate_limit
from subscriptn.services.webhook_reconciler import reconcile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

webhook_limit = rate_limit(webhook_rate_limiter, "Too many webhook requests")


@router.post("/zapplanner", dependencies=[Depends(webhook_limit)])
async def zapplanner_webhook(request: Request, db: Session = Depends(get_db)):
    """Receive subscription lifecycle and payment events from ZapPlanner."""
    try:
        payload = json.loads(await request.body())
    except (ValueError, UnicodeDecodeError) as e:
        logger.error(f"ZapPlanner webhook with undecodable body: {e}")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    event = decode_event(payload)
    logger.info(f"ZapPlanner webhook received: {getattr(event, 'event', None)}")

    outcome = await run_in_threadpool(reconcile, db, event)
    if not outcome.applied:
        logger.info(f"ZapPlanner webhook not applied: {outcome.reason}")

    return {"success": True}
