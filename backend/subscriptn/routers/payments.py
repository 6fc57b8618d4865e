"""
On-demand NWC payment processing.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from subscriptn.database import get_db
from subscriptn.exceptions import ConflictError
from subscriptn.models import User
from subscriptn.schemas import PaymentProcessRequest
from subscriptn.services import payment_processor
from subscriptn.services.nwc_client import LightningPaymentClient
from subscriptn.services.rate_limiter import api_rate_limiter, rate_limit
from subscriptn.services.subscriptions import get_owned_subscription
from .auth import require_known_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

api_limit = rate_limit(api_rate_limiter)


def get_payment_client():
    """Dependency yielding a payment client that is closed after the request."""
    client = LightningPaymentClient()
    try:
        yield client
    finally:
        client.close()


@router.post("/nwc/process", dependencies=[Depends(api_limit)])
def process_payment(
    data: PaymentProcessRequest,
    user: User = Depends(require_known_user),
    db: Session = Depends(get_db),
    client: LightningPaymentClient = Depends(get_payment_client),
):
    """
    Pay one of your subscriptions now through its stored NWC connection.

    Refused with 409 when the subscription is not yet due, unless `force` is set.
    """
    subscription = get_owned_subscription(db, data.subscription_id, user.id)
    if not data.force and not payment_processor.is_due(subscription):
        raise ConflictError("Subscription payment is not due yet")

    result = payment_processor.process_one(db, subscription.id, client=client)

    if not result.success:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": result.error or "Payment processing failed",
                "code": result.code,
            },
        )

    return {
        "success": True,
        "message": "Payment processed successfully",
        "payment": {
            "subscriptionId": result.subscription_id,
            "amount": result.amount,
            "recipient": result.recipient,
            "preimage": result.preimage,
        },
    }


@router.get("/nwc/process", dependencies=[Depends(api_limit)])
def process_all_due_payments(
    user: User = Depends(require_known_user),
    db: Session = Depends(get_db),
    client: LightningPaymentClient = Depends(get_payment_client),
):
    """Pay every due subscription that has a stored NWC connection."""
    logger.info(f"Payment sweep requested by user {user.id}")
    results = payment_processor.process_all_due(db, client=client)

    return {
        "success": True,
        "message": f"Processed {len(results)} payments",
        "summary": payment_processor.summarize(results),
        "results": [r.to_dict() for r in results],
    }
