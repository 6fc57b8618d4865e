"""
Subscription endpoints: lifecycle, payment ledger and NWC wallet connections.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from subscriptn.database import get_db
from subscriptn.models import User
from subscriptn.schemas import (
    NWCConnectionCreate,
    Payment as PaymentResponse,
    PaymentCreate,
    Subscription as SubscriptionResponse,
    SubscriptionCreate,
    SubscriptionCreated,
    SuccessResponse,
)
from subscriptn.services import nwc_vault
from subscriptn.services import subscriptions as subscription_service
from subscriptn.services.rate_limiter import api_rate_limiter, subscription_rate_limiter, rate_limit
from .auth import require_auth

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
user_router = APIRouter(prefix="/user", tags=["subscriptions"])

api_limit = rate_limit(api_rate_limiter)
subscription_limit = rate_limit(
    subscription_rate_limiter, "Too many subscription requests. Please try again later."
)


@router.get("", response_model=list[SubscriptionResponse], dependencies=[Depends(api_limit)])
def get_my_subscriptions(user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """Subscriptions across all of the current user's shops."""
    return [subscription_service.to_dict(s) for s in subscription_service.get_user_subscriptions(db, user.id)]


@router.post("", response_model=SubscriptionCreated, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(subscription_limit)])
def create_subscription(data: SubscriptionCreate, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """
    Start an active subscription for one of your shops.

    - **amount_sats**: 1 to 1,000,000
    - **interval**: daily, weekly, monthly or yearly

    A shop can only have one active subscription; cancel it first.
    """
    subscription = subscription_service.create_subscription(
        db, data.shop_id, user.id, data.amount_sats, data.interval
    )
    return {"subscription": subscription_service.to_dict(subscription)}


@router.post("/{subscription_id}/cancel", response_model=SuccessResponse,
             dependencies=[Depends(subscription_limit)])
def cancel_subscription(subscription_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    subscription_service.cancel_subscription(db, subscription_id, user.id)
    return {"success": True}


@router.get("/{subscription_id}/payments", response_model=list[PaymentResponse],
            dependencies=[Depends(api_limit)])
def get_payments(subscription_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    return subscription_service.get_subscription_history(db, subscription_id, user.id)


@router.post("/{subscription_id}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(subscription_limit)])
def record_payment(
    subscription_id: int,
    data: PaymentCreate,
    user: User = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Record a payment made outside the processor. A successful one activates the subscription."""
    subscription = subscription_service.get_owned_subscription(db, subscription_id, user.id)
    return subscription_service.record_payment(
        db,
        subscription,
        data.amount_sats,
        data.status,
        data.payment_method,
        wallet_provider=data.wallet_provider,
        preimage=data.preimage,
    )


@router.get("/{subscription_id}/history", response_model=list[PaymentResponse],
            dependencies=[Depends(api_limit)])
def get_history(subscription_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """Payment attempts, newest first."""
    return subscription_service.get_subscription_history(db, subscription_id, user.id)


# ============== NWC wallet connection ==============

@router.post("/{subscription_id}/nwc", dependencies=[Depends(subscription_limit)])
def store_nwc_connection(
    subscription_id: int,
    data: NWCConnectionCreate,
    user: User = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Store an encrypted NWC connection string for automatic payments."""
    nwc_vault.store_connection(db, subscription_id, user.id, data.nwc_connection_string)
    return {"success": True, "message": "NWC connection stored securely", "has_connection": True}


@router.get("/{subscription_id}/nwc", dependencies=[Depends(api_limit)])
def get_nwc_connection_status(subscription_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    return {"has_connection": nwc_vault.has_connection(db, subscription_id, user.id)}


@router.delete("/{subscription_id}/nwc", dependencies=[Depends(subscription_limit)])
def remove_nwc_connection(subscription_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    removed = nwc_vault.remove_connection(db, subscription_id, user.id)
    return {"success": True, "removed": removed}


@user_router.get("/nwc-connections", dependencies=[Depends(api_limit)])
def get_my_nwc_connections(user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """Subscriptions with a stored wallet connection. Secrets are never returned."""
    return {"connections": nwc_vault.list_user_connections(db, user.id)}
