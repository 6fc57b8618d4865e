"""
Subscription store.

Owns every write to subscriptions and subscription_history. The one-active-
subscription-per-shop rule is backed by a partial unique index, so the
pre-check here only gives a friendlier error; the index settles races.
"""
import logging
from typing import Optional

from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from subscriptn.exceptions import ConflictError, NotFoundError, ValidationError
from subscriptn.models import (
    Shop,
    Subscription,
    SubscriptionHistory,
    SUBSCRIPTION_INTERVALS,
    PAYMENT_STATUSES,
)

logger = logging.getLogger(__name__)

MAX_AMOUNT_SATS = 1_000_000

ACTIVE_CONFLICT_DETAIL = (
    "This shop already has an active subscription. "
    "Please cancel the existing subscription before creating a new one."
)


def validate_amount(amount_sats) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(amount_sats, bool) or not isinstance(amount_sats, int):
        raise ValidationError("Amount must be a positive integer number of sats")
    if amount_sats <= 0:
        raise ValidationError("Amount must be a positive number")
    if amount_sats > MAX_AMOUNT_SATS:
        raise ValidationError("Amount cannot exceed 1,000,000 sats")
    return amount_sats


def validate_interval(interval) -> str:
    if interval not in SUBSCRIPTION_INTERVALS:
        raise ValidationError(f"Interval must be one of: {', '.join(SUBSCRIPTION_INTERVALS)}")
    return interval


def to_dict(subscription: Subscription) -> dict:
    """Flatten a subscription with its shop and server names."""
    shop = subscription.shop
    return {
        "id": subscription.id,
        "shop_id": subscription.shop_id,
        "amount_sats": subscription.amount_sats,
        "interval": subscription.interval,
        "status": subscription.status,
        "zap_planner_id": subscription.zap_planner_id,
        "created_at": subscription.created_at,
        "shop_name": shop.name,
        "server_name": shop.server.name if shop.server else None,
        "has_nwc_connection": subscription.has_nwc_connection,
    }


def get_owned_shop(db: Session, shop_id: int, owner_id: int) -> Shop:
    """Fetch a shop only if owner_id owns it."""
    shop = db.query(Shop).filter(Shop.id == shop_id, Shop.owner_id == owner_id).first()
    if not shop:
        raise NotFoundError("Shop not found")
    return shop


def get_owned_subscription(db: Session, subscription_id: int, owner_id: int) -> Subscription:
    """Fetch a subscription only if its shop belongs to owner_id."""
    subscription = (
        db.query(Subscription)
        .join(Shop, Subscription.shop_id == Shop.id)
        .options(joinedload(Subscription.shop).joinedload(Shop.server))
        .filter(Subscription.id == subscription_id, Shop.owner_id == owner_id)
        .first()
    )
    if not subscription:
        raise NotFoundError("Subscription not found")
    return subscription


def create_subscription(
    db: Session, shop_id: int, owner_id: int, amount_sats: int, interval: str
) -> Subscription:
    """Open an active subscription for a shop the caller owns."""
    validate_amount(amount_sats)
    validate_interval(interval)

    shop = get_owned_shop(db, shop_id, owner_id)

    existing = db.query(Subscription).filter(
        Subscription.shop_id == shop.id,
        Subscription.status == "active"
    ).first()
    if existing:
        raise ConflictError(ACTIVE_CONFLICT_DETAIL)

    subscription = Subscription(
        shop_id=shop.id,
        amount_sats=amount_sats,
        interval=interval,
        status="active",
    )
    db.add(subscription)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info(f"Concurrent active subscription for shop {shop_id} rejected")
        raise ConflictError(ACTIVE_CONFLICT_DETAIL)

    db.refresh(subscription)
    logger.info(
        f"Created subscription {subscription.id} for shop {shop_id}: "
        f"{amount_sats} sats {interval}"
    )
    return subscription


def cancel_subscription(db: Session, subscription_id: int, owner_id: int) -> Subscription:
    """Cancel an owned subscription. Cancelling twice is a no-op."""
    subscription = get_owned_subscription(db, subscription_id, owner_id)

    if subscription.status == "cancelled":
        return subscription

    subscription.status = "cancelled"
    subscription.shop.subscription_status = "inactive"
    db.commit()
    db.refresh(subscription)

    logger.info(f"Subscription {subscription_id} cancelled by user {owner_id}")
    return subscription


def get_user_subscriptions(db: Session, owner_id: int) -> list[Subscription]:
    """All subscriptions on shops owned by owner_id, newest first."""
    return (
        db.query(Subscription)
        .join(Shop, Subscription.shop_id == Shop.id)
        .options(joinedload(Subscription.shop).joinedload(Shop.server))
        .filter(Shop.owner_id == owner_id)
        .order_by(desc(Subscription.created_at), desc(Subscription.id))
        .all()
    )


def get_shop_subscriptions(db: Session, shop_id: int, owner_id: int) -> list[Subscription]:
    """Subscriptions of one owned shop, newest first."""
    shop = get_owned_shop(db, shop_id, owner_id)
    return (
        db.query(Subscription)
        .options(joinedload(Subscription.shop).joinedload(Shop.server))
        .filter(Subscription.shop_id == shop.id)
        .order_by(desc(Subscription.created_at), desc(Subscription.id))
        .all()
    )


def get_subscription_history(db: Session, subscription_id: int, owner_id: int) -> list[SubscriptionHistory]:
    """Payment attempts of an owned subscription, newest first."""
    subscription = get_owned_subscription(db, subscription_id, owner_id)
    return (
        db.query(SubscriptionHistory)
        .filter(SubscriptionHistory.subscription_id == subscription.id)
        .order_by(desc(SubscriptionHistory.payment_date), desc(SubscriptionHistory.id))
        .all()
    )


def count_failed_payments(db: Session, subscription_id: int) -> int:
    return db.query(SubscriptionHistory).filter(
        SubscriptionHistory.subscription_id == subscription_id,
        SubscriptionHistory.status == "failed"
    ).count()


def append_history(
    db: Session,
    subscription: Subscription,
    amount_sats: int,
    status: str,
    payment_method: str,
    wallet_provider: Optional[str] = None,
    preimage: Optional[str] = None,
) -> SubscriptionHistory:
    """Stage a history row on the session. The caller commits."""
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"Payment status must be one of: {', '.join(PAYMENT_STATUSES)}")

    entry = SubscriptionHistory(
        subscription_id=subscription.id,
        payment_amount=amount_sats,
        status=status,
        payment_method=payment_method,
        wallet_provider=wallet_provider,
        preimage=preimage,
    )
    db.add(entry)
    return entry


def record_payment(
    db: Session,
    subscription: Subscription,
    amount_sats: int,
    status: str,
    payment_method: str,
    wallet_provider: Optional[str] = None,
    preimage: Optional[str] = None,
) -> SubscriptionHistory:
    """
    Append a payment to the ledger; a successful one also activates the
    subscription and its shop. All three writes commit together or not at all.
    """
    validate_amount(amount_sats)

    try:
        entry = append_history(
            db, subscription, amount_sats, status, payment_method,
            wallet_provider=wallet_provider, preimage=preimage,
        )
        if status == "success":
            subscription.status = "active"
            subscription.shop.subscription_status = "active"
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(ACTIVE_CONFLICT_DETAIL)
    except Exception:
        db.rollback()
        raise

    db.refresh(entry)
    logger.info(
        f"Recorded {status} payment of {amount_sats} sats for subscription {subscription.id} "
        f"via {payment_method}"
    )
    return entry
