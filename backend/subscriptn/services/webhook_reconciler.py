"""
ZapPlanner webhook reconciliation.

Every (current subscription status, event) pair maps to one Transition in
TRANSITIONS. Handlers look the transition up and apply it; they never branch
on status themselves.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from subscriptn.models import Subscription, SUBSCRIPTION_STATUSES
from subscriptn.schemas.webhook import (
    SUBSCRIPTION_CREATED,
    PAYMENT_SUCCEEDED,
    PAYMENT_FAILED,
    SUBSCRIPTION_CANCELLED,
    KNOWN_EVENTS,
    SubscriptionCreatedEvent,
    PaymentSucceededEvent,
    PaymentFailedEvent,
    SubscriptionCancelledEvent,
    UnknownEvent,
)
from subscriptn.services.subscriptions import append_history, count_failed_payments

logger = logging.getLogger(__name__)

# Failed payments (cumulative) that deactivate a subscription
FAILED_PAYMENT_LIMIT = 3

WEBHOOK_PAYMENT_METHOD = "zapplanner"


@dataclass(frozen=True)
class Transition:
    subscription_status: Optional[str] = None  # None leaves status unchanged
    shop_status: Optional[str] = None
    history_status: Optional[str] = None
    set_external_id: bool = False
    # Status changes apply only once failed payments reach FAILED_PAYMENT_LIMIT
    on_failure_limit: bool = False


_ACTIVATE = Transition(subscription_status="active", shop_status="active", set_external_id=True)
_LINK_ONLY = Transition(set_external_id=True)
_RECORD_SUCCESS = Transition(history_status="success")
_RECORD_FAILURE = Transition(history_status="failed")
_RECORD_FAILURE_AND_MAYBE_DEACTIVATE = Transition(
    subscription_status="inactive",
    shop_status="inactive",
    history_status="failed",
    on_failure_limit=True,
)
_CANCEL = Transition(subscription_status="cancelled", shop_status="inactive")
_NOOP = Transition()

TRANSITIONS: dict[tuple[str, str], Transition] = {
    ("pending", SUBSCRIPTION_CREATED): _ACTIVATE,
    ("active", SUBSCRIPTION_CREATED): _ACTIVATE,
    ("inactive", SUBSCRIPTION_CREATED): _ACTIVATE,
    ("cancelled", SUBSCRIPTION_CREATED): _LINK_ONLY,
    ("expired", SUBSCRIPTION_CREATED): _LINK_ONLY,

    ("pending", PAYMENT_SUCCEEDED): _RECORD_SUCCESS,
    ("active", PAYMENT_SUCCEEDED): _RECORD_SUCCESS,
    ("inactive", PAYMENT_SUCCEEDED): _RECORD_SUCCESS,
    ("cancelled", PAYMENT_SUCCEEDED): _RECORD_SUCCESS,
    ("expired", PAYMENT_SUCCEEDED): _RECORD_SUCCESS,

    ("pending", PAYMENT_FAILED): _RECORD_FAILURE_AND_MAYBE_DEACTIVATE,
    ("active", PAYMENT_FAILED): _RECORD_FAILURE_AND_MAYBE_DEACTIVATE,
    ("inactive", PAYMENT_FAILED): _RECORD_FAILURE,
    ("cancelled", PAYMENT_FAILED): _RECORD_FAILURE,
    ("expired", PAYMENT_FAILED): _RECORD_FAILURE,

    ("pending", SUBSCRIPTION_CANCELLED): _CANCEL,
    ("active", SUBSCRIPTION_CANCELLED): _CANCEL,
    ("inactive", SUBSCRIPTION_CANCELLED): _CANCEL,
    ("expired", SUBSCRIPTION_CANCELLED): _CANCEL,
    ("cancelled", SUBSCRIPTION_CANCELLED): _NOOP,
}

_missing = {(s, e) for s in SUBSCRIPTION_STATUSES for e in KNOWN_EVENTS} - set(TRANSITIONS)
if _missing:
    raise RuntimeError(f"No webhook transition for {sorted(_missing)}")


def next_transition(current_status: str, event: str) -> Transition:
    return TRANSITIONS[(current_status, event)]


@dataclass
class ReconcileOutcome:
    event: Optional[str]
    applied: bool
    subscription_id: Optional[int] = None
    new_status: Optional[str] = None
    reason: Optional[str] = None


def _load_by_id(db: Session, subscription_id: int) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .options(joinedload(Subscription.shop))
        .filter(Subscription.id == subscription_id)
        .first()
    )


def _load_by_external_id(db: Session, zap_planner_id: str) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .options(joinedload(Subscription.shop))
        .filter(Subscription.zap_planner_id == zap_planner_id)
        .first()
    )


def _apply(db: Session, subscription: Subscription, event, transition: Transition) -> None:
    if transition.set_external_id:
        subscription.zap_planner_id = event.subscription_id

    if transition.history_status:
        amount = getattr(event, "amount", None) or subscription.amount_sats
        append_history(
            db, subscription, amount, transition.history_status, WEBHOOK_PAYMENT_METHOD,
            wallet_provider="zapplanner",
        )

    change_status = transition.subscription_status is not None
    if transition.on_failure_limit:
        db.flush()
        failed = count_failed_payments(db, subscription.id)
        change_status = failed >= FAILED_PAYMENT_LIMIT
        if change_status:
            logger.warning(
                f"Subscription {subscription.id} reached {failed} failed payments, deactivating"
            )

    if change_status:
        subscription.status = transition.subscription_status
        if transition.shop_status:
            subscription.shop.subscription_status = transition.shop_status

    db.commit()


def reconcile(db: Session, event) -> ReconcileOutcome:
    """
    Apply one decoded webhook event. Failures are logged and rolled back, never
    raised: the sender only needs an acknowledgement.
    """
    if isinstance(event, UnknownEvent):
        logger.info(f"Ignoring ZapPlanner webhook event {event.event!r}: {event.reason}")
        return ReconcileOutcome(event=event.event, applied=False, reason=event.reason)

    try:
        if isinstance(event, SubscriptionCancelledEvent):
            subscription = _load_by_external_id(db, event.subscription_id)
        else:
            subscription = _load_by_id(db, event.metadata.subscription_id)

        if subscription is None:
            logger.warning(
                f"ZapPlanner {event.event}: no subscription for "
                f"external id {event.subscription_id!r}"
                + (f" / internal id {event.metadata.subscription_id}" if hasattr(event, "metadata") else "")
            )
            return ReconcileOutcome(event=event.event, applied=False, reason="subscription not found")

        transition = next_transition(subscription.status, event.event)
        _apply(db, subscription, event, transition)

        logger.info(
            f"ZapPlanner {event.event} applied to subscription {subscription.id} "
            f"(status now {subscription.status})"
        )
        return ReconcileOutcome(
            event=event.event,
            applied=True,
            subscription_id=subscription.id,
            new_status=subscription.status,
        )

    except Exception as e:
        db.rollback()
        logger.exception(f"Error handling ZapPlanner {event.event} (external id {event.subscription_id!r}): {e}")
        return ReconcileOutcome(event=event.event, applied=False, reason="handler error")


__all__ = [
    "Transition",
    "TRANSITIONS",
    "FAILED_PAYMENT_LIMIT",
    "next_transition",
    "reconcile",
    "ReconcileOutcome",
    "SubscriptionCreatedEvent",
    "PaymentSucceededEvent",
    "PaymentFailedEvent",
    "SubscriptionCancelledEvent",
]
