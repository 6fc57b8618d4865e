"""
Recurring NWC payment processor.

Pays due subscriptions from the shop owner's connected wallet to the linked
server's lightning address, and records every attempt in the payment ledger.
"""
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from subscriptn.models import Shop, Subscription
from subscriptn.services.nwc_client import (
    LightningPaymentClient,
    WalletPaymentError,
    WALLET_NOT_CONNECTED,
    INVALID_RECIPIENT,
    PAYMENT_FAILED,
)
from subscriptn.services.nwc_encryption import NWCEncryptionError
from subscriptn.services.nwc_vault import decrypt_connection
from subscriptn.services.subscriptions import record_payment

logger = logging.getLogger(__name__)

SUBSCRIPTION_NOT_FOUND = "subscription_not_found"
SUBSCRIPTION_INACTIVE = "subscription_inactive"

PAYMENT_METHOD = "nwc"
WALLET_PROVIDER = "nwc"

INTERVAL_LENGTHS = {
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "yearly": timedelta(days=365),
}


@dataclass
class PaymentResult:
    success: bool
    subscription_id: int
    amount: Optional[int] = None
    recipient: Optional[str] = None
    preimage: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; they were stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def last_attempt_at(subscription: Subscription) -> Optional[datetime]:
    """Date of the most recent ledger row, successful or not."""
    if not subscription.history:
        return None
    return _as_utc(subscription.history[0].payment_date)


def is_due(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    """A subscription is due when its last attempt is at least one interval old."""
    last = last_attempt_at(subscription)
    if last is None:
        return True
    now = _as_utc(now or datetime.now(timezone.utc))
    return now - last >= INTERVAL_LENGTHS[subscription.interval]


def resolve_recipient(subscription: Subscription) -> Optional[str]:
    """The linked server's lightning address, else the shop's own."""
    shop = subscription.shop
    if shop.server and shop.server.lightning_address:
        return shop.server.lightning_address
    return shop.lightning_address


def _load(db: Session, subscription_id: int) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .options(joinedload(Subscription.shop).joinedload(Shop.server))
        .filter(Subscription.id == subscription_id)
        .first()
    )


def _record_failure(db: Session, subscription: Subscription, result: PaymentResult) -> PaymentResult:
    try:
        record_payment(
            db, subscription, subscription.amount_sats, "failed", PAYMENT_METHOD,
            wallet_provider=WALLET_PROVIDER,
        )
    except Exception as e:
        logger.error(f"Could not record failed payment for subscription {subscription.id}: {e}")
    return result


def _pay(db: Session, subscription: Subscription, client: LightningPaymentClient) -> PaymentResult:
    amount = subscription.amount_sats
    recipient = resolve_recipient(subscription)
    result = PaymentResult(success=False, subscription_id=subscription.id, amount=amount, recipient=recipient)

    if not recipient:
        result.code = INVALID_RECIPIENT
        result.error = "Server owner lightning address not configured"
        return _record_failure(db, subscription, result)

    if not subscription.has_nwc_connection:
        result.code = WALLET_NOT_CONNECTED
        result.error = "No NWC wallet connected to this subscription"
        return _record_failure(db, subscription, result)

    try:
        connection_string = decrypt_connection(subscription)
    except NWCEncryptionError as e:
        result.code = WALLET_NOT_CONNECTED
        result.error = str(e)
        return _record_failure(db, subscription, result)

    try:
        preimage = client.send_payment(
            connection_string, recipient, amount,
            description=f"Subscription payment for {subscription.shop.name}",
        )
    except WalletPaymentError as e:
        logger.warning(f"NWC payment for subscription {subscription.id} failed ({e.code}): {e.message}")
        result.code = e.code
        result.error = e.message
        return _record_failure(db, subscription, result)

    record_payment(
        db, subscription, amount, "success", PAYMENT_METHOD,
        wallet_provider=WALLET_PROVIDER, preimage=preimage,
    )
    logger.info(f"NWC payment successful for subscription {subscription.id}: {amount} sats to {recipient}")

    result.success = True
    result.preimage = preimage
    return result


def process_one(db: Session, subscription_id: int, client: Optional[LightningPaymentClient] = None) -> PaymentResult:
    """Attempt one payment for a subscription and record the outcome."""
    subscription = _load(db, subscription_id)
    if subscription is None:
        return PaymentResult(
            success=False, subscription_id=subscription_id,
            code=SUBSCRIPTION_NOT_FOUND, error="Subscription not found",
        )
    if subscription.status != "active":
        return PaymentResult(
            success=False, subscription_id=subscription_id, amount=subscription.amount_sats,
            code=SUBSCRIPTION_INACTIVE, error="Subscription is not active",
        )

    owns_client = client is None
    client = client or LightningPaymentClient()
    try:
        return _pay(db, subscription, client)
    finally:
        if owns_client:
            client.close()


def get_due_subscriptions(db: Session, now: Optional[datetime] = None) -> list[Subscription]:
    """Active subscriptions with a stored wallet connection whose next payment is due."""
    candidates = (
        db.query(Subscription)
        .options(
            joinedload(Subscription.shop).joinedload(Shop.server),
            joinedload(Subscription.history),
        )
        .filter(
            Subscription.status == "active",
            Subscription.nwc_ciphertext.isnot(None),
            Subscription.nwc_key_params.isnot(None),
        )
        .order_by(Subscription.id)
        .all()
    )
    return [s for s in candidates if is_due(s, now)]


def process_all_due(db: Session, client: Optional[LightningPaymentClient] = None,
                    now: Optional[datetime] = None) -> list[PaymentResult]:
    """Pay every due subscription. One failure never stops the sweep."""
    due_ids = [s.id for s in get_due_subscriptions(db, now)]
    logger.info(f"Processing {len(due_ids)} due subscription payments")

    owns_client = client is None
    client = client or LightningPaymentClient()
    results = []
    try:
        for subscription_id in due_ids:
            try:
                results.append(process_one(db, subscription_id, client=client))
            except Exception as e:
                db.rollback()
                logger.error(f"Error processing subscription {subscription_id}: {e}")
                results.append(PaymentResult(
                    success=False, subscription_id=subscription_id,
                    code=PAYMENT_FAILED, error=str(e),
                ))
    finally:
        if owns_client:
            client.close()

    successful = sum(1 for r in results if r.success)
    logger.info(f"Payment sweep done: {successful} successful, {len(results) - successful} failed")
    return results


def summarize(results: list[PaymentResult]) -> dict:
    successful = sum(1 for r in results if r.success)
    return {"total": len(results), "successful": successful, "failed": len(results) - successful}
