"""
Per-subscription storage of encrypted NWC connection strings.

Every call is scoped to the owner of the subscription's shop and leaves an
audit line. Connection strings themselves never reach the log.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from subscriptn.exceptions import ValidationError
from subscriptn.models import Shop, Subscription
from subscriptn.services.nwc_encryption import (
    NWCEncryptionError,
    NWCEncryptionService,
    is_valid_connection_string,
)
from subscriptn.services.subscriptions import get_owned_subscription

logger = logging.getLogger(__name__)

_encryption_service: Optional[NWCEncryptionService] = None


def get_encryption_service() -> NWCEncryptionService:
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = NWCEncryptionService()
    return _encryption_service


def _audit(action: str, subscription_id: int, owner_id: Optional[int], outcome: str = "ok") -> None:
    logger.info(f"[NWC_AUDIT] {action} subscription={subscription_id} user={owner_id} outcome={outcome}")


def store_connection(db: Session, subscription_id: int, owner_id: int, connection_string: str) -> Subscription:
    """Encrypt and attach a connection string, replacing any previous one."""
    subscription = get_owned_subscription(db, subscription_id, owner_id)

    if not is_valid_connection_string(connection_string):
        _audit("store", subscription_id, owner_id, "rejected")
        raise ValidationError("Invalid NWC connection string format")

    try:
        ciphertext, key_params = get_encryption_service().encrypt(connection_string)
    except NWCEncryptionError as e:
        _audit("store", subscription_id, owner_id, "error")
        raise ValidationError(str(e))

    subscription.nwc_ciphertext = ciphertext
    subscription.nwc_key_params = key_params
    db.commit()
    db.refresh(subscription)

    _audit("store", subscription_id, owner_id)
    return subscription


def remove_connection(db: Session, subscription_id: int, owner_id: int) -> bool:
    """Drop the stored connection. Returns False when there was none."""
    subscription = get_owned_subscription(db, subscription_id, owner_id)
    had_connection = subscription.has_nwc_connection

    subscription.nwc_ciphertext = None
    subscription.nwc_key_params = None
    db.commit()

    _audit("remove", subscription_id, owner_id, "ok" if had_connection else "none")
    return had_connection


def has_connection(db: Session, subscription_id: int, owner_id: int) -> bool:
    subscription = get_owned_subscription(db, subscription_id, owner_id)
    _audit("check", subscription_id, owner_id)
    return subscription.has_nwc_connection


def decrypt_connection(subscription: Subscription) -> str:
    """Decrypt a subscription's stored connection string. Raises NWCEncryptionError."""
    if not subscription.has_nwc_connection:
        raise NWCEncryptionError("No NWC connection stored")
    connection_string = get_encryption_service().decrypt(
        subscription.nwc_ciphertext, subscription.nwc_key_params
    )
    _audit("decrypt", subscription.id, None)
    return connection_string


def load_connection(db: Session, subscription_id: int, owner_id: int) -> str:
    subscription = get_owned_subscription(db, subscription_id, owner_id)
    return decrypt_connection(subscription)


def list_user_connections(db: Session, owner_id: int) -> list[dict]:
    """Subscriptions of owner_id that have a stored connection. No secrets included."""
    subscriptions = (
        db.query(Subscription)
        .join(Shop, Subscription.shop_id == Shop.id)
        .options(joinedload(Subscription.shop))
        .filter(
            Shop.owner_id == owner_id,
            Subscription.nwc_ciphertext.isnot(None),
            Subscription.nwc_key_params.isnot(None),
        )
        .order_by(Subscription.id)
        .all()
    )
    logger.info(f"[NWC_AUDIT] list user={owner_id} count={len(subscriptions)}")

    return [
        {
            "subscription_id": s.id,
            "shop_id": s.shop_id,
            "shop_name": s.shop.name,
            "amount_sats": s.amount_sats,
            "interval": s.interval,
            "status": s.status,
            "updated_at": s.updated_at,
        }
        for s in subscriptions
    ]
