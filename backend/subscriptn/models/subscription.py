"""
Models for recurring subscriptions and their payment ledger.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, CheckConstraint, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime, timezone
from subscriptn.database import Base

SUBSCRIPTION_INTERVALS = ("daily", "weekly", "monthly", "yearly")
SUBSCRIPTION_STATUSES = ("active", "cancelled", "expired", "inactive", "pending")
PAYMENT_STATUSES = ("success", "failed", "pending")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription(Base):
    """A recurring Lightning payment agreement for a shop."""
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint("amount_sats > 0", name="ck_subscriptions_amount_positive"),
        CheckConstraint(
            "\"interval\" IN ('daily', 'weekly', 'monthly', 'yearly')",
            name="ck_subscriptions_interval",
        ),
        CheckConstraint(
            "status IN ('active', 'cancelled', 'expired', 'inactive', 'pending')",
            name="ck_subscriptions_status",
        ),
        # At most one active subscription per shop
        Index(
            "uq_subscriptions_one_active_per_shop",
            "shop_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id"), nullable=False, index=True)
    amount_sats = Column(Integer, nullable=False)
    interval = Column(String(10), nullable=False)
    zap_planner_id = Column(String(255), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="active")

    # Encrypted NWC connection (ciphertext hex + JSON with iv/salt)
    nwc_ciphertext = Column(Text, nullable=True)
    nwc_key_params = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    shop = relationship("Shop", back_populates="subscriptions")
    history = relationship(
        "SubscriptionHistory",
        back_populates="subscription",
        order_by=lambda: [SubscriptionHistory.payment_date.desc(), SubscriptionHistory.id.desc()],
    )

    @property
    def has_nwc_connection(self) -> bool:
        return bool(self.nwc_ciphertext and self.nwc_key_params)


class SubscriptionHistory(Base):
    """Append-only record of one payment attempt."""
    __tablename__ = "subscription_history"
    __table_args__ = (
        CheckConstraint(
            "status IN ('success', 'failed', 'pending')",
            name="ck_subscription_history_status",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    payment_amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    payment_method = Column(String(50), nullable=False)
    wallet_provider = Column(String(50), nullable=True)
    preimage = Column(String(128), nullable=True)
    payment_date = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Relationships
    subscription = relationship("Subscription", back_populates="history")
