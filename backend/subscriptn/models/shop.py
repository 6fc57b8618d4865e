from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from subscriptn.database import Base

SHOP_STATUSES = ("active", "inactive", "pending")


class Shop(Base):
    """A seller listed against a provider's server, or unlinked."""
    __tablename__ = "shops"
    __table_args__ = (
        CheckConstraint(
            "subscription_status IN ('active', 'inactive', 'pending')",
            name="ck_shops_subscription_status",
        ),
        # server_linked mirrors whether a server is set
        CheckConstraint(
            "server_linked = (server_id IS NOT NULL)",
            name="ck_shops_server_linked",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    lightning_address = Column(String(255), nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    server_id = Column(Integer, ForeignKey("servers.id"), nullable=True, index=True)
    subscription_status = Column(String(20), nullable=False, default="inactive")
    is_public = Column(Boolean, nullable=False, default=True)
    server_linked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    owner = relationship("User", back_populates="shops")
    server = relationship("Server", back_populates="shops")
    subscriptions = relationship("Subscription", back_populates="shop")

    def link_server(self, server) -> None:
        self.server = server
        self.server_id = server.id
        self.server_linked = True

    def unlink_server(self) -> None:
        self.server = None
        self.server_id = None
        self.server_linked = False
