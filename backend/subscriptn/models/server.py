from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from subscriptn.database import Base


class Server(Base):
    """A provider's BTCPay payment backend."""
    __tablename__ = "servers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    host_url = Column(Text, nullable=False)
    api_key = Column(String(255), nullable=False)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, default=True, nullable=False)
    slots_available = Column(Integer, default=21, nullable=False)
    lightning_address = Column(String(255), nullable=True)  # receives subscription payments
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    owner = relationship("User", back_populates="servers")
    shops = relationship("Shop", back_populates="server")
