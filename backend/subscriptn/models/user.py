from sqlalchemy import Column, Integer, String, DateTime, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from subscriptn.database import Base

ROLE_PROVIDER = "provider"
ROLE_SHOP_OWNER = "shop_owner"
USER_ROLES = (ROLE_PROVIDER, ROLE_SHOP_OWNER)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("role IN ('provider', 'shop_owner')", name="ck_users_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default=ROLE_SHOP_OWNER)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    servers = relationship("Server", back_populates="owner")
    shops = relationship("Shop", back_populates="owner")
