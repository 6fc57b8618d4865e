from pydantic import BaseModel, Field
from datetime import datetime

from subscriptn.schemas.server import LIGHTNING_ADDRESS_PATTERN


class ShopCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    description: str | None = None
    lightning_address: str | None = Field(default=None, pattern=LIGHTNING_ADDRESS_PATTERN)
    server_id: int | None = None  # None lists the shop unlinked
    is_public: bool = True


class ShopLink(BaseModel):
    server_id: int


class Shop(BaseModel):
    """Shop DTO. Field names are snake_case because API consumers depend on them."""
    id: int
    name: str
    description: str | None = None
    lightning_address: str | None = None
    subscription_status: str
    created_at: datetime | None = None
    is_public: bool
    server_linked: bool
    server_id: int | None = None
    server_name: str | None = None
    owner_username: str | None = None
