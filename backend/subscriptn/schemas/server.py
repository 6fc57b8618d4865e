from pydantic import BaseModel, Field
from datetime import datetime

LIGHTNING_ADDRESS_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"


class ServerCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    host_url: str = Field(pattern=r"^https?://.+")
    api_key: str = Field(min_length=1)
    description: str | None = None
    is_public: bool = True
    slots_available: int = Field(default=21, ge=1)
    lightning_address: str | None = Field(default=None, pattern=LIGHTNING_ADDRESS_PATTERN)


class Server(BaseModel):
    id: int
    name: str
    host_url: str
    description: str | None = None
    is_public: bool
    slots_available: int
    lightning_address: str | None = None
    created_at: datetime | None = None
    is_owner: bool = False
    current_shops: int = 0
    available_slots: int = 0


class PublicServerList(BaseModel):
    servers: list[Server]
