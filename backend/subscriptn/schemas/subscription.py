from pydantic import BaseModel, Field
from datetime import datetime


class SubscriptionCreate(BaseModel):
    shop_id: int
    amount_sats: int
    interval: str


class Subscription(BaseModel):
    id: int
    shop_id: int
    amount_sats: int
    interval: str
    status: str
    zap_planner_id: str | None = None
    created_at: datetime | None = None
    shop_name: str
    server_name: str | None = None
    has_nwc_connection: bool = False


class SubscriptionCreated(BaseModel):
    subscription: Subscription


class SuccessResponse(BaseModel):
    success: bool = True


class PaymentCreate(BaseModel):
    amount_sats: int
    status: str
    payment_method: str = Field(min_length=1, max_length=50)
    wallet_provider: str | None = Field(default=None, max_length=50)
    preimage: str | None = Field(default=None, max_length=128)


class Payment(BaseModel):
    id: int
    subscription_id: int
    payment_amount: int
    status: str
    payment_method: str
    wallet_provider: str | None = None
    preimage: str | None = None
    payment_date: datetime

    class Config:
        from_attributes = True


class NWCConnectionCreate(BaseModel):
    nwc_connection_string: str = Field(alias="nwcConnectionString", min_length=1, max_length=500)

    class Config:
        populate_by_name = True


class PaymentProcessRequest(BaseModel):
    subscription_id: int = Field(alias="subscriptionId", gt=0)
    force: bool = False

    class Config:
        populate_by_name = True
