from subscriptn.schemas.user import User, UserRegister, UserLogin, AuthResponse
from subscriptn.schemas.server import Server, ServerCreate, PublicServerList
from subscriptn.schemas.shop import Shop, ShopCreate, ShopLink
from subscriptn.schemas.subscription import (
    Subscription,
    SubscriptionCreate,
    SubscriptionCreated,
    SuccessResponse,
    Payment,
    PaymentCreate,
    NWCConnectionCreate,
    PaymentProcessRequest,
)
from subscriptn.schemas.webhook import decode_event, UnknownEvent

__all__ = [
    "User", "UserRegister", "UserLogin", "AuthResponse",
    "Server", "ServerCreate", "PublicServerList",
    "Shop", "ShopCreate", "ShopLink",
    "Subscription", "SubscriptionCreate", "SubscriptionCreated", "SuccessResponse",
    "Payment", "PaymentCreate",
    "NWCConnectionCreate", "PaymentProcessRequest",
    "decode_event", "UnknownEvent",
]
