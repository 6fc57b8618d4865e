from subscriptn.models.user import User, ROLE_PROVIDER, ROLE_SHOP_OWNER, USER_ROLES
from subscriptn.models.server import Server
from subscriptn.models.shop import Shop, SHOP_STATUSES
from subscriptn.models.subscription import (
    Subscription,
    SubscriptionHistory,
    SUBSCRIPTION_INTERVALS,
    SUBSCRIPTION_STATUSES,
    PAYMENT_STATUSES,
)

__all__ = [
    "User",
    "Server",
    "Shop",
    "Subscription",
    "SubscriptionHistory",
    "ROLE_PROVIDER",
    "ROLE_SHOP_OWNER",
    "USER_ROLES",
    "SHOP_STATUSES",
    "SUBSCRIPTION_INTERVALS",
    "SUBSCRIPTION_STATUSES",
    "PAYMENT_STATUSES",
]
