"""
Shop endpoints: listing, creation and linking shops to servers.
"""
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from subscriptn.database import get_db
from subscriptn.models import User
from subscriptn.schemas import Shop as ShopResponse, ShopCreate, ShopLink, Subscription as SubscriptionResponse
from subscriptn.services import shops as shop_service
from subscriptn.services import subscriptions as subscription_service
from subscriptn.services.rate_limiter import api_rate_limiter, shop_rate_limiter, rate_limit
from .auth import get_current_user, require_auth

router = APIRouter(prefix="/shops", tags=["shops"])

api_limit = rate_limit(api_rate_limiter)
shop_limit = rate_limit(shop_rate_limiter, "Too many shop operations. Please slow down.")


@router.get("", response_model=list[ShopResponse], dependencies=[Depends(api_limit)])
def get_my_shops(user: User = Depends(require_auth), db: Session = Depends(get_db)):
    return [shop_service.to_dict(shop) for shop in shop_service.list_user_shops(db, user.id)]


@router.post("", response_model=ShopResponse, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(shop_limit)])
def create_shop(data: ShopCreate, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """
    Create a shop. Leave `server_id` out to list it unlinked.

    Shop names are unique per server.
    """
    shop = shop_service.create_shop(
        db,
        user,
        name=data.name,
        description=data.description,
        lightning_address=data.lightning_address,
        server_id=data.server_id,
        is_public=data.is_public,
    )
    return shop_service.to_dict(shop)


@router.get("/public", response_model=list[ShopResponse], dependencies=[Depends(api_limit)])
def get_public_shops(db: Session = Depends(get_db)):
    return [shop_service.to_dict(shop) for shop in shop_service.list_public_shops(db)]


@router.get("/unlinked", response_model=list[ShopResponse], dependencies=[Depends(api_limit)])
def get_unlinked_shops(db: Session = Depends(get_db)):
    """Public shops waiting for a server."""
    return [shop_service.to_dict(shop) for shop in shop_service.list_unlinked_shops(db)]


@router.get("/{shop_id}", response_model=ShopResponse, dependencies=[Depends(api_limit)])
async def get_shop(
    shop_id: int,
    user: Optional[User] = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    shop = shop_service.get_shop(db, shop_id, viewer_id=user.id if user else None)
    return shop_service.to_dict(shop)


@router.post("/{shop_id}/link", response_model=ShopResponse, dependencies=[Depends(shop_limit)])
def link_shop(shop_id: int, data: ShopLink, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    shop = shop_service.link_shop(db, shop_id, user.id, data.server_id)
    return shop_service.to_dict(shop)


@router.post("/{shop_id}/unlink", response_model=ShopResponse, dependencies=[Depends(shop_limit)])
def unlink_shop(shop_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    shop = shop_service.unlink_shop(db, shop_id, user.id)
    return shop_service.to_dict(shop)


@router.get("/{shop_id}/subscriptions", response_model=list[SubscriptionResponse],
            dependencies=[Depends(api_limit)])
def get_shop_subscriptions(shop_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    subscriptions = subscription_service.get_shop_subscriptions(db, shop_id, user.id)
    return [subscription_service.to_dict(s) for s in subscriptions]
