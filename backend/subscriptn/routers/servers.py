"""
Server registry endpoints. Providers manage their BTCPay servers; anyone can
browse public servers with free slots.
"""
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from subscriptn.database import get_db
from subscriptn.models import User
from subscriptn.schemas import PublicServerList, Server as ServerResponse, ServerCreate, Shop as ShopResponse
from subscriptn.services import servers as server_service
from subscriptn.services import shops as shop_service
from subscriptn.services.rate_limiter import api_rate_limiter, server_rate_limiter, rate_limit
from .auth import get_current_user, require_auth, require_provider

router = APIRouter(prefix="/servers", tags=["servers"])

api_limit = rate_limit(api_rate_limiter)
server_limit = rate_limit(server_rate_limiter, "Too many server operations. Please slow down.")


@router.get("", response_model=list[ServerResponse], dependencies=[Depends(api_limit)])
def get_my_servers(user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """Servers owned by the current user, with slot stats."""
    return server_service.list_owner_servers(db, user.id)


@router.post("", response_model=ServerResponse, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(server_limit)])
def create_server(data: ServerCreate, user: User = Depends(require_provider), db: Session = Depends(get_db)):
    """Register a BTCPay server. Provider role required."""
    server = server_service.create_server(
        db,
        user,
        name=data.name,
        host_url=data.host_url,
        api_key=data.api_key,
        description=data.description,
        is_public=data.is_public,
        slots_available=data.slots_available,
        lightning_address=data.lightning_address,
    )
    return server_service.get_server_stats(db, server, viewer_id=user.id)


@router.get("/public", response_model=PublicServerList, dependencies=[Depends(api_limit)])
async def get_public_servers(
    user: Optional[User] = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Public servers that still have free slots."""
    return {"servers": server_service.list_public_servers(db, viewer_id=user.id if user else None)}


@router.get("/{server_id}", response_model=ServerResponse, dependencies=[Depends(api_limit)])
def get_server(server_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    server = server_service.get_owned_server(db, server_id, user.id)
    return server_service.get_server_stats(db, server, viewer_id=user.id)


@router.delete("/{server_id}", dependencies=[Depends(server_limit)])
def delete_server(server_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """
    Delete a server you own.

    Its shops are unlinked and set inactive, and their open subscriptions are
    cancelled. Payment history is kept.
    """
    server_service.delete_server(db, server_id, user.id)
    return {"success": True, "message": "Server deleted"}


@router.get("/{server_id}/shops", response_model=list[ShopResponse], dependencies=[Depends(api_limit)])
def get_server_shops(server_id: int, user: User = Depends(require_auth), db: Session = Depends(get_db)):
    """Shops linked to a server you own."""
    return [shop_service.to_dict(shop) for shop in server_service.list_server_shops(db, server_id, user.id)]
