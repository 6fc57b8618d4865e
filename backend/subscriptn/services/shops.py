"""
Shop registry.

A shop is either linked to a server or unlinked; link state only changes
through Shop.link_server / Shop.unlink_server so server_linked always mirrors
server_id.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from subscriptn.exceptions import AuthorizationError, ConflictError, NotFoundError
from subscriptn.models import Server, Shop, User, ROLE_SHOP_OWNER

logger = logging.getLogger(__name__)


def to_dict(shop: Shop) -> dict:
    return {
        "id": shop.id,
        "name": shop.name,
        "description": shop.description,
        "lightning_address": shop.lightning_address,
        "subscription_status": shop.subscription_status,
        "created_at": shop.created_at,
        "is_public": shop.is_public,
        "server_linked": shop.server_linked,
        "server_id": shop.server_id,
        "server_name": shop.server.name if shop.server else None,
        "owner_username": shop.owner.username if shop.owner else None,
    }


def _query(db: Session):
    return db.query(Shop).options(joinedload(Shop.server), joinedload(Shop.owner))


def _get_server(db: Session, server_id: int) -> Server:
    server = db.query(Server).filter(Server.id == server_id).first()
    if not server:
        raise NotFoundError("Server not found")
    return server


def _check_name_free(db: Session, name: str, server_id: int, owner_id: int, exclude_shop_id: Optional[int] = None) -> None:
    query = db.query(Shop).filter(Shop.name == name, Shop.server_id == server_id)
    if exclude_shop_id is not None:
        query = query.filter(Shop.id != exclude_shop_id)
    existing = query.first()
    if existing:
        if existing.owner_id == owner_id:
            raise ConflictError("You already own a shop with this name on this server")
        raise ConflictError("This shop is already owned by another user")


def create_shop(
    db: Session,
    owner: User,
    name: str,
    description: Optional[str] = None,
    lightning_address: Optional[str] = None,
    server_id: Optional[int] = None,
    is_public: bool = True,
) -> Shop:
    if owner.role != ROLE_SHOP_OWNER:
        raise AuthorizationError("Only shop owners can create shops")

    shop = Shop(
        name=name,
        description=description,
        lightning_address=lightning_address,
        owner_id=owner.id,
        is_public=is_public,
        subscription_status="inactive",
        server_linked=False,
    )

    if server_id is not None:
        server = _get_server(db, server_id)
        _check_name_free(db, name, server.id, owner.id)
        shop.link_server(server)

    db.add(shop)
    db.commit()
    db.refresh(shop)

    logger.info(f"User {owner.id} created shop {shop.id} ({'server ' + str(server_id) if server_id else 'unlinked'})")
    return shop


def list_public_shops(db: Session) -> list[Shop]:
    return _query(db).filter(Shop.is_public.is_(True)).order_by(Shop.created_at.desc(), Shop.id.desc()).all()


def list_unlinked_shops(db: Session) -> list[Shop]:
    """Public shops not yet attached to any server."""
    return (
        _query(db)
        .filter(Shop.is_public.is_(True), Shop.server_id.is_(None))
        .order_by(Shop.created_at.desc(), Shop.id.desc())
        .all()
    )


def list_user_shops(db: Session, owner_id: int) -> list[Shop]:
    return _query(db).filter(Shop.owner_id == owner_id).order_by(Shop.created_at.desc(), Shop.id.desc()).all()


def get_shop(db: Session, shop_id: int, viewer_id: Optional[int] = None) -> Shop:
    """A private shop is only visible to its owner; everyone else gets 404."""
    shop = _query(db).filter(Shop.id == shop_id).first()
    if not shop or (not shop.is_public and shop.owner_id != viewer_id):
        raise NotFoundError("Shop not found")
    return shop


def _get_owned(db: Session, shop_id: int, owner_id: int) -> Shop:
    shop = _query(db).filter(Shop.id == shop_id, Shop.owner_id == owner_id).first()
    if not shop:
        raise NotFoundError("Shop not found")
    return shop


def link_shop(db: Session, shop_id: int, owner_id: int, server_id: int) -> Shop:
    shop = _get_owned(db, shop_id, owner_id)
    server = _get_server(db, server_id)
    _check_name_free(db, shop.name, server.id, owner_id, exclude_shop_id=shop.id)

    shop.link_server(server)
    db.commit()
    db.refresh(shop)

    logger.info(f"Shop {shop_id} linked to server {server_id}")
    return shop


def unlink_shop(db: Session, shop_id: int, owner_id: int) -> Shop:
    shop = _get_owned(db, shop_id, owner_id)
    if not shop.server_linked:
        return shop

    previous = shop.server_id
    shop.unlink_server()
    db.commit()
    db.refresh(shop)

    logger.info(f"Shop {shop_id} unlinked from server {previous}")
    return shop
