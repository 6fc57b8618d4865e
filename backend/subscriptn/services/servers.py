"""
Server registry: providers' BTCPay servers and their slot statistics.
"""
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from subscriptn.exceptions import AuthorizationError, NotFoundError
from subscriptn.models import Server, Shop, Subscription, User, ROLE_PROVIDER

logger = logging.getLogger(__name__)

# Subscriptions still open when their server goes away
_OPEN_STATUSES = ("active", "pending", "inactive")


def _active_shop_counts(db: Session, server_ids: list[int]) -> dict[int, int]:
    if not server_ids:
        return {}
    rows = (
        db.query(Shop.server_id, func.count(Shop.id))
        .filter(Shop.server_id.in_(server_ids), Shop.subscription_status == "active")
        .group_by(Shop.server_id)
        .all()
    )
    return {server_id: count for server_id, count in rows}


def to_dict(server: Server, current_shops: int = 0, viewer_id: int | None = None) -> dict:
    """Server DTO with slot stats. Never includes the API key."""
    return {
        "id": server.id,
        "name": server.name,
        "host_url": server.host_url,
        "description": server.description,
        "is_public": server.is_public,
        "slots_available": server.slots_available,
        "lightning_address": server.lightning_address,
        "created_at": server.created_at,
        "is_owner": viewer_id is not None and server.owner_id == viewer_id,
        "current_shops": current_shops,
        "available_slots": server.slots_available - current_shops,
    }


def create_server(
    db: Session,
    owner: User,
    name: str,
    host_url: str,
    api_key: str,
    description: str | None = None,
    is_public: bool = True,
    slots_available: int = 21,
    lightning_address: str | None = None,
) -> Server:
    if owner.role != ROLE_PROVIDER:
        raise AuthorizationError("Only providers can register servers")

    server = Server(
        name=name,
        host_url=host_url,
        api_key=api_key,
        owner_id=owner.id,
        description=description,
        is_public=is_public,
        slots_available=slots_available,
        lightning_address=lightning_address,
    )
    db.add(server)
    db.commit()
    db.refresh(server)

    logger.info(f"Provider {owner.id} registered server {server.id} ({server.name})")
    return server


def list_owner_servers(db: Session, owner_id: int) -> list[dict]:
    servers = db.query(Server).filter(Server.owner_id == owner_id).order_by(Server.created_at.desc(), Server.id.desc()).all()
    counts = _active_shop_counts(db, [s.id for s in servers])
    return [to_dict(s, counts.get(s.id, 0), viewer_id=owner_id) for s in servers]


def list_public_servers(db: Session, viewer_id: int | None = None) -> list[dict]:
    """Public servers that still have a free slot."""
    servers = db.query(Server).filter(Server.is_public.is_(True)).order_by(Server.id).all()
    counts = _active_shop_counts(db, [s.id for s in servers])

    result = []
    for server in servers:
        current = counts.get(server.id, 0)
        if server.slots_available - current > 0:
            result.append(to_dict(server, current, viewer_id=viewer_id))
    return result


def get_owned_server(db: Session, server_id: int, owner_id: int) -> Server:
    """404 when the server does not exist, 403 when someone else owns it."""
    server = db.query(Server).filter(Server.id == server_id).first()
    if not server:
        raise NotFoundError("Server not found")
    if server.owner_id != owner_id:
        raise AuthorizationError("You do not own this server")
    return server


def get_server_stats(db: Session, server: Server, viewer_id: int | None = None) -> dict:
    counts = _active_shop_counts(db, [server.id])
    return to_dict(server, counts.get(server.id, 0), viewer_id=viewer_id)


def list_server_shops(db: Session, server_id: int, owner_id: int) -> list[Shop]:
    server = get_owned_server(db, server_id, owner_id)
    return db.query(Shop).filter(Shop.server_id == server.id).order_by(Shop.id).all()


def delete_server(db: Session, server_id: int, owner_id: int) -> None:
    """
    Remove a server. Its shops are unlinked and set inactive and their open
    subscriptions cancelled, all in one transaction. Payment history stays.
    """
    server = get_owned_server(db, server_id, owner_id)

    try:
        shops = db.query(Shop).filter(Shop.server_id == server.id).all()
        shop_ids = [shop.id for shop in shops]

        cancelled = 0
        if shop_ids:
            cancelled = (
                db.query(Subscription)
                .filter(Subscription.shop_id.in_(shop_ids), Subscription.status.in_(_OPEN_STATUSES))
                .update({Subscription.status: "cancelled"}, synchronize_session="fetch")
            )

        for shop in shops:
            shop.unlink_server()
            shop.subscription_status = "inactive"

        db.delete(server)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Server {server_id} deleted by {owner_id}: "
        f"{len(shop_ids)} shops unlinked, {cancelled} subscriptions cancelled"
    )
