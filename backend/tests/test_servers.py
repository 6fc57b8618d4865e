import pytest

from subscriptn.exceptions import AuthorizationError, NotFoundError
from subscriptn.models import Server, Shop, Subscription, SubscriptionHistory, ROLE_PROVIDER
from subscriptn.services import servers as server_service
from subscriptn.services.subscriptions import append_history


def test_create_requires_provider(db, shop_owner):
    with pytest.raises(AuthorizationError):
        server_service.create_server(db, shop_owner, "Nope", "https://x.example", "key")


def test_public_servers_report_slots(db, make_server, make_shop):
    full = make_server(name="Full", slots_available=2)
    roomy = make_server(name="Roomy", slots_available=5)
    make_server(name="Hidden", is_public=False)
    for _ in range(2):
        make_shop(server=full, subscription_status="active")
    make_shop(server=roomy, subscription_status="active")
    make_shop(server=roomy, subscription_status="inactive")

    servers = server_service.list_public_servers(db)

    assert [s["name"] for s in servers] == ["Roomy"]
    assert servers[0]["current_shops"] == 1
    assert servers[0]["available_slots"] == 4
    assert "api_key" not in servers[0]


def test_get_owned_server_errors(db, make_server, make_user):
    server = make_server()

    with pytest.raises(NotFoundError):
        server_service.get_owned_server(db, 999, server.owner_id)
    with pytest.raises(AuthorizationError):
        server_service.get_owned_server(db, server.id, make_user(ROLE_PROVIDER).id)


def test_delete_cascades_to_shops_and_subscriptions(db, make_server, make_shop, make_subscription, provider):
    server = make_server()
    shop_a = make_shop(server=server, subscription_status="active")
    shop_b = make_shop(server=server, subscription_status="pending")
    elsewhere = make_shop(server=make_server(name="Other"), subscription_status="active")

    active = make_subscription(shop_a, status="active")
    old = make_subscription(shop_a, status="expired")
    pending = make_subscription(shop_b, status="pending")
    untouched = make_subscription(elsewhere, status="active")
    append_history(db, active, 1000, "success", "nwc")
    db.commit()

    server_service.delete_server(db, server.id, provider.id)

    assert db.query(Server).filter(Server.id == server.id).first() is None
    for shop in (shop_a, shop_b):
        db.refresh(shop)
        assert shop.server_id is None
        assert shop.server_linked is False
        assert shop.subscription_status == "inactive"
    for subscription, status in ((active, "cancelled"), (old, "expired"), (pending, "cancelled"), (untouched, "active")):
        db.refresh(subscription)
        assert subscription.status == status
    assert db.query(SubscriptionHistory).count() == 1


def test_delete_by_non_owner_changes_nothing(db, make_server, make_shop, make_user):
    server = make_server()
    shop = make_shop(server=server)

    with pytest.raises(AuthorizationError):
        server_service.delete_server(db, server.id, make_user(ROLE_PROVIDER).id)

    db.refresh(shop)
    assert shop.server_id == server.id


# ============== HTTP ==============

def test_server_endpoints(client_for, provider, make_user):
    client = client_for(provider)
    body = {
        "name": "Lightning Node",
        "host_url": "https://btcpay.example.com",
        "api_key": "secret-api-key",
        "lightning_address": "node@getalby.com",
    }

    created = client.post("/servers", json=body)
    assert created.status_code == 201
    server = created.json()
    assert server["slots_available"] == 21
    assert server["available_slots"] == 21
    assert server["is_owner"] is True
    assert "api_key" not in server

    assert [s["id"] for s in client.get("/servers").json()] == [server["id"]]
    assert client.get(f"/servers/{server['id']}").status_code == 200
    assert client.get("/servers/public").json()["servers"][0]["name"] == "Lightning Node"

    other = client_for(make_user(ROLE_PROVIDER))
    assert other.get(f"/servers/{server['id']}").status_code == 403
    assert other.delete(f"/servers/{server['id']}").status_code == 403
    assert client.delete("/servers/9999").status_code == 404
    assert client.delete(f"/servers/{server['id']}").status_code == 200
    assert client.get("/servers").json() == []


def test_shop_owner_cannot_create_server(client_for, shop_owner):
    response = client_for(shop_owner).post(
        "/servers", json={"name": "Mine", "host_url": "https://x.example", "api_key": "k"}
    )
    assert response.status_code == 403


def test_server_validation(client_for, provider):
    response = client_for(provider).post(
        "/servers", json={"name": "Bad", "host_url": "ftp://x.example", "api_key": "k"}
    )
    assert response.status_code == 400


def test_server_shops_endpoint(client_for, provider, make_server, make_shop):
    server = make_server()
    shop = make_shop(server=server)

    shops = client_for(provider).get(f"/servers/{server.id}/shops").json()

    assert [s["id"] for s in shops] == [shop.id]
    assert shops[0]["server_name"] == server.name


def test_delete_endpoint_cascade(client_for, provider, make_server, make_shop, make_subscription, db):
    server = make_server()
    shop = make_shop(server=server, subscription_status="active")
    subscription = make_subscription(shop)

    response = client_for(provider).delete(f"/servers/{server.id}")

    assert response.status_code == 200
    db.refresh(shop)
    db.refresh(subscription)
    assert (shop.server_linked, shop.subscription_status) == (False, "inactive")
    assert subscription.status == "cancelled"
    assert db.query(Shop).count() == 1
    assert db.query(Subscription).count() == 1


def test_public_servers_envelope_when_empty(client):
    response = client.get("/servers/public")

    assert response.status_code == 200
    assert response.json() == {"servers": []}
