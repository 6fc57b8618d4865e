from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from subscriptn.database import init_db
from subscriptn.exceptions import ConflictError, NotFoundError, ValidationError
from subscriptn.models import Shop, Subscription, SubscriptionHistory, User
from subscriptn.services import subscriptions as subscription_service


# ============== Service ==============

def test_create_subscription(db, make_shop, shop_owner):
    shop = make_shop()
    subscription = subscription_service.create_subscription(db, shop.id, shop_owner.id, 5000, "monthly")

    assert subscription.status == "active"
    assert subscription.amount_sats == 5000
    assert subscription.zap_planner_id is None


@pytest.mark.parametrize("amount", [0, -1, 1_000_001, 1.5, "100", True, None])
def test_invalid_amount_rejected_before_write(db, make_shop, shop_owner, amount):
    shop = make_shop()

    with pytest.raises(ValidationError):
        subscription_service.create_subscription(db, shop.id, shop_owner.id, amount, "monthly")

    assert db.query(Subscription).count() == 0


def test_amount_bounds_are_inclusive(db, make_shop, shop_owner):
    low = subscription_service.create_subscription(db, make_shop().id, shop_owner.id, 1, "daily")
    high = subscription_service.create_subscription(db, make_shop().id, shop_owner.id, 1_000_000, "yearly")
    assert (low.amount_sats, high.amount_sats) == (1, 1_000_000)


def test_invalid_interval_rejected(db, make_shop, shop_owner):
    with pytest.raises(ValidationError):
        subscription_service.create_subscription(db, make_shop().id, shop_owner.id, 100, "hourly")
    assert db.query(Subscription).count() == 0


def test_second_active_subscription_conflicts(db, make_shop, shop_owner):
    shop = make_shop()
    subscription_service.create_subscription(db, shop.id, shop_owner.id, 100, "weekly")

    with pytest.raises(ConflictError):
        subscription_service.create_subscription(db, shop.id, shop_owner.id, 200, "weekly")

    assert db.query(Subscription).filter(Subscription.shop_id == shop.id).count() == 1


def test_new_subscription_allowed_after_cancel(db, make_shop, shop_owner):
    shop = make_shop()
    first = subscription_service.create_subscription(db, shop.id, shop_owner.id, 100, "weekly")
    subscription_service.cancel_subscription(db, first.id, shop_owner.id)

    second = subscription_service.create_subscription(db, shop.id, shop_owner.id, 200, "weekly")
    assert second.status == "active"


def test_partial_index_rejects_direct_insert(db, make_shop, make_subscription):
    shop = make_shop()
    make_subscription(shop, status="active")

    db.add(Subscription(shop_id=shop.id, amount_sats=10, interval="daily", status="active"))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_other_users_shop_is_not_found(db, make_shop, make_user):
    shop = make_shop()
    stranger = make_user()

    with pytest.raises(NotFoundError):
        subscription_service.create_subscription(db, shop.id, stranger.id, 100, "daily")


def test_cancel_is_idempotent_and_deactivates_shop(db, make_shop, make_subscription, shop_owner):
    shop = make_shop(subscription_status="active")
    subscription = make_subscription(shop)

    subscription_service.cancel_subscription(db, subscription.id, shop_owner.id)
    again = subscription_service.cancel_subscription(db, subscription.id, shop_owner.id)

    db.refresh(shop)
    assert again.status == "cancelled"
    assert shop.subscription_status == "inactive"


def test_record_success_activates_subscription_and_shop(db, make_shop, make_subscription):
    shop = make_shop(subscription_status="pending")
    subscription = make_subscription(shop, status="pending")

    entry = subscription_service.record_payment(db, subscription, 1000, "success", "manual", preimage="ff" * 32)

    db.refresh(subscription)
    db.refresh(shop)
    assert entry.id is not None
    assert subscription.status == "active"
    assert shop.subscription_status == "active"


def test_record_failure_leaves_status(db, make_shop, make_subscription):
    shop = make_shop(subscription_status="pending")
    subscription = make_subscription(shop, status="pending")

    subscription_service.record_payment(db, subscription, 1000, "failed", "manual")

    db.refresh(subscription)
    assert subscription.status == "pending"
    assert subscription_service.count_failed_payments(db, subscription.id) == 1


def test_record_payment_rejects_bad_status_without_writing(db, make_shop, make_subscription):
    subscription = make_subscription(make_shop())

    with pytest.raises(ValidationError):
        subscription_service.record_payment(db, subscription, 1000, "refunded", "manual")

    assert db.query(SubscriptionHistory).count() == 0


def test_record_success_conflicts_with_other_active(db, make_shop, make_subscription):
    shop = make_shop()
    make_subscription(shop, status="active")
    old = make_subscription(shop, status="inactive")

    with pytest.raises(ConflictError):
        subscription_service.record_payment(db, old, 1000, "success", "manual")

    # The whole write rolled back, history included
    assert db.query(SubscriptionHistory).count() == 0
    db.refresh(old)
    assert old.status == "inactive"


def test_history_is_newest_first(db, make_shop, make_subscription, shop_owner):
    subscription = make_subscription(make_shop())
    for status in ("failed", "failed", "success"):
        subscription_service.record_payment(db, subscription, 1000, status, "manual")

    history = subscription_service.get_subscription_history(db, subscription.id, shop_owner.id)

    assert [h.status for h in history] == ["success", "failed", "failed"]


# ============== Concurrency ==============

def test_concurrent_creates_yield_one_active(tmp_path):
    """Parallel creates on separate connections: exactly one wins."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with Session() as setup:
        owner = User(username="racer", password_hash="x", role="shop_owner")
        setup.add(owner)
        setup.commit()
        shop = Shop(name="Race Shop", owner_id=owner.id, server_linked=False)
        setup.add(shop)
        setup.commit()
        owner_id, shop_id = owner.id, shop.id

    def attempt(_):
        with Session() as session:
            try:
                subscription_service.create_subscription(session, shop_id, owner_id, 100, "daily")
                return "created"
            except ConflictError:
                return "conflict"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(16)))

    with Session() as check:
        active = check.query(Subscription).filter(
            Subscription.shop_id == shop_id, Subscription.status == "active"
        ).count()

    engine.dispose()
    assert outcomes.count("created") == 1
    assert outcomes.count("conflict") == 15
    assert active == 1


# ============== HTTP ==============

def test_create_subscription_endpoint(client_for, shop_owner, make_shop):
    shop = make_shop()
    client = client_for(shop_owner)

    response = client.post("/subscriptions", json={"shop_id": shop.id, "amount_sats": 2100, "interval": "weekly"})

    assert response.status_code == 201
    body = response.json()["subscription"]
    assert body["status"] == "active"
    assert body["shop_name"] == shop.name
    assert body["has_nwc_connection"] is False

    duplicate = client.post("/subscriptions", json={"shop_id": shop.id, "amount_sats": 2100, "interval": "weekly"})
    assert duplicate.status_code == 409


@pytest.mark.parametrize("body", [
    {"shop_id": 1, "amount_sats": 0, "interval": "weekly"},
    {"shop_id": 1, "amount_sats": 1_000_001, "interval": "weekly"},
    {"shop_id": 1, "amount_sats": 10, "interval": "fortnightly"},
    {"shop_id": 1, "amount_sats": "lots", "interval": "weekly"},
    {"amount_sats": 10, "interval": "weekly"},
])
def test_create_subscription_bad_input_is_400(client_for, shop_owner, make_shop, db, body):
    make_shop()
    response = client_for(shop_owner).post("/subscriptions", json=body)

    assert response.status_code == 400
    assert db.query(Subscription).count() == 0


def test_create_subscription_requires_session(client):
    response = client.post("/subscriptions", json={"shop_id": 1, "amount_sats": 10, "interval": "weekly"})
    assert response.status_code == 401


def test_subscription_rate_limit(client_for, shop_owner, make_shop):
    client = client_for(shop_owner)
    shop = make_shop()

    statuses = [
        client.post("/subscriptions", json={"shop_id": shop.id, "amount_sats": 10, "interval": "daily"}).status_code
        for _ in range(11)
    ]

    assert statuses[0] == 201
    assert statuses[1:10] == [409] * 9
    assert statuses[10] == 429


def test_recorded_payment_is_read_back(client_for, shop_owner, make_shop, make_subscription, db):
    shop = make_shop(subscription_status="pending")
    subscription = make_subscription(shop, status="pending")
    client = client_for(shop_owner)

    created = client.post(
        f"/subscriptions/{subscription.id}/payments",
        json={"amount_sats": 1000, "status": "success", "payment_method": "manual", "preimage": "ab" * 32},
    )
    assert created.status_code == 201

    listing = client.get("/subscriptions").json()
    assert listing[0]["status"] == "active"
    history = client.get(f"/subscriptions/{subscription.id}/history").json()
    assert history[0]["id"] == created.json()["id"]
    assert client.get(f"/shops/{shop.id}").json()["subscription_status"] == "active"


def test_cancel_endpoint_and_ownership(client_for, shop_owner, make_user, make_shop, make_subscription, db):
    subscription = make_subscription(make_shop())
    stranger = client_for(make_user())

    assert stranger.post(f"/subscriptions/{subscription.id}/cancel").status_code == 404
    assert stranger.get(f"/subscriptions/{subscription.id}/history").status_code == 404

    response = client_for(shop_owner).post(f"/subscriptions/{subscription.id}/cancel")
    assert response.status_code == 200
    assert response.json() == {"success": True}
    db.refresh(subscription)
    assert subscription.status == "cancelled"


def test_shop_subscriptions_listing(client_for, shop_owner, make_shop, make_subscription):
    shop = make_shop()
    make_subscription(shop, status="cancelled")
    make_subscription(shop, status="active")

    response = client_for(shop_owner).get(f"/shops/{shop.id}/subscriptions")

    assert response.status_code == 200
    assert len(response.json()) == 2
