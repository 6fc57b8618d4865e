# Shared pytest configuration and fixtures
import os

# Settings are cached on first import; configure them before the app loads
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-session-tokens-0123456789")
os.environ.setdefault("NWC_ENCRYPTION_KEY", "0f" * 32)
os.environ.setdefault("PAYMENT_BACKEND_URL", "https://wallet.test")
os.environ.setdefault("PAYMENT_BACKEND_API_KEY", "test-backend-key")

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from subscriptn.database import Base, get_db, init_db
from subscriptn.main import app
from subscriptn.models import Server, Shop, Subscription, ROLE_PROVIDER, ROLE_SHOP_OWNER
from subscriptn.routers.payments import get_payment_client
from subscriptn.services.auth import create_session_token, create_user
from subscriptn.services.nwc_client import LightningPaymentClient
from subscriptn.services.rate_limiter import ALL_LIMITERS

VALID_NWC = (
    "nostr+walletconnect://" + "a1" * 32
    + "?relay=wss://relay.getalby.com/v1&secret=" + "b2" * 32
)
RECIPIENT = "provider@getalby.com"
PREIMAGE = "c3" * 32


@pytest.fixture(autouse=True)
def reset_rate_limiters():
    """Every test starts with empty rate-limit windows."""
    for limiter in ALL_LIMITERS:
        limiter.reset()
    yield
    for limiter in ALL_LIMITERS:
        limiter.reset()


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads through a single connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app_with_db(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app_with_db):
    """Anonymous client. Not used as a context manager so the scheduler stays off."""
    return TestClient(app_with_db)


@pytest.fixture
def client_for(app_with_db):
    """Build a client carrying a session cookie for the given user."""
    def _client_for(user):
        c = TestClient(app_with_db)
        c.cookies.set("session", create_session_token(user.id))
        return c
    return _client_for


# ============== Factories ==============

@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=ROLE_SHOP_OWNER, username=None, password="password123"):
        counter["n"] += 1
        return create_user(db, username or f"{role}_{counter['n']}", password, role)
    return _make_user


@pytest.fixture
def provider(make_user):
    return make_user(ROLE_PROVIDER, username="provider")


@pytest.fixture
def shop_owner(make_user):
    return make_user(ROLE_SHOP_OWNER, username="shopowner")


@pytest.fixture
def make_server(db, provider):
    def _make_server(owner=None, name="Main BTCPay", lightning_address=RECIPIENT, **kwargs):
        server = Server(
            name=name,
            host_url="https://btcpay.example.com",
            api_key="server-api-key",
            owner_id=(owner or provider).id,
            lightning_address=lightning_address,
            **kwargs,
        )
        db.add(server)
        db.commit()
        db.refresh(server)
        return server
    return _make_server


@pytest.fixture
def make_shop(db, shop_owner):
    counter = {"n": 0}

    def _make_shop(owner=None, server=None, name=None, **kwargs):
        counter["n"] += 1
        shop = Shop(
            name=name or f"Shop {counter['n']}",
            owner_id=(owner or shop_owner).id,
            subscription_status=kwargs.pop("subscription_status", "inactive"),
            server_linked=False,
            **kwargs,
        )
        if server is not None:
            shop.link_server(server)
        db.add(shop)
        db.commit()
        db.refresh(shop)
        return shop
    return _make_shop


@pytest.fixture
def make_subscription(db):
    def _make_subscription(shop, status="active", amount_sats=1000, interval="monthly", zap_planner_id=None):
        subscription = Subscription(
            shop_id=shop.id,
            amount_sats=amount_sats,
            interval=interval,
            status=status,
            zap_planner_id=zap_planner_id,
        )
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription
    return _make_subscription


# ============== Outbound HTTP ==============

def wallet_handler(pay_response=None, lnurl_status=200, pay_request=None):
    """MockTransport handler serving LNURL-pay and the NWC wallet service."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/.well-known/lnurlp/provider":
            if lnurl_status != 200:
                return httpx.Response(lnurl_status, json={"status": "ERROR", "reason": "not found"})
            if pay_request is not None:
                return httpx.Response(200, json=pay_request)
            return httpx.Response(200, json={
                "tag": "payRequest",
                "callback": "https://getalby.com/lnurlp/provider/callback",
                "minSendable": 1000,
                "maxSendable": 100_000_000_000,
            })
        if request.url.path == "/lnurlp/provider/callback":
            return httpx.Response(200, json={"pr": "lnbc10u1ptestinvoice", "routes": []})
        if request.url.host == "wallet.test" and request.url.path == "/nwc/pay_invoice":
            if pay_response is not None:
                return pay_response
            return httpx.Response(200, json={"preimage": PREIMAGE})
        return httpx.Response(404)

    handler.requests = requests
    return handler


@pytest.fixture
def payment_client():
    """Payment client whose outbound calls all succeed."""
    client = LightningPaymentClient(transport=httpx.MockTransport(wallet_handler()))
    yield client
    client.close()


@pytest.fixture
def use_payment_client(app_with_db):
    """Route the payments endpoints through a client built on the given handler."""
    def _use(handler):
        def override():
            client = LightningPaymentClient(transport=httpx.MockTransport(handler))
            try:
                yield client
            finally:
                client.close()
        app_with_db.dependency_overrides[get_payment_client] = override
    return _use
