import os
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine, select

# set before lab_ledger caches its settings
os.environ.setdefault("secret_key", "test_secret")

from lab_ledger.actor import Actor
from lab_ledger.config import Settings
from lab_ledger.db import Store
from lab_ledger.main import create_app
from lab_ledger.models import Item, Role, User
from lab_ledger.security import hash_password
from lab_ledger.services.coordinator import TransactionCoordinator


def memory_store() -> Store:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return Store(engine=engine).open()


@pytest.fixture
def store_factory():
    stores = []

    def make(url: str | None = None) -> Store:
        store = Store(url, busy_timeout=10.0).open() if url else memory_store()
        stores.append(store)
        return store

    yield make
    for store in stores:
        store.close()


@pytest.fixture
def store(store_factory) -> Store:
    return store_factory()


@pytest.fixture
def coordinator(store) -> TransactionCoordinator:
    return TransactionCoordinator(store, retry_backoff=0)


@pytest.fixture
def make_user(store):
    def make(username: str, role: str = Role.MEMBER.value, password: str = "secret", on: Store | None = None) -> Actor:
        with (on or store).session() as session:
            user = User(username=username, password_hash=hash_password(password), role=role)
            session.add(user)
            session.commit()
            return Actor.from_user(user)

    return make


@pytest.fixture
def make_item(store):
    def make(name: str = "Oscilloscope", quantity: int = 5, cabinet: str = "C1", on: Store | None = None) -> int:
        with (on or store).session() as session:
            item = Item(name=name, cabinet=cabinet, quantity=quantity)
            session.add(item)
            session.commit()
            return item.id

    return make


@pytest.fixture
def admin(make_user) -> Actor:
    return make_user("admin", Role.ADMIN.value)


@pytest.fixture
def member(make_user) -> Actor:
    return make_user("member")


@pytest.fixture
def quantity_of(store):
    def read(item_id: int, on: Store | None = None) -> int:
        with (on or store).session() as session:
            return session.get(Item, item_id).quantity

    return read


@pytest.fixture
def count_rows(store):
    def count(model, *where, on: Store | None = None) -> int:
        with (on or store).session() as session:
            stmt = select(func.count()).select_from(model)
            if where:
                stmt = stmt.where(*where)
            return session.exec(stmt).one()

    return count


@pytest.fixture
def client(store):
    app = create_app(Settings(secret_key="test_secret", log_level="WARNING"), store=store)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def login(client):
    def token_headers(username: str, password: str = "secret") -> dict:
        r = client.post("/auth/login", data={"username": username, "password": password})
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return token_headers
