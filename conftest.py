import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEBUG", "false")

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database.database import Base, get_db
from app.main import app
from app.modules.auth.utils import create_context_token
from app.modules.lottery.models import LotteryBin, LotteryPack, PackStatus, bin_name
from app.modules.stores.models import Store


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def executed_statements(engine):
    """SQL statements executed on the test engine after this fixture is requested."""
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", _record)
    yield statements
    event.remove(engine, "before_cursor_execute", _record)


@pytest.fixture
def tenant_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def store(db_session, tenant_id):
    store = Store(tenant_id=tenant_id, name="Main Street Market", address="12 Main St")
    db_session.add(store)
    db_session.commit()
    db_session.refresh(store)
    return store


@pytest.fixture
def make_bins(db_session):
    """
    Create bins for a store: ``count`` bins with display_order 0..count-1.
    ``inactive`` lists display orders created soft-deleted and ``packed``
    lists display orders that receive one ACTIVE pack.
    """
    def _make_bins(store, count, inactive=(), packed=()):
        bins = []
        for order in range(count):
            lottery_bin = LotteryBin(
                tenant_id=store.tenant_id,
                store_id=store.id,
                name=bin_name(order),
                display_order=order,
                is_active=order not in inactive,
            )
            db_session.add(lottery_bin)
            bins.append(lottery_bin)
        db_session.flush()
        for order in packed:
            db_session.add(LotteryPack(
                tenant_id=store.tenant_id,
                store_id=store.id,
                bin_id=bins[order].id,
                game_code="101",
                pack_number=f"{order:07d}",
                status=PackStatus.ACTIVE,
            ))
        store.lottery_bin_count = count - len(inactive)
        db_session.commit()
        return bins
    return _make_bins


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(tenant_id, user_id):
    """Headers for a context token with the given role in the test tenant."""
    def _auth_headers(role="owner", tenant=None):
        tenant = tenant or tenant_id
        token = create_context_token({
            "sub": str(user_id),
            "tenant_id": str(tenant),
            "user_role": role,
        })
        return {"Authorization": f"Bearer {token}", "X-Company-ID": str(tenant)}
    return _auth_headers
