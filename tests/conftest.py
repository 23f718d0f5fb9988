"""
Shared fixtures for billing engine tests.

Each test gets its own SQLite file database. Transactions open with
BEGIN IMMEDIATE so concurrent writers serialize the way row locks do on
PostgreSQL.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from core.config import settings
from core.dependencies import get_notifier
from core.soft_delete import setup_soft_delete_events
from database import get_db
from database.base import Base
from database.models import Plan, PlanFeature, Tenant, UserTenantRole
from services.notifier import Notifier
from services.subscription import SubscriptionService


class RecordingNotifier(Notifier):
    """Keeps published events in memory."""

    def __init__(self):
        self.events = []

    def publish(self, event_type, tenant_id, payload):
        self.events.append((event_type, tenant_id, payload))

    def names(self):
        return [name for name, _, _ in self.events]

    def of_type(self, event_type):
        return [payload for name, _, payload in self.events if name == event_type]

    def clear(self):
        self.events = []


# ==================== DATABASE ====================

@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'billing.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    setup_soft_delete_events()
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def subscription_service(db_session, notifier):
    return SubscriptionService(db_session, notifier)


# ==================== DATA ====================

@pytest.fixture
def make_tenant(db_session):
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        tenant = Tenant(name=name or f"Tenant {counter['n']}", slug=f"tenant-{counter['n']}")
        db_session.add(tenant)
        db_session.commit()
        return tenant

    return _make


@pytest.fixture
def tenant(make_tenant):
    return make_tenant("Acme Campaigns")


@pytest.fixture
def make_member(db_session):
    def _make(user_id, tenant, role="owner"):
        membership = UserTenantRole(user_id=user_id, tenant_id=tenant.id, role=role)
        db_session.add(membership)
        db_session.commit()
        return membership

    return _make


@pytest.fixture
def make_plan(db_session):
    def _make(name="Plan", price="0.00", features=(), **values):
        plan = Plan(name=name, price=Decimal(price), **values)
        db_session.add(plan)
        db_session.flush()
        for order, (key, value) in enumerate(features):
            db_session.add(PlanFeature(
                plan_id=plan.id, name=key, feature_key=key,
                feature_value=value, display_order=order,
            ))
        db_session.commit()
        return plan

    return _make


@pytest.fixture
def free_plan(make_plan):
    return make_plan(
        "Starter", "0.00",
        max_messages_per_month=100, max_whatsapp_instances=1,
        features=[("messages_sent", "100"), ("whatsapp_instances", "1")],
    )


@pytest.fixture
def paid_plan(make_plan):
    return make_plan(
        "Business", "49.00",
        max_messages_per_month=3, max_whatsapp_instances=2,
        features=[("messages_sent", "3"), ("api_access", "true")],
    )


@pytest.fixture
def trial_plan(make_plan):
    return make_plan("Growth", "29.00", trial_days=14, max_messages_per_month=1000)


# ==================== API ====================

def make_token(user_id, **claims):
    payload = {"sub": str(user_id), "type": "access", **claims}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def auth_headers(user_id, **claims):
    return {"Authorization": f"Bearer {make_token(user_id, **claims)}"}


@pytest.fixture
def client(session_factory, notifier):
    from app import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    # No context manager: the lifespan (init_db, seeding) targets the real database
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers():
    """headers(user_id, **claims) -> Authorization header for the test client."""
    return auth_headers
