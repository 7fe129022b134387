"""
Shared test fixtures

Every test gets its own in-memory SQLite database with the full schema.
"""
import os
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

from mentionradar.db.database import Base  # noqa: E402
from mentionradar.db.models import Monitor, Result, Tenant, Webhook  # noqa: E402
from mentionradar.tests.fixtures.redis_fixtures import fake_redis  # noqa: E402,F401

FIXED_NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def test_engine():
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
def test_db(test_engine):
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    db = TestingSession()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_tenant(test_db):
    counter = {"n": 0}

    def _make(tier="free", **kwargs):
        counter["n"] += 1
        tenant = Tenant(email=f"tenant{counter['n']}@example.com", subscription_tier=tier, **kwargs)
        test_db.add(tenant)
        test_db.commit()
        return tenant

    return _make


@pytest.fixture
def make_monitor(test_db):
    def _make(tenant, **kwargs):
        values = {
            "name": "Acme mentions",
            "keywords": ["acme"],
            "platforms": ["reddit"],
            "is_active": True,
        }
        values.update(kwargs)
        monitor = Monitor(tenant_id=tenant.id, **values)
        test_db.add(monitor)
        test_db.commit()
        return monitor

    return _make


@pytest.fixture
def make_result(test_db):
    counter = {"n": 0}

    def _make(monitor, **kwargs):
        counter["n"] += 1
        values = {
            "platform": "reddit",
            "source_url": f"https://www.reddit.com/r/saas/comments/{counter['n']}",
            "title": f"Post {counter['n']} about acme",
            "content": "Looking for a tool like acme for our team",
        }
        values.update(kwargs)
        result = Result(monitor_id=monitor.id, **values)
        test_db.add(result)
        test_db.commit()
        return result

    return _make


@pytest.fixture
def make_webhook(test_db):
    def _make(tenant, **kwargs):
        values = {
            "name": "Ops endpoint",
            "url": "https://hooks.example.com/mentions",
            "secret": "s3cret",
            "events": ["*"],
            "is_active": True,
        }
        values.update(kwargs)
        webhook = Webhook(tenant_id=tenant.id, **values)
        test_db.add(webhook)
        test_db.commit()
        return webhook

    return _make
