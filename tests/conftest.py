import os
import tempfile

# Tests never touch the configured database server.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FCM_ENABLED"] = "false"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "alert_service_tests.log")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.account import Account
from app.models.alert import Alert
from app.services.account_store import AccountStore
from app.services.alert_store import AlertStore


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def alert_store(session_factory):
    return AlertStore(session_factory)


@pytest.fixture
def account_store(session_factory):
    return AccountStore(session_factory)


@pytest.fixture
def make_account(account_store):
    def _make(username, token="device-token", api_key=None):
        return account_store.save_account(
            Account(
                username=username,
                email=f"{username}@example.com",
                password="password",
                token=token,
                api_key=api_key,
            )
        )

    return _make


def new_alert(title, account, slug=None, **overrides):
    fields = {
        "slug": slug,
        "title": title,
        "body": f"{title} body",
        "pair_address": "0xa478c2975ab1ea89e8196811f51a7b7ade33eb11",
        "alert_type": "price",
        "alert_value": "1.5",
        "alert_option": "above",
        "expiration_time": datetime.now(timezone.utc) + timedelta(days=1),
        "alert_actions": '{"notify": true}',
        "account_id": account.id,
    }
    fields.update(overrides)
    return Alert(**fields)
