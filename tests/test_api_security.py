import asyncio
import time

import pytest
from fastapi import HTTPException

from app.api import security
from app.core.errors import InternalError


@pytest.mark.asyncio
async def test_require_account_without_store_is_unavailable(monkeypatch):
    monkeypatch.setattr(security, "account_store", None)

    with pytest.raises(HTTPException) as exc:
        await security.require_account("any-key")
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_require_account_rejects_missing_or_unknown_key(monkeypatch, account_store, make_account):
    monkeypatch.setattr(security, "account_store", account_store)
    make_account("user1", api_key="secret-key")

    with pytest.raises(HTTPException) as missing_exc:
        await security.require_account(None)
    assert missing_exc.value.status_code == 401

    with pytest.raises(HTTPException) as invalid_exc:
        await security.require_account("wrong")
    assert invalid_exc.value.status_code == 401


@pytest.mark.asyncio
async def test_require_account_resolves_owner(monkeypatch, account_store, make_account):
    monkeypatch.setattr(security, "account_store", account_store)
    user = make_account("user1", api_key="secret-key")

    account = await security.require_account("secret-key")
    assert account.id == user.id
    assert account.username == "user1"


@pytest.mark.asyncio
async def test_require_account_store_failure_is_internal_error(monkeypatch, account_store):
    def broken_lookup(api_key):
        raise InternalError("database unavailable")

    monkeypatch.setattr(account_store, "find_by_api_key", broken_lookup)
    monkeypatch.setattr(security, "account_store", account_store)

    with pytest.raises(HTTPException) as exc:
        await security.require_account("secret-key")
    assert exc.value.status_code == 500


@pytest.mark.asyncio
async def test_require_account_lookup_runs_off_the_event_loop(monkeypatch, account_store, make_account):
    user = make_account("user1", api_key="secret-key")
    lookup = account_store.find_by_api_key

    def slow_lookup(api_key):
        time.sleep(0.3)
        return lookup(api_key)

    monkeypatch.setattr(account_store, "find_by_api_key", slow_lookup)
    monkeypatch.setattr(security, "account_store", account_store)
    loop = asyncio.get_running_loop()
    latencies = []

    async def ticker():
        for _ in range(5):
            started = loop.time()
            await asyncio.sleep(0.03)
            latencies.append(loop.time() - started)

    ticks = asyncio.create_task(ticker())
    account = await security.require_account("secret-key")
    await ticks

    assert account.id == user.id
    assert max(latencies) < 0.15
