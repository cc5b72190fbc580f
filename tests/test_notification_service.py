import aiohttp
import pytest

from app.core.config import settings
from app.services.notification_service import PushNotificationService


class DummyResponse:
    def __init__(self, status=200, payload=None):
        self.status = status
        self._payload = payload if payload is not None else {"success": 1, "failure": 0}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type="application/json"):
        return self._payload


class DummySession:
    def __init__(self, response=None, error=None):
        self.response = response or DummyResponse()
        self.error = error
        self.last_url = None
        self.last_json = None
        self.last_headers = None
        self.closed = False

    def post(self, url, json=None, headers=None, timeout=None):
        if self.error is not None:
            raise self.error
        self.last_url = url
        self.last_json = json
        self.last_headers = headers
        return self.response


def _enabled_service(monkeypatch, session):
    monkeypatch.setattr(settings, "FCM_ENABLED", True)
    monkeypatch.setattr(settings, "FCM_URL", "https://fcm.example.com/send")
    monkeypatch.setattr(settings, "FCM_SERVER_KEY", "server-key")
    service = PushNotificationService()
    service._session = session
    return service


@pytest.mark.asyncio
async def test_notify_without_token_is_not_sent(monkeypatch):
    session = DummySession()
    service = _enabled_service(monkeypatch, session)

    sent = await service.notify("Title", "Body", "")

    assert not sent
    assert session.last_url is None


@pytest.mark.asyncio
async def test_notify_disabled_only_logs(monkeypatch):
    monkeypatch.setattr(settings, "FCM_ENABLED", False)
    service = PushNotificationService()

    assert await service.notify("Title", "Body", "device-token")
    assert not service.is_enabled()


@pytest.mark.asyncio
async def test_notify_without_server_key_fails(monkeypatch):
    service = _enabled_service(monkeypatch, DummySession())
    service.fcm_config["server_key"] = ""

    assert not await service.notify("Title", "Body", "device-token")


@pytest.mark.asyncio
async def test_notify_posts_message_to_device_token(monkeypatch):
    session = DummySession()
    service = _enabled_service(monkeypatch, session)

    sent = await service.notify("ETH alert", "Price crossed", "device-token", data={"slug": "eth-alert"})

    assert sent
    assert service.is_enabled()
    assert session.last_url == "https://fcm.example.com/send"
    assert session.last_headers["Authorization"] == "key=server-key"
    assert session.last_json == {
        "to": "device-token",
        "notification": {"title": "ETH alert", "body": "Price crossed"},
        "data": {"slug": "eth-alert"},
    }


@pytest.mark.asyncio
async def test_notify_reports_delivery_failure(monkeypatch):
    session = DummySession(DummyResponse(payload={"success": 0, "failure": 1, "results": [{"error": "NotRegistered"}]}))
    service = _enabled_service(monkeypatch, session)

    assert not await service.notify("Title", "Body", "stale-token")


@pytest.mark.asyncio
async def test_notify_reports_rejected_status(monkeypatch):
    service = _enabled_service(monkeypatch, DummySession(DummyResponse(status=401)))

    assert not await service.notify("Title", "Body", "device-token")


@pytest.mark.asyncio
async def test_notify_reports_connection_error(monkeypatch):
    service = _enabled_service(monkeypatch, DummySession(error=aiohttp.ClientConnectionError("refused")))

    assert not await service.notify("Title", "Body", "device-token")
