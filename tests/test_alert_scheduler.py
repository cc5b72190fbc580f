import asyncio
import time
from types import SimpleNamespace

import pytest

from app.core.errors import InternalError, TransientIOError
from app.services.alert_scheduler import AlertEvaluationScheduler, SchedulerState
from conftest import new_alert


def _alert(alert_id, pair="pair", value="1.5", option=">=", alert_type="price", token="device-token"):
    return SimpleNamespace(
        id=alert_id,
        slug=f"alert-{alert_id}",
        title=f"Alert {alert_id}",
        body=f"Body {alert_id}",
        pair_address=pair,
        alert_type=alert_type,
        alert_value=value,
        alert_option=option,
        account=SimpleNamespace(token=token),
    )


class FakeAlertStore:
    def __init__(self, alerts):
        self.alerts = list(alerts)
        self.fail_reads = False
        self.triggered = []
        self.batch_calls = []

    def expire_alerts(self, now):
        return 0

    def find_pending_alerts(self, after_id, limit, now):
        self.batch_calls.append(after_id)
        if self.fail_reads:
            raise InternalError("database unavailable")
        pending = [alert for alert in self.alerts if alert.id > after_id and alert.id not in self.triggered]
        return sorted(pending, key=lambda alert: alert.id)[:limit]

    def mark_alert_triggered(self, alert_id):
        self.triggered.append(alert_id)
        return True

    def run_in_tx(self, fn):
        return fn(None)


class FakePriceClient:
    def __init__(self, eth_price=2000.0, derived=None, delays=None, failures=None):
        self.eth_price = eth_price
        self.derived = derived or {}
        self.delays = delays or {}
        self.failures = set(failures or [])
        self.fail_eth = False
        self.eth_calls = 0
        self.token_calls = []
        self.active = 0
        self.max_active = 0

    async def fetch_eth_price(self):
        self.eth_calls += 1
        if self.fail_eth:
            raise TransientIOError("graph unavailable")
        return self.eth_price

    async def fetch_derived_eth(self, pair_address):
        self.token_calls.append(pair_address)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(pair_address, 0))
            if pair_address in self.failures:
                raise TransientIOError(f"fetch failed for {pair_address}")
            return self.derived.get(pair_address, 0.001)
        finally:
            self.active -= 1


class FakeNotifier:
    def __init__(self, failing_titles=()):
        self.sent = []
        self.failing_titles = set(failing_titles)

    async def notify(self, title, body, token, data=None):
        if title in self.failing_titles:
            return False
        self.sent.append({"title": title, "body": body, "token": token, "data": data})
        return True


def _build_scheduler(store, client, notifier, **kwargs):
    options = {
        "interval_seconds": 0.01,
        "batch_size": 10,
        "max_concurrency": 4,
        "pass_timeout_seconds": 2.0,
        "fetch_timeout_seconds": 1.0,
        "notify_once": True,
    }
    options.update(kwargs)
    return AlertEvaluationScheduler(store, client, notifier, **options)


@pytest.mark.asyncio
async def test_triggered_alert_is_dispatched_exactly_once():
    store = FakeAlertStore([_alert(1, pair="pairX", value="1.5", option=">=")])
    client = FakePriceClient(eth_price=2000.0, derived={"pairX": 0.001})
    notifier = FakeNotifier()
    scheduler = _build_scheduler(store, client, notifier)

    result = await scheduler.run_pass()

    assert result.aborted is None
    assert result.triggered == 1
    assert result.notified == 1
    assert result.evaluations[0].computed_value == pytest.approx(2.0)
    assert len(notifier.sent) == 1
    assert notifier.sent[0]["token"] == "device-token"
    assert notifier.sent[0]["data"]["slug"] == "alert-1"
    assert client.eth_calls == 1
    assert store.triggered == [1]


@pytest.mark.asyncio
async def test_untriggered_alert_is_not_dispatched():
    store = FakeAlertStore([_alert(1, value="5", option="above")])
    notifier = FakeNotifier()
    scheduler = _build_scheduler(store, FakePriceClient(), notifier)

    result = await scheduler.run_pass()

    assert result.evaluated == 1
    assert result.triggered == 0
    assert notifier.sent == []
    assert store.triggered == []


@pytest.mark.asyncio
async def test_failed_or_slow_fetch_only_affects_its_own_alert():
    alerts = [_alert(1, pair="ok1"), _alert(2, pair="broken"), _alert(3, pair="slow"), _alert(4, pair="stuck")]
    store = FakeAlertStore(alerts)
    client = FakePriceClient(
        failures=["broken"],
        delays={"slow": 0.05, "stuck": 5.0},
    )
    notifier = FakeNotifier()
    scheduler = _build_scheduler(store, client, notifier, fetch_timeout_seconds=0.2)

    result = await scheduler.run_pass()

    assert result.aborted is None
    assert result.batch_size == 4
    assert result.evaluated == 2
    assert result.failed == 2
    assert {entry["title"] for entry in notifier.sent} == {"Alert 1", "Alert 3"}
    assert [evaluation.alert_id for evaluation in result.evaluations] == [1, 2, 3, 4]
    assert result.evaluations[1].error
    assert result.evaluations[3].error == "timeout"
    assert sorted(store.triggered) == [1, 3]


@pytest.mark.asyncio
async def test_notification_failure_does_not_block_other_alerts():
    store = FakeAlertStore([_alert(1), _alert(2), _alert(3, token=None)])
    notifier = FakeNotifier(failing_titles=["Alert 1"])
    scheduler = _build_scheduler(store, FakePriceClient(), notifier)

    result = await scheduler.run_pass()

    assert result.triggered == 3
    assert result.notified == 1
    assert [entry["title"] for entry in notifier.sent] == ["Alert 2"]
    assert store.triggered == [2]
    assert scheduler.metrics["notifications_failed"] == 1


@pytest.mark.asyncio
async def test_invalid_predicate_skips_only_that_alert():
    store = FakeAlertStore([_alert(1, option="sideways"), _alert(2, value="abc"), _alert(3)])
    notifier = FakeNotifier()
    scheduler = _build_scheduler(store, FakePriceClient(), notifier)

    result = await scheduler.run_pass()

    assert result.failed == 2
    assert [entry["title"] for entry in notifier.sent] == ["Alert 3"]


@pytest.mark.asyncio
async def test_empty_batch_has_no_side_effects():
    client = FakePriceClient()
    notifier = FakeNotifier()
    scheduler = _build_scheduler(FakeAlertStore([]), client, notifier)

    result = await scheduler.run_pass()

    assert result.batch_size == 0
    assert result.aborted is None
    assert client.eth_calls == 0
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_store_failure_aborts_pass_and_next_pass_recovers():
    store = FakeAlertStore([_alert(1)])
    store.fail_reads = True
    notifier = FakeNotifier()
    scheduler = _build_scheduler(store, FakePriceClient(), notifier)

    failed = await scheduler.run_pass()
    assert failed.aborted == "store"
    assert notifier.sent == []

    store.fail_reads = False
    recovered = await scheduler.run_pass()
    assert recovered.aborted is None
    assert len(notifier.sent) == 1
    assert scheduler.metrics["passes"] == 2
    assert scheduler.metrics["aborted"] == 1


@pytest.mark.asyncio
async def test_global_price_failure_skips_per_alert_fetches():
    client = FakePriceClient()
    client.fail_eth = True
    scheduler = _build_scheduler(FakeAlertStore([_alert(1)]), client, FakeNotifier())

    result = await scheduler.run_pass()

    assert result.aborted == "oracle"
    assert client.token_calls == []


@pytest.mark.asyncio
async def test_overlapping_pass_is_skipped():
    store = FakeAlertStore([_alert(1, pair="slow")])
    client = FakePriceClient(delays={"slow": 0.1})
    notifier = FakeNotifier()
    scheduler = _build_scheduler(store, client, notifier)

    first = asyncio.create_task(scheduler.run_pass())
    await asyncio.sleep(0.02)
    second = await scheduler.run_pass()
    first_result = await first

    assert second.skipped is True
    assert first_result.skipped is False
    assert len(notifier.sent) == 1
    assert scheduler.metrics["skipped_ticks"] == 1


@pytest.mark.asyncio
async def test_pass_deadline_cancels_outstanding_work():
    store = FakeAlertStore([_alert(1, pair="stuck")])
    client = FakePriceClient(delays={"stuck": 5.0})
    scheduler = _build_scheduler(store, client, FakeNotifier(), pass_timeout_seconds=0.1, fetch_timeout_seconds=10.0)

    result = await scheduler.run_pass()

    assert result.aborted == "timeout"
    assert client.active == 0
    assert scheduler.metrics["timeouts"] == 1


@pytest.mark.asyncio
async def test_fetch_concurrency_is_bounded():
    alerts = [_alert(index, pair=f"pair{index}") for index in range(1, 11)]
    client = FakePriceClient(delays={f"pair{index}": 0.02 for index in range(1, 11)})
    scheduler = _build_scheduler(FakeAlertStore(alerts), client, FakeNotifier(), max_concurrency=3)

    result = await scheduler.run_pass()

    assert result.evaluated == 10
    assert client.max_active <= 3


@pytest.mark.asyncio
async def test_batches_rotate_through_alerts():
    store = FakeAlertStore([_alert(1, value="99"), _alert(2, value="99"), _alert(3, value="99")])
    scheduler = _build_scheduler(store, FakePriceClient(), FakeNotifier(), batch_size=2)

    first = await scheduler.run_pass()
    second = await scheduler.run_pass()
    third = await scheduler.run_pass()

    assert [evaluation.alert_id for evaluation in first.evaluations] == [1, 2]
    assert [evaluation.alert_id for evaluation in second.evaluations] == [3]
    assert [evaluation.alert_id for evaluation in third.evaluations] == [1, 2]


@pytest.mark.asyncio
async def test_repeat_notifications_when_notify_once_disabled():
    store = FakeAlertStore([_alert(1)])
    notifier = FakeNotifier()
    scheduler = _build_scheduler(store, FakePriceClient(), notifier, notify_once=False)

    await scheduler.run_pass()
    await scheduler.run_pass()

    assert len(notifier.sent) == 2
    assert store.triggered == []


@pytest.mark.asyncio
async def test_start_and_stop_lifecycle():
    store = FakeAlertStore([_alert(1, value="99")])
    scheduler = _build_scheduler(store, FakePriceClient(), FakeNotifier())

    await scheduler.start()
    assert scheduler.is_running()
    for _ in range(100):
        if scheduler.metrics["passes"] >= 2:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()

    assert scheduler.state == SchedulerState.STOPPED
    assert scheduler.metrics["passes"] >= 2
    assert scheduler.get_status()["last_pass"]["batch_size"] == 1


@pytest.mark.asyncio
async def test_pass_against_real_store_marks_alert_triggered(alert_store, make_account):
    user = make_account("user1", token="fcm-token")
    alert_store.save_alert(new_alert("eth alert", user, alert_value="1.5", alert_option=">="))
    alert_store.save_alert(new_alert("quiet alert", user, alert_value="100", alert_option=">="))
    notifier = FakeNotifier()
    scheduler = _build_scheduler(alert_store, FakePriceClient(eth_price=2000.0), notifier)

    first = await scheduler.run_pass()
    second = await scheduler.run_pass()

    assert first.batch_size == 2
    assert [entry["token"] for entry in notifier.sent] == ["fcm-token"]
    assert alert_store.find_alert_by_slug("eth-alert").alert_status == "triggered"
    assert second.batch_size == 1
    assert second.triggered == 0


class SlowMarkingStore(FakeAlertStore):
    def __init__(self, alerts, mark_delay):
        super().__init__(alerts)
        self.mark_delay = mark_delay
        self.mark_finished = False

    def mark_alert_triggered(self, alert_id):
        time.sleep(self.mark_delay)
        self.mark_finished = True
        return super().mark_alert_triggered(alert_id)


@pytest.mark.asyncio
async def test_pass_deadline_waits_for_running_store_call_before_releasing_lock():
    store = SlowMarkingStore([_alert(1)], mark_delay=0.3)
    scheduler = _build_scheduler(store, FakePriceClient(), FakeNotifier(), pass_timeout_seconds=0.1)

    result = await scheduler.run_pass()

    assert result.aborted == "timeout"
    assert store.mark_finished
    assert store.triggered == [1]
    assert not scheduler.get_status()["pass_in_progress"]
