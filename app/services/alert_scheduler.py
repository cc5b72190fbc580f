"""
Periodic evaluation of price alerts against live oracle prices
"""
import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from app.core.config import settings
from app.core.errors import AlertServiceError
from app.services.alert_rules import AlertEvaluation, evaluate_alert
from app.services.alert_store import AlertStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerState(Enum):
    """Scheduler states"""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class EvaluationPassResult:
    """Summary of one evaluation pass"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    batch_size: int = 0
    evaluated: int = 0
    failed: int = 0
    triggered: int = 0
    notified: int = 0
    skipped: bool = False
    aborted: Optional[str] = None
    evaluations: List[AlertEvaluation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "batch_size": self.batch_size,
            "evaluated": self.evaluated,
            "failed": self.failed,
            "triggered": self.triggered,
            "notified": self.notified,
            "skipped": self.skipped,
            "aborted": self.aborted,
        }


class AlertEvaluationScheduler:
    """Runs evaluation passes on a fixed interval, one pass at a time"""

    def __init__(
        self,
        alert_store: AlertStore,
        price_client,
        notifier,
        interval_seconds: Optional[float] = None,
        batch_size: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        pass_timeout_seconds: Optional[float] = None,
        fetch_timeout_seconds: Optional[float] = None,
        notify_once: Optional[bool] = None,
    ):
        self.alert_store = alert_store
        self.price_client = price_client
        self.notifier = notifier

        self.interval = float(interval_seconds or settings.ALERT_EVAL_INTERVAL_SECONDS)
        self.batch_size = int(batch_size or settings.ALERT_EVAL_BATCH_SIZE)
        self.max_concurrency = max(1, int(max_concurrency or settings.ALERT_EVAL_MAX_CONCURRENCY))
        self.pass_timeout = float(pass_timeout_seconds or settings.ALERT_EVAL_PASS_TIMEOUT_SECONDS)
        self.fetch_timeout = float(fetch_timeout_seconds or settings.ORACLE_TIMEOUT_SECONDS)
        self.notify_once = settings.ALERT_NOTIFY_ONCE if notify_once is None else bool(notify_once)

        self.state = SchedulerState.STOPPED
        self.is_running_flag = False
        self.evaluation_task: Optional[asyncio.Task] = None
        self._pass_lock = asyncio.Lock()
        # Round-robin position: the next batch starts after this alert id.
        self._cursor = 0
        # Store calls of a pass run one at a time on this worker.
        self._store_executor: Optional[ThreadPoolExecutor] = None
        self._store_calls: Set[Future] = set()

        self.last_pass: Optional[EvaluationPassResult] = None
        self.metrics = {
            "passes": 0,
            "skipped_ticks": 0,
            "timeouts": 0,
            "aborted": 0,
            "notifications_sent": 0,
            "notifications_failed": 0,
        }

        logger.info("Alert evaluation scheduler initialized")

    async def start(self):
        """Start the periodic evaluation loop"""
        if self.state != SchedulerState.STOPPED:
            logger.warning("Alert scheduler is already running")
            return

        self.state = SchedulerState.STARTING
        logger.info(f"Starting alert scheduler (every {self.interval}s, batch {self.batch_size})...")
        self.is_running_flag = True
        self.evaluation_task = asyncio.create_task(self._evaluation_loop())
        self.state = SchedulerState.RUNNING
        logger.info("Alert scheduler started successfully")

    async def stop(self):
        """Stop the loop and wait for the current pass to unwind"""
        if self.state != SchedulerState.RUNNING:
            logger.warning("Alert scheduler is not running")
            return

        self.state = SchedulerState.STOPPING
        logger.info("Stopping alert scheduler...")
        self.is_running_flag = False
        if self.evaluation_task:
            self.evaluation_task.cancel()
            try:
                await self.evaluation_task
            except asyncio.CancelledError:
                pass
        self.evaluation_task = None
        await self._wait_for_store_calls()
        if self._store_executor is not None:
            self._store_executor.shutdown(wait=False)
            self._store_executor = None
        self.state = SchedulerState.STOPPED
        logger.info("Alert scheduler stopped successfully")

    def is_running(self) -> bool:
        """Check if the scheduler loop is running"""
        return self.state == SchedulerState.RUNNING

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "interval_seconds": self.interval,
            "batch_size": self.batch_size,
            "pass_in_progress": self._pass_lock.locked(),
            "last_pass": self.last_pass.to_dict() if self.last_pass else None,
            "metrics": dict(self.metrics),
        }

    async def _evaluation_loop(self):
        """Fixed-rate ticker; ticks missed while a pass overran are dropped"""
        logger.info("Alert evaluation loop started")
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval

        while self.is_running_flag:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            await self.run_pass()

            next_tick += self.interval
            now = loop.time()
            if now > next_tick:
                missed = int((now - next_tick) // self.interval) + 1
                self.metrics["skipped_ticks"] += missed
                logger.warning(f"Evaluation pass overran its interval, skipping {missed} tick(s)")
                next_tick += missed * self.interval

        logger.info("Alert evaluation loop stopped")

    async def run_pass(self) -> EvaluationPassResult:
        """
        Run one evaluation pass unless another one is still in progress.

        Returns once every fetch and dispatch of the pass has finished, or once
        the pass deadline cancelled whatever was still outstanding. A store call
        already running on its worker thread cannot be cancelled, so the pass
        lock is held until it returns.
        """
        if self._pass_lock.locked():
            self.metrics["skipped_ticks"] += 1
            logger.warning("Previous evaluation pass still running, skipping tick")
            return EvaluationPassResult(started_at=utc_now(), finished_at=utc_now(), skipped=True)

        async with self._pass_lock:
            result = EvaluationPassResult(started_at=utc_now())
            try:
                await asyncio.wait_for(self._evaluate(result), timeout=self.pass_timeout)
            except asyncio.TimeoutError:
                self.metrics["timeouts"] += 1
                result.aborted = "timeout"
                logger.error(f"Evaluation pass exceeded its {self.pass_timeout}s deadline")
            except Exception as e:
                result.aborted = "error"
                logger.error(f"Error in evaluation pass: {e}")
            finally:
                await self._wait_for_store_calls()

            if result.aborted:
                self.metrics["aborted"] += 1
            result.finished_at = utc_now()
            self.metrics["passes"] += 1
            self.last_pass = result
            return result

    async def _evaluate(self, result: EvaluationPassResult):
        now = utc_now()
        try:
            expired = await self._run_store(self.alert_store.expire_alerts, now)
            if expired:
                logger.info(f"Marked {expired} alert(s) as expired")
            batch = await self._next_batch(now)
        except AlertServiceError as e:
            result.aborted = "store"
            logger.error(f"Failed to read alert batch: {e}")
            return

        result.batch_size = len(batch)
        if not batch:
            return

        try:
            eth_price = await asyncio.wait_for(self.price_client.fetch_eth_price(), timeout=self.fetch_timeout)
        except Exception as e:
            result.aborted = "oracle"
            logger.error(f"Failed to fetch ETH price, skipping pass: {e}")
            return

        semaphore = asyncio.Semaphore(self.max_concurrency)

        # One slot per alert, filled only by that alert's own task.
        evaluations = await asyncio.gather(
            *(self._evaluate_alert(alert, eth_price, semaphore) for alert in batch)
        )
        result.evaluations = list(evaluations)
        result.evaluated = sum(1 for evaluation in evaluations if evaluation.error is None)
        result.failed = len(evaluations) - result.evaluated

        triggered = [
            (alert, evaluation)
            for alert, evaluation in zip(batch, evaluations)
            if evaluation.triggered
        ]
        result.triggered = len(triggered)
        if not triggered:
            return

        outcomes = await asyncio.gather(
            *(self._dispatch(alert, evaluation, semaphore) for alert, evaluation in triggered)
        )
        notified_ids = [alert.id for (alert, _evaluation), sent in zip(triggered, outcomes) if sent]
        result.notified = len(notified_ids)

        if self.notify_once and notified_ids:
            try:
                await self._run_store(self._mark_triggered, notified_ids)
            except AlertServiceError as e:
                # These alerts stay active and may notify again next pass.
                logger.error(f"Failed to mark alerts {notified_ids} as triggered: {e}")

    async def _next_batch(self, now: datetime) -> list:
        batch = await self._run_store(self.alert_store.find_pending_alerts, self._cursor, self.batch_size, now)
        if not batch and self._cursor:
            self._cursor = 0
            batch = await self._run_store(self.alert_store.find_pending_alerts, 0, self.batch_size, now)
        # A short batch means the end was reached; start over next time.
        self._cursor = batch[-1].id if len(batch) >= self.batch_size else 0
        return batch

    async def _evaluate_alert(self, alert, eth_price: float, semaphore: asyncio.Semaphore) -> AlertEvaluation:
        async with semaphore:
            try:
                derived_eth = await asyncio.wait_for(
                    self.price_client.fetch_derived_eth(alert.pair_address),
                    timeout=self.fetch_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Price fetch timed out for alert {alert.slug}")
                return AlertEvaluation(alert_id=alert.id, error="timeout")
            except Exception as e:
                logger.warning(f"Price fetch failed for alert {alert.slug}: {e}")
                return AlertEvaluation(alert_id=alert.id, error=str(e))

        evaluation = evaluate_alert(alert, eth_price, derived_eth)
        if evaluation.error:
            logger.warning(f"Skipping alert {alert.slug}: {evaluation.error}")
        else:
            logger.debug(f"Alert {alert.slug} value={evaluation.computed_value} triggered={evaluation.triggered}")
        return evaluation

    async def _dispatch(self, alert, evaluation: AlertEvaluation, semaphore: asyncio.Semaphore) -> bool:
        token = alert.account.token if alert.account is not None else None
        if not token:
            logger.warning(f"Alert {alert.slug} triggered but its account has no push token")
            return False

        data = {
            "slug": alert.slug,
            "pairAddress": alert.pair_address,
            "value": str(evaluation.computed_value),
        }
        async with semaphore:
            try:
                sent = await self.notifier.notify(alert.title, alert.body, token, data=data)
            except Exception as e:
                logger.error(f"Error notifying alert {alert.slug}: {e}")
                sent = False

        if not sent:
            self.metrics["notifications_failed"] += 1
            return False
        self.metrics["notifications_sent"] += 1
        return True

    def _mark_triggered(self, alert_ids: List[int]) -> int:
        def mark_all(_session) -> int:
            return sum(1 for alert_id in alert_ids if self.alert_store.mark_alert_triggered(alert_id))

        return self.alert_store.run_in_tx(mark_all)

    async def _run_store(self, func, *args):
        if self._store_executor is None:
            self._store_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="alert-store")
        future = self._store_executor.submit(func, *args)
        self._store_calls.add(future)
        future.add_done_callback(self._store_calls.discard)
        return await asyncio.wrap_future(future)

    async def _wait_for_store_calls(self):
        pending = [future for future in list(self._store_calls) if not future.done()]
        if not pending:
            return
        logger.warning(f"Waiting for {len(pending)} store call(s) left running by the pass")
        await asyncio.gather(*(asyncio.wrap_future(future) for future in pending), return_exceptions=True)
