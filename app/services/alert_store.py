"""
Alert store: transactional persistence for alerts with soft delete
"""
import logging
import re
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.core.database import SessionLocal
from app.core.errors import AlertServiceError, InternalError, KeyConflictError, NotFoundError
from app.models.account import Account
from app.models.alert import Alert, ALERT_STATUS_ACTIVE, ALERT_STATUS_EXPIRED, ALERT_STATUS_TRIGGERED

logger = logging.getLogger(__name__)

# Session of the transaction opened by the innermost enclosing ``transaction()``.
_active_session: ContextVar[Optional[Session]] = ContextVar("alert_store_session", default=None)

UNIQUE_VIOLATION_SQLSTATE = "23505"


def slugify(text: str) -> str:
    """Convert an alert title to a URL-safe slug."""
    slug = text.lower().strip()
    slug = re.sub(r'[^\w\s-]', '', slug)
    slug = re.sub(r'[\s_-]+', '-', slug)
    return slug.strip('-')[:100]


def _is_key_conflict(error: IntegrityError) -> bool:
    orig = getattr(error, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == UNIQUE_VIOLATION_SQLSTATE:
        return True
    message = str(orig if orig is not None else error).lower()
    return "unique constraint" in message or "duplicate key" in message


@dataclass
class AlertCriteria:
    """Filter and page window for alert listings"""
    account_id: Optional[int] = None
    offset: int = 0
    limit: int = 5


class AlertStore:
    """Owns all persistent alert state"""

    def __init__(self, session_factory: Callable[..., Session] = SessionLocal):
        self.session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Open a transaction, or join the one already open in this context.

        The outermost scope commits on success and rolls back on any exception.
        Nested scopes hand out the same session and leave the outcome to it.
        """
        active = _active_session.get()
        if active is not None:
            yield active
            return

        # Objects handed back by the store must stay readable after the session closes.
        session = self.session_factory(expire_on_commit=False)
        token = _active_session.set(session)
        try:
            yield session
        except Exception as error:
            try:
                session.rollback()
            except SQLAlchemyError as rollback_error:
                raise InternalError(f"rollback tx: {rollback_error}; invoke function: {error}") from error
            raise
        else:
            try:
                session.commit()
            except SQLAlchemyError as error:
                logger.error(f"Failed to commit transaction: {error}")
                try:
                    session.rollback()
                except SQLAlchemyError as rollback_error:
                    raise InternalError(f"rollback tx: {rollback_error}; commit tx: {error}") from error
                raise InternalError(f"commit tx: {error}") from error
        finally:
            _active_session.reset(token)
            session.close()

    def run_in_tx(self, fn: Callable[[Session], Any]) -> Any:
        """Run ``fn`` with a transaction-bound session and return its result."""
        with self.transaction() as session:
            return fn(session)

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except AlertServiceError:
            raise
        except SQLAlchemyError as error:
            logger.error(f"alert store failed to {action}: {error}")
            raise InternalError(f"failed to {action}") from error

    def save_alert(self, alert: Alert) -> Alert:
        """
        Insert a new alert.

        The slug is derived from the title when the caller did not set one.

        Raises:
            ValueError: the title has no characters a slug can be built from
            KeyConflictError: the slug is already used by an active alert
            InternalError: any other persistence failure
        """
        if not alert.slug:
            alert.slug = slugify(alert.title or "")
        if not alert.slug:
            raise ValueError(f"cannot derive a slug from title {alert.title!r}")
        if not alert.alert_status:
            alert.alert_status = ALERT_STATUS_ACTIVE
        if alert.deleted_at_unix is None:
            alert.deleted_at_unix = 0
        logger.debug(f"alert.store.save_alert slug={alert.slug}")

        with self.transaction() as session:
            session.add(alert)
            try:
                session.flush()
            except IntegrityError as error:
                logger.error(f"alert.store.save_alert failed to save alert: {error}")
                if _is_key_conflict(error):
                    raise KeyConflictError(f"duplicate alert slug: {alert.slug}") from error
                raise InternalError("failed to save alert") from error
            except SQLAlchemyError as error:
                logger.error(f"alert.store.save_alert failed to save alert: {error}")
                raise InternalError("failed to save alert") from error
            with self._translate_errors("reload saved alert"):
                session.refresh(alert)
        return alert

    def find_alert_by_slug(self, slug: str) -> Alert:
        """Return the active alert with ``slug`` joined with its account."""
        logger.debug(f"alert.store.find_alert_by_slug slug={slug}")
        with self.transaction() as session, self._translate_errors("find alert"):
            alert = (
                session.query(Alert)
                .options(joinedload(Alert.account))
                .filter(Alert.slug == slug, Alert.deleted_at_unix == 0)
                .order_by(Alert.id)
                .first()
            )
        if alert is None:
            raise NotFoundError(f"alert not found: {slug}")
        return alert

    def find_alerts(self, criteria: AlertCriteria) -> Tuple[List[Alert], int]:
        """
        Return one page of active alerts (id descending) and the total match count.

        Pagination runs in two phases so the page window is taken over distinct
        alert ids rather than over joined rows:

        1. select the distinct matching ids, newest first, sliced to
           ``[offset, offset + limit)``, and count the distinct ids separately;
        2. load exactly those ids joined with their accounts.
        """
        if criteria.offset < 0 or criteria.limit < 0:
            raise ValueError("offset and limit cannot be negative")
        logger.debug(f"alert.store.find_alerts criteria={criteria}")

        with self.transaction() as session, self._translate_errors("find alerts"):
            id_query = session.query(Alert.id).filter(Alert.deleted_at_unix == 0)
            if criteria.account_id:
                id_query = (
                    id_query.outerjoin(Account, Account.id == Alert.account_id)
                    .filter(Account.id == criteria.account_id)
                )
            id_query = id_query.distinct()

            total = id_query.count()
            ids = [
                row.id
                for row in id_query.order_by(Alert.id.desc())
                .offset(criteria.offset)
                .limit(criteria.limit)
                .all()
            ]
            if not ids:
                return [], total

            alerts = (
                session.query(Alert)
                .options(joinedload(Alert.account))
                .filter(Alert.id.in_(ids))
                .order_by(Alert.id.desc())
                .all()
            )
        return alerts, total

    def delete_alert_by_slug(self, account_id: int, slug: str) -> None:
        """
        Soft-delete the active alert with ``slug`` owned by ``account_id``.

        An unknown slug, a slug owned by another account and an already deleted
        alert all raise NotFoundError.
        """
        logger.debug(f"alert.store.delete_alert_by_slug slug={slug}")
        with self.transaction() as session:
            with self._translate_errors("delete alert"):
                affected = (
                    session.query(Alert)
                    .filter(
                        Alert.slug == slug,
                        Alert.deleted_at_unix == 0,
                        Alert.account_id == account_id,
                    )
                    .update({Alert.deleted_at_unix: int(time.time())}, synchronize_session=False)
                )
            if affected == 0:
                logger.error("Failed to delete an alert because it was not found")
                raise NotFoundError(f"alert not found: {slug}")

    def find_pending_alerts(self, after_id: int, limit: int, now: datetime) -> List[Alert]:
        """Active, unexpired alerts with id > ``after_id``, oldest first, with accounts."""
        with self.transaction() as session, self._translate_errors("find pending alerts"):
            return (
                session.query(Alert)
                .options(joinedload(Alert.account))
                .filter(
                    Alert.deleted_at_unix == 0,
                    Alert.alert_status == ALERT_STATUS_ACTIVE,
                    Alert.expiration_time > now,
                    Alert.id > after_id,
                )
                .order_by(Alert.id.asc())
                .limit(limit)
                .all()
            )

    def mark_alert_triggered(self, alert_id: int) -> bool:
        """Move an active alert to ``triggered``. Returns False if nothing changed."""
        with self.transaction() as session, self._translate_errors("mark alert triggered"):
            affected = (
                session.query(Alert)
                .filter(
                    Alert.id == alert_id,
                    Alert.deleted_at_unix == 0,
                    Alert.alert_status == ALERT_STATUS_ACTIVE,
                )
                .update({Alert.alert_status: ALERT_STATUS_TRIGGERED}, synchronize_session=False)
            )
        return affected > 0

    def expire_alerts(self, now: datetime) -> int:
        """Move active alerts whose expiration time has passed to ``expired``."""
        with self.transaction() as session, self._translate_errors("expire alerts"):
            return (
                session.query(Alert)
                .filter(
                    Alert.deleted_at_unix == 0,
                    Alert.alert_status == ALERT_STATUS_ACTIVE,
                    Alert.expiration_time <= now,
                )
                .update({Alert.alert_status: ALERT_STATUS_EXPIRED}, synchronize_session=False)
            )
