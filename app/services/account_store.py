"""
Account lookups used by the REST surface to resolve the calling account.
"""
import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.database import SessionLocal
from app.core.errors import InternalError, KeyConflictError
from app.models.account import Account

logger = logging.getLogger(__name__)


class AccountStore:
    """Persisted account service."""

    def __init__(self, session_factory: Callable[..., Session] = SessionLocal):
        self.session_factory = session_factory

    def save_account(self, account: Account) -> Account:
        db = self.session_factory(expire_on_commit=False)
        try:
            db.add(account)
            db.commit()
            db.refresh(account)
            return account
        except IntegrityError as error:
            db.rollback()
            raise KeyConflictError("duplicate account username, email or api key") from error
        except SQLAlchemyError as error:
            db.rollback()
            logger.error(f"Failed to save account: {error}")
            raise InternalError("failed to save account") from error
        finally:
            db.close()

    def find_by_api_key(self, api_key: str) -> Optional[Account]:
        if not api_key:
            return None
        db = self.session_factory(expire_on_commit=False)
        try:
            return db.query(Account).filter(Account.api_key == api_key).first()
        except SQLAlchemyError as error:
            logger.error(f"Failed to look up account: {error}")
            raise InternalError("failed to look up account") from error
        finally:
            db.close()
