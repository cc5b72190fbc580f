"""
API security helpers.
"""
import logging
from typing import Optional
from fastapi import Header, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from app.core.errors import AlertServiceError
from app.models.account import Account
from app.services.account_store import AccountStore

logger = logging.getLogger(__name__)

# Injected by the application lifespan
account_store: Optional[AccountStore] = None


def set_account_store(store: AccountStore):
    global account_store
    account_store = store


async def require_account(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Account:
    """Resolve the calling account from its API key."""
    if account_store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Account store not available"
        )

    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )

    try:
        account = await run_in_threadpool(account_store.find_by_api_key, x_api_key)
    except AlertServiceError as e:
        logger.error(f"Error resolving account: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )
    return account
