"""
API routes for price alerts
"""
from fastapi import APIRouter, HTTPException, Depends
from fastapi.concurrency import run_in_threadpool
from typing import Optional
from datetime import datetime, timezone
import logging

from app.api.schemas import AlertResponse, AlertsResponse, CreateAlertRequest, alert_to_out
from app.api.security import require_account
from app.core.errors import AlertServiceError, KeyConflictError, NotFoundError
from app.models.account import Account
from app.models.alert import Alert, ALERT_STATUS_ACTIVE
from app.services.alert_scheduler import AlertEvaluationScheduler
from app.services.alert_store import AlertCriteria, AlertStore, slugify

logger = logging.getLogger(__name__)

# Create router
api_router = APIRouter()

# Global services (will be injected)
alert_store: Optional[AlertStore] = None
alert_scheduler: Optional[AlertEvaluationScheduler] = None

MAX_PAGE_SIZE = 100

def set_services(store: AlertStore, scheduler: Optional[AlertEvaluationScheduler]):
    """Set global services"""
    global alert_store, alert_scheduler
    alert_store = store
    alert_scheduler = scheduler

def _require_store() -> AlertStore:
    if not alert_store:
        raise HTTPException(status_code=503, detail="Alert store not available")
    return alert_store

def _internal_error(action: str, error: Exception) -> HTTPException:
    logger.error(f"Error {action}: {error}")
    return HTTPException(status_code=500, detail="Internal server error")

# Alert Routes
@api_router.post("/alerts", status_code=201, response_model=AlertResponse)
async def create_alert(payload: CreateAlertRequest, account: Account = Depends(require_account)):
    """Create an alert owned by the calling account"""
    store = _require_store()
    body = payload.alert
    alert = Alert(
        slug=slugify(body.title),
        title=body.title,
        body=body.body,
        pair_address=body.pairAddress,
        alert_type=body.alertType,
        alert_value=body.alertValue,
        alert_option=body.alertOption,
        expiration_time=body.expirationTime,
        alert_actions=body.alertActions,
        alert_status=ALERT_STATUS_ACTIVE,
        account_id=account.id,
    )
    try:
        await run_in_threadpool(store.save_alert, alert)
    except KeyConflictError:
        raise HTTPException(status_code=409, detail="duplicate alert title")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except AlertServiceError as e:
        raise _internal_error("creating alert", e)
    return AlertResponse(alert=alert_to_out(alert, account))

@api_router.get("/alerts", response_model=AlertsResponse)
async def list_alerts(account: Optional[int] = None, limit: int = 5, offset: int = 0):
    """List active alerts, newest first"""
    store = _require_store()
    if limit < 0 or limit > MAX_PAGE_SIZE or offset < 0:
        raise HTTPException(
            status_code=400,
            detail=f"limit must be between 0 and {MAX_PAGE_SIZE} and offset cannot be negative",
        )
    criteria = AlertCriteria(account_id=account, offset=offset, limit=limit)
    try:
        alerts, total = await run_in_threadpool(store.find_alerts, criteria)
    except AlertServiceError as e:
        raise _internal_error("listing alerts", e)
    return AlertsResponse(alerts=[alert_to_out(alert) for alert in alerts], alertsCount=total)

@api_router.get("/alerts/{slug}", response_model=AlertResponse)
async def get_alert(slug: str):
    """Get an active alert by slug"""
    store = _require_store()
    try:
        alert = await run_in_threadpool(store.find_alert_by_slug, slug)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="not found alert")
    except AlertServiceError as e:
        raise _internal_error("getting alert", e)
    return AlertResponse(alert=alert_to_out(alert))

@api_router.delete("/alerts/{slug}")
async def delete_alert(slug: str, account: Account = Depends(require_account)):
    """Soft-delete an alert owned by the calling account"""
    store = _require_store()
    try:
        await run_in_threadpool(store.run_in_tx, lambda _session: store.delete_alert_by_slug(account.id, slug))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="not found alert")
    except AlertServiceError as e:
        raise _internal_error("deleting alert", e)
    logger.debug(f"Deleted alert {slug}")
    return {"message": "Alert deleted successfully"}

# Scheduler Routes
@api_router.get("/scheduler/status")
async def get_scheduler_status():
    """Get alert scheduler status and the last pass summary"""
    if not alert_scheduler:
        raise HTTPException(status_code=503, detail="Alert scheduler not available")

    status = alert_scheduler.get_status()
    status["timestamp"] = datetime.now(timezone.utc).isoformat()
    return status
