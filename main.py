"""
Main entry point for the price alert service
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from app.core.config import settings
from app.core.database import init_db
from app.api import routes
from app.api.middleware import ApiMetrics, MetricsMiddleware, RequestTimeoutMiddleware
from app.api.routes import api_router
from app.api.security import set_account_store
from app.services.account_store import AccountStore
from app.services.alert_scheduler import AlertEvaluationScheduler
from app.services.alert_store import AlertStore
from app.services.notification_service import PushNotificationService
from app.services.uniswap_client import UniswapGraphClient

# Configure logging
Path(settings.LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

api_metrics = ApiMetrics()

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting price alert service...")

    # Initialize database
    await init_db()

    # Initialize services
    alert_store = AlertStore()
    price_client = UniswapGraphClient(
        url=settings.UNISWAP_GRAPH_URL,
        timeout_seconds=settings.ORACLE_TIMEOUT_SECONDS,
        max_concurrency=settings.ORACLE_MAX_CONCURRENCY,
    )
    notification_service = PushNotificationService()
    scheduler = AlertEvaluationScheduler(alert_store, price_client, notification_service)

    set_account_store(AccountStore())
    routes.set_services(alert_store, scheduler)

    # Start background evaluation
    if settings.ALERT_EVAL_ENABLED:
        await scheduler.start()
    else:
        logger.info("Alert evaluation disabled by configuration")

    logger.info("Price alert service started successfully!")

    yield

    # Cleanup
    logger.info("Shutting down price alert service...")
    if scheduler.is_running():
        await scheduler.stop()
    await price_client.close()
    await notification_service.close()
    logger.info("Price alert service stopped.")

# Create FastAPI app
app = FastAPI(
    title="Price Alert Service",
    description="Price-trigger alerts on Uniswap pairs with push notifications",
    version="1.0.0",
    lifespan=lifespan
)

# Request deadline innermost, metrics around it, CORS outermost (added last)
app.add_middleware(RequestTimeoutMiddleware, timeout_seconds=settings.SERVER_WRITE_TIMEOUT_SECONDS)
app.add_middleware(MetricsMiddleware, metrics=api_metrics)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Origin", "Authorization", "Content-Type", "X-API-Key"],
)

# Include API routes
app.include_router(api_router, prefix="/api/v1")

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Price Alert Service API",
        "version": "1.0.0",
        "status": "running"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    scheduler = routes.alert_scheduler
    return {
        "status": "healthy",
        "alert_scheduler": scheduler.is_running() if scheduler else False,
    }

@app.get("/metric")
async def get_metrics():
    """API call counts and latencies per status code, method and route"""
    return api_metrics.snapshot()

def main():
    uvicorn.run(
        "main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )

if __name__ == "__main__":
    main()
