# backend/consultdesk/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI

from . import models  # noqa: F401  registers tables on Base.metadata
from .core.config import settings
from .database import Base, engine
from .errors import register_error_handlers
from .middleware.prometheus_middleware import PrometheusMiddleware
from .routes import prometheus as prometheus_routes
from .routes.v1 import booking as booking_v1
from .routes.v1 import payments as payments_v1
from .routes.v1 import sessions as sessions_v1
from .routes.v1 import webhooks as webhooks_v1

API_TITLE = "ConsultDesk API"
API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info("%s starting up...", API_TITLE)
    logger.info("Environment: %s", settings.environment)

    # Local sqlite databases have no migration step; production schemas are managed externally.
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)

    if not settings.secret_value(settings.razorpay_webhook_secret):
        logger.warning("RAZORPAY_WEBHOOK_SECRET is not set; every webhook will be rejected")

    yield

    logger.info("%s shutting down...", API_TITLE)


app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=app_lifespan,
)

register_error_handlers(app)
app.add_middleware(PrometheusMiddleware)

api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(booking_v1.router)
api_v1.include_router(sessions_v1.router)
api_v1.include_router(payments_v1.router, prefix="/payments")
api_v1.include_router(webhooks_v1.router, prefix="/webhooks")

app.include_router(api_v1)
app.include_router(prometheus_routes.router)


@app.get("/health")
def health_check() -> dict[str, str]:
    return {"status": "healthy", "environment": settings.environment}
