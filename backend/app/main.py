import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.logging_config import configure_logging
import app.models  # noqa: F401  # force model registration

from app.api.v1.auth import router as auth_router
from app.api.v1.contracts import router as contracts_router
from app.api.v1.commissions import router as commissions_router
from app.api.v1.jobs import router as jobs_router
from app.api.v1.salary_payments import router as salary_payments_router
from app.api.v1.payouts import router as payouts_router
from app.api.v1.notifications import router as notifications_router
from app.api.v1.stripe_webhook import router as stripe_webhook_router
from app.jobs.scheduler import shutdown_scheduler, start_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: start the settlement scheduler (when enabled).
    Shutdown: stop it without waiting on a running batch.
    """
    if not settings.stripe_configured:
        logger.warning("STRIPE_API_KEY not set; charges and payouts are disabled")
    start_scheduler()

    yield

    shutdown_scheduler()


def create_application() -> FastAPI:
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(title="CLOSER CLAUS API", lifespan=lifespan)

    # ✅ CORS Configuration (Dev + Production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            # 🔹 Local development (Vite frontend)
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"status": "ok", "service": "closer-claus", "stripe_configured": settings.stripe_configured}

    # Routers
    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(contracts_router, prefix="/api/v1")
    app.include_router(commissions_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(salary_payments_router, prefix="/api/v1")
    app.include_router(payouts_router, prefix="/api/v1")
    app.include_router(notifications_router, prefix="/api/v1")
    app.include_router(stripe_webhook_router, prefix="/api/v1")

    return app


app = create_application()
