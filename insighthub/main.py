from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from insighthub.core.cache import cache
from insighthub.core.config import settings
from insighthub.core.constants import APP_VERSION
from insighthub.core.logging import get_logger
from insighthub.core.ratelimit import api_rate_limiter, auth_rate_limiter
from insighthub.db.base import init_db
from insighthub.db.session import SessionLocal
from insighthub.api import (
    analytics as analytics_routes, audit as audit_routes, auth as auth_routes,
    billing as billing_routes, comments as comments_routes, dashboards as dashboards_routes,
    notifications as notifications_routes, organizations as organizations_routes,
    users as users_routes, webhooks as webhooks_routes,
)
from insighthub.seed_admin import seed_admin

logger = get_logger(__name__)

SWEEP_INTERVAL_MINUTES = 5


def sweep_memory_stores() -> int:
    """Drop expired cache entries and rate-limit windows."""
    removed = cache.cleanup() + api_rate_limiter.cleanup() + auth_rate_limiter.cleanup()
    logger.debug(f"Swept {removed} expired in-memory entries")
    return removed


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    db = SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()
    sweeper = BackgroundScheduler(timezone="UTC")
    sweeper.add_job(sweep_memory_stores, "interval", minutes=SWEEP_INTERVAL_MINUTES, id="memory_sweep",
                    max_instances=1, coalesce=True)
    sweeper.start()
    logger.info(f"{settings.APP_NAME} API started ({settings.ENV})")
    yield
    sweeper.shutdown(wait=False)


app = FastAPI(title=settings.APP_NAME, version=APP_VERSION, lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True,
                   allow_methods=["*"], allow_headers=["*"])


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


for module in (auth_routes, users_routes, organizations_routes, dashboards_routes, analytics_routes,
               billing_routes, notifications_routes, audit_routes, webhooks_routes, comments_routes):
    app.include_router(module.router, prefix="/api", dependencies=[Depends(api_rate_limiter)])


@app.get("/health")
def health():
    return {"ok": True, "version": APP_VERSION}
