import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beacon.api.routes import escalations, health, notifications, oncall
from beacon.config import get_settings
from beacon.database import engine

settings = get_settings()

# ─── Logging ─────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger(__name__)


# ─── Lifespan ───────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s (%s)", settings.app_name, settings.app_env)
    logger.info(
        "Delivery: max_retries=%s, base_delay=%ss, timeout=%ss",
        settings.webhook_max_retries,
        settings.webhook_base_delay_seconds,
        settings.webhook_timeout_seconds,
    )
    logger.info(
        "API docs available at http://%s:%s/docs", settings.host, settings.port
    )
    yield
    await engine.dispose()
    logger.info("Shutting down %s", settings.app_name)


# ─── App ─────────────────────────────────────────────────

app = FastAPI(
    title="Beacon",
    description="On-call rotation, escalation, and notification delivery engine",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ─── Middleware ───────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_dev else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── Routes ──────────────────────────────────────────────

# Health checks at root level (no prefix, used by k8s probes)
app.include_router(health.router)

app.include_router(oncall.router, prefix=settings.api_prefix)
app.include_router(escalations.router, prefix=settings.api_prefix)
app.include_router(notifications.router, prefix=settings.api_prefix)
