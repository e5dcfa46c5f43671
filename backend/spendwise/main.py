import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .archives import router as archives_router
from .borrowed import router as borrowed_router
from .categories import router as categories_router
from .config import settings
from .database import close_db_pool, init_db_pool
from .expenses import router as expenses_router
from .period import router as period_router
from .profile import router as profile_router
from .savings_goals import router as savings_goals_router
from .summary import router as summary_router
from .transactions import router as transactions_router

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_db_pool()
    logger.info("%s started", settings.app_name)
    yield
    await close_db_pool()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(transactions_router)
app.include_router(profile_router)
app.include_router(period_router)
app.include_router(expenses_router)
app.include_router(categories_router)
app.include_router(summary_router)
app.include_router(archives_router)
app.include_router(borrowed_router)
app.include_router(savings_goals_router)


@app.get("/health")
def health() -> dict[str, str | float]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.monotonic() - STARTED_AT, 3),
    }


@app.get("/")
def root() -> dict[str, object]:
    return {
        "message": settings.app_name,
        "endpoints": {
            "POST /transactions": "Import bank transactions (requires X-API-Key header)",
            "GET /health": "Health check endpoint",
        },
    }
