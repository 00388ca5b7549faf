"""
ParcelRate Service
FastAPI application entry point

- Carrier registry built once at startup and closed on shutdown
- Shipping routes mounted under /api
- Health endpoint with carrier list and optional DB ping
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text

from parcelrate import __version__
from parcelrate.api.routes import shipping
from parcelrate.core.config import settings
from parcelrate.core.database import dispose_engine, get_db_session
from parcelrate.modules.shipping.carriers import build_carrier_registry

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the carrier registry on startup; release clients and pool on shutdown."""
    registry = build_carrier_registry(settings)
    app.state.carrier_registry = registry
    if len(registry) == 0:
        logger.warning("No carriers configured - carrier rate endpoints will return empty results")
    else:
        logger.info(f"Carriers enabled: {', '.join(registry.ids())}")

    yield

    await registry.aclose()
    logger.info("Carrier HTTP clients closed")
    await dispose_engine()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        lifespan=lifespan,
        title=settings.APP_NAME,
        description="Multi-carrier parcel rating and zone-based internal shipping rates.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.include_router(shipping.router, prefix="/api", tags=["Shipping"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Returns 503 if a configured database is unreachable."""
        registry = getattr(app.state, "carrier_registry", None)
        health_status = {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "carriers": registry.ids() if registry is not None else [],
            "database": "not configured",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if settings.DATABASE_URL:
            try:
                async with get_db_session() as db:
                    await db.execute(text("SELECT 1"))
                health_status["database"] = "connected"
            except Exception as e:
                health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
                health_status["status"] = "unhealthy"
                return JSONResponse(status_code=503, content=health_status)

        return health_status

    return app


app = create_app()
