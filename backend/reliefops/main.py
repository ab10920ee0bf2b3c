import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reliefops.config import Settings, get_settings
from reliefops.errors import EngineError
from reliefops.repositories.base import Store
from reliefops.repositories.factory import build_store
import reliefops.models  # noqa: F401 — register all ORM models with Base.metadata

from reliefops.api.routes import (
    allocations,
    demand_requests,
    disasters,
    resources,
    storage_locations,
    volunteers,
)

logger = logging.getLogger(__name__)


def create_app(store: Store | None = None, settings: Settings | None = None) -> FastAPI:
    """Build the API. Pass *store* to run against an already-built store (tests, scripts)."""
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # Keep SQL echo out of the way unless DEBUG is on
    if not settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.store = store or build_store(settings)

    # CORS (React dashboard)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # API routes
    app.include_router(disasters.router, prefix=settings.API_PREFIX, tags=["Disasters"])
    app.include_router(demand_requests.router, prefix=settings.API_PREFIX, tags=["Demand Requests"])
    app.include_router(allocations.router, prefix=settings.API_PREFIX, tags=["Allocations"])
    app.include_router(volunteers.router, prefix=settings.API_PREFIX, tags=["Volunteers"])
    app.include_router(resources.router, prefix=settings.API_PREFIX, tags=["Resources"])
    app.include_router(storage_locations.router, prefix=settings.API_PREFIX, tags=["Storage Locations"])

    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": type(exc).__name__},
        )

    @app.on_event("startup")
    async def startup():
        await app.state.store.open()
        logger.info("%s store opened", settings.STORE_BACKEND if store is None else type(store).__name__)

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.store.close()

    @app.get("/health")
    async def health_check():
        try:
            store_ok = await app.state.store.ping()
        except Exception:
            logger.exception("Store health check failed")
            store_ok = False
        return {
            "status": "healthy" if store_ok else "degraded",
            "service": settings.APP_NAME,
            "store": "connected" if store_ok else "unavailable",
        }

    return app


app = create_app()
