import os

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .db import Base, engine
from .errors import ToolHubError
from .logging import setup_logging, RequestIdMiddleware
from .routes.accessories import router as accessories_router
from .routes.deleted import router as deleted_router
from .routes.employees import router as employees_router
from .routes.history import router as history_router
from .routes.positions import router as positions_router
from .routes.responses import fail
from .routes.sub_tools import router as sub_tools_router
from .routes.tools import router as tools_router
from .services.positions import AdminPositionCache

logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)
    app.state.admin_position_cache = AdminPositionCache(settings.admin_position_cache_ttl)

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    @app.exception_handler(ToolHubError)
    async def _toolhub_error(request: Request, exc: ToolHubError):
        logger.info("request_rejected", path=request.url.path, error=type(exc).__name__, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=fail(exc.message))

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"), "message": err.get("msg")}
            for err in exc.errors()
        ]
        return JSONResponse(status_code=400, content=fail("Invalid request", errors))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content=fail(str(exc.detail)), headers=exc.headers)

    # Routers
    app.include_router(tools_router)
    app.include_router(sub_tools_router)
    app.include_router(accessories_router)
    app.include_router(history_router)
    app.include_router(deleted_router)
    app.include_router(employees_router)
    app.include_router(positions_router)

    # Metrics
    Instrumentator().instrument(app).expose(app)

    @app.on_event("startup")
    def _startup():
        # Ensure local SQLite directory exists
        if settings.database_url.startswith("sqlite:///./"):
            os.makedirs("var", exist_ok=True)
        if settings.auto_create_db:
            Base.metadata.create_all(bind=engine)
        logger.info("startup_complete", environment=settings.environment)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
