from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import InternalFailure, PermissionSystemError, Unauthenticated
from app.features.audit.recorder import AuditRecorder
from app.features.permissions.catalog import PermissionCatalog, Role
from app.features.permissions.routes import router as permission_router
from app.features.users.routes import router as user_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)


class LogTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info("Creating tables")
    await init_db()
    catalog: PermissionCatalog = app.state.catalog
    log.info(
        "Ready: %s permissions, user defaults %s",
        len(catalog.permissions), list(catalog.defaults_for(Role.USER)) or "none",
    )
    yield


async def permission_system_error_handler(_request: Request, exc: PermissionSystemError) -> Response:
    if isinstance(exc, InternalFailure):
        log.error("Internal failure: %s", exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> Response:
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    body = {"success": False, "error": "InvalidInput", "message": "Request validation failed", "errors": errors}
    return JSONResponse(status_code=400, content=jsonable_encoder(body))


def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"success": False, "error": "RateLimited", "message": "You are going too fast"}, status_code=429)


def build_app() -> FastAPI:
    log.info("Initializing server")
    app = FastAPI(
        title="Content RBAC Backend",
        description="Role-based access control with per-user permission overrides and an audit trail",
        version="0.1.0",
        docs_url="/docs" if config.ENABLE_DOCS else None,
        redoc_url="/redoc" if config.ENABLE_DOCS else None,
        openapi_url="/openapi.json" if config.ENABLE_DOCS else None,
        lifespan=lifespan,
    )

    app.state.limiter = Limiter(key_func=get_authorization_header)
    # Role template edits swap the catalog's snapshot; every request reads it from here
    app.state.catalog = PermissionCatalog(user_defaults=config.USER_DEFAULT_PERMISSIONS)
    app.state.audit_recorder = AuditRecorder(AsyncSessionLocal, timeout=config.AUDIT_TIMEOUT_SECONDS)

    app.add_middleware(TimingMiddleware, client=LogTimings(), metric_namer=StarletteScopeToName("main", app))
    if config.ENABLE_DOCS:
        log.warning("Docs enabled")
    if config.ALLOW_ORIGIN:
        log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[config.ALLOW_ORIGIN],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(PermissionSystemError, permission_system_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.get("/")
    async def root():
        """Service banner."""
        return {
            "message": "Content RBAC Backend API",
            "version": "0.1.0",
            "status": "online",
            "docs": "/docs" if config.ENABLE_DOCS else None,
            "authentication": {
                "info": "Protected endpoints require Bearer token in Authorization header",
                "protected_endpoints": ["/users/*", "/permissions/*"],
            },
        }

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    app.include_router(user_router, prefix="/users", tags=["users"])
    app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
    return app


app = build_app()
