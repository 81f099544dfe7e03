"""
Campus Virtual API

Main FastAPI application for the school portal: subjects, units, content,
assignments, forums, messaging, notifications and administration, all behind
one role-based authorization layer.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from database import init_db, SessionLocal, UserRole
from api import ROUTERS
from api.deps import request_token
from services.exceptions import CampusError, Unavailable, Unauthenticated
from services.sessions import resolve_session
from services.site_config import get_maintenance

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("campus")

# Reachable while maintenance mode is on
MAINTENANCE_EXEMPT_PREFIXES = ("/api/auth", "/api/admin/maintenance")


# --------------- Lifespan ---------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the tables on startup."""
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized.")
    yield


# --------------- FastAPI app ---------------

app = FastAPI(
    title="Campus Virtual API",
    description="""
API for the Campus Virtual school portal.

## Roles
- **student**: reads enrolled subjects; writes (submissions, forum posts,
  messages) only once approved by an administrator
- **teacher**: manages the subjects they own
- **admin**: satisfies every role gate
- **admin_director**: acts as admin on student approvals only

## Conventions
- Success: `{"success": true, "data": ..., "message": ...}`
- Failure: `{"error": "..."}` with status 400, 401, 403, 404, 409, 500 or 503
- Missing resources answer 404 before any permission check answers 403
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, message: str, retry_after: int = None) -> JSONResponse:
    content = {"error": message}
    headers = None
    if retry_after is not None:
        content["retryAfter"] = retry_after
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


# Exception handlers
@app.exception_handler(CampusError)
async def campus_error_handler(request: Request, exc: CampusError):
    """Domain errors map to their status code with the `{error}` envelope."""
    if exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method,
                       request.url.path, exc.message)
    return _error_response(exc.status_code, exc.message,
                           getattr(exc, "retry_after", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Solicitud inválida"
    return _error_response(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler. Details stay in the server log."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(500, "Error interno del servidor")


def _is_admin_request(db, request: Request) -> bool:
    try:
        user, _ = resolve_session(db, request_token(request))
    except Unauthenticated:
        return False
    return user.role == UserRole.ADMIN.value


def _blocking_maintenance(request: Request):
    """Maintenance record when it blocks this request, None otherwise."""
    db = SessionLocal()
    try:
        maintenance = get_maintenance(db)
        if maintenance.get("enabled") and not _is_admin_request(db, request):
            return maintenance
        return None
    finally:
        db.close()


@app.middleware("http")
async def maintenance_mode(request: Request, call_next):
    """While maintenance is on, only admins and the exempt paths get through."""
    path = request.url.path
    if not path.startswith("/api") or path.startswith(MAINTENANCE_EXEMPT_PREFIXES):
        return await call_next(request)
    maintenance = await run_in_threadpool(_blocking_maintenance, request)
    if maintenance:
        exc = Unavailable(maintenance.get("message"),
                          retry_after=settings.maintenance_retry_after_seconds)
        return _error_response(exc.status_code, exc.message, exc.retry_after)
    return await call_next(request)


# Include routers
for router in ROUTERS:
    app.include_router(router)


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API health check."""
    return {
        "status": "online",
        "service": "Campus Virtual API",
        "version": "1.0.0"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
