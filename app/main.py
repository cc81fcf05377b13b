import asyncio
import time
from contextlib import asynccontextmanager, suppress

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from app.agents.orchestrator import ResearchOrchestrator
from app.api.deps import get_orchestrator, get_session_store
from app.api.routes import followups, research_requests
from app.config import settings
from app.errors import NotFoundError, ResearchServiceError, ValidationError
from app.services import logger as log_service
from app.services.research_store import get_research_store

SERVICE_NAME = "perspective-research"


def _resolve_orchestrator(app: FastAPI):
    factory = app.dependency_overrides.get(get_orchestrator, get_orchestrator)
    return factory()


async def _sweep_once(app: FastAPI) -> None:
    """Fail stale in_progress requests and drop expired sessions."""
    try:
        await _resolve_orchestrator(app).reconcile_stale_requests()
    except Exception as e:
        logger.error(f"Stale request sweep failed: {e}")

    sessions = app.dependency_overrides.get(get_session_store, get_session_store)()
    prune = getattr(sessions, "prune", None)
    if prune is not None:
        expired = prune()
        if expired:
            logger.debug(f"Pruned {expired} expired sessions")


async def _stale_sweep_loop(app: FastAPI) -> None:
    interval = max(int(settings.stale_sweep_interval_seconds), 1)
    while True:
        await asyncio.sleep(interval)
        await _sweep_once(app)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    store = get_research_store()
    ensure_schema = getattr(store, "ensure_schema", None)
    if ensure_schema is not None:
        await ensure_schema()

    orchestrator = _resolve_orchestrator(app)
    try:
        recovered = await orchestrator.reconcile_stale_requests()
        if recovered:
            logger.warning(f"Marked {len(recovered)} stale in_progress requests as failed at startup")
    except Exception as e:
        logger.error(f"Startup reconciliation failed: {e}")
    sweeper = asyncio.create_task(_stale_sweep_loop(app), name="stale-request-sweep")

    yield

    # Shutdown
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await orchestrator.shutdown()
    close = getattr(store, "close", None)
    if close is not None:
        await close()


app = FastAPI(
    title="Perspective Research",
    description="Deep research orchestration: URL extraction, follow-up questions and multi-perspective analysis",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_api_requests(request: Request, call_next):
    t0 = time.monotonic()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        log_service.log_event(
            event_type="api_request",
            message=f"{request.method} {request.url.path} {response.status_code}",
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
    return response


@app.exception_handler(ResearchServiceError)
async def handle_service_error(request: Request, exc: ResearchServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = tuple(err.get("loc", ()))
        if loc and loc[0] == "path":
            # Malformed ids cannot name an existing resource.
            not_found = NotFoundError()
            return JSONResponse(status_code=not_found.status_code, content=not_found.to_payload())
        field = ".".join(str(part) for part in loc if part != "body") or "_root"
        message = str(err.get("msg", "Invalid value")).removeprefix("Value error, ")
        errors.setdefault(field, []).append(message)
    validation = ValidationError("Validation failed", errors)
    return JSONResponse(status_code=validation.status_code, content=validation.to_payload())


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"message": "Internal Server Error", "code": "InternalError"})


# Routes
app.include_router(research_requests.router)
app.include_router(followups.router)


@app.get("/api/health")
async def health(orchestrator: ResearchOrchestrator = Depends(get_orchestrator)):
    return {"status": "ok", "service": SERVICE_NAME, **orchestrator.snapshot()}
