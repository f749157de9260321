from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from starlette.responses import JSONResponse, Response

from canarywatch.api.routes import router as api_router
from canarywatch.core.auth import enforce_api_auth
from canarywatch.core.config import get_settings
from canarywatch.core.logging import configure_logging
from canarywatch.core.observability import REQUEST_COUNT, REQUEST_LATENCY
from canarywatch.core.responses import error_response
from canarywatch.db.init_db import init_db
from canarywatch.db.session import get_engine

TRACE_HEADER = "X-Trace-Id"

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    FastAPIInstrumentor.instrument_app(app)
    SQLAlchemyInstrumentor().instrument(engine=get_engine())
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.include_router(api_router)


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "missing-trace-id")


def _error(request: Request, code: str, message: str, status: int, details: dict | None = None) -> JSONResponse:
    payload, status = error_response(code, message, _trace_id(request), status, details)
    return JSONResponse(payload, status_code=status, headers={TRACE_HEADER: _trace_id(request)})


def _route_label(request: Request) -> str:
    # Label by route template so job ids and dates do not explode metric cardinality.
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request.state.trace_id = request.headers.get(TRACE_HEADER) or str(uuid4())

    try:
        enforce_api_auth(request)
    except HTTPException as exc:
        return _error(request, "AUTH_ERROR", str(exc.detail), exc.status_code)

    start = perf_counter()
    response = await call_next(request)
    elapsed = perf_counter() - start

    path = _route_label(request)
    REQUEST_COUNT.labels(request.method, path, str(response.status_code)).inc()
    REQUEST_LATENCY.labels(request.method, path).observe(elapsed)
    response.headers[TRACE_HEADER] = request.state.trace_id
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error(request, "HTTP_ERROR", str(exc.detail), exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _error(request, "VALIDATION_ERROR", "Request validation failed", 422, {"errors": exc.errors()})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    return _error(request, "INTERNAL_ERROR", str(exc), 500)


@app.get("/healthz")
def healthz() -> dict:
    with get_engine().connect() as connection:
        connection.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.env}


@app.get("/metrics")
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
