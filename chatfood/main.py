import logging
import time
import traceback
import uuid
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

# .env is loaded from the project root wherever uvicorn is started from
_PROJ_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJ_ROOT / ".env")

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlmodel import Session

from chatfood.api.admin import router as admin_router
from chatfood.api.auth import router as auth_router
from chatfood.api.checkout import router as checkout_router
from chatfood.api.orders import router as orders_router
from chatfood.api.payments import router as payments_router
from chatfood.core.config import is_stripe_configured, settings
from chatfood.core.database import engine, init_db
from chatfood.core.errors import PaymentError
from chatfood.core.rate_limit import get_client_ip, limiter
from chatfood.logging import setup_logging
from chatfood.models import ErrorLog, SecurityLog

setup_logging(level=logging.INFO)
log = logging.getLogger("chatfood")


def _cors_origins_list() -> list[str]:
    if not settings.cors_origins or settings.cors_origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in settings.cors_origins.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    log.info("Stripe configured: %s", "yes" if is_stripe_configured() else "NO (set STRIPE_SECRET_KEY in .env)")
    if not settings.stripe_webhook_secret:
        log.warning("STRIPE_WEBHOOK_SECRET is empty: every webhook will be rejected")
    yield


_IS_PRODUCTION = (settings.environment or "").strip().lower() == "production"

app = FastAPI(
    title="ChatFood Payments API",
    description="Restaurant checkout, Stripe Connect and payment reconciliation",
    lifespan=lifespan,
    # No public API docs in production
    docs_url=None if _IS_PRODUCTION else "/docs",
    redoc_url=None if _IS_PRODUCTION else "/redoc",
)
app.state.limiter = limiter


def _error_response(request: Request, status_code: int, detail: str) -> JSONResponse:
    rid = getattr(request.state, "request_id", None)
    body = {"error": detail, "status_code": status_code}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=status_code, content=body)


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    try:
        with Session(engine) as db:
            db.add(SecurityLog(event="rate_limit", ip=get_client_ip(request), endpoint=request.url.path, detail="Rate limit exceeded"))
            db.commit()
    except Exception as e:
        log.warning("SecurityLog rate_limit write failed: %s", e)
    return _error_response(request, 429, "Too many requests. Please wait a minute.")


app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)


@app.exception_handler(PaymentError)
def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("Payment error: path=%s %s: %s", request.url.path, type(exc).__name__, exc.message)
    return _error_response(request, exc.status_code, exc.message)


def _jsonable_errors(errs: list) -> list:
    return [{"loc": list(e.get("loc") or []), "msg": e.get("msg"), "type": e.get("type")} for e in errs]


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errs = exc.errors()
    log.info("Request validation error (422): path=%s method=%s detail=%s", request.url.path, request.method, errs)
    first = errs[0] if errs else {}
    rid = getattr(request.state, "request_id", None)
    body = {"error": first.get("msg") or "Invalid request.", "status_code": 422, "detail": _jsonable_errors(errs)}
    if rid:
        body["request_id"] = rid
    return JSONResponse(status_code=422, content=body)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail if isinstance(exc.detail, str) else str(exc.detail))


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # 500 on the webhook path makes Stripe redeliver; handlers are idempotent
    log.exception("Unhandled exception: path=%s %s", request.url.path, exc, exc_info=True)
    try:
        with Session(engine) as db:
            db.add(ErrorLog(
                endpoint=request.url.path,
                method=request.method,
                error_message=str(exc)[:2000],
                stack_trace=traceback.format_exc()[:10000],
            ))
            db.commit()
    except Exception as e:
        log.warning("ErrorLog write failed: %s", e)
    return _error_response(request, 500, "Unexpected server error.")


@app.middleware("http")
async def request_id_and_latency(request: Request, call_next):
    request.state.request_id = str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000
    response.headers["X-Request-ID"] = request.state.request_id
    log.info(
        "request_id=%s method=%s path=%s status=%s latency_ms=%.2f",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        latency_ms,
    )
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(checkout_router)
app.include_router(payments_router)
app.include_router(orders_router)
app.include_router(admin_router)


@app.get("/health")
def health():
    try:
        with Session(engine) as db:
            db.connection().execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        log.warning("Health check database error: %s", e)
        database = "error"
    return {"status": "ok", "database": database, "stripe_configured": is_stripe_configured()}
