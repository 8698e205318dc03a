# tannery/app.py
import contextlib
import os
import time
from typing import Any, Dict, Optional

# Load .env BEFORE any tannery imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import Body, FastAPI, Path, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import ValidationError as PydanticValidationError

from tannery import auth as authmod
from tannery import db as dbmod
from tannery import monitoring
from tannery.connectors.smtp_mailer import SmtpMailer
from tannery.dispatcher import SideEffectDispatcher
from tannery.errors import DuplicateKeyError, NotFoundError, PersistenceError, TanneryError, ValidationError
from tannery.kinds.quote import QUOTE
from tannery.kinds.sample import SAMPLE
from tannery.lifecycle import QuoteLifecycleEngine, RequestLifecycleEngine
from tannery.models import NotificationRecord, QuoteRequestRecord, SampleRequestRecord
from tannery.notifications import NotificationService
from tannery.repositories.sql import SqlRepository
from tannery.schemas import NotificationUpdate

NOTIFICATION_RETENTION_DAYS = int(os.getenv("NOTIFICATION_RETENTION_DAYS", "7"))
API_KEY_HEADER = "x-api-key"
CRON_PATH = "/api/cron/cleanup-notifications"

# Initialize DB tables on startup
dbmod.init_db()

dispatcher = SideEffectDispatcher()
mailer = SmtpMailer()
notifications = NotificationService(SqlRepository(NotificationRecord))
quotes = QuoteLifecycleEngine(QUOTE, SqlRepository(QuoteRequestRecord), notifications, mailer, dispatcher)
samples = RequestLifecycleEngine(SAMPLE, SqlRepository(SampleRequestRecord), notifications, mailer, dispatcher)


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if dispatcher.pending:
        monitoring.logger.info("Draining side effects", extra={"pending": dispatcher.pending})
    await dispatcher.drain()


app = FastAPI(title="Tannery Back Office API", lifespan=lifespan)


def _ok(status_code: int = 200, **payload) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"status": "success", **payload}))


# ---------------------------------------------------------------------------
# Auth + rate-limit middleware (runs first on /api/* paths)
# ---------------------------------------------------------------------------
@app.middleware("http")
async def api_key_and_rate_limit_middleware(request: Request, call_next):
    path = request.url.path
    # the cron route carries its own bearer secret
    if not path.startswith("/api/") or path == CRON_PATH:
        return await call_next(request)

    api_key = request.headers.get(API_KEY_HEADER)
    if not authmod.is_key_allowed(api_key):
        return JSONResponse(
            status_code=401,
            content={"status": "error", "error_code": "E_UNAUTHORIZED", "message": "Missing or invalid API key"},
        )

    identity = authmod.client_identity(
        api_key,
        request.headers.get("x-forwarded-for"),
        request.client.host if request.client else None,
    )
    allowed, remaining = authmod.check_rate_limit(identity)
    if not allowed:
        resp = JSONResponse(
            status_code=429,
            content={"status": "error", "error_code": "E_RATE_LIMIT", "message": "Rate limit exceeded"},
        )
        resp.headers["Retry-After"] = str(authmod.retry_after(identity))
        return resp

    response = await call_next(request)
    if remaining is not None:
        response.headers["X-RateLimit-Remaining"] = str(remaining)
    return response


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    endpoint = request.url.path
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": endpoint})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
@app.exception_handler(TanneryError)
async def tannery_error_handler(request: Request, exc: TanneryError):
    body = exc.to_dict()
    if exc.status_code >= 500:
        monitoring.logger.error(
            "Request failed", extra={"path": request.url.path, "error_code": exc.error_code, "error": exc.message}
        )
        if isinstance(exc, PersistenceError) and not isinstance(exc, DuplicateKeyError) \
                and monitoring.ENVIRONMENT != "development":
            body["message"] = "Internal server error"
            body["details"] = {}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    err = ValidationError.from_pydantic(exc)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


# ---------------------------------------------------------------------------
# Quote requests
# ---------------------------------------------------------------------------
@app.post("/api/quote-requests")
async def create_quote_request(payload: Any = Body(...)):
    record = await quotes.create(payload)
    return _ok(201, message="Quote request submitted successfully", data=record)


@app.get("/api/quote-requests")
async def list_quote_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    status: Optional[str] = None,
    search: Optional[str] = None,
    destination_country: Optional[str] = Query(None, alias="destinationCountry"),
    item_type_category: Optional[str] = Query(None, alias="itemTypeCategory"),
):
    result = await quotes.list(
        {
            "status": status,
            "search": search,
            "destination_country": destination_country,
            "item_type_category": item_type_category,
        },
        page=page,
        limit=limit,
        sort_by=sort_by,
        order=order,
    )
    return _ok(**result)


@app.get("/api/quote-requests/{request_id}")
async def get_quote_request(request_id: str = Path(..., description="Quote request id")):
    return _ok(data=await quotes.get_by_id(request_id))


@app.patch("/api/quote-requests/{request_id}")
async def update_quote_request(request_id: str, payload: Any = Body(...)):
    record = await quotes.update(request_id, payload)
    return _ok(message="Quote request updated", data=record, warnings=quotes.warnings(record))


@app.patch("/api/quote-requests/{request_id}/invoice")
async def attach_quote_invoice(request_id: str, payload: Dict[str, Any] = Body(...)):
    record = await quotes.attach_invoice(
        request_id,
        invoice_id=payload.get("invoice_id"),
        proposed_price_per_unit=payload.get("proposed_price_per_unit"),
        proposed_total_price=payload.get("proposed_total_price"),
        payment_method=payload.get("payment_method"),
    )
    return _ok(message="Invoice attached", data=record)


@app.delete("/api/quote-requests/{request_id}")
async def delete_quote_request(request_id: str):
    if not await quotes.delete(request_id):
        raise NotFoundError("Quote request not found", {"id": request_id})
    return _ok(message="Quote request deleted")


# ---------------------------------------------------------------------------
# Sample requests
# ---------------------------------------------------------------------------
@app.post("/api/sample-requests")
async def create_sample_request(payload: Any = Body(...)):
    record = await samples.create(payload)
    return _ok(201, message="Sample request submitted successfully", data=record)


@app.get("/api/sample-requests")
async def list_sample_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    status: Optional[str] = None,
    search: Optional[str] = None,
    country: Optional[str] = None,
    sample_type: Optional[str] = Query(None, alias="sampleType"),
):
    result = await samples.list(
        {"status": status, "search": search, "country": country, "sample_type": sample_type},
        page=page,
        limit=limit,
        sort_by=sort_by,
        order=order,
    )
    return _ok(**result)


@app.get("/api/sample-requests/{request_id}")
async def get_sample_request(request_id: str = Path(..., description="Sample request id")):
    return _ok(data=await samples.get_by_id(request_id))


@app.patch("/api/sample-requests/{request_id}")
async def update_sample_request(request_id: str, payload: Any = Body(...)):
    record = await samples.update(request_id, payload)
    return _ok(message="Sample request updated", data=record, warnings=samples.warnings(record))


@app.delete("/api/sample-requests/{request_id}")
async def delete_sample_request(request_id: str):
    if not await samples.delete(request_id):
        raise NotFoundError("Sample request not found", {"id": request_id})
    return _ok(message="Sample request deleted")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
@app.get("/api/notifications")
async def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", alias="sortBy"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    read: Optional[bool] = None,
    type: Optional[str] = None,
    search: Optional[str] = None,
):
    result = await notifications.list(
        read=read, type=type, search=search, page=page, limit=limit, sort_by=sort_by, order=order
    )
    return _ok(**result)


@app.patch("/api/notifications/{notification_id}")
async def update_notification(notification_id: str, payload: Any = Body(...)):
    try:
        update = NotificationUpdate.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e
    return _ok(data=await notifications.set_read(notification_id, update.read))


@app.post("/api/notifications/mark-all-read")
async def mark_all_notifications_read():
    updated = await notifications.mark_all_read()
    return _ok(message=f"{updated} notifications marked as read", updated=updated)


@app.delete("/api/notifications/{notification_id}")
async def delete_notification(notification_id: str):
    if not await notifications.delete(notification_id):
        raise NotFoundError("Notification not found", {"id": notification_id})
    return _ok(message="Notification deleted")


@app.get(CRON_PATH)
async def cleanup_notifications(request: Request):
    if not authmod.is_cron_authorized(request.headers.get("authorization")):
        monitoring.logger.warning("Unauthorized cron invocation", extra={"path": CRON_PATH})
        return JSONResponse(
            status_code=401,
            content={"status": "error", "error_code": "E_UNAUTHORIZED", "message": "Unauthorized"},
        )
    removed = await notifications.delete_older_than(NOTIFICATION_RETENTION_DAYS)
    return _ok(message=f"Deleted {removed} notifications older than {NOTIFICATION_RETENTION_DAYS} days",
               deleted=removed)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
