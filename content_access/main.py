"""
Main FastAPI application for Content Access API.
Serves entitlement checks, purchases, download links, admin actions, health and metrics.
"""
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from content_access.api.routes import access, admin, downloads, health, payments
from content_access.core.config import settings
from content_access.core.errors import AccessError
from content_access.core.logging import configure_logging
from content_access.services.payment_gateway.razorpay import close_payment_gateway
from content_access.utils.metrics import router as metrics_router

configure_logging()
logger = logging.getLogger("content_access.api")

app = FastAPI(
    title="Content Access API",
    description="Entitlements, purchases and one-time download links for catalogue content",
    version="1.0.0",
)

# CORS
origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or uuid4().hex
    start = time.monotonic()
    response = await call_next(request)
    # Путь /downloads/{secret} содержит bearer-секрет: в лог только шаблон
    path = "/downloads/{secret}" if request.url.path.startswith("/downloads/") and request.method == "GET" else request.url.path
    logger.info(
        "http_request",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": path,
            "status_code": response.status_code,
            "latency_ms": round((time.monotonic() - start) * 1000, 1),
        },
    )
    response.headers[settings.request_id_header] = request_id
    return response


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    """Единый формат ошибок: code, detail, remediation, retryable (+ безопасный контекст)."""
    if exc.http_status >= 500:
        logger.warning("access_error", extra={"error": exc.code, "status_code": exc.http_status})
    return JSONResponse(status_code=exc.http_status, content=jsonable(exc.to_dict()))


def jsonable(body: dict) -> dict:
    return {k: (v if v is None or isinstance(v, (str, int, float, bool)) else str(v)) for k, v in body.items()}


@app.on_event("shutdown")
def shutdown() -> None:
    close_payment_gateway()
    logger.info("shutdown")


# Routers
app.include_router(health.router, tags=["health"])
app.include_router(access.router)
app.include_router(payments.router)
app.include_router(downloads.router)
app.include_router(admin.router)
app.include_router(metrics_router)
