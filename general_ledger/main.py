"""
General Ledger Engine: FastAPI application.

This is the entry point for the application.
All routers are registered here.
"""

import time
import uuid

from fastapi import FastAPI, Request

from general_ledger.config import get_settings
from general_ledger.logging_config import LogContext, configure_logging, get_logger
from general_ledger.api.health import router as health_router
from general_ledger.api.ledger import router as ledger_router
from general_ledger.api.journal_entries import router as journal_entries_router
from general_ledger.api.approvals import router as approvals_router
from general_ledger.api.fx import router as fx_router
from general_ledger.api.audit import router as audit_router

settings = get_settings()

configure_logging(level=settings.LOG_LEVEL.upper())
logger = get_logger("api.requests")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Journal entry posting, approval workflows and FX revaluation",
)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    """Bind tenant, actor and request id to every log line of the request."""
    request_id = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    started = time.time()
    with LogContext.bind(
        tenant_id=request.headers.get("X-Tenant-Id"),
        sub_scope_id=request.headers.get("X-Sub-Scope-Id"),
        actor_id=request.headers.get("X-Actor-Id"),
        request_id=request_id,
    ):
        response = await call_next(request)
        logger.info(
            "http_request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": int((time.time() - started) * 1000),
            },
        )
    response.headers["X-Request-Id"] = request_id
    return response


# Register routers
app.include_router(health_router)
app.include_router(ledger_router)
app.include_router(journal_entries_router)
app.include_router(approvals_router)
app.include_router(fx_router)
app.include_router(audit_router)
