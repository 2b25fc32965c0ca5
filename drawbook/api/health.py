"""
Health endpoints.

Liveness never touches dependencies; readiness probes the database and the
tables the ledger and order flows need.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from drawbook.core.database import check_connection, get_engine

logger = logging.getLogger("drawbook")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "profiles",
    "creations",
    "credit_transactions",
    "book_orders",
    "payment_events",
]


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    try:
        if not check_connection():
            return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

        inspector = inspect(get_engine())
        missing = [t for t in REQUIRED_TABLES if not inspector.has_table(t)]
        if missing:
            detail = f"missing tables: {', '.join(missing)}"
            logger.warning("readyz.missing_tables", extra={"error_code": "missing_tables"})
            return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

        return {"status": "ok"}
    except Exception as e:
        logger.error("readyz.failed", extra={"error_code": type(e).__name__})
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})
