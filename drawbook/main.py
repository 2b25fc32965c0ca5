"""
Drawbook API: credits, creations, shipping quotes, book checkout and order fulfillment.

    uvicorn drawbook.main:app
"""
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException

# drawbook/.env must be loaded before settings are instantiated
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env"))

from drawbook.api import billing, creations, credits, health, orders, shipping  # noqa: E402
from drawbook.core.config import settings, validate_config  # noqa: E402
from drawbook.core.database import create_all_tables, dispose_engine, get_database_url  # noqa: E402
from drawbook.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from drawbook.core.logging import configure_logging  # noqa: E402
from drawbook.core.middleware.request_id import RequestIdMiddleware  # noqa: E402

logger = configure_logging(settings.ENV, settings.LOG_LEVEL)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if get_database_url():
        create_all_tables()
    logger.info("api.startup")
    try:
        yield
    finally:
        dispose_engine()
        logger.info("api.shutdown")


app = FastAPI(title="Drawbook API", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.SITE_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

for module in (credits, creations, shipping, billing, orders):
    app.include_router(module.router, prefix="/api")
app.include_router(health.root_router)
