"""
FastAPI application factory.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..config import AppConfig, get_config
from ..db.db_config import DatabaseManager, close_db, initialize_db
from ..exceptions import (
    BaseError,
    ErrorCode,
    InvalidFormatError,
    RateLimitExceededError,
    ValidationError,
    clear_correlation_id,
    set_correlation_id,
)
from ..utils.encryption_utils import CredentialCipher
from ..utils.logger import configure_logging
from ..utils.pnw_api import PnWApiClient
from .routes import router

API_PREFIX = "/api/api-keys"
CORRELATION_HEADER = "X-Correlation-ID"


def _error_response(error: BaseError) -> JSONResponse:
    headers = {}
    if isinstance(error, RateLimitExceededError):
        headers["Retry-After"] = str(error.retry_after)
    return JSONResponse(status_code=error.status_code, content=error.to_dict(), headers=headers)


async def handle_base_error(request: Request, exc: BaseError) -> JSONResponse:
    return _error_response(exc)


async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Rebuilt from locations and messages only; the default body echoes the input
    problems = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    # Request bodies only ever carry the API key
    if any(problem["field"].startswith("body") for problem in problems):
        return _error_response(InvalidFormatError("Invalid request", problems=problems))
    error = ValidationError(
        "Invalid request",
        error_code=ErrorCode.INVALID_FORMAT,
        problems=problems,
    )
    return _error_response(error)


def create_app(
    config: Optional[AppConfig] = None,
    db_manager: Optional[DatabaseManager] = None,
    cipher: Optional[CredentialCipher] = None,
    validator: Optional[PnWApiClient] = None,
) -> FastAPI:
    """
    Build the API application.

    Runs the cipher self-check (a failure is logged, startup continues) and
    initializes the database unless a manager is supplied.

    Args:
        config: Application config (default: global config from the environment)
        db_manager: Database manager (default: ``initialize_db(config.database)``)
        cipher: Credential cipher (default: built from ``config.security``)
        validator: PnW API client (default: built from ``config.pnw_api``)
    """
    config = config or get_config()
    logger = configure_logging(
        "pnw-key-manager",
        log_level=config.logging.level,
        enable_queue=config.features.enable_logs_queue,
        queue_name=config.queue.logs_queue_name,
        queue_batch_size=config.queue.batch_size,
        connection_string=config.queue.connection_string,
    )

    cipher = cipher or CredentialCipher.from_config(config)
    if config.features.enable_encryption_self_check:
        if not cipher.has_master_key:
            logger.warning("ENCRYPTION_KEY is not set; linking API keys will fail")
        elif cipher.self_check():
            logger.info("Encryption system validated")

    owns_db = db_manager is None
    if owns_db:
        db_manager = initialize_db(config.database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_db:
            close_db()

    app = FastAPI(title="PnW Key Manager", debug=config.debug, lifespan=lifespan)
    app.state.config = config
    app.state.db_manager = db_manager
    app.state.cipher = cipher
    app.state.validator = validator or PnWApiClient(config.pnw_api)

    app.add_exception_handler(BaseError, handle_base_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    app.include_router(router, prefix=API_PREFIX, tags=["api-keys"])
    return app
