"""
Transaction Ledger API Application Factory
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .dependencies import LedgerSystem
from .schemas import ErrorResponse
from .transactions import router as transactions_router
from ..config import get_config
from ..exceptions import (
    LedgerError, ValidationError, NotFoundError, DuplicateError
)
from ..logging_config import setup_logging, get_logger, correlation_id_var
from .. import __version__


CORRELATION_HEADER = "X-Correlation-ID"

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (DuplicateError, 409),
)


def _error_response(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break

    details = None
    if isinstance(exc, ValidationError):
        details = {"field": exc.field}
    elif isinstance(exc, NotFoundError):
        details = {"key": exc.key}

    body = ErrorResponse(
        error_code=exc.error_code,
        message=exc.message,
        status=status_code,
        timestamp=datetime.now(timezone.utc),
        path=request.url.path,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system else get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger = get_logger("ledger.api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        app.state.ledger_system.close()

    app = FastAPI(
        title="Transaction Ledger API",
        description="Bank account transaction records with cached queries and derived balances",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.ledger_system = system or LedgerSystem(config)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        if not isinstance(exc, (ValidationError, NotFoundError, DuplicateError)):
            logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
        return _error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies and query values render like ledger validation errors
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
        return _error_response(request, ValidationError(field, first.get("msg", "Invalid request")))

    app.include_router(transactions_router, prefix="/api/v1/transactions", tags=["Transactions"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "transaction_ledger_api",
            "version": __version__
        }

    @app.get("/")
    def get_api_info():
        """Get API information"""
        return {
            "name": "Transaction Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "transactions": "/api/v1/transactions",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False) -> None:
    """Run the API server with uvicorn"""
    config = get_config()
    app = create_app()
    uvicorn.run(
        app,
        host=host or config.api_host,
        port=port or config.api_port,
        log_level="debug" if debug else config.log_level.lower()
    )
