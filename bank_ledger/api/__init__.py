"""
Bank Ledger API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .dashboard import router as dashboard_router
from .dependencies import current_user_id
from .. import __version__
from ..config import get_config
from ..errors import ErrorKind, LedgerError
from ..storage import DuplicateRecordError, StorageError, StorageUnavailableError
from ..system import LedgerSystem
from ..logging_config import get_logger, setup_logging


logger = get_logger("bank_ledger.api")

STATUS_BY_KIND = {
    ErrorKind.ACCOUNT_NOT_FOUND: 404,
    ErrorKind.INVALID_AMOUNT: 400,
    ErrorKind.SELF_TRANSFER: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 409,
    ErrorKind.STORE_UNAVAILABLE: 503,
    ErrorKind.INTERNAL: 500,
}

# Seconds a client should wait before retrying a 503
RETRY_AFTER_SECONDS = 1


def error_response(kind: ErrorKind, message: str) -> JSONResponse:
    """Render a ledger error as {"error": kind, "message": text}"""
    headers = None
    if kind == ErrorKind.STORE_UNAVAILABLE:
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
    return JSONResponse(
        status_code=STATUS_BY_KIND[kind],
        content={"error": kind.value, "message": message},
        headers=headers
    )


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Ledger system to serve. When omitted one is built from the
            configuration at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "system", None) is None:
            owned = LedgerSystem.from_config()
            app.state.system = owned
        try:
            yield
        finally:
            if owned is not None:
                owned.close()
                app.state.system = None
                logger.info("Ledger store closed")

    app = FastAPI(
        title="Bank Ledger API",
        description="Transaction posting engine with atomic balance updates",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Every ledger route needs to know who is acting
    authenticated = [Depends(current_user_id)]
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"], dependencies=authenticated)
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"], dependencies=authenticated)
    app.include_router(dashboard_router, prefix="/dashboard", tags=["Dashboard"], dependencies=authenticated)

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        return error_response(exc.kind, exc.message)

    @app.exception_handler(DuplicateRecordError)
    async def duplicate_record_handler(request: Request, exc: DuplicateRecordError):
        return JSONResponse(status_code=409, content={"error": "duplicate_record", "message": str(exc)})

    @app.exception_handler(StorageUnavailableError)
    async def store_unavailable_handler(request: Request, exc: StorageUnavailableError):
        logger.warning(f"Store unavailable: {exc}")
        return error_response(ErrorKind.STORE_UNAVAILABLE, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure: {exc}")
        return error_response(ErrorKind.INTERNAL, "Internal storage error")

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "bank_ledger_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the API server with the configured logging, host and port"""
    config = get_config()
    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
