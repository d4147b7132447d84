"""
Back Office API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .deps import get_banking_system
from .users import router as users_router
from .transactions import router as transactions_router
from .loans import router as loans_router, institution_router
from .notifications import router as notifications_router
from .. import __version__
from ..errors import (
    BackofficeError, ConflictError, NotFoundError, StorageFailure, ValidationError
)
from ..logging_config import get_logger
from ..system import BankingSystem


logger = get_logger("backoffice.api")

ERROR_STATUS = {
    NotFoundError: 404,
    ConflictError: 409,
    ValidationError: 400,
    StorageFailure: 503,
}


def _status_for(exc: BackofficeError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP status codes with an {"error": ...} body"""

    @app.exception_handler(BackofficeError)
    async def backoffice_error_handler(request: Request, exc: BackofficeError):
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} refused ({status_code}): {exc}")
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        messages = [
            f"{'.'.join(str(part) for part in error['loc'][1:])}: {error['msg']}"
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "; ".join(messages)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Back Office API",
        description="Retail banking back office: transactions, loans, notifications",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_banking_system] = lambda: system

    register_exception_handlers(app)

    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(transactions_router, prefix="/transactions", tags=["Transactions"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(institution_router, prefix="/institution-requests", tags=["Institutions"])
    app.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "backoffice_api",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 3001, debug: bool = False,
               log_level: str = "info"):
    """Run the FastAPI server"""
    uvicorn.run(
        "backoffice.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level=log_level.lower()
    )
