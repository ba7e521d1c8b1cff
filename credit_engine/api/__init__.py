"""
Credit Engine API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import CreditSystem, logger
from .credits import router as credits_router
from .users import router as users_router
from .accounts import router as accounts_router
from .settlement import router as settlement_router
from .. import __version__
from ..errors import CreditEngineError, ErrorKind


STATUS_BY_ERROR_KIND = {
    ErrorKind.INVALID_ARGUMENT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.INSUFFICIENT_FUNDS: 402,
    ErrorKind.NO_PENDING_PAYMENT: 409,
    ErrorKind.INTERNAL: 500,
}


def create_app(system: Optional[CreditSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The settlement scheduler is started and stopped with the application
    lifespan.
    """
    credit_system = system or CreditSystem()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        credit_system.start()
        try:
            yield
        finally:
            credit_system.shutdown()

    app = FastAPI(
        title="Credit Engine API",
        description="Credit origination, repayment and automatic settlement",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.credit_system = credit_system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CreditEngineError)
    async def handle_credit_engine_error(request: Request, exc: CreditEngineError):
        status_code = STATUS_BY_ERROR_KIND.get(exc.kind, 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=status_code,
            content={"error": exc.kind.value, "detail": str(exc)}
        )

    app.include_router(credits_router, prefix="/credits", tags=["Credits"])
    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(settlement_router, prefix="/settlement", tags=["Settlement"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "credit_engine",
            "version": __version__,
            "scheduler": credit_system.scheduler.state.value
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "credit_engine.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
