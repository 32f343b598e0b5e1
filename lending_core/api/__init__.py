"""
Lending API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import LendingError
from ..logging_config import get_logger
from .loans import router as loans_router
from .payments import router as payments_router
from .borrowers import router as borrowers_router
from .lenders import router as lenders_router
from .admin import router as admin_router
from .affordability import router as affordability_router


logger = get_logger("api")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Lending Core API",
        description="Peer-to-peer micro-lending engine: schedules, repayments, scoring and compliance",
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

    @app.exception_handler(LendingError)
    async def lending_error_handler(request: Request, exc: LendingError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.message}
        )

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(payments_router, tags=["Payments"])
    app.include_router(borrowers_router, tags=["Borrowers"])
    app.include_router(lenders_router, prefix="/lenders", tags=["Lenders"])
    app.include_router(affordability_router, prefix="/affordability", tags=["Affordability"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "lending_core_api",
            "version": __version__
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "lending_core.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
