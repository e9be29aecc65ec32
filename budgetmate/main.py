"""
FastAPI application factory
"""
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.sessions import SessionMiddleware

from budgetmate.config import get_settings
from budgetmate.domain.errors import (
    AllocationConflict, InvalidAmount, InvalidFrequency, NoIncomeAvailable, NotFound, PersistenceFailure,
)
from budgetmate.infrastructure.db.session import check_db_connection
from budgetmate.api.v1 import allocations, envelopes, funding, income

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map allocation engine errors to HTTP status codes"""

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error_response(404, exc)

    @app.exception_handler(AllocationConflict)
    async def conflict_handler(request: Request, exc: AllocationConflict):
        logger.warning("Allocation conflict on %s %s: %s", request.method, request.url.path, exc)
        return _error_response(409, exc)

    @app.exception_handler(NoIncomeAvailable)
    async def no_income_handler(request: Request, exc: NoIncomeAvailable):
        return _error_response(400, exc)

    @app.exception_handler(PersistenceFailure)
    async def persistence_handler(request: Request, exc: PersistenceFailure):
        logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
        return _error_response(503, exc)

    # InvalidFrequency / InvalidAmount / validation errors are all ValueError
    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error_response(400, exc)

    for exc_class in (InvalidFrequency, InvalidAmount):
        app.add_exception_handler(exc_class, value_error_handler)


def create_app() -> FastAPI:
    """
    Application factory: builds and configures the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="BudgetMate",
        debug=settings.DEBUG,
    )

    # Error-logging middleware: catches everything the handlers below do not map
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import Response

    class ErrorLoggingMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            try:
                response = await call_next(request)
                return response
            except Exception as exc:
                tb_str = traceback.format_exc()
                logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
                return Response(content=f"Internal Server Error: {exc}", status_code=500)

    app.add_middleware(ErrorLoggingMiddleware)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY
    )

    register_exception_handlers(app)

    app.include_router(envelopes.router)
    app.include_router(income.router)
    app.include_router(allocations.router)
    app.include_router(funding.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (checks the database is reachable)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "budgetmate.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
