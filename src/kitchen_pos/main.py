"""FastAPI application entry point for Kitchen POS."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kitchen_pos import __version__
from kitchen_pos.api.routes import router
from kitchen_pos.auth.reconciler import build_reconciler
from kitchen_pos.config import get_settings
from kitchen_pos.exceptions import AuthError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events.

    ``app.state.reconciler`` is the one session reconciler for the process.
    It is created here unless one was installed before startup.
    """
    logger.info(f"Starting Kitchen POS console v{__version__}")
    settings = get_settings()
    logger.info(f"Debug mode: {settings.debug}")

    if getattr(app.state, "reconciler", None) is None:
        app.state.reconciler = build_reconciler(settings)

    state = await app.state.reconciler.start()
    logger.info(f"Session initialized: {state.phase.value}")

    yield

    await app.state.reconciler.close()
    logger.info("Shutting down Kitchen POS console")


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render session failures in the standard response envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies in the standard response envelope."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "request"
        message = f"Invalid {field}: {first.get('msg', 'invalid value')}"
    else:
        message = "Invalid request"
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": message, "code": "validation_error"},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Kitchen POS",
        description="Restaurant point-of-sale administration console",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "kitchen_pos.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
