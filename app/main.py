"""
FastAPI main application.

Entry point for the FX position engine service.
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.config import settings
from app.core.responses import error_response
from app.services.engine import PositionEngine
from app.shared.exceptions import AppException
from app.utils.logger import get_logger, setup_logging

setup_logging(
    level=settings.LOG_LEVEL,
    format_type=settings.LOG_FORMAT,
    log_file=settings.LOG_FILE_PATH,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds and starts the position engine on startup, stops it on shutdown.
    An engine already attached to app.state (tests) is used as is.
    """
    # Startup
    logger.info("Starting application...")

    engine = getattr(app.state, "engine", None)
    if engine is None:
        engine = PositionEngine.from_settings(settings)
        app.state.engine = engine

    try:
        await engine.start()
        logger.info("Application started successfully")
    except Exception as e:
        logger.error(f"Failed to start application: {str(e)}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down application...")

    try:
        await engine.stop()
        logger.info("Application shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}")


# API Description
API_DESCRIPTION = """
## FX Position Engine API

Values open FX positions against a live price feed and closes them when a
stop loss or take profit is crossed.

### Response Format

**Success Response:**
```json
{
  "status_code": 200,
  "message": "Operation successful",
  "data": { ... },
  "error": null
}
```

**Error Response:**
```json
{
  "status_code": 503,
  "message": "No fresh price for EUR/USD",
  "data": null,
  "error": {
    "code": "FEED_UNAVAILABLE",
    "message": "No fresh price for EUR/USD"
  }
}
```

Monetary values and prices are serialized as decimal strings.
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Render engine errors in the standard envelope."""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.status_code, exc.message, exc.code, exc.message),
    )


# Include routers
from app.modules.positions.router import router as positions_router

app.include_router(positions_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint: feed connection and evaluator state."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return JSONResponse(
            status_code=503,
            content={"status": "starting", "app": settings.APP_NAME, "version": settings.APP_VERSION},
        )

    engine_status = engine.status()
    healthy = engine_status["running"] and engine_status["feed"]["connected"]
    return {
        "status": "healthy" if healthy else "degraded",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "engine": engine_status,
    }


# Custom OpenAPI schema
def custom_openapi():
    """
    Generate custom OpenAPI schema with tag descriptions.

    Returns:
        dict: Cached OpenAPI schema
    """
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema["tags"] = [
        {
            "name": "positions",
            "description": "Open positions with live valuations, manual open/close, and stop loss / take profit updates. Positions with a breached threshold are closed automatically by the engine."
        }
    ]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


# Set custom OpenAPI
app.openapi = custom_openapi
