"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from lemons.core.config import settings
from lemons.core.errors import LemonsError, PartialFailure
from lemons.core.logging import setup_logging
from lemons.core.otel import configure_tracing, instrument, tracing_enabled
from lemons.db.session import engine, init_db

# Import routers
from lemons.api import checkout, connect, orders, subscriptions, webhooks

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    if configure_tracing():
        instrument(engine=engine)
        logger.info(f"Tracing enabled, exporting spans to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("Tracing not configured")

    if settings.AUTO_CREATE_TABLES:
        logger.info("Initializing database...")
        try:
            init_db()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Lemons Backend",
    description="Marketplace payments and Stripe reconciliation",
    version="1.0.0",
    lifespan=lifespan
)

if tracing_enabled():
    instrument(app=app)

# CORS middleware
allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhooks.router)
app.include_router(checkout.router)
app.include_router(connect.router)
app.include_router(subscriptions.router)
app.include_router(orders.router)


@app.exception_handler(LemonsError)
async def lemons_exception_handler(request: Request, exc: LemonsError):
    """Render domain errors as ``{"error", "code"}``"""
    if isinstance(exc, PartialFailure):
        logger.critical(f"Partial failure on {request.url.path} (external id {exc.external_id}): {exc.message}")
    elif exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    content = {"error": exc.message, "code": exc.code}
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
