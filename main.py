"""
Main FastAPI Application
Entry point for the document expiry alert service
"""
import logging
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime

from expiry_alerts.config import settings
from expiry_alerts.container import build_container
from expiry_alerts.database import init_db
from expiry_alerts.exceptions import ExpiryAlertsError
from expiry_alerts.logging_config import setup_logging

# Import routers
from expiry_alerts.api.routes import cycle, notifications, views

logger = logging.getLogger("expiry_alerts.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)
    logger.info(f"Starting {settings.APP_NAME}...")

    client = await init_db(settings)
    container = build_container(settings)
    app.state.container = container

    if settings.SCHEDULER_ENABLED:
        container.scheduler.start()
    else:
        logger.info("Scheduler disabled via settings (SCHEDULER_ENABLED=False)")

    logger.info(f"Server running on {settings.HOST}:{settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    container.scheduler.shutdown()
    client.close()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Visa, passport and labour card expiry monitoring with batch email alerts",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ExpiryAlertsError)
async def expiry_alerts_error_handler(request: Request, exc: ExpiryAlertsError):
    logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code, "details": exc.details}
    )


# Include routers
app.include_router(cycle.router, tags=["Cycle"])
app.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])
app.include_router(views.router, prefix="/views", tags=["Aggregate Views"])


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/api/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat()
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
