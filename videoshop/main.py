"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from videoshop.api.routes import automation, checkout, products, subscriptions, videos
from videoshop.config import settings
from videoshop.db.models import Base
from videoshop.db.session import engine
from videoshop.errors import NotFoundError, PaymentError, ValidationError, VideoShopError
from videoshop.logging_config import setup_logging
from videoshop.notify.mailer import mail_client
from videoshop.suppliers import supplier_registry
from videoshop.worker.scheduler import setup_scheduler
from videoshop.worker.tasks import task_runner

setup_logging()
logger = logging.getLogger(__name__)

# Global scheduler
scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global scheduler

    logger.info("Starting VideoShop backend...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    scheduler = setup_scheduler()
    scheduler.start()
    logger.info("Scheduler started")

    yield

    logger.info("Shutting down...")

    if scheduler:
        scheduler.shutdown()

    await task_runner.close()
    await task_runner.orchestrator.close()
    await mail_client.close()
    await supplier_registry.close()
    await engine.dispose()

    logger.info("Shutdown complete")


app = FastAPI(
    title="VideoShop",
    description="Trend discovery, supplier matching and order fulfillment",
    version="0.1.0",
    lifespan=lifespan,
)

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

app.include_router(automation.router)
app.include_router(checkout.router)
app.include_router(subscriptions.router)
app.include_router(products.router)
app.include_router(videos.router)


# Most specific class first
ERROR_STATUS: tuple[tuple[type[VideoShopError], int], ...] = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (PaymentError, 502),
)


@app.exception_handler(VideoShopError)
async def app_error_handler(request: Request, exc: VideoShopError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run(
        "videoshop.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
