from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import uvicorn
import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file FIRST, before any other imports
load_dotenv()

logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

from config import settings  # noqa: E402
from app.api.endpoints.tiss import (  # noqa: E402
    guides_router,
    batches_router,
    returns_router,
    reports_router,
    cron_router,
    operators_router,
    patient_insurance_router,
    dashboard_router,
)
from app.core.error_handling import (  # noqa: E402
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from app.core.monitoring import init_sentry  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    logger.info(f"{settings.APP_NAME} starting up")

    if init_sentry():
        logger.info("Sentry monitoring initialized")

    yield

    logger.info(f"{settings.APP_NAME} shutting down")


app = FastAPI(
    title=settings.APP_NAME,
    description="TISS insurance billing: guides, batches, XML generation and insurer returns",
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# Configure CORS FIRST so headers are present even on errors
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1):\d+",
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
    allow_headers=["*"],
    expose_headers=["Authorization", "X-Request-Id"],
    max_age=3600,
)

# Every error leaves as {"success": false, "error": ...}
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# Generated XML and return files when no S3 bucket is configured
if not settings.S3_BUCKET_NAME:
    os.makedirs(settings.STORAGE_DIR, exist_ok=True)
if os.path.exists(settings.STORAGE_DIR):
    app.mount(settings.STORAGE_PUBLIC_URL, StaticFiles(directory=settings.STORAGE_DIR), name="storage")

API_V1_PREFIX = settings.API_V1_PREFIX

app.include_router(guides_router, prefix=API_V1_PREFIX)
app.include_router(batches_router, prefix=API_V1_PREFIX)
app.include_router(returns_router, prefix=API_V1_PREFIX)
app.include_router(reports_router, prefix=API_V1_PREFIX)
app.include_router(cron_router, prefix=API_V1_PREFIX)
app.include_router(operators_router, prefix=API_V1_PREFIX)
app.include_router(patient_insurance_router, prefix=API_V1_PREFIX)
app.include_router(dashboard_router, prefix=API_V1_PREFIX)


@app.get("/health")
async def health_check():
    """Simple health check endpoint for monitoring"""
    return {"status": "healthy", "service": settings.APP_NAME, "version": settings.APP_VERSION}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
