# campus_billing/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import traceback
import time

from campus_billing.core.config import settings
from campus_billing.core.db import db_manager, get_engine, health_check as db_health_check
from campus_billing.models.base import Base
from campus_billing.api.routers import fee_structures, invoices, payments, reports


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting Campus Billing API...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Database URL: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'local'}")

    engine = get_engine()

    # Migrations own the schema outside development
    if settings.is_development:
        logger.info("Creating database tables...")
        try:
            Base.metadata.create_all(bind=engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating tables: {e}")

    yield

    logger.info("Shutting down Campus Billing API...")
    db_manager.close()


show_docs = settings.is_development and settings.DEV_SHOW_DOCS

app = FastAPI(
    title=settings.API_TITLE,
    description="Invoice and payment ledger for college billing",
    version=settings.API_VERSION,
    docs_url="/docs" if show_docs else None,
    redoc_url="/redoc" if show_docs else None,
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request with its status and timing"""
    if not settings.LOG_REQUESTS:
        return await call_next(request)

    start_time = time.time()
    logger.info(f"Incoming {request.method} {request.url.path}")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"Error processing {request.method} {request.url.path}: {str(e)}")
        raise
    process_time = time.time() - start_time
    logger.info(f"Response {response.status_code} for {request.method} {request.url.path} in {process_time:.3f}s")
    return response


app.add_middleware(CORSMiddleware, **settings.get_cors_config())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}")
    logger.error(traceback.format_exc())

    if settings.is_development:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "traceback": traceback.format_exc()
            }
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.get("/health")
async def health_check():
    database = db_health_check()
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "environment": settings.ENV,
        "version": settings.API_VERSION,
        "database": database,
    }


logger.info("Registering API routers...")
app.include_router(payments.router, prefix="/api/payments", tags=["Payments"])
app.include_router(invoices.router, prefix="/api/invoices", tags=["Invoices"])
app.include_router(reports.router, prefix="/api/reports", tags=["Reports"])
app.include_router(fee_structures.router, prefix="/api/fee-structures", tags=["Fee Structures"])
