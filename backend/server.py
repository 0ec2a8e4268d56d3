from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from diligence import __version__, __product__
from diligence.routes import (
    admin_notifications,
    admin_users,
    bookings,
    dashboard,
    expert_applications,
    pricing,
    projects,
    reputation,
    subscriptions,
)

import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# In-memory job store; both jobs are idempotent so a missed run is picked up by the next one
scheduler = AsyncIOScheduler(timezone="UTC")

# Import job runners from shared module (used by scheduler and admin run-now)
from job_runner import (
    run_subscription_expiry_notifications,
    run_expire_lapsed_subscriptions,
)

# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Starting {__product__} API")
    await database.connect()

    if os.environ.get("PYTEST_RUNNING"):
        logger.info("PYTEST_RUNNING set, background job scheduler disabled")
        yield
        await database.close()
        return

    # Subscription expiry reminders - daily at 9:00 AM UTC
    scheduler.add_job(
        run_subscription_expiry_notifications,
        CronTrigger(hour=9, minute=0),
        id="subscription_expiry_notifications",
        name="Subscription Expiry Notifications",
        replace_existing=True
    )
    
    # Lapsed subscriptions - daily at 00:15 UTC, moves ended periods to EXPIRED
    scheduler.add_job(
        run_expire_lapsed_subscriptions,
        CronTrigger(hour=0, minute=15),
        id="expire_lapsed_subscriptions",
        name="Expire Lapsed Subscriptions",
        replace_existing=True
    )
    
    scheduler.start()
    logger.info("Background job scheduler started")
    
    yield
    
    # Shutdown
    logger.info(f"Shutting down {__product__} API")
    scheduler.shutdown(wait=False)
    logger.info("Background job scheduler stopped")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title=f"{__product__} API",
    description="Entitlements, credits and reputation for blockchain due diligence",
    version=__version__,
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(reputation.router)
app.include_router(pricing.router)
app.include_router(subscriptions.plans_router)
app.include_router(subscriptions.router)
app.include_router(bookings.router)
app.include_router(dashboard.router)
app.include_router(projects.router)
app.include_router(expert_applications.router)  # Admin expert review
app.include_router(admin_notifications.router)  # Admin notification panel
app.include_router(admin_users.router)  # Admin account status

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": __product__,
        "version": __version__,
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


# Version/build stamp for deployment verification (commit SHA set by CI/CD, e.g. GIT_COMMIT_SHA)
@app.get("/api/version")
async def version_info():
    return {
        "version": __version__,
        "commit_sha": os.getenv("GIT_COMMIT_SHA", os.getenv("BUILD_SHA", "unknown")),
        "environment": os.getenv("ENVIRONMENT", "development"),
    }

# Validation error handler: log request_id + full errors (loc path)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    # ctx can carry the raw exception from a validator
    return [{k: v for k, v in e.items() if k != "ctx"} for e in errors]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "server:app",
        host="0.0.0.0",
        port=8001,
        reload=os.getenv("ENVIRONMENT") == "development"
    )
