"""
Campaign Platform Billing API - Main Application

Subscription lifecycle and usage metering for the multi-tenant
messaging/campaign platform:
- /api/v1/subscriptions → Subscribe, renew, cancel
- /api/v1/payments      → Settle, refund, fail payments
- /api/v1/invoices      → Invoice history
- /api/v1/usage         → Quota tracking
- /api/v1/plans         → Plan catalog (admin maintenance)
"""

from contextlib import asynccontextmanager
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text
from sqlalchemy.orm import Session

from database import init_db, db, get_db
from database.seed import seed_plans
from core.config import settings
from core.exceptions import BillingError
from core.soft_delete import setup_soft_delete_events
from routers import (
    subscriptions_router, payments_router, invoices_router,
    usage_router, plans_router,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("🚀 Starting Campaign Platform Billing API...")

    try:
        setup_soft_delete_events()
        logger.info("✅ Soft delete filter registered")

        init_db()
        logger.info("✅ Database initialized")

        # Seed default plans (first run only)
        with db.get_session() as session:
            seed_plans(session)

    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise

    logger.info("✅ Campaign Platform Billing API started successfully!")

    yield

    logger.info("👋 Shutting down Campaign Platform Billing API...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="""
    Subscription lifecycle and usage metering engine.

    * **Subscriptions** - Plans, trials, renewals, cancellation
    * **Payments** - Completion, refunds, failures
    * **Invoices** - Billing statements with line items
    * **Usage** - Per-period quotas (messages, instances, API calls...)
    * **Plans** - Catalog, maintained by platform admins
    """,
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ERROR HANDLERS ====================

@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error_code": "INTERNAL_ERROR",
            "message": "Internal server error",
            "context": {"detail": str(exc)} if settings.debug else {},
        }
    )


# ==================== HEALTH ====================

@app.get("/", tags=["Health"])
async def root():
    return {
        "message": settings.app_name,
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health", tags=["Health"])
@app.get("/api/v1/health", tags=["Health"])
async def health_check(session: Session = Depends(get_db)):
    try:
        session.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.warning(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "error": str(e)}
        )


# ==================== API ROUTERS ====================

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(subscriptions_router)
api_router.include_router(payments_router)
api_router.include_router(invoices_router)
api_router.include_router(usage_router)
api_router.include_router(plans_router)

app.include_router(api_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
