"""
Approval Workflow API - Main FastAPI Application
Routes business requests through configurable sequences of approvers
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.api import api_router
from app.core.config import settings
from app.core.middleware import AuditMiddleware, ErrorHandlingMiddleware
from app.db.database import create_tables, health_check as database_health_check

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup"""
    create_tables()
    logger.info(f"{settings.APP_NAME} started in {settings.ENVIRONMENT} mode")
    yield
    logger.info(f"{settings.APP_NAME} shutting down")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-step approval workflows for capex, leave, travel and expense requests",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS middleware for web dashboard integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(AuditMiddleware)

# Include API routes
app.include_router(api_router, prefix="/v1")


@app.get("/health")
async def health_check():
    """Basic health check endpoint for load balancers and monitoring"""
    database_ok, database_message = database_health_check()
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": "approval-workflow-api",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT,
        "database": database_message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Approval Workflow API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",  # nosec B104
        port=8000,
        reload=settings.ENVIRONMENT == "development",
    )
