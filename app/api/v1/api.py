"""
API v1 Router Configuration
Aggregates all API endpoints for version 1
"""

from fastapi import APIRouter

from app.api.v1.endpoints import dashboard, requests, templates

# Create main API router
api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(templates.router, prefix="/templates", tags=["Workflow Templates"])
api_router.include_router(requests.router, prefix="/requests", tags=["Requests"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["Dashboard"])
