"""
Main API router aggregator
"""
from fastapi import APIRouter

from app.api.v1.endpoints import (
    admin,
    cases,
    health,
    trials,
)

api_router = APIRouter()

# Include routers
api_router.include_router(cases.router, prefix="/cases", tags=["Cases"])
api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
api_router.include_router(trials.router, prefix="/trials", tags=["Trials"])
api_router.include_router(health.router, prefix="/health", tags=["Health"])
