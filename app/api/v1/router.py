from fastapi import APIRouter

from app.api.v1.health import router as health_router
from app.api.v1.activities import router as activities_router
from app.api.v1.sessions import router as sessions_router
from app.api.v1.participations import router as participations_router

v1_router = APIRouter()

v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(activities_router)
v1_router.include_router(sessions_router)
v1_router.include_router(participations_router)
