"""
API router aggregator.
Includes all route modules.
"""
from fastapi import APIRouter
from pawstudio.api import health, scenes, images, photos, credits, auth, admin, webhooks

api_router = APIRouter()

# Include route modules
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(scenes.router, prefix="/scenes", tags=["scenes"])
api_router.include_router(images.router, prefix="/images", tags=["images"])
api_router.include_router(photos.router, prefix="/photos", tags=["photos"])
api_router.include_router(credits.router, prefix="/credits", tags=["credits"])
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
