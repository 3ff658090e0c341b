# app/routers/v1/api.py

from fastapi import APIRouter

from app.routers.v1.endpoints import announcements, checkout, unsubscribe
from app.routers.v1.endpoints import admin as admin_v1_router

# Main router of API v1; mounted under /api, so every path starts with /api/v1
api_router = APIRouter(prefix="/v1")

# Public storefront endpoints
api_router.include_router(checkout.router, tags=["Checkout"])
api_router.include_router(announcements.router, tags=["Announcements"])
api_router.include_router(unsubscribe.router, tags=["Unsubscribe"])

# Admin endpoints
api_router.include_router(admin_v1_router.router, prefix="/admin")
