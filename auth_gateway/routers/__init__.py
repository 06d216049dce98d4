"""Gateway routes."""

from fastapi import APIRouter

from auth_gateway.routers.auth import router as auth_router

api_router = APIRouter()
api_router.include_router(auth_router, prefix="/auth", tags=["auth"])
