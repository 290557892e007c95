"""API route aggregation.

All routers registered here get mounted in main.py. CRUD routes for users,
plants and vibrations live in their own services; this backend only serves
health and the live-update socket.
"""

from fastapi import APIRouter

from plantvibes.api.health import router as health_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
