"""HTTP route aggregation.

All routers registered here get mounted in main.py. Routes live at the
root (no /api prefix) because producers already call /push directly.
Tokens are routing keys, not credentials, so nothing here is gated.
"""

from fastapi import APIRouter

from pushall.api.health import router as health_router
from pushall.api.push import router as push_router

api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(push_router, tags=["push"])
