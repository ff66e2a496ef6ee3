"""Health check endpoint.

Learn: Reports the version plus how many channels and live subscribers
the registry currently holds. Useful for spotting registry growth when
idle eviction is off.
"""

from fastapi import APIRouter

from pushall import __version__
from pushall.realtime.registry import get_registry

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and registry size."""
    stats = await get_registry().stats()
    return {"status": "ok", "version": __version__, **stats}
