"""Health check endpoints for the image relay."""

from fastapi import APIRouter

from imgrelay.core.config import settings

router = APIRouter()


@router.get("/")
async def root() -> dict:
    """Service banner, so opening the base URL in a browser is not a 404."""
    return {
        "service": "Image Convert API",
        "status": "running",
    }


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint.

    Returns:
        dict: Health status response with status, service, and version fields
    """
    return {
        "status": "ok",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
    }
