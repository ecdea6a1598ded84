# FILE: regalpaket/routes/health.py
"""
Health check endpoint
"""
import logging
from fastapi import APIRouter

from regalpaket import __version__
from regalpaket.config import get_settings
from regalpaket.models.manifests import FORMAT_VERSION

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Health check endpoint
    Reports the library location and the container format this build reads
    """
    settings = get_settings()
    
    return {
        "status": "healthy",
        "version": __version__,
        "format_version": FORMAT_VERSION,
        "library_path": settings.library_path
    }
