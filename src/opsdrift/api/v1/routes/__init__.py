"""
API routes initialization.

This module imports and registers all API route modules.
"""

from fastapi import APIRouter

from .git import router as git_router
from .attention import router as attention_router
from .health import router as health_router

# Create main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(git_router)
api_router.include_router(attention_router)
api_router.include_router(health_router)

# Export the main router
__all__ = ["api_router"]
