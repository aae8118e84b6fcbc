"""
API v1 module.

This module provides the main API router for version 1 of the drift engine API.
"""

from .routes import api_router

router = api_router

__all__ = ["router"]
