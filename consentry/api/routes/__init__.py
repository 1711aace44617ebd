"""API routes for the Consentry REST API."""

from .consent import router as consent_router

__all__ = [
    "consent_router",
]
