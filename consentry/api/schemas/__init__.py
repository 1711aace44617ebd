"""API schemas for the Consentry REST API.

This module exports the Pydantic models used for request and response
validation.
"""

# Request schemas
from .requests import (
    SaveConsentRequest,
    ReportUnknownCookieRequest,
    CategorizeCookieRequest,
)

# Response schemas
from .responses import (
    ConsentAckResponse,
    SaveConsentResponse,
    ConsentDataResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    # Request schemas
    "SaveConsentRequest",
    "ReportUnknownCookieRequest",
    "CategorizeCookieRequest",

    # Response schemas
    "ConsentAckResponse",
    "SaveConsentResponse",
    "ConsentDataResponse",
    "ErrorResponse",
    "HealthResponse",
]
