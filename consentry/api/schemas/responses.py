"""Response schemas for the Consentry API."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from consentry.consent.models import CategoryGroup


class ConsentAckResponse(BaseModel):
    """Acknowledgement of a consent operation."""

    success: bool = Field(..., description="Whether the operation succeeded")
    message: str = Field(default="", description="Human-readable outcome")
    data: Dict[str, Any] = Field(default_factory=dict, description="Operation result")


class SaveConsentResponse(ConsentAckResponse):
    """Acknowledgement of a saved decision, with the signals it produced."""

    signals: Dict[str, Any] = Field(
        default_factory=dict,
        description="Consent Mode update payload for the decision"
    )
    removed_cookies: List[str] = Field(
        default_factory=list,
        description="Cookies expired because their category is not granted"
    )


class ConsentDataResponse(BaseModel):
    """Current consent and the classified cookies of the request."""

    decided: bool = Field(..., description="Whether a current consent record exists")
    record: Optional[Dict[str, Any]] = Field(default=None, description="Stored consent record")
    consent_status: Dict[str, bool] = Field(..., description="Effective consent per category")
    cookies_present: List[Dict[str, Any]] = Field(default_factory=list)
    cookies_blocked: List[str] = Field(default_factory=list)
    groups: List[CategoryGroup] = Field(default_factory=list, description="Cookies grouped for the banner")


class ErrorResponse(BaseModel):
    """Standard error response schema."""

    error: str = Field(..., description="Error code or type")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details for debugging"
    )
    request_id: Optional[str] = Field(
        default=None,
        description="Unique request identifier for tracking"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the error occurred"
    )

    class Config:
        """Pydantic configuration with examples for OpenAPI documentation."""
        json_schema_extra = {
            "example": {
                "error": "permission_denied",
                "message": "Permission denied",
                "details": {"cookie_name": "_custom_tracker"},
                "request_id": "5f0e2c1a-8d4b-4c7e-9b61-0f3a2d9e7c15",
                "timestamp": "2024-01-15T11:00:00Z"
            }
        }


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal['healthy', 'degraded', 'unhealthy'] = Field(
        ...,
        description="Overall system health status"
    )
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="Health check timestamp"
    )
    services: Dict[str, Literal['healthy', 'degraded', 'unhealthy']] = Field(
        ...,
        description="Health status of individual services"
    )
    uptime_seconds: float = Field(..., ge=0, description="Application uptime in seconds")
