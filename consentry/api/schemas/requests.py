"""Request schemas for the Consentry API."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from consentry.consent.models import Category


class SaveConsentRequest(BaseModel):
    """Visitor consent decision."""

    categories: Dict[str, Any] = Field(
        ...,
        description="Consent per category; necessary is always granted"
    )
    source: str = Field(
        default="banner",
        max_length=50,
        description="Where the decision was made (banner, preferences, api)"
    )
    visitor_id: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Anonymous visitor identifier for the consent log"
    )

    class Config:
        """Pydantic configuration with examples for OpenAPI documentation."""
        json_schema_extra = {
            "example": {
                "categories": {
                    "necessary": True,
                    "analytics": True,
                    "functional": False,
                    "marketing": False
                },
                "source": "banner"
            }
        }


class ReportUnknownCookieRequest(BaseModel):
    """Cookie name observed without a classification."""

    name: str = Field(..., min_length=1, max_length=255, description="Cookie name")
    domain: Optional[str] = Field(default=None, max_length=255, description="Domain the cookie was seen on")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Cookie name cannot be blank")
        return v


class CategorizeCookieRequest(BaseModel):
    """Admin categorization of a cookie."""

    name: str = Field(..., min_length=1, max_length=255, description="Exact cookie name")
    category: Category = Field(..., description="Category to assign")
    source: Optional[str] = Field(default=None, max_length=100, description="Provider name")
    description: Optional[str] = Field(default=None, max_length=1000, description="Purpose of the cookie")

    @field_validator("category")
    @classmethod
    def validate_category(cls, v):
        if v == Category.UNKNOWN:
            raise ValueError("Cookies cannot be categorized as unknown")
        return v
