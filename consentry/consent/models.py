"""Pydantic models for cookie consent management.

This module defines the data models shared by the consent core: consent
categories and records, cookie classification rules and results, the admin
cookie registry, external consent signals and banner groupings.
"""

import json
import re
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Pattern

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class Category(str, Enum):
    """Consent categories. ``UNKNOWN`` only appears in classification results."""
    NECESSARY = "necessary"
    ANALYTICS = "analytics"
    FUNCTIONAL = "functional"
    MARKETING = "marketing"
    UNKNOWN = "unknown"


# Categories a visitor can hold consent for, in display order
CONSENT_CATEGORIES = (
    Category.NECESSARY,
    Category.ANALYTICS,
    Category.FUNCTIONAL,
    Category.MARKETING,
)

# Categories the visitor can toggle
OPTIONAL_CATEGORIES = tuple(c for c in CONSENT_CATEGORIES if c != Category.NECESSARY)

_TRUE_STRINGS = {"1", "true", "yes", "on"}


def coerce_bool(value: Any) -> bool:
    """Interpret loosely typed consent flags (``"true"``, ``"1"``, ``1``...)."""
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


@lru_cache(maxsize=1024)
def wildcard_to_regex(pattern: str) -> Pattern[str]:
    """Translate a wildcard cookie pattern into an anchored regex.

    ``*`` matches any run of characters; everything else is literal, so
    ``_hjSession_*`` becomes ``^_hjSession_.*$``.
    """
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile("^" + ".*".join(parts) + "$")


class MatchKind(str, Enum):
    """How a cookie rule matches cookie names."""
    EXACT = "exact"
    PREFIX = "prefix"
    WILDCARD = "wildcard"


class ClassificationLayer(str, Enum):
    """Rule layer that produced a classification."""
    REGISTRY = "registry"
    BUILTIN = "builtin"
    REFERENCE = "reference"
    DEFAULT = "default"


class RegistryStatus(str, Enum):
    """Admin registry status of a cookie."""
    CATEGORIZED = "categorized"
    UNCATEGORIZED = "uncategorized"


class CookieRule(BaseModel):
    """A single classification rule.

    ``name`` is interpreted according to ``match``: an exact cookie name, a
    name prefix (``_ga_``) or a wildcard pattern where ``*`` matches any run
    of characters (``_hjSession_*``).
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Cookie name, prefix or wildcard pattern")
    match: MatchKind = Field(default=MatchKind.EXACT, description="Matching strategy")
    category: Category = Field(description="Category assigned on match")
    source: Optional[str] = Field(default=None, description="Provider or integration name")
    required: bool = Field(default=False, description="Whether the cookie is required for the site")
    description: Optional[str] = Field(default=None, description="Human readable purpose")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Rule name must be a non-empty string")
        return v.strip()

    @field_validator("category")
    @classmethod
    def validate_category(cls, v):
        if v == Category.UNKNOWN:
            raise ValueError("Rules cannot assign the unknown category")
        return v

    def matches(self, cookie_name: str) -> bool:
        """Check whether this rule matches a cookie name."""
        if self.match == MatchKind.EXACT:
            return cookie_name == self.name
        if self.match == MatchKind.PREFIX:
            return cookie_name.startswith(self.name)
        return wildcard_to_regex(self.name).match(cookie_name) is not None


class ClassificationResult(BaseModel):
    """Outcome of classifying one cookie name."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Classified cookie name")
    category: Category = Field(description="Assigned category, or unknown")
    source: Optional[str] = Field(default=None, description="Provider that sets the cookie")
    required: bool = Field(default=False, description="Whether the cookie is required")
    layer: ClassificationLayer = Field(description="Rule layer that matched")
    description: Optional[str] = Field(default=None, description="Purpose of the cookie")

    @property
    def is_unknown(self) -> bool:
        return self.category == Category.UNKNOWN

    @property
    def is_necessary(self) -> bool:
        """Whether the cookie must never be removed."""
        return self.category == Category.NECESSARY or self.required


class RegistryEntry(BaseModel):
    """Admin-curated cookie registry entry."""

    name: str = Field(description="Exact cookie name")
    category: Optional[Category] = Field(default=None, description="Admin-assigned category")
    status: RegistryStatus = Field(default=RegistryStatus.UNCATEGORIZED)
    source: Optional[str] = Field(default=None, description="Provider name")
    domain: str = Field(default="*", description="Domain the cookie was seen on")
    description: Optional[str] = Field(default=None)
    required: bool = Field(default=False)
    suggested_category: Optional[Category] = Field(
        default=None,
        description="Heuristic category suggestion for uncategorized cookies"
    )
    first_detected: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    added_by: str = Field(default="admin", description="Who created the entry")

    @model_validator(mode='after')
    def default_status_from_category(self):
        """Entries given a category without an explicit status are categorized."""
        if (
            "status" not in self.model_fields_set
            and self.category is not None
            and self.category != Category.UNKNOWN
        ):
            self.status = RegistryStatus.CATEGORIZED
        return self

    @property
    def is_categorized(self) -> bool:
        return self.status == RegistryStatus.CATEGORIZED and self.category is not None


class ConsentRecord(BaseModel):
    """The visitor's persisted consent decision.

    Serialized on the wire as ``{"schemaVersion", "decidedAt", "categories"}``.
    The legacy keys ``version`` and ``timestamp`` are accepted when reading.
    ``categories`` always holds the four consent categories and
    ``necessary`` is always granted.
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field(
        alias="schemaVersion",
        validation_alias=AliasChoices("schemaVersion", "schema_version", "version"),
        description="Consent schema version the record was written with"
    )
    decided_at: datetime = Field(
        alias="decidedAt",
        validation_alias=AliasChoices("decidedAt", "decided_at", "timestamp"),
        description="When the visitor made the decision"
    )
    categories: Dict[Category, bool] = Field(description="Consent per category")

    @field_validator("categories", mode="before")
    @classmethod
    def normalize_categories(cls, v):
        """Coerce flags, drop foreign keys, fill gaps and pin necessary."""
        if not isinstance(v, Mapping):
            raise ValueError("categories must be a mapping")

        normalized = {category.value: False for category in CONSENT_CATEGORIES}
        for key, value in v.items():
            key = key.value if isinstance(key, Category) else str(key)
            if key in normalized:
                normalized[key] = coerce_bool(value)

        normalized[Category.NECESSARY.value] = True
        return normalized

    @field_validator("decided_at")
    @classmethod
    def ensure_timezone(cls, v):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def build(
        cls,
        categories: Mapping[Any, Any],
        schema_version: str,
        decided_at: Optional[datetime] = None
    ) -> "ConsentRecord":
        """Create a record from a category mapping."""
        return cls(
            schema_version=schema_version,
            decided_at=decided_at or datetime.now(timezone.utc),
            categories=dict(categories)
        )

    def is_granted(self, category: Category) -> bool:
        """Whether the visitor granted a category. Unknown is never granted."""
        if category == Category.NECESSARY:
            return True
        return self.categories.get(category, False)

    def is_current(self, schema_version: str) -> bool:
        return self.schema_version == schema_version

    def granted_categories(self) -> List[Category]:
        return [c for c in CONSENT_CATEGORIES if self.is_granted(c)]

    def category_flags(self) -> Dict[str, bool]:
        """Plain ``{name: bool}`` view used by notifications and responses."""
        return {c.value: self.is_granted(c) for c in CONSENT_CATEGORIES}

    def to_wire(self) -> str:
        """Compact JSON form stored in the consent channels."""
        payload = self.model_dump(mode="json", by_alias=True)
        return json.dumps(payload, separators=(",", ":"))


def necessary_only() -> Dict[Category, bool]:
    """Category map that grants only necessary cookies."""
    return {c: c == Category.NECESSARY for c in CONSENT_CATEGORIES}


class SignalValue(str, Enum):
    """Consent Mode signal states."""
    GRANTED = "granted"
    DENIED = "denied"


class SignalMap(BaseModel):
    """Google Consent Mode v2 signals derived from consent categories."""

    model_config = ConfigDict(frozen=True)

    ad_storage: SignalValue = SignalValue.DENIED
    ad_user_data: SignalValue = SignalValue.DENIED
    ad_personalization: SignalValue = SignalValue.DENIED
    analytics_storage: SignalValue = SignalValue.DENIED
    functionality_storage: SignalValue = SignalValue.DENIED
    personalization_storage: SignalValue = SignalValue.DENIED
    security_storage: SignalValue = SignalValue.GRANTED

    def to_dict(self) -> Dict[str, str]:
        return {key: value.value for key, value in self.model_dump().items()}


class GroupedCookie(BaseModel):
    """Cookie entry shown inside a banner category group."""

    name: str
    source: Optional[str] = None
    description: Optional[str] = None


class CategoryGroup(BaseModel):
    """Cookies and providers of one category, as displayed in the banner."""

    category: Category
    title: str
    description: str = ""
    required: bool = False
    cookies: List[GroupedCookie] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.cookies


class ConsentAck(BaseModel):
    """Acknowledgement returned by consent operations."""

    success: bool = True
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)


class ConsentData(BaseModel):
    """Snapshot of the visitor's consent and the cookies currently present."""

    record: Optional[ConsentRecord] = None
    decided: bool = False
    consent_status: Dict[str, bool] = Field(default_factory=dict)
    cookies_present: List[Dict[str, Any]] = Field(default_factory=list)
    cookies_blocked: List[str] = Field(default_factory=list)
    groups: List[CategoryGroup] = Field(default_factory=list)
