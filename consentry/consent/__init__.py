"""Cookie consent lifecycle and enforcement core.

This package classifies cookies into consent categories, persists the
visitor's decision across storage channels, enforces denied categories
and translates consent into Google Consent Mode v2 signals.
"""

from .models import (
    Category,
    CONSENT_CATEGORIES,
    CookieRule,
    MatchKind,
    ClassificationResult,
    ClassificationLayer,
    RegistryEntry,
    RegistryStatus,
    ConsentRecord,
    SignalMap,
    SignalValue,
    CategoryGroup,
    ConsentAck,
    ConsentData
)

from .errors import (
    ConsentError,
    InvalidConsentDataError,
    ConsentPersistenceError,
    CategorizationPermissionError,
    ReferenceDatabaseError,
    ConfigurationError
)

from .config import (
    ConsentConfiguration,
    RegionMode,
    get_consent_config,
    load_consent_config_from_file,
    validate_consent_config
)

from .classification import CookieClassifier
from .integrations import Integration, IntegrationContext, IntegrationRegistry
from .reference_db import ReferenceSnapshot, load_reference_snapshot
from .registry import CookieRegistry
from .jar import CookieJar, InMemoryCookieJar
from .storage import (
    ConsentStore,
    CookieChannel,
    RawHeaderChannel,
    LocalCacheChannel,
    JsonFileCache,
    WriteResult,
    decode_consent_value,
    create_consent_store
)
from .state import ConsentState, ConsentStateMachine, ConsentChange
from .enforcement import EnforcementEngine, SweepReport, TrackingHost
from .signals import SignalTranslator, SignalSink, DataLayer
from .scheduling import Scheduler, AsyncioScheduler, ManualScheduler, ManualClock
from .banner import BannerAssembler
from .audit_log import ConsentLogger, ConsentLogEntry, InMemoryConsentLogRepository
from .service import ConsentService, create_consent_service

__all__ = [
    # Core Models
    "Category",
    "CONSENT_CATEGORIES",
    "CookieRule",
    "MatchKind",
    "ClassificationResult",
    "ClassificationLayer",
    "RegistryEntry",
    "RegistryStatus",
    "ConsentRecord",
    "SignalMap",
    "SignalValue",
    "CategoryGroup",
    "ConsentAck",
    "ConsentData",

    # Errors
    "ConsentError",
    "InvalidConsentDataError",
    "ConsentPersistenceError",
    "CategorizationPermissionError",
    "ReferenceDatabaseError",
    "ConfigurationError",

    # Configuration
    "ConsentConfiguration",
    "RegionMode",
    "get_consent_config",
    "load_consent_config_from_file",
    "validate_consent_config",

    # Classification
    "CookieClassifier",
    "Integration",
    "IntegrationContext",
    "IntegrationRegistry",
    "ReferenceSnapshot",
    "load_reference_snapshot",
    "CookieRegistry",

    # Storage
    "CookieJar",
    "InMemoryCookieJar",
    "ConsentStore",
    "CookieChannel",
    "RawHeaderChannel",
    "LocalCacheChannel",
    "JsonFileCache",
    "WriteResult",
    "decode_consent_value",
    "create_consent_store",

    # Lifecycle and enforcement
    "ConsentState",
    "ConsentStateMachine",
    "ConsentChange",
    "EnforcementEngine",
    "SweepReport",
    "TrackingHost",
    "SignalTranslator",
    "SignalSink",
    "DataLayer",
    "Scheduler",
    "AsyncioScheduler",
    "ManualScheduler",
    "ManualClock",
    "BannerAssembler",

    # Consent log
    "ConsentLogger",
    "ConsentLogEntry",
    "InMemoryConsentLogRepository",

    # Main Service
    "ConsentService",
    "create_consent_service"
]
