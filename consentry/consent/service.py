"""Consent service: the composition root for one page or session.

:class:`ConsentService` wires the classifier, store, state machine,
translator, enforcement engine and banner assembler together and exposes
the operations the request layer calls: saving consent, reading consent
data, reporting unknown cookies and categorizing cookies.
"""

import logging
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .audit_log import ConsentLogger
from .banner import BannerAssembler
from .classification import CookieClassifier
from .config import ConsentConfiguration, get_consent_config, load_consent_config_from_file
from .enforcement import EnforcementEngine, TrackingHost
from .errors import CategorizationPermissionError, InvalidConsentDataError
from .integrations import IntegrationContext, IntegrationRegistry
from .jar import CookieJar
from .models import Category, ConsentAck, ConsentData, ConsentRecord, CONSENT_CATEGORIES
from .reference_db import ReferenceSnapshot, load_reference_snapshot
from .registry import CookieRegistry
from .scheduling import AsyncioScheduler, Clock, Scheduler, utc_now
from .signals import DataLayer, SignalSink, SignalTranslator
from .state import ConsentState, ConsentStateMachine
from .storage import create_consent_store

logger = logging.getLogger(__name__)


class ConsentService:
    """Explicit per-session consent service.

    Construct one instance per page or request and pass it to whatever needs
    consent; there is no process-wide manager.
    """

    def __init__(
        self,
        jar: CookieJar,
        config: Optional[ConsentConfiguration] = None,
        registry: Optional[CookieRegistry] = None,
        scheduler: Optional[Scheduler] = None,
        sink: Optional[SignalSink] = None,
        cookie_header: Union[str, Callable[[], Optional[str]], None] = None,
        cache: Optional[MutableMapping] = None,
        reference: Optional[ReferenceSnapshot] = None,
        integration_context: Optional[IntegrationContext] = None,
        consent_logger: Optional[ConsentLogger] = None,
        tracking_host: Optional[TrackingHost] = None,
        clock: Clock = utc_now
    ):
        """Initialize the consent service.

        Args:
            jar: Cookies of the enforcing context
            config: Consent configuration (loaded from YAML when omitted)
            registry: Admin cookie registry shared across sessions
            scheduler: Scheduler for banner deferral and sweeps
            sink: Consent Mode command receiver
            cookie_header: Raw ``Cookie:`` header, or a callable returning it
            cache: Local fallback cache for the consent record
            reference: Pre-loaded reference database snapshot
            integration_context: Active plugins and features of the site
            consent_logger: Decision log
            tracking_host: Page tracker entry points
            clock: Source of decision timestamps
        """
        self.config = config or get_consent_config()
        self.jar = jar
        self.registry = registry if registry is not None else CookieRegistry(self.config.registry)
        self.scheduler = scheduler or AsyncioScheduler()
        self.sink = sink or DataLayer()
        self.consent_logger = consent_logger

        storage_config = self.config.storage
        self.schema_version = storage_config.schema_version

        if reference is None and self.config.reference_db.enabled:
            reference = load_reference_snapshot(Path(self.config.reference_db.cache_path))

        self.integrations = IntegrationRegistry(
            storage_config.storage_key,
            disabled=self.config.integrations.disabled_integrations
        )
        self.integration_context = integration_context or IntegrationContext(
            active_plugins=set(self.config.integrations.active_plugins)
        )
        self.classifier = CookieClassifier.for_integrations(
            self.integrations,
            self.integration_context,
            registry=self.registry,
            reference=reference
        )

        self.store = create_consent_store(jar, storage_config, header=cookie_header, cache=cache)
        self.translator = SignalTranslator(self.config.signals)
        self.engine = EnforcementEngine(
            jar,
            self.classifier,
            self.store,
            self.schema_version,
            config=self.config.enforcement,
            reporter=self._report_from_enforcement,
            tracking_host=tracking_host
        )
        self.state_machine = ConsentStateMachine(
            self.store,
            self.translator,
            self.sink,
            self.scheduler,
            self.schema_version,
            engine=self.engine,
            clock=clock,
            banner_timeout_seconds=self.config.banner.idle_timeout_seconds,
            bot_detection=self.config.banner.bot_detection
        )
        self.banner = BannerAssembler(self.classifier, self.config.banner)

    def start(self, user_agent: Optional[str] = None, skip_restrictive_defaults: bool = False) -> ConsentState:
        """Initialize the lifecycle and start periodic enforcement."""
        state = self.state_machine.initialize(
            user_agent=user_agent,
            skip_restrictive_defaults=skip_restrictive_defaults
        )
        if not self.state_machine.is_bot_session:
            self.engine.start(self.scheduler)
        return state

    def stop(self) -> None:
        """Page teardown: cancel periodic enforcement."""
        self.engine.stop()

    def refresh_integrations(self) -> None:
        """Re-evaluate integration detectors after the context changed."""
        self.classifier.set_rules(self.integrations.active_rules(self.integration_context))

    def _report_from_enforcement(self, name: str) -> None:
        self.registry.report_unknown(name, self.jar.host)

    def save_consent(
        self,
        payload: Mapping[str, Any],
        source: str = "banner",
        visitor_id: Optional[str] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> ConsentAck:
        """Persist a visitor decision.

        ``payload`` is either ``{"categories": {...}}`` or the category map
        itself.

        Raises:
            InvalidConsentDataError: If the payload has no category mapping.
            ConsentPersistenceError: If the primary channel rejected the write.
        """
        if not isinstance(payload, Mapping):
            raise InvalidConsentDataError(reason="payload_not_mapping")

        categories = payload.get("categories", payload)
        if not isinstance(categories, Mapping):
            raise InvalidConsentDataError("Consent categories must be a mapping", reason="categories_not_mapping")

        known = {c.value for c in CONSENT_CATEGORIES}
        if not any((k.value if isinstance(k, Category) else str(k)) in known for k in categories):
            raise InvalidConsentDataError("No consent categories supplied", reason="no_categories")

        record = self.state_machine.apply_categories(categories, source=source)

        if self.consent_logger is not None:
            try:
                self.consent_logger.log_consent(
                    record,
                    source=source,
                    visitor_id=visitor_id,
                    user_id=user_id,
                    ip_address=ip_address,
                    user_agent=user_agent
                )
            except Exception as e:
                logger.error(f"Failed to log consent decision: {e}")

        return ConsentAck(
            success=True,
            message="Consent saved",
            data=self._record_payload(record)
        )

    def get_consent_data(self) -> ConsentData:
        """Current record plus every observable cookie, classified."""
        record = self.store.read()
        if record is not None and not record.is_current(self.schema_version):
            record = None

        consent_status = (
            record.category_flags() if record
            else {c.value: c == Category.NECESSARY for c in CONSENT_CATEGORIES}
        )

        cookies_present: List[Dict[str, Any]] = []
        cookies_blocked: List[str] = []
        names: List[str] = []
        for cookie in self.jar.list_cookies():
            if cookie.name in names:
                continue
            names.append(cookie.name)

            result = self.classifier.classify(cookie.name)
            cookies_present.append({
                "name": cookie.name,
                "category": result.category.value,
                "source": result.source,
                "description": result.description,
                "required": result.is_necessary,
            })
            if not result.is_necessary and not consent_status.get(result.category.value, False):
                cookies_blocked.append(cookie.name)

        registry_names = [entry.name for entry in self.registry.categorized()]
        groups = self.banner.assemble(registry_names + [n for n in names if n not in registry_names])

        return ConsentData(
            record=record,
            decided=record is not None,
            consent_status=consent_status,
            cookies_present=cookies_present,
            cookies_blocked=cookies_blocked,
            groups=groups
        )

    def report_unknown_cookie(self, name: str, domain: Optional[str] = None) -> ConsentAck:
        """Add a cookie to the registry for admin review."""
        name = (name or "").strip()
        if not name:
            raise InvalidConsentDataError("Cookie name is required", reason="empty_name")

        added = self.registry.report_unknown(name, domain or self.jar.host)
        entry = self.registry.get(name)
        return ConsentAck(
            success=True,
            message="Cookie reported" if added else "Cookie already registered",
            data={
                "name": name,
                "added": added,
                "status": entry.status.value if entry else None,
                "suggested_category": entry.suggested_category.value if entry and entry.suggested_category else None,
            }
        )

    def categorize_cookie(
        self,
        name: str,
        category: Union[Category, str],
        privileged: bool = False,
        source: Optional[str] = None,
        description: Optional[str] = None
    ) -> ConsentAck:
        """Assign a category to a cookie. Privileged callers only.

        Raises:
            CategorizationPermissionError: If the caller is not privileged.
            InvalidConsentDataError: If the name or category is invalid.
        """
        if not privileged:
            logger.warning(f"Rejected unprivileged categorization of {name}")
            raise CategorizationPermissionError(cookie_name=name)

        entry = self.registry.categorize(name, category, source=source, description=description)
        return ConsentAck(
            success=True,
            message="Cookie categorized",
            data=entry.model_dump(mode="json")
        )

    @staticmethod
    def _record_payload(record: ConsentRecord) -> Dict[str, Any]:
        return record.model_dump(mode="json", by_alias=True)

    def __repr__(self) -> str:
        return (f"ConsentService(host={self.jar.host}, "
                f"state={self.state_machine.state.value})")


def create_consent_service(
    jar: CookieJar,
    config_path_or_config: Optional[Union[Path, ConsentConfiguration]] = None,
    **kwargs: Any
) -> ConsentService:
    """Create a configured consent service.

    Args:
        jar: Cookies of the enforcing context
        config_path_or_config: Path to consent.yaml or a configuration object
        **kwargs: Passed through to :class:`ConsentService`

    Returns:
        Configured service instance
    """
    config = None
    if config_path_or_config:
        if isinstance(config_path_or_config, ConsentConfiguration):
            config = config_path_or_config
        else:
            config = load_consent_config_from_file(config_path_or_config)

    return ConsentService(jar, config, **kwargs)
