"""Declarative table of known integrations and the cookies they set.

Each integration pairs an optional detector predicate with the cookie rules
that become active when the integration is present on the site. Detectors
are plain callables over an :class:`IntegrationContext`; an integration
without a detector is always active.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from .models import Category, CookieRule, MatchKind

logger = logging.getLogger(__name__)


@dataclass
class IntegrationContext:
    """What the host site reports about itself."""

    active_plugins: Set[str] = field(default_factory=set)
    features: Set[str] = field(default_factory=set)

    def has_plugin(self, plugin_id: str) -> bool:
        return plugin_id.lower() in {p.lower() for p in self.active_plugins}

    def has_feature(self, feature: str) -> bool:
        return feature in self.features


Detector = Callable[[IntegrationContext], bool]


@dataclass
class Integration:
    """A provider or platform with a known cookie footprint."""

    id: str
    name: str
    rules: List[CookieRule]
    detector: Optional[Detector] = None

    def is_active(self, context: IntegrationContext) -> bool:
        if self.detector is None:
            return True
        try:
            return bool(self.detector(context))
        except Exception as e:
            logger.warning(f"Detector for integration {self.id} failed: {e}")
            return False


def _rule(name: str, category: Category, source: str, match: MatchKind = MatchKind.EXACT,
          required: bool = False, description: Optional[str] = None) -> CookieRule:
    return CookieRule(
        name=name,
        match=match,
        category=category,
        source=source,
        required=required,
        description=description
    )


def plugin_detector(plugin_id: str) -> Detector:
    """Detector that checks for an active host plugin."""
    def detect(context: IntegrationContext) -> bool:
        return context.has_plugin(plugin_id)
    return detect


def consent_cookie_integration(storage_key: str) -> Integration:
    """The consent record cookie is always necessary."""
    return Integration(
        id="consent",
        name="Cookie Consent",
        rules=[
            _rule(storage_key, Category.NECESSARY, "Cookie Consent", required=True,
                  description="Stores the visitor's cookie consent choices"),
        ]
    )


def builtin_integrations() -> List[Integration]:
    """Integrations shipped with the consent core."""
    N, A, F, M = Category.NECESSARY, Category.ANALYTICS, Category.FUNCTIONAL, Category.MARKETING
    P = MatchKind.PREFIX

    return [
        Integration(
            id="wordpress",
            name="WordPress",
            rules=[
                _rule("wordpress_test_cookie", N, "WordPress", required=True,
                      description="Checks whether the browser accepts cookies"),
                _rule("wordpress_logged_in_", N, "WordPress", P, required=True,
                      description="Keeps logged-in users signed in"),
                _rule("wordpress_sec_", N, "WordPress", P, required=True,
                      description="Authentication for the admin area"),
                _rule("wordpress_logged_in", N, "WordPress", required=True),
                _rule("wp-settings-", N, "WordPress", P, required=True,
                      description="Admin interface preferences"),
                _rule("wp_lang", N, "WordPress", required=True,
                      description="Selected interface language"),
            ]
        ),
        Integration(
            id="woocommerce",
            name="WooCommerce",
            detector=plugin_detector("woocommerce"),
            rules=[
                _rule("woocommerce_cart_hash", N, "WooCommerce", required=True,
                      description="Tracks changes to the shopping cart"),
                _rule("woocommerce_items_in_cart", N, "WooCommerce", required=True,
                      description="Whether the cart holds items"),
                _rule("wp_woocommerce_session_", N, "WooCommerce", P, required=True,
                      description="Shopping session identifier"),
                _rule("woocommerce_recently_viewed", F, "WooCommerce",
                      description="Recently viewed products"),
                _rule("store_notice", F, "WooCommerce",
                      description="Whether the store notice was dismissed"),
            ]
        ),
        Integration(
            id="google-analytics",
            name="Google Analytics",
            rules=[
                _rule("_ga", A, "Google Analytics", description="Distinguishes unique visitors"),
                _rule("_ga_", A, "Google Analytics", P, description="Persists session state"),
                _rule("_gid", A, "Google Analytics", description="Distinguishes visitors for 24 hours"),
                _rule("_gat", A, "Google Analytics", P, description="Throttles request rate"),
                _rule("__utm", A, "Google Analytics", P, description="Legacy Universal Analytics cookies"),
                _rule("_dc_gtm_", A, "Google Tag Manager", P),
            ]
        ),
        Integration(
            id="google-ads",
            name="Google Ads",
            rules=[
                _rule("_gcl_", M, "Google Ads", P, description="Stores ad click information"),
                _rule("IDE", M, "DoubleClick", description="Ad personalisation"),
                _rule("NID", M, "Google", description="Google preferences and ad personalisation"),
                _rule("test_cookie", M, "DoubleClick"),
            ]
        ),
        Integration(
            id="matomo",
            name="Matomo",
            rules=[
                _rule("_pk_", A, "Matomo", P, description="Matomo visitor and session cookies"),
                _rule("mtm_consent", A, "Matomo", P),
                _rule("mtm_cookie_consent", A, "Matomo"),
                _rule("MATOMO_SESSID", A, "Matomo"),
            ]
        ),
        Integration(
            id="hubspot",
            name="HubSpot",
            rules=[
                _rule("__hssc", M, "HubSpot", description="Tracks sessions"),
                _rule("__hssrc", M, "HubSpot", description="Detects browser restarts"),
                _rule("__hstc", M, "HubSpot", description="Tracks visitors"),
                _rule("hubspotutk", M, "HubSpot", description="Visitor identity for form submissions"),
            ]
        ),
        Integration(
            id="facebook",
            name="Meta Pixel",
            rules=[
                _rule("_fbp", M, "Meta", description="Delivers advertising"),
                _rule("_fbc", M, "Meta", description="Stores the last ad click"),
                _rule("fr", M, "Meta"),
                _rule("tr", M, "Meta"),
            ]
        ),
        Integration(
            id="twitter",
            name="X (Twitter)",
            rules=[
                _rule("personalization_id", M, "X (Twitter)"),
                _rule("guest_id", M, "X (Twitter)"),
                _rule("muc_ads", M, "X (Twitter)"),
            ]
        ),
        Integration(
            id="microsoft",
            name="Microsoft Clarity / Bing",
            rules=[
                _rule("MUID", M, "Microsoft"),
                _rule("MUIDB", M, "Microsoft"),
                _rule("_uetsid", M, "Microsoft Advertising"),
                _rule("_uetvid", M, "Microsoft Advertising"),
                _rule("_clck", A, "Microsoft Clarity"),
                _rule("_clsk", A, "Microsoft Clarity"),
            ]
        ),
        Integration(
            id="hotjar",
            name="Hotjar",
            rules=[
                _rule("_hjSessionUser_*", A, "Hotjar", MatchKind.WILDCARD),
                _rule("_hjSession_*", A, "Hotjar", MatchKind.WILDCARD),
                _rule("_hjid", A, "Hotjar"),
                _rule("_hjIncludedInSessionSample", A, "Hotjar", P),
            ]
        ),
    ]


class IntegrationRegistry:
    """Resolves which integrations are active and collects their rules."""

    def __init__(self, storage_key: str, integrations: Optional[Iterable[Integration]] = None,
                 disabled: Optional[Iterable[str]] = None):
        self._integrations: Dict[str, Integration] = {}
        self._disabled = set(disabled or [])

        self.register(consent_cookie_integration(storage_key))
        for integration in (builtin_integrations() if integrations is None else integrations):
            self.register(integration)

    def register(self, integration: Integration) -> None:
        """Add or replace an integration by id."""
        self._integrations[integration.id] = integration

    def register_plugin_cookies(self, plugin_id: str, name: str, rules: Iterable[CookieRule],
                                detector: Optional[Detector] = None) -> Integration:
        """Register cookie rules contributed by a host plugin at runtime."""
        integration = Integration(id=plugin_id, name=name, rules=list(rules), detector=detector)
        self.register(integration)
        logger.info(f"Registered {len(integration.rules)} cookie rules for integration {plugin_id}")
        return integration

    def get(self, integration_id: str) -> Optional[Integration]:
        return self._integrations.get(integration_id)

    def active(self, context: IntegrationContext) -> List[Integration]:
        """Integrations whose detector matches the context, in registration order."""
        return [
            integration for integration in self._integrations.values()
            if integration.id not in self._disabled and integration.is_active(context)
        ]

    def active_rules(self, context: IntegrationContext) -> List[CookieRule]:
        rules: List[CookieRule] = []
        for integration in self.active(context):
            rules.extend(integration.rules)
        return rules
