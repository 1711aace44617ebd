"""Layered cookie classification.

Cookie names are classified by consulting three rule layers in strict
priority order, first match wins:

1. the admin registry (exact names marked ``categorized``),
2. built-in and active-integration rules (exact names, then patterns),
3. the optional reference database snapshot.

Anything unmatched is ``unknown``. Classification performs no I/O; every
layer is an in-memory snapshot, so results are deterministic for a given
set of layers.
"""

import logging
from typing import Dict, Iterable, List, Optional

from .integrations import IntegrationContext, IntegrationRegistry
from .models import (
    Category,
    ClassificationLayer,
    ClassificationResult,
    CookieRule,
    MatchKind
)
from .reference_db import ReferenceSnapshot
from .registry import CookieRegistry

logger = logging.getLogger(__name__)


class CookieClassifier:
    """Classifies cookie names into consent categories.

    The classifier never raises for a string input; names matching no rule
    are reported as :attr:`Category.UNKNOWN` with ``required=False``.
    """

    def __init__(
        self,
        registry: Optional[CookieRegistry] = None,
        rules: Optional[Iterable[CookieRule]] = None,
        reference: Optional[ReferenceSnapshot] = None
    ):
        """Initialize cookie classifier.

        Args:
            registry: Admin registry consulted first
            rules: Built-in and integration rules
            reference: Optional reference database snapshot
        """
        self.registry = registry if registry is not None else CookieRegistry()
        self.reference = reference
        self._exact_rules: Dict[str, CookieRule] = {}
        self._pattern_rules: List[CookieRule] = []
        self.set_rules(rules or [])

    @classmethod
    def for_integrations(
        cls,
        integrations: IntegrationRegistry,
        context: IntegrationContext,
        registry: Optional[CookieRegistry] = None,
        reference: Optional[ReferenceSnapshot] = None
    ) -> "CookieClassifier":
        """Build a classifier from the integrations active in a context."""
        return cls(registry=registry, rules=integrations.active_rules(context), reference=reference)

    def set_rules(self, rules: Iterable[CookieRule]) -> None:
        """Replace the built-in rule layer."""
        self._exact_rules = {}
        self._pattern_rules = []
        for rule in rules:
            if rule.match == MatchKind.EXACT:
                # First registration of a name wins
                self._exact_rules.setdefault(rule.name, rule)
            else:
                self._pattern_rules.append(rule)

    def set_reference(self, reference: Optional[ReferenceSnapshot]) -> None:
        """Replace the reference database snapshot."""
        self.reference = reference

    def classify(self, name: str) -> ClassificationResult:
        """Classify one cookie name."""
        entry = self.registry.lookup(name)
        if entry is not None:
            return ClassificationResult(
                name=name,
                category=entry.category,
                source=entry.source,
                required=entry.required or entry.category == Category.NECESSARY,
                layer=ClassificationLayer.REGISTRY,
                description=entry.description
            )

        rule = self._match_builtin(name)
        if rule is not None:
            return self._from_rule(name, rule, ClassificationLayer.BUILTIN)

        if self.reference is not None:
            rule = self.reference.lookup(name)
            if rule is not None:
                return self._from_rule(name, rule, ClassificationLayer.REFERENCE)

        return ClassificationResult(
            name=name,
            category=Category.UNKNOWN,
            required=False,
            layer=ClassificationLayer.DEFAULT
        )

    def classify_many(self, names: Iterable[str]) -> List[ClassificationResult]:
        return [self.classify(name) for name in names]

    def _match_builtin(self, name: str) -> Optional[CookieRule]:
        rule = self._exact_rules.get(name)
        if rule is not None:
            return rule

        first_match = None
        for rule in self._pattern_rules:
            if not rule.matches(name):
                continue
            # A necessary pattern outranks any other pattern in this layer
            if rule.category == Category.NECESSARY or rule.required:
                return rule
            if first_match is None:
                first_match = rule
        return first_match

    @staticmethod
    def _from_rule(name: str, rule: CookieRule, layer: ClassificationLayer) -> ClassificationResult:
        return ClassificationResult(
            name=name,
            category=rule.category,
            source=rule.source,
            required=rule.required or rule.category == Category.NECESSARY,
            layer=layer,
            description=rule.description
        )
