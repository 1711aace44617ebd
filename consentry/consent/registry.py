"""Admin-curated cookie registry.

Holds exact-name cookie entries that an administrator has categorized, plus
uncategorized entries reported by enforcement so they can be reviewed later.
Only ``categorized`` entries take part in classification.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .errors import InvalidConsentDataError
from .models import Category, RegistryEntry, RegistryStatus

logger = logging.getLogger(__name__)

RegistryListener = Callable[["CookieRegistry"], None]

# Heuristic suggestions for reported cookies, checked in order
SUGGESTION_PATTERNS = [
    (Category.NECESSARY, [r'^wp-', r'^wordpress', r'^wc_', r'^session', r'^csrf', r'^token', r'^PHPSESSID$']),
    (Category.ANALYTICS, [r'^_ga', r'^_gid', r'^_gat', r'^_utm', r'^__utm', r'^_pk_', r'^_hj', r'^_clck']),
    (Category.MARKETING, [r'^__hs', r'hubspot', r'^_fb', r'^_pin_', r'^_gcl', r'^_uet']),
    (Category.FUNCTIONAL, [r'^user_pref', r'^display_', r'^theme_', r'^lang']),
]


def suggest_category(name: str) -> Optional[Category]:
    """Guess a category for an unreviewed cookie name."""
    for category, patterns in SUGGESTION_PATTERNS:
        for pattern in patterns:
            if re.search(pattern, name, re.IGNORECASE):
                return category
    return None


class CookieRegistry:
    """Exact-name registry of admin-categorized and reported cookies."""

    def __init__(self, entries: Optional[Iterable[RegistryEntry]] = None):
        self._entries: Dict[str, RegistryEntry] = {}
        self._listeners: List[RegistryListener] = []

        for entry in entries or []:
            self._entries[entry.name] = entry.model_copy()

    def add_listener(self, listener: RegistryListener) -> None:
        """Register a callable notified after every mutation."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.warning(f"Registry listener failed: {e}")

    def get(self, name: str) -> Optional[RegistryEntry]:
        return self._entries.get(name)

    def lookup(self, name: str) -> Optional[RegistryEntry]:
        """Return the entry only if an admin has categorized it."""
        entry = self._entries.get(name)
        if entry is not None and entry.is_categorized:
            return entry
        return None

    def categorize(
        self,
        name: str,
        category: Category,
        source: Optional[str] = None,
        description: Optional[str] = None,
        added_by: str = "admin"
    ) -> RegistryEntry:
        """Assign a category to a cookie name.

        Callers are responsible for authorization; this only validates input.
        """
        name = (name or "").strip()
        if not name:
            raise InvalidConsentDataError("Cookie name is required", reason="empty_name")

        try:
            category = Category(category)
        except ValueError:
            raise InvalidConsentDataError(f"Invalid category: {category}", reason="invalid_category")
        if category == Category.UNKNOWN:
            raise InvalidConsentDataError("Cannot categorize a cookie as unknown", reason="invalid_category")

        existing = self._entries.get(name)
        entry = RegistryEntry(
            name=name,
            category=category,
            status=RegistryStatus.CATEGORIZED,
            source=source or (existing.source if existing else None),
            domain=existing.domain if existing else "*",
            description=description or (existing.description if existing else None),
            required=category == Category.NECESSARY,
            first_detected=existing.first_detected if existing else datetime.now(timezone.utc),
            added_by=added_by
        )
        self._entries[name] = entry

        logger.info(f"Categorized cookie {name} as {category.value}")
        self._notify()
        return entry

    def report_unknown(self, name: str, domain: str = "*") -> bool:
        """Record an unclassified cookie for review.

        Returns:
            True if a new uncategorized entry was added, False if the name was
            already known to the registry.
        """
        name = (name or "").strip()
        if not name:
            raise InvalidConsentDataError("Cookie name is required", reason="empty_name")

        if name in self._entries:
            return False

        self._entries[name] = RegistryEntry(
            name=name,
            status=RegistryStatus.UNCATEGORIZED,
            domain=domain or "*",
            suggested_category=suggest_category(name),
            added_by="scanner"
        )

        logger.info(f"Reported unknown cookie {name} on {domain}")
        self._notify()
        return True

    def remove(self, name: str) -> bool:
        if self._entries.pop(name, None) is None:
            return False
        self._notify()
        return True

    def categorized(self) -> List[RegistryEntry]:
        return [entry for entry in self._entries.values() if entry.is_categorized]

    def uncategorized(self) -> List[RegistryEntry]:
        return [entry for entry in self._entries.values() if not entry.is_categorized]

    def snapshot(self) -> List[RegistryEntry]:
        """Copies of all entries, safe to hand to other components."""
        return [entry.model_copy() for entry in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries
