"""Open Cookie Database support.

The reference database is an optional, lowest-priority classification layer
built from the community-maintained Open Cookie Database CSV. Downloading and
parsing happen ahead of time; the classifier only ever sees the resulting
:class:`ReferenceSnapshot`.
"""

import csv
import io
import logging
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from .errors import ReferenceDatabaseError
from .models import Category, CookieRule, MatchKind, coerce_bool

logger = logging.getLogger(__name__)

REFERENCE_SOURCE = "Open Cookie Database"

# Reference categories onto ours; anything else is dropped
CATEGORY_MAPPING = {
    "necessary": Category.NECESSARY,
    "essential": Category.NECESSARY,
    "required": Category.NECESSARY,
    "mandatory": Category.NECESSARY,
    "preferences": Category.FUNCTIONAL,
    "functionality": Category.FUNCTIONAL,
    "functional": Category.FUNCTIONAL,
    "analytics": Category.ANALYTICS,
    "statistical": Category.ANALYTICS,
    "statistics": Category.ANALYTICS,
    "marketing": Category.MARKETING,
    "advertisement": Category.MARKETING,
    "targeting": Category.MARKETING,
    "advertising": Category.MARKETING,
}

# Column aliases, lower-cased
HEADER_ALIASES = {
    "name": ("name", "cookie / data key name", "cookie name"),
    "category": ("category",),
    "domain": ("domain",),
    "description": ("description",),
    "retention": ("retention", "retention period"),
    "provider": ("provider", "platform", "data controller"),
    "wildcard": ("wildcard match", "wildcard"),
}


def map_reference_category(value: str) -> Optional[Category]:
    """Map a reference database category label, or None when unmapped."""
    return CATEGORY_MAPPING.get((value or "").strip().lower())


class ReferenceSnapshot:
    """Pre-loaded reference rules: exact names plus wildcard patterns."""

    def __init__(self, rules: Optional[List[CookieRule]] = None, available: bool = True,
                 source: Optional[str] = None):
        self.available = available
        self.source = source
        self.exact: Dict[str, CookieRule] = {}
        self.patterns: List[CookieRule] = []

        for rule in rules or []:
            if rule.match == MatchKind.EXACT:
                self.exact.setdefault(rule.name, rule)
            else:
                self.patterns.append(rule)

    @classmethod
    def unavailable(cls, source: Optional[str] = None) -> "ReferenceSnapshot":
        return cls(available=False, source=source)

    def __len__(self) -> int:
        return len(self.exact) + len(self.patterns)

    def lookup(self, name: str) -> Optional[CookieRule]:
        """Exact match first, then patterns in file order."""
        if not self.available:
            return None

        rule = self.exact.get(name)
        if rule is not None:
            return rule

        for rule in self.patterns:
            if rule.matches(name):
                return rule
        return None


def parse_reference_csv(csv_text: str) -> List[CookieRule]:
    """Parse Open Cookie Database CSV text into cookie rules.

    Rows without a name or with an unmapped category are skipped. Names
    containing ``*`` become wildcard rules; rows flagged in the wildcard
    column become prefix rules.
    """
    reader = csv.reader(io.StringIO(csv_text.lstrip("\ufeff")))
    try:
        headers = next(reader)
    except StopIteration:
        return []

    lowered = [h.strip().lower() for h in headers]
    indexes: Dict[str, int] = {}
    for key, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias in lowered:
                indexes[key] = lowered.index(alias)
                break

    if "name" not in indexes or "category" not in indexes:
        raise ReferenceDatabaseError("Reference CSV lacks name or category columns")

    def column(row: List[str], key: str) -> str:
        index = indexes.get(key)
        if index is None or index >= len(row):
            return ""
        return row[index].strip()

    rules: List[CookieRule] = []
    skipped = 0
    for row in reader:
        name = column(row, "name")
        category = map_reference_category(column(row, "category"))
        if not name or category is None:
            skipped += 1
            continue

        if "*" in name:
            match = MatchKind.WILDCARD
        elif coerce_bool(column(row, "wildcard")):
            match = MatchKind.PREFIX
        else:
            match = MatchKind.EXACT

        rules.append(CookieRule(
            name=name,
            match=match,
            category=category,
            source=column(row, "provider") or REFERENCE_SOURCE,
            description=column(row, "description") or None
        ))

    logger.debug(f"Parsed {len(rules)} reference rules, skipped {skipped} rows")
    return rules


def load_reference_snapshot(path: Path) -> ReferenceSnapshot:
    """Load a snapshot from a cached CSV file.

    Never raises: a missing or unreadable file yields an unavailable snapshot.
    """
    path = Path(path)
    try:
        csv_text = path.read_text(encoding="utf-8")
        rules = parse_reference_csv(csv_text)
    except (OSError, UnicodeDecodeError, csv.Error, ReferenceDatabaseError) as e:
        logger.warning(f"Reference database unavailable at {path}: {e}")
        return ReferenceSnapshot.unavailable(source=str(path))

    logger.info(f"Loaded {len(rules)} reference cookie rules from {path}")
    return ReferenceSnapshot(rules, source=str(path))


async def download_reference_csv(url: str, cache_path: Path, timeout: float = 30.0) -> int:
    """Download the reference CSV into the cache file.

    Returns:
        Number of usable rules in the downloaded file.

    Raises:
        ReferenceDatabaseError: If the download or parse fails. The existing
            cache file is left untouched in that case.
    """
    headers = {"User-Agent": "Consentry-Reference-Updater/1.0.0"}

    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url, headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ReferenceDatabaseError(
            f"HTTP error {e.response.status_code} fetching reference database", source=url
        )
    except httpx.RequestError as e:
        raise ReferenceDatabaseError(f"Request error: {e}", source=url)

    csv_text = response.text
    if not csv_text.strip():
        raise ReferenceDatabaseError("Reference database download was empty", source=url)

    try:
        rules = parse_reference_csv(csv_text)
    except csv.Error as e:
        raise ReferenceDatabaseError(f"Invalid reference CSV: {e}", source=url)

    cache_path = Path(cache_path)
    try:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(csv_text, encoding="utf-8")
    except OSError as e:
        raise ReferenceDatabaseError(f"Could not write reference cache {cache_path}: {e}", source=url)

    logger.info(f"Downloaded reference database with {len(rules)} rules to {cache_path}")
    return len(rules)
