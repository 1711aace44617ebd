"""Banner data assembly: classified cookies grouped by category and provider."""

import logging
from typing import Dict, Iterable, List, Optional

from .classification import CookieClassifier
from .config import BannerConfig
from .models import Category, CategoryGroup, CONSENT_CATEGORIES, GroupedCookie

logger = logging.getLogger(__name__)


class BannerAssembler:
    """Groups cookies by category for the consent banner.

    Without explicit cookie names, the admin registry's categorized entries
    are grouped. Categories with no cookies still produce a group.
    """

    def __init__(self, classifier: CookieClassifier, config: Optional[BannerConfig] = None):
        self.classifier = classifier
        self.config = config or BannerConfig()

    def _group(self, category: Category) -> CategoryGroup:
        text = self.config.categories.get(category.value)
        return CategoryGroup(
            category=category,
            title=text.title if text else category.value.capitalize(),
            description=text.description if text else "",
            required=category == Category.NECESSARY
        )

    def assemble(self, cookie_names: Optional[Iterable[str]] = None) -> List[CategoryGroup]:
        if cookie_names is None:
            cookie_names = [entry.name for entry in self.classifier.registry.categorized()]

        groups: Dict[Category, CategoryGroup] = {
            category: self._group(category) for category in CONSENT_CATEGORIES
        }

        seen = set()
        for name in cookie_names:
            if name in seen:
                continue
            seen.add(name)

            result = self.classifier.classify(name)
            group = groups.get(result.category)
            if group is None:
                group = groups[result.category] = self._group(result.category)

            group.cookies.append(GroupedCookie(
                name=name,
                source=result.source,
                description=result.description
            ))
            if result.source and result.source not in group.sources:
                group.sources.append(result.source)

        logger.debug(f"Assembled banner groups for {len(seen)} cookies")
        return list(groups.values())
