"""Google Consent Mode v2 signal translation.

Maps consent categories onto the Consent Mode signal keys and builds the
``consent default`` / ``consent update`` commands pushed to the page's data
layer. Each signal key is derived from exactly one category.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Union

from .config import RegionMode, SignalConfig
from .models import Category, ConsentRecord, SignalMap, SignalValue, coerce_bool

logger = logging.getLogger(__name__)

# Category -> signal keys it controls
CATEGORY_SIGNALS: Dict[Category, List[str]] = {
    Category.ANALYTICS: ["analytics_storage"],
    Category.FUNCTIONAL: ["functionality_storage", "personalization_storage"],
    Category.MARKETING: ["ad_storage", "ad_user_data", "ad_personalization"],
}

CategoryInput = Union[ConsentRecord, Mapping[Any, Any]]


def _granted(categories: CategoryInput, category: Category) -> bool:
    if isinstance(categories, ConsentRecord):
        return categories.is_granted(category)
    for key, value in categories.items():
        key = key.value if isinstance(key, Category) else str(key)
        if key == category.value:
            return coerce_bool(value)
    return False


class SignalTranslator:
    """Builds Consent Mode signals and commands from category state."""

    def __init__(self, config: Optional[SignalConfig] = None):
        self.config = config or SignalConfig()

    def translate(self, categories: CategoryInput) -> SignalMap:
        """Signal map for a category state. ``security_storage`` is always granted."""
        values: Dict[str, SignalValue] = {}
        for category, keys in CATEGORY_SIGNALS.items():
            value = SignalValue.GRANTED if _granted(categories, category) else SignalValue.DENIED
            for key in keys:
                values[key] = value
        values["security_storage"] = SignalValue.GRANTED
        return SignalMap(**values)

    def regions(self) -> Optional[List[str]]:
        """Region scope for the configured mode; None means everywhere."""
        mode = self.config.region_mode
        if mode == RegionMode.LOCAL:
            return list(self.config.local_regions)
        if mode == RegionMode.REGIONAL:
            return list(self.config.regional_regions)
        return None

    def _scoped(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        regions = self.regions()
        if regions is not None:
            payload["region"] = regions
        return payload

    def default_command(self, skip_restrictive_defaults: bool = False) -> Optional[List[Any]]:
        """The ``consent default`` command, or None when the caller skips defaults.

        Everything is denied except ``security_storage``.
        """
        if skip_restrictive_defaults:
            logger.debug("Skipping restrictive consent defaults")
            return None

        payload: Dict[str, Any] = SignalMap().to_dict()
        payload["wait_for_update"] = self.config.wait_for_update_ms
        return ["consent", "default", self._scoped(payload)]

    def update_command(self, categories: CategoryInput) -> List[Any]:
        """The ``consent update`` command for a category state."""
        payload: Dict[str, Any] = self.translate(categories).to_dict()
        return ["consent", "update", self._scoped(payload)]

    def set_commands(self) -> List[List[Any]]:
        """Optional ``set`` commands emitted alongside the defaults."""
        commands = []
        if self.config.url_passthrough:
            commands.append(["set", "url_passthrough", True])
        if self.config.ads_data_redaction:
            commands.append(["set", "ads_data_redaction", True])
        return commands


class SignalSink(ABC):
    """Receiver of Consent Mode commands."""

    @abstractmethod
    def push(self, command: List[Any]) -> None:
        pass

    @abstractmethod
    def has_default(self) -> bool:
        """Whether a ``consent default`` command was already emitted."""
        pass


class DataLayer(SignalSink):
    """In-memory data layer collecting pushed commands in order."""

    def __init__(self, commands: Optional[List[List[Any]]] = None):
        self.commands: List[List[Any]] = list(commands or [])

    def push(self, command: List[Any]) -> None:
        self.commands.append(command)

    def has_default(self) -> bool:
        return any(self._is_consent(command, "default") for command in self.commands)

    def consent_commands(self, action: Optional[str] = None) -> List[List[Any]]:
        return [
            command for command in self.commands
            if self._is_consent(command, action)
        ]

    def current_state(self) -> Dict[str, Any]:
        """Signal state after applying the default and every update in order."""
        state: Dict[str, Any] = {}
        for command in self.consent_commands():
            payload = command[2] if len(command) > 2 and isinstance(command[2], dict) else {}
            state.update({k: v for k, v in payload.items() if k not in ("region", "wait_for_update")})
        return state

    @staticmethod
    def _is_consent(command: List[Any], action: Optional[str]) -> bool:
        if not isinstance(command, (list, tuple)) or len(command) < 2 or command[0] != "consent":
            return False
        return action is None or command[1] == action
