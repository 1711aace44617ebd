"""Visitor-facing consent lifecycle.

The state machine decides whether the banner is shown, turns visitor
actions into consent records and fans each decision out in a fixed order:
persist, emit the Consent Mode update, sweep, then notify listeners.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from .bots import is_bot
from .enforcement import EnforcementEngine
from .errors import ConsentPersistenceError
from .models import (
    Category,
    ConsentRecord,
    CONSENT_CATEGORIES,
    OPTIONAL_CATEGORIES,
    coerce_bool,
    necessary_only
)
from .scheduling import Clock, ScheduledHandle, Scheduler, utc_now
from .signals import SignalSink, SignalTranslator
from .storage import ConsentStore

logger = logging.getLogger(__name__)


class ConsentState(str, Enum):
    """Lifecycle states."""
    UNDECIDED = "undecided"
    SHOWING = "showing"
    DECIDED = "decided"


@dataclass
class ConsentChange:
    """Notification payload for consent listeners."""

    record: ConsentRecord
    previous: Optional[ConsentRecord]
    source: str

    @property
    def categories(self) -> Dict[str, bool]:
        return self.record.category_flags()


ConsentListener = Callable[[ConsentChange], None]


class ConsentStateMachine:
    """Owns the banner lifecycle and applies visitor decisions."""

    def __init__(
        self,
        store: ConsentStore,
        translator: SignalTranslator,
        sink: SignalSink,
        scheduler: Scheduler,
        schema_version: str,
        engine: Optional[EnforcementEngine] = None,
        clock: Clock = utc_now,
        banner_timeout_seconds: float = 3.0,
        bot_detection: bool = True,
        on_show: Optional[Callable[[], None]] = None
    ):
        """Initialize the state machine.

        Args:
            store: Consent record persistence
            translator: Consent Mode translator
            sink: Receiver of Consent Mode commands
            scheduler: Scheduler used to defer the banner
            schema_version: Current consent schema version
            engine: Enforcement engine swept after each decision
            clock: Source of decision timestamps
            banner_timeout_seconds: Upper bound on banner deferral
            bot_detection: Grant consent to crawlers without a banner
            on_show: Called when the banner enters the showing state
        """
        self.store = store
        self.translator = translator
        self.sink = sink
        self.scheduler = scheduler
        self.schema_version = schema_version
        self.engine = engine
        self.clock = clock
        self.banner_timeout_seconds = banner_timeout_seconds
        self.bot_detection = bot_detection
        self.on_show = on_show

        self.state = ConsentState.UNDECIDED
        self.record: Optional[ConsentRecord] = None
        self.is_bot_session = False
        self._banner_handle: Optional[ScheduledHandle] = None
        self._listeners: List[ConsentListener] = []

    @property
    def banner_visible(self) -> bool:
        return self.state == ConsentState.SHOWING

    def add_listener(self, listener: ConsentListener) -> None:
        """Register a listener notified after each persisted decision."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ConsentListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def initialize(self, user_agent: Optional[str] = None,
                   skip_restrictive_defaults: bool = False) -> ConsentState:
        """Load-time entry point.

        Emits the Consent Mode default (unless one exists or the caller skips
        it), then either applies a current stored record or schedules the
        banner.
        """
        self._emit_defaults(skip_restrictive_defaults)

        if self.bot_detection and is_bot(user_agent):
            # Crawlers get an all-granted decision that is never persisted
            self.is_bot_session = True
            self.record = ConsentRecord.build(
                {category: True for category in CONSENT_CATEGORIES},
                self.schema_version,
                decided_at=self.clock()
            )
            self.state = ConsentState.DECIDED
            self.sink.push(self.translator.update_command(self.record))
            logger.info("Crawler detected, consent granted without banner")
            return self.state

        record = self._read_current()
        if record is not None:
            self.record = record
            self.state = ConsentState.DECIDED
            self.sink.push(self.translator.update_command(record))
            if self.engine is not None:
                self.engine.sweep()
            logger.info("Stored consent applied")
            return self.state

        self.state = ConsentState.UNDECIDED
        self._schedule_banner()
        return self.state

    def _emit_defaults(self, skip_restrictive_defaults: bool) -> None:
        if self.sink.has_default():
            return
        command = self.translator.default_command(skip_restrictive_defaults)
        if command is None:
            return
        self.sink.push(command)
        for set_command in self.translator.set_commands():
            self.sink.push(set_command)

    def _read_current(self) -> Optional[ConsentRecord]:
        try:
            record = self.store.read()
        except Exception as e:
            logger.warning(f"Consent store unreadable, treating as undecided: {e}")
            return None

        if record is None:
            return None
        if not record.is_current(self.schema_version):
            logger.info(
                f"Stored consent schema {record.schema_version} is outdated "
                f"(current {self.schema_version}), asking again"
            )
            return None
        return record

    def _schedule_banner(self) -> None:
        self._cancel_banner()
        self._banner_handle = self.scheduler.call_when_idle(
            self._show_banner, timeout=self.banner_timeout_seconds
        )

    def _cancel_banner(self) -> None:
        if self._banner_handle is not None:
            self._banner_handle.cancel()
            self._banner_handle = None

    def _show_banner(self) -> None:
        self._banner_handle = None
        if self.state != ConsentState.UNDECIDED:
            return
        self.state = ConsentState.SHOWING
        logger.info("Showing consent banner")
        if self.on_show is not None:
            self.on_show()

    def reopen(self) -> Dict[str, bool]:
        """Show the banner again, keeping the stored record.

        Returns:
            Current toggle states to pre-populate the banner.
        """
        self._cancel_banner()
        self.state = ConsentState.SHOWING
        if self.on_show is not None:
            self.on_show()
        return self.current_choices()

    def current_choices(self) -> Dict[str, bool]:
        if self.record is not None:
            return self.record.category_flags()
        return {category.value: granted for category, granted in necessary_only().items()}

    def accept_all(self) -> ConsentRecord:
        return self.apply_categories({category: True for category in CONSENT_CATEGORIES}, source="accept_all")

    def decline_all(self) -> ConsentRecord:
        return self.apply_categories(necessary_only(), source="decline_all")

    def save_custom(self, toggles: Mapping[Any, Any]) -> ConsentRecord:
        """Apply individual toggles; missing ones are off and ``necessary`` is ignored."""
        normalized = {
            (key.value if isinstance(key, Category) else str(key)): value
            for key, value in toggles.items()
        }
        categories = {
            category: coerce_bool(normalized.get(category.value, False))
            for category in OPTIONAL_CATEGORIES
        }
        return self.apply_categories(categories, source="save_custom")

    def dismiss(self) -> ConsentState:
        """Close the banner without deciding."""
        if self.state != ConsentState.SHOWING:
            return self.state
        self.state = ConsentState.DECIDED if self.record is not None else ConsentState.UNDECIDED
        logger.debug(f"Banner dismissed, state is now {self.state.value}")
        return self.state

    def apply_categories(self, categories: Mapping[Any, Any], source: str = "api") -> ConsentRecord:
        """Persist a decision and fan it out.

        Raises:
            ConsentPersistenceError: If the primary storage channel rejected
                the record. State is left unchanged.
        """
        record = ConsentRecord.build(categories, self.schema_version, decided_at=self._timestamp())

        result = self.store.write(record)
        if not result.succeeded:
            raise ConsentPersistenceError(channel=result.primary, errors=result.errors)

        previous = self.record
        self._cancel_banner()
        self.record = record
        self.state = ConsentState.DECIDED
        logger.info(f"Consent decided via {source}: {[c.value for c in record.granted_categories()]}")

        self.sink.push(self.translator.update_command(record))

        if self.engine is not None:
            self.engine.sweep()

        change = ConsentChange(record=record, previous=previous, source=source)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Consent listener failed: {e}")

        return record

    def _timestamp(self) -> datetime:
        now = self.clock()
        if self.record is not None and now < self.record.decided_at:
            return self.record.decided_at
        return now
