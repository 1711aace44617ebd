"""Continuous enforcement of the visitor's consent decision.

A sweep enumerates every cookie the enforcing context can see, classifies
it and removes whatever the current consent does not allow. Unknown cookies
are reported for review and always removed. Sweeps are idempotent; they run
on a fixed interval and immediately after every consent change.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from .classification import CookieClassifier
from .config import EnforcementConfig
from .jar import CookieJar, domain_variants
from .models import Category, ConsentRecord
from .scheduling import ScheduledHandle, Scheduler
from .storage import ConsentStore

logger = logging.getLogger(__name__)

UnknownCookieReporter = Callable[[str], Any]

# Tracker entry points silenced while their category is not granted
TRACKER_ENTRY_POINTS: Dict[Category, List[str]] = {
    Category.ANALYTICS: ["ga", "_gaq", "_paq", "clarity", "hj"],
    Category.MARKETING: ["fbq", "_hsq", "twq", "uetq"],
}


def _noop(*args, **kwargs) -> None:
    return None


class TrackingHost:
    """Named tracker entry points exposed by the page.

    Neutralizing an entry point swaps it for a no-op and keeps the original
    so it can be restored once consent is granted.
    """

    def __init__(self, entry_points: Optional[Dict[str, Callable[..., Any]]] = None):
        self.entry_points: Dict[str, Callable[..., Any]] = dict(entry_points or {})
        self._originals: Dict[str, Callable[..., Any]] = {}

    def install(self, name: str, function: Callable[..., Any]) -> None:
        if name in self._originals:
            # Installed while neutralized; keep it for restore
            self._originals[name] = function
        else:
            self.entry_points[name] = function

    def call(self, name: str, *args, **kwargs) -> Any:
        function = self.entry_points.get(name)
        if function is None:
            return None
        return function(*args, **kwargs)

    def is_neutralized(self, name: str) -> bool:
        return name in self._originals

    def neutralize(self, names: List[str]) -> List[str]:
        """Replace present entry points with no-ops. Returns the names changed."""
        changed = []
        for name in names:
            if name in self.entry_points and name not in self._originals:
                self._originals[name] = self.entry_points[name]
                self.entry_points[name] = _noop
                changed.append(name)
        return changed

    def restore(self, names: List[str]) -> List[str]:
        """Put neutralized entry points back. Returns the names restored."""
        restored = []
        for name in names:
            if name in self._originals:
                self.entry_points[name] = self._originals.pop(name)
                restored.append(name)
        return restored


@dataclass
class SweepReport:
    """What one sweep did."""

    consent_decided: bool = False
    kept: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    neutralized: List[str] = field(default_factory=list)
    restored: List[str] = field(default_factory=list)
    deferred: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.deleted or self.neutralized or self.restored)


class EnforcementEngine:
    """Removes cookies and silences trackers the visitor has not consented to."""

    def __init__(
        self,
        jar: CookieJar,
        classifier: CookieClassifier,
        store: ConsentStore,
        schema_version: str,
        config: Optional[EnforcementConfig] = None,
        reporter: Optional[UnknownCookieReporter] = None,
        tracking_host: Optional[TrackingHost] = None
    ):
        """Initialize the enforcement engine.

        Args:
            jar: Cookies observable in the enforcing context
            classifier: Classifier consulted for every cookie
            store: Consent store read at the start of each sweep
            schema_version: Current schema; older records count as no consent
            config: Enforcement settings
            reporter: Feedback callable receiving unknown cookie names
            tracking_host: Page tracker entry points to neutralize
        """
        self.jar = jar
        self.classifier = classifier
        self.store = store
        self.schema_version = schema_version
        self.config = config or EnforcementConfig()
        self.reporter = reporter
        self.tracking_host = tracking_host

        self._reported: Set[str] = set()
        self._sweeping = False
        self._rerun_requested = False
        self._interval_handle: Optional[ScheduledHandle] = None
        self.last_report: Optional[SweepReport] = None

    @property
    def running(self) -> bool:
        return self._interval_handle is not None and not self._interval_handle.cancelled

    def start(self, scheduler: Scheduler) -> None:
        """Sweep on the configured interval until ``stop()``."""
        if self.running:
            logger.warning("Enforcement engine is already running")
            return
        self._interval_handle = scheduler.call_every(self.config.sweep_interval_seconds, self.sweep)
        logger.info(f"Enforcement started (interval: {self.config.sweep_interval_seconds}s)")

    def stop(self) -> None:
        if self._interval_handle is None:
            return
        self._interval_handle.cancel()
        self._interval_handle = None
        logger.info("Enforcement stopped")

    def sweep(self) -> SweepReport:
        """Run one enforcement pass.

        A sweep requested while another is running is queued and executed
        once more after the current pass finishes.
        """
        if self._sweeping:
            self._rerun_requested = True
            return SweepReport(deferred=True)

        self._sweeping = True
        try:
            report = self._sweep_once()
            while self._rerun_requested:
                self._rerun_requested = False
                report = self._sweep_once()
        finally:
            self._sweeping = False

        self.last_report = report
        return report

    def _current_record(self) -> Optional[ConsentRecord]:
        try:
            record = self.store.read()
        except Exception as e:
            logger.warning(f"Could not read consent during sweep: {e}")
            return None
        if record is None or not record.is_current(self.schema_version):
            return None
        return record

    def _sweep_once(self) -> SweepReport:
        record = self._current_record()
        # No decision yet enforces like a decline
        granted = set(record.granted_categories()) if record else {Category.NECESSARY}
        report = SweepReport(consent_decided=record is not None)

        seen: Set[str] = set()
        for cookie in self.jar.list_cookies():
            if cookie.name in seen:
                continue
            seen.add(cookie.name)

            result = self.classifier.classify(cookie.name)
            if result.is_necessary:
                report.kept.append(cookie.name)
                continue

            if result.is_unknown:
                report.unknown.append(cookie.name)
                self._report_unknown(cookie.name)
            elif result.category in granted:
                report.kept.append(cookie.name)
                continue

            logger.debug(f"Removing cookie {cookie.name} ({result.category.value})")
            if self._delete(cookie.name, cookie.path, cookie.domain):
                report.deleted.append(cookie.name)
            else:
                report.failed.append(cookie.name)

        if self.tracking_host is not None and self.config.neutralize_trackers:
            self._apply_tracker_policy(granted, report)

        if report.deleted or report.failed:
            logger.info(
                f"Sweep removed {len(report.deleted)} cookies, "
                f"{len(report.failed)} pending retry"
            )
        return report

    def _delete(self, name: str, path: str, observed_domain: Optional[str] = None) -> bool:
        """Expire a cookie under every plausible scope; True if it is gone."""
        paths = [path] if path == "/" else [path, "/"]
        for domain in domain_variants(self.jar.host, observed_domain):
            for cookie_path in paths:
                try:
                    self.jar.delete_cookie(name, domain=domain, path=cookie_path)
                except Exception as e:
                    logger.debug(f"Deleting {name} with domain={domain} path={cookie_path} failed: {e}")

        try:
            return all(c.name != name for c in self.jar.list_cookies())
        except Exception as e:
            logger.warning(f"Could not verify deletion of {name}: {e}")
            return False

    def _report_unknown(self, name: str) -> None:
        if not self.config.report_unknown or self.reporter is None:
            return
        if name in self._reported:
            return
        self._reported.add(name)
        try:
            self.reporter(name)
        except Exception as e:
            logger.debug(f"Unknown cookie report for {name} dropped: {e}")

    def _apply_tracker_policy(self, granted: Set[Category], report: SweepReport) -> None:
        for category, names in TRACKER_ENTRY_POINTS.items():
            if category in granted:
                report.restored.extend(self.tracking_host.restore(names))
            else:
                report.neutralized.extend(self.tracking_host.neutralize(names))
