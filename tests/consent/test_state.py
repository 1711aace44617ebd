"""Unit tests for the consent lifecycle state machine."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from consentry.consent.classification import CookieClassifier
from consentry.consent.enforcement import EnforcementEngine
from consentry.consent.errors import ConsentPersistenceError
from consentry.consent.integrations import IntegrationContext, IntegrationRegistry
from consentry.consent.jar import InMemoryCookieJar
from consentry.consent.models import Category, ConsentRecord
from consentry.consent.scheduling import ManualClock, ManualScheduler
from consentry.consent.signals import DataLayer, SignalTranslator
from consentry.consent.state import ConsentState, ConsentStateMachine
from consentry.consent.storage import create_consent_store


GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
BROWSER = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


class TestConsentStateMachine:
    """Test banner lifecycle and decision fan-out."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = ManualClock()
        self.scheduler = ManualScheduler(self.clock)
        self.jar = InMemoryCookieJar("www.example.com")
        self.store = create_consent_store(self.jar, cache={})
        self.sink = DataLayer()
        self.classifier = CookieClassifier.for_integrations(
            IntegrationRegistry("cookie_consent"), IntegrationContext()
        )
        self.engine = EnforcementEngine(self.jar, self.classifier, self.store, "1.0.0")
        self.shown = []
        self.machine = ConsentStateMachine(
            self.store,
            SignalTranslator(),
            self.sink,
            self.scheduler,
            "1.0.0",
            engine=self.engine,
            clock=self.clock,
            on_show=lambda: self.shown.append(self.machine.state)
        )

    def test_first_visit_defers_banner_until_idle(self):
        state = self.machine.initialize(user_agent=BROWSER)

        assert state == ConsentState.UNDECIDED
        assert not self.machine.banner_visible

        self.scheduler.run_idle()

        assert self.machine.state == ConsentState.SHOWING
        assert self.shown == [ConsentState.SHOWING]

    def test_banner_shown_after_timeout_without_idle(self):
        self.machine.initialize()

        self.scheduler.advance(3.0)

        assert self.machine.banner_visible

    def test_default_command_emitted_first(self):
        self.machine.initialize()

        assert self.sink.commands[0][:2] == ["consent", "default"]
        assert self.sink.commands[0][2]["analytics_storage"] == "denied"

    def test_existing_default_is_not_duplicated(self):
        self.sink.push(["consent", "default", {"ad_storage": "denied"}])

        self.machine.initialize()

        assert len(self.sink.consent_commands("default")) == 1

    def test_skip_restrictive_defaults(self):
        self.machine.initialize(skip_restrictive_defaults=True)

        assert self.sink.consent_commands("default") == []

    def test_stored_record_applied_without_banner(self):
        record = ConsentRecord.build({"analytics": True}, "1.0.0", self.clock())
        self.store.write(record)
        self.jar.set_cookie("_fbp", "1")

        state = self.machine.initialize()
        self.scheduler.run_idle()

        assert state == ConsentState.DECIDED
        assert self.machine.record == record
        assert not self.machine.banner_visible
        assert self.sink.commands[-1][1] == "update"
        assert self.sink.commands[-1][2]["analytics_storage"] == "granted"
        assert "_fbp" not in self.jar.names()

    def test_outdated_schema_shows_banner_again(self):
        self.store.write(ConsentRecord.build({"analytics": True}, "0.9.0", self.clock()))

        state = self.machine.initialize()
        self.scheduler.run_idle()

        assert state == ConsentState.UNDECIDED
        assert self.machine.state == ConsentState.SHOWING
        assert self.machine.record is None

    def test_malformed_cookie_shows_banner(self):
        self.jar.set_cookie("cookie_consent", "%7Bnot-json")

        assert self.machine.initialize() == ConsentState.UNDECIDED

    def test_accept_all(self):
        self.machine.initialize()
        self.scheduler.run_idle()

        record = self.machine.accept_all()

        assert self.machine.state == ConsentState.DECIDED
        assert all(record.categories.values())
        assert self.store.read() == record
        assert self.sink.current_state()["ad_storage"] == "granted"

    def test_accept_all_twice_is_stable(self):
        self.machine.initialize()
        first = self.machine.accept_all()
        self.clock.advance(60)
        second = self.machine.accept_all()

        assert first.categories == second.categories
        assert second.decided_at >= first.decided_at

    def test_timestamps_never_go_backwards(self):
        first = self.machine.accept_all()
        self.clock.advance(-3600)

        second = self.machine.decline_all()

        assert second.decided_at == first.decided_at

    def test_decline_all_removes_non_necessary_cookies(self):
        for name in ["_ga", "_fbp", "wordpress_test_cookie", "_unrecognized_xyz"]:
            self.jar.set_cookie(name, "1")
        self.machine.initialize()

        self.machine.decline_all()

        remaining = [self.classifier.classify(name) for name in self.jar.names()]
        assert all(result.is_necessary for result in remaining)
        assert sorted(self.jar.names()) == ["cookie_consent", "wordpress_test_cookie"]

    def test_save_custom(self):
        record = self.machine.save_custom({"analytics": "true", "necessary": False, "bogus": True})

        assert record.categories == {
            Category.NECESSARY: True,
            Category.ANALYTICS: True,
            Category.FUNCTIONAL: False,
            Category.MARKETING: False,
        }

    def test_necessary_always_granted(self):
        for action in (self.machine.accept_all, self.machine.decline_all,
                       lambda: self.machine.save_custom({})):
            assert action().categories[Category.NECESSARY] is True

    def test_terminal_action_order(self):
        self.jar.set_cookie("_ga", "1")
        self.machine.initialize()
        observed = []

        def listener(change):
            observed.append({
                "stored": self.store.read() == change.record,
                "update_pushed": self.sink.commands[-1][1] == "update",
                "swept": "_ga" not in self.jar.names(),
                "state": self.machine.state,
            })

        self.machine.add_listener(listener)
        self.machine.decline_all()

        assert observed == [{
            "stored": True,
            "update_pushed": True,
            "swept": True,
            "state": ConsentState.DECIDED,
        }]

    def test_listener_receives_previous_record(self):
        changes = []
        self.machine.add_listener(changes.append)

        first = self.machine.accept_all()
        self.machine.save_custom({"marketing": True})

        assert changes[0].previous is None
        assert changes[1].previous == first
        assert changes[1].source == "save_custom"
        assert changes[1].categories["marketing"] is True

    def test_failing_listener_does_not_block_others(self):
        changes = []

        def broken(change):
            raise RuntimeError("listener failure")

        self.machine.add_listener(broken)
        self.machine.add_listener(changes.append)

        self.machine.accept_all()

        assert len(changes) == 1

    def test_removed_listener_is_not_called(self):
        changes = []
        self.machine.add_listener(changes.append)
        self.machine.remove_listener(changes.append)

        self.machine.accept_all()

        assert changes == []

    def test_persistence_failure_leaves_state_unchanged(self):
        self.machine.initialize()
        self.scheduler.run_idle()
        changes = []
        self.machine.add_listener(changes.append)
        commands_before = list(self.sink.commands)

        with patch.object(self.jar, "set_cookie", side_effect=ValueError("cookies blocked")):
            with pytest.raises(ConsentPersistenceError) as exc_info:
                self.machine.accept_all()

        assert exc_info.value.details["channel"] == "cookie"
        assert self.machine.state == ConsentState.SHOWING
        assert self.machine.record is None
        assert changes == []
        assert self.sink.commands == commands_before

    def test_decision_cancels_pending_banner(self):
        self.machine.initialize()

        self.machine.accept_all()
        self.scheduler.advance(5)

        assert self.machine.state == ConsentState.DECIDED
        assert self.shown == []

    def test_dismiss_without_record(self):
        self.machine.initialize()
        self.scheduler.run_idle()

        assert self.machine.dismiss() == ConsentState.UNDECIDED

    def test_dismiss_after_reopen_returns_to_decided(self):
        self.machine.accept_all()
        self.machine.reopen()

        assert self.machine.dismiss() == ConsentState.DECIDED

    def test_dismiss_is_noop_when_not_showing(self):
        self.machine.accept_all()

        assert self.machine.dismiss() == ConsentState.DECIDED

    def test_reopen_prepopulates_choices(self):
        self.machine.save_custom({"functional": True})

        choices = self.machine.reopen()

        assert self.machine.banner_visible
        assert choices == {"necessary": True, "analytics": False, "functional": True, "marketing": False}
        assert self.store.read() is not None

    def test_reopen_without_record(self):
        assert self.machine.reopen() == {
            "necessary": True, "analytics": False, "functional": False, "marketing": False
        }

    def test_bot_session(self):
        self.jar.set_cookie("_ga", "1")

        state = self.machine.initialize(user_agent=GOOGLEBOT)
        self.scheduler.run_idle()

        assert state == ConsentState.DECIDED
        assert self.machine.is_bot_session
        assert all(self.machine.record.categories.values())
        assert self.store.read() is None
        assert self.shown == []
        assert self.sink.commands[-1][2]["ad_storage"] == "granted"

    def test_bot_detection_disabled(self):
        self.machine.bot_detection = False

        assert self.machine.initialize(user_agent=GOOGLEBOT) == ConsentState.UNDECIDED


def test_manual_clock_default_start():
    assert ManualClock()() == datetime(2024, 1, 1, tzinfo=timezone.utc)
    clock = ManualClock()
    clock.advance(90)
    assert clock() - datetime(2024, 1, 1, tzinfo=timezone.utc) == timedelta(seconds=90)
