"""Unit tests for consent data models."""

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from consentry.consent.models import (
    Category,
    ClassificationLayer,
    ClassificationResult,
    ConsentRecord,
    CookieRule,
    MatchKind,
    RegistryEntry,
    RegistryStatus,
    SignalMap,
    coerce_bool,
    necessary_only,
    wildcard_to_regex
)


DECIDED_AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestConsentRecord:
    """Test ConsentRecord normalization and serialization."""

    def test_necessary_is_always_granted(self):
        record = ConsentRecord.build({"necessary": False, "analytics": True}, "1.0.0", DECIDED_AT)

        assert record.categories[Category.NECESSARY] is True
        assert record.is_granted(Category.NECESSARY)

    def test_missing_categories_default_to_denied(self):
        record = ConsentRecord.build({"analytics": True}, "1.0.0", DECIDED_AT)

        assert record.categories == {
            Category.NECESSARY: True,
            Category.ANALYTICS: True,
            Category.FUNCTIONAL: False,
            Category.MARKETING: False,
        }

    def test_foreign_keys_are_dropped(self):
        record = ConsentRecord.build({"analytics": True, "social": True, "unknown": True}, "1.0.0", DECIDED_AT)

        assert set(record.categories) == {
            Category.NECESSARY, Category.ANALYTICS, Category.FUNCTIONAL, Category.MARKETING
        }
        assert not record.is_granted(Category.UNKNOWN)

    def test_string_flags_are_coerced(self):
        record = ConsentRecord.build(
            {"analytics": "true", "functional": "0", "marketing": "yes"}, "1.0.0", DECIDED_AT
        )

        assert record.is_granted(Category.ANALYTICS)
        assert not record.is_granted(Category.FUNCTIONAL)
        assert record.is_granted(Category.MARKETING)

    def test_categories_must_be_mapping(self):
        with pytest.raises(ValidationError):
            ConsentRecord(schema_version="1.0.0", decided_at=DECIDED_AT, categories=["analytics"])

    def test_naive_timestamp_becomes_utc(self):
        record = ConsentRecord.build({}, "1.0.0", datetime(2024, 1, 1, 12, 0))

        assert record.decided_at.tzinfo is not None
        assert record.decided_at == DECIDED_AT

    def test_wire_format_uses_camel_case_keys(self):
        record = ConsentRecord.build({"analytics": True}, "1.0.0", DECIDED_AT)

        payload = json.loads(record.to_wire())

        assert payload["schemaVersion"] == "1.0.0"
        assert "decidedAt" in payload
        assert payload["categories"] == {
            "necessary": True, "analytics": True, "functional": False, "marketing": False
        }

    def test_legacy_keys_accepted(self):
        record = ConsentRecord.model_validate({
            "version": "1.0.0",
            "timestamp": "2024-01-01T12:00:00Z",
            "categories": {"marketing": True},
        })

        assert record.schema_version == "1.0.0"
        assert record.decided_at == DECIDED_AT
        assert record.is_granted(Category.MARKETING)

    def test_is_current(self):
        record = ConsentRecord.build({}, "0.9.0", DECIDED_AT)

        assert record.is_current("0.9.0")
        assert not record.is_current("1.0.0")

    def test_granted_categories_in_display_order(self):
        record = ConsentRecord.build({"marketing": True, "analytics": True}, "1.0.0", DECIDED_AT)

        assert record.granted_categories() == [Category.NECESSARY, Category.ANALYTICS, Category.MARKETING]

    def test_necessary_only(self):
        record = ConsentRecord.build(necessary_only(), "1.0.0", DECIDED_AT)

        assert record.granted_categories() == [Category.NECESSARY]


class TestCookieRule:
    """Test CookieRule matching."""

    def test_exact_match(self):
        rule = CookieRule(name="_ga", category=Category.ANALYTICS)

        assert rule.matches("_ga")
        assert not rule.matches("_ga_ABC")

    def test_prefix_match(self):
        rule = CookieRule(name="_ga_", match=MatchKind.PREFIX, category=Category.ANALYTICS)

        assert rule.matches("_ga_ABC123")
        assert not rule.matches("_ga")

    def test_wildcard_match(self):
        rule = CookieRule(name="_hjSession_*", match=MatchKind.WILDCARD, category=Category.ANALYTICS)

        assert rule.matches("_hjSession_12345")
        assert rule.matches("_hjSession_")
        assert not rule.matches("x_hjSession_1")

    def test_wildcard_escapes_literals(self):
        pattern = wildcard_to_regex("a.b*")

        assert pattern.match("a.b1")
        assert not pattern.match("aXb1")

    def test_unknown_category_rejected(self):
        with pytest.raises(ValidationError):
            CookieRule(name="x", category=Category.UNKNOWN)

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            CookieRule(name="  ", category=Category.ANALYTICS)


class TestClassificationResult:
    """Test classification result helpers."""

    def test_required_cookie_is_necessary(self):
        result = ClassificationResult(
            name="x", category=Category.FUNCTIONAL, required=True, layer=ClassificationLayer.BUILTIN
        )

        assert result.is_necessary
        assert not result.is_unknown

    def test_unknown(self):
        result = ClassificationResult(name="x", category=Category.UNKNOWN, layer=ClassificationLayer.DEFAULT)

        assert result.is_unknown
        assert not result.is_necessary


def test_registry_entry_categorized_requires_category():
    entry = RegistryEntry(name="x", status=RegistryStatus.CATEGORIZED)

    assert not entry.is_categorized


def test_registry_entry_with_category_defaults_to_categorized():
    entry = RegistryEntry(name="site_pref", category="functional")

    assert entry.status == RegistryStatus.CATEGORIZED
    assert entry.is_categorized


def test_registry_entry_explicit_status_is_kept():
    entry = RegistryEntry(name="site_pref", category="functional", status="uncategorized")
    reported = RegistryEntry(name="_pk_id", suggested_category=Category.ANALYTICS)

    assert entry.status == RegistryStatus.UNCATEGORIZED
    assert reported.status == RegistryStatus.UNCATEGORIZED


def test_signal_map_defaults_deny_everything_but_security():
    signals = SignalMap().to_dict()

    assert signals["security_storage"] == "granted"
    assert all(value == "denied" for key, value in signals.items() if key != "security_storage")


@pytest.mark.parametrize("value,expected", [
    ("true", True), ("1", True), ("Yes", True), ("false", False), ("", False), (1, True), (0, False),
])
def test_coerce_bool(value, expected):
    assert coerce_bool(value) is expected
