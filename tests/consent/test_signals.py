"""Unit tests for Consent Mode signal translation."""

from datetime import datetime, timezone

from consentry.consent.config import EEA_REGIONS, RegionMode, SignalConfig
from consentry.consent.models import Category, ConsentRecord
from consentry.consent.signals import DataLayer, SignalTranslator


class TestSignalTranslator:
    """Test category to signal mapping."""

    def setup_method(self):
        """Set up test fixtures."""
        self.translator = SignalTranslator()

    def test_analytics_only(self):
        signals = self.translator.translate({"analytics": True, "marketing": False}).to_dict()

        assert signals["analytics_storage"] == "granted"
        assert signals["ad_storage"] == "denied"
        assert signals["ad_user_data"] == "denied"
        assert signals["ad_personalization"] == "denied"
        assert signals["functionality_storage"] == "denied"

    def test_marketing_only(self):
        signals = self.translator.translate({"marketing": True}).to_dict()

        assert signals["ad_storage"] == "granted"
        assert signals["ad_user_data"] == "granted"
        assert signals["ad_personalization"] == "granted"
        assert signals["analytics_storage"] == "denied"

    def test_functional_controls_two_signals(self):
        signals = self.translator.translate({"functional": True}).to_dict()

        assert signals["functionality_storage"] == "granted"
        assert signals["personalization_storage"] == "granted"
        assert signals["analytics_storage"] == "denied"

    def test_each_signal_depends_on_one_category(self):
        base = self.translator.translate({}).to_dict()
        for category, keys in [
            ("analytics", {"analytics_storage"}),
            ("functional", {"functionality_storage", "personalization_storage"}),
            ("marketing", {"ad_storage", "ad_user_data", "ad_personalization"}),
        ]:
            toggled = self.translator.translate({category: True}).to_dict()
            changed = {key for key in base if base[key] != toggled[key]}
            assert changed == keys

    def test_security_always_granted(self):
        signals = self.translator.translate({}).to_dict()

        assert signals["security_storage"] == "granted"

    def test_accepts_records_and_string_flags(self):
        record = ConsentRecord.build(
            {"analytics": "true"}, "1.0.0", datetime(2024, 1, 1, tzinfo=timezone.utc)
        )

        from_record = self.translator.translate(record)
        from_enum_keys = self.translator.translate({Category.ANALYTICS: "1"})

        assert from_record == from_enum_keys
        assert from_record.analytics_storage.value == "granted"


class TestConsentCommands:
    """Test default and update command construction."""

    def test_default_command_local(self):
        command = SignalTranslator().default_command()

        assert command[:2] == ["consent", "default"]
        payload = command[2]
        assert payload["region"] == ["NO"]
        assert payload["wait_for_update"] == 500
        assert payload["security_storage"] == "granted"
        assert payload["ad_storage"] == "denied"
        assert payload["analytics_storage"] == "denied"

    def test_default_command_regional(self):
        translator = SignalTranslator(SignalConfig(region_mode=RegionMode.REGIONAL))

        payload = translator.default_command()[2]

        assert payload["region"] == EEA_REGIONS
        assert "DE" in payload["region"]
        assert "GB" in payload["region"]

    def test_default_command_global_has_no_region(self):
        translator = SignalTranslator(SignalConfig(region_mode=RegionMode.GLOBAL))

        assert "region" not in translator.default_command()[2]

    def test_skip_restrictive_defaults(self):
        assert SignalTranslator().default_command(skip_restrictive_defaults=True) is None

    def test_update_command_uses_same_scope(self):
        translator = SignalTranslator(SignalConfig(local_regions=["NO", "SE"]))

        command = translator.update_command({"analytics": True})

        assert command[:2] == ["consent", "update"]
        assert command[2]["region"] == ["NO", "SE"]
        assert command[2]["analytics_storage"] == "granted"
        assert "wait_for_update" not in command[2]

    def test_set_commands(self):
        assert SignalTranslator().set_commands() == []

        translator = SignalTranslator(SignalConfig(url_passthrough=True, ads_data_redaction=True))

        assert translator.set_commands() == [
            ["set", "url_passthrough", True],
            ["set", "ads_data_redaction", True],
        ]


class TestDataLayer:
    """Test the in-memory command sink."""

    def test_has_default(self):
        data_layer = DataLayer()
        assert not data_layer.has_default()

        data_layer.push(["consent", "default", {}])

        assert data_layer.has_default()

    def test_current_state_applies_updates_in_order(self):
        translator = SignalTranslator()
        data_layer = DataLayer()
        data_layer.push(translator.default_command())
        data_layer.push(["event", "page_view"])
        data_layer.push(translator.update_command({"marketing": True}))

        state = data_layer.current_state()

        assert state["ad_storage"] == "granted"
        assert state["analytics_storage"] == "denied"
        assert "region" not in state
        assert len(data_layer.consent_commands("update")) == 1
