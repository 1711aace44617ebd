"""Tests for the Consentry command line interface."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import yaml
from typer.testing import CliRunner

from consentry.cli.main import ExitCode, app
from consentry.consent.errors import ReferenceDatabaseError


PROJECT_CONFIG = Path(__file__).parent.parent.parent / "config" / "consent.yaml"


class TestClassifyCommand:
    """Test cookie classification from the CLI."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_classify_known_cookies(self):
        result = self.runner.invoke(app, ["classify", "_ga_ABC123", "_fbp", "--config", str(PROJECT_CONFIG)])

        assert result.exit_code == ExitCode.SUCCESS
        assert "_ga_ABC123: analytics (Google Analytics) [builtin]" in result.stdout
        assert "_fbp: marketing (Meta) [builtin]" in result.stdout

    def test_classify_unknown_cookie_exits_nonzero(self):
        result = self.runner.invoke(app, ["classify", "_unrecognized_xyz", "--config", str(PROJECT_CONFIG)])

        assert result.exit_code == ExitCode.UNKNOWN_COOKIES
        assert "_unrecognized_xyz: unknown [default]" in result.stdout

    def test_classify_json(self):
        result = self.runner.invoke(app, ["classify", "_ga", "--json", "--config", str(PROJECT_CONFIG)])

        data = json.loads(result.stdout)
        assert data[0]["name"] == "_ga"
        assert data[0]["category"] == "analytics"
        assert data[0]["layer"] == "builtin"

    def test_classify_with_plugin(self):
        args = ["classify", "woocommerce_cart_hash", "--config", str(PROJECT_CONFIG)]

        without_plugin = self.runner.invoke(app, args)
        with_plugin = self.runner.invoke(app, args + ["--plugin", "woocommerce"])

        assert without_plugin.exit_code == ExitCode.UNKNOWN_COOKIES
        assert with_plugin.exit_code == ExitCode.SUCCESS
        assert "necessary" in with_plugin.stdout

    def test_classify_missing_config(self, tmp_path):
        result = self.runner.invoke(app, ["classify", "_ga", "--config", str(tmp_path / "missing.yaml")])

        assert result.exit_code == ExitCode.CONFIG_ERROR


class TestTranslateCommand:
    """Test Consent Mode command preview."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_translate_update(self):
        result = self.runner.invoke(app, ["translate", "--analytics", "--config", str(PROJECT_CONFIG)])

        assert result.exit_code == ExitCode.SUCCESS
        command = json.loads(result.stdout)
        assert command[:2] == ["consent", "update"]
        assert command[2]["analytics_storage"] == "granted"
        assert command[2]["ad_storage"] == "denied"
        assert command[2]["region"] == ["NO"]

    def test_translate_defaults_globally(self):
        result = self.runner.invoke(
            app, ["translate", "--defaults", "--region-mode", "global", "--config", str(PROJECT_CONFIG)]
        )

        command = json.loads(result.stdout)
        assert command[:2] == ["consent", "default"]
        assert "region" not in command[2]
        assert command[2]["wait_for_update"] == 500


class TestConfigCommands:
    """Test configuration inspection commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_show(self):
        result = self.runner.invoke(app, ["config", "show", "--config", str(PROJECT_CONFIG), "--env", "production"])

        assert result.exit_code == ExitCode.SUCCESS
        data = yaml.safe_load(result.stdout)
        assert data["storage"]["storage_key"] == "cookie_consent"
        assert data["signals"]["region_mode"] == "regional"
        assert "admin_token" not in data

    def test_validate_valid_file(self):
        result = self.runner.invoke(app, ["config", "validate", str(PROJECT_CONFIG)])

        assert result.exit_code == ExitCode.SUCCESS
        assert "is valid" in result.stdout

    def test_validate_invalid_file(self, tmp_path):
        path = tmp_path / "consent.yaml"
        path.write_text("enforcement:\n  sweep_interval_seconds: 0\n", encoding="utf-8")

        result = self.runner.invoke(app, ["config", "validate", str(path)])

        assert result.exit_code == ExitCode.CONFIG_ERROR


class TestRefdbCommands:
    """Test reference database maintenance."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_update(self, tmp_path):
        target = tmp_path / "ocd.csv"

        with patch("consentry.cli.main.download_reference_csv", new=AsyncMock(return_value=42)) as mock_download:
            result = self.runner.invoke(app, [
                "refdb", "update",
                "--url", "https://example.com/ocd.csv",
                "--cache-path", str(target),
                "--config", str(PROJECT_CONFIG)
            ])

        assert result.exit_code == ExitCode.SUCCESS
        assert "Saved 42 reference rules" in result.stdout
        mock_download.assert_awaited_once()
        assert mock_download.call_args.args[:2] == ("https://example.com/ocd.csv", target)

    def test_update_failure(self, tmp_path):
        failing = AsyncMock(side_effect=ReferenceDatabaseError("HTTP error 500 fetching reference database"))

        with patch("consentry.cli.main.download_reference_csv", new=failing):
            result = self.runner.invoke(app, [
                "refdb", "update",
                "--cache-path", str(tmp_path / "ocd.csv"),
                "--config", str(PROJECT_CONFIG)
            ])

        assert result.exit_code == ExitCode.RUNTIME_ERROR

    def test_update_unwritable_cache(self, tmp_path, sample_reference_csv):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        url = "https://example.com/ocd.csv"
        response = httpx.Response(200, text=sample_reference_csv, request=httpx.Request("GET", url))

        with patch("httpx.AsyncClient.get", new=AsyncMock(return_value=response)):
            result = self.runner.invoke(app, [
                "refdb", "update",
                "--url", url,
                "--cache-path", str(blocker / "ocd.csv"),
                "--config", str(PROJECT_CONFIG)
            ])

        assert result.exit_code == ExitCode.RUNTIME_ERROR
        assert not isinstance(result.exception, OSError)


def test_version():
    result = CliRunner().invoke(app, ["version"])

    assert result.exit_code == 0
    assert "Consentry CLI v" in result.stdout
