"""Unit tests for the Open Cookie Database layer."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from consentry.consent.errors import ReferenceDatabaseError
from consentry.consent.models import Category, MatchKind
from consentry.consent.reference_db import (
    download_reference_csv,
    load_reference_snapshot,
    map_reference_category,
    parse_reference_csv
)


REFERENCE_URL = "https://example.com/open-cookie-database.csv"


class TestParseReferenceCsv:
    """Test CSV parsing into cookie rules."""

    def test_parses_rows(self, sample_reference_csv):
        rules = parse_reference_csv(sample_reference_csv)
        by_name = {rule.name: rule for rule in rules}

        assert len(rules) == 5
        assert by_name["_ga"].category == Category.ANALYTICS
        assert by_name["_ga"].match == MatchKind.EXACT
        assert by_name["_ga"].description == "ID used, to identify users"
        assert by_name["_ga"].source == "Google Analytics"

    def test_wildcard_and_prefix_rows(self, sample_reference_csv):
        by_name = {rule.name: rule for rule in parse_reference_csv(sample_reference_csv)}

        assert by_name["_hjSession_*"].match == MatchKind.WILDCARD
        assert by_name["__stripe_mid"].match == MatchKind.PREFIX
        assert by_name["custom_pref"].category == Category.FUNCTIONAL

    def test_unmapped_categories_are_dropped(self, sample_reference_csv):
        names = [rule.name for rule in parse_reference_csv(sample_reference_csv)]

        assert "foo_sec" not in names

    def test_byte_order_mark_is_ignored(self, sample_reference_csv):
        rules = parse_reference_csv("\ufeff" + sample_reference_csv)

        assert len(rules) == 5

    def test_missing_columns_raise(self):
        with pytest.raises(ReferenceDatabaseError):
            parse_reference_csv("ID,Platform\n1,Google\n")

    def test_empty_text(self):
        assert parse_reference_csv("") == []


@pytest.mark.parametrize("label,expected", [
    ("Necessary", Category.NECESSARY),
    ("Statistics", Category.ANALYTICS),
    ("Advertisement", Category.MARKETING),
    ("preferences", Category.FUNCTIONAL),
    ("Security", None),
    ("", None),
])
def test_map_reference_category(label, expected):
    assert map_reference_category(label) == expected


class TestReferenceSnapshot:
    """Test loading and looking up snapshots."""

    def test_missing_file_is_unavailable(self, tmp_path):
        snapshot = load_reference_snapshot(tmp_path / "missing.csv")

        assert snapshot.available is False
        assert snapshot.lookup("_ga") is None

    def test_load_and_lookup(self, tmp_path, sample_reference_csv):
        path = tmp_path / "ocd.csv"
        path.write_text(sample_reference_csv, encoding="utf-8")

        snapshot = load_reference_snapshot(path)

        assert snapshot.available
        assert len(snapshot) == 5
        assert snapshot.lookup("_fbp").category == Category.MARKETING
        assert snapshot.lookup("_hjSession_42").category == Category.ANALYTICS
        assert snapshot.lookup("__stripe_mid_abc").category == Category.FUNCTIONAL
        assert snapshot.lookup("nothing") is None

    def test_malformed_file_is_unavailable(self, tmp_path):
        path = tmp_path / "ocd.csv"
        path.write_text("just,some,columns\n1,2,3\n", encoding="utf-8")

        snapshot = load_reference_snapshot(path)

        assert snapshot.available is False


class TestDownloadReferenceCsv:
    """Test downloading the reference CSV with httpx."""

    def test_download_writes_cache(self, tmp_path, sample_reference_csv):
        target = tmp_path / "data" / "ocd.csv"
        response = httpx.Response(200, text=sample_reference_csv, request=httpx.Request("GET", REFERENCE_URL))

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = response
            count = asyncio.run(download_reference_csv(REFERENCE_URL, target))

        assert count == 5
        assert target.read_text(encoding="utf-8") == sample_reference_csv
        mock_get.assert_called_once()

    def test_http_error_raises_and_keeps_cache(self, tmp_path):
        target = tmp_path / "ocd.csv"
        target.write_text("previous", encoding="utf-8")
        response = httpx.Response(404, text="missing", request=httpx.Request("GET", REFERENCE_URL))

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = response
            with pytest.raises(ReferenceDatabaseError) as exc_info:
                asyncio.run(download_reference_csv(REFERENCE_URL, target))

        assert "404" in exc_info.value.message
        assert target.read_text(encoding="utf-8") == "previous"

    def test_request_error_raises(self, tmp_path):
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = httpx.ConnectError("unreachable")
            with pytest.raises(ReferenceDatabaseError):
                asyncio.run(download_reference_csv(REFERENCE_URL, tmp_path / "ocd.csv"))

        assert not (tmp_path / "ocd.csv").exists()

    def test_empty_download_raises(self, tmp_path):
        response = httpx.Response(200, text="  ", request=httpx.Request("GET", REFERENCE_URL))

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = response
            with pytest.raises(ReferenceDatabaseError):
                asyncio.run(download_reference_csv(REFERENCE_URL, tmp_path / "ocd.csv"))

    def test_unwritable_cache_raises(self, tmp_path, sample_reference_csv):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        response = httpx.Response(200, text=sample_reference_csv, request=httpx.Request("GET", REFERENCE_URL))

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock) as mock_get:
            mock_get.return_value = response
            with pytest.raises(ReferenceDatabaseError) as exc_info:
                asyncio.run(download_reference_csv(REFERENCE_URL, blocker / "ocd.csv"))

        assert "Could not write reference cache" in exc_info.value.message
        assert exc_info.value.details == {"source": REFERENCE_URL}
