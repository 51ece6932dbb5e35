"""
Tests for helper functions and settings-derived values.
"""
from datetime import datetime, timedelta, timezone

import pytest

from config.settings import freshness_window_for_interval
from plugin_browser.errors import InvalidRepositoryError
from plugin_browser.utils.helpers import (
    MAX_QUERY_LENGTH,
    get_header,
    github_raw_url,
    is_compatible,
    is_valid_repo_format,
    latest_release_url,
    parse_repo,
    parse_timestamp,
    safe_int,
    sanitize_search_query,
    utc_midnight,
)


class TestRepositoryReferences:

    def test_parse_repo_splits_owner_and_name(self):
        assert parse_repo("alice/plugin-one") == ("alice", "plugin-one")

    @pytest.mark.parametrize("repo", ["", None, "alice", "alice/", "/plugin", "a/b/c", 42])
    def test_parse_repo_rejects_malformed(self, repo):
        """Malformed references fail fast with a ValueError subclass"""
        with pytest.raises(InvalidRepositoryError):
            parse_repo(repo)
        with pytest.raises(ValueError):
            parse_repo(repo)
        assert is_valid_repo_format(repo) is False

    def test_raw_url_strips_traversal(self):
        url = github_raw_url("https://raw.test/", "alice/plugin-one", "main", "/../../manifest.json")
        assert url == "https://raw.test/alice/plugin-one/main/manifest.json"

    def test_latest_release_url(self):
        url = latest_release_url("https://api.test", "alice/plugin-one")
        assert url == "https://api.test/repos/alice/plugin-one/releases/latest"


class TestTimestamps:

    def test_iso_with_z_suffix(self):
        parsed = parse_timestamp("2024-03-01T10:00:00Z")
        assert parsed == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self):
        parsed = parse_timestamp("2024-03-01T01:00:00+02:00")
        assert parsed == datetime(2024, 2, 29, 23, tzinfo=timezone.utc)

    def test_naive_value_is_taken_as_utc(self):
        assert parse_timestamp("2024-03-01T10:00:00").tzinfo is not None

    def test_epoch_milliseconds(self):
        ms = int(datetime(2024, 5, 1, tzinfo=timezone.utc).timestamp() * 1000)
        assert parse_timestamp(ms) == datetime(2024, 5, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "not-a-date", True, {}, []])
    def test_unparsable_values(self, value):
        assert parse_timestamp(value) is None

    def test_utc_midnight(self):
        value = datetime(2024, 3, 1, 23, 30, tzinfo=timezone(timedelta(hours=-2)))
        assert utc_midnight(value) == datetime(2024, 3, 2, tzinfo=timezone.utc)


class TestSearchAndVersions:

    def test_sanitize_removes_control_characters(self):
        assert sanitize_search_query("  foo\x00\x07   bar\n ") == "foo bar"

    def test_sanitize_caps_length(self):
        assert len(sanitize_search_query("x" * (MAX_QUERY_LENGTH + 50))) == MAX_QUERY_LENGTH

    def test_sanitize_non_string(self):
        assert sanitize_search_query(None) == ""

    @pytest.mark.parametrize("minimum,current,expected", [
        ("1.0.0", "1.0.0", True),
        ("1.0.0", "1.2", True),
        ("1.4.16", "1.4.2", False),
        ("0.15", "1.0", True),
        ("2.0", "1.9.9", False),
    ])
    def test_is_compatible(self, minimum, current, expected):
        assert is_compatible(minimum, current) is expected


class TestSmallHelpers:

    def test_get_header_is_case_insensitive(self):
        assert get_header({"ETag": '"abc"'}, "etag") == '"abc"'
        assert get_header(None, "etag") is None

    def test_safe_int_ignores_bools_and_garbage(self):
        assert safe_int(True) == 0
        assert safe_int("12") == 12
        assert safe_int("twelve", default=-1) == -1

    def test_freshness_window_adds_buffer(self):
        assert freshness_window_for_interval(1800, 300) == 2100
        assert freshness_window_for_interval(-5, 300) == 300
