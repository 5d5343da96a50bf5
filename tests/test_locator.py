"""Tests for locator derivation and parsing."""

import pytest

from linkvault.errors import InvalidLocator
from linkvault.locator import LocatorParts, make_locator, parse_locator


class TestMakeLocator:
    """Tests for make_locator."""

    def test_file_url(self):
        assert make_locator("https://mega.nz/file/abc123#def456", "SESS") == "SESS~abc123#def456"

    def test_legacy_url(self):
        """Legacy '#!ID!KEY' links become 'ID#KEY'."""
        assert make_locator("https://mega.nz/#!abc123!def456", "SESS") == "SESS~abc123#def456"

    def test_legacy_url_only_first_bang_replaced(self):
        assert make_locator("https://mega.nz/#!abc!def!ghi", "SESS") == "SESS~abc#def!ghi"

    def test_unrecognized_url_kept_whole(self):
        url = "https://store.example/objects/42"
        assert make_locator(url, "TAG") == f"TAG~{url}"


class TestParseLocator:
    """Tests for parse_locator."""

    def test_parse_file_locator(self):
        parts = parse_locator("SESS~abc123#def456")

        assert parts == LocatorParts(tag="SESS", file_id="abc123", key="def456")
        assert parts.to_url("https://mega.nz") == "https://mega.nz/file/abc123#def456"

    def test_parse_without_key(self):
        parts = parse_locator("SESS~abc123")

        assert parts.key == ""
        assert parts.to_url("https://mega.nz/") == "https://mega.nz/file/abc123"

    def test_parse_raw_locator(self):
        parts = parse_locator("TAG~https://store.example/objects/42")

        assert parts.raw == "https://store.example/objects/42"
        assert parts.to_url("https://mega.nz") == "https://store.example/objects/42"

    def test_str_reproduces_locator(self):
        for value in ("SESS~abc123#def456", "SESS~abc123", "TAG~https://x.example/1"):
            assert str(parse_locator(value)) == value

    def test_make_then_parse_restores_url(self):
        url = "https://mega.nz/file/abc123#def456"

        assert parse_locator(make_locator(url, "SESS")).to_url("https://mega.nz") == url

    def test_expected_tag(self):
        assert parse_locator("SESS~abc", tag="SESS").file_id == "abc"
        with pytest.raises(InvalidLocator, match="Unknown locator tag"):
            parse_locator("OTHER~abc", tag="SESS")

    @pytest.mark.parametrize("value", ["", "abc123", "~abc", "SESS~", "SESS~#key"])
    def test_malformed(self, value):
        with pytest.raises(InvalidLocator):
            parse_locator(value)
