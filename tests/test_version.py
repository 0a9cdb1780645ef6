"""Tests for deploykit.core.version."""

from __future__ import annotations

import pytest

from deploykit.core import version as versions
from deploykit.core.errors import MalformedVersion
from deploykit.core.version import Version


# ---------------------------------------------------------------------------
# parse
# ---------------------------------------------------------------------------

class TestParse:
    def test_four_components(self):
        assert versions.parse("10.0.19041.1").components == (10, 0, 19041, 1)

    def test_single_component(self):
        assert versions.parse("7").components == (7,)

    def test_surrounding_whitespace_ignored(self):
        assert versions.parse(" 1.2 ").components == (1, 2)

    def test_version_passes_through(self):
        v = Version((1, 2))
        assert versions.parse(v) is v

    def test_str_round_trip(self):
        assert str(versions.parse("3.0.1")) == "3.0.1"

    @pytest.mark.parametrize("text", ["", "   ", "abc", "1..2", "1.2a", "1.-2", "v1.0", "1.²"])
    def test_malformed_raises(self, text):
        with pytest.raises(MalformedVersion):
            versions.parse(text)

    def test_non_string_raises(self):
        with pytest.raises(MalformedVersion):
            versions.parse(None)

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            versions.parse("x.y")

    def test_try_parse_returns_none(self):
        assert versions.try_parse("garbage") is None
        assert versions.try_parse(None) is None
        assert versions.try_parse("1.0") == Version((1, 0))


# ---------------------------------------------------------------------------
# compare
# ---------------------------------------------------------------------------

class TestCompare:
    def test_missing_components_are_zero(self):
        assert versions.compare("1.2", "1.2.0") == 0
        assert versions.compare("1.2.0.0", "1.2") == 0

    def test_numeric_not_lexical(self):
        assert versions.compare("1.10", "1.9") == 1

    def test_less_than(self):
        assert versions.compare("1.0.0", "2.1.0") == -1

    @pytest.mark.parametrize("a,b", [("1.0", "1.1"), ("2", "1.9.9"), ("3.0", "3"), ("0.1", "0.0.9")])
    def test_antisymmetric(self, a, b):
        assert versions.compare(a, b) == -versions.compare(b, a)

    def test_malformed_raises(self):
        with pytest.raises(MalformedVersion):
            versions.compare("1.0", "one")

    def test_equal_versions_hash_alike(self):
        assert versions.parse("1.2") == versions.parse("1.2.0")
        assert hash(versions.parse("1.2")) == hash(versions.parse("1.2.0"))

    def test_ordering_operators(self):
        assert Version((1, 9)) < Version((1, 10))
        assert Version((2,)) >= Version((2, 0))
        assert max([Version((1,)), Version((1, 0, 1))]) == Version((1, 0, 1))


# ---------------------------------------------------------------------------
# is_older
# ---------------------------------------------------------------------------

class TestIsOlder:
    def test_older(self):
        assert versions.is_older("1.0.0", "2.1.0") is True

    def test_equal_is_not_older(self):
        assert versions.is_older("2.1", "2.1.0") is False

    def test_newer_is_not_older(self):
        assert versions.is_older("3.0", "2.1.0") is False

    def test_malformed_current_is_older(self):
        assert versions.is_older("not-a-version", "1.0") is True

    def test_missing_current_is_older(self):
        assert versions.is_older(None, "1.0") is True

    def test_malformed_required_raises(self):
        with pytest.raises(MalformedVersion):
            versions.is_older("1.0", "latest")
