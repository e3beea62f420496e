"""Tests for time-of-day constraints."""

from datetime import datetime

import pytest

from clockspine.at import At, parse_constraints
from clockspine.errors import ConfigurationError

# 2024-01-01 is a Monday
MONDAY = datetime(2024, 1, 1)


class TestAtParse:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("14:30", At(minute=30, hour=14)),
            ("9:05", At(minute=5, hour=9)),
            ("00:00", At(minute=0, hour=0)),
            ("**:15", At(minute=15)),
            ("*:15", At(minute=15)),
            ("03:**", At(hour=3)),
            ("Mon 09:00", At(minute=0, hour=9, weekday=0)),
            ("friday 17:45", At(minute=45, hour=17, weekday=4)),
            ("SUN 23:59", At(minute=59, hour=23, weekday=6)),
            ("  14:30  ", At(minute=30, hour=14)),
        ],
    )
    def test_valid_forms(self, text, expected):
        assert At.parse(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["25:00", "12:60", "noon", "12:5", "1430", "Funday 10:00", "Mon", "", "Mon 9"],
    )
    def test_invalid_forms(self, text):
        with pytest.raises(ConfigurationError):
            At.parse(text)

    def test_non_string_rejected(self):
        with pytest.raises(ConfigurationError, match="must be a string"):
            At.parse(1430)

    def test_out_of_range_direct_construction(self):
        with pytest.raises(ValueError):
            At(minute=61)
        with pytest.raises(ValueError):
            At(weekday=7)


class TestAtMatches:
    def test_exact_time(self):
        at = At.parse("14:30")
        assert at.matches(MONDAY.replace(hour=14, minute=30))
        assert at.matches(MONDAY.replace(hour=14, minute=30, second=59))
        assert not at.matches(MONDAY.replace(hour=14, minute=31))

    def test_hour_wildcard(self):
        at = At.parse("**:15")
        assert at.matches(MONDAY.replace(hour=0, minute=15))
        assert at.matches(MONDAY.replace(hour=23, minute=15))
        assert not at.matches(MONDAY.replace(hour=23, minute=16))

    def test_weekday(self):
        at = At.parse("Mon 09:00")
        assert at.matches(MONDAY.replace(hour=9))
        assert not at.matches(MONDAY.replace(day=2, hour=9))


class TestAtStr:
    @pytest.mark.parametrize(
        "text,rendered",
        [("14:30", "14:30"), ("9:05", "09:05"), ("*:15", "**:15"), ("monday 09:00", "Mon 09:00")],
    )
    def test_canonical_rendering(self, text, rendered):
        assert str(At.parse(text)) == rendered


class TestParseConstraints:
    def test_none_is_unconstrained(self):
        assert parse_constraints(None) == ()

    def test_single_string(self):
        assert parse_constraints("14:30") == (At(minute=30, hour=14),)

    def test_list_keeps_order_and_drops_duplicates(self):
        parsed = parse_constraints(["17:00", "09:00", "17:00"])
        assert [str(at) for at in parsed] == ["17:00", "09:00"]

    def test_accepts_parsed_values(self):
        at = At(minute=0, hour=6)
        assert parse_constraints([at, "06:00"]) == (at,)

    def test_empty_list_rejected(self):
        with pytest.raises(ConfigurationError, match="empty"):
            parse_constraints([])

    def test_non_iterable_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_constraints(42)

    def test_one_bad_entry_fails_all(self):
        with pytest.raises(ConfigurationError):
            parse_constraints(["09:00", "9am"])
