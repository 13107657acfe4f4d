"""Tests for time formatting helpers."""

from __future__ import annotations

from mediaremote_adapter.utils.time_format import format_elapsed_pair, format_seconds


def test_format_seconds_under_hour() -> None:
    assert format_seconds(0) == "00:00"
    assert format_seconds(59.9) == "00:59"
    assert format_seconds(61) == "01:01"


def test_format_seconds_at_hour_and_beyond() -> None:
    assert format_seconds(3600) == "1:00:00"
    assert format_seconds(36_000) == "10:00:00"


def test_format_seconds_unknown_and_invalid() -> None:
    assert format_seconds(None) == "--:--"
    assert format_seconds(-5) == "00:00"
    assert format_seconds(float("nan")) == "00:00"


def test_elapsed_pair_hour_mode() -> None:
    assert format_elapsed_pair(60, 3600) == ("0:01:00", "1:00:00")


def test_elapsed_pair_unknown_values() -> None:
    assert format_elapsed_pair(60, None) == ("01:00", "--:--")
    assert format_elapsed_pair(None, 120) == ("--:--", "02:00")
    assert format_elapsed_pair(3600, 0) == ("1:00:00", "--:--:--")
