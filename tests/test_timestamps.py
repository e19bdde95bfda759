from __future__ import annotations

import pytest

from src.pipeline.timestamps import format_timestamp, parse_timestamp


@pytest.mark.parametrize(
    "token, expected",
    [
        ("01:30", 90),
        ("01:02:03", 3723),
        ("[00:05]", 5),
        (" [12:00] ", 720),
        ("00:00", 0),
        ("90:00", 5400),
    ],
)
def test_parse_timestamp_accepts_minutes_and_hours(token: str, expected: int) -> None:
    assert parse_timestamp(token) == expected


@pytest.mark.parametrize("token", ["", None, "garbage", "1:2:3:4", "05", "aa:bb", "-1:30", "1.5:00", "١:٢٣x"])
def test_parse_timestamp_degrades_to_zero(token) -> None:
    assert parse_timestamp(token) == 0


def test_parse_timestamp_does_not_bound_duration() -> None:
    assert parse_timestamp("99:99") == 99 * 60 + 99


def test_format_timestamp_round_trips_common_values() -> None:
    assert format_timestamp(0) == "00:00"
    assert format_timestamp(90) == "01:30"
    assert format_timestamp(3723) == "01:02:03"
    assert format_timestamp(-5) == "00:00"
    assert parse_timestamp(format_timestamp(3723)) == 3723
