"""Tests for time helpers."""

import datetime as dt

import pytest

from time_utils import format_duration, now_ts, to_ts


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (0, "0s"),
        (5, "5s"),
        (61, "1m 1s"),
        (3600, "1h 0m"),
        (3661, "1h 1m"),
        (-30, "0s"),
    ],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_to_ts_aware_and_naive():
    aware = dt.datetime(2024, 1, 1, tzinfo=dt.timezone(dt.timedelta(hours=9)))
    naive = dt.datetime(2024, 1, 1)
    assert to_ts(aware) == 1704034800
    assert to_ts(naive) == 1704067200


def test_now_ts_is_int():
    assert isinstance(now_ts(), int)
