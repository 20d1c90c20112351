from __future__ import annotations

import pytest

from qrftp.ranges import compress_ranges, format_missing, format_rate, format_time, normalize_chunks, parse_chunk_input


def test_format_missing():
    assert format_missing([1, 2, 3, 5, 7, 8]) == "1-3, 5, 7-8"
    assert format_missing([]) == "None"
    assert format_missing([4]) == "4"
    assert format_missing([8, 7, 1]) == "1, 7-8"


def test_compress_ranges():
    assert compress_ranges([2, 4]) == [(2, 2), (4, 4)]
    assert compress_ranges([3, 1, 2, 2]) == [(1, 3)]


def test_parse_chunk_input():
    assert parse_chunk_input("1,3,5-8,10", 10) == [1, 3, 5, 6, 7, 8, 10]
    assert parse_chunk_input(" 3 , 3, 1 ,", 5) == [1, 3]
    assert parse_chunk_input("   ", 5) == []


@pytest.mark.parametrize("text", ["0", "6", "1-2-3", "4-2", "a", "1-x", "-3", "2-9"])
def test_parse_chunk_input_rejects(text):
    with pytest.raises(ValueError):
        parse_chunk_input(text, 5)


def test_normalize_chunks():
    assert normalize_chunks([3, 3, 1], 5) == [1, 3]
    with pytest.raises(ValueError):
        normalize_chunks([6], 5)


def test_format_time():
    assert format_time(0) == "~00:00"
    assert format_time(83) == "~01:23"
    assert format_time(4542) == "~1:15:42"
    assert format_time(-1) == ""
    assert format_time(float("inf")) == ""


def test_format_rate():
    assert format_rate(None) == "? KB/s"
    assert format_rate(512) == "512 B/s"
    assert format_rate(2048) == "2.0 KB/s"
    assert format_rate(3 * 1024 * 1024) == "3.0 MB/s"
