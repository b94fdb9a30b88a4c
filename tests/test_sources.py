from __future__ import annotations

import asyncio

import pytest

from pathScope.collector.sources import _doh_answers, bounded, is_url, normalize_record_type, parse_host_port
from pathScope.errors import ProbeFailure, ProbeTimeout


def test_parse_host_port() -> None:
    assert parse_host_port("edge.example:8443", 443) == ("edge.example", 8443)
    assert parse_host_port("edge.example", 443) == ("edge.example", 443)
    assert parse_host_port("[2606:4700::1111]:853", 443) == ("2606:4700::1111", 853)
    assert parse_host_port("[::1]", 443) == ("::1", 443)
    assert parse_host_port("2606:4700::1111", 443) == ("2606:4700::1111", 443)


def test_is_url() -> None:
    assert is_url("https://example.com")
    assert is_url("http://example.com/path")
    assert not is_url("example.com:443")
    assert not is_url("1.1.1.1")


def test_normalize_record_type() -> None:
    assert normalize_record_type(" txt ") == "TXT"
    assert normalize_record_type("axfr") == "AXFR"
    with pytest.raises(ValueError):
        normalize_record_type("NOPE")


def test_doh_answers_map_numeric_types() -> None:
    rows = [
        {"name": "example.com.", "type": 1, "TTL": 60, "data": "93.184.216.34"},
        {"name": "example.com.", "type": 16, "TTL": 300, "data": '"v=spf1 -all"'},
    ]

    answers = _doh_answers(rows)

    assert [(a.name, a.record_type, a.ttl) for a in answers] == [
        ("example.com", "A", 60),
        ("example.com", "TXT", 300),
    ]
    assert _doh_answers(None) == []


def test_bounded_normalises_errors() -> None:
    async def slow():
        await asyncio.sleep(1)

    async def broken():
        raise ConnectionResetError("reset by peer")

    with pytest.raises(ProbeTimeout):
        asyncio.run(bounded(slow(), 0.01, "latency"))
    with pytest.raises(ProbeFailure) as info:
        asyncio.run(bounded(broken(), 1.0, "latency"))
    assert info.value.operation == "latency"
