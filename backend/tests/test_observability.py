from __future__ import annotations

import asyncio
import logging

import pytest

from receipt_capture.core import observability
from receipt_capture.core.config import settings


def test_log_event_without_loop_only_logs(monkeypatch, caplog):
    monkeypatch.setattr(settings, "TELEMETRY_URL", "http://telemetry.invalid/log", raising=False)
    with caplog.at_level(logging.INFO, logger="receipt_capture.core.observability"):
        observability.log_event("[UPLOAD] Starting upload")
    assert "[UPLOAD] Starting upload" in caplog.text
    assert not observability._pending


@pytest.mark.asyncio
async def test_log_event_failure_is_discarded(monkeypatch):
    calls = []

    async def _failing_post(url, message):
        calls.append((url, message))
        raise ConnectionError("sink down")

    monkeypatch.setattr(settings, "TELEMETRY_URL", "http://telemetry.test/log", raising=False)
    monkeypatch.setattr(observability, "_post_telemetry", _failing_post)

    observability.log_event("[UPLOAD] Response status: 200")
    assert len(observability._pending) == 1
    for _ in range(50):
        if not observability._pending:
            break
        await asyncio.sleep(0.01)

    assert calls == [("http://telemetry.test/log", "[UPLOAD] Response status: 200")]
    assert not observability._pending


@pytest.mark.asyncio
async def test_log_event_does_not_wait_for_sink(monkeypatch):
    gate = asyncio.Event()

    async def _slow_post(url, message):
        await gate.wait()

    monkeypatch.setattr(settings, "TELEMETRY_URL", "http://telemetry.test/log", raising=False)
    monkeypatch.setattr(observability, "_post_telemetry", _slow_post)

    observability.log_event("never blocks")
    assert len(observability._pending) == 1
    gate.set()
    for _ in range(50):
        if not observability._pending:
            break
        await asyncio.sleep(0.01)
    assert not observability._pending


def test_before_send_scrubs_auth_and_body():
    event = {"request": {"headers": {"Authorization": "Bearer x", "Accept": "*/*"}, "data": "bytes"}}
    scrubbed = observability._before_send(event)
    assert scrubbed["request"]["headers"] == {"Accept": "*/*"}
    assert "data" not in scrubbed["request"]
