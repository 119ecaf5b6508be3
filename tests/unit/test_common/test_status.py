import json
import os
from unittest.mock import AsyncMock, patch

import pytest

from messages_relay.status import TokenStatusWriter


def _read(writer):
    with open(writer.path, encoding="utf-8") as f:
        return json.load(f)


def test_path_is_per_port(tmp_path):
    writer = TokenStatusWriter(port=9001, directory=str(tmp_path))

    assert writer.path == os.path.join(str(tmp_path), "relay-tokens-9001.json")


@pytest.mark.asyncio
async def test_record_writes_status(tmp_path):
    writer = TokenStatusWriter(port=9001, directory=str(tmp_path))

    await writer.record(input_tokens=600, output_tokens=400, context_window=4000, reported_cost=0.01)

    status = _read(writer)
    assert status["total_tokens"] == 1000
    assert status["context_left_percent"] == 75
    assert status["total_cost"] == 0.01
    assert isinstance(status["updated_at"], int)


@pytest.mark.asyncio
async def test_record_writes_off_the_event_loop(tmp_path):
    writer = TokenStatusWriter(port=9001, directory=str(tmp_path))

    with patch("messages_relay.status.asyncio.to_thread", new=AsyncMock()) as to_thread:
        status = await writer.record(input_tokens=1, output_tokens=1, context_window=100)

    to_thread.assert_awaited_once_with(writer._write, status)
    assert not os.path.exists(writer.path)


@pytest.mark.asyncio
async def test_session_cost_accumulates(tmp_path):
    writer = TokenStatusWriter(port=9001, directory=str(tmp_path))

    await writer.record(input_tokens=1, output_tokens=1, context_window=100, reported_cost=0.25)
    await writer.record(input_tokens=1, output_tokens=1, context_window=100, reported_cost=0.5)

    assert _read(writer)["total_cost"] == 0.75


@pytest.mark.asyncio
async def test_context_left_is_clamped(tmp_path):
    writer = TokenStatusWriter(port=9001, directory=str(tmp_path))

    assert (await writer.record(input_tokens=500, output_tokens=0, context_window=100))["context_left_percent"] == 0
    assert (await writer.record(input_tokens=5, output_tokens=0, context_window=0))["context_left_percent"] == 100


@pytest.mark.asyncio
async def test_write_failure_is_not_raised(tmp_path):
    writer = TokenStatusWriter(port=9001, directory=str(tmp_path / "missing"))

    status = await writer.record(input_tokens=1, output_tokens=1, context_window=100)

    assert status["total_tokens"] == 2
    assert not os.path.exists(writer.path)


@pytest.mark.asyncio
async def test_safe_record_swallows_bad_numbers(tmp_path):
    writer = TokenStatusWriter(port=9001, directory=str(tmp_path))

    with patch("messages_relay.status.logger") as log:
        status = await writer.safe_record(input_tokens="a", output_tokens=1, context_window=100)

    assert status is None
    assert writer.session_total_cost == 0.0
    assert not os.path.exists(writer.path)
    log.warning.assert_called_once()
