import pytest

from messages_relay.middleware import (
    ChunkContext,
    GeminiThoughtSignatureMiddleware,
    Middleware,
    MiddlewarePipeline,
    RequestContext,
)
from messages_relay.middleware.thought_signature import REASONING_DETAILS_KEY, THOUGHT_SIGNATURES_KEY
from messages_relay.protocol.anthropic import parse_messages_request
from messages_relay.protocol.openai import to_openai_payload


class RecordingMiddleware(Middleware):
    def __init__(self, name, calls):
        self.name = name
        self.calls = calls

    async def before_request(self, ctx):
        self.calls.append(("before", self.name))

    async def after_stream_chunk(self, ctx, metadata):
        self.calls.append(("chunk", self.name))


class FailingChunkMiddleware(Middleware):
    name = "failing"

    async def after_stream_chunk(self, ctx, metadata):
        raise RuntimeError("broken hook")


class FailingRequestMiddleware(Middleware):
    name = "failing_request"

    async def before_request(self, ctx):
        raise ValueError("rejected")


def _ctx(payload=None, messages=None):
    return RequestContext(model_id="m", messages=messages or [], payload=payload or {})


@pytest.mark.asyncio
async def test_hooks_run_in_registration_order():
    calls = []
    pipeline = MiddlewarePipeline([RecordingMiddleware("a", calls)])
    pipeline.register(RecordingMiddleware("b", calls))

    await pipeline.before_request(_ctx())
    await pipeline.after_stream_chunk(ChunkContext(model_id="m", chunk={}), {})

    assert calls == [("before", "a"), ("before", "b"), ("chunk", "a"), ("chunk", "b")]
    assert [m.name for m in pipeline.middlewares] == ["a", "b"]


@pytest.mark.asyncio
async def test_chunk_hook_failure_does_not_stop_pipeline():
    calls = []
    pipeline = MiddlewarePipeline([FailingChunkMiddleware(), RecordingMiddleware("after", calls)])

    await pipeline.after_stream_chunk(ChunkContext(model_id="m", chunk={}), {})

    assert calls == [("chunk", "after")]


@pytest.mark.asyncio
async def test_request_hook_failure_propagates():
    pipeline = MiddlewarePipeline([FailingRequestMiddleware()])

    with pytest.raises(ValueError, match="rejected"):
        await pipeline.before_request(_ctx())


@pytest.mark.asyncio
async def test_signature_middleware_collects_signatures_and_reasoning():
    middleware = GeminiThoughtSignatureMiddleware()
    metadata = {}
    delta = {
        "reasoning_details": [{"type": "reasoning.text", "text": "hmm"}],
        "tool_calls": [
            {"index": 0, "id": "call_1", "extra_content": {"google": {"thought_signature": "sig-1"}}},
            {"index": 1, "extra_content": {"google": {"thought_signature": "sig-2"}}},
            {"index": 2, "id": "call_3"},
        ],
    }

    await middleware.after_stream_chunk(ChunkContext(model_id="m", chunk={}, delta=delta), metadata)

    assert metadata[REASONING_DETAILS_KEY] == [{"type": "reasoning.text", "text": "hmm"}]
    assert metadata[THOUGHT_SIGNATURES_KEY] == {"call_1": "sig-1", 1: "sig-2"}
    assert middleware.lookup("call_1") == "sig-1"
    assert middleware.lookup("call_3") is None


@pytest.mark.asyncio
async def test_signature_middleware_reattaches_remembered_signature():
    middleware = GeminiThoughtSignatureMiddleware()
    middleware.remember("call_1", "sig-1")
    request = parse_messages_request(
        {
            "model": "google/gemini-2.5-pro",
            "messages": [
                {"role": "user", "content": "weather?"},
                {"role": "assistant", "content": [{"type": "tool_use", "id": "call_1", "name": "w", "input": {}}]},
                {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "call_1", "content": "sunny"}]},
            ],
        }
    )
    payload = to_openai_payload(request, "google/gemini-2.5-pro")

    await middleware.before_request(_ctx(payload=payload, messages=request.messages))

    tool_call = payload["messages"][1]["tool_calls"][0]
    assert tool_call["extra_content"] == {"google": {"thought_signature": "sig-1"}}


def test_signature_cache_is_bounded():
    middleware = GeminiThoughtSignatureMiddleware(max_cached=2)
    middleware.remember("a", "1")
    middleware.remember("b", "2")
    middleware.remember("c", "3")

    assert middleware.lookup("a") is None
    assert middleware.lookup("c") == "3"
