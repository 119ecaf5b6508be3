import json
from types import SimpleNamespace

import httpx
import pytest

from messages_relay.common.errors import BackendTransportError
from messages_relay.protocol.anthropic import parse_messages_request
from messages_relay.protocol.types import GenerationResult, TextDelta
from messages_relay.providers.gemini import GeminiNativeHandler, native_model_name
from messages_relay.status import TokenStatusWriter


class FakeChat:
    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.sent = None

    async def send_message_stream(self, message):
        self.sent = message

        async def stream():
            for chunk in self.chunks:
                yield chunk
            if self.error is not None:
                raise self.error

        return stream()


class FakeChats:
    def __init__(self, chat):
        self.chat = chat
        self.created = None

    def create(self, *, model, config, history):
        self.created = SimpleNamespace(model=model, config=config, history=history)
        return self.chat


def _client(chat):
    return SimpleNamespace(aio=SimpleNamespace(chats=FakeChats(chat)))


def _text(text):
    part = SimpleNamespace(text=text, function_call=None, thought=False)
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]), finish_reason=None)])


def _request(**body):
    body.setdefault("model", "google/gemini-2.5-pro")
    body.setdefault("messages", [{"role": "user", "content": "hi"}])
    return parse_messages_request(body)


def test_native_model_name_strips_namespace():
    assert native_model_name("google/gemini-2.5-pro") == "gemini-2.5-pro"
    assert native_model_name("gemini-2.5-flash") == "gemini-2.5-flash"


def test_api_key_is_required(make_settings):
    settings = make_settings()

    with pytest.raises(ValueError, match="API key cannot be empty"):
        GeminiNativeHandler(settings, TokenStatusWriter.from_settings(settings))


@pytest.mark.asyncio
async def test_streams_text_and_records_usage(settings):
    usage = SimpleNamespace(prompt_token_count=9, candidates_token_count=2)
    last = _text("llo")
    last.usage_metadata = usage
    chat = FakeChat([_text("He"), last])
    client = _client(chat)
    status = TokenStatusWriter.from_settings(settings)
    handler = GeminiNativeHandler(settings, status, client=client)

    items = [item async for item in handler.generate(_request(system="Be brief."), "google/gemini-2.5-pro")]

    assert items[:2] == [TextDelta("He"), TextDelta("llo")]
    assert items[-1].full_content == "Hello"
    assert client.aio.chats.created.model == "gemini-2.5-pro"
    assert client.aio.chats.created.history == []
    assert [p.text for p in chat.sent] == ["hi"]
    with open(status.path, encoding="utf-8") as f:
        written = json.load(f)
    assert written["input_tokens"] == 9
    assert written["output_tokens"] == 2


@pytest.mark.asyncio
async def test_function_calls_become_tool_use_blocks(settings, parse_sse):
    call = SimpleNamespace(id=None, name="weather", args={"city": "Oslo"})
    part = SimpleNamespace(text=None, function_call=call, thought=False, thought_signature=b"sig")
    chunk = SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]), finish_reason=None)])
    handler = GeminiNativeHandler(
        settings, TokenStatusWriter.from_settings(settings), client=_client(FakeChat([chunk]))
    )

    items = [item async for item in handler.generate(_request(), "gemini-2.5-pro")]
    result = items[-1]

    assert isinstance(result, GenerationResult)
    assert result.tool_calls[0].name == "weather"
    assert result.tool_calls[0].args == {"city": "Oslo"}
    assert result.tool_calls[0].id.startswith("call_")
    assert result.tool_calls[0].signature == "c2ln"

    handler = GeminiNativeHandler(
        settings, TokenStatusWriter.from_settings(settings), client=_client(FakeChat([chunk]))
    )
    events = parse_sse(b"".join([f async for f in handler.stream_response(_request(), "gemini-2.5-pro")]))
    start = next(data for event, data in events if event == "content_block_start")
    assert start["index"] == 1
    assert start["content_block"]["input"] == {"city": "Oslo"}


@pytest.mark.asyncio
async def test_transport_failure_becomes_backend_error(settings):
    chat = FakeChat([], error=httpx.ConnectError("connection reset"))
    handler = GeminiNativeHandler(settings, TokenStatusWriter.from_settings(settings), client=_client(chat))

    with pytest.raises(BackendTransportError) as exc_info:
        [item async for item in handler.generate(_request(), "gemini-2.5-pro")]

    assert exc_info.value.code == "backend_unreachable"
