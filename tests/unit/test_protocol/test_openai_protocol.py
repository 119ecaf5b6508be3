import json

import pytest

from messages_relay.common.errors import BackendTransportError, MalformedChunkError
from messages_relay.protocol.anthropic import parse_messages_request
from messages_relay.protocol.openai import (
    normalize_openai_chunk,
    parse_sse_json,
    to_openai_payload,
)
from messages_relay.protocol.types import Finish, TextDelta, ToolCallFragment, Usage


def _request(**body):
    body.setdefault("model", "claude-3-opus")
    body.setdefault("messages", [{"role": "user", "content": "hi"}])
    return parse_messages_request(body)


def test_payload_defaults():
    payload = to_openai_payload(_request(system="sys"), "vendor/model")

    assert payload["model"] == "vendor/model"
    assert payload["temperature"] == 1
    assert payload["stream"] is True
    assert payload["stream_options"] == {"include_usage": True}
    assert payload["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "hi"},
    ]
    assert "max_tokens" not in payload
    assert "tools" not in payload


def test_payload_generation_params():
    payload = to_openai_payload(_request(max_tokens=100, temperature=0.3, top_p=0.9), "m")

    assert payload["max_tokens"] == 100
    assert payload["temperature"] == 0.3
    assert payload["top_p"] == 0.9


def test_tool_results_precede_user_text():
    request = _request(
        messages=[
            {"role": "user", "content": "weather?"},
            {
                "role": "assistant",
                "content": [{"type": "tool_use", "id": "call_1", "name": "weather", "input": {"city": "Oslo"}}],
            },
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "here you go"},
                    {"type": "tool_result", "tool_use_id": "call_1", "content": "sunny"},
                ],
            },
        ]
    )

    messages = to_openai_payload(request, "m")["messages"]

    assert messages[1] == {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "weather", "arguments": json.dumps({"city": "Oslo"})},
            }
        ],
    }
    assert messages[2] == {"role": "tool", "tool_call_id": "call_1", "content": "sunny"}
    assert messages[3] == {"role": "user", "content": "here you go"}


def test_images_become_image_url_parts():
    request = _request(
        messages=[
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "what is this"},
                    {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"}},
                ],
            }
        ]
    )

    content = to_openai_payload(request, "m")["messages"][0]["content"]

    assert content == [
        {"type": "text", "text": "what is this"},
        {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
    ]


def test_tools_are_converted_with_uri_formats_removed():
    request = _request(
        tools=[
            {
                "name": "fetch",
                "description": "Fetch a page",
                "input_schema": {
                    "type": "object",
                    "properties": {"url": {"type": "string", "format": "uri"}},
                },
            }
        ],
        tool_choice={"type": "any"},
    )

    payload = to_openai_payload(request, "m")

    assert payload["tools"] == [
        {
            "type": "function",
            "function": {
                "name": "fetch",
                "description": "Fetch a page",
                "parameters": {"type": "object", "properties": {"url": {"type": "string"}}},
            },
        }
    ]
    assert payload["tool_choice"] == "required"


def test_normalize_text_and_finish():
    chunk = {"choices": [{"delta": {"content": "Hel"}, "finish_reason": "stop"}]}

    assert normalize_openai_chunk(chunk) == [TextDelta("Hel"), Finish("stop")]


def test_normalize_tool_call_fragments():
    chunk = {
        "choices": [
            {
                "delta": {
                    "tool_calls": [
                        {
                            "index": 0,
                            "id": "call_1",
                            "function": {"name": "weather", "arguments": '{"ci'},
                            "extra_content": {"google": {"thought_signature": "sig"}},
                        },
                        {"id": "call_2", "function": {"arguments": "{}"}},
                        {"function": {"arguments": "ty"}},
                    ]
                }
            }
        ]
    }

    events = normalize_openai_chunk(chunk)

    assert events == [
        ToolCallFragment(slot=0, call_id="call_1", name="weather", args_chunk='{"ci', signature="sig"),
        ToolCallFragment(slot="call_2", call_id="call_2", args_chunk="{}"),
        ToolCallFragment(slot=None, args_chunk="ty"),
    ]


def test_normalize_usage_only_chunk():
    chunk = {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 5, "cost": 0.001}}

    assert normalize_openai_chunk(chunk) == [Usage(input_tokens=12, output_tokens=5, cost=0.001)]


def test_error_chunk_raises():
    with pytest.raises(BackendTransportError) as exc_info:
        normalize_openai_chunk({"error": {"message": "rate limited", "code": 429}})

    assert exc_info.value.code == "backend_stream_error"
    assert exc_info.value.message == "rate limited"


@pytest.mark.parametrize("data", ["{not json", "[1, 2]", ""])
def test_parse_sse_json_rejects_malformed(data):
    with pytest.raises(MalformedChunkError):
        parse_sse_json(data)


@pytest.mark.parametrize(
    "chunk",
    [
        {"choices": [{"delta": "oops"}]},
        {"choices": [{"delta": {"tool_calls": "x"}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": "x"}]}}]},
    ],
)
def test_normalize_rejects_wrong_shapes(chunk):
    with pytest.raises(MalformedChunkError):
        normalize_openai_chunk(chunk)


def test_normalize_drops_non_numeric_usage():
    chunk = {"choices": [], "usage": {"prompt_tokens": "a", "completion_tokens": True, "cost": "free"}}

    assert normalize_openai_chunk(chunk) == [Usage()]


def test_normalize_ignores_non_string_tool_fields():
    chunk = {
        "choices": [
            {
                "delta": {"tool_calls": [{"index": 0, "function": {"name": 7, "arguments": 3}}]},
                "finish_reason": 1,
            }
        ]
    }

    assert normalize_openai_chunk(chunk) == [ToolCallFragment(slot=0)]
