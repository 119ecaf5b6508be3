from messages_relay.common.sse import SSEDecoder, encode_sse_data, encode_sse_json


def test_decoder_splits_events_across_chunks():
    decoder = SSEDecoder()

    first = decoder.feed(b'data: {"a": 1}\n\ndata: {"b"')
    second = decoder.feed(b": 2}\n\n")

    assert first == ['{"a": 1}']
    assert second == ['{"b": 2}']


def test_decoder_handles_crlf_and_ignores_other_fields():
    decoder = SSEDecoder()

    payloads = decoder.feed(b": keep-alive\r\n\r\nevent: ping\r\ndata: x\r\n\r\n")

    assert payloads == ["x"]


def test_decoder_joins_multiline_data():
    decoder = SSEDecoder()

    assert decoder.feed(b"data: one\ndata: two\n\n") == ["one\ntwo"]


def test_flush_returns_unterminated_event():
    decoder = SSEDecoder()
    decoder.feed(b"data: [DONE]")

    assert decoder.flush() == ["[DONE]"]
    assert decoder.flush() == []


def test_encoders():
    assert encode_sse_data("[DONE]") == b"data: [DONE]\n\n"
    assert encode_sse_json({"type": "ping"}) == b'data: {"type": "ping"}\n\n'
    assert encode_sse_json({"type": "ping"}, event="ping") == b'event: ping\ndata: {"type": "ping"}\n\n'
