from messages_relay.adapters.grok import GrokAdapter

BLOCK = (
    '<xai:function_call name="read_file">'
    '<xai:parameter name="path">/tmp/a.txt</xai:parameter>'
    '<xai:parameter name="limit">20</xai:parameter>'
    "</xai:function_call>"
)


def _feed(adapter, chunks):
    text = ""
    calls = []
    for chunk in chunks:
        result = adapter.process_text_content(chunk, text)
        text += result.cleaned_text
        calls.extend(result.extracted_tool_calls)
    tail = adapter.flush()
    return text + tail.cleaned_text, calls


def test_plain_text_passes_through(settings):
    adapter = GrokAdapter("x-ai/grok-4", settings)

    result = adapter.process_text_content("Hello there", "")

    assert result.cleaned_text == "Hello there"
    assert result.extracted_tool_calls == []
    assert not result.was_transformed


def test_inline_block_becomes_tool_call(settings):
    adapter = GrokAdapter("x-ai/grok-4", settings)

    text, calls = _feed(adapter, [f"Reading it. {BLOCK} Done."])

    assert text == "Reading it.  Done."
    assert len(calls) == 1
    assert calls[0].name == "read_file"
    assert calls[0].args == {"path": "/tmp/a.txt", "limit": 20}
    assert calls[0].id.startswith("call_")


def test_block_split_across_chunks(settings):
    adapter = GrokAdapter("x-ai/grok-4", settings)
    stream = f"before {BLOCK} after"
    chunks = [stream[i:i + 5] for i in range(0, len(stream), 5)]

    text, calls = _feed(adapter, chunks)

    assert text == "before  after"
    assert [c.name for c in calls] == ["read_file"]


def test_partial_open_tag_is_held_back(settings):
    adapter = GrokAdapter("x-ai/grok-4", settings)

    first = adapter.process_text_content("Hi <xai:func", "")

    assert first.cleaned_text == "Hi "


def test_unterminated_block_is_flushed_as_text(settings):
    adapter = GrokAdapter("x-ai/grok-4", settings)

    text, calls = _feed(adapter, ['ok <xai:function_call name="x">'])

    assert text == 'ok <xai:function_call name="x">'
    assert calls == []


def test_reset_clears_buffer(settings):
    adapter = GrokAdapter("x-ai/grok-4", settings)
    adapter.process_text_content("<xai:function_call", "")

    adapter.reset()

    assert adapter.flush().cleaned_text == ""
