from messages_relay.adapters import (
    AdapterRegistry,
    BaseModelAdapter,
    DefaultAdapter,
    GrokAdapter,
    OllamaAdapter,
)
from messages_relay.protocol.anthropic import parse_messages_request
from messages_relay.streaming.assembler import ArgsMergeStrategy


def _request():
    return parse_messages_request({"model": "m", "messages": [{"role": "user", "content": "hi"}]})


def test_default_adapter_for_plain_models(settings):
    adapter = AdapterRegistry(settings).select("anthropic/claude-3.5-sonnet")

    assert isinstance(adapter, DefaultAdapter)
    assert adapter.args_strategy == ArgsMergeStrategy.CONCAT


def test_grok_models_match_case_insensitively(settings):
    adapter = AdapterRegistry(settings).select("x-ai/Grok-4")

    assert isinstance(adapter, GrokAdapter)


def test_ollama_selected_only_by_configuration(make_settings):
    configured = make_settings(ADAPTER="ollama")
    unconfigured = make_settings()

    assert isinstance(AdapterRegistry(configured).select("x-ai/grok-4"), OllamaAdapter)
    assert isinstance(AdapterRegistry(unconfigured).select("ollama/llama3"), DefaultAdapter)


def test_select_builds_a_fresh_adapter_each_time(settings):
    registry = AdapterRegistry(settings)

    first = registry.select("x-ai/grok-4")
    second = registry.select("x-ai/grok-4")

    assert first is not second


def test_registered_adapter_is_consulted(settings):
    class ShoutAdapter(BaseModelAdapter):
        name = "shout"

        @classmethod
        def handles(cls, model_id, settings):
            return model_id.endswith("-loud")

    registry = AdapterRegistry(settings, adapters=[])
    registry.register(ShoutAdapter)

    assert registry.select("vendor/model-loud").name == "shout"
    assert registry.select("vendor/model").name == "default"


def test_default_endpoint_keeps_headers(settings):
    adapter = AdapterRegistry(settings).select("vendor/model")

    endpoint = adapter.endpoint("https://openrouter.ai/api/v1/", {"Authorization": "Bearer k"})

    assert endpoint.url == "https://openrouter.ai/api/v1/chat/completions"
    assert endpoint.headers == {"Authorization": "Bearer k"}


def test_ollama_prepare_request_strips_fields_and_prefix(make_settings):
    adapter = OllamaAdapter("ollama/llama3", make_settings(ADAPTER="ollama"))
    payload = {"model": "ollama/llama3", "include_reasoning": True, "thinking": {}, "messages": []}

    adapter.prepare_request(payload, _request())
    adapter.prepare_request(payload, _request())

    assert payload == {"model": "llama3", "messages": []}


def test_ollama_endpoint_targets_local_server(make_settings):
    adapter = OllamaAdapter("llama3", make_settings(ADAPTER="ollama", OLLAMA_HOST="http://gpu-box:11434/"))

    endpoint = adapter.endpoint(
        "https://openrouter.ai/api/v1",
        {"Authorization": "Bearer k", "Content-Type": "application/json"},
    )

    assert endpoint.url == "http://gpu-box:11434/v1/chat/completions"
    assert endpoint.headers == {"Content-Type": "application/json"}
    assert adapter.args_strategy == ArgsMergeStrategy.OBJECT_MERGE
