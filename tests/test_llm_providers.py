#!/usr/bin/env python3
"""
LLM provider manager against mocked HTTP transports and a fake Ollama client
"""
import asyncio
import json
import sys
from pathlib import Path

import httpx
import ollama
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import LLMConfig
from task_extractor.bridges.llm_providers import (
    ANTHROPIC_KNOWN_MODELS,
    ANTHROPIC_MESSAGES_URL,
    ANTHROPIC_VERSION,
    LLMProviderManager,
)
from task_extractor.core.notifier import RecordingNotifier

ANSWER = '{"found": false, "tasks": []}'


class FakeOllama:
    """Stands in for ollama.AsyncClient; shared state across instances"""

    def __init__(self, models=("llama3.2:latest",), answer=ANSWER, chat_error=None, list_error=None, delay=0.0):
        self.models = list(models)
        self.answer = answer
        self.chat_error = chat_error
        self.list_error = list_error
        self.delay = delay
        self.hosts = []
        self.chats = []

    def factory(self, host, timeout):
        self.hosts.append(host)
        return _FakeOllamaClient(self)


class _FakeOllamaClient:
    def __init__(self, state):
        self.state = state

    async def list(self):
        if self.state.list_error:
            raise self.state.list_error
        return {"models": [{"model": m} for m in self.state.models]}

    async def chat(self, model, messages, stream=False, options=None):
        self.state.chats.append({"model": model, "messages": messages, "options": options})
        if self.state.delay:
            await asyncio.sleep(self.state.delay)
        if self.state.chat_error:
            raise self.state.chat_error
        return {"message": {"role": "assistant", "content": self.state.answer}}


def _manager(settings, handler=None, fake_ollama=None, notifier=None):
    sleeps = []

    async def sleep(seconds):
        sleeps.append(seconds)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler or _not_found))
    manager = LLMProviderManager(
        settings,
        notifier=notifier,
        http_client=client,
        ollama_client_factory=(fake_ollama or FakeOllama()).factory,
        sleep=sleep,
    )
    return manager, sleeps


def _not_found(request):
    return httpx.Response(404, json={"error": "not found"})


def _openai_reply(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.mark.asyncio
async def test_openai_call_sends_bearer_key_and_prompts():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=_openai_reply(ANSWER))

    manager, sleeps = _manager(LLMConfig(provider="openai", api_key="sk-test1234"), handler)
    result = await manager.call_llm("system text", "user text")

    assert result == ANSWER
    assert sleeps == []
    request = seen[0]
    assert request.headers["Authorization"] == "Bearer sk-test1234"
    body = json.loads(request.content)
    assert body["messages"][0] == {"role": "system", "content": "system text"}
    assert body["messages"][1] == {"role": "user", "content": "user text"}
    assert body["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_transient_errors_retry_with_linear_backoff():
    statuses = iter([500, 429, 200])

    def handler(request):
        status = next(statuses)
        if status != 200:
            return httpx.Response(status, json={"error": "busy"})
        return httpx.Response(200, json=_openai_reply(ANSWER))

    manager, sleeps = _manager(LLMConfig(provider="openai", api_key="sk-test1234", retries=3), handler)
    assert await manager.call_llm("s", "u") == ANSWER
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_cloud_provider_gives_up_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(401, json={"error": "bad key"})

    manager, sleeps = _manager(LLMConfig(provider="openai", api_key="sk-test1234", retries=3), handler)
    assert await manager.call_llm("s", "u") is None
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_empty_answer_is_retried_without_backoff():
    replies = iter(["", "", ANSWER])

    def handler(request):
        return httpx.Response(200, json=_openai_reply(next(replies)))

    manager, sleeps = _manager(LLMConfig(provider="openai", api_key="sk-test1234", retries=3), handler)
    assert await manager.call_llm("s", "u") == ANSWER
    assert sleeps == []


@pytest.mark.asyncio
async def test_missing_api_key_is_reported_once():
    calls = []
    notifier = RecordingNotifier()
    manager, _ = _manager(LLMConfig(provider="openai", api_key=""), lambda r: calls.append(r), notifier=notifier)

    assert await manager.call_llm("s", "u") is None
    assert await manager.call_llm("s", "u") is None

    assert notifier.messages == ["Task Extractor: OPENAI API key not configured in plugin settings"]
    assert calls == []


@pytest.mark.asyncio
async def test_malformed_openai_key_is_rejected_before_request():
    calls = []
    manager, _ = _manager(LLMConfig(provider="openai", api_key="abc123"), lambda r: calls.append(r))
    assert manager.validate_provider_config() == ['OpenAI API key should start with "sk-"']
    assert await manager.call_llm("s", "u") is None
    assert calls == []


@pytest.mark.asyncio
async def test_anthropic_url_is_corrected_and_headers_sent():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"content": [{"type": "text", "text": ANSWER}]})

    settings = LLMConfig(
        provider="anthropic", api_key="key-anthropic", model="claude-3-5-haiku-20241022",
        anthropic_url="https://api.anthropic.com/v1",
    )
    manager, _ = _manager(settings, handler)
    # Only the messages endpoint passes validation, so fix the URL the way the settings tab would
    assert manager.validate_provider_config() == [f"Anthropic URL must point to {ANTHROPIC_MESSAGES_URL}"]
    assert manager._anthropic_endpoint() == ANTHROPIC_MESSAGES_URL

    manager.update_settings(anthropic_url=ANTHROPIC_MESSAGES_URL)
    assert await manager.call_llm("system text", "user text") == ANSWER

    request = seen[0]
    assert str(request.url) == ANTHROPIC_MESSAGES_URL
    assert request.headers["x-api-key"] == "key-anthropic"
    assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
    body = json.loads(request.content)
    assert body["system"] == "system text"
    assert body["messages"] == [{"role": "user", "content": "user text"}]


@pytest.mark.asyncio
async def test_ollama_uses_installed_model():
    fake = FakeOllama(models=["mistral:latest", "llama3.2:latest"])
    settings = LLMConfig(provider="ollama", model="llama3.2:latest", ollama_url="http://ollama:11434")
    manager, _ = _manager(settings, fake_ollama=fake)

    assert await manager.call_llm("s", "u") == ANSWER
    assert fake.chats[0]["model"] == "llama3.2:latest"
    assert fake.chats[0]["options"] == {"temperature": 0.0, "num_predict": 800}
    assert set(fake.hosts) == {"http://ollama:11434"}


@pytest.mark.asyncio
async def test_ollama_falls_back_to_first_model():
    fake = FakeOllama(models=["mistral:latest"])
    manager, _ = _manager(LLMConfig(provider="ollama", model="not-installed"), fake_ollama=fake)
    await manager.call_llm("s", "u")
    assert fake.chats[0]["model"] == "mistral:latest"


@pytest.mark.asyncio
async def test_lmstudio_probe_and_call():
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path == "/v1/models":
            return httpx.Response(200, json={"data": [{"id": "qwen2.5-7b-instruct"}]})
        return httpx.Response(200, json=_openai_reply(ANSWER))

    settings = LLMConfig(provider="lmstudio", lmstudio_url="http://studio:1234")
    manager, _ = _manager(settings, handler)

    assert await manager.call_llm("s", "u") == ANSWER
    chat = seen[-1]
    assert str(chat.url) == "http://studio:1234/v1/chat/completions"
    assert json.loads(chat.content)["model"] == "qwen2.5-7b-instruct"

    # Second call reuses the cached probe
    await manager.call_llm("s", "u")
    assert [r.url.path for r in seen].count("/v1/models") == 1


@pytest.mark.asyncio
async def test_detect_services_records_unreachable_service():
    fake = FakeOllama(list_error=ConnectionError("refused"))
    manager, _ = _manager(LLMConfig(provider="ollama", ollama_url="http://localhost:11434"), fake_ollama=fake)

    services = await manager.detect_services()

    assert services["ollama"].available is False
    assert services["ollama"].url == "http://localhost:11434"
    assert services["lmstudio"].available is False
    assert manager.available_services() == []


@pytest.mark.asyncio
async def test_local_failure_falls_back_to_other_local_service():
    fake = FakeOllama(chat_error=ollama.ResponseError("model crashed"))

    def handler(request):
        if request.url.path == "/v1/models":
            return httpx.Response(200, json={"data": [{"id": "local-model"}]})
        return httpx.Response(200, json=_openai_reply("from lmstudio"))

    manager, sleeps = _manager(LLMConfig(provider="ollama", retries=2), handler, fake_ollama=fake)
    await manager.detect_services()

    assert await manager.call_llm("s", "u") == "from lmstudio"
    assert len(fake.chats) == 2
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_fallback_probes_other_local_service_without_cached_entry():
    fake = FakeOllama(chat_error=ollama.ResponseError("model crashed"))
    seen = []

    def handler(request):
        seen.append(request.url.path)
        if request.url.path == "/v1/models":
            return httpx.Response(200, json={"data": [{"id": "local-model"}]})
        return httpx.Response(200, json=_openai_reply("from lmstudio"))

    manager, _ = _manager(LLMConfig(provider="ollama", retries=1), handler, fake_ollama=fake)
    assert manager.service_cache.peek("lmstudio") is None

    assert await manager.call_llm("s", "u") == "from lmstudio"
    assert seen == ["/v1/models", "/v1/chat/completions"]


@pytest.mark.asyncio
async def test_attempt_timeout_counts_as_failure():
    fake = FakeOllama(delay=1.0)
    settings = LLMConfig(provider="ollama", retries=1)
    settings.timeout = 0.05
    manager, _ = _manager(settings, fake_ollama=fake)

    assert await manager.call_llm("s", "u") is None
    assert len(fake.chats) == 1


@pytest.mark.asyncio
async def test_changing_local_url_invalidates_cached_service():
    manager, _ = _manager(LLMConfig(provider="ollama"))
    await manager.detect_services()
    assert manager.service_cache.peek("ollama") is not None

    manager.update_settings(ollama_url="http://elsewhere:11434")
    assert manager.service_cache.peek("ollama") is None
    assert manager.service_cache.peek("lmstudio") is not None

    with pytest.raises(AttributeError):
        manager.update_settings(not_a_setting=1)


@pytest.mark.asyncio
async def test_openai_model_listing_is_filtered_and_cached():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"data": [
            {"id": "gpt-4o-mini"}, {"id": "whisper-1"}, {"id": "gpt-3.5-turbo-instruct"}, {"id": "gpt-4o"},
        ]})

    manager, _ = _manager(LLMConfig(provider="openai", api_key="sk-test1234"), handler)
    assert await manager.fetch_cloud_models("openai") == ["gpt-4o", "gpt-4o-mini"]
    assert await manager.list_models("openai") == ["gpt-4o", "gpt-4o-mini"]
    assert len(calls) == 1

    manager.update_settings(api_key="sk-other5678")
    await manager.fetch_cloud_models("openai")
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_model_listing_edge_cases():
    manager, _ = _manager(LLMConfig(provider="anthropic", api_key="key-anthropic"))
    assert await manager.fetch_cloud_models("anthropic") == ANTHROPIC_KNOWN_MODELS
    with pytest.raises(ValueError):
        await manager.fetch_cloud_models("ollama")

    manager.update_settings(api_key="")
    assert await manager.fetch_cloud_models("openai") == []

    # Listing failure falls back to the built-in defaults
    manager.update_settings(api_key="sk-test1234")
    assert await manager.fetch_cloud_models("openai") == manager.default_models("openai")


@pytest.mark.asyncio
async def test_cleanup_clears_state():
    manager, _ = _manager(LLMConfig(provider="ollama"))
    await manager.detect_services()
    await manager.cleanup()
    assert manager.service_cache.entries() == {}
