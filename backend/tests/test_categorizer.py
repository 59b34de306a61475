"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.
"""
import json
from typing import List

import httpx
import pytest

from minddump import categorizer as cat
from minddump.config import settings
from minddump.errors import BackendMisconfigured, ClassificationRequestFailed, ClassificationResponseInvalid


class MockResponse:
    def __init__(self, payload: dict, status_code: int = 200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("POST", "http://test-server/chat/completions")
            response = httpx.Response(self.status_code, text="upstream said no", request=request)
            raise httpx.HTTPStatusError("error", request=request, response=response)
        return None

    def json(self):
        return self.payload


class MockClient:
    instances: List["MockClient"] = []

    def __init__(self, responses: List[MockResponse], **kwargs):
        self.responses = responses
        self.kwargs = kwargs
        self.post_calls = []
        MockClient.instances.append(self)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, endpoint, json=None):
        self.post_calls.append((endpoint, json))
        return self.responses.pop(0)

    async def get(self, endpoint):
        return self.responses.pop(0)


def install_client(monkeypatch, *responses: MockResponse):
    queue = list(responses)
    MockClient.instances = []
    monkeypatch.setattr(cat.httpx, "AsyncClient", lambda **kwargs: MockClient(queue, **kwargs))
    return MockClient.instances


def openai_reply(content: str) -> MockResponse:
    return MockResponse({"choices": [{"message": {"role": "assistant", "content": content}}]})


@pytest.fixture
def openai_settings(monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "openai")
    monkeypatch.setattr(settings, "llm_model", "gpt-4o-mini")
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    monkeypatch.setattr(settings, "openai_base_url", "http://test-server/v1")


def test_clean_response_strips_fences_and_think_tags():
    raw = '<think>let me see</think>\n```json\n{"categories": {}}\n```'
    assert cat.clean_response(raw) == '{"categories": {}}'
    assert cat.clean_response('  {"a": 1}  ') == '{"a": 1}'


def test_build_prompt_embeds_transcript():
    prompt = cat.build_prompt("I need to call the plumber")
    assert "User's transcript:\nI need to call the plumber" in prompt
    assert '"actions": ["action item 1", "action item 2"]' in prompt


def test_parse_categories_fills_missing_and_drops_bad_items():
    reply = json.dumps({"categories": {"actions": ["Call dentist", 3, "  "], "worries": "not a list"}})

    categories = cat.parse_categories(reply)

    assert categories.actions == ["Call dentist"]
    assert categories.decisions == []
    assert categories.worries == []
    assert categories.wins == []


@pytest.mark.parametrize("reply", ["not json at all", '{"result": []}', '{"categories": ["a"]}', "[]"])
def test_parse_categories_rejects_malformed_replies(reply):
    with pytest.raises(ClassificationResponseInvalid):
        cat.parse_categories(reply)


@pytest.mark.asyncio
async def test_openai_categorize_sends_json_mode_request(monkeypatch, openai_settings):
    clients = install_client(monkeypatch, openai_reply('{"categories": {"actions": ["Call dentist"]}}'))

    categories = await cat.categorize_transcript("remember to call the dentist")

    assert categories.model_dump() == {"actions": ["Call dentist"], "decisions": [], "worries": [], "wins": []}
    client = clients[0]
    assert client.kwargs["base_url"] == "http://test-server/v1"
    assert client.kwargs["headers"] == {"Authorization": "Bearer sk-test"}
    endpoint, payload = client.post_calls[0]
    assert endpoint == "/chat/completions"
    assert payload["model"] == "gpt-4o-mini"
    assert payload["temperature"] == 0.7
    assert payload["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]
    assert "remember to call the dentist" in payload["messages"][1]["content"]


@pytest.mark.asyncio
async def test_missing_api_key_is_reported_before_any_request(monkeypatch, openai_settings):
    monkeypatch.setattr(settings, "openai_api_key", None)
    clients = install_client(monkeypatch)

    with pytest.raises(BackendMisconfigured, match="OpenAI API key not configured"):
        await cat.categorize_transcript("anything")
    assert clients == []


@pytest.mark.asyncio
async def test_blank_transcript_is_rejected(openai_settings):
    with pytest.raises(ValueError, match="Transcript is required"):
        await cat.categorize_transcript("   ")


@pytest.mark.asyncio
async def test_upstream_error_status_becomes_request_failure(monkeypatch, openai_settings):
    install_client(monkeypatch, MockResponse({}, status_code=401))

    with pytest.raises(ClassificationRequestFailed, match="OpenAI API error: 401"):
        await cat.categorize_transcript("hello")


@pytest.mark.asyncio
async def test_empty_reply_is_a_request_failure(monkeypatch, openai_settings):
    install_client(monkeypatch, MockResponse({"choices": []}))

    with pytest.raises(ClassificationRequestFailed, match="No response from OpenAI"):
        await cat.categorize_transcript("hello")


@pytest.mark.asyncio
async def test_non_json_reply_is_invalid(monkeypatch, openai_settings):
    install_client(monkeypatch, openai_reply("Sure! Here are your categories."))

    with pytest.raises(ClassificationResponseInvalid):
        await cat.categorize_transcript("hello")


@pytest.mark.asyncio
async def test_ollama_categorizer_uses_chat_endpoint(monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "ollama")
    monkeypatch.setattr(settings, "llm_model", "qwen3:4b")
    monkeypatch.setattr(settings, "ollama_base_url", "http://ollama:11434")
    reply = {"message": {"role": "assistant", "content": '{"categories": {"wins": ["Shipped the release"]}}'}}
    clients = install_client(monkeypatch, MockResponse(reply))

    categories = await cat.categorize_transcript("we shipped it today")

    assert categories.wins == ["Shipped the release"]
    endpoint, payload = clients[0].post_calls[0]
    assert endpoint == "/api/chat"
    assert payload["format"] == "json"
    assert payload["stream"] is False
    assert payload["options"]["temperature"] == settings.llm_temperature


def test_unknown_provider_is_misconfigured():
    with pytest.raises(BackendMisconfigured):
        cat.get_categorizer(provider="carrier-pigeon")


@pytest.mark.asyncio
async def test_ollama_warm_up_loads_model(monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "ollama")
    monkeypatch.setattr(settings, "ollama_keep_alive_seconds", 600)
    clients = install_client(monkeypatch, MockResponse({"message": {"content": "hello"}}))

    assert await cat.warm_up() is True
    endpoint, payload = clients[0].post_calls[0]
    assert endpoint == "/api/chat"
    assert payload["keep_alive"] == 600


@pytest.mark.asyncio
async def test_ollama_warm_up_failure_is_not_fatal(monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "ollama")
    install_client(monkeypatch, MockResponse({}, status_code=500))

    assert await cat.warm_up() is False


@pytest.mark.asyncio
async def test_openai_warm_up_without_key(monkeypatch, openai_settings):
    monkeypatch.setattr(settings, "openai_api_key", None)
    assert await cat.warm_up() is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        ["not", "an", "object"],
        {"choices": {"message": {"content": "{}"}}},
        {"choices": ["oops"]},
        {"choices": [{"message": "plain text"}]},
    ],
)
async def test_unexpected_openai_body_is_invalid(monkeypatch, openai_settings, body):
    install_client(monkeypatch, MockResponse(body))

    with pytest.raises(ClassificationResponseInvalid):
        await cat.categorize_transcript("hello")


@pytest.mark.asyncio
async def test_unexpected_ollama_body_is_invalid(monkeypatch):
    monkeypatch.setattr(settings, "llm_provider", "ollama")
    install_client(monkeypatch, MockResponse(["nope"]))

    with pytest.raises(ClassificationResponseInvalid):
        await cat.categorize_transcript("hello")


@pytest.mark.asyncio
async def test_non_json_http_body_is_invalid(monkeypatch, openai_settings):
    class HtmlResponse(MockResponse):
        def json(self):
            raise ValueError("Expecting value: line 1 column 1 (char 0)")

    install_client(monkeypatch, HtmlResponse({}))

    with pytest.raises(ClassificationResponseInvalid, match="non-JSON body"):
        await cat.categorize_transcript("hello")
