import pytest
import requests

from studio import llm_client


class FakeResp:
    def __init__(self, status, payload=None, headers=None, text=""):
        self.status_code = status
        self._payload = payload
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _ok(content):
    return FakeResp(200, {"choices": [{"message": {"content": content}}]})


@pytest.fixture(autouse=True)
def _live_client(monkeypatch):
    # A patched key switches the client off the pytest stub
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "test-key")
    monkeypatch.setattr(llm_client, "FALLBACK_MODELS", [])
    monkeypatch.setattr(llm_client, "ENABLE_AI_FALLBACK", False)
    monkeypatch.setattr(llm_client, "_openrouter_sleep_if_needed", lambda: None)
    llm_client._openrouter_reset_backoff()
    yield
    llm_client._openrouter_reset_backoff()


def test_generate_posts_chat_completion(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured["url"] = url
        captured["headers"] = headers
        captured["json"] = json
        return _ok("```jsx\nfunction Button() { return <button/>; }\n```")

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    out = llm_client.generate_component(
        {"system": "SYS", "user": "a button"},
        {"model": "some/model", "temperature": 0.2, "max_tokens": 512},
    )
    assert "function Button" in out
    assert captured["url"] == llm_client.OPENROUTER_ENDPOINT
    assert captured["url"].endswith("/chat/completions")
    assert captured["headers"]["Authorization"] == "Bearer test-key"
    body = captured["json"]
    assert body["model"] == "some/model"
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 512
    assert body["messages"] == [
        {"role": "system", "content": "SYS"},
        {"role": "user", "content": "a button"},
    ]


def test_defaults_for_missing_options(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(json)
        return _ok("function Component() { return null; }")

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    llm_client.refine_component({"system": "S", "user": "U"})
    assert captured["model"] == llm_client.DEFAULT_MODEL
    assert captured["max_tokens"] == 2000
    assert captured["temperature"] == 0.7


def test_zero_temperature_is_sent_as_is(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(json)
        return _ok("function Component() { return null; }")

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    llm_client.generate_component({"system": "S", "user": "U"}, {"temperature": 0.0, "max_tokens": None})
    assert captured["temperature"] == 0.0
    assert captured["max_tokens"] == 2000


def test_fallback_models_are_tried_in_order(monkeypatch):
    monkeypatch.setattr(llm_client, "FALLBACK_MODELS", ["backup/one", "backup/two"])
    seen = []

    def fake_post(url, headers=None, json=None, timeout=None):
        seen.append(json["model"])
        if json["model"] == "backup/two":
            return _ok("from backup two")
        return FakeResp(503, text="overloaded")

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    out = llm_client.generate_component({"system": "S", "user": "U"}, {"model": "primary/model"})
    assert out == "from backup two"
    assert seen == ["primary/model", "backup/one", "backup/two"]


def test_failure_raises_without_fallback(monkeypatch):
    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: FakeResp(500, text="boom"))
    with pytest.raises(llm_client.LLMError):
        llm_client.generate_component({"system": "S", "user": "U"})


def test_network_error_raises_without_fallback(monkeypatch):
    def boom(*a, **k):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(llm_client.requests, "post", boom)
    with pytest.raises(llm_client.LLMError):
        llm_client.refine_component({"system": "S", "user": "U"})


def test_failure_serves_canned_component_when_fallback_enabled(monkeypatch):
    monkeypatch.setattr(llm_client, "ENABLE_AI_FALLBACK", True)
    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: FakeResp(500, text="boom"))
    out = llm_client.generate_component({"system": "S", "user": "a login form please"})
    assert "function LoginForm" in out


def test_rate_limit_registers_backoff(monkeypatch):
    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: FakeResp(429, headers={"Retry-After": "5"}))
    with pytest.raises(llm_client.LLMError):
        llm_client.generate_component({"system": "S", "user": "U"})
    assert llm_client._OPENROUTER_BACKOFF_DELAY == 5.0
    assert llm_client._OPENROUTER_BACKOFF_UNTIL > 0

    monkeypatch.setattr(llm_client.requests, "post", lambda *a, **k: _ok("ok"))
    assert llm_client.generate_component({"system": "S", "user": "U"}) == "ok"
    assert llm_client._OPENROUTER_BACKOFF_UNTIL == 0.0


def test_missing_key_without_fallback_raises(monkeypatch):
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "")
    monkeypatch.setattr(llm_client, "_testing_stub_enabled", lambda: False)
    with pytest.raises(llm_client.LLMError, match="Missing LLM credentials"):
        llm_client.generate_component({"system": "S", "user": "U"})


def test_missing_key_with_fallback_serves_canned(monkeypatch):
    monkeypatch.setattr(llm_client, "OPENROUTER_API_KEY", "")
    monkeypatch.setattr(llm_client, "_testing_stub_enabled", lambda: False)
    monkeypatch.setattr(llm_client, "ENABLE_AI_FALLBACK", True)
    out = llm_client.generate_component({"system": "S", "user": "a nav bar"})
    assert "function Navigation" in out


@pytest.mark.parametrize(
    "prompt,name",
    [
        ("primary button", "function Button"),
        ("profile card", "function Card"),
        ("signup form", "function LoginForm"),
        ("site header", "function Navigation"),
        ("something else", "function Component"),
    ],
)
def test_fallback_keyword_selection(prompt, name):
    assert name in llm_client.generate_fallback_component(prompt)


def test_status_reports_openrouter_when_key_present():
    st = llm_client.status()
    assert st["provider"] == "openrouter"
    assert st["has_token"] is True
    assert st["using"] == "openrouter"
