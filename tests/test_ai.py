"""Summary: Tests for AI abstraction layer.

Importance: Ensures providers build requests and report failures consistently.
Alternatives: Skip AI testing and rely on manual verification.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

import pytest

from fakes import FakeResponse, build_config
from mailassist.ai import (
    AiProviderFactory,
    ChatMessage,
    MockAiProvider,
    OllamaProvider,
    OpenAiProvider,
    estimate_tokens,
    render_messages,
)
from mailassist.errors import GenerationError


def test_mock_ai_provider_returns_response() -> None:
    """Summary: Verify mock AI provider returns deterministic text.

    Importance: Confirms basic AI abstraction behavior for tests.
    Alternatives: Use live providers in integration tests only.
    """

    provider = MockAiProvider()
    response, latency = provider.generate_text("Hello", "test")
    assert "[mock:test]" in response
    assert latency >= 0


def test_mock_analysis_reads_only_email_section() -> None:
    """Summary: Verify the mock classifier ignores keywords in the prompt template.

    Importance: Offline demos must classify by the email text alone.
    Alternatives: Match keywords against the whole prompt.
    """

    provider = MockAiProvider()
    prompt = 'Template mentions "urgent|meeting".\n\nEmail Details:\nSubject: Meeting invite for Thursday'
    response, _ = provider.generate_text(prompt, "email_analysis", json_mode=True)
    assert json.loads(response)["category"] == "meeting"


def test_openai_provider_sends_json_mode_and_token_cap(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify OpenAI requests carry response format and max tokens.

    Importance: Structured enrichment depends on JSON mode being requested.
    Alternatives: Parse free-form text responses.
    """

    captured: dict[str, Any] = {}

    def fake_urlopen(request: urllib.request.Request, timeout: int) -> FakeResponse:
        captured["body"] = json.loads(request.data.decode("utf-8"))
        captured["auth"] = request.get_header("Authorization")
        return FakeResponse({"choices": [{"message": {"content": "{\"ok\": true}"}}]})

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    provider = OpenAiProvider("sk-test", "gpt-4o")
    text, _ = provider.generate_chat(
        [ChatMessage("system", "sys"), ChatMessage("user", "hi")],
        "email_analysis",
        json_mode=True,
        temperature=0.3,
        max_tokens=200,
    )
    assert text == "{\"ok\": true}"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["response_format"] == {"type": "json_object"}
    assert captured["body"]["max_tokens"] == 200
    assert captured["body"]["messages"][0] == {"role": "system", "content": "sys"}


def test_openai_provider_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify connection failures surface as GenerationError.

    Importance: Callers handle one error type per backend failure.
    Alternatives: Let urllib errors escape.
    """

    def failing_urlopen(request: urllib.request.Request, timeout: int) -> FakeResponse:
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(urllib.request, "urlopen", failing_urlopen)
    with pytest.raises(GenerationError):
        OpenAiProvider("sk-test", "gpt-4o").generate_text("hi", "chat")


def test_ollama_provider_reads_message_content(monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Verify Ollama chat requests and response parsing.

    Importance: The local backend must honor the token cap and skip JSON mode when unset.
    Alternatives: Use the generate endpoint instead of chat.
    """

    captured: dict[str, Any] = {}

    def fake_urlopen(request: urllib.request.Request, timeout: int) -> FakeResponse:
        captured["url"] = request.full_url
        captured["body"] = json.loads(request.data.decode("utf-8"))
        return FakeResponse({"message": {"role": "assistant", "content": "Hello there"}})

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    provider = OllamaProvider("http://localhost:11434/", "llama3")
    text, _ = provider.generate_chat([ChatMessage("user", "hi")], "chat", max_tokens=500)
    assert text == "Hello there"
    assert captured["url"] == "http://localhost:11434/api/chat"
    assert captured["body"]["options"]["num_predict"] == 500
    assert "format" not in captured["body"]


def test_factory_requires_openai_key(tmp_path: Path) -> None:
    """Summary: Verify the OpenAI backend refuses to build without a key.

    Importance: Misconfiguration fails at startup instead of on first request.
    Alternatives: Fall back to the mock backend silently.
    """

    config = build_config(str(tmp_path / "t.db"), ai_provider="openai", openai_api_key=None)
    with pytest.raises(ValueError):
        AiProviderFactory(config).build()


def test_factory_defaults_to_mock(tmp_path: Path) -> None:
    """Summary: Verify the default configuration builds the mock backend.

    Importance: Local runs work without credentials.
    Alternatives: Require an explicit backend choice.
    """

    assert isinstance(AiProviderFactory(build_config(str(tmp_path / "t.db"))).build(), MockAiProvider)


def test_estimate_tokens_and_render_messages() -> None:
    """Summary: Verify token estimates and the rendered audit prompt.

    Importance: Audit records store a readable transcript and a stable estimate.
    Alternatives: Store raw message lists.
    """

    assert estimate_tokens("") == 1
    assert estimate_tokens("a" * 40) == 10
    rendered = render_messages([ChatMessage("system", "rules"), ChatMessage("user", "question")])
    assert rendered == "[system] rules\n\n[user] question"
