"""Summary: Text-generation backends used for enrichment, replies, and chat.

Importance: One chat-message interface hides whether OpenAI, Ollama, or the mock answers.
Alternatives: Import a vendor SDK inside each service.
"""

from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from mailassist.config import AppConfig
from mailassist.errors import GenerationError


@dataclass(frozen=True)
class ChatMessage:
    """Summary: One role-tagged message sent to a chat-style backend.

    Importance: Lets callers pass system instructions and history explicitly.
    Alternatives: Flatten everything into a single prompt string.
    """

    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class AiProvider(ABC):
    """Summary: Contract for a chat-style text-generation backend.

    Importance: Enrichment and chat depend only on this interface.
    Alternatives: Bind services to one hosted model.
    """

    @abstractmethod
    def generate_chat(
        self,
        messages: list[ChatMessage],
        purpose: str,
        json_mode: bool = False,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> tuple[str, int]:
        """Summary: Generate a response for a list of chat messages.

        Importance: Every backend returns the text plus measured latency for auditing.
        Alternatives: Return provider-specific response objects.
        """

    def generate_text(
        self,
        prompt: str,
        purpose: str,
        system: str | None = None,
        json_mode: bool = False,
        temperature: float = 0.7,
    ) -> tuple[str, int]:
        """Summary: Generate a response for a single prompt with an optional system instruction.

        Importance: Covers one-shot classification and drafting calls.
        Alternatives: Require every caller to build message lists.
        """

        messages: list[ChatMessage] = []
        if system:
            messages.append(ChatMessage(role="system", content=system))
        messages.append(ChatMessage(role="user", content=prompt))
        return self.generate_chat(
            messages, purpose, json_mode=json_mode, temperature=temperature
        )


class MockAiProvider(AiProvider):
    """Summary: Canned backend for the demo mailbox and tests.

    Importance: Produces valid classification and style JSON without a network.
    Alternatives: Run a small local model in CI.
    """

    def generate_chat(
        self,
        messages: list[ChatMessage],
        purpose: str,
        json_mode: bool = False,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> tuple[str, int]:
        """Summary: Return canned JSON for structured purposes and an echo otherwise.

        Importance: Classification keys off urgent and meeting keywords in the email text.
        Alternatives: Load responses from fixture files.
        """

        started = time.time()
        prompt = messages[-1].content if messages else ""
        if purpose == "email_analysis":
            response = json.dumps(_mock_analysis(prompt))
        elif purpose == "writing_style":
            response = json.dumps(
                {
                    "tone": "professional",
                    "formality": "neutral",
                    "commonPhrases": ["Thanks for the update"],
                    "greetingStyle": "Hi,",
                    "closingStyle": "Best,",
                    "averageLength": 80,
                }
            )
        else:
            response = f"[mock:{purpose}] {prompt[:240]}"
        latency_ms = int((time.time() - started) * 1000)
        return response, latency_ms


def _mock_analysis(prompt: str) -> dict[str, Any]:
    text = prompt.split("Email Details:", 1)[-1].lower()
    if "urgent" in text or "asap" in text:
        category, priority = "urgent", 5
    elif "meeting" in text or "invite" in text:
        category, priority = "meeting", 3
    else:
        category, priority = "informational", 2
    return {
        "category": category,
        "priority": priority,
        "urgency": priority,
        "sentiment": "neutral",
        "actionRequired": category != "informational",
        "suggestedActions": ["Reply"] if category != "informational" else [],
        "summary": "Mock summary.",
        "context": {"type": "work", "intent": "information", "tone": "professional"},
    }


class OllamaProvider(AiProvider):
    """Summary: Backend that calls the Ollama chat endpoint.

    Importance: Keeps mail content on local hardware when preferred.
    Alternatives: Embed llama.cpp through a binding.
    """

    def __init__(self, base_url: str, model: str) -> None:
        """Summary: Remember the Ollama base URL and model.

        Importance: Trailing slashes are stripped once.
        Alternatives: Resolve URLs on every call.
        """

        self._base_url = base_url.rstrip("/")
        self._model = model

    def generate_chat(
        self,
        messages: list[ChatMessage],
        purpose: str,
        json_mode: bool = False,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> tuple[str, int]:
        """Summary: Generate text using the Ollama chat API.

        Importance: Enables local inference for analysis, replies, and chat.
        Alternatives: Shell out to the ollama CLI.
        """

        options: dict[str, Any] = {"temperature": temperature}
        if max_tokens:
            options["num_predict"] = max_tokens
        body: dict[str, Any] = {
            "model": self._model,
            "messages": [message.to_dict() for message in messages],
            "stream": False,
            "options": options,
        }
        if json_mode:
            body["format"] = "json"
        request = urllib.request.Request(
            url=f"{self._base_url}/api/chat",
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=120) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except (urllib.error.URLError, TimeoutError, ValueError) as exc:
            raise GenerationError(f"Ollama request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        return (raw.get("message") or {}).get("content", ""), latency_ms


class OpenAiProvider(AiProvider):
    """Summary: Backend that calls OpenAI chat completions.

    Importance: Enables higher-quality analysis and replies when configured.
    Alternatives: Use other cloud providers or a local model.
    """

    def __init__(self, api_key: str, model: str) -> None:
        """Summary: Remember the API key and model.

        Importance: The key is sent as a bearer token on each call.
        Alternatives: Read the key from the environment per call.
        """

        self._api_key = api_key
        self._model = model

    def generate_chat(
        self,
        messages: list[ChatMessage],
        purpose: str,
        json_mode: bool = False,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> tuple[str, int]:
        """Summary: Send the chat messages to OpenAI and return the first choice.

        Importance: JSON mode sets response_format so classification output parses.
        Alternatives: Use the responses API.
        """

        payload: dict[str, Any] = {
            "model": self._model,
            "messages": [message.to_dict() for message in messages],
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        if max_tokens:
            payload["max_tokens"] = max_tokens
        request = urllib.request.Request(
            url="https://api.openai.com/v1/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=60) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except (urllib.error.URLError, TimeoutError, ValueError) as exc:
            raise GenerationError(f"OpenAI request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        try:
            content = raw["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise GenerationError("OpenAI response missing choices") from exc
        return content or "", latency_ms


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Picks the backend named by MAILASSIST_AI_PROVIDER.

    Importance: One place decides between openai, ollama, and mock.
    Alternatives: Wire a backend by hand in each entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        """Summary: Build the configured backend.

        Importance: Unknown names fall back to the mock backend.
        Alternatives: Raise on unknown names.
        """

        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model)
        return MockAiProvider()


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric for AI usage auditing.
    Alternatives: Use provider token counters or tiktoken.
    """

    return max(1, len(text) // 4)


def render_messages(messages: list[ChatMessage]) -> str:
    """Summary: Flatten chat messages into a single audit-friendly prompt string.

    Importance: Lets chat calls share the same audit table as one-shot prompts.
    Alternatives: Store message lists as JSON columns.
    """

    return "\n\n".join(f"[{message.role}] {message.content}" for message in messages)
