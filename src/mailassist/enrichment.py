"""Summary: AI enrichment engine for email messages.

Importance: Owns prompts, response parsing, and failure semantics for classification, style, and replies.
Alternatives: Use a rule-based classifier without an LLM.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
)

from mailassist.ai import AiProvider
from mailassist.audit import AiAuditLog
from mailassist.errors import EnrichmentParseError, GenerationError
from mailassist.models import EmailAnalysisResult, EmailContext, WritingStyleAnalysis


logger = logging.getLogger(__name__)

BODY_CHAR_LIMIT = 6000
STYLE_SAMPLE_LIMIT = 20

ANALYSIS_SYSTEM = (
    "You are an expert email analyst. Analyze emails and provide structured insights in JSON format."
)
STYLE_SYSTEM = (
    "You are an expert in writing style analysis. "
    "Analyze email patterns and extract writing characteristics."
)
REPLY_SYSTEM = (
    "You are an expert email writer. Generate replies that match the user's writing style "
    "and appropriately respond to the context."
)

ANALYSIS_PROMPT = """Analyze this email and provide a JSON response with the following structure:
{{
  "category": "urgent|meeting|task|follow-up|informational|spam",
  "priority": 1-5,
  "urgency": 1-5,
  "sentiment": "positive|negative|neutral",
  "actionRequired": boolean,
  "suggestedActions": ["array of suggested actions"],
  "summary": "brief summary in 1-2 sentences",
  "context": {{
    "type": "work|meeting|request|reminder|notification",
    "intent": "follow-up|rsvp|complaint|opportunity|information",
    "tone": "formal|informal|urgent|friendly|professional"
  }}
}}

Email Details:
From: {sender}
Subject: {subject}
Body: {body}"""

STYLE_PROMPT = """Analyze the writing style from these sent emails and provide a JSON response:
{{
  "tone": "formal|informal|professional|casual",
  "formality": "very formal|formal|neutral|informal|very informal",
  "commonPhrases": ["array of frequently used phrases"],
  "greetingStyle": "typical greeting pattern",
  "closingStyle": "typical closing pattern",
  "averageLength": average_word_count
}}

Emails to analyze:
{emails}"""

REPLY_PROMPT = """Generate a reply to this email using the user's writing style:

Original Email:
From: {sender}
Subject: {subject}
Body: {body}

User's Writing Style:
- Tone: {tone}
- Formality: {formality}
- Typical greeting: {greeting}
- Typical closing: {closing}
- Common phrases: {phrases}

Context: {context}

Generate a professional reply that matches the user's writing style and appropriately responds to the original email."""


def _lowercase(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


class _ContextPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: StrictStr
    intent: StrictStr
    tone: StrictStr


class _AnalysisPayload(BaseModel):
    """Schema the classification response must satisfy; numbers and flags are not coerced."""

    model_config = ConfigDict(extra="ignore")

    category: Literal["urgent", "meeting", "task", "follow-up", "informational", "spam"]
    priority: StrictInt = Field(ge=1, le=5)
    urgency: StrictInt = Field(ge=1, le=5)
    sentiment: Literal["positive", "negative", "neutral"]
    actionRequired: StrictBool
    suggestedActions: list[StrictStr]
    summary: StrictStr
    context: _ContextPayload

    _normalize = field_validator("category", "sentiment", mode="before")(_lowercase)


class _StylePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tone: str
    formality: str
    commonPhrases: list[str] = Field(default_factory=list)
    greetingStyle: str = ""
    closingStyle: str = ""
    averageLength: float = Field(default=0.0, ge=0)


@dataclass(frozen=True)
class EnrichmentOutcome:
    """Summary: Result of a classification attempt without raising.

    Importance: Lets the sync loop branch on parse versus backend failures explicitly.
    Alternatives: Catch exceptions around every classify call.
    """

    status: Literal["ok", "parse_error", "backend_unavailable"]
    result: EmailAnalysisResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass(frozen=True)
class SentSample:
    subject: str
    body: str


@dataclass(frozen=True)
class EnrichmentEngine:
    """Summary: Classifies messages, derives writing style, and drafts replies.

    Importance: Single owner of how the text-generation backend is prompted and parsed.
    Alternatives: Spread prompts across the services that need them.
    """

    ai_provider: AiProvider
    audit: AiAuditLog | None = None

    def classify(
        self, subject: str, body: str, sender: str, user_id: str | None = None
    ) -> EmailAnalysisResult:
        """Summary: Classify a message with one structured backend request.

        Importance: Produces category, priority, urgency, sentiment, actions, summary, and context.
        Alternatives: Issue one request per field.
        """

        prompt = ANALYSIS_PROMPT.format(
            sender=sender, subject=subject, body=_truncate(body)
        )
        response_text = self._call(
            prompt, "email_analysis", ANALYSIS_SYSTEM, json_mode=True, temperature=0.3, user_id=user_id
        )
        payload = _parse_json(response_text, _AnalysisPayload, "email analysis")
        return EmailAnalysisResult(
            category=payload.category,
            priority=payload.priority,
            urgency=payload.urgency,
            sentiment=payload.sentiment,
            action_required=payload.actionRequired,
            suggested_actions=[item for item in payload.suggestedActions if item.strip()],
            summary=payload.summary.strip(),
            context=EmailContext(
                type=payload.context.type,
                intent=payload.context.intent,
                tone=payload.context.tone,
            ),
        )

    def classify_outcome(
        self, subject: str, body: str, sender: str, user_id: str | None = None
    ) -> EnrichmentOutcome:
        """Summary: Classify a message and report failures as an outcome value.

        Importance: Batch callers continue past individual failures.
        Alternatives: Let the exception propagate and abort the batch.
        """

        try:
            result = self.classify(subject, body, sender, user_id=user_id)
        except EnrichmentParseError as exc:
            return EnrichmentOutcome(status="parse_error", error=str(exc))
        except GenerationError as exc:
            return EnrichmentOutcome(status="backend_unavailable", error=str(exc))
        return EnrichmentOutcome(status="ok", result=result)

    def derive_writing_style(
        self,
        sent: list[SentSample],
        limit: int = STYLE_SAMPLE_LIMIT,
        user_id: str | None = None,
    ) -> WritingStyleAnalysis:
        """Summary: Aggregate a writing-style profile across recent sent messages.

        Importance: Conditions reply drafts on the user's own voice.
        Alternatives: Fine-tune a model per user.
        """

        samples = sent[: min(limit, STYLE_SAMPLE_LIMIT)]
        if not samples:
            logger.info("No sent messages available; using neutral writing style.")
            return WritingStyleAnalysis.neutral()
        emails = "\n\n---\n\n".join(
            f"Subject: {sample.subject}\nBody: {_truncate(sample.body, 1500)}" for sample in samples
        )
        response_text = self._call(
            STYLE_PROMPT.format(emails=emails),
            "writing_style",
            STYLE_SYSTEM,
            json_mode=True,
            temperature=0.3,
            user_id=user_id,
        )
        payload = _parse_json(response_text, _StylePayload, "writing style")
        return WritingStyleAnalysis(
            tone=payload.tone,
            formality=payload.formality,
            common_phrases=list(payload.commonPhrases),
            greeting_style=payload.greetingStyle,
            closing_style=payload.closingStyle,
            average_length=payload.averageLength,
        )

    def generate_reply(
        self,
        subject: str,
        body: str,
        sender: str,
        style: WritingStyleAnalysis,
        context: str,
        user_id: str | None = None,
    ) -> str:
        """Summary: Draft a reply in the user's style.

        Importance: Returns raw text; backend failures surface to the caller unchanged.
        Alternatives: Fall back to a canned reply template.
        """

        prompt = REPLY_PROMPT.format(
            sender=sender,
            subject=subject,
            body=_truncate(body),
            tone=style.tone,
            formality=style.formality,
            greeting=style.greeting_style,
            closing=style.closing_style,
            phrases=", ".join(style.common_phrases),
            context=context,
        )
        reply = self._call(prompt, "reply", REPLY_SYSTEM, temperature=0.7, user_id=user_id)
        if not reply.strip():
            raise GenerationError("Backend returned an empty reply")
        return reply.strip()

    def _call(
        self,
        prompt: str,
        purpose: str,
        system: str,
        json_mode: bool = False,
        temperature: float = 0.7,
        user_id: str | None = None,
    ) -> str:
        try:
            response_text, latency_ms = self.ai_provider.generate_text(
                prompt, purpose, system=system, json_mode=json_mode, temperature=temperature
            )
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"{purpose} request failed: {exc}") from exc
        if self.audit:
            self.audit.record(prompt, purpose, response_text, latency_ms, user_id=user_id)
        return response_text


def _parse_json(response_text: str, schema: type[BaseModel], label: str) -> Any:
    """Summary: Parse backend output as JSON and validate it against a schema.

    Importance: Non-conforming output never reaches storage.
    Alternatives: Extract fields with regular expressions.
    """

    try:
        raw = json.loads(_strip_code_fence(response_text))
    except json.JSONDecodeError as exc:
        raise EnrichmentParseError(f"{label} response is not valid JSON") from exc
    if not isinstance(raw, dict):
        raise EnrichmentParseError(f"{label} response is not a JSON object")
    try:
        return schema.model_validate(raw)
    except ValidationError as exc:
        raise EnrichmentParseError(
            f"{label} response failed validation: {exc.error_count()} error(s)"
        ) from exc


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


def _truncate(text: str, limit: int = BODY_CHAR_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit]
