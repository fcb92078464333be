"""Summary: Domain model dataclasses for MailAssist.

Importance: Defines the canonical entities shared across the mailbox client, services, and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

CATEGORIES = ("urgent", "meeting", "task", "follow-up", "informational", "spam")
SENTIMENTS = ("positive", "negative", "neutral")
CHAT_ROLES = ("user", "assistant")
DEFAULT_FOLDER = "inbox"


@dataclass(frozen=True)
class User:
    """Summary: Represents a mailbox owner and their credential reference.

    Importance: Sync and chat are always scoped to a single user.
    Alternatives: Keep credentials in a separate token table.
    """

    id: str
    username: str
    email: str
    provider_id: str | None
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class NewUser:
    """Summary: Fields required to create a user record.

    Importance: Keeps identifier and timestamp assignment inside the store.
    Alternatives: Let callers generate identifiers.
    """

    username: str
    email: str
    provider_id: str | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None


@dataclass(frozen=True)
class Message:
    """Summary: Canonical, provider-agnostic email message.

    Importance: Normalizes Graph payloads into one shape before persistence.
    Alternatives: Persist raw provider payloads and parse on read.
    """

    provider_message_id: str
    subject: str
    sender: str
    recipient: str
    body: str
    body_preview: str
    received_at: datetime
    is_read: bool = False
    is_important: bool = False
    is_flagged: bool = False


@dataclass(frozen=True)
class EmailContext:
    """Summary: Structured context derived for a message.

    Importance: Captures the type, intent, and tone labels from enrichment.
    Alternatives: Store context as free text.
    """

    type: str
    intent: str
    tone: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "intent": self.intent, "tone": self.tone}


@dataclass(frozen=True)
class StoredMessage:
    """Summary: Persisted message with ownership, folder, and enrichment fields.

    Importance: Identified by the provider message id, which is also the dedup key.
    Alternatives: Use a surrogate integer key plus a unique provider column.
    """

    id: str
    user_id: str
    subject: str
    sender: str
    recipient: str
    body: str
    body_preview: str
    received_at: datetime
    is_read: bool
    is_important: bool
    is_flagged: bool
    folder: str
    category: str | None
    priority: int
    ai_summary: str | None
    ai_context: EmailContext | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subject": self.subject,
            "from": self.sender,
            "to": self.recipient,
            "body": self.body,
            "body_preview": self.body_preview,
            "received_at": self.received_at.isoformat(),
            "is_read": self.is_read,
            "is_important": self.is_important,
            "is_flagged": self.is_flagged,
            "folder": self.folder,
            "category": self.category,
            "priority": self.priority,
            "ai_summary": self.ai_summary,
            "ai_context": self.ai_context.to_dict() if self.ai_context else None,
        }


@dataclass(frozen=True)
class MessageStatePatch:
    """Summary: Fields a user action may change on a message.

    Importance: Read, flag, and folder updates never touch enrichment-owned fields.
    Alternatives: Accept arbitrary dictionaries of column updates.
    """

    is_read: bool | None = None
    is_flagged: bool | None = None
    folder: str | None = None
    category: str | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in (self.is_read, self.is_flagged, self.folder, self.category))


@dataclass(frozen=True)
class EnrichmentPatch:
    """Summary: Fields written by the enrichment path.

    Importance: Keeps AI-derived metadata separate from user-owned state.
    Alternatives: Rewrite the full message row after classification.
    """

    category: str | None = None
    priority: int | None = None
    ai_summary: str | None = None
    ai_context: EmailContext | None = None


@dataclass(frozen=True)
class CredentialPatch:
    """Summary: Fields written when credentials are exchanged or refreshed.

    Importance: Token updates never touch identity fields.
    Alternatives: Replace the whole user record.
    """

    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: datetime | None = None


@dataclass(frozen=True)
class ChatTurn:
    """Summary: One append-only turn in a user's conversation.

    Importance: Provides history for the conversational context window.
    Alternatives: Store full transcripts as a single document.
    """

    id: str
    user_id: str
    role: str
    content: str
    timestamp: datetime

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class EmailAnalysisResult:
    """Summary: Validated output of a classification call.

    Importance: Carries everything needed to patch a message and record its analysis.
    Alternatives: Pass the raw JSON dictionary around.
    """

    category: str
    priority: int
    urgency: int
    sentiment: str
    action_required: bool
    suggested_actions: list[str]
    summary: str
    context: EmailContext

    def to_patch(self) -> EnrichmentPatch:
        return EnrichmentPatch(
            category=self.category,
            priority=self.priority,
            ai_summary=self.summary,
            ai_context=self.context,
        )


@dataclass(frozen=True)
class EmailAnalysis:
    """Summary: Stored analysis record extending a message.

    Importance: Holds sentiment, urgency, and suggested actions outside the message row.
    Alternatives: Add these columns to the messages table.
    """

    id: str
    message_id: str
    sentiment: str | None
    urgency: int | None
    action_required: bool
    suggested_actions: list[str]
    writing_style: dict[str, Any] | None
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "sentiment": self.sentiment,
            "urgency": self.urgency,
            "action_required": self.action_required,
            "suggested_actions": list(self.suggested_actions),
            "writing_style": self.writing_style,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class WritingStyleAnalysis:
    """Summary: Aggregate writing-style profile from a user's sent messages.

    Importance: Conditions generated replies on how the user actually writes.
    Alternatives: Ask the user to describe their style.
    """

    tone: str
    formality: str
    common_phrases: list[str] = field(default_factory=list)
    greeting_style: str = ""
    closing_style: str = ""
    average_length: float = 0.0

    @staticmethod
    def neutral() -> "WritingStyleAnalysis":
        """Summary: Style used when no sent messages are available.

        Importance: Avoids a backend call with an empty sample.
        Alternatives: Fail reply generation until sent mail is synced.
        """

        return WritingStyleAnalysis(
            tone="professional",
            formality="neutral",
            common_phrases=[],
            greeting_style="Hi,",
            closing_style="Best regards,",
            average_length=0.0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tone": self.tone,
            "formality": self.formality,
            "common_phrases": list(self.common_phrases),
            "greeting_style": self.greeting_style,
            "closing_style": self.closing_style,
            "average_length": self.average_length,
        }


@dataclass(frozen=True)
class AiRequest:
    """Summary: Records an AI request for audit and traceability.

    Importance: Provides visibility into prompts and provider usage.
    Alternatives: Log requests only in observability logs.
    """

    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: datetime


@dataclass(frozen=True)
class AiResponse:
    """Summary: Records an AI response paired to a request.

    Importance: Enables audit trails and future tuning based on outputs.
    Alternatives: Store only final outputs in the message or chat records.
    """

    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int
