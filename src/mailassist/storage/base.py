"""Summary: Storage contract consumed by MailAssist services.

Importance: Services depend on this interface and receive an implementation explicitly.
Alternatives: Share a module-level store instance across services.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from mailassist.models import (
    AiRequest,
    AiResponse,
    ChatTurn,
    CredentialPatch,
    EmailAnalysis,
    EnrichmentPatch,
    Message,
    MessageStatePatch,
    NewUser,
    StoredMessage,
    User,
)


@dataclass(frozen=True)
class StoredAiRequest:
    """Summary: AI request record joined with its response metadata.

    Importance: Supports auditing prompts, purposes, and latency.
    Alternatives: Read raw audit tables directly.
    """

    id: int
    provider: str
    model: str
    purpose: str
    timestamp: str
    latency_ms: int | None
    token_estimate: int | None


class MessageStore(ABC):
    """Summary: Keyed storage for users, messages, chat turns, and analysis records.

    Importance: Defines the exact operations the pipeline and chat engine rely on.
    Alternatives: Let services issue SQL directly.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the backing storage."""

    @abstractmethod
    def get_user(self, user_id: str) -> User | None:
        """Return a user by identifier."""

    @abstractmethod
    def get_user_by_provider_id(self, provider_id: str) -> User | None:
        """Return a user by provider-issued identifier."""

    @abstractmethod
    def get_user_by_email(self, email: str) -> User | None:
        """Return a user by email address."""

    @abstractmethod
    def create_user(self, user: NewUser) -> User:
        """Create a user and return the stored record."""

    @abstractmethod
    def update_user(self, user_id: str, patch: CredentialPatch) -> User | None:
        """Apply a credential patch and return the updated user."""

    @abstractmethod
    def message_exists(self, message_id: str) -> bool:
        """Return whether a message with the dedup key is stored."""

    @abstractmethod
    def list_messages(
        self,
        user_id: str,
        folder: str | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[StoredMessage]:
        """Return a user's messages newest-first."""

    @abstractmethod
    def get_message(self, message_id: str) -> StoredMessage | None:
        """Return a message by identifier."""

    @abstractmethod
    def create_message(
        self, user_id: str, message: Message, folder: str = "inbox"
    ) -> StoredMessage | None:
        """Persist a new message, returning None when the identifier already exists."""

    @abstractmethod
    def update_message_state(
        self, message_id: str, patch: MessageStatePatch
    ) -> StoredMessage | None:
        """Apply user-owned field changes."""

    @abstractmethod
    def apply_enrichment(self, message_id: str, patch: EnrichmentPatch) -> StoredMessage | None:
        """Apply enrichment-owned field changes."""

    @abstractmethod
    def list_chat_turns(self, user_id: str, limit: int) -> list[ChatTurn]:
        """Return a user's most recent chat turns newest-first."""

    @abstractmethod
    def create_chat_turn(
        self, user_id: str, role: str, content: str, timestamp: datetime | None = None
    ) -> ChatTurn:
        """Append a chat turn."""

    @abstractmethod
    def get_analysis(self, message_id: str) -> EmailAnalysis | None:
        """Return the latest analysis record for a message."""

    @abstractmethod
    def create_analysis(
        self,
        message_id: str,
        sentiment: str | None,
        urgency: int | None,
        action_required: bool,
        suggested_actions: list[str],
        writing_style: dict[str, Any] | None = None,
    ) -> EmailAnalysis:
        """Record a new analysis for a message."""

    @abstractmethod
    def log_ai_request(self, request: AiRequest, user_id: str | None = None) -> int:
        """Persist an AI request for auditing."""

    @abstractmethod
    def log_ai_response(self, response: AiResponse) -> int:
        """Persist an AI response for auditing."""

    @abstractmethod
    def list_ai_requests(self, limit: int, user_id: str | None = None) -> list[StoredAiRequest]:
        """Return recent AI requests newest-first."""
