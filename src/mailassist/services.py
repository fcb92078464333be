"""Summary: Core application services for MailAssist.

Importance: Orchestrates credential flows, mailbox sync, enrichment, message actions, and chat.
Alternatives: Build a full service layer with dependency injection framework.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from mailassist.ai import AiProvider, ChatMessage, render_messages
from mailassist.audit import AiAuditLog
from mailassist.enrichment import EnrichmentEngine, SentSample
from mailassist.errors import GenerationError, ProviderError, Unauthenticated
from mailassist.mailbox import MailboxClient
from mailassist.models import (
    ChatTurn,
    CredentialPatch,
    DEFAULT_FOLDER,
    EmailAnalysis,
    EmailAnalysisResult,
    MessageStatePatch,
    NewUser,
    StoredMessage,
    User,
)
from mailassist.oauth import MicrosoftCredentialProvider, create_state_token
from mailassist.storage.base import MessageStore


logger = logging.getLogger(__name__)

MailboxFactory = Callable[[str], MailboxClient]

DEFAULT_REPLY_CONTEXT = "Please generate an appropriate reply"
CHAT_SYSTEM_PROMPT = (
    "You are an AI email assistant. You have access to the user's emails and can help them "
    "manage, understand, and respond to their messages. Be helpful, concise, and professional.\n\n"
    "Recent emails context:\n{emails}\n\n"
    "Provide helpful responses about their emails, suggest actions, and help with email management tasks."
)


def require_access_token(user: User) -> str:
    """Summary: Return a usable access token or fail with Unauthenticated.

    Importance: Sync and provider pushes never refresh credentials implicitly.
    Alternatives: Refresh transparently before every provider call.
    """

    if not user.access_token:
        raise Unauthenticated(f"User {user.id} has no mailbox credentials")
    if user.token_expires_at and user.token_expires_at <= datetime.now(timezone.utc):
        raise Unauthenticated(f"Access token for user {user.id} has expired")
    return user.access_token


@dataclass(frozen=True)
class AuthService:
    """Summary: Runs the Microsoft login and refresh flows.

    Importance: Creates users on first login and keeps their credentials current.
    Alternatives: Delegate identity management to an external service.
    """

    store: MessageStore
    credentials: MicrosoftCredentialProvider

    def authorization_url(self, state: str | None = None) -> tuple[str, str]:
        """Summary: Build the consent URL and the state token it carries.

        Importance: Starts the login flow.
        Alternatives: Let the client build the URL.
        """

        state = state or create_state_token()
        return self.credentials.authorization_url(state), state

    def complete_login(self, code: str) -> User:
        """Summary: Exchange a code, fetch the profile, and upsert the user.

        Importance: Links a Microsoft account to a local user record.
        Alternatives: Require a separate sign-up step.
        """

        tokens = self.credentials.exchange_code(code)
        profile = self.credentials.get_profile(tokens.access_token)
        existing = self.store.get_user_by_provider_id(profile.id) or self.store.get_user_by_email(
            profile.mail
        )
        if existing:
            patch = CredentialPatch(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=tokens.expires_at,
            )
            user = self.store.update_user(existing.id, patch) or existing
            logger.info("Updated credentials for user %s.", user.id)
            return user
        user = self.store.create_user(
            NewUser(
                username=profile.display_name,
                email=profile.mail,
                provider_id=profile.id,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=tokens.expires_at,
            )
        )
        logger.info("Created user %s on first login.", user.id)
        return user

    def refresh_credentials(self, user_id: str) -> User | None:
        """Summary: Renew a user's access token with the stored refresh token.

        Importance: Explicit, caller-driven renewal; sync never calls it.
        Alternatives: Refresh automatically when a token nears expiry.
        """

        user = self.store.get_user(user_id)
        if not user:
            return None
        if not user.refresh_token:
            raise Unauthenticated(f"User {user_id} has no refresh token")
        tokens = self.credentials.refresh(user.refresh_token)
        patch = CredentialPatch(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
        )
        logger.info("Refreshed credentials for user %s.", user_id)
        return self.store.update_user(user_id, patch)


@dataclass(frozen=True)
class SyncReport:
    """Summary: Outcome counts for one sync call.

    Importance: `synced` counts newly persisted messages regardless of enrichment.
    Alternatives: Return only the synced count.
    """

    synced: int
    enriched: int
    failed: int

    def to_dict(self) -> dict[str, int]:
        return {"synced": self.synced, "enriched": self.enriched, "failed": self.failed}


@dataclass(frozen=True)
class SyncService:
    """Summary: Pulls new messages from the mailbox and enriches them.

    Importance: Implements deduplicated, failure-tolerant incremental ingestion.
    Alternatives: Use a queue-based ingestion pipeline.
    """

    store: MessageStore
    engine: EnrichmentEngine
    mailbox_factory: MailboxFactory
    page_size: int = 50
    max_pages: int = 1
    workers: int = 1

    def sync_user(self, user_id: str, folder: str = DEFAULT_FOLDER) -> SyncReport:
        """Summary: Sync one folder for a user and enrich each new message.

        Importance: Existing messages are never duplicated and enrichment failures never abort the batch.
        Alternatives: Re-import the full mailbox on every call.
        """

        user = self.store.get_user(user_id)
        if not user:
            raise Unauthenticated(f"Unknown user {user_id}")
        client = self.mailbox_factory(require_access_token(user))
        new_messages: list[StoredMessage] = []
        for page in range(max(self.max_pages, 1)):
            fetched = client.fetch_messages(folder, self.page_size, skip=page * self.page_size)
            page_new = 0
            for message in fetched:
                if self.store.message_exists(message.provider_message_id):
                    continue
                stored = self.store.create_message(user.id, message, folder=folder)
                if stored is None:
                    continue
                new_messages.append(stored)
                page_new += 1
            if len(fetched) < self.page_size or page_new == 0:
                break
        if folder != DEFAULT_FOLDER:
            logger.info("Synced %s %s messages for user %s.", len(new_messages), folder, user.id)
            return SyncReport(synced=len(new_messages), enriched=0, failed=0)
        if self.workers > 1 and len(new_messages) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                results = list(executor.map(self._enrich, new_messages))
        else:
            results = [self._enrich(message) for message in new_messages]
        enriched = sum(1 for ok in results if ok)
        report = SyncReport(
            synced=len(new_messages), enriched=enriched, failed=len(results) - enriched
        )
        logger.info(
            "Synced %s messages for user %s (%s enriched, %s failed).",
            report.synced,
            user.id,
            report.enriched,
            report.failed,
        )
        return report

    def _enrich(self, message: StoredMessage) -> bool:
        outcome = self.engine.classify_outcome(
            message.subject, message.body, message.sender, user_id=message.user_id
        )
        if not outcome.ok or outcome.result is None:
            logger.warning(
                "Enrichment failed for message %s (%s): %s",
                message.id,
                outcome.status,
                outcome.error,
            )
            return False
        record_analysis(self.store, message.id, outcome.result)
        return True


def record_analysis(
    store: MessageStore, message_id: str, result: EmailAnalysisResult
) -> EmailAnalysis:
    """Summary: Apply an enrichment result to a message and append its analysis record.

    Importance: Writes only enrichment-owned fields.
    Alternatives: Rewrite the full message row.
    """

    store.apply_enrichment(message_id, result.to_patch())
    return store.create_analysis(
        message_id,
        sentiment=result.sentiment,
        urgency=result.urgency,
        action_required=result.action_required,
        suggested_actions=result.suggested_actions,
    )


@dataclass(frozen=True)
class MessageService:
    """Summary: Message listing, user actions, analysis, and replies.

    Importance: Backs the produced surface for reading and acting on mail.
    Alternatives: Query storage directly from API handlers.
    """

    store: MessageStore
    engine: EnrichmentEngine
    mailbox_factory: MailboxFactory
    style_sample_limit: int = 20

    def list_messages(
        self, user_id: str, folder: str = DEFAULT_FOLDER, search: str | None = None
    ) -> list[StoredMessage]:
        """Summary: Return a user's messages newest-first.

        Importance: Search matches subject, sender, preview, or body case-insensitively.
        Alternatives: Use a full-text index.
        """

        return self.store.list_messages(user_id, folder=folder, search=search)

    def get_message(self, message_id: str) -> StoredMessage | None:
        return self.store.get_message(message_id)

    def update_message(self, message_id: str, patch: MessageStatePatch) -> StoredMessage | None:
        """Summary: Apply user-owned state changes and push read/flag best-effort.

        Importance: Local state is the source of truth; provider failures are logged.
        Alternatives: Fail the update when the provider rejects it.
        """

        message = self.store.get_message(message_id)
        if not message:
            return None
        updated = self.store.update_message_state(message_id, patch)
        if patch.is_read or patch.is_flagged:
            self._push_state(message, patch)
        return updated

    def get_analysis(self, message_id: str) -> EmailAnalysis | None:
        return self.store.get_analysis(message_id)

    def reenrich(self, message_id: str) -> EmailAnalysis | None:
        """Summary: Re-run enrichment for one message.

        Importance: The only way to recover a message whose sync-time enrichment failed.
        Alternatives: Retry enrichment on every sync.
        """

        message = self.store.get_message(message_id)
        if not message:
            return None
        result = self.engine.classify(
            message.subject, message.body, message.sender, user_id=message.user_id
        )
        analysis = record_analysis(self.store, message.id, result)
        logger.info("Re-enriched message %s.", message.id)
        return analysis

    def generate_reply(self, message_id: str, context: str | None = None) -> str | None:
        """Summary: Draft a reply in the user's writing style.

        Importance: Style comes from recent sent mail; generation errors propagate.
        Alternatives: Draft without style conditioning.
        """

        message = self.store.get_message(message_id)
        if not message:
            return None
        sent = self.store.list_messages(
            message.user_id, folder="sent", limit=self.style_sample_limit
        )
        style = self.engine.derive_writing_style(
            [SentSample(subject=item.subject, body=item.body) for item in sent],
            limit=self.style_sample_limit,
            user_id=message.user_id,
        )
        reply = self.engine.generate_reply(
            message.subject,
            message.body,
            message.sender,
            style,
            context or DEFAULT_REPLY_CONTEXT,
            user_id=message.user_id,
        )
        logger.info("Generated reply for message %s.", message.id)
        return reply

    def send_reply(self, message_id: str, text: str) -> bool:
        """Summary: Send a reply to a stored message through the provider.

        Importance: Returns False for unknown messages; provider errors propagate.
        Alternatives: Queue outgoing mail for later delivery.
        """

        message = self.store.get_message(message_id)
        if not message:
            return False
        client = self._client_for(message.user_id)
        if client is None:
            return False
        client.send_reply(message.id, text)
        logger.info("Sent reply to message %s.", message.id)
        return True

    def send_new_message(self, user_id: str, to: str, subject: str, body: str) -> bool:
        client = self._client_for(user_id)
        if client is None:
            return False
        client.send_new_message(to, subject, body)
        logger.info("Sent new message for user %s.", user_id)
        return True

    def _client_for(self, user_id: str) -> MailboxClient | None:
        user = self.store.get_user(user_id)
        if not user:
            return None
        return self.mailbox_factory(require_access_token(user))

    def _push_state(self, message: StoredMessage, patch: MessageStatePatch) -> None:
        try:
            client = self._client_for(message.user_id)
            if client is None:
                return
            if patch.is_read:
                client.mark_read(message.id)
            if patch.is_flagged:
                client.flag(message.id)
        except (ProviderError, Unauthenticated) as exc:
            logger.warning("Provider update failed for message %s: %s", message.id, exc)


@dataclass(frozen=True)
class ChatService:
    """Summary: Conversational assistant grounded in the user's recent mail.

    Importance: Persists every query before generation so questions are never lost.
    Alternatives: Keep chat history only in the client.
    """

    store: MessageStore
    ai_provider: AiProvider
    audit: AiAuditLog | None = None
    email_context_limit: int = 10
    history_limit: int = 20
    max_tokens: int = 500

    def handle_query(self, user_id: str, content: str) -> str | None:
        """Summary: Answer a chat query using recent emails and chat history.

        Importance: A failed generation leaves the user turn in place and propagates.
        Alternatives: Roll back the user turn on failure.
        """

        if not self.store.get_user(user_id):
            return None
        turn = self.store.create_chat_turn(user_id, "user", content)
        recent = self.store.list_chat_turns(user_id, self.history_limit + 1)
        earlier = [item for item in recent if item.id != turn.id][: self.history_limit]
        history = list(reversed(earlier))
        messages = self.build_messages(user_id, history, content)
        try:
            reply, latency_ms = self.ai_provider.generate_chat(
                messages, "chat", temperature=0.7, max_tokens=self.max_tokens
            )
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"chat request failed: {exc}") from exc
        if self.audit:
            self.audit.record(render_messages(messages), "chat", reply, latency_ms, user_id=user_id)
        if not reply.strip():
            raise GenerationError("Backend returned an empty chat reply")
        self.store.create_chat_turn(user_id, "assistant", reply)
        logger.info("Answered chat query for user %s.", user_id)
        return reply

    def history(self, user_id: str, limit: int = 50) -> list[ChatTurn]:
        """Summary: Return up to `limit` recent turns oldest-first.

        Importance: Ordered by timestamp with insertion order breaking ties.
        Alternatives: Return newest-first and let clients reverse.
        """

        return list(reversed(self.store.list_chat_turns(user_id, limit)))

    def build_messages(
        self, user_id: str, history: list[ChatTurn], content: str
    ) -> list[ChatMessage]:
        """Summary: Assemble the system instruction, history, and query.

        Importance: Recent emails from every folder, plus bounded history, form the context window.
        Alternatives: Retrieve context by semantic search.
        """

        emails = self.store.list_messages(user_id, folder=None, limit=self.email_context_limit)
        messages = [
            ChatMessage(
                role="system",
                content=CHAT_SYSTEM_PROMPT.format(emails=_format_email_context(emails)),
            )
        ]
        messages.extend(ChatMessage(role=turn.role, content=turn.content) for turn in history)
        messages.append(ChatMessage(role="user", content=content))
        return messages


def _format_email_context(emails: list[StoredMessage]) -> str:
    """Summary: Reduce messages to subject, sender, category, priority, and summary.

    Importance: Keeps prompts compact and free of full bodies.
    Alternatives: Include full message bodies.
    """

    if not emails:
        return "(no emails)"
    lines = []
    for email in emails:
        lines.append(
            f"- Subject: {email.subject} | From: {email.sender} | "
            f"Category: {email.category or 'uncategorized'} | Priority: {email.priority} | "
            f"Summary: {email.ai_summary or 'n/a'}"
        )
    return "\n".join(lines)


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Provides access to AI audit logs.

    Importance: Enables review of AI usage and outputs.
    Alternatives: Use raw database queries or log files.
    """

    store: MessageStore

    def list_requests(self, limit: int = 20, user_id: str | None = None) -> list[dict[str, Any]]:
        """Summary: Return recent AI requests.

        Importance: Supports auditing prompts and purposes.
        Alternatives: Skip AI request storage.
        """

        requests = self.store.list_ai_requests(limit, user_id=user_id)
        return [
            {
                "id": request.id,
                "provider": request.provider,
                "model": request.model,
                "purpose": request.purpose,
                "timestamp": request.timestamp,
                "latency_ms": request.latency_ms,
                "token_estimate": request.token_estimate,
            }
            for request in requests
        ]
