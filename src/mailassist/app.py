"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from mailassist.ai import AiProvider, AiProviderFactory
from mailassist.audit import AiAuditLog
from mailassist.config import AppConfig
from mailassist.enrichment import EnrichmentEngine
from mailassist.mailbox import GraphMailboxClient, MailboxClient, MockMailboxClient
from mailassist.oauth import MicrosoftCredentialProvider
from mailassist.services import (
    AiAuditService,
    AuthService,
    ChatService,
    MailboxFactory,
    MessageService,
    SyncService,
)
from mailassist.storage.base import MessageStore
from mailassist.storage.sqlite_store import SqliteStore


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for MailAssist.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    auth: AuthService
    sync: SyncService
    messages: MessageService
    chat: ChatService
    ai_audit: AiAuditService
    store: MessageStore
    config: AppConfig


def build_mailbox_factory(config: AppConfig) -> MailboxFactory:
    """Summary: Choose how mailbox clients are constructed from an access token.

    Importance: Lets demos run against a fixture without touching Graph.
    Alternatives: Hardcode the Graph client in services.
    """

    if config.mailbox_provider == "mock":
        mock = MockMailboxClient(Path(config.mock_mailbox_path))

        def _mock_factory(access_token: str) -> MailboxClient:
            return mock

        return _mock_factory

    def _graph_factory(access_token: str) -> MailboxClient:
        return GraphMailboxClient(access_token, config.graph_base_url)

    return _graph_factory


def build_services(
    config: AppConfig,
    store: MessageStore | None = None,
    ai_provider: AiProvider | None = None,
    mailbox_factory: MailboxFactory | None = None,
) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path; tests inject fakes through the keyword arguments.
    Alternatives: Instantiate services directly within each entrypoint.
    """

    if store is None:
        store = SqliteStore(config.db_path)
        store.initialize()
    ai_provider = ai_provider or AiProviderFactory(config).build()
    mailbox_factory = mailbox_factory or build_mailbox_factory(config)
    audit = AiAuditLog(store=store, provider_name=config.ai_provider, model_name=config.model_name)
    engine = EnrichmentEngine(ai_provider=ai_provider, audit=audit)
    return AppServices(
        auth=AuthService(store=store, credentials=MicrosoftCredentialProvider(config)),
        sync=SyncService(
            store=store,
            engine=engine,
            mailbox_factory=mailbox_factory,
            page_size=config.sync_page_size,
            max_pages=config.sync_max_pages,
            workers=config.enrichment_workers,
        ),
        messages=MessageService(
            store=store,
            engine=engine,
            mailbox_factory=mailbox_factory,
            style_sample_limit=config.style_sample_limit,
        ),
        chat=ChatService(
            store=store,
            ai_provider=ai_provider,
            audit=audit,
            email_context_limit=config.chat_email_context_limit,
            history_limit=config.chat_history_limit,
            max_tokens=config.chat_max_tokens,
        ),
        ai_audit=AiAuditService(store=store),
        store=store,
        config=config,
    )
