"""Summary: Command-line interface for MailAssist.

Importance: Provides a local-first entry point for login, sync, chat, and replies.
Alternatives: Build a web UI or desktop client first.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import uvicorn

from mailassist.app import build_services
from mailassist.config import AppConfig
from mailassist.errors import MailAssistError
from mailassist.mailbox import MailboxClient, MockMailboxClient
from mailassist.models import NewUser


DEMO_EMAIL = "demo@mailassist.local"


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="MailAssist CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("auth-url", help="Print the Microsoft consent URL")

    login = subparsers.add_parser("login", help="Complete login with an authorization code")
    login.add_argument("code", type=str)

    refresh = subparsers.add_parser("refresh", help="Refresh a user's access token")
    refresh.add_argument("user_id", type=str)

    sync = subparsers.add_parser("sync", help="Sync new messages for a user")
    sync.add_argument("user_id", type=str)
    sync.add_argument("--folder", choices=["inbox", "sent"], default="inbox")

    ingest_mock = subparsers.add_parser("ingest-mock", help="Sync the demo user from a fixture")
    ingest_mock.add_argument(
        "--fixture", type=str, default=str(Path("data") / "mock_mailbox.json")
    )

    list_messages = subparsers.add_parser("list-messages", help="List messages")
    list_messages.add_argument("user_id", type=str)
    list_messages.add_argument("--folder", type=str, default="inbox")
    list_messages.add_argument("--search", type=str, default=None)

    enrich = subparsers.add_parser("enrich", help="Re-run enrichment for a message")
    enrich.add_argument("message_id", type=str)

    chat = subparsers.add_parser("chat", help="Ask a question about your inbox")
    chat.add_argument("user_id", type=str)
    chat.add_argument("content", type=str)

    history = subparsers.add_parser("history", help="Show chat history")
    history.add_argument("user_id", type=str)
    history.add_argument("--limit", type=int, default=50)

    draft = subparsers.add_parser("draft-reply", help="Draft a reply in your writing style")
    draft.add_argument("message_id", type=str)
    draft.add_argument("--context", type=str, default=None)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives the user experience without a UI.
    Alternatives: Invoke services via an HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    try:
        _dispatch(args, config)
    except MailAssistError as exc:
        parser.exit(1, f"error: {exc}\n")


def _dispatch(args: argparse.Namespace, config: AppConfig) -> None:
    if args.command == "serve":
        uvicorn.run(
            "mailassist.api:build_app",
            factory=True,
            host=args.host or config.api_host,
            port=args.port or config.api_port,
        )
        return

    if args.command == "ingest-mock":
        mock = MockMailboxClient(Path(args.fixture))

        def _mock_factory(access_token: str) -> MailboxClient:
            return mock

        services = build_services(config, mailbox_factory=_mock_factory)
        user = services.store.get_user_by_email(DEMO_EMAIL) or services.store.create_user(
            NewUser(username="Demo User", email=DEMO_EMAIL, access_token="mock-token")
        )
        sent = services.sync.sync_user(user.id, folder="sent")
        inbox = services.sync.sync_user(user.id)
        print(
            f"Demo user {user.id}: synced {inbox.synced} inbox messages "
            f"({inbox.enriched} enriched) and {sent.synced} sent messages."
        )
        return

    services = build_services(config)

    if args.command == "auth-url":
        url, state = services.auth.authorization_url()
        print(url)
        print(f"state: {state}")
        return

    if args.command == "login":
        user = services.auth.complete_login(args.code)
        print(f"Logged in as {user.email} ({user.id}).")
        return

    if args.command == "refresh":
        user = services.auth.refresh_credentials(args.user_id)
        if not user:
            print("User not found.")
            return
        print(f"Refreshed credentials; expires at {user.token_expires_at}.")
        return

    if args.command == "sync":
        report = services.sync.sync_user(args.user_id, folder=args.folder)
        print(
            f"Synced {report.synced} messages "
            f"({report.enriched} enriched, {report.failed} failed)."
        )
        return

    if args.command == "list-messages":
        for message in services.messages.list_messages(
            args.user_id, folder=args.folder, search=args.search
        ):
            category = message.category or "-"
            print(f"{message.id}: [{category}/{message.priority}] {message.subject} ({message.sender})")
        return

    if args.command == "enrich":
        analysis = services.messages.reenrich(args.message_id)
        if not analysis:
            print("Message not found.")
            return
        print(f"Enriched {args.message_id}: urgency {analysis.urgency}, {analysis.sentiment}.")
        return

    if args.command == "chat":
        reply = services.chat.handle_query(args.user_id, args.content)
        print(reply if reply is not None else "User not found.")
        return

    if args.command == "history":
        for turn in services.chat.history(args.user_id, limit=args.limit):
            print(f"[{turn.timestamp.isoformat()}] {turn.role}: {turn.content}")
        return

    if args.command == "draft-reply":
        reply = services.messages.generate_reply(args.message_id, args.context)
        print(reply if reply is not None else "Message not found.")
        return


if __name__ == "__main__":
    run_cli()
