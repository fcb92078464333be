"""Summary: Mailbox client interface and Microsoft Graph implementation.

Importance: Encapsulates remote mailbox reads and one-shot writes behind a canonical message shape.
Alternatives: Call the Graph SDK directly from services.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
import urllib.error
import urllib.parse
import urllib.request

from mailassist.errors import ProviderRejected, ProviderUnavailable
from mailassist.models import Message


logger = logging.getLogger(__name__)

GRAPH_FOLDERS = {"inbox": "inbox", "sent": "sentitems"}
GRAPH_SELECT = (
    "id,subject,from,toRecipients,body,bodyPreview,receivedDateTime,"
    "isRead,importance,flag"
)


class MailboxClient(ABC):
    """Summary: Abstract interface for a remote mailbox.

    Importance: Lets sync and message services run against Graph or fixtures.
    Alternatives: Couple services to a single provider class.
    """

    @abstractmethod
    def fetch_messages(self, folder: str, page_size: int, skip: int = 0) -> list[Message]:
        """Summary: Fetch a page of messages newest-first.

        Importance: Drives incremental sync.
        Alternatives: Use delta queries with a stored cursor.
        """

    @abstractmethod
    def mark_read(self, message_id: str) -> None:
        """Mark a remote message as read."""

    @abstractmethod
    def flag(self, message_id: str) -> None:
        """Flag a remote message."""

    @abstractmethod
    def send_reply(self, message_id: str, text: str) -> None:
        """Reply to a remote message."""

    @abstractmethod
    def send_new_message(self, to: str, subject: str, body: str) -> None:
        """Send a new message."""


class GraphMailboxClient(MailboxClient):
    """Summary: Mailbox client backed by Microsoft Graph.

    Importance: Provides OAuth-based mailbox access with a bearer token.
    Alternatives: Use IMAP with app passwords.
    """

    def __init__(self, access_token: str, base_url: str) -> None:
        """Summary: Initialize the Graph client.

        Importance: Stores the access token and API base URL for requests.
        Alternatives: Fetch tokens on demand inside each request.
        """

        self._access_token = access_token
        self._base_url = base_url.rstrip("/")

    def fetch_messages(self, folder: str, page_size: int, skip: int = 0) -> list[Message]:
        """Summary: Fetch messages from a mail folder ordered by received time.

        Importance: Supplies the candidate set for deduplicated sync.
        Alternatives: Follow @odata.nextLink cursors instead of $skip.
        """

        graph_folder = GRAPH_FOLDERS.get(folder, folder)
        params = {
            "$top": str(page_size),
            "$orderby": "receivedDateTime desc",
            "$select": GRAPH_SELECT,
        }
        if skip:
            params["$skip"] = str(skip)
        url = (
            f"{self._base_url}/me/mailFolders/{urllib.parse.quote(graph_folder)}/messages?"
            + urllib.parse.urlencode(params)
        )
        payload = self._request("GET", url) or {}
        messages = [normalize_graph_message(item) for item in payload.get("value", [])]
        logger.info("Fetched %s messages from %s.", len(messages), folder)
        return messages

    def mark_read(self, message_id: str) -> None:
        self._request("PATCH", self._message_url(message_id), {"isRead": True})

    def flag(self, message_id: str) -> None:
        self._request(
            "PATCH", self._message_url(message_id), {"flag": {"flagStatus": "flagged"}}
        )

    def send_reply(self, message_id: str, text: str) -> None:
        """Summary: Send a reply through Graph.

        Importance: Delivers drafted replies; local state does not depend on it.
        Alternatives: Create a draft and let the user send it.
        """

        self._request("POST", f"{self._message_url(message_id)}/reply", {"comment": text})

    def send_new_message(self, to: str, subject: str, body: str) -> None:
        """Summary: Send a new HTML message through Graph.

        Importance: Supports composing mail from the assistant.
        Alternatives: Use SMTP submission.
        """

        self._request(
            "POST",
            f"{self._base_url}/me/sendMail",
            {
                "message": {
                    "subject": subject,
                    "body": {"contentType": "HTML", "content": body},
                    "toRecipients": [{"emailAddress": {"address": to}}],
                }
            },
        )

    def _message_url(self, message_id: str) -> str:
        return f"{self._base_url}/me/messages/{urllib.parse.quote(message_id, safe='')}"

    def _request(
        self, method: str, url: str, body: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """Summary: Issue a Graph request and decode any JSON response.

        Importance: Maps HTTP failures onto provider errors in one place.
        Alternatives: Use a third-party HTTP client or SDK.
        """

        headers = {"Authorization": f"Bearer {self._access_token}"}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        request = urllib.request.Request(url, data=data, headers=headers, method=method)
        try:
            with urllib.request.urlopen(request, timeout=15) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8", errors="ignore")
            raise provider_error(exc.code, error_body or str(exc.reason)) from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            raise ProviderUnavailable(f"Microsoft Graph request failed: {exc}") from exc
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProviderUnavailable("Microsoft Graph returned a non-JSON response") from exc


def provider_error(status: int, detail: str) -> ProviderUnavailable | ProviderRejected:
    """Summary: Classify an HTTP status from the mailbox provider.

    Importance: Auth, throttling, and server faults are outages; other 4xx are rejections.
    Alternatives: Treat every HTTP error the same way.
    """

    message = f"Microsoft Graph request failed ({status}): {detail}"
    if status in (401, 403, 408, 429) or status >= 500:
        return ProviderUnavailable(message)
    return ProviderRejected(message)


def normalize_graph_message(payload: dict[str, Any]) -> Message:
    """Summary: Normalize a Graph message payload into a canonical Message.

    Importance: Flattens nested sender and recipient objects and flag status.
    Alternatives: Store raw Graph payloads and parse later.
    """

    message_id = payload.get("id")
    if not message_id:
        raise ValueError("Graph message payload is missing an id")
    sender = ((payload.get("from") or {}).get("emailAddress") or {}).get("address") or ""
    recipients = payload.get("toRecipients") or []
    recipient = ""
    if recipients:
        recipient = ((recipients[0] or {}).get("emailAddress") or {}).get("address") or ""
    body = (payload.get("body") or {}).get("content") or ""
    return Message(
        provider_message_id=message_id,
        subject=payload.get("subject") or "",
        sender=sender,
        recipient=recipient,
        body=body,
        body_preview=payload.get("bodyPreview") or "",
        received_at=_parse_iso_datetime(payload.get("receivedDateTime")),
        is_read=bool(payload.get("isRead", False)),
        is_important=(payload.get("importance") or "").lower() == "high",
        is_flagged=((payload.get("flag") or {}).get("flagStatus") or "") == "flagged",
    )


def _parse_iso_datetime(value: str | None) -> datetime:
    """Summary: Parse ISO datetime strings from Graph payloads.

    Importance: Normalizes timestamps for sorting and filtering.
    Alternatives: Store raw timestamp strings in the database.
    """

    if not value:
        return datetime.now(timezone.utc)
    cleaned = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError:
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MockMailboxClient(MailboxClient):
    """Summary: Serves Graph-shaped messages from a local JSON fixture.

    Importance: Supports offline demos and tests.
    Alternatives: Generate synthetic messages in code.
    """

    def __init__(self, fixture_path: Path) -> None:
        """Summary: Initialize the mock mailbox.

        Importance: Allows configurable sample data.
        Alternatives: Hardcode sample data in the class.
        """

        self._fixture_path = fixture_path
        self.sent: list[dict[str, str]] = []

    def fetch_messages(self, folder: str, page_size: int, skip: int = 0) -> list[Message]:
        data = json.loads(self._fixture_path.read_text(encoding="utf-8"))
        items = data.get(folder, []) if isinstance(data, dict) else data
        messages = sorted(
            (normalize_graph_message(item) for item in items),
            key=lambda message: message.received_at,
            reverse=True,
        )
        return messages[skip : skip + page_size]

    def mark_read(self, message_id: str) -> None:
        logger.info("Mock mailbox marked %s as read.", message_id)

    def flag(self, message_id: str) -> None:
        logger.info("Mock mailbox flagged %s.", message_id)

    def send_reply(self, message_id: str, text: str) -> None:
        self.sent.append({"reply_to": message_id, "body": text})

    def send_new_message(self, to: str, subject: str, body: str) -> None:
        self.sent.append({"to": to, "subject": subject, "body": body})
