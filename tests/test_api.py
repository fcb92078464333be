"""Summary: API integration tests.

Importance: Validates FastAPI endpoints against core workflows.
Alternatives: Use manual curl testing only.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from fakes import FakeMailbox, ScriptedAiProvider, analysis_json, build_config, make_message
from mailassist.api import create_app
from mailassist.app import build_services
from mailassist.errors import GenerationError, ProviderRejected, ProviderUnavailable
from mailassist.models import NewUser, User
from mailassist.storage.sqlite_store import SqliteStore


def _client(
    tmp_path: Path,
    store: SqliteStore,
    ai: ScriptedAiProvider,
    mailbox: FakeMailbox,
    **overrides: Any,
) -> TestClient:
    """Summary: Build a TestClient over services wired to in-process fakes.

    Importance: Keeps API tests offline.
    Alternatives: Run against a live server.
    """

    config = build_config(str(tmp_path / "test.db"), **overrides)
    services = build_services(config, store=store, ai_provider=ai, mailbox_factory=mailbox.factory)
    return TestClient(create_app(config, services=services))


def test_health_and_categories(
    tmp_path: Path, store: SqliteStore, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify the health and categories endpoints.

    Importance: These are the unauthenticated discovery routes.
    Alternatives: Hardcode categories in clients.
    """

    client = _client(tmp_path, store, ai, mailbox)
    assert client.get("/health").json() == {"status": "ok"}
    assert "follow-up" in client.get("/categories").json()


def test_api_syncs_and_lists_messages(
    tmp_path: Path, store: SqliteStore, user: User, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify the API syncs new messages and lists them newest-first.

    Importance: Confirms the HTTP layer wires into sync and storage.
    Alternatives: Validate only the CLI workflow.
    """

    mailbox.folders["inbox"] = [
        make_message("msg-2", subject="Budget review", minutes_ago=1),
        make_message("msg-1", subject="Team lunch", minutes_ago=30),
    ]
    client = _client(tmp_path, store, ai, mailbox)
    response = client.post(f"/emails/sync/{user.id}")
    assert response.status_code == 200
    assert response.json() == {"synced": 2, "enriched": 2, "failed": 0}
    assert client.post(f"/emails/sync/{user.id}").json()["synced"] == 0

    listed = client.get(f"/emails/{user.id}").json()
    assert [item["id"] for item in listed] == ["msg-2", "msg-1"]
    assert listed[0]["from"] == "sender@example.com"
    searched = client.get(f"/emails/{user.id}", params={"search": "budget"}).json()
    assert [item["id"] for item in searched] == ["msg-2"]

    audited = client.get("/ai/requests", params={"user_id": user.id}).json()
    assert {item["purpose"] for item in audited} == {"email_analysis"}


def test_sync_error_mapping(
    tmp_path: Path, store: SqliteStore, user: User, ai: ScriptedAiProvider
) -> None:
    """Summary: Verify sync failures map to 502, 400, 401 and 404.

    Importance: Clients distinguish outages, bad requests and expired logins.
    Alternatives: Return 500 for every failure.
    """

    unavailable = _client(
        tmp_path, store, ai, FakeMailbox(fetch_error=ProviderUnavailable("Graph down"))
    )
    assert unavailable.post(f"/emails/sync/{user.id}").status_code == 502
    rejected = _client(tmp_path, store, ai, FakeMailbox(fetch_error=ProviderRejected("bad folder")))
    assert rejected.post(f"/emails/sync/{user.id}").status_code == 400

    no_token = store.create_user(NewUser(username="N", email="n@example.com"))
    response = unavailable.post(f"/emails/sync/{no_token.id}")
    assert response.status_code == 401
    assert unavailable.post("/emails/sync/missing").status_code == 404


def test_patch_message(
    tmp_path: Path, store: SqliteStore, user: User, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify message patches validate input and push read state.

    Importance: Empty or invalid patches never reach storage.
    Alternatives: Accept arbitrary JSON updates.
    """

    store.create_message(user.id, make_message("msg-1"))
    client = _client(tmp_path, store, ai, mailbox)
    response = client.patch("/emails/message/msg-1", json={"is_read": True})
    assert response.status_code == 200
    assert response.json()["is_read"] is True
    assert mailbox.read == ["msg-1"]
    assert client.patch("/emails/message/msg-1", json={}).status_code == 400
    assert client.patch("/emails/message/missing", json={"is_read": True}).status_code == 404
    assert client.patch("/emails/message/msg-1", json={"category": "newsletter"}).status_code == 422


def test_analysis_and_enrich(
    tmp_path: Path, store: SqliteStore, user: User, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify re-enrichment over HTTP and the analysis lookup.

    Importance: A malformed classification maps to 502 and a later retry succeeds.
    Alternatives: Expose enrichment only through sync.
    """

    store.create_message(user.id, make_message("msg-1"))
    client = _client(tmp_path, store, ai, mailbox)
    assert client.get("/emails/message/msg-1/analysis").status_code == 404

    ai.replies["email_analysis"] = "not json"
    assert client.post("/emails/message/msg-1/enrich").status_code == 502

    ai.replies["email_analysis"] = analysis_json(category="meeting", priority=2)
    enriched = client.post("/emails/message/msg-1/enrich").json()
    assert enriched["message"]["category"] == "meeting"
    assert enriched["analysis"]["urgency"] == 2
    analysis = client.get("/emails/message/msg-1/analysis").json()
    assert analysis["action_required"] is True
    assert client.post("/emails/message/missing/enrich").status_code == 404


def test_reply_flow(
    tmp_path: Path, store: SqliteStore, user: User, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify reply drafting and sending over HTTP.

    Importance: Drafts and sends go through the same mailbox client as sync.
    Alternatives: Send replies directly from the client.
    """

    store.create_message(user.id, make_message("msg-1"))
    ai.replies["reply"] = "Sounds good."
    client = _client(tmp_path, store, ai, mailbox)
    response = client.post("/emails/message/msg-1/reply", json={"context": "Agree"})
    assert response.json() == {"reply": "Sounds good."}
    assert client.post("/emails/message/missing/reply", json={}).status_code == 404

    sent = client.post("/emails/message/msg-1/send-reply", json={"text": "Sounds good."})
    assert sent.json() == {"sent": True}
    assert mailbox.replies == [("msg-1", "Sounds good.")]
    new = client.post(
        f"/emails/send/{user.id}", json={"to": "kim@example.com", "subject": "Hi", "body": "Hello"}
    )
    assert new.json() == {"sent": True}


def test_chat_and_history(
    tmp_path: Path, store: SqliteStore, user: User, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify chat replies, history and backend failure mapping.

    Importance: A failed answer returns 502 yet keeps the question in history.
    Alternatives: Drop the question when the backend fails.
    """

    client = _client(tmp_path, store, ai, mailbox)
    ai.replies["chat"] = "Nothing urgent today."
    response = client.post(f"/chat/{user.id}", json={"content": "Summarize today"})
    assert response.json() == {"reply": "Nothing urgent today."}
    history = client.get(f"/chat/{user.id}").json()
    assert [turn["role"] for turn in history] == ["user", "assistant"]
    assert client.post(f"/chat/{user.id}", json={"content": ""}).status_code == 422
    assert client.post("/chat/missing", json={"content": "hi"}).status_code == 404

    ai.replies["chat"] = GenerationError("backend down")
    assert client.post(f"/chat/{user.id}", json={"content": "Again?"}).status_code == 502
    assert len(client.get(f"/chat/{user.id}").json()) == 3

    ai.replies["chat"] = AttributeError("boom")
    assert client.post(f"/chat/{user.id}", json={"content": "Once more?"}).status_code == 502
    ai.replies["chat"] = ""
    assert client.post(f"/chat/{user.id}", json={"content": "Hello?"}).status_code == 502
    assert [turn["role"] for turn in client.get(f"/chat/{user.id}").json()][-2:] == ["user", "user"]


def test_api_key_guard(
    tmp_path: Path, store: SqliteStore, user: User, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify the optional API key guards user routes but not health.

    Importance: Deployments can expose the API without open access.
    Alternatives: Rely on network isolation.
    """

    client = _client(tmp_path, store, ai, mailbox, api_key="secret")
    assert client.get("/health").status_code == 200
    assert client.get(f"/users/{user.id}").status_code == 401
    response = client.get(f"/users/{user.id}", headers={"X-API-Key": "secret"})
    assert response.status_code == 200
    assert response.json()["email"] == "avery@example.com"


def test_auth_url_and_callback_state(
    tmp_path: Path, store: SqliteStore, ai: ScriptedAiProvider, mailbox: FakeMailbox
) -> None:
    """Summary: Verify the callback rejects an unknown state token.

    Importance: Forged OAuth callbacks never reach the token exchange.
    Alternatives: Skip state validation.
    """

    client = _client(tmp_path, store, ai, mailbox)
    payload = client.get("/auth/url").json()
    assert payload["state"] in payload["url"]
    response = client.get("/auth/callback", params={"code": "abc", "state": "forged"})
    assert response.status_code == 400
