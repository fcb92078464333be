"""Summary: FastAPI application for MailAssist.

Importance: Exposes HTTP endpoints for sync, message actions, replies, and chat.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mailassist.app import AppServices, build_services
from mailassist.config import AppConfig
from mailassist.errors import (
    AiBackendError,
    ProviderRejected,
    ProviderUnavailable,
    Unauthenticated,
)
from mailassist.models import CATEGORIES, MessageStatePatch, User


Category = Literal["urgent", "meeting", "task", "follow-up", "informational", "spam"]


class MessagePatchRequest(BaseModel):
    """Summary: Request payload for user-owned message updates.

    Importance: Only read, flag, folder, and category may be changed by clients.
    Alternatives: Accept arbitrary field dictionaries.
    """

    is_read: bool | None = None
    is_flagged: bool | None = None
    folder: str | None = Field(default=None, min_length=1)
    category: Category | None = None


class ReplyRequest(BaseModel):
    """Summary: Request payload for reply generation.

    Importance: Lets clients steer the draft with extra context.
    Alternatives: Generate replies without user input.
    """

    context: str | None = None


class SendReplyRequest(BaseModel):
    text: str = Field(min_length=1)


class SendMessageRequest(BaseModel):
    """Summary: Request payload for composing a new message.

    Importance: Keeps outgoing mail fields explicit.
    Alternatives: Accept a raw MIME payload.
    """

    to: str = Field(min_length=3)
    subject: str
    body: str


class ChatRequest(BaseModel):
    """Summary: Request payload for chat queries.

    Importance: Provides the central chat workflow over HTTP.
    Alternatives: Return raw search results without AI context.
    """

    content: str = Field(min_length=1)


def _user_payload(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "provider_id": user.provider_id,
        "connected": bool(user.access_token),
        "token_expires_at": user.token_expires_at.isoformat() if user.token_expires_at else None,
        "created_at": user.created_at.isoformat(),
    }


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(config: AppConfig, services: AppServices | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to MailAssist services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="MailAssist API", version="0.1.0")
    services = services or build_services(config)
    app.state.oauth_states = {}

    @app.exception_handler(Unauthenticated)
    async def _unauthenticated(request: Request, exc: Unauthenticated) -> JSONResponse:
        return _error_response(401, exc)

    @app.exception_handler(ProviderRejected)
    async def _provider_rejected(request: Request, exc: ProviderRejected) -> JSONResponse:
        return _error_response(400, exc)

    @app.exception_handler(ProviderUnavailable)
    async def _provider_unavailable(request: Request, exc: ProviderUnavailable) -> JSONResponse:
        return _error_response(502, exc)

    @app.exception_handler(AiBackendError)
    async def _ai_backend(request: Request, exc: AiBackendError) -> JSONResponse:
        return _error_response(502, exc)

    def _register_state(state: str) -> None:
        """Summary: Register an OAuth state token.

        Importance: Enables basic validation of OAuth callbacks.
        Alternatives: Store state in a database or signed cookies.
        """

        app.state.oauth_states[state] = datetime.now(timezone.utc)

    def _validate_state(state: str) -> None:
        """Summary: Validate and consume an OAuth state token.

        Importance: Reduces CSRF risks in OAuth flows.
        Alternatives: Use a dedicated session store for state.
        """

        created_at = app.state.oauth_states.pop(state, None)
        if created_at is None:
            raise HTTPException(status_code=400, detail="Invalid OAuth state")
        if datetime.now(timezone.utc) - created_at > timedelta(minutes=10):
            raise HTTPException(status_code=400, detail="OAuth state expired")

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def _require_user(user_id: str) -> User:
        user = services.store.get_user(user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint.

        Importance: Supports uptime checks in local and cloud deployments.
        Alternatives: Use a metrics endpoint only.
        """

        return {"status": "ok"}

    @app.get("/auth/url", dependencies=[Depends(require_api_key)])
    def auth_url() -> dict[str, str]:
        """Summary: Return a Microsoft consent URL with a fresh state token.

        Importance: Starts the mailbox login flow.
        Alternatives: Redirect directly to the provider.
        """

        url, state = services.auth.authorization_url()
        _register_state(state)
        return {"url": url, "state": state}

    @app.get("/auth/callback")
    def auth_callback(code: str, state: str) -> dict[str, Any]:
        """Summary: Complete the OAuth flow and upsert the user.

        Importance: Stores credentials so sync can run for the user.
        Alternatives: Track the connection without exchanging the code.
        """

        _validate_state(state)
        try:
            user = services.auth.complete_login(code)
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"user": _user_payload(user)}

    @app.post("/auth/refresh/{user_id}", dependencies=[Depends(require_api_key)])
    def auth_refresh(user_id: str) -> dict[str, Any]:
        try:
            user = services.auth.refresh_credentials(user_id)
        except ValueError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        if not user:
            raise HTTPException(status_code=404, detail="User not found")
        return {"user": _user_payload(user)}

    @app.get("/users/{user_id}", dependencies=[Depends(require_api_key)])
    def get_user(user_id: str) -> dict[str, Any]:
        return _user_payload(_require_user(user_id))

    @app.post("/emails/sync/{user_id}", dependencies=[Depends(require_api_key)])
    def sync_emails(user_id: str, folder: Literal["inbox", "sent"] = "inbox") -> dict[str, int]:
        """Summary: Sync new messages for a user.

        Importance: Pulls and enriches only messages not already stored.
        Alternatives: Sync on a background schedule.
        """

        _require_user(user_id)
        return services.sync.sync_user(user_id, folder=folder).to_dict()

    @app.get("/emails/{user_id}", dependencies=[Depends(require_api_key)])
    def list_emails(
        user_id: str, folder: str = "inbox", search: str | None = None
    ) -> list[dict[str, Any]]:
        """Summary: List a user's messages newest-first.

        Importance: Supports folder filtering and text search.
        Alternatives: Paginate with cursors.
        """

        _require_user(user_id)
        messages = services.messages.list_messages(user_id, folder=folder, search=search)
        return [message.to_dict() for message in messages]

    @app.patch("/emails/message/{message_id}", dependencies=[Depends(require_api_key)])
    def update_email(message_id: str, payload: MessagePatchRequest) -> dict[str, Any]:
        """Summary: Apply user-owned state changes to a message.

        Importance: Never touches enrichment-owned fields other than a manual category.
        Alternatives: Replace the full message record.
        """

        patch = MessageStatePatch(
            is_read=payload.is_read,
            is_flagged=payload.is_flagged,
            folder=payload.folder,
            category=payload.category,
        )
        if patch.is_empty():
            raise HTTPException(status_code=400, detail="No updatable fields provided")
        message = services.messages.update_message(message_id, patch)
        if not message:
            raise HTTPException(status_code=404, detail="Message not found")
        return message.to_dict()

    @app.get("/emails/message/{message_id}/analysis", dependencies=[Depends(require_api_key)])
    def get_analysis(message_id: str) -> dict[str, Any]:
        analysis = services.messages.get_analysis(message_id)
        if not analysis:
            raise HTTPException(status_code=404, detail="Analysis not found")
        return analysis.to_dict()

    @app.post("/emails/message/{message_id}/enrich", dependencies=[Depends(require_api_key)])
    def enrich_email(message_id: str) -> dict[str, Any]:
        """Summary: Re-run enrichment for one message.

        Importance: Recovers messages whose sync-time enrichment failed.
        Alternatives: Wait for a future re-sync.
        """

        analysis = services.messages.reenrich(message_id)
        if not analysis:
            raise HTTPException(status_code=404, detail="Message not found")
        message = services.messages.get_message(message_id)
        return {
            "message": message.to_dict() if message else None,
            "analysis": analysis.to_dict(),
        }

    @app.post("/emails/message/{message_id}/reply", dependencies=[Depends(require_api_key)])
    def generate_reply(message_id: str, payload: ReplyRequest) -> dict[str, str]:
        reply = services.messages.generate_reply(message_id, payload.context)
        if reply is None:
            raise HTTPException(status_code=404, detail="Message not found")
        return {"reply": reply}

    @app.post("/emails/message/{message_id}/send-reply", dependencies=[Depends(require_api_key)])
    def send_reply(message_id: str, payload: SendReplyRequest) -> dict[str, bool]:
        if not services.messages.send_reply(message_id, payload.text):
            raise HTTPException(status_code=404, detail="Message not found")
        return {"sent": True}

    @app.post("/emails/send/{user_id}", dependencies=[Depends(require_api_key)])
    def send_message(user_id: str, payload: SendMessageRequest) -> dict[str, bool]:
        if not services.messages.send_new_message(
            user_id, payload.to, payload.subject, payload.body
        ):
            raise HTTPException(status_code=404, detail="User not found")
        return {"sent": True}

    @app.post("/chat/{user_id}", dependencies=[Depends(require_api_key)])
    def chat(user_id: str, payload: ChatRequest) -> dict[str, str]:
        """Summary: Answer a chat query for a user.

        Importance: The query is persisted even when generation fails.
        Alternatives: Stream tokens over a websocket.
        """

        reply = services.chat.handle_query(user_id, payload.content)
        if reply is None:
            raise HTTPException(status_code=404, detail="User not found")
        return {"reply": reply}

    @app.get("/chat/{user_id}", dependencies=[Depends(require_api_key)])
    def chat_history(user_id: str, limit: int = 50) -> list[dict[str, str]]:
        _require_user(user_id)
        return [turn.to_dict() for turn in services.chat.history(user_id, limit=limit)]

    @app.get("/ai/requests", dependencies=[Depends(require_api_key)])
    def ai_requests(limit: int = 20, user_id: str | None = None) -> list[dict[str, Any]]:
        return services.ai_audit.list_requests(limit=limit, user_id=user_id)

    @app.get("/categories")
    def categories() -> list[str]:
        return list(CATEGORIES)

    return app


def build_app() -> FastAPI:
    """Summary: Build the app from environment configuration.

    Importance: Factory target for `uvicorn --factory`.
    Alternatives: Create a module-level app at import time.
    """

    return create_app(AppConfig.from_env())
