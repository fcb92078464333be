"""Summary: Microsoft identity helpers for mailbox credentials.

Importance: Builds authorization URLs, exchanges codes, and fetches the account profile without extra dependencies.
Alternatives: Use MSAL for Python.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
import urllib.error
import urllib.parse
import urllib.request

from mailassist.config import AppConfig
from mailassist.errors import ProviderRejected, ProviderUnavailable, Unauthenticated


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Normalized OAuth token response data.

    Importance: Provides a consistent token representation for storage and refresh logic.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    token_type: str | None

    @staticmethod
    def from_response(payload: dict[str, Any]) -> "OAuthTokenResult":
        """Summary: Build an OAuthTokenResult from a token endpoint payload.

        Importance: Normalizes expiry into an absolute UTC timestamp.
        Alternatives: Keep relative expires_in values.
        """

        if not payload.get("access_token"):
            raise ProviderRejected("Token response did not include an access token")
        expires_in = payload.get("expires_in")
        expires_at = None
        if expires_in is not None:
            try:
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
            except (TypeError, ValueError):
                expires_at = None
        return OAuthTokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            token_type=payload.get("token_type"),
        )


@dataclass(frozen=True)
class AccountProfile:
    """Summary: Minimal account profile returned by Graph /me.

    Importance: Identifies the mailbox owner on login.
    Alternatives: Decode identity claims from an ID token.
    """

    id: str
    display_name: str
    mail: str


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use server-side session storage with pre-generated tokens.
    """

    return secrets.token_urlsafe(24)


@dataclass(frozen=True)
class MicrosoftCredentialProvider:
    """Summary: Credential provider for Microsoft identity and Graph profiles.

    Importance: The rest of the system treats it as an opaque source of tokens.
    Alternatives: Delegate login to an external auth service.
    """

    config: AppConfig

    @property
    def token_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.config.microsoft_tenant}/oauth2/v2.0/token"

    def authorization_url(self, state: str) -> str:
        """Summary: Build a Microsoft authorization URL.

        Importance: Starts the mailbox consent flow.
        Alternatives: Use Microsoft Graph SDK helpers.
        """

        params = {
            "client_id": self.config.microsoft_client_id,
            "redirect_uri": self.config.oauth_redirect_uri,
            "response_type": "code",
            "response_mode": "query",
            "scope": self.config.graph_scopes,
            "state": state,
        }
        return (
            f"https://login.microsoftonline.com/{self.config.microsoft_tenant}"
            "/oauth2/v2.0/authorize?" + urllib.parse.urlencode(params)
        )

    def exchange_code(self, code: str) -> OAuthTokenResult:
        """Summary: Exchange an authorization code for tokens.

        Importance: Completes the login flow.
        Alternatives: Use provider SDKs or external auth services.
        """

        response = _post_form(self.token_url, self.token_payload(code))
        return OAuthTokenResult.from_response(response)

    def refresh(self, refresh_token: str) -> OAuthTokenResult:
        """Summary: Exchange a refresh token for a new access token.

        Importance: Lets callers renew credentials explicitly.
        Alternatives: Require the user to log in again.
        """

        try:
            response = _post_form(self.token_url, self.refresh_payload(refresh_token))
        except ProviderRejected as exc:
            raise Unauthenticated(f"Token refresh rejected: {exc}") from exc
        return OAuthTokenResult.from_response(response)

    def get_profile(self, access_token: str) -> AccountProfile:
        """Summary: Fetch the signed-in account profile from Graph.

        Importance: Provides the stable provider identifier and mail address.
        Alternatives: Parse the ID token claims.
        """

        request = urllib.request.Request(
            f"{self.config.graph_base_url.rstrip('/')}/me",
            headers={"Authorization": f"Bearer {access_token}"},
            method="GET",
        )
        try:
            with urllib.request.urlopen(request, timeout=10) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise ProviderUnavailable(f"Profile request failed: {exc.code} {exc.reason}") from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            raise ProviderUnavailable(f"Profile request failed: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ProviderUnavailable("Profile response is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ProviderRejected("Profile response is not a JSON object")
        mail = payload.get("mail") or payload.get("userPrincipalName") or ""
        if not payload.get("id") or not mail:
            raise ProviderRejected("Profile response missing id or mail")
        return AccountProfile(
            id=payload["id"],
            display_name=payload.get("displayName") or mail,
            mail=mail,
        )

    def token_payload(self, code: str) -> dict[str, str]:
        """Summary: Build token request parameters for code exchange.

        Importance: Ensures required fields are present before calling the endpoint.
        Alternatives: Assemble payloads inline inside the exchange function.
        """

        self._ensure_client()
        return {
            "client_id": self.config.microsoft_client_id,
            "client_secret": self.config.microsoft_client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.config.oauth_redirect_uri,
            "scope": self.config.graph_scopes,
        }

    def refresh_payload(self, refresh_token: str) -> dict[str, str]:
        self._ensure_client()
        return {
            "client_id": self.config.microsoft_client_id,
            "client_secret": self.config.microsoft_client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
            "scope": self.config.graph_scopes,
        }

    def _ensure_client(self) -> None:
        if not self.config.microsoft_client_id or not self.config.microsoft_client_secret:
            raise ValueError("Missing OAuth client credentials for microsoft")


def _post_form(url: str, payload: dict[str, str]) -> dict[str, Any]:
    """Summary: Send a form-encoded POST request and parse JSON.

    Importance: Avoids new dependencies while supporting OAuth exchanges.
    Alternatives: Use requests or a provider SDK.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=10) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8")
        if 400 <= exc.code < 500:
            raise ProviderRejected(f"Token exchange failed: {error_body or exc.reason}") from exc
        raise ProviderUnavailable(f"Token exchange failed: {error_body or exc.reason}") from exc
    except (urllib.error.URLError, TimeoutError) as exc:
        raise ProviderUnavailable(f"Token exchange failed: {exc}") from exc
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderUnavailable("Token endpoint returned a non-JSON response") from exc
    if not isinstance(payload, dict):
        raise ProviderRejected("Token response is not a JSON object")
    return payload
