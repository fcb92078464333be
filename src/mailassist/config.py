"""Summary: Application configuration for MailAssist.

Importance: Microsoft, Graph, backend, sync, and chat settings resolve the same way for the CLI and the API.
Alternatives: Use pydantic-settings.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, storage, and pipeline limits.

    Importance: Services receive limits and credentials from here instead of reading the environment.
    Alternatives: Pass individual settings through every constructor.
    """

    db_path: str
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    ollama_url: str
    ollama_model: str
    api_host: str
    api_port: int
    api_key: str
    microsoft_client_id: str
    microsoft_client_secret: str
    microsoft_tenant: str
    oauth_redirect_uri: str
    graph_base_url: str
    graph_scopes: str
    mailbox_provider: str
    mock_mailbox_path: str
    sync_page_size: int
    sync_max_pages: int
    enrichment_workers: int
    chat_email_context_limit: int
    chat_history_limit: int
    chat_max_tokens: int
    style_sample_limit: int

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Environment variables win over .env, which wins over defaults.json.
        Alternatives: Read only environment variables.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("MAILASSIST_DB_PATH", defaults["db_path"]),
            ai_provider=os.getenv("MAILASSIST_AI_PROVIDER", defaults["ai_provider"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults["ollama_model"]),
            api_host=os.getenv("MAILASSIST_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("MAILASSIST_API_PORT", defaults["api_port"])),
            api_key=os.getenv("MAILASSIST_API_KEY", defaults["api_key"]),
            microsoft_client_id=os.getenv("MICROSOFT_CLIENT_ID", defaults["microsoft_client_id"]),
            microsoft_client_secret=os.getenv(
                "MICROSOFT_CLIENT_SECRET", defaults["microsoft_client_secret"]
            ),
            microsoft_tenant=os.getenv("MICROSOFT_TENANT", defaults["microsoft_tenant"]),
            oauth_redirect_uri=os.getenv(
                "MAILASSIST_OAUTH_REDIRECT_URI", defaults["oauth_redirect_uri"]
            ),
            graph_base_url=os.getenv("MICROSOFT_GRAPH_BASE_URL", defaults["graph_base_url"]),
            graph_scopes=os.getenv("MICROSOFT_GRAPH_SCOPES", defaults["graph_scopes"]),
            mailbox_provider=os.getenv("MAILASSIST_MAILBOX_PROVIDER", defaults["mailbox_provider"]),
            mock_mailbox_path=os.getenv(
                "MAILASSIST_MOCK_MAILBOX_PATH", defaults["mock_mailbox_path"]
            ),
            sync_page_size=int(os.getenv("MAILASSIST_SYNC_PAGE_SIZE", defaults["sync_page_size"])),
            sync_max_pages=int(os.getenv("MAILASSIST_SYNC_MAX_PAGES", defaults["sync_max_pages"])),
            enrichment_workers=int(
                os.getenv("MAILASSIST_ENRICHMENT_WORKERS", defaults["enrichment_workers"])
            ),
            chat_email_context_limit=int(
                os.getenv(
                    "MAILASSIST_CHAT_EMAIL_CONTEXT_LIMIT", defaults["chat_email_context_limit"]
                )
            ),
            chat_history_limit=int(
                os.getenv("MAILASSIST_CHAT_HISTORY_LIMIT", defaults["chat_history_limit"])
            ),
            chat_max_tokens=int(os.getenv("MAILASSIST_CHAT_MAX_TOKENS", defaults["chat_max_tokens"])),
            style_sample_limit=int(
                os.getenv("MAILASSIST_STYLE_SAMPLE_LIMIT", defaults["style_sample_limit"])
            ),
        )

    @property
    def model_name(self) -> str:
        """Summary: Resolve the model name for the configured AI provider.

        Importance: Keeps audit records consistent with the active backend.
        Alternatives: Store the model name as its own setting.
        """

        if self.ai_provider == "openai":
            return self.openai_model
        if self.ai_provider == "ollama":
            return self.ollama_model
        return "mock"


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Every setting has a documented default in config/defaults.json.
    Alternatives: Inline defaults in AppConfig.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Microsoft client secrets and API keys stay out of the repository.
    Alternatives: Use python-dotenv.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())
