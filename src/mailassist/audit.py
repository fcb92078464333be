"""Summary: AI audit logging helper.

Importance: Records every backend prompt and response for traceability.
Alternatives: Log requests only in observability logs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from mailassist.ai import estimate_tokens
from mailassist.models import AiRequest, AiResponse
from mailassist.storage.base import MessageStore


@dataclass(frozen=True)
class AiAuditLog:
    """Summary: Writes AI request and response pairs to the store.

    Importance: Shared by enrichment and chat so all AI usage lands in one table.
    Alternatives: Duplicate logging code in each service.
    """

    store: MessageStore
    provider_name: str
    model_name: str

    def record(
        self,
        prompt: str,
        purpose: str,
        response_text: str,
        latency_ms: int,
        user_id: str | None = None,
    ) -> int:
        """Summary: Store AI request and response metadata.

        Importance: Provides auditability for AI usage.
        Alternatives: Rely solely on logs without persistence.
        """

        request = AiRequest(
            provider=self.provider_name,
            model=self.model_name,
            prompt=prompt,
            purpose=purpose,
            timestamp=datetime.now(timezone.utc),
        )
        request_id = self.store.log_ai_request(request, user_id=user_id)
        response = AiResponse(
            request_id=request_id,
            response_text=response_text,
            latency_ms=latency_ms,
            token_estimate=estimate_tokens(response_text),
        )
        self.store.log_ai_response(response)
        return request_id
