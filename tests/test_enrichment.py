"""Summary: Tests for the AI enrichment engine.

Importance: Ensures classification output is validated and failures are typed.
Alternatives: Trust backend output without validation.
"""

from __future__ import annotations

import json

import pytest

from fakes import ScriptedAiProvider, analysis_json
from mailassist.audit import AiAuditLog
from mailassist.enrichment import EnrichmentEngine, SentSample
from mailassist.errors import EnrichmentParseError, GenerationError
from mailassist.models import EmailContext, User, WritingStyleAnalysis
from mailassist.storage.sqlite_store import SqliteStore


def test_classify_returns_validated_result(ai: ScriptedAiProvider) -> None:
    """Summary: Verify a well-formed response becomes an EmailAnalysisResult.

    Importance: This is the happy path for sync-time enrichment.
    Alternatives: Return the raw dictionary.
    """

    ai.replies["email_analysis"] = analysis_json(category="Follow-Up", priority=4)
    result = EnrichmentEngine(ai_provider=ai).classify("Status?", "Any update?", "kim@example.com")
    assert result.category == "follow-up"
    assert result.priority == 4
    assert result.urgency == 4
    assert result.action_required is True
    assert result.suggested_actions == ["Reply to sender"]
    assert result.context == EmailContext(type="request", intent="follow-up", tone="professional")
    patch = result.to_patch()
    assert patch.category == "follow-up"
    assert patch.ai_summary == "Sender asks for a status update."
    call = ai.calls[0]
    assert call.json_mode is True
    assert call.temperature == 0.3
    assert call.messages[0].role == "system"
    assert "From: kim@example.com" in call.messages[-1].content


def test_classify_accepts_fenced_json(ai: ScriptedAiProvider) -> None:
    """Summary: Verify JSON wrapped in a markdown fence is accepted.

    Importance: Some backends fence JSON even in JSON mode.
    Alternatives: Reject fenced output.
    """

    ai.replies["email_analysis"] = f"```json\n{analysis_json()}\n```"
    assert EnrichmentEngine(ai_provider=ai).classify("s", "b", "f").category == "task"


@pytest.mark.parametrize(
    "reply",
    [
        "not json at all",
        "[1, 2, 3]",
        analysis_json(category="newsletter"),
        analysis_json(priority=9),
        analysis_json(sentiment="angry"),
        analysis_json(priority="5"),
        analysis_json(priority=4.0),
        analysis_json(urgency=True),
        analysis_json(actionRequired="yes"),
        analysis_json(actionRequired=1),
        analysis_json(suggestedActions=[1, 2]),
        json.dumps({"category": "task", "priority": 2}),
    ],
)
def test_classify_rejects_malformed_output(ai: ScriptedAiProvider, reply: str) -> None:
    """Summary: Verify malformed or out-of-range classifications raise EnrichmentParseError.

    Importance: Invalid values never reach storage and are not coerced.
    Alternatives: Clamp or coerce values.
    """

    ai.replies["email_analysis"] = reply
    with pytest.raises(EnrichmentParseError):
        EnrichmentEngine(ai_provider=ai).classify("s", "b", "f")


def test_classify_outcome_reports_status(ai: ScriptedAiProvider) -> None:
    """Summary: Verify failures become explicit outcome values.

    Importance: The sync loop branches on status instead of catching exceptions.
    Alternatives: Let exceptions propagate into the batch.
    """

    engine = EnrichmentEngine(ai_provider=ai)
    ai.replies["email_analysis"] = analysis_json()
    assert engine.classify_outcome("s", "b", "f").ok
    ai.replies["email_analysis"] = "{broken"
    outcome = engine.classify_outcome("s", "b", "f")
    assert outcome.status == "parse_error"
    assert outcome.result is None
    ai.replies["email_analysis"] = GenerationError("backend down")
    assert engine.classify_outcome("s", "b", "f").status == "backend_unavailable"


def test_unexpected_backend_exception_becomes_generation_error(ai: ScriptedAiProvider) -> None:
    """Summary: Verify unexpected backend exceptions are wrapped in GenerationError.

    Importance: Callers only handle the typed backend errors.
    Alternatives: Let arbitrary exceptions escape.
    """

    ai.replies["reply"] = RuntimeError("socket closed")
    with pytest.raises(GenerationError):
        EnrichmentEngine(ai_provider=ai).generate_reply(
            "s", "b", "f", WritingStyleAnalysis.neutral(), "context"
        )


def test_writing_style_without_samples_skips_backend(ai: ScriptedAiProvider) -> None:
    """Summary: Verify an empty sample list returns the neutral style.

    Importance: No backend call is spent when there is nothing to learn from.
    Alternatives: Ask the backend anyway.
    """

    style = EnrichmentEngine(ai_provider=ai).derive_writing_style([])
    assert style == WritingStyleAnalysis.neutral()
    assert ai.calls == []


def test_writing_style_caps_samples_and_parses(ai: ScriptedAiProvider) -> None:
    """Summary: Verify style analysis caps its samples and parses the response.

    Importance: Prompts stay bounded for large sent folders.
    Alternatives: Send every sent message.
    """

    ai.replies["writing_style"] = json.dumps(
        {
            "tone": "casual",
            "formality": "informal",
            "commonPhrases": ["Cheers"],
            "greetingStyle": "Hey,",
            "closingStyle": "Cheers,",
            "averageLength": 42,
        }
    )
    samples = [SentSample(subject=f"Subject {index}", body="Body") for index in range(30)]
    style = EnrichmentEngine(ai_provider=ai).derive_writing_style(samples)
    assert style.tone == "casual"
    assert style.common_phrases == ["Cheers"]
    assert style.average_length == 42
    prompt = ai.calls[0].messages[-1].content
    assert "Subject 19" in prompt
    assert "Subject 20" not in prompt


def test_generate_reply_uses_style_and_rejects_empty(ai: ScriptedAiProvider) -> None:
    """Summary: Verify replies follow the style and empty drafts raise.

    Importance: An empty draft is never returned as a reply.
    Alternatives: Return an empty string.
    """

    engine = EnrichmentEngine(ai_provider=ai)
    style = WritingStyleAnalysis(tone="casual", formality="informal", greeting_style="Hey,")
    ai.replies["reply"] = "  Hey Kim, sounds good.  "
    assert engine.generate_reply("Lunch", "Lunch Friday?", "kim@example.com", style, "Accept") == (
        "Hey Kim, sounds good."
    )
    prompt = ai.calls[0].messages[-1].content
    assert "Typical greeting: Hey," in prompt
    assert "Context: Accept" in prompt
    ai.replies["reply"] = "   "
    with pytest.raises(GenerationError):
        engine.generate_reply("Lunch", "Lunch Friday?", "kim@example.com", style, "Accept")


def test_backend_calls_are_audited(ai: ScriptedAiProvider, store: SqliteStore, user: User) -> None:
    """Summary: Verify classification calls are written to the audit log.

    Importance: Audit records carry the model and user.
    Alternatives: Audit only chat calls.
    """

    audit = AiAuditLog(store=store, provider_name="scripted", model_name="test-model")
    ai.replies["email_analysis"] = analysis_json()
    EnrichmentEngine(ai_provider=ai, audit=audit).classify("s", "b", "f", user_id=user.id)
    requests = store.list_ai_requests(10, user_id=user.id)
    assert [request.purpose for request in requests] == ["email_analysis"]
    assert requests[0].model == "test-model"
