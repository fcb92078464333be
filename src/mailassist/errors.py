"""Summary: Error taxonomy for MailAssist.

Importance: Lets callers distinguish credential, provider, and AI backend failures.
Alternatives: Raise RuntimeError everywhere and inspect messages.
"""

from __future__ import annotations


class MailAssistError(Exception):
    """Base class for all MailAssist failures."""


class Unauthenticated(MailAssistError):
    """Summary: Raised when a user has no usable mailbox credential.

    Importance: Surfaces missing or expired tokens without attempting a local refresh.
    Alternatives: Refresh tokens implicitly before every provider call.
    """


class ProviderError(MailAssistError):
    """Base class for remote mailbox failures."""


class ProviderUnavailable(ProviderError):
    """Summary: Raised on transport, auth, throttling, or server errors from the mailbox.

    Importance: Aborts a sync call without touching local state.
    Alternatives: Retry inside the client with backoff.
    """


class ProviderRejected(ProviderError):
    """Summary: Raised when the mailbox refuses a request, such as an invalid recipient.

    Importance: Separates caller mistakes from outages.
    Alternatives: Collapse all provider failures into one error type.
    """


class AiBackendError(MailAssistError):
    """Base class for text-generation backend failures."""


class GenerationError(AiBackendError):
    """Summary: Raised when the text-generation backend fails or returns nothing.

    Importance: Interactive reply and chat paths propagate it with no fallback text.
    Alternatives: Substitute a canned apology message.
    """


class EnrichmentParseError(AiBackendError):
    """Summary: Raised when classification output does not match the expected schema.

    Importance: Keeps malformed AI output from being written onto messages.
    Alternatives: Coerce partial payloads with default values.
    """
