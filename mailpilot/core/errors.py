from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mailpilot.services.safety import SafetyAssessment


class MailPilotError(Exception):
    """Base error for MailPilot."""


class GateError(MailPilotError):
    """Feature gate denied the request."""


class KillSwitchError(GateError):
    """The generation system is halted by an operator kill switch."""


class FamilyDisabledError(GateError):
    """The capability family gate is off for this actor."""


class CapabilityDisabledError(GateError):
    """The specific capability gate is off for this actor."""


class ProviderError(MailPilotError):
    """Model provider failure that survived the retry budget."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderConfigError(ProviderError):
    """Missing or invalid provider configuration."""


class ProviderAuthError(ProviderError):
    """Provider authentication/authorization failure."""


class GenerationTimeoutError(ProviderError):
    """The per-call deadline elapsed before generation finished."""


class GenerationCancelledError(MailPilotError):
    """The caller cancelled generation before any attempt could run."""


class ValidationError(MailPilotError):
    """Structured output did not match the expected schema."""

    def __init__(self, message: str, *, payload: str | None = None) -> None:
        super().__init__(message)
        # Keep a bounded excerpt of the raw output for debugging.
        self.payload = payload[:500] if payload else payload


class SafetyViolationError(MailPilotError):
    """Primary generated content failed the safety classifier."""

    def __init__(self, message: str, *, field: str, assessment: "SafetyAssessment") -> None:
        super().__init__(message)
        self.field = field
        self.assessment = assessment


class ConstraintViolationError(MailPilotError):
    """Generated content violated a caller-supplied constraint."""

    def __init__(self, message: str, *, term: str | None, kind: str) -> None:
        super().__init__(message)
        self.term = term
        self.kind = kind
