"""
Compliance error taxonomy.

Decisions are returned as result values; these exceptions travel between a
collaborator and the component that turns the failure into a decision, or
are raised on request via ``raise_for_block()`` / ``raise_for_gap()``.
"""
from typing import Optional


class ComplianceError(Exception):
    """Base class for every error raised by the decision engine."""


class ConfigurationError(ComplianceError):
    """A collaborator is missing credentials or endpoint configuration."""


class ExternalServiceError(ComplianceError):
    """A collaborator timed out, returned 5xx, or sent an unusable payload."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class ValidationError(ComplianceError):
    """Input rejected synchronously. The message is safe to show to the caller."""


class NotFoundError(ComplianceError):
    """The referenced verification / restriction does not exist."""


class PolicyViolation(ComplianceError):
    """A legal or geo restriction blocked the request. Terminal, never retried."""

    def __init__(self, reason: str, country: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.country = country


class ComplianceGapError(ComplianceError):
    """The user's verification tier is insufficient for the requested amount."""

    def __init__(self, reason: str, verification_required: str,
                 max_allowed_cents: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.verification_required = verification_required
        self.max_allowed_cents = max_allowed_cents
