"""Exception taxonomy for access decisions and permission deployment."""

from __future__ import annotations


class AccessControlError(Exception):
    """Base class for every error raised by accessgate."""


class AccessDeniedError(AccessControlError):
    """A gate denied the principal. Raised by ``Gate.verify`` only."""

    def __init__(
        self,
        reason: str,
        fallback_path: str | None = None,
        fallback_reason: str | None = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.fallback_path = fallback_path
        self.fallback_reason = fallback_reason


class ConfigurationError(AccessControlError):
    """Malformed gate setup, missing tenant context, or an unlicensed deployment."""


class NotFoundError(AccessControlError):
    """A referenced role, surface, feature or template does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ConflictError(AccessControlError):
    """A permission code already exists with a different source."""

    def __init__(self, code: str, existing_source: str) -> None:
        super().__init__(
            f"Permission {code} already exists with source '{existing_source}'"
        )
        self.code = code
        self.existing_source = existing_source


class TransientError(AccessControlError):
    """The underlying store failed; retrying is the caller's decision."""
