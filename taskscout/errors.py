"""Exception taxonomy.

Provider errors are recoverable: the research pipeline catches them and
takes its rule-based path. Persistence and credential errors propagate to
the caller, which records a failure or skips the affected owner.
"""

from __future__ import annotations


class TaskscoutError(Exception):
    """Base class for all Taskscout errors."""


class ConfigurationError(TaskscoutError):
    """A required setting is missing or invalid."""


class InputError(TaskscoutError):
    """Caller supplied an invalid request. ``code`` is stable for API clients."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class NotFoundError(TaskscoutError):
    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class ProviderError(TaskscoutError):
    """A search or LLM provider call failed (network, timeout, bad payload)."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class PersistenceError(TaskscoutError):
    """A storage operation failed. Carries the operation name for context."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


# ── Calendar ─────────────────────────────────────────────────────────────────


class CalendarError(TaskscoutError):
    """Base class for calendar integration failures."""


class CalendarRequestError(CalendarError):
    """Google Calendar API returned a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Google Calendar API error ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class SyncCursorExpiredError(CalendarError):
    """The stored sync token was rejected (HTTP 410); a full sync is needed."""


class WebhookRegistrationError(CalendarError):
    """Push channel could not be created or returned an unusable expiration."""


class CredentialError(CalendarError):
    """Base class for OAuth credential problems."""


class TokenRefreshError(CredentialError):
    """The OAuth token endpoint refused a refresh. ``revoked`` marks invalid_grant."""

    def __init__(self, message: str, *, revoked: bool = False) -> None:
        super().__init__(message)
        self.revoked = revoked


class CredentialMissingError(CredentialError):
    def __init__(self, owner: str) -> None:
        super().__init__(f"No calendar credential stored for owner {owner!r}")
        self.owner = owner


class CredentialRevokedError(CredentialError):
    """The refresh token no longer works. Fatal for this owner until reconnect."""

    def __init__(self, owner: str, message: str = "refresh token revoked or expired") -> None:
        super().__init__(f"{message} (owner={owner!r})")
        self.owner = owner
