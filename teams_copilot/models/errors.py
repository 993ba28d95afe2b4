"""
Exception taxonomy for the turn concurrency controller and the outbound API layer.

Lease errors:
- LeaseContentionError: another instance is processing a turn for the conversation.
  Expected; the user is asked to wait.
- StoreUnavailableError: the lease store failed (network, auth, unexpected response).
  Fatal for acquire, logged and swallowed for release.
- BlobNotFoundError: the lease blob does not exist yet. Handled inside the lease manager.

HTTP errors:
- TerminalHttpError: a request that will not be retried again, tagged with the
  reason (HttpFailureKind) instead of one subclass per reason.
- MissingAuthHeadersError: no auth headers could be retrieved for a request.
"""
from enum import Enum
from typing import Optional


class LeaseError(Exception):
    """Base class for conversation lease failures."""

    def __init__(
        self,
        message: str,
        conversation_key: Optional[str] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.conversation_key = conversation_key
        self.error_code = error_code


class LeaseContentionError(LeaseError):
    """A live lease is already held for the conversation."""


class StoreUnavailableError(LeaseError):
    """The lease store could not complete the operation."""


class BlobNotFoundError(LeaseError):
    """The lease blob for the conversation has not been created yet."""


class ApiProviderError(Exception):
    """Base class for outbound API failures."""


class MissingAuthHeadersError(ApiProviderError):
    """No authorization headers were available for a non-token request."""


class HttpFailureKind(str, Enum):
    """Why an outbound request failed for good."""
    NON_RETRYABLE = "non_retryable"          # status outside the retryable set
    RETRIES_EXHAUSTED = "retries_exhausted"  # retryable status, attempts used up
    TRANSPORT = "transport"                  # no response received


class TerminalHttpError(ApiProviderError):
    """An outbound request failed and will not be retried."""

    def __init__(
        self,
        kind: HttpFailureKind,
        url: str,
        status_code: Optional[int] = None,
        message: str = "",
        attempts: int = 1
    ):
        super().__init__(message or f"Request to {url} failed ({kind.value}, status={status_code})")
        self.kind = kind
        self.url = url
        self.status_code = status_code
        self.attempts = attempts

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class ActionParameterError(ValueError):
    """Parameters predicted for a DO command failed validation."""

    def __init__(self, action: str, details: str):
        super().__init__(f"Invalid parameters for action '{action}': {details}")
        self.action = action
        self.details = details
