"""Error taxonomy shared by the vault, the provider client and the pipeline.

Per-user and per-origin-group failures are caught by the pipeline and turned
into structured results. Only ConfigurationError is meant to abort a whole
invocation.
"""


class LoadScoutError(Exception):
    """Base class for all loadscout errors."""


class ConfigurationError(LoadScoutError):
    """A required secret or setting is missing or malformed."""


class ValidationError(LoadScoutError):
    """Caller input was rejected before any side effect."""


class DecryptionError(LoadScoutError):
    """Ciphertext failed integrity verification or is malformed."""


class CredentialsNotFoundError(LoadScoutError):
    """No credential record exists for the requested user."""


class ApiError(LoadScoutError):
    """Base class for load-board API failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ApiAuthError(ApiError):
    """The provider rejected the session (expired or invalid cookie)."""


class ApiRequestError(ApiError):
    """Transient network or HTTP failure; retried at the next scheduled scan."""


class ApiTimeoutError(ApiRequestError):
    """A provider call exceeded its deadline."""
