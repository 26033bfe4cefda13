"""
Error taxonomy for bmad-chat.

Catalog errors abort session start. Provider errors are contained within a
single chat turn and trigger the offline fallback.
"""

from enum import Enum


class BmadChatError(Exception):
    """Base class for all bmad-chat errors."""


class CatalogMissing(BmadChatError):
    """Raised when the expansion-pack root or an enabled pack directory is absent."""


class AgentFileMalformed(BmadChatError):
    """An agent file could not be read or interpreted.

    Never fatal: the catalog logs it and emits a minimal record instead.
    """

    def __init__(self, filename: str, detail: str):
        super().__init__(f"Malformed agent file {filename}: {detail}")
        self.filename = filename
        self.detail = detail


class AgentNotFound(BmadChatError):
    """Raised when an agent query resolves to nothing."""

    def __init__(self, query: str):
        super().__init__(f"Agent '{query}' not found")
        self.query = query


class InvalidUsage(BmadChatError):
    """Raised when the ledger receives negative or inconsistent counters."""


class ProviderErrorKind(Enum):
    """Classification of live backend failures."""
    CREDENTIAL_INVALID = "credential_invalid"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ProviderError(BmadChatError):
    """A classified failure from a completion provider."""
    kind = ProviderErrorKind.UNKNOWN


class ProviderCredentialInvalid(ProviderError):
    kind = ProviderErrorKind.CREDENTIAL_INVALID


class ProviderQuotaExceeded(ProviderError):
    kind = ProviderErrorKind.QUOTA_EXCEEDED


class ProviderRateLimited(ProviderError):
    kind = ProviderErrorKind.RATE_LIMITED


class ProviderUnavailable(ProviderError):
    kind = ProviderErrorKind.UNAVAILABLE


class ProviderNetworkError(ProviderError):
    kind = ProviderErrorKind.NETWORK


class ProviderUnknownError(ProviderError):
    kind = ProviderErrorKind.UNKNOWN
