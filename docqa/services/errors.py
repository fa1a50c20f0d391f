# =============================================================================
# Error Taxonomy
# =============================================================================
#
# Two families:
#   - Local failures (corpus, cache) that callers recover from by degrading
#     to "no context" mode.
#   - Provider failures that propagate to the route handler and become
#     user-visible errors carrying the provider's own diagnostic detail.
#
#   DocQAError
#   ├── CorpusError              — unreadable corpus directory or file
#   ├── CacheError               — malformed or incompatible snapshot
#   ├── ClientInputError         — missing required request field
#   ├── ConfigurationError       — service cannot run with the current settings
#   └── ProviderError            — upstream rejected the call
#       ├── ProviderTransportError   — network failure or timeout
#       ├── ProviderCapabilityError  — unknown/unsupported request parameter
#       └── ModelUnavailableError    — model unknown, not found, or no access
# =============================================================================

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from docqa.services.remediation import Remediation


class DocQAError(Exception):
    """Base class for all service errors."""


class CorpusError(DocQAError):
    """The corpus directory or one of its files could not be read."""


class CacheError(DocQAError):
    """A persisted snapshot is malformed or incompatible with the config."""


class ClientInputError(DocQAError):
    """The request is missing a required field."""


class ConfigurationError(DocQAError, ValueError):
    """A required setting (e.g. the provider API key) is missing."""


class ProviderError(DocQAError):
    """
    The upstream provider rejected a call.

    `detail` holds whatever the provider sent back (parsed error object when
    available, otherwise the message text) so it can be surfaced verbatim.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail if detail is not None else message


class ProviderTransportError(ProviderError):
    """Network failure or timeout before the provider answered."""


class ProviderCapabilityError(ProviderError):
    """The provider rejected one or more request parameters."""

    def __init__(
        self,
        message: str,
        *,
        remediations: tuple[Remediation, ...],
        status_code: int | None = None,
        detail: Any = None,
    ) -> None:
        super().__init__(message, status_code=status_code, detail=detail)
        self.remediations = remediations


class ModelUnavailableError(ProviderError):
    """The requested model does not exist or the key has no access to it."""
