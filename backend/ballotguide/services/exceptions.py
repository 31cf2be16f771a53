"""
Exception hierarchy for guide generation.

Provider status handling is adapter-agnostic: adapters raise
``ProviderHTTPError`` with the raw status code and the invoker decides
whether it is transient (rate limit, overload) or terminal.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    OTHER = "other"


class GuideError(Exception):
    """Base class for all guide generation failures."""


class ProviderError(GuideError):
    def __init__(self, message: str, provider: str = "", model: str = ""):
        self.provider = provider
        self.model = model
        super().__init__(message)


class ProviderHTTPError(ProviderError):
    """A non-success status returned by a provider endpoint."""

    def __init__(
        self,
        status_code: Optional[int],
        *,
        provider: str,
        model: str,
        body: str = "",
        retry_after: float = 0.0,
    ):
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        status = status_code if status_code is not None else "transport"
        super().__init__(
            f"{provider} API error {status} ({model}): {body[:200]}",
            provider=provider,
            model=model,
        )

    @property
    def kind(self) -> FailureKind:
        if self.status_code == 429:
            return FailureKind.RATE_LIMITED
        if self.status_code is None or self.status_code >= 500:
            return FailureKind.OVERLOADED
        return FailureKind.OTHER

    @property
    def is_transient(self) -> bool:
        return self.kind is not FailureKind.OTHER


class ProviderResponseError(ProviderError):
    """A success status whose body carries no usable text."""


class ProviderConfigError(ProviderError):
    """Unknown provider name or missing API key."""


class ProviderExhaustedError(ProviderError):
    """Every model in the fallback list failed."""

    def __init__(self, message: str, kind: FailureKind, provider: str = "", model: str = ""):
        self.kind = kind
        super().__init__(message, provider=provider, model=model)


class GuideParseError(GuideError):
    """The model output could not be parsed or repaired."""


class CacheKeyError(GuideError):
    """The guide cache key could not be derived."""


class BallotNotFoundError(GuideError):
    """No ballot data is available for the requested party."""
