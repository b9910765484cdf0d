# directory_pipeline/errors.py
"""
Error taxonomy for the pipeline.

- InvalidURL: local validation failure. Callers skip the item.
- ProviderError: an external collaborator failed (timeout, network, non-2xx,
  quota). Retryable; batch stages log it and move on.
- NoMatch: enrichment found nothing. Expected, recorded on the Record.
- InvalidTransition: candidate state machine misuse. Loud, single operation.
- InsufficientData: a candidate cannot produce a usable Record.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by directory_pipeline."""


class InvalidURL(PipelineError, ValueError):
    """The input has no parseable host."""

    def __init__(self, value: object, detail: str = "") -> None:
        self.value = value
        message = f"Invalid URL or host: {value!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ProviderError(PipelineError):
    """An external provider call failed."""

    def __init__(self, message: str, *, provider: str = "", retryable: bool = True) -> None:
        self.provider = provider
        self.retryable = retryable
        super().__init__(f"[{provider}] {message}" if provider else message)


class InvalidResponse(ProviderError):
    """A provider answered, but with data that failed validation."""

    def __init__(self, message: str, *, provider: str = "") -> None:
        super().__init__(message, provider=provider, retryable=False)


class NoMatch(PipelineError):
    """No external listing could be verified as the same business."""


class InvalidTransition(PipelineError):
    """A candidate status change is not permitted by the state machine."""

    def __init__(self, domain: str, current: str, requested: str) -> None:
        self.domain = domain
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid transition for {domain}: {current} -> {requested}"
        )


class InsufficientData(PipelineError):
    """The candidate and its crawl output cannot produce a usable Record."""


class DuplicateRecord(PipelineError):
    """A Record with the same domain (or slug) already exists."""
