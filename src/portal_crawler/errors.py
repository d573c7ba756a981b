"""
Exception hierarchy for the crawler.

Errors fall into four families:
- transient: a fetch step failed (navigation error, timeout, missing DOM);
  retried inside the escalation ladder
- blocked: the site refused the client outright; the attempt chain stops
- exhausted: every ladder step failed within the retry budget
- persistence: progress could not be written to disk; fatal to the process
"""
from typing import Any, List, Optional


class CrawlError(Exception):
    """Base class for all crawler errors."""


class TransientFetchError(CrawlError):
    """A single fetch step failed in a way that a later step may not."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class ExtractionError(TransientFetchError):
    """Expected content was not present on an otherwise clear page."""


class FetchBlockedError(CrawlError):
    """Raised when a page is classified as a hard block."""

    def __init__(self, url: str, outcome: Any = None):
        self.url = url
        self.outcome = outcome
        indicator = getattr(outcome, "indicator", None)
        token = getattr(outcome, "token", None)
        message = f"Blocked at {url}"
        if indicator:
            message += f" ({indicator})"
        if token:
            message += f" [ray {token}]"
        super().__init__(message)


class FetchExhaustedError(CrawlError):
    """Raised when every step of the escalation ladder has failed."""

    def __init__(self, url: str, attempts: Optional[List[Any]] = None):
        self.url = url
        self.attempts = attempts or []
        last = self.attempts[-1] if self.attempts else None
        detail = f": last step {last.step} -> {last.result}" if last else ""
        super().__init__(
            f"Fetch exhausted for {url} after {len(self.attempts)} attempts{detail}"
        )


class PersistenceError(CrawlError):
    """Progress state could not be written durably."""


class InvalidTransitionError(CrawlError):
    """A crawl unit was asked to move to a status it cannot reach."""

    def __init__(self, current: Any, requested: Any):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot transition from {getattr(current, 'value', current)} "
            f"to {getattr(requested, 'value', requested)}"
        )
