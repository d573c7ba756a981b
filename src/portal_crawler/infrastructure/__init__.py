"""
Infrastructure Package.

Browser automation (Playwright engines with stealth contexts) and request
pacing for the crawler.
"""

from .browser import (
    BrowserEngine,
    BrowserSession,
    STEALTH_SCRIPTS,
)
from .rate_limiter import (
    RateGovernor,
    RateGovernorConfig,
)

__all__ = [
    "BrowserEngine",
    "BrowserSession",
    "STEALTH_SCRIPTS",
    "RateGovernor",
    "RateGovernorConfig",
]
