"""Resumable crawler for study portal listings."""

__version__ = "0.1.0"

from portal_crawler.config import CrawlConfig, settings
from portal_crawler.errors import (
    CrawlError,
    ExtractionError,
    FetchBlockedError,
    FetchExhaustedError,
    InvalidTransitionError,
    PersistenceError,
    TransientFetchError,
)
from portal_crawler.models import (
    ChallengeKind,
    ChallengeOutcome,
    CrawlUnit,
    GlobalState,
    ListingPage,
    PageSnapshot,
    UnitStatus,
)
from portal_crawler.state_store import ProgressStore
from portal_crawler.escalator import (
    FetchResult,
    FetchStrategyEscalator,
    LadderStep,
    RetryPolicy,
    build_ladder,
)
from portal_crawler.orchestrator import CancellationToken, CrawlOrchestrator, RunReport
from portal_crawler.infrastructure.rate_limiter import RateGovernor, RateGovernorConfig
from portal_crawler.utils.challenge_handler import ChallengeClassifier, ChallengeRule

__all__ = [
    "CrawlConfig",
    "settings",
    "CrawlError",
    "ExtractionError",
    "FetchBlockedError",
    "FetchExhaustedError",
    "InvalidTransitionError",
    "PersistenceError",
    "TransientFetchError",
    "ChallengeKind",
    "ChallengeOutcome",
    "CrawlUnit",
    "GlobalState",
    "ListingPage",
    "PageSnapshot",
    "UnitStatus",
    "ProgressStore",
    "FetchResult",
    "FetchStrategyEscalator",
    "LadderStep",
    "RetryPolicy",
    "build_ladder",
    "CancellationToken",
    "CrawlOrchestrator",
    "RunReport",
    "RateGovernor",
    "RateGovernorConfig",
    "ChallengeClassifier",
    "ChallengeRule",
]
