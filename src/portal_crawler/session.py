"""
Session-scoped wiring of crawl collaborators.

A CrawlSession owns the browser, solver, classifier and escalator for one
``run`` invocation and closes the browser when the session ends. Nothing
here is module-global, so tests can build sessions from fakes.
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from portal_crawler.config import CrawlConfig
from portal_crawler.escalator import FetchStrategyEscalator, LadderStep, RetryPolicy, build_ladder
from portal_crawler.infrastructure.browser import BrowserSession
from portal_crawler.utils.captcha_solver import BaseCaptchaSolver, get_solver
from portal_crawler.utils.challenge_handler import ChallengeClassifier

logger = logging.getLogger(__name__)


@dataclass
class CrawlSession:
    """Collaborators shared by every fetch in a run."""
    config: CrawlConfig
    browser: BrowserSession
    classifier: ChallengeClassifier
    solver: Optional[BaseCaptchaSolver]
    escalator: FetchStrategyEscalator
    listing_ladder: List[LadderStep]
    item_ladder: List[LadderStep]


def ladders_for(config: CrawlConfig) -> tuple:
    """Listing and item ladders; each falls back to the other kind's engine."""
    options = dict(
        step_timeout=config.step_timeout,
        settle_seconds=config.settle_seconds,
        engine_switch_delay=config.engine_switch_delay,
    )
    listing = build_ladder(config.listing_engine, config.item_engine, **options)
    item = build_ladder(config.item_engine, config.listing_engine, **options)
    if not config.headless:
        # Headed runs use visible windows on every step
        for step in listing + item:
            step.headless = False
    return listing, item


def build_solver(config: CrawlConfig) -> Optional[BaseCaptchaSolver]:
    service = (config.solver_service or "none").lower()
    if service == "2captcha":
        solver = get_solver(
            service,
            api_key=config.captcha_api_key,
            timeout_seconds=config.solver_timeout,
            poll_interval=config.solver_poll_interval,
        )
        if not solver.available:
            logger.warning("TWOCAPTCHA_API_KEY not set; puzzle solving steps will be skipped")
        return solver
    return get_solver(service)


@asynccontextmanager
async def open_session(config: CrawlConfig) -> AsyncIterator[CrawlSession]:
    """Start a browser session and wire the escalator around it."""
    browser = BrowserSession(
        navigation_timeout=config.navigation_timeout,
        content_prefix_chars=config.content_prefix_chars,
    )
    classifier = ChallengeClassifier()
    solver = build_solver(config)
    listing_ladder, item_ladder = ladders_for(config)
    escalator = FetchStrategyEscalator(
        browser=browser,
        classifier=classifier,
        ladder=item_ladder,
        solver=solver,
        retry_policy=RetryPolicy(
            max_cycles=config.max_cycles,
            cycle_backoff=config.cycle_backoff,
        ),
        artifacts_dir=config.artifacts_dir,
        settle_poll_interval=config.settle_poll_interval,
    )

    await browser.start()
    try:
        yield CrawlSession(
            config=config,
            browser=browser,
            classifier=classifier,
            solver=solver,
            escalator=escalator,
            listing_ladder=listing_ladder,
            item_ladder=item_ladder,
        )
    finally:
        await browser.close()
        if solver is not None:
            logger.info(f"Solver stats: {solver.get_stats()}")
