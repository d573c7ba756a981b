"""
Escalating fetch strategy.

A URL is fetched by walking a ladder of increasingly expensive strategies
until one yields a clear page that the caller's handler can process:

    1. primary engine, headless
    2. primary engine, headless, solve a visible puzzle widget
    3. primary engine, visible window
    4. alternate engine, headless
    5. alternate engine, headless, with solving

Each step is tried once per cycle, under a hard timeout. A hard block ends
the whole attempt chain at once; challenges, timeouts and handler failures
move on to the next step. When the retry budget is spent the fetch raises
FetchExhaustedError carrying the attempt log.

Attempt state lives only for the duration of one ``fetch`` call.
"""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from portal_crawler.errors import (
    ExtractionError,
    FetchBlockedError,
    FetchExhaustedError,
    TransientFetchError,
)
from portal_crawler.models import ChallengeKind, ChallengeOutcome, PageSnapshot
from portal_crawler.utils.captcha_solver import BaseCaptchaSolver, CaptchaType

logger = logging.getLogger(__name__)

Handler = Callable[[PageSnapshot], Awaitable[Any]]


@dataclass
class LadderStep:
    """One fetch strategy in the escalation ladder."""
    name: str
    engine: str
    headless: bool = True
    solve_puzzles: bool = False
    timeout: float = 120.0  # Hard cap for the whole step (seconds)
    settle_seconds: float = 0.0  # Time allowed for a challenge to clear itself
    delay_before: float = 0.0  # Pause before the step, e.g. after an engine switch


@dataclass
class RetryPolicy:
    """How many times the full ladder may be walked for one URL."""
    max_cycles: int = 1
    cycle_backoff: float = 10.0  # Pause between cycles (seconds)


@dataclass
class AttemptRecord:
    """Outcome of one ladder step."""
    cycle: int
    step: str
    result: str  # clear, challenge, blocked, timeout, error, extraction_failed, skipped
    detail: Optional[str] = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "cycle": self.cycle,
            "step": self.step,
            "result": self.result,
            "detail": self.detail,
            "duration": round(self.duration, 2),
        }


@dataclass
class FetchResult:
    """A successful fetch: the handler's value and how it was obtained."""
    url: str
    value: Any
    step: LadderStep
    outcome: ChallengeOutcome
    attempts: List[AttemptRecord] = field(default_factory=list)


def build_ladder(
    primary: str,
    alternate: str,
    step_timeout: float = 120.0,
    settle_seconds: float = 15.0,
    engine_switch_delay: float = 5.0,
) -> List[LadderStep]:
    """Build the default five-step ladder for a primary/alternate engine pair."""
    return [
        LadderStep(
            name=f"{primary}-headless",
            engine=primary,
            timeout=step_timeout,
            settle_seconds=settle_seconds,
        ),
        LadderStep(
            name=f"{primary}-headless-solve",
            engine=primary,
            solve_puzzles=True,
            timeout=step_timeout,
            settle_seconds=settle_seconds,
        ),
        LadderStep(
            name=f"{primary}-visible",
            engine=primary,
            headless=False,
            timeout=step_timeout,
            settle_seconds=settle_seconds,
        ),
        LadderStep(
            name=f"{alternate}-headless",
            engine=alternate,
            timeout=step_timeout,
            settle_seconds=settle_seconds,
            delay_before=engine_switch_delay,
        ),
        LadderStep(
            name=f"{alternate}-headless-solve",
            engine=alternate,
            solve_puzzles=True,
            timeout=step_timeout,
            settle_seconds=settle_seconds,
        ),
    ]


class _StepChallenged(Exception):
    """A step ended on an unresolved challenge."""

    def __init__(self, outcome: ChallengeOutcome):
        super().__init__(outcome.indicator or "challenge")
        self.outcome = outcome


class FetchStrategyEscalator:
    """
    Runs the escalation ladder for single URLs.

    Args:
        browser: BrowserSession (or compatible) used to load pages
        classifier: ChallengeClassifier (or compatible)
        ladder: Default ladder, used when ``fetch`` is not given one
        solver: Optional puzzle solver; solving steps are skipped without it
        retry_policy: Ladder repetition budget
        artifacts_dir: Where to drop screenshots/HTML on block or exhaustion
        settle_poll_interval: Seconds between checks while a challenge settles
        sleep: Injectable sleep for tests
    """

    def __init__(
        self,
        browser,
        classifier,
        ladder: Sequence[LadderStep],
        solver: Optional[BaseCaptchaSolver] = None,
        retry_policy: Optional[RetryPolicy] = None,
        artifacts_dir: Optional[str] = None,
        settle_poll_interval: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not ladder:
            raise ValueError("Escalation ladder must have at least one step")
        self.browser = browser
        self.classifier = classifier
        self.ladder = list(ladder)
        self.solver = solver
        self.retry_policy = retry_policy or RetryPolicy()
        self.artifacts_dir = Path(artifacts_dir) if artifacts_dir else None
        self.settle_poll_interval = settle_poll_interval
        self._sleep = sleep

    @property
    def can_solve(self) -> bool:
        return self.solver is not None and self.solver.available

    async def fetch(
        self,
        url: str,
        handler: Handler,
        ladder: Optional[Sequence[LadderStep]] = None,
    ) -> FetchResult:
        """
        Fetch ``url`` and run ``handler`` on the first clear page.

        The handler runs inside the step that produced the page; if it
        raises ExtractionError or TransientFetchError the step counts as
        failed and the ladder continues.

        Raises:
            FetchBlockedError: Page classified as a hard block (no further steps)
            FetchExhaustedError: Every step of every cycle failed
        """
        ladder = list(ladder) if ladder is not None else self.ladder
        attempts: List[AttemptRecord] = []
        max_cycles = max(1, self.retry_policy.max_cycles)

        for cycle in range(1, max_cycles + 1):
            if cycle > 1 and self.retry_policy.cycle_backoff > 0:
                logger.info(f"Retrying ladder for {url} (cycle {cycle}/{max_cycles})")
                await self._sleep(self.retry_policy.cycle_backoff)

            for index, step in enumerate(ladder):
                if step.solve_puzzles and not self.can_solve:
                    attempts.append(AttemptRecord(cycle, step.name, "skipped", "no solver"))
                    continue

                if step.delay_before > 0:
                    await self._sleep(step.delay_before)

                last_step = cycle == max_cycles and index == len(ladder) - 1
                loop = asyncio.get_running_loop()
                started = loop.time()

                def record(result: str, detail: Optional[str] = None) -> None:
                    attempts.append(AttemptRecord(
                        cycle, step.name, result, detail, loop.time() - started
                    ))

                try:
                    value, outcome, final_url = await asyncio.wait_for(
                        self._attempt(url, step, handler, capture=last_step),
                        timeout=step.timeout,
                    )
                except FetchBlockedError as e:
                    record("blocked", str(e))
                    logger.warning(f"{url} blocked on {step.name}: {e}")
                    raise
                except asyncio.TimeoutError:
                    record("timeout", f"step exceeded {step.timeout}s")
                    logger.info(f"{url}: {step.name} timed out")
                    continue
                except _StepChallenged as e:
                    record("challenge", e.outcome.indicator)
                    logger.info(
                        f"{url}: challenge persisted on {step.name} ({e.outcome.indicator}, "
                        f"clearance cookie={e.outcome.has_clearance_cookie})"
                    )
                    continue
                except ExtractionError as e:
                    record("extraction_failed", str(e))
                    logger.info(f"{url}: extraction failed on {step.name}: {e}")
                    continue
                except TransientFetchError as e:
                    record("error", str(e))
                    logger.info(f"{url}: {step.name} failed: {e}")
                    continue

                record("clear", final_url)
                logger.debug(f"{url} fetched via {step.name}")
                return FetchResult(
                    url=url, value=value, step=step, outcome=outcome, attempts=attempts
                )

        logger.warning(f"{url}: escalation ladder exhausted after {len(attempts)} attempts")
        raise FetchExhaustedError(url, attempts)

    async def _attempt(
        self,
        url: str,
        step: LadderStep,
        handler: Handler,
        capture: bool = False,
    ) -> Tuple[Any, ChallengeOutcome, str]:
        snapshot = await self.browser.navigate(url, engine=step.engine, headless=step.headless)
        try:
            outcome = self.classifier.classify(snapshot)

            if outcome.kind == ChallengeKind.CHALLENGE and step.solve_puzzles and outcome.solvable:
                if await self._solve(snapshot, outcome):
                    snapshot, outcome = await self._recheck(snapshot, outcome)

            if outcome.kind == ChallengeKind.CHALLENGE and step.settle_seconds > 0:
                snapshot, outcome = await self._settle(snapshot, outcome, step)

            if outcome.kind == ChallengeKind.BLOCKED:
                await self._capture(snapshot, "blocked")
                raise FetchBlockedError(url, outcome)

            if outcome.kind == ChallengeKind.CHALLENGE:
                if capture:
                    await self._capture(snapshot, "exhausted")
                raise _StepChallenged(outcome)

            try:
                value = await handler(snapshot)
            except TransientFetchError:
                if capture:
                    await self._capture(snapshot, "exhausted")
                raise
            return value, outcome, snapshot.url
        finally:
            await self.browser.release(snapshot)

    async def _solve(self, snapshot: PageSnapshot, outcome: ChallengeOutcome) -> bool:
        """Ask the solver for a token and inject it. Failure is not fatal.

        Returns True when the page should be re-read.
        """
        result = await self.solver.solve(CaptchaType.TURNSTILE, outcome.site_key, snapshot.url)
        if not result.solved:
            logger.info(f"Solver gave no token for {snapshot.url}: {result.error}")
            return False
        try:
            return await self.solver.submit(snapshot, result.solution)
        except TransientFetchError as e:
            # A navigation during injection usually means the token was accepted
            logger.info(f"Token submit interrupted on {snapshot.url}: {e}")
            return True

    async def _recheck(
        self, snapshot: PageSnapshot, outcome: ChallengeOutcome, delay: Optional[float] = None
    ) -> Tuple[PageSnapshot, ChallengeOutcome]:
        """Re-read and reclassify the page once; a failed read keeps the old outcome."""
        await self._sleep(self.settle_poll_interval if delay is None else delay)
        try:
            snapshot = await self.browser.refresh(snapshot)
        except TransientFetchError as e:
            # Usually the page is still navigating after a challenge redirect
            logger.debug(f"Refresh failed: {e}")
            return snapshot, outcome
        return snapshot, self.classifier.classify(snapshot)

    async def _settle(
        self, snapshot: PageSnapshot, outcome: ChallengeOutcome, step: LadderStep
    ) -> Tuple[PageSnapshot, ChallengeOutcome]:
        """Poll the page until the challenge resolves or the settle time runs out."""
        waited = 0.0
        while outcome.kind == ChallengeKind.CHALLENGE and waited < step.settle_seconds:
            interval = min(self.settle_poll_interval, step.settle_seconds - waited)
            snapshot, outcome = await self._recheck(snapshot, outcome, interval)
            waited += interval
        return snapshot, outcome

    async def _capture(self, snapshot: PageSnapshot, label: str) -> None:
        """Best-effort screenshot and HTML dump for later diagnosis."""
        if self.artifacts_dir is None or snapshot.page is None:
            return
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        slug = re.sub(r"[^A-Za-z0-9]+", "_", snapshot.url)[-80:].strip("_")
        base = self.artifacts_dir / f"{stamp}_{label}_{snapshot.engine}_{slug}"
        try:
            await self.browser.screenshot(snapshot, base.with_suffix(".png"))
            html = await self.browser.page_html(snapshot)
            base.with_suffix(".html").write_text(html, encoding="utf-8")
            logger.info(f"Saved diagnostics to {base}.png/.html")
        except Exception as e:
            logger.warning(f"Could not save diagnostics for {snapshot.url}: {e}")
