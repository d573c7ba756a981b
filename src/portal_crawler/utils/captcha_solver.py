"""
Puzzle solving service integration.

Wraps external solving services (2Captcha) behind a small interface the
fetch escalator can call when a challenge page shows a solvable widget.
Solving is optional: without an API key the escalator simply skips the
solving steps of its ladder.

Usage:
    from portal_crawler.utils.captcha_solver import get_solver, CaptchaType

    solver = get_solver("2captcha", api_key="...")
    result = await solver.solve(CaptchaType.TURNSTILE, sitekey, page_url)
    if result.solution:
        await solver.submit(snapshot, result.solution)
"""
import asyncio
import logging
import os
import random
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import aiohttp
from playwright.async_api import Error as PlaywrightError

from portal_crawler.errors import TransientFetchError
from portal_crawler.models import PageSnapshot

logger = logging.getLogger(__name__)


class CaptchaType(Enum):
    """Puzzle widgets we know how to hand to a service."""
    TURNSTILE = "turnstile"  # Cloudflare
    RECAPTCHA_V2 = "recaptcha_v2"
    HCAPTCHA = "hcaptcha"


class SolverStatus(Enum):
    """Status of a solve request."""
    PENDING = "pending"
    PROCESSING = "processing"
    SOLVED = "solved"
    FAILED = "failed"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"


@dataclass
class SolveResult:
    """Result from a solve attempt."""
    status: SolverStatus
    captcha_type: CaptchaType
    solution: Optional[str] = None  # The token to submit
    task_id: Optional[str] = None
    solve_time_seconds: float = 0.0
    cost: float = 0.0  # Cost in USD if known
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def solved(self) -> bool:
        return self.status == SolverStatus.SOLVED and bool(self.solution)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "status": self.status.value,
            "captcha_type": self.captcha_type.value,
            "solution": self.solution,
            "task_id": self.task_id,
            "solve_time_seconds": self.solve_time_seconds,
            "cost": self.cost,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


# Injects a Turnstile token and fires whatever the page wired to it
TURNSTILE_SUBMIT_SCRIPT = """
(token) => {
    let injected = false;
    document.querySelectorAll('input[name="cf-turnstile-response"], textarea[name="cf-turnstile-response"]')
        .forEach(el => { el.value = token; injected = true; });

    const widget = document.querySelector('.cf-turnstile, #cf-turnstile, [data-sitekey]');
    const callbackName = widget ? widget.getAttribute('data-callback') : null;
    if (callbackName && typeof window[callbackName] === 'function') {
        try { window[callbackName](token); injected = true; } catch (e) {}
    }

    const form = document.querySelector('form');
    if (injected && form) {
        const button = form.querySelector('button[type="submit"], input[type="submit"], button');
        if (button) { button.click(); } else { form.submit(); }
    }
    return injected;
}
"""


class BaseCaptchaSolver(ABC):
    """
    Abstract base class for solving services.

    Subclasses submit a task and report its state; ``solve`` handles the
    polling loop, timeout and statistics.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: int = 120,
        poll_interval: float = 5.0,
    ):
        """
        Initialize solver.

        Args:
            api_key: API key for the solving service
            timeout_seconds: Maximum time to wait for solution
            poll_interval: Seconds between status checks
        """
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval

        # Statistics
        self._total_requests = 0
        self._successful_solves = 0
        self._failed_solves = 0
        self._total_cost = 0.0

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Name of the solving service."""

    @property
    @abstractmethod
    def supported_types(self) -> list[CaptchaType]:
        """List of supported puzzle types."""

    @property
    def available(self) -> bool:
        """Whether the solver can be used at all (e.g. has credentials)."""
        return bool(self.api_key)

    @abstractmethod
    async def _submit_task(
        self,
        captcha_type: CaptchaType,
        sitekey: str,
        page_url: str,
    ) -> str:
        """Submit a solving task and return its task id."""

    @abstractmethod
    async def _get_result(self, task_id: str, captcha_type: CaptchaType) -> SolveResult:
        """Get result for a submitted task."""

    async def solve(
        self,
        captcha_type: CaptchaType,
        sitekey: str,
        page_url: str,
    ) -> SolveResult:
        """
        Solve a puzzle.

        Never raises for service errors; failures come back as a
        SolveResult with FAILED or TIMEOUT status.

        Args:
            captcha_type: Type of puzzle
            sitekey: Site key from the widget element
            page_url: URL where the widget appears

        Returns:
            SolveResult with solution or error
        """
        if captcha_type not in self.supported_types:
            return SolveResult(
                status=SolverStatus.UNSUPPORTED,
                captcha_type=captcha_type,
                error=f"{self.service_name} does not support {captcha_type.value}",
            )

        self._total_requests += 1
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        try:
            task_id = await self._submit_task(
                captcha_type=captcha_type,
                sitekey=sitekey,
                page_url=page_url,
            )
            logger.info(f"{self.service_name} task {task_id} submitted for {page_url}")

            elapsed = 0.0
            while elapsed < self.timeout_seconds:
                await asyncio.sleep(self.poll_interval)
                elapsed = loop.time() - start_time

                result = await self._get_result(task_id, captcha_type)

                if result.status == SolverStatus.SOLVED:
                    result.solve_time_seconds = elapsed
                    self._successful_solves += 1
                    self._total_cost += result.cost
                    logger.info(
                        f"{self.service_name} solved {captcha_type.value} "
                        f"in {elapsed:.1f}s"
                    )
                    return result

                if result.status == SolverStatus.FAILED:
                    self._failed_solves += 1
                    return result

            self._failed_solves += 1
            return SolveResult(
                status=SolverStatus.TIMEOUT,
                captcha_type=captcha_type,
                task_id=task_id,
                solve_time_seconds=elapsed,
                error=f"Timeout after {self.timeout_seconds}s",
            )

        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError, RuntimeError) as e:
            self._failed_solves += 1
            logger.error(f"{self.service_name} solve error: {e}")
            return SolveResult(
                status=SolverStatus.FAILED,
                captcha_type=captcha_type,
                error=str(e),
            )

    async def submit(self, snapshot: PageSnapshot, token: str) -> bool:
        """Inject a Turnstile token into the live page.

        Returns:
            True if a response field or callback accepted the token

        Raises:
            TransientFetchError: If the page could not run the injection script
        """
        if snapshot.page is None:
            return False
        try:
            injected = await snapshot.page.evaluate(TURNSTILE_SUBMIT_SCRIPT, token)
        except PlaywrightError as e:
            # The callback or form submit often navigates away mid-evaluate
            raise TransientFetchError(f"Token injection failed on {snapshot.url}: {e}", url=snapshot.url) from e
        logger.debug(f"Turnstile token injected={bool(injected)} on {snapshot.url}")
        return bool(injected)

    def get_stats(self) -> Dict[str, Any]:
        """Get solver statistics."""
        return {
            "service": self.service_name,
            "total_requests": self._total_requests,
            "successful_solves": self._successful_solves,
            "failed_solves": self._failed_solves,
            "success_rate": (
                self._successful_solves / self._total_requests
                if self._total_requests > 0
                else 0.0
            ),
            "total_cost_usd": self._total_cost,
        }


class SolverServiceError(RuntimeError):
    """The solving service rejected a request."""


class TwoCaptchaSolver(BaseCaptchaSolver):
    """
    2Captcha solving service integration.

    API Documentation: https://2captcha.com/2captcha-api
    """

    API_BASE = "https://2captcha.com"

    METHODS = {
        CaptchaType.TURNSTILE: ("turnstile", "sitekey"),
        CaptchaType.RECAPTCHA_V2: ("userrecaptcha", "googlekey"),
        CaptchaType.HCAPTCHA: ("hcaptcha", "sitekey"),
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: int = 120,
        poll_interval: float = 5.0,
    ):
        super().__init__(
            api_key=api_key or os.getenv("TWOCAPTCHA_API_KEY"),
            timeout_seconds=timeout_seconds,
            poll_interval=poll_interval,
        )

    @property
    def service_name(self) -> str:
        return "2Captcha"

    @property
    def supported_types(self) -> list[CaptchaType]:
        return list(self.METHODS)

    async def _submit_task(
        self,
        captcha_type: CaptchaType,
        sitekey: str,
        page_url: str,
    ) -> str:
        """Submit task to 2Captcha."""
        method, key_param = self.METHODS[captcha_type]
        params = {
            "key": self.api_key,
            "json": 1,
            "method": method,
            key_param: sitekey,
            "pageurl": page_url,
        }

        async with aiohttp.ClientSession() as session:
            async with session.post(f"{self.API_BASE}/in.php", data=params) as resp:
                data = await resp.json(content_type=None)

        if data.get("status") != 1:
            raise SolverServiceError(
                f"2Captcha submit error: {data.get('error_text') or data.get('request')}"
            )

        return data["request"]

    async def _get_result(self, task_id: str, captcha_type: CaptchaType) -> SolveResult:
        """Get result from 2Captcha."""
        params = {
            "key": self.api_key,
            "action": "get",
            "id": task_id,
            "json": 1,
        }

        async with aiohttp.ClientSession() as session:
            async with session.get(f"{self.API_BASE}/res.php", params=params) as resp:
                data = await resp.json(content_type=None)

        if data.get("status") == 1:
            return SolveResult(
                status=SolverStatus.SOLVED,
                captcha_type=captcha_type,
                solution=data["request"],
                task_id=task_id,
                cost=0.00145,  # Approximate Turnstile price
            )

        error = data.get("request", "Unknown error")
        if error == "CAPCHA_NOT_READY":
            return SolveResult(
                status=SolverStatus.PROCESSING,
                captcha_type=captcha_type,
                task_id=task_id,
            )

        return SolveResult(
            status=SolverStatus.FAILED,
            captcha_type=captcha_type,
            task_id=task_id,
            error=error,
        )


class MockCaptchaSolver(BaseCaptchaSolver):
    """
    Mock solver for testing.

    Returns a fake solution after a configurable delay.
    """

    def __init__(
        self,
        solve_delay: float = 2.0,
        fail_rate: float = 0.0,
        poll_interval: float = 0.5,
    ):
        super().__init__(api_key="mock", timeout_seconds=30, poll_interval=poll_interval)
        self.solve_delay = solve_delay
        self.fail_rate = fail_rate
        self._task_start_times: Dict[str, float] = {}

    @property
    def service_name(self) -> str:
        return "MockSolver"

    @property
    def supported_types(self) -> list[CaptchaType]:
        return list(CaptchaType)

    async def _submit_task(
        self,
        captcha_type: CaptchaType,
        sitekey: str,
        page_url: str,
    ) -> str:
        task_id = str(uuid.uuid4())
        self._task_start_times[task_id] = asyncio.get_running_loop().time()
        return task_id

    async def _get_result(self, task_id: str, captcha_type: CaptchaType) -> SolveResult:
        start_time = self._task_start_times.get(task_id, 0)
        elapsed = asyncio.get_running_loop().time() - start_time

        if elapsed < self.solve_delay:
            return SolveResult(
                status=SolverStatus.PROCESSING,
                captcha_type=captcha_type,
                task_id=task_id,
            )

        if random.random() < self.fail_rate:
            return SolveResult(
                status=SolverStatus.FAILED,
                captcha_type=captcha_type,
                task_id=task_id,
                error="Random failure (mock)",
            )

        return SolveResult(
            status=SolverStatus.SOLVED,
            captcha_type=captcha_type,
            solution="mock-solution-token-" + task_id[:8],
            task_id=task_id,
            cost=0.0,
        )


def get_solver(
    service: str = "2captcha",
    api_key: Optional[str] = None,
    **kwargs,
) -> Optional[BaseCaptchaSolver]:
    """
    Get a solver instance.

    Args:
        service: Solver service name (2captcha, mock, none)
        api_key: API key for the service
        **kwargs: Additional solver options

    Returns:
        Configured solver instance, or None when solving is disabled
    """
    service = (service or "none").lower()

    if service == "2captcha":
        return TwoCaptchaSolver(api_key=api_key, **kwargs)
    elif service == "mock":
        return MockCaptchaSolver(**kwargs)
    elif service == "none":
        return None
    else:
        raise ValueError(f"Unknown solver service: {service}")
