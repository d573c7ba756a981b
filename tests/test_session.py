"""Tests for run session wiring."""

from unittest.mock import AsyncMock, patch

import pytest

from portal_crawler.config import CrawlConfig
from portal_crawler.session import build_solver, ladders_for, open_session
from portal_crawler.utils.captcha_solver import MockCaptchaSolver, TwoCaptchaSolver


class TestLadders:
    """Tests for ladder construction from config."""

    def test_engines_swap_between_kinds(self):
        listing, item = ladders_for(CrawlConfig())

        assert listing[0].engine == "chromium"
        assert listing[-1].engine == "webkit"
        assert item[0].engine == "webkit"
        assert item[-1].engine == "chromium"

    def test_timing_from_config(self):
        listing, _ = ladders_for(CrawlConfig(step_timeout=30, settle_seconds=4, engine_switch_delay=2))

        assert {step.timeout for step in listing} == {30}
        assert {step.settle_seconds for step in listing} == {4}
        assert listing[3].delay_before == 2

    def test_headed_mode_shows_every_step(self):
        listing, item = ladders_for(CrawlConfig(headless=False))

        assert not any(step.headless for step in listing + item)


class TestBuildSolver:
    """Tests for solver selection."""

    def test_none(self):
        assert build_solver(CrawlConfig(solver_service="none")) is None

    def test_mock(self):
        assert isinstance(build_solver(CrawlConfig(solver_service="mock")), MockCaptchaSolver)

    def test_2captcha_without_key_is_unavailable(self):
        with patch.dict("os.environ", {}, clear=True), \
                patch("portal_crawler.config.settings.TWOCAPTCHA_API_KEY", None):
            solver = build_solver(CrawlConfig(solver_service="2captcha", captcha_api_key=None))

        assert isinstance(solver, TwoCaptchaSolver)
        assert solver.available is False

    def test_2captcha_settings(self):
        solver = build_solver(CrawlConfig(captcha_api_key="k", solver_timeout=60, solver_poll_interval=2))

        assert solver.api_key == "k"
        assert solver.timeout_seconds == 60
        assert solver.poll_interval == 2


class TestOpenSession:
    """Tests for the session lifecycle."""

    @pytest.mark.asyncio
    async def test_browser_started_and_closed(self):
        with patch("portal_crawler.session.BrowserSession.start", new_callable=AsyncMock) as start, \
                patch("portal_crawler.session.BrowserSession.close", new_callable=AsyncMock) as close:
            async with open_session(CrawlConfig(solver_service="none", max_cycles=2)) as session:
                assert session.escalator.retry_policy.max_cycles == 2
                assert session.escalator.ladder == session.item_ladder
                close.assert_not_awaited()

        start.assert_awaited_once()
        close.assert_awaited_once()
