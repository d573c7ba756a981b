"""Shared test doubles for the crawler.

The fakes stand in for the browser, escalator, site adapter and sink so the
escalation ladder and the orchestrator can be driven without a real browser.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from portal_crawler.errors import FetchBlockedError, FetchExhaustedError
from portal_crawler.escalator import AttemptRecord, FetchResult, LadderStep
from portal_crawler.models import ChallengeKind, ChallengeOutcome, ListingPage, PageSnapshot
from portal_crawler.state_store import ProgressStore


# =============================================================================
# Page helpers
# =============================================================================

def clear_page(url: str, html: str = "<html><body><h1>Programme</h1></body></html>") -> PageSnapshot:
    return PageSnapshot(url=url, title="Programme", content=html, page=object())


def challenge_page(url: str, site_key: Optional[str] = None) -> PageSnapshot:
    widget = f'<div class="cf-turnstile" data-sitekey="{site_key}"></div>' if site_key else ""
    html = f"<html><body><div id='cf-challenge-running'></div>{widget}</body></html>"
    return PageSnapshot(url=url, title="Just a moment...", content=html, page=object())


def blocked_page(url: str) -> PageSnapshot:
    html = (
        "<html><body><h1>Sorry, you have been blocked</h1>"
        "<p>Cloudflare Ray ID: <code>8a1b2c3d4e5f6a7b</code></p></body></html>"
    )
    return PageSnapshot(url=url, title="Attention Required! | Cloudflare", content=html, page=object())


# =============================================================================
# Browser
# =============================================================================

class FakeBrowser:
    """Returns scripted snapshots per URL.

    ``script[url]`` is a list consumed one entry per navigation; the last
    entry repeats. An entry may be an exception instance to raise, or a
    ``(delay, snapshot)`` tuple to simulate a slow page.
    """

    def __init__(self, script: Dict[str, List[Any]], refreshes: Optional[Dict[str, List[Any]]] = None):
        self.script = {url: list(entries) for url, entries in script.items()}
        self.refreshes = {url: list(entries) for url, entries in (refreshes or {}).items()}
        self.navigations: List[tuple] = []
        self.released = 0
        self.screenshots: List[Any] = []

    @staticmethod
    def _next(entries: List[Any]) -> Any:
        return entries.pop(0) if len(entries) > 1 else entries[0]

    async def navigate(self, url, engine="chromium", headless=True, timeout=None):
        self.navigations.append((url, engine, headless))
        entry = self._next(self.script[url])
        if isinstance(entry, tuple):
            delay, entry = entry
            await asyncio.sleep(delay)
        if isinstance(entry, Exception):
            raise entry
        return PageSnapshot(
            url=entry.url, title=entry.title, content=entry.content,
            engine=engine, headless=headless, page=object(),
        )

    async def refresh(self, snapshot):
        entries = self.refreshes.get(snapshot.url)
        if not entries:
            return snapshot
        entry = self._next(entries)
        if isinstance(entry, Exception):
            raise entry
        return PageSnapshot(
            url=entry.url, title=entry.title, content=entry.content,
            engine=snapshot.engine, headless=snapshot.headless, page=snapshot.page,
        )

    async def page_html(self, snapshot):
        return snapshot.content

    async def scroll_to_bottom(self, snapshot, steps=3, pause=1.0):
        return None

    async def screenshot(self, snapshot, path):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"png")
        self.screenshots.append(path)

    async def release(self, snapshot):
        self.released += 1


# =============================================================================
# Escalator / adapter / sink
# =============================================================================

class ScriptedEscalator:
    """Escalator double: outcome per URL is 'ok', 'exhausted' or 'blocked'."""

    def __init__(self, outcomes: Optional[Dict[str, str]] = None, default: str = "ok"):
        self.outcomes = outcomes or {}
        self.default = default
        self.browser = object()
        self.calls: List[str] = []
        self.on_fetch = None  # Optional callback(url) run before each fetch

    async def fetch(self, url, handler, ladder=None):
        self.calls.append(url)
        if self.on_fetch is not None:
            self.on_fetch(url)

        outcome = self.outcomes.get(url, self.default)
        if outcome == "blocked":
            raise FetchBlockedError(url, ChallengeOutcome(kind=ChallengeKind.BLOCKED, indicator="block_text"))
        if outcome == "exhausted":
            raise FetchExhaustedError(url, [AttemptRecord(1, "webkit-headless", "challenge")])

        snapshot = PageSnapshot(url=url, page=object())
        value = await handler(snapshot)
        step = LadderStep(name="fake", engine="chromium")
        return FetchResult(url=url, value=value, step=step,
                           outcome=ChallengeOutcome(kind=ChallengeKind.CLEAR))


class FakeAdapter:
    """Listing pages keyed by URL; every item extracts to a small record."""

    categories = ["masters", "bachelors"]

    def __init__(self, listings: Optional[Dict[str, ListingPage]] = None):
        self.listings = listings or {}

    def listing_url(self, target, category, page):
        return f"https://portal.test/{category}/{target}?page={page}"

    async def discover_items(self, snapshot, browser):
        return self.listings.get(snapshot.url, ListingPage(item_urls=[], has_next_page=False))

    async def extract_item(self, snapshot, browser, target, category):
        return {"courseName": f"Course at {snapshot.url}", "university": "Test University"}


class RecordingSink:
    def __init__(self):
        self.rows: List[tuple] = []

    def write(self, target, category, record):
        self.rows.append((target, category, dict(record)))


async def no_sleep(seconds):
    return None


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def store(tmp_path):
    """ProgressStore backed by a temp file."""
    store = ProgressStore(str(tmp_path / "state" / "crawler-state.json"))
    store.load()
    return store


@pytest.fixture
def sink():
    return RecordingSink()
