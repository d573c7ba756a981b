"""
Crawl orchestration.

Drives the two-phase loop for every (target, category) unit:

1. finish any item URLs left pending by an earlier run
2. fetch the listing page at the unit's cursor and queue the item URLs on it
3. drain the queue, one item at a time
4. advance the cursor, or mark the unit completed when there is no next page

Categories are phases: every target of one category is processed before
the next category starts. All progress goes through the ProgressStore,
which flushes after each change, so the loop can be interrupted anywhere
and resumed by running it again.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from portal_crawler.config import CrawlConfig
from portal_crawler.errors import FetchBlockedError, FetchExhaustedError
from portal_crawler.escalator import FetchStrategyEscalator, LadderStep
from portal_crawler.infrastructure.rate_limiter import RateGovernor
from portal_crawler.models import CrawlUnit, PageSnapshot, UnitStatus
from portal_crawler.output import CsvItemSink
from portal_crawler.sites.base import SiteAdapter
from portal_crawler.state_store import ProgressStore

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative stop flag, set from signal handlers and polled by the loop."""

    def __init__(self):
        self._requested = False
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "stop requested") -> None:
        if not self._requested:
            logger.info(f"Cancellation requested: {reason}")
        self._requested = True
        self.reason = self.reason or reason

    @property
    def cancelled(self) -> bool:
        return self._requested


@dataclass
class RunReport:
    """What one ``run`` call did."""
    units_completed: List[str] = field(default_factory=list)
    units_blocked: List[str] = field(default_factory=list)
    units_failed: List[str] = field(default_factory=list)
    listing_pages: int = 0
    items_processed: int = 0
    items_failed: int = 0
    stopped_at_phase: Optional[str] = None
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "units_completed": self.units_completed,
            "units_blocked": self.units_blocked,
            "units_failed": self.units_failed,
            "listing_pages": self.listing_pages,
            "items_processed": self.items_processed,
            "items_failed": self.items_failed,
            "stopped_at_phase": self.stopped_at_phase,
            "cancelled": self.cancelled,
        }


class CrawlOrchestrator:
    """
    Schedules listing and item fetches and records their outcomes.

    Args:
        store: ProgressStore holding all unit state
        escalator: FetchStrategyEscalator used for every page
        governor: RateGovernor pacing consecutive fetches
        adapter: SiteAdapter for URLs and extraction
        sink: Output sink receiving one record per successful item
        config: Run configuration (targets, categories, delays, limits)
        cancel: Token checked before every fetch
        listing_ladder: Ladder for listing pages (escalator default if None)
        item_ladder: Ladder for item pages (escalator default if None)
    """

    def __init__(
        self,
        store: ProgressStore,
        escalator: FetchStrategyEscalator,
        governor: RateGovernor,
        adapter: SiteAdapter,
        sink: CsvItemSink,
        config: Optional[CrawlConfig] = None,
        cancel: Optional[CancellationToken] = None,
        listing_ladder: Optional[Sequence[LadderStep]] = None,
        item_ladder: Optional[Sequence[LadderStep]] = None,
    ):
        self.store = store
        self.escalator = escalator
        self.governor = governor
        self.adapter = adapter
        self.sink = sink
        self.config = config or CrawlConfig()
        self.cancel = cancel or CancellationToken()
        self.listing_ladder = listing_ladder
        self.item_ladder = item_ladder

        self.report = RunReport()
        self._fetches = 0

    @property
    def cancelled(self) -> bool:
        return self.cancel.cancelled

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def run(self) -> RunReport:
        """Process every unit, phase by phase, until done, blocked or cancelled."""
        self.report = RunReport()
        targets = list(self.config.targets)

        for category in self.config.categories:
            if self.cancelled:
                break

            self.store.set_phase(category)
            logger.info(f"=== Phase: {category} ({len(targets)} targets) ===")

            for target in targets:
                if self.cancelled:
                    break
                await self.process_unit(target, category)

            if self.cancelled:
                break

            incomplete = [t for t in targets if not self.store.is_done(t, category)]
            if incomplete and not self.config.allow_partial_phases:
                logger.warning(
                    f"Phase {category} incomplete for {', '.join(incomplete)}; "
                    f"stopping before the next phase. Rerun to resume."
                )
                self.report.stopped_at_phase = category
                break

        self.report.cancelled = self.cancelled
        logger.info(f"Run finished: {self.report.to_dict()}")
        return self.report

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    async def process_unit(self, target: str, category: str) -> UnitStatus:
        """Crawl one unit as far as it will go in this run.

        Returns:
            The unit's status afterwards
        """
        name = f"{target}/{category}"
        if self.store.is_done(target, category):
            logger.info(f"{name} already completed, skipping")
            return UnitStatus.COMPLETED

        self.store.mutate(target, category, lambda u: u.transition(UnitStatus.IN_PROGRESS))
        unit = self.store.get_unit(target, category)
        logger.info(
            f"{name}: starting at page {unit.cursor} with {len(unit.pending)} pending, "
            f"{len(unit.completed)} completed"
        )

        if not await self.drain_pending(target, category):
            return self._status(target, category)

        pages_this_run = 0
        while not self.cancelled and pages_this_run < self.config.max_listing_pages:
            page = self.store.get_unit(target, category).cursor
            url = self.adapter.listing_url(target, category, page)

            await self._pace()
            try:
                result = await self.escalator.fetch(
                    url, self._listing_handler(), ladder=self.listing_ladder
                )
            except FetchBlockedError as e:
                self.store.mutate(
                    target, category, lambda u: u.record_error(f"listing page {page}: {e}")
                )
                self.report.units_blocked.append(name)
                logger.warning(f"{name}: blocked on listing page {page}, moving on")
                return UnitStatus.IN_PROGRESS
            except FetchExhaustedError as e:
                self.store.mutate(target, category, lambda u: self._fail_unit(u, f"listing page {page}: {e}"))
                self.report.units_failed.append(name)
                logger.error(f"{name}: could not fetch listing page {page}: {e}")
                return UnitStatus.ERROR

            pages_this_run += 1
            self.report.listing_pages += 1
            listing = result.value
            added = self.store.enqueue_items(target, category, listing.item_urls)
            logger.info(
                f"{name}: page {page} listed {len(listing.item_urls)} items, {added} new"
            )

            if not await self.drain_pending(target, category):
                return self._status(target, category)

            if not listing.has_next_page:
                self.store.mutate(target, category, lambda u: u.transition(UnitStatus.COMPLETED))
                self.report.units_completed.append(name)
                logger.info(f"{name}: completed after page {page}")
                return UnitStatus.COMPLETED

            self.store.mutate(target, category, lambda u: u.advance_cursor(page + 1))

        return self._status(target, category)

    async def drain_pending(self, target: str, category: str) -> bool:
        """Fetch every pending item of a unit in queue order.

        Exhausted items are recorded and marked done so the queue always
        shrinks. A block leaves the item pending and stops the unit.

        Returns:
            True if the queue was emptied, False if stopped by a block or cancellation
        """
        name = f"{target}/{category}"

        while True:
            if self.cancelled:
                return False

            unit = self.store.get_unit(target, category)
            if not unit.pending:
                return True

            url = unit.pending[0]
            await self._pace()
            try:
                result = await self.escalator.fetch(
                    url, self._item_handler(target, category), ladder=self.item_ladder
                )
            except FetchBlockedError as e:
                self.store.mutate(target, category, lambda u: u.record_error(f"{url}: {e}"))
                self.report.units_blocked.append(name)
                logger.warning(f"{name}: blocked on {url}, leaving it pending and moving on")
                return False
            except FetchExhaustedError as e:
                self.store.mark_item_done(target, category, url, error=str(e))
                self.report.items_failed += 1
                logger.warning(f"{name}: skipping {url}: {e}")
                continue

            record = result.value
            record["sourceUrl"] = url
            self.sink.write(target, category, record)
            self.store.mark_item_done(target, category, url)
            self.report.items_processed += 1
            logger.info(
                f"{name}: saved {record.get('courseName') or url} "
                f"({len(unit.pending)} pending)"
            )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _listing_handler(self):
        async def handler(snapshot: PageSnapshot):
            return await self.adapter.discover_items(snapshot, self.escalator.browser)
        return handler

    def _item_handler(self, target: str, category: str):
        async def handler(snapshot: PageSnapshot):
            return await self.adapter.extract_item(snapshot, self.escalator.browser, target, category)
        return handler

    async def _pace(self) -> None:
        if self._fetches > 0:
            await self.governor.wait(self.config.request_delay)
        self._fetches += 1

    @staticmethod
    def _fail_unit(unit: CrawlUnit, message: str) -> None:
        unit.record_error(message)
        unit.transition(UnitStatus.ERROR)

    def _status(self, target: str, category: str) -> UnitStatus:
        return self.store.get_unit(target, category).status
