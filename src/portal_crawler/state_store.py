"""
Durable crawl progress.

The whole crawl state lives in a single JSON document that is rewritten
atomically after every mutation, so a crash or interrupt loses at most the
item that was in flight.

Usage:
    store = ProgressStore("state/crawler-state.json")
    store.load()
    store.enqueue_items("UK", "masters", urls)
    store.mark_item_done("UK", "masters", urls[0])
"""
import json
import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar

from portal_crawler.errors import PersistenceError
from portal_crawler.models import CrawlUnit, GlobalState, UnitStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProgressStore:
    """Owns the crawl state and its on-disk representation.

    All unit changes go through ``mutate`` (or the helpers built on it) so
    every change is flushed before the caller moves on.
    """

    def __init__(self, path: str = "state/crawler-state.json"):
        self.path = Path(path)
        self._state: Optional[GlobalState] = None

    @property
    def state(self) -> GlobalState:
        if self._state is None:
            self.load()
        return self._state

    def load(self) -> GlobalState:
        """Load state from disk, falling back to a fresh state.

        Never raises: an unreadable file is logged, copied aside and
        replaced by fresh state on the next flush.
        """
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting fresh")
            self._state = GlobalState()
            return self._state

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._state = GlobalState.from_dict(data)
            logger.info(
                f"Loaded state from {self.path}: {len(self._state.units)} units, "
                f"phase={self._state.current_phase}"
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            backup = self._backup_corrupt()
            logger.error(
                f"Could not read state file {self.path} ({e}); "
                f"starting fresh, previous file kept at {backup}"
            )
            self._state = GlobalState()

        return self._state

    def _backup_corrupt(self) -> Optional[Path]:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            shutil.copy2(self.path, backup)
            return backup
        except OSError as e:
            logger.warning(f"Could not back up corrupt state file: {e}")
            return None

    # -------------------------------------------------------------------------
    # Unit access
    # -------------------------------------------------------------------------

    def get_unit(self, target: str, category: str) -> CrawlUnit:
        """Return the unit, creating it in memory if absent. Does not flush."""
        unit = self.state.find(target, category)
        if unit is None:
            unit = CrawlUnit(target=target, category=category)
            self.state.units.append(unit)
        return unit

    def mutate(self, target: str, category: str, fn: Callable[[CrawlUnit], T]) -> T:
        """Apply ``fn`` to the unit and flush before returning its result."""
        unit = self.get_unit(target, category)
        result = fn(unit)
        self.flush()
        return result

    def enqueue_items(self, target: str, category: str, urls: Iterable[str]) -> int:
        """Add newly discovered item URLs; returns how many were new."""
        urls = list(urls)
        return self.mutate(target, category, lambda unit: unit.enqueue(urls))

    def mark_item_done(
        self,
        target: str,
        category: str,
        url: str,
        error: Optional[str] = None,
    ) -> None:
        """Record an item as finished, successfully or not.

        Either way the URL leaves the pending queue; a URL that was already
        completed does not bump the counters again.
        """
        def apply(unit: CrawlUnit) -> None:
            newly_done = unit.mark_done(url)
            if error is not None:
                unit.record_error(error)
            if not newly_done:
                return
            if error is None:
                unit.items_processed += 1
            else:
                unit.items_failed += 1

        self.mutate(target, category, apply)

    def is_done(self, target: str, category: str) -> bool:
        unit = self.state.find(target, category)
        return unit is not None and unit.status == UnitStatus.COMPLETED

    # -------------------------------------------------------------------------
    # Global state
    # -------------------------------------------------------------------------

    @property
    def current_phase(self) -> Optional[str]:
        return self.state.current_phase

    def set_phase(self, category: str) -> None:
        if self.state.current_phase == category:
            return
        self.state.current_phase = category
        self.flush()

    def reset(self) -> None:
        """Discard all progress."""
        self._state = GlobalState()
        self.flush()
        logger.info(f"State reset at {self.path}")

    def progress_summary(self) -> Dict[str, Any]:
        """Per-unit progress plus totals, for reporting."""
        units = []
        totals = {
            "units": 0,
            "completed_units": 0,
            "pending_items": 0,
            "completed_items": 0,
            "items_processed": 0,
            "items_failed": 0,
        }
        for unit in self.state.units:
            units.append({
                "target": unit.target,
                "category": unit.category,
                "status": unit.status.value,
                "cursor": unit.cursor,
                "pending": len(unit.pending),
                "completed": len(unit.completed),
                "items_processed": unit.items_processed,
                "items_failed": unit.items_failed,
                "last_error": unit.last_error,
            })
            totals["units"] += 1
            if unit.status == UnitStatus.COMPLETED:
                totals["completed_units"] += 1
            totals["pending_items"] += len(unit.pending)
            totals["completed_items"] += len(unit.completed)
            totals["items_processed"] += unit.items_processed
            totals["items_failed"] += unit.items_failed

        return {
            "current_phase": self.state.current_phase,
            "last_updated": self.state.last_updated,
            "units": units,
            "totals": totals,
        }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def flush(self) -> None:
        """Write state to disk atomically, retrying once.

        Raises:
            PersistenceError: If both attempts fail
        """
        self.state.last_updated = datetime.now().isoformat()
        payload = json.dumps(self.state.to_dict(), indent=2)

        last_error: Optional[OSError] = None
        for attempt in (1, 2):
            try:
                self._write_atomic(payload)
                return
            except OSError as e:
                last_error = e
                logger.warning(f"State write attempt {attempt} failed: {e}")

        raise PersistenceError(f"Could not write state to {self.path}: {last_error}") from last_error

    def _write_atomic(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
