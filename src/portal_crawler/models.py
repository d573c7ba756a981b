"""Data models for crawl progress, page snapshots and challenge outcomes."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from portal_crawler.errors import InvalidTransitionError


class UnitStatus(str, Enum):
    """Lifecycle of a (target, category) crawl unit."""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"


ALLOWED_TRANSITIONS: Dict[UnitStatus, Set[UnitStatus]] = {
    UnitStatus.NOT_STARTED: {UnitStatus.IN_PROGRESS},
    UnitStatus.IN_PROGRESS: {UnitStatus.COMPLETED, UnitStatus.ERROR},
    UnitStatus.ERROR: {UnitStatus.IN_PROGRESS},
    UnitStatus.COMPLETED: set(),
}


class ChallengeKind(str, Enum):
    """How a fetched page should be treated."""
    CLEAR = "clear"
    CHALLENGE = "challenge"
    BLOCKED = "blocked"


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class CrawlUnit:
    """Progress of one target within one category.

    ``pending`` and ``completed`` never share a URL. ``cursor`` is the next
    listing page to fetch and only moves forward while the unit is in
    progress.
    """
    target: str
    category: str
    status: UnitStatus = UnitStatus.NOT_STARTED
    cursor: int = 1
    pending: List[str] = field(default_factory=list)
    completed: Set[str] = field(default_factory=set)
    items_processed: int = 0
    items_failed: int = 0
    last_error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.target, self.category)

    def enqueue(self, urls: Iterable[str]) -> int:
        """Append URLs not already pending or completed.

        Returns:
            Number of URLs actually added
        """
        added = 0
        seen = set(self.pending)
        for url in urls:
            if url in self.completed or url in seen:
                continue
            self.pending.append(url)
            seen.add(url)
            added += 1
        return added

    def mark_done(self, url: str) -> bool:
        """Move a URL to completed. Returns False if it was already there."""
        if url in self.pending:
            self.pending.remove(url)
        if url in self.completed:
            return False
        self.completed.add(url)
        return True

    def transition(self, status: UnitStatus) -> None:
        status = UnitStatus(status)
        if status == self.status:
            return
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.status, status)

        self.status = status
        if status == UnitStatus.IN_PROGRESS and self.started_at is None:
            self.started_at = _now()
        elif status == UnitStatus.COMPLETED:
            self.completed_at = _now()

    def advance_cursor(self, page: int) -> None:
        """Move the listing cursor to ``page``; it never moves backwards."""
        if self.status != UnitStatus.IN_PROGRESS:
            raise ValueError(
                f"Cursor of {self.target}/{self.category} can only move while in progress"
            )
        if page < self.cursor:
            raise ValueError(f"Cursor cannot move back from {self.cursor} to {page}")
        self.cursor = page

    def record_error(self, message: Optional[str]) -> None:
        self.last_error = message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the on-disk (camelCase) schema."""
        return {
            "target": self.target,
            "category": self.category,
            "status": self.status.value,
            "cursor": self.cursor,
            "pending": list(self.pending),
            "completed": sorted(self.completed),
            "itemsProcessed": self.items_processed,
            "itemsFailed": self.items_failed,
            "lastError": self.last_error,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlUnit":
        completed = set(data.get("completed", []))
        # A URL present in both lists was finished before the crash
        pending = [url for url in data.get("pending", []) if url not in completed]
        return cls(
            target=data["target"],
            category=data["category"],
            status=UnitStatus(data.get("status", UnitStatus.NOT_STARTED.value)),
            cursor=int(data.get("cursor", 1)),
            pending=list(dict.fromkeys(pending)),
            completed=completed,
            items_processed=int(data.get("itemsProcessed", 0)),
            items_failed=int(data.get("itemsFailed", 0)),
            last_error=data.get("lastError"),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
        )


@dataclass
class GlobalState:
    """All crawl units plus the phase marker."""
    current_phase: Optional[str] = None
    units: List[CrawlUnit] = field(default_factory=list)
    last_updated: str = field(default_factory=_now)

    def find(self, target: str, category: str) -> Optional[CrawlUnit]:
        for unit in self.units:
            if unit.target == target and unit.category == category:
                return unit
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentPhase": self.current_phase,
            "lastUpdated": self.last_updated,
            "units": [unit.to_dict() for unit in self.units],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalState":
        return cls(
            current_phase=data.get("currentPhase"),
            units=[CrawlUnit.from_dict(u) for u in data.get("units", [])],
            last_updated=data.get("lastUpdated") or _now(),
        )


@dataclass
class ChallengeOutcome:
    """Classification of a fetched page."""
    kind: ChallengeKind
    indicator: Optional[str] = None  # Name of the rule that fired
    token: Optional[str] = None  # Cloudflare Ray ID, when present
    site_key: Optional[str] = None  # Puzzle widget site key, when present
    has_clearance_cookie: bool = False

    @property
    def is_clear(self) -> bool:
        return self.kind == ChallengeKind.CLEAR

    @property
    def solvable(self) -> bool:
        return self.kind == ChallengeKind.CHALLENGE and bool(self.site_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "indicator": self.indicator,
            "token": self.token,
            "site_key": self.site_key,
            "has_clearance_cookie": self.has_clearance_cookie,
        }


@dataclass
class PageSnapshot:
    """What the classifier and site adapters see of a loaded page."""
    url: str
    title: str = ""
    content: str = ""  # Bounded prefix of the document HTML
    cookie_names: List[str] = field(default_factory=list)
    engine: str = "chromium"
    headless: bool = True
    page: Any = field(default=None, repr=False, compare=False)


@dataclass
class ListingPage:
    """Item URLs found on one listing page."""
    item_urls: List[str] = field(default_factory=list)
    has_next_page: bool = False
