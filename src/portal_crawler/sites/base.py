"""Site adapter interface."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from portal_crawler.models import ListingPage, PageSnapshot


class SiteAdapter(ABC):
    """
    Knows one site's URLs and page structure.

    The orchestrator owns scheduling and persistence; an adapter only turns
    (target, category, page) into listing URLs and loaded pages into item
    URLs or records. Extraction methods run inside an escalator attempt,
    so raising ExtractionError makes the escalator try its next step.
    """

    @property
    @abstractmethod
    def categories(self) -> List[str]:
        """Categories this site serves, in phase order."""

    @abstractmethod
    def listing_url(self, target: str, category: str, page: int) -> str:
        """URL of listing page ``page`` (1-based) for a unit."""

    @abstractmethod
    async def discover_items(self, snapshot: PageSnapshot, browser) -> ListingPage:
        """Item URLs on a loaded listing page, and whether a next page exists."""

    @abstractmethod
    async def extract_item(
        self, snapshot: PageSnapshot, browser, target: str, category: str
    ) -> Dict[str, Any]:
        """Record for a loaded item page."""
