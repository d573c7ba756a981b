"""
StudyPortals adapter (mastersportal.com / bachelorsportal.com).

Listing pages live at ``/search/<master|bachelor>/<target-label>?page=N``
and link to programme pages at ``/studies/<id>/<slug>.html``.
"""
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from portal_crawler.constants import (
    CATEGORIES,
    CATEGORY_SEARCH_SEGMENTS,
    NEXT_PAGE_SELECTORS,
    PORTAL_BASE_URLS,
    PORTAL_NAMES,
    STUDY_LINK_PATTERN,
    TARGETS,
)
from portal_crawler.errors import ExtractionError
from portal_crawler.models import ListingPage, PageSnapshot
from portal_crawler.sites.base import SiteAdapter

logger = logging.getLogger(__name__)

STUDY_MODE_PATTERN = re.compile(r"campus|online|distance|blended", re.IGNORECASE)


class StudyPortalsAdapter(SiteAdapter):
    """Listing discovery and programme extraction for the StudyPortals sites."""

    def __init__(
        self,
        targets: Optional[Dict[str, str]] = None,
        scroll_steps: int = 3,
        scroll_pause: float = 1.0,
    ):
        self.targets = dict(targets or TARGETS)
        self.scroll_steps = scroll_steps
        self.scroll_pause = scroll_pause

    @property
    def categories(self) -> List[str]:
        return list(CATEGORIES)

    def target_label(self, target: str) -> str:
        try:
            return self.targets[target]
        except KeyError:
            raise ValueError(f"Unknown target: {target}") from None

    def listing_url(self, target: str, category: str, page: int) -> str:
        if category not in PORTAL_BASE_URLS:
            raise ValueError(f"Unknown category: {category}")
        base = PORTAL_BASE_URLS[category]
        segment = CATEGORY_SEARCH_SEGMENTS[category]
        return f"{base}/search/{segment}/{self.target_label(target)}?page={page}"

    async def discover_items(self, snapshot: PageSnapshot, browser) -> ListingPage:
        if self.scroll_steps:
            await browser.scroll_to_bottom(snapshot, steps=self.scroll_steps, pause=self.scroll_pause)
        html = await browser.page_html(snapshot)
        listing = parse_listing(html, snapshot.url)
        logger.info(
            f"Found {len(listing.item_urls)} programmes on {snapshot.url} "
            f"(next page: {listing.has_next_page})"
        )
        return listing

    async def extract_item(
        self, snapshot: PageSnapshot, browser, target: str, category: str
    ) -> Dict[str, Any]:
        html = await browser.page_html(snapshot)
        record = parse_study_page(html, snapshot.url)
        if not record.get("courseName") and not record.get("university"):
            raise ExtractionError(f"No programme details on {snapshot.url}", url=snapshot.url)

        record["country"] = record.get("country") or target
        record["portal"] = PORTAL_NAMES.get(category, category)
        return record


def _normalize_study_url(href: str, base_url: str) -> Optional[str]:
    absolute = urljoin(base_url, href)
    parts = urlsplit(absolute)
    if not re.search(STUDY_LINK_PATTERN + "$", parts.path):
        return None
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def parse_listing(html: str, base_url: str) -> ListingPage:
    """Programme links (ordered, deduplicated) and pagination state."""
    soup = BeautifulSoup(html, "html.parser")

    urls: List[str] = []
    seen = set()
    for link in soup.find_all("a", href=True):
        url = _normalize_study_url(link["href"], base_url)
        if url and url not in seen:
            seen.add(url)
            urls.append(url)

    has_next = any(soup.select_one(selector) is not None for selector in NEXT_PAGE_SELECTORS)
    if not has_next:
        has_next = any(
            link.get_text(strip=True).lower() == "next"
            for link in soup.find_all("a", href=True)
        )

    return ListingPage(item_urls=urls, has_next_page=has_next)


def _text(element) -> Optional[str]:
    if element is None:
        return None
    text = " ".join(element.get_text(" ", strip=True).split())
    return text or None


def parse_study_page(html: str, url: str) -> Dict[str, Any]:
    """Pull programme fields out of a study page."""
    soup = BeautifulSoup(html, "html.parser")
    record: Dict[str, Any] = {}

    title_wrapper = soup.select_one("#Hero .StudyTitleWrapper")
    if title_wrapper is not None:
        record["university"] = _text(title_wrapper.select_one(".OrganisationName"))
        record["courseName"] = _text(title_wrapper.select_one(".StudyTitle"))
        link = title_wrapper.select_one(".ProgrammeWebsiteLink")
        record["officialUniversityLink"] = link.get("href") if link else None
    else:
        record["university"] = None
        record["courseName"] = None
        record["officialUniversityLink"] = None

    # First tag is usually the degree, second the study mode
    degree_type = None
    study_mode = None
    for tag in soup.select(".DegreeTags span")[:2]:
        text = _text(tag)
        if not text:
            continue
        if STUDY_MODE_PATTERN.search(text):
            study_mode = study_mode or text
        elif degree_type is None:
            degree_type = text
    record["degreeType"] = degree_type
    record["studyMode"] = study_mode

    fee = soup.select_one('.TuitionFeeContainer[data-target="international"]')
    record["tuitionFee"] = None
    if fee is not None:
        parts = [_text(fee.select_one(sel)) for sel in (".Title", ".CurrencyType", ".Unit")]
        if all(parts):
            record["tuitionFee"] = " ".join(parts)

    record["duration"] = _text(soup.select_one(".js-duration"))

    intakes = []
    for fact in soup.select(".QuickFactComponent"):
        if fact.select_one(".Label i.lnr-calendar-full") is not None:
            intakes = [_text(t) for t in fact.select("time") if _text(t)]
            break
    record["intakes"] = intakes

    tests: Dict[str, Optional[str]] = {}
    for card in soup.select("#EnglishRequirements .CardContents.EnglishCardContents"):
        name = _text(card.select_one(".Heading"))
        score_text = _text(card.select_one(".Score span"))
        score = re.sub(r"[^0-9.]", "", score_text) if score_text else None
        if name and name not in tests:
            tests[name] = score or None
    record["languageRequirements"] = tests

    requirements = [_text(li) for li in soup.select("#OtherRequirements h3 + ul li") if _text(li)]
    record["generalRequirements"] = requirements or None

    record["country"] = None
    for fact in soup.select("#QuickFacts .QuickFactComponent"):
        if "Campus location" in fact.get_text():
            record["country"] = _text(fact.select_one(".Value"))

    record["sourceUrl"] = url
    record["extractedAt"] = datetime.now().isoformat()
    return record
