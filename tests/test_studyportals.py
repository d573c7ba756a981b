"""Tests for the StudyPortals site adapter."""

from unittest.mock import AsyncMock

import pytest

from portal_crawler.errors import ExtractionError
from portal_crawler.models import PageSnapshot
from portal_crawler.sites.studyportals import (
    StudyPortalsAdapter,
    parse_listing,
    parse_study_page,
)

LISTING_URL = "https://www.mastersportal.com/search/master/united-kingdom?page=2"

LISTING_HTML = """
<html><body>
  <section class="SearchResultsList">
    <a href="/studies/12345/data-science.html?ref=search#top">Data Science</a>
    <a href="https://www.mastersportal.com/studies/67890/marine-biology.html">Marine Biology</a>
    <a href="/studies/12345/data-science.html">Data Science (again)</a>
    <a href="/universities/42/oxford.html">Oxford</a>
    <a href="/studies/abc/not-a-programme.html">Broken</a>
  </section>
  <nav><a class="Pagination-link--next" href="?page=3">›</a></nav>
</body></html>
"""

STUDY_HTML = """
<html><body>
  <div id="Hero">
    <div class="StudyTitleWrapper">
      <span class="OrganisationName"> University of Leeds </span>
      <h1 class="StudyTitle">Data Science MSc</h1>
      <a class="ProgrammeWebsiteLink" href="https://leeds.ac.uk/data-science">Visit</a>
    </div>
  </div>
  <div class="DegreeTags"><span>M.Sc.</span><span>On Campus</span></div>
  <div class="TuitionFeeContainer" data-target="international">
    <span class="Title">28,750</span><span class="CurrencyType">GBP</span><span class="Unit">/ year</span>
  </div>
  <span class="js-duration">12 months</span>
  <div id="QuickFacts">
    <div class="QuickFactComponent">
      <div class="Label"><i class="lnr-calendar-full"></i> Start dates</div>
      <time>Sep 2026</time><time>Jan 2027</time>
    </div>
    <div class="QuickFactComponent">
      <div class="Label">Campus location</div><div class="Value">Leeds, United Kingdom</div>
    </div>
  </div>
  <div id="EnglishRequirements">
    <div class="CardContents EnglishCardContents">
      <div class="Heading">IELTS</div><div class="Score"><span>6.5 overall</span></div>
    </div>
    <div class="CardContents EnglishCardContents">
      <div class="Heading">TOEFL   iBT</div><div class="Score"><span>92</span></div>
    </div>
  </div>
  <div id="OtherRequirements">
    <h3>General requirements</h3>
    <ul><li>Bachelor degree in a quantitative subject</li><li>CV</li></ul>
  </div>
</body></html>
"""


class TestListingUrl:
    """Tests for listing URL construction."""

    def test_masters_url(self):
        adapter = StudyPortalsAdapter()

        assert adapter.listing_url("UK", "masters", 3) == (
            "https://www.mastersportal.com/search/master/united-kingdom?page=3"
        )

    def test_bachelors_url(self):
        adapter = StudyPortalsAdapter()

        assert adapter.listing_url("USA", "bachelors", 1) == (
            "https://www.bachelorsportal.com/search/bachelor/united-states?page=1"
        )

    def test_unknown_target(self):
        with pytest.raises(ValueError):
            StudyPortalsAdapter().listing_url("Narnia", "masters", 1)

    def test_unknown_category(self):
        with pytest.raises(ValueError):
            StudyPortalsAdapter().listing_url("UK", "phd", 1)


class TestParseListing:
    """Tests for programme link discovery."""

    def test_links_normalized_and_deduplicated(self):
        listing = parse_listing(LISTING_HTML, LISTING_URL)

        assert listing.item_urls == [
            "https://www.mastersportal.com/studies/12345/data-science.html",
            "https://www.mastersportal.com/studies/67890/marine-biology.html",
        ]
        assert listing.has_next_page is True

    def test_last_page(self):
        listing = parse_listing('<a href="/studies/1/x.html">x</a>', LISTING_URL)

        assert listing.has_next_page is False

    def test_next_by_link_text(self):
        listing = parse_listing('<a href="?page=3"> Next </a>', LISTING_URL)

        assert listing.has_next_page is True


class TestParseStudyPage:
    """Tests for programme field extraction."""

    def test_fields(self):
        record = parse_study_page(STUDY_HTML, "https://www.mastersportal.com/studies/12345/data-science.html")

        assert record["courseName"] == "Data Science MSc"
        assert record["university"] == "University of Leeds"
        assert record["officialUniversityLink"] == "https://leeds.ac.uk/data-science"
        assert record["degreeType"] == "M.Sc."
        assert record["studyMode"] == "On Campus"
        assert record["tuitionFee"] == "28,750 GBP / year"
        assert record["duration"] == "12 months"
        assert record["intakes"] == ["Sep 2026", "Jan 2027"]
        assert record["languageRequirements"] == {"IELTS": "6.5", "TOEFL iBT": "92"}
        assert record["generalRequirements"] == ["Bachelor degree in a quantitative subject", "CV"]
        assert record["country"] == "Leeds, United Kingdom"
        assert record["extractedAt"]

    def test_missing_sections(self):
        record = parse_study_page("<html><body></body></html>", "https://x")

        assert record["courseName"] is None
        assert record["tuitionFee"] is None
        assert record["intakes"] == []
        assert record["generalRequirements"] is None


class TestAdapter:
    """Tests for adapter methods run inside a fetch attempt."""

    @pytest.mark.asyncio
    async def test_discover_items_scrolls_then_parses(self):
        browser = AsyncMock()
        browser.page_html = AsyncMock(return_value=LISTING_HTML)
        adapter = StudyPortalsAdapter(scroll_steps=2, scroll_pause=0)
        snapshot = PageSnapshot(url=LISTING_URL)

        listing = await adapter.discover_items(snapshot, browser)

        browser.scroll_to_bottom.assert_awaited_once_with(snapshot, steps=2, pause=0)
        assert len(listing.item_urls) == 2

    @pytest.mark.asyncio
    async def test_extract_item_adds_portal(self):
        browser = AsyncMock()
        browser.page_html = AsyncMock(return_value=STUDY_HTML)
        snapshot = PageSnapshot(url="https://www.bachelorsportal.com/studies/1/x.html")

        record = await StudyPortalsAdapter().extract_item(snapshot, browser, "UK", "bachelors")

        assert record["portal"] == "bachelorsportal.com"
        assert record["courseName"] == "Data Science MSc"

    @pytest.mark.asyncio
    async def test_extract_item_without_details_raises(self):
        browser = AsyncMock()
        browser.page_html = AsyncMock(return_value="<html><body>Loading…</body></html>")
        snapshot = PageSnapshot(url="https://www.mastersportal.com/studies/1/x.html")

        with pytest.raises(ExtractionError):
            await StudyPortalsAdapter().extract_item(snapshot, browser, "UK", "masters")

    @pytest.mark.asyncio
    async def test_country_falls_back_to_target(self):
        html = STUDY_HTML.replace("Campus location", "Attendance")
        browser = AsyncMock()
        browser.page_html = AsyncMock(return_value=html)

        record = await StudyPortalsAdapter().extract_item(
            PageSnapshot(url="https://x/studies/1/x.html"), browser, "UK", "masters"
        )

        assert record["country"] == "UK"
