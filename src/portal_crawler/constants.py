"""
Constants for the portal crawler.

This module centralizes site identifiers, output columns and page markers
used across the crawler. Values that operators tune per run live in
``portal_crawler.config`` instead.
"""

# =============================================================================
# Targets and categories
# =============================================================================

# Target key -> URL label used by the portals' search paths
TARGETS = {
    "UK": "united-kingdom",
    "USA": "united-states",
    "Australia": "australia",
    "Germany": "germany",
    "Canada": "canada",
}

# Categories in phase order; every target of a phase finishes first
CATEGORIES = ["masters", "bachelors"]

PORTAL_BASE_URLS = {
    "masters": "https://www.mastersportal.com",
    "bachelors": "https://www.bachelorsportal.com",
}

# Path segment used in /search/<segment>/<target-label>
CATEGORY_SEARCH_SEGMENTS = {
    "masters": "master",
    "bachelors": "bachelor",
}

PORTAL_NAMES = {
    "masters": "mastersportal.com",
    "bachelors": "bachelorsportal.com",
}

# =============================================================================
# Page markers
# =============================================================================

STUDY_LINK_PATTERN = r"/studies/\d+/[^/?#\"'\s]+\.html"

NEXT_PAGE_SELECTORS = [
    "a.Pagination-link--next",
    'a[rel="next"]',
]

# Regex over the first part of the page HTML for the Cloudflare Ray ID
RAY_ID_PATTERN = r"Ray ID:\s*(?:<code>)?\s*([a-f0-9]{8,})"

# Turnstile loader script carries the site key in its path
TURNSTILE_SCRIPT_SITEKEY_PATTERN = r"/turnstile/v0/g/([A-Za-z0-9_-]+)/"

# Set once Cloudflare has accepted the client
CLEARANCE_COOKIE = "cf_clearance"

# =============================================================================
# Output
# =============================================================================

CSV_COLUMNS = [
    "courseName",
    "university",
    "country",
    "degreeType",
    "studyMode",
    "tuitionFee",
    "duration",
    "intakes",
    "languageRequirements",
    "generalRequirements",
    "officialUniversityLink",
    "sourceUrl",
    "portal",
    "extractedAt",
    "updatedAt",
]

# =============================================================================
# Browser defaults
# =============================================================================

DEFAULT_USER_AGENTS = {
    "chromium": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    ),
    "webkit": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.6 Safari/605.1.15"
    ),
    "firefox": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) "
        "Gecko/20100101 Firefox/133.0"
    ),
}

DEFAULT_VIEWPORT = {"width": 1920, "height": 1080}
