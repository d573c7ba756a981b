"""
Bot challenge and block classification.

Classifies a fetched page as clear, an interstitial challenge, or a hard
block using a table of rules evaluated in priority order. Blocks are
checked first so a page carrying both block and challenge markers is
treated as a block.

The default rules target Cloudflare; a site with a different front door
can pass its own rule table to ``ChallengeClassifier``.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup

from portal_crawler.constants import (
    CLEARANCE_COOKIE,
    RAY_ID_PATTERN,
    TURNSTILE_SCRIPT_SITEKEY_PATTERN,
)
from portal_crawler.models import ChallengeKind, ChallengeOutcome, PageSnapshot

logger = logging.getLogger(__name__)


# =============================================================================
# Rule table
# =============================================================================

@dataclass
class ChallengeRule:
    """One row of the classification table.

    ``source`` selects which part of the snapshot the markers are matched
    against: "title", "content" or "url". Matching is case-insensitive
    substring search.
    """
    name: str
    kind: ChallengeKind
    source: str
    markers: List[str] = field(default_factory=list)

    def matches(self, snapshot: PageSnapshot) -> bool:
        haystack = {
            "title": snapshot.title,
            "content": snapshot.content,
            "url": snapshot.url,
        }.get(self.source) or ""
        haystack = haystack.lower()
        return any(marker.lower() in haystack for marker in self.markers)


DEFAULT_RULES = [
    ChallengeRule(
        name="block_text",
        kind=ChallengeKind.BLOCKED,
        source="content",
        markers=[
            "sorry, you have been blocked",
            "you have been blocked",
            "your ip has been blocked",
            "access denied",
            "error 1020",
        ],
    ),
    ChallengeRule(
        name="block_title",
        kind=ChallengeKind.BLOCKED,
        source="title",
        markers=["access denied", "403 forbidden"],
    ),
    ChallengeRule(
        name="interstitial_title",
        kind=ChallengeKind.CHALLENGE,
        source="title",
        markers=[
            "just a moment",
            "attention required",
            "checking your browser",
            "please wait",
        ],
    ),
    ChallengeRule(
        name="challenge_widget",
        kind=ChallengeKind.CHALLENGE,
        source="content",
        markers=[
            "cf-browser-verification",
            "cf_challenge_response",
            "cf-challenge-running",
            "cf-chl-widget",
            "challenges.cloudflare.com/turnstile",
            "cf-turnstile",
        ],
    ),
    ChallengeRule(
        name="challenge_url",
        kind=ChallengeKind.CHALLENGE,
        source="url",
        markers=["/cdn-cgi/challenge-platform/", "__cf_chl_"],
    ),
]

# Severity order; lower wins when several rules fire
_SEVERITY = {
    ChallengeKind.BLOCKED: 0,
    ChallengeKind.CHALLENGE: 1,
    ChallengeKind.CLEAR: 2,
}


# =============================================================================
# Classifier
# =============================================================================

class ChallengeClassifier:
    """Maps a page snapshot to a ChallengeOutcome using a rule table."""

    def __init__(self, rules: Optional[Sequence[ChallengeRule]] = None):
        self.rules = sorted(
            rules if rules is not None else DEFAULT_RULES,
            key=lambda rule: _SEVERITY[rule.kind],
        )

    def classify(self, snapshot: PageSnapshot) -> ChallengeOutcome:
        has_clearance = CLEARANCE_COOKIE in snapshot.cookie_names
        for rule in self.rules:
            if rule.matches(snapshot):
                outcome = ChallengeOutcome(
                    kind=rule.kind,
                    indicator=rule.name,
                    token=extract_ray_id(snapshot.content),
                    has_clearance_cookie=has_clearance,
                )
                if rule.kind == ChallengeKind.CHALLENGE:
                    outcome.site_key = extract_site_key(snapshot.content)
                logger.debug(
                    f"{snapshot.url} classified {rule.kind.value} by {rule.name}"
                )
                return outcome

        return ChallengeOutcome(kind=ChallengeKind.CLEAR, has_clearance_cookie=has_clearance)


# =============================================================================
# Diagnostics
# =============================================================================

def extract_ray_id(content: str) -> Optional[str]:
    """Return the Cloudflare Ray ID shown on challenge/block pages."""
    if not content:
        return None
    match = re.search(RAY_ID_PATTERN, content, re.IGNORECASE)
    return match.group(1) if match else None


def extract_site_key(content: str) -> Optional[str]:
    """Find a Turnstile widget site key in page HTML.

    Checks, in order: an element carrying ``data-sitekey``, the challenge
    iframe's query string, and the Turnstile loader script path.
    """
    if not content:
        return None

    soup = BeautifulSoup(content, "html.parser")

    for selector in ("#cf-turnstile[data-sitekey]", ".cf-turnstile[data-sitekey]", "[data-sitekey]"):
        element = soup.select_one(selector)
        if element and element.get("data-sitekey"):
            return element["data-sitekey"]

    for iframe in soup.select("iframe[src*='challenges.cloudflare.com']"):
        params = parse_qs(urlparse(iframe.get("src", "")).query)
        for name in ("sitekey", "k"):
            if params.get(name):
                return params[name][0]

    match = re.search(TURNSTILE_SCRIPT_SITEKEY_PATTERN, content)
    if match:
        return match.group(1)

    return None
