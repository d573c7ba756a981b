"""Crawl runner - resumable crawl of the study portals.

Equivalent to ``portal-crawler run``; kept as a script so a long crawl can
be started from a checkout with ``python crawl.py``.
"""

import sys

from portal_crawler.cli import main


if __name__ == "__main__":
    main(["run", *sys.argv[1:]])
