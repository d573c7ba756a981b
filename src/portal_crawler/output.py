"""CSV output for extracted programme records."""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from portal_crawler.constants import CSV_COLUMNS, TARGETS

logger = logging.getLogger(__name__)


class CsvItemSink:
    """Appends one row per item to ``{category}-courses_{target-label}.csv``.

    The header row is written only when a file is created, so rows from
    resumed runs land in the same file.
    """

    def __init__(
        self,
        output_dir: str = "output",
        columns: Optional[List[str]] = None,
        target_labels: Optional[Dict[str, str]] = None,
    ):
        self.output_dir = Path(output_dir)
        self.columns = columns or list(CSV_COLUMNS)
        self.target_labels = target_labels or dict(TARGETS)
        self.rows_written = 0

    def path_for(self, target: str, category: str) -> Path:
        label = self.target_labels.get(target, target.lower())
        return self.output_dir / f"{category}-courses_{label}.csv"

    def write(self, target: str, category: str, record: Dict[str, Any]) -> Path:
        """Append a record; returns the file written to."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(target, category)
        is_new = not path.exists()

        row = dict(record)
        row["updatedAt"] = datetime.now().isoformat()

        with open(path, "a", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, quoting=csv.QUOTE_ALL)
            if is_new:
                writer.writerow(self.columns)
                logger.info(f"Created output file {path}")
            writer.writerow([_cell(row.get(column)) for column in self.columns])

        self.rows_written += 1
        return path


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
