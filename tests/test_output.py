"""Tests for CSV output."""

import csv

from portal_crawler.constants import CSV_COLUMNS
from portal_crawler.output import CsvItemSink


def read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


class TestCsvItemSink:
    """Tests for per-target CSV files."""

    def test_file_name_uses_target_label(self, tmp_path):
        sink = CsvItemSink(str(tmp_path))

        path = sink.write("UK", "masters", {"courseName": "Data Science"})

        assert path.name == "masters-courses_united-kingdom.csv"

    def test_header_written_once(self, tmp_path):
        sink = CsvItemSink(str(tmp_path))

        sink.write("UK", "masters", {"courseName": "A"})
        path = sink.write("UK", "masters", {"courseName": "B"})

        rows = read_rows(path)
        assert rows[0] == CSV_COLUMNS
        assert [row[0] for row in rows[1:]] == ["A", "B"]
        assert sink.rows_written == 2

    def test_appends_to_existing_file(self, tmp_path):
        CsvItemSink(str(tmp_path)).write("UK", "masters", {"courseName": "A"})

        path = CsvItemSink(str(tmp_path)).write("UK", "masters", {"courseName": "B"})

        assert len(read_rows(path)) == 3

    def test_structured_values_serialized_as_json(self, tmp_path):
        sink = CsvItemSink(str(tmp_path))

        path = sink.write("Germany", "bachelors", {
            "courseName": 'Physics "Honours"',
            "intakes": ["Oct 2026"],
            "languageRequirements": {"IELTS": "6.5"},
            "tuitionFee": None,
        })

        header, row = read_rows(path)
        values = dict(zip(header, row))
        assert values["courseName"] == 'Physics "Honours"'
        assert values["intakes"] == '["Oct 2026"]'
        assert values["languageRequirements"] == '{"IELTS": "6.5"}'
        assert values["tuitionFee"] == ""
        assert values["updatedAt"]

    def test_every_value_quoted(self, tmp_path):
        sink = CsvItemSink(str(tmp_path))

        path = sink.write("UK", "masters", {"courseName": "A"})

        data_line = path.read_text(encoding="utf-8").splitlines()[1]
        assert data_line.startswith('"A",""')

    def test_unknown_target_lowercased(self, tmp_path):
        sink = CsvItemSink(str(tmp_path))

        assert sink.path_for("France", "masters").name == "masters-courses_france.csv"
