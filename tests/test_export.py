"""Unit tests for app.services.export: CSV quoting and JSON shape."""

import json
import unittest
from datetime import datetime

from app.services.export import CSV_HEADERS, export_csv, export_json
from support import record


class TestExportCsv(unittest.TestCase):
    def test_header_and_rows_use_crlf(self) -> None:
        rows = [
            record(
                "g|r|i|CVE-1|0", "CRITICAL", 9.0, datetime(2024, 5, 1, 12, 30),
                cve="CVE-1", group_name="g", repo_name="r", image_name="i",
                package_name="openssl", kai_status="invalid - norisk", risk_factors=["Exploit", "Network"],
            ),
            record("g|r|i|row-1|1", "LOW", 7.25),
        ]
        lines = export_csv(rows).split("\r\n")
        self.assertEqual(lines[0], ",".join(CSV_HEADERS))
        self.assertEqual(
            lines[1],
            "g|r|i|CVE-1|0,CVE-1,CRITICAL,9,g,r,i,openssl,invalid - norisk,Exploit; Network,2024-05-01T12:30:00Z",
        )
        self.assertEqual(lines[2], "g|r|i|row-1|1,,LOW,7.25,,,,,,,")
        self.assertEqual(len(lines), 3)

    def test_fields_with_separators_are_quoted(self) -> None:
        text = export_csv([record("x", package_name="a,b", risk_factors=['say "hi"'])])
        row = text.split("\r\n")[1]
        self.assertIn('"a,b"', row)
        self.assertIn('"say ""hi"""', row)

    def test_empty_set_is_header_only(self) -> None:
        self.assertEqual(export_csv([]), ",".join(CSV_HEADERS))


class TestExportJson(unittest.TestCase):
    def test_camel_case_records(self) -> None:
        payload = json.loads(export_json([record("x", "HIGH", 7.0, repo_name="api")]))
        self.assertEqual(len(payload), 1)
        self.assertEqual(payload[0]["id"], "x")
        self.assertEqual(payload[0]["severityNormalized"], "HIGH")
        self.assertEqual(payload[0]["repoName"], "api")
