"""Unit tests for app.services.query_params: tolerant parsing of request parameters."""

import unittest
from datetime import datetime

from app.services.query_engine import MAX_PAGE
from app.services.query_params import (
    parse_date_param,
    parse_filter_params,
    parse_list_param,
    parse_number,
    parse_page_params,
    parse_sort_params,
)


class TestListAndNumbers(unittest.TestCase):
    def test_comma_separated_lists(self) -> None:
        self.assertEqual(parse_list_param("HIGH, LOW,,"), ["HIGH", "LOW"])
        self.assertEqual(parse_list_param(["a,b", "c"]), ["a", "b", "c"])
        self.assertEqual(parse_list_param(None), [])
        self.assertEqual(parse_list_param(""), [])

    def test_numbers(self) -> None:
        self.assertEqual(parse_number("7.5"), 7.5)
        self.assertEqual(parse_number(3), 3.0)
        self.assertIsNone(parse_number("seven"))
        self.assertIsNone(parse_number("inf"))
        self.assertIsNone(parse_number(None))

    def test_dates_from_epoch_ms_or_iso(self) -> None:
        self.assertEqual(parse_date_param("1704067200000"), datetime(2024, 1, 1))
        self.assertEqual(parse_date_param("2024-01-01T00:00:00Z"), datetime(2024, 1, 1))
        self.assertIsNone(parse_date_param("not a date"))


class TestFilterParams(unittest.TestCase):
    def test_malformed_values_impose_no_constraint(self) -> None:
        spec = parse_filter_params(
            severity="high,Critical",
            repo="  ",
            kai_exclude="invalid - norisk",
            date_from="garbage",
            cvss_min="abc",
            cvss_max="9.5",
            search="  openssl ",
        )
        self.assertEqual(spec.severities, frozenset({"HIGH", "CRITICAL"}))
        self.assertIsNone(spec.repo)
        self.assertEqual(spec.kai_exclude, frozenset({"invalid - norisk"}))
        self.assertIsNone(spec.date_from)
        self.assertIsNone(spec.cvss_min)
        self.assertEqual(spec.cvss_max, 9.5)
        self.assertEqual(spec.search, "openssl")

    def test_empty_call_is_unconstrained(self) -> None:
        spec = parse_filter_params()
        self.assertEqual(spec.severities, frozenset())
        self.assertIsNone(spec.search)


class TestSortAndPage(unittest.TestCase):
    def test_sort_fallbacks(self) -> None:
        self.assertEqual(parse_sort_params("cvss", "ASC").model_dump(), {"key": "cvss", "direction": "asc"})
        self.assertEqual(parse_sort_params("bogus", "sideways").model_dump(), {"key": "severity", "direction": "desc"})
        self.assertEqual(parse_sort_params(None, None).key, "severity")

    def test_page_and_limit(self) -> None:
        self.assertEqual(parse_page_params(None, None), (1, 50))
        self.assertEqual(parse_page_params("0", "-5"), (1, 50))
        self.assertEqual(parse_page_params("3", "20"), (3, 20))
        self.assertEqual(parse_page_params("x", "100000"), (1, 500))
        self.assertEqual(parse_page_params(2, "10", default_limit=12, max_limit=5), (2, 5))

    def test_huge_page_is_clamped(self) -> None:
        page, limit = parse_page_params("1e20", "500")
        self.assertEqual(page, MAX_PAGE)
        self.assertLess((page - 1) * limit, 2**63)
