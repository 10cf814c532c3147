"""Unit tests for app.services.normalize: severity buckets, CVSS coercion, risk factors, review status, ids."""

import unittest
from datetime import datetime

from app.schemas.vulnerability import SEVERITY_ORDER, SourceContext
from app.services.normalize import (
    build_record_id,
    canonical_review_status,
    coerce_cvss,
    extract_risk_factors,
    normalize,
    normalize_severity,
    parse_date,
)

CONTEXT = SourceContext("platform", "api-gateway", "gateway:1.2")


class TestNormalizeSeverity(unittest.TestCase):
    """Free-form severities map to five buckets by substring."""

    def test_known_spellings(self) -> None:
        self.assertEqual(normalize_severity("Critical"), "CRITICAL")
        self.assertEqual(normalize_severity("CRIT"), "CRITICAL")
        self.assertEqual(normalize_severity("high"), "HIGH")
        self.assertEqual(normalize_severity("Medium"), "MEDIUM")
        self.assertEqual(normalize_severity("moderate-med"), "MEDIUM")
        self.assertEqual(normalize_severity("low"), "LOW")

    def test_missing_or_unrecognised_is_unknown(self) -> None:
        self.assertEqual(normalize_severity(None), "UNKNOWN")
        self.assertEqual(normalize_severity(""), "UNKNOWN")
        self.assertEqual(normalize_severity("negligible"), "UNKNOWN")
        self.assertEqual(normalize_severity(7), "UNKNOWN")


class TestCoerceCvss(unittest.TestCase):
    def test_first_usable_key_wins(self) -> None:
        self.assertEqual(coerce_cvss({"cvss": 7.5}), 7.5)
        self.assertEqual(coerce_cvss({"cvss": "n/a", "cvssScore": "6.1"}), 6.1)
        self.assertEqual(coerce_cvss({"cvssBaseScore": 4}), 4.0)

    def test_invalid_scores_are_absent(self) -> None:
        self.assertIsNone(coerce_cvss({}))
        self.assertIsNone(coerce_cvss({"cvss": 11}))
        self.assertIsNone(coerce_cvss({"cvss": -1}))
        self.assertIsNone(coerce_cvss({"cvss": True}))
        self.assertIsNone(coerce_cvss({"cvss": "nan"}))
        self.assertIsNone(coerce_cvss({"cvss": "  "}))


class TestExtractRiskFactors(unittest.TestCase):
    def test_list_form(self) -> None:
        self.assertEqual(
            extract_risk_factors(["RootAccess", "", " Exploit ", "RootAccess", None]),
            ["RootAccess", "Exploit"],
        )

    def test_keyed_object_form(self) -> None:
        self.assertEqual(
            extract_risk_factors({"Network": True, "Disabled": False, "Has fix": {}, "Exploit": 1}),
            ["Network", "Exploit"],
        )

    def test_other_shapes_are_empty(self) -> None:
        self.assertEqual(extract_risk_factors(None), [])
        self.assertEqual(extract_risk_factors("RootAccess"), [])
        self.assertEqual(extract_risk_factors(42), [])


class TestCanonicalReviewStatus(unittest.TestCase):
    def test_variants_map_to_canonical_tags(self) -> None:
        self.assertEqual(canonical_review_status("invalid - norisk"), ("invalid - norisk", None))
        self.assertEqual(canonical_review_status("Invalid_NoRisk"), ("invalid - norisk", None))
        self.assertEqual(canonical_review_status("AI-Invalid-NoRisk"), ("ai-invalid-norisk", None))
        self.assertEqual(canonical_review_status("ai   invalid norisk"), ("ai-invalid-norisk", None))

    def test_unknown_status_is_passed_through(self) -> None:
        self.assertEqual(canonical_review_status("needs-review"), (None, "needs-review"))

    def test_empty_status(self) -> None:
        self.assertEqual(canonical_review_status(None), (None, None))
        self.assertEqual(canonical_review_status(""), (None, None))


class TestParseDate(unittest.TestCase):
    def test_iso_with_offset_becomes_naive_utc(self) -> None:
        self.assertEqual(parse_date("2024-03-01T02:00:00+02:00"), datetime(2024, 3, 1, 0, 0))

    def test_epoch_milliseconds(self) -> None:
        self.assertEqual(parse_date(1_704_067_200_000), datetime(2024, 1, 1))

    def test_garbage_is_none(self) -> None:
        self.assertIsNone(parse_date("yesterday"))
        self.assertIsNone(parse_date(""))
        self.assertIsNone(parse_date(True))
        self.assertIsNone(parse_date({"date": "2024-01-01"}))


class TestNormalize(unittest.TestCase):
    """normalize() is total and derives unique ids."""

    def test_full_entry(self) -> None:
        raw = {
            "id": "VULN-1",
            "cve": "CVE-2024-0001",
            "severity": "High",
            "cvss": "8.1",
            "kaiStatus": "invalid - norisk",
            "riskFactors": {"Exploit": True},
            "packageName": "openssl",
            "version": "1.1.1",
            "description": "Buffer overflow",
            "publishedAt": "2024-02-10T00:00:00Z",
        }
        result = normalize(raw, CONTEXT, 7)
        self.assertEqual(result.id, "platform|api-gateway|gateway:1.2|VULN-1|7")
        self.assertEqual(result.source_id, "VULN-1")
        self.assertEqual(result.severity_raw, "High")
        self.assertEqual(result.severity_normalized, "HIGH")
        self.assertEqual(result.severity_rank, 1)
        self.assertEqual(result.cvss, 8.1)
        self.assertEqual(result.kai_status, "invalid - norisk")
        self.assertEqual(result.risk_factors, ["Exploit"])
        self.assertEqual(result.package_name, "openssl")
        self.assertEqual(result.package_version, "1.1.1")
        self.assertEqual(result.summary, "Buffer overflow")
        self.assertEqual(result.published_at, datetime(2024, 2, 10))
        self.assertEqual((result.group_name, result.repo_name, result.image_name), tuple(CONTEXT))

    def test_malformed_entry_degrades_to_defaults(self) -> None:
        result = normalize("not an object", CONTEXT, 3)
        self.assertEqual(result.id, "platform|api-gateway|gateway:1.2|row-3|3")
        self.assertEqual(result.severity_normalized, "UNKNOWN")
        self.assertEqual(result.severity_rank, 4)
        self.assertIsNone(result.cvss)
        self.assertEqual(result.risk_factors, [])

    def test_cve_is_base_key_without_upstream_id(self) -> None:
        result = normalize({"cve": "CVE-2024-9"}, SourceContext(), 0)
        self.assertEqual(result.id, "|||CVE-2024-9|0")

    def test_unmapped_review_status_kept_in_status(self) -> None:
        result = normalize({"kaiStatus": "pending"}, CONTEXT, 0)
        self.assertIsNone(result.kai_status)
        self.assertEqual(result.status, "pending")

    def test_ids_unique_for_repeated_cves(self) -> None:
        entries = [{"cve": "CVE-2024-1"}, {"cve": "CVE-2024-1"}, {}, {}]
        ids = {normalize(e, CONTEXT, i).id for i, e in enumerate(entries)}
        self.assertEqual(len(ids), len(entries))

    def test_rank_matches_bucket(self) -> None:
        for i, severity in enumerate(["critical", "high", "medium", "low", "whatever"]):
            result = normalize({"severity": severity}, CONTEXT, i)
            self.assertEqual(SEVERITY_ORDER[result.severity_rank], result.severity_normalized)

    def test_build_record_id(self) -> None:
        self.assertEqual(build_record_id(SourceContext("g", "r", "i"), "k", 12), "g|r|i|k|12")

    def test_falsy_upstream_id_falls_back_to_cve(self) -> None:
        for falsy in (0, False, ""):
            result = normalize({"id": falsy, "cve": "CVE-2024-5"}, CONTEXT, 2)
            self.assertEqual(result.id, "platform|api-gateway|gateway:1.2|CVE-2024-5|2")
        self.assertEqual(normalize({"id": 0}, CONTEXT, 4).id, "platform|api-gateway|gateway:1.2|row-4|4")
        self.assertEqual(normalize({"id": 17}, CONTEXT, 1).id, "platform|api-gateway|gateway:1.2|17|1")
