"""HTTP tests for the v1 routes using TestClient with database, store and pipeline dependencies overridden."""

import threading
import unittest
from collections.abc import Iterator
from datetime import datetime

from fastapi.testclient import TestClient

from app.api.v1.vulnerabilities import get_query_engine
from app.core.database import get_db
from app.main import app
from app.schemas.vulnerability import SourceContext
from app.services.ingestion import IngestionPipeline, get_ingestion_pipeline
from app.services.memory_engine import MemoryQueryEngine
from app.services.source_reader import SourceEntry
from app.services.store import get_store
from support import make_store, record

PREFIX = "/api/v1"


def _records():
    return [
        record("a1", "CRITICAL", 9.8, datetime(2024, 1, 5), cve="CVE-2024-0001", repo_name="api",
               package_name="openssl", kai_status="invalid - norisk", risk_factors=["Exploit"]),
        record("a2", "HIGH", 7.5, datetime(2024, 2, 5), cve="CVE-2024-0002", repo_name="api",
               package_name="zlib"),
        record("b1", "LOW", 3.1, None, cve="CVE-2023-0003", repo_name="web", package_name="lodash,js"),
    ]


class _GatedReader:
    def __init__(self, checkpoint, gate: threading.Event, count: int = 4) -> None:
        self._checkpoint = checkpoint
        self._gate = gate
        self._count = count
        self.expected_total = count

    def open(self) -> Iterator[SourceEntry]:
        return self._stream()

    def _stream(self) -> Iterator[SourceEntry]:
        for i in range(self._count):
            self._checkpoint()
            self._gate.wait(timeout=5)
            yield SourceEntry({"cve": f"CVE-2025-{i:04d}", "severity": "medium"}, SourceContext("g", "r", "i"))


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.store, session_factory, engine = make_store()
        self.addCleanup(engine.dispose)
        self.gate = threading.Event()
        self.gate.set()
        self.addCleanup(self.gate.set)
        self.pipeline = IngestionPipeline(
            self.store,
            batch_size=2,
            reader_factory=lambda sources, checkpoint: _GatedReader(checkpoint, self.gate),
        )

        def override_db():
            session = session_factory()
            try:
                yield session
            finally:
                session.close()

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_store] = lambda: self.store
        app.dependency_overrides[get_ingestion_pipeline] = lambda: self.pipeline
        self.addCleanup(app.dependency_overrides.clear)
        self.client = TestClient(app)


class TestHealth(ApiTestCase):
    def test_health_reports_store(self) -> None:
        self.store.upsert_batch(_records())
        response = self.client.get(f"{PREFIX}/health/")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["database"], "connected")
        self.assertEqual(body["records"], 3)
        self.assertEqual(body["ingestion"], "idle")


class TestVulnerabilityRoutes(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store.upsert_batch(_records())

    def test_query_with_facets(self) -> None:
        response = self.client.get(f"{PREFIX}/vulnerabilities", params={"severity": "high,critical"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["total"], 2)
        self.assertEqual(body["page"], 1)
        self.assertEqual(body["limit"], 50)
        self.assertEqual([r["id"] for r in body["data"]], ["a1", "a2"])
        self.assertEqual(body["data"][0]["severityRank"], 0)
        metrics = body["metrics"]
        self.assertEqual(metrics["kpis"], {"total": 3, "remain": 2, "removed": 1, "pctRemain": 2 / 3})
        self.assertEqual(metrics["severityCounts"][0], {"name": "CRITICAL", "value": 1})
        self.assertEqual(metrics["trend"][0]["month"], "2024-01")
        self.assertEqual(metrics["trend"][0]["CRITICAL"], 1)
        self.assertEqual(body["options"]["kaiStatuses"], ["invalid - norisk"])
        self.assertEqual(body["options"]["cvssRange"], {"min": 7.5, "max": 9.8})

    def test_malformed_parameters_are_tolerated(self) -> None:
        response = self.client.get(
            f"{PREFIX}/vulnerabilities",
            params={"cvssMin": "abc", "dateFrom": "soon", "page": "-2", "limit": "lots", "sort": "nope"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual((body["total"], body["page"], body["limit"]), (3, 1, 50))

    def test_huge_page_returns_empty_page(self) -> None:
        response = self.client.get(f"{PREFIX}/vulnerabilities", params={"page": "1e20", "includeFacets": "false"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"], [])
        self.assertEqual(response.json()["total"], 3)

    def test_sort_pagination_and_no_facets(self) -> None:
        response = self.client.get(
            f"{PREFIX}/vulnerabilities",
            params={"sort": "cvss", "direction": "asc", "limit": "2", "page": "2", "includeFacets": "false"},
        )
        body = response.json()
        self.assertEqual([r["id"] for r in body["data"]], ["a1"])
        self.assertIsNone(body["metrics"])
        self.assertIsNone(body["options"])

    def test_exclude_and_risk_factor_filters(self) -> None:
        excluded = self.client.get(f"{PREFIX}/vulnerabilities", params={"kaiExclude": "invalid - norisk"}).json()
        self.assertEqual([r["id"] for r in excluded["data"]], ["a2", "b1"])
        factor = self.client.get(f"{PREFIX}/vulnerabilities", params={"riskFactor": "Exploit,Other"}).json()
        self.assertEqual([r["id"] for r in factor["data"]], ["a1"])

    def test_suggest(self) -> None:
        response = self.client.get(f"{PREFIX}/vulnerabilities/suggest", params={"term": "api", "limit": "1"})
        self.assertEqual(response.status_code, 200)
        suggestions = response.json()["suggestions"]
        self.assertEqual(len(suggestions), 1)
        self.assertEqual(suggestions[0]["value"], "CVE-2024-0001")
        self.assertEqual(suggestions[0]["meta"]["packageName"], "openssl")
        empty = self.client.get(f"{PREFIX}/vulnerabilities/suggest", params={"term": " "}).json()
        self.assertEqual(empty["suggestions"], [])

    def test_lookup(self) -> None:
        by_id = self.client.get(f"{PREFIX}/vulnerabilities/a2")
        self.assertEqual(by_id.status_code, 200)
        self.assertEqual(by_id.json()["cve"], "CVE-2024-0002")
        by_cve = self.client.get(f"{PREFIX}/vulnerabilities/cve-2023-0003")
        self.assertEqual(by_cve.json()["id"], "b1")
        missing = self.client.get(f"{PREFIX}/vulnerabilities/CVE-1999-0001")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json(), {"detail": "Not found"})
        blank = self.client.get(f"{PREFIX}/vulnerabilities/%20")
        self.assertEqual(blank.status_code, 400)

    def test_lookup_decodes_composite_ids(self) -> None:
        self.store.upsert_batch([record("grp|repo|img:1|CVE-9|0", "HIGH", cve="CVE-9")])
        response = self.client.get(f"{PREFIX}/vulnerabilities/grp%7Crepo%7Cimg%3A1%7CCVE-9%7C0")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["id"], "grp|repo|img:1|CVE-9|0")

    def test_export_csv(self) -> None:
        response = self.client.get(f"{PREFIX}/vulnerabilities/export", params={"format": "csv", "repo": "web"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/csv"))
        self.assertIn("attachment", response.headers["content-disposition"])
        lines = response.text.split("\r\n")
        self.assertEqual(len(lines), 2)
        self.assertIn('"lodash,js"', lines[1])

    def test_export_json_and_bad_format(self) -> None:
        response = self.client.get(f"{PREFIX}/vulnerabilities/export", params={"format": "json"})
        self.assertEqual([r["id"] for r in response.json()], ["a1", "a2", "b1"])
        bad = self.client.get(f"{PREFIX}/vulnerabilities/export", params={"format": "xml"})
        self.assertEqual(bad.status_code, 422)

    def test_memory_engine_serves_same_page(self) -> None:
        sql_body = self.client.get(f"{PREFIX}/vulnerabilities", params={"sort": "repoName"}).json()
        app.dependency_overrides[get_query_engine] = lambda: MemoryQueryEngine(_records())
        memory_body = self.client.get(f"{PREFIX}/vulnerabilities", params={"sort": "repoName"}).json()
        self.assertEqual(sql_body, memory_body)


class TestIngestionRoutes(ApiTestCase):
    def test_start_runs_in_background(self) -> None:
        response = self.client.post(f"{PREFIX}/ingestion", json={"sources": ["memory"]})
        self.assertEqual(response.status_code, 202)
        self.assertTrue(response.json()["started"])
        self.assertTrue(self.pipeline.wait(timeout=5))
        status = self.client.get(f"{PREFIX}/ingestion").json()
        self.assertEqual(status["storeCount"], 4)
        self.assertEqual(status["status"]["state"], "done")
        self.assertEqual(status["status"]["committed"], 4)

    def test_populated_store_skips_unless_forced(self) -> None:
        self.store.upsert_batch(_records())
        skipped = self.client.post(f"{PREFIX}/ingestion", json={})
        self.assertEqual(skipped.status_code, 200)
        self.assertFalse(skipped.json()["started"])
        self.assertEqual(skipped.json()["storeCount"], 3)

        reset = self.client.post(f"{PREFIX}/ingestion", json={"reset": True})
        self.assertEqual(reset.status_code, 202)
        self.assertTrue(self.pipeline.wait(timeout=5))
        self.assertEqual(self.store.count(), 4)

    def test_conflict_and_cancel_while_running(self) -> None:
        self.gate.clear()
        first = self.client.post(f"{PREFIX}/ingestion", json={"sources": ["memory"]})
        self.assertEqual(first.status_code, 202)
        second = self.client.post(f"{PREFIX}/ingestion", json={"sources": ["memory"]})
        self.assertEqual(second.status_code, 409)

        cancelled = self.client.post(f"{PREFIX}/ingestion/cancel")
        self.assertEqual(cancelled.status_code, 200)
        self.assertTrue(cancelled.json()["cancelled"])
        self.gate.set()
        self.assertTrue(self.pipeline.wait(timeout=5))
        self.assertEqual(self.pipeline.status().state.value, "cancelled")
        self.assertFalse(self.client.post(f"{PREFIX}/ingestion/cancel").json()["cancelled"])
