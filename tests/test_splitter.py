"""Tests for the dataset splitter and its CLI: chunks read back to the same canonical records."""

import gzip
import json
import tempfile
import unittest
from pathlib import Path

from app.scripts.split_dataset import main as split_main
from app.services.normalize import normalize
from app.services.source_reader import SourceReader
from app.services.splitter import split_dataset

DATASET = {
    "groups": {
        "platform": {
            "repos": {
                "api": {
                    "images": {
                        "api:1": {"vulnerabilities": [{"cve": "CVE-1", "severity": "high"}, {"cve": "CVE-1"}]},
                        "api:2": {"vulnerabilities": [{"id": "V-3", "cvss": 5.5}]},
                    }
                }
            }
        },
        "data": {"repos": {"etl": {"images": {"etl:1": {"vulnerabilities": [{"cve": "CVE-4"}, "junk"]}}}}},
    }
}


def _canonical_ids(source: Path) -> list[str]:
    entries = SourceReader([str(source)]).open()
    return [normalize(e.raw, e.context, i).id for i, e in enumerate(entries)]


class TestSplitDataset(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)
        self.source = self.root / "ui_demo.json"
        self.source.write_text(json.dumps(DATASET))

    def test_rows_per_chunk_limit(self) -> None:
        out = self.root / "chunks"
        manifest = split_dataset(self.source, out, max_rows=2)
        self.assertEqual(manifest.total, 5)
        self.assertEqual([c.count for c in manifest.chunks], [2, 2, 1])
        self.assertEqual([c.url for c in manifest.chunks], ["chunk-000.json.gz", "chunk-001.json.gz", "chunk-002.json.gz"])
        written = json.loads((out / "manifest.json").read_text())
        self.assertEqual(written["version"], 1)
        self.assertEqual(written["total"], 5)
        first = json.loads(gzip.decompress((out / "chunk-000.json.gz").read_bytes()))
        self.assertEqual(first["rows"][0]["groupName"], "platform")
        self.assertEqual(first["rows"][0]["imageName"], "api:1")
        self.assertEqual(manifest.chunks[0].bytes, (out / "chunk-000.json.gz").stat().st_size)

    def test_byte_limit_flushes_before_oversized_row(self) -> None:
        manifest = split_dataset(self.source, self.root / "tiny", chunk_bytes=1)
        self.assertEqual([c.count for c in manifest.chunks], [1, 1, 1, 1, 1])

    def test_chunks_yield_same_ids_as_monolithic_document(self) -> None:
        out = self.root / "chunks"
        split_dataset(self.source, out, max_rows=3)
        self.assertEqual(_canonical_ids(out / "manifest.json"), _canonical_ids(self.source))


class TestSplitDatasetCli(unittest.TestCase):
    def test_cli_writes_manifest(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "ui_demo.json"
            source.write_text(json.dumps(DATASET))
            out = Path(tmp) / "chunks"
            self.assertEqual(split_main(["--input", str(source), "--out", str(out), "--chunk-mb", "1"]), 0)
            self.assertTrue((out / "manifest.json").exists())

    def test_cli_missing_input_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            code = split_main(["--input", str(Path(tmp) / "missing.json"), "--out", str(Path(tmp) / "out")])
        self.assertEqual(code, 1)
