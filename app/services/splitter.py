"""
Dataset splitter: rewrite a monolithic nested document as gzip chunk files plus a manifest.

Each row is the upstream entry with groupName/repoName/imageName added, so the
source reader recovers the same context (and ids) from the chunks.
"""

import gzip
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from app.schemas.ingestion import Manifest, ManifestChunk
from app.services.source_reader import FetchedPayload, decode_payload, iter_dataset_entries, parse_json_document

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_BYTES = 5 * 1024 * 1024
MAX_ROWS_PER_CHUNK = 5000
GZIP_LEVEL = 9
MANIFEST_NAME = "manifest.json"


def chunk_file_name(index: int) -> str:
    return f"chunk-{index:03d}.json.gz"


def _write_chunk(out_dir: Path, index: int, rows: list[dict[str, Any]]) -> ManifestChunk:
    name = chunk_file_name(index)
    path = out_dir / name
    payload = json.dumps({"rows": rows}, ensure_ascii=False).encode("utf-8")
    path.write_bytes(gzip.compress(payload, compresslevel=GZIP_LEVEL))
    chunk = ManifestChunk(url=name, count=len(rows), bytes=path.stat().st_size)
    logger.info("Chunk written", extra={"chunk": name, "rows": chunk.count, "bytes": chunk.bytes})
    return chunk


def split_dataset(
    input_path: str | Path,
    out_dir: str | Path,
    chunk_bytes: int = DEFAULT_CHUNK_BYTES,
    max_rows: int = MAX_ROWS_PER_CHUNK,
) -> Manifest:
    """
    Split input_path into chunk-NNN.json.gz files and manifest.json under out_dir.

    A chunk is flushed before a row that would push its serialized size past
    chunk_bytes, or once it holds max_rows rows. Returns the written manifest.
    """
    chunk_bytes = max(1, chunk_bytes)
    max_rows = max(1, max_rows)
    source = Path(input_path)
    target = Path(out_dir)
    target.mkdir(parents=True, exist_ok=True)

    data = decode_payload(FetchedPayload(location=str(source), data=source.read_bytes()))
    document = parse_json_document(data, str(source))
    del data

    chunks: list[ManifestChunk] = []
    rows: list[dict[str, Any]] = []
    approx_bytes = 0
    total = 0
    for entry in iter_dataset_entries(document):
        raw = dict(entry.raw) if isinstance(entry.raw, Mapping) else {}
        row = {
            **raw,
            "groupName": entry.context.group,
            "repoName": entry.context.repo,
            "imageName": entry.context.image,
        }
        size = len(json.dumps(row, ensure_ascii=False).encode("utf-8"))
        if rows and (approx_bytes + size > chunk_bytes or len(rows) >= max_rows):
            chunks.append(_write_chunk(target, len(chunks), rows))
            rows = []
            approx_bytes = 0
        rows.append(row)
        approx_bytes += size
        total += 1
    if rows:
        chunks.append(_write_chunk(target, len(chunks), rows))

    manifest = Manifest(version=1, total=total, chunks=chunks)
    (target / MANIFEST_NAME).write_text(
        json.dumps(manifest.model_dump(), indent=2), encoding="utf-8"
    )
    logger.info(
        "Dataset split",
        extra={"source": str(source), "total": total, "chunk_count": len(chunks)},
    )
    return manifest
