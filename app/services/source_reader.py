"""
Source reader: resolve prioritized candidate locations into a lazy stream of raw entries.

A candidate is a local path, a file:// URL or an http(s) URL. Its payload is either
a manifest ({"chunks": [...]}) whose chunk files are streamed in listed order, a
monolithic nested document ({"groups": {...}}) walked depth-first, or a single
chunk file ({"rows": [...]}). Payloads may be gzip-compressed.
"""

import gzip
import json
import logging
import time
import zlib
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urljoin, urlparse

import httpx
from pydantic import ValidationError

from app.schemas.ingestion import Manifest
from app.schemas.vulnerability import SourceContext
from app.services.errors import (
    DecodeError,
    DecompressionError,
    PayloadError,
    PointerFileError,
    SourceUnavailable,
    describe_attempts,
)

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
GZIP_SUFFIXES = (".gz", ".gzip")
# Git LFS pointer stub: a short text header served in place of the real binary.
POINTER_SIGNATURE = b"version https://git-lfs.github.com/spec/"
_POINTER_SNIFF_BYTES = 256
_REMOTE_SCHEMES = frozenset({"http", "https"})

DEFAULT_TIMEOUT_SEC = 60.0

Checkpoint = Callable[[], None]


@dataclass(frozen=True)
class SourceEntry:
    """One raw vulnerability entry with the group/repo/image it belongs to."""

    raw: Any
    context: SourceContext


@dataclass(frozen=True)
class FetchedPayload:
    location: str
    data: bytes
    # Content-Encoding reported by the transport; when set, data is already decoded.
    content_encoding: str | None = None


def yield_thread() -> None:
    """Default checkpoint: give other threads a chance to run."""
    time.sleep(0)


def is_remote(location: str) -> bool:
    return urlparse(location).scheme.lower() in _REMOTE_SCHEMES


def _is_file_url(location: str) -> bool:
    return location.lower().startswith("file://")


def _local_path(location: str) -> Path:
    if _is_file_url(location):
        return Path(unquote(urlparse(location).path))
    return Path(location)


def declares_gzip(location: str) -> bool:
    """True when the location's path ends in .gz/.gzip (query string ignored)."""
    path = urlparse(location).path if (is_remote(location) or _is_file_url(location)) else location
    return path.lower().endswith(GZIP_SUFFIXES)


def resolve_location(base: str, ref: str) -> str:
    """Resolve a chunk reference against the manifest's own location."""
    if is_remote(ref) or _is_file_url(ref):
        return ref
    if is_remote(base) or _is_file_url(base):
        return urljoin(base, ref)
    ref_path = Path(ref)
    if ref_path.is_absolute():
        return ref
    return str(Path(base).parent / ref_path)


def is_pointer_file(data: bytes) -> bool:
    """True if the payload starts with the large-file-storage pointer header."""
    head = data[:_POINTER_SNIFF_BYTES].lstrip(b"\xef\xbb\xbf \t\r\n")
    return head.startswith(POINTER_SIGNATURE)


def _gunzip(data: bytes, location: str) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressionError(
            f"Could not inflate gzip payload from {location}: {e}",
            cause=e,
            location=location,
        ) from e


def decode_payload(payload: FetchedPayload) -> bytes:
    """
    Return the JSON bytes of a fetched payload.

    Pointer stubs are rejected before anything else. gzip is inflated when the
    magic bytes are present. A payload whose name declares gzip but which is not
    gzip fails closed, unless the transport reported Content-Encoding: gzip (the
    body was then decoded in transit).
    """
    location = payload.location
    data = payload.data
    if is_pointer_file(data):
        raise PointerFileError(
            f"{location} is a large-file pointer stub, not the dataset; the binary payload was never fetched",
            location=location,
        )
    transport_decoded = "gzip" in (payload.content_encoding or "").lower()
    if data[:2] == GZIP_MAGIC:
        data = _gunzip(data, location)
    elif declares_gzip(location) and not transport_decoded:
        raise DecompressionError(
            f"{location} is declared as gzip but does not contain a gzip stream",
            location=location,
        )
    if is_pointer_file(data):
        raise PointerFileError(
            f"{location} decompresses to a large-file pointer stub, not the dataset",
            location=location,
        )
    return data


def parse_json_document(data: bytes, location: str) -> dict[str, Any]:
    """Parse payload bytes as a JSON object."""
    try:
        document = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON in {location}: {e}", cause=e, location=location) from e
    if not isinstance(document, dict):
        raise DecodeError(
            f"{location} must contain a JSON object, got {type(document).__name__}",
            location=location,
        )
    return document


def detect_shape(document: Mapping[str, Any], location: str) -> str:
    """Return 'manifest', 'dataset' or 'chunk' for a decoded root object."""
    if isinstance(document.get("chunks"), list):
        return "manifest"
    if isinstance(document.get("groups"), Mapping):
        return "dataset"
    if isinstance(document.get("rows"), list):
        return "chunk"
    raise DecodeError(
        f"{location} is neither a manifest (chunks), a dataset (groups) nor a chunk (rows)",
        location=location,
    )


def _items(value: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(value, Mapping):
        for key, item in value.items():
            yield str(key), item


def _child(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, Mapping) else None


def iter_dataset_entries(
    document: Mapping[str, Any],
    checkpoint: Checkpoint | None = None,
) -> Iterator[SourceEntry]:
    """Walk groups -> repos -> images -> vulnerabilities depth-first; checkpoint once per image."""
    for group_name, group in _items(document.get("groups")):
        for repo_name, repo in _items(_child(group, "repos")):
            for image_name, image in _items(_child(repo, "images")):
                if checkpoint is not None:
                    checkpoint()
                vulns = _child(image, "vulnerabilities")
                if not isinstance(vulns, list):
                    continue
                context = SourceContext(group_name, repo_name, image_name)
                for vuln in vulns:
                    yield SourceEntry(vuln, context)


def _row_context(row: Any) -> SourceContext:
    """Context carried inline by chunk rows (added by the splitter)."""
    if not isinstance(row, Mapping):
        return SourceContext()
    return SourceContext(
        str(row.get("groupName") or ""),
        str(row.get("repoName") or ""),
        str(row.get("imageName") or ""),
    )


def iter_chunk_entries(document: Mapping[str, Any], location: str) -> Iterator[SourceEntry]:
    rows = document.get("rows")
    if not isinstance(rows, list):
        raise DecodeError(f"Chunk {location} has no 'rows' array", location=location)
    for row in rows:
        yield SourceEntry(row, _row_context(row))


class SourceReader:
    """
    Lazily stream raw entries from the first readable candidate source.

    Candidates are tried in order when resolving the root document; any failure
    moves on to the next one. Once streaming has begun (manifest chunks), a
    failure aborts the stream.
    """

    def __init__(
        self,
        candidates: Sequence[str],
        *,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        client: httpx.Client | None = None,
        checkpoint: Checkpoint | None = None,
    ) -> None:
        self.candidates = [c.strip() for c in candidates if c and c.strip()]
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._checkpoint = checkpoint or yield_thread
        self._count = 0
        self.location: str | None = None
        self.shape: str | None = None
        self.expected_total: int | None = None

    @property
    def progress(self) -> int:
        """Entries yielded so far."""
        return self._count

    def open(self) -> Iterator[SourceEntry]:
        """
        Resolve the root candidate now and return a lazy entry stream.

        Raises SourceUnavailable (or the shared PayloadError subclass when every
        candidate failed the same way) when no candidate is usable.
        """
        try:
            shape, root, location = self._resolve_root()
        except Exception:
            self.close()
            raise
        self.location = location
        self.shape = shape
        return self._stream(shape, root, location)

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._client

    def _fetch(self, location: str) -> FetchedPayload:
        if is_remote(location):
            try:
                response = self._http().get(location)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise SourceUnavailable(f"Could not fetch {location}: {e}", cause=e) from e
            return FetchedPayload(
                location=location,
                data=response.content,
                content_encoding=response.headers.get("content-encoding"),
            )
        path = _local_path(location)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise SourceUnavailable(f"Could not read {path}: {e}", cause=e) from e
        return FetchedPayload(location=location, data=data)

    def _load_document(self, location: str) -> dict[str, Any]:
        return parse_json_document(decode_payload(self._fetch(location)), location)

    def _resolve_root(self) -> tuple[str, Any, str]:
        if not self.candidates:
            raise SourceUnavailable("No data source candidates configured")
        attempts: list[tuple[str, Exception]] = []
        for location in self.candidates:
            try:
                document = self._load_document(location)
                shape = detect_shape(document, location)
                if shape == "manifest":
                    try:
                        manifest = Manifest.model_validate(document)
                    except ValidationError as e:
                        raise DecodeError(
                            f"Invalid manifest {location}: {e}", cause=e, location=location
                        ) from e
                    self.expected_total = manifest.total
                    return shape, manifest, location
                if shape == "chunk":
                    self.expected_total = len(document["rows"])
                return shape, document, location
            except (SourceUnavailable, PayloadError) as e:
                logger.warning(
                    "Data source candidate failed",
                    extra={"source": location, "error_type": type(e).__name__, "reason": e.message},
                )
                attempts.append((location, e))
        raise self._exhausted(attempts)

    @staticmethod
    def _exhausted(attempts: list[tuple[str, Exception]]) -> Exception:
        detail = describe_attempts(attempts)
        last_location, last_error = attempts[-1]
        kinds = {type(err) for _, err in attempts}
        if len(kinds) == 1:
            kind = kinds.pop()
            if issubclass(kind, PayloadError):
                return kind(
                    f"All data sources failed: {detail}",
                    cause=last_error,
                    location=last_location,
                    attempts=attempts,
                )
        return SourceUnavailable(
            f"All data sources failed: {detail}",
            cause=last_error,
            attempts=attempts,
        )

    def _stream(self, shape: str, root: Any, location: str) -> Iterator[SourceEntry]:
        try:
            if shape == "manifest":
                entries = self._iter_manifest(root, location)
            elif shape == "chunk":
                entries = iter_chunk_entries(root, location)
            else:
                entries = iter_dataset_entries(root, self._checkpoint)
            del root
            for entry in entries:
                self._count += 1
                yield entry
        finally:
            self.close()

    def _iter_manifest(self, manifest: Manifest, location: str) -> Iterator[SourceEntry]:
        logger.info(
            "Streaming manifest",
            extra={"source": location, "chunk_count": len(manifest.chunks), "expected_total": manifest.total},
        )
        for index, chunk in enumerate(manifest.chunks):
            self._checkpoint()
            chunk_location = resolve_location(location, chunk.url)
            document = self._load_document(chunk_location)
            entries = iter_chunk_entries(document, chunk_location)
            del document
            yield from entries
            logger.debug(
                "Chunk streamed",
                extra={"chunk_index": index, "chunk": chunk_location, "entries_so_far": self._count},
            )
