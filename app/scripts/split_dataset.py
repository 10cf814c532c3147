"""
Split a monolithic dataset into gzip chunk files plus a manifest. Run from project root:
  python -m app.scripts.split_dataset --input public/ui_demo.json --out public/chunks --chunk-mb 5
"""
import argparse
import logging
import sys

from app.services.errors import IngestionError
from app.services.splitter import MAX_ROWS_PER_CHUNK, split_dataset

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Split a nested vulnerability dataset into chunks.")
    parser.add_argument("--input", default="public/ui_demo.json", help="Monolithic dataset (JSON or gzip)")
    parser.add_argument("--out", default="public/chunks", help="Output directory for chunks and manifest")
    parser.add_argument("--chunk-mb", type=float, default=5.0, help="Target serialized size per chunk (MiB)")
    parser.add_argument("--max-rows", type=int, default=MAX_ROWS_PER_CHUNK, help="Rows per chunk at most")
    args = parser.parse_args(argv)

    if args.chunk_mb <= 0:
        print("--chunk-mb must be positive.", file=sys.stderr)
        return 1

    try:
        manifest = split_dataset(
            args.input,
            args.out,
            chunk_bytes=int(args.chunk_mb * 1024 * 1024),
            max_rows=args.max_rows,
        )
    except (OSError, IngestionError) as e:
        logger.error("Failed to split dataset: %s", e)
        return 1
    print(f"Wrote {len(manifest.chunks)} chunks ({manifest.total} rows) to {args.out}.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
