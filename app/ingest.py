"""
CLI bulk loader: ingest the configured (or given) data sources into the store.

  python -m app.ingest
  python -m app.ingest public/chunks/manifest.json public/ui_demo.json --force

Exits 0 when ingestion completed or was skipped (store already populated),
1 on failure.
"""

import argparse
import logging
import sys

from app.core.config import get_settings
from app.core.database import init_db
from app.schemas.ingestion import IngestionProgress
from app.services.errors import IngestionError
from app.services.ingestion import IngestionPipeline
from app.services.store import get_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def _log_progress(progress: IngestionProgress) -> None:
    if progress.expected_total:
        logger.info(
            "Ingested %s/%s records (%s batches)",
            progress.committed,
            progress.expected_total,
            progress.batches,
        )
    else:
        logger.info("Ingested %s records (%s batches)", progress.committed, progress.batches)


def main(argv: list[str] | None = None) -> int:
    """Create tables, then ingest unless the store already holds records."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Load vulnerability data sources into the store.")
    parser.add_argument(
        "sources",
        nargs="*",
        help="Candidate sources in priority order (default: DATA_SOURCES)",
    )
    parser.add_argument("--force", action="store_true", help="Ingest even if the store has records")
    parser.add_argument("--reset", action="store_true", help="Delete all records before ingesting")
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.INGEST_BATCH_SIZE,
        help="Records per committed batch",
    )
    args = parser.parse_args(argv)
    sources = args.sources or settings.data_source_list

    try:
        init_db()
        store = get_store()
        if args.reset:
            store.reset()
        existing = store.count()
        if existing and not args.force:
            logger.info("Store already holds %s records; skipping (use --force to re-ingest)", existing)
            return 0
        pipeline = IngestionPipeline(
            store,
            batch_size=args.batch_size,
            timeout=settings.SOURCE_REQUEST_TIMEOUT_SEC,
        )
        committed = pipeline.run(sources, progress=_log_progress)
        logger.info("Ingestion completed: committed=%s store_count=%s", committed, store.count())
        return 0
    except IngestionError as e:
        logger.error("Ingestion failed: %s", e.message)
        return 1
    except Exception as e:
        logger.exception("Ingestion failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
