"""Pipeline CLI Entry Point

Provides the command-line interface for the DFID research output transition.
Handles argument parsing, logging configuration, and orchestration of the
run from SPARQL query results to publishing payloads.

Usage:
    python -m src.run_pipeline --input data/solutions.json --output-dir output
    python -m src.run_pipeline --print-query outputs
"""

# run_pipeline.py
import argparse
import logging
import time
from pathlib import Path

from src.dfid_transition.config import FETCH_MAX_WORKERS, SKIP_ATTACHMENT_FETCH
from src.dfid_transition.pipeline import run_pipeline
from src.dfid_transition.queries import QUERIES


def configure_logging() -> None:
    """Configure logging with both console and file output.

    Sets up:
      - Root logger at DEBUG level
      - Console handler at INFO level for user-facing messages
      - File handler at DEBUG level for detailed troubleshooting
      - Reduced verbosity for requests and urllib3 loggers
    """
    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)
    log_file = log_dir / "pipeline.log"

    # Root logger
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # Console handler: high-level INFO+
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    # File handler: detailed DEBUG+
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    # Clear existing handlers to avoid duplicates if run multiple times
    logger.handlers.clear()
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)


def main(argv=None) -> int:
    """
    CLI entrypoint for the research output transition.

    Parses command-line arguments, runs the pipeline end-to-end,
    and returns a Unix-style exit code (0 on success, non-zero on failure).
    """
    parser = argparse.ArgumentParser(
        description="DFID research output transition pipeline"
    )
    parser.add_argument(
        "--input",
        type=Path,
        default=Path("data/solutions.json"),
        help="Path to SPARQL JSON results file.",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Directory where output files will be written.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Optional limit on number of solutions to process.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Process data but don't write any output files",
    )
    parser.add_argument(
        "--no-history",
        action="store_true",
        help="Overwrite output files instead of creating timestamped versions",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=FETCH_MAX_WORKERS,
        help=f"Concurrent attachment fetches (default: {FETCH_MAX_WORKERS})",
    )
    parser.add_argument(
        "--skip-attachment-fetch",
        action="store_true",
        default=SKIP_ATTACHMENT_FETCH,
        help="Classify attachments without downloading or hashing them",
    )
    parser.add_argument(
        "--print-query",
        choices=sorted(QUERIES),
        default=None,
        help="Print the SPARQL query that produces the input file and exit",
    )

    args = parser.parse_args(argv)

    if args.print_query:
        print(QUERIES[args.print_query])
        return 0

    configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("=== Starting DFID research output transition ===")
    logger.info("Input: %s", args.input)
    logger.info("Output directory: %s", args.output_dir)
    logger.info("Limit: %s", args.limit if args.limit else "None (all solutions)")
    logger.info("Dry_run: %s", args.dry_run)
    logger.info("Keep history: %s", not args.no_history)
    logger.info("Max workers: %d", args.max_workers)

    if args.dry_run:
        logger.info("DRY RUN MODE: No files will be written")

    try:
        start_time = time.time()

        total, processed_count, output_paths = run_pipeline(
            input_path=args.input,
            output_dir=args.output_dir,
            limit=args.limit,
            dry_run=args.dry_run,
            keep_history=not args.no_history,
            max_workers=args.max_workers,
            skip_attachment_fetch=args.skip_attachment_fetch,
        )

        elapsed_time = time.time() - start_time

        logger.info("=" * 70)
        logger.info("Transition completed successfully in %.2fs", elapsed_time)
        logger.info("")
        logger.info("Summary:")
        logger.info("  Input:      %s", args.input)
        logger.info("  Processed:  %d/%d outputs", processed_count, total)
        if args.skip_attachment_fetch:
            logger.info("  Attachments: Not fetched")
        else:
            logger.info("  Attachments: Fetched")
        logger.info("")
        logger.info("Output files:")
        for name, path in output_paths.items():
            logger.info("  %-12s %s", f"{name}:", path)
        logger.info("=" * 70)

    except Exception as e:
        logger.exception(f"Transition failed with an unhandled exception: {e}")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
