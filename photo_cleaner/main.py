import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from . import config
from .core import PhotoCleanerApp
from .library.source import FilesystemAssetSource
from .models import DuplicateMode, ScanOptions, SimilarityThreshold
from .reporting import ReportGenerator
from .scanning.events import (
    Cancelled,
    Completed,
    DuplicateGroupFound,
    Failed,
    Progress,
    ScanPhase,
)


def setup_logging(log_file: Path, verbose: bool):
    """Sets up logging to both console and a file next to the cache database."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.WARNING)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Photo Cleaner: find duplicates and problem photos in a library")

    p.add_argument("src", type=Path, help="Library root directory to scan")
    p.add_argument("--db", type=Path, default=None,
                   help=f"Custom path for the scan cache (default: src/{config.DEFAULT_DB_NAME})")
    p.add_argument("--incremental", action="store_true",
                   help="Only hash assets added since the last pass; reuse cached results for the rest")

    p.add_argument("--mode", choices=["exact", "similar"], default="similar",
                   help="Duplicate detection: byte-identical only, or also visually similar")
    p.add_argument("--threshold", type=int, choices=config.SIMILARITY_PERCENTAGES,
                   default=config.DEFAULT_SIMILARITY_PERCENT, help="Similarity threshold in percent")
    p.add_argument("--large-file-mb", type=int, choices=config.LARGE_FILE_SIZE_OPTIONS_MB,
                   default=config.DEFAULT_LARGE_FILE_THRESHOLD // config.MB,
                   help="Flag photos at or above this size")

    p.add_argument("--report-csv", type=Path, default=None, help="Write all issues to this CSV")
    p.add_argument("--groups-csv", type=Path, default=None, help="Write duplicate groups to this CSV")

    p.add_argument("--delete-duplicates", action="store_true",
                   help="Delete every duplicate except the chosen original")
    p.add_argument("--dry-run", action="store_true", help="Simulate deletions without modifying disk")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    return p.parse_args(argv)


def build_options(args) -> ScanOptions:
    return ScanOptions(
        duplicate_mode=DuplicateMode.EXACT_ONLY if args.mode == "exact" else DuplicateMode.INCLUDE_SIMILAR,
        similarity_threshold=SimilarityThreshold(args.threshold),
        large_file_threshold_bytes=args.large_file_mb * config.MB,
        incremental=args.incremental,
    )


def run_scan(app: PhotoCleanerApp, options: ScanOptions):
    """Drives one pass with a progress bar. Returns the terminal update."""
    bar: Optional[tqdm] = None
    terminal = None
    session = app.start_scan(options)
    try:
        try:
            for update in session:
                if isinstance(update, Progress) and update.phase == ScanPhase.SCANNING:
                    if bar is None:
                        bar = tqdm(total=update.total, desc="Scanning", unit="photo")
                    bar.update(update.current - bar.n)
                elif isinstance(update, DuplicateGroupFound):
                    logging.debug(f"Duplicate group {update.group.group_id}: {update.group.count} photos")
                elif isinstance(update, (Completed, Cancelled, Failed)):
                    terminal = update
        except KeyboardInterrupt:
            logging.warning("Cancelling scan...")
            session.cancel()
            for update in session:
                if isinstance(update, (Completed, Cancelled, Failed)):
                    terminal = update
    finally:
        if bar is not None:
            bar.close()
        session.join()
    return terminal


def main(argv=None) -> int:
    args = parse_args(argv)

    src_root = args.src.resolve()
    db_path = args.db.resolve() if args.db else src_root / config.DEFAULT_DB_NAME

    setup_logging(db_path.parent / config.DEFAULT_LOG_NAME, args.verbose)

    logging.info("=== Photo Cleaner Started ===")
    logging.info(f"Library: {src_root}")
    logging.info(f"Cache:   {db_path}")

    if not src_root.is_dir():
        logging.error(f"Library root {src_root} does not exist.")
        return 1

    options = build_options(args)
    source = FilesystemAssetSource(src_root)

    with PhotoCleanerApp(db_path, source) as app:
        try:
            terminal = run_scan(app, options)
        except Exception:
            logging.exception("Fatal error during scan.")
            return 1

        if isinstance(terminal, Failed):
            logging.error(f"Scan failed: {terminal.message}")
            return 1
        if not isinstance(terminal, Completed):
            logging.warning("Scan cancelled; no results were saved.")
            return 1

        result = terminal.result
        reporter = ReportGenerator(result)
        for line in reporter.summary_lines():
            print(line)

        if args.report_csv:
            reporter.write_issues_csv(args.report_csv)
        if args.groups_csv:
            reporter.write_groups_csv(args.groups_csv)

        if args.delete_duplicates:
            outcome = app.delete_duplicates(result, dry_run=args.dry_run)
            if not outcome.ok:
                for asset_id, reason in outcome.failed.items():
                    logging.error(f"Could not delete {asset_id}: {reason}")
                return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
