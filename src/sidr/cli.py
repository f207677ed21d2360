"""
Command Line Interface Module - Scans a directory for Windows Search databases
and writes File, Activity History and Internet History reports for each.
"""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

import colorama
from colorama import Fore, Style

from . import ese, sqlite
from .constants import DEFAULT_CACHE_PAGES
from .exceptions import SidrError
from .report import ReportFormat, ReportOutput, ReportProducer
from .scanner import StoreKind, find_databases

logger = logging.getLogger(__name__)

COLOR_INFO = Fore.CYAN
COLOR_SUCCESS = Fore.GREEN
COLOR_ERROR = Fore.RED
COLOR_RESET = Style.RESET_ALL

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def build_argparser() -> argparse.ArgumentParser:
    """Build command-line argument parser"""
    parser = argparse.ArgumentParser(
        prog="sidr",
        description="SIDR (Search Index DB Reporter): parses Windows Search databases "
                    "(Windows.edb, Windows.db) found below a directory and reports file "
                    "activity, activity history and internet history.",
        epilog="Report files are named HOSTNAME_ReportName_DateTime.json|csv",
    )
    parser.add_argument(
        "input",
        help="Directory to scan recursively for Windows.edb and Windows.db",
    )
    parser.add_argument(
        "-f", "--format",
        choices=[f.value for f in ReportFormat],
        default=ReportFormat.JSON.value,
        help="Output report format (default: json)",
    )
    parser.add_argument(
        "-r", "--report-type",
        choices=[o.value for o in ReportOutput],
        default=ReportOutput.TO_FILE.value,
        help="Write reports to files or to stdout (default: to-file)",
    )
    parser.add_argument(
        "-o", "--outdir",
        metavar="OUTPUT_DIRECTORY",
        help="Directory where reports are created (created if missing, default: cwd)",
    )
    parser.add_argument(
        "-w", "--workers",
        type=int,
        default=1,
        help="Number of databases processed in parallel (default: 1)",
    )
    parser.add_argument(
        "--no-verify-checksums",
        action="store_true",
        help="Read ESE pages even if their checksum does not match",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


class Runner:
    """Processes each discovered database and reports progress"""

    def __init__(self, producer: ReportProducer, verify_checksums: bool = True,
                 show_status: bool = True):
        self.producer = producer
        self.verify_checksums = verify_checksums
        self.show_status = show_status
        self.failures: List[Path] = []

    def status(self, message: str, color: str = COLOR_INFO) -> None:
        if self.show_status:
            print(f"{color}{message}{COLOR_RESET}", flush=True)

    def process(self, path: Path, kind: StoreKind) -> bool:
        """Generate the reports of one database, logging instead of raising"""
        label = "ESE" if kind == StoreKind.ESE else "SQLite"
        self.status(f"Processing {label} db: {path}")
        try:
            if kind == StoreKind.ESE:
                counts = ese.generate_report(path, self.producer, self.verify_checksums,
                                             DEFAULT_CACHE_PAGES)
            else:
                counts = sqlite.generate_report(path, self.producer)
        except (SidrError, OSError) as e:
            logger.error(f"{label} report for {path} failed: {e}")
            self.status(f"Failed to process {path}: {e}", COLOR_ERROR)
            self.failures.append(path)
            return False

        summary = ", ".join(f"{name}: {count}" for name, count in counts.items())
        logger.info(f"{path}: {summary}")
        return True


def main(argv: Optional[List[str]] = None) -> int:
    """Main program entry point"""
    parser = build_argparser()
    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")

    configure_logging(args.verbose)
    colorama.init()

    input_dir = Path(args.input)
    if not input_dir.is_dir():
        logger.error(f"Input directory does not exist: {input_dir}")
        print(f"{COLOR_ERROR}Input directory does not exist: {input_dir}{COLOR_RESET}",
              file=sys.stderr)
        return 1

    output = ReportOutput(args.report_type)
    try:
        producer = ReportProducer(args.outdir, ReportFormat(args.format), output)
    except OSError as e:
        logger.error(f"Cannot create output directory {args.outdir}: {e}")
        return 1

    runner = Runner(producer, not args.no_verify_checksums,
                    show_status=output == ReportOutput.TO_FILE)

    databases = list(find_databases(input_dir))
    with ThreadPoolExecutor(max_workers=args.workers) as executor:
        list(executor.map(lambda item: runner.process(*item), databases))

    if databases:
        runner.status(f"\nFound {len(databases)} Windows Search database(s)", COLOR_SUCCESS)
    return 0


if __name__ == "__main__":
    sys.exit(main())
