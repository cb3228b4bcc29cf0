"""
scan-library — Index every Ableton Live Set under the configured locations.

Shows a progress bar while batches are parsed. Ctrl+C cancels cleanly:
batches already written stay in the catalog.

Usage:
    python -m als_catalog.scan_library
    python -m als_catalog.scan_library --add ~/Music/Projects   # add a location first
    python -m als_catalog.scan_library --locations              # list locations and exit
    python -m als_catalog.scan_library --stats                  # print library stats after scanning
    python -m als_catalog.scan_library --no-scan --duplicates   # report duplicates only
"""

from __future__ import annotations

import argparse
import asyncio
import json
import shutil
import signal
import sys
import time

from loguru import logger

from .catalog_store import CatalogStoreError
from .library import ProjectLibrary
from .models import (
    ScanCancelled,
    ScanCompleted,
    ScanDiscovering,
    ScanFailed,
    ScanParsing,
    ScanProgress,
)
from .scanner import ScanError

# ── terminal helpers ──────────────────────────────────────────────────────────

_TERM_WIDTH = shutil.get_terminal_size((80, 20)).columns

GREEN  = "\033[0;32m"
YELLOW = "\033[1;33m"
RED    = "\033[0;31m"
CYAN   = "\033[0;36m"
BOLD   = "\033[1m"
DIM    = "\033[2m"
NC     = "\033[0m"


def _fmt_eta(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60:02d}s"
    h = seconds // 3600
    m = (seconds % 3600) // 60
    return f"{h}h {m:02d}m"


def _draw_progress(done: int, total: int, name: str, started: float) -> None:
    pct = done / total if total else 0
    bar_width = max(10, min(30, _TERM_WIDTH - 50))
    filled = int(bar_width * pct)
    bar = "█" * filled + "░" * (bar_width - filled)

    eta_str = ""
    elapsed = time.monotonic() - started
    if done and done < total:
        eta_str = f"  ETA {_fmt_eta(elapsed / done * (total - done))}"

    max_name = max(0, _TERM_WIDTH - bar_width - 35)
    if len(name) > max_name:
        name = name[:max(0, max_name - 1)] + "…"

    sys.stdout.write(
        f"\033[2K\r{CYAN}[{bar}]{NC} {BOLD}{done}/{total}{NC} "
        f"({pct*100:.0f}%){DIM}{eta_str}  {name}{NC}"
    )
    sys.stdout.flush()


class _ProgressPrinter:
    """Renders scan events to the terminal."""

    def __init__(self) -> None:
        self._location_started = time.monotonic()
        self._bar_open = False

    def _close_bar(self) -> None:
        if self._bar_open:
            sys.stdout.write("\n")
            self._bar_open = False

    def __call__(self, event: ScanProgress) -> None:
        if isinstance(event, ScanDiscovering):
            self._close_bar()
            print(f"{BOLD}{event.location}{NC}  scanning…")
            self._location_started = time.monotonic()
        elif isinstance(event, ScanParsing):
            _draw_progress(event.current, event.total, event.project_name, self._location_started)
            self._bar_open = True
        elif isinstance(event, ScanCompleted):
            self._close_bar()
            print(
                f"\n{GREEN}✓{NC} {event.project_count} projects indexed "
                f"in {event.duration_seconds:.1f}s"
            )
        elif isinstance(event, ScanCancelled):
            self._close_bar()
            print(f"\n{YELLOW}Cancelled{NC}: {event.project_count} projects kept")
        elif isinstance(event, ScanFailed):
            self._close_bar()
            print(f"\n{RED}Scan failed:{NC} {event.error}", file=sys.stderr)


def _print_locations(locations: list) -> None:
    print(f"\n{BOLD}Scan locations{NC}")
    print("─" * 40)
    if not locations:
        print("  (none)")
    for loc in locations:
        state = "" if loc.is_enabled else f" {DIM}(disabled){NC}"
        scanned = loc.last_scanned_at.strftime("%Y-%m-%d %H:%M") if loc.last_scanned_at else "never"
        print(f"  {loc.display_name:<20} {loc.project_count:>5} projects  {DIM}{scanned}{NC}{state}")
        print(f"  {DIM}{loc.path}{NC}")
    print()


def _print_duplicates(groups: list) -> None:
    print(f"\n{BOLD}Duplicates{NC}")
    print("─" * 40)
    if not groups:
        print("  No duplicates found.")
    for group in groups:
        print(f"  {group.kind.value}:")
        for project in group.projects:
            marker = "*" if group.primary and project.id == group.primary.id else " "
            print(f"   {marker} {project.name}  {DIM}{project.als_file_path}{NC}")
    print()


async def _run(args: argparse.Namespace) -> int:
    library = ProjectLibrary.from_env()
    if args.main_only:
        library.scanner.crawler.main_file_only = True
    await library.load()

    for path in args.add or []:
        try:
            location = await library.add_location(path)
            print(f"{GREEN}+{NC} {location.display_name}  {DIM}{location.path}{NC}")
        except CatalogStoreError as exc:
            print(f"{YELLOW}{exc}{NC}")

    if args.locations:
        _print_locations(await library.locations())
        return 0

    if not args.no_scan:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, library.cancel_scan)
        try:
            await library.start_scan(progress=_ProgressPrinter())
        except ScanError:
            return 1
        finally:
            loop.remove_signal_handler(signal.SIGINT)

    if args.duplicates:
        _print_duplicates(await library.duplicates())

    if args.stats:
        print(json.dumps(await library.statistics(), indent=2, ensure_ascii=False))

    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="scan-library",
        description="Index Ableton Live Sets into the local catalog.",
    )
    parser.add_argument("--add", action="append", metavar="PATH",
                        help="Add a scan location before scanning (repeatable)")
    parser.add_argument("--locations", action="store_true",
                        help="List scan locations and exit")
    parser.add_argument("--no-scan", action="store_true",
                        help="Skip scanning; only print the requested reports")
    parser.add_argument("--main-only", action="store_true",
                        help="Index only the main Live Set of each project folder")
    parser.add_argument("--duplicates", action="store_true",
                        help="Print duplicate groups")
    parser.add_argument("--stats", action="store_true",
                        help="Print library statistics as JSON")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "WARNING")

    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
