"""
Project Scanner

Walks every configured location, parses the Live Sets it finds in batches
of ``BATCH_SIZE``, merges fresh metadata with the user annotations already
in the catalog, and persists each batch as soon as it is parsed.

Parsing is CPU-bound (inflate + regex scans), so each file of a batch runs
in the default thread-pool executor and the batch is awaited with
``asyncio.gather``. Batches run one after another; at most ``BATCH_SIZE``
decoded documents are held in memory at once.

Progress is reported through an optional callable that receives the scan
events from ``models.py``:

    Starting → Discovering(location) → Parsing(current, total, name)*
             → Completed(count, seconds)

or ``Failed(error)`` when the store or anything beyond a single file gives
out, or ``Cancelled(count)`` when the caller's ``ScanCancellation`` is set.
"""

from __future__ import annotations

import asyncio
import hashlib
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from loguru import logger

from .catalog_store import CatalogStore, CatalogStoreError
from .container import ProjectFileError, read_container
from .crawler import FileSystemCrawler
from .extractor import parse_project_bytes
from .models import (
    CatalogEntry,
    DiscoveredFile,
    Location,
    ParsedMetadata,
    ScanCancelled,
    ScanCompleted,
    ScanDiscovering,
    ScanFailed,
    ScanParsing,
    ScanProgress,
    ScanStarting,
)

BATCH_SIZE = 10

ProgressSink = Callable[[ScanProgress], None]


class ScanError(Exception):
    """A scan stopped for a reason unrelated to any single file."""


class ScanCancellation:
    """Cooperative cancellation flag shared between a scan and its caller."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class _Cancelled(Exception):
    pass


def _parse_and_hash(discovered: DiscoveredFile) -> Optional[tuple[ParsedMetadata, str]]:
    """Parse one file and hash its bytes. Runs in a worker thread."""
    try:
        data = read_container(discovered.als_file_path)
        metadata = parse_project_bytes(data)
    except (ProjectFileError, OSError) as exc:
        logger.warning(f"Skipping {discovered.als_file_path}: {exc}")
        return None
    except Exception as exc:
        logger.warning(f"Skipping {discovered.als_file_path}: unexpected {type(exc).__name__}: {exc}")
        return None
    return metadata, hashlib.sha256(data).hexdigest()


def merge_entry(
    discovered: DiscoveredFile,
    metadata: ParsedMetadata,
    file_hash: str,
    existing: Optional[CatalogEntry],
    indexed_at: Optional[datetime] = None,
) -> CatalogEntry:
    """
    Build the catalog entry for a freshly parsed file.

    Derived fields always come from this parse. The id and every user field
    come from ``existing`` when the path was already catalogued.
    """
    derived = {
        "name": discovered.project_name,
        "folder_path": discovered.folder_path,
        "als_file_path": discovered.als_file_path,
        "source_volume": discovered.source_volume,
        "created_date": discovered.created_date,
        "modified_date": discovered.modified_date,
        "filesystem_modified_date": discovered.modified_date,
        "bpm": metadata.bpm,
        "time_signature_numerator": metadata.time_signature_numerator,
        "time_signature_denominator": metadata.time_signature_denominator,
        "audio_track_count": metadata.audio_track_count,
        "midi_track_count": metadata.midi_track_count,
        "return_track_count": metadata.return_track_count,
        "total_track_count": metadata.total_track_count,
        "ableton_version": metadata.ableton_version,
        "duration": metadata.duration,
        "sample_names": list(metadata.sample_names),
        "plugins": list(metadata.plugins),
        "musical_keys": list(metadata.musical_keys),
        "file_hash": file_hash,
        "last_indexed_at": indexed_at or datetime.now(timezone.utc),
    }
    if existing is not None:
        return existing.model_copy(update=derived)
    return CatalogEntry(id=str(uuid.uuid4()), **derived)


class ProjectScanner:
    """Indexes locations into a CatalogStore."""

    BATCH_SIZE = BATCH_SIZE

    def __init__(
        self,
        store: CatalogStore,
        crawler: Optional[FileSystemCrawler] = None,
    ) -> None:
        self.store = store
        self.crawler = crawler or FileSystemCrawler()

    async def scan_all_locations(
        self,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[ScanCancellation] = None,
    ) -> int:
        try:
            locations = await self.store.fetch_enabled_locations()
        except CatalogStoreError as exc:
            self._emit(progress, ScanStarting())
            self._emit(progress, ScanFailed(error=str(exc)))
            raise ScanError(str(exc)) from exc
        return await self.scan(locations, progress=progress, cancel=cancel)

    async def scan_location(
        self,
        location: Location,
        progress: Optional[ProgressSink] = None,
        cancel: Optional[ScanCancellation] = None,
    ) -> int:
        return await self.scan([location], progress=progress, cancel=cancel)

    async def scan(
        self,
        locations: list[Location],
        progress: Optional[ProgressSink] = None,
        cancel: Optional[ScanCancellation] = None,
    ) -> int:
        """Index every location in order. Returns the number of entries written."""
        started = time.monotonic()
        total_indexed = 0
        self._emit(progress, ScanStarting())
        logger.info(f"Scan started: {len(locations)} location(s)")

        try:
            for location in locations:
                indexed = await self._index_location(location, progress, cancel)
                total_indexed += indexed
        except _Cancelled as exc:
            total_indexed += exc.args[0]
            logger.info(f"Scan cancelled after {total_indexed} projects")
            self._emit(progress, ScanCancelled(project_count=total_indexed))
            return total_indexed
        except CatalogStoreError as exc:
            logger.error(f"Scan failed: {exc}")
            self._emit(progress, ScanFailed(error=str(exc)))
            raise ScanError(str(exc)) from exc
        except Exception as exc:
            logger.exception(f"Scan failed unexpectedly: {exc}")
            self._emit(progress, ScanFailed(error=f"{type(exc).__name__}: {exc}"))
            raise ScanError(str(exc)) from exc

        elapsed = time.monotonic() - started
        logger.info(f"Scan completed: {total_indexed} projects in {elapsed:.1f}s")
        self._emit(progress, ScanCompleted(project_count=total_indexed, duration_seconds=elapsed))
        return total_indexed

    # ------------------------------------------------------------------
    # Per-location work
    # ------------------------------------------------------------------

    async def _index_location(
        self,
        location: Location,
        progress: Optional[ProgressSink],
        cancel: Optional[ScanCancellation],
    ) -> int:
        self._emit(progress, ScanDiscovering(location=location.display_name))
        loop = asyncio.get_running_loop()

        discovered = await loop.run_in_executor(None, self.crawler.find_projects, location.path)
        logger.info(f"{location.display_name}: {len(discovered)} Live Sets found")

        if not discovered:
            await self.store.update_location_count(location.id, 0, datetime.now(timezone.utc))
            return 0

        existing = await self.store.fetch_by_paths(d.als_file_path for d in discovered)
        total = len(discovered)
        indexed = 0
        processed = 0

        for start in range(0, total, self.BATCH_SIZE):
            if cancel is not None and cancel.is_cancelled:
                raise _Cancelled(indexed)

            batch = discovered[start:start + self.BATCH_SIZE]
            results = await asyncio.gather(*(
                loop.run_in_executor(None, _parse_and_hash, d) for d in batch
            ))

            if cancel is not None and cancel.is_cancelled:
                raise _Cancelled(indexed)

            now = datetime.now(timezone.utc)
            entries = [
                merge_entry(d, result[0], result[1], existing.get(d.als_file_path), now)
                for d, result in zip(batch, results)
                if result is not None
            ]
            await self.store.upsert_many(entries)
            indexed += len(entries)
            processed += len(batch)

            self._emit(progress, ScanParsing(
                current=processed, total=total, project_name=batch[-1].project_name,
            ))

        await self.store.update_location_count(location.id, indexed, datetime.now(timezone.utc))
        logger.info(f"{location.display_name}: indexed {indexed}/{total}")
        return indexed

    @staticmethod
    def _emit(progress: Optional[ProgressSink], event: ScanProgress) -> None:
        if progress is not None:
            progress(event)
