"""
Project Library

The application-level facade over the catalog: location management,
scanning with a single-scan guard, the visible project list with filters
and sorting, user annotations, duplicates, statistics, and reactions to
volumes being mounted or unmounted.

The server, the HTTP app, and the CLI all drive the catalog through this
class. What a presentation layer shows comes from ``snapshot()``.
"""

from __future__ import annotations

import os
import re
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field

from . import duplicates as dup
from .catalog_stats import build_statistics
from .catalog_store import CatalogStore, UnknownProjectError
from .crawler import FileSystemCrawler
from .models import (
    CatalogEntry,
    ColorLabel,
    CompletionStatus,
    DuplicateGroup,
    Location,
    ScanProgress,
)
from .scanner import ProgressSink, ProjectScanner, ScanCancellation

RECENT_DAYS = 7
HIGH_BPM = 140.0
LOW_BPM = 100.0


class ProjectFilter(str, Enum):
    ALL = "all"
    RECENTLY_MODIFIED = "recently_modified"
    HIGH_BPM = "high_bpm"
    LOW_BPM = "low_bpm"


class SortColumn(str, Enum):
    NAME = "name"
    BPM = "bpm"
    CREATED = "created"
    MODIFIED = "modified"
    TRACKS = "tracks"
    VERSION = "version"
    DURATION = "duration"


def _version_key(version: Optional[str]) -> tuple[int, ...]:
    # "12.1.5" -> (12, 1, 5); unknown versions sort as ()
    return tuple(int(part) for part in re.findall(r"\d{1,9}", version or "")[:4])


def _sort_key(column: SortColumn):
    if column == SortColumn.NAME:
        return lambda e: e.name.casefold()
    if column == SortColumn.BPM:
        return lambda e: e.bpm or 0.0
    if column == SortColumn.CREATED:
        return lambda e: e.created_date or e.filesystem_modified_date
    if column == SortColumn.MODIFIED:
        return lambda e: e.effective_modified_date
    if column == SortColumn.TRACKS:
        return lambda e: e.total_track_count
    if column == SortColumn.VERSION:
        return lambda e: _version_key(e.ableton_version)
    return lambda e: e.duration or 0.0


class LibrarySnapshot(BaseModel):
    """Point-in-time view of the library for a presentation layer."""

    is_scanning: bool = False
    progress: Optional[ScanProgress] = None
    project_count: int = 0
    location_count: int = 0
    hidden_volumes: List[str] = Field(default_factory=list)


class ProjectLibrary:

    def __init__(
        self,
        store: CatalogStore,
        scanner: Optional[ProjectScanner] = None,
    ) -> None:
        self.store = store
        self.scanner = scanner or ProjectScanner(store)
        self.hidden_volumes: set[str] = set()
        self._is_scanning = False
        self._progress: Optional[ScanProgress] = None
        self._cancel: Optional[ScanCancellation] = None

    @classmethod
    def from_env(cls) -> "ProjectLibrary":
        """Build from ALS_CATALOG_DATA_DIR and ALS_CATALOG_MAIN_FILE_ONLY."""
        store = CatalogStore.from_env()
        main_only = os.environ.get("ALS_CATALOG_MAIN_FILE_ONLY", "") == "1"
        crawler = FileSystemCrawler(main_file_only=main_only)
        return cls(store, ProjectScanner(store, crawler))

    async def load(self, home: Optional[Path] = None) -> None:
        """Load the store; seed default locations on first run."""
        self.store.load()
        if not await self.store.fetch_locations():
            await self.initialize_default_locations(home)

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def initialize_default_locations(self, home: Optional[Path] = None) -> list[Location]:
        added = []
        for path in FileSystemCrawler.default_scan_locations(home):
            if await self.store.fetch_location_by_path(str(path)):
                continue
            location = Location(
                id=str(uuid.uuid4()),
                path=str(path),
                display_name=path.name,
                is_auto_detected=True,
            )
            await self.store.save_location(location)
            added.append(location)
        logger.info(f"Default scan locations: {[loc.path for loc in added]}")
        return added

    async def locations(self) -> list[Location]:
        return await self.store.fetch_locations()

    async def add_location(
        self,
        path: Union[str, Path],
        display_name: Optional[str] = None,
        auto_detected: bool = False,
    ) -> Location:
        """Register a root directory. Raises CatalogStoreError if it already exists."""
        p = Path(path).expanduser()
        location = Location(
            id=str(uuid.uuid4()),
            path=str(p),
            display_name=display_name or p.name or str(p),
            is_auto_detected=auto_detected,
        )
        await self.store.save_location(location)
        return location

    async def remove_location(self, location_id: str) -> bool:
        return await self.store.delete_location(location_id)

    async def set_location_enabled(self, location_id: str, enabled: bool) -> Optional[Location]:
        for loc in await self.store.fetch_locations():
            if loc.id == location_id:
                updated = loc.model_copy(update={"is_enabled": enabled})
                await self.store.save_location(updated)
                return updated
        return None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    async def start_scan(self, progress: Optional[ProgressSink] = None) -> Optional[int]:
        """
        Scan every enabled location.

        Returns the number of projects indexed, or None when a scan is
        already running. ScanError propagates after the failure has been
        recorded in the snapshot.
        """
        if self._is_scanning:
            logger.debug("Scan requested while another is running, ignored")
            return None

        self._is_scanning = True
        self._cancel = ScanCancellation()

        def _record(event: ScanProgress) -> None:
            self._progress = event
            if progress is not None:
                progress(event)

        try:
            return await self.scanner.scan_all_locations(progress=_record, cancel=self._cancel)
        finally:
            self._is_scanning = False
            self._cancel = None

    def cancel_scan(self) -> bool:
        if self._cancel is None:
            return False
        self._cancel.cancel()
        return True

    async def snapshot(self) -> LibrarySnapshot:
        return LibrarySnapshot(
            is_scanning=self._is_scanning,
            progress=self._progress,
            project_count=len(await self.visible_projects()),
            location_count=len(await self.store.fetch_locations()),
            hidden_volumes=sorted(self.hidden_volumes),
        )

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    async def handle_volume_mounted(self, path: Union[str, Path], name: str) -> Optional[int]:
        self.hidden_volumes.discard(name)
        existing = await self.store.fetch_location_by_path(str(path))
        if existing is None:
            await self.add_location(path, display_name=name, auto_detected=True)
            logger.info(f"Volume mounted: {name}, added as scan location")
        elif not existing.is_enabled:
            await self.set_location_enabled(existing.id, True)
        return await self.start_scan()

    def handle_volume_unmounted(self, name: str) -> None:
        """Hide the volume's projects until it comes back. Nothing is deleted."""
        self.hidden_volumes.add(name)
        logger.info(f"Volume unmounted: {name}")

    async def unique_volumes(self) -> list[str]:
        return [v for v in await self.store.unique_volumes() if v not in self.hidden_volumes]

    # ------------------------------------------------------------------
    # Project list
    # ------------------------------------------------------------------

    async def visible_projects(self) -> list[CatalogEntry]:
        return [
            e for e in await self.store.fetch_all()
            if e.source_volume not in self.hidden_volumes
        ]

    async def projects(
        self,
        query: str = "",
        filter: ProjectFilter = ProjectFilter.ALL,
        volume: Optional[str] = None,
        status: Optional[CompletionStatus] = None,
        favorites_only: bool = False,
        color: Optional[ColorLabel] = None,
        sort: SortColumn = SortColumn.MODIFIED,
        ascending: bool = False,
        now: Optional[datetime] = None,
    ) -> list[CatalogEntry]:
        result = await self.visible_projects()

        q = query.strip().lower()
        if q:
            result = [
                e for e in result
                if q in e.name.lower() or any(q in p.lower() for p in e.plugins)
            ]

        if filter == ProjectFilter.RECENTLY_MODIFIED:
            cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=RECENT_DAYS)
            result = [e for e in result if e.effective_modified_date >= cutoff]
        elif filter == ProjectFilter.HIGH_BPM:
            result = [e for e in result if (e.bpm or 0.0) >= HIGH_BPM]
        elif filter == ProjectFilter.LOW_BPM:
            result = [e for e in result if e.bpm is not None and e.bpm < LOW_BPM]

        if volume is not None:
            result = [e for e in result if e.source_volume == volume]
        if status is not None:
            result = [e for e in result if e.completion_status == status]
        if favorites_only:
            result = [e for e in result if e.is_favorite]
        if color is not None:
            result = [e for e in result if e.color_label == color]

        return sorted(result, key=_sort_key(sort), reverse=not ascending)

    async def get_project(self, project_id: str) -> CatalogEntry:
        entry = await self.store.fetch_by_id(project_id)
        if entry is None:
            raise UnknownProjectError(project_id)
        return entry

    async def delete_project(self, project_id: str) -> None:
        if not await self.store.delete(project_id):
            raise UnknownProjectError(project_id)

    # ------------------------------------------------------------------
    # User annotations
    # ------------------------------------------------------------------

    async def update_user_fields(self, project_id: str, **changes: Any) -> CatalogEntry:
        return await self.store.update_user_fields(project_id, **changes)

    async def update_tags(self, project_id: str, tags: list[str]) -> CatalogEntry:
        cleaned = list(dict.fromkeys(t.strip() for t in tags if t.strip()))
        return await self.store.update_user_fields(project_id, user_tags=cleaned)

    async def update_notes(self, project_id: str, notes: Optional[str]) -> CatalogEntry:
        return await self.store.update_user_fields(project_id, user_notes=notes or None)

    async def set_status(self, project_id: str, status: CompletionStatus) -> CatalogEntry:
        return await self.store.update_user_fields(project_id, completion_status=status)

    async def set_favorite(self, project_id: str, favorite: bool) -> CatalogEntry:
        return await self.store.update_user_fields(project_id, is_favorite=favorite)

    async def set_color(self, project_id: str, color: ColorLabel) -> CatalogEntry:
        return await self.store.update_user_fields(project_id, color_label=color)

    async def mark_opened(self, project_id: str, when: Optional[datetime] = None) -> CatalogEntry:
        return await self.store.update_user_fields(
            project_id, last_opened_at=when or datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def duplicates(self) -> list[DuplicateGroup]:
        return dup.find_duplicates(await self.visible_projects())

    async def duplicates_of(self, project_id: str) -> list[CatalogEntry]:
        entry = await self.get_project(project_id)
        return dup.duplicates_of(entry, await self.visible_projects())

    async def statistics(self, now: Optional[datetime] = None) -> dict:
        return build_statistics(await self.visible_projects(), now=now)
