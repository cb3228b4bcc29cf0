"""
Catalog Store — persistent JSONL catalog of indexed Live Sets.

One complete CatalogEntry per line in ``.data/catalog.jsonl`` plus the scan
locations in ``.data/locations.json``. Everything is held in memory keyed by
id; every write rewrites the file atomically (``.tmp`` sibling, then
``Path.replace()``) so a crash mid-write never leaves a torn catalog.

The scanner is the single writer of derived fields and writes batch by
batch; user annotations only change through ``update_user_fields()``.

Usage:
    store = CatalogStore.from_env()
    store.load()
    existing = await store.fetch_by_paths(paths)
    await store.upsert_many(entries)
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger
from pydantic import ValidationError

from .models import USER_FIELDS, CatalogEntry, Location

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_REPO_ROOT       = Path(__file__).resolve().parent.parent
DEFAULT_DATA_DIR = _REPO_ROOT / ".data"
CATALOG_FILENAME   = "catalog.jsonl"
LOCATIONS_FILENAME = "locations.json"


class CatalogStoreError(Exception):
    """The catalog could not be read or written."""


class UnknownProjectError(KeyError):
    """No catalog entry with the given id."""


def _configured_data_dir() -> Path:
    """Return the data directory from ALS_CATALOG_DATA_DIR, or the repo default."""
    env_path = os.environ.get("ALS_CATALOG_DATA_DIR")
    return Path(env_path).expanduser() if env_path else DEFAULT_DATA_DIR


def _atomic_write(path: Path, lines: Iterable[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        with tmp.open("w", encoding="utf-8") as fh:
            for line in lines:
                fh.write(line)
        tmp.replace(path)
    except OSError as exc:
        raise CatalogStoreError(f"Could not write {path}: {exc}") from exc


class CatalogStore:
    """
    Key-addressable store of CatalogEntry and Location records.

    Methods are ``async`` so callers on the event loop treat the store like
    any other database; the work itself is in-memory plus one file rewrite.
    """

    def __init__(self, data_dir: Path = DEFAULT_DATA_DIR) -> None:
        self.data_dir = Path(data_dir)
        self._catalog_path = self.data_dir / CATALOG_FILENAME
        self._locations_path = self.data_dir / LOCATIONS_FILENAME
        self._by_id: dict[str, CatalogEntry] = {}
        self._locations: dict[str, Location] = {}
        self._loaded = False
        self._lock = threading.Lock()  # guards both dicts and file rewrites

    @classmethod
    def from_env(cls) -> "CatalogStore":
        return cls(_configured_data_dir())

    # ------------------------------------------------------------------
    # Load / flush
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Read catalog and locations from disk. Returns number of entries."""
        entries: dict[str, CatalogEntry] = {}
        if self._catalog_path.exists():
            with self._catalog_path.open("r", encoding="utf-8", errors="replace") as fh:
                for line_no, line in enumerate(fh, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = CatalogEntry.model_validate_json(line)
                    except ValidationError as exc:
                        logger.warning(
                            f"CatalogStore: skipped unreadable line {line_no} "
                            f"in {self._catalog_path}: {exc.error_count()} errors"
                        )
                        continue
                    entries[entry.id] = entry

        locations: dict[str, Location] = {}
        if self._locations_path.exists():
            try:
                raw = json.loads(self._locations_path.read_text(encoding="utf-8", errors="replace"))
                for item in raw:
                    loc = Location.model_validate(item)
                    locations[loc.id] = loc
            except (json.JSONDecodeError, ValidationError) as exc:
                logger.warning(f"Could not load locations from {self._locations_path}: {exc}")

        with self._lock:
            self._by_id = entries
            self._locations = locations
            self._loaded = True

        logger.info(
            f"CatalogStore: loaded {len(entries)} projects and "
            f"{len(locations)} locations from {self.data_dir}"
        )
        return len(entries)

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _flush_catalog(self) -> None:
        # Caller holds the lock.
        _atomic_write(
            self._catalog_path,
            (entry.model_dump_json() + "\n" for entry in self._by_id.values()),
        )

    def _flush_locations(self) -> None:
        payload = [loc.model_dump(mode="json") for loc in self._locations.values()]
        _atomic_write(
            self._locations_path,
            [json.dumps(payload, indent=2, ensure_ascii=False)],
        )

    # ------------------------------------------------------------------
    # Project reads
    # ------------------------------------------------------------------

    async def fetch_all(self) -> list[CatalogEntry]:
        """All entries, most recently modified first."""
        self._ensure_loaded()
        with self._lock:
            entries = list(self._by_id.values())
        entries.sort(key=lambda e: e.effective_modified_date, reverse=True)
        return entries

    async def fetch_by_id(self, project_id: str) -> Optional[CatalogEntry]:
        self._ensure_loaded()
        with self._lock:
            return self._by_id.get(project_id)

    async def fetch_by_paths(self, paths: Iterable[str]) -> dict[str, CatalogEntry]:
        """Entries keyed by ``als_file_path`` for every path that is catalogued."""
        self._ensure_loaded()
        wanted = set(paths)
        if not wanted:
            return {}
        with self._lock:
            return {
                e.als_file_path: e for e in self._by_id.values()
                if e.als_file_path in wanted
            }

    async def fetch_for_volume(self, volume: str) -> list[CatalogEntry]:
        return [e for e in await self.fetch_all() if e.source_volume == volume]

    async def unique_volumes(self) -> list[str]:
        return sorted({e.source_volume for e in await self.fetch_all()})

    async def search(self, query: str, limit: Optional[int] = None) -> list[CatalogEntry]:
        """Case-insensitive substring match on project name and plugin names."""
        q = query.strip().lower()
        entries = await self.fetch_all()
        if not q:
            return entries[:limit] if limit else entries

        results = []
        for e in entries:
            if q in e.name.lower() or any(q in p.lower() for p in e.plugins):
                results.append(e)
                if limit and len(results) >= limit:
                    break
        return results

    # ------------------------------------------------------------------
    # Project writes
    # ------------------------------------------------------------------

    async def upsert_many(self, entries: list[CatalogEntry]) -> int:
        """
        Insert or replace entries by id in one atomic write.

        ``als_file_path`` is unique: an entry already stored for the same
        path under a different id is replaced.
        """
        if not entries:
            return 0
        self._ensure_loaded()
        with self._lock:
            incoming_paths = {e.als_file_path: e.id for e in entries}
            stale = [
                old.id for old in self._by_id.values()
                if old.als_file_path in incoming_paths
                and incoming_paths[old.als_file_path] != old.id
            ]
            for old_id in stale:
                del self._by_id[old_id]
            for entry in entries:
                self._by_id[entry.id] = entry
            self._flush_catalog()
        logger.debug(f"CatalogStore: upserted {len(entries)} projects")
        return len(entries)

    async def save_entry(self, entry: CatalogEntry) -> None:
        await self.upsert_many([entry])

    async def delete(self, project_id: str) -> bool:
        return await self.delete_many([project_id]) > 0

    async def delete_many(self, project_ids: Iterable[str]) -> int:
        self._ensure_loaded()
        with self._lock:
            removed = [pid for pid in set(project_ids) if self._by_id.pop(pid, None) is not None]
            if removed:
                self._flush_catalog()
        if removed:
            logger.info(f"CatalogStore: deleted {len(removed)} projects")
        return len(removed)

    async def update_user_fields(self, project_id: str, **changes: Any) -> CatalogEntry:
        """
        Apply user edits (tags, notes, status, favorite, color, last opened).

        This is the only path that changes user-owned fields; derived fields
        can't be touched through it.
        """
        unknown = set(changes) - set(USER_FIELDS)
        if unknown:
            raise ValueError(f"Not user-editable: {', '.join(sorted(unknown))}")

        self._ensure_loaded()
        with self._lock:
            current = self._by_id.get(project_id)
            if current is None:
                raise UnknownProjectError(project_id)
            data = current.model_dump()
            data.update(changes)
            updated = CatalogEntry.model_validate(data)
            self._by_id[project_id] = updated
            self._flush_catalog()
        return updated

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    async def fetch_locations(self) -> list[Location]:
        self._ensure_loaded()
        with self._lock:
            locations = list(self._locations.values())
        return sorted(locations, key=lambda loc: loc.display_name.lower())

    async def fetch_enabled_locations(self) -> list[Location]:
        return [loc for loc in await self.fetch_locations() if loc.is_enabled]

    async def fetch_location_by_path(self, path: str) -> Optional[Location]:
        for loc in await self.fetch_locations():
            if loc.path == path:
                return loc
        return None

    async def save_location(self, location: Location) -> None:
        self._ensure_loaded()
        with self._lock:
            for other in self._locations.values():
                if other.path == location.path and other.id != location.id:
                    raise CatalogStoreError(f"Location already exists: {location.path}")
            self._locations[location.id] = location
            self._flush_locations()

    async def delete_location(self, location_id: str) -> bool:
        self._ensure_loaded()
        with self._lock:
            removed = self._locations.pop(location_id, None) is not None
            if removed:
                self._flush_locations()
        return removed

    async def update_location_count(
        self,
        location_id: str,
        count: int,
        scanned_at: Optional[datetime] = None,
    ) -> None:
        self._ensure_loaded()
        with self._lock:
            loc = self._locations.get(location_id)
            if loc is None:
                logger.debug(f"update_location_count: unknown location {location_id}")
                return
            self._locations[location_id] = loc.model_copy(update={
                "project_count": count,
                "last_scanned_at": scanned_at or datetime.now(timezone.utc),
            })
            self._flush_locations()

    # ------------------------------------------------------------------
    # Repr
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._by_id)

    def __repr__(self) -> str:
        status = f"{len(self._by_id)} projects" if self._loaded else "not loaded"
        return f"CatalogStore({status}, path={self.data_dir})"
