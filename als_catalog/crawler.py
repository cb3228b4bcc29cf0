"""
Filesystem Crawler

Finds Live Set files under a root directory. Hidden entries, macOS bundle
directories, and Live's own ``Backup`` folders (plus anything in a ``Trash``)
are skipped.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional, Union

from loguru import logger

from .models import DiscoveredFile

PROJECT_EXTENSION = ".als"

# Any path component equal to one of these excludes the file.
EXCLUDED_COMPONENTS = frozenset({"Backup", "Trash"})

# Package-like directories that are opaque to Finder; never descend into them.
BUNDLE_SUFFIXES = frozenset({
    ".app", ".bundle", ".component", ".framework", ".plugin",
    ".vst", ".vst3", ".aaxplugin", ".pkg",
})

VOLUMES_PREFIX = "/Volumes/"
HOME_PREFIX = "/Users/"
PRIMARY_DISK_NAME = "Macintosh HD"
UNKNOWN_VOLUME = "Unknown"


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def _is_bundle(name: str) -> bool:
    return os.path.splitext(name)[1].lower() in BUNDLE_SUFFIXES


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _birth_time(stat: os.stat_result) -> float:
    # st_birthtime exists on macOS/BSD; elsewhere ctime is the best we have.
    return getattr(stat, "st_birthtime", None) or stat.st_ctime


def is_excluded(path: Union[str, Path]) -> bool:
    return any(part in EXCLUDED_COMPONENTS for part in Path(path).parts)


def iter_project_files(root: Path) -> Iterable[os.DirEntry]:
    """Yield ``.als`` entries under root, depth-first."""
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                for entry in it:
                    if _is_hidden(entry.name):
                        continue
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            if not _is_bundle(entry.name):
                                stack.append(Path(entry.path))
                            continue
                        if not entry.is_file():
                            continue
                    except OSError:
                        continue
                    if os.path.splitext(entry.name)[1].lower() == PROJECT_EXTENSION:
                        yield entry
        except OSError as exc:
            logger.debug(f"Cannot read directory {current}: {exc}")
            continue


def _mount_point(path: Path) -> Optional[Path]:
    current = path
    while True:
        if os.path.ismount(current):
            return current
        if current.parent == current:
            return None
        current = current.parent


def volume_name(path: Union[str, Path]) -> str:
    """Label the volume a path lives on."""
    p = str(path)

    if p.startswith(VOLUMES_PREFIX):
        components = [c for c in p[len(VOLUMES_PREFIX):].split("/") if c]
        if components:
            return components[0]

    if p.startswith(HOME_PREFIX):
        return PRIMARY_DISK_NAME

    drive = Path(p).drive
    if drive:
        return drive

    mount = _mount_point(Path(p))
    if mount is not None and mount.name:
        return mount.name

    return UNKNOWN_VOLUME


class FileSystemCrawler:
    """Discovers Live Sets under a root directory."""

    def __init__(self, main_file_only: bool = False) -> None:
        # When set, a folder with several sets contributes only its main one.
        self.main_file_only = main_file_only

    def find_projects(self, directory: Union[str, Path]) -> list[DiscoveredFile]:
        root = Path(directory)
        if not root.is_dir():
            logger.debug(f"Scan root does not exist: {root}")
            return []

        projects: list[DiscoveredFile] = []
        main_files: dict[Path, Optional[Path]] = {}

        for entry in iter_project_files(root):
            file_path = Path(entry.path).absolute()
            if is_excluded(file_path):
                continue

            folder = file_path.parent
            if self.main_file_only:
                if folder not in main_files:
                    main_files[folder] = self.find_main_project_file(folder)
                if main_files[folder] != file_path:
                    continue

            try:
                stat = entry.stat()
            except OSError as exc:
                logger.debug(f"Cannot stat {file_path}: {exc}")
                continue

            projects.append(DiscoveredFile(
                folder_path=str(folder),
                als_file_path=str(file_path),
                project_name=file_path.stem,
                source_volume=volume_name(folder),
                created_date=_to_datetime(_birth_time(stat)),
                modified_date=_to_datetime(stat.st_mtime),
            ))

        projects.sort(key=lambda d: d.als_file_path)
        logger.debug(f"Found {len(projects)} Live Sets under {root}")
        return projects

    @staticmethod
    def find_main_project_file(project_folder: Union[str, Path]) -> Optional[Path]:
        """
        Pick the authoritative set in a project folder: the only one, else
        the one named after the folder, else the most recently modified.
        """
        folder = Path(project_folder)
        try:
            candidates = [
                p for p in folder.iterdir()
                if p.suffix.lower() == PROJECT_EXTENSION and p.is_file()
            ]
        except OSError:
            return None

        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0].absolute()

        for candidate in candidates:
            if candidate.stem == folder.name:
                return candidate.absolute()

        def _mtime(p: Path) -> float:
            try:
                return p.stat().st_mtime
            except OSError:
                return float("-inf")

        return max(candidates, key=_mtime).absolute()

    @staticmethod
    def default_scan_locations(home: Optional[Path] = None) -> list[Path]:
        home = home or Path.home()
        locations: list[Path] = []

        ableton_music = home / "Music" / "Ableton"
        if ableton_music.is_dir():
            locations.append(ableton_music)

        music = home / "Music"
        if music.is_dir() and music not in locations:
            locations.append(music)

        documents = home / "Documents"
        if documents.is_dir():
            locations.append(documents)

        return locations
