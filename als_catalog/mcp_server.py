"""
FastMCP Server for the Live Set Catalog

Exposes scanning, browsing, annotating, duplicate detection, and library
statistics as MCP tools.

To connect a desktop client over stdio, add to its config:
{
  "mcpServers": {
    "als-catalog": {
      "command": "python",
      "args": ["-m", "als_catalog.mcp_server"],
      "env": {"ALS_CATALOG_DATA_DIR": "/path/to/.data"}
    }
  }
}

To run over HTTP (SSE):
  python -m als_catalog.mcp_server --transport sse [--host 127.0.0.1] [--port 8000]
"""

import signal
import sys
from typing import Optional, List, Dict, Any

from fastmcp import FastMCP
from loguru import logger

from .catalog_store import CatalogStoreError, UnknownProjectError
from .library import ProjectFilter, ProjectLibrary, SortColumn
from .models import COLOR_NAME_TO_ID, STATUS_NAME_TO_ID, ColorLabel, CompletionStatus
from .scanner import ScanError

# ---------------------------------------------------------------------------
# Global state
# ---------------------------------------------------------------------------

mcp = FastMCP("ALS Catalog")

library: Optional[ProjectLibrary] = None
_initialized = False


async def _ensure_initialized():
    """Lazy-load the catalog on first tool call."""
    global library, _initialized
    if _initialized:
        return

    logger.info("Initializing ALS Catalog MCP server...")
    library = ProjectLibrary.from_env()
    await library.load()
    _initialized = True
    logger.info(f"Catalog ready: {len(library.store)} projects")


def _parse_status(value: Optional[str]) -> Optional[CompletionStatus]:
    if value is None:
        return None
    key = value.strip().lower().replace(" ", "_")
    if key not in STATUS_NAME_TO_ID:
        raise ValueError(f"Unknown status '{value}'. Use one of: {', '.join(STATUS_NAME_TO_ID)}")
    return CompletionStatus(STATUS_NAME_TO_ID[key])


def _parse_color(value: Optional[str]) -> Optional[ColorLabel]:
    if value is None:
        return None
    key = value.strip().lower()
    if key not in COLOR_NAME_TO_ID:
        raise ValueError(f"Unknown color '{value}'. Use one of: {', '.join(COLOR_NAME_TO_ID)}")
    return ColorLabel(COLOR_NAME_TO_ID[key])


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------

@mcp.tool()
async def scan_projects() -> Dict[str, Any]:
    """
    Scan every enabled location for Ableton Live Sets and update the catalog.

    User tags, notes, status, favorite and color survive a re-scan.

    Returns:
        {indexed, projects} — or {error} if the scan could not complete.
    """
    await _ensure_initialized()
    try:
        indexed = await library.start_scan()
    except ScanError as exc:
        return {"error": f"Scan failed: {exc}"}

    if indexed is None:
        return {"error": "A scan is already running"}
    return {"indexed": indexed, "projects": len(library.store)}


@mcp.tool()
async def get_scan_status() -> Dict[str, Any]:
    """Current scan state, last progress event, and visible project count."""
    await _ensure_initialized()
    snapshot = await library.snapshot()
    return snapshot.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

@mcp.tool()
async def list_locations() -> List[Dict[str, Any]]:
    """All scan locations with their cached project counts."""
    await _ensure_initialized()
    return [loc.model_dump(mode="json") for loc in await library.locations()]


@mcp.tool()
async def add_location(path: str, display_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Add a directory to scan.

    Args:
        path:         Absolute directory path.
        display_name: Optional label; defaults to the folder name.
    """
    await _ensure_initialized()
    try:
        location = await library.add_location(path, display_name=display_name)
    except CatalogStoreError as exc:
        return {"error": str(exc)}
    return location.model_dump(mode="json")


@mcp.tool()
async def remove_location(location_id: str) -> Dict[str, Any]:
    """Stop scanning a location. Already indexed projects stay in the catalog."""
    await _ensure_initialized()
    if not await library.remove_location(location_id):
        return {"error": f"Location not found: {location_id}"}
    return {"removed": location_id}


# ---------------------------------------------------------------------------
# Browsing
# ---------------------------------------------------------------------------

@mcp.tool()
async def list_projects(
    query: str = "",
    filter: str = "all",
    volume: Optional[str] = None,
    status: Optional[str] = None,
    favorites_only: bool = False,
    color: Optional[str] = None,
    sort: str = "modified",
    ascending: bool = False,
    limit: int = 50,
) -> Dict[str, Any]:
    """
    List catalogued projects.

    Args:
        query:          Substring matched against project and plugin names.
        filter:         all | recently_modified | high_bpm | low_bpm
        volume:         Only projects on this volume.
        status:         none | idea | in_progress | mixing | done
        favorites_only: Only favorites.
        color:          red | orange | yellow | green | blue | purple | gray
        sort:           name | bpm | created | modified | tracks | version | duration
        ascending:      Sort direction (default newest/highest first).
        limit:          Max results.
    """
    await _ensure_initialized()
    try:
        entries = await library.projects(
            query=query,
            filter=ProjectFilter(filter),
            volume=volume,
            status=_parse_status(status),
            favorites_only=favorites_only,
            color=_parse_color(color),
            sort=SortColumn(sort),
            ascending=ascending,
        )
    except ValueError as exc:
        return {"error": str(exc)}

    return {
        "total": len(entries),
        "projects": [e.summary() for e in entries[:limit]],
    }


@mcp.tool()
async def get_project(project_id: str) -> Dict[str, Any]:
    """Full catalog entry for one project, including samples and duplicates."""
    await _ensure_initialized()
    try:
        entry = await library.get_project(project_id)
        dupes = await library.duplicates_of(project_id)
    except UnknownProjectError:
        return {"error": f"Project not found: {project_id}"}

    data = entry.model_dump(mode="json")
    data["camelot"] = entry.musical_keys_camelot
    data["duplicates"] = [d.summary() for d in dupes]
    return data


@mcp.tool()
async def list_volumes() -> List[str]:
    """Volumes that currently hold catalogued projects."""
    await _ensure_initialized()
    return await library.unique_volumes()


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

@mcp.tool()
async def update_project(
    project_id: str,
    tags: Optional[List[str]] = None,
    notes: Optional[str] = None,
    status: Optional[str] = None,
    favorite: Optional[bool] = None,
    color: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Update the user annotations of a project. Only the given fields change.

    Args:
        project_id: Catalog id.
        tags:       Replaces the tag list.
        notes:      Free text; empty string clears.
        status:     none | idea | in_progress | mixing | done
        favorite:   true/false
        color:      none | red | orange | yellow | green | blue | purple | gray
    """
    await _ensure_initialized()
    changes: Dict[str, Any] = {}
    try:
        if tags is not None:
            changes["user_tags"] = list(dict.fromkeys(t.strip() for t in tags if t.strip()))
        if notes is not None:
            changes["user_notes"] = notes or None
        if status is not None:
            changes["completion_status"] = _parse_status(status)
        if favorite is not None:
            changes["is_favorite"] = favorite
        if color is not None:
            changes["color_label"] = _parse_color(color)
    except ValueError as exc:
        return {"error": str(exc)}

    if not changes:
        return {"error": "Nothing to update"}

    try:
        entry = await library.update_user_fields(project_id, **changes)
    except UnknownProjectError:
        return {"error": f"Project not found: {project_id}"}
    return entry.summary()


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

@mcp.tool()
async def find_duplicates() -> List[Dict[str, Any]]:
    """
    Groups of duplicate projects.

    ``exact`` groups share identical file bytes; ``similar`` groups have
    tempos within 5 BPM and mostly the same plugins.
    """
    await _ensure_initialized()
    groups = await library.duplicates()
    return [
        {
            "kind": g.kind.value,
            "primary": g.primary.id if g.primary else None,
            "projects": [p.summary() for p in g.projects],
        }
        for g in groups
    ]


@mcp.tool()
async def get_statistics() -> Dict[str, Any]:
    """Library-wide statistics: BPM spread, plugins, keys, volumes, activity."""
    await _ensure_initialized()
    return await library.statistics()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP server."""
    import argparse

    def handle_shutdown(sig, frame):
        logger.info("Shutting down MCP server...")
        if library is not None:
            library.cancel_scan()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    parser = argparse.ArgumentParser()
    parser.add_argument("--transport", default="stdio", choices=["stdio", "sse"])
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args()

    logger.info("Starting ALS Catalog MCP Server...")

    if args.transport == "sse":
        mcp.run(transport="sse", host=args.host, port=args.port)
    else:
        mcp.run()


if __name__ == "__main__":
    main()
