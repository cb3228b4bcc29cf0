"""
FastAPI Web Application for the Live Set Catalog

Endpoints:
  GET    /api/projects                 - List/filter/sort projects
  GET    /api/projects/{id}            - One project with its duplicates
  PATCH  /api/projects/{id}            - Update tags, notes, status, favorite, color
  POST   /api/projects/{id}/opened     - Record that the project was opened
  DELETE /api/projects/{id}            - Remove a project from the catalog
  GET    /api/locations                - Scan locations
  POST   /api/locations                - Add a scan location
  DELETE /api/locations/{id}           - Remove a scan location
  POST   /api/scan                     - Start a scan in the background
  POST   /api/scan/cancel              - Cancel the running scan
  GET    /api/scan                     - Scan state snapshot
  POST   /api/volumes/mounted          - A volume appeared
  POST   /api/volumes/unmounted        - A volume went away
  GET    /api/volumes                  - Volumes with visible projects
  GET    /api/duplicates               - Duplicate groups
  GET    /api/stats                    - Library statistics
"""

import asyncio
import os
import uvicorn
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from loguru import logger

from .catalog_store import CatalogStoreError, UnknownProjectError
from .library import ProjectFilter, ProjectLibrary, SortColumn
from .models import ColorLabel, CompletionStatus
from .scanner import ScanError

DEFAULT_PORT = 8899

# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

library = ProjectLibrary.from_env()
_scan_task: Optional[asyncio.Task] = None


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    await library.load()
    logger.info(f"ALS Catalog ready. {len(library.store)} projects loaded.")

    yield

    library.cancel_scan()
    if _scan_task is not None:
        await asyncio.gather(_scan_task, return_exceptions=True)


app = FastAPI(title="ALS Catalog", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class ProjectUpdate(BaseModel):
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    status: Optional[CompletionStatus] = None
    favorite: Optional[bool] = None
    color: Optional[ColorLabel] = None


class LocationRequest(BaseModel):
    path: str
    display_name: Optional[str] = None


class VolumeEvent(BaseModel):
    path: str = ""
    name: str


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

@app.get("/api/projects")
async def list_projects(
    search: str = "",
    filter: ProjectFilter = ProjectFilter.ALL,
    volume: Optional[str] = None,
    status: Optional[CompletionStatus] = None,
    favorites: bool = False,
    color: Optional[ColorLabel] = None,
    sort: SortColumn = SortColumn.MODIFIED,
    ascending: bool = False,
    limit: int = 200,
):
    entries = await library.projects(
        query=search,
        filter=filter,
        volume=volume,
        status=status,
        favorites_only=favorites,
        color=color,
        sort=sort,
        ascending=ascending,
    )
    return JSONResponse({
        "total": len(entries),
        "projects": [e.summary() for e in entries[:min(limit, 1000)]],
    })


@app.get("/api/projects/{project_id}")
async def get_project(project_id: str):
    try:
        entry = await library.get_project(project_id)
        dupes = await library.duplicates_of(project_id)
    except UnknownProjectError:
        raise HTTPException(status_code=404, detail="Project not found")

    data = entry.model_dump(mode="json")
    data["camelot"] = entry.musical_keys_camelot
    data["duplicates"] = [d.summary() for d in dupes]
    return JSONResponse(data)


@app.patch("/api/projects/{project_id}")
async def update_project(project_id: str, body: ProjectUpdate):
    changes = {}
    if body.tags is not None:
        changes["user_tags"] = list(dict.fromkeys(t.strip() for t in body.tags if t.strip()))
    if body.notes is not None:
        changes["user_notes"] = body.notes or None
    if body.status is not None:
        changes["completion_status"] = body.status
    if body.favorite is not None:
        changes["is_favorite"] = body.favorite
    if body.color is not None:
        changes["color_label"] = body.color
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")

    try:
        entry = await library.update_user_fields(project_id, **changes)
    except UnknownProjectError:
        raise HTTPException(status_code=404, detail="Project not found")
    except CatalogStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return JSONResponse(entry.summary())


@app.post("/api/projects/{project_id}/opened")
async def mark_opened(project_id: str):
    try:
        entry = await library.mark_opened(project_id)
    except UnknownProjectError:
        raise HTTPException(status_code=404, detail="Project not found")
    return JSONResponse(entry.summary())


@app.delete("/api/projects/{project_id}")
async def delete_project(project_id: str):
    try:
        await library.delete_project(project_id)
    except UnknownProjectError:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"success": True}


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

@app.get("/api/locations")
async def list_locations():
    return JSONResponse([loc.model_dump(mode="json") for loc in await library.locations()])


@app.post("/api/locations")
async def add_location(body: LocationRequest):
    try:
        location = await library.add_location(body.path, display_name=body.display_name)
    except CatalogStoreError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return JSONResponse(location.model_dump(mode="json"))


@app.delete("/api/locations/{location_id}")
async def remove_location(location_id: str):
    if not await library.remove_location(location_id):
        raise HTTPException(status_code=404, detail="Location not found")
    return {"success": True}


# ---------------------------------------------------------------------------
# Scanning and volumes
# ---------------------------------------------------------------------------

def _log_scan_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, ScanError):
        logger.error(f"Background scan failed: {exc}")
    elif exc is not None:
        logger.opt(exception=exc).error("Background scan crashed")


def _start_background_scan() -> None:
    global _scan_task
    _scan_task = asyncio.create_task(library.start_scan())
    _scan_task.add_done_callback(_log_scan_result)


@app.post("/api/scan")
async def start_scan():
    if library.is_scanning:
        raise HTTPException(status_code=409, detail="A scan is already running")
    _start_background_scan()
    return JSONResponse({"started": True}, status_code=202)


@app.post("/api/scan/cancel")
async def cancel_scan():
    return {"cancelled": library.cancel_scan()}


@app.get("/api/scan")
async def scan_status():
    snapshot = await library.snapshot()
    return JSONResponse(snapshot.model_dump(mode="json"))


@app.post("/api/volumes/mounted")
async def volume_mounted(body: VolumeEvent):
    if library.is_scanning:
        raise HTTPException(status_code=409, detail="A scan is already running")
    global _scan_task
    _scan_task = asyncio.create_task(library.handle_volume_mounted(body.path, body.name))
    _scan_task.add_done_callback(_log_scan_result)
    return JSONResponse({"started": True}, status_code=202)


@app.post("/api/volumes/unmounted")
async def volume_unmounted(body: VolumeEvent):
    library.handle_volume_unmounted(body.name)
    return {"hidden": sorted(library.hidden_volumes)}


@app.get("/api/volumes")
async def list_volumes():
    return JSONResponse(await library.unique_volumes())


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------

@app.get("/api/duplicates")
async def duplicates():
    groups = await library.duplicates()
    return JSONResponse([
        {
            "kind": g.kind.value,
            "primary": g.primary.id if g.primary else None,
            "projects": [p.summary() for p in g.projects],
        }
        for g in groups
    ])


@app.get("/api/stats")
async def stats():
    return JSONResponse(await library.statistics())


def main():
    port = int(os.environ.get("ALS_CATALOG_PORT", str(DEFAULT_PORT)))
    logger.info(f"Starting ALS Catalog on port {port}")
    uvicorn.run(
        "als_catalog.app:app",
        host="0.0.0.0",
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    main()
