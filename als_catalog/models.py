"""
Data Models for the Live Set Catalog

Parsed project metadata, persistent catalog entries with their user-owned
annotations, scan locations, scan progress events, and duplicate groups.
"""

from datetime import datetime
from enum import Enum, IntEnum
from typing import Literal, Optional, List, Union

from pydantic import BaseModel, Field

from .camelot import to_camelot


# ---------------------------------------------------------------------------
# User annotation enums
# ---------------------------------------------------------------------------

class CompletionStatus(IntEnum):
    NONE = 0
    IDEA = 1
    IN_PROGRESS = 2
    MIXING = 3
    DONE = 4

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS: dict[CompletionStatus, str] = {
    CompletionStatus.NONE: "Not Set",
    CompletionStatus.IDEA: "Idea",
    CompletionStatus.IN_PROGRESS: "In Progress",
    CompletionStatus.MIXING: "Mixing",
    CompletionStatus.DONE: "Done",
}


class ColorLabel(IntEnum):
    NONE = 0
    RED = 1
    ORANGE = 2
    YELLOW = 3
    GREEN = 4
    BLUE = 5
    PURPLE = 6
    GRAY = 7


COLOR_NAME_TO_ID: dict[str, int] = {c.name.lower(): int(c) for c in ColorLabel}
COLOR_ID_TO_NAME: dict[int, str] = {v: k for k, v in COLOR_NAME_TO_ID.items()}

STATUS_NAME_TO_ID: dict[str, int] = {s.name.lower(): int(s) for s in CompletionStatus}

# Fields owned by the user. A scan never writes these.
USER_FIELDS: tuple[str, ...] = (
    "user_tags",
    "user_notes",
    "completion_status",
    "is_favorite",
    "color_label",
    "last_opened_at",
)


# ---------------------------------------------------------------------------
# Crawl / parse results
# ---------------------------------------------------------------------------

class DiscoveredFile(BaseModel):
    """A Live Set file found on disk by the crawler."""

    folder_path: str = Field(..., description="Absolute path of the project folder")
    als_file_path: str = Field(..., description="Absolute path of the .als file")
    project_name: str = Field(..., description="File name without extension")
    source_volume: str = Field(..., description="Volume the file lives on")
    created_date: datetime
    modified_date: datetime


class ParsedMetadata(BaseModel):
    """Metadata extracted from the decoded XML of one Live Set."""

    bpm: Optional[float] = Field(None, description="Arrangement tempo")
    time_signature_numerator: int = Field(4, ge=1)
    time_signature_denominator: int = Field(4, ge=1)
    audio_track_count: int = Field(0, ge=0)
    midi_track_count: int = Field(0, ge=0)
    return_track_count: int = Field(0, ge=0)
    ableton_version: Optional[str] = Field(None, description="Creator version, e.g. '12.1'")
    duration: Optional[float] = Field(None, description="Arrangement length in seconds")
    sample_names: List[str] = Field(default_factory=list)
    plugins: List[str] = Field(default_factory=list, description="Third-party plugin names")
    musical_keys: List[str] = Field(default_factory=list, description="e.g. 'A Minor'")

    @property
    def total_track_count(self) -> int:
        return self.audio_track_count + self.midi_track_count + self.return_track_count


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class CatalogEntry(BaseModel):
    """One indexed project: derived metadata plus user-owned annotations."""

    id: str = Field(..., description="Stable identifier, survives re-scans")
    name: str
    folder_path: str
    als_file_path: str
    source_volume: str

    created_date: Optional[datetime] = None
    modified_date: Optional[datetime] = None
    filesystem_modified_date: datetime

    bpm: Optional[float] = None
    time_signature_numerator: Optional[int] = None
    time_signature_denominator: Optional[int] = None
    audio_track_count: int = Field(0, ge=0)
    midi_track_count: int = Field(0, ge=0)
    return_track_count: int = Field(0, ge=0)
    total_track_count: int = Field(0, ge=0)
    ableton_version: Optional[str] = None
    duration: Optional[float] = None
    sample_names: List[str] = Field(default_factory=list)
    plugins: List[str] = Field(default_factory=list)
    musical_keys: List[str] = Field(default_factory=list)

    file_hash: Optional[str] = Field(None, description="SHA-256 of the file bytes")
    last_indexed_at: datetime

    # User-owned
    user_tags: List[str] = Field(default_factory=list)
    user_notes: Optional[str] = None
    completion_status: CompletionStatus = CompletionStatus.NONE
    is_favorite: bool = False
    color_label: ColorLabel = ColorLabel.NONE
    last_opened_at: Optional[datetime] = None

    @property
    def effective_modified_date(self) -> datetime:
        return self.modified_date or self.filesystem_modified_date

    @property
    def time_signature(self) -> Optional[str]:
        if self.time_signature_numerator is None or self.time_signature_denominator is None:
            return None
        return f"{self.time_signature_numerator}/{self.time_signature_denominator}"

    @property
    def project_folder_name(self) -> str:
        return self.folder_path.rstrip("/\\").replace("\\", "/").rsplit("/", 1)[-1]

    @property
    def musical_keys_camelot(self) -> List[str]:
        return [code for code in (to_camelot(k) for k in self.musical_keys) if code]

    def formatted_duration(self) -> Optional[str]:
        if self.duration is None:
            return None
        minutes, seconds = divmod(int(self.duration), 60)
        return f"{minutes}:{seconds:02d}"

    def summary(self) -> dict:
        """Compact dict for list views and tool responses."""
        return {
            "id": self.id,
            "name": self.name,
            "path": self.als_file_path,
            "volume": self.source_volume,
            "bpm": self.bpm,
            "time_signature": self.time_signature,
            "tracks": self.total_track_count,
            "duration": self.formatted_duration(),
            "version": self.ableton_version,
            "keys": self.musical_keys,
            "camelot": self.musical_keys_camelot,
            "plugins": self.plugins,
            "modified": self.effective_modified_date.isoformat(),
            "status": CompletionStatus(self.completion_status).label,
            "favorite": self.is_favorite,
            "color": COLOR_ID_TO_NAME[int(self.color_label)],
            "tags": self.user_tags,
        }


class Location(BaseModel):
    """A root directory the scanner crawls."""

    id: str
    path: str
    display_name: str
    is_auto_detected: bool = False
    is_enabled: bool = True
    project_count: int = Field(0, ge=0)
    last_scanned_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Scan progress events
# ---------------------------------------------------------------------------

class ScanStarting(BaseModel):
    kind: Literal["starting"] = "starting"


class ScanDiscovering(BaseModel):
    kind: Literal["discovering"] = "discovering"
    location: str


class ScanParsing(BaseModel):
    kind: Literal["parsing"] = "parsing"
    current: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    project_name: str


class ScanCompleted(BaseModel):
    kind: Literal["completed"] = "completed"
    project_count: int
    duration_seconds: float


class ScanCancelled(BaseModel):
    kind: Literal["cancelled"] = "cancelled"
    project_count: int


class ScanFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    error: str


ScanProgress = Union[
    ScanStarting, ScanDiscovering, ScanParsing, ScanCompleted, ScanCancelled, ScanFailed
]


# ---------------------------------------------------------------------------
# Duplicates
# ---------------------------------------------------------------------------

class DuplicateKind(str, Enum):
    EXACT = "exact"
    SIMILAR = "similar"


class DuplicateGroup(BaseModel):
    kind: DuplicateKind
    projects: List[CatalogEntry] = Field(default_factory=list)

    @property
    def primary(self) -> Optional[CatalogEntry]:
        """Most recently modified member."""
        if not self.projects:
            return None
        return max(self.projects, key=lambda p: p.effective_modified_date)
