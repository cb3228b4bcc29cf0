"""Synthetic Live Set files and catalog entries for tests."""

from __future__ import annotations

import struct
import uuid
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

from als_catalog.container import FCOMMENT, FEXTRA, FHCRC, FNAME
from als_catalog.models import CatalogEntry


def make_xml(
    version: str = "12.1",
    bpm: Optional[float] = 120.0,
    numerator: Optional[int] = 4,
    denominator: Optional[int] = 4,
    audio_tracks: int = 2,
    midi_tracks: int = 2,
    return_tracks: int = 1,
    arrangement_length: Optional[float] = 960.0,
    plugins: Sequence[str] = (),
    samples: Sequence[str] = (),
    scales: Sequence[tuple[int, int]] = (),
) -> str:
    """A minimal but realistic Live Set document."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<Ableton MajorVersion="5" MinorVersion="12.1.0" SchemaChangeCount="3" '
        f'Creator="Ableton Live {version}" Revision="">',
        "<LiveSet>",
    ]
    if bpm is not None:
        parts += [
            "<Tempo>",
            '<LomId Value="0" />',
            f'<Manual Value="{bpm}" />',
            '<MidiControllerRange><Min Value="60" /><Max Value="200" /></MidiControllerRange>',
            "</Tempo>",
        ]
    sig = ""
    if numerator is not None:
        sig += f'<Numerator Value="{numerator}" />'
    if denominator is not None:
        sig += f'<Denominator Value="{denominator}" />'
    if sig:
        parts.append(f"<TimeSignature>{sig}</TimeSignature>")
    if arrangement_length is not None:
        parts.append(f'<CurrentEnd Value="{arrangement_length}" />')

    parts.append("<Tracks>")
    track_id = 0
    for tag, count, label in (
        ("AudioTrack", audio_tracks, "Audio"),
        ("MidiTrack", midi_tracks, "MIDI"),
        ("ReturnTrack", return_tracks, "Return"),
    ):
        for i in range(count):
            parts.append(f'<{tag} Id="{track_id}"><Name Value="{label} {i + 1}" /></{tag}>')
            track_id += 1
    parts.append("</Tracks>")

    if plugins:
        parts.append("<PluginDevices>")
        for name in plugins:
            parts.append(f'<PluginDevice><PlugName Value="{name}" /></PluginDevice>')
        parts.append("</PluginDevices>")

    if samples:
        parts.append("<SampleRefs>")
        for name in samples:
            parts.append(f'<SampleRef><Name Value="{name}" /></SampleRef>')
        parts.append("</SampleRefs>")

    for root, scale in scales:
        parts.append(
            f'<ScaleInformation>\n<Root Value="{root}" />\n<Name Value="{scale}" />\n</ScaleInformation>'
        )

    parts += ["</LiveSet>", "</Ableton>"]
    return "\n".join(parts)


def raw_deflate(data: bytes) -> bytes:
    compressor = zlib.compressobj(6, zlib.DEFLATED, -zlib.MAX_WBITS)
    return compressor.compress(data) + compressor.flush()


def gzip_bytes(
    data: bytes,
    name: Optional[bytes] = None,
    comment: Optional[bytes] = None,
    extra: Optional[bytes] = None,
    header_crc: bool = False,
) -> bytes:
    """Hand-built gzip member so each optional header section can be exercised."""
    flags = 0
    if extra is not None:
        flags |= FEXTRA
    if name is not None:
        flags |= FNAME
    if comment is not None:
        flags |= FCOMMENT
    if header_crc:
        flags |= FHCRC

    header = b"\x1f\x8b\x08" + bytes([flags]) + struct.pack("<I", 0) + b"\x00\x03"
    if extra is not None:
        header += struct.pack("<H", len(extra)) + extra
    if name is not None:
        header += name + b"\x00"
    if comment is not None:
        header += comment + b"\x00"
    if header_crc:
        header += struct.pack("<H", zlib.crc32(header) & 0xFFFF)

    trailer = struct.pack("<II", zlib.crc32(data) & 0xFFFFFFFF, len(data) & 0xFFFFFFFF)
    return header + raw_deflate(data) + trailer


def als_bytes(**config) -> bytes:
    return gzip_bytes(make_xml(**config).encode("utf-8"))


def write_als(path: Path, **config) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(als_bytes(**config))
    return path


def make_entry(
    name: str = "Song",
    bpm: Optional[float] = 120.0,
    plugins: Sequence[str] = (),
    file_hash: Optional[str] = None,
    modified: Optional[datetime] = None,
    volume: str = "Macintosh HD",
    **overrides,
) -> CatalogEntry:
    entry_id = overrides.pop("id", None) or str(uuid.uuid4())
    modified = modified or datetime(2025, 6, 1, tzinfo=timezone.utc)
    folder = overrides.pop("folder_path", f"/Users/me/Music/{name} Project")
    fields = dict(
        id=entry_id,
        name=name,
        folder_path=folder,
        als_file_path=f"{folder}/{name}.als",
        source_volume=volume,
        created_date=modified,
        modified_date=modified,
        filesystem_modified_date=modified,
        bpm=bpm,
        time_signature_numerator=4,
        time_signature_denominator=4,
        plugins=list(plugins),
        file_hash=file_hash,
        last_indexed_at=modified,
    )
    fields.update(overrides)
    return CatalogEntry(**fields)
