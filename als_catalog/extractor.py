"""
Live Set Metadata Extractor

Pulls tempo, time signature, track counts, arrangement length, plugins,
samples, and musical keys out of the decoded XML of a ``.als`` file.

Sets are often several megabytes of XML, so extraction is a handful of
regular-expression and substring scans rather than a DOM parse. Every field
degrades to ``None`` or its default when it can't be found — a malformed or
unfamiliar document yields whatever is extractable and never raises.

Usage:
    python -m als_catalog.inspect_project "/path/to/Song Project/Song.als"
"""

from __future__ import annotations

import argparse
import json
import re
import sys
from itertools import islice
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from .container import ProjectFileError, decode_container, read_container
from .models import ParsedMetadata

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# The Creator attribute sits on the root element; never scan past this.
VERSION_WINDOW = 2000

_RE_VERSION     = re.compile(r'Creator="Ableton Live ([^"]+)"')
_RE_MANUAL      = re.compile(r'<Manual Value="([\d.]+)"')
_RE_NUMERATOR   = re.compile(r'<Numerator Value="(\d+)"')
_RE_DENOMINATOR = re.compile(r'<Denominator Value="(\d+)"')
_RE_CURRENT_END = re.compile(r'<CurrentEnd Value="([\d.]+)"')
_RE_PLUG_NAME   = re.compile(r'<PlugName Value="([^"]+)"')
_RE_SAMPLE_NAME = re.compile(
    r'<Name Value="([^"]+\.(?:wav|aif|aiff|mp3|flac|m4a))"', re.IGNORECASE
)
_RE_SCALE       = re.compile(
    r'<ScaleInformation>\s*<Root Value="(\d+)"\s*/>\s*<Name Value="(\d+)"'
)

AUDIO_TRACK_TAG  = "<AudioTrack Id="
MIDI_TRACK_TAG   = "<MidiTrack Id="
RETURN_TRACK_TAG = "<ReturnTrack Id="

MAX_PLUGIN_MATCHES = 200
MAX_SAMPLE_MATCHES = 500
MAX_SCALE_MATCHES  = 100

# Native Live devices report a PlugName too; only third-party plugins are kept.
BUILT_IN_DEVICE_PREFIXES: tuple[str, ...] = (
    "Ableton", "Audio", "Auto", "Beat", "Corpus", "Delay", "Drum", "EQ",
    "External", "Filter", "Flanger", "Gate", "Glue", "Grain", "Limiter",
    "Looper", "MIDI", "Multiband", "Overdrive", "Pedal", "Phaser", "Pitch",
    "Redux", "Resonator", "Reverb", "Saturator", "Scale", "Simple", "Spectrum",
    "Tension", "Tuner", "Utility", "Vinyl", "Vocoder", "Wavetable",
)

NOTE_NAMES: tuple[str, ...] = (
    "C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B",
)

SCALE_NAMES: tuple[str, ...] = (
    "Major", "Minor", "Dorian", "Mixolydian", "Lydian", "Phrygian", "Locrian",
    "Whole Tone", "Half-Whole Dim", "Whole-Half Dim", "Minor Blues",
    "Minor Pentatonic", "Major Pentatonic", "Harmonic Minor", "Melodic Minor",
    "Super Locrian", "Bhairav", "Hungarian Minor", "Minor Gypsy", "Hirajoshi",
    "In-Sen", "Iwato", "Kumoi", "Pelog", "Spanish",
)


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _to_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def _to_int(value: str) -> Optional[int]:
    try:
        return int(value)
    except ValueError:
        return None


def _first_float(pattern: re.Pattern, text: str) -> Optional[float]:
    match = pattern.search(text)
    return _to_float(match.group(1)) if match else None


def _first_int(pattern: re.Pattern, text: str) -> Optional[int]:
    match = pattern.search(text)
    return _to_int(match.group(1)) if match else None


def extract_version(text: str) -> Optional[str]:
    match = _RE_VERSION.search(text[:VERSION_WINDOW])
    return match.group(1) if match else None


def extract_bpm(text: str) -> Optional[float]:
    """First ``<Manual Value>`` inside the first ``<Tempo>`` block."""
    start = text.find("<Tempo>")
    if start == -1:
        return None
    end = text.find("</Tempo>", start)
    if end == -1:
        return None
    return _first_float(_RE_MANUAL, text[start:end])


def is_built_in_device(name: str) -> bool:
    return name.startswith(BUILT_IN_DEVICE_PREFIXES)


def extract_plugins(text: str) -> list[str]:
    plugins: set[str] = set()
    for match in islice(_RE_PLUG_NAME.finditer(text), MAX_PLUGIN_MATCHES):
        name = match.group(1)
        if name and name != "None" and not is_built_in_device(name):
            plugins.add(name)
    return sorted(plugins)


def extract_sample_names(text: str) -> list[str]:
    """Sample file names only — paths from other machines are dropped."""
    names: set[str] = set()
    for match in islice(_RE_SAMPLE_NAME.finditer(text), MAX_SAMPLE_MATCHES):
        names.add(re.split(r"[\\/]", match.group(1))[-1])
    return sorted(names)


def format_musical_key(root: int, scale: int) -> Optional[str]:
    if not (0 <= root < len(NOTE_NAMES)):
        return None
    if not (0 <= scale < len(SCALE_NAMES)):
        return None
    return f"{NOTE_NAMES[root]} {SCALE_NAMES[scale]}"


def extract_musical_keys(text: str) -> list[str]:
    keys: set[str] = set()
    for match in islice(_RE_SCALE.finditer(text), MAX_SCALE_MATCHES):
        root, scale = _to_int(match.group(1)), _to_int(match.group(2))
        if root is None or scale is None:
            continue
        key = format_musical_key(root, scale)
        if key:
            keys.add(key)
    return sorted(keys)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def extract_metadata(text: str) -> ParsedMetadata:
    """Build a ParsedMetadata from decoded Live Set XML. Never raises."""
    bpm = extract_bpm(text)

    duration: Optional[float] = None
    beats = _first_float(_RE_CURRENT_END, text)
    if beats is not None and bpm is not None and bpm > 0:
        duration = (beats / bpm) * 60.0

    return ParsedMetadata(
        bpm=bpm,
        time_signature_numerator=_first_int(_RE_NUMERATOR, text) or 4,
        time_signature_denominator=_first_int(_RE_DENOMINATOR, text) or 4,
        audio_track_count=text.count(AUDIO_TRACK_TAG),
        midi_track_count=text.count(MIDI_TRACK_TAG),
        return_track_count=text.count(RETURN_TRACK_TAG),
        ableton_version=extract_version(text),
        duration=duration,
        sample_names=extract_sample_names(text),
        plugins=extract_plugins(text),
        musical_keys=extract_musical_keys(text),
    )


def parse_project_bytes(data: bytes) -> ParsedMetadata:
    return extract_metadata(decode_container(data))


def parse_project_file(path: Union[str, Path]) -> ParsedMetadata:
    """Read, decode, and extract one ``.als`` file.

    Raises:
        ProjectFileNotFoundError, DecompressionFailedError, InvalidTextError
    """
    return parse_project_bytes(read_container(path))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _cli_main() -> None:
    parser = argparse.ArgumentParser(description="Print the metadata of one Live Set")
    parser.add_argument("file", help="Path to a .als file")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "WARNING")

    try:
        metadata = parse_project_file(args.file)
    except ProjectFileError as exc:
        logger.error(str(exc))
        sys.exit(1)

    payload = metadata.model_dump()
    payload["total_track_count"] = metadata.total_track_count
    print(json.dumps(payload, indent=2, ensure_ascii=False))
