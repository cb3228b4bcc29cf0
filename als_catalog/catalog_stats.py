"""
Library Statistics

Summarises a list of catalog entries into a JSON-ready dict: tempo spread,
total arrangement time, completion status and Live version distributions,
most-used plugins, keys on the Camelot wheel, volumes, and activity over the
last twelve months.
"""

from __future__ import annotations

import statistics
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from .models import CatalogEntry, CompletionStatus

TOP_PLUGIN_LIMIT = 10
MONTHS_SHOWN = 12

# (label, lower bound inclusive, upper bound exclusive)
BPM_BUCKETS: tuple[tuple[str, float, float], ...] = (
    ("< 80",    0.0,   80.0),
    ("80-99",   80.0,  100.0),
    ("100-119", 100.0, 120.0),
    ("120-139", 120.0, 140.0),
    ("140-159", 140.0, 160.0),
    ("160+",    160.0, float("inf")),
)


def bpm_bucket(bpm: float) -> str:
    for label, low, high in BPM_BUCKETS:
        if low <= bpm < high:
            return label
    return BPM_BUCKETS[0][0]


def _stats(values: list) -> dict:
    if not values:
        return {}
    s = sorted(values)
    n = len(s)
    return {
        "count": n,
        "min":   round(s[0], 1),
        "max":   round(s[-1], 1),
        "avg":   round(statistics.mean(s), 1),
        "p50":   round(s[n // 2], 1),
    }


def _month_keys(now: datetime, months: int) -> list[str]:
    """'YYYY-MM' for the last ``months`` months, oldest first."""
    year, month = now.year, now.month
    keys = []
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def build_statistics(
    entries: Iterable[CatalogEntry],
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)

    bpms:         list[float] = []
    total_secs:   float       = 0.0
    status_dist:  Counter     = Counter()
    bucket_dist:  Counter     = Counter()
    plugin_usage: Counter     = Counter()
    volumes:      Counter     = Counter()
    versions:     Counter     = Counter()
    camelot_keys: Counter     = Counter()
    by_month:     Counter     = Counter()
    favorites = 0
    count = 0

    for entry in entries:
        count += 1
        if entry.bpm is not None and entry.bpm > 0:
            bpms.append(entry.bpm)
            bucket_dist[bpm_bucket(entry.bpm)] += 1
        if entry.duration:
            total_secs += entry.duration
        status_dist[CompletionStatus(entry.completion_status).label] += 1
        plugin_usage.update(set(entry.plugins))
        volumes[entry.source_volume] += 1
        if entry.ableton_version:
            versions[entry.ableton_version.split(" ")[0]] += 1
        camelot_keys.update(entry.musical_keys_camelot)
        by_month[entry.effective_modified_date.strftime("%Y-%m")] += 1
        if entry.is_favorite:
            favorites += 1

    months = _month_keys(now, MONTHS_SHOWN)

    return {
        "project_count":         count,
        "favorite_count":        favorites,
        "average_bpm":           round(statistics.mean(bpms), 1) if bpms else None,
        "bpm":                   _stats(bpms),
        "bpm_distribution":      {label: bucket_dist.get(label, 0) for label, _, _ in BPM_BUCKETS},
        "total_duration_seconds": round(total_secs, 1),
        "status_distribution":   {s.label: status_dist.get(s.label, 0) for s in CompletionStatus},
        "top_plugins":           dict(plugin_usage.most_common(TOP_PLUGIN_LIMIT)),
        "volumes":               dict(volumes.most_common()),
        "ableton_versions":      dict(versions.most_common()),
        "camelot_keys":          dict(camelot_keys.most_common()),
        "projects_by_month":     {m: by_month.get(m, 0) for m in months},
    }
