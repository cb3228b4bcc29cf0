"""
Duplicate Detection

Pure functions over catalog entries, no I/O.

Two kinds of group:
    exact    entries whose file bytes hash the same
    similar  tempos within ``BPM_TOLERANCE`` and more than half of the smaller
             plugin set shared

Similar groups are built greedily: each unprocessed entry with a tempo
seeds a group of every other unprocessed entry similar to it. Membership
is not transitive; A~B and B~C with A≁C can leave C out of A's group.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, List

from .models import CatalogEntry, DuplicateGroup, DuplicateKind

BPM_TOLERANCE = 5.0
MIN_PLUGIN_OVERLAP = 0.5


def is_similar(a: CatalogEntry, b: CatalogEntry) -> bool:
    if a.file_hash is not None and a.file_hash == b.file_hash:
        return False

    if a.bpm is None or b.bpm is None:
        return False
    if abs(a.bpm - b.bpm) > BPM_TOLERANCE:
        return False

    plugins_a, plugins_b = set(a.plugins), set(b.plugins)
    if not plugins_a or not plugins_b:
        return False

    overlap = len(plugins_a & plugins_b) / min(len(plugins_a), len(plugins_b))
    return overlap > MIN_PLUGIN_OVERLAP


def find_exact_duplicates(entries: Iterable[CatalogEntry]) -> List[DuplicateGroup]:
    by_hash: dict[str, list[CatalogEntry]] = defaultdict(list)
    for entry in entries:
        if entry.file_hash:
            by_hash[entry.file_hash].append(entry)
    return [
        DuplicateGroup(kind=DuplicateKind.EXACT, projects=members)
        for members in by_hash.values()
        if len(members) > 1
    ]


def find_similar_projects(entries: Iterable[CatalogEntry]) -> List[DuplicateGroup]:
    entries = list(entries)
    groups: List[DuplicateGroup] = []
    processed: set[str] = set()

    for seed in entries:
        if seed.id in processed or seed.bpm is None:
            continue

        members = [seed]
        for other in entries:
            if other.id == seed.id or other.id in processed:
                continue
            if is_similar(seed, other):
                members.append(other)
                processed.add(other.id)

        if len(members) > 1:
            processed.add(seed.id)
            groups.append(DuplicateGroup(kind=DuplicateKind.SIMILAR, projects=members))

    return groups


def find_duplicates(entries: Iterable[CatalogEntry]) -> List[DuplicateGroup]:
    """Exact groups first, then similar groups."""
    entries = list(entries)
    return find_exact_duplicates(entries) + find_similar_projects(entries)


def duplicates_of(entry: CatalogEntry, entries: Iterable[CatalogEntry]) -> List[CatalogEntry]:
    others = [e for e in entries if e.id != entry.id]
    exact = [e for e in others if entry.file_hash and e.file_hash == entry.file_hash]
    similar = [e for e in others if is_similar(entry, e)]
    return exact + similar


def has_duplicates(entry: CatalogEntry, entries: Iterable[CatalogEntry]) -> bool:
    return bool(duplicates_of(entry, entries))
