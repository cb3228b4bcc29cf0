"""Unit tests for the JSONL catalog store."""

import asyncio
from datetime import datetime, timezone

import pytest

from als_catalog.catalog_store import CatalogStore, CatalogStoreError, UnknownProjectError
from als_catalog.models import ColorLabel, CompletionStatus, Location

from als_fixtures import make_entry


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store(tmp_path):
    s = CatalogStore(tmp_path / "data")
    s.load()
    return s


def make_location(path="/Users/me/Music", name="Music", **kwargs):
    return Location(id=kwargs.pop("id", f"loc-{name}"), path=path, display_name=name, **kwargs)


class TestProjects:
    def test_empty(self, store):
        assert run(store.fetch_all()) == []
        assert len(store) == 0

    def test_upsert_and_reload(self, store, tmp_path):
        entry = make_entry("Song", plugins=["Serum"], file_hash="abc")
        run(store.upsert_many([entry]))

        reloaded = CatalogStore(tmp_path / "data")
        assert reloaded.load() == 1
        assert run(reloaded.fetch_by_id(entry.id)) == entry

    def test_no_tmp_left_behind(self, store, tmp_path):
        run(store.upsert_many([make_entry()]))
        assert not list((tmp_path / "data").glob("*.tmp"))

    def test_fetch_all_newest_first(self, store):
        old = make_entry("Old", modified=datetime(2020, 1, 1, tzinfo=timezone.utc))
        new = make_entry("New", modified=datetime(2025, 1, 1, tzinfo=timezone.utc))
        run(store.upsert_many([old, new]))
        assert [e.name for e in run(store.fetch_all())] == ["New", "Old"]

    def test_fetch_by_paths(self, store):
        a, b = make_entry("A"), make_entry("B")
        run(store.upsert_many([a, b]))
        found = run(store.fetch_by_paths([a.als_file_path, "/nope.als"]))
        assert list(found) == [a.als_file_path]
        assert run(store.fetch_by_paths([])) == {}

    def test_path_is_unique(self, store):
        first = make_entry("Song")
        second = make_entry("Song")
        assert first.id != second.id
        run(store.upsert_many([first]))
        run(store.upsert_many([second]))
        assert [e.id for e in run(store.fetch_all())] == [second.id]

    def test_delete(self, store):
        a, b = make_entry("A"), make_entry("B")
        run(store.upsert_many([a, b]))
        assert run(store.delete(a.id)) is True
        assert run(store.delete(a.id)) is False
        assert run(store.delete_many([b.id, "nope"])) == 1
        assert run(store.fetch_all()) == []

    def test_corrupt_line_skipped(self, store, tmp_path):
        good = make_entry("Good")
        run(store.upsert_many([good]))
        path = tmp_path / "data" / "catalog.jsonl"
        path.write_text(path.read_text() + "{not json}\n\n", encoding="utf-8")

        reloaded = CatalogStore(tmp_path / "data")
        assert reloaded.load() == 1

    def test_invalid_utf8_line_skipped(self, store, tmp_path):
        run(store.upsert_many([make_entry("Good")]))
        path = tmp_path / "data" / "catalog.jsonl"
        with path.open("ab") as fh:
            fh.write(b"\xff\xfe garbage\n")

        reloaded = CatalogStore(tmp_path / "data")
        assert reloaded.load() == 1
        assert [e.name for e in run(reloaded.fetch_all())] == ["Good"]

    def test_search(self, store):
        run(store.upsert_many([
            make_entry("Night Drive", plugins=["Diva"]),
            make_entry("Morning", plugins=["Serum"]),
        ]))
        assert [e.name for e in run(store.search("night"))] == ["Night Drive"]
        assert [e.name for e in run(store.search("SERUM"))] == ["Morning"]
        assert len(run(store.search(""))) == 2

    def test_volumes(self, store):
        run(store.upsert_many([
            make_entry("A", volume="Studio SSD"),
            make_entry("B", volume="Macintosh HD"),
            make_entry("C", volume="Studio SSD"),
        ]))
        assert run(store.unique_volumes()) == ["Macintosh HD", "Studio SSD"]
        assert {e.name for e in run(store.fetch_for_volume("Studio SSD"))} == {"A", "C"}


class TestUserFields:
    def test_update(self, store):
        entry = make_entry("Song")
        run(store.upsert_many([entry]))
        updated = run(store.update_user_fields(
            entry.id,
            user_tags=["wip"],
            user_notes="needs vocals",
            completion_status=CompletionStatus.MIXING,
            is_favorite=True,
            color_label=ColorLabel.BLUE,
        ))
        assert updated.user_tags == ["wip"]
        assert updated.completion_status == CompletionStatus.MIXING
        assert updated.color_label == ColorLabel.BLUE
        assert updated.bpm == entry.bpm
        assert run(store.fetch_by_id(entry.id)) == updated

    def test_derived_fields_rejected(self, store):
        entry = make_entry("Song")
        run(store.upsert_many([entry]))
        with pytest.raises(ValueError):
            run(store.update_user_fields(entry.id, bpm=90.0))

    def test_unknown_project(self, store):
        with pytest.raises(UnknownProjectError):
            run(store.update_user_fields("missing", is_favorite=True))


class TestLocations:
    def test_save_and_reload(self, store, tmp_path):
        loc = make_location()
        run(store.save_location(loc))
        reloaded = CatalogStore(tmp_path / "data")
        reloaded.load()
        assert run(reloaded.fetch_locations()) == [loc]

    def test_duplicate_path_rejected(self, store):
        run(store.save_location(make_location(id="a")))
        with pytest.raises(CatalogStoreError):
            run(store.save_location(make_location(id="b")))

    def test_enabled_and_by_path(self, store):
        run(store.save_location(make_location("/a", "A")))
        run(store.save_location(make_location("/b", "B", is_enabled=False)))
        assert [loc.display_name for loc in run(store.fetch_enabled_locations())] == ["A"]
        assert run(store.fetch_location_by_path("/b")).display_name == "B"
        assert run(store.fetch_location_by_path("/c")) is None

    def test_update_count(self, store):
        loc = make_location()
        run(store.save_location(loc))
        when = datetime(2025, 3, 1, tzinfo=timezone.utc)
        run(store.update_location_count(loc.id, 7, when))
        saved = run(store.fetch_location_by_path(loc.path))
        assert saved.project_count == 7
        assert saved.last_scanned_at == when

    def test_delete(self, store):
        loc = make_location()
        run(store.save_location(loc))
        assert run(store.delete_location(loc.id)) is True
        assert run(store.fetch_locations()) == []


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ALS_CATALOG_DATA_DIR", str(tmp_path / "elsewhere"))
    assert CatalogStore.from_env().data_dir == tmp_path / "elsewhere"
