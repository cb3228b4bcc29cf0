"""Tests for the ProjectLibrary facade."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from als_catalog.catalog_store import CatalogStore, CatalogStoreError, UnknownProjectError
from als_catalog.library import ProjectFilter, ProjectLibrary, SortColumn
from als_catalog.models import ColorLabel, CompletionStatus, DuplicateKind

from als_fixtures import make_entry, write_als

NOW = datetime(2025, 6, 10, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def library(tmp_path):
    store = CatalogStore(tmp_path / "data")
    store.load()
    return ProjectLibrary(store)


@pytest.fixture
def populated(library):
    run(library.store.upsert_many([
        make_entry("Alpha", bpm=150.0, plugins=["Serum"], modified=NOW - timedelta(days=1)),
        make_entry("bravo", bpm=90.0, plugins=["Diva"], modified=NOW - timedelta(days=30)),
        make_entry("Charlie", bpm=None, modified=NOW - timedelta(days=3), volume="Studio SSD"),
        make_entry("Delta", bpm=124.0, plugins=["Serum", "Diva"], modified=NOW - timedelta(days=60)),
    ]))
    return library


def names(entries):
    return [e.name for e in entries]


class TestLoad:
    def test_seeds_default_locations(self, library, tmp_path):
        home = tmp_path / "home"
        (home / "Music" / "Ableton").mkdir(parents=True)
        run(library.load(home=home))
        paths = [loc.path for loc in run(library.locations())]
        assert sorted(paths) == sorted([str(home / "Music" / "Ableton"), str(home / "Music")])
        assert all(loc.is_auto_detected for loc in run(library.locations()))

    def test_existing_locations_kept(self, library, tmp_path):
        run(library.add_location(tmp_path))
        home = tmp_path / "home"
        (home / "Documents").mkdir(parents=True)
        run(library.load(home=home))
        assert [loc.path for loc in run(library.locations())] == [str(tmp_path)]


class TestLocations:
    def test_add_and_remove(self, library, tmp_path):
        loc = run(library.add_location(tmp_path / "Sets"))
        assert loc.display_name == "Sets"
        assert not loc.is_auto_detected
        assert run(library.remove_location(loc.id)) is True
        assert run(library.locations()) == []

    def test_duplicate_rejected(self, library, tmp_path):
        run(library.add_location(tmp_path))
        with pytest.raises(CatalogStoreError):
            run(library.add_location(tmp_path))


class TestFilters:
    def test_default_newest_first(self, populated):
        assert names(run(populated.projects())) == ["Alpha", "Charlie", "bravo", "Delta"]

    def test_search(self, populated):
        assert names(run(populated.projects(query="diva"))) == ["bravo", "Delta"]

    def test_recently_modified(self, populated):
        result = run(populated.projects(filter=ProjectFilter.RECENTLY_MODIFIED, now=NOW))
        assert names(result) == ["Alpha", "Charlie"]

    def test_high_bpm(self, populated):
        assert names(run(populated.projects(filter=ProjectFilter.HIGH_BPM))) == ["Alpha"]

    def test_low_bpm_excludes_unknown(self, populated):
        assert names(run(populated.projects(filter=ProjectFilter.LOW_BPM))) == ["bravo"]

    def test_volume(self, populated):
        assert names(run(populated.projects(volume="Studio SSD"))) == ["Charlie"]

    def test_user_field_filters(self, populated):
        alpha = run(populated.projects(query="alpha"))[0]
        run(populated.set_favorite(alpha.id, True))
        run(populated.set_color(alpha.id, ColorLabel.GREEN))
        run(populated.set_status(alpha.id, CompletionStatus.DONE))
        assert names(run(populated.projects(favorites_only=True))) == ["Alpha"]
        assert names(run(populated.projects(color=ColorLabel.GREEN))) == ["Alpha"]
        assert names(run(populated.projects(status=CompletionStatus.DONE))) == ["Alpha"]


class TestSorting:
    def test_name_case_insensitive(self, populated):
        result = run(populated.projects(sort=SortColumn.NAME, ascending=True))
        assert names(result) == ["Alpha", "bravo", "Charlie", "Delta"]

    def test_bpm_descending(self, populated):
        result = run(populated.projects(sort=SortColumn.BPM))
        assert names(result) == ["Alpha", "Delta", "bravo", "Charlie"]

    def test_version_numeric(self, library):
        run(library.store.upsert_many([
            make_entry("Old", ableton_version="9.7.7"),
            make_entry("New", ableton_version="12.1"),
            make_entry("Mid", ableton_version="11.3.25"),
            make_entry("Unknown", ableton_version=None),
        ]))
        result = run(library.projects(sort=SortColumn.VERSION, ascending=True))
        assert names(result) == ["Unknown", "Old", "Mid", "New"]


class TestAnnotations:
    def test_tags_cleaned(self, populated):
        entry = run(populated.projects())[0]
        updated = run(populated.update_tags(entry.id, ["wip", " wip ", "", "vocals"]))
        assert updated.user_tags == ["wip", "vocals"]

    def test_notes_cleared(self, populated):
        entry = run(populated.projects())[0]
        run(populated.update_notes(entry.id, "x"))
        assert run(populated.update_notes(entry.id, "")).user_notes is None

    def test_mark_opened(self, populated):
        entry = run(populated.projects())[0]
        assert run(populated.mark_opened(entry.id, NOW)).last_opened_at == NOW

    def test_unknown(self, populated):
        with pytest.raises(UnknownProjectError):
            run(populated.set_favorite("missing", True))

    def test_delete(self, populated):
        entry = run(populated.projects())[0]
        run(populated.delete_project(entry.id))
        with pytest.raises(UnknownProjectError):
            run(populated.get_project(entry.id))


class TestVolumes:
    def test_unmount_hides_without_deleting(self, populated):
        populated.handle_volume_unmounted("Studio SSD")
        assert "Charlie" not in names(run(populated.projects()))
        assert "Studio SSD" not in run(populated.unique_volumes())
        assert len(run(populated.store.fetch_all())) == 4

    def test_mount_adds_location_and_scans(self, library, tmp_path):
        drive = tmp_path / "Drive"
        write_als(drive / "Jam Project" / "Jam.als")
        library.handle_volume_unmounted("Drive")

        count = run(library.handle_volume_mounted(drive, "Drive"))

        assert count == 1
        assert "Drive" not in library.hidden_volumes
        locations = run(library.locations())
        assert [loc.display_name for loc in locations] == ["Drive"]
        assert locations[0].is_auto_detected


class TestScanning:
    def test_snapshot_after_scan(self, library, tmp_path):
        write_als(tmp_path / "Sets" / "A Project" / "A.als")
        run(library.add_location(tmp_path / "Sets"))
        assert run(library.start_scan()) == 1

        snapshot = run(library.snapshot())
        assert snapshot.is_scanning is False
        assert snapshot.progress.kind == "completed"
        assert snapshot.project_count == 1
        assert snapshot.location_count == 1

    def test_second_scan_ignored_while_running(self, library):
        library._is_scanning = True
        assert run(library.start_scan()) is None

    def test_cancel_without_scan(self, library):
        assert library.cancel_scan() is False


class TestAnalysis:
    def test_duplicates(self, populated):
        assert run(populated.duplicates()) == []
        run(populated.store.upsert_many([make_entry("Echo", bpm=122.0, plugins=["Serum", "Diva"])]))
        groups = run(populated.duplicates())
        assert [g.kind for g in groups] == [DuplicateKind.SIMILAR]
        assert {p.name for p in groups[0].projects} == {"Delta", "Echo"}

    def test_hidden_volume_excluded_from_stats(self, populated):
        populated.handle_volume_unmounted("Studio SSD")
        stats = run(populated.statistics(now=NOW))
        assert stats["project_count"] == 3
        assert "Studio SSD" not in stats["volumes"]


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("ALS_CATALOG_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("ALS_CATALOG_MAIN_FILE_ONLY", "1")
    library = ProjectLibrary.from_env()
    assert library.store.data_dir == tmp_path
    assert library.scanner.crawler.main_file_only is True
