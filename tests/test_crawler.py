"""Unit tests for the filesystem crawler."""

import os

import pytest

from als_catalog.crawler import FileSystemCrawler, is_excluded, volume_name

from als_fixtures import write_als


def touch(path, mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def library(tmp_path):
    root = tmp_path / "Projects"
    touch(root / "Song Project" / "Song.als")
    touch(root / "Song Project" / "Backup" / "Song [2024-01-01 120000].als")
    touch(root / "Song Project" / "Samples" / "kick.wav")
    touch(root / "Other Project" / "Other.als")
    touch(root / "Other Project" / "Other v2.als")
    touch(root / ".hidden" / "Secret.als")
    touch(root / ".Ghost.als")
    touch(root / "Trash" / "Gone.als")
    touch(root / "Synth.vst3" / "Contents" / "Preset.als")
    touch(root / "deep" / "er" / "Loud.ALS")
    return root


class TestFindProjects:
    def test_finds_expected_files(self, library):
        found = FileSystemCrawler().find_projects(library)
        names = [d.project_name for d in found]
        assert sorted(names) == ["Loud", "Other", "Other v2", "Song"]

    def test_sorted_by_path(self, library):
        found = FileSystemCrawler().find_projects(library)
        paths = [d.als_file_path for d in found]
        assert paths == sorted(paths)

    def test_no_excluded_components(self, library):
        for d in FileSystemCrawler().find_projects(library):
            assert "Backup" not in d.als_file_path.split(os.sep)
            assert "Trash" not in d.als_file_path.split(os.sep)
            assert not os.path.basename(d.als_file_path).startswith(".")

    def test_fields(self, library):
        found = {d.project_name: d for d in FileSystemCrawler().find_projects(library)}
        song = found["Song"]
        assert song.folder_path == str((library / "Song Project").absolute())
        assert song.als_file_path.endswith(os.path.join("Song Project", "Song.als"))
        assert song.modified_date.tzinfo is not None
        assert song.source_volume

    def test_missing_root(self, tmp_path):
        assert FileSystemCrawler().find_projects(tmp_path / "nope") == []

    def test_empty_root(self, tmp_path):
        assert FileSystemCrawler().find_projects(tmp_path) == []

    def test_main_file_only(self, library):
        found = FileSystemCrawler(main_file_only=True).find_projects(library)
        folders = [d.folder_path for d in found]
        assert len(folders) == len(set(folders))


class TestMainProjectFile:
    def test_single(self, tmp_path):
        only = touch(tmp_path / "Beat Project" / "Whatever.als")
        assert FileSystemCrawler.find_main_project_file(tmp_path / "Beat Project") == only.absolute()

    def test_named_after_folder(self, tmp_path):
        folder = tmp_path / "Beat"
        touch(folder / "Beat v3.als", mtime=2_000_000_000)
        named = touch(folder / "Beat.als", mtime=1_000_000_000)
        assert FileSystemCrawler.find_main_project_file(folder) == named.absolute()

    def test_most_recent(self, tmp_path):
        folder = tmp_path / "Beat Project"
        touch(folder / "a.als", mtime=1_000_000_000)
        newest = touch(folder / "b.als", mtime=1_500_000_000)
        assert FileSystemCrawler.find_main_project_file(folder) == newest.absolute()

    def test_none(self, tmp_path):
        assert FileSystemCrawler.find_main_project_file(tmp_path) is None
        assert FileSystemCrawler.find_main_project_file(tmp_path / "missing") is None


class TestVolumeName:
    def test_external(self):
        assert volume_name("/Volumes/Studio SSD/Projects/Song Project") == "Studio SSD"

    def test_home(self):
        assert volume_name("/Users/me/Music/Ableton") == "Macintosh HD"

    def test_fallback_is_named(self, tmp_path):
        assert volume_name(tmp_path)


class TestExclusion:
    @pytest.mark.parametrize("path,excluded", [
        ("/Users/me/Music/Song Project/Backup/Song.als", True),
        ("/Users/me/.Trash/x.als", False),
        ("/Volumes/X/Trash/x.als", True),
        ("/Users/me/Music/Backups/Song.als", False),
        ("/Users/me/Music/Song Project/Song.als", False),
    ])
    def test_components(self, path, excluded):
        assert is_excluded(path) is excluded


class TestDefaultLocations:
    def test_existing_only_in_order(self, tmp_path):
        (tmp_path / "Music" / "Ableton").mkdir(parents=True)
        (tmp_path / "Documents").mkdir()
        assert FileSystemCrawler.default_scan_locations(tmp_path) == [
            tmp_path / "Music" / "Ableton",
            tmp_path / "Music",
            tmp_path / "Documents",
        ]

    def test_nothing(self, tmp_path):
        assert FileSystemCrawler.default_scan_locations(tmp_path) == []


def test_real_set_file_is_discovered(tmp_path):
    write_als(tmp_path / "Live Project" / "Live.als")
    found = FileSystemCrawler().find_projects(tmp_path)
    assert [d.project_name for d in found] == ["Live"]
