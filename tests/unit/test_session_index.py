"""Tests for session discovery and filtering."""

import json
import os

from helpers import assistant_text, user_text, write_transcript
from reflector.session_index import (
    INDEX_FILENAME,
    ScanFilters,
    entry_from_transcript,
    normalize_path,
    read_all_session_entries,
    read_project_entries,
    session_lookup,
    should_include,
)
from reflector.session_schema import SessionIndexEntry


def _conversation(n_pairs, cwd="/work/app"):
    records = []
    for i in range(n_pairs):
        records.append(user_text(f"question {i}", cwd=cwd, timestamp=f"2026-01-01T00:00:{i:02d}Z"))
        records.append(assistant_text(f"answer {i}"))
    return records


def _write_index(project_dir, entries):
    (project_dir / INDEX_FILENAME).write_text(
        json.dumps({"version": 1, "entries": [e.to_json_dict() for e in entries]})
    )


class TestFilters:
    """Tests for should_include."""

    def _entry(self, **kwargs):
        defaults = {"session_id": "s1", "full_path": "/x.jsonl", "message_count": 10, "project_path": "/work/app"}
        defaults.update(kwargs)
        return SessionIndexEntry(**defaults)

    def test_min_messages(self):
        assert not should_include(self._entry(message_count=3), ScanFilters(min_messages=4))
        assert should_include(self._entry(message_count=4), ScanFilters(min_messages=4))

    def test_sidechain_excluded(self):
        assert not should_include(self._entry(is_sidechain=True), ScanFilters())

    def test_session_id(self):
        assert should_include(self._entry(), ScanFilters(session_id="s1"))
        assert not should_include(self._entry(), ScanFilters(session_id="other"))

    def test_excluded_path_prefix_ignores_trailing_slash(self):
        filters = ScanFilters(excluded_paths=["/work/"])

        assert not should_include(self._entry(project_path="/work/app"), filters)
        assert should_include(self._entry(project_path="/home/me/app"), filters)

    def test_excluded_path_expands_home(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))

        assert normalize_path("~/scratch/") == str(tmp_path / "scratch")


class TestDirectDiscovery:
    """Tests for building entries from transcripts alone."""

    def test_entry_from_transcript(self, tmp_path):
        records = [{"type": "summary", "summary": "Fix login"}, *_conversation(3)]
        path = write_transcript(tmp_path / "abc123.jsonl", records)

        entry = entry_from_transcript(path)

        assert entry.session_id == "abc123"
        assert entry.full_path == str(path)
        assert entry.summary == "Fix login"
        assert entry.first_prompt == "question 0"
        assert entry.message_count == 6
        assert entry.project_path == "/work/app"
        assert entry.created == "2026-01-01T00:00:00Z"
        assert entry.modified.endswith("Z")
        assert not entry.is_sidechain

    def test_modified_changes_with_file(self, tmp_path):
        path = write_transcript(tmp_path / "s.jsonl", _conversation(1))
        first = entry_from_transcript(path).modified
        os.utime(path, (1_900_000_000, 1_900_000_000))

        assert entry_from_transcript(path).modified != first


class TestProjectEntries:
    """Tests for index reading with fallback."""

    def test_index_plus_unindexed_transcripts(self, projects_dir):
        project = projects_dir / "-work-app"
        indexed = write_transcript(project / "indexed.jsonl", _conversation(2))
        write_transcript(project / "loose.jsonl", _conversation(2))
        _write_index(
            project,
            [SessionIndexEntry(session_id="indexed", full_path=str(indexed), summary="From index", message_count=4)],
        )

        entries = {e.session_id: e for e in read_project_entries(project)}

        assert set(entries) == {"indexed", "loose"}
        assert entries["indexed"].summary == "From index"
        assert entries["loose"].message_count == 4

    def test_phantom_index_entries_dropped(self, projects_dir):
        project = projects_dir / "p"
        project.mkdir()
        _write_index(project, [SessionIndexEntry(session_id="gone", full_path=str(project / "gone.jsonl"))])

        assert read_project_entries(project) == []

    def test_corrupt_index_falls_back_to_discovery(self, projects_dir):
        project = projects_dir / "p"
        write_transcript(project / "s1.jsonl", _conversation(2))
        (project / INDEX_FILENAME).write_text("{broken")

        assert [e.session_id for e in read_project_entries(project)] == ["s1"]


class TestReadAll:
    """Tests for cross-project discovery."""

    def test_filters_and_sorts_newest_first(self, projects_dir):
        old = write_transcript(projects_dir / "a" / "old.jsonl", _conversation(3))
        new = write_transcript(projects_dir / "b" / "new.jsonl", _conversation(3))
        write_transcript(projects_dir / "b" / "tiny.jsonl", _conversation(1))
        os.utime(old, (1_700_000_000, 1_700_000_000))
        os.utime(new, (1_800_000_000, 1_800_000_000))

        entries = read_all_session_entries(projects_dir, ScanFilters(min_messages=4))

        assert [e.session_id for e in entries] == ["new", "old"]

    def test_missing_projects_dir(self, tmp_path):
        assert read_all_session_entries(tmp_path / "nope", ScanFilters()) == []

    def test_session_lookup_ignores_filters(self, projects_dir):
        write_transcript(projects_dir / "a" / "tiny.jsonl", _conversation(1))

        assert "tiny" in session_lookup(projects_dir)
