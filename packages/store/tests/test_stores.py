"""Tests for remark-store implementations."""

from __future__ import annotations

import hashlib
import threading

import pytest

from remark_store.errors import NotesAccessError, RefResolutionError, RepositoryError
from remark_store.git import GitRepo
from remark_store.memory import InMemoryStore
from remark_store.models import FileRecord, Side, SyntheticId
from remark_store.notes import (
    DEFAULT_NOTES_REF,
    GitNotesStore,
    configured_notes_ref,
    create_notes_ref,
    purge_notes_refs,
    qualify_notes_ref,
)


def _sid(key: bytes = b"remark test key\n") -> SyntheticId:
    oid = hashlib.sha1(b"blob %d\0" % len(key) + key).hexdigest()
    return SyntheticId(oid=oid, key=key)


def _commented(message: str = "fix null check") -> FileRecord:
    record = FileRecord()
    record.set_line_comment(Side.NEW, 42, message)
    return record


# ---------------------------------------------------------------------------
# InMemoryStore
# ---------------------------------------------------------------------------


class TestInMemoryStore:
    def test_load_missing_returns_empty(self):
        assert InMemoryStore().load(_sid()).is_empty()

    def test_save_and_load(self):
        store = InMemoryStore()
        assert store.save(_sid(), _commented()) is True
        assert store.load(_sid()).get_line_comment(Side.NEW, 42).message == "fix null check"

    def test_resave_is_noop(self):
        store = InMemoryStore()
        store.save(_sid(), _commented())
        assert store.save(_sid(), store.load(_sid())) is False
        assert store.writes == 1

    def test_empty_record_deletes(self):
        store = InMemoryStore()
        store.save(_sid(), _commented())
        assert store.save(_sid(), FileRecord()) is True
        assert store.notes == {}
        assert store.save(_sid(), FileRecord()) is False

    def test_corrupt_note_loads_empty(self, caplog):
        store = InMemoryStore()
        store.notes[_sid().oid] = "garbage"
        assert store.load(_sid()).is_empty()
        assert "corrupt" in caplog.text


# ---------------------------------------------------------------------------
# GitRepo
# ---------------------------------------------------------------------------


class TestGitRepo:
    def test_discover_outside_repository(self, tmp_path, git):
        with pytest.raises(RepositoryError):
            GitRepo.discover(tmp_path)

    def test_discover_from_subdirectory(self, git_repo):
        sub = git_repo / "pkg"
        sub.mkdir()
        repo = GitRepo.discover(sub)
        assert repo.root.resolve() == git_repo.resolve()
        assert repo.git_dir.name == ".git"

    def test_unborn_head(self, tmp_path, git):
        empty = tmp_path / "empty"
        empty.mkdir()
        git(empty, "init", "-q")
        with pytest.raises(RepositoryError, match="unborn"):
            GitRepo.discover(empty).head_commit()

    def test_resolve_unknown_ref(self, git_repo):
        with pytest.raises(RefResolutionError):
            GitRepo.discover(git_repo).resolve_commit("no-such-branch")

    def test_relative_path_never_runs_git(self, git_repo, mocker):
        repo = GitRepo.discover(git_repo)
        run = mocker.patch.object(repo, "run")
        assert repo.relative_path(git_repo / "src" / "app.py") == "src/app.py"
        assert repo.relative_path("./src/../app.py") == "app.py"
        run.assert_not_called()

    def test_relative_path_outside_tree(self, git_repo, tmp_path):
        with pytest.raises(RepositoryError):
            GitRepo.discover(git_repo).relative_path(tmp_path / "elsewhere.py")


# ---------------------------------------------------------------------------
# GitNotesStore
# ---------------------------------------------------------------------------


@pytest.fixture
def repo(git_repo):
    return GitRepo.discover(git_repo)


@pytest.fixture
def store(repo):
    return GitNotesStore(repo, fetch=False)


class TestGitNotesStore:
    def test_missing_ref_means_no_notes(self, store):
        assert store.load(_sid()).is_empty()

    def test_save_and_load(self, store):
        store.save(_sid(), _commented())
        loaded = store.load(_sid())
        assert loaded.get_line_comment(Side.NEW, 42).message == "fix null check"

    def test_note_bytes_are_exactly_the_encoding(self, store, repo, git, git_repo):
        from remark_store.codec import encode

        record = _commented("trailing spaces   \n\n\nare kept")
        store.save(_sid(), record)
        assert store.read_raw(_sid()) == encode(record).encode("utf-8")
        assert git(git_repo, "notes", "--ref", DEFAULT_NOTES_REF, "list", _sid().oid)

    def test_idempotent_save(self, store, git, git_repo):
        store.save(_sid(), _commented())
        ref_before = git(git_repo, "rev-parse", DEFAULT_NOTES_REF)
        assert store.save(_sid(), store.load(_sid())) is False
        assert store.save(_sid(), store.load(_sid())) is False
        assert git(git_repo, "rev-parse", DEFAULT_NOTES_REF) == ref_before
        assert len(git(git_repo, "notes", "--ref", DEFAULT_NOTES_REF, "list").splitlines()) == 1

    def test_empty_record_removes_note(self, store, git, git_repo):
        store.save(_sid(), _commented())
        record = store.load(_sid())
        record.remove_line_comment(Side.NEW, 42)
        assert store.save(_sid(), record) is True
        assert git(git_repo, "notes", "--ref", DEFAULT_NOTES_REF, "list") == ""
        assert store.load(_sid()).is_empty()

    def test_empty_record_without_note_writes_nothing(self, store, repo):
        assert store.save(_sid(), FileRecord()) is False
        assert not repo.ref_exists(DEFAULT_NOTES_REF)

    def test_corrupt_note_is_treated_as_empty(self, store, git, git_repo, repo, caplog):
        store.save(_sid(), _commented())
        git(git_repo, "notes", "--ref", DEFAULT_NOTES_REF, "add", "-f", "-m", "not a record", _sid().oid)
        assert store.load(_sid()).is_empty()
        assert "corrupt" in caplog.text

    def test_last_write_wins(self, repo):
        first = GitNotesStore(repo, fetch=False)
        second = GitNotesStore(repo, fetch=False)
        first.save(_sid(), _commented("one"))
        second.save(_sid(), _commented("two"))
        assert first.load(_sid()).get_line_comment(Side.NEW, 42).message == "two"

    def test_concurrent_saves_to_different_ids(self, store):
        sids = [_sid(f"key {n}\n".encode()) for n in range(6)]
        errors = []

        def worker(sid):
            try:
                store.save(sid, _commented(sid.oid))
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(sid,)) for sid in sids]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        for sid in sids:
            assert store.load(sid).get_line_comment(Side.NEW, 42).message == sid.oid

    def test_mismatched_key_is_rejected(self, store):
        with pytest.raises(NotesAccessError):
            store.save(SyntheticId(oid="0" * 40, key=b"other"), _commented())

    def test_fetch_attempted_once(self, repo, mocker):
        store = GitNotesStore(repo, fetch=True)
        fetch = mocker.patch.object(repo, "fetch_ref", return_value=False)
        store.load(_sid())
        store.load(_sid())
        fetch.assert_called_once_with("origin", DEFAULT_NOTES_REF)

    def test_works_without_user_identity(self, repo, git, git_repo):
        git(git_repo, "config", "--unset", "user.name")
        git(git_repo, "config", "--unset", "user.email")
        store = GitNotesStore(GitRepo.discover(git_repo), fetch=False)
        assert store.save(_sid(), _commented()) is True


class TestNotesRefs:
    def test_qualify(self):
        assert qualify_notes_ref("remark-x") == "refs/notes/remark-x"
        assert qualify_notes_ref("notes/remark") == "refs/notes/remark"
        assert qualify_notes_ref("refs/notes/other") == "refs/notes/other"

    def test_configured_precedence(self, repo):
        assert configured_notes_ref(repo) == DEFAULT_NOTES_REF
        repo.config_set("remark.notesRef", "remark-config")
        assert configured_notes_ref(repo) == "refs/notes/remark-config"
        assert configured_notes_ref(repo, "cli") == "refs/notes/cli"

    def test_new_picks_unused_timestamped_ref(self, repo, mocker):
        mocker.patch("remark_store.notes.time.time", return_value=1700000000)
        store = GitNotesStore(repo, "refs/notes/remark-1700000000", fetch=False)
        store.save(_sid(), _commented())
        name = create_notes_ref(repo)
        assert name == "refs/notes/remark-1700000000-1"
        assert repo.config_get("remark.notesRef") == name

    def test_purge_deletes_only_remark_refs(self, repo):
        for ref in ("refs/notes/remark", "refs/notes/remark-1", "refs/notes/remark.old", "refs/notes/remarkable"):
            GitNotesStore(repo, ref, fetch=False).save(_sid(), _commented())
        create_notes_ref(repo, "remark-1")
        deleted = purge_notes_refs(repo)
        assert sorted(deleted) == ["refs/notes/remark", "refs/notes/remark-1", "refs/notes/remark.old"]
        assert repo.ref_exists("refs/notes/remarkable")
        assert repo.config_get("remark.notesRef") is None
