"""Tests for the comment and reviewed state machines."""

from __future__ import annotations

import pytest

from remark_core.identity import resolve
from remark_core.review import ReviewSession
from remark_core.views import ViewDescriptor
from remark_store.errors import ArgumentError, CommentNotFoundError
from remark_store.git import GitRepo
from remark_store.memory import InMemoryStore
from remark_store.models import LineKey, Side
from remark_store.notes import GitNotesStore


@pytest.fixture
def session(git_repo, edit_app):
    edit_app({42: "value_42 = None"})
    return ReviewSession(GitRepo.discover(git_repo), InMemoryStore())


class TestComments:
    def test_add_creates_record_at_resolved_id(self, session):
        session.add_comment("app.py", "fix null check", line=42, side=Side.NEW)
        sid = resolve(session.head, ViewDescriptor.all(), "app.py")
        record = session.store.load(sid)
        comment = record.get_line_comment(Side.NEW, 42)
        assert (comment.message, comment.resolved) == ("fix null check", False)

    def test_side_defaults_to_new(self, session):
        session.add_comment("app.py", "x", line=42)
        assert session.load("app.py").get_line_comment(Side.NEW, 42) is not None

    def test_edit_keeps_resolution(self, session):
        session.add_comment("app.py", "first", line=42)
        session.set_resolved("app.py", True, line=42)
        session.add_comment("app.py", "second", line=42)
        comment = session.load("app.py").get_line_comment(Side.NEW, 42)
        assert (comment.message, comment.resolved) == ("second", True)

    def test_resolve_and_unresolve(self, session):
        session.add_comment("app.py", "x", line=42)
        session.set_resolved("app.py", True, line=42)
        assert session.load("app.py").get_line_comment(Side.NEW, 42).resolved is True
        session.set_resolved("app.py", False, line=42)
        assert session.load("app.py").get_line_comment(Side.NEW, 42).resolved is False

    def test_resolve_reaches_other_views(self, session):
        session.add_comment("app.py", "x", line=42)
        unstaged = ReviewSession(session.repo, session.store, ViewDescriptor.unstaged())
        assert unstaged.set_resolved("app.py", True, line=42) == 1
        assert session.load("app.py").get_line_comment(Side.NEW, 42).resolved is True

    def test_resolve_missing_comment(self, session):
        with pytest.raises(CommentNotFoundError, match="no matching comment found to resolve"):
            session.set_resolved("app.py", True, line=7)

    def test_file_comment(self, session):
        session.add_comment("app.py", "whole file")
        session.set_resolved("app.py", True)
        assert session.load("app.py").file_comment.resolved is True

    def test_delete_last_comment_removes_note(self, session):
        session.add_comment("app.py", "x", line=42)
        session.delete_comment("app.py", line=42)
        assert session.store.notes == {}

    def test_delete_missing(self, session):
        with pytest.raises(CommentNotFoundError):
            session.delete_comment("app.py", line=42)

    @pytest.mark.parametrize("line", [0, -3])
    def test_bad_line(self, session, line):
        with pytest.raises(ArgumentError):
            session.add_comment("app.py", "x", line=line)

    def test_empty_message(self, session):
        with pytest.raises(ArgumentError):
            session.add_comment("app.py", "   ")

    def test_head_change_gives_disjoint_records(self, session, git, git_repo):
        session.add_comment("app.py", "x", line=42)
        git(git_repo, "commit", "-q", "-am", "next")
        fresh = ReviewSession(session.repo, session.store)
        assert fresh.load("app.py").is_empty()
        assert len(session.store.notes) == 1


class TestMergedRecord:
    def test_prefers_unresolved_copy(self, session):
        staged = ReviewSession(session.repo, session.store, ViewDescriptor.staged())
        staged.add_comment("app.py", "from staged", line=42)
        session.add_comment("app.py", "from all", line=42)
        session.store.save(session.sid("app.py"), _resolved(session.load("app.py")))
        merged = session.merged_record("app.py")
        comment = merged.get_line_comment(Side.NEW, 42)
        assert (comment.message, comment.resolved) == ("from staged", False)

    def test_own_view_wins_ties(self, session):
        staged = ReviewSession(session.repo, session.store, ViewDescriptor.staged())
        staged.add_comment("app.py", "from staged", line=42)
        session.add_comment("app.py", "from all", line=42)
        assert session.merged_record("app.py").get_line_comment(Side.NEW, 42).message == "from all"


def _resolved(record):
    for comment in record.line_comments.values():
        comment.resolved = True
    return record


class TestReviewed:
    def test_mark_and_clear(self, session):
        session.set_reviewed("app.py")
        assert session.load("app.py").reviewed is True
        session.set_reviewed("app.py", False)
        assert session.store.notes == {}

    def test_toggle(self, session):
        assert session.toggle_reviewed("app.py") is True
        assert session.toggle_reviewed("app.py") is False

    def test_file_without_changes(self, session):
        with pytest.raises(ArgumentError):
            session.set_reviewed("README.md")

    def test_invalidated_when_diff_changes(self, git_repo, edit_app):
        edit_app({42: "value_42 = None"})
        repo = GitRepo.discover(git_repo)
        store = GitNotesStore(repo, fetch=False)
        ReviewSession(repo, store).set_reviewed("app.py")
        assert ReviewSession(repo, store).load("app.py").reviewed is True

        edit_app({42: "value_42 = None", 43: "value_43 = 0"})
        assert ReviewSession(repo, store).load("app.py").reviewed is False
        # The cleared mark was persisted, so the note is gone entirely.
        assert store.read_raw(ReviewSession(repo, store).sid("app.py")) is None

    def test_comments_survive_invalidation(self, session, edit_app):
        session.add_comment("app.py", "keep me", line=42)
        session.set_reviewed("app.py")
        edit_app({42: "value_42 = 0"})
        session.refresh()
        record = session.load("app.py")
        assert record.reviewed is False
        assert record.get_line_comment(Side.NEW, 42).message == "keep me"

    def test_unchanged_diff_keeps_mark(self, session):
        session.set_reviewed("app.py")
        session.refresh()
        assert session.load("app.py").reviewed is True


def test_not_an_anchor_warns(session, caplog):
    session.add_comment("app.py", "far away", line=5)
    assert "not part of" in caplog.text
    assert session.load("app.py").line_comments[LineKey(Side.NEW, 5)].message == "far away"
