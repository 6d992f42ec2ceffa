"""Tests for diff parsing and comment anchors."""

from __future__ import annotations

import pytest

from remark_core.diff import (
    ADDED,
    CONTEXT,
    REMOVED,
    clamp_context,
    compute_diff,
    find_file,
    parse_unified_diff,
    untracked_file_diff,
)
from remark_core.views import ViewDescriptor
from remark_store.errors import RefResolutionError
from remark_store.git import GitRepo
from remark_store.models import LineKey, Side

PATCH = """\
diff --git a/app.py b/app.py
index 1111111..2222222 100644
--- a/app.py
+++ b/app.py
@@ -10,5 +10,6 @@ def main():
 keep_a = 1
-old_b = 2
-old_c = 3
+new_b = 2
+new_c = 3
+new_d = 4
 keep_e = 5
 keep_f = 6
"""


@pytest.fixture
def fd():
    (diff,) = parse_unified_diff(PATCH)
    return diff


class TestUnifiedAnchors:
    def test_kinds_and_numbers(self, fd):
        lines = fd.hunks[0].lines
        assert [line.kind for line in lines] == [CONTEXT, REMOVED, REMOVED, ADDED, ADDED, ADDED, CONTEXT, CONTEXT]
        assert (lines[0].old_line, lines[0].new_line) == (10, 10)
        assert (lines[1].old_line, lines[1].new_line) == (11, None)
        assert (lines[5].old_line, lines[5].new_line) == (None, 13)

    def test_removed_lines_anchor_old_side(self, fd):
        assert fd.is_anchor(LineKey(Side.OLD, 11))
        assert fd.is_anchor(LineKey(Side.OLD, 12))
        assert not fd.is_anchor(LineKey(Side.OLD, 10))

    def test_context_and_added_lines_anchor_new_side(self, fd):
        new_lines = [k.line for k in fd.anchors() if k.side is Side.NEW]
        assert new_lines == [10, 11, 12, 13, 14, 15]

    def test_section_header_kept(self, fd):
        assert fd.hunks[0].header == "@@ -10,5 +10,6 @@ def main():"

    def test_counts(self, fd):
        assert (fd.added, fd.removed) == (3, 2)


class TestSideBySide:
    def test_pairs_removed_with_added(self, fd):
        rows = [r for r in fd.side_by_side() if r.hunk_header is None]
        assert [(r.left_anchor, r.right_anchor) for r in rows[:4]] == [
            (LineKey(Side.NEW, 10), LineKey(Side.NEW, 10)),
            (LineKey(Side.OLD, 11), LineKey(Side.NEW, 11)),
            (LineKey(Side.OLD, 12), LineKey(Side.NEW, 12)),
            (None, LineKey(Side.NEW, 13)),
        ]

    def test_same_anchor_set_as_unified(self, fd):
        keys = set()
        for row in fd.side_by_side():
            keys.update(k for k in (row.left_anchor, row.right_anchor) if k is not None)
        assert keys == set(fd.anchors())


class TestSnippetAndDigest:
    def test_snippet_with_context(self, fd):
        snippet = fd.snippet(LineKey(Side.NEW, 13), context=1)
        assert [line.text for line in snippet] == ["new_c = 3", "new_d = 4", "keep_e = 5"]

    def test_snippet_for_unknown_anchor(self, fd):
        assert fd.snippet(LineKey(Side.NEW, 99)) == []

    def test_digest_ignores_context_width(self):
        (wide,) = parse_unified_diff(PATCH)
        narrow_patch = PATCH.replace("@@ -10,5 +10,6 @@ def main():\n keep_a = 1\n", "@@ -11,2 +11,3 @@\n").replace(
            " keep_e = 5\n keep_f = 6\n", ""
        )
        (narrow,) = parse_unified_diff(narrow_patch)
        assert narrow.digest() == wide.digest()

    def test_digest_changes_with_content(self, fd):
        (other,) = parse_unified_diff(PATCH.replace("+new_d = 4", "+new_d = 5"))
        assert other.digest() != fd.digest()


class TestUntracked:
    def test_all_added(self):
        fd = untracked_file_diff("new.txt", b"one\ntwo\n")
        assert fd.status == "untracked"
        assert fd.anchors() == [LineKey(Side.NEW, 1), LineKey(Side.NEW, 2)]

    def test_binary_has_no_anchors(self):
        fd = untracked_file_diff("logo.png", b"\x89PNG\0\0data")
        assert fd.binary
        assert fd.anchors() == []


@pytest.mark.parametrize("raw, expected", [(3, 3), ("7", 7), (-1, 0), (99, 20), ("junk", 3), (None, 3)])
def test_clamp_context(raw, expected):
    assert clamp_context(raw) == expected


class TestComputeDiff:
    def test_views(self, git_repo, git, edit_app):
        edit_app({42: "value_42 = None"})
        (git_repo / "notes.txt").write_text("untracked\n")
        (git_repo / "README.md").write_text("# demo\n\nstaged\n")
        git(git_repo, "add", "README.md")
        repo = GitRepo.discover(git_repo)

        all_paths = [f.path for f in compute_diff(repo, ViewDescriptor.all())]
        staged_paths = [f.path for f in compute_diff(repo, ViewDescriptor.staged())]
        unstaged_paths = [f.path for f in compute_diff(repo, ViewDescriptor.unstaged())]

        assert all_paths == ["README.md", "app.py", "notes.txt"]
        assert staged_paths == ["README.md"]
        assert unstaged_paths == ["app.py", "notes.txt"]

    def test_anchor_for_changed_line(self, git_repo, edit_app):
        edit_app({42: "value_42 = None"})
        fd = find_file(compute_diff(GitRepo.discover(git_repo), ViewDescriptor.all()), "app.py")
        assert fd.line_for(LineKey(Side.NEW, 42)).text == "value_42 = None"
        assert fd.line_for(LineKey(Side.OLD, 42)).text == "value_42 = 42"

    def test_base_view(self, git_repo, git):
        base = git(git_repo, "rev-parse", "HEAD")
        (git_repo / "feature.py").write_text("x = 1\n")
        git(git_repo, "add", "feature.py")
        git(git_repo, "commit", "-q", "-m", "feature")
        files = compute_diff(GitRepo.discover(git_repo), ViewDescriptor.base(base))
        assert [(f.path, f.status) for f in files] == [("feature.py", "added")]

    def test_unresolvable_base(self, git_repo):
        with pytest.raises(RefResolutionError):
            compute_diff(GitRepo.discover(git_repo), ViewDescriptor.base("nope"))
