"""Patch generation, parsing and strict application."""

import pytest

from stencil.diffcodec import (
    apply_patch,
    diff_hunks,
    extract_target_lines,
    generate_patch,
    has_hunks,
    parse_patch,
)
from stencil.errors import DiffContextMismatch, MalformedPatch

TEN = "\n".join("abcdefghij")


class TestGenerate:
    def test_identical_texts_give_empty_patch(self):
        assert generate_patch("same\n", "same\n") == ""

    def test_headers_and_single_hunk(self):
        patch = generate_patch("line1\noriginal\nline3", "line1\nmodified\nline3", "f.txt", "f.txt")
        assert patch == (
            "--- f.txt\n"
            "+++ f.txt\n"
            "@@ -1,3 +1,3 @@\n"
            " line1\n"
            "-original\n"
            "+modified\n"
            " line3\n"
        )

    def test_hunk_closes_after_three_matching_lines(self):
        new = TEN.replace("b", "B").replace("i", "I")
        hunks = diff_hunks(TEN, new)
        assert len(hunks) == 2
        assert hunks[0].header() == "@@ -1,5 +1,5 @@"
        assert hunks[0].lines == [" a", "-b", "+B", " c", " d", " e"]
        assert hunks[1].header() == "@@ -6,5 +6,5 @@"

    def test_leading_context_is_at_most_three_lines(self):
        new = TEN.replace("h", "H")
        (hunk,) = diff_hunks(TEN, new)
        assert hunk.lines[:3] == [" e", " f", " g"]
        assert hunk.old_start == 5

    def test_deletions_are_emitted_before_insertions(self):
        (hunk,) = diff_hunks("a\nb\nc\nx\ny\nz", "a\nB\nC\nx\ny\nz")
        assert hunk.lines == [" a", "-b", "-c", "+B", "+C", " x", " y", " z"]

    def test_lock_step_walk_is_not_minimal(self):
        # Inserting one line at the top shifts every later comparison
        hunks = diff_hunks("a\nb\nc", "new\na\nb\nc")
        assert len(hunks) == 1
        assert "-a" in hunks[0].lines and "+a" in hunks[0].lines


class TestApply:
    def test_round_trip(self):
        old = "def main():\n    print('hello')\n\nmain()\n"
        new = "import sys\n\ndef main():\n    print('hello', file=sys.stderr)\n\nmain()\n"
        assert apply_patch(old, generate_patch(old, new)) == new

    def test_multiple_hunks(self):
        new = TEN.replace("b", "B").replace("i", "I")
        patch = generate_patch(TEN, new)
        assert len(parse_patch(patch)) == 2
        assert apply_patch(TEN, patch) == new

    def test_later_hunks_shift_by_earlier_growth(self):
        patch = (
            "@@ -1,3 +1,5 @@\n a\n+new1\n+new2\n b\n c\n"
            "@@ -8,3 +10,3 @@\n h\n-i\n+I\n j\n"
        )
        assert apply_patch(TEN, patch) == "a\nnew1\nnew2\nb\nc\nd\ne\nf\ng\nh\nI\nj"

    def test_line_starting_with_dashes_is_deleted(self):
        old = "a\n--x\nb"
        new = "a\nb"
        assert apply_patch(old, generate_patch(old, new)) == new

    def test_growing_from_empty(self):
        assert apply_patch("", generate_patch("", "first\nsecond\n")) == "first\nsecond\n"

    def test_mismatch_raises_with_location(self):
        patch = generate_patch("line1\noriginal\nline3", "line1\nmodified\nline3")
        with pytest.raises(DiffContextMismatch) as exc:
            apply_patch("line1\nuser-rewrite\nline3\nextra", patch)
        assert exc.value.hunk_index == 0
        assert exc.value.line == 2
        assert exc.value.expected == "original"
        assert exc.value.actual == "user-rewrite"

    def test_mismatch_in_later_hunk_returns_nothing(self):
        new = TEN.replace("b", "B").replace("i", "I")
        patch = generate_patch(TEN, new)
        target = TEN.replace("i", "changed")
        with pytest.raises(DiffContextMismatch) as exc:
            apply_patch(target, patch)
        assert exc.value.hunk_index == 1

    def test_context_past_end_of_file(self):
        patch = generate_patch("a\nb\nc\nd", "a\nb\nc\nD")
        with pytest.raises(DiffContextMismatch) as exc:
            apply_patch("a\nb", patch)
        assert exc.value.actual is None


class TestParse:
    def test_ignores_file_headers_and_no_newline_marker(self):
        patch = "--- a\n+++ b\n@@ -1,1 +1,1 @@\n-x\n\\ No newline at end of file\n+y\n"
        (hunk,) = parse_patch(patch)
        assert hunk.lines == ["-x", "+y"]

    def test_omitted_counts_default_to_one(self):
        (hunk,) = parse_patch("@@ -2 +2 @@\n-b\n+B\n")
        assert (hunk.old_len, hunk.new_len) == (1, 1)

    def test_empty_body_line_is_context(self):
        (hunk,) = parse_patch("@@ -1,2 +1,2 @@\n\n-x\n+y\n")
        assert hunk.lines[0] == " "

    def test_bad_header(self):
        with pytest.raises(MalformedPatch):
            parse_patch("@@ -a,b +c,d @@\n")

    def test_truncated_hunk(self):
        with pytest.raises(MalformedPatch):
            parse_patch("@@ -1,3 +1,3 @@\n a\n-b\n")

    def test_unexpected_marker(self):
        with pytest.raises(MalformedPatch):
            parse_patch("@@ -1,1 +1,1 @@\n*x\n+y\n")

    def test_has_hunks(self):
        assert has_hunks(generate_patch("a", "b"))
        assert not has_hunks("--- a\n+++ b\n")


class TestExtractTargetLines:
    def test_keeps_context_and_insertions(self):
        patch = generate_patch("line1\noriginal\nline3", "line1\nmodified\nline3")
        assert extract_target_lines(patch) == ["line1", "modified", "line3"]

    def test_malformed_patch_yields_nothing(self, caplog):
        assert extract_target_lines("@@ -1,5 +1,5 @@\n a\n") == []
        assert "malformed" in caplog.text
