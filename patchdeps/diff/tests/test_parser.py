import pytest

from patchdeps.diff.models import LineKind
from patchdeps.diff.parser import detect_source_kind, parse_patch
from patchdeps.errors import PatchParseError
from patchdeps.manifest.models import SourceKind

SIMPLE_PATCH = """\
--- src/lib.py
+++ src/lib.py
@@ -1,3 +1,4 @@
 def foo():
+    print("hello")
     pass

"""

MULTI_FILE_PATCH = """\
--- src/main.py\t2024-01-01 10:00:00.000000000 +0000
+++ src/main.py\t2024-01-02 10:00:00.000000000 +0000
@@ -1,2 +1,3 @@
 def foo():
+    print("hello")
     pass
--- src/utils.py
+++ src/utils.py
@@ -1,2 +1,3 @@
 def bar():
+    return 42
     pass
"""

GIT_PATCH = """\
diff --git a/src/main.py b/src/main.py
index 83db48f..bf269f4 100644
--- a/src/main.py
+++ b/src/main.py
@@ -1,2 +1,2 @@ def foo():
 def foo():
-    return 1
+    return 2
diff --git a/docs/new.md b/docs/new.md
new file mode 100644
index 0000000..e69de29
--- /dev/null
+++ b/docs/new.md
@@ -0,0 +1,2 @@
+# New
+text
diff --git a/old.txt b/old.txt
deleted file mode 100644
index e69de29..0000000
--- a/old.txt
+++ /dev/null
@@ -1 +0,0 @@
-gone
"""

GIT_RENAME_PATCH = """\
diff --git a/src/old_name.py b/src/new_name.py
similarity index 100%
rename from src/old_name.py
rename to src/new_name.py
diff --git a/empty.txt b/empty.txt
new file mode 100755
index 0000000..e69de29
"""

GITHUB_PR_PATCH = """\
From 3f7a2b1c9d8e7f6a5b4c3d2e1f0a9b8c7d6e5f4a Mon Sep 17 00:00:00 2001
From: Jane Dev <jane@example.com>
Date: Tue, 2 Jan 2024 10:00:00 +0000
Subject: [PATCH] Fix the thing

--- a/b/c is not a header because no plus line follows
---
 src/lib.rs | 2 +-
 1 file changed, 1 insertion(+), 1 deletion(-)

diff --git a/src/lib.rs b/src/lib.rs
index 1111111..2222222 100644
--- a/src/lib.rs
+++ b/src/lib.rs
@@ -1,3 +1,3 @@
 fn main() {
-    println!("old");
+    println!("new");
 }
""" + "-- \n2.43.0\n\n"


class TestParseUnified:
    """Tests for the Unified source kind."""

    def test_single_hunk(self):
        """Paths are verbatim and counts match the body."""
        document = parse_patch(SIMPLE_PATCH, SourceKind.UNIFIED)

        assert document.source_kind == SourceKind.UNIFIED
        assert len(document.file_patches) == 1
        file_patch = document.file_patches[0]
        assert file_patch.old_path == "src/lib.py"
        assert file_patch.new_path == "src/lib.py"

        hunk = file_patch.hunks[0]
        assert (hunk.old_start, hunk.old_count, hunk.new_start, hunk.new_count) == (1, 3, 1, 4)
        assert [line.kind for line in hunk.lines] == [
            LineKind.CONTEXT,
            LineKind.ADDED,
            LineKind.CONTEXT,
            LineKind.CONTEXT,
        ]
        assert hunk.old_lines == ["def foo():", "    pass", ""]

    def test_timestamps_stripped_from_headers(self):
        """Tab-separated timestamps are not part of the path."""
        document = parse_patch(MULTI_FILE_PATCH, SourceKind.UNIFIED)

        assert [fp.new_path for fp in document.file_patches] == ["src/main.py", "src/utils.py"]

    def test_unified_keeps_a_b_prefixes(self):
        """Unified patches are taken verbatim, prefixes included."""
        text = "--- a/x.txt\n+++ b/x.txt\n@@ -1 +1 @@\n-1\n+2\n"
        document = parse_patch(text, SourceKind.UNIFIED)

        assert document.file_patches[0].old_path == "a/x.txt"
        assert document.file_patches[0].new_path == "b/x.txt"

    def test_header_without_hunks_skipped(self):
        """A `---`/`+++` pair with no hunks yields no file patch."""
        text = "--- notes.txt\n+++ notes.txt\n--- x\n+++ x\n@@ -1 +1 @@\n-1\n+2\n"
        document = parse_patch(text, SourceKind.UNIFIED)

        assert [fp.new_path for fp in document.file_patches] == ["x"]

    def test_only_hunkless_headers_is_error(self):
        with pytest.raises(PatchParseError, match="no file patches found"):
            parse_patch("--- x\n+++ x\n", SourceKind.UNIFIED)

    def test_missing_count_defaults_to_one(self):
        """`@@ -3 +3 @@` means one line on each side."""
        text = "--- x\n+++ x\n@@ -3 +3 @@\n-old\n+new\n"
        hunk = parse_patch(text, SourceKind.UNIFIED).file_patches[0].hunks[0]

        assert hunk.old_count == 1
        assert hunk.new_count == 1

    def test_dev_null_is_none(self):
        """/dev/null on either side maps to a missing path."""
        text = "--- /dev/null\n+++ new.txt\n@@ -0,0 +1 @@\n+hi\n"
        file_patch = parse_patch(text, SourceKind.UNIFIED).file_patches[0]

        assert file_patch.old_path is None
        assert file_patch.is_new_file

    def test_no_newline_marker(self):
        """`\\ No newline at end of file` flags the preceding line."""
        text = (
            "--- x\n+++ x\n@@ -1 +1 @@\n-old\n\\ No newline at end of file\n"
            "+new\n\\ No newline at end of file\n"
        )
        hunk = parse_patch(text, SourceKind.UNIFIED).file_patches[0].hunks[0]

        assert hunk.old_missing_newline()
        assert hunk.new_missing_newline()

    def test_removed_line_looking_like_header(self):
        """A removed `-- x` line inside a hunk body is content, not a header."""
        text = "--- x\n+++ x\n@@ -1,2 +1,2 @@\n--- comment\n+++ other\n keep\n"
        hunk = parse_patch(text, SourceKind.UNIFIED).file_patches[0].hunks[0]

        assert hunk.old_lines == ["-- comment", "keep"]
        assert hunk.new_lines == ["++ other", "keep"]


class TestParseGitDiff:
    """Tests for the GitDiff source kind."""

    def test_prefixes_and_extended_headers(self):
        """a/ and b/ are stripped; new and deleted files are recognized."""
        document = parse_patch(GIT_PATCH, SourceKind.GIT_DIFF)

        modify, create, delete = document.file_patches
        assert modify.old_path == "src/main.py"
        assert modify.hunks[0].section == "def foo():"
        assert create.old_path is None
        assert create.new_path == "docs/new.md"
        assert create.new_mode == "100644"
        assert delete.new_path is None
        assert delete.is_deletion

    def test_header_only_sections(self):
        """Pure renames and empty new files become hunk-less FilePatches."""
        document = parse_patch(GIT_RENAME_PATCH, SourceKind.GIT_DIFF)

        rename, empty = document.file_patches
        assert rename.old_path == "src/old_name.py"
        assert rename.new_path == "src/new_name.py"
        assert rename.is_rename
        assert rename.hunks == []
        assert empty.old_path is None
        assert empty.new_path == "empty.txt"
        assert empty.new_mode == "100755"

    def test_copy_is_not_a_rename(self):
        """copy from/to keeps the source file."""
        text = (
            "diff --git a/a.txt b/b.txt\n"
            "similarity index 100%\n"
            "copy from a.txt\n"
            "copy to b.txt\n"
        )
        file_patch = parse_patch(text, SourceKind.GIT_DIFF).file_patches[0]

        assert file_patch.is_copy
        assert not file_patch.is_rename
        assert (file_patch.old_path, file_patch.new_path) == ("a.txt", "b.txt")

    def test_quoted_paths(self):
        """Git C-style quoted paths are unquoted."""
        text = (
            'diff --git "a/sp ace.txt" "b/sp ace.txt"\n'
            '--- "a/sp ace.txt"\n'
            '+++ "b/sp ace.txt"\n'
            "@@ -1 +1 @@\n-a\n+b\n"
        )
        file_patch = parse_patch(text, SourceKind.GIT_DIFF).file_patches[0]

        assert file_patch.new_path == "sp ace.txt"

    def test_bare_header_rejected_in_strict_mode(self):
        """GitDiff requires every file section to open with diff --git."""
        with pytest.raises(PatchParseError, match="outside a 'diff --git' section"):
            parse_patch(SIMPLE_PATCH, SourceKind.GIT_DIFF)

    def test_binary_patch_rejected(self):
        """Binary diffs are out of scope."""
        text = (
            "diff --git a/logo.png b/logo.png\n"
            "index 1111111..2222222 100644\n"
            "GIT binary patch\n"
            "literal 10\n"
        )
        with pytest.raises(PatchParseError, match="binary diffs are not supported"):
            parse_patch(text, SourceKind.GIT_DIFF)


class TestParseGithubPrDiff:
    """Tests for the GithubPrDiff source kind."""

    def test_envelope_and_signature_ignored(self):
        """Mail headers, diffstat and signature do not leak into the hunks."""
        document = parse_patch(GITHUB_PR_PATCH, SourceKind.GITHUB_PR_DIFF)

        assert len(document.file_patches) == 1
        file_patch = document.file_patches[0]
        assert file_patch.new_path == "src/lib.rs"
        assert file_patch.hunks[0].new_lines == ["fn main() {", '    println!("new");', "}"]

    def test_diff_quoted_in_commit_message_ignored(self):
        """A `---`/`+++` pair in the message body does not end the envelope."""
        text = GITHUB_PR_PATCH.replace(
            "--- a/b/c is not a header because no plus line follows\n",
            "Apply this by hand if needed:\n\n--- a/hint\n+++ b/hint\n\n",
        )

        document = parse_patch(text, SourceKind.GITHUB_PR_DIFF)

        assert [fp.new_path for fp in document.file_patches] == ["src/lib.rs"]
        assert len(document.file_patches[0].hunks) == 1

    def test_bare_headers_allowed(self):
        """diff --git preambles are optional and prefixes are stripped."""
        text = "--- a/x.txt\n+++ b/x.txt\n@@ -1 +1 @@\n-1\n+2\n"
        file_patch = parse_patch(text, SourceKind.GITHUB_PR_DIFF).file_patches[0]

        assert file_patch.old_path == "x.txt"


class TestParseErrors:
    """Malformed input is reported with a line number."""

    def test_empty_patch(self):
        with pytest.raises(PatchParseError, match="no file patches found"):
            parse_patch("", SourceKind.UNIFIED, descriptor="empty.patch")

    def test_truncated_hunk(self):
        """A body shorter than its counts is an error, not a silent success."""
        text = "--- x\n+++ x\n@@ -1,3 +1,3 @@\n a\n-b\n+c\n"
        with pytest.raises(PatchParseError, match="ended early") as exc_info:
            parse_patch(text, SourceKind.UNIFIED, descriptor="short.patch")

        assert exc_info.value.descriptor == "short.patch"
        assert "short.patch" in str(exc_info.value)

    def test_garbage_inside_hunk(self):
        text = "--- x\n+++ x\n@@ -1,2 +1,2 @@\n a\n?? what\n b\n"
        with pytest.raises(PatchParseError) as exc_info:
            parse_patch(text, SourceKind.UNIFIED)

        assert exc_info.value.line_number == 5

    def test_hunk_before_file_header(self):
        with pytest.raises(PatchParseError, match="before any file header"):
            parse_patch("@@ -1 +1 @@\n-a\n+b\n", SourceKind.UNIFIED)

    def test_overlapping_hunks(self):
        text = (
            "--- x\n+++ x\n"
            "@@ -5,2 +5,2 @@\n a\n-b\n+c\n"
            "@@ -3,2 +3,2 @@\n d\n-e\n+f\n"
        )
        with pytest.raises(PatchParseError, match="overlaps or precedes"):
            parse_patch(text, SourceKind.UNIFIED)


class TestDetectSourceKind:
    """Default sources are sniffed from the text."""

    def test_git_header_selects_git_diff(self):
        assert detect_source_kind(GIT_PATCH) == SourceKind.GIT_DIFF

    def test_plain_headers_select_unified(self):
        assert detect_source_kind(SIMPLE_PATCH) == SourceKind.UNIFIED

    def test_parse_without_kind_sniffs(self):
        document = parse_patch(GIT_PATCH)

        assert document.source_kind == SourceKind.GIT_DIFF
