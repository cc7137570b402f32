import unittest

from ai_review_sync.diff_parser import (
    build_position_index,
    get_changed_line_numbers,
    get_context,
    get_diff_stats,
    get_line_for_position,
    get_position_for_line,
    is_line_changed,
    parse_diff_text,
    parse_single_file_patch,
)
from ai_review_sync.models import (
    LINE_ADD, LINE_CONTEXT, LINE_DELETE,
    STATUS_ADDED, STATUS_DELETED, STATUS_MODIFIED, STATUS_RENAMED,
)


SIMPLE_PATCH = """\
@@ -1,2 +1,3 @@
 context
-old
+new
+added
"""

MULTI_HUNK_PATCH = """\
@@ -1,2 +1,2 @@
 a
-b
+B
@@ -10,2 +10,3 @@ def helper():
 j
+k
 l
"""


class TestPositionMapping(unittest.TestCase):
    def test_first_body_line_is_position_one(self):
        diff = parse_single_file_patch("src/app.py", SIMPLE_PATCH)

        self.assertEqual(len(diff.hunks), 1)
        positions = [line.position for line in diff.hunks[0].lines]
        self.assertEqual(positions, [1, 2, 3, 4])
        self.assertEqual(get_position_for_line(diff, 1), 1)
        self.assertEqual(get_position_for_line(diff, 2), 3)
        self.assertEqual(get_position_for_line(diff, 3), 4)

    def test_line_types_and_numbers(self):
        diff = parse_single_file_patch("src/app.py", SIMPLE_PATCH)
        lines = diff.hunks[0].lines

        self.assertEqual([l.type for l in lines], [LINE_CONTEXT, LINE_DELETE, LINE_ADD, LINE_ADD])
        self.assertEqual(lines[0].old_line_number, 1)
        self.assertEqual(lines[0].new_line_number, 1)
        self.assertEqual(lines[1].old_line_number, 2)
        self.assertIsNone(lines[1].new_line_number)
        self.assertEqual(lines[3].new_line_number, 3)
        self.assertEqual(diff.additions, 2)
        self.assertEqual(diff.deletions, 1)

    def test_deleted_line_has_no_position(self):
        diff = parse_single_file_patch("src/app.py", "@@ -5,2 +5,1 @@\n keep\n-gone\n")
        # Line 6 only exists in the old file
        self.assertIsNone(get_position_for_line(diff, 6))
        self.assertEqual(get_position_for_line(diff, 5), 1)

    def test_line_outside_hunks_has_no_position(self):
        diff = parse_single_file_patch("src/app.py", SIMPLE_PATCH)
        self.assertIsNone(get_position_for_line(diff, 42))

    def test_hunk_boundary_consumes_one_position(self):
        diff = parse_single_file_patch("src/app.py", MULTI_HUNK_PATCH)

        self.assertEqual(len(diff.hunks), 2)
        self.assertEqual([l.position for l in diff.hunks[0].lines], [1, 2, 3])
        # The second header takes position 4
        self.assertEqual([l.position for l in diff.hunks[1].lines], [5, 6, 7])
        self.assertEqual(get_position_for_line(diff, 2), 3)
        self.assertEqual(get_position_for_line(diff, 10), 5)
        self.assertEqual(get_position_for_line(diff, 11), 6)
        self.assertEqual(get_position_for_line(diff, 12), 7)
        self.assertEqual(diff.hunks[1].header, "@@ -10,2 +10,3 @@ def helper():")

    def test_positions_strictly_increase(self):
        diff = parse_single_file_patch("src/app.py", MULTI_HUNK_PATCH)
        positions = [line.position for line in diff.iter_lines()]
        self.assertEqual(positions, sorted(set(positions)))

    def test_omitted_counts_default_to_one(self):
        diff = parse_single_file_patch("src/app.py", "@@ -3 +3 @@\n-x\n+y\n")
        hunk = diff.hunks[0]

        self.assertEqual((hunk.old_start, hunk.old_lines, hunk.new_start, hunk.new_lines), (3, 1, 3, 1))
        self.assertEqual(get_position_for_line(diff, 3), 2)

    def test_no_newline_marker_consumes_no_position(self):
        patch = (
            "@@ -1 +1 @@\n"
            "-old\n"
            "\\ No newline at end of file\n"
            "+new\n"
            "\\ No newline at end of file\n"
        )
        diff = parse_single_file_patch("README", patch)

        self.assertEqual([l.position for l in diff.iter_lines()], [1, 2])
        self.assertEqual(get_position_for_line(diff, 1), 2)

    def test_blank_context_line_without_prefix(self):
        diff = parse_single_file_patch("src/app.py", "@@ -1,3 +1,3 @@\n a\n\n-b\n+c\n")

        self.assertEqual([l.type for l in diff.iter_lines()], [LINE_CONTEXT, LINE_CONTEXT, LINE_DELETE, LINE_ADD])
        self.assertEqual(get_position_for_line(diff, 2), 2)
        self.assertEqual(get_position_for_line(diff, 3), 4)

    def test_reverse_lookup_and_index(self):
        diff = parse_single_file_patch("src/app.py", MULTI_HUNK_PATCH)

        self.assertEqual(get_line_for_position(diff, 6), 11)
        self.assertIsNone(get_line_for_position(diff, 2)) # deleted line
        self.assertIsNone(get_line_for_position(diff, 4)) # hunk header
        self.assertEqual(build_position_index(diff), {1: 1, 2: 3, 10: 5, 11: 6, 12: 7})


class TestDegradedInput(unittest.TestCase):
    def test_truncated_hunk_gains_no_line_from_final_newline(self):
        # Header promises three lines on each side, the body stops after two
        diff = parse_single_file_patch("f", "@@ -1,3 +1,3 @@\n a\n-b\n+c\n")

        self.assertEqual([(l.type, l.content) for l in diff.iter_lines()],
                         [(LINE_CONTEXT, "a"), (LINE_DELETE, "b"), (LINE_ADD, "c")])
        self.assertEqual(get_position_for_line(diff, 2), 3)
        self.assertIsNone(get_position_for_line(diff, 3))
        self.assertIsNone(get_line_for_position(diff, 4))

    def test_malformed_hunk_is_dropped_but_keeps_its_positions(self):
        patch = (
            "@@ -1,2 +1,2 @@\n"
            " a\n"
            "-b\n"
            "+c\n"
            "@@ this is not a hunk header @@\n"
            " x\n"
            "+y\n"
            "@@ -20,1 +20,2 @@\n"
            " p\n"
            "+q\n"
        )
        with self.assertLogs("ai_review_sync.diff_parser", level="WARNING") as logs:
            diff = parse_single_file_patch("src/app.py", patch)

        self.assertTrue(any("malformed header" in message for message in logs.output))
        self.assertEqual(len(diff.hunks), 2)
        self.assertEqual(get_position_for_line(diff, 2), 3)
        self.assertEqual(get_position_for_line(diff, 20), 8)
        self.assertEqual(get_position_for_line(diff, 21), 9)

    def test_missing_patch_yields_no_hunks(self):
        diff = parse_single_file_patch("assets/logo.png", None)

        self.assertEqual(diff.hunks, [])
        self.assertFalse(diff.has_addressable_lines)
        self.assertIsNone(get_position_for_line(diff, 1))

    def test_text_without_hunk_headers(self):
        diff = parse_single_file_patch("src/app.py", "just some text\nwithout headers\n")
        self.assertEqual(diff.hunks, [])

    def test_empty_diff_text(self):
        self.assertEqual(parse_diff_text(""), [])


class TestParseDiffText(unittest.TestCase):
    def test_parse_multiple_files(self):
        diff_text = """\
diff --git a/src/file1.py b/src/file1.py
index 1234567..7654321 100644
--- a/src/file1.py
+++ b/src/file1.py
@@ -1,4 +1,5 @@
 def main():
+    print("Hello")
     pass

 if __name__ == '__main__':
diff --git a/tests/test_file.py b/tests/test_file.py
index 1234567..7654321 100644
--- a/tests/test_file.py
+++ b/tests/test_file.py
@@ -1,2 +1,3 @@
 import unittest
+import os

"""
        result = parse_diff_text(diff_text)

        self.assertEqual([d.filename for d in result], ["src/file1.py", "tests/test_file.py"])
        self.assertEqual(result[0].status, STATUS_MODIFIED)
        self.assertEqual(get_position_for_line(result[0], 2), 2)
        self.assertEqual(get_position_for_line(result[1], 2), 2)
        # Positions restart for every file
        self.assertEqual(result[1].hunks[0].lines[0].position, 1)

    def test_rename(self):
        diff_text = """\
diff --git a/old_name.py b/new_name.py
similarity index 90%
rename from old_name.py
rename to new_name.py
index 1234567..7654321 100644
--- a/old_name.py
+++ b/new_name.py
@@ -1,2 +1,2 @@
 keep
-before
+after
"""
        diff = parse_diff_text(diff_text)[0]

        self.assertEqual(diff.status, STATUS_RENAMED)
        self.assertEqual(diff.filename, "new_name.py")
        self.assertEqual(diff.old_filename, "old_name.py")
        self.assertEqual(get_position_for_line(diff, 2), 3)

    def test_new_and_deleted_files(self):
        diff_text = """\
diff --git a/created.py b/created.py
new file mode 100644
index 0000000..1234567
--- /dev/null
+++ b/created.py
@@ -0,0 +1,2 @@
+first
+second
diff --git a/gone.py b/gone.py
deleted file mode 100644
index 1234567..0000000
--- a/gone.py
+++ /dev/null
@@ -1,2 +0,0 @@
-x
-y
"""
        created, gone = parse_diff_text(diff_text)

        self.assertEqual(created.status, STATUS_ADDED)
        self.assertEqual(get_position_for_line(created, 2), 2)
        self.assertEqual(gone.status, STATUS_DELETED)
        self.assertEqual(gone.filename, "gone.py")
        self.assertEqual(gone.deletions, 2)
        self.assertIsNone(get_position_for_line(gone, 1))

    def test_binary_file_has_no_addressable_lines(self):
        diff_text = """\
diff --git a/img.png b/img.png
new file mode 100644
index 0000000..1234567
Binary files /dev/null and b/img.png differ
"""
        result = parse_diff_text(diff_text)

        self.assertEqual(len(result), 1)
        self.assertEqual(result[0].status, STATUS_ADDED)
        self.assertFalse(result[0].has_addressable_lines)

    def test_unreadable_file_header_is_skipped(self):
        diff_text = (
            "diff --git garbage\n"
            "@@ -1 +1 @@\n-a\n+b\n"
            "diff --git a/ok.py b/ok.py\n"
            "--- a/ok.py\n+++ b/ok.py\n"
            "@@ -1 +1 @@\n-a\n+b\n"
        )
        with self.assertLogs("ai_review_sync.diff_parser", level="WARNING"):
            result = parse_diff_text(diff_text)

        self.assertEqual([d.filename for d in result], ["ok.py"])


class TestDiffQueries(unittest.TestCase):
    def setUp(self):
        self.diff = parse_single_file_patch("src/app.py", MULTI_HUNK_PATCH)

    def test_get_context(self):
        self.assertEqual(get_context(self.diff, 11, window=1), ["j", "k", "l"])
        self.assertEqual(get_context(self.diff, 1, window=1), ["a", "b"])
        self.assertEqual(get_context(self.diff, 99), [])

    def test_changed_lines(self):
        self.assertEqual(get_changed_line_numbers(self.diff), [2, 11])
        self.assertTrue(is_line_changed(self.diff, 11))
        self.assertFalse(is_line_changed(self.diff, 10))

    def test_stats(self):
        self.assertEqual(get_diff_stats(self.diff), {"additions": 2, "deletions": 1, "changes": 3, "hunks": 2})


if __name__ == '__main__':
    unittest.main()
