import pytest

from patchpilot.diffparse import create_patch, parse_diff
from patchpilot.errors import ApplyConflict
from patchpilot.patcher import (
    ApplyMode,
    ContentScanMatcher,
    LineOffsetMatcher,
    PatchApplier,
    apply_hunk,
    get_matcher,
)

ORIGINAL = """def greet(name):
    return "hi " + name


def main():
    print(greet("world"))
"""


def _hunk(text):
    return parse_diff(text)[0]


@pytest.mark.parametrize(
    "updated",
    [
        ORIGINAL.replace('"hi "', '"hello "'),
        ORIGINAL + "\n\nif __name__ == '__main__':\n    main()\n",
        "import sys\n" + ORIGINAL,
        ORIGINAL.replace("def main():\n", ""),
        ORIGINAL.rstrip("\n"),
        "",
    ],
)
def test_applying_a_written_patch_reproduces_the_target(updated):
    fh = _hunk(create_patch("app.py", ORIGINAL, updated))
    assert apply_hunk(ORIGINAL, fh) == updated


def test_apply_is_deterministic_and_does_not_mutate_input():
    fh = _hunk(create_patch("app.py", ORIGINAL, ORIGINAL.replace("world", "there")))
    original = str(ORIGINAL)
    first = apply_hunk(original, fh)
    second = apply_hunk(original, fh)
    assert first == second
    assert original == ORIGINAL


def test_absent_target_yields_exactly_the_added_lines():
    fh = _hunk("--- a/new.txt\n+++ b/new.txt\n@@ -0,0 +1,2 @@\n+one\n+two\n")
    assert apply_hunk("", fh) == "one\ntwo\n"


def test_content_scan_ignores_declared_line_numbers():
    diff = "--- a/app.py\n+++ b/app.py\n@@ -40,1 +40,1 @@\n-    print(greet(\"world\"))\n+    print(greet(\"you\"))\n"
    assert apply_hunk(ORIGINAL, _hunk(diff)) == ORIGINAL.replace("world", "you")


def test_missing_removed_line_raises_conflict_with_location():
    diff = "--- a/app.py\n+++ b/app.py\n@@ -1,1 +1,1 @@\n-not in the file\n+replacement\n"
    with pytest.raises(ApplyConflict) as exc:
        apply_hunk(ORIGINAL, _hunk(diff))
    assert exc.value.path == "app.py"
    assert exc.value.line == "not in the file"
    assert exc.value.to_dict()["hunk"] == 1


def test_pure_addition_without_anchor_appends():
    diff = "--- a/app.py\n+++ b/app.py\n@@ -99,0 +100,1 @@\n+# trailer\n"
    assert apply_hunk(ORIGINAL, _hunk(diff)) == ORIGINAL + "# trailer\n"


def test_crlf_line_endings_are_preserved():
    original = "a\r\nb\r\n"
    diff = "--- a/f.txt\n+++ b/f.txt\n@@ -1,2 +1,2 @@\n a\n-b\n+c\n"
    assert apply_hunk(original, _hunk(diff)) == "a\r\nc\r\n"


def test_offset_matcher_requires_exact_position():
    good = "--- a/app.py\n+++ b/app.py\n@@ -2,1 +2,1 @@\n-    return \"hi \" + name\n+    return name\n"
    bad = good.replace("@@ -2,1 +2,1 @@", "@@ -3,1 +3,1 @@")

    matcher = get_matcher("offset")
    assert isinstance(matcher, LineOffsetMatcher)
    assert apply_hunk(ORIGINAL, _hunk(good), matcher) == ORIGINAL.replace('"hi " + name', "name")
    with pytest.raises(ApplyConflict):
        apply_hunk(ORIGINAL, _hunk(bad), matcher)


def test_unknown_matcher_name():
    with pytest.raises(ValueError):
        get_matcher("fuzzy")


TWO_FILE_PATCH = (
    "--- a/ok.txt\n+++ b/ok.txt\n@@ -1 +1 @@\n-old\n+new\n"
    "--- a/bad.txt\n+++ b/bad.txt\n@@ -1 +1 @@\n-missing\n+whatever\n"
)


def test_per_file_mode_isolates_conflicts():
    files = {"ok.txt": "old\n", "bad.txt": "content\n"}
    report = PatchApplier(ApplyMode.PER_FILE).apply_to_files(files, parse_diff(TWO_FILE_PATCH))

    assert report.changed == {"ok.txt": "new\n"}
    assert [c.path for c in report.conflicts] == ["bad.txt"]
    assert files["bad.txt"] == "content\n"


def test_atomic_mode_aborts_on_first_conflict(tmp_path):
    (tmp_path / "ok.txt").write_text("old\n")
    (tmp_path / "bad.txt").write_text("content\n")

    with pytest.raises(ApplyConflict):
        PatchApplier(ApplyMode.ATOMIC).apply_to_tree(tmp_path, parse_diff(TWO_FILE_PATCH))

    assert (tmp_path / "ok.txt").read_text() == "old\n"


def test_every_file_conflicting_fails_the_run():
    patch = parse_diff("--- a/bad.txt\n+++ b/bad.txt\n@@ -1 +1 @@\n-missing\n+x\n")
    with pytest.raises(ApplyConflict):
        PatchApplier().apply_to_files({"bad.txt": "content\n"}, patch)


def test_apply_to_tree_writes_creates_and_deletes(tmp_path):
    (tmp_path / "keep.txt").write_text("a\nb\n")
    (tmp_path / "drop.txt").write_text("bye\n")
    patch = parse_diff(
        "--- a/keep.txt\n+++ b/keep.txt\n@@ -1,2 +1,2 @@\n a\n-b\n+B\n"
        "--- /dev/null\n+++ b/nested/new.txt\n@@ -0,0 +1 @@\n+hello\n"
        "--- a/drop.txt\n+++ /dev/null\n@@ -1 +0,0 @@\n-bye\n"
    )
    report = PatchApplier().apply_to_tree(tmp_path, patch)

    assert (tmp_path / "keep.txt").read_text() == "a\nB\n"
    assert (tmp_path / "nested" / "new.txt").read_text() == "hello\n"
    assert not (tmp_path / "drop.txt").exists()
    assert sorted(report.files_changed) == ["drop.txt", "keep.txt", "nested/new.txt"]


def test_path_escaping_the_tree_is_a_conflict(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    patch = parse_diff("--- a/../evil.txt\n+++ b/../evil.txt\n@@ -0,0 +1 @@\n+x\n")
    with pytest.raises(ApplyConflict):
        PatchApplier().apply_to_tree(root, patch)
    assert not (tmp_path / "evil.txt").exists()


def test_empty_change_hunk_is_reported_unchanged():
    patch = parse_diff("--- a/f.txt\n+++ b/f.txt\n")
    report = PatchApplier().apply_to_files({"f.txt": "x\n"}, patch)
    assert report.changed == {}
    assert report.unchanged == ["f.txt"]


def test_default_matcher_is_content_scan():
    assert isinstance(PatchApplier().matcher, ContentScanMatcher)


def test_new_file_diff_for_an_existing_path_replaces_it(tmp_path):
    (tmp_path / "public").mkdir()
    (tmp_path / "public" / "index.html").write_text("<html>\n<body>old</body>\n</html>\n")
    patch = parse_diff(create_patch("public/index.html", "", "<html>\n<body>new</body>\n</html>\n"))
    assert patch[0].is_new_file

    report = PatchApplier().apply_to_tree(tmp_path, patch)

    assert (tmp_path / "public" / "index.html").read_text() == "<html>\n<body>new</body>\n</html>\n"
    assert report.files_changed == ["public/index.html"]
    assert report.created == []


def test_report_lists_created_paths():
    patch = parse_diff(
        "--- /dev/null\n+++ b/fresh.txt\n@@ -0,0 +1 @@\n+hi\n"
        "--- a/old.txt\n+++ b/old.txt\n@@ -1 +1 @@\n-a\n+b\n"
    )
    report = PatchApplier().apply_to_files({"old.txt": "a\n"}, patch)
    assert report.created == ["fresh.txt"]
    assert set(report.changed) == {"fresh.txt", "old.txt"}
