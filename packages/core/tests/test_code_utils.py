"""Tests for file filtering utilities."""

from unittest.mock import MagicMock

from beetle_core.utils.code import is_analyzable, is_excluded, normalize_path, partition_files

PATCH = "@@ -1 +1 @@\n-a\n+b"


def _file(name, patch=PATCH, previous=None):
    f = MagicMock()
    f.filename = name
    f.patch = patch
    f.previous_filename = previous
    return f


class TestIsAnalyzable:
    def test_python_file_with_patch(self):
        assert is_analyzable("app/services/user.py", PATCH) is True

    def test_image_is_ignored(self):
        assert is_analyzable("assets/logo.png", PATCH) is False

    def test_font_is_ignored(self):
        assert is_analyzable("static/fonts/Inter.woff2", PATCH) is False

    def test_archive_is_ignored(self):
        assert is_analyzable("dist/bundle.tar.gz", PATCH) is False

    def test_file_without_patch_is_ignored(self):
        assert is_analyzable("src/huge_generated.py", None) is False
        assert is_analyzable("src/huge_generated.py", "") is False

    def test_case_insensitive(self):
        assert is_analyzable("image.PNG", PATCH) is False

    def test_extensionless_file(self):
        assert is_analyzable("Dockerfile", PATCH) is True


class TestNormalizePath:
    def test_strips_leading_dot_slash(self):
        assert normalize_path("./src/app.py") == "src/app.py"

    def test_strips_whitespace(self):
        assert normalize_path("  src/app.py \n") == "src/app.py"

    def test_plain_path_unchanged(self):
        assert normalize_path("src/app.py") == "src/app.py"


class TestIsExcluded:
    def test_directory_prefix(self):
        assert is_excluded("app/migrations/0001.py", ["migrations/"]) is True

    def test_basename_glob(self):
        assert is_excluded("frontend/yarn.lock", ["*.lock"]) is True

    def test_full_path_glob(self):
        assert is_excluded("src/generated/api.py", ["src/generated/*.py"]) is True

    def test_no_match(self):
        assert is_excluded("src/app.py", ["migrations/", "*.lock"]) is False


class TestPartitionFiles:
    def test_splits_analyzable_and_ignored(self):
        files = [_file("src/app.py"), _file("logo.png"), _file("big.sql", patch=None)]
        analyzable, ignored = partition_files(files)
        assert analyzable == ["src/app.py"]
        assert ignored == ["logo.png", "big.sql"]

    def test_renamed_file_lists_previous_name(self):
        analyzable, _ = partition_files([_file("src/new.py", previous="src/old.py")])
        assert analyzable == ["src/new.py", "src/old.py"]

    def test_duplicates_across_commits_listed_once(self):
        analyzable, _ = partition_files([_file("src/app.py"), _file("src/app.py")])
        assert analyzable == ["src/app.py"]

    def test_exclude_patterns_move_files_to_ignored(self):
        analyzable, ignored = partition_files([_file("src/app.py"), _file("db/migrations/1.py")], ["migrations"])
        assert analyzable == ["src/app.py"]
        assert ignored == ["db/migrations/1.py"]
