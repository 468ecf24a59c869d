"""
Tests for validate_path.
"""

import os

import pytest

from magekit.config import ProjectBounds
from magekit.exceptions import PathValidationError
from magekit.pathutil import validate_path


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    (root / "src").mkdir()
    (root / "src" / "main.py").write_text("print('hi')\n")
    return root


@pytest.fixture
def bounds(project):
    return [ProjectBounds(name="proj", description="test project", abs_path=str(project))]


class TestRejections:
    @pytest.mark.parametrize("path", ["./file.txt", "../file.txt"])
    def test_relative_prefixes(self, bounds, path):
        with pytest.raises(PathValidationError, match="relative paths"):
            validate_path(bounds, path)

    def test_tilde(self, bounds):
        with pytest.raises(PathValidationError, match="tilde"):
            validate_path(bounds, "~/notes.txt")

    def test_bare_filename_suggests_project_path(self, bounds, project):
        with pytest.raises(PathValidationError) as exc_info:
            validate_path(bounds, "notes.txt")
        assert os.path.join(str(project), "notes.txt") in str(exc_info.value)

    def test_relative_with_directory(self, bounds):
        with pytest.raises(PathValidationError, match="must be absolute"):
            validate_path(bounds, "src/main.py")

    def test_outside_bounds_lists_roots(self, bounds, project, tmp_path):
        outside = tmp_path / "elsewhere.txt"
        with pytest.raises(PathValidationError) as exc_info:
            validate_path(bounds, str(outside))
        message = str(exc_info.value)
        assert f"{project} (proj)" in message
        assert "Did you mean" in message

    def test_sibling_with_common_prefix(self, bounds, tmp_path):
        sibling = tmp_path / "project-other"
        sibling.mkdir()
        with pytest.raises(PathValidationError):
            validate_path(bounds, str(sibling / "x.txt"))

    def test_symlink_escape(self, bounds, project, tmp_path):
        secret = tmp_path / "secret"
        secret.mkdir()
        (project / "link").symlink_to(secret)
        with pytest.raises(PathValidationError):
            validate_path(bounds, str(project / "link" / "data.txt"))


class TestAccepted:
    def test_existing_file(self, bounds, project):
        path = str(project / "src" / "main.py")
        assert validate_path(bounds, path) == path

    def test_root_itself(self, bounds, project):
        assert validate_path(bounds, str(project)) == str(project)

    def test_new_file_in_new_directory(self, bounds, project):
        path = str(project / "new" / "deeper" / "file.txt")
        assert validate_path(bounds, path) == path

    def test_no_bounds_allows_any_absolute_path(self):
        assert validate_path([], "/etc/hosts") == "/etc/hosts"

    def test_empty_path_means_current_directory(self):
        assert validate_path([], "") == os.path.abspath(".")

    def test_second_bound(self, bounds, tmp_path):
        other = tmp_path / "other"
        other.mkdir()
        bounds = bounds + [ProjectBounds("other", "", str(other))]
        assert validate_path(bounds, str(other / "a.txt")) == str(other / "a.txt")
