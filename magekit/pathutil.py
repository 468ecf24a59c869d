"""
magekit - Path validation against project bounds.
"""

import os
from typing import Sequence

from .config import ProjectBounds
from .exceptions import PathValidationError


def _is_within(path: str, root: str) -> bool:
    root = root.rstrip(os.sep) or os.sep
    if path == root:
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return path.startswith(prefix)


def validate_path(bounds: Sequence[ProjectBounds], path: str) -> str:
    """
    Check that ``path`` is absolute and inside one of the project bounds.

    Symlinks are resolved before comparing, walking up to the nearest
    existing parent so that files which do not exist yet can be validated.
    With no bounds any absolute path is accepted.

    Returns:
        The absolute, unresolved path.

    Raises:
        PathValidationError: The path is relative or outside every bound.
    """
    if path == "":
        path = "."

    if path.startswith("./") or path.startswith("../"):
        raise PathValidationError(
            f"relative paths like '{path}' are not allowed. Use absolute paths "
            "starting with / (e.g., /home/user/project/file.txt)",
            path,
        )
    if path.startswith("~/"):
        raise PathValidationError(
            f"tilde expansion in '{path}' is not supported. Use absolute paths "
            "starting with / (e.g., /home/user/project/file.txt)",
            path,
        )
    if not os.path.isabs(path) and path != ".":
        if bounds and "/" not in path:
            suggestion = os.path.join(bounds[0].abs_path, path)
            raise PathValidationError(
                f"'{path}' appears to be a relative path. Use absolute path like: {suggestion}",
                path,
            )
        raise PathValidationError(
            f"path '{path}' must be absolute (starting with /). "
            f"Example: /home/user/project/{path}",
            path,
        )

    abs_path = os.path.abspath(path)
    if not bounds:
        return abs_path

    resolved = os.path.realpath(abs_path)
    for bound in bounds:
        root = os.path.realpath(os.path.abspath(bound.abs_path))
        if _is_within(resolved, root):
            return abs_path

    allowed = ", ".join(f"{b.abs_path} ({b.name})" for b in bounds)
    hint = f"\nDid you mean: {os.path.join(bounds[0].abs_path, os.path.basename(abs_path))}"
    raise PathValidationError(
        f"path '{path}' is not within allowed directories: {allowed}{hint}\n"
        "Always use full absolute paths when working with files",
        path,
    )
