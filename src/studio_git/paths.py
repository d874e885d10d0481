"""Translate logical content paths into Git index paths and working-tree paths.

Git index paths are POSIX-style and relative to the repository root on every
platform; this module is the single place that reconciles caller-supplied
logical paths with that view and with the host filesystem.
"""

from __future__ import annotations

import os
from pathlib import Path

from .constants import GIT_ROOT
from .errors import ErrorCode, StudioError


def to_index_path(logical: str) -> str:
    """Normalize a logical path and strip the leading separator.

    The repository root maps to an empty string. Raises ``INVALID_PATH`` when
    a ``..`` segment would escape the root or the path points into ``.git``.
    """
    segments: list[str] = []
    for segment in str(logical).split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not segments:
                raise _invalid_path(logical, "Path escapes the repository root.")
            segments.pop()
            continue
        segments.append(segment)

    if segments and segments[0] == GIT_ROOT:
        raise _invalid_path(logical, "Paths inside the Git directory are not content.")
    return "/".join(segments)


def require_content_path(logical: str) -> str:
    """Return the index path for a logical path that must not be the root."""
    index_path = to_index_path(logical)
    if not index_path:
        raise _invalid_path(logical, "Operation requires a path below the repository root.")
    return index_path


def to_work_tree_path(repo_root: str | Path, logical: str) -> Path:
    """Join a logical path under a working tree using host filesystem rules."""
    index_path = to_index_path(logical)
    root = Path(repo_root)
    if not index_path:
        return Path(os.path.normcase(str(root)))
    return Path(os.path.normcase(str(root.joinpath(*index_path.split("/")))))


def parent_of(index_path: str) -> str:
    head, _, _ = index_path.rpartition("/")
    return head


def base_name(index_path: str) -> str:
    return index_path.rpartition("/")[2]


def join_index(parent: str, name: str) -> str:
    """Append a single path segment to an index path."""
    segment = str(name).strip()
    if not segment or "/" in segment or segment in (".", ".."):
        raise _invalid_path(name, "Name must be a single path segment.")
    joined = f"{parent}/{segment}" if parent else segment
    return to_index_path(joined)


def to_logical(index_path: str) -> str:
    return "/" + index_path


def _invalid_path(logical: str, reason: str) -> StudioError:
    return StudioError(
        ErrorCode.INVALID_PATH,
        f"Invalid content path '{logical}': {reason}",
        "Use a forward-slash path relative to the site root without '..' escapes.",
        {"path": str(logical)},
    )
