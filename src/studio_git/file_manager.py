"""Low-level file system helpers used by the repository components."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any

import yaml

from .errors import ErrorCode, StudioError


class FileManager:
    """Wrapper around byte/text/YAML file operations with structured errors."""

    def write_bytes(self, path: Path, content: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if not path.exists():
                path.touch()
            path.write_bytes(content)
        except OSError as exc:
            raise _io_failure("writing", path, exc) from exc

    def read_bytes(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"File not found: {path}",
                "Check the path and try again.",
                {"path": str(path)},
            ) from exc
        except OSError as exc:
            raise _io_failure("reading", path, exc) from exc

    def ensure_directory(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise _io_failure("creating directory", path, exc) from exc

    def remove_tree(self, path: Path) -> None:
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            elif path.exists() or path.is_symlink():
                path.unlink()
        except OSError as exc:
            raise _io_failure("removing", path, exc) from exc

    def read_yaml(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle)
        except OSError as exc:
            raise _io_failure("reading", path, exc) from exc
        if isinstance(loaded, dict):
            return loaded
        return {}


def _io_failure(action: str, path: Path, exc: OSError) -> StudioError:
    code = ErrorCode.IO_FAILURE
    suggestion = "Check directory permissions and available disk space."
    if isinstance(exc, PermissionError):
        suggestion = "Check directory permissions and try again."
    return StudioError(
        code,
        f"I/O failure while {action} {path}: {exc.strerror or exc}",
        suggestion,
        {"path": str(path)},
    )
