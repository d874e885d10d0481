"""Materialize content in a working tree and commit it path by path."""

from __future__ import annotations

import logging
import time
from datetime import timezone
from typing import Any, Iterable

from git import Repo
from git.exc import GitCommandError, GitError
from git.objects import Blob, Commit, Tree

from .constants import (
    INDEX_CONFLICT_RETRIES,
    INDEX_CONFLICT_RETRY_DELAY_SECONDS,
    INDEX_LOCK_MARKER,
    MAJOR_VERSION_TRAILER,
    REVERT_MESSAGE,
    SAVE_FILE_MESSAGE,
)
from .errors import ErrorCode, StudioError
from .file_manager import FileManager
from .identity import IdentityProvider
from .models import CommitDescriptor
from .paths import parent_of, require_content_path, to_index_path, to_logical, to_work_tree_path

logger = logging.getLogger(__name__)


def run_git(repo: Repo, command: str, *args: str, environment: dict[str, str] | None = None) -> str:
    """Run one git command against ``repo``, retrying once on index lock contention."""
    attempts = 0
    while True:
        attempts += 1
        try:
            with repo.git.custom_environment(**(environment or {})):
                return getattr(repo.git, command)(*args)
        except GitCommandError as exc:
            stderr = str(exc.stderr or "")
            if INDEX_LOCK_MARKER not in stderr:
                raise StudioError(
                    ErrorCode.GIT_FAILURE,
                    f"git {command} failed in {repo.working_tree_dir}",
                    "Inspect the repository state and retry.",
                    {"command": command, "status": exc.status, "stderr": stderr.strip()},
                ) from exc
            if attempts > INDEX_CONFLICT_RETRIES:
                raise StudioError(
                    ErrorCode.INDEX_CONFLICT,
                    f"Git index of {repo.working_tree_dir} is locked by another writer",
                    "Retry the operation once the concurrent writer has finished.",
                    {"command": command},
                ) from exc
            logger.warning("Index lock contention on git %s; retrying once.", command)
            time.sleep(INDEX_CONFLICT_RETRY_DELAY_SECONDS)


def format_message(message: str, trailers: dict[str, str] | None = None) -> str:
    if not trailers:
        return message
    trailer_lines = "\n".join(f"{key}: {value}" for key, value in trailers.items())
    return f"{message}\n\n{trailer_lines}"


def parse_trailers(message: str) -> dict[str, str]:
    """Read ``Key: value`` trailers from the last paragraph of a commit message."""
    paragraphs = message.strip().split("\n\n")
    if len(paragraphs) < 2:
        return {}
    trailers: dict[str, str] = {}
    for line in paragraphs[-1].splitlines():
        key, separator, value = line.partition(":")
        if not separator or not key.strip() or " " in key.strip():
            return {}
        trailers[key.strip()] = value.strip()
    return trailers


class WriteCommitEngine:
    """Single-path write, stage and commit protocol on borrowed repositories.

    Every mutation commits only the paths it touched; other dirty paths in the
    working tree are left out of the commit. Methods with a boolean or optional
    contract log I/O and Git failures and report them as ``False``/``None``.
    """

    def __init__(self, identity_provider: IdentityProvider, file_manager: FileManager | None = None) -> None:
        self.identity_provider = identity_provider
        self.file_manager = file_manager or FileManager()

    def write_file(self, repo: Repo, site: str, path: str, content: bytes) -> bool:
        """Write the full byte stream to the working tree and stage it."""
        index_path = require_content_path(path)
        target = to_work_tree_path(repo.working_tree_dir, index_path)
        try:
            self.file_manager.write_bytes(target, content)
            run_git(repo, "add", "--", index_path)
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error("Error writing file %s for site %s: %s", to_logical(index_path), site, exc)
            return False
        return True

    def commit_paths(
        self,
        repo: Repo,
        site: str,
        paths: Iterable[str],
        message: str,
        trailers: dict[str, str] | None = None,
    ) -> str | None:
        """Commit only ``paths``; returns the new commit id, ``""`` when clean, None on failure."""
        index_paths = [require_content_path(path) for path in paths]
        author = self.identity_provider.current_author()
        try:
            status = run_git(repo, "status", "--porcelain", "--", *index_paths)
            if not status.strip():
                logger.debug("No changes to commit for %s in site %s", index_paths, site)
                return ""
            run_git(
                repo,
                "commit",
                "--only",
                "--no-verify",
                "-m",
                format_message(message, trailers),
                "--",
                *index_paths,
                environment=author.git_environment(),
            )
            return repo.head.commit.hexsha
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error("Error committing %s for site %s: %s", index_paths, site, exc)
            return None
        except (GitError, ValueError):
            logger.error("Error committing %s for site %s", index_paths, site, exc_info=True)
            return None

    def save_file(self, repo: Repo, site: str, path: str, content: bytes) -> str | None:
        index_path = require_content_path(path)
        self.identity_provider.require_current_user()
        if not self.write_file(repo, site, index_path, content):
            return None
        return self.commit_paths(
            repo,
            site,
            [index_path],
            SAVE_FILE_MESSAGE.format(path=to_logical(index_path)),
        )

    def remove_path(self, repo: Repo, site: str, path: str, message: str) -> str | None:
        index_path = require_content_path(path)
        if not self.path_exists(repo, index_path):
            raise _not_found(index_path)
        self.identity_provider.require_current_user()
        try:
            run_git(repo, "rm", "-r", "-q", "--", index_path)
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error("Error removing %s in site %s: %s", to_logical(index_path), site, exc)
            return None
        return self.commit_paths(repo, site, [index_path], message)

    def copy_path(self, repo: Repo, site: str, source: str, target: str, message: str) -> str | None:
        """Copy the committed bytes of a file or folder; uncommitted working-tree content is not copied."""
        source_index = require_content_path(source)
        target_index = require_content_path(target)
        item = self._lookup(repo, "HEAD", source_index)
        if item is None:
            raise _not_found(source_index)
        self.identity_provider.require_current_user()
        root = repo.working_tree_dir
        blobs = [item] if isinstance(item, Blob) else [
            entry for entry in item.traverse() if isinstance(entry, Blob)
        ]
        try:
            written: list[str] = []
            for blob in blobs:
                index_path = target_index + blob.path[len(source_index):]
                self.file_manager.write_bytes(to_work_tree_path(root, index_path), blob.data_stream.read())
                written.append(index_path)
            if written:
                run_git(repo, "add", "--", *written)
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error(
                "Error copying %s to %s in site %s: %s",
                to_logical(source_index),
                to_logical(target_index),
                site,
                exc,
            )
            return None
        return self.commit_paths(repo, site, [target_index], message)

    def move_path(self, repo: Repo, site: str, source: str, target: str, message: str) -> str | None:
        """Move a file or folder; every descendant moves in a single commit."""
        source_index = require_content_path(source)
        target_index = require_content_path(target)
        if not self.path_exists(repo, source_index):
            raise _not_found(source_index)
        self.identity_provider.require_current_user()
        root = repo.working_tree_dir
        try:
            self.file_manager.ensure_directory(to_work_tree_path(root, parent_of(target_index)))
            run_git(repo, "mv", "--", source_index, target_index)
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error(
                "Error moving %s to %s in site %s: %s",
                to_logical(source_index),
                to_logical(target_index),
                site,
                exc,
            )
            return None
        return self.commit_paths(repo, site, [source_index, target_index], message)

    def revert(
        self,
        repo: Repo,
        site: str,
        path: str,
        version: str,
        major: bool = False,
        comment: str = "",
    ) -> str | None:
        """Restore ``path`` to its bytes at ``version`` in a new commit.

        Restoring content identical to HEAD produces no commit and returns ``""``.
        """
        index_path = require_content_path(path)
        content = self.read_version(repo, index_path, version)
        self.identity_provider.require_current_user()
        if not self.write_file(repo, site, index_path, content):
            return None
        message = comment.strip() or REVERT_MESSAGE.format(path=to_logical(index_path), version=version)
        return self.commit_paths(
            repo,
            site,
            [index_path],
            message,
            trailers={MAJOR_VERSION_TRAILER: "true" if major else "false"},
        )

    def history(self, repo: Repo, path: str) -> list[CommitDescriptor]:
        """Commits that touched ``path``, newest first."""
        index_path = to_index_path(path)
        if not repo.head.is_valid():
            return []
        options: dict[str, Any] = {"paths": index_path} if index_path else {}
        try:
            return [_describe(commit) for commit in repo.iter_commits("HEAD", **options)]
        except GitError as exc:
            raise StudioError(
                ErrorCode.GIT_FAILURE,
                f"Failed to read history of {to_logical(index_path)}",
                "Inspect the repository state and retry.",
                {"path": to_logical(index_path)},
            ) from exc

    def path_exists(self, repo: Repo, path: str) -> bool:
        return self._lookup(repo, "HEAD", to_index_path(path)) is not None

    def is_folder(self, repo: Repo, path: str) -> bool:
        return isinstance(self._lookup(repo, "HEAD", to_index_path(path)), Tree)

    def read_head(self, repo: Repo, path: str) -> bytes:
        return self._read_blob(repo, "HEAD", require_content_path(path))

    def read_version(self, repo: Repo, path: str, version: str) -> bytes:
        return self._read_blob(repo, self._resolve_commit(repo, version), require_content_path(path))

    def blob_size(self, repo: Repo, path: str) -> int:
        index_path = require_content_path(path)
        item = self._lookup(repo, "HEAD", index_path)
        if not isinstance(item, Blob):
            raise _not_found(index_path)
        return int(item.size)

    def list_folder(self, repo: Repo, path: str) -> list[str]:
        """Names of the entries directly below a committed folder."""
        index_path = to_index_path(path)
        item = self._lookup(repo, "HEAD", index_path)
        if not isinstance(item, Tree):
            raise _not_found(index_path)
        return sorted(entry.name for entry in item)

    def _resolve_commit(self, repo: Repo, version: str) -> str:
        if not version or version.startswith("-"):
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"Version '{version}' not found",
                "Use a commit id from the item's version history.",
                {"version": version},
            )
        try:
            return run_git(repo, "rev_parse", "--verify", "--quiet", f"{version}^{{commit}}").strip()
        except StudioError as exc:
            if exc.code != ErrorCode.GIT_FAILURE:
                raise
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"Version '{version}' not found",
                "Use a commit id from the item's version history.",
                {"version": version},
            ) from exc

    def _lookup(self, repo: Repo, revision: str, index_path: str) -> Blob | Tree | None:
        if revision == "HEAD" and not repo.head.is_valid():
            return None
        try:
            tree = repo.commit(revision).tree
            return tree / index_path if index_path else tree
        except KeyError:
            return None
        except (GitError, ValueError) as exc:
            raise StudioError(
                ErrorCode.GIT_FAILURE,
                f"Failed to read {to_logical(index_path)} at {revision}",
                "Inspect the repository state and retry.",
                {"path": to_logical(index_path), "revision": revision},
            ) from exc

    def _read_blob(self, repo: Repo, revision: str, index_path: str) -> bytes:
        item = self._lookup(repo, revision, index_path)
        if item is None:
            raise _not_found(index_path, revision)
        if not isinstance(item, Blob):
            raise StudioError(
                ErrorCode.INVALID_PATH,
                f"{to_logical(index_path)} is a folder",
                "Read a file path instead of a folder.",
                {"path": to_logical(index_path)},
            )
        return item.data_stream.read()


def _describe(commit: Commit) -> CommitDescriptor:
    message = commit.message if isinstance(commit.message, str) else commit.message.decode("utf-8", "replace")
    trailers = parse_trailers(message)
    return CommitDescriptor(
        commit_id=commit.hexsha,
        author_name=commit.author.name or "",
        author_email=commit.author.email or "",
        timestamp=commit.authored_datetime.astimezone(timezone.utc).isoformat(),
        message=message.strip(),
        parent_ids=[parent.hexsha for parent in commit.parents],
        major=trailers.get(MAJOR_VERSION_TRAILER, "").lower() == "true",
    )


def _not_found(index_path: str, revision: str = "HEAD") -> StudioError:
    return StudioError(
        ErrorCode.NOT_FOUND,
        f"Content not found: {to_logical(index_path)}",
        "Check the path and try again.",
        {"path": to_logical(index_path), "revision": revision},
    )
