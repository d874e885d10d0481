"""Site-level content repository composed from the registry, blueprints and commit engine."""

from __future__ import annotations

import logging
import posixpath

from git import Repo
from git.exc import GitError

from .blueprint import BlueprintCopier
from .commit import WriteCommitEngine, run_git
from .config import StudioConfiguration
from .constants import (
    COPY_CONTENT_MESSAGE,
    CREATE_FOLDER_MESSAGE,
    DELETE_CONTENT_MESSAGE,
    FOLDER_PLACEHOLDER,
    INITIAL_COMMIT_MESSAGE,
    MOVE_CONTENT_MESSAGE,
    RENAME_FOLDER_MESSAGE,
)
from .errors import ErrorCode, StudioError
from .identity import IdentityProvider
from .models import CommitDescriptor, RepositoryKind
from .paths import base_name, join_index, parent_of, require_content_path, to_index_path, to_logical
from .registry import RepositoryRegistry
from .security import SecurityProvider

logger = logging.getLogger(__name__)

MAX_AVAILABLE_NAME_ATTEMPTS = 1000


class ContentRepository:
    """Content operations over each site's sandbox repository."""

    def __init__(
        self,
        configuration: StudioConfiguration,
        registry: RepositoryRegistry,
        commit_engine: WriteCommitEngine,
        blueprint_copier: BlueprintCopier,
    ) -> None:
        self.configuration = configuration
        self.registry = registry
        self.commit_engine = commit_engine
        self.blueprint_copier = blueprint_copier

    @classmethod
    def from_configuration(
        cls,
        configuration: StudioConfiguration,
        security_provider: SecurityProvider,
    ) -> ContentRepository:
        identity_provider = IdentityProvider(security_provider)
        registry = RepositoryRegistry(configuration, identity_provider)
        return cls(
            configuration=configuration,
            registry=registry,
            commit_engine=WriteCommitEngine(identity_provider),
            blueprint_copier=BlueprintCopier(configuration, registry),
        )

    # Site lifecycle

    def bootstrap_global(self) -> bool:
        return self.registry.create_global()

    def list_blueprints(self) -> list[str]:
        return self.blueprint_copier.list_blueprints()

    def create_site(self, site_id: str, blueprint: str) -> bool:
        """Create the repositories, copy the blueprint and record the initial commit.

        A site left half-built by a failed copy or commit is deleted before
        returning ``False`` or re-raising.
        """
        self.commit_engine.identity_provider.require_current_user()
        if not self.registry.create_site(site_id):
            return False
        try:
            if not self.blueprint_copier.copy_blueprint(site_id, blueprint):
                self.registry.delete_site(site_id)
                return False
            message = INITIAL_COMMIT_MESSAGE.format(site=site_id, blueprint=blueprint)
            if not self.registry.perform_initial_commit(site_id, message):
                self.registry.delete_site(site_id)
                return False
        except StudioError:
            logger.error("Rolling back creation of site %s", site_id)
            self.registry.delete_site(site_id)
            raise
        logger.info("Created site %s from blueprint %s", site_id, blueprint)
        return True

    def delete_site(self, site_id: str) -> bool:
        return self.registry.delete_site(site_id)

    def site_exists(self, site_id: str) -> bool:
        return self.registry.site_exists(site_id)

    # Reads

    def content_exists(self, site: str, path: str) -> bool:
        return self.commit_engine.path_exists(self._sandbox(site), path)

    def get_content(self, site: str, path: str) -> bytes:
        return self.commit_engine.read_head(self._sandbox(site), path)

    def get_content_as_string(self, site: str, path: str) -> str:
        return self.get_content(site, path).decode("utf-8")

    def get_content_size(self, site: str, path: str) -> int:
        return self.commit_engine.blob_size(self._sandbox(site), path)

    def list_folder(self, site: str, path: str) -> list[str]:
        return self.commit_engine.list_folder(self._sandbox(site), path)

    def get_content_item_version_history(self, site: str, path: str) -> list[CommitDescriptor]:
        return self.commit_engine.history(self._sandbox(site), path)

    def get_content_version(self, site: str, path: str, version: str) -> bytes:
        return self.commit_engine.read_version(self._sandbox(site), path, version)

    def get_content_version_as_string(self, site: str, path: str, version: str) -> str:
        return self.get_content_version(site, path, version).decode("utf-8")

    def get_next_available_name(self, site: str, path: str) -> str:
        """Return a name for ``path`` that does not collide with committed content.

        ``page.xml`` becomes ``page-1.xml``, ``page-2.xml`` and so on; the
        original name is returned when it is free.
        """
        index_path = require_content_path(path)
        return base_name(self._next_available_path(self._sandbox(site), index_path))

    # Writes

    def write_content(self, site: str, path: str, content: bytes) -> bool:
        """Write and commit one file; an identical write succeeds without a commit."""
        repo = self._sandbox(site)
        commit_id = self.commit_engine.save_file(repo, site, path, content)
        return commit_id is not None

    def create_folder(self, site: str, path: str, name: str) -> bool:
        repo = self._sandbox(site)
        folder = join_index(to_index_path(path), name)
        if self.commit_engine.path_exists(repo, folder):
            raise StudioError(
                ErrorCode.ALREADY_EXISTS,
                f"Content already exists at {to_logical(folder)}",
                "Choose a different folder name.",
                {"path": to_logical(folder)},
            )
        placeholder = join_index(folder, FOLDER_PLACEHOLDER)
        if not self.commit_engine.write_file(repo, site, placeholder, b""):
            return False
        commit_id = self.commit_engine.commit_paths(
            repo,
            site,
            [placeholder],
            CREATE_FOLDER_MESSAGE.format(path=to_logical(folder)),
        )
        return commit_id is not None

    def delete_content(self, site: str, path: str) -> bool:
        index_path = require_content_path(path)
        commit_id = self.commit_engine.remove_path(
            self._sandbox(site),
            site,
            index_path,
            DELETE_CONTENT_MESSAGE.format(path=to_logical(index_path)),
        )
        return commit_id is not None

    def copy_content(self, site: str, from_path: str, to_path: str) -> str | None:
        """Copy content and return its final logical path, or None on failure.

        Copying into an existing folder places the item inside it; a name
        collision picks the next available name.
        """
        repo = self._sandbox(site)
        source = require_content_path(from_path)
        target = self._next_available_path(repo, self._resolve_target(repo, source, to_path))
        commit_id = self.commit_engine.copy_path(
            repo,
            site,
            source,
            target,
            COPY_CONTENT_MESSAGE.format(source=to_logical(source), target=to_logical(target)),
        )
        return None if commit_id is None else to_logical(target)

    def move_content(self, site: str, from_path: str, to_path: str) -> str | None:
        """Move content and return its final logical path, or None on failure."""
        repo = self._sandbox(site)
        source = require_content_path(from_path)
        target = self._resolve_target(repo, source, to_path)
        if target == source:
            return to_logical(target)
        self._require_free(repo, target)
        commit_id = self.commit_engine.move_path(
            repo,
            site,
            source,
            target,
            MOVE_CONTENT_MESSAGE.format(source=to_logical(source), target=to_logical(target)),
        )
        return None if commit_id is None else to_logical(target)

    def rename_folder(self, site: str, path: str, name: str) -> bool:
        """Rename a folder in place; all descendants move in one commit."""
        repo = self._sandbox(site)
        source = require_content_path(path)
        if not self.commit_engine.is_folder(repo, source):
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"Folder not found: {to_logical(source)}",
                "Check the folder path and try again.",
                {"path": to_logical(source)},
            )
        target = join_index(parent_of(source), name)
        if target == source:
            return True
        self._require_free(repo, target)
        commit_id = self.commit_engine.move_path(
            repo,
            site,
            source,
            target,
            RENAME_FOLDER_MESSAGE.format(source=to_logical(source), target=to_logical(target)),
        )
        return commit_id is not None

    def revert_content_item(
        self,
        site: str,
        path: str,
        version: str,
        major: bool = False,
        comment: str = "",
    ) -> str | None:
        return self.commit_engine.revert(self._sandbox(site), site, path, version, major, comment)

    # Remotes

    def add_remote(self, site: str, remote_name: str, remote_url: str) -> bool:
        repo = self._sandbox(site)
        if remote_name in {remote.name for remote in repo.remotes}:
            raise StudioError(
                ErrorCode.ALREADY_EXISTS,
                f"Remote '{remote_name}' already exists for site '{site}'",
                "Use a different remote name.",
                {"site_id": site, "remote_name": remote_name},
            )
        try:
            repo.create_remote(remote_name, remote_url)
        except GitError:
            logger.error("Error adding remote %s to site %s", remote_name, site, exc_info=True)
            return False
        return True

    def list_remotes(self, site: str) -> dict[str, str]:
        repo = self._sandbox(site)
        return {remote.name: remote.url for remote in repo.remotes}

    def push_to_remote(self, site: str, remote_name: str, remote_branch: str) -> bool:
        repo = self._sandbox(site)
        self._require_remote(repo, site, remote_name)
        try:
            run_git(repo, "push", remote_name, f"HEAD:refs/heads/{remote_branch}")
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error("Error pushing site %s to %s/%s: %s", site, remote_name, remote_branch, exc)
            return False
        return True

    def pull_from_remote(self, site: str, remote_name: str, remote_branch: str) -> bool:
        repo = self._sandbox(site)
        self._require_remote(repo, site, remote_name)
        author = self.commit_engine.identity_provider.current_author()
        try:
            run_git(
                repo,
                "pull",
                "--no-edit",
                "--no-rebase",
                remote_name,
                remote_branch,
                environment=author.git_environment(),
            )
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error("Error pulling site %s from %s/%s: %s", site, remote_name, remote_branch, exc)
            return False
        return True

    def close(self) -> None:
        self.registry.close()

    def _sandbox(self, site: str) -> Repo:
        return self.registry.get_repository(site, RepositoryKind.SANDBOX)

    def _resolve_target(self, repo: Repo, source: str, to_path: str) -> str:
        target = to_index_path(to_path)
        if not target or self.commit_engine.is_folder(repo, target):
            return join_index(target, base_name(source))
        return target

    def _next_available_path(self, repo: Repo, index_path: str) -> str:
        if not self.commit_engine.path_exists(repo, index_path):
            return index_path
        parent = parent_of(index_path)
        stem, extension = posixpath.splitext(base_name(index_path))
        for counter in range(1, MAX_AVAILABLE_NAME_ATTEMPTS + 1):
            candidate = join_index(parent, f"{stem}-{counter}{extension}")
            if not self.commit_engine.path_exists(repo, candidate):
                return candidate
        raise StudioError(
            ErrorCode.ALREADY_EXISTS,
            f"No available name for {to_logical(index_path)}",
            "Remove unused copies and retry.",
            {"path": to_logical(index_path)},
        )

    def _require_free(self, repo: Repo, index_path: str) -> None:
        if self.commit_engine.path_exists(repo, index_path):
            raise StudioError(
                ErrorCode.ALREADY_EXISTS,
                f"Content already exists at {to_logical(index_path)}",
                "Move to a different path or delete the existing content first.",
                {"path": to_logical(index_path)},
            )

    def _require_remote(self, repo: Repo, site: str, remote_name: str) -> None:
        if remote_name not in {remote.name for remote in repo.remotes}:
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"Remote '{remote_name}' not found for site '{site}'",
                "Add the remote before pushing or pulling.",
                {"site_id": site, "remote_name": remote_name},
            )
