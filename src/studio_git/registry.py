"""Registry mapping sites to their sandbox and published Git repositories."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from git import Repo
from git.exc import GitError

from .commit import run_git
from .config import StudioConfiguration
from .constants import (
    GIT_ROOT,
    GLOBAL_REPO_PATH,
    PUBLISHED_PATH,
    REPO_BASE_PATH,
    SANDBOX_PATH,
    SITES_REPOS_PATH,
)
from .errors import ErrorCode, StudioError
from .file_manager import FileManager
from .identity import IdentityProvider
from .models import RepositoryKind

logger = logging.getLogger(__name__)


def validate_site_id(site_id: str) -> str:
    """Reject site identifiers that could address directories outside the sites root."""
    normalized = str(site_id).strip()
    if (
        not normalized
        or normalized in {".", ".."}
        or "/" in normalized
        or "\\" in normalized
        or normalized.startswith(".")
    ):
        raise StudioError(
            ErrorCode.INVALID_PATH,
            f"Invalid site id '{site_id}'",
            "Use letters, numbers, dots, hyphens, and underscores only.",
            {"site_id": str(site_id)},
        )
    return normalized


class RepositoryRegistry:
    """Own the process-lifetime handles of every site and of the global repository."""

    def __init__(
        self,
        configuration: StudioConfiguration,
        identity_provider: IdentityProvider,
        file_manager: FileManager | None = None,
    ) -> None:
        self._configuration = configuration
        self._identity_provider = identity_provider
        self._file_manager = file_manager or FileManager()
        self._lock = threading.RLock()
        self._sandboxes: dict[str, Repo] = {}
        self._published: dict[str, Repo] = {}
        self._global_repo: Repo | None = None

    def build_repo_path(self, kind: RepositoryKind, site_id: str = "") -> Path:
        base = Path(self._required_setting(REPO_BASE_PATH))
        if kind == RepositoryKind.GLOBAL:
            return base / self._required_setting(GLOBAL_REPO_PATH)
        site_root = self.site_root(site_id)
        if kind == RepositoryKind.SANDBOX:
            return site_root / self._required_setting(SANDBOX_PATH)
        return site_root / self._required_setting(PUBLISHED_PATH)

    def site_root(self, site_id: str) -> Path:
        base = Path(self._required_setting(REPO_BASE_PATH))
        return base / self._required_setting(SITES_REPOS_PATH) / validate_site_id(site_id)

    def get_repository(self, site_id: str, kind: RepositoryKind) -> Repo:
        """Return a cached handle, opening the site's repositories from disk on first use."""
        logger.debug("get_repository invoked with site %s repository type %s", site_id, kind.value)
        if kind == RepositoryKind.GLOBAL:
            return self._get_global_repository()

        site_id = validate_site_id(site_id)
        cache = self._sandboxes if kind == RepositoryKind.SANDBOX else self._published
        repo = cache.get(site_id)
        if repo is not None and _is_live(repo):
            return repo

        with self._lock:
            repo = cache.get(site_id)
            if repo is not None and _is_live(repo):
                return repo
            if repo is not None:
                logger.warning("Repository directory for site %s disappeared; evicting handles.", site_id)
                self._evict_site(site_id)
            self._open_site(site_id)
            return cache[site_id]

    def site_exists(self, site_id: str) -> bool:
        try:
            self.get_repository(site_id, RepositoryKind.SANDBOX)
        except StudioError as exc:
            if exc.code == ErrorCode.NOT_FOUND:
                return False
            raise
        return True

    def create_site(self, site_id: str) -> bool:
        """Initialize the sandbox and published repositories of a new site."""
        site_id = validate_site_id(site_id)
        sandbox_path = self.build_repo_path(RepositoryKind.SANDBOX, site_id)
        published_path = self.build_repo_path(RepositoryKind.PUBLISHED, site_id)

        with self._lock:
            if (sandbox_path / GIT_ROOT).exists() or site_id in self._sandboxes:
                raise StudioError(
                    ErrorCode.ALREADY_EXISTS,
                    f"Site '{site_id}' already exists",
                    "Choose a different site id or delete the existing site first.",
                    {"site_id": site_id, "sandbox_path": str(sandbox_path)},
                )

            site_root = self.site_root(site_id)
            if site_root.exists():
                created_paths = [path for path in (sandbox_path, published_path) if not path.exists()]
            else:
                created_paths = [site_root]
            sandbox_repo: Repo | None = None
            published_repo: Repo | None = None
            try:
                sandbox_repo = self._create_git_repository(sandbox_path)
                published_repo = self._create_git_repository(published_path)
            except (OSError, GitError, StudioError):
                logger.error(
                    "Failed to create repositories for site %s under %s",
                    site_id,
                    sandbox_path.parent,
                    exc_info=True,
                )
                for repo in (sandbox_repo, published_repo):
                    if repo is not None:
                        repo.close()
                self._remove_partial_site(site_id, created_paths)
                return False

            self._sandboxes[site_id] = sandbox_repo
            self._published[site_id] = published_repo
        logger.info("Created repositories for site %s", site_id)
        return True

    def create_global(self) -> bool:
        """Bootstrap the global repository exactly once."""
        global_path = self.build_repo_path(RepositoryKind.GLOBAL)
        with self._lock:
            if (global_path / GIT_ROOT).exists():
                logger.error("Detected existing global repository, will not create new one.")
                raise StudioError(
                    ErrorCode.ALREADY_EXISTS,
                    "Global repository already exists",
                    "Reuse the existing global repository.",
                    {"global_path": str(global_path)},
                )
            logger.info("Bootstrapping global repository at %s", global_path)
            try:
                self._global_repo = self._create_git_repository(global_path)
            except (OSError, GitError, StudioError):
                logger.error("Bootstrapping global repository failed", exc_info=True)
                return False
        return True

    def perform_initial_commit(self, site_id: str, message: str) -> bool:
        """Commit every untracked and modified sandbox path, honoring ignore rules."""
        repo = self.get_repository(site_id, RepositoryKind.SANDBOX)
        author = self._identity_provider.current_author()
        try:
            if not repo.is_dirty(index=True, working_tree=True, untracked_files=True):
                return True
            run_git(repo, "add", "--all")
            run_git(repo, "commit", "-m", message, environment=author.git_environment())
        except StudioError as exc:
            if not exc.recoverable:
                raise
            logger.error("Error creating initial commit for site %s: %s", site_id, exc)
            return False
        except GitError:
            logger.error("Error creating initial commit for site %s", site_id, exc_info=True)
            return False
        return True

    def delete_site(self, site_id: str) -> bool:
        """Release the site's handles and remove its repositories from disk."""
        site_id = validate_site_id(site_id)
        site_root = self.site_root(site_id)
        with self._lock:
            self._evict_site(site_id)
            if not site_root.exists():
                return False
            try:
                self._file_manager.remove_tree(site_root)
            except StudioError as exc:
                logger.error("Failed to delete site %s: %s", site_id, exc)
                return False
        logger.info("Deleted site %s", site_id)
        return True

    def close(self) -> None:
        with self._lock:
            for site_id in list(self._sandboxes):
                self._evict_site(site_id)
            for site_id in list(self._published):
                self._evict_site(site_id)
            if self._global_repo is not None:
                self._global_repo.close()
                self._global_repo = None

    def _get_global_repository(self) -> Repo:
        repo = self._global_repo
        if repo is not None and _is_live(repo):
            return repo
        with self._lock:
            if self._global_repo is not None and _is_live(self._global_repo):
                return self._global_repo
            global_path = self.build_repo_path(RepositoryKind.GLOBAL)
            if not (global_path / GIT_ROOT).exists():
                self._global_repo = None
                raise StudioError(
                    ErrorCode.NOT_FOUND,
                    "Global repository not found",
                    "Bootstrap the global repository first.",
                    {"global_path": str(global_path)},
                )
            self._global_repo = self._open_repository(global_path)
            return self._global_repo

    def _open_site(self, site_id: str) -> None:
        sandbox_path = self.build_repo_path(RepositoryKind.SANDBOX, site_id)
        published_path = self.build_repo_path(RepositoryKind.PUBLISHED, site_id)
        missing = [
            kind.value
            for kind, path in (
                (RepositoryKind.SANDBOX, sandbox_path),
                (RepositoryKind.PUBLISHED, published_path),
            )
            if not (path / GIT_ROOT).exists()
        ]
        if missing:
            logger.debug("Site %s is missing repositories: %s", site_id, ", ".join(missing))
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"Site '{site_id}' not found",
                "Create the site first.",
                {"site_id": site_id, "missing_repositories": missing},
            )
        self._sandboxes[site_id] = self._open_repository(sandbox_path)
        self._published[site_id] = self._open_repository(published_path)

    def _open_repository(self, path: Path) -> Repo:
        try:
            return Repo(str(path))
        except GitError as exc:
            logger.error("Failed to open repository at %s", path, exc_info=True)
            raise StudioError(
                ErrorCode.GIT_FAILURE,
                f"Failed to open repository at {path}",
                "Check that the directory holds a valid Git repository.",
                {"path": str(path)},
            ) from exc

    def _create_git_repository(self, path: Path) -> Repo:
        self._file_manager.ensure_directory(path)
        return Repo.init(str(path))

    def _remove_partial_site(self, site_id: str, paths: list[Path]) -> None:
        for path in paths:
            try:
                self._file_manager.remove_tree(path)
            except StudioError as exc:
                logger.error("Failed to clean up %s after failed creation of site %s: %s", path, site_id, exc)

    def _evict_site(self, site_id: str) -> None:
        for cache in (self._sandboxes, self._published):
            repo = cache.pop(site_id, None)
            if repo is not None:
                repo.close()

    def _required_setting(self, key: str) -> str:
        value = self._configuration.get_string(key)
        if value is None or not value.strip():
            raise StudioError(
                ErrorCode.CONFIG_LOAD_FAILURE,
                f"Missing configuration value '{key}'",
                "Define the repository layout keys in the studio configuration.",
                {"key": key},
            )
        return value.strip()


def _is_live(repo: Repo) -> bool:
    return Path(repo.git_dir).is_dir()
