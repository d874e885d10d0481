"""Copy site blueprints from the global repository into new sandboxes."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from .config import StudioConfiguration
from .constants import BLUE_PRINTS_PATH, GIT_ROOT
from .errors import ErrorCode, StudioError
from .models import RepositoryKind
from .registry import RepositoryRegistry

logger = logging.getLogger(__name__)


class BlueprintCopier:
    """Depth-first blueprint copy that follows symlinks and rejects loops."""

    def __init__(self, configuration: StudioConfiguration, registry: RepositoryRegistry) -> None:
        self._configuration = configuration
        self._registry = registry

    def blueprints_root(self) -> Path:
        blueprints = self._configuration.get_string(BLUE_PRINTS_PATH) or "blueprints"
        return self._registry.build_repo_path(RepositoryKind.GLOBAL) / blueprints

    def list_blueprints(self) -> list[str]:
        root = self.blueprints_root()
        if not root.is_dir():
            return []
        return sorted(entry.name for entry in root.iterdir() if entry.is_dir() and entry.name != GIT_ROOT)

    def copy_blueprint(self, site_id: str, blueprint: str) -> bool:
        """Populate the site's sandbox working tree with the blueprint's files.

        Returns ``False`` when an I/O error stops the copy; the sandbox may then
        be partially populated and the caller is expected to delete the site.
        """
        source = self.blueprints_root() / blueprint
        if blueprint in {"", ".", ".."} or "/" in blueprint or not source.is_dir():
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"Blueprint '{blueprint}' not found",
                "Use one of the blueprints available in the global repository.",
                {"blueprint": blueprint, "blueprints_root": str(self.blueprints_root())},
            )
        target = self._registry.build_repo_path(RepositoryKind.SANDBOX, site_id)
        try:
            self._copy_tree(source, target, ancestors=set())
        except OSError:
            logger.error(
                "Error copying blueprint %s to site %s (%s)",
                blueprint,
                site_id,
                target,
                exc_info=True,
            )
            return False
        logger.info("Copied blueprint %s into site %s", blueprint, site_id)
        return True

    def _copy_tree(self, source: Path, target: Path, ancestors: set[tuple[int, int]]) -> None:
        info = os.stat(source)
        key = (info.st_dev, info.st_ino)
        if key in ancestors:
            raise StudioError(
                ErrorCode.FILE_SYSTEM_LOOP,
                f"File system loop detected at {source}",
                "Remove the symbolic link that points back to one of its parent directories.",
                {"path": str(source)},
            )
        ancestors.add(key)
        try:
            target.mkdir(parents=True, exist_ok=True)
            for entry in sorted(source.iterdir(), key=lambda item: item.name):
                if entry.name == GIT_ROOT:
                    continue
                destination = target / entry.name
                if entry.is_dir():
                    self._copy_tree(entry, destination, ancestors)
                else:
                    shutil.copyfile(entry, destination)
        finally:
            ancestors.discard(key)
