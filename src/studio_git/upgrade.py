"""Idempotent per-site upgrade operations and their driver."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Protocol

from .config import StudioConfiguration
from .constants import (
    DEFAULT_SITE_UUID_FILENAME,
    REPO_BASE_PATH,
    SITE_UUID_FILE_COMMENT,
    SITE_UUID_FILENAME,
    SITES_REPOS_PATH,
)
from .errors import ErrorCode, StudioError
from .registry import validate_site_id

logger = logging.getLogger(__name__)


class SiteFeedLookup(Protocol):
    def get_site_uuid(self, site_id: str) -> str | None: ...


class MappingSiteFeed:
    """Site feed backed by an in-memory ``site_id -> uuid`` mapping."""

    def __init__(self, uuids: Mapping[str, str] | None = None) -> None:
        self._uuids = dict(uuids or {})

    def get_site_uuid(self, site_id: str) -> str | None:
        return self._uuids.get(site_id)


class UpgradeOperation(ABC):
    name = "upgrade"

    @abstractmethod
    def execute(self, site_id: str) -> None:
        """Apply the operation to one site; must be safe to run repeatedly."""


class AddSiteUuidOperation(UpgradeOperation):
    """Write the site UUID marker file next to the site's repositories."""

    name = "add_site_uuid"

    def __init__(self, configuration: StudioConfiguration, site_feed: SiteFeedLookup) -> None:
        self._configuration = configuration
        self._site_feed = site_feed

    def uuid_file_path(self, site_id: str) -> Path:
        return (
            Path(self._configuration.get_string(REPO_BASE_PATH, "") or "")
            / (self._configuration.get_string(SITES_REPOS_PATH, "") or "")
            / validate_site_id(site_id)
            / (self._configuration.get_string(SITE_UUID_FILENAME) or DEFAULT_SITE_UUID_FILENAME)
        )

    def execute(self, site_id: str) -> None:
        logger.debug("Get site data for site %s", site_id)
        site_uuid = self._site_feed.get_site_uuid(site_id)
        if not site_uuid:
            logger.debug("No UUID recorded for site %s; nothing to do.", site_id)
            return

        path = self.uuid_file_path(site_id)
        content = f"{SITE_UUID_FILE_COMMENT}\n{site_uuid}".encode("utf-8")
        try:
            if path.is_file() and path.read_bytes() == content:
                return
            logger.debug("Write UUID %s to the file %s for site %s", site_uuid, path, site_id)
            path.write_bytes(content)
        except OSError as exc:
            raise StudioError(
                ErrorCode.UPGRADE_FAILURE,
                f"Error when adding UUID file for site {site_id}",
                "Check that the site directory exists and is writable.",
                {"site_id": site_id, "path": str(path), "cause": exc.strerror or str(exc)},
            ) from exc


class UpgradeManager:
    """Run upgrade operations in order and collect per-site failures."""

    def __init__(self, operations: Iterable[UpgradeOperation]) -> None:
        self.operations = list(operations)

    def upgrade_site(self, site_id: str) -> None:
        for operation in self.operations:
            logger.info("Running upgrade operation %s for site %s", operation.name, site_id)
            operation.execute(site_id)

    def upgrade_sites(self, site_ids: Iterable[str]) -> dict[str, StudioError | None]:
        results: dict[str, StudioError | None] = {}
        for site_id in site_ids:
            try:
                self.upgrade_site(site_id)
            except StudioError as exc:
                logger.error("Upgrade failed for site %s: %s", site_id, exc)
                results[site_id] = exc
            else:
                results[site_id] = None
        return results
