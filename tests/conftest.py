from __future__ import annotations

from pathlib import Path
from typing import Any, Iterator

import pytest

from studio_git.config import StudioConfiguration
from studio_git.engine import ContentRepository
from studio_git.models import RepositoryKind, UserDetails
from studio_git.security import (
    SecurityService,
    SessionTokenCodec,
    StaticUserDirectory,
    bind_principal,
    hash_password,
    parse_authentication_chain,
    reset_principal,
)

TOKEN_SECRET = "test-session-secret"

ADMIN = UserDetails(
    username="admin",
    first_name="Ada",
    last_name="Lovelace",
    email="ada@example.com",
    authorities=["system_admin"],
    password_hash=hash_password("correct-horse", salt="fixedsalt"),
)

EDITOR = UserDetails(
    username="editor",
    first_name="Grace",
    last_name="Hopper",
    email="grace@example.com",
    authorities=["author"],
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def configuration_tree(base: Path, **overrides: Any) -> dict[str, Any]:
    tree: dict[str, Any] = {
        "studio.repo.basePath": str(base / "repos"),
        "studio.repo.sitesPath": "sites",
        "studio.repo.sandboxPath": "sandbox",
        "studio.repo.publishedPath": "published",
        "studio.repo.globalPath": "global",
        "studio.repo.blueprintsPath": "blueprints",
        "studio.repo.siteUuidFilename": "site_uuid.txt",
        "studio.security.sessionTimeout": 60,
        "studio.security.sessionTokenSecret": TOKEN_SECRET,
        "studio.security.ignoreRenewTokenUrls": "/api/1/security/validate-session.json",
        "studio.security.authenticationChain": [
            {"type": "DB", "enabled": True},
            {"type": "HEADERS", "enabled": True, "usernameHeader": "X-Forwarded-User"},
        ],
    }
    tree.update(overrides)
    return tree


def make_blueprint(configuration: StudioConfiguration, name: str, files: dict[str, bytes]) -> Path:
    root = (
        Path(configuration.get_string("studio.repo.basePath"))
        / configuration.get_string("studio.repo.globalPath")
        / configuration.get_string("studio.repo.blueprintsPath")
        / name
    )
    root.mkdir(parents=True, exist_ok=True)
    for relative, data in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    return root


def sandbox_path(content: ContentRepository, site_id: str) -> Path:
    return content.registry.build_repo_path(RepositoryKind.SANDBOX, site_id)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def configuration(tmp_path: Path) -> StudioConfiguration:
    return StudioConfiguration(configuration_tree(tmp_path))


@pytest.fixture()
def user_directory() -> StaticUserDirectory:
    return StaticUserDirectory([ADMIN, EDITOR])


@pytest.fixture()
def security_service(
    configuration: StudioConfiguration,
    user_directory: StaticUserDirectory,
    clock: FakeClock,
) -> SecurityService:
    return SecurityService(
        user_directory=user_directory,
        token_codec=SessionTokenCodec(TOKEN_SECRET, now_fn=clock),
        providers=parse_authentication_chain(configuration),
        session_timeout=60,
    )


@pytest.fixture()
def principal() -> Iterator[UserDetails]:
    token = bind_principal(ADMIN)
    yield ADMIN
    reset_principal(token)


@pytest.fixture()
def content(
    configuration: StudioConfiguration,
    security_service: SecurityService,
) -> Iterator[ContentRepository]:
    repository = ContentRepository.from_configuration(configuration, security_service)
    yield repository
    repository.close()


@pytest.fixture()
def site(content: ContentRepository, configuration: StudioConfiguration, principal: UserDetails) -> str:
    assert content.bootstrap_global() is True
    make_blueprint(
        configuration,
        "empty",
        {
            "config/site-config.xml": b"<site-config/>",
            "site/website/.keep": b"",
        },
    )
    assert content.create_site("s1", "empty") is True
    return "s1"
