from __future__ import annotations

import shutil
import threading

import pytest
from git import Repo

from studio_git.config import StudioConfiguration
from studio_git.errors import ErrorCode, StudioError
from studio_git.identity import IdentityProvider
from studio_git.models import RepositoryKind, UserDetails
from studio_git.registry import RepositoryRegistry, validate_site_id
from studio_git.security import SecurityService


@pytest.fixture()
def registry(configuration: StudioConfiguration, security_service: SecurityService):
    repositories = RepositoryRegistry(configuration, IdentityProvider(security_service))
    yield repositories
    repositories.close()


def test_create_site_initializes_both_repositories(registry: RepositoryRegistry) -> None:
    assert registry.create_site("alpha") is True

    sandbox = registry.get_repository("alpha", RepositoryKind.SANDBOX)
    published = registry.get_repository("alpha", RepositoryKind.PUBLISHED)

    assert (registry.build_repo_path(RepositoryKind.SANDBOX, "alpha") / ".git").is_dir()
    assert (registry.build_repo_path(RepositoryKind.PUBLISHED, "alpha") / ".git").is_dir()
    assert sandbox.working_tree_dir != published.working_tree_dir
    assert registry.get_repository("alpha", RepositoryKind.SANDBOX) is sandbox


def test_repository_layout_follows_configuration(registry: RepositoryRegistry, configuration) -> None:
    base = configuration.get_string("studio.repo.basePath")
    sandbox = registry.build_repo_path(RepositoryKind.SANDBOX, "alpha")
    published = registry.build_repo_path(RepositoryKind.PUBLISHED, "alpha")
    global_path = registry.build_repo_path(RepositoryKind.GLOBAL)

    assert str(sandbox) == f"{base}/sites/alpha/sandbox"
    assert str(published) == f"{base}/sites/alpha/published"
    assert str(global_path) == f"{base}/global"


def test_create_site_twice_is_already_exists(registry: RepositoryRegistry) -> None:
    assert registry.create_site("alpha") is True
    with pytest.raises(StudioError) as exc_info:
        registry.create_site("alpha")
    assert exc_info.value.code == ErrorCode.ALREADY_EXISTS


def test_unknown_site_is_not_found(registry: RepositoryRegistry) -> None:
    with pytest.raises(StudioError) as exc_info:
        registry.get_repository("missing", RepositoryKind.SANDBOX)
    assert exc_info.value.code == ErrorCode.NOT_FOUND
    assert exc_info.value.details["missing_repositories"] == ["sandbox", "published"]
    assert registry.site_exists("missing") is False


def test_site_created_by_another_process_is_opened_lazily(
    registry: RepositoryRegistry,
    configuration: StudioConfiguration,
    security_service: SecurityService,
) -> None:
    other = RepositoryRegistry(configuration, IdentityProvider(security_service))
    try:
        assert other.create_site("shared") is True
    finally:
        other.close()

    assert registry.site_exists("shared") is True
    repo = registry.get_repository("shared", RepositoryKind.PUBLISHED)
    assert isinstance(repo, Repo)


def test_handles_are_evicted_when_directory_disappears(registry: RepositoryRegistry) -> None:
    assert registry.create_site("alpha") is True
    registry.get_repository("alpha", RepositoryKind.SANDBOX)

    shutil.rmtree(registry.site_root("alpha"))

    with pytest.raises(StudioError) as exc_info:
        registry.get_repository("alpha", RepositoryKind.SANDBOX)
    assert exc_info.value.code == ErrorCode.NOT_FOUND
    assert registry.create_site("alpha") is True


def test_global_repository_is_created_once(registry: RepositoryRegistry) -> None:
    with pytest.raises(StudioError) as missing:
        registry.get_repository("", RepositoryKind.GLOBAL)
    assert missing.value.code == ErrorCode.NOT_FOUND

    assert registry.create_global() is True
    assert registry.get_repository("", RepositoryKind.GLOBAL).working_tree_dir is not None

    with pytest.raises(StudioError) as exc_info:
        registry.create_global()
    assert exc_info.value.code == ErrorCode.ALREADY_EXISTS


def test_delete_site_removes_directories(registry: RepositoryRegistry) -> None:
    assert registry.create_site("alpha") is True
    assert registry.delete_site("alpha") is True
    assert not registry.site_root("alpha").exists()
    assert registry.site_exists("alpha") is False
    assert registry.delete_site("alpha") is False


def test_initial_commit_records_untracked_files(
    registry: RepositoryRegistry,
    principal: UserDetails,
) -> None:
    assert registry.create_site("alpha") is True
    root = registry.build_repo_path(RepositoryKind.SANDBOX, "alpha")
    (root / "config").mkdir()
    (root / "config" / "site-config.xml").write_text("<site/>", encoding="utf-8")
    (root / ".gitignore").write_text("*.tmp\n", encoding="utf-8")
    (root / "scratch.tmp").write_text("ignored", encoding="utf-8")

    assert registry.perform_initial_commit("alpha", "Initial commit") is True

    repo = registry.get_repository("alpha", RepositoryKind.SANDBOX)
    head = repo.head.commit
    names = {item.path for item in head.tree.traverse()}
    assert "config/site-config.xml" in names
    assert "scratch.tmp" not in names
    assert head.author.name == "Ada Lovelace"
    assert head.author.email == "ada@example.com"
    assert head.committer.email == "ada@example.com"


def test_initial_commit_requires_current_user(registry: RepositoryRegistry) -> None:
    assert registry.create_site("alpha") is True
    with pytest.raises(StudioError) as exc_info:
        registry.perform_initial_commit("alpha", "Initial commit")
    assert exc_info.value.code == ErrorCode.NO_CURRENT_USER


def test_missing_layout_key_is_config_load_failure(security_service: SecurityService) -> None:
    registry = RepositoryRegistry(StudioConfiguration({}), IdentityProvider(security_service))
    with pytest.raises(StudioError) as exc_info:
        registry.build_repo_path(RepositoryKind.GLOBAL)
    assert exc_info.value.code == ErrorCode.CONFIG_LOAD_FAILURE


@pytest.mark.parametrize("site_id", ["", "  ", ".", "..", "a/b", "a\\b", ".hidden"])
def test_validate_site_id_rejects_unsafe_ids(site_id: str) -> None:
    with pytest.raises(StudioError) as exc_info:
        validate_site_id(site_id)
    assert exc_info.value.code == ErrorCode.INVALID_PATH


def test_validate_site_id_accepts_plain_ids() -> None:
    assert validate_site_id(" my-site_1.0 ") == "my-site_1.0"


def test_failed_create_site_removes_partial_repositories(
    registry: RepositoryRegistry,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    published_path = registry.build_repo_path(RepositoryKind.PUBLISHED, "alpha")
    create_repository = registry._create_git_repository

    def failing_create(path):
        if path == published_path:
            raise OSError("disk full")
        return create_repository(path)

    monkeypatch.setattr(registry, "_create_git_repository", failing_create)
    assert registry.create_site("alpha") is False
    assert not registry.site_root("alpha").exists()
    assert registry.site_exists("alpha") is False

    monkeypatch.undo()
    assert registry.create_site("alpha") is True
    assert registry.site_exists("alpha") is True


def test_concurrent_readers_see_both_repositories_or_not_found(registry: RepositoryRegistry) -> None:
    start = threading.Barrier(5)
    done = threading.Event()
    observations: list[str] = []
    failures: list[Exception] = []

    def read_site() -> None:
        start.wait()
        while True:
            finished = done.is_set()
            try:
                registry.get_repository("beta", RepositoryKind.SANDBOX)
            except StudioError as exc:
                if exc.code != ErrorCode.NOT_FOUND:
                    failures.append(exc)
                observations.append("missing")
            else:
                try:
                    registry.get_repository("beta", RepositoryKind.PUBLISHED)
                    observations.append("pair")
                except Exception as exc:  # noqa: BLE001
                    failures.append(exc)
            if finished:
                return

    readers = [threading.Thread(target=read_site) for _ in range(4)]
    for reader in readers:
        reader.start()
    start.wait()
    created = registry.create_site("beta")
    done.set()
    for reader in readers:
        reader.join(timeout=30)

    assert created is True
    assert failures == []
    assert set(observations) <= {"pair", "missing"}
    assert observations.count("pair") >= len(readers)
