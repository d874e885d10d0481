from __future__ import annotations

from contextlib import contextmanager

import pytest
from git.exc import GitCommandError

from studio_git import commit as commit_module
from studio_git.commit import format_message, parse_trailers, run_git
from studio_git.engine import ContentRepository
from studio_git.errors import ErrorCode, StudioError
from studio_git.models import RepositoryKind

from conftest import sandbox_path


class _FakeGit:
    def __init__(self, failures: list[str]) -> None:
        self.failures = list(failures)
        self.calls = 0
        self.environments: list[dict[str, str]] = []

    @contextmanager
    def custom_environment(self, **kwargs):
        self.environments.append(kwargs)
        yield

    def add(self, *args: str) -> str:
        self.calls += 1
        if self.failures:
            raise GitCommandError(["git", "add", *args], 128, self.failures.pop(0))
        return "ok"


class _FakeRepo:
    working_tree_dir = "/tmp/fake"

    def __init__(self, failures: list[str]) -> None:
        self.git = _FakeGit(failures)


@pytest.fixture()
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    delays: list[float] = []
    monkeypatch.setattr(commit_module.time, "sleep", delays.append)
    return delays


def test_run_git_retries_once_on_index_lock(no_sleep: list[float]) -> None:
    repo = _FakeRepo(["fatal: Unable to create '/tmp/fake/.git/index.lock': File exists."])

    assert run_git(repo, "add", "--", "a.txt", environment={"GIT_AUTHOR_NAME": "Ada"}) == "ok"
    assert repo.git.calls == 2
    assert len(no_sleep) == 1
    assert repo.git.environments[0] == {"GIT_AUTHOR_NAME": "Ada"}


def test_run_git_reports_index_conflict_after_retry(no_sleep: list[float]) -> None:
    lock_error = "fatal: Unable to create '/tmp/fake/.git/index.lock': File exists."
    repo = _FakeRepo([lock_error, lock_error])

    with pytest.raises(StudioError) as exc_info:
        run_git(repo, "add", "--", "a.txt")
    assert exc_info.value.code == ErrorCode.INDEX_CONFLICT
    assert repo.git.calls == 2


def test_run_git_maps_other_failures_to_git_failure(no_sleep: list[float]) -> None:
    repo = _FakeRepo(["fatal: pathspec 'a.txt' did not match any files"])

    with pytest.raises(StudioError) as exc_info:
        run_git(repo, "add", "--", "a.txt")
    assert exc_info.value.code == ErrorCode.GIT_FAILURE
    assert exc_info.value.recoverable is True
    assert repo.git.calls == 1
    assert no_sleep == []


def test_format_and_parse_trailers() -> None:
    message = format_message("Revert /a.xml", {"Major-Version": "true"})
    assert message == "Revert /a.xml\n\nMajor-Version: true"
    assert parse_trailers(message) == {"Major-Version": "true"}
    assert format_message("Save file /a.xml") == "Save file /a.xml"


@pytest.mark.parametrize(
    "message",
    [
        "Save file /a.xml",
        "Subject\n\nA body paragraph that is not a trailer.",
        "Subject\n\nNot a trailer: because the key has spaces",
    ],
)
def test_parse_trailers_ignores_plain_bodies(message: str) -> None:
    assert parse_trailers(message) == {}


def test_commit_paths_leaves_other_dirty_paths_uncommitted(content: ContentRepository, site: str) -> None:
    engine = content.commit_engine
    repo = content.registry.get_repository(site, RepositoryKind.SANDBOX)
    root = sandbox_path(content, site)
    (root / "site" / "website" / "other.xml").write_text("<draft/>", encoding="utf-8")

    assert engine.write_file(repo, site, "/site/website/index.xml", b"<page/>") is True
    commit_id = engine.commit_paths(repo, site, ["/site/website/index.xml"], "Save index")

    assert commit_id == repo.head.commit.hexsha
    changed = set(repo.head.commit.stats.files)
    assert changed == {"site/website/index.xml"}
    assert "site/website/other.xml" in repo.untracked_files


def test_commit_paths_on_clean_path_returns_empty(content: ContentRepository, site: str) -> None:
    repo = content.registry.get_repository(site, RepositoryKind.SANDBOX)
    head = repo.head.commit.hexsha

    assert content.commit_engine.commit_paths(repo, site, ["/config/site-config.xml"], "noop") == ""
    assert repo.head.commit.hexsha == head


def test_history_and_versions_are_path_limited(content: ContentRepository, site: str) -> None:
    engine = content.commit_engine
    repo = content.registry.get_repository(site, RepositoryKind.SANDBOX)
    first = engine.save_file(repo, site, "/a.txt", b"one")
    engine.save_file(repo, site, "/b.txt", b"other")
    second = engine.save_file(repo, site, "/a.txt", b"two")

    history = engine.history(repo, "/a.txt")

    assert [entry.commit_id for entry in history] == [second, first]
    assert history[0].message == "Save file /a.txt"
    assert history[0].author_email == "ada@example.com"
    assert history[0].timestamp.endswith("+00:00")
    assert engine.read_version(repo, "/a.txt", first) == b"one"
    assert engine.read_head(repo, "/a.txt") == b"two"
    assert engine.blob_size(repo, "/a.txt") == 3


@pytest.mark.parametrize("version", ["deadbeef", "--all", ""])
def test_unknown_version_is_not_found(content: ContentRepository, site: str, version: str) -> None:
    repo = content.registry.get_repository(site, RepositoryKind.SANDBOX)
    with pytest.raises(StudioError) as exc_info:
        content.commit_engine.read_version(repo, "/config/site-config.xml", version)
    assert exc_info.value.code == ErrorCode.NOT_FOUND


def test_reading_a_folder_is_invalid_path(content: ContentRepository, site: str) -> None:
    repo = content.registry.get_repository(site, RepositoryKind.SANDBOX)
    with pytest.raises(StudioError) as exc_info:
        content.commit_engine.read_head(repo, "/config")
    assert exc_info.value.code == ErrorCode.INVALID_PATH
    assert content.commit_engine.is_folder(repo, "/config") is True
    assert content.commit_engine.list_folder(repo, "/") == ["config", "site"]
