from __future__ import annotations

from collections.abc import Mapping

import pytest

from studio_git.errors import ErrorCode, StudioError
from studio_git.identity import IdentityProvider
from studio_git.models import AuthorIdentity


class _StubSecurity:
    def __init__(self, username: str | None, profile: Mapping[str, str]) -> None:
        self.username = username
        self.profile = profile

    def get_current_user(self) -> str | None:
        return self.username

    def get_user_profile(self, username: str) -> Mapping[str, str]:
        return self.profile


def test_current_author_joins_first_and_last_name() -> None:
    provider = IdentityProvider(
        _StubSecurity("ada", {"firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com"})
    )

    author = provider.current_author()

    assert author == AuthorIdentity(name="Ada Lovelace", email="ada@example.com")
    assert author.to_actor().name == "Ada Lovelace"
    assert author.git_environment()["GIT_COMMITTER_EMAIL"] == "ada@example.com"


def test_missing_profile_fields_become_empty_strings() -> None:
    provider = IdentityProvider(_StubSecurity("ghost", {}))
    assert provider.current_author() == AuthorIdentity(name=" ", email="")


@pytest.mark.parametrize("username", [None, ""])
def test_no_current_user(username: str | None) -> None:
    provider = IdentityProvider(_StubSecurity(username, {}))
    with pytest.raises(StudioError) as exc_info:
        provider.current_author()
    assert exc_info.value.code == ErrorCode.NO_CURRENT_USER


def test_require_current_user_returns_username() -> None:
    assert IdentityProvider(_StubSecurity("ada", {})).require_current_user() == "ada"
    with pytest.raises(StudioError) as exc_info:
        IdentityProvider(_StubSecurity(None, {})).require_current_user()
    assert exc_info.value.code == ErrorCode.NO_CURRENT_USER
