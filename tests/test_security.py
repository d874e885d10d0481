from __future__ import annotations

import pytest

from studio_git.config import StudioConfiguration
from studio_git.errors import ErrorCode, StudioError
from studio_git.security import (
    DatabaseProvider,
    HeadersProvider,
    LdapProvider,
    SecurityService,
    SessionTokenCodec,
    StaticUserDirectory,
    bind_principal,
    current_principal,
    hash_password,
    parse_authentication_chain,
    reset_principal,
    verify_password,
)

from conftest import ADMIN, TOKEN_SECRET, FakeClock


def test_token_is_valid_until_expiry(clock: FakeClock) -> None:
    codec = SessionTokenCodec(TOKEN_SECRET, now_fn=clock)
    token = codec.create_token("admin", 60)

    decoded = codec.decode(token)
    assert decoded is not None
    assert decoded.username == "admin"
    assert decoded.expires_at == int(clock.now) + 60
    assert codec.validate_token(token, "admin") is True
    assert codec.validate_token(token, "editor") is False

    clock.advance(59)
    assert codec.validate_token(token, "admin") is True
    clock.advance(1)
    assert codec.validate_token(token, "admin") is False


def test_tampered_or_foreign_tokens_are_rejected(clock: FakeClock) -> None:
    codec = SessionTokenCodec(TOKEN_SECRET, now_fn=clock)
    token = codec.create_token("admin", 60)
    payload, signature = token.split(".")

    forged = SessionTokenCodec("another-secret", now_fn=clock).create_token("admin", 60)
    assert codec.validate_token(forged, "admin") is False
    assert codec.validate_token(f"{payload}x.{signature}", "admin") is False
    assert codec.validate_token(f"{payload}.{'0' * len(signature)}", "admin") is False
    assert codec.validate_token("not-a-token", "admin") is False
    assert codec.validate_token(None, "admin") is False


def test_tokens_are_unique_per_issue(clock: FakeClock) -> None:
    codec = SessionTokenCodec(TOKEN_SECRET, now_fn=clock)
    assert codec.create_token("admin", 60) != codec.create_token("admin", 60)


def test_codec_requires_secret() -> None:
    with pytest.raises(ValueError):
        SessionTokenCodec("")


def test_password_hashing() -> None:
    encoded = hash_password("s3cret")
    assert encoded.startswith("pbkdf2_sha256$")
    assert verify_password("s3cret", encoded) is True
    assert verify_password("wrong", encoded) is False
    assert verify_password("s3cret", None) is False
    assert verify_password("s3cret", "md5$abc") is False


def test_parse_authentication_chain_keeps_order_and_skips_invalid() -> None:
    configuration = StudioConfiguration(
        {
            "studio.security.authenticationChain": [
                {"type": "HEADERS", "enabled": "true", "usernameHeader": "X-User"},
                {"type": "HEADERS", "enabled": True},
                {"type": "db", "enabled": False},
                {"type": "LDAP", "enabled": True, "url": "ldap://directory"},
                {"type": "KERBEROS", "enabled": True},
            ]
        }
    )

    assert parse_authentication_chain(configuration) == (
        HeadersProvider(enabled=True, username_header="X-User"),
        DatabaseProvider(enabled=False),
        LdapProvider(enabled=True, url="ldap://directory"),
    )


def test_authenticate_with_database_password(security_service: SecurityService, clock: FakeClock) -> None:
    token = security_service.authenticate("admin", "correct-horse")
    assert security_service.token_codec.validate_token(token, "admin") is True
    assert security_service.token_codec.decode(token).expires_at == int(clock.now) + 60


def test_headers_provider_accepts_known_user_only_when_pre_authenticated(
    security_service: SecurityService,
) -> None:
    token = security_service.authenticate_pre_authenticated("editor", "anything")
    assert security_service.token_codec.validate_token(token, "editor") is True


def test_password_login_ignores_headers_provider(security_service: SecurityService) -> None:
    with pytest.raises(StudioError) as exc_info:
        security_service.authenticate("admin", "definitely-wrong")
    assert exc_info.value.code == ErrorCode.AUTHENTICATION_FAILED

    with pytest.raises(StudioError) as editor_info:
        security_service.authenticate("editor", "anything")
    assert editor_info.value.code == ErrorCode.AUTHENTICATION_FAILED


def test_pre_authentication_requires_enabled_headers_provider(user_directory: StaticUserDirectory, clock) -> None:
    service = SecurityService(
        user_directory=user_directory,
        token_codec=SessionTokenCodec(TOKEN_SECRET, now_fn=clock),
        providers=(DatabaseProvider(enabled=True), HeadersProvider(enabled=False, username_header="X-User")),
        session_timeout=60,
    )
    with pytest.raises(StudioError) as exc_info:
        service.authenticate_pre_authenticated("editor", "anything")
    assert exc_info.value.code == ErrorCode.AUTHENTICATION_FAILED


def test_authentication_fails_without_matching_provider(user_directory: StaticUserDirectory, clock) -> None:
    service = SecurityService(
        user_directory=user_directory,
        token_codec=SessionTokenCodec(TOKEN_SECRET, now_fn=clock),
        providers=(DatabaseProvider(enabled=True), HeadersProvider(enabled=False, username_header="X-User")),
        session_timeout=60,
    )
    with pytest.raises(StudioError) as exc_info:
        service.authenticate("admin", "wrong")
    assert exc_info.value.code == ErrorCode.AUTHENTICATION_FAILED


def test_unknown_user_is_not_found(security_service: SecurityService) -> None:
    with pytest.raises(StudioError) as exc_info:
        security_service.authenticate("nobody", "x")
    assert exc_info.value.code == ErrorCode.NOT_FOUND


def test_current_user_follows_principal_binding(security_service: SecurityService) -> None:
    assert security_service.get_current_user() is None
    token = bind_principal(ADMIN)
    try:
        assert current_principal() is ADMIN
        assert security_service.get_current_user() == "admin"
        assert security_service.get_user_profile("admin") == {
            "username": "admin",
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
        }
    finally:
        reset_principal(token)
    assert security_service.get_current_user() is None


def test_security_service_from_configuration_loads_users() -> None:
    configuration = StudioConfiguration(
        {
            "studio.security.sessionTimeout": 120,
            "studio.security.sessionTokenSecret": TOKEN_SECRET,
            "studio.security.authenticationChain": [{"type": "DB", "enabled": True}],
            "studio.security.users": [
                {
                    "username": "admin",
                    "firstName": "Ada",
                    "lastName": "Lovelace",
                    "email": "ada@example.com",
                    "authorities": ["system_admin"],
                    "passwordHash": hash_password("pw", salt="abc"),
                },
                {"firstName": "No username"},
            ],
        }
    )

    service = SecurityService.from_configuration(configuration)

    assert service.session_timeout == 120
    user = service.user_directory.load_user("admin")
    assert user.authorities == ["system_admin"]
    assert "password_hash" not in user.model_dump()
    assert service.token_codec.validate_token(service.authenticate("admin", "pw"), "admin") is True


def test_static_directory_add_user(user_directory: StaticUserDirectory) -> None:
    with pytest.raises(StudioError) as exc_info:
        user_directory.load_user("newcomer")
    assert exc_info.value.code == ErrorCode.NOT_FOUND

    user_directory.add_user(ADMIN.model_copy(update={"username": "newcomer"}))

    assert user_directory.load_user("newcomer").email == "ada@example.com"
