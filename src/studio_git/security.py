"""Session tokens, user directory, authentication chain and principal binding."""

from __future__ import annotations

import base64
import binascii
import contextvars
import hashlib
import hmac
import json
import logging
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Callable, Protocol, Union

from .config import StudioConfiguration
from .constants import (
    AUTHENTICATION_CHAIN_CONFIG,
    AUTHENTICATION_CHAIN_PROVIDER_ENABLED,
    AUTHENTICATION_CHAIN_PROVIDER_TYPE,
    AUTHENTICATION_CHAIN_PROVIDER_URL,
    AUTHENTICATION_CHAIN_PROVIDER_USERNAME_HEADER,
    DEFAULT_SESSION_TIMEOUT_SECONDS,
    SECURITY_SESSION_TIMEOUT,
    SECURITY_SESSION_TOKEN_SECRET,
    SECURITY_USERS,
)
from .errors import ErrorCode, StudioError
from .models import UserDetails

logger = logging.getLogger(__name__)

PASSWORD_HASH_ITERATIONS = 200_000

_current_principal: contextvars.ContextVar[UserDetails | None] = contextvars.ContextVar(
    "studio_current_principal",
    default=None,
)


def bind_principal(user: UserDetails | None) -> contextvars.Token:
    """Bind the authenticated principal to the current request context."""
    return _current_principal.set(user)


def reset_principal(token: contextvars.Token) -> None:
    _current_principal.reset(token)


def current_principal() -> UserDetails | None:
    return _current_principal.get()


@dataclass(frozen=True)
class SessionToken:
    username: str
    expires_at: int
    nonce: str


class SessionTokenCodec:
    """Mint and validate HMAC-signed tokens bound to a username and an expiry."""

    def __init__(self, secret: str, now_fn: Callable[[], float] | None = None) -> None:
        if not secret:
            raise ValueError("Session token secret must not be empty.")
        self._secret = secret.encode("utf-8")
        self._now_fn = now_fn or time.time

    def create_token(self, username: str, timeout_seconds: int) -> str:
        payload = {
            "exp": int(self._now_fn()) + int(timeout_seconds),
            "nonce": secrets.token_hex(8),
            "sub": username,
        }
        canonical = json.dumps(payload, ensure_ascii=True, sort_keys=True, separators=(",", ":"))
        encoded = base64.urlsafe_b64encode(canonical.encode("utf-8")).decode("ascii").rstrip("=")
        return f"{encoded}.{self._sign(encoded)}"

    def decode(self, token: str | None) -> SessionToken | None:
        """Return the token contents when the signature verifies, ignoring expiry."""
        if not token or token.count(".") != 1:
            return None
        encoded, signature = token.split(".", 1)
        if not hmac.compare_digest(signature, self._sign(encoded)):
            return None
        try:
            padded = encoded + "=" * (-len(encoded) % 4)
            payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return None
        if not isinstance(payload, dict):
            return None
        try:
            return SessionToken(
                username=str(payload["sub"]),
                expires_at=int(payload["exp"]),
                nonce=str(payload.get("nonce", "")),
            )
        except (KeyError, TypeError, ValueError):
            return None

    def validate_token(self, token: str | None, username: str) -> bool:
        decoded = self.decode(token)
        if decoded is None:
            return False
        if not hmac.compare_digest(decoded.username, username):
            return False
        return decoded.expires_at > int(self._now_fn())

    def _sign(self, encoded: str) -> str:
        return hmac.new(self._secret, encoded.encode("ascii"), hashlib.sha256).hexdigest()


def hash_password(password: str, salt: str | None = None) -> str:
    """Return a ``pbkdf2_sha256$iterations$salt$digest`` password hash."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"pbkdf2_sha256${PASSWORD_HASH_ITERATIONS}${salt}${digest}"


def verify_password(password: str, encoded: str | None) -> bool:
    if not encoded:
        return False
    try:
        algorithm, iterations, salt, digest = encoded.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    candidate = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        int(iterations),
    ).hex()
    return hmac.compare_digest(candidate, digest)


@dataclass(frozen=True)
class HeadersProvider:
    enabled: bool
    username_header: str


@dataclass(frozen=True)
class DatabaseProvider:
    enabled: bool


@dataclass(frozen=True)
class LdapProvider:
    enabled: bool
    url: str


AuthenticationProvider = Union[HeadersProvider, DatabaseProvider, LdapProvider]


def parse_authentication_chain(configuration: StudioConfiguration) -> tuple[AuthenticationProvider, ...]:
    """Build the provider chain from ``studio.security.authenticationChain``."""
    providers: list[AuthenticationProvider] = []
    for provider_config in configuration.get_sub_configs(AUTHENTICATION_CHAIN_CONFIG):
        provider_type = (provider_config.get_string(AUTHENTICATION_CHAIN_PROVIDER_TYPE) or "").upper()
        enabled = provider_config.get_bool(AUTHENTICATION_CHAIN_PROVIDER_ENABLED, default=False)
        if provider_type == "HEADERS":
            header = provider_config.get_string(AUTHENTICATION_CHAIN_PROVIDER_USERNAME_HEADER) or ""
            if not header.strip():
                logger.warning("HEADERS authentication provider without usernameHeader ignored.")
                continue
            providers.append(HeadersProvider(enabled=enabled, username_header=header.strip()))
        elif provider_type in {"DB", "DATABASE"}:
            providers.append(DatabaseProvider(enabled=enabled))
        elif provider_type == "LDAP":
            url = provider_config.get_string(AUTHENTICATION_CHAIN_PROVIDER_URL) or ""
            providers.append(LdapProvider(enabled=enabled, url=url))
        else:
            logger.warning("Unknown authentication provider type '%s' ignored.", provider_type)
    return tuple(providers)


class UserDirectory(Protocol):
    def load_user(self, username: str) -> UserDetails: ...


class SecurityProvider(Protocol):
    def get_current_user(self) -> str | None: ...

    def get_user_profile(self, username: str) -> Mapping[str, str]: ...


class StaticUserDirectory:
    """In-memory user directory, typically loaded from ``studio.security.users``."""

    def __init__(self, users: list[UserDetails] | None = None) -> None:
        self._users = {user.username: user for user in users or []}

    @classmethod
    def from_configuration(cls, configuration: StudioConfiguration) -> StaticUserDirectory:
        users: list[UserDetails] = []
        for entry in configuration.get_sub_configs(SECURITY_USERS):
            username = entry.get_string("username")
            if not username:
                continue
            users.append(
                UserDetails(
                    username=username,
                    first_name=entry.get_string("firstName", "") or "",
                    last_name=entry.get_string("lastName", "") or "",
                    email=entry.get_string("email", "") or "",
                    authorities=entry.get_string_list("authorities"),
                    password_hash=entry.get_string("passwordHash"),
                )
            )
        return cls(users)

    def add_user(self, user: UserDetails) -> None:
        self._users[user.username] = user

    def load_user(self, username: str) -> UserDetails:
        user = self._users.get(username)
        if user is None:
            raise StudioError(
                ErrorCode.NOT_FOUND,
                f"User '{username}' not found",
                "Check the username or register the user in the directory.",
                {"username": username},
            )
        return user


class SecurityService:
    """Authenticate users through the configured chain and expose the current principal."""

    def __init__(
        self,
        user_directory: UserDirectory,
        token_codec: SessionTokenCodec,
        providers: tuple[AuthenticationProvider, ...] = (),
        session_timeout: int = DEFAULT_SESSION_TIMEOUT_SECONDS,
    ) -> None:
        self.user_directory = user_directory
        self.token_codec = token_codec
        self.providers = providers
        self.session_timeout = session_timeout

    @classmethod
    def from_configuration(
        cls,
        configuration: StudioConfiguration,
        user_directory: UserDirectory | None = None,
        now_fn: Callable[[], float] | None = None,
    ) -> SecurityService:
        secret = configuration.get_string(SECURITY_SESSION_TOKEN_SECRET)
        if not secret:
            logger.warning(
                "%s is not configured; using a random per-process secret. "
                "Sessions will not survive restarts.",
                SECURITY_SESSION_TOKEN_SECRET,
            )
            secret = secrets.token_hex(32)
        return cls(
            user_directory=user_directory or StaticUserDirectory.from_configuration(configuration),
            token_codec=SessionTokenCodec(secret, now_fn=now_fn),
            providers=parse_authentication_chain(configuration),
            session_timeout=configuration.get_int(
                SECURITY_SESSION_TIMEOUT,
                DEFAULT_SESSION_TIMEOUT_SECONDS,
            ),
        )

    def authenticate(self, username: str, password: str) -> str:
        """Check ``password`` against the enabled credential providers and return a fresh session token.

        HEADERS providers are skipped: a password login never trusts a proxy assertion.
        """
        return self._run_chain(username, password, trust_headers=False)

    def authenticate_pre_authenticated(self, username: str, password: str) -> str:
        """Authenticate a username asserted by a fronting proxy header.

        Providers run in order; an enabled HEADERS provider accepts any known
        user. Only the request filter calls this, with a throwaway password.
        """
        return self._run_chain(username, password, trust_headers=True)

    def _run_chain(self, username: str, password: str, *, trust_headers: bool) -> str:
        user = self.user_directory.load_user(username)
        for provider in self.providers:
            if not provider.enabled:
                continue
            if isinstance(provider, HeadersProvider):
                if trust_headers:
                    return self.token_codec.create_token(user.username, self.session_timeout)
                continue
            if isinstance(provider, DatabaseProvider):
                if verify_password(password, user.password_hash):
                    return self.token_codec.create_token(user.username, self.session_timeout)
                continue
            if isinstance(provider, LdapProvider):
                logger.debug("LDAP provider %s is delegated to an external directory.", provider.url)
        raise StudioError(
            ErrorCode.AUTHENTICATION_FAILED,
            f"Authentication failed for user '{username}'",
            "Check credentials or the authentication chain configuration.",
        )

    def get_current_user(self) -> str | None:
        principal = current_principal()
        return principal.username if principal else None

    def get_user_profile(self, username: str) -> Mapping[str, str]:
        return self.user_directory.load_user(username).profile()
