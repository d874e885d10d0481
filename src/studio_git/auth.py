"""Per-request session token authentication with sliding-window renewal."""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import threading
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, TypeVar

from starlette.types import ASGIApp, Receive, Scope, Send

from .config import StudioConfiguration
from .constants import (
    DEFAULT_SESSION_TIMEOUT_SECONDS,
    RANDOM_PASSWORD_LENGTH,
    RENEW_TOKEN_API_PREFIX,
    SECURITY_IGNORE_RENEW_TOKEN_URLS,
    SECURITY_SESSION_TIMEOUT,
    SESSION_TOKEN_ATTRIBUTE,
    SESSION_USERNAME_ATTRIBUTE,
)
from .errors import StudioError
from .models import UserDetails
from .security import (
    HeadersProvider,
    SecurityService,
    SessionTokenCodec,
    UserDirectory,
    bind_principal,
    reset_principal,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

PASSWORD_ALPHABET = string.ascii_letters + string.digits


class FairLock:
    """Mutual exclusion lock granting waiters in arrival order."""

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._next_ticket = 0
        self._now_serving = 0

    def acquire(self) -> None:
        with self._condition:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._now_serving:
                self._condition.wait()

    def release(self) -> None:
        with self._condition:
            self._now_serving += 1
            self._condition.notify_all()

    def __enter__(self) -> FairLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


# Shared by every filter that is not given its own lock.
PROCESS_AUTH_LOCK = FairLock()


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    AUTHENTICATED_RENEWED = "authenticated_renewed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthOutcome:
    state: AuthState
    principal: UserDetails | None = None
    token: str | None = None
    reason: str = ""


@dataclass
class AuthRequest:
    """Transport-neutral view of an incoming request."""

    path: str
    session: MutableMapping[str, Any]
    headers: Mapping[str, str] = field(default_factory=dict)
    context_path: str = ""

    def header(self, name: str) -> str:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return ""

    def relative_path(self) -> str:
        if self.context_path and self.path.startswith(self.context_path):
            return self.path[len(self.context_path):] or "/"
        return self.path


def random_password(length: int = RANDOM_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


class AuthenticationFilter:
    """Resolve the request principal from the session, renewing tokens under ``/api/1``.

    All requests are serialized through one lock so that concurrent renewals
    of the same session cannot mint competing tokens. The filter never fails
    a request: any error is logged and the request proceeds anonymously.
    """

    def __init__(
        self,
        configuration: StudioConfiguration,
        user_directory: UserDirectory,
        security_service: SecurityService,
        token_codec: SessionTokenCodec,
        lock: FairLock | threading.Lock | None = None,
    ) -> None:
        self._user_directory = user_directory
        self._security_service = security_service
        self._token_codec = token_codec
        self._lock = lock or PROCESS_AUTH_LOCK
        self._session_timeout = configuration.get_int(
            SECURITY_SESSION_TIMEOUT,
            DEFAULT_SESSION_TIMEOUT_SECONDS,
        )
        self._ignore_renew_urls = frozenset(
            configuration.get_string_list(SECURITY_IGNORE_RENEW_TOKEN_URLS)
        )

    @classmethod
    def from_security_service(
        cls,
        configuration: StudioConfiguration,
        security_service: SecurityService,
        lock: FairLock | threading.Lock | None = None,
    ) -> AuthenticationFilter:
        return cls(
            configuration=configuration,
            user_directory=security_service.user_directory,
            security_service=security_service,
            token_codec=security_service.token_codec,
            lock=lock,
        )

    def process(self, request: AuthRequest) -> AuthOutcome:
        with self._lock:
            try:
                return self._authenticate(request)
            except Exception:  # noqa: BLE001
                logger.exception("Authentication filter failed for %s; continuing anonymously.", request.path)
                return AuthOutcome(AuthState.ANONYMOUS, reason="authentication error")

    def do_filter(self, request: AuthRequest, chain: Callable[[], T]) -> T:
        """Authenticate, then run ``chain`` with the resolved principal bound."""
        outcome = self.process(request)
        binding = bind_principal(outcome.principal)
        try:
            return chain()
        finally:
            reset_principal(binding)

    def _authenticate(self, request: AuthRequest) -> AuthOutcome:
        username = request.session.get(SESSION_USERNAME_ATTRIBUTE)
        token = request.session.get(SESSION_TOKEN_ATTRIBUTE)

        if username:
            user = self._user_directory.load_user(str(username))
            if not self._token_codec.validate_token(token, user.username):
                logger.debug("Rejected session token for user %s", user.username)
                request.session.pop(SESSION_TOKEN_ATTRIBUTE, None)
                request.session.clear()
                return AuthOutcome(AuthState.REJECTED, reason="invalid or expired session token")
            if self._should_renew(request):
                renewed = self._token_codec.create_token(user.username, self._session_timeout)
                request.session[SESSION_TOKEN_ATTRIBUTE] = renewed
                return AuthOutcome(AuthState.AUTHENTICATED_RENEWED, principal=user, token=renewed)
            return AuthOutcome(AuthState.AUTHENTICATED, principal=user, token=token)

        for provider in self._security_service.providers:
            if not isinstance(provider, HeadersProvider) or not provider.enabled:
                continue
            header_username = request.header(provider.username_header).strip()
            if not header_username:
                continue
            try:
                new_token = self._security_service.authenticate_pre_authenticated(
                    header_username,
                    random_password(),
                )
                user = self._user_directory.load_user(header_username)
            except StudioError as exc:
                logger.info("Header authentication via %s failed: %s", provider.username_header, exc)
                continue
            request.session[SESSION_USERNAME_ATTRIBUTE] = user.username
            request.session[SESSION_TOKEN_ATTRIBUTE] = new_token
            return AuthOutcome(AuthState.AUTHENTICATED, principal=user, token=new_token)

        return AuthOutcome(AuthState.ANONYMOUS)

    def _should_renew(self, request: AuthRequest) -> bool:
        uri = request.relative_path()
        if uri != RENEW_TOKEN_API_PREFIX and not uri.startswith(RENEW_TOKEN_API_PREFIX + "/"):
            return False
        return uri not in self._ignore_renew_urls


class SessionTokenMiddleware:
    """ASGI adapter running the filter against the Starlette session.

    Must be installed inside ``SessionMiddleware`` so that ``scope["session"]``
    is populated; the resolved principal is bound for the downstream app.
    """

    def __init__(self, app: ASGIApp, auth_filter: AuthenticationFilter) -> None:
        self._app = app
        self._auth_filter = auth_filter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self._app(scope, receive, send)
            return

        session = scope.get("session")
        if session is None:
            logger.warning("No session in request scope; SessionMiddleware must wrap SessionTokenMiddleware.")
            session = {}

        headers = {
            key.decode("latin-1"): value.decode("latin-1")
            for key, value in scope.get("headers", [])
        }
        request = AuthRequest(
            path=scope.get("path", "/"),
            session=session,
            headers=headers,
            context_path=scope.get("root_path", ""),
        )
        outcome = await asyncio.to_thread(self._auth_filter.process, request)
        binding = bind_principal(outcome.principal)
        try:
            await self._app(scope, receive, send)
        finally:
            reset_principal(binding)
