"""Resolve the current request's user into a commit author identity."""

from __future__ import annotations

from .errors import ErrorCode, StudioError
from .models import AuthorIdentity
from .security import SecurityProvider


class IdentityProvider:
    """Adapter from the security collaborator to Git author identities."""

    def __init__(self, security_provider: SecurityProvider) -> None:
        self._security_provider = security_provider

    def require_current_user(self) -> str:
        """Return the bound username; raise NO_CURRENT_USER when nobody is authenticated."""
        username = self._security_provider.get_current_user()
        if not username:
            raise StudioError(
                ErrorCode.NO_CURRENT_USER,
                "No authenticated user is bound to the current request",
                "Authenticate before performing repository writes.",
            )
        return username

    def current_author(self) -> AuthorIdentity:
        username = self.require_current_user()
        profile = self._security_provider.get_user_profile(username)
        first_name = str(profile.get("firstName") or "")
        last_name = str(profile.get("lastName") or "")
        return AuthorIdentity(
            name=f"{first_name} {last_name}",
            email=str(profile.get("email") or ""),
        )
