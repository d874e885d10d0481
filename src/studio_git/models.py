"""Value types and pydantic models for repository operations and tool inputs."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from enum import Enum

from git import Actor
from pydantic import BaseModel, Field, field_validator

SITE_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,99}$"


class RepositoryKind(str, Enum):
    SANDBOX = "sandbox"
    PUBLISHED = "published"
    GLOBAL = "global"


class ContentEncoding(str, Enum):
    UTF8 = "utf-8"
    BASE64 = "base64"


@dataclass(frozen=True)
class AuthorIdentity:
    """Commit author resolved from the current principal."""

    name: str
    email: str

    def to_actor(self) -> Actor:
        return Actor(self.name, self.email)

    def git_environment(self) -> dict[str, str]:
        """Environment variables pinning both author and committer for git commands."""
        return {
            "GIT_AUTHOR_NAME": self.name,
            "GIT_AUTHOR_EMAIL": self.email,
            "GIT_COMMITTER_NAME": self.name,
            "GIT_COMMITTER_EMAIL": self.email,
        }


class CommitDescriptor(BaseModel):
    commit_id: str
    author_name: str = ""
    author_email: str = ""
    timestamp: str = ""
    message: str = ""
    parent_ids: list[str] = Field(default_factory=list)
    major: bool = False


class UserDetails(BaseModel):
    username: str = Field(..., min_length=1)
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    authorities: list[str] = Field(default_factory=list)
    password_hash: str | None = Field(default=None, exclude=True, repr=False)

    def profile(self) -> dict[str, str]:
        return {
            "username": self.username,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
        }


class SiteRequest(BaseModel):
    site_id: str = Field(..., pattern=SITE_ID_PATTERN)


class CreateSiteRequest(SiteRequest):
    blueprint: str = Field(..., min_length=1, max_length=200)

    @field_validator("blueprint")
    @classmethod
    def _blueprint_is_single_segment(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped or "/" in stripped or stripped in {".", ".."}:
            raise ValueError("blueprint must be a single directory name")
        return stripped


class ContentRequest(SiteRequest):
    path: str = Field(..., min_length=1, max_length=4096)


class WriteContentRequest(ContentRequest):
    content: str = ""
    encoding: ContentEncoding = ContentEncoding.UTF8

    def content_bytes(self) -> bytes:
        if self.encoding == ContentEncoding.BASE64:
            try:
                return base64.b64decode(self.content, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError("content is not valid base64") from exc
        return self.content.encode("utf-8")


class CreateFolderRequest(ContentRequest):
    name: str = Field(..., min_length=1, max_length=255)


class RenameFolderRequest(ContentRequest):
    name: str = Field(..., min_length=1, max_length=255)


class CopyContentRequest(SiteRequest):
    source: str = Field(..., min_length=1, max_length=4096)
    target: str = Field(..., min_length=1, max_length=4096)


class VersionRequest(ContentRequest):
    version: str = Field(..., min_length=4, max_length=64)


class RevertRequest(VersionRequest):
    major: bool = False
    comment: str = Field(default="", max_length=500)


class RemoteRequest(SiteRequest):
    remote_name: str = Field(default="origin", min_length=1, max_length=100)
    remote_branch: str = Field(default="master", min_length=1, max_length=200)


class AddRemoteRequest(SiteRequest):
    remote_name: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    remote_url: str = Field(..., min_length=1, max_length=2048)
