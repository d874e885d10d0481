"""MCP server entrypoint and tool definitions for the studio content repository."""

from __future__ import annotations

import argparse
import base64
import json
import logging
import secrets
import time
import uuid
from contextvars import Token
from dataclasses import dataclass
from typing import Annotated, Any, Callable

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field, ValidationError

from .auth import AuthenticationFilter, SessionTokenMiddleware
from .config import StudioConfiguration
from .constants import SECURITY_SESSION_TOKEN_SECRET
from .engine import ContentRepository
from .errors import ErrorCode, StudioError
from .models import (
    AddRemoteRequest,
    ContentEncoding,
    ContentRequest,
    CopyContentRequest,
    CreateFolderRequest,
    CreateSiteRequest,
    RemoteRequest,
    RenameFolderRequest,
    RevertRequest,
    SiteRequest,
    VersionRequest,
    WriteContentRequest,
)
from .runtime import get_runtime_defaults, validate_streamable_http_binding
from .security import SecurityService, bind_principal, current_principal, reset_principal

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "studio_session"

mcp = FastMCP(
    name="studio-git",
    instructions=(
        "Git-backed multi-site content repository. Use studio_create_site to create a site "
        "from a blueprint, studio_write_content and studio_get_content to save and read "
        "files, studio_get_history, studio_get_version and studio_revert_content for "
        "versions, and the folder, copy, move and remote tools to manage content."
    ),
    json_response=True,
    stateless_http=True,
)

READ_ONLY_TOOL_ANNOTATIONS = ToolAnnotations(
    readOnlyHint=True,
    idempotentHint=True,
    destructiveHint=False,
    openWorldHint=False,
)

WRITE_TOOL_ANNOTATIONS = ToolAnnotations(
    readOnlyHint=False,
    idempotentHint=False,
    destructiveHint=False,
    openWorldHint=False,
)

DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS = ToolAnnotations(
    readOnlyHint=False,
    idempotentHint=False,
    destructiveHint=True,
    openWorldHint=False,
)

REMOTE_TOOL_ANNOTATIONS = ToolAnnotations(
    readOnlyHint=False,
    idempotentHint=False,
    destructiveHint=False,
    openWorldHint=True,
)


@dataclass
class ServerServices:
    configuration: StudioConfiguration
    security_service: SecurityService
    content: ContentRepository
    default_user: str = ""
    transport: str = "stdio"


_services: ServerServices | None = None


def configure_services(
    configuration: StudioConfiguration,
    *,
    security_service: SecurityService | None = None,
    content: ContentRepository | None = None,
    default_user: str = "",
    transport: str = "stdio",
) -> ServerServices:
    """Install the services used by every tool call."""
    global _services
    security_service = security_service or SecurityService.from_configuration(configuration)
    content = content or ContentRepository.from_configuration(configuration, security_service)
    if _services is not None and _services.content is not content:
        _services.content.close()
    _services = ServerServices(
        configuration=configuration,
        security_service=security_service,
        content=content,
        default_user=default_user,
        transport=transport,
    )
    return _services


def get_services() -> ServerServices:
    if _services is None:
        defaults = get_runtime_defaults()
        return configure_services(
            StudioConfiguration.load(defaults.config_location),
            default_user=defaults.user,
            transport=defaults.transport,
        )
    return _services


def _register_tool(annotations: ToolAnnotations):
    def decorator(func):
        return mcp.tool(annotations=annotations)(func)

    return decorator


def _error_payload_from_exception(exc: Exception) -> dict[str, Any]:
    """Convert internal exceptions into stable MCP error payloads."""
    if isinstance(exc, StudioError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check field constraints and request schema.",
            "details": {"errors": json.loads(exc.json(include_url=False))},
        }
    if isinstance(exc, ValueError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": str(exc),
            "suggestion": "Check the request values and retry.",
            "details": {},
        }
    logger.exception("Unhandled server exception", exc_info=exc)
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Check server logs and retry the operation.",
        "details": {},
    }


def _build_correlation_id() -> str:
    """Generate short operation correlation IDs for diagnostics."""
    return uuid.uuid4().hex[:12]


def _log_tool_phase(
    *,
    correlation_id: str,
    tool_name: str,
    phase: str,
    status: str,
    elapsed_seconds: float,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit structured phase-level diagnostics for tool execution."""
    payload: dict[str, Any] = {
        "event_type": "mcp_tool_phase",
        "correlation_id": correlation_id,
        "tool_name": tool_name,
        "phase": phase,
        "status": status,
        "elapsed_ms": round(elapsed_seconds * 1000, 3),
    }
    if details:
        payload["details"] = details
    logger.info("mcp_tool_phase %s", json.dumps(payload, ensure_ascii=True, sort_keys=True))


def _bind_default_principal(services: ServerServices) -> Token | None:
    """Bind the configured default user to stdio calls that carry no principal.

    HTTP requests keep whatever the authentication filter resolved, anonymous included.
    """
    if services.transport != "stdio" or not services.default_user:
        return None
    if current_principal() is not None:
        return None
    user = services.security_service.user_directory.load_user(services.default_user)
    return bind_principal(user)


def _run_tool(
    tool_name: str,
    request_payload: dict[str, Any],
    operation: Callable[[ServerServices], dict[str, Any]],
) -> dict[str, Any]:
    """Execute a tool operation, mapping failures to error payloads."""
    total_start = time.perf_counter()
    correlation_id = _build_correlation_id()
    binding: Token | None = None
    operation_start = time.perf_counter()
    try:
        services = get_services()
        binding = _bind_default_principal(services)
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="validation",
            status="ok",
            elapsed_seconds=time.perf_counter() - total_start,
            details={
                "fields": sorted(request_payload),
                "site_id": request_payload.get("site_id"),
                "principal_bound": current_principal() is not None,
            },
        )
        operation_start = time.perf_counter()
        response_payload = dict(operation(services))
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="operation_execution",
            status="ok",
            elapsed_seconds=time.perf_counter() - operation_start,
        )
        json.dumps(response_payload, ensure_ascii=True, sort_keys=True)
        response_payload["correlation_id"] = correlation_id
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="total",
            status="ok",
            elapsed_seconds=time.perf_counter() - total_start,
        )
        return response_payload
    except Exception as exc:  # noqa: BLE001
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="operation_execution",
            status="error",
            elapsed_seconds=time.perf_counter() - operation_start,
            details={"exception": exc.__class__.__name__},
        )
        error_payload = _error_payload_from_exception(exc)
        error_payload["correlation_id"] = correlation_id
        _log_tool_phase(
            correlation_id=correlation_id,
            tool_name=tool_name,
            phase="total",
            status="error",
            elapsed_seconds=time.perf_counter() - total_start,
            details={"error_code": error_payload.get("error_code")},
        )
        return error_payload
    finally:
        if binding is not None:
            reset_principal(binding)


def _success(message: str, **fields: Any) -> dict[str, Any]:
    return {"status": "success", "message": message, **fields}


def _failure(message: str, **details: Any) -> dict[str, Any]:
    """Payload for operations whose contract reports I/O and Git failures as False."""
    return {
        "status": "error",
        "error_code": ErrorCode.IO_FAILURE.value,
        "message": message,
        "suggestion": "Check server logs for the underlying I/O or Git error and retry.",
        "details": details,
    }


def _encode_content(content: bytes, encoding: ContentEncoding) -> str:
    if encoding == ContentEncoding.BASE64:
        return base64.b64encode(content).decode("ascii")
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise StudioError(
            ErrorCode.INVALID_INPUT,
            "Content is not valid UTF-8",
            "Request the content with encoding='base64'.",
        ) from exc


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def studio_whoami() -> dict[str, Any]:
    """Return the principal bound to the current request."""

    def _operation(services: ServerServices) -> dict[str, Any]:
        principal = current_principal()
        if principal is None:
            return _success("No authenticated user.", authenticated=False)
        return _success(
            f"Authenticated as {principal.username}.",
            authenticated=True,
            user=principal.model_dump(mode="json"),
        )

    return _run_tool("studio_whoami", request_payload={}, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def studio_list_blueprints() -> dict[str, Any]:
    """List the blueprints available in the global repository."""

    def _operation(services: ServerServices) -> dict[str, Any]:
        blueprints = services.content.list_blueprints()
        return _success(f"{len(blueprints)} blueprint(s) available.", blueprints=blueprints)

    return _run_tool("studio_list_blueprints", request_payload={}, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_create_site(
    site_id: Annotated[str, Field(description="Identifier of the new site")],
    blueprint: Annotated[str, Field(description="Blueprint directory name in the global repository")],
) -> dict[str, Any]:
    """Create a site's sandbox and published repositories from a blueprint."""
    request_payload = {"site_id": site_id, "blueprint": blueprint}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = CreateSiteRequest(site_id=site_id, blueprint=blueprint)
        if not services.content.create_site(request.site_id, request.blueprint):
            return _failure(f"Failed to create site '{request.site_id}'.", site_id=request.site_id)
        return _success(f"Created site '{request.site_id}'.", site_id=request.site_id)

    return _run_tool("studio_create_site", request_payload=request_payload, operation=_operation)


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def studio_delete_site(
    site_id: Annotated[str, Field(description="Identifier of the site to delete")],
) -> dict[str, Any]:
    """Delete a site and both of its repositories."""
    request_payload = {"site_id": site_id}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = SiteRequest(site_id=site_id)
        if not services.content.delete_site(request.site_id):
            return _failure(f"Failed to delete site '{request.site_id}'.", site_id=request.site_id)
        return _success(f"Deleted site '{request.site_id}'.", site_id=request.site_id)

    return _run_tool("studio_delete_site", request_payload=request_payload, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_write_content(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Logical content path, e.g. /site/website/index.xml")],
    content: Annotated[str, Field(description="File content, UTF-8 text or base64")],
    encoding: Annotated[str, Field(description="Content encoding: utf-8 or base64")] = "utf-8",
) -> dict[str, Any]:
    """Write a file to the site's sandbox and commit it."""
    request_payload = {"site_id": site_id, "path": path, "encoding": encoding}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = WriteContentRequest(site_id=site_id, path=path, content=content, encoding=encoding)
        if not services.content.write_content(request.site_id, request.path, request.content_bytes()):
            return _failure(f"Failed to write {request.path}.", site_id=request.site_id, path=request.path)
        history = services.content.get_content_item_version_history(request.site_id, request.path)
        return _success(
            f"Saved {request.path}.",
            site_id=request.site_id,
            path=request.path,
            commit_id=history[0].commit_id if history else "",
        )

    return _run_tool("studio_write_content", request_payload=request_payload, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def studio_get_content(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Logical content path")],
    encoding: Annotated[str, Field(description="Response encoding: utf-8 or base64")] = "utf-8",
) -> dict[str, Any]:
    """Read the committed bytes of a file."""
    request_payload = {"site_id": site_id, "path": path, "encoding": encoding}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = ContentRequest(site_id=site_id, path=path)
        data = services.content.get_content(request.site_id, request.path)
        return _success(
            f"Read {request.path}.",
            site_id=request.site_id,
            path=request.path,
            size=len(data),
            encoding=ContentEncoding(encoding).value,
            content=_encode_content(data, ContentEncoding(encoding)),
        )

    return _run_tool("studio_get_content", request_payload=request_payload, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def studio_content_exists(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Logical content path")],
) -> dict[str, Any]:
    """Check whether a file or folder is committed at a path."""
    request_payload = {"site_id": site_id, "path": path}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = ContentRequest(site_id=site_id, path=path)
        exists = services.content.content_exists(request.site_id, request.path)
        return _success(
            f"{request.path} {'exists' if exists else 'does not exist'}.",
            site_id=request.site_id,
            path=request.path,
            exists=exists,
        )

    return _run_tool("studio_content_exists", request_payload=request_payload, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_create_folder(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Parent folder path")],
    name: Annotated[str, Field(description="New folder name")],
) -> dict[str, Any]:
    """Create a folder, committed through a placeholder file."""
    request_payload = {"site_id": site_id, "path": path, "name": name}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = CreateFolderRequest(site_id=site_id, path=path, name=name)
        if not services.content.create_folder(request.site_id, request.path, request.name):
            return _failure(f"Failed to create folder {request.name}.", site_id=request.site_id)
        return _success(f"Created folder {request.name} in {request.path}.", site_id=request.site_id)

    return _run_tool("studio_create_folder", request_payload=request_payload, operation=_operation)


@_register_tool(DESTRUCTIVE_WRITE_TOOL_ANNOTATIONS)
def studio_delete_content(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Logical path of the file or folder to delete")],
) -> dict[str, Any]:
    """Delete a file or folder and commit the removal."""
    request_payload = {"site_id": site_id, "path": path}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = ContentRequest(site_id=site_id, path=path)
        if not services.content.delete_content(request.site_id, request.path):
            return _failure(f"Failed to delete {request.path}.", site_id=request.site_id)
        return _success(f"Deleted {request.path}.", site_id=request.site_id, path=request.path)

    return _run_tool("studio_delete_content", request_payload=request_payload, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_copy_content(
    site_id: Annotated[str, Field(description="Site identifier")],
    source: Annotated[str, Field(description="Path to copy from")],
    target: Annotated[str, Field(description="Path or existing folder to copy to")],
) -> dict[str, Any]:
    """Copy a file or folder; returns the final path."""
    request_payload = {"site_id": site_id, "source": source, "target": target}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = CopyContentRequest(site_id=site_id, source=source, target=target)
        final_path = services.content.copy_content(request.site_id, request.source, request.target)
        if final_path is None:
            return _failure(f"Failed to copy {request.source}.", site_id=request.site_id)
        return _success(f"Copied {request.source} to {final_path}.", site_id=request.site_id, path=final_path)

    return _run_tool("studio_copy_content", request_payload=request_payload, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_move_content(
    site_id: Annotated[str, Field(description="Site identifier")],
    source: Annotated[str, Field(description="Path to move from")],
    target: Annotated[str, Field(description="Path or existing folder to move to")],
) -> dict[str, Any]:
    """Move a file or folder; returns the final path."""
    request_payload = {"site_id": site_id, "source": source, "target": target}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = CopyContentRequest(site_id=site_id, source=source, target=target)
        final_path = services.content.move_content(request.site_id, request.source, request.target)
        if final_path is None:
            return _failure(f"Failed to move {request.source}.", site_id=request.site_id)
        return _success(f"Moved {request.source} to {final_path}.", site_id=request.site_id, path=final_path)

    return _run_tool("studio_move_content", request_payload=request_payload, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_rename_folder(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Folder to rename")],
    name: Annotated[str, Field(description="New folder name")],
) -> dict[str, Any]:
    """Rename a folder in a single commit."""
    request_payload = {"site_id": site_id, "path": path, "name": name}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = RenameFolderRequest(site_id=site_id, path=path, name=name)
        if not services.content.rename_folder(request.site_id, request.path, request.name):
            return _failure(f"Failed to rename {request.path}.", site_id=request.site_id)
        return _success(f"Renamed {request.path} to {request.name}.", site_id=request.site_id)

    return _run_tool("studio_rename_folder", request_payload=request_payload, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def studio_get_history(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Logical content path")],
    limit: Annotated[int, Field(ge=0, description="Maximum entries (0 keeps all)")] = 0,
) -> dict[str, Any]:
    """List the commits that touched a path, newest first."""
    request_payload = {"site_id": site_id, "path": path, "limit": limit}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = ContentRequest(site_id=site_id, path=path)
        history = services.content.get_content_item_version_history(request.site_id, request.path)
        if limit:
            history = history[:limit]
        return _success(
            f"{len(history)} version(s) of {request.path}.",
            site_id=request.site_id,
            path=request.path,
            versions=[descriptor.model_dump(mode="json") for descriptor in history],
        )

    return _run_tool("studio_get_history", request_payload=request_payload, operation=_operation)


@_register_tool(READ_ONLY_TOOL_ANNOTATIONS)
def studio_get_version(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Logical content path")],
    version: Annotated[str, Field(description="Commit id from the version history")],
    encoding: Annotated[str, Field(description="Response encoding: utf-8 or base64")] = "utf-8",
) -> dict[str, Any]:
    """Read a file as it was at a given version."""
    request_payload = {"site_id": site_id, "path": path, "version": version, "encoding": encoding}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = VersionRequest(site_id=site_id, path=path, version=version)
        data = services.content.get_content_version(request.site_id, request.path, request.version)
        return _success(
            f"Read {request.path} at {request.version}.",
            site_id=request.site_id,
            path=request.path,
            version=request.version,
            encoding=ContentEncoding(encoding).value,
            content=_encode_content(data, ContentEncoding(encoding)),
        )

    return _run_tool("studio_get_version", request_payload=request_payload, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_revert_content(
    site_id: Annotated[str, Field(description="Site identifier")],
    path: Annotated[str, Field(description="Logical content path")],
    version: Annotated[str, Field(description="Commit id to restore")],
    major: Annotated[bool, Field(description="Mark the revert as a major version")] = False,
    comment: Annotated[str, Field(description="Commit message for the revert")] = "",
) -> dict[str, Any]:
    """Restore a file to an earlier version in a new commit."""
    request_payload = {"site_id": site_id, "path": path, "version": version, "major": major}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = RevertRequest(site_id=site_id, path=path, version=version, major=major, comment=comment)
        commit_id = services.content.revert_content_item(
            request.site_id,
            request.path,
            request.version,
            request.major,
            request.comment,
        )
        if commit_id is None:
            return _failure(f"Failed to revert {request.path}.", site_id=request.site_id)
        return _success(
            f"Reverted {request.path} to {request.version}.",
            site_id=request.site_id,
            path=request.path,
            commit_id=commit_id,
        )

    return _run_tool("studio_revert_content", request_payload=request_payload, operation=_operation)


@_register_tool(WRITE_TOOL_ANNOTATIONS)
def studio_add_remote(
    site_id: Annotated[str, Field(description="Site identifier")],
    remote_name: Annotated[str, Field(description="Remote name")],
    remote_url: Annotated[str, Field(description="Remote repository URL")],
) -> dict[str, Any]:
    """Register a Git remote on the site's sandbox."""
    request_payload = {"site_id": site_id, "remote_name": remote_name}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = AddRemoteRequest(site_id=site_id, remote_name=remote_name, remote_url=remote_url)
        if not services.content.add_remote(request.site_id, request.remote_name, request.remote_url):
            return _failure(f"Failed to add remote {request.remote_name}.", site_id=request.site_id)
        return _success(f"Added remote {request.remote_name}.", site_id=request.site_id)

    return _run_tool("studio_add_remote", request_payload=request_payload, operation=_operation)


@_register_tool(REMOTE_TOOL_ANNOTATIONS)
def studio_push(
    site_id: Annotated[str, Field(description="Site identifier")],
    remote_name: Annotated[str, Field(description="Remote name")] = "origin",
    remote_branch: Annotated[str, Field(description="Remote branch")] = "master",
) -> dict[str, Any]:
    """Push the site's sandbox to a remote branch."""
    request_payload = {"site_id": site_id, "remote_name": remote_name, "remote_branch": remote_branch}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = RemoteRequest(site_id=site_id, remote_name=remote_name, remote_branch=remote_branch)
        if not services.content.push_to_remote(request.site_id, request.remote_name, request.remote_branch):
            return _failure(f"Failed to push to {request.remote_name}.", site_id=request.site_id)
        return _success(
            f"Pushed to {request.remote_name}/{request.remote_branch}.",
            site_id=request.site_id,
        )

    return _run_tool("studio_push", request_payload=request_payload, operation=_operation)


@_register_tool(REMOTE_TOOL_ANNOTATIONS)
def studio_pull(
    site_id: Annotated[str, Field(description="Site identifier")],
    remote_name: Annotated[str, Field(description="Remote name")] = "origin",
    remote_branch: Annotated[str, Field(description="Remote branch")] = "master",
) -> dict[str, Any]:
    """Pull a remote branch into the site's sandbox."""
    request_payload = {"site_id": site_id, "remote_name": remote_name, "remote_branch": remote_branch}

    def _operation(services: ServerServices) -> dict[str, Any]:
        request = RemoteRequest(site_id=site_id, remote_name=remote_name, remote_branch=remote_branch)
        if not services.content.pull_from_remote(request.site_id, request.remote_name, request.remote_branch):
            return _failure(f"Failed to pull from {request.remote_name}.", site_id=request.site_id)
        return _success(
            f"Pulled {request.remote_name}/{request.remote_branch}.",
            site_id=request.site_id,
        )

    return _run_tool("studio_pull", request_payload=request_payload, operation=_operation)


def build_http_app(services: ServerServices):
    """Wrap the streamable HTTP app with session cookies and token authentication."""
    from starlette.middleware.sessions import SessionMiddleware

    services.transport = "streamable-http"
    auth_filter = AuthenticationFilter.from_security_service(
        services.configuration,
        services.security_service,
    )
    secret = services.configuration.get_string(SECURITY_SESSION_TOKEN_SECRET) or secrets.token_hex(32)
    return SessionMiddleware(
        SessionTokenMiddleware(mcp.streamable_http_app(), auth_filter),
        secret_key=secret,
        session_cookie=SESSION_COOKIE_NAME,
    )


def _run_streamable_http(services: ServerServices) -> None:
    import uvicorn

    config = uvicorn.Config(
        build_http_app(services),
        host=mcp.settings.host,
        port=mcp.settings.port,
        log_level=mcp.settings.log_level.lower(),
    )
    uvicorn.Server(config).run()


def main() -> None:
    """Run the studio MCP server in stdio or streamable HTTP mode."""
    parser = argparse.ArgumentParser(description="Studio Git content repository MCP server")
    try:
        defaults = get_runtime_defaults()
    except ValueError as exc:
        parser.error(str(exc))
    parser.add_argument(
        "--transport",
        choices=["stdio", "streamable-http"],
        default=defaults.transport,
        help="Server transport mode (default: stdio).",
    )
    parser.add_argument("--host", default=defaults.host, help="Host for streamable HTTP transport.")
    parser.add_argument("--port", type=int, default=defaults.port, help="Port for streamable HTTP transport.")
    parser.add_argument(
        "--allow-public-http",
        action=argparse.BooleanOptionalAction,
        default=defaults.allow_public_http,
        help="Allow non-loopback streamable-http host binding.",
    )
    parser.add_argument(
        "--config",
        default=defaults.config_location,
        help="Studio configuration YAML (absolute or relative to the bundled resources).",
    )
    parser.add_argument(
        "--user",
        default=defaults.user,
        help="Username bound to stdio tool calls; ignored for streamable HTTP.",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate runtime settings and configuration, then exit.",
    )
    args = parser.parse_args()

    try:
        validate_streamable_http_binding(
            transport=args.transport,
            host=args.host,
            allow_public_http=args.allow_public_http,
        )
        configuration = StudioConfiguration.load(args.config)
        services = configure_services(
            configuration,
            default_user=str(args.user).strip(),
            transport=args.transport,
        )
        if services.default_user and args.transport != "stdio":
            logger.warning(
                "Ignoring default user '%s' for %s; requests authenticate through the session filter.",
                services.default_user,
                args.transport,
            )
        elif services.default_user:
            services.security_service.user_directory.load_user(services.default_user)
    except (ValueError, StudioError) as exc:
        parser.error(str(exc))

    mcp.settings.host = args.host
    mcp.settings.port = int(args.port)

    if args.check_config:
        print("Configuration is valid.")
        return

    if args.transport == "stdio":
        mcp.run()
        return

    _run_streamable_http(services)


if __name__ == "__main__":
    main()
