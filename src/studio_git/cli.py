"""Command line interface for the studio content repository with parity to MCP tools."""

from __future__ import annotations

import argparse
import base64
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import StudioConfiguration
from .constants import DEFAULT_CONFIG_LOCATION
from .engine import ContentRepository
from .errors import ErrorCode, StudioError
from .file_manager import FileManager
from .models import (
    AddRemoteRequest,
    ContentRequest,
    CopyContentRequest,
    CreateFolderRequest,
    CreateSiteRequest,
    RemoteRequest,
    RenameFolderRequest,
    RevertRequest,
    SiteRequest,
    VersionRequest,
)
from .runtime import parse_csv_values
from .security import SecurityService, bind_principal, reset_principal
from .upgrade import AddSiteUuidOperation, MappingSiteFeed, UpgradeManager


def _print_payload(payload: dict[str, Any], as_json: bool) -> None:
    if as_json:
        print(json.dumps(payload, indent=2))
        return

    status = payload.get("status", "unknown").upper()
    message = payload.get("message", "")
    print(f"[{status}] {message}")

    if payload.get("status") == "error":
        error_code = payload.get("error_code", "")
        suggestion = payload.get("suggestion", "")
        if error_code:
            print(f"error_code: {error_code}")
        if suggestion:
            print(f"suggestion: {suggestion}")
        return

    for key in ("site_id", "path", "commit_id", "exists", "name", "token"):
        if key in payload and payload[key] not in ("", None):
            print(f"{key}: {payload[key]}")

    if "blueprints" in payload:
        for blueprint in payload["blueprints"]:
            print(f"- {blueprint}")

    if "versions" in payload:
        for version in payload["versions"]:
            marker = " (major)" if version.get("major") else ""
            print(
                f"- {version.get('commit_id', '')[:12]} [{version.get('timestamp', '')}] "
                f"{version.get('author_name', '')}: {_summary(version.get('message', ''))}{marker}"
            )

    if "results" in payload:
        for site_id, result in payload["results"].items():
            print(f"- {site_id}: {result}")


def _summary(message: str) -> str:
    lines = (message or "").splitlines()
    return lines[0] if lines else ""


def _error_payload(exc: Exception) -> dict[str, Any]:
    if isinstance(exc, StudioError):
        return exc.to_payload()
    if isinstance(exc, ValidationError):
        return {
            "status": "error",
            "error_code": ErrorCode.INVALID_INPUT.value,
            "message": "Input validation failed",
            "suggestion": "Check command arguments and constraints.",
            "details": {"errors": exc.errors(include_context=False, include_input=False, include_url=False)},
        }
    return {
        "status": "error",
        "error_code": ErrorCode.INTERNAL_ERROR.value,
        "message": str(exc),
        "suggestion": "Retry with --json for diagnostics and inspect logs.",
        "details": {},
    }


def _failure(message: str) -> dict[str, Any]:
    return {
        "status": "error",
        "error_code": ErrorCode.IO_FAILURE.value,
        "message": message,
        "suggestion": "Re-run with --log-level debug to see the underlying I/O or Git error.",
        "details": {},
    }


def _success(message: str, **fields: Any) -> dict[str, Any]:
    return {"status": "success", "message": message, **fields}


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default=os.environ.get("STUDIO_GIT_CONFIG", DEFAULT_CONFIG_LOCATION),
        help="Studio configuration YAML (absolute or relative to the bundled resources)",
    )
    common.add_argument(
        "--user",
        default=os.environ.get("STUDIO_GIT_USER", ""),
        help="Username recorded as commit author",
    )
    common.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    common.add_argument(
        "--log-level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Log level for diagnostics written to stderr",
    )

    parser = argparse.ArgumentParser(prog="studio-git", description="Studio Git content repository CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("bootstrap-global", parents=[common], help="Create the global repository")
    subparsers.add_parser("blueprints", parents=[common], help="List available blueprints")

    create_site = subparsers.add_parser("create-site", parents=[common], help="Create a site from a blueprint")
    create_site.add_argument("site_id")
    create_site.add_argument("-b", "--blueprint", required=True, help="Blueprint name")

    delete_site = subparsers.add_parser("delete-site", parents=[common], help="Delete a site")
    delete_site.add_argument("site_id")

    write = subparsers.add_parser("write", parents=[common], help="Write and commit a file")
    write.add_argument("site_id")
    write.add_argument("path")
    source = write.add_mutually_exclusive_group(required=True)
    source.add_argument("--content", help="UTF-8 text content")
    source.add_argument("--file", help="Local file whose bytes are written")

    read = subparsers.add_parser("read", parents=[common], help="Print a file's committed content")
    read.add_argument("site_id")
    read.add_argument("path")
    read.add_argument("--version", default="", help="Commit id to read instead of HEAD")
    read.add_argument("--base64", action="store_true", help="Print content base64-encoded")

    exists = subparsers.add_parser("exists", parents=[common], help="Check whether content exists")
    exists.add_argument("site_id")
    exists.add_argument("path")

    history = subparsers.add_parser("history", parents=[common], help="Show the version history of a path")
    history.add_argument("site_id")
    history.add_argument("path")
    history.add_argument("--oneline", action="store_true", help="Print one commit id per line")

    revert = subparsers.add_parser("revert", parents=[common], help="Restore a path to an earlier version")
    revert.add_argument("site_id")
    revert.add_argument("path")
    revert.add_argument("version")
    revert.add_argument("--major", action="store_true", help="Mark the revert as a major version")
    revert.add_argument("-m", "--comment", default="", help="Commit message")

    mkdir = subparsers.add_parser("mkdir", parents=[common], help="Create a folder")
    mkdir.add_argument("site_id")
    mkdir.add_argument("path", help="Parent folder")
    mkdir.add_argument("name", help="New folder name")

    remove = subparsers.add_parser("rm", parents=[common], help="Delete a file or folder")
    remove.add_argument("site_id")
    remove.add_argument("path")

    copy = subparsers.add_parser("cp", parents=[common], help="Copy a file or folder")
    copy.add_argument("site_id")
    copy.add_argument("source")
    copy.add_argument("target")

    move = subparsers.add_parser("mv", parents=[common], help="Move a file or folder")
    move.add_argument("site_id")
    move.add_argument("source")
    move.add_argument("target")

    rename = subparsers.add_parser("rename", parents=[common], help="Rename a folder")
    rename.add_argument("site_id")
    rename.add_argument("path")
    rename.add_argument("name")

    next_name = subparsers.add_parser("next-name", parents=[common], help="Suggest a non-conflicting name")
    next_name.add_argument("site_id")
    next_name.add_argument("path")

    remote_add = subparsers.add_parser("remote-add", parents=[common], help="Add a Git remote to a site")
    remote_add.add_argument("site_id")
    remote_add.add_argument("remote_name")
    remote_add.add_argument("remote_url")

    for command, help_text in (("push", "Push a site to a remote"), ("pull", "Pull a remote into a site")):
        remote = subparsers.add_parser(command, parents=[common], help=help_text)
        remote.add_argument("site_id")
        remote.add_argument("--remote", default="origin", help="Remote name")
        remote.add_argument("--branch", default="master", help="Remote branch")

    upgrade = subparsers.add_parser("upgrade", parents=[common], help="Run site upgrade operations")
    upgrade.add_argument("--sites", required=True, help="Comma-separated site ids")
    upgrade.add_argument("--uuids", default="", help="YAML file mapping site ids to site UUIDs")

    token = subparsers.add_parser("token", parents=[common], help="Authenticate and print a session token")
    token.add_argument("username")
    token.add_argument(
        "--password",
        default=os.environ.get("STUDIO_GIT_PASSWORD", ""),
        help="Password (prefer the STUDIO_GIT_PASSWORD environment variable)",
    )
    return parser


def _run_command(
    args: argparse.Namespace,
    configuration: StudioConfiguration,
    security_service: SecurityService,
    content: ContentRepository,
) -> dict[str, Any] | None:
    command = args.command

    if command == "bootstrap-global":
        if not content.bootstrap_global():
            return _failure("Bootstrapping the global repository failed.")
        return _success("Created the global repository.")
    if command == "blueprints":
        blueprints = content.list_blueprints()
        return _success(f"{len(blueprints)} blueprint(s) available.", blueprints=blueprints)
    if command == "create-site":
        request = CreateSiteRequest(site_id=args.site_id, blueprint=args.blueprint)
        if not content.create_site(request.site_id, request.blueprint):
            return _failure(f"Failed to create site '{request.site_id}'.")
        return _success(f"Created site '{request.site_id}'.", site_id=request.site_id)
    if command == "delete-site":
        request = SiteRequest(site_id=args.site_id)
        if not content.delete_site(request.site_id):
            return _failure(f"Failed to delete site '{request.site_id}'.")
        return _success(f"Deleted site '{request.site_id}'.", site_id=request.site_id)
    if command == "write":
        request = ContentRequest(site_id=args.site_id, path=args.path)
        data = FileManager().read_bytes(Path(args.file)) if args.file else args.content.encode("utf-8")
        if not content.write_content(request.site_id, request.path, data):
            return _failure(f"Failed to write {request.path}.")
        return _success(f"Saved {request.path}.", site_id=request.site_id, path=request.path)
    if command == "read":
        if args.version:
            request = VersionRequest(site_id=args.site_id, path=args.path, version=args.version)
            data = content.get_content_version(request.site_id, request.path, request.version)
        else:
            request = ContentRequest(site_id=args.site_id, path=args.path)
            data = content.get_content(request.site_id, request.path)
        if args.json or args.base64:
            encoded = base64.b64encode(data).decode("ascii") if args.base64 else data.decode("utf-8")
            if not args.json:
                print(encoded)
                return None
            return _success(
                f"Read {request.path}.",
                site_id=request.site_id,
                path=request.path,
                size=len(data),
                content=encoded,
            )
        sys.stdout.write(data.decode("utf-8"))
        sys.stdout.flush()
        return None
    if command == "exists":
        request = ContentRequest(site_id=args.site_id, path=args.path)
        found = content.content_exists(request.site_id, request.path)
        return _success(
            f"{request.path} {'exists' if found else 'does not exist'}.",
            site_id=request.site_id,
            path=request.path,
            exists=found,
        )
    if command == "history":
        request = ContentRequest(site_id=args.site_id, path=args.path)
        versions = content.get_content_item_version_history(request.site_id, request.path)
        if args.oneline and not args.json:
            for version in versions:
                print(f"{version.commit_id} {_summary(version.message)}")
            return None
        return _success(
            f"{len(versions)} version(s) of {request.path}.",
            site_id=request.site_id,
            path=request.path,
            versions=[version.model_dump(mode="json") for version in versions],
        )
    if command == "revert":
        request = RevertRequest(
            site_id=args.site_id,
            path=args.path,
            version=args.version,
            major=args.major,
            comment=args.comment,
        )
        commit_id = content.revert_content_item(
            request.site_id,
            request.path,
            request.version,
            request.major,
            request.comment,
        )
        if commit_id is None:
            return _failure(f"Failed to revert {request.path}.")
        return _success(f"Reverted {request.path} to {request.version}.", path=request.path, commit_id=commit_id)
    if command == "mkdir":
        request = CreateFolderRequest(site_id=args.site_id, path=args.path, name=args.name)
        if not content.create_folder(request.site_id, request.path, request.name):
            return _failure(f"Failed to create folder {request.name}.")
        return _success(f"Created folder {request.name} in {request.path}.", site_id=request.site_id)
    if command == "rm":
        request = ContentRequest(site_id=args.site_id, path=args.path)
        if not content.delete_content(request.site_id, request.path):
            return _failure(f"Failed to delete {request.path}.")
        return _success(f"Deleted {request.path}.", path=request.path)
    if command in {"cp", "mv"}:
        request = CopyContentRequest(site_id=args.site_id, source=args.source, target=args.target)
        operation = content.copy_content if command == "cp" else content.move_content
        final_path = operation(request.site_id, request.source, request.target)
        verb = "Copied" if command == "cp" else "Moved"
        if final_path is None:
            return _failure(f"{verb} {request.source} failed.")
        return _success(f"{verb} {request.source} to {final_path}.", path=final_path)
    if command == "rename":
        request = RenameFolderRequest(site_id=args.site_id, path=args.path, name=args.name)
        if not content.rename_folder(request.site_id, request.path, request.name):
            return _failure(f"Failed to rename {request.path}.")
        return _success(f"Renamed {request.path} to {request.name}.", site_id=request.site_id)
    if command == "next-name":
        request = ContentRequest(site_id=args.site_id, path=args.path)
        name = content.get_next_available_name(request.site_id, request.path)
        return _success(f"Next available name for {request.path}.", name=name)
    if command == "remote-add":
        request = AddRemoteRequest(site_id=args.site_id, remote_name=args.remote_name, remote_url=args.remote_url)
        if not content.add_remote(request.site_id, request.remote_name, request.remote_url):
            return _failure(f"Failed to add remote {request.remote_name}.")
        return _success(f"Added remote {request.remote_name}.", site_id=request.site_id)
    if command in {"push", "pull"}:
        request = RemoteRequest(site_id=args.site_id, remote_name=args.remote, remote_branch=args.branch)
        operation = content.push_to_remote if command == "push" else content.pull_from_remote
        if not operation(request.site_id, request.remote_name, request.remote_branch):
            return _failure(f"{command.capitalize()} {request.remote_name}/{request.remote_branch} failed.")
        return _success(f"{command.capitalize()} {request.remote_name}/{request.remote_branch} done.")
    if command == "upgrade":
        uuids = FileManager().read_yaml(Path(args.uuids)) if args.uuids else {}
        manager = UpgradeManager(
            [AddSiteUuidOperation(configuration, MappingSiteFeed({str(k): str(v) for k, v in uuids.items()}))]
        )
        results = manager.upgrade_sites(parse_csv_values(args.sites))
        failed = [site_id for site_id, error in results.items() if error is not None]
        payload = _success(
            f"Upgraded {len(results) - len(failed)} of {len(results)} site(s).",
            results={site_id: "ok" if error is None else str(error) for site_id, error in results.items()},
        )
        if failed:
            payload["status"] = "error"
            payload["error_code"] = ErrorCode.UPGRADE_FAILURE.value
            payload["suggestion"] = "Inspect the failed sites and re-run the upgrade."
        return payload
    if command == "token":
        session_token = security_service.authenticate(args.username, args.password)
        return _success(f"Authenticated {args.username}.", token=session_token)
    raise StudioError(ErrorCode.INVALID_INPUT, f"Unknown command '{command}'")


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    as_json = bool(getattr(args, "json", False))
    logging.basicConfig(level=args.log_level.upper(), stream=sys.stderr)

    content: ContentRepository | None = None
    binding = None
    try:
        configuration = StudioConfiguration.load(args.config)
        security_service = SecurityService.from_configuration(configuration)
        content = ContentRepository.from_configuration(configuration, security_service)
        if args.user:
            binding = bind_principal(security_service.user_directory.load_user(args.user))
        response = _run_command(args, configuration, security_service, content)
        if response is None:
            return 0
        _print_payload(response, as_json=as_json)
        return 0 if response.get("status") == "success" else 1
    except Exception as exc:  # noqa: BLE001
        payload = _error_payload(exc)
        _print_payload(payload, as_json=as_json)
        return 1
    finally:
        if binding is not None:
            reset_principal(binding)
        if content is not None:
            content.close()


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
