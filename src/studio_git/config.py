"""Layered YAML configuration with a slash-delimited key engine.

The base configuration is read first; when it names an override location under
``studio.config.override`` the override tree is merged on top of it, override
values winning at every matching key. Keys use ``/`` as the hierarchy
delimiter, so dotted names such as ``studio.repo.basePath`` are single
segments; ``\\/`` escapes a literal slash inside a segment.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

import yaml

from .constants import DEFAULT_CONFIG_LOCATION, STUDIO_CONFIG_OVERRIDE_CONFIG
from .errors import ErrorCode, StudioError

logger = logging.getLogger(__name__)

RESOURCES_DIR = Path(__file__).resolve().parent / "resources"
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def split_key(key: str) -> list[str]:
    """Split a configuration key on unescaped slashes."""
    segments: list[str] = []
    current: list[str] = []
    index = 0
    while index < len(key):
        char = key[index]
        if char == "\\" and key.startswith("/", index + 1):
            current.append("/")
            index += 2
            continue
        if char == "/":
            segments.append("".join(current))
            current = []
        else:
            current.append(char)
        index += 1
    segments.append("".join(current))
    return [segment for segment in segments if segment]


def merge_trees(base: Any, override: Any) -> Any:
    """Recursively merge two configuration trees, the override winning."""
    if isinstance(base, Mapping) and isinstance(override, Mapping):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in override.items():
            if key in merged:
                merged[key] = merge_trees(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


class StudioConfiguration:
    """Read-only view over a hierarchical configuration tree."""

    def __init__(self, tree: Mapping[str, Any] | None = None) -> None:
        self._tree: dict[str, Any] = copy.deepcopy(dict(tree or {}))

    @classmethod
    def load(
        cls,
        location: str = DEFAULT_CONFIG_LOCATION,
        search_paths: Sequence[str | Path] | None = None,
    ) -> StudioConfiguration:
        """Load the base configuration and its optional override."""
        roots = _search_roots(search_paths)
        base_path = _resolve_location(location, roots)
        if base_path is None:
            raise StudioError(
                ErrorCode.CONFIG_LOAD_FAILURE,
                f"Configuration not found: {location}",
                "Provide an absolute path or a location relative to the resources directory.",
                {"location": location, "search_paths": [str(root) for root in roots]},
            )
        base_tree = _read_yaml_tree(base_path)
        logger.debug("Loaded configuration from location: %s", base_path)

        base = cls(base_tree)
        override_location = base.get_string(STUDIO_CONFIG_OVERRIDE_CONFIG)
        if not override_location:
            return base

        override_path = _resolve_location(override_location, [base_path.parent, *roots])
        if override_path is None:
            logger.warning(
                "Override configuration not found at %s; using base configuration only.",
                override_location,
            )
            return base

        override_tree = _read_yaml_tree(override_path)
        if not override_tree:
            return base
        logger.debug("Loaded additional configuration from location: %s", override_path)
        return cls(merge_trees(base_tree, override_tree))

    def is_empty(self) -> bool:
        return not self._tree

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._tree)

    def contains_key(self, key: str) -> bool:
        return bool(self._resolve(key))

    def get_property(self, key: str, value_type: type = str) -> Any:
        """Return the first value at ``key`` converted to ``value_type``, or None."""
        raw = self._first_scalar(key)
        if raw is None:
            return None
        if value_type is str:
            return _to_string(raw)
        if value_type is bool:
            return _to_bool(key, raw)
        if value_type is int:
            return _to_int(key, raw)
        raise StudioError(
            ErrorCode.INVALID_INPUT,
            f"Unsupported configuration value type '{getattr(value_type, '__name__', value_type)}'",
            "Use str, int, or bool.",
        )

    def get_string(self, key: str, default: str | None = None) -> str | None:
        value = self.get_property(key, str)
        return default if value is None else value

    def get_int(self, key: str, default: int | None = None) -> int | None:
        value = self.get_property(key, int)
        return default if value is None else value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_property(key, bool)
        return default if value is None else value

    def get_string_list(self, key: str) -> list[str]:
        """Return a YAML list or a comma-separated string as a list of strings."""
        values: list[str] = []
        for node in self._resolve(key):
            if node is None or isinstance(node, Mapping):
                continue
            text = _to_string(node)
            values.extend(item.strip() for item in text.split(",") if item.strip())
        return values

    def get_sub_config(self, key: str) -> StudioConfiguration | None:
        nodes = [node for node in self._resolve(key) if isinstance(node, Mapping)]
        if len(nodes) != 1:
            logger.debug("No unique configuration subtree for key %s", key)
            return None
        return StudioConfiguration(nodes[0])

    def get_sub_configs(self, key: str) -> list[StudioConfiguration]:
        return [
            StudioConfiguration(node)
            for node in self._resolve(key)
            if isinstance(node, Mapping)
        ]

    def _resolve(self, key: str) -> list[Any]:
        nodes: list[Any] = [self._tree]
        for segment in split_key(key):
            matched: list[Any] = []
            for node in nodes:
                if not isinstance(node, Mapping) or segment not in node:
                    continue
                value = node[segment]
                if isinstance(value, list):
                    matched.extend(value)
                else:
                    matched.append(value)
            nodes = matched
            if not nodes:
                break
        return nodes

    def _first_scalar(self, key: str) -> Any:
        for node in self._resolve(key):
            if node is None or isinstance(node, Mapping):
                continue
            return node
        return None

    def __repr__(self) -> str:
        return f"StudioConfiguration(keys={sorted(self._tree)})"


def _search_roots(search_paths: Sequence[str | Path] | None) -> list[Path]:
    if search_paths is not None:
        return [Path(path) for path in search_paths]
    return [RESOURCES_DIR, Path.cwd()]


def _resolve_location(location: str, roots: Sequence[Path]) -> Path | None:
    candidate = Path(str(location).strip()).expanduser()
    if candidate.is_absolute():
        return candidate if candidate.is_file() else None
    for root in roots:
        resolved = root / candidate
        if resolved.is_file():
            return resolved
    return None


def _read_yaml_tree(path: Path) -> dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Failed to load studio configuration from: %s", path, exc_info=True)
        raise StudioError(
            ErrorCode.CONFIG_LOAD_FAILURE,
            f"Failed to load configuration from {path}",
            "Fix the YAML syntax or file permissions and restart.",
            {"location": str(path)},
        ) from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise StudioError(
            ErrorCode.CONFIG_LOAD_FAILURE,
            f"Configuration root must be a mapping: {path}",
            "Use key/value pairs at the top level of the YAML document.",
            {"location": str(path)},
        )
    return loaded


def _to_string(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise StudioError(
        ErrorCode.INVALID_INPUT,
        f"Configuration key '{key}' is not a boolean: {value!r}",
        "Use true/false values.",
    )


def _to_int(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise StudioError(
            ErrorCode.INVALID_INPUT,
            f"Configuration key '{key}' is not an integer: {value!r}",
            "Provide a numeric value.",
        )
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise StudioError(
            ErrorCode.INVALID_INPUT,
            f"Configuration key '{key}' is not an integer: {value!r}",
            "Provide a numeric value.",
        ) from exc
