from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

from studio_git.config import StudioConfiguration, merge_trees, split_key
from studio_git.constants import (
    AUTHENTICATION_CHAIN_CONFIG,
    REPO_BASE_PATH,
    SECURITY_SESSION_TIMEOUT,
)
from studio_git.errors import ErrorCode, StudioError


def _write_yaml(path: Path, payload: dict) -> Path:
    path.write_text(yaml.safe_dump(payload, sort_keys=False), encoding="utf-8")
    return path


def test_override_value_wins_over_base(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "studio-config.yaml",
        {
            "studio.config.override": "override.yaml",
            "studio.security.sessionTimeout": 30,
            "studio.repo.basePath": "/srv/repos",
        },
    )
    _write_yaml(tmp_path / "override.yaml", {"studio.security.sessionTimeout": 900})

    configuration = StudioConfiguration.load("studio-config.yaml", search_paths=[tmp_path])

    assert configuration.get_property(SECURITY_SESSION_TIMEOUT, int) == 900
    assert configuration.get_property(REPO_BASE_PATH) == "/srv/repos"


def test_override_merges_nested_mappings(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "base.yaml",
        {
            "studio.config.override": str(tmp_path / "extra.yaml"),
            "studio": {"publishing": {"enabled": True, "target": "preview"}},
        },
    )
    _write_yaml(tmp_path / "extra.yaml", {"studio": {"publishing": {"target": "live"}}})

    configuration = StudioConfiguration.load(str(tmp_path / "base.yaml"))

    assert configuration.get_bool("studio/publishing/enabled") is True
    assert configuration.get_string("studio/publishing/target") == "live"


def test_missing_override_keeps_base_and_warns(tmp_path: Path, caplog) -> None:
    _write_yaml(
        tmp_path / "base.yaml",
        {"studio.config.override": "absent.yaml", "studio.security.sessionTimeout": 30},
    )

    with caplog.at_level(logging.WARNING, logger="studio_git.config"):
        configuration = StudioConfiguration.load("base.yaml", search_paths=[tmp_path])

    assert configuration.get_int(SECURITY_SESSION_TIMEOUT) == 30
    assert "absent.yaml" in caplog.text


def test_missing_base_is_config_load_failure(tmp_path: Path) -> None:
    with pytest.raises(StudioError) as exc_info:
        StudioConfiguration.load("nope.yaml", search_paths=[tmp_path])
    assert exc_info.value.code == ErrorCode.CONFIG_LOAD_FAILURE


def test_malformed_yaml_is_config_load_failure(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("studio: [unclosed\n", encoding="utf-8")
    with pytest.raises(StudioError) as exc_info:
        StudioConfiguration.load("broken.yaml", search_paths=[tmp_path])
    assert exc_info.value.code == ErrorCode.CONFIG_LOAD_FAILURE


def test_packaged_default_configuration_loads() -> None:
    configuration = StudioConfiguration.load()
    assert configuration.get_string(REPO_BASE_PATH) == "../data/repos"
    assert configuration.get_int(SECURITY_SESSION_TIMEOUT) == 1800
    providers = configuration.get_sub_configs(AUTHENTICATION_CHAIN_CONFIG)
    assert [provider.get_string("type") for provider in providers] == ["DB", "HEADERS", "LDAP"]


def test_split_key_honors_escaped_slash() -> None:
    assert split_key("a/b/c") == ["a", "b", "c"]
    assert split_key(r"urls/\/api\/1/enabled") == ["urls", "/api/1", "enabled"]
    assert split_key("studio.repo.basePath") == ["studio.repo.basePath"]


def test_escaped_slash_key_lookup() -> None:
    configuration = StudioConfiguration({"urls": {"/api/1": {"enabled": "true"}}})
    assert configuration.get_bool(r"urls/\/api\/1/enabled") is True


def test_typed_conversions() -> None:
    configuration = StudioConfiguration(
        {"count": "42", "flag": "yes", "enabled": True, "name": 7, "bad": "many"}
    )
    assert configuration.get_property("count", int) == 42
    assert configuration.get_property("flag", bool) is True
    assert configuration.get_property("enabled") == "true"
    assert configuration.get_property("name") == "7"
    assert configuration.get_property("missing") is None
    assert configuration.get_int("missing", 5) == 5
    with pytest.raises(StudioError) as exc_info:
        configuration.get_property("bad", int)
    assert exc_info.value.code == ErrorCode.INVALID_INPUT


def test_sub_configs_traverse_lists() -> None:
    configuration = StudioConfiguration(
        {
            "chain": [
                {"type": "DB", "enabled": True},
                {"type": "HEADERS", "enabled": False, "usernameHeader": "X-User"},
            ],
            "single": {"a": 1},
        }
    )

    subs = configuration.get_sub_configs("chain")
    assert [sub.get_string("type") for sub in subs] == ["DB", "HEADERS"]
    assert configuration.get_sub_config("chain") is None
    assert configuration.get_sub_config("single").get_int("a") == 1
    assert configuration.get_sub_configs("absent") == []
    assert configuration.get_string("chain/type") == "DB"


def test_string_list_accepts_yaml_list_and_csv() -> None:
    configuration = StudioConfiguration({"csv": "/a, /b,,/c", "items": ["/x", "/y"]})
    assert configuration.get_string_list("csv") == ["/a", "/b", "/c"]
    assert configuration.get_string_list("items") == ["/x", "/y"]
    assert configuration.get_string_list("absent") == []


def test_configuration_tree_is_not_shared_with_caller() -> None:
    source = {"a": {"b": 1}}
    configuration = StudioConfiguration(source)
    source["a"]["b"] = 2
    snapshot = configuration.as_dict()
    snapshot["a"]["b"] = 3
    assert configuration.get_int("a/b") == 1
    assert configuration.contains_key("a/b")
    assert not configuration.is_empty()


def test_merge_trees_replaces_lists_and_scalars() -> None:
    merged = merge_trees({"a": [1, 2], "b": {"c": 1, "d": 2}}, {"a": [3], "b": {"d": 5}})
    assert merged == {"a": [3], "b": {"c": 1, "d": 5}}
