"""Tests for parsing health customizations out of ConfigMap data."""

from __future__ import annotations

import dataclasses
import logging
import textwrap
from pathlib import Path

import pytest
import yaml

from kubehealth.customizations.loader import (
    EMPTY_SNAPSHOT,
    CustomizationSnapshot,
    CustomizationStore,
    ScriptOverride,
    flat_key,
    load_config_map,
    parse_config_map_data,
)

NESTED = textwrap.dedent("""\
    cert-manager.io/Certificate:
      health.lua: |
        return {status = "Healthy"}
    "*.crossplane.io/*":
      health.lua: |
        return {status = "Progressing"}
      health.lua.useOpenLibs: true
    ConfigMap:
      health.lua: |
        return {status = "Healthy"}
    apps/Deployment:
      ignoreDifferences: |
        jsonPointers:
        - /spec/replicas
""")


@pytest.fixture
def config_map_file(tmp_path: Path) -> Path:
    path = tmp_path / "argocd-cm.yaml"
    path.write_text(yaml.dump({
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "argocd-cm"},
        "data": {
            "resource.customizations.health.apps_Deployment": 'return {status = "Degraded"}',
            "resource.customizations.useOpenLibs.apps_Deployment": "true",
            "resource.customizations": NESTED,
        },
    }), encoding="utf-8")
    return path


# ── Flat keys ────────────────────────────────────────────────────────────────


class TestFlatKeys:
    def test_flat_key(self) -> None:
        assert flat_key("apps", "Deployment") == "apps_Deployment"
        assert flat_key("", "Pod") == "_Pod"

    def test_scripts_and_open_libs(self) -> None:
        snapshot = parse_config_map_data({
            "resource.customizations.health.cert-manager.io_Certificate": "return {}",
            "resource.customizations.useOpenLibs.cert-manager.io_Certificate": "TRUE",
            "resource.customizations.health.apps_Deployment": "return {}",
            "resource.customizations.useOpenLibs.apps_Deployment": "no",
            "unrelated.key": "value",
        })
        assert set(snapshot.flat_scripts) == {"cert-manager.io_Certificate", "apps_Deployment"}
        assert snapshot.flat_open_libs["cert-manager.io_Certificate"] is True
        assert snapshot.flat_open_libs["apps_Deployment"] is False

    def test_core_group_forms(self) -> None:
        snapshot = parse_config_map_data({
            "resource.customizations.health.Pod": "return {}",
            "resource.customizations.health._Service": "return {}",
        })
        assert set(snapshot.flat_scripts) == {"_Pod", "_Service"}

    def test_wildcard_flat_key_dropped(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            snapshot = parse_config_map_data({
                "resource.customizations.health.*.crossplane.io_Bucket": "return {}",
            })
        assert snapshot.flat_scripts == {}
        assert "wildcards" in caplog.text

    def test_malformed_flat_key_dropped(self) -> None:
        snapshot = parse_config_map_data({"resource.customizations.health.a_b_c": "return {}"})
        assert snapshot.flat_scripts == {}


# ── Nested customizations ────────────────────────────────────────────────────


class TestNested:
    def test_parse(self) -> None:
        snapshot = parse_config_map_data({"resource.customizations": NESTED})
        patterns = {o.pattern: o for o in snapshot.overrides}
        # apps/Deployment carries no health.lua and is skipped
        assert set(patterns) == {"cert-manager.io/Certificate", "*.crossplane.io/*", "ConfigMap"}
        assert patterns["*.crossplane.io/*"].use_open_libs is True
        assert patterns["cert-manager.io/Certificate"].use_open_libs is False
        assert patterns["ConfigMap"].group == ""

    def test_accepts_mapping(self) -> None:
        snapshot = parse_config_map_data({
            "resource.customizations": {"example.com/Widget": {"health.lua": "return {}"}},
        })
        assert snapshot.overrides == (ScriptOverride("example.com", "Widget", "return {}"),)

    def test_bad_yaml(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING):
            snapshot = parse_config_map_data({
                "resource.customizations": "foo: [unclosed",
                "resource.customizations.health.apps_Deployment": "return {}",
            })
        assert snapshot.overrides == ()
        # Flat keys still load
        assert "apps_Deployment" in snapshot.flat_scripts
        assert "Failed to parse" in caplog.text

    def test_non_string_script_skipped(self) -> None:
        snapshot = parse_config_map_data({
            "resource.customizations": {"example.com/Widget": {"health.lua": 42}},
        })
        assert snapshot.overrides == ()


# ── Snapshot ─────────────────────────────────────────────────────────────────


class TestSnapshot:
    def test_immutable(self) -> None:
        snapshot = CustomizationSnapshot(flat_scripts={"apps_Deployment": "return {}"})
        with pytest.raises(TypeError):
            snapshot.flat_scripts["apps_Deployment"] = "x"  # type: ignore[index]
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.overrides = ()  # type: ignore[misc]

    def test_source_dict_changes_do_not_leak(self) -> None:
        source = {"apps_Deployment": "return {}"}
        snapshot = CustomizationSnapshot(flat_scripts=source)
        source["batch_Job"] = "return {}"
        assert "batch_Job" not in snapshot.flat_scripts

    def test_empty(self) -> None:
        assert EMPTY_SNAPSHOT.empty
        assert parse_config_map_data(None).empty
        assert not parse_config_map_data({"resource.customizations.health.Pod": "x"}).empty


# ── Files and store ──────────────────────────────────────────────────────────


class TestLoadConfigMap:
    def test_load_manifest(self, config_map_file: Path) -> None:
        snapshot = load_config_map(config_map_file)
        assert snapshot.flat_scripts["apps_Deployment"] == 'return {status = "Degraded"}'
        assert snapshot.flat_open_libs["apps_Deployment"] is True
        assert len(snapshot.overrides) == 3

    def test_load_bare_data(self, tmp_path: Path) -> None:
        path = tmp_path / "data.yaml"
        path.write_text(yaml.dump({"resource.customizations.health.Pod": "return {}"}), encoding="utf-8")
        assert "_Pod" in load_config_map(path).flat_scripts

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config_map(path)


class TestCustomizationStore:
    def test_missing_file(self, tmp_path: Path) -> None:
        store = CustomizationStore(tmp_path / "nope.yaml")
        assert store.load() is EMPTY_SNAPSHOT

    def test_cached(self, config_map_file: Path) -> None:
        store = CustomizationStore(config_map_file)
        assert store.load() is store.snapshot

    def test_reload_replaces_snapshot(self, config_map_file: Path) -> None:
        store = CustomizationStore(config_map_file)
        first = store.load()

        config_map_file.write_text(yaml.dump({"data": {}}), encoding="utf-8")
        second = store.reload()

        assert second is not first
        assert second.empty
        # The old snapshot is untouched
        assert "apps_Deployment" in first.flat_scripts

    def test_reload_keeps_last_good_on_error(self, config_map_file: Path) -> None:
        store = CustomizationStore(config_map_file)
        first = store.load()
        config_map_file.write_text("- not\n- a mapping\n", encoding="utf-8")
        assert store.reload() is first
