"""Resource customizations — parses ConfigMap data into an immutable snapshot.

Two representations are accepted, mirroring the controller's ConfigMap:

  resource.customizations.health.<group>_<kind>      flat script text
  resource.customizations.useOpenLibs.<group>_<kind>  "true" / "false"
  resource.customizations                             YAML: "<group>/<kind>" → {health.lua, health.lua.useOpenLibs}

Only the nested YAML form may use ``*`` wildcards; Kubernetes key naming
rules forbid ``*`` in flat keys, so any such key is dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

logger = logging.getLogger(__name__)

HEALTH_KEY_PREFIX = "resource.customizations.health."
OPEN_LIBS_KEY_PREFIX = "resource.customizations.useOpenLibs."
NESTED_KEY = "resource.customizations"
SCRIPT_FIELD = "health.lua"
OPEN_LIBS_FIELD = "health.lua.useOpenLibs"


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ScriptOverride:
    """One entry from the nested customizations; group/kind may contain ``*``."""

    group: str
    kind: str
    script: str
    use_open_libs: bool = False

    @property
    def pattern(self) -> str:
        return f"{self.group}/{self.kind}" if self.group else self.kind


def _frozen(data: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class CustomizationSnapshot:
    """Read-only view of the health customizations for one reconciliation pass.

    Never mutated after construction; a config reload produces a new
    snapshot that replaces the old one wholesale.
    """

    flat_scripts: Mapping[str, str] = field(default_factory=_frozen)
    flat_open_libs: Mapping[str, bool] = field(default_factory=_frozen)
    overrides: tuple[ScriptOverride, ...] = ()

    def __post_init__(self) -> None:
        # Callers may hand in plain dicts; freeze them so nobody can edit in place.
        object.__setattr__(self, "flat_scripts", _frozen(self.flat_scripts))
        object.__setattr__(self, "flat_open_libs", _frozen(self.flat_open_libs))
        object.__setattr__(self, "overrides", tuple(self.overrides))

    @property
    def empty(self) -> bool:
        return not self.flat_scripts and not self.overrides


EMPTY_SNAPSHOT = CustomizationSnapshot()


def flat_key(group: str, kind: str) -> str:
    """The flat ConfigMap suffix for a (group, kind): ``apps_Deployment``, ``_Pod``."""
    return f"{group}_{kind}"


# ── Parsers ──────────────────────────────────────────────────────────────────


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def _split_flat_suffix(suffix: str) -> tuple[str, str] | None:
    parts = suffix.split("_")
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    return None


def _split_pattern(key: str) -> tuple[str, str]:
    if "/" not in key:
        return "", key
    group, kind = key.split("/", 1)
    return group, kind


def _parse_flat(data: Mapping[str, Any], prefix: str) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(key, str) or not key.startswith(prefix):
            continue
        suffix = key[len(prefix):]
        if "*" in suffix:
            logger.warning("Ignoring %s: wildcards are only supported in %s", key, NESTED_KEY)
            continue
        split = _split_flat_suffix(suffix)
        if split is None:
            logger.warning("Ignoring %s: expected <group>_<kind> or <kind>", key)
            continue
        parsed[flat_key(*split)] = value
    return parsed


def _parse_nested(raw: Any) -> list[ScriptOverride]:
    if isinstance(raw, str):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            logger.warning("Failed to parse %s: %s", NESTED_KEY, e)
            return []
    if raw is None:
        return []
    if not isinstance(raw, Mapping):
        logger.warning("Ignoring %s: expected a mapping, got %s", NESTED_KEY, type(raw).__name__)
        return []

    overrides = []
    for key, entry in raw.items():
        if not isinstance(key, str) or not key or not isinstance(entry, Mapping):
            logger.warning("Skipping malformed customization entry: %r", key)
            continue
        script = entry.get(SCRIPT_FIELD)
        if script is None:
            # Entry only carries other customizations (actions, ignoreDifferences...)
            continue
        if not isinstance(script, str):
            logger.warning("Skipping %s: %s must be a string", key, SCRIPT_FIELD)
            continue
        group, kind = _split_pattern(key)
        if not kind:
            logger.warning("Skipping %s: kind is empty", key)
            continue
        overrides.append(
            ScriptOverride(
                group=group,
                kind=kind,
                script=script,
                use_open_libs=_parse_bool(entry.get(OPEN_LIBS_FIELD, False)),
            )
        )
    return overrides


def parse_config_map_data(data: Mapping[str, Any] | None) -> CustomizationSnapshot:
    """Build a snapshot from ConfigMap ``data``."""
    data = data or {}
    scripts = _parse_flat(data, HEALTH_KEY_PREFIX)
    open_libs = {k: _parse_bool(v) for k, v in _parse_flat(data, OPEN_LIBS_KEY_PREFIX).items()}
    overrides = _parse_nested(data.get(NESTED_KEY))

    snapshot = CustomizationSnapshot(
        flat_scripts={k: str(v) for k, v in scripts.items()},
        flat_open_libs=open_libs,
        overrides=tuple(overrides),
    )
    logger.debug(
        "Parsed health customizations: %d flat, %d nested",
        len(snapshot.flat_scripts), len(snapshot.overrides),
    )
    return snapshot


def load_config_map(path: Path) -> CustomizationSnapshot:
    """Read a ConfigMap manifest (or a bare ``data`` mapping) from a YAML file."""
    raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"{path}: expected a YAML mapping")
    data = raw["data"] if "data" in raw else raw
    return parse_config_map_data(data or {})


# ── Store ────────────────────────────────────────────────────────────────────


class CustomizationStore:
    """Loads and caches the snapshot for a ConfigMap file.

    ``reload()`` swaps in a brand new snapshot; a snapshot already handed to
    an in-flight evaluation is never touched.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._snapshot: CustomizationSnapshot | None = None

    def load(self, force: bool = False) -> CustomizationSnapshot:
        if self._snapshot is not None and not force:
            return self._snapshot

        if not self._path.exists():
            logger.warning("Customizations file not found: %s", self._path)
            self._snapshot = EMPTY_SNAPSHOT
            return self._snapshot

        try:
            self._snapshot = load_config_map(self._path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error("Failed to load %s: %s", self._path, e)
            if self._snapshot is None:
                self._snapshot = EMPTY_SNAPSHOT
            return self._snapshot

        logger.info(
            "Loaded %d health customizations from %s",
            len(self._snapshot.flat_scripts) + len(self._snapshot.overrides),
            self._path,
        )
        return self._snapshot

    @property
    def snapshot(self) -> CustomizationSnapshot:
        return self.load()

    def reload(self) -> CustomizationSnapshot:
        """Force reload from disk."""
        return self.load(force=True)
