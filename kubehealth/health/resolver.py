"""Script resolver — picks the user-supplied Lua check for a (group, kind).

Lookup order, first match wins:
  1. flat key ``<group>_<kind>`` (never a wildcard)
  2. nested ``<group-pattern>/<kind-pattern>`` entries, most specific first
  3. nothing: the evaluator falls back to the built-in registry

Among nested matches the ranking is: exact group before wildcard group,
exact kind before wildcard kind, fewer ``*`` overall, more literal
characters, then pattern text. Map iteration order never decides.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from ..customizations.loader import CustomizationSnapshot, ScriptOverride, flat_key
from .errors import ResolutionAmbiguous
from .registry import BuiltinCheck

logger = logging.getLogger(__name__)


class BindingKind(str, Enum):
    BUILTIN = "builtin"
    SCRIPTED = "scripted"


@dataclass(frozen=True)
class CheckBinding:
    """Which health check applies to a resource type.

    A tagged variant: ``kind`` says which of ``check`` (built-in) or
    ``script`` (Lua source) is populated.
    """

    kind: BindingKind
    key: str
    check: BuiltinCheck | None = None
    script: str = ""
    use_open_libs: bool = False

    @classmethod
    def builtin(cls, key: str, check: BuiltinCheck) -> CheckBinding:
        return cls(kind=BindingKind.BUILTIN, key=key, check=check)

    @classmethod
    def scripted(cls, key: str, script: str, use_open_libs: bool = False) -> CheckBinding:
        return cls(kind=BindingKind.SCRIPTED, key=key, script=script, use_open_libs=use_open_libs)


# ── Wildcard matching ────────────────────────────────────────────────────────


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    # Only '*' is special; everything else (including '?' and '[') is literal.
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))


def pattern_matches(pattern: str, value: str) -> bool:
    if "*" not in pattern:
        return pattern == value
    return _compile(pattern).fullmatch(value) is not None


def specificity(override: ScriptOverride) -> tuple[bool, bool, int, int, str]:
    """Sort key for nested matches; smaller sorts first (more specific)."""
    wildcards = override.group.count("*") + override.kind.count("*")
    literal = len(override.group) + len(override.kind) - wildcards
    return (
        "*" in override.group,
        "*" in override.kind,
        wildcards,
        -literal,
        override.pattern,
    )


# ── Resolver ─────────────────────────────────────────────────────────────────


class ScriptResolver:
    """Resolves scripted bindings against one immutable customization snapshot."""

    def __init__(self, snapshot: CustomizationSnapshot) -> None:
        self.snapshot = snapshot

    def resolve(self, group: str, kind: str) -> CheckBinding | None:
        return self._resolve_flat(group, kind) or self._resolve_nested(group, kind)

    def _resolve_flat(self, group: str, kind: str) -> CheckBinding | None:
        key = flat_key(group, kind)
        if "*" in key:
            return None
        script = self.snapshot.flat_scripts.get(key)
        if script is None:
            return None
        logger.debug("Resolved %s/%s to flat customization %s", group, kind, key)
        return CheckBinding.scripted(
            key, script, use_open_libs=self.snapshot.flat_open_libs.get(key, False),
        )

    def _resolve_nested(self, group: str, kind: str) -> CheckBinding | None:
        matches = [
            o for o in self.snapshot.overrides
            if pattern_matches(o.group, group) and pattern_matches(o.kind, kind)
        ]
        if not matches:
            return None

        matches.sort(key=specificity)
        best = matches[0]
        for other in matches[1:]:
            if other.pattern != best.pattern:
                break
            if (other.script, other.use_open_libs) != (best.script, best.use_open_libs):
                raise ResolutionAmbiguous(
                    f"Multiple health customizations registered for pattern {best.pattern}"
                )

        logger.debug("Resolved %s/%s to customization %s", group, kind, best.pattern)
        return CheckBinding.scripted(best.pattern, best.script, use_open_libs=best.use_open_libs)
