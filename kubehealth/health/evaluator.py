"""Health evaluator — the single entry point for one resource's health.

Dispatch order:
  1. ignore-healthcheck annotation → Healthy
  2. deletionTimestamp set         → Progressing "Pending deletion"
  3. scripted customization        → Lua runtime (errors become Unknown)
  4. built-in predicate            → native check
  5. nothing known for the kind    → Unknown
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from ..config import settings
from ..customizations.loader import EMPTY_SNAPSHOT, CustomizationSnapshot
from .aggregate import ChildHealth, aggregate, is_health_check_ignored
from .errors import EvaluationError
from .registry import CheckRegistry, default_registry
from .resolver import BindingKind, CheckBinding, ScriptResolver
from .runtime import ScriptRuntime
from .status import HealthStatus

logger = logging.getLogger(__name__)


def resource_key(resource: Mapping[str, Any]) -> tuple[str, str]:
    """(group, kind) for a resource document; core resources have group ``""``."""
    api_version = resource.get("apiVersion") or ""
    group = api_version.rsplit("/", 1)[0] if "/" in api_version else ""
    return group, resource.get("kind") or ""


def _describe(resource: Mapping[str, Any]) -> str:
    metadata = resource.get("metadata") or {}
    name = metadata.get("name", "<unnamed>")
    namespace = metadata.get("namespace")
    kind = resource.get("kind", "<unknown kind>")
    return f"{kind} {namespace}/{name}" if namespace else f"{kind} {name}"


class HealthEvaluator:
    """Evaluates resource health against one customization snapshot.

    Holds no mutable state, so one instance may be shared across worker
    threads for the duration of a reconciliation pass.
    """

    def __init__(
        self,
        snapshot: CustomizationSnapshot | None = None,
        registry: CheckRegistry | None = None,
        runtime: ScriptRuntime | None = None,
    ) -> None:
        self.snapshot = snapshot or EMPTY_SNAPSHOT
        self.registry = registry or default_registry()
        self.runtime = runtime or ScriptRuntime()
        self.resolver = ScriptResolver(self.snapshot)

    def resolve_binding(self, group: str, kind: str) -> CheckBinding | None:
        """Scripted customization first, then the built-in registry."""
        binding = self.resolver.resolve(group, kind)
        if binding is not None:
            return binding
        check = self.registry.lookup(group, kind)
        if check is not None:
            return CheckBinding.builtin(f"{group}/{kind}" if group else kind, check)
        return None

    def evaluate(self, resource: Mapping[str, Any], respect_ignore: bool = True) -> HealthStatus:
        """Compute the health of a single resource; never raises.

        With ``respect_ignore=False`` the ignore-healthcheck annotation is
        not short-circuited, which is how a child's own status is reported
        while its parent still leaves it out of aggregation.
        """
        if respect_ignore and is_health_check_ignored(resource):
            return HealthStatus.healthy()

        metadata = resource.get("metadata") or {}
        if metadata.get("deletionTimestamp"):
            return HealthStatus.progressing("Pending deletion")

        group, kind = resource_key(resource)
        try:
            binding = self.resolve_binding(group, kind)
        except EvaluationError as e:
            logger.warning("Health check resolution failed for %s: %s", _describe(resource), e)
            return HealthStatus.unknown(str(e))

        if binding is None:
            return HealthStatus.unknown()
        if binding.kind is BindingKind.SCRIPTED:
            return self._run_script(binding, resource)
        return self._run_builtin(binding, resource)

    def _run_script(self, binding: CheckBinding, resource: Mapping[str, Any]) -> HealthStatus:
        try:
            return self.runtime.run(binding.script, resource, use_open_libs=binding.use_open_libs)
        except EvaluationError as e:
            logger.warning(
                "Health script %s failed for %s: %s: %s",
                binding.key, _describe(resource), type(e).__name__, e,
            )
            return HealthStatus.unknown(str(e))

    def _run_builtin(self, binding: CheckBinding, resource: Mapping[str, Any]) -> HealthStatus:
        try:
            return binding.check(resource)
        except Exception as e:
            logger.exception("Built-in health check %s failed for %s", binding.key, _describe(resource))
            return HealthStatus.unknown(f"Error: {type(e).__name__}: {e}")


def evaluate(
    resource: Mapping[str, Any],
    snapshot: CustomizationSnapshot | None = None,
) -> HealthStatus:
    """Evaluate one resource with the built-in registry and ``snapshot``."""
    return HealthEvaluator(snapshot).evaluate(resource)


# ── Applications ─────────────────────────────────────────────────────────────


@dataclass
class ApplicationHealth:
    """Aggregated health of an application plus each child's own result."""

    health: HealthStatus
    children: list[ChildHealth] = field(default_factory=list)


def evaluate_application(
    children: Iterable[Mapping[str, Any]],
    snapshot: CustomizationSnapshot | None = None,
    evaluator: HealthEvaluator | None = None,
    max_workers: int | None = None,
) -> ApplicationHealth:
    """Evaluate an application's immediate children in parallel and aggregate them."""
    evaluator = evaluator or HealthEvaluator(snapshot)
    resources = list(children)
    if not resources:
        return ApplicationHealth(health=HealthStatus.healthy())

    def _child(resource: Mapping[str, Any]) -> ChildHealth:
        return ChildHealth.from_resource(resource, evaluator.evaluate(resource, respect_ignore=False))

    with ThreadPoolExecutor(max_workers=max_workers or settings.max_workers) as executor:
        results = list(executor.map(_child, resources))

    health = aggregate(results)
    logger.debug("Aggregated %d children to %s", len(results), health.status.value)
    return ApplicationHealth(health=health, children=results)
