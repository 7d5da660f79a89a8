"""Aggregation of immediate-child health into one parent status.

The parent takes the worst child status under ``HEALTH_ORDER``. Children
marked with the ignore-healthcheck annotation are dropped before the
reduction, and an empty set is Healthy. Only one level is considered;
grandchildren are the child's own check's business.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .status import HealthStatus, HealthStatusCode, is_worse

IGNORE_HEALTHCHECK_ANNOTATION = "argocd.argoproj.io/ignore-healthcheck"


def is_health_check_ignored(resource: Mapping[str, Any]) -> bool:
    """True when the resource opts out of its parent's health via annotation."""
    metadata = resource.get("metadata") or {}
    annotations = metadata.get("annotations") or {}
    value = annotations.get(IGNORE_HEALTHCHECK_ANNOTATION)
    return str(value).strip().lower() == "true" if value is not None else False


@dataclass(frozen=True)
class ChildHealth:
    """An immediate child's computed health, as seen by its parent."""

    health: HealthStatus
    ignore_health_check: bool = False
    name: str = ""

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any], health: HealthStatus) -> ChildHealth:
        metadata = resource.get("metadata") or {}
        kind = resource.get("kind", "")
        name = metadata.get("name", "")
        return cls(
            health=health,
            ignore_health_check=is_health_check_ignored(resource),
            name=f"{kind}/{name}" if kind else name,
        )


def aggregate(children: Iterable[ChildHealth | HealthStatus]) -> HealthStatus:
    """Reduce child statuses to the worst one.

    The message is the distinct non-empty messages of the children at the
    worst level, sorted and joined with "; ", so permuting the input never
    changes the result.
    """
    worst: HealthStatusCode | None = None
    messages: set[str] = set()
    for child in children:
        if isinstance(child, ChildHealth):
            if child.ignore_health_check:
                continue
            health = child.health
        else:
            health = child

        if worst is None or is_worse(worst, health.status):
            worst = health.status
            messages = set()
        if health.status == worst and health.message:
            messages.add(health.message)

    if worst is None:
        return HealthStatus.healthy()
    return HealthStatus(worst, "; ".join(sorted(messages)))
