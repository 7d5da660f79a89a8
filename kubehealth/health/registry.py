"""Check registry — built-in health predicates keyed by (group, kind)."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from . import checks
from .status import HealthStatus

logger = logging.getLogger(__name__)

BuiltinCheck = Callable[[Mapping[str, Any]], HealthStatus]

WORKFLOW_GROUP = "argoproj.io"

_DEFAULT_CHECKS: dict[tuple[str, str], BuiltinCheck] = {
    ("", "Pod"): checks.pod_health,
    ("", "Service"): checks.service_health,
    ("", "PersistentVolumeClaim"): checks.pvc_health,
    ("apiregistration.k8s.io", "APIService"): checks.apiservice_health,
    ("apps", "DaemonSet"): checks.daemonset_health,
    ("apps", "Deployment"): checks.deployment_health,
    ("apps", "ReplicaSet"): checks.replicaset_health,
    ("apps", "StatefulSet"): checks.statefulset_health,
    ("autoscaling", "HorizontalPodAutoscaler"): checks.hpa_health,
    ("batch", "Job"): checks.job_health,
    ("extensions", "Ingress"): checks.ingress_health,
    ("networking.k8s.io", "Ingress"): checks.ingress_health,
    (WORKFLOW_GROUP, "Workflow"): checks.workflow_health,
}


class CheckRegistry:
    """Holds native health predicates, one per (group, kind).

    Built once at startup and treated as read-only while evaluations run.
    """

    def __init__(self, checks: Mapping[tuple[str, str], BuiltinCheck] | None = None) -> None:
        self._checks: dict[tuple[str, str], BuiltinCheck] = dict(checks or {})

    def register(self, group: str, kind: str, check: BuiltinCheck, replace: bool = False) -> None:
        """Add a predicate. Raises ``ValueError`` if the kind is already taken."""
        if not kind:
            raise ValueError("kind is required")
        key = (group, kind)
        if key in self._checks and not replace:
            raise ValueError(f"Built-in check already registered for {group or 'core'}/{kind}")
        self._checks[key] = check
        logger.debug("Registered built-in health check for %s/%s", group or "core", kind)

    def lookup(self, group: str, kind: str) -> BuiltinCheck | None:
        return self._checks.get((group, kind))

    def __contains__(self, key: object) -> bool:
        return key in self._checks

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(sorted(self._checks))

    def __len__(self) -> int:
        return len(self._checks)


def default_registry() -> CheckRegistry:
    """A registry pre-populated with the built-in Kubernetes checks."""
    return CheckRegistry(_DEFAULT_CHECKS)
