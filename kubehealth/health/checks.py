"""Built-in health predicates for well-known Kubernetes kinds.

Each predicate is a pure function ``obj -> HealthStatus`` over the resource
document. Missing fields are read as empty / zero so that a half-populated
status simply reports Progressing instead of raising.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .status import HealthStatus

# Container waiting reasons that will not recover on their own.
_POD_FATAL_WAITING_REASONS = frozenset({
    "CrashLoopBackOff",
    "ImagePullBackOff",
    "ErrImagePull",
    "CreateContainerConfigError",
    "InvalidImageName",
})


# ── Field helpers ────────────────────────────────────────────────────────────


def _get(obj: Any, *path: str, default: Any = None) -> Any:
    cur = obj
    for key in path:
        if not isinstance(cur, Mapping):
            return default
        cur = cur.get(key)
        if cur is None:
            return default
    return cur


def _int(obj: Any, *path: str, default: int = 0) -> int:
    value = _get(obj, *path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return int(value)


def _conditions(obj: Any) -> list[Mapping[str, Any]]:
    raw = _get(obj, "status", "conditions", default=[])
    if not isinstance(raw, list):
        return []
    return [c for c in raw if isinstance(c, Mapping)]


def _find_condition(obj: Any, cond_type: str) -> Mapping[str, Any] | None:
    return next((c for c in _conditions(obj) if c.get("type") == cond_type), None)


def _has_ingress_address(obj: Any) -> bool:
    ingress = _get(obj, "status", "loadBalancer", "ingress", default=[])
    if not isinstance(ingress, list):
        return False
    return any(
        isinstance(entry, Mapping) and (entry.get("hostname") or entry.get("ip"))
        for entry in ingress
    )


# ── Workloads ────────────────────────────────────────────────────────────────


def _rollout_health(obj: Any, desired: int, updated: int) -> HealthStatus:
    generation = _int(obj, "metadata", "generation")
    observed = _int(obj, "status", "observedGeneration", default=-1)
    if observed != generation:
        return HealthStatus.progressing("Waiting for rollout to finish: observed generation less than desired generation")
    if updated != desired:
        return HealthStatus.progressing(
            f"Waiting for rollout to finish: {updated} out of {desired} new replicas have been updated..."
        )
    return HealthStatus.healthy()


def deployment_health(obj: Mapping[str, Any]) -> HealthStatus:
    desired = _int(obj, "spec", "replicas", default=1)
    return _rollout_health(obj, desired, _int(obj, "status", "updatedReplicas"))


def statefulset_health(obj: Mapping[str, Any]) -> HealthStatus:
    desired = _int(obj, "spec", "replicas", default=1)
    return _rollout_health(obj, desired, _int(obj, "status", "updatedReplicas"))


def replicaset_health(obj: Mapping[str, Any]) -> HealthStatus:
    # Every pod of a ReplicaSet comes from its single template, so "updated"
    # is simply how many are available.
    desired = _int(obj, "spec", "replicas", default=1)
    return _rollout_health(obj, desired, _int(obj, "status", "availableReplicas"))


def daemonset_health(obj: Mapping[str, Any]) -> HealthStatus:
    desired = _int(obj, "status", "desiredNumberScheduled")
    return _rollout_health(obj, desired, _int(obj, "status", "updatedNumberScheduled"))


def pod_health(obj: Mapping[str, Any]) -> HealthStatus:
    phase = _get(obj, "status", "phase", default="")
    message = _get(obj, "status", "message", default="")

    if phase == "Pending":
        return HealthStatus.progressing(message)
    if phase == "Succeeded":
        return HealthStatus.healthy(message)
    if phase == "Failed":
        return HealthStatus.degraded(message)
    if phase != "Running":
        return HealthStatus.unknown(message)

    for cs in _get(obj, "status", "containerStatuses", default=[]) or []:
        waiting = _get(cs, "state", "waiting")
        if isinstance(waiting, Mapping) and waiting.get("reason") in _POD_FATAL_WAITING_REASONS:
            return HealthStatus.degraded(waiting.get("message") or waiting["reason"])

    if _get(obj, "spec", "restartPolicy", default="Always") != "Always":
        return HealthStatus.healthy(message)
    ready = _find_condition(obj, "Ready")
    if ready and ready.get("status") == "True":
        return HealthStatus.healthy(message)
    return HealthStatus.progressing(message)


def job_health(obj: Mapping[str, Any]) -> HealthStatus:
    if _get(obj, "spec", "suspend") is True:
        return HealthStatus.suspended("Job is suspended")

    for cond in _conditions(obj):
        if cond.get("status") != "True":
            continue
        if cond.get("type") == "Failed":
            return HealthStatus.degraded(cond.get("message") or "Job failed")
        if cond.get("type") == "Complete":
            return HealthStatus.healthy(cond.get("message") or "Job completed")
    return HealthStatus.progressing("Job is running")


# ── Networking / storage / API ───────────────────────────────────────────────


def service_health(obj: Mapping[str, Any]) -> HealthStatus:
    if _get(obj, "spec", "type") != "LoadBalancer":
        return HealthStatus.healthy()
    if _has_ingress_address(obj):
        return HealthStatus.healthy()
    return HealthStatus.progressing("Waiting for load balancer address")


def ingress_health(obj: Mapping[str, Any]) -> HealthStatus:
    if _has_ingress_address(obj):
        return HealthStatus.healthy()
    return HealthStatus.progressing("Waiting for ingress address")


def pvc_health(obj: Mapping[str, Any]) -> HealthStatus:
    phase = _get(obj, "status", "phase", default="")
    if phase == "Bound":
        return HealthStatus.healthy()
    return HealthStatus.progressing(f"PVC is {phase or 'pending'}")


def apiservice_health(obj: Mapping[str, Any]) -> HealthStatus:
    cond = _find_condition(obj, "Available")
    if cond is None:
        return HealthStatus.progressing("Waiting to be processed")
    if cond.get("status") == "True":
        return HealthStatus.healthy(cond.get("message", ""))
    return HealthStatus.progressing(cond.get("message", ""))


def hpa_health(obj: Mapping[str, Any]) -> HealthStatus:
    conditions = _conditions(obj)
    for cond in conditions:
        if cond.get("status") == "False" and str(cond.get("reason", "")).startswith("Failed"):
            return HealthStatus.degraded(cond.get("message", ""))
    for cond in conditions:
        if cond.get("type") in ("ScalingActive", "AbleToScale") and cond.get("status") == "True":
            return HealthStatus.healthy(cond.get("message", ""))
    return HealthStatus.progressing("Waiting to Autoscale")


def workflow_health(obj: Mapping[str, Any]) -> HealthStatus:
    phase = _get(obj, "status", "phase", default="")
    message = _get(obj, "status", "message", default="")
    if phase in ("", "Pending", "Running"):
        return HealthStatus.progressing(message)
    if phase == "Succeeded":
        return HealthStatus.healthy(message)
    if phase in ("Failed", "Error"):
        return HealthStatus.degraded(message)
    return HealthStatus.unknown(message)
