"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from kubehealth.health.runtime import ScriptRuntime

CERT_MANAGER_SCRIPT = """
local hs = {}
if obj.status ~= nil then
  if obj.status.conditions ~= nil then
    for i, condition in ipairs(obj.status.conditions) do
      if condition.type == "Ready" and condition.status == "False" then
        hs.status = "Degraded"
        hs.message = condition.message
        return hs
      end
      if condition.type == "Ready" and condition.status == "True" then
        hs.status = "Healthy"
        hs.message = condition.message
        return hs
      end
    end
  end
end

hs.status = "Progressing"
hs.message = "Waiting for certificate"
return hs
"""


def make_resource(
    api_version: str,
    kind: str,
    name: str = "test",
    spec: dict[str, Any] | None = None,
    status: dict[str, Any] | None = None,
    annotations: dict[str, str] | None = None,
    **metadata: Any,
) -> dict[str, Any]:
    """Build a minimal resource document."""
    doc: dict[str, Any] = {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name, "namespace": "default", **metadata},
    }
    if annotations:
        doc["metadata"]["annotations"] = annotations
    if spec is not None:
        doc["spec"] = spec
    if status is not None:
        doc["status"] = status
    return doc


def certificate(conditions: list[dict[str, str]] | None = None) -> dict[str, Any]:
    return make_resource(
        "cert-manager.io/v1", "Certificate", name="example-cert",
        status={"conditions": conditions} if conditions is not None else None,
    )


def deployment(
    generation: int = 2,
    observed: int = 2,
    replicas: int = 3,
    updated: int = 3,
    **kw: Any,
) -> dict[str, Any]:
    return make_resource(
        "apps/v1", "Deployment", name="web", generation=generation,
        spec={"replicas": replicas},
        status={"observedGeneration": observed, "updatedReplicas": updated},
        **kw,
    )


@pytest.fixture
def runtime() -> ScriptRuntime:
    """A runtime with a generous budget so slow CI machines don't time out."""
    return ScriptRuntime(timeout=5.0)


@pytest.fixture
def cert_manager_script() -> str:
    return CERT_MANAGER_SCRIPT


@pytest.fixture(name="make_resource")
def make_resource_fixture():
    return make_resource


@pytest.fixture(name="certificate")
def certificate_fixture():
    return certificate


@pytest.fixture(name="deployment")
def deployment_fixture():
    return deployment
