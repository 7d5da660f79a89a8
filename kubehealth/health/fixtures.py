"""Fixture runner for Lua health customizations.

A customization directory holds ``health.lua`` next to ``health_test.yaml``:

    tests:
    - healthStatus:
        status: Degraded
        message: "Certificate expired"
      inputPath: testdata/degraded.yaml

Each case runs the script against the input document and compares the
decoded status with the expected one.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from .errors import EvaluationError
from .runtime import ScriptRuntime
from .status import HealthStatus, HealthStatusCode

logger = logging.getLogger(__name__)

SCRIPT_FILE = "health.lua"
TEST_FILE = "health_test.yaml"


# ── File format ──────────────────────────────────────────────────────────────


class ExpectedHealth(BaseModel):
    status: HealthStatusCode
    message: str = ""


class FixtureCase(BaseModel):
    healthStatus: ExpectedHealth
    inputPath: str


class FixtureFile(BaseModel):
    tests: list[FixtureCase] = Field(default_factory=list)


@dataclass
class FixtureResult:
    """Outcome of one fixture case."""

    input_path: str
    expected: HealthStatus
    actual: HealthStatus
    error: str = ""

    @property
    def passed(self) -> bool:
        return not self.error and self.actual == self.expected


# ── Runners ──────────────────────────────────────────────────────────────────


def load_fixture_cases(test_file: Path) -> list[FixtureCase]:
    """Parse and validate a ``health_test.yaml`` file."""
    raw = yaml.safe_load(test_file.read_text(encoding="utf-8")) or {}
    return FixtureFile.model_validate(raw).tests


def run_script_fixture(
    script: str,
    resource: Mapping[str, Any],
    expected: HealthStatus,
    use_open_libs: bool = False,
    runtime: ScriptRuntime | None = None,
    input_path: str = "",
) -> FixtureResult:
    """Run ``script`` against one resource document and compare with ``expected``."""
    runtime = runtime or ScriptRuntime()
    try:
        actual = runtime.run(script, resource, use_open_libs=use_open_libs)
    except EvaluationError as e:
        return FixtureResult(
            input_path=input_path, expected=expected,
            actual=HealthStatus.unknown(str(e)), error=f"{type(e).__name__}: {e}",
        )
    return FixtureResult(input_path=input_path, expected=expected, actual=actual)


def run_customization_dir(
    directory: Path,
    use_open_libs: bool = False,
    runtime: ScriptRuntime | None = None,
) -> list[FixtureResult]:
    """Run every case in ``<directory>/health_test.yaml`` against its ``health.lua``."""
    script = (directory / SCRIPT_FILE).read_text(encoding="utf-8")
    runtime = runtime or ScriptRuntime()

    results = []
    for case in load_fixture_cases(directory / TEST_FILE):
        resource = yaml.safe_load((directory / case.inputPath).read_text(encoding="utf-8")) or {}
        expected = HealthStatus(case.healthStatus.status, case.healthStatus.message)
        result = run_script_fixture(
            script, resource, expected,
            use_open_libs=use_open_libs, runtime=runtime, input_path=case.inputPath,
        )
        if not result.passed:
            logger.info(
                "Fixture %s: expected %s, got %s",
                case.inputPath, expected.to_dict(), result.actual.to_dict(),
            )
        results.append(result)
    return results
