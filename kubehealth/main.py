"""Command-line entry point for evaluating resource health locally."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from kubehealth.config import settings
from kubehealth.customizations.loader import EMPTY_SNAPSHOT, CustomizationSnapshot, load_config_map
from kubehealth.health.evaluator import HealthEvaluator, evaluate_application
from kubehealth.health.fixtures import run_customization_dir
from kubehealth.health.status import HealthStatus, HealthStatusCode

console = Console()

_STYLES = {
    HealthStatusCode.HEALTHY: "bold green",
    HealthStatusCode.PROGRESSING: "bold blue",
    HealthStatusCode.SUSPENDED: "bold magenta",
    HealthStatusCode.DEGRADED: "bold red",
    HealthStatusCode.MISSING: "bold yellow",
    HealthStatusCode.UNKNOWN: "dim",
}


def _styled(health: HealthStatus) -> str:
    style = _STYLES[health.status]
    return f"[{style}]{health.status.value}[/{style}]"


def _load_snapshot(config: str) -> CustomizationSnapshot:
    path = config or settings.customizations_file
    if not path:
        return EMPTY_SNAPSHOT
    return load_config_map(Path(path))


def run_evaluate(resource_path: Path, config: str = "") -> int:
    """Print health for every document in a YAML file, plus the aggregate."""
    docs = [d for d in yaml.safe_load_all(resource_path.read_text(encoding="utf-8")) if d]
    if not docs:
        console.print(f"[yellow]No resources found in {resource_path}[/yellow]")
        return 1

    evaluator = HealthEvaluator(_load_snapshot(config))
    result = evaluate_application(docs, evaluator=evaluator)

    table = Table(title=str(resource_path))
    table.add_column("Resource")
    table.add_column("Health")
    table.add_column("Message")
    for child in result.children:
        name = f"{child.name} [dim](ignored)[/dim]" if child.ignore_health_check else child.name
        table.add_row(name, _styled(child.health), child.health.message)
    console.print(table)

    if len(docs) > 1:
        console.print(Panel(f"{_styled(result.health)}  {result.health.message}", title="Aggregate"))
    return 0


def run_fixtures(directory: Path, open_libs: bool = False) -> int:
    """Run a customization's health_test.yaml; exit status 1 on any failure."""
    results = run_customization_dir(directory, use_open_libs=open_libs)

    table = Table(title=f"{directory}")
    table.add_column("Input")
    table.add_column("Expected")
    table.add_column("Actual")
    table.add_column("")
    for r in results:
        table.add_row(
            r.input_path,
            f"{r.expected.status.value}: {r.expected.message}",
            f"{r.actual.status.value}: {r.actual.message}",
            "[green]PASS[/green]" if r.passed else "[red]FAIL[/red]",
        )
    console.print(table)

    failed = sum(1 for r in results if not r.passed)
    console.print(f"\n[dim]{len(results) - failed} passed / {failed} failed[/dim]")
    return 1 if failed else 0


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    parser = argparse.ArgumentParser(description="Kubernetes resource health evaluation")
    sub = parser.add_subparsers(dest="command")

    eval_parser = sub.add_parser("evaluate", help="Evaluate the health of resources in a YAML file")
    eval_parser.add_argument("resource", type=Path, help="Resource manifest (multi-document allowed)")
    eval_parser.add_argument("--config", default="", help="ConfigMap with resource.customizations")

    test_parser = sub.add_parser("test", help="Run a Lua health customization's fixtures")
    test_parser.add_argument("directory", type=Path, help="Directory with health.lua and health_test.yaml")
    test_parser.add_argument("--open-libs", action="store_true", help="Expose the full Lua standard library")

    args = parser.parse_args()

    if args.command == "evaluate":
        sys.exit(run_evaluate(args.resource, args.config))
    elif args.command == "test":
        sys.exit(run_fixtures(args.directory, args.open_libs))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
