"""Health subsystem — built-in checks, Lua customizations, evaluation, aggregation."""

from .aggregate import ChildHealth, aggregate, is_health_check_ignored
from .evaluator import ApplicationHealth, HealthEvaluator, evaluate, evaluate_application
from .registry import CheckRegistry, default_registry
from .resolver import BindingKind, CheckBinding, ScriptResolver
from .runtime import ScriptRuntime
from .status import HealthStatus, HealthStatusCode
