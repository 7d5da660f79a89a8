"""Errors raised while resolving or running a scripted health check.

Every error here is caught by the evaluator and reported as ``Unknown``;
none of them is meant to reach the reconciliation loop.
"""

from __future__ import annotations


class EvaluationError(Exception):
    """Base class for a health check that could not produce a status."""


class ResolutionAmbiguous(EvaluationError):
    """Two script entries with the same pattern matched one resource."""


class ScriptParseError(EvaluationError):
    """The script source failed to compile."""


class ScriptRuntimeError(EvaluationError):
    """The script raised an error while running."""


class ScriptTimeout(EvaluationError):
    """The script did not finish within its execution budget."""


class InvalidReturnShape(EvaluationError):
    """The script returned something other than a ``{status, message}`` table."""


class UnknownStatusLiteral(EvaluationError):
    """The script returned a ``status`` string that is not a known health status."""
