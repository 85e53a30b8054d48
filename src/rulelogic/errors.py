"""Exception and warning classes raised by rulelogic.

DefinitionError  -- a rule is malformed (bad clause, mixed variable kinds, duplicate name)
EncodingError    -- a rule cannot be written as linear/MIP rows (e.g. a product of variables)
SolverError      -- the solver returned no verdict (timeout, numerical trouble, crash)
NotConvergedError -- fixed-point simplification hit its iteration cap
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "RuleLogicError",
    "DefinitionError",
    "EncodingError",
    "SolverError",
    "NotConvergedError",
    "DefinitionWarning",
    "InfeasibleRuleSetWarning",
    "SettingsWarning",
]


class RuleLogicError(Exception):
    """Base class for errors carrying the offending rule and clause index."""

    def __init__(
        self,
        message: str,
        *,
        rule: Optional[str] = None,
        clause_index: Optional[int] = None,
    ):
        self.message = message
        self.rule = rule
        self.clause_index = clause_index
        super().__init__(self._describe())

    def _describe(self) -> str:
        where = []
        if self.rule is not None:
            where.append(f"rule '{self.rule}'")
        if self.clause_index is not None:
            where.append(f"clause {self.clause_index}")
        if not where:
            return self.message
        return f"{', '.join(where)}: {self.message}"


class DefinitionError(RuleLogicError, ValueError):
    pass


class EncodingError(RuleLogicError):
    pass


class SolverError(RuleLogicError, RuntimeError):
    """The solver gave no FEASIBLE/INFEASIBLE verdict.

    Never interpret this as infeasibility: the status name is kept in
    `status` so callers can decide whether to retry with other settings.
    """

    def __init__(self, message: str, *, status: str = "SOLVER_ERROR", **kwargs: Any):
        self.status = status
        super().__init__(message, **kwargs)


class NotConvergedError(RuleLogicError):
    """Simplification reached its round cap; `ruleset` holds the last result."""

    def __init__(self, message: str, *, ruleset: Any = None, iterations: int = 0):
        self.ruleset = ruleset
        self.iterations = iterations
        super().__init__(message)


class DefinitionWarning(UserWarning):
    pass


class InfeasibleRuleSetWarning(UserWarning):
    pass


class SettingsWarning(UserWarning):
    pass
