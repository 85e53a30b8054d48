"""Module to submit encoded programs to an OR-tools linear solver.

This is a pure boundary crossing: it builds the backend model from an
EncodedProgram, solves it with a zero objective and reports FEASIBLE,
INFEASIBLE or SOLVER_ERROR. No logical interpretation happens here.
"""

from __future__ import annotations

import contextlib
import logging
import math
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ortools.linear_solver import pywraplp

from rulelogic.errors import SolverError
from rulelogic.model.build import EncodedProgram
from rulelogic.model.variables import OTHER
from rulelogic.settings import Settings

__all__ = ["Status", "SolveResult", "submit", "require_verdict", "decode_assignment"]

logger = logging.getLogger(__name__)

# Backends are not assumed to be reentrant: calls go through one dispatch lock.
_DISPATCH = threading.Lock()


class Status(Enum):
    FEASIBLE = "FEASIBLE"
    INFEASIBLE = "INFEASIBLE"
    SOLVER_ERROR = "SOLVER_ERROR"


@dataclass(slots=True)
class SolveResult:
    status: Status
    assignment: Dict[str, float] = field(default_factory=dict)
    wall_time: float = 0.0
    detail: str = ""


_STATUS_NAMES = {
    pywraplp.Solver.OPTIMAL: "OPTIMAL",
    pywraplp.Solver.FEASIBLE: "FEASIBLE",
    pywraplp.Solver.INFEASIBLE: "INFEASIBLE",
    pywraplp.Solver.UNBOUNDED: "UNBOUNDED",
    pywraplp.Solver.ABNORMAL: "ABNORMAL",
    pywraplp.Solver.NOT_SOLVED: "NOT_SOLVED",
    pywraplp.Solver.MODEL_INVALID: "MODEL_INVALID",
}


def _build_backend(program: EncodedProgram, settings: Settings):
    solver = pywraplp.Solver.CreateSolver(settings.backend)
    if solver is None:
        raise SolverError(
            f"Solver backend '{settings.backend}' is not available in this OR-tools build",
            status="UNAVAILABLE",
        )
    if settings.time_limit is not None:
        solver.SetTimeLimit(int(math.ceil(settings.time_limit * 1000)))

    inf = solver.infinity()
    handles: Dict[str, Any] = {}
    for dv in program.variables:
        if dv.kind == "binary":
            handles[dv.name] = solver.IntVar(dv.lb, dv.ub, dv.name)
        else:
            lb = -inf if math.isinf(dv.lb) else dv.lb
            ub = inf if math.isinf(dv.ub) else dv.ub
            handles[dv.name] = solver.NumVar(lb, ub, dv.name)

    for idx, row in enumerate(program.rows):
        if row.sense == "<=":
            lb, ub = -inf, row.rhs
        elif row.sense == ">=":
            lb, ub = row.rhs, inf
        else:
            lb = ub = row.rhs
        ct = solver.Constraint(lb, ub, f"r{idx}")
        for name, coef in row.coefs:
            ct.SetCoefficient(handles[name], ct.GetCoefficient(handles[name]) + coef)

    objective = solver.Objective()
    for name, coef in program.objective:
        objective.SetCoefficient(handles[name], coef)
    objective.SetMinimization()
    return solver, handles


def submit(program: EncodedProgram, settings: Optional[Settings] = None) -> SolveResult:
    """Solve `program` and return its status and, if feasible, an assignment.

    A timeout or any status other than OPTIMAL/FEASIBLE/INFEASIBLE is
    reported as SOLVER_ERROR, never as INFEASIBLE.
    """
    settings = settings or Settings()
    solver, handles = _build_backend(program, settings)

    params = pywraplp.MPSolverParameters()
    if settings.feasibility_tolerance is not None:
        params.SetDoubleParam(
            pywraplp.MPSolverParameters.PRIMAL_TOLERANCE, settings.feasibility_tolerance
        )

    lock = contextlib.nullcontext() if settings.reentrant else _DISPATCH
    start = time.perf_counter()
    with lock:
        code = solver.Solve(params)
    wall_time = time.perf_counter() - start
    name = _STATUS_NAMES.get(code, str(code))

    if code in (pywraplp.Solver.OPTIMAL, pywraplp.Solver.FEASIBLE):
        assignment = {dv: var.solution_value() for dv, var in handles.items()}
        result = SolveResult(Status.FEASIBLE, assignment, wall_time, name)
    elif code == pywraplp.Solver.INFEASIBLE:
        result = SolveResult(Status.INFEASIBLE, {}, wall_time, name)
    else:
        result = SolveResult(Status.SOLVER_ERROR, {}, wall_time, name)

    logger.debug(
        "[Solver] %s: %d vars, %d rows -> %s in %.3fs",
        settings.backend,
        len(program.variables),
        len(program.rows),
        name,
        wall_time,
    )
    return result


def require_verdict(result: SolveResult, *, context: str = "") -> bool:
    """Return True for FEASIBLE, False for INFEASIBLE; raise SolverError otherwise."""
    if result.status is Status.SOLVER_ERROR:
        where = f" while {context}" if context else ""
        raise SolverError(
            f"Solver returned no verdict{where} (backend status {result.detail})",
            status=result.detail or Status.SOLVER_ERROR.value,
        )
    return result.status is Status.FEASIBLE


def decode_assignment(program: EncodedProgram, result: SolveResult) -> Dict[str, Any]:
    """Translate a solver assignment back to rule variables.

    Numeric variables map to floats; categorical variables map to the
    selected label, or None when only the "other" indicator is set.
    """
    if result.status is not Status.FEASIBLE:
        return {}
    values: Dict[str, Any] = {}
    for var, dv in program.numeric.items():
        values[var] = result.assignment[dv]
    for var, per_label in program.indicators.items():
        chosen = max(per_label.items(), key=lambda item: result.assignment[item[1]])
        values[var] = None if chosen[0] is OTHER else chosen[0]
    return values
