from typing import Any, Dict, List

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from rulelogic.errors import DefinitionError, EncodingError, NotConvergedError, SolverError
from rulelogic.io.rules import rule_to_tree, rules_from_items
from rulelogic.pipeline import (
    check_feasibility,
    detect_infeasible_rules,
    is_contradicted_by,
    is_implied_by,
)
from rulelogic.settings import Settings, settings_from_mapping
from rulelogic.simplify import simplify_rules
from rulelogic.state import RuleSet

app = FastAPI(title="rulelogic")


class RulePayload(BaseModel):
    name: str
    expr: Any


class RuleSetPayload(BaseModel):
    rules: List[RulePayload]
    settings: Dict[str, Any] = Field(default_factory=dict)


class SimplifyPayload(RuleSetPayload):
    bindings: Dict[str, Any] = Field(default_factory=dict)


def _parse(payload: RuleSetPayload) -> tuple[RuleSet, Settings]:
    try:
        settings = settings_from_mapping(payload.settings)
        ruleset = rules_from_items(
            [rule.model_dump() for rule in payload.rules], strict=True
        )
    except DefinitionError:
        raise
    except (TypeError, ValueError) as e:
        raise DefinitionError(str(e)) from e
    return ruleset, settings


def _error(status_code: int, exc: Exception, **extra: Any) -> JSONResponse:
    body = {"error": type(exc).__name__, "detail": str(exc)}
    body.update(extra)
    return JSONResponse(body, status_code=status_code)


@app.exception_handler(DefinitionError)
async def definition_error(request: Request, exc: DefinitionError) -> JSONResponse:
    return _error(422, exc, rule=exc.rule, clause_index=exc.clause_index)


@app.exception_handler(EncodingError)
async def encoding_error(request: Request, exc: EncodingError) -> JSONResponse:
    return _error(422, exc, rule=exc.rule, clause_index=exc.clause_index)


@app.exception_handler(NotConvergedError)
async def not_converged(request: Request, exc: NotConvergedError) -> JSONResponse:
    rules = [rule_to_tree(rule) for rule in exc.ruleset.rules] if exc.ruleset else []
    return _error(422, exc, iterations=exc.iterations, rules=rules)


@app.exception_handler(SolverError)
async def solver_error(request: Request, exc: SolverError) -> JSONResponse:
    return _error(503, exc, status=exc.status)


@app.get("/api/ping")
def ping() -> JSONResponse:
    """Simple health check endpoint."""
    return JSONResponse({"status": "ok"})


@app.post("/api/feasibility")
def feasibility(payload: RuleSetPayload) -> JSONResponse:
    """Feasibility of the whole set; an infeasible set also lists the rules to drop."""
    ruleset, settings = _parse(payload)
    result = check_feasibility(ruleset, settings=settings)
    body = {
        "feasible": result.feasible,
        "solver_status": result.solver_status,
        "assignment": result.assignment,
        "wall_time": result.wall_time,
    }
    if not result.feasible:
        body["infeasible_rules"] = detect_infeasible_rules(ruleset, settings=settings)
    return JSONResponse(body)


def _known(ruleset: RuleSet, name: str) -> JSONResponse | None:
    if name in ruleset:
        return None
    return JSONResponse(
        {"error": "UnknownRule", "detail": f"Unknown rule '{name}'"}, status_code=404
    )


@app.post("/api/implied-by/{name}")
def implied_by(name: str, payload: RuleSetPayload) -> JSONResponse:
    ruleset, settings = _parse(payload)
    missing = _known(ruleset, name)
    if missing is not None:
        return missing
    return JSONResponse({"rule": name, "implied_by": is_implied_by(ruleset, name, settings=settings)})


@app.post("/api/contradicted-by/{name}")
def contradicted_by(name: str, payload: RuleSetPayload) -> JSONResponse:
    ruleset, settings = _parse(payload)
    missing = _known(ruleset, name)
    if missing is not None:
        return missing
    return JSONResponse(
        {"rule": name, "contradicted_by": is_contradicted_by(ruleset, name, settings=settings)}
    )


@app.post("/api/simplify")
def simplify(payload: SimplifyPayload) -> JSONResponse:
    """Simplified rule set, as trees in the rule-file format."""
    ruleset, settings = _parse(payload)
    simplified = simplify_rules(ruleset, payload.bindings or None, settings=settings)
    return JSONResponse({"rules": [rule_to_tree(rule) for rule in simplified.rules]})
