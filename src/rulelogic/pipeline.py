"""Query engine.

Every question about a rule set is answered by building fresh feasibility
programs (model.build) and reading the solver's verdicts:

  - is_feasible / is_infeasible / check_feasibility: the whole set
  - detect_infeasible_rules / make_feasible: which rules to drop
  - is_contradicted_by: rules that cannot hold together with a given rule
  - is_implied_by / detect_redundancy / remove_redundancy: implication
  - detect_fixed_variables: variables with a single feasible value
  - substitute_values: partial evaluation with known values

Independent solves (one per rule, pair or variable) run on a thread pool
when `settings.max_workers > 1`. A SolverError from any of them propagates:
no answer is ever derived from an inconclusive solve.
"""

from __future__ import annotations

import itertools
import logging
import math
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, TypeVar

import pandas as pd

from rulelogic.errors import DefinitionError, InfeasibleRuleSetWarning
from rulelogic.model.build import build_program
from rulelogic.model.normalize import negate, substitute_dnf
from rulelogic.settings import Settings
from rulelogic.solver import decode_assignment, require_verdict, submit
from rulelogic.state import (
    Atom,
    LinearClause,
    MembershipClause,
    Relation,
    Rule,
    RuleSet,
    VarKind,
)

__all__ = [
    "FeasibilityResult",
    "check_feasibility",
    "is_feasible",
    "is_infeasible",
    "detect_infeasible_rules",
    "make_feasible",
    "is_contradicted_by",
    "is_implied_by",
    "detect_redundancy",
    "remove_redundancy",
    "detect_fixed_variables",
    "substitute_rule",
    "substitute_values",
    "pin_rule",
    "pin_name",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(slots=True)
class FeasibilityResult:
    feasible: bool
    solver_status: str
    assignment: Dict[str, Any] = field(default_factory=dict)
    wall_time: float = 0.0


# ---------- Solve helpers ----------


def _solve(rules: Sequence[Rule], settings: Settings, context: str) -> FeasibilityResult:
    if not rules or all(rule.is_tautology for rule in rules):
        return FeasibilityResult(True, "TRIVIAL")
    if any(rule.is_contradiction for rule in rules):
        return FeasibilityResult(False, "TRIVIAL")
    program = build_program(rules, settings)
    result = submit(program, settings)
    feasible = require_verdict(result, context=context)
    return FeasibilityResult(
        feasible=feasible,
        solver_status=result.detail,
        assignment=decode_assignment(program, result),
        wall_time=result.wall_time,
    )


def _feasible(rules: Sequence[Rule], settings: Settings, context: str = "") -> bool:
    return _solve(rules, settings, context).feasible


def _map(fn: Callable[[T], R], items: Iterable[T], settings: Settings) -> List[R]:
    """Apply `fn` to every item, in parallel when allowed, keeping item order."""
    items = list(items)
    if settings.max_workers <= 1 or len(items) < 2:
        return [fn(item) for item in items]
    with ThreadPoolExecutor(max_workers=settings.max_workers) as pool:
        return list(pool.map(fn, items))


def _first(pred: Callable[[T], bool], items: Iterable[T], settings: Settings) -> Optional[T]:
    """First item (in order) satisfying `pred`."""
    items = list(items)
    if settings.max_workers <= 1:
        for item in items:
            if pred(item):
                return item
        return None
    for item, ok in zip(items, _map(pred, items, settings)):
        if ok:
            return item
    return None


def _negated(rule: Rule) -> Rule:
    return Rule.from_dnf(f"~{rule.name}", negate(rule.expr, rule=rule.name))


# ---------- Feasibility ----------


def check_feasibility(
    ruleset: RuleSet, *, settings: Optional[Settings] = None
) -> FeasibilityResult:
    """Solve the whole set; the assignment is decoded to rule variables."""
    settings = settings or Settings()
    result = _solve(ruleset.rules, settings, "checking feasibility")
    logger.info(
        "[Feasibility] %d rules: %s",
        len(ruleset),
        "feasible" if result.feasible else "infeasible",
    )
    return result


def is_feasible(ruleset: RuleSet, *, settings: Optional[Settings] = None) -> bool:
    return check_feasibility(ruleset, settings=settings).feasible


def is_infeasible(ruleset: RuleSet, *, settings: Optional[Settings] = None) -> bool:
    """True when no assignment satisfies all rules. An empty set is feasible."""
    return not is_feasible(ruleset, settings=settings)


# ---------- Infeasibility localization ----------


def _relax_and_trim(ruleset: RuleSet, settings: Settings) -> List[str]:
    # Drop rules in declaration order until the rest is feasible, then try to
    # re-enable each dropped rule while keeping feasibility.
    active = list(ruleset.rules)
    relaxed: List[Rule] = []
    while active and not _feasible(active, settings, "relaxing rules"):
        relaxed.append(active.pop(0))
        logger.debug("[Localization] relaxing '%s'", relaxed[-1].name)

    for rule in list(relaxed):
        trial = [r for r in ruleset.rules if r in active or r is rule]
        if _feasible(trial, settings, f"re-enabling '{rule.name}'"):
            active = trial
            relaxed.remove(rule)
            logger.debug("[Localization] re-enabled '%s'", rule.name)
    return [rule.name for rule in relaxed]


def detect_infeasible_rules(
    ruleset: RuleSet, *, settings: Optional[Settings] = None
) -> List[str]:
    """Names of rules whose removal makes the set feasible.

    Single rules are tried first in declaration order, then pairs, up to
    `settings.max_removals`; the first subset that restores feasibility is
    returned. If none does, rules are relaxed greedily and re-enabled where
    possible. A feasible set yields an empty list.
    """
    settings = settings or Settings()
    if _feasible(ruleset.rules, settings, "checking feasibility"):
        return []

    names = ruleset.names()
    for size in range(1, min(settings.max_removals, len(names)) + 1):
        found = _first(
            lambda drop: _feasible(
                ruleset.without(*drop).rules, settings, f"removing {list(drop)}"
            ),
            itertools.combinations(names, size),
            settings,
        )
        if found is not None:
            logger.info("[Localization] removing %s restores feasibility", list(found))
            return list(found)

    culprits = _relax_and_trim(ruleset, settings)
    logger.info("[Localization] greedy relaxation dropped %s", culprits)
    return culprits


def make_feasible(ruleset: RuleSet, *, settings: Optional[Settings] = None) -> RuleSet:
    """The rule set without the rules reported by detect_infeasible_rules."""
    culprits = detect_infeasible_rules(ruleset, settings=settings)
    if culprits:
        logger.info("[Localization] dropping %s", culprits)
    return ruleset.without(*culprits)


# ---------- Contradiction ----------


def _shrink_core_to_mus(
    pinned: List[Rule], core: List[Rule], settings: Settings
) -> List[Rule]:
    # Greedy deletion: drop a rule when the rest (with `pinned`) stays infeasible.
    mus = list(core)
    for rule in core:
        trial = [r for r in mus if r is not rule]
        if not _feasible(pinned + trial, settings, "shrinking conflict"):
            mus.remove(rule)
    return mus


def is_contradicted_by(
    ruleset: RuleSet, rule_name: str, *, settings: Optional[Settings] = None
) -> List[str]:
    """Names of rules that contradict `rule_name`.

    A rule r is reported when {rule_name, r} is infeasible while each of
    them is feasible alone. When the pairs do not explain a conflict that
    involves `rule_name` (e.g. x > 0, y > 0 against x + y == -1), the members
    of a subset-minimal conflict with `rule_name` are reported too. Conflicts
    among the other rules alone are set aside first (see make_feasible).
    Results are in declaration order.
    """
    settings = settings or Settings()
    target = ruleset[rule_name]
    if not _feasible([target], settings, f"checking '{rule_name}' alone"):
        warnings.warn(
            f"Rule '{rule_name}' is infeasible on its own; nothing can contradict it",
            InfeasibleRuleSetWarning,
            stacklevel=2,
        )
        return []

    others = [r for r in ruleset.rules if r.name != rule_name]
    alone = _map(lambda r: _feasible([r], settings, f"checking '{r.name}' alone"), others, settings)
    candidates = [r for r, ok in zip(others, alone) if ok]
    paired = _map(
        lambda r: _feasible([target, r], settings, f"pairing '{rule_name}' with '{r.name}'"),
        candidates,
        settings,
    )
    conflicts = {r.name for r, ok in zip(candidates, paired) if not ok}

    rest = [r for r in candidates if r.name not in conflicts]
    if rest and not _feasible(rest, settings, f"checking the rules besides '{rule_name}'"):
        # conflicts among the other rules would otherwise hide the target's own
        rest = list(make_feasible(RuleSet(tuple(rest)), settings=settings).rules)
    if rest and not _feasible([target] + rest, settings, f"joint check for '{rule_name}'"):
        core = _shrink_core_to_mus([target], rest, settings)
        if core and _feasible(core, settings, "checking conflict without target"):
            conflicts.update(r.name for r in core)

    result = [name for name in ruleset.names() if name in conflicts]
    logger.info("[Contradiction] '%s' contradicted by %s", rule_name, result)
    return result


# ---------- Implication and redundancy ----------


def is_implied_by(
    ruleset: RuleSet, rule_name: str, *, settings: Optional[Settings] = None
) -> List[str]:
    """Names of rules r such that r implies `rule_name`.

    r implies `rule_name` when {r, not rule_name} is infeasible: whenever r
    holds, `rule_name` holds too, so `rule_name` is redundant given r.
    """
    settings = settings or Settings()
    target = ruleset[rule_name]
    negated = _negated(target)
    others = [r for r in ruleset.rules if r.name != rule_name]
    verdicts = _map(
        lambda r: _feasible([r, negated], settings, f"testing '{r.name}' => '{rule_name}'"),
        others,
        settings,
    )
    result = [r.name for r, ok in zip(others, verdicts) if not ok]
    logger.info("[Implication] '%s' implied by %s", rule_name, result)
    return result


def detect_redundancy(
    ruleset: RuleSet, *, settings: Optional[Settings] = None
) -> pd.Series:
    """Boolean Series indexed by rule name: True when the other rules jointly imply it."""
    settings = settings or Settings()

    def redundant(rule: Rule) -> bool:
        if rule.is_tautology:
            return True
        rest = [r for r in ruleset.rules if r is not rule]
        return not _feasible(rest + [_negated(rule)], settings, f"testing redundancy of '{rule.name}'")

    flags = _map(redundant, ruleset.rules, settings)
    return pd.Series(flags, index=pd.Index(ruleset.names(), name="rule"), name="redundant", dtype=bool)


def remove_redundancy(ruleset: RuleSet, *, settings: Optional[Settings] = None) -> RuleSet:
    """Drop, in declaration order, each rule implied by the rules still kept.

    Among equivalent rules the last one declared survives. An infeasible set
    implies everything, so it is returned unchanged with a warning.
    """
    settings = settings or Settings()
    if not _feasible(ruleset.rules, settings, "checking feasibility"):
        warnings.warn(
            "Rule set is infeasible; redundancy removal skipped",
            InfeasibleRuleSetWarning,
            stacklevel=2,
        )
        return ruleset

    kept = list(ruleset.rules)
    for rule in ruleset.rules:
        rest = [r for r in kept if r is not rule]
        if rule.is_tautology or not _feasible(
            rest + [_negated(rule)], settings, f"testing redundancy of '{rule.name}'"
        ):
            kept = rest
            logger.info("[Redundancy] removing '%s'", rule.name)
    return RuleSet(tuple(kept))


# ---------- Fixed variables ----------


def _rounded(value: float) -> float:
    # adding 0.0 turns -0.0 into 0.0
    return round(value, 9) + 0.0


def _probe(var: str, kind: VarKind, value: Any, settings: Settings) -> List[Rule]:
    if kind is VarKind.CATEGORICAL:
        return [Rule(f"~{var}", Atom(MembershipClause(var, frozenset((value,)), negated=True)))]
    eps = settings.epsilon
    return [
        Rule(f"~{var}<", Atom(LinearClause(((var, 1.0),), Relation.LE, value - eps))),
        Rule(f"~{var}>", Atom(LinearClause(((var, 1.0),), Relation.GE, value + eps))),
    ]


def detect_fixed_variables(
    ruleset: RuleSet, *, settings: Optional[Settings] = None
) -> Dict[str, Any]:
    """Variables that take a single value in every feasible assignment.

    A feasible point supplies the candidate value v; a numeric variable is
    fixed when neither `x <= v - epsilon` nor `x >= v + epsilon` is feasible
    with the rules, a categorical one when excluding its label is infeasible.
    A numeric range narrower than epsilon therefore counts as fixed.
    """
    settings = settings or Settings()
    found = check_feasibility(ruleset, settings=settings)
    if not found.feasible:
        warnings.warn(
            "Rule set is infeasible; no fixed variables reported",
            InfeasibleRuleSetWarning,
            stacklevel=2,
        )
        return {}

    kinds = ruleset.variables()

    def fixed(var: str) -> bool:
        value = found.assignment[var]
        if kinds[var] is VarKind.CATEGORICAL and value is None:
            return False
        if kinds[var] is VarKind.NUMERIC:
            value = _rounded(value)
        return all(
            not _feasible(list(ruleset.rules) + [probe], settings, f"probing '{var}'")
            for probe in _probe(var, kinds[var], value, settings)
        )

    names = list(kinds)
    flags = _map(fixed, names, settings)
    out: Dict[str, Any] = {}
    for var, is_fixed in zip(names, flags):
        if is_fixed:
            value = found.assignment[var]
            out[var] = _rounded(value) if kinds[var] is VarKind.NUMERIC else value
    logger.info("[Fixed] %s", out)
    return out


# ---------- Substitution ----------


def pin_name(var: str) -> str:
    return f".const_{var}"


def pin_rule(var: str, value: Any, kind: Optional[VarKind] = None) -> Rule:
    """Rule stating `var == value` (or `var in {value}` for categorical values)."""
    if kind is None:
        kind = _kind_of_value(value)
    if kind is VarKind.NUMERIC:
        return Rule(pin_name(var), Atom(LinearClause(((var, 1.0),), Relation.EQ, value)))
    return Rule(pin_name(var), Atom(MembershipClause(var, frozenset((str(value),)))))


def _kind_of_value(value: Any) -> VarKind:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return VarKind.NUMERIC
    return VarKind.CATEGORICAL


def _check_bindings(
    bindings: Mapping[str, Any], kinds: Mapping[str, VarKind]
) -> Dict[str, VarKind]:
    out: Dict[str, VarKind] = {}
    for var, value in bindings.items():
        kind = kinds.get(var, _kind_of_value(value))
        if kind is VarKind.NUMERIC:
            if _kind_of_value(value) is not VarKind.NUMERIC or not math.isfinite(value):
                raise DefinitionError(
                    f"Variable '{var}' is numeric; cannot bind it to {value!r}"
                )
        elif value is None:
            raise DefinitionError(f"Variable '{var}' is categorical; cannot bind it to None")
        out[var] = kind
    return out


def substitute_rule(rule: Rule, values: Mapping[str, Any], tol: float = 0.0) -> Rule:
    """Plug values into a rule; returns the same object when it is untouched."""
    if not any(var in values for var in rule.variables):
        return rule
    return Rule.from_dnf(rule.name, substitute_dnf(rule.dnf, values, tol))


def substitute_values(
    ruleset: RuleSet,
    bindings: Mapping[str, Any],
    *,
    add_constraints: bool = True,
) -> RuleSet:
    """Partially evaluate every rule with variable -> value bindings.

    Clauses made constant by a binding are removed from their term, terms
    that became false are dropped, a rule left without terms becomes the
    always-false marker and a rule with an empty term the always-true
    marker. With `add_constraints`, one pin rule per binding (named
    `.const_<var>`) keeps the bound values part of the set; an older pin
    rule of the same name is replaced.
    """
    kinds = _check_bindings(bindings, ruleset.variables())
    pins = {pin_name(var) for var in bindings} if add_constraints else set()
    rules = [
        substitute_rule(rule, bindings) for rule in ruleset.rules if rule.name not in pins
    ]
    if add_constraints:
        rules.extend(pin_rule(var, value, kinds[var]) for var, value in bindings.items())
    logger.info("[Substitution] bound %s", sorted(bindings))
    return RuleSet(tuple(rules))
