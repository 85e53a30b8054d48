"""Program assembly for rulelogic.

Build one mixed-integer program whose feasible region is the conjunction of
the given rules by:
  1) collecting the variables (and their kinds) and categorical labels used by the rules,
  2) creating continuous variables and label indicators for them, and
  3) appending each rule's rows (see model.constraints).

The objective is always zero: every query is a pure feasibility question.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from rulelogic.errors import DefinitionError
from rulelogic.model.constraints import Row, encode_rule, exactly_one_rows
from rulelogic.model.normalize import variable_kinds
from rulelogic.model.variables import DecisionVar, create_indicators, create_numeric
from rulelogic.settings import Settings
from rulelogic.state import MembershipClause, Rule, VarKind

__all__ = ["EncodedProgram", "build_program"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EncodedProgram:
    """A feasibility program ready for the solver adapter.

    Attributes:
        variables: Decision variables (continuous and binary)
        rows: Linear constraint rows
        numeric: Mapping numeric rule variable -> decision variable name
        indicators: Mapping categorical rule variable -> label (None for
            "other") -> indicator name
        selectors: Mapping rule name -> names of its term selectors
        objective: Objective coefficients; always empty (zero objective)
    """

    variables: tuple[DecisionVar, ...]
    rows: tuple[Row, ...]
    numeric: Mapping[str, str]
    indicators: Mapping[str, Mapping[Optional[str], str]]
    selectors: Mapping[str, tuple[str, ...]]
    objective: tuple[tuple[str, float], ...] = ()


def build_program(rules: Sequence[Rule], settings: Settings) -> EncodedProgram:
    """Encode the conjunction of `rules`.

    Parameters
    ----------
    rules : Sequence[Rule]
        Rules to be satisfied simultaneously. Names need not be unique
        (probe rules may reuse a name); selectors are keyed by position.
    settings : Settings
        Strict-inequality margin and big-M bounds.

    Raises
    ------
    DefinitionError
        A variable is used as numeric in one rule and categorical in another.
    EncodingError
        A clause has no linear encoding.
    """
    kinds: dict[str, VarKind] = {}
    labels: dict[str, set[str]] = {}
    for rule in rules:
        for var, kind in variable_kinds(rule.dnf, rule=rule.name).items():
            seen = kinds.setdefault(var, kind)
            if seen is not kind:
                raise DefinitionError(
                    f"Variable '{var}' used as {kind.value} but other rules use it as {seen.value}",
                    rule=rule.name,
                )
        for term in rule.dnf:
            for clause in term:
                if isinstance(clause, MembershipClause):
                    labels.setdefault(clause.variable, set()).update(clause.labels)
                else:
                    _warn_outside_box(rule, clause, settings)

    numeric = create_numeric(
        (var for var, kind in kinds.items() if kind is VarKind.NUMERIC), settings
    )
    indicators = create_indicators(
        {
            var: sorted(labels.get(var, ()))
            for var, kind in kinds.items()
            if kind is VarKind.CATEGORICAL
        }
    )

    variables: list[DecisionVar] = list(numeric.values())
    for per_label in indicators.values():
        variables.extend(per_label.values())
    rows: list[Row] = exactly_one_rows(indicators)
    selectors: dict[str, tuple[str, ...]] = {}

    for position, rule in enumerate(rules):
        rule_vars, rule_rows, rule_selectors = encode_rule(
            position,
            rule.name,
            rule.dnf,
            numeric=numeric,
            indicators=indicators,
            settings=settings,
        )
        variables.extend(rule_vars)
        rows.extend(rule_rows)
        if rule_selectors:
            selectors[rule.name] = rule_selectors

    logger.debug(
        "[Encoding] %d rules -> %d variables, %d rows", len(rules), len(variables), len(rows)
    )
    return EncodedProgram(
        variables=tuple(variables),
        rows=tuple(rows),
        numeric={var: dv.name for var, dv in numeric.items()},
        indicators={
            var: {label: dv.name for label, dv in per_label.items()}
            for var, per_label in indicators.items()
        },
        selectors=selectors,
    )


def _warn_outside_box(rule: Rule, clause, settings: Settings) -> None:
    # Single-variable bounds beyond big-M make the rule unsatisfiable inside the box.
    if len(clause.coefs) != 1:
        return
    (name, coef), = clause.coefs
    if abs(clause.rhs / coef) > settings.bound(name):
        logger.warning(
            "[Encoding] rule '%s': '%s' lies outside the big-M box |%s| <= %g",
            rule.name,
            clause,
            name,
            settings.bound(name),
        )
