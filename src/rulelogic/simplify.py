"""Rule set simplification.

  - simplify_fixed_variables: substitute variables that can take one value only
  - simplify_conditional: drop DNF terms that cannot hold given the other rules
  - simplify_rules: substitution, both of the above and redundancy removal,
    repeated until a round changes nothing

Every step preserves the feasible region of the rule set, up to the epsilon
resolution of fixed-variable detection: a numeric variable confined to a
range narrower than epsilon is pinned to one point of it. Simplifying an
infeasible set is refused with a warning.
"""

from __future__ import annotations

import logging
import warnings
from typing import Any, Mapping, Optional

from rulelogic.errors import InfeasibleRuleSetWarning, NotConvergedError
from rulelogic.pipeline import (
    _feasible,
    _map,
    detect_fixed_variables,
    is_feasible,
    pin_rule,
    remove_redundancy,
    substitute_rule,
    substitute_values,
)
from rulelogic.settings import Settings
from rulelogic.state import LinearClause, MembershipClause, Relation, Rule, RuleSet

__all__ = ["simplify_fixed_variables", "simplify_conditional", "simplify_rules"]

logger = logging.getLogger(__name__)


def _pins(rule: Rule, var: str) -> bool:
    """Whether the rule is exactly `var == value` (or `var in {value}`)."""
    if len(rule.dnf) != 1 or len(rule.dnf[0]) != 1:
        return False
    clause = rule.dnf[0][0]
    if isinstance(clause, LinearClause):
        return clause.relation is Relation.EQ and clause.variables == (var,)
    return (
        isinstance(clause, MembershipClause)
        and clause.variable == var
        and not clause.negated
        and len(clause.labels) == 1
    )


def _refuse_infeasible(ruleset: RuleSet, settings: Settings, what: str) -> bool:
    if _feasible(ruleset.rules, settings, "checking feasibility"):
        return False
    warnings.warn(
        f"Rule set is infeasible; {what} skipped",
        InfeasibleRuleSetWarning,
        stacklevel=3,
    )
    return True


def simplify_fixed_variables(
    ruleset: RuleSet, *, settings: Optional[Settings] = None
) -> RuleSet:
    """Substitute every fixed variable into the rules that use it.

    Rules that only pin the variable are kept; rules that become always
    true are dropped; a `.const_<var>` pin rule is added when no pin for
    the variable is left.
    """
    settings = settings or Settings()
    fixed = detect_fixed_variables(ruleset, settings=settings)
    targets = {
        var: value
        for var, value in fixed.items()
        if any(var in r.variables and not _pins(r, var) for r in ruleset.rules)
    }
    if not targets:
        return ruleset

    kinds = ruleset.variables()
    rules: list[Rule] = []
    for rule in ruleset.rules:
        values = {
            var: targets[var]
            for var in rule.variables
            if var in targets and not _pins(rule, var)
        }
        # fixed values are only known up to rounding
        new = substitute_rule(rule, values, tol=1e-6) if values else rule
        if new.is_tautology:
            logger.info("[Simplify] '%s' always holds once %s are fixed", rule.name, sorted(values))
            continue
        rules.append(new)

    for var, value in targets.items():
        if not any(_pins(r, var) for r in rules):
            rules.append(pin_rule(var, value, kinds[var]))
    logger.info("[Simplify] substituted fixed variables %s", targets)
    return RuleSet(tuple(rules))


def simplify_conditional(
    ruleset: RuleSet, *, settings: Optional[Settings] = None
) -> RuleSet:
    """Remove the terms of multi-term rules that the other rules rule out.

    For `if (x > 0) y > 0` together with `x > 1`, the term `x <= 0` can
    never hold, so the rule collapses to `y > 0`.
    """
    settings = settings or Settings()
    if _refuse_infeasible(ruleset, settings, "conditional simplification"):
        return ruleset

    current = ruleset
    for name in ruleset.names():
        rule = current[name]
        if len(rule.dnf) < 2:
            continue
        rest = [r for r in current.rules if r.name != name]
        alive = _map(
            lambda term: _feasible(
                rest + [Rule.from_dnf(f"~{name}", (term,))],
                settings,
                f"testing a term of '{name}'",
            ),
            rule.dnf,
            settings,
        )
        kept = tuple(term for term, ok in zip(rule.dnf, alive) if ok)
        if len(kept) < len(rule.dnf):
            logger.info(
                "[Simplify] '%s': dropped %d of %d terms",
                name,
                len(rule.dnf) - len(kept),
                len(rule.dnf),
            )
            current = current.replace(Rule.from_dnf(name, kept))
    return current


def simplify_rules(
    ruleset: RuleSet,
    bindings: Optional[Mapping[str, Any]] = None,
    *,
    settings: Optional[Settings] = None,
) -> RuleSet:
    """Simplify a rule set to a fixed point.

    Bindings are substituted first. Then rounds of fixed-variable
    substitution, conditional simplification and redundancy removal run
    until a round changes nothing. At most `len(ruleset)` changing rounds
    are allowed; exceeding that raises NotConvergedError with the last
    rule set attached. Applying this function to its own result returns
    an equal rule set.
    """
    settings = settings or Settings()
    current = substitute_values(ruleset, bindings) if bindings else ruleset
    if not is_feasible(current, settings=settings):
        warnings.warn(
            "Rule set is infeasible; simplification skipped",
            InfeasibleRuleSetWarning,
            stacklevel=2,
        )
        return current

    limit = max(1, len(current))
    for attempt in range(limit + 1):
        nxt = simplify_fixed_variables(current, settings=settings)
        nxt = simplify_conditional(nxt, settings=settings)
        nxt = remove_redundancy(nxt, settings=settings)
        if nxt == current:
            logger.info("[Simplify] fixed point after %d rounds: %d rules", attempt, len(current))
            return current
        current = nxt

    raise NotConvergedError(
        f"Simplification did not converge within {limit} rounds",
        ruleset=current,
        iterations=limit,
    )
