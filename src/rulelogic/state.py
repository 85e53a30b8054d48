"""Module with dataclasses to hold the rule model: clauses, expressions, rules and rule sets"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Union

from rulelogic.errors import DefinitionError, DefinitionWarning

__all__ = [
    "VarKind",
    "Relation",
    "Variable",
    "LinearClause",
    "MembershipClause",
    "Clause",
    "Atom",
    "Const",
    "And",
    "Or",
    "Not",
    "If",
    "Expr",
    "TRUE",
    "FALSE",
    "Term",
    "DNF",
    "Rule",
    "RuleSet",
]


class VarKind(Enum):
    """Enum to represent the kind of a variable"""

    NUMERIC = "numeric"
    CATEGORICAL = "categorical"


class Relation(Enum):
    """Enum to represent the relation of a linear clause"""

    LE = "<="
    LT = "<"
    EQ = "=="
    GE = ">="
    GT = ">"

    @classmethod
    def parse(cls, op: Union[str, Relation]) -> Relation:
        if isinstance(op, Relation):
            return op
        try:
            return cls(op)
        except ValueError as e:
            known = ", ".join(r.value for r in cls)
            raise DefinitionError(f"Unknown relation '{op}'. Known: {known}") from e

    @property
    def is_strict(self) -> bool:
        return self in (Relation.LT, Relation.GT)


@dataclass(frozen=True, slots=True)
class Variable:
    """Class to represent a variable referenced by rules

    Attributes:
        name: The name of the variable, unique within a rule set
        kind: Whether the variable is numeric or categorical
    """

    name: str
    kind: VarKind


def _finite(value, what: str) -> float:
    if isinstance(value, bool):
        raise DefinitionError(f"{what} must be a number, got a bool")
    try:
        out = float(value)
    except (TypeError, ValueError) as e:
        raise DefinitionError(f"{what} must be a number, got {value!r}") from e
    if not math.isfinite(out):
        raise DefinitionError(f"{what} must be finite, got {value!r}")
    return out


@dataclass(frozen=True, slots=True)
class LinearClause:
    """Class to represent `sum(a_i * x_i) <relation> rhs` over numeric variables

    Attributes:
        coefs: Tuple of (variable name, coefficient) pairs, sorted by name,
            duplicates merged and zero coefficients dropped
        relation: The relation between the weighted sum and `rhs`
        rhs: The constant on the right hand side
    """

    coefs: tuple[tuple[str, float], ...]
    relation: Relation
    rhs: float

    def __post_init__(self):
        pairs = self.coefs.items() if isinstance(self.coefs, Mapping) else self.coefs
        merged: dict[str, float] = {}
        for name, coef in pairs:
            if not isinstance(name, str) or not name:
                raise DefinitionError(f"Variable names must be non-empty strings, got {name!r}")
            merged[name] = merged.get(name, 0.0) + _finite(coef, f"Coefficient of '{name}'")
        object.__setattr__(
            self,
            "coefs",
            tuple(sorted((n, a) for n, a in merged.items() if a != 0.0)),
        )
        object.__setattr__(self, "relation", Relation.parse(self.relation))
        object.__setattr__(self, "rhs", _finite(self.rhs, "Right hand side"))

    @property
    def variables(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.coefs)

    def __str__(self) -> str:
        if not self.coefs:
            lhs = "0"
        else:
            lhs = " + ".join(
                name if coef == 1.0 else f"{coef:g}*{name}" for name, coef in self.coefs
            )
        return f"{lhs} {self.relation.value} {self.rhs:g}"


@dataclass(frozen=True, slots=True)
class MembershipClause:
    """Class to represent `variable in labels` (or `not in` when negated)

    Attributes:
        variable: The name of a categorical variable
        labels: The set of labels; empty membership is always false and
            empty exclusion is always true
        negated: False for set membership, True for set exclusion
    """

    variable: str
    labels: frozenset[str]
    negated: bool = False

    def __post_init__(self):
        if not isinstance(self.variable, str) or not self.variable:
            raise DefinitionError(
                f"Variable names must be non-empty strings, got {self.variable!r}"
            )
        if isinstance(self.labels, str):
            labels = frozenset((self.labels,))
        else:
            labels = frozenset(str(label) for label in self.labels)
        object.__setattr__(self, "labels", labels)
        object.__setattr__(self, "negated", bool(self.negated))

    @property
    def variables(self) -> tuple[str, ...]:
        return (self.variable,)

    def __str__(self) -> str:
        op = "not in" if self.negated else "in"
        return f"{self.variable} {op} {{{', '.join(sorted(self.labels))}}}"


Clause = Union[LinearClause, MembershipClause]


# ---------- Expression tree ----------


@dataclass(frozen=True, slots=True)
class Atom:
    clause: Clause


@dataclass(frozen=True, slots=True)
class Const:
    value: bool


@dataclass(frozen=True, slots=True)
class And:
    args: tuple[Expr, ...]

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))


@dataclass(frozen=True, slots=True)
class Or:
    args: tuple[Expr, ...]

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))


@dataclass(frozen=True, slots=True)
class Not:
    arg: Expr


@dataclass(frozen=True, slots=True)
class If:
    """Conditional `if antecedent then consequent`, read as `not antecedent or consequent`."""

    antecedent: Expr
    consequent: Expr


Expr = Union[Atom, Const, And, Or, Not, If]

TRUE = Const(True)
FALSE = Const(False)

# A term is a conjunction of clauses; a DNF is a disjunction of terms.
Term = tuple[Clause, ...]
DNF = tuple[Term, ...]


def _expr_from_dnf(dnf: DNF) -> Expr:
    if not dnf:
        return FALSE
    if any(not term for term in dnf):
        return TRUE
    terms: list[Expr] = []
    for term in dnf:
        atoms = [Atom(clause) for clause in term]
        terms.append(atoms[0] if len(atoms) == 1 else And(tuple(atoms)))
    return terms[0] if len(terms) == 1 else Or(tuple(terms))


@dataclass(frozen=True, slots=True)
class Rule:
    """Class to represent a named rule

    Attributes:
        name: The name of the rule, unique within its rule set
        expr: The expression tree of the rule
        dnf: The disjunctive normal form, computed on first access (derived)
    """

    name: str
    expr: Expr
    _dnf: Optional[DNF] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise DefinitionError(f"Rule name must be a non-empty string, got {self.name!r}")

    @classmethod
    def from_dnf(cls, name: str, dnf: Iterable[Iterable[Clause]]) -> Rule:
        from rulelogic.model.normalize import reduce_dnf

        reduced = reduce_dnf(tuple(tuple(term) for term in dnf))
        rule = cls(name, _expr_from_dnf(reduced))
        object.__setattr__(rule, "_dnf", reduced)
        return rule

    @property
    def dnf(self) -> DNF:
        if self._dnf is None:
            from rulelogic.model.normalize import to_dnf

            object.__setattr__(self, "_dnf", to_dnf(self.expr, rule=self.name))
        return self._dnf

    @property
    def variables(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for term in self.dnf:
            for clause in term:
                for name in clause.variables:
                    seen.setdefault(name, None)
        return tuple(seen)

    @property
    def is_tautology(self) -> bool:
        return any(not term for term in self.dnf)

    @property
    def is_contradiction(self) -> bool:
        return not self.dnf

    def renamed(self, name: str) -> Rule:
        rule = Rule(name, self.expr)
        object.__setattr__(rule, "_dnf", self._dnf)
        return rule


@dataclass(frozen=True, slots=True)
class RuleSet:
    """Immutable, ordered collection of uniquely named rules.

    Every transformation returns a new RuleSet that shares the unchanged
    Rule objects with the original.

    Attributes:
        rules: Tuple of rules in declaration order
    """

    rules: tuple[Rule, ...] = ()
    _index: Mapping[str, Rule] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        rules = tuple(self.rules)
        index: dict[str, Rule] = {}
        for rule in rules:
            if not isinstance(rule, Rule):
                raise TypeError(f"RuleSet members must be Rule objects, got {rule!r}")
            if rule.name in index:
                raise DefinitionError("Duplicate rule name", rule=rule.name)
            index[rule.name] = rule
        object.__setattr__(self, "rules", rules)
        object.__setattr__(self, "_index", MappingProxyType(index))

    @classmethod
    def from_rules(cls, rules: Iterable[Rule], *, strict: bool = False) -> RuleSet:
        """Build a RuleSet, checking each rule's definition.

        Duplicate names, rules that fail normalization and rules that use a
        variable with another kind than earlier rules are skipped with a
        DefinitionWarning, or raised when `strict` is True.
        """
        kept: list[Rule] = []
        names: set[str] = set()
        kinds: dict[str, VarKind] = {}
        for rule in rules:
            try:
                if rule.name in names:
                    raise DefinitionError("Duplicate rule name", rule=rule.name)
                rule_kinds = _rule_kinds(rule)
                for var, kind in rule_kinds.items():
                    if kinds.get(var, kind) is not kind:
                        raise DefinitionError(
                            f"Variable '{var}' used as {kind.value} but earlier rules use it as {kinds[var].value}",
                            rule=rule.name,
                        )
            except DefinitionError as e:
                if strict:
                    raise
                warnings.warn(f"Skipping {e}", DefinitionWarning, stacklevel=2)
                continue
            kinds.update(rule_kinds)
            names.add(rule.name)
            kept.append(rule)
        return cls(tuple(kept))

    # ---------- Mapping-like access ----------

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __getitem__(self, name: str) -> Rule:
        try:
            return self._index[name]
        except KeyError as e:
            known = ", ".join(self._index)
            raise KeyError(f"Unknown rule '{name}'. Known: {known}") from e

    def get(self, name: str, default: Optional[Rule] = None) -> Optional[Rule]:
        return self._index.get(name, default)

    def names(self) -> list[str]:
        return list(self._index)

    # ---------- Transformations ----------

    def without(self, *names: str) -> RuleSet:
        drop = set(names)
        return RuleSet(tuple(r for r in self.rules if r.name not in drop))

    def only(self, names: Iterable[str]) -> RuleSet:
        keep = set(names)
        return RuleSet(tuple(r for r in self.rules if r.name in keep))

    def replace(self, rule: Rule) -> RuleSet:
        """Swap the rule with the same name, keeping its position."""
        if rule.name not in self._index:
            raise KeyError(f"Unknown rule '{rule.name}'")
        return RuleSet(tuple(rule if r.name == rule.name else r for r in self.rules))

    def extend(self, rules: Iterable[Rule]) -> RuleSet:
        return RuleSet(self.rules + tuple(rules))

    # ---------- Derived views ----------

    def variables(self) -> dict[str, VarKind]:
        """Map every referenced variable to its kind, in order of first use."""
        kinds: dict[str, VarKind] = {}
        for rule in self.rules:
            for var, kind in _rule_kinds(rule).items():
                if kinds.get(var, kind) is not kind:
                    raise DefinitionError(
                        f"Variable '{var}' used as {kind.value} but earlier rules use it as {kinds[var].value}",
                        rule=rule.name,
                    )
                kinds.setdefault(var, kind)
        return kinds

    def labels(self) -> dict[str, tuple[str, ...]]:
        """Map every categorical variable to the sorted labels used for it."""
        out: dict[str, set[str]] = {}
        for rule in self.rules:
            for term in rule.dnf:
                for clause in term:
                    if isinstance(clause, MembershipClause):
                        out.setdefault(clause.variable, set()).update(clause.labels)
        return {var: tuple(sorted(labels)) for var, labels in out.items()}


def _rule_kinds(rule: Rule) -> dict[str, VarKind]:
    from rulelogic.model.normalize import variable_kinds

    return variable_kinds(rule.dnf, rule=rule.name)
