"""
Decision variable construction for the MIP encoding.

Numeric rule variables become bounded continuous variables; each categorical
rule variable becomes one binary indicator per label seen in the encoded
rules, plus one indicator for "any other label".
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Mapping, Optional

from rulelogic.settings import Settings

__all__ = [
    "DecisionVar",
    "OTHER",
    "numeric_name",
    "indicator_name",
    "create_numeric",
    "create_indicators",
]

# Indicator key for a label that no encoded rule mentions.
OTHER: Optional[str] = None


@dataclass(frozen=True, slots=True)
class DecisionVar:
    """A solver-side variable.

    Attributes:
        name: Unique name within a program
        kind: "continuous" or "binary"
        lb: Lower bound
        ub: Upper bound
    """

    name: str
    kind: Literal["continuous", "binary"]
    lb: float
    ub: float


def numeric_name(var: str) -> str:
    return f"num[{var}]"


def indicator_name(var: str, label: Optional[str]) -> str:
    if label is OTHER:
        return f"cat[{var}]*"
    return f"cat[{var}={label}]"


def create_numeric(
    names: Iterable[str], settings: Settings
) -> dict[str, DecisionVar]:
    """
    Create one continuous variable per numeric rule variable.

    Parameters
    ----------
    names : Iterable[str]
        Numeric rule variables, in order of first use.
    settings : Settings
        Supplies the big-M bound of each variable.

    Returns
    -------
    Dict[str, DecisionVar]
        Mapping rule variable -> continuous variable in [-M, M].
    """
    out: dict[str, DecisionVar] = {}
    for var in names:
        bound = settings.bound(var)
        out[var] = DecisionVar(numeric_name(var), "continuous", -bound, bound)
    return out


def create_indicators(
    labels: Mapping[str, Iterable[str]],
) -> dict[str, dict[Optional[str], DecisionVar]]:
    """
    Create the binary indicators X[v, l] = 1 iff categorical variable v takes label l.

    Returns
    -------
    Dict[str, Dict[label, DecisionVar]]
        Mapping variable -> (label or OTHER) -> binary variable.
    """
    out: dict[str, dict[Optional[str], DecisionVar]] = {}
    for var, var_labels in labels.items():
        per_label: dict[Optional[str], DecisionVar] = {}
        for label in var_labels:
            per_label[label] = DecisionVar(indicator_name(var, label), "binary", 0.0, 1.0)
        per_label[OTHER] = DecisionVar(indicator_name(var, OTHER), "binary", 0.0, 1.0)
        out[var] = per_label
    return out
