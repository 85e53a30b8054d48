"""Encoder and solver settings, optionally loaded from YAML.

Assumptions (strict):
- The file is YAML and contains a top-level `solver:` mapping.
- Known keys must have the right type; a wrong type raises.
- Unknown keys are ignored with a SettingsWarning.
- If `path` is None, defaults are returned.

`epsilon` and `big_m` change what the encoding means, not only how fast it
solves:
- strict relations `a.x < b` are encoded as `a.x <= b - epsilon`, so points
  closer than `epsilon` to the boundary are lost;
- every numeric variable is confined to `[-M, M]` where `M` is `big_m` or its
  per-variable override, and inactive disjunction terms are relaxed by a
  constant derived from those bounds. Values outside the box are treated as
  impossible.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Mapping, Optional

from yaml import safe_load

from rulelogic.errors import SettingsWarning

__all__ = ["Settings", "settings_from_mapping", "load_settings"]


@dataclass(frozen=True, slots=True)
class Settings:
    """Tolerances and limits shared by the encoder, the solver adapter and the queries.

    Attributes:
        epsilon: Margin used to turn strict inequalities into non-strict ones
        big_m: Default magnitude bound of numeric variables
        big_m_overrides: Per-variable magnitude bounds
        backend: OR-tools linear solver backend name (e.g. "SCIP", "CBC")
        time_limit: Seconds per solver call; None for no limit
        feasibility_tolerance: Primal tolerance passed to the backend; None keeps its default
        max_workers: Threads used for independent solves (1 runs them in order)
        reentrant: Whether the backend may be called from several threads at once
        max_removals: Largest subset size tried exhaustively when localizing infeasibility
    """

    epsilon: float = 1e-3
    big_m: float = 1e6
    big_m_overrides: Mapping[str, float] = field(default_factory=dict)
    backend: str = "SCIP"
    time_limit: Optional[float] = None
    feasibility_tolerance: Optional[float] = 1e-9
    max_workers: int = 1
    reentrant: bool = False
    max_removals: int = 2

    def __post_init__(self):
        if not (math.isfinite(self.epsilon) and self.epsilon > 0):
            raise ValueError("'epsilon' must be a positive finite number")
        if not (math.isfinite(self.big_m) and self.big_m > self.epsilon):
            raise ValueError("'big_m' must be finite and larger than 'epsilon'")
        overrides = dict(self.big_m_overrides or {})
        for name, bound in overrides.items():
            if not (isinstance(bound, (int, float)) and math.isfinite(bound) and bound > 0):
                raise ValueError(f"big_m override for '{name}' must be a positive finite number")
        object.__setattr__(self, "big_m_overrides", MappingProxyType(overrides))
        if self.time_limit is not None and self.time_limit <= 0:
            raise ValueError("'time_limit' must be positive when given")
        if self.feasibility_tolerance is not None and self.feasibility_tolerance <= 0:
            raise ValueError("'feasibility_tolerance' must be positive when given")
        if self.max_workers < 1:
            raise ValueError("'max_workers' must be at least 1")
        if self.max_removals < 1:
            raise ValueError("'max_removals' must be at least 1")

    def bound(self, name: str) -> float:
        """Magnitude bound (big-M) for the numeric variable `name`."""
        return float(self.big_m_overrides.get(name, self.big_m))


_TYPES: dict[str, tuple[type, ...]] = {
    "epsilon": (int, float),
    "big_m": (int, float),
    "big_m_overrides": (dict,),
    "backend": (str,),
    "time_limit": (int, float, type(None)),
    "feasibility_tolerance": (int, float, type(None)),
    "max_workers": (int,),
    "reentrant": (bool,),
    "max_removals": (int,),
}


def settings_from_mapping(data: Mapping[str, Any]) -> Settings:
    """Build Settings from a plain mapping, warning on unknown keys."""
    known = {f.name for f in fields(Settings) if not f.name.startswith("_")}
    for key in sorted(k for k in data if k not in known):
        warnings.warn(
            f"Ignoring unknown solver setting: '{key}'",
            SettingsWarning,
            stacklevel=2,
        )

    kwargs: dict[str, Any] = {}
    for key in known:
        if key not in data:
            continue
        value = data[key]
        expected = _TYPES[key]
        # bool is an int subclass; only `reentrant` may be a bool
        if (isinstance(value, bool) and bool not in expected) or not isinstance(value, expected):
            raise TypeError(
                f"Solver setting '{key}' has the wrong type: got {type(value).__name__}."
            )
        kwargs[key] = value
    return Settings(**kwargs)


def load_settings(path: Optional[str]) -> Settings:
    """Load Settings from the `solver:` mapping of the YAML file at `path`."""
    if path is None:
        return Settings()

    with open(path, "r", encoding="utf-8") as stream:
        parsed = safe_load(stream) or {}

    if (
        not isinstance(parsed, dict)
        or "solver" not in parsed
        or not isinstance(parsed["solver"], dict)
    ):
        raise ValueError("Settings file must contain a top-level 'solver' mapping.")
    return settings_from_mapping(parsed["solver"])
