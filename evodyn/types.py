"""Core data types for evodyn.

This module is the SINGLE SOURCE OF TRUTH for:
  - the closed set of "kinds" each component dispatches on
    (FitnessMapType, DiscreteMutationType, ContinuousMutationType,
    UpdateType, SpeciesUpdateType)
  - Event: elementary event drawn by the population each step
  - SetResult: outcome of a runtime reconfiguration (accepted / rejected + reason)
  - AnalyticResult: value of an analytical computation, or an explicit
    "unavailable" marker that is never confused with 0.0

Every enum value is the key used in YAML configuration files, so
``FitnessMapType("exponential")`` round-trips with the config layer.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Type, TypeVar


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class FitnessMapType(str, Enum):
    """Payoff-to-fitness transformations.

      NONE:         fitness = score
      STATIC:       fitness = b + w·score
      CONVEX:       fitness = b·(1 − w) + w·score
      EXPONENTIAL:  fitness = b·exp(w·score)
    """
    NONE = "none"
    STATIC = "static"
    CONVEX = "convex"
    EXPONENTIAL = "exponential"


class DiscreteMutationType(str, Enum):
    """Mutation kernels for traits in [0, n_traits)."""
    NONE = "none"     # no mutations
    ALL = "all"       # any active trait, including the current one
    OTHER = "other"   # any active trait except the current one
    RANGE = "range"   # active traits within ±range (circular)


class ContinuousMutationType(str, Enum):
    """Mutation kernels for traits in [0, 1]."""
    NONE = "none"
    UNIFORM = "uniform"     # anywhere in [0, 1]
    GAUSSIAN = "gaussian"   # parent + N(0, range), rejection-resampled
    RANGE = "range"         # parent + U(-range, range), clamped


class UpdateType(str, Enum):
    """Player update rules (imitation/adoption of a model's trait)."""
    BEST = "best"                       # best wins (equal: stay)
    BEST_RANDOM = "best-random"         # best wins (equal: coin flip)
    BEST_RESPONSE = "best-response"     # best reply to current environment
    IMITATE = "imitate"                 # linear in fitness difference
    IMITATE_BETTER = "imitate-better"   # linear, better models only
    PROPORTIONAL = "proportional"       # proportional to fitness
    THERMAL = "thermal"                 # Fermi function


class SpeciesUpdateType(str, Enum):
    """Policies for picking the species to update in multi-species models."""
    SIZE = "size"           # ∝ rate × population size
    UNIFORM = "uniform"     # ∝ rate
    FITNESS = "fitness"     # ∝ rate × total fitness
    TURNS = "turns"         # round-robin


class Event(str, Enum):
    """Elementary event of an individual-based update step."""
    REPLICATION = "replication"
    MUTATION = "mutation"


class AnalyticMethod(str, Enum):
    """How an AnalyticResult was obtained."""
    EXACT = "exact"
    INFINITE_POPULATION = "infinite-population"
    UNAVAILABLE = "unavailable"


E = TypeVar("E", bound=Enum)


def parse_kind(enum_cls: Type[E], key) -> Optional[E]:
    """Look up an enum member by member, value or case-insensitive name.

    Returns None for unknown keys; callers decide whether that is a
    configuration error (reject) or an invariant violation (raise).
    """
    if isinstance(key, enum_cls):
        return key
    if not isinstance(key, str):
        return None
    k = key.strip().lower()
    for member in enum_cls:
        if member.value == k or member.name.lower() == k.replace("-", "_"):
            return member
    return None


# ═══════════════════════════════════════════════════════════════════════
# RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SetResult:
    """Outcome of a setter call.

    ok:      False if the value was rejected (previous value retained).
    changed: True if the component's configuration actually changed.
    reason:  Human-readable explanation for rejections.
    """
    ok: bool
    changed: bool = False
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


ACCEPTED_UNCHANGED = SetResult(ok=True, changed=False)
ACCEPTED_CHANGED = SetResult(ok=True, changed=True)


def rejected(reason: str) -> SetResult:
    """Warn about a rejected configuration value and return the failure."""
    warnings.warn(reason, UserWarning, stacklevel=3)
    return SetResult(ok=False, changed=False, reason=reason)


def accepted(changed: bool) -> SetResult:
    return ACCEPTED_CHANGED if changed else ACCEPTED_UNCHANGED


@dataclass(frozen=True)
class AnalyticResult:
    """A number from the analytical solver, or an explicit 'unavailable'.

    ``value`` is None if and only if ``method`` is UNAVAILABLE.
    """
    value: Optional[float]
    method: AnalyticMethod = AnalyticMethod.EXACT
    reason: str = ""

    @property
    def available(self) -> bool:
        return self.method is not AnalyticMethod.UNAVAILABLE

    @property
    def exact(self) -> bool:
        return self.method is AnalyticMethod.EXACT

    @classmethod
    def unavailable(cls, reason: str) -> "AnalyticResult":
        return cls(value=None, method=AnalyticMethod.UNAVAILABLE, reason=reason)
