"""Payoff-to-fitness mapping.

Converts raw interaction payoffs (scores) into reproductive fitness:

    none:         f = s
    static:       f = b + w·s
    convex:       f = b·(1 − w) + w·s
    exponential:  f = b·exp(w·s)

b is the baseline fitness, w > 0 the selection strength. The exponential
map is the default choice for arbitrary selection strengths: it is the
only one that keeps f ≥ 0 for every real score and leaves relative
reproduction probabilities unchanged when a constant is added to all
payoffs. Each map has a closed-form inverse (``to_score``).

Both directions accept Python floats or NumPy arrays.
"""

from __future__ import annotations

import math
from typing import Tuple, Union

import numpy as np

from evodyn.types import (
    FitnessMapType,
    SetResult,
    accepted,
    parse_kind,
    rejected,
)


ArrayLike = Union[float, np.ndarray]


class FitnessMap:
    """Payoff → fitness transformation with baseline b and selection w."""

    def __init__(
        self,
        map_type: Union[FitnessMapType, str] = FitnessMapType.NONE,
        baseline: float = 1.0,
        selection: float = 1.0,
    ):
        self.map_type = FitnessMapType.NONE
        self.baseline = 1.0
        self.selection = 1.0
        self.configure(map_type, baseline, selection)

    # ── configuration ────────────────────────────────────────────────

    def set_map(self, map_type: Union[FitnessMapType, str]) -> SetResult:
        kind = parse_kind(FitnessMapType, map_type)
        if kind is None:
            return rejected(
                f"fitness map '{map_type}' unknown - keeping '{self.map_type.value}'"
            )
        if kind is FitnessMapType.EXPONENTIAL and self.baseline <= 0.0:
            return rejected(
                f"exponential fitness map requires baseline > 0, got {self.baseline}"
            )
        changed = kind is not self.map_type
        self.map_type = kind
        return accepted(changed)

    def set_baseline(self, baseline: float) -> SetResult:
        if not math.isfinite(baseline):
            return rejected(f"baseline fitness must be finite, got {baseline}")
        if self.map_type is FitnessMapType.EXPONENTIAL and baseline <= 0.0:
            return rejected(
                f"exponential fitness map requires baseline > 0, got {baseline}"
            )
        changed = baseline != self.baseline
        self.baseline = float(baseline)
        return accepted(changed)

    def set_selection(self, selection: float) -> SetResult:
        """Set the selection strength w; non-positive values are rejected."""
        if not math.isfinite(selection) or selection <= 0.0:
            return rejected(
                f"selection strength must be > 0, got {selection} - "
                f"keeping {self.selection}"
            )
        changed = selection != self.selection
        self.selection = float(selection)
        return accepted(changed)

    def configure(
        self,
        map_type: Union[FitnessMapType, str],
        baseline: float = 1.0,
        selection: float = 1.0,
    ) -> SetResult:
        """Set map, baseline and selection strength together.

        Baseline and selection are applied before the map type so that
        switching to the exponential map and a positive baseline in one
        call is accepted. Returns the first rejection, if any.
        """
        results = []
        if parse_kind(FitnessMapType, map_type) is not FitnessMapType.EXPONENTIAL:
            results.append(self.set_map(map_type))
            results.append(self.set_baseline(baseline))
        else:
            results.append(self.set_baseline(baseline))
            results.append(self.set_map(map_type))
        results.append(self.set_selection(selection))
        for r in results:
            if not r.ok:
                return r
        return accepted(any(r.changed for r in results))

    def is_map(self, map_type: Union[FitnessMapType, str]) -> bool:
        return parse_kind(FitnessMapType, map_type) is self.map_type

    # ── mapping ──────────────────────────────────────────────────────

    def to_fitness(self, score: ArrayLike) -> ArrayLike:
        b, w = self.baseline, self.selection
        kind = self.map_type
        if kind is FitnessMapType.NONE:
            return score
        if kind is FitnessMapType.STATIC:
            return b + w * score
        if kind is FitnessMapType.CONVEX:
            return b * (1.0 - w) + w * score
        if kind is FitnessMapType.EXPONENTIAL:
            return b * np.exp(w * score)
        raise RuntimeError(f"unhandled fitness map {kind!r}")

    def to_score(self, fitness: ArrayLike) -> ArrayLike:
        b, w = self.baseline, self.selection
        kind = self.map_type
        if kind is FitnessMapType.NONE:
            return fitness
        if kind is FitnessMapType.STATIC:
            return (fitness - b) / w
        if kind is FitnessMapType.CONVEX:
            return (fitness - b * (1.0 - w)) / w
        if kind is FitnessMapType.EXPONENTIAL:
            return np.log(fitness / b) / w
        raise RuntimeError(f"unhandled fitness map {kind!r}")

    def fitness_bounds(self, min_score: float, max_score: float) -> Tuple[float, float]:
        """Fitness range spanned by scores in [min_score, max_score].

        All maps are increasing (w > 0, and b > 0 for the exponential
        map), so the bounds are simply the mapped end points.
        """
        lo = float(self.to_fitness(min_score))
        hi = float(self.to_fitness(max_score))
        return (lo, hi) if lo <= hi else (hi, lo)

    def __repr__(self) -> str:
        return (
            f"FitnessMap({self.map_type.value!r}, baseline={self.baseline}, "
            f"selection={self.selection})"
        )
