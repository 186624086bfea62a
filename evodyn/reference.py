"""Analytical reference levels for reporting and plot overlays.

Wraps a MoranFixationSolver with the population parameters of a running
two-trait model. Reporting code asks for per-trait arrays and overlays
them on simulated statistics:

  - fixation_probability(trait): [ρ] for the mutant, [1 − ρ] for the resident
  - fixation_time(trait):        conditional fixation time of that trait
  - absorption_time():           unconditional absorption time

Times are in generations (elementary steps / N). Every query returns an
empty array, never an error, when no reference applies: the population
is not updated by the Moran process, it holds several species, or the
requested quantity is unavailable for this population size.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np

from evodyn.fixation import MoranFixationSolver
from evodyn.types import AnalyticResult, SetResult, accepted, rejected


EMPTY = np.empty(0, dtype=np.float64)


class MoranReference:
    """Reference fixation levels for mutant ``mutant_trait`` vs. the resident."""

    def __init__(
        self,
        solver: Optional[MoranFixationSolver] = None,
        population_size: int = 100,
        init_mutant_fraction: float = 0.0,
        mutant_trait: int = 0,
        moran: bool = True,
        n_species: int = 1,
    ):
        self.solver = solver if solver is not None else MoranFixationSolver()
        self.population_size = 2
        self.init_mutant_fraction = 0.0
        self.mutant_trait = int(mutant_trait)
        self.moran = bool(moran)
        self.n_species = int(n_species)
        self.set_population(population_size, init_mutant_fraction)

    def set_population(self, size: int, init_mutant_fraction: float) -> SetResult:
        if size < 2:
            return rejected(f"population size must be >= 2, got {size}")
        if not math.isfinite(init_mutant_fraction) or not (0.0 <= init_mutant_fraction <= 1.0):
            return rejected(
                f"initial mutant fraction must be in [0, 1], got {init_mutant_fraction}"
            )
        new = (int(size), float(init_mutant_fraction))
        if new == (self.population_size, self.init_mutant_fraction):
            return accepted(False)
        self.population_size, self.init_mutant_fraction = new
        return accepted(True)

    def set_model(self, moran: bool, n_species: int = 1) -> SetResult:
        """Record which population dynamics the reference has to match."""
        if n_species < 1:
            return rejected(f"n_species must be >= 1, got {n_species}")
        new = (bool(moran), int(n_species))
        if new == (self.moran, self.n_species):
            return accepted(False)
        self.moran, self.n_species = new
        return accepted(True)

    @property
    def applicable(self) -> bool:
        return self.moran and self.n_species == 1

    @property
    def initial_mutants(self) -> int:
        """m = clamp(⌊fraction·N⌋, 1, N − 1)."""
        n = self.population_size
        return min(max(int(self.init_mutant_fraction * n), 1), n - 1)

    # ── queries ──────────────────────────────────────────────────────

    def _as_array(self, result: AnalyticResult, scale: float = 1.0) -> np.ndarray:
        if not result.available:
            return EMPTY.copy()
        return np.array([result.value / scale], dtype=np.float64)

    def fixation_probability(self, trait: int) -> np.ndarray:
        if not self.applicable:
            return EMPTY.copy()
        n, m = self.population_size, self.initial_mutants
        rho = self.solver.fixation_probability(m, n)
        if not rho.available:
            return EMPTY.copy()
        if trait == self.mutant_trait:
            return np.array([rho.value])
        return np.array([1.0 - rho.value])

    def fixation_time(self, trait: int) -> np.ndarray:
        """Conditional fixation time of ``trait`` in generations."""
        if not self.applicable:
            return EMPTY.copy()
        n, m = self.population_size, self.initial_mutants
        if trait == self.mutant_trait:
            result = self.solver.conditional_fixation_time(m, n)
        else:
            result = self.solver.resident_fixation_time(m, n)
        return self._as_array(result, n)

    def absorption_time(self) -> np.ndarray:
        if not self.applicable:
            return EMPTY.copy()
        n = self.population_size
        return self._as_array(self.solver.absorption_time(self.initial_mutants, n), n)

    def __repr__(self) -> str:
        return (
            f"MoranReference(N={self.population_size}, m={self.initial_mutants}, "
            f"fA={self.solver.mutant_fitness}, fB={self.solver.resident_fitness})"
        )
