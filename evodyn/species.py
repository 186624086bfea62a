"""Species selection for multi-species models.

Each elementary step of a multi-species individual-based model first
picks the species whose population is updated:

  size      P(i) ∝ rate[i] × population_size[i]
  fitness   P(i) ∝ rate[i] × total_fitness[i]
  uniform   P(i) ∝ rate[i]
  turns     species 0, 1, …, n−1, 0, 1, … (ignores rates and statistics)

Rates default to 1.0 and must stay positive.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Union

import numpy as np

from evodyn.types import (
    SetResult,
    SpeciesUpdateType,
    accepted,
    parse_kind,
    rejected,
)


class SpeciesUpdate:
    """Picks the focal species for the next update."""

    def __init__(
        self,
        n_species: int,
        update_type: Union[SpeciesUpdateType, str] = SpeciesUpdateType.SIZE,
        rates: Optional[Sequence[float]] = None,
    ):
        if n_species < 1:
            raise ValueError(f"n_species must be >= 1, got {n_species}")
        self.n_species = int(n_species)
        self.type = SpeciesUpdateType.SIZE
        self.rates = np.ones(self.n_species, dtype=np.float64)
        self._next_turn = 0
        self.set_type(update_type)
        if rates is not None:
            self.set_rates(rates)

    # ── configuration ────────────────────────────────────────────────

    def set_type(self, update_type: Union[SpeciesUpdateType, str]) -> SetResult:
        kind = parse_kind(SpeciesUpdateType, update_type)
        if kind is None:
            return rejected(
                f"species update '{update_type}' not recognized - "
                f"keeping '{self.type.value}'"
            )
        changed = kind is not self.type
        self.type = kind
        return accepted(changed)

    def set_rates(self, rates: Union[float, Sequence[float]]) -> SetResult:
        """Set per-species update rates.

        Shorter vectors are recycled, so a single value applies to every
        species. Any non-positive or non-finite entry rejects the call.
        """
        spr = np.atleast_1d(np.asarray(rates, dtype=np.float64))
        if spr.size == 0:
            return rejected("no species update rate provided")
        if not np.all(np.isfinite(spr)) or np.any(spr <= 0.0):
            return rejected(
                f"species update rates must be positive, got {spr.tolist()} - "
                f"keeping {self.rates.tolist()}"
            )
        new = np.resize(spr, self.n_species)
        if np.array_equal(new, self.rates):
            return accepted(False)
        self.rates = new
        return accepted(True)

    def set_rate(self, species: int, rate: float) -> SetResult:
        if not (0 <= species < self.n_species):
            return rejected(f"species index {species} outside [0, {self.n_species})")
        if not math.isfinite(rate) or rate <= 0.0:
            return rejected(
                f"species update rate must be positive, got {rate} - "
                f"keeping {self.rates[species]}"
            )
        changed = rate != self.rates[species]
        self.rates[species] = rate
        return accepted(changed)

    def resize(self, n_species: int) -> SetResult:
        """Change the number of species; existing rates are recycled."""
        if n_species < 1:
            return rejected(f"n_species must be >= 1, got {n_species}")
        if n_species == self.n_species:
            return accepted(False)
        self.n_species = int(n_species)
        self.rates = np.resize(self.rates, self.n_species)
        self._next_turn = 0
        return accepted(True)

    def reset(self) -> None:
        """Restart the round-robin cycle at species 0."""
        self._next_turn = 0

    # ── selection ────────────────────────────────────────────────────

    def weights(
        self,
        sizes: Optional[Sequence[float]] = None,
        total_fitness: Optional[Sequence[float]] = None,
    ) -> np.ndarray:
        """Unnormalised selection weights under the current policy."""
        kind = self.type
        if kind is SpeciesUpdateType.UNIFORM:
            return self.rates.copy()
        if kind is SpeciesUpdateType.SIZE:
            return self.rates * self._stats(sizes, "population sizes")
        if kind is SpeciesUpdateType.FITNESS:
            return self.rates * self._stats(total_fitness, "total fitness")
        if kind is SpeciesUpdateType.TURNS:
            raise ValueError("turn order has no selection weights")
        raise RuntimeError(f"unhandled species update {kind!r}")

    def _stats(self, values, label: str) -> np.ndarray:
        if values is None:
            raise ValueError(f"species update '{self.type.value}' requires {label}")
        arr = np.asarray(values, dtype=np.float64)
        if arr.shape != (self.n_species,):
            raise ValueError(
                f"expected {self.n_species} {label}, got {arr.size}"
            )
        return arr

    def next_species(
        self,
        rng: np.random.Generator,
        sizes: Optional[Sequence[float]] = None,
        total_fitness: Optional[Sequence[float]] = None,
    ) -> int:
        """Index of the species to update next.

        Raises:
            ValueError: If no species has a positive weight.
        """
        if self.type is SpeciesUpdateType.TURNS:
            idx = self._next_turn
            self._next_turn = (idx + 1) % self.n_species
            return idx
        w = self.weights(sizes, total_fitness)
        w = np.where(w > 0.0, w, 0.0)
        total = w.sum()
        if not total > 0.0:
            raise ValueError(
                f"cannot pick species: no positive weight among {w.tolist()}"
            )
        if self.n_species == 1:
            return 0
        cum = np.cumsum(w)
        idx = int(np.searchsorted(cum, rng.random() * total, side="right"))
        if idx >= self.n_species:
            idx = int(np.flatnonzero(w)[-1])
        return idx

    def __repr__(self) -> str:
        return f"SpeciesUpdate({self.type.value!r}, rates={self.rates.tolist()})"
