"""Mutation operators for discrete and continuous traits.

Two flavours of mutation process:
  - thermal (``uniform=False``): mutations are tied to reproduction or
    imitation events. The population asks ``should_mutate(rng)`` each
    time an offspring/imitator adopts a trait.
  - uniform (``uniform=True``, "cosmic rays"): mutations arise
    independently of reproduction. The population asks
    ``pick_event(rng)`` each elementary step; a MUTATION event replaces
    the replication step with probability ``probability``.

Discrete kernels operate on an explicit dense index of the active,
non-vacant traits (``ActiveTraits``), rebuilt only when the trait set is
reconfigured. The same candidate sets drive the individual-level draw
(``mutate``) and the density-level flux (``mutate_density``), so the
deterministic and stochastic models describe the same microscopic rule.

All draws use the run-scoped generator passed in by the caller; no
operator owns a generator of its own.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional, Sequence, Union

import numpy as np

from evodyn.types import (
    ContinuousMutationType,
    DiscreteMutationType,
    Event,
    SetResult,
    accepted,
    parse_kind,
    rejected,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# ACTIVE TRAIT INDEX
# ═══════════════════════════════════════════════════════════════════════

class ActiveTraits:
    """Dense index of the traits a mutation may produce.

    Attributes:
        n_traits: Total number of trait slots.
        vacant: Index of the vacant trait, or None.
        mask: (n_traits,) bool, active and not vacant.
        indices: (n_candidates,) int, trait ids of the candidates, ascending.
        dense: (n_traits,) int, position of each trait in ``indices`` (-1 if absent).
    """

    def __init__(
        self,
        n_traits: int,
        active: Optional[Sequence[bool]] = None,
        vacant: Optional[int] = None,
    ):
        if n_traits < 1:
            raise ValueError(f"n_traits must be >= 1, got {n_traits}")
        if active is None:
            mask = np.ones(n_traits, dtype=bool)
        else:
            mask = np.array(active, dtype=bool)
            if mask.shape != (n_traits,):
                raise ValueError(
                    f"active mask has {mask.size} entries, expected {n_traits}"
                )
        if vacant is not None and not (0 <= vacant < n_traits):
            raise ValueError(f"vacant index {vacant} outside [0, {n_traits})")

        self.n_traits = int(n_traits)
        self.vacant = None if vacant is None else int(vacant)
        self.active = mask.copy()
        if self.vacant is not None:
            mask[self.vacant] = False
        self.mask = mask
        self.indices = np.flatnonzero(mask)
        self.dense = np.full(n_traits, -1, dtype=np.int64)
        self.dense[self.indices] = np.arange(self.indices.size)

    @property
    def n_candidates(self) -> int:
        return int(self.indices.size)

    def is_candidate(self, trait: int) -> bool:
        return 0 <= trait < self.n_traits and bool(self.mask[trait])

    def same_as(self, other: "ActiveTraits") -> bool:
        return (
            self.n_traits == other.n_traits
            and self.vacant == other.vacant
            and np.array_equal(self.active, other.active)
        )


# ═══════════════════════════════════════════════════════════════════════
# SHARED BEHAVIOUR
# ═══════════════════════════════════════════════════════════════════════

class _Mutation:
    """Probability and process flavour shared by both trait kinds."""

    def __init__(self) -> None:
        self.probability = 0.0
        self.uniform = True

    def _check_probability(self, probability: float) -> Optional[SetResult]:
        if not math.isfinite(probability) or not (0.0 <= probability <= 1.0):
            return rejected(
                f"mutation probability must be in [0, 1], got {probability} - "
                f"keeping {self.probability}"
            )
        return None

    def should_mutate(self, rng: np.random.Generator) -> bool:
        """Decide whether a reproduction/imitation event carries a mutation.

        Always False for the uniform (cosmic ray) process, whose mutations
        are scheduled through ``pick_event`` instead.
        """
        if self.is_none() or self.uniform:
            return False
        if self.probability >= 1.0:
            return True
        return bool(rng.random() < self.probability)

    def pick_event(self, rng: np.random.Generator) -> Event:
        """Draw the type of the next elementary event.

        Only the uniform process produces MUTATION events; no random number
        is consumed otherwise.
        """
        if self.is_none() or not self.uniform or self.probability <= 0.0:
            return Event.REPLICATION
        if rng.random() >= self.probability:
            return Event.REPLICATION
        return Event.MUTATION

    def is_none(self) -> bool:
        raise NotImplementedError


# ═══════════════════════════════════════════════════════════════════════
# DISCRETE TRAITS
# ═══════════════════════════════════════════════════════════════════════

class DiscreteMutation(_Mutation):
    """Mutations among a finite set of traits [0, n_traits).

    Kernels:
      ALL:    uniform over active traits (current trait included)
      OTHER:  uniform over active traits except the current one
      RANGE:  uniform over active traits within ±range steps of the
              current trait, wrapping around modulo n_traits (current
              trait included)

    The vacant trait is never produced, and a vacant site never mutates.
    With fewer than two candidate traits every call is a no-op.
    """

    def __init__(
        self,
        n_traits: int,
        mutation_type: Union[DiscreteMutationType, str] = DiscreteMutationType.NONE,
        probability: float = 0.0,
        range: int = 0,
        uniform: bool = True,
        active: Optional[Sequence[bool]] = None,
        vacant: Optional[int] = None,
    ):
        super().__init__()
        self.type = DiscreteMutationType.NONE
        self.range = 0
        self.traits = ActiveTraits(n_traits, active, vacant)
        self._range_candidates: Dict[int, np.ndarray] = {}
        self._matrix: Optional[np.ndarray] = None
        self.configure(mutation_type, probability, range=range, uniform=uniform)

    @property
    def n_traits(self) -> int:
        return self.traits.n_traits

    def is_none(self) -> bool:
        return self.type is DiscreteMutationType.NONE

    # ── configuration ────────────────────────────────────────────────

    def configure(
        self,
        mutation_type: Union[DiscreteMutationType, str, None],
        probability: float,
        range: int = 0,
        uniform: bool = True,
    ) -> SetResult:
        """Set kernel, probability, range and process flavour atomically.

        ``mutation_type=None`` selects OTHER for positive probabilities.
        A zero probability always yields type NONE. On rejection nothing
        changes.
        """
        bad = self._check_probability(probability)
        if bad is not None:
            return bad
        if mutation_type is None:
            kind = DiscreteMutationType.OTHER
        else:
            kind = parse_kind(DiscreteMutationType, mutation_type)
            if kind is None:
                return rejected(
                    f"mutation type '{mutation_type}' not recognized - "
                    f"keeping '{self.type.value}'"
                )
        if range < 0 or int(range) != range:
            return rejected(f"mutation range must be a non-negative integer, got {range}")
        if kind is DiscreteMutationType.RANGE and range < 1:
            return rejected(f"mutation type 'range' requires range >= 1, got {range}")
        if probability <= 0.0:
            kind = DiscreteMutationType.NONE

        new = (kind, float(probability), int(range), bool(uniform))
        old = (self.type, self.probability, self.range, self.uniform)
        if new == old:
            return accepted(False)
        self.type, self.probability, self.range, self.uniform = new
        self._invalidate()
        return accepted(True)

    def set_traits(
        self,
        n_traits: int,
        active: Optional[Sequence[bool]] = None,
        vacant: Optional[int] = None,
    ) -> SetResult:
        """Replace the trait set (number of traits, active mask, vacancy)."""
        try:
            traits = ActiveTraits(n_traits, active, vacant)
        except ValueError as exc:
            return rejected(f"invalid trait configuration: {exc}")
        if traits.same_as(self.traits):
            return accepted(False)
        self.traits = traits
        self._invalidate()
        logger.debug(
            "mutation trait set: %d traits, %d candidates, vacant=%s",
            traits.n_traits, traits.n_candidates, traits.vacant,
        )
        return accepted(True)

    def _invalidate(self) -> None:
        self._range_candidates.clear()
        self._matrix = None

    # ── individual level ─────────────────────────────────────────────

    def candidates(self, trait: int) -> np.ndarray:
        """Traits a mutation of ``trait`` can produce (each equally likely)."""
        t = self.traits
        if self.is_none() or trait == t.vacant or t.n_candidates < 2:
            return np.array([trait], dtype=np.int64)
        kind = self.type
        if kind is DiscreteMutationType.ALL:
            return t.indices
        if kind is DiscreteMutationType.OTHER:
            return t.indices[t.indices != trait]
        if kind is DiscreteMutationType.RANGE:
            return self._range_set(trait)
        raise RuntimeError(f"unhandled discrete mutation type {kind!r}")

    def _range_set(self, trait: int) -> np.ndarray:
        # window wraps around the trait ring and keeps ``trait`` itself
        cached = self._range_candidates.get(trait)
        if cached is None:
            t = self.traits
            offsets = np.arange(-self.range, self.range + 1)
            window = np.unique((trait + offsets) % t.n_traits)
            cached = window[t.mask[window]]
            if cached.size == 0:
                cached = np.array([trait], dtype=np.int64)
            self._range_candidates[trait] = cached
        return cached

    def mutate(self, trait: int, rng: np.random.Generator) -> int:
        """Return the mutated trait of an individual currently holding ``trait``."""
        t = self.traits
        if self.is_none() or trait == t.vacant or t.n_candidates < 2:
            return trait
        kind = self.type
        if kind is DiscreteMutationType.ALL:
            return int(t.indices[rng.integers(t.n_candidates)])
        if kind is DiscreteMutationType.OTHER:
            pos = int(t.dense[trait]) if 0 <= trait < t.n_traits else -1
            if pos < 0:
                # current trait is not a candidate: any candidate is "other"
                return int(t.indices[rng.integers(t.n_candidates)])
            k = int(rng.integers(t.n_candidates - 1))
            if k >= pos:
                k += 1
            return int(t.indices[k])
        if kind is DiscreteMutationType.RANGE:
            window = self._range_set(trait)
            return int(window[rng.integers(window.size)])
        raise RuntimeError(f"unhandled discrete mutation type {kind!r}")

    # ── density level ────────────────────────────────────────────────

    def transition_matrix(self) -> np.ndarray:
        """(n_traits, n_traits) column-stochastic matrix M[to, from].

        Column j is the distribution of ``mutate(j)``; vacant and no-op
        columns are unit vectors.
        """
        if self._matrix is None:
            n = self.n_traits
            m = np.zeros((n, n), dtype=np.float64)
            for j in range(n):
                c = self.candidates(j)
                m[c, j] += 1.0 / c.size
            self._matrix = m
        return self._matrix

    def mutate_density(
        self,
        state: np.ndarray,
        change: np.ndarray,
        start: int = 0,
        stop: Optional[int] = None,
    ) -> np.ndarray:
        """Apply the mutation flux to a rate of change, in place.

        For densities x = state[start:stop] and selection dynamics
        dx = change[start:stop]:

            dx ← (1 − μ)·dx + μ·(M·x − x)

        Column sums of M are 1, so Σ dx is unchanged: total mass is
        conserved whenever it was conserved before.

        Returns:
            ``change`` (modified in place).
        """
        if self.is_none():
            return change
        stop = state.shape[0] if stop is None else stop
        if stop - start != self.n_traits:
            raise ValueError(
                f"density slice [{start}:{stop}] has {stop - start} traits, "
                f"expected {self.n_traits}"
            )
        mu = self.probability
        x = state[start:stop]
        flux = self.transition_matrix() @ x - x
        change[start:stop] = change[start:stop] * (1.0 - mu) + mu * flux
        return change

    def __repr__(self) -> str:
        return (
            f"DiscreteMutation({self.type.value!r}, p={self.probability}, "
            f"range={self.range}, uniform={self.uniform}, n_traits={self.n_traits})"
        )


# ═══════════════════════════════════════════════════════════════════════
# CONTINUOUS TRAITS
# ═══════════════════════════════════════════════════════════════════════

class ContinuousMutation(_Mutation):
    """Mutations of traits normalised to [0, 1].

    Boundary policy is fixed per kind:
      GAUSSIAN: redraw until the value lands in [0, 1] (no mass piles up
                on the boundaries)
      RANGE:    clamp to [0, 1] (boundaries are absorbing)
    """

    def __init__(
        self,
        mutation_type: Union[ContinuousMutationType, str] = ContinuousMutationType.NONE,
        probability: float = 0.0,
        range: float = 0.0,
        uniform: bool = True,
    ):
        super().__init__()
        self.type = ContinuousMutationType.NONE
        self.range = 0.0
        self.configure(mutation_type, probability, range=range, uniform=uniform)

    def is_none(self) -> bool:
        return self.type is ContinuousMutationType.NONE

    def configure(
        self,
        mutation_type: Union[ContinuousMutationType, str],
        probability: float,
        range: float = 0.0,
        uniform: bool = True,
    ) -> SetResult:
        bad = self._check_probability(probability)
        if bad is not None:
            return bad
        kind = parse_kind(ContinuousMutationType, mutation_type)
        if kind is None:
            return rejected(
                f"mutation type '{mutation_type}' not recognized - "
                f"keeping '{self.type.value}'"
            )
        if not math.isfinite(range) or range < 0.0:
            return rejected(f"mutation range must be >= 0, got {range}")
        if kind in (ContinuousMutationType.GAUSSIAN, ContinuousMutationType.RANGE) and range <= 0.0:
            return rejected(f"mutation type '{kind.value}' requires range > 0, got {range}")
        if probability <= 0.0:
            kind = ContinuousMutationType.NONE

        new = (kind, float(probability), float(range), bool(uniform))
        old = (self.type, self.probability, self.range, self.uniform)
        if new == old:
            return accepted(False)
        self.type, self.probability, self.range, self.uniform = new
        return accepted(True)

    def mutate(self, trait: float, rng: np.random.Generator) -> float:
        kind = self.type
        if kind is ContinuousMutationType.NONE:
            return trait
        if kind is ContinuousMutationType.UNIFORM:
            return float(rng.random())
        if kind is ContinuousMutationType.GAUSSIAN:
            while True:
                mut = trait + rng.normal(0.0, self.range)
                if 0.0 <= mut <= 1.0:
                    return float(mut)
        if kind is ContinuousMutationType.RANGE:
            mut = trait + rng.uniform(-self.range, self.range)
            return float(min(max(mut, 0.0), 1.0))
        raise RuntimeError(f"unhandled continuous mutation type {kind!r}")

    def mutate_batch(self, traits: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        """Vectorised ``mutate`` for an array of traits (returns a new array)."""
        traits = np.asarray(traits, dtype=np.float64)
        kind = self.type
        if kind is ContinuousMutationType.NONE:
            return traits.copy()
        if kind is ContinuousMutationType.UNIFORM:
            return rng.random(traits.shape)
        if kind is ContinuousMutationType.GAUSSIAN:
            out = traits + rng.normal(0.0, self.range, traits.shape)
            bad = (out < 0.0) | (out > 1.0)
            while bad.any():
                out[bad] = traits[bad] + rng.normal(0.0, self.range, int(bad.sum()))
                bad = (out < 0.0) | (out > 1.0)
            return out
        if kind is ContinuousMutationType.RANGE:
            out = traits + rng.uniform(-self.range, self.range, traits.shape)
            return np.clip(out, 0.0, 1.0)
        raise RuntimeError(f"unhandled continuous mutation type {kind!r}")

    def __repr__(self) -> str:
        return (
            f"ContinuousMutation({self.type.value!r}, p={self.probability}, "
            f"range={self.range}, uniform={self.uniform})"
        )
