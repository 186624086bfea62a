"""Player update rules.

Decide whether a focal individual adopts the trait of a model individual,
given their fitness values. Rules:

  best            adopt iff the model is strictly fitter (ties: stay)
  best-random     as best, ties decided by a fair coin
  best-response   switch to the active trait with the highest score
                  against the current environment (see ``best_response``)
  imitate         p = (f' − f) / (2·noise·Δf) + 1/2
  imitate-better  p = (f' − f) / (noise·Δf), i.e. only fitter models
  proportional    p = f' / (f + f')  (fitness measured from the minimum)
  thermal         p = 1 / (1 + exp(−(f' − f)/noise))  (Fermi function)

Δf = max_fitness − min_fitness is the fitness range of the module. For
imitate, imitate-better and thermal the probability is finally clamped to
[error, 1 − error], so both the right and the wrong decision always keep a
non-zero chance. Zero noise turns these three rules into step functions.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Union

import numpy as np
from scipy.special import expit

from evodyn.types import (
    SetResult,
    UpdateType,
    accepted,
    parse_kind,
    rejected,
)


# Fitness differences below this are treated as ties.
TIE_TOLERANCE: float = 1e-8


class PlayerUpdate:
    """Adoption rule of one module/species."""

    def __init__(
        self,
        update_type: Union[UpdateType, str] = UpdateType.IMITATE,
        noise: float = 1.0,
        error: float = 0.0,
        min_fitness: float = 0.0,
        max_fitness: float = 1.0,
    ):
        self.type = UpdateType.IMITATE
        self.noise = 1.0
        self.error = 0.0
        self.min_fitness = 0.0
        self.max_fitness = 1.0
        self.configure(update_type, noise, error)
        self.set_fitness_bounds(min_fitness, max_fitness)

    # ── configuration ────────────────────────────────────────────────

    def set_type(self, update_type: Union[UpdateType, str]) -> SetResult:
        kind = parse_kind(UpdateType, update_type)
        if kind is None:
            return rejected(
                f"player update '{update_type}' not recognized - "
                f"keeping '{self.type.value}'"
            )
        changed = kind is not self.type
        self.type = kind
        return accepted(changed)

    def set_noise(self, noise: float) -> SetResult:
        if not math.isfinite(noise) or noise < 0.0:
            return rejected(f"update noise must be >= 0, got {noise} - keeping {self.noise}")
        changed = noise != self.noise
        self.noise = float(noise)
        return accepted(changed)

    def set_error(self, error: float) -> SetResult:
        if not math.isfinite(error) or not (0.0 <= error <= 1.0):
            return rejected(f"update error must be in [0, 1], got {error} - keeping {self.error}")
        changed = error != self.error
        self.error = float(error)
        return accepted(changed)

    def set_fitness_bounds(self, min_fitness: float, max_fitness: float) -> SetResult:
        """Set the fitness range used to scale the imitation rules."""
        if not (math.isfinite(min_fitness) and math.isfinite(max_fitness)):
            return rejected(
                f"fitness bounds must be finite, got [{min_fitness}, {max_fitness}]"
            )
        if max_fitness < min_fitness:
            return rejected(
                f"max_fitness ({max_fitness}) must be >= min_fitness ({min_fitness})"
            )
        changed = (min_fitness, max_fitness) != (self.min_fitness, self.max_fitness)
        self.min_fitness = float(min_fitness)
        self.max_fitness = float(max_fitness)
        return accepted(changed)

    def configure(
        self,
        update_type: Union[UpdateType, str],
        noise: float = 1.0,
        error: float = 0.0,
    ) -> SetResult:
        results = [self.set_type(update_type), self.set_noise(noise), self.set_error(error)]
        for r in results:
            if not r.ok:
                return r
        return accepted(any(r.changed for r in results))

    # ── pairwise decisions ───────────────────────────────────────────

    def _clamp(self, p: float) -> float:
        p = min(1.0 - self.error, max(self.error, p))
        return min(1.0, max(0.0, p))

    def _step(self, diff: float, tie: float) -> float:
        if diff > 0.0:
            return 1.0 - self.error
        if diff < 0.0:
            return self.error
        return tie

    def adoption_probability(self, my_fitness: float, other_fitness: float) -> float:
        """Probability that the focal individual adopts the model's trait."""
        diff = other_fitness - my_fitness
        kind = self.type
        if kind is UpdateType.BEST:
            return 1.0 if diff > TIE_TOLERANCE else 0.0
        if kind is UpdateType.BEST_RANDOM:
            if abs(diff) < TIE_TOLERANCE:
                return 0.5
            return 1.0 if diff > 0.0 else 0.0
        if kind in (UpdateType.IMITATE, UpdateType.IMITATE_BETTER):
            better_only = kind is UpdateType.IMITATE_BETTER
            span = self.max_fitness - self.min_fitness
            if self.noise <= 0.0 or span <= 0.0:
                return self._step(diff, self.error if better_only else 0.5)
            if better_only:
                return self._clamp(diff / (self.noise * span))
            return self._clamp(diff / (2.0 * self.noise * span) + 0.5)
        if kind is UpdateType.THERMAL:
            if self.noise <= 0.0:
                return self._step(diff, 0.5)
            return self._clamp(float(expit(diff / self.noise)))
        if kind is UpdateType.PROPORTIONAL:
            mine = my_fitness - self.min_fitness
            other = other_fitness - self.min_fitness
            total = mine + other
            if total <= 0.0:
                return 0.5
            return min(1.0, max(0.0, other / total))
        if kind is UpdateType.BEST_RESPONSE:
            raise ValueError("best-response is not a pairwise rule; use best_response()")
        raise RuntimeError(f"unhandled player update {kind!r}")

    def adopt(self, my_fitness: float, other_fitness: float, rng: np.random.Generator) -> bool:
        """Sample the pairwise adoption decision.

        Deterministic outcomes (probability 0 or 1) consume no random number.
        """
        p = self.adoption_probability(my_fitness, other_fitness)
        if p >= 1.0:
            return True
        if p <= 0.0:
            return False
        return bool(rng.random() < p)

    # ── reference groups ─────────────────────────────────────────────

    def choose_model(
        self,
        my_fitness: float,
        ref_fitness: Sequence[float],
        rng: np.random.Generator,
    ) -> Optional[int]:
        """Pick the model to imitate from a reference group.

        Returns:
            Index into ``ref_fitness`` of the adopted model, or None if the
            focal individual keeps its trait.
        """
        ref = np.asarray(ref_fitness, dtype=np.float64)
        if ref.size == 0:
            return None
        kind = self.type
        if kind is UpdateType.BEST:
            best = int(np.argmax(ref))
            return best if ref[best] > my_fitness + TIE_TOLERANCE else None
        if kind is UpdateType.BEST_RANDOM:
            return self._choose_best_random(my_fitness, ref, rng)
        if kind is UpdateType.PROPORTIONAL:
            return self._choose_proportional(my_fitness, ref, rng)
        if kind in (UpdateType.IMITATE, UpdateType.IMITATE_BETTER, UpdateType.THERMAL):
            probs = np.array([self.adoption_probability(my_fitness, f) for f in ref])
            return self._choose_by_probability(probs, rng)
        if kind is UpdateType.BEST_RESPONSE:
            raise ValueError("best-response needs trait scores; use best_response()")
        raise RuntimeError(f"unhandled player update {kind!r}")

    @staticmethod
    def _choose_best_random(my_fitness, ref, rng) -> Optional[int]:
        best_score = my_fitness
        best = None
        for i, score in enumerate(ref):
            if score > best_score + TIE_TOLERANCE:
                best_score = score
                best = i
            elif abs(score - best_score) < TIE_TOLERANCE and rng.random() < 0.5:
                best = i
        return best

    def _choose_proportional(self, my_fitness, ref, rng) -> Optional[int]:
        weights = np.concatenate(([my_fitness], ref)) - self.min_fitness
        weights = np.maximum(weights, 0.0)
        total = weights.sum()
        if total <= 0.0:
            hit = int(rng.integers(ref.size + 1))
        else:
            cum = np.cumsum(weights)
            hit = int(np.searchsorted(cum, rng.random() * total, side="right"))
            hit = min(hit, ref.size)
        return None if hit == 0 else hit - 1

    @staticmethod
    def _choose_by_probability(probs: np.ndarray, rng) -> Optional[int]:
        # Each member independently "convinces" with probability p_i; the
        # focal individual stays with probability Π(1 − p_i).
        norm = probs.sum()
        if norm <= 0.0:
            return None
        stay = float(np.prod(1.0 - probs))
        choice = rng.random()
        if choice >= 1.0 - stay:
            return None
        if probs.size == 1:
            return 0
        cum = np.cumsum(probs) * ((1.0 - stay) / norm)
        idx = int(np.searchsorted(cum, choice, side="right"))
        # rounding can leave cum[-1] a hair below 1 - stay
        return min(idx, probs.size - 1)

    @staticmethod
    def best_response(
        current: int,
        trait_scores: Sequence[float],
        active: Optional[Sequence[bool]] = None,
    ) -> int:
        """Active trait with the highest score; ties keep ``current``."""
        scores = np.asarray(trait_scores, dtype=np.float64)
        mask = np.ones(scores.size, dtype=bool) if active is None else np.asarray(active, dtype=bool)
        if mask.shape != scores.shape:
            raise ValueError(
                f"active mask has {mask.size} entries, expected {scores.size}"
            )
        best = current
        best_score = scores[current] if mask[current] else -np.inf
        for n in np.flatnonzero(mask):
            if scores[n] > best_score:
                best_score = scores[n]
                best = int(n)
        return best

    def __repr__(self) -> str:
        return f"PlayerUpdate({self.type.value!r}, noise={self.noise}, error={self.error})"
