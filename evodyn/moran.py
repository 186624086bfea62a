"""Stochastic Moran runs for validating the analytical fixation results.

Simulates the mutant count of a birth-death chain until absorption. Runs
of self-loops (the count does not change) are skipped in one draw: the
number of steps until the count moves is geometric with success
probability T⁺(i) + T⁻(i), so a run costs O(number of count changes)
rather than O(number of elementary steps).

``sample_fixation`` repeats this and accumulates fixation frequency and
running moments (Welford) of the absorption and conditional fixation
times, in generations, for comparison with MoranReference.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from evodyn.fixation import BirthDeathChain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FixationRecord:
    """Outcome of one run."""
    fixed: bool         # True: mutants took over; False: mutants went extinct
    steps: int          # elementary steps until absorption
    generations: float  # steps / N


@dataclass
class RunningMoments:
    """Welford's online mean and variance."""
    count: int = 0
    mean: float = 0.0
    m2: float = 0.0

    def add(self, x: float) -> None:
        self.count += 1
        delta = x - self.mean
        self.mean += delta / self.count
        self.m2 += delta * (x - self.mean)

    @property
    def variance(self) -> float:
        if self.count < 2:
            return float('nan')
        return self.m2 / (self.count - 1)

    @property
    def std(self) -> float:
        return math.sqrt(self.variance) if self.count >= 2 else float('nan')

    @property
    def sem(self) -> float:
        """Standard error of the mean."""
        return self.std / math.sqrt(self.count) if self.count >= 2 else float('nan')


@dataclass
class FixationStatistics:
    """Accumulated outcomes of many runs (times in generations)."""
    samples: int = 0
    fixations: int = 0
    absorption_time: RunningMoments = field(default_factory=RunningMoments)
    mutant_time: RunningMoments = field(default_factory=RunningMoments)
    resident_time: RunningMoments = field(default_factory=RunningMoments)

    def add(self, record: FixationRecord) -> None:
        self.samples += 1
        self.absorption_time.add(record.generations)
        if record.fixed:
            self.fixations += 1
            self.mutant_time.add(record.generations)
        else:
            self.resident_time.add(record.generations)

    @property
    def fixation_probability(self) -> float:
        if self.samples == 0:
            return float('nan')
        return self.fixations / self.samples

    @property
    def fixation_probability_sem(self) -> float:
        """Binomial standard error of the fixation frequency."""
        if self.samples == 0:
            return float('nan')
        p = self.fixation_probability
        return math.sqrt(p * (1.0 - p) / self.samples)


def run_fixation(
    chain: BirthDeathChain,
    initial_mutants: int,
    rng: np.random.Generator,
) -> FixationRecord:
    """Run ``chain`` from ``initial_mutants`` until 0 or N."""
    n = chain.n
    if not (0 <= initial_mutants <= n):
        raise ValueError(f"initial mutant count {initial_mutants} outside [0, {n}]")
    i = int(initial_mutants)
    steps = 0
    while 0 < i < n:
        up = chain.t_plus[i]
        move = up + chain.t_minus[i]
        steps += int(rng.geometric(move)) if move < 1.0 else 1
        i += 1 if rng.random() * move < up else -1
    return FixationRecord(fixed=(i == n), steps=steps, generations=steps / n)


def run_moran_fixation(
    n: int,
    mutant_fitness: float,
    resident_fitness: float,
    initial_mutants: int,
    rng: np.random.Generator,
) -> FixationRecord:
    """One run of the constant-fitness Moran process."""
    chain = BirthDeathChain.moran(n, mutant_fitness, resident_fitness)
    return run_fixation(chain, initial_mutants, rng)


def sample_fixation(
    chain: BirthDeathChain,
    initial_mutants: int,
    samples: int,
    rng: np.random.Generator,
    stats: Optional[FixationStatistics] = None,
) -> FixationStatistics:
    """Accumulate ``samples`` independent runs into ``stats`` (new if None)."""
    if samples < 1:
        raise ValueError(f"samples must be >= 1, got {samples}")
    stats = stats if stats is not None else FixationStatistics()
    for _ in range(samples):
        stats.add(run_fixation(chain, initial_mutants, rng))
    logger.debug(
        "sampled %d runs (N=%d, i0=%d): fixation frequency %.4f",
        samples, chain.n, initial_mutants, stats.fixation_probability,
    )
    return stats
