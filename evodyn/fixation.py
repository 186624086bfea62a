"""Exact fixation probabilities and times for birth-death Markov chains.

State i ∈ [0, N] counts mutants (A) among N individuals; residents are B.
Only transitions i → i±1 occur, with probabilities T⁺(i) and T⁻(i).
States 0 and N are absorbing. For the classical Moran process with
constant fitness fA (mutant) and fB (resident):

    T⁺(i) = (N−i)·i·fA / (N·(i·fA + (N−i)·fB))
    T⁻(i) = i·(N−i)·fB / (N·(i·fA + (N−i)·fB))
    γ(i)  = T⁻(i)/T⁺(i) = fB/fA                   (independent of i)

With P(k) = Π_{j=1..k} γ(j) (P(0) = 1) and S = Σ_{k<N} P(k):

    ρA(i) = Σ_{k<i} P(k) / S                                fixation probability

The expected number of visits to state l starting from i is

    G(i, l) = ρA(min(i,l)) · (1 − ρA(max(i,l))) · w(l),   w(l) = S / (T⁺(l)·P(l))

and the times are sums over l = 1..N−1:

    t(i)  = Σ_l G(i, l)                                     absorption time
    tA(i) = Σ_l G(i, l)·ρA(l) / ρA(i)                       mutant fixation time
    tB(i) = Σ_l G(i, l)·(1 − ρA(l)) / (1 − ρA(i))           resident fixation time

so t(i) = ρA(i)·tA(i) + (1 − ρA(i))·tB(i). Every term is positive;
log P is accumulated term by term (never by exponentiation) and all sums
are prefix/suffix sums, so a whole profile i = 0..N costs O(N) without
cancellation. Times are in elementary update steps.

Above a configurable population size the probability falls back to the
infinite-population limit ρ∞ = max(0, 1 − r^(−m)) with r = fA/fB, and
times are reported as unavailable. Results are memoised per (N, fA, fB)
in a FixationCache owned by the solver; give each concurrently running
simulation its own solver.

References:
  - Nowak, Sasaki, Taylor & Fudenberg 2004 (Nature 428:646)
  - Traulsen & Hauert 2009, Stochastic evolutionary game dynamics
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from evodyn.fitness import FitnessMap
from evodyn.types import (
    AnalyticMethod,
    AnalyticResult,
    SetResult,
    accepted,
    rejected,
)

logger = logging.getLogger(__name__)

MAX_N_PROBABILITY: int = 1000   # exact probability up to this population size
MAX_N_TIME: int = 500           # exact times up to this population size


# ═══════════════════════════════════════════════════════════════════════
# BIRTH-DEATH CHAINS
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BirthDeathChain:
    """Transition probabilities of a birth-death chain on 0..N.

    Attributes:
        t_plus: (N+1,) probability of i → i+1.
        t_minus: (N+1,) probability of i → i−1.
        fitness_ratio: r = fA/fB for constant-fitness Moran chains, else None.
    """
    t_plus: np.ndarray
    t_minus: np.ndarray
    fitness_ratio: Optional[float] = None

    def __post_init__(self):
        if self.t_plus.shape != self.t_minus.shape or self.t_plus.ndim != 1:
            raise ValueError("t_plus and t_minus must be 1-d arrays of equal length")
        if self.t_plus.size < 2:
            raise ValueError("a chain needs at least the two absorbing states")
        inner = slice(1, self.n)
        if np.any(self.t_plus[inner] <= 0.0) or np.any(self.t_minus[inner] <= 0.0):
            raise ValueError("transient states need T+ > 0 and T- > 0")
        if np.any(self.t_plus[inner] + self.t_minus[inner] > 1.0 + 1e-12):
            raise ValueError("T+ + T- must not exceed 1")

    @property
    def n(self) -> int:
        return self.t_plus.size - 1

    def ratios(self) -> np.ndarray:
        """γ(j) = T⁻(j)/T⁺(j) for j = 1..N−1 (empty for N = 1)."""
        inner = slice(1, self.n)
        return self.t_minus[inner] / self.t_plus[inner]

    @classmethod
    def moran(cls, n: int, mutant_fitness: float, resident_fitness: float) -> "BirthDeathChain":
        """Classical Moran process with constant fitness values."""
        if n < 1:
            raise ValueError(f"population size must be >= 1, got {n}")
        if not (mutant_fitness > 0.0 and resident_fitness > 0.0):
            raise ValueError(
                f"fitness values must be > 0, got fA={mutant_fitness}, fB={resident_fitness}"
            )
        i = np.arange(n + 1, dtype=np.float64)
        fa, fb = float(mutant_fitness), float(resident_fitness)
        total = n * (i * fa + (n - i) * fb)
        t_plus = (n - i) * i * fa / total
        t_minus = i * (n - i) * fb / total
        return cls(t_plus, t_minus, fitness_ratio=fa / fb)

    @classmethod
    def moran_game(
        cls,
        n: int,
        payoffs: Sequence[Sequence[float]],
        fitness_map: Optional[FitnessMap] = None,
    ) -> "BirthDeathChain":
        """Frequency-dependent Moran process for a 2×2 game.

        ``payoffs[x][y]`` is the payoff of trait x against trait y, with
        0 = mutant (A) and 1 = resident (B). Individuals do not interact
        with themselves. Payoffs become fitness through ``fitness_map``
        (identity if None).
        """
        if n < 2:
            raise ValueError(f"population size must be >= 2, got {n}")
        pay = np.asarray(payoffs, dtype=np.float64)
        if pay.shape != (2, 2):
            raise ValueError(f"payoff table must be 2x2, got shape {pay.shape}")
        (a, b), (c, d) = pay
        i = np.arange(n + 1, dtype=np.float64)
        pi_a = (a * (i - 1) + b * (n - i)) / (n - 1)
        pi_b = (c * i + d * (n - i - 1)) / (n - 1)
        fmap = fitness_map if fitness_map is not None else FitnessMap()
        fa = np.asarray(fmap.to_fitness(pi_a), dtype=np.float64)
        fb = np.asarray(fmap.to_fitness(pi_b), dtype=np.float64)
        inner = slice(1, n)
        if np.any(fa[inner] <= 0.0) or np.any(fb[inner] <= 0.0):
            raise ValueError("fitness must be positive in every transient state")
        t_plus = np.zeros(n + 1)
        t_minus = np.zeros(n + 1)
        denom = i[inner] * fa[inner] + (n - i[inner]) * fb[inner]
        t_plus[inner] = i[inner] * fa[inner] / denom * (n - i[inner]) / n
        t_minus[inner] = (n - i[inner]) * fb[inner] / denom * i[inner] / n
        return cls(t_plus, t_minus)


# ═══════════════════════════════════════════════════════════════════════
# PROFILES
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FixationProfile:
    """Fixation quantities for every initial state i = 0..N.

    ``absorption_time``, ``mutant_time`` and ``resident_time`` are None
    when times were not computed; ``time_reason`` says why. Conditional
    times are NaN where the conditioning event is impossible
    (mutant_time[0], resident_time[N]).
    """
    n: int
    probability: np.ndarray
    absorption_time: Optional[np.ndarray] = None
    mutant_time: Optional[np.ndarray] = None
    resident_time: Optional[np.ndarray] = None
    time_reason: str = ""

    @property
    def has_times(self) -> bool:
        return self.absorption_time is not None


def _log_partial_sums(chain: BirthDeathChain) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """log P(k), log Σ_{j≤k} P(j) and log Σ_{j≥k} P(j) for k = 0..N−1."""
    log_p = np.concatenate(([0.0], np.cumsum(np.log(chain.ratios()))))
    head = np.logaddexp.accumulate(log_p)
    tail = np.logaddexp.accumulate(log_p[::-1])[::-1]
    return log_p, head, tail


def _log_prefix(x: np.ndarray) -> np.ndarray:
    """log Σ_{m≤j} exp(x[m]) for every j."""
    return np.logaddexp.accumulate(x)


def _log_suffix(x: np.ndarray) -> np.ndarray:
    """log Σ_{m>j} exp(x[m]) for every j (−inf for the last)."""
    if x.size == 0:
        return x.copy()
    return np.concatenate((np.logaddexp.accumulate(x[::-1])[::-1][1:], [-np.inf]))


def fixation_probabilities(chain: BirthDeathChain) -> np.ndarray:
    """ρA(i) for i = 0..N."""
    n = chain.n
    if np.all(chain.ratios() == 1.0):
        # neutral drift: ρA(i) = i/N exactly
        return np.arange(n + 1, dtype=np.float64) / n
    _, head, _ = _log_partial_sums(chain)
    rho = np.empty(n + 1, dtype=np.float64)
    rho[0] = 0.0
    rho[1:] = np.exp(head - head[-1])
    rho[n] = 1.0
    return rho


def fixation_times(chain: BirthDeathChain) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Absorption, conditional mutant and resident fixation times (steps).

    Returns:
        (t, tA, tB), each (N+1,). tA[0] and tB[N] are NaN.

    Raises:
        FloatingPointError: If the times overflow for this chain.
    """
    n = chain.n
    t = np.zeros(n + 1)
    ta = np.zeros(n + 1)
    tb = np.zeros(n + 1)
    ta[0] = np.nan
    tb[n] = np.nan
    if n == 1:
        return t, ta, tb

    log_p, head, tail = _log_partial_sums(chain)
    log_s = head[-1]
    l = np.arange(1, n)
    log_rho = head[l - 1] - log_s          # log ρA(l)
    log_q = tail[l] - log_s                # log (1 − ρA(l))
    log_w = log_s - log_p[l] - np.log(chain.t_plus[l])

    log_u = log_rho + log_w                # ρA(l)·w(l)
    log_v = log_q + log_w                  # (1 − ρA(l))·w(l)

    with np.errstate(over="raise", invalid="raise"):
        # l ≤ i and l > i parts of the sums, for i = 1..N−1
        t[1:n] = (np.exp(log_q + _log_prefix(log_u))
                  + np.exp(log_rho + _log_suffix(log_v)))
        ta[1:n] = (np.exp(log_q - log_rho + _log_prefix(log_rho + log_u))
                   + np.exp(_log_suffix(log_rho + log_v)))
        tb[1:n] = (np.exp(_log_prefix(log_q + log_u))
                   + np.exp(log_rho - log_q + _log_suffix(log_q + log_v)))

    if not (np.all(np.isfinite(t)) and np.all(np.isfinite(ta[1:])) and np.all(np.isfinite(tb[:n]))):
        raise FloatingPointError("fixation times are not finite for this chain")
    return t, ta, tb


def fixation_profile(chain: BirthDeathChain, with_times: bool = True) -> FixationProfile:
    """Probability (and optionally times) for all initial states of ``chain``."""
    rho = fixation_probabilities(chain)
    if not with_times:
        return FixationProfile(chain.n, rho, time_reason="times not requested")
    try:
        t, ta, tb = fixation_times(chain)
    except FloatingPointError as exc:
        logger.warning("fixation times unavailable for N=%d: %s", chain.n, exc)
        return FixationProfile(chain.n, rho, time_reason=f"numerical overflow ({exc})")
    return FixationProfile(chain.n, rho, t, ta, tb)


def infinite_population_probability(fitness_ratio: float, n_mutants: int) -> float:
    """ρ∞ = max(0, 1 − r^(−m)) for m initial mutants of relative fitness r."""
    if n_mutants <= 0 or fitness_ratio <= 1.0:
        return 0.0
    return -math.expm1(-n_mutants * math.log(fitness_ratio))


# ═══════════════════════════════════════════════════════════════════════
# SOLVER + CACHE
# ═══════════════════════════════════════════════════════════════════════

class FixationCache:
    """Memo of FixationProfiles keyed by (N, fA, fB).

    Not thread-safe: share only within one simulation run.
    """

    def __init__(self) -> None:
        self._profiles: Dict[Tuple[int, float, float], FixationProfile] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Tuple[int, float, float]) -> Optional[FixationProfile]:
        profile = self._profiles.get(key)
        if profile is None:
            self.misses += 1
        else:
            self.hits += 1
        return profile

    def put(self, key: Tuple[int, float, float], profile: FixationProfile) -> None:
        self._profiles[key] = profile

    def clear(self) -> None:
        if self._profiles:
            logger.debug("fixation cache cleared (%d profiles)", len(self._profiles))
        self._profiles.clear()

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, key) -> bool:
        return key in self._profiles


class MoranFixationSolver:
    """Fixation probability and times of the constant-fitness Moran process."""

    def __init__(
        self,
        mutant_fitness: float = 2.0,
        resident_fitness: float = 1.0,
        max_n_probability: int = MAX_N_PROBABILITY,
        max_n_time: int = MAX_N_TIME,
        cache: Optional[FixationCache] = None,
    ):
        self.mutant_fitness = 2.0
        self.resident_fitness = 1.0
        self.max_n_probability = MAX_N_PROBABILITY
        self.max_n_time = MAX_N_TIME
        self.cache = cache if cache is not None else FixationCache()
        self.set_fitness(mutant_fitness, resident_fitness)
        self.set_thresholds(max_n_probability, max_n_time)

    # ── configuration ────────────────────────────────────────────────

    def set_fitness(self, mutant_fitness: float, resident_fitness: float) -> SetResult:
        if not (math.isfinite(mutant_fitness) and math.isfinite(resident_fitness)):
            return rejected(
                f"fitness values must be finite, got fA={mutant_fitness}, fB={resident_fitness}"
            )
        if mutant_fitness <= 0.0 or resident_fitness <= 0.0:
            return rejected(
                f"fitness values must be > 0, got fA={mutant_fitness}, fB={resident_fitness}"
            )
        new = (float(mutant_fitness), float(resident_fitness))
        if new == (self.mutant_fitness, self.resident_fitness):
            return accepted(False)
        self.mutant_fitness, self.resident_fitness = new
        self.cache.clear()
        return accepted(True)

    def set_thresholds(self, max_n_probability: int, max_n_time: int) -> SetResult:
        if max_n_probability < 1 or max_n_time < 1:
            return rejected(
                f"size thresholds must be >= 1, got {max_n_probability}, {max_n_time}"
            )
        new = (int(max_n_probability), int(max_n_time))
        if new == (self.max_n_probability, self.max_n_time):
            return accepted(False)
        self.max_n_probability, self.max_n_time = new
        self.cache.clear()
        return accepted(True)

    @property
    def fitness_ratio(self) -> float:
        return self.mutant_fitness / self.resident_fitness

    # ── computations ─────────────────────────────────────────────────

    def chain(self, n: int) -> BirthDeathChain:
        return BirthDeathChain.moran(n, self.mutant_fitness, self.resident_fitness)

    def profile(self, n: int) -> Optional[FixationProfile]:
        """Memoised profile, or None above the exact-probability threshold."""
        if n < 1:
            raise ValueError(f"population size must be >= 1, got {n}")
        if n > self.max_n_probability:
            return None
        key = (int(n), self.mutant_fitness, self.resident_fitness)
        profile = self.cache.get(key)
        if profile is None:
            with_times = n <= self.max_n_time
            profile = fixation_profile(self.chain(n), with_times=with_times)
            if not with_times:
                profile = FixationProfile(
                    n, profile.probability,
                    time_reason=f"population size {n} exceeds {self.max_n_time}",
                )
            self.cache.put(key, profile)
            logger.debug("fixation profile computed for %s", key)
        return profile

    @staticmethod
    def _check(i: int, n: int) -> None:
        if n < 1:
            raise ValueError(f"population size must be >= 1, got {n}")
        if not (0 <= i <= n):
            raise ValueError(f"mutant count {i} outside [0, {n}]")

    def fixation_probability(self, i: int, n: int) -> AnalyticResult:
        """Probability that i mutants take over a population of size n."""
        self._check(i, n)
        profile = self.profile(n)
        if profile is None:
            if i == n:
                return AnalyticResult(1.0, AnalyticMethod.EXACT)
            rho = infinite_population_probability(self.fitness_ratio, i)
            logger.debug("N=%d above %d: infinite-population fixation probability", n,
                         self.max_n_probability)
            return AnalyticResult(
                rho, AnalyticMethod.INFINITE_POPULATION,
                reason=f"population size {n} exceeds {self.max_n_probability}",
            )
        return AnalyticResult(float(profile.probability[i]))

    def _time(self, i: int, n: int, field: str) -> AnalyticResult:
        self._check(i, n)
        if n > self.max_n_time:
            return AnalyticResult.unavailable(
                f"population size {n} exceeds {self.max_n_time}"
            )
        profile = self.profile(n)
        if profile is None or not profile.has_times:
            reason = profile.time_reason if profile is not None else "no profile"
            return AnalyticResult.unavailable(reason)
        value = float(getattr(profile, field)[i])
        if math.isnan(value):
            return AnalyticResult.unavailable(f"{field} undefined for i={i}, N={n}")
        return AnalyticResult(value)

    def absorption_time(self, i: int, n: int) -> AnalyticResult:
        """Expected steps until i mutants either fix or go extinct."""
        return self._time(i, n, "absorption_time")

    def conditional_fixation_time(self, i: int, n: int) -> AnalyticResult:
        """Expected steps until i mutants fix, given that they do."""
        return self._time(i, n, "mutant_time")

    def resident_fixation_time(self, i: int, n: int) -> AnalyticResult:
        """Expected steps until residents fix, given that they do."""
        return self._time(i, n, "resident_time")
