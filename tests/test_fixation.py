"""Tests for evodyn.fixation: exact fixation probabilities and times."""

import numpy as np
import pytest

from evodyn.fitness import FitnessMap
from evodyn.fixation import (
    BirthDeathChain,
    FixationCache,
    MoranFixationSolver,
    fixation_profile,
    infinite_population_probability,
)
from evodyn.types import AnalyticMethod


def _brute_force(chain):
    """Fixation probability and times from the fundamental matrix."""
    n = chain.n
    idx = np.arange(1, n)
    q = np.zeros((n - 1, n - 1))
    q[idx - 1, idx - 1] = 1.0 - chain.t_plus[idx] - chain.t_minus[idx]
    q[idx[:-1] - 1, idx[:-1]] = chain.t_plus[idx[:-1]]
    q[idx[1:] - 1, idx[1:] - 2] = chain.t_minus[idx[1:]]
    fundamental = np.linalg.inv(np.eye(n - 1) - q)
    to_n = np.zeros(n - 1)
    to_n[-1] = chain.t_plus[n - 1]
    rho = fundamental @ to_n
    t = fundamental @ np.ones(n - 1)
    ta = fundamental @ rho / rho
    return rho, t, ta


# ── Chains ────────────────────────────────────────────────────────────

class TestBirthDeathChain:
    def test_moran_ratio_constant(self):
        chain = BirthDeathChain.moran(20, 2.0, 1.0)
        np.testing.assert_allclose(chain.ratios(), 0.5)
        assert chain.fitness_ratio == 2.0

    def test_moran_absorbing_states(self):
        chain = BirthDeathChain.moran(10, 1.5, 1.0)
        assert chain.t_plus[0] == chain.t_minus[0] == 0.0
        assert chain.t_plus[10] == chain.t_minus[10] == 0.0

    def test_invalid_fitness(self):
        with pytest.raises(ValueError):
            BirthDeathChain.moran(10, 0.0, 1.0)

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            BirthDeathChain.moran(0, 1.0, 1.0)

    def test_game_without_self_interaction(self):
        # mutant payoff in state i = (a(i-1) + b(N-i)) / (N-1)
        chain = BirthDeathChain.moran_game(4, [[1.0, 3.0], [2.0, 1.0]])
        fa = (1.0 * 0 + 3.0 * 3) / 3
        fb = (2.0 * 1 + 1.0 * 2) / 3
        expected = 1 * fa / (1 * fa + 3 * fb) * 3 / 4
        assert chain.t_plus[1] == pytest.approx(expected)

    def test_game_needs_positive_fitness(self):
        with pytest.raises(ValueError, match="positive"):
            BirthDeathChain.moran_game(5, [[3.0, 0.0], [5.0, 1.0]])

    def test_game_payoff_shape(self):
        with pytest.raises(ValueError):
            BirthDeathChain.moran_game(5, [[1.0, 2.0, 3.0]])


# ── Fixation probability ──────────────────────────────────────────────

class TestFixationProbability:
    @pytest.mark.parametrize("fa,fb", [(1.0, 1.0), (2.0, 1.0), (0.5, 3.0), (10.0, 0.1)])
    def test_boundaries(self, fa, fb):
        solver = MoranFixationSolver(fa, fb)
        for n in (1, 2, 17, 200):
            assert solver.fixation_probability(0, n).value == 0.0
            assert solver.fixation_probability(n, n).value == 1.0

    def test_neutral_drift_exact(self):
        solver = MoranFixationSolver(1.0, 1.0)
        for n in range(2, 51):
            for i in range(n + 1):
                assert solver.fixation_probability(i, n).value == i / n

    def test_single_advantageous_mutant(self):
        solver = MoranFixationSolver(2.0, 1.0)
        r = solver.fixation_probability(1, 100)
        assert r.exact
        assert r.value == pytest.approx((1 - 1 / 2) / (1 - 1 / 2 ** 100), rel=1e-12)

    @pytest.mark.parametrize("r", [1.1, 0.9, 3.0])
    def test_closed_form(self, r):
        n = 30
        rho = fixation_profile(BirthDeathChain.moran(n, r, 1.0)).probability
        i = np.arange(n + 1)
        expected = (1 - r ** (-i)) / (1 - r ** (-n))
        np.testing.assert_allclose(rho, expected, rtol=1e-10)

    @pytest.mark.parametrize("fa", [0.3, 1.0, 1.7, 50.0])
    def test_monotone(self, fa):
        rho = fixation_profile(BirthDeathChain.moran(80, fa, 1.0), with_times=False).probability
        assert np.all(np.diff(rho) >= 0.0)

    def test_strong_selection_no_overflow(self):
        rho = fixation_profile(BirthDeathChain.moran(1000, 1.0, 50.0), with_times=False).probability
        assert np.all(np.isfinite(rho))
        assert rho[1] == 0.0 or rho[1] < 1e-300
        assert rho[-1] == 1.0

    def test_infinite_population_fallback(self):
        solver = MoranFixationSolver(2.0, 1.0, max_n_probability=50)
        r = solver.fixation_probability(1, 100)
        assert r.available
        assert r.method is AnalyticMethod.INFINITE_POPULATION
        assert r.value == pytest.approx(0.5)
        assert solver.fixation_probability(3, 100).value == pytest.approx(1 - 2.0 ** -3)

    def test_infinite_population_deleterious(self):
        assert infinite_population_probability(0.8, 5) == 0.0
        assert infinite_population_probability(2.0, 0) == 0.0

    def test_infinite_population_many_deleterious_mutants(self):
        solver = MoranFixationSolver(0.5, 1.0)
        r = solver.fixation_probability(1100, 2000)
        assert r.method is AnalyticMethod.INFINITE_POPULATION
        assert r.value == 0.0
        assert infinite_population_probability(1.5, 5000) == 1.0

    def test_bad_arguments(self):
        solver = MoranFixationSolver()
        with pytest.raises(ValueError):
            solver.fixation_probability(5, 4)
        with pytest.raises(ValueError):
            solver.fixation_probability(0, 0)


# ── Times ─────────────────────────────────────────────────────────────

class TestFixationTimes:
    @pytest.mark.parametrize("fa", [0.5, 1.0, 4.0])
    def test_two_individuals(self, fa):
        # the count leaves state 1 with probability T+ + T- = 1/2 per step
        solver = MoranFixationSolver(fa, 1.0)
        assert solver.absorption_time(1, 2).value == pytest.approx(2.0)
        assert solver.conditional_fixation_time(1, 2).value == pytest.approx(2.0)

    @pytest.mark.parametrize("n", [2, 3, 10, 40])
    def test_neutral_known_results(self, n):
        solver = MoranFixationSolver(1.0, 1.0)
        harmonic = sum(1.0 / j for j in range(1, n))
        assert solver.absorption_time(1, n).value == pytest.approx(n * harmonic)
        assert solver.conditional_fixation_time(1, n).value == pytest.approx(n * (n - 1))

    @pytest.mark.parametrize("fa,n", [(1.3, 12), (0.7, 15), (3.0, 25), (1.0, 9)])
    def test_matches_fundamental_matrix(self, fa, n):
        chain = BirthDeathChain.moran(n, fa, 1.0)
        profile = fixation_profile(chain)
        rho, t, ta = _brute_force(chain)
        np.testing.assert_allclose(profile.probability[1:n], rho, rtol=1e-9)
        np.testing.assert_allclose(profile.absorption_time[1:n], t, rtol=1e-8)
        np.testing.assert_allclose(profile.mutant_time[1:n], ta, rtol=1e-8)

    def test_game_chain_matches_fundamental_matrix(self):
        fm = FitnessMap("exponential", baseline=1.0, selection=0.2)
        chain = BirthDeathChain.moran_game(20, [[3.0, 0.0], [5.0, 1.0]], fm)
        profile = fixation_profile(chain)
        rho, t, ta = _brute_force(chain)
        np.testing.assert_allclose(profile.probability[1:20], rho, rtol=1e-9)
        np.testing.assert_allclose(profile.absorption_time[1:20], t, rtol=1e-8)
        np.testing.assert_allclose(profile.mutant_time[1:20], ta, rtol=1e-8)
        # cooperators invading defectors do worse than neutral drift
        assert profile.probability[1] < 1 / 20

    def test_resident_time_decomposition(self):
        profile = fixation_profile(BirthDeathChain.moran(30, 1.2, 1.0))
        i = np.arange(1, 30)
        rho = profile.probability[i]
        recombined = rho * profile.mutant_time[i] + (1 - rho) * profile.resident_time[i]
        np.testing.assert_allclose(recombined, profile.absorption_time[i], rtol=1e-9)

    def test_undefined_conditions(self):
        solver = MoranFixationSolver(2.0, 1.0)
        assert not solver.conditional_fixation_time(0, 10).available
        assert not solver.resident_fixation_time(10, 10).available
        assert solver.absorption_time(0, 10).value == 0.0
        assert solver.absorption_time(10, 10).value == 0.0

    def test_unavailable_above_threshold(self):
        solver = MoranFixationSolver(2.0, 1.0)
        r = solver.absorption_time(1, 501)
        assert not r.available
        assert r.value is None
        assert "500" in r.reason
        # probability is still exact at this size
        assert solver.fixation_probability(1, 501).exact

    def test_custom_threshold(self):
        solver = MoranFixationSolver(2.0, 1.0, max_n_time=10)
        assert solver.absorption_time(1, 10).available
        assert not solver.conditional_fixation_time(1, 11).available


# ── Cache ─────────────────────────────────────────────────────────────

class TestCache:
    def test_profile_memoised(self):
        cache = FixationCache()
        solver = MoranFixationSolver(2.0, 1.0, cache=cache)
        solver.fixation_probability(1, 50)
        solver.absorption_time(3, 50)
        solver.conditional_fixation_time(7, 50)
        assert len(cache) == 1
        assert cache.misses == 1
        assert cache.hits == 2
        assert (50, 2.0, 1.0) in cache

    def test_unchanged_fitness_keeps_cache(self):
        solver = MoranFixationSolver(2.0, 1.0)
        solver.fixation_probability(1, 20)
        r = solver.set_fitness(2.0, 1.0)
        assert r.ok and not r.changed
        assert len(solver.cache) == 1

    def test_changed_fitness_clears_cache(self):
        solver = MoranFixationSolver(2.0, 1.0)
        before = solver.fixation_probability(1, 20).value
        assert solver.set_fitness(3.0, 1.0).changed
        assert len(solver.cache) == 0
        assert solver.fixation_probability(1, 20).value > before

    def test_invalid_fitness_rejected(self):
        solver = MoranFixationSolver(2.0, 1.0)
        with pytest.warns(UserWarning, match="> 0"):
            assert not solver.set_fitness(-1.0, 1.0)
        assert solver.mutant_fitness == 2.0

    def test_independent_solvers(self):
        a = MoranFixationSolver(2.0, 1.0)
        b = MoranFixationSolver(2.0, 1.0)
        a.fixation_probability(1, 10)
        assert len(b.cache) == 0
