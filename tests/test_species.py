"""Tests for evodyn.species: focal species selection."""

import numpy as np
import pytest

from evodyn.species import SpeciesUpdate
from evodyn.types import SpeciesUpdateType


@pytest.fixture
def rng():
    return np.random.default_rng(42)


def _frequencies(su, rng, n=20_000, **stats):
    picks = [su.next_species(rng, **stats) for _ in range(n)]
    return np.bincount(picks, minlength=su.n_species) / n


class TestPolicies:
    def test_single_species(self, rng):
        su = SpeciesUpdate(1, "fitness")
        state = rng.bit_generator.state
        assert su.next_species(rng, total_fitness=[3.0]) == 0
        assert rng.bit_generator.state == state

    def test_by_size(self, rng):
        su = SpeciesUpdate(3, "size")
        freq = _frequencies(su, rng, sizes=[100, 300, 600])
        np.testing.assert_allclose(freq, [0.1, 0.3, 0.6], atol=0.015)

    def test_by_size_with_rates(self, rng):
        su = SpeciesUpdate(2, "size", rates=[3.0, 1.0])
        freq = _frequencies(su, rng, sizes=[100, 300])
        np.testing.assert_allclose(freq, [0.5, 0.5], atol=0.015)

    def test_by_fitness(self, rng):
        su = SpeciesUpdate(2, "fitness")
        freq = _frequencies(su, rng, total_fitness=[1.0, 3.0])
        np.testing.assert_allclose(freq, [0.25, 0.75], atol=0.015)

    def test_uniform_uses_rates_only(self, rng):
        su = SpeciesUpdate(2, "uniform", rates=[1.0, 4.0])
        freq = _frequencies(su, rng, sizes=[1000, 1])
        np.testing.assert_allclose(freq, [0.2, 0.8], atol=0.015)

    def test_turns_cycle(self, rng):
        su = SpeciesUpdate(3, "turns")
        assert [su.next_species(rng) for _ in range(7)] == [0, 1, 2, 0, 1, 2, 0]
        su.reset()
        assert su.next_species(rng) == 0

    def test_zero_weight_species_never_picked(self, rng):
        su = SpeciesUpdate(3, "size")
        freq = _frequencies(su, rng, n=5_000, sizes=[10, 0, 10])
        assert freq[1] == 0.0


class TestErrors:
    def test_all_weights_zero_raises(self, rng):
        su = SpeciesUpdate(2, "size")
        with pytest.raises(ValueError, match="no positive weight"):
            su.next_species(rng, sizes=[0, 0])

    def test_single_species_without_weight_raises(self, rng):
        with pytest.raises(ValueError, match="no positive weight"):
            SpeciesUpdate(1, "size").next_species(rng, sizes=[0.0])
        with pytest.raises(ValueError, match="no positive weight"):
            SpeciesUpdate(1, "fitness").next_species(rng, total_fitness=[0.0])

    def test_single_species_needs_statistics(self, rng):
        with pytest.raises(ValueError, match="population sizes"):
            SpeciesUpdate(1, "size").next_species(rng)

    def test_missing_statistics_raises(self, rng):
        su = SpeciesUpdate(2, "fitness")
        with pytest.raises(ValueError, match="total fitness"):
            su.next_species(rng)

    def test_wrong_length_raises(self, rng):
        su = SpeciesUpdate(3, "size")
        with pytest.raises(ValueError):
            su.next_species(rng, sizes=[1, 2])


class TestConfiguration:
    def test_default_rates(self):
        np.testing.assert_array_equal(SpeciesUpdate(3).rates, [1.0, 1.0, 1.0])

    def test_rates_recycled(self):
        su = SpeciesUpdate(4, rates=[1.0, 2.0])
        np.testing.assert_array_equal(su.rates, [1.0, 2.0, 1.0, 2.0])

    def test_non_positive_rates_rejected(self):
        su = SpeciesUpdate(2, rates=[1.0, 2.0])
        with pytest.warns(UserWarning, match="positive"):
            assert not su.set_rates([1.0, 0.0])
        np.testing.assert_array_equal(su.rates, [1.0, 2.0])
        with pytest.warns(UserWarning):
            assert not su.set_rate(0, -1.0)

    def test_unknown_type_rejected(self):
        su = SpeciesUpdate(2, "turns")
        with pytest.warns(UserWarning):
            assert not su.set_type("random")
        assert su.type is SpeciesUpdateType.TURNS

    def test_resize(self):
        su = SpeciesUpdate(2, rates=[1.0, 2.0])
        assert su.resize(3).changed
        np.testing.assert_array_equal(su.rates, [1.0, 2.0, 1.0])
        assert not su.resize(3).changed

    def test_idempotent(self):
        su = SpeciesUpdate(2, "size", rates=[1.0, 2.0])
        assert not su.set_rates([1.0, 2.0]).changed
        assert not su.set_type("size").changed
        assert su.set_rate(1, 3.0).changed
