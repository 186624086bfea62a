"""Per-module bundle of the evolutionary-dynamics components.

A module is one species/population of an individual-based model. It owns
one instance of each component, all configured from the same EvoConfig:

  - FitnessMap                          payoff → fitness
  - DiscreteMutation / ContinuousMutation
  - PlayerUpdate                        adoption rule
  - SpeciesUpdate                       focal species selection
  - MoranFixationSolver + MoranReference analytical reference levels

The ``simulation`` section seeds the run generator and sets how many
stochastic runs ``validate_reference`` draws to check the reference levels.

``reconfigure`` updates the existing instances through their setters, so
reconfiguring with unchanged parameters changes nothing, and in
particular keeps the fixation cache. Only a switch between discrete and
continuous traits replaces the mutation operator.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Union

import numpy as np

from evodyn.config import EvoConfig, validate_config
from evodyn.fitness import FitnessMap
from evodyn.fixation import MoranFixationSolver
from evodyn.moran import FixationStatistics, sample_fixation
from evodyn.mutation import ContinuousMutation, DiscreteMutation
from evodyn.reference import MoranReference
from evodyn.rng import create_run_rng
from evodyn.species import SpeciesUpdate
from evodyn.types import SetResult, accepted
from evodyn.update import PlayerUpdate

logger = logging.getLogger(__name__)

Mutation = Union[DiscreteMutation, ContinuousMutation]


def _combine(results: List[SetResult]) -> SetResult:
    for r in results:
        if not r.ok:
            return r
    return accepted(any(r.changed for r in results))


class ModuleComponents:
    """Components of one module, built and kept in sync with a config."""

    def __init__(
        self,
        fitness_map: FitnessMap,
        mutation: Mutation,
        player_update: PlayerUpdate,
        species_update: SpeciesUpdate,
        solver: MoranFixationSolver,
        reference: MoranReference,
        seed: int = 42,
        samples: int = 1000,
    ):
        self.fitness_map = fitness_map
        self.mutation = mutation
        self.player_update = player_update
        self.species_update = species_update
        self.solver = solver
        self.reference = reference
        self.seed = seed
        self.samples = samples

    @classmethod
    def from_config(cls, config: EvoConfig) -> "ModuleComponents":
        validate_config(config)
        pop = config.population
        solver = MoranFixationSolver(
            pop.mutant_fitness,
            pop.resident_fitness,
            max_n_probability=config.fixation.max_n_probability,
            max_n_time=config.fixation.max_n_time,
        )
        fm = config.fitness_map
        su = config.species_update
        pu = config.player_update
        components = cls(
            fitness_map=FitnessMap(fm.map, fm.baseline, fm.selection),
            mutation=cls._make_mutation(config),
            player_update=PlayerUpdate(pu.type, pu.noise, pu.error),
            species_update=SpeciesUpdate(pop.n_species, su.type, su.rates),
            solver=solver,
            reference=MoranReference(
                solver,
                population_size=pop.size,
                init_mutant_fraction=pop.init_mutant_fraction,
                moran=pop.moran,
                n_species=pop.n_species,
            ),
            seed=config.simulation.seed,
            samples=config.simulation.samples,
        )
        logger.debug("module components built: %r", components)
        return components

    @staticmethod
    def _make_mutation(config: EvoConfig) -> Mutation:
        mut = config.mutation
        if mut.trait_kind == "continuous":
            return ContinuousMutation(mut.type, mut.probability, mut.range, mut.uniform)
        return DiscreteMutation(
            config.population.n_traits,
            mut.type,
            mut.probability,
            range=int(mut.range),
            uniform=mut.uniform,
            vacant=config.population.vacant,
        )

    def reconfigure(self, config: EvoConfig) -> SetResult:
        """Apply ``config`` to the existing components.

        Returns the first rejection, or an accepted result whose
        ``changed`` flag tells whether any component changed.
        """
        validate_config(config)
        pop = config.population
        fm = config.fitness_map
        mut = config.mutation
        pu = config.player_update
        su = config.species_update
        fx = config.fixation
        sim = config.simulation

        results = [accepted(sim.seed != self.seed or sim.samples != self.samples)]
        self.seed, self.samples = sim.seed, sim.samples
        results.append(self.fitness_map.configure(fm.map, fm.baseline, fm.selection))

        continuous = mut.trait_kind == "continuous"
        if continuous != isinstance(self.mutation, ContinuousMutation):
            logger.info("mutation trait kind switched to %s", mut.trait_kind)
            self.mutation = self._make_mutation(config)
            results.append(accepted(True))
        elif continuous:
            results.append(self.mutation.configure(
                mut.type, mut.probability, mut.range, mut.uniform))
        else:
            results.append(self.mutation.set_traits(pop.n_traits, vacant=pop.vacant))
            results.append(self.mutation.configure(
                mut.type, mut.probability, range=int(mut.range), uniform=mut.uniform))

        results.append(self.player_update.configure(pu.type, pu.noise, pu.error))
        results.append(self.species_update.resize(pop.n_species))
        results.append(self.species_update.set_type(su.type))
        results.append(self.species_update.set_rates(su.rates))
        results.append(self.solver.set_fitness(pop.mutant_fitness, pop.resident_fitness))
        results.append(self.solver.set_thresholds(fx.max_n_probability, fx.max_n_time))
        results.append(self.reference.set_population(pop.size, pop.init_mutant_fraction))
        results.append(self.reference.set_model(pop.moran, pop.n_species))
        return _combine(results)

    def set_score_bounds(self, min_score: float, max_score: float) -> SetResult:
        """Scale the imitation rules to the fitness range of these payoffs."""
        lo, hi = self.fitness_map.fitness_bounds(min_score, max_score)
        return self.player_update.set_fitness_bounds(lo, hi)

    def run_rng(self) -> np.random.Generator:
        """Fresh generator seeded from ``simulation.seed``."""
        return create_run_rng(self.seed)

    def validate_reference(
        self,
        rng: Optional[np.random.Generator] = None,
        stats: Optional[FixationStatistics] = None,
    ) -> FixationStatistics:
        """Run ``simulation.samples`` stochastic Moran runs for this module.

        The chain, population size and initial mutant count are the ones
        MoranReference reports on, so the resulting frequencies and times
        (in generations) compare directly with its reference levels.

        Raises:
            ValueError: If no analytical reference applies to this module.
        """
        ref = self.reference
        if not ref.applicable:
            raise ValueError(
                f"no Moran reference (moran={ref.moran}, n_species={ref.n_species})"
            )
        if rng is None:
            rng = self.run_rng()
        chain = self.solver.chain(ref.population_size)
        return sample_fixation(chain, ref.initial_mutants, self.samples, rng, stats=stats)

    def __repr__(self) -> str:
        return (
            f"ModuleComponents({self.fitness_map!r}, {self.mutation!r}, "
            f"{self.player_update!r}, {self.species_update!r}, {self.reference!r})"
        )
