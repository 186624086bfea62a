"""Configuration system for evodyn.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Sections map 1:1 to YAML top-level keys; unknown keys are ignored.
File-level validation is strict (ValueError). Runtime reconfiguration of
the components themselves goes through their setters instead, which
reject invalid values with a warning and keep the previous state.
"""

from __future__ import annotations

import dataclasses
import math
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from evodyn.types import (
    ContinuousMutationType,
    DiscreteMutationType,
    FitnessMapType,
    SpeciesUpdateType,
    UpdateType,
    parse_kind,
)


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Run control."""
    seed: int = 42
    samples: int = 1000            # stochastic validation runs


@dataclass
class PopulationSection:
    """Population of the (single) module under study."""
    size: int = 100                    # N
    init_mutant_fraction: float = 0.0  # 0 → a single mutant
    resident_fitness: float = 1.0      # fB
    mutant_fitness: float = 2.0        # fA
    n_species: int = 1
    n_traits: int = 2
    vacant: Optional[int] = None       # index of the vacant trait, if any
    moran: bool = True                 # population updated by the Moran process


@dataclass
class FitnessMapSection:
    """Payoff → fitness map."""
    map: str = "none"              # none | static | convex | exponential
    baseline: float = 1.0
    selection: float = 1.0


@dataclass
class MutationSection:
    """Mutation process.

    ``range`` is an integer step width for discrete traits and a width on
    [0, 1] for continuous ones.
    """
    type: str = "none"
    trait_kind: str = "discrete"   # discrete | continuous
    probability: float = 0.0
    range: float = 0.0
    uniform: bool = True           # True: cosmic rays; False: tied to reproduction


@dataclass
class PlayerUpdateSection:
    """Adoption rule."""
    type: str = "imitate"
    noise: float = 1.0
    error: float = 0.0


@dataclass
class SpeciesUpdateSection:
    """Species selection in multi-species models."""
    type: str = "size"
    rates: List[float] = field(default_factory=lambda: [1.0])


@dataclass
class FixationSection:
    """Population-size limits of the exact fixation solver."""
    max_n_probability: int = 1000
    max_n_time: int = 500


@dataclass
class EvoConfig:
    """Complete configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    simulation: SimulationSection = field(default_factory=SimulationSection)
    population: PopulationSection = field(default_factory=PopulationSection)
    fitness_map: FitnessMapSection = field(default_factory=FitnessMapSection)
    mutation: MutationSection = field(default_factory=MutationSection)
    player_update: PlayerUpdateSection = field(default_factory=PlayerUpdateSection)
    species_update: SpeciesUpdateSection = field(default_factory=SpeciesUpdateSection)
    fixation: FixationSection = field(default_factory=FixationSection)


SECTION_MAP = {
    'simulation': SimulationSection,
    'population': PopulationSection,
    'fitness_map': FitnessMapSection,
    'mutation': MutationSection,
    'player_update': PlayerUpdateSection,
    'species_update': SpeciesUpdateSection,
    'fixation': FixationSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def _yaml_to_config(data: Dict) -> EvoConfig:
    """Convert a merged YAML dict to an EvoConfig."""
    sections = {}
    for key, cls in SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    rates = sections['species_update'].rates
    if not isinstance(rates, list):
        sections['species_update'].rates = [rates]
    return EvoConfig(**sections)


def config_to_dict(config: EvoConfig) -> Dict:
    """Plain nested dict (YAML-serialisable) of a configuration."""
    return dataclasses.asdict(config)


def _require_kind(enum_cls, value: str, where: str) -> None:
    if parse_kind(enum_cls, value) is None:
        raise ValueError(
            f"{where} must be one of {[k.value for k in enum_cls]}, got '{value}'"
        )


def validate_config(config: EvoConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - every kind names a known variant
      - probabilities in [0, 1], selection strength and fitness > 0
      - population sizes, trait counts and species rates are consistent
    """
    sim = config.simulation
    if sim.seed < 0:
        raise ValueError(f"simulation.seed must be >= 0, got {sim.seed}")
    if sim.samples < 1:
        raise ValueError(f"simulation.samples must be >= 1, got {sim.samples}")

    # Population
    pop = config.population
    if pop.size < 2:
        raise ValueError(f"population.size must be >= 2, got {pop.size}")
    if not (0.0 <= pop.init_mutant_fraction <= 1.0):
        raise ValueError(
            f"population.init_mutant_fraction must be in [0, 1], "
            f"got {pop.init_mutant_fraction}"
        )
    if pop.resident_fitness <= 0.0 or pop.mutant_fitness <= 0.0:
        raise ValueError(
            f"population fitness values must be > 0, got "
            f"resident={pop.resident_fitness}, mutant={pop.mutant_fitness}"
        )
    if pop.n_species < 1:
        raise ValueError(f"population.n_species must be >= 1, got {pop.n_species}")
    if pop.n_traits < 1:
        raise ValueError(f"population.n_traits must be >= 1, got {pop.n_traits}")
    if pop.vacant is not None and not (0 <= pop.vacant < pop.n_traits):
        raise ValueError(
            f"population.vacant must index one of {pop.n_traits} traits, got {pop.vacant}"
        )

    # Fitness map
    fm = config.fitness_map
    _require_kind(FitnessMapType, fm.map, "fitness_map.map")
    if not math.isfinite(fm.selection) or fm.selection <= 0.0:
        raise ValueError(f"fitness_map.selection must be > 0, got {fm.selection}")
    if parse_kind(FitnessMapType, fm.map) is FitnessMapType.EXPONENTIAL and fm.baseline <= 0.0:
        raise ValueError(
            f"fitness_map.baseline must be > 0 for the exponential map, got {fm.baseline}"
        )

    # Mutation
    mut = config.mutation
    if mut.trait_kind not in ("discrete", "continuous"):
        raise ValueError(
            f"mutation.trait_kind must be 'discrete' or 'continuous', got '{mut.trait_kind}'"
        )
    if not (0.0 <= mut.probability <= 1.0):
        raise ValueError(f"mutation.probability must be in [0, 1], got {mut.probability}")
    if mut.range < 0:
        raise ValueError(f"mutation.range must be >= 0, got {mut.range}")
    if mut.trait_kind == "discrete":
        _require_kind(DiscreteMutationType, mut.type, "mutation.type")
        if int(mut.range) != mut.range:
            raise ValueError(
                f"mutation.range must be an integer for discrete traits, got {mut.range}"
            )
        if (parse_kind(DiscreteMutationType, mut.type) is DiscreteMutationType.RANGE
                and mut.range < 1):
            raise ValueError("mutation.range must be >= 1 for mutation type 'range'")
    else:
        _require_kind(ContinuousMutationType, mut.type, "mutation.type")
        kind = parse_kind(ContinuousMutationType, mut.type)
        if kind in (ContinuousMutationType.GAUSSIAN, ContinuousMutationType.RANGE) and mut.range <= 0:
            raise ValueError(f"mutation.range must be > 0 for mutation type '{mut.type}'")
    if mut.probability > 0.0 and mut.type == "none":
        warnings.warn(
            f"mutation.probability={mut.probability} has no effect with type 'none'",
            UserWarning,
            stacklevel=2,
        )

    # Player update
    pu = config.player_update
    _require_kind(UpdateType, pu.type, "player_update.type")
    if pu.noise < 0.0:
        raise ValueError(f"player_update.noise must be >= 0, got {pu.noise}")
    if not (0.0 <= pu.error <= 1.0):
        raise ValueError(f"player_update.error must be in [0, 1], got {pu.error}")

    # Species update
    su = config.species_update
    _require_kind(SpeciesUpdateType, su.type, "species_update.type")
    if len(su.rates) == 0:
        raise ValueError("species_update.rates must not be empty")
    if any(r <= 0.0 for r in su.rates):
        raise ValueError(f"species_update.rates must be positive, got {su.rates}")
    if len(su.rates) > pop.n_species:
        raise ValueError(
            f"species_update.rates has {len(su.rates)} entries for "
            f"{pop.n_species} species"
        )

    # Fixation solver limits
    fx = config.fixation
    if fx.max_n_probability < 1 or fx.max_n_time < 1:
        raise ValueError(
            f"fixation limits must be >= 1, got max_n_probability="
            f"{fx.max_n_probability}, max_n_time={fx.max_n_time}"
        )
    if fx.max_n_time > fx.max_n_probability:
        warnings.warn(
            f"fixation.max_n_time ({fx.max_n_time}) exceeds max_n_probability "
            f"({fx.max_n_probability}); times are only computed with exact probabilities",
            UserWarning,
            stacklevel=2,
        )


def _read_yaml(path: Path) -> Dict:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> EvoConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")
    config_dict = _read_yaml(base_path)

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if scenario_path.exists():
            deep_merge(config_dict, _read_yaml(scenario_path))
        else:
            warnings.warn(
                f"scenario file '{scenario_path}' not found; using base configuration",
                UserWarning,
                stacklevel=2,
            )

    if sweep_overrides is not None:
        deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> EvoConfig:
    """Return an EvoConfig with all default values."""
    config = EvoConfig()
    validate_config(config)
    return config
