"""evodyn: building blocks of evolutionary dynamics in finite populations.

Components shared by individual-based and density-based models:
  - Payoff-to-fitness maps (none, static, convex, exponential)
  - Mutation operators for discrete and continuous traits
  - Player update rules (best, imitate, proportional, thermal, ...)
  - Species selection for multi-species models
  - Exact fixation probabilities and times of the Moran process, with
    reference levels for reporting and a stochastic validation harness
"""

__version__ = "0.1.0"
