"""Overwintering adult (in cocoon): prewintering, winter and emergence.

Phases are implied by the two population-wide season flags:

  prewinter_ended = False   → prewintering: prewinter DD += T − 15 on
                              days warmer than 15 °C (fat depletion)
  prewinter_ended, no March → winter: winter DD += max(0, T − 0)
  march_reached             → emergence: on the first March day set

      counter = int(35.4819 − 0.0147 × winterDD) + offset + microsite

    then decrement on every day with T ≥ 5 °C.  When the counter drops
    below 1 the winter-mortality test runs exactly once:

      P(death) = clamp(0.05 × prewinterDD − 4.63, 0, 1)

    Survivors emerge.  Still in the cocoon on the cutoff day → death.

Emergence: males are discarded, parasitised cocoons die (releasing a
parasitoid when the mechanistic grid is active), females become active
adults with mass = 0.25 × provision + 4.

References:
  - Ziółkowska et al. (2025) §overwintering; Sgolastra et al. (2011)
"""

from __future__ import annotations

import numpy as np

from osmia_abm.config import OverwinteringSection
from osmia_abm.development import accumulate_degree_days
from osmia_abm.female import new_female_data
from osmia_abm.params import ParameterTable
from osmia_abm.stages import kill
from osmia_abm.types import (
    DailyContext,
    DeathCause,
    Individual,
    ModelInvariantError,
    ParasitoidType,
    Stage,
)


def winter_mortality_probability(prewinter_dd: float, slope: float,
                                 const: float) -> float:
    """Linear winter mortality in prewinter DD, clamped to [0, 1]."""
    p = slope * prewinter_dd + const
    return min(max(p, 0.0), 1.0)


def initial_emergence_counter(winter_dd: float, offset: int, microsite_delay: int,
                              section: OverwinteringSection) -> int:
    """Days of emergence-permitting weather still needed after 1 March."""
    base = int(section.emergence_counter_const
               + section.emergence_counter_slope * winter_dd)
    return base + int(offset) + int(microsite_delay)


def adult_mass_from_provision(provision: float, section: OverwinteringSection) -> float:
    return section.adult_mass_slope * provision + section.adult_mass_const


def provision_from_adult_mass(mass: float, section: OverwinteringSection) -> float:
    """Inverse of ``adult_mass_from_provision`` (used for seeding)."""
    return (mass - section.adult_mass_const) / section.adult_mass_slope


def step_in_cocoon(ind: Individual, ctx: DailyContext, params: ParameterTable,
                   rng: np.random.Generator, host) -> None:
    """One day of an overwintering adult."""
    if ind.stage != Stage.IN_COCOON:
        raise ModelInvariantError(f"{ind!r} stepped as an overwintering adult")
    ow = params.config.overwintering
    ind.age += 1

    if not ctx.prewinter_ended:
        if ctx.temperature > ow.prewinter_threshold:
            ind.prewinter_dd += ctx.temperature - ow.prewinter_threshold
        return

    if not ctx.march_reached:
        ind.development += accumulate_degree_days(ctx.temperature,
                                                  ow.overwinter_threshold)
        return

    if ctx.day_of_year >= ow.emergence_cutoff_doy:
        kill(ind, DeathCause.LATE_EMERGENCE, host)
        return

    if ind.emergence_counter is None:
        offset = int(params.emergence_offsets.rvs(random_state=rng))
        delay = ind.nest.microsite_delay if ind.nest is not None else 0
        ind.emergence_counter = initial_emergence_counter(
            ind.development, offset, delay, ow)
        return

    if ctx.temperature >= ow.emergence_threshold:
        ind.emergence_counter -= 1
        if ind.emergence_counter < 1:
            p = winter_mortality_probability(
                ind.prewinter_dd, ow.winter_mortality_slope, ow.winter_mortality_const)
            if rng.random() < p:
                kill(ind, DeathCause.WINTER, host)
            else:
                emerge(ind, params, rng, host)


def emerge(ind: Individual, params: ParameterTable, rng: np.random.Generator,
           host) -> None:
    """Leave the cocoon: discard males, kill parasitised, create females."""
    if not ind.is_female:
        ind.alive = False
        if ind.nest is not None:
            ind.nest.remove_cell(ind)
        host.record_emergence(is_female=False)
        return

    if ind.parasitism != ParasitoidType.UNPARASITISED:
        host.release_parasitoid(ind.parasitism, ind.x, ind.y)
        kill(ind, DeathCause.PARASITISED, host)
        return

    mass = adult_mass_from_provision(ind.mass, params.config.overwintering)
    host.create_individual(Stage.FEMALE, ind, {
        'mass': mass,
        'female': new_female_data(mass, params, rng),
    })
    ind.alive = False
    if ind.nest is not None:
        ind.nest.remove_cell(ind)
    host.record_emergence(is_female=True)
