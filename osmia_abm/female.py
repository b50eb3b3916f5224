"""Active female: reproduction, nest search, provisioning and egg laying.

State machine (FemaleState), run once per day after the daily checks
(lifespan cap, background mortality):

  MATURING        prenesting delay; moves on to NEST_SEARCHING the same
                  day it completes
  NEST_SEARCHING  up to ``nest_find_attempts`` local moves (Beta-scaled
                  fraction of the typical homing distance), each trying
                  to claim a cavity; success → PROVISIONING (same day),
                  failure → DISPERSING
  DISPERSING      one long move (Beta-scaled fraction of the maximum
                  homing distance); too many dispersals → death
  PROVISIONING    forage toward the current cell's target; close the
                  cell (lay an egg) when the target is met after the
                  minimum construction time, or at the maximum time if
                  the provision suffices for a male; at most one cell
                  per day; seal the nest when its plan is exhausted
  DONE            no further reproduction, lives out its lifespan
  DYING           seal any open nest and leave the simulation

Sex allocation: when a nest is started the female plans every cell.
Each cell is female with probability sex_ratio[mass class][age]; female
targets start from the provision surface minus a Beta(0.75, 2.5) share
of up to 60 % and decline across the nest by the per-nest mass loss.
A planned female cell whose provision ends below the minimum for a
viable female is laid as a male.

References:
  - Seidelmann et al. (2010); Ziółkowska et al. (2025) §female
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np

from osmia_abm.forage import forage_day
from osmia_abm.nest import Nest
from osmia_abm.params import ParameterTable
from osmia_abm.parasitoids import calc_parasitised
from osmia_abm.types import (
    DailyContext,
    DeathCause,
    FemaleData,
    FemaleState,
    Individual,
    ModelInvariantError,
    ParasitoidType,
    Stage,
)

logger = logging.getLogger(__name__)

_MAX_CHAIN = 8   # state hand-offs within one day


# ═══════════════════════════════════════════════════════════════════════
# LIFETIME PLANNING
# ═══════════════════════════════════════════════════════════════════════

def egg_load(mass: float, params: ParameterTable, rng: np.random.Generator) -> int:
    """Lifetime egg capacity from adult mass (mg), with uniform jitter."""
    fem = params.config.female
    per_nest = fem.fecundity_slope * mass + fem.fecundity_intercept
    jitter = rng.uniform(-fem.fecundity_jitter, fem.fecundity_jitter)
    return max(0, int(fem.total_nests_possible * per_nest + jitter))


def new_female_data(mass: float, params: ParameterTable,
                    rng: np.random.Generator) -> FemaleData:
    """Payload for a newly emerged female."""
    return FemaleData(eggs_to_lay=egg_load(mass, params, rng))


def plan_eggs_per_nest(eggs_to_lay: int, params: ParameterTable,
                       rng: np.random.Generator) -> int:
    """Cells to provision in the next nest, bounded by the remaining load."""
    fem = params.config.female
    draw = float(params.eggs_per_nest.rvs(random_state=rng))
    n = int(round(fem.min_eggs_per_nest
                  + draw * (fem.max_eggs_per_nest - fem.min_eggs_per_nest)))
    return max(1, min(n, eggs_to_lay))


def plan_nest(mass: float, age: int, n_cells: int, params: ParameterTable,
              rng: np.random.Generator) -> List[Tuple[bool, float]]:
    """(is_female, target provision mg) for every cell of a new nest."""
    fem = params.config.female
    ow = params.config.overwintering
    conv = fem.provision_from_cocoon
    p_female = params.sex_ratio_at(mass, age)
    surface = params.female_provision_at(mass, age)
    nest_loss = (fem.nest_cocoon_mass_loss * conv
                 + rng.uniform(-fem.nest_cocoon_mass_loss_range * conv,
                               fem.nest_cocoon_mass_loss_range * conv))
    decline = nest_loss / max(1, n_cells - 1)
    lo = params.female_min_provision
    hi = (fem.female_mass_max - ow.adult_mass_const) / ow.adult_mass_slope

    plan = []
    for i in range(n_cells):
        if rng.random() < p_female:
            variation = float(params.provision_variation.rvs(random_state=rng))
            target = surface - variation * surface * fem.provision_variation - i * decline
            plan.append((True, min(max(target, lo), hi)))
        else:
            target = rng.uniform(fem.male_mass_min, fem.male_mass_max)
            plan.append((False, max(target, fem.male_min_target_provision)))
    return plan


# ═══════════════════════════════════════════════════════════════════════
# STATE HANDLERS
# ═══════════════════════════════════════════════════════════════════════

def die(ind: Individual, cause: DeathCause, host) -> None:
    """Dying: seal the open nest, then leave the simulation."""
    ind.female.state = FemaleState.DYING
    if ind.nest is not None:
        ind.nest.seal()
        ind.nest = None
    ind.alive = False
    ind.death_cause = cause
    host.record_death(Stage.FEMALE, cause)


def _move(ind: Individual, max_distance: float, dist, rng: np.random.Generator,
          landscape) -> Tuple[float, float]:
    d = float(dist.rvs(random_state=rng)) * max_distance
    angle = rng.uniform(0.0, 2.0 * np.pi)
    return landscape.clip(ind.x + d * np.cos(angle), ind.y + d * np.sin(angle))


def start_nest(ind: Individual, nest: Nest, params: ParameterTable,
               rng: np.random.Generator) -> None:
    """Take possession of a freshly claimed nest and plan its cells."""
    f = ind.female
    ind.nest = nest
    ind.x, ind.y = nest.x, nest.y
    n = plan_eggs_per_nest(f.eggs_to_lay, params, rng)
    f.cell_plan = plan_nest(ind.mass, f.emerge_age, n, params, rng)
    f.eggs_this_nest = n
    f.current_provision = 0.0
    f.cell_open_days = 0
    f.dispersals = 0
    f.forage.has_location = False


def st_maturing(ind: Individual, ctx: DailyContext, params: ParameterTable,
                rng: np.random.Generator, host) -> Optional[FemaleState]:
    if ind.female.emerge_age >= params.config.female.prenesting_days:
        return FemaleState.NEST_SEARCHING
    return None


def st_nest_searching(ind: Individual, ctx: DailyContext, params: ParameterTable,
                      rng: np.random.Generator, host) -> Optional[FemaleState]:
    fem = params.config.female
    if ind.female.eggs_to_lay <= 0:
        return FemaleState.DONE
    typical = params.config.forage.typical_homing_distance
    for _ in range(fem.nest_find_attempts):
        x, y = _move(ind, typical, params.movement, rng, host.landscape)
        polygon_id = host.landscape.polygon_at(x, y)
        nest = host.nest_manager.try_create_nest(polygon_id, x, y, rng)
        if nest is not None:
            start_nest(ind, nest, params, rng)
            return FemaleState.PROVISIONING
    return FemaleState.DISPERSING


def st_dispersing(ind: Individual, ctx: DailyContext, params: ParameterTable,
                  rng: np.random.Generator, host) -> Optional[FemaleState]:
    f = ind.female
    f.dispersals += 1
    if f.dispersals > params.config.female.max_dispersals:
        die(ind, DeathCause.DISPERSAL_FAILURE, host)
        return None
    ind.x, ind.y = _move(ind, params.config.forage.max_homing_distance,
                         params.dispersal, rng, host.landscape)
    f.state = FemaleState.NEST_SEARCHING
    return None


def _parasitise(nest: Nest, days_open: int, params: ParameterTable,
                rng: np.random.Generator, host) -> ParasitoidType:
    grid = getattr(host, 'parasitoid_grid', None)
    if grid is not None:
        return grid.attack(days_open, nest.x, nest.y, rng)
    return calc_parasitised(days_open, params.config.parasitism, rng)


def lay_egg(ind: Individual, planned_female: bool, target: float,
            params: ParameterTable, rng: np.random.Generator, host) -> Individual:
    """Close the current cell: create the egg, carry any surplus forward."""
    f = ind.female
    nest = ind.nest
    excess = max(0.0, f.current_provision - target)
    provision = f.current_provision - excess
    is_female = planned_female and provision >= params.female_min_provision
    parasitism = _parasitise(nest, f.cell_open_days, params, rng, host)
    egg = host.create_individual(Stage.EGG, ind, {
        'mass': provision,
        'is_female': is_female,
        'parasitism': parasitism,
        'nest': nest,
    })
    f.current_provision = excess
    f.cell_open_days = 0
    f.eggs_this_nest -= 1
    f.eggs_to_lay -= 1
    f.eggs_laid += 1
    f.cells_today += 1
    return egg


def _finish_nest(ind: Individual, params: ParameterTable) -> None:
    f = ind.female
    ind.nest.seal()
    ind.nest = None
    f.nests_built += 1
    f.cell_plan = []
    f.current_provision = 0.0
    f.forage.has_location = False
    if f.eggs_to_lay > 0 and f.nests_built < params.config.female.total_nests_possible:
        f.state = FemaleState.NEST_SEARCHING
    else:
        f.state = FemaleState.DONE


def st_provisioning(ind: Individual, ctx: DailyContext, params: ParameterTable,
                    rng: np.random.Generator, host) -> Optional[FemaleState]:
    f = ind.female
    fem = params.config.female
    nest = ind.nest
    if nest is None or not nest.is_open:
        raise ModelInvariantError(f"{ind!r} provisioning without an open nest")
    if f.cells_today > 0:
        return None

    f.cell_open_days += 1
    cell_index = len(f.cell_plan) - f.eggs_this_nest
    planned_female, target = f.cell_plan[cell_index]

    if ctx.forage_hours > 0:
        need = target - f.current_provision
        cell_hours = max(1, params.provisioning_hours_at(f.emerge_age))
        need = min(need, target * ctx.forage_hours / cell_hours)
        if need > 0.0:
            f.current_provision += forage_day(ind, ctx.forage_hours, need,
                                              ctx.month, params, host)

    complete = (f.current_provision >= target
                and f.cell_open_days >= fem.min_cell_construction_days)
    forced = (f.cell_open_days >= fem.max_cell_construction_days
              and f.current_provision >= fem.male_min_target_provision)
    if complete or forced:
        lay_egg(ind, planned_female, target, params, rng, host)
        if f.eggs_this_nest <= 0 or f.eggs_to_lay <= 0:
            _finish_nest(ind, params)
    return None


_HANDLERS = {
    FemaleState.MATURING: st_maturing,
    FemaleState.NEST_SEARCHING: st_nest_searching,
    FemaleState.DISPERSING: st_dispersing,
    FemaleState.PROVISIONING: st_provisioning,
}


def step_female(ind: Individual, ctx: DailyContext, params: ParameterTable,
                rng: np.random.Generator, host) -> None:
    """One day of an active female."""
    if ind.stage != Stage.FEMALE or ind.female is None:
        raise ModelInvariantError(f"{ind!r} stepped as a female")
    f = ind.female
    fem = params.config.female
    ind.age += 1
    f.emerge_age += 1
    f.cells_today = 0

    if f.emerge_age >= fem.lifespan:
        die(ind, DeathCause.LIFESPAN, host)
        return
    if rng.random() < fem.daily_mortality:
        die(ind, DeathCause.BACKGROUND, host)
        return

    for _ in range(_MAX_CHAIN):
        if not ind.alive or f.state in (FemaleState.DONE, FemaleState.DYING):
            return
        handler = _HANDLERS.get(f.state)
        if handler is None:
            raise ModelInvariantError(f"unknown female state {f.state!r}")
        nxt = handler(ind, ctx, params, rng, host)
        if nxt is None:
            return
        f.state = nxt
    raise ModelInvariantError(f"{ind!r} did not settle within one day")
