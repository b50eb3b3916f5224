"""Immature life-stage state machines: Egg, Larva, Prepupa, Pupa.

Every stage runs the same daily shape:

  Develop:    mortality test → age++ → accumulate → threshold check
  Transition: build the successor Individual (fields copied forward,
              same nest cell) and deactivate self, in the same step
  Die:        deactivate self and free the nest cell for good

EGG, LARVA and PUPA accumulate degree-days above a stage threshold.
Cells in a nest that is still open (being provisioned) only age; they
neither develop nor face the mortality test until the nest is sealed.

PREPUPA accumulates elapsed days weighted by today's prepupal rate
against an individual target drawn when the prepupa is created.

Handlers receive a ``host`` (normally the PopulationManager) providing
``create_individual(stage, source, data)`` and ``record_death(stage,
cause)``.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from osmia_abm.development import (
    accumulate_degree_days,
    draw_prepupa_target,
    has_reached_target,
)
from osmia_abm.params import ParameterTable
from osmia_abm.types import (
    NEXT_STAGE,
    DailyContext,
    DeathCause,
    Individual,
    ModelInvariantError,
    Stage,
)

DEGREE_DAY_STAGES = (Stage.EGG, Stage.LARVA, Stage.PUPA)


# ═══════════════════════════════════════════════════════════════════════
# SHARED TRANSITIONS
# ═══════════════════════════════════════════════════════════════════════

def kill(ind: Individual, cause: DeathCause, host) -> None:
    """Die: remove from the simulation and free its nest cell."""
    ind.alive = False
    ind.death_cause = cause
    if ind.stage != Stage.FEMALE and ind.nest is not None:
        ind.nest.remove_cell(ind)
    host.record_death(ind.stage, cause)


def metamorphose(ind: Individual, host, data: Optional[dict] = None) -> Individual:
    """Transition: replace ``ind`` by a new Individual of the next stage."""
    successor = NEXT_STAGE.get(ind.stage)
    if successor is None:
        raise ModelInvariantError(f"{ind!r} has no successor stage")
    new = host.create_individual(successor, ind, data or {})
    ind.alive = False
    return new


# ═══════════════════════════════════════════════════════════════════════
# DEGREE-DAY STAGES
# ═══════════════════════════════════════════════════════════════════════

def step_degree_day_stage(ind: Individual, ctx: DailyContext, params: ParameterTable,
                          rng: np.random.Generator, host) -> None:
    """One day of an Egg, Larva or Pupa."""
    if ind.stage not in DEGREE_DAY_STAGES:
        raise ModelInvariantError(f"{ind!r} stepped as a degree-day stage")
    threshold, total_dd, mortality = params.stage_params[ind.stage]

    if ind.nest is not None and ind.nest.is_open:
        ind.age += 1
        return

    if rng.random() < mortality:
        kill(ind, DeathCause.BACKGROUND, host)
        return
    ind.age += 1
    ind.development += accumulate_degree_days(ctx.temperature, threshold)
    if has_reached_target(ind.development, total_dd):
        data = {}
        if ind.stage == Stage.LARVA:
            dev = params.config.development
            data['prepupa_target'] = draw_prepupa_target(
                dev.prepupa_days, dev.prepupa_days_spread, rng)
        metamorphose(ind, host, data)


# ═══════════════════════════════════════════════════════════════════════
# PREPUPA
# ═══════════════════════════════════════════════════════════════════════

def step_prepupa(ind: Individual, ctx: DailyContext, params: ParameterTable,
                 rng: np.random.Generator, host) -> None:
    """One day of a Prepupa: rate-weighted day count against its own target."""
    if ind.stage != Stage.PREPUPA:
        raise ModelInvariantError(f"{ind!r} stepped as a prepupa")
    mortality = params.stage_params[Stage.PREPUPA][2]
    if rng.random() < mortality:
        kill(ind, DeathCause.BACKGROUND, host)
        return
    ind.age += 1
    ind.development += ctx.prepupal_rate
    if has_reached_target(ind.development, ind.prepupa_target):
        metamorphose(ind, host)
