"""Population manager: owns individuals and runs the daily cycle.

Daily cycle (driven by ``model.run_simulation``):

  advance_one_day(T, hours)  publish DailyContext; single-threaded
                             DoFirst work (pollen regrowth, parasitoid
                             grid update, female density grid rebuild)
  step()                     every live individual steps exactly once,
                             serially or across a ThreadPoolExecutor in
                             fixed chunks, each with its own RNG stream
  end_of_day(recent_temps)   season flags, drop inactive individuals,
                             admit individuals created today, release
                             sealed empty nests

Individuals created during a day (successor stages, new eggs, emerged
females) wait in a pending queue and first step the following day.

Shared-state discipline while stepping:
  - nests and polygon capacity: internal locks (osmia_abm.nest)
  - pollen map: striped per-cell locks (osmia_abm.landscape)
  - density grid, context, parameter table: read-only
  - creation queue and counters: manager locks below
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

import numpy as np

from osmia_abm.config import SimulationConfig
from osmia_abm.development import prepupal_rate
from osmia_abm.environment import DAYS_PER_YEAR, JUNE_1, MARCH_1, SeasonFlags, month_of
from osmia_abm.female import step_female
from osmia_abm.forage import DensityGrid, build_forage_mask
from osmia_abm.landscape import GridLandscape, PollenMap
from osmia_abm.nest import NestManager
from osmia_abm.overwintering import provision_from_adult_mass, step_in_cocoon
from osmia_abm.params import ParameterTable, build_parameter_table
from osmia_abm.parasitoids import ParasitoidGrid
from osmia_abm.rng import create_rng_hierarchy, get_worker_rng
from osmia_abm.stages import step_degree_day_stage, step_prepupa
from osmia_abm.types import (
    N_STAGES,
    DailyContext,
    DeathCause,
    Individual,
    ModelInvariantError,
    ParasitoidType,
    Stage,
)

logger = logging.getLogger(__name__)

_STEP_HANDLERS = {
    Stage.EGG: step_degree_day_stage,
    Stage.LARVA: step_degree_day_stage,
    Stage.PREPUPA: step_prepupa,
    Stage.PUPA: step_degree_day_stage,
    Stage.IN_COCOON: step_in_cocoon,
    Stage.FEMALE: step_female,
}

_SEED_PLACEMENT_TRIES = 50


class PopulationManager:
    """All individuals, nests and shared landscape state of one run."""

    def __init__(self, config: SimulationConfig,
                 params: Optional[ParameterTable] = None,
                 rngs: Optional[Dict[str, np.random.Generator]] = None):
        self.config = config
        self.params = params if params is not None else build_parameter_table(config)
        self.n_workers = config.simulation.parallel_workers
        self.rngs = rngs if rngs is not None else create_rng_hierarchy(
            config.simulation.seed, self.n_workers)

        ls = config.landscape
        self.landscape = GridLandscape(ls, self.rngs['landscape'])
        self.pollen_map = PollenMap(ls, self.rngs['landscape'], ls.width, ls.height)
        self.nest_manager = NestManager.from_landscape(self.landscape, ls)
        self.density_grid = DensityGrid(ls.width, ls.height,
                                        config.forage.density_cell_size)
        self.forage_mask = build_forage_mask(config.forage)
        self.parasitoid_grid: Optional[ParasitoidGrid] = None
        if config.parasitism.mechanistic:
            self.parasitoid_grid = ParasitoidGrid(config.parasitism, ls.width, ls.height,
                                                  self.rngs['parasitoids'])

        sim = config.simulation
        start = sim.start_day_of_year
        self.season = SeasonFlags(config.overwintering,
                                  prewinter_ended=sim.initial_prewinter_end,
                                  march_reached=MARCH_1 < start < JUNE_1)
        self.day = 0
        self.context = DailyContext()

        self.individuals: List[Individual] = []
        self._pending: List[Individual] = []
        self._uids = itertools.count()
        self._create_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._reset_daily_stats()
        self.total_deaths: Counter = Counter()

    # ── calendar ─────────────────────────────────────────────────────

    def _calendar(self, day: int):
        absolute = self.config.simulation.start_day_of_year + day
        doy = absolute % DAYS_PER_YEAR
        year = self.config.simulation.start_year + absolute // DAYS_PER_YEAR
        return doy, month_of(doy), year

    # ── bookkeeping hooks (called from stepping threads) ─────────────

    def _reset_daily_stats(self) -> None:
        self.eggs_today = 0
        self.female_eggs_today = 0
        self.female_emergences_today = 0
        self.male_emergences_today = 0
        self.deaths_today: Counter = Counter()

    def _next_uid(self) -> int:
        with self._create_lock:
            return next(self._uids)

    def record_death(self, stage: Stage, cause: DeathCause) -> None:
        with self._stats_lock:
            self.deaths_today[(int(stage), int(cause))] += 1

    def record_emergence(self, is_female: bool) -> None:
        with self._stats_lock:
            if is_female:
                self.female_emergences_today += 1
            else:
                self.male_emergences_today += 1

    def release_parasitoid(self, kind: ParasitoidType, x: float, y: float) -> None:
        if self.parasitoid_grid is not None:
            self.parasitoid_grid.add_parasitoid(kind, x, y)

    def create_individual(self, stage: Stage, source: Optional[Individual],
                          data: dict) -> Individual:
        """Build a new individual of ``stage`` and queue it for tomorrow.

        - EGG: laid by ``source`` (a female) into ``data['nest']``; a new
          cell is appended to the nest.
        - FEMALE: emerges from ``source`` (in cocoon) with ``data['mass']``
          and ``data['female']``; no nest, age reset to 0.
        - other stages: successor of ``source``; shared fields copied
          forward and the nest cell's occupant replaced.
        """
        uid = self._next_uid()
        if stage == Stage.EGG:
            nest = data['nest']
            new = Individual(uid=uid, stage=stage, mass=data['mass'],
                             is_female=data['is_female'],
                             parasitism=data['parasitism'],
                             nest=nest, x=nest.x, y=nest.y)
            nest.add_cell(new)
            with self._stats_lock:
                self.eggs_today += 1
                if new.is_female:
                    self.female_eggs_today += 1
        elif stage == Stage.FEMALE:
            if source is None or source.stage != Stage.IN_COCOON:
                raise ModelInvariantError(f"female created from {source!r}")
            new = Individual(uid=uid, stage=stage, age=0, mass=data['mass'],
                             is_female=True, nest=None, x=source.x, y=source.y,
                             female=data['female'])
        else:
            if source is None or source.nest is None:
                raise ModelInvariantError(f"{stage.name} created without a source cell")
            new = Individual(uid=uid, stage=stage, age=source.age, mass=source.mass,
                             is_female=source.is_female, parasitism=source.parasitism,
                             nest=source.nest, x=source.x, y=source.y,
                             prepupa_target=data.get('prepupa_target', 0.0))
            source.nest.replace_occupant(source, new)
        with self._create_lock:
            self._pending.append(new)
        return new

    # ── seeding ──────────────────────────────────────────────────────

    def seed_population(self) -> int:
        """Place the initial overwintering females, one per new nest.

        Returns the number of individuals created.
        """
        sim = self.config.simulation
        rng = self.rngs['seeding']
        polygons = self.landscape.nesting_polygons()
        if not polygons:
            logger.warning("no nesting habitat: population not seeded")
            return 0

        created = 0
        for _ in range(sim.start_number):
            nest = None
            for _ in range(_SEED_PLACEMENT_TRIES):
                pid = polygons[int(rng.integers(len(polygons)))]
                x, y = self.landscape.random_location_in_polygon(pid, rng)
                nest = self.nest_manager.try_create_nest(pid, x, y, rng, force=True)
                if nest is not None:
                    break
            if nest is None:
                logger.warning("nesting capacity exhausted after seeding %d of %d",
                               created, sim.start_number)
                break
            adult_mass = rng.uniform(sim.initial_mass_min, sim.initial_mass_max)
            ind = Individual(
                uid=self._next_uid(), stage=Stage.IN_COCOON,
                mass=provision_from_adult_mass(adult_mass, self.config.overwintering),
                is_female=True, nest=nest, x=nest.x, y=nest.y,
                development=sim.initial_overwinter_dd,
            )
            nest.add_cell(ind)
            nest.seal()
            self.individuals.append(ind)
            created += 1
        logger.info("seeded %d overwintering females in %d nests",
                    created, self.nest_manager.nest_count())
        return created

    # ── daily cycle ──────────────────────────────────────────────────

    def advance_one_day(self, temperature: float, forage_hours: int) -> DailyContext:
        """Publish today's context and run the single-threaded DoFirst work."""
        doy, month, year = self._calendar(self.day)
        self.pollen_map.regrow(doy)
        if self.parasitoid_grid is not None:
            self.parasitoid_grid.daily_update(month)
        self.density_grid.build(
            (ind.x, ind.y) for ind in self.individuals
            if ind.alive and ind.stage == Stage.FEMALE
        )
        self.context = DailyContext(
            day=self.day,
            day_of_year=doy,
            month=month,
            year=year,
            temperature=float(temperature),
            forage_hours=int(forage_hours),
            prepupal_rate=prepupal_rate(self.params.prepupal_rates, temperature),
            prewinter_ended=self.season.prewinter_ended,
            march_reached=self.season.march_reached,
        )
        self._reset_daily_stats()
        return self.context

    def step_individual(self, ind: Individual, rng: np.random.Generator) -> None:
        if not ind.alive:
            return
        handler = _STEP_HANDLERS.get(ind.stage)
        if handler is None:
            raise ModelInvariantError(f"no step handler for {ind!r}")
        handler(ind, self.context, self.params, rng, self)

    def _step_chunk(self, chunk: Sequence[Individual], rng: np.random.Generator) -> None:
        for ind in chunk:
            self.step_individual(ind, rng)

    def step(self) -> None:
        """Step every live individual once."""
        population = self.individuals
        if self.n_workers == 1 or len(population) < 2 * self.n_workers:
            self._step_chunk(population, get_worker_rng(self.rngs, 0))
            return
        bounds = np.linspace(0, len(population), self.n_workers + 1).astype(int)
        with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
            futures = [
                pool.submit(self._step_chunk, population[bounds[w]:bounds[w + 1]],
                            get_worker_rng(self.rngs, w))
                for w in range(self.n_workers)
            ]
            for fut in futures:
                fut.result()

    def end_of_day(self, recent_temperatures: Sequence[float]) -> None:
        """Season flags, population turnover and nest release."""
        self.season.update(self.context.day_of_year, recent_temperatures)
        survivors = [ind for ind in self.individuals if ind.alive]
        survivors.extend(ind for ind in self._pending if ind.alive)
        self.individuals = survivors
        self._pending = []
        self.total_deaths.update(self.deaths_today)
        released = self.nest_manager.release_empty_nests()
        if released:
            logger.debug("day %d: released %d empty nests", self.day, released)
        self.day += 1

    # ── queries ──────────────────────────────────────────────────────

    def stage_counts(self) -> np.ndarray:
        """Live individuals per Stage, shape (6,)."""
        counts = np.zeros(N_STAGES, dtype=np.int64)
        for ind in self.individuals:
            if ind.alive:
                counts[ind.stage] += 1
        return counts

    def deaths_by_cause(self, counter: Optional[Counter] = None) -> Dict[str, int]:
        counter = self.total_deaths if counter is None else counter
        totals: Dict[str, int] = {}
        for (_, cause), n in counter.items():
            name = DeathCause(cause).name.lower()
            totals[name] = totals.get(name, 0) + n
        return totals
