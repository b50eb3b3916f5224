"""Simulation driver: daily loop over a whole run.

Per simulated day:
  weather → advance_one_day (context, DoFirst) → step → end_of_day
  → record daily output

The loop always runs to its fixed length; population extinction only
empties the output rows.

References:
  - Ziółkowska et al. (2025) schedule of processes
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from osmia_abm.config import SimulationConfig, default_config, validate_config
from osmia_abm.environment import DAYS_PER_YEAR, WeatherGenerator
from osmia_abm.perf import PerfMonitor
from osmia_abm.population import PopulationManager
from osmia_abm.types import N_STAGES, STAGE_NAMES, Stage

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# RESULT CONTAINER
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationResult:
    """Daily time series and summary of one run."""
    n_days: int = 0
    start_year: int = 0
    start_day_of_year: int = 0
    seed: int = 0
    n_seeded: int = 0
    # Daily arrays (n_days,) unless noted
    stage_counts: Optional[np.ndarray] = None       # (n_days, 6)
    temperature: Optional[np.ndarray] = None
    forage_hours: Optional[np.ndarray] = None
    nest_count: Optional[np.ndarray] = None
    eggs_laid: Optional[np.ndarray] = None
    female_eggs_laid: Optional[np.ndarray] = None
    female_emergences: Optional[np.ndarray] = None
    male_emergences: Optional[np.ndarray] = None
    deaths: Optional[np.ndarray] = None              # (n_days,)
    prewinter_ended: Optional[np.ndarray] = None     # bool flags after each day
    # Summary
    deaths_by_cause: Dict[str, int] = field(default_factory=dict)
    final_stage_counts: Dict[str, int] = field(default_factory=dict)
    annual_female_emergences: List[int] = field(default_factory=list)
    wall_time_s: float = 0.0
    perf: Dict = field(default_factory=dict)

    @property
    def total_eggs(self) -> int:
        return int(self.eggs_laid.sum()) if self.eggs_laid is not None else 0

    @property
    def growth_rates(self) -> List[float]:
        """Ratio of female emergences in successive years (NaN after zero)."""
        e = self.annual_female_emergences
        return [e[i + 1] / e[i] if e[i] > 0 else float('nan')
                for i in range(len(e) - 1)]

    def day_of_year(self) -> np.ndarray:
        return (self.start_day_of_year + np.arange(self.n_days)) % DAYS_PER_YEAR

    def to_dict(self) -> dict:
        """JSON-serializable summary (daily arrays as lists)."""
        out = {
            'n_days': self.n_days,
            'start_year': self.start_year,
            'start_day_of_year': self.start_day_of_year,
            'seed': self.seed,
            'n_seeded': self.n_seeded,
            'total_eggs': self.total_eggs,
            'deaths_by_cause': dict(self.deaths_by_cause),
            'final_stage_counts': dict(self.final_stage_counts),
            'annual_female_emergences': list(self.annual_female_emergences),
            'growth_rates': self.growth_rates,
            'wall_time_s': round(self.wall_time_s, 3),
            'perf': self.perf,
        }
        for name in ('temperature', 'forage_hours', 'nest_count', 'eggs_laid',
                     'female_emergences', 'male_emergences'):
            arr = getattr(self, name)
            out[name] = arr.tolist() if arr is not None else []
        if self.stage_counts is not None:
            out['stage_counts'] = {
                STAGE_NAMES[s]: self.stage_counts[:, s].tolist() for s in range(N_STAGES)
            }
        return out


def _annual_totals(daily: np.ndarray, start_doy: int) -> List[int]:
    """Sum a daily series by calendar year (partial first/last years kept)."""
    years = (start_doy + np.arange(len(daily))) // DAYS_PER_YEAR
    return [int(daily[years == y].sum()) for y in np.unique(years)]


# ═══════════════════════════════════════════════════════════════════════
# SIMULATION LOOP
# ═══════════════════════════════════════════════════════════════════════

def run_simulation(
    config: Optional[SimulationConfig] = None,
    n_days: Optional[int] = None,
) -> SimulationResult:
    """Run the Osmia population model.

    Args:
        config: Full configuration (defaults to ``default_config()``).
        n_days: Override the run length (defaults to n_years × 365).

    Returns:
        SimulationResult with daily series and summary statistics.

    Raises:
        ValueError: If the configuration is invalid.
        ModelInvariantError: If the model reaches an impossible state.
    """
    if config is None:
        config = default_config()
    else:
        validate_config(config)
    sim = config.simulation
    total_days = n_days if n_days is not None else sim.n_years * DAYS_PER_YEAR
    perf = PerfMonitor(enabled=config.output.perf_enabled)
    perf.start()
    t0 = time.perf_counter()

    pop = PopulationManager(config)
    # One extra year covers runs that start mid-year
    n_weather_years = (sim.start_day_of_year + total_days) // DAYS_PER_YEAR + 1
    weather = WeatherGenerator(config.weather, sim.start_year, n_weather_years,
                               pop.rngs['weather'])

    with perf.track("seeding"):
        n_seeded = pop.seed_population()
    logger.info("running %d days from year %d day %d (%d workers)",
                total_days, sim.start_year, sim.start_day_of_year, pop.n_workers)

    counts = np.zeros((total_days, N_STAGES), dtype=np.int64)
    temperature = np.zeros(total_days)
    hours = np.zeros(total_days, dtype=np.int64)
    nests = np.zeros(total_days, dtype=np.int64)
    eggs = np.zeros(total_days, dtype=np.int64)
    female_eggs = np.zeros(total_days, dtype=np.int64)
    f_emerg = np.zeros(total_days, dtype=np.int64)
    m_emerg = np.zeros(total_days, dtype=np.int64)
    deaths = np.zeros(total_days, dtype=np.int64)
    prewinter = np.zeros(total_days, dtype=bool)

    for day in range(total_days):
        w_day = sim.start_day_of_year + day
        with perf.track("weather"):
            temp, forage_hours = weather.day(w_day)
        with perf.track("day_start"):
            ctx = pop.advance_one_day(temp, forage_hours)
        with perf.track("step"):
            pop.step()
        with perf.track("day_end"):
            pop.end_of_day(weather.recent_temperatures(w_day))

        if config.output.record_daily or day == total_days - 1:
            counts[day] = pop.stage_counts()
        temperature[day] = ctx.temperature
        hours[day] = ctx.forage_hours
        nests[day] = pop.nest_manager.nest_count()
        eggs[day] = pop.eggs_today
        female_eggs[day] = pop.female_eggs_today
        f_emerg[day] = pop.female_emergences_today
        m_emerg[day] = pop.male_emergences_today
        deaths[day] = sum(pop.deaths_today.values())
        prewinter[day] = pop.season.prewinter_ended

        if ctx.day_of_year == DAYS_PER_YEAR - 1:
            c = counts[day]
            logger.info(
                "year %d end: %s; eggs this year %d",
                ctx.year,
                ", ".join(f"{STAGE_NAMES[s]}={c[s]}" for s in range(N_STAGES)),
                int(eggs[max(0, day - DAYS_PER_YEAR + 1):day + 1].sum()),
            )
        else:
            logger.debug("day %d (doy %d, %.1f °C, %d h): %s", day, ctx.day_of_year,
                         ctx.temperature, ctx.forage_hours, counts[day].tolist())

    perf.stop()
    final = counts[-1] if total_days > 0 else pop.stage_counts()
    result = SimulationResult(
        n_days=total_days,
        start_year=sim.start_year,
        start_day_of_year=sim.start_day_of_year,
        seed=sim.seed,
        n_seeded=n_seeded,
        stage_counts=counts,
        temperature=temperature,
        forage_hours=hours,
        nest_count=nests,
        eggs_laid=eggs,
        female_eggs_laid=female_eggs,
        female_emergences=f_emerg,
        male_emergences=m_emerg,
        deaths=deaths,
        prewinter_ended=prewinter,
        deaths_by_cause=pop.deaths_by_cause(),
        final_stage_counts={s.name.lower(): int(final[s]) for s in Stage},
        annual_female_emergences=_annual_totals(f_emerg, sim.start_day_of_year),
        wall_time_s=time.perf_counter() - t0,
        perf=perf.summary() if perf.enabled else {},
    )
    logger.info("run finished in %.2f s: %d eggs laid, %d females emerged",
                result.wall_time_s, result.total_eggs, int(f_emerg.sum()))
    return result
