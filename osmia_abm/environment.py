"""Weather forcing and seasonal flags.

Daily mean temperature uses a sinusoidal annual cycle plus Gaussian
noise, or an observed CSV series when one is configured:

  T(d) = T_mean + A × cos(2π × (d − d_peak) / 365) + ε,  ε ~ N(0, σ²)

Hourly temperature, wind and rain are derived per day and reduced to a
single foraging-hour budget (daylight hours fit for flight).

SeasonFlags carries the two population-wide overwintering switches:
  - prewinter_ended: set in autumn once a sustained cooling pattern is
    detected (days after 1 September); cleared on 1 June
  - march_reached:   set on 1 March; cleared on 1 June
Flags are updated at the end of a day and read by individuals the next.

References:
  - Ziółkowska et al. (2025) §overwintering, flight weather thresholds
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from osmia_abm.config import OverwinteringSection, WeatherSection

logger = logging.getLogger(__name__)

DAYS_PER_YEAR = 365
MARCH_1 = 59
JUNE_1 = 151
SEPTEMBER_1 = 243

_MONTH_STARTS = np.array([0, 31, 59, 90, 120, 151, 181, 212, 243, 273, 304, 334])


def month_of(day_of_year: int) -> int:
    """0-based month for a 0-based day of a 365-day year."""
    return int(np.searchsorted(_MONTH_STARTS, day_of_year, side='right') - 1)


# ═══════════════════════════════════════════════════════════════════════
# DAILY TEMPERATURE
# ═══════════════════════════════════════════════════════════════════════

def sinusoidal_temperature(day_of_year, mean_temp: float, amplitude: float,
                           peak_doy: int = 200):
    """Noise-free daily mean temperature (°C); accepts scalars or arrays."""
    phase = 2.0 * np.pi * (np.asarray(day_of_year) - peak_doy) / DAYS_PER_YEAR
    return mean_temp + amplitude * np.cos(phase)


def make_temperature_series(n_years: int, section: WeatherSection,
                            rng: np.random.Generator) -> np.ndarray:
    """Synthetic daily mean temperatures, shape (n_years * 365,)."""
    doy = np.tile(np.arange(DAYS_PER_YEAR), n_years)
    base = sinusoidal_temperature(doy, section.mean_temp, section.temp_amplitude,
                                  section.peak_doy)
    return base + rng.normal(0.0, section.temp_noise_sd, size=base.shape)


def load_temperature_csv(path: Union[str, Path], start_year: int,
                         n_years: int) -> Optional[np.ndarray]:
    """Read daily mean temperatures from a CSV file.

    Expects columns ``year``, ``day_of_year`` (0-364) and ``temperature``.
    Returns None (and logs a warning) when the file does not cover every
    requested day.
    """
    df = pd.read_csv(path)
    missing_cols = {'year', 'day_of_year', 'temperature'} - set(df.columns)
    if missing_cols:
        raise ValueError(f"{path}: missing columns {sorted(missing_cols)}")

    years = range(start_year, start_year + n_years)
    df = df[df['year'].isin(years) & df['day_of_year'].between(0, DAYS_PER_YEAR - 1)]
    df = df.drop_duplicates(subset=['year', 'day_of_year'], keep='last')
    if len(df) < n_years * DAYS_PER_YEAR:
        logger.warning(
            "%s covers %d of %d requested days; using synthetic temperatures",
            path, len(df), n_years * DAYS_PER_YEAR,
        )
        return None
    df = df.sort_values(['year', 'day_of_year'])
    return df['temperature'].to_numpy(dtype=np.float64)


# ═══════════════════════════════════════════════════════════════════════
# HOURLY WEATHER → FORAGING HOURS
# ═══════════════════════════════════════════════════════════════════════

def hourly_temperatures(daily_mean: float, diurnal_range: float) -> np.ndarray:
    """24 hourly temperatures: sine around the daily mean, peak at 15 h."""
    hours = np.arange(24)
    return daily_mean + 0.5 * diurnal_range * np.cos(2.0 * np.pi * (hours - 15) / 24.0)


def hourly_wind(section: WeatherSection, rng: np.random.Generator) -> np.ndarray:
    """24 hourly wind speeds (m/s), gamma distributed around the mean."""
    return rng.gamma(2.0, section.mean_wind / 2.0, size=24)


def hourly_precipitation(section: WeatherSection,
                         rng: np.random.Generator) -> np.ndarray:
    """24 hourly precipitation values (mm/h); zero on dry days."""
    if rng.random() >= section.rain_probability:
        return np.zeros(24)
    raining = rng.random(24) < 0.5
    return np.where(raining, rng.exponential(section.mean_rain, size=24), 0.0)


def flying_hours(hourly_temp: Sequence[float], hourly_wind_speed: Sequence[float],
                 hourly_precip: Sequence[float], section: WeatherSection) -> int:
    """Count daylight hours with temperature, wind and rain fit for flight."""
    lo, hi = section.daylight_start, section.daylight_end
    t = np.asarray(hourly_temp)[lo:hi]
    w = np.asarray(hourly_wind_speed)[lo:hi]
    p = np.asarray(hourly_precip)[lo:hi]
    ok = (t > section.min_flight_temp) & (w < section.max_flight_wind) \
        & (p < section.max_flight_precip)
    return int(ok.sum())


class WeatherGenerator:
    """Daily temperature and foraging-hour supply for a whole run."""

    def __init__(self, section: WeatherSection, start_year: int, n_years: int,
                 rng: np.random.Generator):
        self.section = section
        self.rng = rng
        series = None
        if section.temperature_file is not None:
            if Path(section.temperature_file).is_file():
                series = load_temperature_csv(section.temperature_file,
                                              start_year, n_years)
            else:
                logger.warning("temperature file %s not found; using synthetic "
                               "temperatures", section.temperature_file)
        if series is None:
            series = make_temperature_series(n_years, section, rng)
        self.temperatures = series

    def temperature(self, day: int) -> float:
        return float(self.temperatures[day])

    def forage_hours(self, day: int) -> int:
        """Today's foraging-hour budget from freshly drawn hourly weather."""
        s = self.section
        return flying_hours(
            hourly_temperatures(self.temperature(day), s.diurnal_range),
            hourly_wind(s, self.rng),
            hourly_precipitation(s, self.rng),
            s,
        )

    def day(self, day: int) -> Tuple[float, int]:
        return self.temperature(day), self.forage_hours(day)

    def recent_temperatures(self, day: int, n: int = 6) -> np.ndarray:
        """[T(day), T(day-1), ..., T(day-n+1)], repeating day 0 at the start."""
        idx = np.clip(np.arange(day, day - n, -1), 0, None)
        return self.temperatures[idx]


# ═══════════════════════════════════════════════════════════════════════
# SEASON FLAGS
# ═══════════════════════════════════════════════════════════════════════

def detect_prewinter_end(recent: Sequence[float], threshold: float = 13.0) -> bool:
    """Sustained autumn cooling pattern over the last six daily means.

    ``recent[k]`` is the mean temperature k days ago.  True when the last
    three days are all below ``threshold`` and either the two steps
    between days 5→4→3 both cooled by more than 1 °C, or day 3 was also
    cold and day 5→4 cooled by at least 3 °C.
    """
    t0, t1, t2, t3, t4, t5 = (float(v) for v in recent[:6])
    if not (t0 < threshold and t1 < threshold and t2 < threshold):
        return False
    sharp_drop = (t5 - t4 > 1.0) and (t4 - t3 > 1.0)
    extended_cold = (t3 < threshold) and (t5 - t4 >= 3.0)
    return sharp_drop or extended_cold


class SeasonFlags:
    """Population-wide overwintering phase switches."""

    def __init__(self, section: OverwinteringSection,
                 prewinter_ended: bool = True, march_reached: bool = False):
        self.threshold = section.prewinter_end_temp
        self.prewinter_ended = prewinter_ended
        self.march_reached = march_reached

    def update(self, day_of_year: int, recent: Sequence[float]) -> None:
        """End-of-day update; ``recent`` as for ``detect_prewinter_end``."""
        if day_of_year > SEPTEMBER_1 and not self.prewinter_ended:
            if detect_prewinter_end(recent, self.threshold):
                self.prewinter_ended = True
                logger.debug("pre-wintering ended on day of year %d", day_of_year)
        if day_of_year == MARCH_1:
            self.march_reached = True
        if day_of_year == JUNE_1:
            self.prewinter_ended = False
            self.march_reached = False
