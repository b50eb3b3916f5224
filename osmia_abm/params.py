"""Read-only parameter table built once from a validated configuration.

Holds everything individuals read but never write:
  - Per-stage degree-day thresholds, totals and daily mortalities
  - Prepupal development-rate table (indexed by rounded °C)
  - Sex-ratio and female-provision lookup surfaces keyed by
    [maternal mass class][maternal age]; 0.25 mg mass classes, ages 0-60
  - Forage efficiency by adult age (0-100) and provisioning hours per
    cell by age (0-364), both from Seidelmann (2006)
  - Frozen scipy.stats distributions (emergence-day spread, movement,
    eggs per nest, provision variation)

The table is a frozen dataclass; numpy arrays are flagged read-only so
concurrent readers never observe a mutation.

References:
  - Seidelmann (2006) provisioning efficiency vs. age
  - Seidelmann et al. (2010) sex ratio and cocoon mass vs. mother age/mass
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

import numpy as np
from scipy import stats

from osmia_abm.config import SimulationConfig
from osmia_abm.types import Stage

MASS_CLASS_STEP = 0.25      # mg
MAX_TABLE_AGE = 60          # days, sex-ratio / provision surfaces
MAX_EFFICIENCY_AGE = 100    # days, forage efficiency table
N_PROVISIONING_AGES = 365

# Seidelmann (2006): provisioning efficiency (mg/h) vs. age (days)
_EFF_MAX = 21.643
_EFF_HALF_AGE = 18.888
_EFF_SHAPE = 3.571
_CELL_TIME_SLOPE = 2.576
_CELL_TIME_CONST = 56.17


def forage_efficiency_curve(ages: np.ndarray) -> np.ndarray:
    """Provisioning efficiency (mg/h) at each age; age 0 gives 0."""
    ages = np.asarray(ages, dtype=np.float64)
    eff = np.zeros_like(ages)
    pos = ages > 0
    eff[pos] = _EFF_MAX / (
        1.0 + np.exp((np.log(ages[pos]) - np.log(_EFF_HALF_AGE)) * _EFF_SHAPE)
    )
    return eff


def provisioning_hours_curve(ages: np.ndarray) -> np.ndarray:
    """Whole hours needed to construct and stock one cell at each age.

    Age 0 uses the limit of the efficiency curve (maximum efficiency),
    matching log(0) → -inf in the closed form.
    """
    ages = np.asarray(ages, dtype=np.float64)
    eff = np.full_like(ages, _EFF_MAX)
    pos = ages > 0
    eff[pos] = forage_efficiency_curve(ages[pos])
    return ((_CELL_TIME_SLOPE * eff + _CELL_TIME_CONST) / eff).astype(np.int64)


def _logistic(age: np.ndarray, p: Tuple[float, ...], top: np.ndarray) -> np.ndarray:
    """Four-parameter logistic in age with a mass-adjusted asymptote.

    p = (inflection, lower asymptote, old-age asymptote, slope).  p[2] is
    not read: ``top``, the mass-linear term, takes the old-age asymptote's
    place so the curve scales with maternal mass.
    """
    return p[1] + (top - p[1]) / (1.0 + np.exp(-p[3] * (age - p[0])))


def build_lookup_surfaces(config: SimulationConfig) -> Tuple[np.ndarray, np.ndarray]:
    """Sex-ratio and first-cell female-provision surfaces.

    Returns:
        (sex_ratio, female_provision), each shape (n_mass_classes, 61).
    """
    fem = config.female
    masses = np.arange(fem.female_mass_min, fem.female_mass_max + 1e-9, MASS_CLASS_STEP)
    ages = np.arange(MAX_TABLE_AGE + 1, dtype=np.float64)
    m = masses[:, None]
    a = ages[None, :]

    sr_lin = fem.sex_ratio_mass_linear
    sex_ratio = _logistic(a, tuple(fem.sex_ratio_age_logistic),
                          sr_lin[0] * m + sr_lin[1])

    cm_lin = fem.cocoon_mass_mass_linear
    first_cocoon = cm_lin[0] * m + cm_lin[1] + fem.lifetime_cocoon_mass_loss / 2.0
    cocoon = _logistic(a, tuple(fem.cocoon_mass_age_logistic), first_cocoon)
    female_provision = 40.0 + fem.provision_from_cocoon * cocoon

    return np.clip(sex_ratio, 0.0, 1.0), female_provision


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


# ═══════════════════════════════════════════════════════════════════════
# PARAMETER TABLE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ParameterTable:
    """Process-wide read-only parameters, passed to every operation."""
    config: SimulationConfig
    stage_params: Dict[Stage, Tuple[float, float, float]]  # threshold, total, mortality
    prepupal_rates: np.ndarray
    sex_ratio: np.ndarray
    female_provision: np.ndarray
    forage_efficiency: np.ndarray
    provisioning_hours: np.ndarray
    monthly_thresholds: np.ndarray          # (12, 4): pollen quan/qual, nectar quan/qual
    female_min_provision: float             # provision giving the minimum female mass
    emergence_offsets: Any                  # scipy.stats rv_discrete
    eggs_per_nest: Any                      # scipy.stats beta
    provision_variation: Any                # scipy.stats beta
    movement: Any                           # scipy.stats beta
    dispersal: Any                          # scipy.stats beta

    # ── lookups ───────────────────────────────────────────────────────

    def mass_class(self, mass: float) -> int:
        """Row of the lookup surfaces for a maternal mass (mg)."""
        idx = int((mass - self.config.female.female_mass_min) / MASS_CLASS_STEP)
        return min(max(idx, 0), self.sex_ratio.shape[0] - 1)

    def sex_ratio_at(self, mass: float, age: int) -> float:
        """Probability that the next egg is female."""
        age = min(max(int(age), 0), MAX_TABLE_AGE)
        return float(self.sex_ratio[self.mass_class(mass), age])

    def female_provision_at(self, mass: float, age: int) -> float:
        """Target provision (mg) for the first female cell of a nest."""
        age = min(max(int(age), 0), MAX_TABLE_AGE)
        return float(self.female_provision[self.mass_class(mass), age])

    def forage_efficiency_at(self, age: int) -> float:
        age = min(max(int(age), 0), MAX_EFFICIENCY_AGE)
        return float(self.forage_efficiency[age])

    def provisioning_hours_at(self, age: int) -> int:
        age = min(max(int(age), 0), N_PROVISIONING_AGES - 1)
        return int(self.provisioning_hours[age])

    def thresholds_for_month(self, month: int) -> np.ndarray:
        return self.monthly_thresholds[month % 12]


def build_parameter_table(config: SimulationConfig) -> ParameterTable:
    """Build the read-only parameter table from a validated config."""
    dev = config.development
    ow = config.overwintering
    fem = config.female
    fo = config.forage

    stage_params = {
        Stage.EGG: (dev.egg_threshold, dev.egg_total_dd, dev.egg_daily_mortality),
        Stage.LARVA: (dev.larva_threshold, dev.larva_total_dd, dev.larva_daily_mortality),
        Stage.PREPUPA: (0.0, dev.prepupa_days, dev.prepupa_daily_mortality),
        Stage.PUPA: (dev.pupa_threshold, dev.pupa_total_dd, dev.pupa_daily_mortality),
    }

    sex_ratio, female_provision = build_lookup_surfaces(config)

    weights = np.asarray(ow.emergence_day_weights, dtype=np.float64)
    offsets = np.arange(len(weights))
    emergence_offsets = stats.rv_discrete(
        name='emergence_offset', values=(offsets, weights / weights.sum())
    )

    pollen = np.asarray(fo.pollen_thresholds, dtype=np.float64)
    nectar = np.asarray(fo.nectar_thresholds, dtype=np.float64)
    monthly = np.column_stack([pollen[:12], pollen[12:], nectar[:12], nectar[12:]])

    return ParameterTable(
        config=config,
        stage_params=stage_params,
        prepupal_rates=_readonly(np.asarray(dev.prepupal_devel_rates, dtype=np.float64)),
        sex_ratio=_readonly(sex_ratio),
        female_provision=_readonly(female_provision),
        forage_efficiency=_readonly(
            forage_efficiency_curve(np.arange(MAX_EFFICIENCY_AGE + 1))),
        provisioning_hours=_readonly(
            provisioning_hours_curve(np.arange(N_PROVISIONING_AGES))),
        monthly_thresholds=_readonly(monthly),
        female_min_provision=(fem.female_mass_min - ow.adult_mass_const) / ow.adult_mass_slope,
        emergence_offsets=emergence_offsets,
        eggs_per_nest=stats.beta(*fem.eggs_per_nest_beta),
        provision_variation=stats.beta(*fem.provision_variation_beta),
        movement=stats.beta(*fo.movement_beta),
        dispersal=stats.beta(*fo.dispersal_beta),
    )
