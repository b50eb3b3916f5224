"""Configuration system for Osmia-ABM.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → climate override → sweep overrides

Every field defaults to the calibrated value of the ALMaSS Osmia model, so
``default_config()`` is a runnable parameterization on its own.  Sections
that only tune the stand-alone landscape and weather generators
(``landscape``, ``weather``) are not part of the calibrated biology.

References:
  - Ziółkowska et al. (2025) Osmia bicornis formal model, parameter tables
  - Seidelmann (2006) provisioning efficiency by age
  - Seidelmann et al. (2010) sex ratio and cocoon mass vs. maternal age/mass
"""

from __future__ import annotations

import copy
import os
import warnings
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml


# ═══════════════════════════════════════════════════════════════════════
# DEFAULT TABLES
# ═══════════════════════════════════════════════════════════════════════

# Prepupal development rate by rounded daily mean temperature (0..41 °C).
PREPUPAL_DEVEL_RATES = [
    0.118180491, 0.128062924, 0.139167698, 0.151690375, 0.165863251,
    0.181962547, 0.200316654, 0.221315209, 0.245418359, 0.273164807,
    0.305175879, 0.342150483, 0.384842052, 0.434002716, 0.490272059,
    0.553979475, 0.62482638, 0.701432201, 0.780791977, 0.857828943,
    0.925409524, 0.97526899, 1.0, 0.995492173, 0.96251684,
    0.90641791, 0.835121012, 0.756712977, 0.677752358, 0.602659522,
    0.53389011, 0.472441557, 0.418380352, 0.371255655, 0.330377543,
    0.294984821, 0.264336547, 0.237755941, 0.214646732, 0.194494708,
    0.176862031, 0.161378614,
]

# Relative frequency of emergence-day offsets 0..10 (A. Bednarska field data).
EMERGENCE_DAY_WEIGHTS = [8, 7, 9, 24, 20, 8, 6, 5, 5, 4, 4]


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class SimulationSection:
    """Top-level simulation timing, seeding and control."""
    start_year: int = 2020
    n_years: int = 2
    start_day_of_year: int = 0         # 0 = 1 Jan; seeding happens mid-winter
    seed: int = 42
    parallel_workers: int = 1          # 1 = serial stepping
    start_number: int = 500            # initial overwintering cocoons (ALMaSS: 50000)
    initial_overwinter_dd: float = 320.0
    initial_prewinter_end: bool = True
    initial_mass_min: float = 25.0     # adult female mass range used for seeding (mg)
    initial_mass_max: float = 200.0


@dataclass
class DevelopmentSection:
    """Immature stage development and background mortality.

    Thresholds are deliberately lower than laboratory values and paired
    with higher degree-day totals; treat each (threshold, total) pair as a
    single calibration unit.
    """
    egg_threshold: float = 0.0         # °C (13.8 in the formal model)
    egg_total_dd: float = 86.0
    egg_daily_mortality: float = 0.0014
    larva_threshold: float = 4.5       # °C (8.5 in the formal model)
    larva_total_dd: float = 422.0
    larva_daily_mortality: float = 0.0014
    prepupa_days: float = 45.0
    prepupa_days_spread: float = 0.1   # ±10 % individual target variation
    prepupa_daily_mortality: float = 0.003
    prepupal_devel_rates: List[float] = field(
        default_factory=lambda: list(PREPUPAL_DEVEL_RATES)
    )
    pupa_threshold: float = 1.1        # °C (13.2 in the formal model)
    pupa_total_dd: float = 570.0
    pupa_daily_mortality: float = 0.003


@dataclass
class OverwinteringSection:
    """Prewintering, winter and spring-emergence parameters."""
    prewinter_threshold: float = 15.0
    overwinter_threshold: float = 0.0
    emergence_threshold: float = 5.0   # 12 °C originally, calibrated to 5 °C
    emergence_counter_const: float = 35.4819
    emergence_counter_slope: float = -0.0147
    winter_mortality_slope: float = 0.05
    winter_mortality_const: float = -4.63
    emergence_day_weights: List[float] = field(
        default_factory=lambda: list(EMERGENCE_DAY_WEIGHTS)
    )
    emergence_cutoff_doy: int = 150    # last day of May; later emergence fails
    adult_mass_slope: float = 0.25     # adult mass = slope × provision + const
    adult_mass_const: float = 4.0
    prewinter_end_temp: float = 13.0   # autumn cooling detection threshold


@dataclass
class FemaleSection:
    """Active adult female reproduction and survival."""
    daily_mortality: float = 0.02
    lifespan: int = 60
    prenesting_days: int = 2
    min_eggs_per_nest: int = 3
    max_eggs_per_nest: int = 30
    eggs_per_nest_beta: List[float] = field(default_factory=lambda: [1.0, 4.0])
    total_nests_possible: int = 5
    fecundity_slope: float = 0.0371
    fecundity_intercept: float = 2.8399
    fecundity_jitter: float = 3.0
    nest_find_attempts: int = 20
    max_dispersals: int = 3
    female_mass_min: float = 25.0
    female_mass_max: float = 200.0
    male_mass_min: float = 88.0
    male_mass_max: float = 105.0
    male_min_target_provision: float = 10.0
    min_cell_construction_days: int = 1
    max_cell_construction_days: int = 4
    provision_from_cocoon: float = 3.247
    lifetime_cocoon_mass_loss: float = 30.0
    nest_cocoon_mass_loss: float = 15.0
    nest_cocoon_mass_loss_range: float = 5.0
    provision_variation: float = 0.6
    provision_variation_beta: List[float] = field(default_factory=lambda: [0.75, 2.5])
    sex_ratio_age_logistic: List[float] = field(
        default_factory=lambda: [14.90257909, 0.09141286, 0.6031729, -0.39213001]
    )
    sex_ratio_mass_linear: List[float] = field(default_factory=lambda: [0.0055, -0.1025])
    cocoon_mass_age_logistic: List[float] = field(
        default_factory=lambda: [18.04087868, 104.19820591, 133.74150303, -0.17686981]
    )
    cocoon_mass_mass_linear: List[float] = field(default_factory=lambda: [0.3, 65.1])


@dataclass
class ForageSection:
    """Foraging search, patch exploitation and movement."""
    forage_steps: int = 20
    forage_directions: int = 8
    typical_homing_distance: float = 600.0   # R50 (m)
    max_homing_distance: float = 1430.0      # R90 (m)
    mask_type: str = 'rings'                 # 'rings' or 'detailed'
    detailed_mask_step: float = 25.0         # m
    detailed_mask_max: float = 600.0         # m
    pollen_giveup_threshold: float = 0.75
    pollen_giveup_return: float = 0.75       # mg per day
    density_removal_const: float = 0.5
    pollen_score_to_mg: float = 0.8
    competition_scaler: float = 1.0
    max_pollen_per_hour: float = 25.0        # mg/h carrying capacity cap
    # 12 monthly quantities then 12 monthly qualities; minimal by default
    pollen_thresholds: List[float] = field(default_factory=lambda: [1.0] * 12 + [0.3] * 12)
    nectar_thresholds: List[float] = field(default_factory=lambda: [1.0] * 12 + [0.3] * 12)
    movement_beta: List[float] = field(default_factory=lambda: [10.0, 5.0])
    dispersal_beta: List[float] = field(default_factory=lambda: [10.0, 5.0])
    density_cell_size: float = 1000.0        # m


@dataclass
class WeatherSection:
    """Synthetic climate and flight-weather thresholds."""
    temperature_file: Optional[str] = None   # CSV: year,day_of_year,temperature
    mean_temp: float = 8.5
    temp_amplitude: float = 9.5
    peak_doy: int = 200
    temp_noise_sd: float = 2.0
    diurnal_range: float = 9.0
    mean_wind: float = 4.0
    rain_probability: float = 0.35
    mean_rain: float = 0.6                   # mm/h during rain
    daylight_start: int = 6
    daylight_end: int = 20
    min_flight_temp: float = 6.0
    max_flight_wind: float = 8.0
    max_flight_precip: float = 0.1


@dataclass
class LandscapeSection:
    """Stand-alone grid landscape: polygons, nesting capacity, pollen."""
    width: float = 2000.0
    height: float = 2000.0
    polygon_size: float = 100.0
    nesting_fraction: float = 0.35
    nest_probability: float = 0.6
    max_nests_per_polygon: int = 200
    pollen_cell_size: float = 50.0
    pollen_quantity_min: float = 50.0
    pollen_quantity_max: float = 1500.0     # fully stocked patch (forage base = 1)
    pollen_quality_min: float = 0.3
    pollen_quality_max: float = 1.0
    nectar_quantity_min: float = 10.0
    nectar_quantity_max: float = 200.0
    pollen_regrowth: float = 0.15
    microsite_delay_min: int = 0
    microsite_delay_max: int = 5
    lock_stripes: int = 64


@dataclass
class ParasitismSection:
    """Cell parasitism: open-time risk model or mechanistic grid."""
    mechanistic: bool = False
    prob_per_day_open: float = 0.0075
    bombylid_probability: float = 0.5
    attack_rates: List[float] = field(default_factory=lambda: [1.0e-5, 2.0e-5])
    dispersal: List[float] = field(default_factory=lambda: [0.001, 0.0001])
    start_high_low: List[float] = field(default_factory=lambda: [2.0, 1.0, 2.0, 1.0])
    monthly_mortality: List[float] = field(default_factory=lambda: [0.01] * 24)
    cell_size: float = 100.0


@dataclass
class OutputSection:
    """Output and diagnostics."""
    record_daily: bool = True
    perf_enabled: bool = False
    output_dir: str = 'results'


@dataclass
class SimulationConfig:
    """Complete simulation configuration."""
    simulation: SimulationSection = field(default_factory=SimulationSection)
    development: DevelopmentSection = field(default_factory=DevelopmentSection)
    overwintering: OverwinteringSection = field(default_factory=OverwinteringSection)
    female: FemaleSection = field(default_factory=FemaleSection)
    forage: ForageSection = field(default_factory=ForageSection)
    weather: WeatherSection = field(default_factory=WeatherSection)
    landscape: LandscapeSection = field(default_factory=LandscapeSection)
    parasitism: ParasitismSection = field(default_factory=ParasitismSection)
    output: OutputSection = field(default_factory=OutputSection)


_SECTION_MAP = {
    'simulation': SimulationSection,
    'development': DevelopmentSection,
    'overwintering': OverwinteringSection,
    'female': FemaleSection,
    'forage': ForageSection,
    'weather': WeatherSection,
    'landscape': LandscapeSection,
    'parasitism': ParasitismSection,
    'output': OutputSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base (in-place on base copy).

    Returns a new dict; neither input is mutated.
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _dict_to_section(cls, d: dict):
    """Convert a dict to a dataclass section, ignoring unknown keys."""
    valid_fields = {f for f in cls.__dataclass_fields__}
    filtered = {k: v for k, v in d.items() if k in valid_fields}
    return cls(**filtered)


def _yaml_to_config(data: dict) -> SimulationConfig:
    """Convert a raw YAML dict to SimulationConfig."""
    sections: Dict[str, Any] = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


def config_to_dict(config: SimulationConfig) -> Dict[str, Any]:
    """Plain nested dict of a config (YAML/JSON serializable)."""
    return asdict(config)


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _check_probability(name: str, value: float) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def _check_range(name: str, lo: float, hi: float) -> None:
    if lo > hi:
        raise ValueError(f"{name}: min ({lo}) must be <= max ({hi})")


def _check_length(name: str, values: List[float], n: int) -> None:
    if len(values) != n:
        raise ValueError(f"{name} must have {n} elements, got {len(values)}")


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ValueError on failure.

    Checks:
      - Probabilities lie in [0, 1]
      - Ranges are ordered (min <= max)
      - Parameter vectors have the expected length
      - Sizes, counts and durations are positive
    Suspicious but legal settings only produce a UserWarning.
    """
    sim = config.simulation
    if sim.n_years < 1:
        raise ValueError(f"simulation.n_years must be >= 1, got {sim.n_years}")
    if not 0 <= sim.start_day_of_year < 365:
        raise ValueError(
            f"simulation.start_day_of_year must be in [0, 364], "
            f"got {sim.start_day_of_year}"
        )
    if sim.seed < 0:
        raise ValueError("simulation.seed must be non-negative")
    if sim.parallel_workers < 1:
        raise ValueError(
            f"simulation.parallel_workers must be >= 1, got {sim.parallel_workers}"
        )
    if sim.start_number < 0:
        raise ValueError("simulation.start_number must be non-negative")
    _check_range("simulation.initial_mass", sim.initial_mass_min, sim.initial_mass_max)

    dev = config.development
    for stage in ('egg', 'larva', 'prepupa', 'pupa'):
        _check_probability(f"development.{stage}_daily_mortality",
                           getattr(dev, f"{stage}_daily_mortality"))
    for stage in ('egg', 'larva', 'pupa'):
        if getattr(dev, f"{stage}_total_dd") <= 0:
            raise ValueError(f"development.{stage}_total_dd must be positive")
    if dev.prepupa_days <= 0:
        raise ValueError("development.prepupa_days must be positive")
    if not 0.0 <= dev.prepupa_days_spread < 1.0:
        raise ValueError("development.prepupa_days_spread must be in [0, 1)")
    _check_length("development.prepupal_devel_rates", dev.prepupal_devel_rates, 42)

    ow = config.overwintering
    if len(ow.emergence_day_weights) == 0 or sum(ow.emergence_day_weights) <= 0:
        raise ValueError("overwintering.emergence_day_weights must have positive mass")
    if any(w < 0 for w in ow.emergence_day_weights):
        raise ValueError("overwintering.emergence_day_weights must be non-negative")
    if ow.adult_mass_slope <= 0:
        raise ValueError("overwintering.adult_mass_slope must be positive")
    if not 59 <= ow.emergence_cutoff_doy < 365:
        raise ValueError(
            "overwintering.emergence_cutoff_doy must fall after March 1st "
            f"(day 59), got {ow.emergence_cutoff_doy}"
        )

    fem = config.female
    _check_probability("female.daily_mortality", fem.daily_mortality)
    if fem.lifespan < 1:
        raise ValueError("female.lifespan must be >= 1")
    if fem.min_eggs_per_nest < 1:
        raise ValueError("female.min_eggs_per_nest must be >= 1")
    _check_range("female.eggs_per_nest", fem.min_eggs_per_nest, fem.max_eggs_per_nest)
    _check_range("female.mass", fem.female_mass_min, fem.female_mass_max)
    _check_range("female.male_mass", fem.male_mass_min, fem.male_mass_max)
    _check_range("female.cell_construction_days",
                 fem.min_cell_construction_days, fem.max_cell_construction_days)
    _check_length("female.eggs_per_nest_beta", fem.eggs_per_nest_beta, 2)
    _check_length("female.provision_variation_beta", fem.provision_variation_beta, 2)
    _check_length("female.sex_ratio_age_logistic", fem.sex_ratio_age_logistic, 4)
    _check_length("female.sex_ratio_mass_linear", fem.sex_ratio_mass_linear, 2)
    _check_length("female.cocoon_mass_age_logistic", fem.cocoon_mass_age_logistic, 4)
    _check_length("female.cocoon_mass_mass_linear", fem.cocoon_mass_mass_linear, 2)
    if fem.nest_find_attempts < 1:
        raise ValueError("female.nest_find_attempts must be >= 1")
    if fem.total_nests_possible < 1:
        raise ValueError("female.total_nests_possible must be >= 1")
    _check_probability("female.provision_variation", fem.provision_variation)

    fo = config.forage
    valid_masks = {'rings', 'detailed'}
    if fo.mask_type not in valid_masks:
        raise ValueError(
            f"forage.mask_type must be one of {valid_masks}, got '{fo.mask_type}'"
        )
    if fo.forage_steps < 2 or fo.forage_directions < 1:
        raise ValueError("forage.forage_steps must be >= 2 and forage_directions >= 1")
    _check_range("forage.homing_distance", fo.typical_homing_distance,
                 fo.max_homing_distance)
    _check_probability("forage.pollen_giveup_threshold", fo.pollen_giveup_threshold)
    _check_length("forage.pollen_thresholds", fo.pollen_thresholds, 24)
    _check_length("forage.nectar_thresholds", fo.nectar_thresholds, 24)
    _check_length("forage.movement_beta", fo.movement_beta, 2)
    _check_length("forage.dispersal_beta", fo.dispersal_beta, 2)
    if fo.detailed_mask_step <= 0 or fo.density_cell_size <= 0:
        raise ValueError("forage mask step and density cell size must be positive")

    ls = config.landscape
    for name in ('width', 'height', 'polygon_size', 'pollen_cell_size',
                 'pollen_quantity_max'):
        if getattr(ls, name) <= 0:
            raise ValueError(f"landscape.{name} must be positive")
    _check_probability("landscape.nesting_fraction", ls.nesting_fraction)
    _check_probability("landscape.nest_probability", ls.nest_probability)
    _check_probability("landscape.pollen_regrowth", ls.pollen_regrowth)
    _check_range("landscape.microsite_delay", ls.microsite_delay_min,
                 ls.microsite_delay_max)
    _check_range("landscape.pollen_quantity", ls.pollen_quantity_min,
                 ls.pollen_quantity_max)
    if ls.lock_stripes < 1:
        raise ValueError("landscape.lock_stripes must be >= 1")

    wx = config.weather
    if not 0 <= wx.daylight_start < wx.daylight_end <= 24:
        raise ValueError("weather daylight window must satisfy 0 <= start < end <= 24")
    _check_probability("weather.rain_probability", wx.rain_probability)
    if wx.temperature_file is not None and not os.path.isfile(wx.temperature_file):
        warnings.warn(
            f"weather.temperature_file '{wx.temperature_file}' does not exist. "
            f"Synthetic temperatures will be used.",
            UserWarning,
            stacklevel=2,
        )

    pa = config.parasitism
    _check_probability("parasitism.bombylid_probability", pa.bombylid_probability)
    if pa.prob_per_day_open < 0:
        raise ValueError("parasitism.prob_per_day_open must be >= 0")
    n_species = 2   # Bombylid, cleptoparasite
    _check_length("parasitism.attack_rates", pa.attack_rates, n_species)
    _check_length("parasitism.dispersal", pa.dispersal, n_species)
    _check_length("parasitism.start_high_low", pa.start_high_low, 2 * n_species)
    _check_length("parasitism.monthly_mortality", pa.monthly_mortality, 12 * n_species)
    for v in pa.monthly_mortality:
        _check_probability("parasitism.monthly_mortality", v)
    if pa.mechanistic and all(v >= 1.0 for v in pa.monthly_mortality):
        warnings.warn(
            "parasitism.monthly_mortality is 1.0 everywhere: the mechanistic "
            "parasitoid populations will go extinct on the first day.",
            UserWarning,
            stacklevel=2,
        )


# ═══════════════════════════════════════════════════════════════════════
# PUBLIC ENTRY POINTS
# ═══════════════════════════════════════════════════════════════════════

def _read_yaml(path: Path) -> dict:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    climate_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → climate → sweep overrides.
    Each layer overrides only the fields it specifies.

    Args:
        base_path: Path to base configuration YAML.
        scenario_path: Optional scenario override YAML.
        climate_path: Optional climate override YAML.
        sweep_overrides: Optional dict of parameter sweep overrides.

    Returns:
        Validated SimulationConfig.

    Raises:
        FileNotFoundError: If base_path doesn't exist.
        ValueError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    config_dict = _read_yaml(base_path)

    for layer in (scenario_path, climate_path):
        if layer is None:
            continue
        layer = Path(layer)
        if not layer.exists():
            raise FileNotFoundError(f"Config file not found: {layer}")
        config_dict = deep_merge(config_dict, _read_yaml(layer))

    if sweep_overrides is not None:
        config_dict = deep_merge(config_dict, sweep_overrides)

    config = _yaml_to_config(config_dict)
    validate_config(config)
    return config


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config
