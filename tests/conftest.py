"""Shared fixtures: a small, fully nestable landscape and a live manager."""

import numpy as np
import pytest

from osmia_abm.config import SimulationConfig, validate_config
from osmia_abm.params import build_parameter_table
from osmia_abm.population import PopulationManager
from osmia_abm.types import DailyContext, ParasitoidType, Stage


def small_config(**sections) -> SimulationConfig:
    """500 m × 500 m landscape where every polygon accepts nests.

    ``sections`` maps a section name to a dict of field overrides, e.g.
    ``small_config(female={'daily_mortality': 0.0})``.
    """
    config = SimulationConfig()
    config.simulation.n_years = 1
    config.simulation.start_number = 20
    config.landscape.width = 500.0
    config.landscape.height = 500.0
    config.landscape.nesting_fraction = 1.0
    config.landscape.nest_probability = 1.0
    config.landscape.microsite_delay_max = 0
    for name, fields in sections.items():
        section = getattr(config, name)
        for key, value in fields.items():
            setattr(section, key, value)
    validate_config(config)
    return config


def make_host(config: SimulationConfig) -> PopulationManager:
    return PopulationManager(config, build_parameter_table(config))


def open_nest(host: PopulationManager, x: float = 120.0, y: float = 130.0):
    pid = host.landscape.polygon_at(x, y)
    return host.nest_manager.try_create_nest(pid, x, y, np.random.default_rng(0),
                                             force=True)


def lay(host: PopulationManager, nest, mass: float = 200.0, is_female: bool = True,
        parasitism: ParasitoidType = ParasitoidType.UNPARASITISED):
    """Put an egg in ``nest`` the way a provisioning female would."""
    return host.create_individual(Stage.EGG, None, {
        'mass': mass,
        'is_female': is_female,
        'parasitism': parasitism,
        'nest': nest,
    })


def context(**kwargs) -> DailyContext:
    return DailyContext(**kwargs)


@pytest.fixture
def config():
    return small_config()


@pytest.fixture
def params(config):
    return build_parameter_table(config)


@pytest.fixture
def host(config, params):
    return PopulationManager(config, params)


@pytest.fixture
def rng():
    return np.random.default_rng(12345)
