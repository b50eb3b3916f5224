"""Smoke tests for osmia_abm.viz: every plot renders and saves."""

import matplotlib.pyplot as plt
import pytest

from conftest import small_config
from osmia_abm.model import run_simulation
from osmia_abm.viz import (
    plot_deaths_by_cause,
    plot_emergence_phenology,
    plot_stage_trajectories,
    plot_weather,
)


@pytest.fixture(scope="module")
def result():
    return run_simulation(small_config(), n_days=180)


@pytest.mark.parametrize("plot", [
    plot_stage_trajectories,
    plot_emergence_phenology,
    plot_weather,
    plot_deaths_by_cause,
])
def test_plot_returns_figure(result, plot):
    fig = plot(result)
    assert isinstance(fig, plt.Figure)
    plt.close(fig)


def test_save_path_writes_png(result, tmp_path):
    path = tmp_path / 'stages.png'
    plot_stage_trajectories(result, stages=['in_cocoon', 'female'], log_scale=True,
                            save_path=str(path))
    assert path.exists() and path.stat().st_size > 0


def test_deaths_plot_with_no_deaths(result):
    result.deaths_by_cause = {}
    fig = plot_deaths_by_cause(result)
    assert isinstance(fig, plt.Figure)
    plt.close(fig)
