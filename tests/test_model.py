"""Integration tests for osmia_abm.model: full daily loop."""

import json

import numpy as np
import pytest

from conftest import small_config
from osmia_abm.model import SimulationResult, _annual_totals, run_simulation
from osmia_abm.types import N_STAGES, Stage


@pytest.fixture(scope="module")
def one_year():
    config = small_config(simulation={'start_number': 40})
    return run_simulation(config)


class TestRunSimulation:
    def test_shapes(self, one_year):
        assert one_year.n_days == 365
        assert one_year.stage_counts.shape == (365, N_STAGES)
        for name in ('temperature', 'forage_hours', 'nest_count', 'eggs_laid',
                     'female_emergences', 'male_emergences', 'deaths',
                     'prewinter_ended'):
            assert getattr(one_year, name).shape == (365,)

    def test_seeded_population(self, one_year):
        assert one_year.n_seeded == 40
        assert one_year.stage_counts[0, Stage.IN_COCOON] <= 40

    def test_spring_emergence_and_reproduction(self, one_year):
        doy = one_year.day_of_year()
        emerged = one_year.female_emergences
        assert emerged.sum() > 0
        assert emerged[(doy < 59) | (doy >= 150)].sum() == 0
        assert one_year.total_eggs > 0
        assert one_year.stage_counts[:, Stage.FEMALE].max() > 0

    def test_no_active_females_in_winter(self, one_year):
        doy = one_year.day_of_year()
        assert one_year.stage_counts[doy < 59, Stage.FEMALE].sum() == 0

    def test_offspring_overwinter(self, one_year):
        # brood laid in spring reaches the cocoon stage by the end of the year
        assert one_year.final_stage_counts['in_cocoon'] > 0

    def test_prewinter_flag_follows_season(self, one_year):
        doy = one_year.day_of_year()
        pw = one_year.prewinter_ended
        assert pw[doy < 151].all()
        assert not pw[(doy >= 151) & (doy <= 243)].any()

    def test_counts_non_negative(self, one_year):
        assert one_year.stage_counts.min() >= 0
        assert one_year.deaths.min() >= 0

    def test_summary_json_serializable(self, one_year):
        d = one_year.to_dict()
        text = json.dumps(d)
        assert '"stage_counts"' in text
        assert len(d['stage_counts']['egg']) == 365
        assert d['annual_female_emergences'] == [int(one_year.female_emergences.sum())]


class TestReproducibility:
    def test_same_seed_same_run(self):
        config = small_config()
        a = run_simulation(config, n_days=150)
        b = run_simulation(config, n_days=150)
        np.testing.assert_array_equal(a.stage_counts, b.stage_counts)
        np.testing.assert_array_equal(a.temperature, b.temperature)
        assert a.deaths_by_cause == b.deaths_by_cause

    def test_different_seed_different_weather(self):
        a = run_simulation(small_config(simulation={'seed': 1}), n_days=30)
        b = run_simulation(small_config(simulation={'seed': 2}), n_days=30)
        assert not np.array_equal(a.temperature, b.temperature)

    def test_worker_count_keeps_weather(self):
        a = run_simulation(small_config(), n_days=30)
        b = run_simulation(small_config(simulation={'parallel_workers': 3}), n_days=30)
        np.testing.assert_array_equal(a.temperature, b.temperature)


class TestOptions:
    def test_n_days_override(self):
        result = run_simulation(small_config(), n_days=10)
        assert result.n_days == 10
        assert len(result.eggs_laid) == 10

    def test_mid_year_start(self):
        config = small_config(simulation={'start_day_of_year': 300})
        result = run_simulation(config, n_days=100)
        doy = result.day_of_year()
        assert doy[0] == 300 and doy[65] == 0

    def test_parallel_run_completes(self):
        config = small_config(simulation={'parallel_workers': 4, 'start_number': 60})
        result = run_simulation(config, n_days=200)
        assert result.female_emergences.sum() > 0
        assert result.nest_count.max() <= 25 * config.landscape.max_nests_per_polygon

    def test_perf_summary(self):
        config = small_config(output={'perf_enabled': True})
        result = run_simulation(config, n_days=5)
        assert {'weather', 'step', 'day_end', 'seeding'} <= set(result.perf)
        assert result.perf['step']['calls'] == 5

    def test_sparse_recording_keeps_final_row(self):
        config = small_config(output={'record_daily': False})
        result = run_simulation(config, n_days=20)
        assert result.stage_counts[:-1].sum() == 0
        assert result.stage_counts[-1].sum() > 0

    def test_mechanistic_parasitoids_run(self):
        config = small_config(parasitism={'mechanistic': True})
        result = run_simulation(config, n_days=200)
        assert result.n_days == 200

    def test_empty_population_runs_to_end(self):
        config = small_config(simulation={'start_number': 0})
        result = run_simulation(config, n_days=50)
        assert result.stage_counts.sum() == 0
        assert result.n_days == 50


class TestResultHelpers:
    def test_annual_totals_split_at_new_year(self):
        daily = np.ones(400, dtype=np.int64)
        assert _annual_totals(daily, 300) == [65, 335]

    def test_growth_rates(self):
        r = SimulationResult(annual_female_emergences=[10, 25, 0, 4])
        rates = r.growth_rates
        assert rates[:2] == [2.5, 0.0]
        assert np.isnan(rates[2])
