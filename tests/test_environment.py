"""Tests for osmia_abm.environment: weather forcing and season flags."""

import numpy as np
import pandas as pd
import pytest

from osmia_abm.config import OverwinteringSection, WeatherSection
from osmia_abm.environment import (
    DAYS_PER_YEAR,
    JUNE_1,
    MARCH_1,
    SeasonFlags,
    WeatherGenerator,
    detect_prewinter_end,
    flying_hours,
    hourly_temperatures,
    load_temperature_csv,
    make_temperature_series,
    month_of,
    sinusoidal_temperature,
)


class TestCalendar:
    @pytest.mark.parametrize("doy,month", [(0, 0), (30, 0), (31, 1), (58, 1),
                                           (59, 2), (151, 5), (243, 8), (364, 11)])
    def test_month_of(self, doy, month):
        assert month_of(doy) == month


class TestTemperature:
    def test_sinusoid_peaks_in_summer(self):
        s = WeatherSection()
        assert sinusoidal_temperature(200, s.mean_temp, s.temp_amplitude, 200) \
            == pytest.approx(18.0)
        assert sinusoidal_temperature(17, s.mean_temp, s.temp_amplitude, 200) < 0.0

    def test_series_shape_and_reproducible(self):
        s = WeatherSection()
        a = make_temperature_series(2, s, np.random.default_rng(4))
        b = make_temperature_series(2, s, np.random.default_rng(4))
        assert a.shape == (2 * DAYS_PER_YEAR,)
        np.testing.assert_array_equal(a, b)

    def test_hourly_cycle(self):
        h = hourly_temperatures(10.0, 8.0)
        assert h.shape == (24,)
        assert h.argmax() == 15
        assert h.mean() == pytest.approx(10.0)


class TestCsv:
    def _frame(self, years, days=DAYS_PER_YEAR):
        rows = [(y, d, float(d % 30)) for y in years for d in range(days)]
        return pd.DataFrame(rows, columns=['year', 'day_of_year', 'temperature'])

    def test_reads_requested_years(self, tmp_path):
        path = tmp_path / 't.csv'
        self._frame([2019, 2020, 2021]).to_csv(path, index=False)
        series = load_temperature_csv(path, 2020, 2)
        assert series.shape == (2 * DAYS_PER_YEAR,)
        assert series[31] == 1.0

    def test_missing_columns(self, tmp_path):
        path = tmp_path / 't.csv'
        pd.DataFrame({'year': [2020], 'temp': [3.0]}).to_csv(path, index=False)
        with pytest.raises(ValueError, match="missing columns"):
            load_temperature_csv(path, 2020, 1)

    def test_incomplete_falls_back(self, tmp_path, caplog):
        path = tmp_path / 't.csv'
        self._frame([2020], days=200).to_csv(path, index=False)
        with caplog.at_level("WARNING", logger="osmia_abm.environment"):
            assert load_temperature_csv(path, 2020, 1) is None
        assert "synthetic" in caplog.text

    def test_generator_uses_file(self, tmp_path):
        path = tmp_path / 't.csv'
        self._frame([2020]).to_csv(path, index=False)
        gen = WeatherGenerator(WeatherSection(temperature_file=str(path)), 2020, 1,
                               np.random.default_rng(0))
        assert gen.temperature(45) == 15.0

    def test_generator_missing_file_warns(self, tmp_path, caplog):
        section = WeatherSection(temperature_file=str(tmp_path / 'none.csv'))
        with caplog.at_level("WARNING", logger="osmia_abm.environment"):
            gen = WeatherGenerator(section, 2020, 1, np.random.default_rng(0))
        assert "not found" in caplog.text
        assert gen.temperatures.shape == (DAYS_PER_YEAR,)


class TestFlyingHours:
    def test_warm_calm_dry_day(self):
        s = WeatherSection()
        hours = flying_hours(np.full(24, 20.0), np.zeros(24), np.zeros(24), s)
        assert hours == s.daylight_end - s.daylight_start

    def test_cold_day(self):
        s = WeatherSection()
        assert flying_hours(np.full(24, 5.0), np.zeros(24), np.zeros(24), s) == 0

    def test_wind_and_rain_block(self):
        s = WeatherSection()
        wind = np.zeros(24)
        wind[6:10] = 12.0
        rain = np.zeros(24)
        rain[18:20] = 1.0
        assert flying_hours(np.full(24, 20.0), wind, rain, s) == 14 - 4 - 2

    def test_recent_temperatures_order(self):
        gen = WeatherGenerator(WeatherSection(), 2020, 1, np.random.default_rng(0))
        recent = gen.recent_temperatures(10)
        np.testing.assert_array_equal(recent, gen.temperatures[[10, 9, 8, 7, 6, 5]])
        start = gen.recent_temperatures(2)
        np.testing.assert_array_equal(start, gen.temperatures[[2, 1, 0, 0, 0, 0]])

    def test_forage_hours_bounded(self):
        gen = WeatherGenerator(WeatherSection(), 2020, 1, np.random.default_rng(0))
        hours = [gen.forage_hours(d) for d in range(DAYS_PER_YEAR)]
        assert min(hours) >= 0
        assert max(hours) <= 14
        assert sum(hours[150:240]) > sum(hours[0:90])


# ── season flags ─────────────────────────────────────────────────────

SHARP = [10.0, 11.0, 12.0, 14.0, 16.0, 18.0]      # today first
EXTENDED = [10.0, 11.0, 12.0, 12.5, 13.0, 16.0]
MILD = [14.0, 14.0, 14.0, 14.0, 14.0, 14.0]


class TestPrewinterDetection:
    def test_sharp_cooling(self):
        assert detect_prewinter_end(SHARP, 13.0)

    def test_extended_cold_after_big_drop(self):
        assert detect_prewinter_end(EXTENDED, 13.0)

    def test_mild_days(self):
        assert not detect_prewinter_end(MILD, 13.0)

    def test_gradual_cooling_not_enough(self):
        assert not detect_prewinter_end([10.0, 11.0, 12.0, 13.5, 14.0, 14.5], 13.0)


class TestSeasonFlags:
    def test_not_checked_before_september(self):
        flags = SeasonFlags(OverwinteringSection(), prewinter_ended=False)
        flags.update(200, SHARP)
        flags.update(243, SHARP)
        assert not flags.prewinter_ended
        flags.update(244, SHARP)
        assert flags.prewinter_ended

    def test_march_and_june(self):
        flags = SeasonFlags(OverwinteringSection(), prewinter_ended=True)
        flags.update(MARCH_1 - 1, MILD)
        assert not flags.march_reached
        flags.update(MARCH_1, MILD)
        assert flags.march_reached
        flags.update(JUNE_1, MILD)
        assert not flags.march_reached
        assert not flags.prewinter_ended
