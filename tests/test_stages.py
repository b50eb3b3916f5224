"""Tests for osmia_abm.stages: egg, larva, prepupa and pupa steps."""

from itertools import groupby

import numpy as np
import pytest

from conftest import context, lay, make_host, open_nest, small_config
from osmia_abm.development import days_to_complete, prepupal_rate
from osmia_abm.params import build_parameter_table
from osmia_abm.stages import kill, metamorphose, step_degree_day_stage, step_prepupa
from osmia_abm.types import DeathCause, Individual, ModelInvariantError, Stage

NO_MORTALITY = {
    'egg_daily_mortality': 0.0,
    'larva_daily_mortality': 0.0,
    'prepupa_daily_mortality': 0.0,
    'pupa_daily_mortality': 0.0,
}


def _setup(**development):
    config = small_config(development=dict(NO_MORTALITY, **development))
    host = make_host(config)
    return host, build_parameter_table(config)


def _sealed_egg(host):
    nest = open_nest(host)
    egg = lay(host, nest)
    nest.seal()
    return nest, egg


# ── degree-day stages ────────────────────────────────────────────────

class TestEgg:
    def test_hatches_on_day_five_at_20c(self, rng):
        host, params = _setup()
        nest, egg = _sealed_egg(host)
        ctx = context(temperature=20.0)
        for day in range(1, 5):
            step_degree_day_stage(egg, ctx, params, rng, host)
            assert egg.alive, f"hatched early on day {day}"
        step_degree_day_stage(egg, ctx, params, rng, host)
        assert not egg.alive
        assert egg.death_cause == DeathCause.ALIVE
        larva = host._pending[-1]
        assert larva.stage == Stage.LARVA
        assert larva.development == 0.0
        assert larva.age == egg.age == 5
        assert nest.occupants() == [larva]

    def test_open_nest_only_ages(self, rng):
        host, params = _setup(egg_daily_mortality=1.0)
        nest = open_nest(host)
        egg = lay(host, nest)
        for _ in range(10):
            step_degree_day_stage(egg, context(temperature=25.0), params, rng, host)
        assert egg.alive
        assert egg.age == 10
        assert egg.development == 0.0

    def test_cold_days_do_not_develop(self, rng):
        host, params = _setup()
        _, egg = _sealed_egg(host)
        step_degree_day_stage(egg, context(temperature=-3.0), params, rng, host)
        assert egg.development == 0.0
        assert egg.age == 1

    def test_background_mortality_frees_cell(self, rng):
        host, params = _setup(egg_daily_mortality=1.0)
        nest, egg = _sealed_egg(host)
        step_degree_day_stage(egg, context(temperature=20.0), params, rng, host)
        assert not egg.alive
        assert egg.death_cause == DeathCause.BACKGROUND
        assert nest.is_empty()
        assert nest.cell_count() == 1
        assert host.deaths_today[(int(Stage.EGG), int(DeathCause.BACKGROUND))] == 1


class TestLarvaAndPupa:
    def test_larva_passes_prepupa_target(self, rng):
        host, params = _setup()
        _, egg = _sealed_egg(host)
        larva = metamorphose(egg, host)
        larva.development = 421.0
        step_degree_day_stage(larva, context(temperature=10.0), params, rng, host)
        prepupa = host._pending[-1]
        assert prepupa.stage == Stage.PREPUPA
        assert 40.5 <= prepupa.prepupa_target <= 49.5

    def test_pupa_becomes_overwintering_adult(self, rng):
        host, params = _setup()
        _, egg = _sealed_egg(host)
        ind = egg
        for _ in range(3):
            ind = metamorphose(ind, host)
        assert ind.stage == Stage.PUPA
        ind.development = 569.5
        step_degree_day_stage(ind, context(temperature=5.0), params, rng, host)
        adult = host._pending[-1]
        assert adult.stage == Stage.IN_COCOON
        assert adult.mass == egg.mass
        assert adult.is_female == egg.is_female

    def test_wrong_stage_rejected(self, rng):
        host, params = _setup()
        ind = Individual(uid=0, stage=Stage.PREPUPA)
        with pytest.raises(ModelInvariantError):
            step_degree_day_stage(ind, context(), params, rng, host)


# ── prepupa ──────────────────────────────────────────────────────────

class TestPrepupa:
    def _prepupa(self, host, target):
        _, egg = _sealed_egg(host)
        larva = metamorphose(egg, host)
        return metamorphose(larva, host, {'prepupa_target': target})

    def test_completes_after_target_days_at_full_rate(self, rng):
        host, params = _setup()
        prepupa = self._prepupa(host, 45.0)
        ctx = context(temperature=22.0, prepupal_rate=1.0)
        for _ in range(45):
            step_prepupa(prepupa, ctx, params, rng, host)
        assert prepupa.alive
        step_prepupa(prepupa, ctx, params, rng, host)
        assert not prepupa.alive
        assert host._pending[-1].stage == Stage.PUPA

    def test_slow_rate_delays(self, rng):
        host, params = _setup()
        prepupa = self._prepupa(host, 10.0)
        ctx = context(temperature=5.0, prepupal_rate=0.2)
        for _ in range(46):
            step_prepupa(prepupa, ctx, params, rng, host)
        assert prepupa.alive
        assert prepupa.development == pytest.approx(9.2)

    def test_wrong_stage_rejected(self, rng):
        host, params = _setup()
        with pytest.raises(ModelInvariantError):
            step_prepupa(Individual(uid=0, stage=Stage.EGG), context(), params, rng, host)


class TestKill:
    def test_records_stage_and_cause(self):
        host, _ = _setup()
        nest, egg = _sealed_egg(host)
        larva = metamorphose(egg, host)
        kill(larva, DeathCause.BACKGROUND, host)
        assert nest.occupied_count() == 0
        assert sum(host.deaths_today.values()) == 1
        assert host.deaths_by_cause(host.deaths_today) == {'background': 1}


# ── whole immature life cycle through the daily scheduler ────────────

class TestFullLifeCycle:
    """One sealed-nest egg at a constant 22 °C, mortality off.

    Starts on 2 June so development ends before autumn; the cocoon then
    winters straight through to the March emergence window.
    """

    TEMPERATURE = 22.0
    RECENT = [TEMPERATURE] * 6

    def _run(self, is_female):
        config = small_config(
            development=NO_MORTALITY,
            simulation={'start_day_of_year': 152, 'initial_prewinter_end': False},
        )
        host = make_host(config)
        nest = open_nest(host)
        egg = lay(host, nest, mass=200.0, is_female=is_female)
        nest.seal()

        daily = []      # stage of the individual stepped each day
        seen = []       # every individual, in order of appearance
        for _ in range(400):
            live = [ind for ind in host.individuals if ind.alive]
            assert len(live) <= 1
            if live:
                ind = live[0]
                if not seen or seen[-1] is not ind:
                    seen.append(ind)
                daily.append(ind.stage)
                if ind.stage == Stage.FEMALE:
                    break
                if ind.stage == Stage.IN_COCOON:
                    host.season.prewinter_ended = True
            host.advance_one_day(self.TEMPERATURE, 0)
            host.step()
            if host.male_emergences_today:
                break
            host.end_of_day(self.RECENT)
        return host, egg, daily, seen

    def _expected_immature_days(self, host, prepupa):
        params = host.params
        expected = {}
        for stage in (Stage.EGG, Stage.LARVA, Stage.PUPA):
            threshold, total, _ = params.stage_params[stage]
            expected[stage] = days_to_complete(self.TEMPERATURE, threshold, total)
        rate = prepupal_rate(params.prepupal_rates, self.TEMPERATURE)
        expected[Stage.PREPUPA] = int(np.floor(prepupa.prepupa_target / rate)) + 1
        return expected

    def test_female_passes_every_stage_in_order(self):
        host, egg, daily, seen = self._run(is_female=True)
        order = [stage for stage, _ in groupby(daily)]
        assert order == [Stage.EGG, Stage.LARVA, Stage.PREPUPA, Stage.PUPA,
                         Stage.IN_COCOON, Stage.FEMALE]
        assert [ind.stage for ind in seen] == order

        run_lengths = {stage: len(list(days)) for stage, days in groupby(daily)}
        expected = self._expected_immature_days(host, seen[2])
        for stage, n_days in expected.items():
            assert run_lengths[stage] == n_days, stage.name

    def test_sex_and_mass_carried_to_emergence(self):
        host, egg, daily, seen = self._run(is_female=True)
        assert all(ind.is_female for ind in seen)
        assert all(ind.mass == egg.mass for ind in seen[:5])
        ow = host.config.overwintering
        assert seen[-1].mass == pytest.approx(
            ow.adult_mass_slope * egg.mass + ow.adult_mass_const)
        assert seen[4].prewinter_dd == 0.0

    def test_male_discarded_at_emergence(self):
        host, egg, daily, seen = self._run(is_female=False)
        order = [stage for stage, _ in groupby(daily)]
        assert order == [Stage.EGG, Stage.LARVA, Stage.PREPUPA, Stage.PUPA,
                         Stage.IN_COCOON]
        assert not any(ind.is_female for ind in seen)
        assert host.male_emergences_today == 1
        assert host.female_emergences_today == 0
        cocoon = seen[-1]
        assert not cocoon.alive
        assert cocoon.death_cause == DeathCause.ALIVE
        assert not host._pending
        assert sum(host.deaths_today.values()) == 0
