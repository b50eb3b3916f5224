"""Tests for osmia_abm.female: reproduction state machine."""

import numpy as np
import pytest

from conftest import context, make_host, open_nest, small_config
from osmia_abm.female import (
    egg_load,
    lay_egg,
    plan_eggs_per_nest,
    plan_nest,
    st_provisioning,
    start_nest,
    step_female,
)
from osmia_abm.params import build_parameter_table
from osmia_abm.types import (
    DeathCause,
    FemaleData,
    FemaleState,
    Individual,
    ModelInvariantError,
    Stage,
)


def _setup(female=None, landscape=None):
    sections = {'female': dict({'daily_mortality': 0.0}, **(female or {}))}
    if landscape:
        sections['landscape'] = landscape
    config = small_config(**sections)
    return make_host(config), build_parameter_table(config)


def _female(state=FemaleState.MATURING, emerge_age=0, eggs_to_lay=10, mass=100.0):
    return Individual(uid=500, stage=Stage.FEMALE, mass=mass, x=250.0, y=250.0,
                      female=FemaleData(state=state, emerge_age=emerge_age,
                                        eggs_to_lay=eggs_to_lay))


def _provisioning(host, plan, eggs_to_lay=10, provision=0.0, open_days=0):
    ind = _female(FemaleState.PROVISIONING, emerge_age=10, eggs_to_lay=eggs_to_lay)
    ind.nest = open_nest(host, 250.0, 250.0)
    f = ind.female
    f.cell_plan = list(plan)
    f.eggs_this_nest = len(plan)
    f.current_provision = provision
    f.cell_open_days = open_days
    return ind


# ── lifetime planning ────────────────────────────────────────────────

class TestPlanning:
    def test_egg_load_from_mass(self):
        _, params = _setup()
        rng = np.random.default_rng(0)
        loads = [egg_load(100.0, params, rng) for _ in range(300)]
        # 5 × (0.0371 × 100 + 2.8399) = 32.75, ± 3
        assert min(loads) >= 29 and max(loads) <= 35

    def test_eggs_per_nest_bounded_by_load(self):
        _, params = _setup()
        rng = np.random.default_rng(0)
        assert {plan_eggs_per_nest(2, params, rng) for _ in range(100)} <= {1, 2}
        big = [plan_eggs_per_nest(1000, params, rng) for _ in range(300)]
        assert min(big) >= 3 and max(big) <= 30

    def test_plan_targets_in_range(self):
        _, params = _setup()
        rng = np.random.default_rng(1)
        for _ in range(50):
            for is_female, target in plan_nest(120.0, 5, 12, params, rng):
                if is_female:
                    assert 84.0 <= target <= 784.0
                else:
                    assert 88.0 <= target <= 105.0

    def test_female_targets_decline_along_nest(self):
        _, params = _setup(female={'provision_variation': 0.0})
        plan = plan_nest(150.0, 3, 15, params, np.random.default_rng(2))
        targets = [t for is_female, t in plan if is_female]
        assert len(targets) >= 2
        assert all(a > b for a, b in zip(targets, targets[1:]))

    def test_start_nest(self, rng):
        host, params = _setup()
        ind = _female(FemaleState.NEST_SEARCHING, emerge_age=5, eggs_to_lay=4)
        nest = open_nest(host, 111.0, 222.0)
        start_nest(ind, nest, params, rng)
        assert ind.nest is nest
        assert (ind.x, ind.y) == (111.0, 222.0)
        assert 1 <= ind.female.eggs_this_nest <= 4
        assert len(ind.female.cell_plan) == ind.female.eggs_this_nest


# ── daily checks & state transitions ─────────────────────────────────

class TestStepFemale:
    def test_lifespan_death_seals_nest(self, rng):
        host, params = _setup()
        ind = _provisioning(host, [(True, 150.0)])
        ind.female.emerge_age = 59
        nest = ind.nest
        step_female(ind, context(), params, rng, host)
        assert not ind.alive
        assert ind.death_cause == DeathCause.LIFESPAN
        assert ind.female.state == FemaleState.DYING
        assert not nest.is_open

    def test_background_mortality(self, rng):
        host, params = _setup(female={'daily_mortality': 1.0})
        ind = _female()
        step_female(ind, context(), params, rng, host)
        assert ind.death_cause == DeathCause.BACKGROUND
        assert host.deaths_today[(int(Stage.FEMALE), int(DeathCause.BACKGROUND))] == 1

    def test_maturing_then_nest_found(self, rng):
        host, params = _setup()
        ind = _female()
        step_female(ind, context(forage_hours=0), params, rng, host)
        assert ind.female.state == FemaleState.MATURING
        step_female(ind, context(forage_hours=0), params, rng, host)
        assert ind.female.state == FemaleState.PROVISIONING
        assert ind.nest is not None and ind.nest.is_open
        assert ind.female.cell_open_days == 1

    def test_no_eggs_left_is_done(self, rng):
        host, params = _setup()
        ind = _female(FemaleState.NEST_SEARCHING, emerge_age=5, eggs_to_lay=0)
        step_female(ind, context(), params, rng, host)
        assert ind.female.state == FemaleState.DONE
        assert host.nest_manager.nest_count() == 0

    def test_failed_search_disperses(self, rng):
        host, params = _setup(landscape={'nest_probability': 0.0})
        ind = _female(FemaleState.NEST_SEARCHING, emerge_age=5)
        step_female(ind, context(), params, rng, host)
        assert ind.alive
        assert ind.female.dispersals == 1
        assert ind.female.state == FemaleState.NEST_SEARCHING

    def test_too_many_dispersals(self, rng):
        host, params = _setup()
        ind = _female(FemaleState.DISPERSING, emerge_age=5)
        ind.female.dispersals = 3
        step_female(ind, context(), params, rng, host)
        assert not ind.alive
        assert ind.death_cause == DeathCause.DISPERSAL_FAILURE

    def test_done_female_lives_on(self, rng):
        host, params = _setup()
        ind = _female(FemaleState.DONE, emerge_age=20)
        step_female(ind, context(), params, rng, host)
        assert ind.alive
        assert ind.female.emerge_age == 21

    def test_unknown_state_raises(self, rng):
        host, params = _setup()
        ind = _female(emerge_age=5)
        ind.female.state = 42
        with pytest.raises(ModelInvariantError):
            step_female(ind, context(), params, rng, host)

    def test_wrong_stage_raises(self, rng):
        host, params = _setup()
        with pytest.raises(ModelInvariantError):
            step_female(Individual(uid=1, stage=Stage.PUPA), context(), params, rng, host)


# ── provisioning & egg laying ────────────────────────────────────────

class TestProvisioning:
    def test_lay_egg_carries_surplus(self, rng):
        host, params = _setup()
        ind = _provisioning(host, [(True, 120.0), (False, 95.0)], provision=150.0)
        egg = lay_egg(ind, True, 120.0, params, rng, host)
        assert egg.stage == Stage.EGG
        assert egg.mass == pytest.approx(120.0)
        assert egg.is_female
        assert ind.female.current_provision == pytest.approx(30.0)
        assert ind.female.eggs_this_nest == 1
        assert ind.female.eggs_to_lay == 9
        assert ind.nest.cell_count() == 1
        assert host.eggs_today == 1 and host.female_eggs_today == 1

    def test_underprovisioned_daughter_becomes_son(self, rng):
        host, params = _setup()
        ind = _provisioning(host, [(True, 120.0)], provision=50.0)
        egg = lay_egg(ind, True, 120.0, params, rng, host)
        assert not egg.is_female
        assert egg.mass == pytest.approx(50.0)

    def test_one_cell_per_day(self, rng):
        host, params = _setup()
        ind = _provisioning(host, [(False, 90.0)] * 3, provision=300.0)
        ctx = context(forage_hours=0)
        st_provisioning(ind, ctx, params, rng, host)
        st_provisioning(ind, ctx, params, rng, host)
        assert ind.nest.cell_count() == 1

    def test_waits_for_minimum_construction_time(self, rng):
        host, params = _setup(female={'min_cell_construction_days': 2})
        ind = _provisioning(host, [(False, 90.0)] * 2, provision=100.0)
        st_provisioning(ind, context(forage_hours=0), params, rng, host)
        assert ind.nest.cell_count() == 0
        ind.female.cells_today = 0
        st_provisioning(ind, context(forage_hours=0), params, rng, host)
        assert ind.nest.cell_count() == 1

    def test_forced_closure_after_max_days(self, rng):
        host, params = _setup()
        ind = _provisioning(host, [(True, 200.0)], eggs_to_lay=5,
                            provision=20.0, open_days=3)
        nest = ind.nest
        st_provisioning(ind, context(forage_hours=0), params, rng, host)
        egg = nest.occupants()[0]
        assert not egg.is_female
        assert not nest.is_open
        assert ind.nest is None
        assert ind.female.nests_built == 1
        assert ind.female.state == FemaleState.NEST_SEARCHING

    def test_too_little_for_a_son_keeps_waiting(self, rng):
        host, params = _setup()
        ind = _provisioning(host, [(True, 200.0)], provision=5.0, open_days=10)
        st_provisioning(ind, context(forage_hours=0), params, rng, host)
        assert ind.nest.cell_count() == 0

    def test_last_egg_finishes_reproduction(self, rng):
        host, params = _setup()
        ind = _provisioning(host, [(False, 90.0), (False, 90.0)], eggs_to_lay=1,
                            provision=100.0)
        st_provisioning(ind, context(forage_hours=0), params, rng, host)
        assert ind.female.eggs_to_lay == 0
        assert ind.female.state == FemaleState.DONE

    def test_without_nest_raises(self, rng):
        host, params = _setup()
        ind = _female(FemaleState.PROVISIONING, emerge_age=10)
        with pytest.raises(ModelInvariantError):
            st_provisioning(ind, context(), params, rng, host)

    def test_foraging_fills_cell(self, rng):
        host, params = _setup()
        host.pollen_map.pollen[:] = 5000.0
        host.pollen_map.pollen_quality[:] = 1.0
        host.pollen_map.nectar_quality[:] = 1.0
        ind = _provisioning(host, [(False, 95.0)] * 2)
        for _ in range(20):
            ind.female.cells_today = 0
            st_provisioning(ind, context(forage_hours=10, month=4), params, rng, host)
            if ind.nest.cell_count():
                break
        assert ind.nest.cell_count() == 1
        assert ind.nest.occupants()[0].mass == pytest.approx(95.0)
