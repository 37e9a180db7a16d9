import numpy as np
import pytest

from citysim.engine.mechanics.arcs import (
    PHASES, ArcConditions, ArcTuning, apply_interventions, determine_phase, generate_arcs,
    resolution_seed, step_arcs, tension_delta,
)
from citysim.shared.actions import ActionEscalateArc, ActionForceResolveArc, ActionHoldArc, ActionReleaseArc
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import Arc


def _arc(arc_id="a1", **kwargs) -> Arc:
    defaults = dict(arc_id=arc_id, arc_type="rivalry", phase="early", tension=3.0,
                    district="Downtown", domain="GENERAL", age=1, cycle_created=1)
    defaults.update(kwargs)
    return Arc(**defaults)


def test_tension_is_clamped_to_upper_bound():
    arc = _arc(tension=9.9)
    env = CityEnvironment(cycle_weight="high-signal", shock_flag="shock-flag")

    step_arcs([arc], env, ArcConditions(), cycle=5)

    assert arc.tension == 10.0


def test_tension_is_clamped_to_lower_bound():
    arc = _arc(arc_type="parade", tension=0.2)

    step_arcs([arc], CityEnvironment(), ArcConditions(), cycle=5)

    assert arc.tension == 0.0


def test_health_crisis_resolves_when_illness_drops():
    arc = _arc(arc_type="health-crisis", domain="HEALTH", district="Temescal",
               phase="rising", age=5, tension=3.5)
    world = ArcConditions(illness_rate=0.045)

    report = step_arcs([arc], CityEnvironment(), world, cycle=9)

    assert arc.phase == "resolved"
    assert arc.resolution_type == "resolved-condition"
    assert arc.cycle_resolved == 9
    assert report.resolved == [arc]

    # Resolved arcs are left alone from then on.
    step_arcs([arc], CityEnvironment(cycle_weight="high-signal"), world, cycle=10)
    assert arc.age == 6
    assert arc.tension == 3.5


def test_phase_only_moves_forward():
    gen = np.random.default_rng(7)
    tuning = ArcTuning()
    for _ in range(50):
        arc = _arc()
        index = 0
        for age in range(1, 16):
            arc.age = age
            arc.tension = float(gen.uniform(0, 10))
            arc.phase = determine_phase(arc, tuning)
            new_index = PHASES.index(arc.phase)
            assert new_index >= index
            index = new_index


def test_phase_thresholds():
    assert determine_phase(_arc(age=2, tension=3.0)) == "rising"
    assert determine_phase(_arc(age=1, tension=9.0)) == "early"
    assert determine_phase(_arc(phase="rising", age=4, tension=6.0)) == "peak"
    assert determine_phase(_arc(phase="rising", age=3, tension=2.5)) == "falling"
    assert determine_phase(_arc(phase="peak", age=7, tension=8.0)) == "falling"
    assert determine_phase(_arc(phase="falling", age=6, tension=1.5)) == "resolved"
    assert determine_phase(_arc(phase="rising", age=5, tension=0.5)) == "resolved"


def test_co_located_arcs_raise_tension():
    arc = _arc()
    env, world = CityEnvironment(), ArcConditions()

    alone = tension_delta(arc, env, world, co_located=1)
    crowded = tension_delta(arc, env, world, co_located=3)

    assert crowded - alone == pytest.approx(1.0)


def test_city_wide_arcs_ignore_interference():
    arc = _arc(district="")
    env, world = CityEnvironment(), ArcConditions()

    assert tension_delta(arc, env, world, co_located=4) == tension_delta(arc, env, world, co_located=0)


def test_arcs_closed_by_their_condition_do_not_crowd_neighbours():
    world = ArcConditions(illness_rate=0.045)
    alone = _arc("r1")
    step_arcs([alone], CityEnvironment(), world, cycle=9)

    beside = _arc("r1")
    outbreak = _arc("h1", arc_type="health-crisis", domain="HEALTH", phase="rising", age=5, tension=3.5)
    report = step_arcs([beside, outbreak], CityEnvironment(), world, cycle=9)

    assert report.resolved == [outbreak]
    assert beside.tension == alone.tension


def test_festival_arcs_skip_passive_decay():
    env, world = CityEnvironment(holiday="none"), ArcConditions()
    festival = tension_delta(_arc(arc_type="festival"), env, world, co_located=0)
    # festival on a non-holiday: type adjustment -0.5 and no decay
    assert festival == -0.5


def test_hold_skips_the_lifecycle_until_released():
    arc = _arc(age=3, tension=5.0)
    apply_interventions([arc], [ActionHoldArc("operator", "a1")], cycle=4)

    step_arcs([arc], CityEnvironment(cycle_weight="high-signal"), ArcConditions(), cycle=4)
    assert arc.hold
    assert arc.age == 3

    apply_interventions([arc], [ActionReleaseArc("operator", "a1")], cycle=5)
    step_arcs([arc], CityEnvironment(), ArcConditions(), cycle=5)
    assert not arc.hold
    assert arc.age == 4


def test_force_resolve_and_escalate():
    first = _arc("a1", tension=9.0)
    second = _arc("a2", tension=4.0)
    arcs = [first, second]

    resolved = apply_interventions(arcs, [
        ActionEscalateArc("operator", "a1"),
        ActionForceResolveArc("operator", "a2", reason="story retired"),
        ActionEscalateArc("operator", "a2"),
        ActionHoldArc("operator", "missing"),
    ], cycle=6)

    assert first.tension == 10.0
    assert resolved == [second]
    assert second.phase == "resolved"
    assert second.resolution_type == "resolved-intervention"
    assert second.resolution_reason == "story retired"
    # Escalating a resolved arc does nothing.
    assert second.tension == 4.0


def test_shock_creates_crisis_arc(rng):
    arcs = []
    env = CityEnvironment(shock_flag="shock-flag")

    report = generate_arcs(arcs, env, ArcConditions(), cycle=3, rng=rng)

    crisis = [a for a in report.created if a.arc_type == "crisis"]
    assert len(crisis) == 1
    assert crisis[0].district == "Downtown"
    assert crisis[0].phase == "early"
    assert 2.0 <= crisis[0].tension <= 4.0
    assert crisis[0].cycle_created == 3


def test_duplicate_arcs_are_not_created(rng):
    arcs = [_arc("c1", arc_type="crisis", district="Downtown")]
    env = CityEnvironment(shock_flag="shock-flag")

    report = generate_arcs(arcs, env, ArcConditions(), cycle=3, rng=rng)

    assert not [a for a in report.created if a.arc_type == "crisis"]


def test_active_cap_blocks_new_arcs(rng):
    arcs = [_arc(f"s{i}", arc_type="strain", district="") for i in range(10)]
    env = CityEnvironment(shock_flag="shock-flag", holiday="OaklandPride", holiday_priority="oakland")

    report = generate_arcs(arcs, env, ArcConditions(), cycle=3, rng=rng)

    assert report.created == []
    assert len(arcs) == 10


def test_championship_intensifies_existing_sports_fever(rng):
    fever = _arc("f1", arc_type="sports-fever", domain="SPORTS", district="Jack London", tension=3.0)
    arcs = [fever]

    report = generate_arcs(arcs, CityEnvironment(sports_season="championship"), ArcConditions(), cycle=8, rng=rng)

    assert report.created == []
    assert report.intensified == [fever]
    assert fever.tension == 4.0


def test_resolution_seed_names_the_district(rng):
    arc = _arc(arc_type="health-crisis", domain="HEALTH", district="Temescal",
               phase="resolved", resolution_type="resolved-condition", resolution_reason="illness rate dropped")

    seed = resolution_seed(arc, rng)

    assert seed["linked_arc"] == "a1"
    assert seed["domain"] == "HEALTH"
    assert "Temescal" in seed["text"]
