import pytest

from citysim.engine.mechanics.ripples import (
    RippleContext, RippleTuning, aggregate_mood, compute_district_economies, create_ripple, decay_ripples,
    derive_employment, detect_calendar_ripples, detect_event_ripples, detect_migration_ripples, economy_label,
    mood_descriptor,
)
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import EconomicRipple


def _ripple(impact=15.0, start=5, end=13, primary="Downtown", districts=("Downtown",)) -> EconomicRipple:
    return EconomicRipple(
        ripple_id=f"TEST_{start}", trigger="TECH_INVESTMENT", impact=impact,
        districts=list(districts), primary_district=primary,
        start_cycle=start, end_cycle=end, current_strength=impact,
    )


def test_strength_decays_linearly():
    ripple = _ripple()

    active = decay_ripples([ripple], 9)

    assert active == [ripple]
    assert ripple.current_strength == 7.5


def test_expired_ripples_are_dropped():
    assert decay_ripples([_ripple()], 13) == []


def test_strength_never_increases():
    ripple = _ripple(impact=-12.0, start=2, end=10)
    magnitudes = []
    for cycle in range(2, 10):
        decay_ripples([ripple], cycle)
        magnitudes.append(abs(ripple.current_strength))

    assert magnitudes == sorted(magnitudes, reverse=True)


def test_mood_from_single_positive_ripple():
    ripple = _ripple(impact=20.0)
    ripple.current_strength = 20.0

    mood = aggregate_mood(50.0, [ripple], CityEnvironment(), 0, RippleTuning())

    assert mood == 51.5
    assert mood_descriptor(mood) == "stable"


def test_mood_is_clamped():
    ripples = [_ripple(impact=400.0)]
    assert aggregate_mood(95.0, ripples, CityEnvironment(), 0, RippleTuning()) == 100.0

    ripples = [_ripple(impact=-400.0)]
    assert aggregate_mood(5.0, ripples, CityEnvironment(), 0, RippleTuning()) == 0.0


def test_same_trigger_fires_once_per_cycle(rng, env):
    ctx = RippleContext(cycle=4, env=env, rng=rng, tuning=RippleTuning())
    ripples = []

    first = create_ripple(ripples, "CRIME_SPIKE", ctx)
    second = create_ripple(ripples, "CRIME_SPIKE", ctx)

    assert first is not None
    assert first.ripple_id == "CRIME_SPIKE_4"
    assert first.end_cycle == 8
    assert second is None
    assert len(ripples) == 1


def test_local_holiday_amplifies_positive_impact(rng):
    env = CityEnvironment(holiday="OaklandPride", holiday_priority="oakland")
    ctx = RippleContext(cycle=1, env=env, rng=rng, tuning=RippleTuning())

    ripple = create_ripple([], "TECH_INVESTMENT", ctx)

    assert ripple.impact == 19.5
    assert ripple.holiday == "OaklandPride"


def test_impact_override_from_tuning(rng, env):
    ctx = RippleContext(cycle=1, env=env, rng=rng, tuning=RippleTuning(impact_overrides={"CRIME_SPIKE": -3}))

    ripple = create_ripple([], "CRIME_SPIKE", ctx)

    assert ripple.impact == -3.0


def test_championship_boom_detected(rng):
    env = CityEnvironment(sports_season="championship")
    ctx = RippleContext(cycle=2, env=env, rng=rng, tuning=RippleTuning())
    ripples = []

    detect_calendar_ripples(ripples, ctx)

    boom = [r for r in ripples if r.trigger == "CHAMPIONSHIP_BOOM"]
    assert len(boom) == 1
    assert boom[0].primary_district == "Jack London"


def test_event_keywords_create_ripples(rng):
    env = CityEnvironment(world_events=[
        {"headline": "Plant closure announced", "neighborhood": "West Oakland"},
        {"description": "Robbery downtown"},
        {"headline": "Quiet weekend"},
    ])
    ctx = RippleContext(cycle=3, env=env, rng=rng, tuning=RippleTuning())
    ripples = []

    detect_event_ripples(ripples, ctx)

    assert {r.trigger for r in ripples} == {"FACTORY_CLOSURE", "CRIME_SPIKE"}
    closure = next(r for r in ripples if r.trigger == "FACTORY_CLOSURE")
    assert closure.primary_district == "West Oakland"
    assert closure.source == "Plant closure announced"


def test_strong_drift_feeds_back_as_ripple(rng, env):
    ctx = RippleContext(cycle=6, env=env, rng=rng, tuning=RippleTuning())
    ripples = []

    detect_migration_ripples(ripples, -35, ctx)

    assert [r.trigger for r in ripples] == ["POPULATION_EXODUS"]


def test_employment_and_label_follow_mood():
    tuning = RippleTuning()
    assert derive_employment(50.0, 0, tuning) == 0.89
    assert derive_employment(0.0, 0, tuning) == 0.82
    assert derive_employment(100.0, 40, tuning) == 0.95
    assert economy_label(70.0) == "strong"
    assert economy_label(25.0) == "unstable"


def test_district_economies(env):
    ripple = _ripple(impact=20.0, primary="Downtown", districts=("Downtown", "Rockridge"))

    economies = {e.district: e for e in compute_district_economies(50.0, [ripple], env, ["Dimond"], RippleTuning())}

    # sensitivity 1.2, primary boost 1.5, weight 0.1
    assert economies["Downtown"].mood == pytest.approx(53.6)
    assert economies["Downtown"].active_ripples == 1
    # sensitivity 0.9, weight 0.1
    assert economies["Rockridge"].mood == pytest.approx(51.8)
    assert economies["Dimond"].mood == 50.0
    assert all(0.0 <= e.mood <= 100.0 for e in economies.values())
