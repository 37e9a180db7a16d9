import pytest

from citysim.engine.mechanics.drift import (
    DriftTuning, EconomySnapshot, apply_feedback, compute_city_drift, compute_district_drift,
    normalize_migration,
)
from citysim.engine.random_source import RandomSource
from citysim.shared.config import DriftSettings
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import DistrictEconomy, DistrictProfile, PopulationRecord, records_to_frame


def _snapshot(mood=50.0, moods=None, descriptors=None) -> EconomySnapshot:
    economies = records_to_frame(DistrictEconomy, [
        DistrictEconomy(district=name, mood=value, descriptor=(descriptors or {}).get(name, "stable"))
        for name, value in (moods or {}).items()
    ])
    return EconomySnapshot.capture(mood, "stable", 0, 0, economies)


def _district_map():
    return records_to_frame(DistrictProfile, [
        DistrictProfile(district="Downtown", crime_index=1.6, sentiment=-0.5, retail_vitality=0.6),
        DistrictProfile(district="Temescal", crime_index=0.7, sentiment=0.6, retail_vitality=1.4,
                        event_attractiveness=1.5),
        DistrictProfile(district="Fruitvale"),
    ])


def _cycle_env(i: int) -> CityEnvironment:
    return CityEnvironment(
        weather_impact=1.0 + (i % 4) * 0.2,
        sentiment=((i % 5) - 2) * 0.2,
        holiday="OpeningDay" if i % 7 == 0 else "none",
        world_events=[{"headline": "x"}] * (i % 6),
        sports_season="playoffs" if i % 3 == 0 else "off-season",
    )


def test_migration_normalization():
    tuning = DriftTuning()
    assert normalize_migration(PopulationRecord(total_population=400000, migration=4000), tuning) == 10
    assert normalize_migration(PopulationRecord(total_population=400000, migration=-400000), tuning) == -50
    # A missing population falls back to the default city size.
    assert normalize_migration(PopulationRecord(total_population=0, migration=2000), tuning) == 5


def test_city_drift_stays_in_bounds():
    rng = RandomSource.resolve(seed=3)
    tuning = DriftTuning()
    extreme = CityEnvironment(weather_impact=2.0, world_events=[{}] * 8, holiday="Independence",
                              holiday_priority="major", sports_season="championship", sentiment=0.9)
    for migration in (-500000, 0, 500000):
        population = PopulationRecord(migration=migration, employment_rate=0.99)
        for _ in range(20):
            result = compute_city_drift(population, _snapshot(90.0), extreme, rng, tuning, "championship", 3.0)
            assert -50 <= result.drift <= 50


def test_drift_is_reproducible_from_seed():
    def run(seed: int):
        rng = RandomSource.resolve(seed=seed)
        tuning = DriftTuning()
        history = []
        for i in range(12):
            city = compute_city_drift(PopulationRecord(migration=800), _snapshot(40.0 + i * 3), _cycle_env(i),
                                      rng, tuning, _cycle_env(i).sports_season)
            _, flows = compute_district_drift(_district_map(), records_to_frame(DistrictEconomy, []),
                                              city.drift, rng, tuning, "off-season")
            history.append((city.drift, tuple(city.factors), tuple(sorted(flows.items()))))
        return history

    assert run(11) == run(11)


def test_factor_tags_are_ordered():
    rng = RandomSource.resolve(seed=5)
    env = CityEnvironment(weather_impact=1.6, holiday="Thanksgiving")

    result = compute_city_drift(PopulationRecord(), _snapshot(75.0), env, rng, DriftTuning(), "off-season")

    assert result.factors[:2] == ["strong-economy-attraction", "weather-volatility"]
    assert "severe-weather-displacement" in result.factors
    assert "Thanksgiving-travel" in result.factors
    assert result.link["economic_mood_used"] == 75.0


def test_district_drift_bounds_and_write_back():
    rng = RandomSource.resolve(seed=9)

    updated, flows = compute_district_drift(_district_map(), records_to_frame(DistrictEconomy, []), 50, rng,
                                            DriftTuning(), "championship", 3.0, {"Downtown": -9.0})

    assert set(flows) == {"Downtown", "Temescal", "Fruitvale"}
    assert all(-5 <= v <= 5 for v in flows.values())
    assert updated.columns == _district_map().columns
    assert updated.get_column("MigrationFlow").to_list() == [flows[n] for n in ("Downtown", "Temescal", "Fruitvale")]
    assert flows["Downtown"] == -5


def test_empty_district_map_is_a_no_op(rng):
    empty = records_to_frame(DistrictProfile, [])

    updated, flows = compute_district_drift(empty, records_to_frame(DistrictEconomy, []), 10, rng,
                                            DriftTuning(), "off-season")

    assert flows == {}
    assert updated.is_empty()


def test_economy_feedback_is_bounded():
    settings = DriftSettings()
    tuning = DriftTuning()

    small = apply_feedback(_snapshot(50.0), 10, {}, 0.0, settings, tuning)
    large = apply_feedback(_snapshot(50.0), 45, {}, 0.0, settings, tuning)
    damped = apply_feedback(_snapshot(50.0), 10, {}, 1.0, settings, tuning)

    assert small.mood_delta == 1.0
    assert small.mood == 51.0
    assert large.mood_delta == 2.0
    assert damped.mood_delta == 0.5


def test_feedback_can_be_disabled():
    settings = DriftSettings(economy_feedback=False, district_feedback=False)

    result = apply_feedback(_snapshot(50.0, {"Downtown": 60.0}), 40, {"Downtown": 4}, 0.0, settings, DriftTuning())

    assert result.mood == 50.0
    assert result.mood_delta == 0.0
    assert result.district_moods == {}


def test_district_feedback_damped_by_descriptor():
    snapshot = _snapshot(50.0, {"Downtown": 70.0, "Fruitvale": 50.0}, {"Downtown": "thriving"})

    result = apply_feedback(snapshot, 0, {"Downtown": 4, "Fruitvale": 4}, 0.0, DriftSettings(), DriftTuning())

    assert result.district_deltas == {"Downtown": 1.0, "Fruitvale": 2.0}
    assert result.district_moods == {"Downtown": 71.0, "Fruitvale": 52.0}


def test_snapshot_is_read_only():
    snapshot = _snapshot(50.0, {"Downtown": 60.0})

    with pytest.raises(TypeError):
        snapshot.district_moods["Downtown"] = 10.0
    with pytest.raises(AttributeError):
        snapshot.mood = 10.0
