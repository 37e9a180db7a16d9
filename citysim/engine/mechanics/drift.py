import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple

import polars as pl

from citysim.engine.mechanics.numeric import clamp, round_half_up, round_to
from citysim.engine.mechanics.ripples import mood_descriptor
from citysim.engine.random_source import RandomSource
from citysim.shared.config import DriftSettings
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import PopulationRecord

logger = logging.getLogger(__name__)

TRAVEL_HOLIDAYS = ("Thanksgiving", "Holiday", "NewYear", "MemorialDay", "LaborDay", "Independence")
GATHERING_HOLIDAYS = ("OpeningDay", "OaklandPride", "ArtSoulFestival", "Juneteenth", "CincoDeMayo", "DiaDeMuertos")
CULTURAL_VISITOR_HOLIDAYS = ("DiaDeMuertos", "CincoDeMayo", "Juneteenth", "BlackHistoryMonth", "PrideMonth", "OaklandPride")

# Extreme local economies react less to a given drift than stable ones.
DESCRIPTOR_DAMPING: Dict[str, float] = {
    "thriving": 0.5,
    "struggling": 0.5,
    "growing": 0.75,
    "sluggish": 0.75,
    "stable": 1.0,
}

CITY_DRIFT_LIMIT = 50
DISTRICT_DRIFT_LIMIT = 5


@dataclass
class DriftTuning:
    """Named constants of the drift model (overridable via [tuning.drift])."""
    default_population: int = 400000
    # 1% of the population moving maps to 10 drift points.
    points_per_percent: float = 10.0
    district_share: float = 8.0
    championship_crowd: float = 12.0
    playoff_crowd: float = 8.0
    opening_day_crowd: float = 10.0
    sports_zone_bonus: float = 2.0
    sentiment_damping: float = 0.5
    random_fluctuation: float = 10.0


@dataclass(frozen=True)
class EconomySnapshot:
    """
    The economy as the ripple stage left it, before any drift feedback.
    Handed to the drift stage read-only.
    """
    mood: float
    descriptor: str
    positive_ripples: int
    negative_ripples: int
    district_moods: Mapping[str, float] = field(default_factory=dict)
    district_descriptors: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def capture(cls, mood: float, descriptor: str, positive: int, negative: int,
                economies: pl.DataFrame) -> "EconomySnapshot":
        moods: Dict[str, float] = {}
        descriptors: Dict[str, str] = {}
        if economies is not None and not economies.is_empty():
            for row in economies.iter_rows(named=True):
                moods[row["Neighborhood"]] = float(row["Mood"])
                descriptors[row["Neighborhood"]] = str(row["Descriptor"])
        return cls(mood, descriptor, positive, negative,
                   MappingProxyType(moods), MappingProxyType(descriptors))


@dataclass
class CityDrift:
    drift: int
    factors: List[str]
    link: Dict[str, Any]


@dataclass
class FeedbackResult:
    mood: float
    descriptor: str
    mood_delta: float
    district_moods: Dict[str, float] = field(default_factory=dict)
    district_deltas: Dict[str, float] = field(default_factory=dict)


def normalize_migration(population: PopulationRecord, tuning: DriftTuning) -> int:
    """Maps the raw migration head-count onto the [-50, 50] drift scale."""
    total = population.total_population if population.total_population > 0 else tuning.default_population
    percent = (population.migration / total) * 100
    return int(clamp(round_half_up(percent * tuning.points_per_percent), -CITY_DRIFT_LIMIT, CITY_DRIFT_LIMIT))


def compute_city_drift(population: PopulationRecord, economy: EconomySnapshot, env: CityEnvironment,
                       rng: RandomSource, tuning: DriftTuning, sports_season: str,
                       crowd_intensity: float = 1.0) -> CityDrift:
    """
    The city-wide drift scalar and the ordered list of factor tags behind it.

    Each factor draws from the generator only when its condition holds, so
    the draw sequence (and therefore a seeded replay) depends only on the
    inputs.
    """
    factors: List[str] = []

    def rnd(scale: float, offset: float = 0.0) -> int:
        return round_half_up((rng.random() - offset) * scale)

    mood = economy.mood
    derived_employment = 0.80 + (mood / 100) * 0.17
    effective_employment = min(population.employment_rate, derived_employment)

    if mood >= 65:
        effective_economy = "strong"
    elif mood >= 45:
        effective_economy = "stable"
    elif mood >= 30:
        effective_economy = "weak"
    else:
        effective_economy = "unstable"

    drift = normalize_migration(population, tuning)

    # 1. Economy
    if mood >= 70:
        drift += rnd(10)
        factors.append("strong-economy-attraction")
    elif mood >= 60:
        drift += rnd(6)
        factors.append("good-economy-inflow")
    elif mood <= 30:
        drift -= rnd(12)
        factors.append("weak-economy-exodus")
    elif mood <= 40:
        drift -= rnd(6)
        factors.append("uncertain-economy-outflow")

    if economy.positive_ripples >= 3:
        drift += rnd(5)
        factors.append("economic-momentum-positive")
    if economy.negative_ripples >= 3:
        drift -= rnd(5)
        factors.append("economic-momentum-negative")

    # 2. Weather and disruption
    if env.weather_impact >= 1.3:
        drift += rnd(8, 0.3)
        factors.append("weather-volatility")
    if env.weather_impact >= 1.5:
        drift += rnd(12, 0.4)
        factors.append("severe-weather-displacement")

    if env.chaos_count >= 3:
        drift += rnd(10, 0.5)
        factors.append("chaos-displacement")
    if env.chaos_count >= 5:
        drift += rnd(15, 0.5)
        factors.append("high-chaos-displacement")

    # 3. City indices
    if env.sentiment <= -0.4:
        drift -= rnd(8)
        factors.append("negative-sentiment-outflow")
    if env.sentiment >= 0.3:
        drift += rnd(6)
        factors.append("positive-sentiment-inflow")

    if env.public_spaces >= 1.3:
        drift += rnd(5)
        factors.append("public-space-activity")

    if env.traffic <= 0.75:
        drift += rnd(4)
        factors.append("low-traffic-mobility")
    if env.traffic >= 1.2:
        drift -= rnd(3)
        factors.append("high-traffic-friction")

    # 4. Jobs
    if effective_employment >= 0.93:
        drift += rnd(6)
        factors.append("employment-attraction")
    if effective_employment <= 0.88:
        drift -= rnd(6)
        factors.append("employment-outflow")
    if effective_employment <= 0.85:
        drift -= rnd(8)
        factors.append("employment-crisis-exodus")

    if effective_economy == "strong":
        drift += rnd(5)
        factors.append("strong-economy-inflow")
    if effective_economy == "weak":
        drift -= rnd(8)
        factors.append("weak-economy-outflow")
    if effective_economy == "unstable":
        drift -= rnd(4)
        factors.append("economic-instability")

    # 5. Calendar
    holiday = env.holiday
    if holiday in TRAVEL_HOLIDAYS:
        drift += rnd(15, 0.5)
        factors.append(f"{holiday}-travel")
    if holiday in GATHERING_HOLIDAYS:
        drift += rnd(8)
        factors.append(f"{holiday}-gathering-inflow")
    if holiday in CULTURAL_VISITOR_HOLIDAYS:
        drift += rnd(5)
        factors.append("cultural-visitor-inflow")

    if env.holiday_priority == "major":
        drift += rnd(10, 0.5)
        factors.append("major-holiday-movement")
    elif env.holiday_priority == "oakland":
        drift += rnd(6)
        factors.append("oakland-holiday-inflow")

    if env.is_first_friday:
        drift += rnd(6)
        factors.append("first-friday-inflow")
        if env.cultural_activity >= 1.3:
            drift += rnd(3)
            factors.append("first-friday-cultural-boost")

    if env.is_creation_day:
        drift += rnd(4)
        factors.append("creation-day-settling")

    # 6. Sports crowds
    if sports_season == "championship":
        drift += rnd(tuning.championship_crowd * crowd_intensity)
        factors.append("championship-crowd-inflow")
    elif sports_season in ("playoffs", "post-season"):
        drift += rnd(tuning.playoff_crowd * crowd_intensity)
        factors.append("playoff-crowd-inflow")

    if holiday == "OpeningDay":
        drift += rnd(tuning.opening_day_crowd * crowd_intensity)
        factors.append("opening-day-crowd")

    # 7. Culture and community
    if env.cultural_activity >= 1.5:
        drift += rnd(5)
        factors.append("cultural-activity-inflow")
    elif env.cultural_activity <= 0.7:
        drift -= rnd(3)
        factors.append("low-cultural-activity")

    if env.community_engagement >= 1.4:
        drift += rnd(4)
        factors.append("community-retention")
    elif env.community_engagement <= 0.6:
        drift -= rnd(5)
        factors.append("low-community-outflow")

    # 8. Noise
    drift += rnd(tuning.random_fluctuation, 0.5)

    drift = int(clamp(drift, -CITY_DRIFT_LIMIT, CITY_DRIFT_LIMIT))

    link = {
        "economic_mood_used": mood,
        "economic_mood_descriptor": economy.descriptor,
        "effective_employment": round_to(effective_employment, 4),
        "effective_economy": effective_economy,
        "sheet_employment": population.employment_rate,
        "sheet_economy": population.economy,
        "derived_employment": round_to(derived_employment, 4),
        "positive_ripples": economy.positive_ripples,
        "negative_ripples": economy.negative_ripples,
    }
    return CityDrift(drift, factors, link)


def _round_expr(expr: pl.Expr) -> pl.Expr:
    return (expr + 0.5).floor()


def compute_district_drift(district_map: pl.DataFrame, economies: pl.DataFrame, city_drift: int,
                           rng: RandomSource, tuning: DriftTuning, sports_season: str,
                           crowd_intensity: float = 1.0,
                           district_bias: Mapping[str, float] = None) -> Tuple[pl.DataFrame, Dict[str, int]]:
    """
    Vectorised per-district drift, written into the MigrationFlow column.

    Every row gets one block of seven draws whether or not its conditions
    fire, so the sequence consumed from the generator depends only on the
    number of districts.
    """
    if district_map.is_empty():
        return district_map, {}

    district_bias = district_bias or {}
    base = round_half_up(city_drift / tuning.district_share)
    sports_live = sports_season in ("playoffs", "championship")

    econ = economies.select(["Neighborhood", "Mood", "Descriptor", "IsSportsZone"]) if not economies.is_empty() \
        else pl.DataFrame(schema={"Neighborhood": pl.String, "Mood": pl.Float64,
                                  "Descriptor": pl.String, "IsSportsZone": pl.Boolean})

    df = (
        district_map
        .with_row_index("_row")
        .join(econ, on="Neighborhood", how="left")
        .sort("_row")
        .with_columns([
            pl.col("CrimeIndex").fill_null(1.0),
            pl.col("Sentiment").fill_null(0.0),
            pl.col("RetailVitality").fill_null(1.0),
            pl.col("EventAttractiveness").fill_null(1.0),
            pl.col("Mood").fill_null(50.0),
            pl.col("Descriptor").fill_null("stable"),
            pl.col("IsSportsZone").fill_null(False),
        ])
    )

    draws = rng.uniforms((df.height, 7))
    names = df.get_column("Neighborhood").to_list()
    df = df.with_columns(
        [pl.Series(f"_r{i}", draws[:, i]) for i in range(7)]
        + [pl.Series("_bias", [float(district_bias.get(n, 0.0)) for n in names])]
    )

    def r(i: int) -> pl.Expr:
        return pl.col(f"_r{i}")

    crime = pl.col("CrimeIndex")
    sentiment = pl.col("Sentiment")
    retail = pl.col("RetailVitality")
    event = pl.col("EventAttractiveness")
    mood = pl.col("Mood")
    descriptor = pl.col("Descriptor")

    terms = [
        pl.when(crime >= 1.5).then(-_round_expr(r(0) * 3 + 1))
          .when(crime >= 1.2).then(-_round_expr(r(0) * 2))
          .when(crime <= 0.8).then(_round_expr(r(0) * 2))
          .otherwise(0.0),
        pl.when(sentiment >= 0.3).then(_round_expr(r(1) * 2 + 1))
          .when(sentiment <= -0.3).then(-_round_expr(r(1) * 2 + 1))
          .otherwise(0.0),
        pl.when(retail >= 1.3).then(_round_expr(r(2) * 2))
          .when(retail <= 0.7).then(-_round_expr(r(2) * 2))
          .otherwise(0.0),
        pl.when(event >= 1.3).then(_round_expr(r(3) * 2))
          .when(event <= 0.7).then(-_round_expr(r(3) * 1))
          .otherwise(0.0),
        pl.when(mood >= 65).then(_round_expr(r(4) * 2))
          .when(mood <= 35).then(-_round_expr(r(4) * 2))
          .otherwise(0.0),
        pl.when(descriptor == "thriving").then(_round_expr(r(5) * 2))
          .when(descriptor == "struggling").then(-_round_expr(r(5) * 2))
          .otherwise(0.0),
        pl.when(pl.col("IsSportsZone") & pl.lit(sports_live))
          .then(_round_expr(r(6) * tuning.sports_zone_bonus * crowd_intensity))
          .otherwise(0.0),
    ]

    df = df.with_columns(
        _round_expr(
            (pl.lit(float(base)) + pl.sum_horizontal(terms) + pl.col("_bias"))
            .clip(-DISTRICT_DRIFT_LIMIT, DISTRICT_DRIFT_LIMIT)
        ).cast(pl.Int64).alias("_flow")
    )

    named = pl.col("Neighborhood").fill_null("").str.len_chars() > 0
    df = df.with_columns(
        pl.when(named).then(pl.col("_flow")).otherwise(pl.col("MigrationFlow")).cast(pl.Int64).alias("MigrationFlow")
    )

    flows = {
        name: int(flow)
        for name, flow in zip(df.get_column("Neighborhood").to_list(), df.get_column("_flow").to_list())
        if name
    }

    # Drop temporary columns to keep state clean
    result = df.select(district_map.columns)
    return result, flows


def apply_feedback(snapshot: EconomySnapshot, city_drift: int, district_drifts: Mapping[str, int],
                   sentiment: float, settings: DriftSettings, tuning: DriftTuning) -> FeedbackResult:
    """
    Second stage: drift nudges the economy it was computed from.

    Works only from the immutable pre-feedback snapshot, so running it twice
    gives the same answer instead of compounding.
    """
    mood = snapshot.mood
    mood_delta = 0.0
    if settings.economy_feedback:
        damping = 1 - min(abs(sentiment), 1.0) * tuning.sentiment_damping
        mood_delta = round_to(clamp(city_drift * settings.feedback_scale * damping,
                                    -settings.feedback_max_delta, settings.feedback_max_delta), 2)
        mood = round_to(clamp(mood + mood_delta, 0.0, 100.0), 2)

    result = FeedbackResult(mood=mood, descriptor=mood_descriptor(mood), mood_delta=mood_delta)

    if settings.district_feedback:
        for name, base_mood in snapshot.district_moods.items():
            if name not in district_drifts:
                continue
            factor = DESCRIPTOR_DAMPING.get(snapshot.district_descriptors.get(name, "stable"), 1.0)
            delta = round_to(clamp(district_drifts[name] * settings.district_feedback_scale * factor,
                                   -settings.district_feedback_max_delta,
                                   settings.district_feedback_max_delta), 2)
            result.district_deltas[name] = delta
            result.district_moods[name] = round_to(clamp(base_mood + delta, 0.0, 100.0), 2)

    return result


def summarize_drift(city_drift: int, factors: List[str], districts: Mapping[str, int]) -> Dict[str, Any]:
    """Human-readable digest, derivable from the stored drift data alone."""
    if city_drift >= 20:
        headline = "Strong inflow"
    elif city_drift >= 5:
        headline = "Modest inflow"
    elif city_drift > -5:
        headline = "Stable population"
    elif city_drift > -20:
        headline = "Modest outflow"
    else:
        headline = "Strong outflow"

    ranked = sorted(districts.items(), key=lambda kv: (-kv[1], kv[0]))
    return {
        "headline": f"{headline} ({city_drift:+d})",
        "top_factors": factors[:3],
        "inflow": [name for name, value in ranked if value > 0][:3],
        "outflow": [name for name, value in reversed(ranked) if value < 0][:3],
    }
