import logging
from typing import List

import polars as pl

from citysim.engine.interfaces import ISystem
from citysim.engine.mechanics.drift import (
    DriftTuning, EconomySnapshot, apply_feedback, compute_city_drift, compute_district_drift, summarize_drift,
)
from citysim.engine.mechanics.ripples import district_descriptor
from citysim.engine.random_source import RandomSource
from citysim.server.state import WorldState
from citysim.shared.config import DriftSettings
from citysim.shared.events import EventDriftComputed
from citysim.shared.records import PopulationRecord, frame_to_records

logger = logging.getLogger(__name__)


class DriftSystem(ISystem):
    """
    Computes city and district population drift, then feeds a bounded
    correction back into the economy.

    Architecture Note:
        The two stages are strictly sequential. Drift is computed from an
        immutable EconomySnapshot taken before any feedback; the feedback is
        then applied once from that same snapshot. Nothing here re-enters
        the economy computation.
    """

    def __init__(self, rng: RandomSource, settings: DriftSettings = None, tuning: DriftTuning = None):
        self.rng = rng
        self.settings = settings or DriftSettings()
        self.tuning = tuning or DriftTuning()

    @property
    def id(self) -> str:
        return "city.drift"

    @property
    def dependencies(self) -> List[str]:
        return ["city.economy"]

    def update(self, state: WorldState, cycle: int) -> None:
        env = state.environment
        settings = self.settings

        records = frame_to_records(PopulationRecord, state.read_table("population"))
        if records:
            population = records[0]
        else:
            logger.info("[DriftSystem] No population record; using defaults")
            population = PopulationRecord()

        # 1. Freeze the economy as the ripple stage left it
        economies = state.read_table("district_economies")
        summary = state.economy.summary
        snapshot = EconomySnapshot.capture(
            state.economy.mood,
            state.economy.mood_descriptor,
            int(summary.get("positive_ripples", 0)),
            int(summary.get("negative_ripples", 0)),
            economies,
        )

        sports_season = settings.sports_override or env.sports_season

        # 2. City drift
        city = compute_city_drift(population, snapshot, env, self.rng, self.tuning,
                                  sports_season, settings.crowd_intensity)

        # 3. District drift
        district_map, flows = compute_district_drift(
            state.read_table("district_map"), economies, city.drift, self.rng, self.tuning,
            sports_season, settings.crowd_intensity, settings.district_bias,
        )
        if flows:
            state.update_table("district_map", district_map)

        # 4. Feedback into the economy
        feedback = apply_feedback(snapshot, city.drift, flows, env.sentiment, settings, self.tuning)
        state.economy.mood = feedback.mood
        state.economy.mood_descriptor = feedback.descriptor
        if feedback.district_moods and not economies.is_empty():
            state.update_table("district_economies", self._apply_district_feedback(economies, feedback))

        # 5. Record
        drift = state.drift
        drift.previous_drift = drift.city_drift
        drift.previous_factors = list(drift.factors)
        drift.city_drift = city.drift
        drift.factors = city.factors
        drift.districts = flows
        drift.economic_link = dict(city.link, feedback_mood_delta=feedback.mood_delta,
                                   pre_feedback_mood=snapshot.mood, post_feedback_mood=feedback.mood)
        drift.summary = summarize_drift(city.drift, city.factors, flows)

        state.events.append(EventDriftComputed(city.drift, list(city.factors)))
        logger.info("[DriftSystem] Cycle %d drift %+d (%d factors), mood feedback %+.2f",
                    cycle, city.drift, len(city.factors), feedback.mood_delta)

    @staticmethod
    def _apply_district_feedback(economies: pl.DataFrame, feedback) -> pl.DataFrame:
        names = economies.get_column("Neighborhood").to_list()
        moods = economies.get_column("Mood").to_list()
        new_moods = [feedback.district_moods.get(n, m) for n, m in zip(names, moods)]
        return economies.with_columns([
            pl.Series("Mood", new_moods, dtype=pl.Float64),
            pl.Series("Descriptor", [district_descriptor(m) for m in new_moods], dtype=pl.String),
            pl.Series("FeedbackDelta", [feedback.district_deltas.get(n, 0.0) for n in names], dtype=pl.Float64),
        ])
