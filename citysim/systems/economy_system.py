import logging
from typing import List

from citysim.engine.interfaces import ISystem
from citysim.engine.mechanics.ripples import (
    RippleContext, RippleTuning, aggregate_mood, compute_district_economies, decay_ripples,
    derive_employment, detect_calendar_ripples, detect_career_ripples, detect_event_ripples,
    detect_migration_ripples, economy_label, mood_descriptor, summarize,
)
from citysim.engine.random_source import RandomSource
from citysim.server.state import WorldState
from citysim.shared.events import EventRippleCreated
from citysim.shared.records import (
    DistrictEconomy, EconomicRipple, PopulationRecord, frame_to_records, records_to_frame,
)

logger = logging.getLogger(__name__)


class EconomySystem(ISystem):
    """
    Propagates economic shocks (ripples) into a city mood and per-district economies.

    Reads last cycle's drift from `state.drift.city_drift`; the drift stage
    has not run yet when this system updates.
    """

    def __init__(self, rng: RandomSource, tuning: RippleTuning = None):
        self.rng = rng
        self.tuning = tuning or RippleTuning()

    @property
    def id(self) -> str:
        return "city.economy"

    @property
    def dependencies(self) -> List[str]:
        return ["city.civic"]

    def update(self, state: WorldState, cycle: int) -> None:
        env = state.environment
        previous_drift = state.drift.city_drift

        ripples = frame_to_records(EconomicRipple, state.read_table("economic_ripples"))

        # 1. Detect new shocks
        ctx = RippleContext(cycle=cycle, env=env, rng=self.rng, tuning=self.tuning)
        detect_migration_ripples(ripples, previous_drift, ctx)
        churn = detect_career_ripples(ripples, ctx)
        detect_calendar_ripples(ripples, ctx)
        detect_event_ripples(ripples, ctx)

        for ripple in ctx.created:
            state.events.append(EventRippleCreated(
                ripple.ripple_id, ripple.trigger, ripple.impact, ripple.primary_district,
            ))
        if ctx.created:
            logger.info("[EconomySystem] %d new ripples: %s", len(ctx.created), [r.ripple_id for r in ctx.created])

        # 2. Decay and prune
        ripples = decay_ripples(ripples, cycle)

        # 3. City mood
        mood = aggregate_mood(state.economy.mood, ripples, env, previous_drift, self.tuning)
        descriptor = mood_descriptor(mood)
        employment = derive_employment(mood, previous_drift, self.tuning)
        label = economy_label(mood)

        # 4. District economies
        district_map = state.read_table("district_map")
        extra = district_map.get_column("Neighborhood").to_list() if "Neighborhood" in district_map.columns else []
        economies = compute_district_economies(mood, ripples, env, extra, self.tuning)

        summary = summarize(mood, descriptor, employment, ripples, economies, env, previous_drift)

        economy = state.economy
        economy.mood = mood
        economy.pre_feedback_mood = mood
        economy.mood_descriptor = descriptor
        economy.employment_rate = employment
        economy.economy_label = label
        economy.career_churn = churn
        economy.narrative = summary["narrative"]
        economy.summary = summary

        state.update_table("economic_ripples", records_to_frame(EconomicRipple, ripples))
        state.update_table("district_economies", records_to_frame(DistrictEconomy, economies))
        self._write_back_population(state, employment, label)

        logger.info("[EconomySystem] Cycle %d mood %.2f (%s), %d active ripples",
                    cycle, mood, descriptor, len(ripples))

    def _write_back_population(self, state: WorldState, employment: float, label: str):
        records = frame_to_records(PopulationRecord, state.read_table("population"))
        if not records:
            logger.info("[EconomySystem] No population record; employment write-back skipped")
            return
        records[0].employment_rate = employment
        records[0].economy = label
        state.update_table("population", records_to_frame(PopulationRecord, records))
