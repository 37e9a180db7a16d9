import logging
from typing import List

from citysim.engine.interfaces import ISystem
from citysim.engine.mechanics.arcs import (
    ArcConditions, ArcCycleReport, ArcTuning, active_arc_count, apply_interventions, generate_arcs,
    resolution_seed, step_arcs,
)
from citysim.engine.random_source import RandomSource
from citysim.server.state import WorldState
from citysim.shared.events import EventArcCreated, EventArcPhaseChanged, EventArcResolved
from citysim.shared.records import Arc, PopulationRecord, frame_to_records, records_to_frame

logger = logging.getLogger(__name__)


class ArcSystem(ISystem):
    """
    Runs last: creates, ages and resolves narrative arcs from everything the
    earlier stages wrote this cycle.
    """

    def __init__(self, rng: RandomSource, tuning: ArcTuning = None):
        self.rng = rng
        self.tuning = tuning or ArcTuning()

    @property
    def id(self) -> str:
        return "city.arcs"

    @property
    def dependencies(self) -> List[str]:
        return ["city.drift"]

    def update(self, state: WorldState, cycle: int) -> None:
        env = state.environment
        arcs = frame_to_records(Arc, state.read_table("arc_ledger"))
        report = ArcCycleReport()

        # 1. Operator interventions
        report.resolved.extend(apply_interventions(arcs, state.current_actions, cycle, self.tuning))

        # 2. Lifecycle step, then generation
        world = self._conditions(state)
        step_arcs(arcs, env, world, cycle, self.tuning, report)
        generate_arcs(arcs, env, world, cycle, self.rng, self.tuning, report)

        # 3. Events
        for arc in report.created:
            state.events.append(EventArcCreated(arc.arc_id, arc.arc_type, arc.district, arc.tension))
        for change in report.phase_changes:
            state.events.append(EventArcPhaseChanged(
                change.arc.arc_id, change.arc.arc_type, change.from_phase, change.to_phase,
                change.arc.tension, cycle,
            ))
        for arc in report.resolved:
            state.events.append(EventArcResolved(
                arc.arc_id, arc.resolution_type, arc.resolution_reason, resolution_seed(arc, self.rng),
            ))

        state.update_table("arc_ledger", records_to_frame(Arc, arcs))
        state.globals["arcs"] = {
            "cycle": cycle,
            "active": active_arc_count(arcs),
            "created": len(report.created),
            "phase_changes": len(report.phase_changes),
            "resolved": len(report.resolved),
        }
        logger.info("[ArcSystem] Cycle %d: %d active, %d new, %d resolved",
                    cycle, active_arc_count(arcs), len(report.created), len(report.resolved))

    @staticmethod
    def _conditions(state: WorldState) -> ArcConditions:
        records = frame_to_records(PopulationRecord, state.read_table("population"))
        population = records[0] if records else PopulationRecord()
        env = state.environment
        return ArcConditions(
            illness_rate=population.illness_rate,
            employment_rate=population.employment_rate,
            migration=population.migration,
            economic_mood=state.economy.mood,
            economy_label=state.economy.economy_label,
            city_drift=state.drift.city_drift,
            sentiment=env.sentiment,
            weather_impact=env.weather_impact,
            chaos_count=env.chaos_count,
        )
