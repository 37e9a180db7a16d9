import logging
from typing import Dict, List, Set

from citysim.engine.interfaces import ISystem
from citysim.engine.mechanics.council import (
    DECIDED_STATUSES, VoteResult, VoteTuning, advance_status, apply_initiative_ripples,
    assemble_council, resolve_initiative, start_initiative_ripple,
)
from citysim.engine.random_source import RandomSource
from citysim.server.state import WorldState
from citysim.shared.actions import ActionForceVote
from citysim.shared.events import EventInitiativeResolved
from citysim.shared.records import (
    CouncilMember, DistrictDemographics, Initiative, InitiativeRipple, frame_to_records, records_to_frame,
)

logger = logging.getLogger(__name__)

# Statuses that can be decided at the scheduled cycle.
VOTABLE_STATUSES = ("active", "pending-vote", "delayed")


class CivicSystem(ISystem):
    """
    Resolves scheduled initiatives and applies the lingering effects of past ones.

    Runs first in the cycle: vote outcomes and initiative ripples move city
    sentiment and indices, which the economy, drift and arc stages then read.
    """

    def __init__(self, rng: RandomSource, tuning: VoteTuning = None):
        self.rng = rng
        self.tuning = tuning or VoteTuning()

    @property
    def id(self) -> str:
        return "city.civic"

    @property
    def dependencies(self) -> List[str]:
        return []

    def update(self, state: WorldState, cycle: int) -> None:
        env = state.environment

        # 1. Lingering initiative ripples (before today's votes add new ones)
        ripples = frame_to_records(InitiativeRipple, state.read_table("initiative_ripples"))
        active, expired = apply_initiative_ripples(ripples, env, cycle)
        if expired:
            logger.info("[CivicSystem] %d initiative ripples expired", expired)
        # Only live ripples are carried forward; expired rows leave the ledger.
        ripples = active

        # 2. Initiatives
        initiatives = frame_to_records(Initiative, state.read_table("initiative_tracker"))
        if not initiatives:
            logger.info("[CivicSystem] No initiatives on the tracker for cycle %d", cycle)
            self._write_ripples(state, ripples)
            return

        council = assemble_council(frame_to_records(CouncilMember, state.read_table("council_roster")), self.tuning)
        demographics: Dict[str, DistrictDemographics] = {
            d.district: d for d in frame_to_records(DistrictDemographics, state.read_table("district_demographics"))
        }

        forced = self._forced_votes(state, initiatives)
        decided = advanced = 0

        for initiative in initiatives:
            status = (initiative.status or "proposed").strip().lower()
            manual = initiative.initiative_id in forced

            if status in DECIDED_STATUSES:
                continue

            due = initiative.vote_cycle == cycle and status in VOTABLE_STATUSES
            if not (due or manual):
                if advance_status(initiative, status, cycle, self.tuning):
                    initiative.last_updated = cycle
                    advanced += 1
                continue

            result = resolve_initiative(initiative, council, env.sentiment, self.rng, demographics, self.tuning)
            self._apply_result(initiative, result, cycle, manual)
            decided += 1

            if result.is_positive or result.is_negative:
                env.adjust_sentiment(self.tuning.outcome_sentiment_shift if result.is_positive
                                     else -self.tuning.outcome_sentiment_shift)
                ripples.append(start_initiative_ripple(initiative.name, result.is_positive,
                                                       initiative.affected_districts, cycle, env))

            state.events.append(EventInitiativeResolved(
                initiative.initiative_id, initiative.name, initiative.status, result.vote_count,
            ))
            logger.info("[CivicSystem] %s: %s %s", initiative.name, result.outcome, result.vote_count)

        state.update_table("initiative_tracker", records_to_frame(Initiative, initiatives))
        self._write_ripples(state, ripples)

        state.globals["civic"] = {
            "cycle": cycle,
            "decided": decided,
            "advanced": advanced,
            "available_votes": council.available_votes,
            "vacant_seats": council.vacant_seats,
            "absent": [u.name for u in council.unavailable],
            "active_ripples": len(active),
            "sentiment": round(env.sentiment, 4),
        }

    def _forced_votes(self, state: WorldState, initiatives: List[Initiative]) -> Set[str]:
        known = {i.initiative_id: i for i in initiatives}
        forced: Set[str] = set()
        for action in state.current_actions:
            if not isinstance(action, ActionForceVote):
                continue
            initiative = known.get(action.initiative_id)
            if initiative is None:
                logger.warning("[CivicSystem] Forced vote ignored: unknown initiative '%s'", action.initiative_id)
            elif initiative.status.strip().lower() in DECIDED_STATUSES:
                logger.warning("[CivicSystem] Forced vote refused: '%s' is already %s",
                               initiative.name, initiative.status)
            else:
                forced.add(action.initiative_id)
        return forced

    def _apply_result(self, initiative: Initiative, result: VoteResult, cycle: int, manual: bool):
        initiative.status = result.status
        initiative.outcome = result.outcome
        initiative.consequences = result.consequences
        prefix = f"MANUAL Cycle {cycle}:" if manual else f"Cycle {cycle}:"
        initiative.append_note(f"{prefix} {result.notes}")
        initiative.last_updated = cycle

        # A delayed vote is retried next cycle.
        if result.status == "delayed":
            initiative.vote_cycle = cycle + 1

    def _write_ripples(self, state: WorldState, ripples: List[InitiativeRipple]):
        if ripples or "initiative_ripples" in state.tables:
            state.update_table("initiative_ripples", records_to_frame(InitiativeRipple, ripples))
