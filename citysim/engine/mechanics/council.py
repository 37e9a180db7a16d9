import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from citysim.engine.mechanics.numeric import clamp
from citysim.engine.random_source import RandomSource
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import CouncilMember, DistrictDemographics, Initiative, InitiativeRipple

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = (
    "hospitalized", "serious-condition", "critical", "injured",
    "deceased", "resigned", "retired",
)
CORE_FACTIONS = ("OPP", "CRC", "IND")
SWING_FACTION = "IND"

# Statuses that are never revisited by the vote engine.
DECIDED_STATUSES = ("resolved", "passed", "failed", "inactive", "visioning-complete")

VOTE_TYPES = ("vote", "council-vote")
EXTERNAL_TYPES = ("grant", "federal-grant", "external")
VISIONING_TYPES = ("visioning", "input")


@dataclass
class VoteTuning:
    """Named constants of the vote engine (overridable via [tuning.votes])."""
    total_seats: int = 9
    swing_min: float = 0.15
    swing_max: float = 0.85
    projection_sentiment_weight: float = 0.10
    lean_sentiment_weight: float = 0.05
    unnamed_sentiment_weight: float = 0.15
    supermajority_threshold: int = 6
    supermajority_penalty: float = 0.05
    external_min: float = 0.25
    external_max: float = 0.75
    external_sentiment_weight: float = 0.05
    outcome_sentiment_shift: float = 0.05
    demographic_limit: float = 0.15
    proposal_window: int = 3


@dataclass
class FactionCount:
    count: int = 0
    available: int = 0
    members: List[str] = field(default_factory=list)


@dataclass
class UnavailableMember:
    name: str
    reason: str
    faction: str


@dataclass
class CouncilState:
    """Council composition for one cycle, derived from the roster."""
    total_seats: int = 9
    filled_seats: int = 0
    vacant_seats: int = 0
    available_votes: int = 0
    factions: Dict[str, FactionCount] = field(default_factory=lambda: {f: FactionCount() for f in CORE_FACTIONS})
    independents: List[str] = field(default_factory=list)
    unavailable: List[UnavailableMember] = field(default_factory=list)
    mayor: Optional[CouncilMember] = None
    president: Optional[str] = None

    def is_available_independent(self, name: str) -> bool:
        if not name or any(u.name == name for u in self.unavailable):
            return False
        return name in self.independents


@dataclass
class SwingVote:
    name: str
    vote: str
    probability: float
    # 'projection', 'lean' or 'sentiment'
    source: str
    lean: str = ""


@dataclass
class VoteResult:
    status: str
    outcome: str
    consequences: str
    notes: str
    vote_count: str = ""
    yes: int = 0
    no: int = 0
    swing_votes: List[SwingVote] = field(default_factory=list)

    @property
    def is_positive(self) -> bool:
        return self.outcome in ("PASSED", "APPROVED")

    @property
    def is_negative(self) -> bool:
        return self.outcome in ("FAILED", "DENIED")


def assemble_council(roster: Sequence[CouncilMember], tuning: VoteTuning = VoteTuning()) -> CouncilState:
    """
    Builds the council composition from roster rows.

    Only MAYOR-* and COUNCIL-* offices count. The mayor is tracked but does
    not vote. Members with an incapacitating status are excluded from the
    available votes and recorded with their reason.
    """
    state = CouncilState(total_seats=tuning.total_seats)
    explicit_vacancies = 0

    for member in roster:
        prefix = member.office_id.split("-")[0].upper()
        if prefix not in ("MAYOR", "COUNCIL"):
            continue

        if prefix == "MAYOR":
            state.mayor = member
            continue

        holder = member.holder.strip()
        if member.voting_power.strip().lower() == "vacant" or not holder or holder == "TBD":
            explicit_vacancies += 1
            continue

        if state.filled_seats >= state.total_seats:
            logger.warning("[Council] Roster lists more than %d seats; ignoring '%s'", state.total_seats, holder)
            continue

        state.filled_seats += 1
        faction = member.faction.strip().upper()
        status = member.status.strip().lower() or "active"
        available = status not in UNAVAILABLE_STATUSES
        if not available:
            state.unavailable.append(UnavailableMember(holder, status, faction))
        if "President" in member.title:
            state.president = holder

        # Only bloc members cast votes, so only they count towards quorum.
        if faction not in CORE_FACTIONS:
            logger.warning("[Council] '%s' has no known faction ('%s'); seat holds no vote", holder, faction)
            continue

        bloc = state.factions[faction]
        bloc.count += 1
        bloc.members.append(holder)
        if available:
            bloc.available += 1
            state.available_votes += 1
            if faction == SWING_FACTION:
                state.independents.append(holder)

    state.vacant_seats = max(explicit_vacancies, state.total_seats - state.filled_seats)
    return state


def parse_requirement(requirement: str) -> int:
    """'5-4' or '6-of-9' -> 5 / 6. Unparsable requirements default to a simple majority."""
    head = str(requirement or "5-4").strip().split("-")[0]
    try:
        return int(head) or 5
    except ValueError:
        return 5


def projection_probability(projection: str, sentiment: float, supermajority: bool,
                           tuning: VoteTuning = VoteTuning()) -> float:
    """Yes-probability of the primary swing voter, from the projection text."""
    text = (projection or "").lower()
    prob = 0.5
    if "likely pass" in text:
        prob = 0.70
    elif "lean" in text and "pass" in text:
        prob = 0.60
    elif "likely fail" in text:
        prob = 0.30
    elif "lean" in text and "fail" in text:
        prob = 0.40
    elif "toss-up" in text or "uncertain" in text:
        prob = 0.50
    elif "needs" in text:
        prob = 0.45

    prob += sentiment * tuning.projection_sentiment_weight
    if supermajority:
        prob -= tuning.supermajority_penalty
    return clamp(prob, tuning.swing_min, tuning.swing_max)


def lean_probability(lean: str, sentiment: float, tuning: VoteTuning = VoteTuning()) -> float:
    """Yes-probability of the secondary swing voter, from the stated lean."""
    text = (lean or "").strip().lower()
    if not text:
        return 0.5

    prob = 0.5
    if text in ("likely-yes", "likely yes"):
        prob = 0.75
    elif text in ("lean-yes", "lean yes", "leaning yes"):
        prob = 0.65
    elif text in ("lean-no", "lean no", "leaning no"):
        prob = 0.35
    elif text in ("likely-no", "likely no"):
        prob = 0.25

    prob += sentiment * tuning.lean_sentiment_weight
    return clamp(prob, tuning.swing_min, tuning.swing_max)


# Name keywords -> list of (ratio, threshold, delta)
_DEMOGRAPHIC_RULES: List[Tuple[Tuple[str, ...], List[Tuple[str, float, float]]]] = [
    (("health", "clinic", "hospital", "medical"), [("seniors", 0.25, 0.08), ("sick", 0.08, 0.06)]),
    (("housing", "stabiliz", "afford", "rent"), [("unemployed", 0.12, 0.10), ("seniors", 0.20, 0.05)]),
    (("transit", "bart", "bus", "transportation"), [("adults", 0.55, 0.06), ("students", 0.20, 0.05)]),
    (("school", "education", "youth", "student"), [("students", 0.25, 0.10)]),
    (("job", "employment", "business", "economic"), [("unemployed", 0.10, 0.08)]),
    (("senior", "elder", "aging", "retire"), [("seniors", 0.20, 0.12)]),
    (("alternative", "response", "police", "safety"), [("students", 0.20, 0.05), ("seniors", 0.25, -0.03)]),
]


def demographic_influence(name: str, affected: Sequence[str], demographics: Dict[str, DistrictDemographics],
                          tuning: VoteTuning = VoteTuning()) -> float:
    """
    Swing adjustment from the make-up of the districts an initiative touches.
    Zero when no districts are named or no demographic data covers them.
    """
    if not affected or not demographics:
        return 0.0

    totals = {"students": 0, "adults": 0, "seniors": 0, "unemployed": 0, "sick": 0}
    for district in affected:
        demo = demographics.get(district)
        if demo is None:
            continue
        for key in totals:
            totals[key] += getattr(demo, key)

    population = totals["students"] + totals["adults"] + totals["seniors"]
    if population == 0:
        return 0.0

    ratios = {key: value / population for key, value in totals.items()}
    text = (name or "").lower()
    modifier = 0.0
    for keywords, rules in _DEMOGRAPHIC_RULES:
        if any(k in text for k in keywords):
            for ratio, threshold, delta in rules:
                if ratios[ratio] > threshold:
                    modifier += delta

    return clamp(modifier, -tuning.demographic_limit, tuning.demographic_limit)


def resolve_council_vote(initiative: Initiative, council: CouncilState, sentiment: float, rng: RandomSource,
                         influence: float = 0.0, tuning: VoteTuning = VoteTuning()) -> VoteResult:
    """
    Faction-bloc arithmetic plus probabilistic swing voters.

    The lead faction's available members vote yes, the opposition's vote no.
    Available independents are resolved one by one: the named primary swing
    voter from the projection text, the named secondary from their lean, the
    rest from city sentiment. Every seat casts at most one vote, so the total
    never exceeds the council size.
    """
    needed = parse_requirement(initiative.vote_requirement)
    supermajority = needed >= tuning.supermajority_threshold

    if council.available_votes < needed:
        return VoteResult(
            status="delayed",
            outcome="DELAYED",
            vote_count=f"{council.available_votes} available, {needed} needed",
            consequences="Insufficient council members for vote. Delayed pending appointments.",
            notes=(f"Vote delayed. Only {council.available_votes} votes available; "
                   f"{needed} required. {council.vacant_seats} seats vacant."),
        )

    lead = (initiative.lead_faction or "OPP").strip().upper()
    opposition = (initiative.opposition_faction or "CRC").strip().upper()

    yes = no = 0
    # Independents never vote as a bloc; they are all resolved individually.
    if lead != SWING_FACTION and lead in council.factions:
        yes += council.factions[lead].available
    if opposition not in (SWING_FACTION, lead) and opposition in council.factions:
        no += council.factions[opposition].available

    swing: List[SwingVote] = []
    processed = set()

    def cast(name: str, probability: float, source: str, lean: str = ""):
        nonlocal yes, no
        probability = clamp(probability + influence, tuning.swing_min, tuning.swing_max)
        voted_yes = rng.chance(probability)
        if voted_yes:
            yes += 1
        else:
            no += 1
        processed.add(name)
        swing.append(SwingVote(name, "yes" if voted_yes else "no", probability, source, lean))

    primary = initiative.swing_voter.strip()
    if primary and council.is_available_independent(primary):
        cast(primary, projection_probability(initiative.projection, sentiment, supermajority, tuning), "projection")

    secondary = initiative.swing_voter_2.strip()
    if secondary and secondary not in processed and council.is_available_independent(secondary):
        cast(secondary, lean_probability(initiative.swing_voter_2_lean, sentiment, tuning), "lean",
             initiative.swing_voter_2_lean)

    for name in council.independents:
        if name in processed:
            continue
        cast(name, 0.5 + sentiment * tuning.unnamed_sentiment_weight, "sentiment")

    passed = yes >= needed
    vote_count = f"{yes}-{no}"

    if passed:
        consequences = "Initiative approved. Implementation begins."
        notes = f"Passed {vote_count}."
    else:
        consequences = "Initiative defeated. Political fallout expected."
        notes = f"Failed {vote_count}."
        if supermajority:
            notes += " Supermajority requirement not met."

    for sv in swing:
        if sv.source in ("projection", "lean"):
            notes += f" {sv.name} voted {sv.vote}."
    if council.unavailable:
        notes += f" ({', '.join(u.name for u in council.unavailable)} absent)"
    if council.vacant_seats > 0:
        notes += f" [{council.vacant_seats} seats vacant]"

    return VoteResult(
        status="passed" if passed else "failed",
        outcome="PASSED" if passed else "FAILED",
        consequences=consequences,
        notes=notes,
        vote_count=vote_count,
        yes=yes,
        no=no,
        swing_votes=swing,
    )


def external_probability(projection: str, sentiment: float, tuning: VoteTuning = VoteTuning()) -> float:
    text = (projection or "").lower()
    prob = 0.50
    if "likely" in text and "approv" in text:
        prob = 0.70
    elif "unlikely" in text or ("likely" in text and "den" in text):
        prob = 0.30
    elif "compet" in text:
        prob = 0.45
    elif "strong" in text:
        prob = 0.65
    prob += sentiment * tuning.external_sentiment_weight
    return clamp(prob, tuning.external_min, tuning.external_max)


def resolve_external_decision(initiative: Initiative, sentiment: float, rng: RandomSource,
                              tuning: VoteTuning = VoteTuning()) -> VoteResult:
    """A grant or other outside decision: one Bernoulli draw."""
    approved = rng.chance(external_probability(initiative.projection, sentiment, tuning))
    if approved:
        return VoteResult("passed", "APPROVED",
                          "Federal funding secured. Project accelerates.",
                          "Grant approved. Full funding confirmed.")
    return VoteResult("failed", "DENIED",
                      "Grant denied. Timeline delayed, scope reduced.",
                      "Grant denied. Contingency planning required.")


def resolve_visioning() -> VoteResult:
    return VoteResult("visioning-complete", "COMPLETED",
                      "Community input gathered. Next phase: formal proposal.",
                      "Visioning phase concluded. Input documented.")


def resolve_initiative(initiative: Initiative, council: CouncilState, sentiment: float, rng: RandomSource,
                       demographics: Dict[str, DistrictDemographics],
                       tuning: VoteTuning = VoteTuning()) -> VoteResult:
    """Dispatches on the initiative type; unknown types go to the council."""
    kind = (initiative.kind or "vote").strip().lower()
    if kind in EXTERNAL_TYPES:
        return resolve_external_decision(initiative, sentiment, rng, tuning)
    if kind in VISIONING_TYPES:
        return resolve_visioning()
    influence = demographic_influence(initiative.name, initiative.affected_districts, demographics, tuning)
    return resolve_council_vote(initiative, council, sentiment, rng, influence, tuning)


def advance_status(initiative: Initiative, status: str, cycle: int, tuning: VoteTuning = VoteTuning()) -> bool:
    """
    Moves proposed -> active inside the proposal window and
    active -> pending-vote one cycle before the vote. Returns True on change.

    `status` is the status the initiative had before this cycle's vote.
    """
    if initiative.vote_cycle <= 0:
        return False
    if status == "proposed" and initiative.vote_cycle - cycle <= tuning.proposal_window:
        initiative.status = "active"
        return True
    if status == "active" and initiative.vote_cycle == cycle + 1:
        initiative.status = "pending-vote"
        return True
    return False


# --- Initiative Ripples ---

# (keywords, ripple type, duration, {effect: (positive, negative)})
_RIPPLE_PROFILES: List[Tuple[Tuple[str, ...], str, int, Dict[str, Tuple[float, float]]]] = [
    (("health", "clinic", "hospital", "medical"), "health", 12,
     {"sick_modifier": (-0.02, 0.01), "sentiment_modifier": (0.08, -0.05), "community_modifier": (0.05, -0.02)}),
    (("transit", "bart", "bus", "hub"), "transit", 10,
     {"retail_modifier": (0.08, -0.04), "traffic_modifier": (0.15, -0.08), "sentiment_modifier": (0.05, -0.03)}),
    (("business", "economic", "job", "employment"), "economic", 15,
     {"unemployment_modifier": (-0.03, 0.02), "retail_modifier": (0.10, -0.06), "sentiment_modifier": (0.06, -0.04)}),
    (("housing", "stabiliz", "afford", "rent"), "housing", 20,
     {"sentiment_modifier": (0.10, -0.08), "community_modifier": (0.08, -0.05), "stability_modifier": (0.05, -0.03)}),
    (("safety", "police", "alternative", "response"), "safety", 8,
     {"sentiment_modifier": (0.03, -0.06), "community_modifier": (0.05, -0.04)}),
    (("park", "green", "environment", "earth"), "environment", 12,
     {"sentiment_modifier": (0.08, -0.04), "sick_modifier": (-0.01, 0.005), "public_spaces_modifier": (0.10, -0.05)}),
    (("stadium", "arena", "sports"), "sports", 20,
     {"retail_modifier": (0.12, -0.06), "traffic_modifier": (0.20, -0.10),
      "nightlife_modifier": (0.15, -0.08), "sentiment_modifier": (0.05, -0.08)}),
    (("school", "education", "youth"), "education", 15,
     {"sentiment_modifier": (0.06, -0.05), "community_modifier": (0.08, -0.04), "student_modifier": (0.05, -0.03)}),
]


def start_initiative_ripple(name: str, positive: bool, affected: Sequence[str], cycle: int,
                            env: CityEnvironment) -> InitiativeRipple:
    """
    Creates the after-effect of a decided initiative and applies its
    immediate sentiment kick (half the sentiment modifier).
    """
    text = (name or "").lower()
    ripple_type, duration, effects = "general", 6, {"sentiment_modifier": (0.04, -0.03)}
    for keywords, kind, days, profile in _RIPPLE_PROFILES:
        if any(k in text for k in keywords):
            ripple_type, duration, effects = kind, days, profile
            break

    side = 0 if positive else 1
    ripple = InitiativeRipple(
        initiative_name=name,
        ripple_type=ripple_type,
        direction="positive" if positive else "negative",
        strength=1.0 if positive else -0.6,
        affected_districts=list(affected),
        start_cycle=cycle,
        duration=duration,
        end_cycle=cycle + duration,
        status="active",
        **{effect: values[side] for effect, values in effects.items()},
    )

    if ripple.sentiment_modifier:
        env.adjust_sentiment(ripple.sentiment_modifier * 0.5)

    logger.info("[Civic] Initiative ripple: %s -> %s (%s) affecting %d districts for %d cycles",
                name, ripple_type, ripple.direction, len(ripple.affected_districts), duration)
    return ripple


def apply_initiative_ripples(ripples: List[InitiativeRipple], env: CityEnvironment,
                             cycle: int) -> Tuple[List[InitiativeRipple], int]:
    """
    Applies the decaying effect of every live initiative ripple to the city
    indices. Returns (still-active ripples, number expired this cycle).
    """
    active: List[InitiativeRipple] = []
    expired = 0
    for ripple in ripples:
        if ripple.status in ("expired", "completed"):
            continue
        if cycle >= ripple.end_cycle:
            ripple.status = "expired"
            expired += 1
            continue

        elapsed = cycle - ripple.start_cycle
        decay = max(0.2, 1.0 - (elapsed / max(ripple.duration, 1)) * 0.8)

        if ripple.sentiment_modifier:
            env.adjust_sentiment(ripple.sentiment_modifier * decay * 0.1)
        env.community_engagement += ripple.community_modifier * decay * 0.1
        env.retail += ripple.retail_modifier * decay * 0.1
        env.nightlife += ripple.nightlife_modifier * decay * 0.1

        ripple.status = "active"
        active.append(ripple)

    return active, expired
