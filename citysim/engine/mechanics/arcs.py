import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from citysim.engine.mechanics.numeric import clamp, round_to
from citysim.engine.random_source import RandomSource
from citysim.shared.actions import (
    ActionEscalateArc, ActionForceResolveArc, ActionHoldArc, ActionReleaseArc, GameAction,
)
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import Arc

logger = logging.getLogger(__name__)

ARC_TYPES = (
    "crisis", "pattern-wave", "instability", "health-crisis", "infrastructure",
    "community", "cultural-moment", "safety-concern", "business-disruption",
    "rivalry", "strain", "education-wave", "nightlife-surge", "festival",
    "celebration", "sports-fever", "parade", "arts-walk", "heritage",
)

PHASES = ("early", "rising", "peak", "falling", "resolved")

# District -> domains it tends to host
DISTRICT_AFFINITIES: Dict[str, Tuple[str, ...]] = {
    "Temescal": ("HEALTH", "EDUCATION", "COMMUNITY"),
    "Downtown": ("CIVIC", "INFRASTRUCTURE", "BUSINESS", "FESTIVAL"),
    "Fruitvale": ("COMMUNITY", "CULTURE", "SAFETY", "FESTIVAL"),
    "Lake Merritt": ("CULTURE", "COMMUNITY", "GENERAL", "FESTIVAL"),
    "West Oakland": ("INFRASTRUCTURE", "SAFETY", "BUSINESS", "COMMUNITY"),
    "Laurel": ("COMMUNITY", "CULTURE", "GENERAL"),
    "Rockridge": ("BUSINESS", "EDUCATION", "COMMUNITY"),
    "Jack London": ("BUSINESS", "NIGHTLIFE", "CULTURE", "SPORTS"),
    "Uptown": ("CULTURE", "NIGHTLIFE", "ARTS", "FESTIVAL"),
    "KONO": ("ARTS", "CULTURE", "NIGHTLIFE", "COMMUNITY"),
    "Chinatown": ("CULTURE", "COMMUNITY", "BUSINESS", "FESTIVAL"),
    "Piedmont Ave": ("BUSINESS", "COMMUNITY", "EDUCATION"),
}

PARADE_HOLIDAYS = ("Independence", "Thanksgiving", "MLKDay", "VeteransDay", "MemorialDay", "StPatricksDay")
PEACEFUL_HOLIDAYS = ("Thanksgiving", "Holiday", "MothersDay", "FathersDay", "Easter")
CROWD_HOLIDAYS = ("Independence", "NewYearsEve", "Halloween")
SHOPPING_HOLIDAYS = ("Holiday", "BlackFriday", "Thanksgiving")
TRAVEL_HOLIDAYS = ("Thanksgiving", "Holiday", "NewYear")

# Arc types that live off the calendar and are not worn down by passive decay.
DECAY_EXEMPT = ("festival", "celebration", "sports-fever")


@dataclass
class ArcTuning:
    """Named constants of the arc engine (overridable via [tuning.arcs])."""
    active_cap: int = 10
    min_tension: float = 0.0
    max_tension: float = 10.0
    initial_tension_low: float = 2.0
    initial_tension_high: float = 4.0
    interference_per_arc: float = 0.5
    passive_decay: float = 0.3
    fatigue_age: int = 10
    fatigue_step: float = 0.2
    fatigue_every: int = 5
    championship_intensify: float = 1.0
    rivalry_chance: float = 0.1

    # Phase bands
    rising_tension: float = 3.0
    rising_age: int = 2
    peak_tension: float = 6.0
    peak_age: int = 4
    falling_from_rising: float = 3.0
    falling_from_peak: float = 5.0
    falling_age: int = 7
    resolve_tension: float = 2.0
    resolve_age: int = 10
    lenient_tension: float = 1.0
    lenient_age: int = 5
    stale_age: int = 11

    # Forced resolution
    timeout_age: int = 12
    timeout_tension: float = 3.0


@dataclass
class ArcConditions:
    """
    The world metrics condition-based resolution looks at, gathered once
    per cycle after the civic, economy and drift stages have run.
    """
    illness_rate: float = 0.05
    employment_rate: float = 0.91
    migration: int = 0
    economic_mood: float = 50.0
    economy_label: str = "stable"
    city_drift: int = 0
    sentiment: float = 0.0
    weather_impact: float = 1.0
    chaos_count: int = 0


@dataclass
class Resolution:
    resolution_type: str
    reason: str


@dataclass
class PhaseChange:
    arc: Arc
    from_phase: str
    to_phase: str


@dataclass
class ArcCycleReport:
    created: List[Arc] = field(default_factory=list)
    phase_changes: List[PhaseChange] = field(default_factory=list)
    resolved: List[Arc] = field(default_factory=list)
    intensified: List[Arc] = field(default_factory=list)


# --- Domain helpers ---

def is_health(arc: Arc) -> bool:
    return arc.arc_type == "health-crisis" or arc.domain == "HEALTH"


def is_economic(arc: Arc) -> bool:
    return arc.arc_type in ("economic-crisis", "business-disruption") or arc.domain in ("ECONOMIC", "BUSINESS")


def is_demographic(arc: Arc) -> bool:
    return arc.arc_type in ("demographic", "instability") or arc.domain == "DEMOGRAPHIC"


def is_safety(arc: Arc) -> bool:
    return arc.arc_type in ("pattern-wave", "safety-concern") or arc.domain == "SAFETY"


def is_infrastructure(arc: Arc) -> bool:
    return arc.arc_type == "infrastructure" or arc.domain == "INFRASTRUCTURE"


def pick_district_for_domain(domain: str, rng: RandomSource) -> str:
    """Random district among those with an affinity for the domain, else any district."""
    matches = [d for d, domains in DISTRICT_AFFINITIES.items() if domain in domains]
    return rng.pick(matches or list(DISTRICT_AFFINITIES))


# --- Interventions ---

def find_arc(arcs: Sequence[Arc], arc_id: str) -> Optional[Arc]:
    for arc in arcs:
        if arc.arc_id == arc_id:
            return arc
    return None


def resolve_arc(arc: Arc, cycle: int, resolution_type: str, reason: str):
    arc.prev_phase = arc.phase
    arc.phase = "resolved"
    arc.phase_change_cycle = cycle
    arc.cycle_resolved = cycle
    arc.resolution_type = resolution_type
    arc.resolution_reason = reason


def apply_interventions(arcs: List[Arc], actions: Sequence[GameAction], cycle: int,
                        tuning: ArcTuning = ArcTuning()) -> List[Arc]:
    """
    Applies operator overrides before the lifecycle step.
    Resolved arcs are never touched again. Returns the arcs force-resolved.
    """
    resolved: List[Arc] = []
    for action in actions:
        if not isinstance(action, (ActionHoldArc, ActionReleaseArc, ActionForceResolveArc, ActionEscalateArc)):
            continue

        arc = find_arc(arcs, action.arc_id)
        if arc is None:
            logger.warning("[Arcs] %s ignored: unknown arc '%s'", type(action).__name__, action.arc_id)
            continue
        if arc.is_resolved:
            logger.warning("[Arcs] %s ignored: arc '%s' is already resolved", type(action).__name__, arc.arc_id)
            continue

        if isinstance(action, ActionHoldArc):
            arc.hold = True
            logger.info("[Arcs] Hold placed on %s by %s", arc.arc_id, action.player_id)
        elif isinstance(action, ActionReleaseArc):
            arc.hold = False
            logger.info("[Arcs] Hold released on %s by %s", arc.arc_id, action.player_id)
        elif isinstance(action, ActionForceResolveArc):
            resolve_arc(arc, cycle, "resolved-intervention", action.reason)
            resolved.append(arc)
            logger.info("[Arcs] Force resolved %s (%s)", arc.arc_id, action.reason)
        elif isinstance(action, ActionEscalateArc):
            arc.tension = round_to(clamp(arc.tension + action.amount, tuning.min_tension, tuning.max_tension), 2)
            logger.info("[Arcs] Escalated %s to tension %.2f", arc.arc_id, arc.tension)

    return resolved


# --- Condition-Based Resolution ---

def check_condition_resolution(arc: Arc, world: ArcConditions, env: CityEnvironment,
                               tuning: ArcTuning = ArcTuning()) -> Optional[Resolution]:
    """
    Resolves an arc once the real-world metric behind its domain has
    recovered. Checked before the tension step. The first matching rule wins.
    """
    age = arc.age
    tension = arc.tension

    if is_health(arc):
        if world.illness_rate < 0.05:
            return Resolution("resolved-condition", f"illness rate dropped to {world.illness_rate:.3f}")
        if age >= 4 and world.illness_rate < 0.06 and tension < 4:
            return Resolution("resolved-condition", "health conditions stabilized")
        if env.season.lower() == "spring" and arc.season_context.lower() == "winter" and age >= 3:
            return Resolution("resolved-calendar", "seasonal transition ended winter health concerns")

    if is_economic(arc):
        if world.economic_mood > 55:
            return Resolution("resolved-condition", f"economic mood recovered to {world.economic_mood:.1f}")
        if env.sports_season == "championship" and age >= 2 and tension < 5:
            return Resolution("resolved-calendar", "championship economic boost")
        if env.holiday in SHOPPING_HOLIDAYS and age >= 2 and tension < 5:
            return Resolution("resolved-calendar", "holiday shopping boost")
        if world.employment_rate > 0.92 and age >= 3:
            return Resolution("resolved-condition", "employment rate recovered")

    if is_demographic(arc) and age >= 2:
        if abs(world.migration) < 80:
            return Resolution("resolved-condition", f"migration stabilized at {world.migration}")
        if arc.holiday_context in TRAVEL_HOLIDAYS and env.holiday not in TRAVEL_HOLIDAYS:
            return Resolution("resolved-calendar", "holiday travel period ended")

    if is_safety(arc):
        if world.sentiment > -0.15:
            return Resolution("resolved-condition", f"community sentiment improved to {world.sentiment:.2f}")
        if env.is_first_friday and age >= 3 and tension < 4:
            return Resolution("resolved-calendar", "community engagement improved situation")
        if env.is_creation_day and age >= 2 and tension < 5:
            return Resolution("resolved-calendar", "Creation Day brought community peace")

    if is_infrastructure(arc):
        if world.weather_impact < 1.1 and age >= 2:
            return Resolution("resolved-condition", "weather conditions normalized")

    if arc.arc_type == "crisis":
        if world.chaos_count < 2 and age >= 4 and tension < 3:
            return Resolution("resolved-condition", "city calm allowed resolution")

    if age >= tuning.timeout_age and tension < tuning.timeout_tension:
        return Resolution("resolved-timeout", "arc exceeded maximum duration")

    return None


# --- Tension Step ---

def _type_adjustment(arc: Arc, env: CityEnvironment, world: ArcConditions) -> float:
    t = 0.0
    kind = arc.arc_type
    holiday = env.holiday

    if kind == "crisis":
        if env.has_shock:
            t += 1
        elif env.cycle_weight != "high-signal":
            t -= 0.5
    elif kind == "pattern-wave":
        # Slow burn
        t += 0.25
    elif kind == "instability":
        if world.city_drift < -30:
            t += 1
        elif world.city_drift < -15:
            t += 0.5
        elif world.city_drift > 20:
            t += 0.5
    elif kind == "health-crisis":
        if world.illness_rate > 0.08:
            t += 1
        elif world.illness_rate > 0.06:
            t += 0.5
        else:
            t -= 0.3
    elif kind == "infrastructure":
        if env.weather_impact >= 1.4:
            t += 1
        elif env.weather_impact >= 1.2:
            t += 0.5
    elif kind == "community":
        if env.sentiment >= 0.3:
            t += 0.5
        elif env.sentiment <= -0.3:
            t -= 0.3
    elif kind == "cultural-moment":
        if env.domain_count("CULTURE") >= 2:
            t += 0.5
        if env.is_first_friday:
            t += 1
    elif kind == "safety-concern":
        t += 0.5 if env.domain_count("SAFETY") >= 2 else -0.2
    elif kind == "business-disruption":
        if env.retail >= 1.2:
            t += 0.3
        if world.economy_label == "weak":
            t += 0.5
    elif kind == "rivalry":
        if env.civic_load == "load-strain":
            t += 1
        elif env.civic_load == "minor-variance":
            t += 0.3
    elif kind == "festival":
        if holiday != "none" and env.holiday_priority == "oakland":
            t += 1
        elif holiday != "none":
            t += 0.5
        else:
            t -= 0.5
    elif kind == "celebration":
        if env.holiday_priority == "major":
            t += 1
        elif holiday != "none":
            t += 0.3
        else:
            t -= 0.4
    elif kind == "sports-fever":
        t += {"championship": 1.5, "playoffs": 1.0, "late-season": 0.5}.get(env.sports_season, -0.5)
    elif kind == "parade":
        t += 0.5 if holiday != "none" else -1
    elif kind == "arts-walk":
        t += 2 if env.is_first_friday else -0.5
    elif kind == "heritage":
        t += 2 if env.is_creation_day else -0.3

    # Metric pressure on domain-tagged arcs
    if is_economic(arc):
        if world.economic_mood < 35:
            t += 0.3
        elif world.economic_mood > 55:
            t -= 0.4
    if is_safety(arc):
        if world.sentiment < -0.4:
            t += 0.3
        elif world.sentiment > -0.1:
            t -= 0.3

    return t


def _calendar_adjustment(arc: Arc, env: CityEnvironment) -> float:
    t = 0.0
    if env.holiday in PEACEFUL_HOLIDAYS:
        t -= 0.3
    if env.is_first_friday:
        t -= 0.2
    if env.is_creation_day:
        t -= 0.4
    if env.holiday in CROWD_HOLIDAYS and is_safety(arc):
        t += 0.4
    if env.sports_season == "championship" and is_economic(arc):
        t -= 0.5
    return t


def district_arc_counts(arcs: Sequence[Arc]) -> Dict[str, int]:
    """Active arcs per district; city-wide arcs are not counted."""
    counts: Dict[str, int] = {}
    for arc in arcs:
        if arc.is_resolved or not arc.district:
            continue
        counts[arc.district] = counts.get(arc.district, 0) + 1
    return counts


def tension_delta(arc: Arc, env: CityEnvironment, world: ArcConditions, co_located: int,
                  tuning: ArcTuning = ArcTuning()) -> float:
    """Sum of every tension adjustment for one arc this cycle (before clamping)."""
    t = 0.0

    # 1. Overall signal strength of the cycle
    if env.cycle_weight == "high-signal":
        t += 1
    elif env.cycle_weight == "medium-signal":
        t += 0.5
    if env.has_shock:
        t += 2

    # 2. Arc type and domain metrics
    t += _type_adjustment(arc, env, world)

    # 3. Calendar
    t += _calendar_adjustment(arc, env)

    # 4. Cross-arc interference
    if arc.district and co_located > 1:
        t += tuning.interference_per_arc * (co_located - 1)

    # 5. Passive decay (quiet cycles only)
    if arc.arc_type not in DECAY_EXEMPT and env.cycle_weight != "high-signal" and not env.has_shock:
        t -= tuning.passive_decay

    # 6. Fatigue
    if arc.age > tuning.fatigue_age:
        t -= tuning.fatigue_step * ((arc.age - tuning.fatigue_age) // tuning.fatigue_every)

    return t


def determine_phase(arc: Arc, tuning: ArcTuning = ArcTuning()) -> str:
    """
    Next phase from age and tension. Phases only move forward; a resolved
    arc stays resolved.
    """
    phase = arc.phase or "early"
    age, tension = arc.age, arc.tension

    if phase == "resolved":
        return phase
    if age >= tuning.stale_age and tension < tuning.resolve_tension:
        return "resolved"
    if tension < tuning.lenient_tension and age >= tuning.lenient_age:
        return "resolved"

    if phase == "early":
        if age >= tuning.rising_age and tension >= tuning.rising_tension:
            return "rising"
    elif phase == "rising":
        if age >= tuning.peak_age and tension >= tuning.peak_tension:
            return "peak"
        if tension < tuning.falling_from_rising:
            return "falling"
    elif phase == "peak":
        if age >= tuning.falling_age or tension < tuning.falling_from_peak:
            return "falling"
    elif phase == "falling":
        if age >= tuning.resolve_age or tension < tuning.resolve_tension:
            return "resolved"

    return phase


def step_arcs(arcs: List[Arc], env: CityEnvironment, world: ArcConditions, cycle: int,
              tuning: ArcTuning = ArcTuning(), report: Optional[ArcCycleReport] = None) -> ArcCycleReport:
    """
    Ages, retensions and re-phases every active arc.

    Architecture Note:
        Runs in two passes. The first ages every arc and applies
        condition-based resolution; interference is then counted over the
        arcs still open, once, so an arc closed by its condition never
        crowds its neighbours and the order of the ledger rows never
        changes the outcome.
    """
    report = report or ArcCycleReport()
    moving: List[Arc] = []

    for arc in arcs:
        if arc.is_resolved:
            continue
        if arc.hold:
            logger.debug("[Arcs] %s is on hold; skipping", arc.arc_id)
            continue

        # 1. Age
        arc.age += 1

        # 2. Condition-based resolution
        resolution = check_condition_resolution(arc, world, env, tuning)
        if resolution:
            resolve_arc(arc, cycle, resolution.resolution_type, resolution.reason)
            report.resolved.append(arc)
            logger.info("[Arcs] %s resolved: %s", arc.arc_id, resolution.reason)
            continue
        moving.append(arc)

    counts = district_arc_counts(arcs)

    for arc in moving:
        # 3. Tension
        delta = tension_delta(arc, env, world, counts.get(arc.district, 0), tuning)
        arc.tension = round_to(clamp(arc.tension + delta, tuning.min_tension, tuning.max_tension), 2)

        # 4. Phase
        previous = arc.phase
        new_phase = determine_phase(arc, tuning)
        if new_phase == previous:
            continue

        if new_phase == "resolved":
            resolve_arc(arc, cycle, "resolved-natural", "arc ran its course")
            report.resolved.append(arc)
        else:
            arc.prev_phase = previous
            arc.phase = new_phase
            arc.phase_change_cycle = cycle
        report.phase_changes.append(PhaseChange(arc, previous, new_phase))
        logger.debug("[Arcs] %s phase: %s -> %s (tension %.2f)", arc.arc_id, previous, new_phase, arc.tension)

    return report


# --- Generation ---

@dataclass(frozen=True)
class ArcTrigger:
    arc_type: str
    domain: str
    summary: str
    when: Callable[[CityEnvironment, ArcConditions], bool]
    # Fixed district, a tuple of candidates to pick from, or '' for city-wide.
    district: object = ""
    # Deduplicate against any district ('any') or only the chosen one.
    dedup: str = "district"
    # Name of an ArcTuning probability gating the trigger, drawn only when the predicate holds.
    chance: str = ""


def _holiday(*names: str) -> Callable[[CityEnvironment, ArcConditions], bool]:
    return lambda env, _w: env.holiday in names


ARC_TRIGGERS: Tuple[ArcTrigger, ...] = (
    # Calendar-driven
    ArcTrigger("festival", "FESTIVAL", "Pride crowds filling the streets around the lake and downtown.",
               _holiday("OaklandPride"), ("Downtown", "Lake Merritt"), dedup="any"),
    ArcTrigger("festival", "FESTIVAL", "Art & Soul drawing visitors from across the city.",
               _holiday("ArtSoulFestival"), "Downtown"),
    ArcTrigger("festival", "FESTIVAL", "Lunar New Year festivities packing Chinatown.",
               _holiday("LunarNewYear"), "Chinatown"),
    ArcTrigger("festival", "FESTIVAL", "Fruitvale celebrations bringing the neighborhood outdoors.",
               _holiday("CincoDeMayo", "DiaDeMuertos"), "Fruitvale"),
    ArcTrigger("festival", "COMMUNITY", "Juneteenth gatherings honoring freedom and heritage.",
               _holiday("Juneteenth"), "West Oakland"),
    ArcTrigger("celebration", "FESTIVAL", "Countdown energy building downtown.",
               _holiday("NewYearsEve"), "Downtown"),
    ArcTrigger("celebration", "COMMUNITY", "Holiday spirit spreading between neighborhoods.",
               lambda env, _w: env.holiday_priority == "major" and env.holiday != "NewYearsEve",
               "Downtown", dedup="any"),
    ArcTrigger("parade", "CIVIC", "Parade route crowds changing the rhythm of downtown.",
               _holiday(*PARADE_HOLIDAYS), "Downtown", dedup="any"),
    ArcTrigger("sports-fever", "SPORTS", "Opening Day fans heading for the waterfront.",
               _holiday("OpeningDay"), "Jack London"),
    ArcTrigger("sports-fever", "SPORTS", "Playoff nerves spreading from the stadium to the bars.",
               lambda env, _w: env.sports_season == "playoffs", "Jack London"),
    ArcTrigger("sports-fever", "SPORTS", "Championship fever gripping the city.",
               lambda env, _w: env.sports_season == "championship", "Jack London", dedup="any"),
    ArcTrigger("arts-walk", "ARTS", "First Friday gallery crawl drawing a crowd.",
               lambda env, _w: env.is_first_friday, ("Uptown", "KONO"), dedup="any"),
    ArcTrigger("heritage", "CIVIC", "Creation Day events marking the city's founding.",
               lambda env, _w: env.is_creation_day, "Downtown"),

    # Signal-driven
    ArcTrigger("crisis", "CIVIC", "An unexpected disruption puts pressure on city hall.",
               lambda env, _w: env.has_shock, "Downtown"),
    ArcTrigger("instability", "COMMUNITY", "Residents describe day-to-day life as unsettled.",
               lambda env, _w: env.cycle_weight == "high-signal", ("Fruitvale", "West Oakland"), dedup="any"),
    ArcTrigger("pattern-wave", "GENERAL", "Small incidents repeating across the district.",
               lambda env, _w: env.pattern_flag == "micro-event-wave", "Laurel"),
    ArcTrigger("strain", "CIVIC", "Accumulated strain wearing on city services.",
               lambda env, _w: env.pattern_flag == "strain-trend", "Downtown"),
    ArcTrigger("health-crisis", "HEALTH", "Health indicators raising concern.",
               lambda _e, w: w.illness_rate > 0.07, "Temescal"),
    ArcTrigger("infrastructure", "INFRASTRUCTURE", "Severe weather stressing city systems.",
               lambda env, _w: env.weather_impact >= 1.4, "West Oakland"),
    ArcTrigger("community", "COMMUNITY", "Good mood bringing neighbors together.",
               lambda env, _w: env.sentiment >= 0.3, "Lake Merritt"),
    ArcTrigger("safety-concern", "SAFETY", "Safety incidents drawing neighborhood attention.",
               lambda env, _w: env.domain_count("SAFETY") >= 2, "Fruitvale"),
    ArcTrigger("cultural-moment", "CULTURE", "Cultural activity catching the city's attention.",
               lambda env, _w: env.domain_count("CULTURE") >= 2, None, dedup="any"),
    ArcTrigger("business-disruption", "BUSINESS", "Business changes rippling through local shops.",
               lambda env, _w: env.domain_count("BUSINESS") >= 2, "Rockridge"),
    ArcTrigger("education-wave", "EDUCATION", "School news drawing parents' attention.",
               lambda env, _w: env.domain_count("EDUCATION") >= 2, "Temescal"),
    ArcTrigger("nightlife-surge", "NIGHTLIFE", "Evening crowds surging in the district.",
               lambda env, _w: env.nightlife >= 1.3, None, dedup="any"),
    ArcTrigger("rivalry", "GENERAL", "Competing interests sparking public friction.",
               lambda env, _w: env.cycle_weight == "high-signal", "", dedup="any", chance="rivalry_chance"),
)


def has_active_arc(arcs: Sequence[Arc], arc_type: str, district: str = "") -> bool:
    """An empty district matches an active arc of the type in any district."""
    return any(
        a.arc_type == arc_type and not a.is_resolved and (district == "" or a.district == district)
        for a in arcs
    )


def active_arc_count(arcs: Sequence[Arc]) -> int:
    return sum(1 for a in arcs if not a.is_resolved)


def _choose_district(trigger: ArcTrigger, env: CityEnvironment, rng: RandomSource) -> str:
    if trigger.arc_type == "cultural-moment":
        return "Uptown" if env.is_first_friday else "Jack London"
    if trigger.arc_type == "nightlife-surge":
        return "Jack London" if rng.random() < 0.6 else "Uptown"
    if isinstance(trigger.district, tuple):
        return rng.pick(trigger.district)
    if trigger.district is None:
        return pick_district_for_domain(trigger.domain, rng)
    return trigger.district


def make_arc(arc_type: str, district: str, domain: str, summary: str, env: CityEnvironment,
             cycle: int, rng: RandomSource, existing_ids: Sequence[str], tuning: ArcTuning = ArcTuning()) -> Arc:
    arc_id = rng.token(8)
    while arc_id in existing_ids:
        arc_id = rng.token(8)

    return Arc(
        arc_id=arc_id,
        arc_type=arc_type,
        phase="early",
        tension=round_to(rng.uniform(tuning.initial_tension_low, tuning.initial_tension_high), 2),
        district=district,
        domain=domain or "GENERAL",
        summary=summary,
        age=0,
        cycle_created=cycle,
        calendar_trigger=env.calendar_trigger,
        season_context=env.season,
        holiday_context=env.holiday if env.holiday != "none" else "",
    )


def generate_arcs(arcs: List[Arc], env: CityEnvironment, world: ArcConditions, cycle: int, rng: RandomSource,
                  tuning: ArcTuning = ArcTuning(), report: Optional[ArcCycleReport] = None) -> ArcCycleReport:
    """
    Evaluates the trigger list in order and appends the new arcs.

    Each trigger checks the active cap right before creating, so a busy
    cycle fills up to the cap and stops. A championship intensifies an
    existing sports-fever arc instead of opening a second one.
    """
    report = report or ArcCycleReport()
    existing_ids = {a.arc_id for a in arcs}

    for trigger in ARC_TRIGGERS:
        if not trigger.when(env, world):
            continue

        if trigger.arc_type == "sports-fever" and env.sports_season == "championship":
            current = next((a for a in arcs if a.arc_type == "sports-fever" and not a.is_resolved), None)
            if current is not None:
                if current not in report.intensified:
                    current.tension = round_to(
                        clamp(current.tension + tuning.championship_intensify, tuning.min_tension, tuning.max_tension), 2)
                    report.intensified.append(current)
                continue

        if trigger.chance and not rng.chance(getattr(tuning, trigger.chance)):
            continue

        if trigger.dedup == "any" and has_active_arc(arcs, trigger.arc_type):
            continue
        # Fixed districts are deduplicated before any random draw.
        if isinstance(trigger.district, str) and trigger.district and has_active_arc(arcs, trigger.arc_type, trigger.district):
            continue

        if active_arc_count(arcs) >= tuning.active_cap:
            logger.info("[Arcs] Active cap (%d) reached; skipping remaining triggers", tuning.active_cap)
            break

        district = _choose_district(trigger, env, rng)
        if district and has_active_arc(arcs, trigger.arc_type, district):
            continue

        arc = make_arc(trigger.arc_type, district, trigger.domain, trigger.summary, env, cycle, rng, existing_ids, tuning)
        existing_ids.add(arc.arc_id)
        arcs.append(arc)
        report.created.append(arc)
        logger.info("[Arcs] New %s arc %s in %s (tension %.2f)",
                    arc.arc_type, arc.arc_id, arc.district or "city-wide", arc.tension)

    return report


# --- Resolution Seeds ---

_RESOLUTION_TEMPLATES: Dict[str, Dict[str, Tuple[str, ...]]] = {
    "health": {
        "resolved-condition": (
            "Health officials lift the {district} advisory: {reason}",
            "{district} health picture improves as {reason}",
        ),
        "resolved-calendar": (
            "The change of season eases {district} health worries: {reason}",
        ),
        "default": (
            "{district} health situation shows steady improvement",
        ),
    },
    "economic": {
        "resolved-condition": (
            "{district} businesses report better days: {reason}",
            "Economic outlook brightens in {district}",
        ),
        "resolved-calendar": (
            "{district} economy gets a lift from the {reason}",
        ),
        "default": (
            "Economic conditions in {district} settle down",
        ),
    },
    "safety": {
        "resolved-condition": (
            "Tension eases in {district}: {reason}",
            "{district} returns to calm",
        ),
        "resolved-calendar": (
            "{district} finds its footing again: {reason}",
        ),
        "default": (
            "The run of incidents in {district} appears to be over",
        ),
    },
    "demographic": {
        "resolved-condition": (
            "Population shifts in {district} level off: {reason}",
        ),
        "resolved-calendar": (
            "Movement in and out of {district} settles after the {reason}",
        ),
        "default": (
            "{district} reaches a new population balance",
        ),
    },
    "general": {
        "resolved-intervention": (
            "Situation in {district} closed out: {reason}",
        ),
        "default": (
            "The situation in {district} winds down as conditions stabilize",
            "{district} moves on as the story runs its course",
        ),
    },
}


def _template_family(arc: Arc) -> str:
    if is_health(arc):
        return "health"
    if is_economic(arc):
        return "economic"
    if is_safety(arc):
        return "safety"
    if is_demographic(arc):
        return "demographic"
    return "general"


def resolution_seed(arc: Arc, rng: RandomSource) -> Dict[str, object]:
    """The narrative hook handed downstream when an arc closes."""
    family = _RESOLUTION_TEMPLATES[_template_family(arc)]
    options = family.get(arc.resolution_type) or family["default"]
    text = rng.pick(options).format(district=arc.district or "the city", reason=arc.resolution_reason)
    return {
        "type": "arc-resolution",
        "domain": arc.domain or "GENERAL",
        "neighborhood": arc.district,
        "text": text,
        "priority": "high",
        "linked_arc": arc.arc_id,
        "resolution_type": arc.resolution_type,
        "resolution_reason": arc.resolution_reason,
    }
