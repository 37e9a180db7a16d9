import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from citysim.engine.mechanics.numeric import clamp, round_to
from citysim.engine.random_source import RandomSource
from citysim.shared.environment import CityEnvironment
from citysim.shared.records import DistrictEconomy, EconomicRipple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RippleTrigger:
    impact: float
    duration: int
    sectors: Tuple[str, ...]
    # Candidate districts, or ("all",) for city-wide impulses.
    districts: Tuple[str, ...]


TRIGGERS: Dict[str, RippleTrigger] = {
    # Positive
    "TECH_INVESTMENT": RippleTrigger(15, 8, ("tech", "retail"), ("Downtown", "Jack London")),
    "SPORTS_CHAMPIONSHIP": RippleTrigger(10, 4, ("entertainment", "food", "retail"), ("Downtown", "Jack London")),
    "NEW_BUSINESS": RippleTrigger(5, 6, ("retail", "services"), ("Rockridge", "Temescal", "Laurel")),
    "CONSTRUCTION_BOOM": RippleTrigger(12, 10, ("construction", "retail", "housing"), ("West Oakland", "Downtown")),
    "TOURISM_SPIKE": RippleTrigger(8, 3, ("food", "entertainment", "retail"), ("Jack London", "Lake Merritt")),
    "CULTURAL_EVENT": RippleTrigger(6, 3, ("entertainment", "food"), ("Jack London", "Fruitvale", "Lake Merritt")),
    # Negative
    "FACTORY_CLOSURE": RippleTrigger(-20, 12, ("manufacturing", "retail"), ("West Oakland",)),
    "CRIME_SPIKE": RippleTrigger(-8, 4, ("retail", "entertainment", "tourism"), ("Downtown", "Fruitvale")),
    "NATURAL_DISASTER": RippleTrigger(-25, 8, ("all",), ("all",)),
    "MAJOR_LAYOFFS": RippleTrigger(-15, 10, ("tech", "services", "retail"), ("Downtown", "Rockridge")),
    "INFRASTRUCTURE_FAILURE": RippleTrigger(-10, 6, ("transit", "retail"), ("West Oakland", "Downtown")),
    "HEALTH_CRISIS": RippleTrigger(-12, 8, ("healthcare", "retail", "food"), ("Temescal", "Fruitvale")),
    # Calendar
    "HOLIDAY_SHOPPING": RippleTrigger(18, 4, ("retail", "food", "services"), ("all",)),
    "FESTIVAL_TOURISM": RippleTrigger(12, 2, ("entertainment", "food", "retail", "tourism"), ("Downtown", "Jack London")),
    "PLAYOFF_SPENDING": RippleTrigger(8, 3, ("entertainment", "food", "retail"), ("Jack London", "Downtown")),
    "CHAMPIONSHIP_BOOM": RippleTrigger(15, 3, ("entertainment", "food", "retail", "merchandise"), ("Jack London", "Downtown")),
    "ARTS_DISTRICT_BOOST": RippleTrigger(6, 1, ("arts", "entertainment", "food"), ("Temescal", "Jack London")),
    "LOCAL_PRIDE_BOOST": RippleTrigger(5, 2, ("retail", "food", "local"), ("all",)),
    "SUMMER_TOURISM": RippleTrigger(7, 8, ("tourism", "entertainment", "food"), ("Jack London", "Lake Merritt")),
    # Districts come from the holiday's zone list at creation time.
    "CULTURAL_CELEBRATION": RippleTrigger(10, 2, ("food", "retail", "entertainment"), ()),
    "WINTER_DOLDRUMS": RippleTrigger(-4, 6, ("retail", "entertainment"), ("all",)),
    # Population drift and workforce
    "POPULATION_SURGE": RippleTrigger(8, 4, ("housing", "retail", "services"), ("all",)),
    "POPULATION_EXODUS": RippleTrigger(-10, 5, ("retail", "services", "housing"), ("all",)),
    "WORKFORCE_GROWTH": RippleTrigger(6, 3, ("business", "services"), ("Downtown", "Rockridge")),
    "WORKFORCE_DECLINE": RippleTrigger(-8, 4, ("business", "services"), ("Downtown", "West Oakland")),
}

# District -> (sensitivity, primary sectors)
DISTRICT_PROFILES: Dict[str, Tuple[float, Tuple[str, ...]]] = {
    "Downtown": (1.2, ("business", "civic", "retail")),
    "Jack London": (1.1, ("entertainment", "food", "nightlife")),
    "Rockridge": (0.9, ("retail", "services", "food")),
    "Temescal": (0.8, ("healthcare", "education", "retail", "arts")),
    "Fruitvale": (1.0, ("retail", "food", "community")),
    "Lake Merritt": (0.9, ("entertainment", "tourism", "food")),
    "West Oakland": (1.3, ("manufacturing", "transit", "construction")),
    "Laurel": (0.8, ("retail", "services", "community")),
    "Chinatown": (1.0, ("retail", "food", "community")),
    "Grand Lake": (0.9, ("entertainment", "retail", "food")),
}

HOLIDAY_ZONES: Dict[str, List[str]] = {
    "OaklandPride": ["Downtown", "Lake Merritt", "Grand Lake", "Jack London"],
    "ArtSoulFestival": ["Downtown", "Jack London"],
    "LunarNewYear": ["Chinatown", "Downtown"],
    "CincoDeMayo": ["Fruitvale"],
    "DiaDeMuertos": ["Fruitvale"],
    "Juneteenth": ["West Oakland", "Downtown"],
}

SHOPPING_HOLIDAYS = ("Thanksgiving", "Holiday", "BlackFriday")
FESTIVAL_HOLIDAYS = ("OaklandPride", "ArtSoulFestival", "Independence")
CULTURAL_HOLIDAYS = ("LunarNewYear", "CincoDeMayo", "DiaDeMuertos", "Juneteenth")

# First matching keyword group wins for each event.
KEYWORD_TRIGGERS: List[Tuple[Tuple[str, ...], str]] = [
    (("investment", "funding"), "TECH_INVESTMENT"),
    (("championship", "victory"), "SPORTS_CHAMPIONSHIP"),
    (("new store", "grand opening"), "NEW_BUSINESS"),
    (("construction", "development"), "CONSTRUCTION_BOOM"),
    (("layoff", "job cuts"), "MAJOR_LAYOFFS"),
    (("closure", "shut down"), "FACTORY_CLOSURE"),
    (("crime", "robbery"), "CRIME_SPIKE"),
    (("festival", "cultural"), "CULTURAL_EVENT"),
    (("infrastructure", "power outage"), "INFRASTRUCTURE_FAILURE"),
]

NARRATIVES: Dict[str, str] = {
    "TECH_INVESTMENT": "Tech money keeps the downtown economy humming.",
    "SPORTS_CHAMPIONSHIP": "Championship fever keeps registers ringing.",
    "NEW_BUSINESS": "New storefronts signal growing confidence.",
    "CONSTRUCTION_BOOM": "Cranes over the skyline point to a building boom.",
    "TOURISM_SPIKE": "A wave of visitors lifts local merchants.",
    "CULTURAL_EVENT": "Cultural programming draws crowds and spending.",
    "FACTORY_CLOSURE": "Anxiety lingers after the closure.",
    "CRIME_SPIKE": "Shop owners worry out loud about crime.",
    "NATURAL_DISASTER": "Recovery work dominates the local economy.",
    "MAJOR_LAYOFFS": "Job-market jitters weigh on confidence.",
    "INFRASTRUCTURE_FAILURE": "Infrastructure trouble slows commerce.",
    "HEALTH_CRISIS": "Health worries keep shoppers at home.",
    "HOLIDAY_SHOPPING": "Holiday shopping drives a retail surge.",
    "FESTIVAL_TOURISM": "Festival crowds fill hotels and restaurants.",
    "PLAYOFF_SPENDING": "Playoff nights pack the sports bars.",
    "CHAMPIONSHIP_BOOM": "The championship run pushes spending to new highs.",
    "ARTS_DISTRICT_BOOST": "First Friday brings crowds to the arts district.",
    "LOCAL_PRIDE_BOOST": "Civic pride sends residents to local shops.",
    "SUMMER_TOURISM": "Summer visitors keep hospitality busy.",
    "CULTURAL_CELEBRATION": "A cultural celebration lights up the neighborhood.",
    "WINTER_DOLDRUMS": "The post-holiday lull hits retail.",
    "POPULATION_SURGE": "New arrivals lift housing and retail.",
    "POPULATION_EXODUS": "Departures leave local businesses thinner.",
    "WORKFORCE_GROWTH": "A growing workforce expands business activity.",
    "WORKFORCE_DECLINE": "A shrinking workforce clouds the business climate.",
}


@dataclass
class RippleTuning:
    """Named constants of the propagation engine (overridable via [tuning.ripples])."""
    mood_ripple_weight: float = 0.1
    neutral_mood: float = 50.0
    neutral_pull: float = 0.5
    district_ripple_weight: float = 0.1
    primary_district_boost: float = 1.5
    holiday_zone_bonus: float = 5.0
    first_friday_bonus: float = 3.0
    championship_zone_bonus: float = 8.0
    playoff_zone_bonus: float = 5.0
    layoff_threshold: int = 3
    promotion_threshold: int = 4
    sector_shift_threshold: int = 3
    surge_drift: int = 30
    growth_drift: int = 20
    oakland_holiday_multiplier: float = 1.3
    major_holiday_multiplier: float = 1.2
    championship_sports_multiplier: float = 1.5
    employment_base: float = 0.82
    employment_span: float = 0.14
    employment_min: float = 0.80
    employment_max: float = 0.97
    # Trigger name -> replacement impact magnitude
    impact_overrides: Dict[str, float] = field(default_factory=dict)


@dataclass
class RippleContext:
    """Everything one cycle of ripple detection needs besides the ripple list."""
    cycle: int
    env: CityEnvironment
    rng: RandomSource
    tuning: RippleTuning
    created: List[EconomicRipple] = field(default_factory=list)


def create_ripple(ripples: List[EconomicRipple], trigger_type: str, ctx: RippleContext,
                  source: Optional[Dict[str, Any]] = None, district: str = "") -> Optional[EconomicRipple]:
    """
    Appends a new ripple to the active list.

    Ids are '<TRIGGER>_<cycle>', so the same trigger can only fire once per
    cycle; a duplicate request returns None instead of raising.
    """
    trigger = TRIGGERS.get(trigger_type)
    if trigger is None:
        logger.warning("[Ripples] Unknown trigger '%s'", trigger_type)
        return None

    ripple_id = f"{trigger_type}_{ctx.cycle}"
    if any(r.ripple_id == ripple_id for r in ripples):
        return None

    env = ctx.env
    tuning = ctx.tuning
    primary = district
    if not primary and trigger.districts and trigger.districts[0] != "all":
        primary = ctx.rng.pick(trigger.districts)

    impact = float(tuning.impact_overrides.get(trigger_type, trigger.impact))
    if env.holiday != "none" and impact > 0:
        if env.holiday_priority == "oakland":
            impact *= tuning.oakland_holiday_multiplier
        elif env.holiday_priority == "major":
            impact *= tuning.major_holiday_multiplier
    if env.sports_season == "championship" and "SPORTS" in trigger_type:
        impact *= tuning.championship_sports_multiplier
    impact = round_to(impact, 2)

    label = "System"
    if source:
        label = source.get("headline") or source.get("description") or "System"

    ripple = EconomicRipple(
        ripple_id=ripple_id,
        trigger=trigger_type,
        impact=impact,
        sectors=list(trigger.sectors),
        districts=list(trigger.districts),
        primary_district=primary,
        start_cycle=ctx.cycle,
        end_cycle=ctx.cycle + trigger.duration,
        current_strength=impact,
        source=label,
        holiday=env.holiday,
        sports_season=env.sports_season,
        season=env.season,
    )
    ripples.append(ripple)
    ctx.created.append(ripple)
    return ripple


def _has_live(ripples: List[EconomicRipple], trigger_type: str, cycle: int) -> bool:
    return any(r.trigger == trigger_type and r.end_cycle > cycle for r in ripples)


def detect_migration_ripples(ripples: List[EconomicRipple], previous_drift: int, ctx: RippleContext):
    """Strong drift last cycle feeds back as a growth or decline shock."""
    t = ctx.tuning
    if previous_drift >= t.surge_drift:
        create_ripple(ripples, "POPULATION_SURGE", ctx, {"description": "Population influx boosting local economy"})
    elif previous_drift >= t.growth_drift:
        create_ripple(ripples, "WORKFORCE_GROWTH", ctx, {"description": "Growing workforce expanding business activity"}, "Downtown")

    if previous_drift <= -t.surge_drift:
        create_ripple(ripples, "POPULATION_EXODUS", ctx, {"description": "Population decline impacting local businesses"})
    elif previous_drift <= -t.growth_drift:
        create_ripple(ripples, "WORKFORCE_DECLINE", ctx, {"description": "Shrinking workforce affecting business climate"}, "Downtown")


def detect_career_ripples(ripples: List[EconomicRipple], ctx: RippleContext) -> bool:
    """
    Reads the career collaborator's counters. Returns the career-churn flag.
    """
    env, t = ctx.env, ctx.tuning
    if env.layoffs >= t.layoff_threshold:
        create_ripple(ripples, "MAJOR_LAYOFFS", ctx, {"description": "Multiple layoffs reported across industries"}, "Downtown")
    if env.promotions >= t.promotion_threshold:
        create_ripple(ripples, "WORKFORCE_GROWTH", ctx, {"description": "Career advancement activity signals strong job market"}, "Downtown")
    return env.sector_shifts >= t.sector_shift_threshold


def detect_calendar_ripples(ripples: List[EconomicRipple], ctx: RippleContext):
    env, cycle = ctx.env, ctx.cycle
    holiday = env.holiday

    if holiday in SHOPPING_HOLIDAYS:
        create_ripple(ripples, "HOLIDAY_SHOPPING", ctx, {"description": f"{holiday} shopping surge"})

    if env.month == 12 and holiday == "none" and not _has_live(ripples, "HOLIDAY_SHOPPING", cycle):
        create_ripple(ripples, "HOLIDAY_SHOPPING", ctx, {"description": "Holiday season shopping"})

    if holiday in FESTIVAL_HOLIDAYS:
        create_ripple(ripples, "FESTIVAL_TOURISM", ctx, {"description": f"{holiday} festival tourism"}, "Downtown")

    if env.holiday_priority == "oakland" and holiday not in FESTIVAL_HOLIDAYS:
        zones = HOLIDAY_ZONES.get(holiday, ["Downtown"])
        create_ripple(ripples, "FESTIVAL_TOURISM", ctx, {"description": f"{holiday} celebration tourism"}, zones[0])

    if holiday in CULTURAL_HOLIDAYS:
        zones = HOLIDAY_ZONES.get(holiday, ["Downtown"])
        ripple = create_ripple(ripples, "CULTURAL_CELEBRATION", ctx, {"description": f"{holiday} economic activity"}, zones[0])
        if ripple:
            ripple.districts = list(zones)

    if env.sports_season == "championship":
        create_ripple(ripples, "CHAMPIONSHIP_BOOM", ctx, {"description": "Championship economic surge"}, "Jack London")
    elif env.sports_season == "playoffs":
        create_ripple(ripples, "PLAYOFF_SPENDING", ctx, {"description": "Playoff game spending"}, "Jack London")

    if holiday == "OpeningDay":
        create_ripple(ripples, "SPORTS_CHAMPIONSHIP", ctx, {"description": "Opening Day economic boost"}, "Jack London")

    if env.is_first_friday:
        create_ripple(ripples, "ARTS_DISTRICT_BOOST", ctx, {"description": "First Friday arts district activity"}, "Temescal")

    if env.is_creation_day:
        create_ripple(ripples, "LOCAL_PRIDE_BOOST", ctx, {"description": "Creation Day local business support"})

    if env.season == "summer" and 6 <= env.month <= 8 and not _has_live(ripples, "SUMMER_TOURISM", cycle):
        create_ripple(ripples, "SUMMER_TOURISM", ctx, {"description": "Summer tourism season"}, "Jack London")

    if (env.season == "winter" and env.month in (1, 2) and holiday == "none"
            and not _has_live(ripples, "WINTER_DOLDRUMS", cycle)):
        create_ripple(ripples, "WINTER_DOLDRUMS", ctx, {"description": "Post-holiday spending slowdown"})


def _event_text(event: Dict[str, Any]) -> str:
    return str(event.get("headline") or event.get("description") or event.get("event") or "").lower()


def detect_event_ripples(ripples: List[EconomicRipple], ctx: RippleContext):
    """Keyword scan over the free-text world and citizen event feeds."""
    env = ctx.env
    for event in list(env.world_events) + list(env.citizen_events):
        text = _event_text(event)
        district = str(event.get("neighborhood") or "")
        for keywords, trigger_type in KEYWORD_TRIGGERS:
            if any(k in text for k in keywords):
                create_ripple(ripples, trigger_type, ctx, event, district)
                break

    if env.domain_count("BUSINESS") >= 3:
        create_ripple(ripples, "NEW_BUSINESS", ctx, {"description": "Business activity surge"})

    for crisis in env.crisis_spikes:
        severity = crisis.get("severity") or 0
        try:
            severity = float(severity)
        except (TypeError, ValueError):
            severity = 0.0
        if crisis.get("type") == "natural_disaster" or severity > 7:
            create_ripple(ripples, "NATURAL_DISASTER", ctx, crisis)

    if env.weather_impact >= 1.4:
        create_ripple(ripples, "INFRASTRUCTURE_FAILURE", ctx, {"description": "Severe weather disruption"}, "West Oakland")


def decay_ripples(ripples: List[EconomicRipple], cycle: int) -> List[EconomicRipple]:
    """
    Drops expired ripples and recomputes the strength of the rest.
    Strength falls linearly from `impact` at the start cycle towards 0.
    """
    active = []
    for ripple in ripples:
        if cycle >= ripple.end_cycle or ripple.duration <= 0:
            continue
        elapsed = max(0, cycle - ripple.start_cycle)
        ripple.current_strength = round_to(ripple.impact * (1 - elapsed / ripple.duration), 2)
        active.append(ripple)
    return active


def aggregate_mood(prior_mood: float, ripples: List[EconomicRipple], env: CityEnvironment,
                   previous_drift: int, tuning: RippleTuning) -> float:
    """
    City-wide economic mood for this cycle, clamped to [0, 100].
    """
    mood = prior_mood + sum(r.current_strength for r in ripples) * tuning.mood_ripple_weight

    # Pull toward neutral
    if mood > tuning.neutral_mood:
        mood -= tuning.neutral_pull
    elif mood < tuning.neutral_mood:
        mood += tuning.neutral_pull

    if env.retail >= 1.2:
        mood += 0.5
    if env.retail <= 0.8:
        mood -= 0.5

    if previous_drift >= 30:
        mood += 4
    elif previous_drift >= 15:
        mood += 2
    elif previous_drift <= -30:
        mood -= 5
    elif previous_drift <= -15:
        mood -= 2

    if env.holiday in SHOPPING_HOLIDAYS or env.month == 12:
        mood += 3
    if env.holiday_priority == "oakland":
        mood += 2
    if env.sports_season == "championship":
        mood += 4
    elif env.sports_season == "playoffs":
        mood += 2
    if env.is_first_friday:
        mood += 1
    if env.is_creation_day:
        mood += 1.5
    if env.season == "summer":
        mood += 1
    if env.month == 1 and env.holiday == "none":
        mood -= 2

    return round_to(clamp(mood, 0.0, 100.0), 2)


def mood_descriptor(mood: float) -> str:
    if mood >= 70:
        return "booming"
    if mood >= 55:
        return "optimistic"
    if mood >= 45:
        return "stable"
    if mood >= 30:
        return "uncertain"
    return "struggling"


def economy_label(mood: float) -> str:
    """The coarse label written back to the population sheet."""
    if mood >= 65:
        return "strong"
    if mood >= 45:
        return "stable"
    if mood >= 30:
        return "weak"
    return "unstable"


def district_descriptor(mood: float) -> str:
    if mood >= 65:
        return "thriving"
    if mood >= 55:
        return "growing"
    if mood >= 45:
        return "stable"
    if mood >= 35:
        return "sluggish"
    return "struggling"


def derive_employment(mood: float, previous_drift: int, tuning: RippleTuning) -> float:
    base = tuning.employment_base + (mood / 100) * tuning.employment_span

    # A surge of newcomers briefly raises unemployment; an exodus lowers it.
    adjust = 0.0
    if previous_drift >= 30:
        adjust = -0.01
    elif previous_drift >= 15:
        adjust = -0.005
    elif previous_drift <= -30:
        adjust = 0.01
    elif previous_drift <= -15:
        adjust = 0.005

    return round_to(clamp(base + adjust, tuning.employment_min, tuning.employment_max), 3)


def compute_district_economies(mood: float, ripples: List[EconomicRipple], env: CityEnvironment,
                               districts: List[str], tuning: RippleTuning) -> List[DistrictEconomy]:
    """
    Recomputes every district's local economy from scratch.

    `districts` extends the built-in profile list; districts without a
    profile get sensitivity 1.0 and no primary sectors.
    """
    names = list(DISTRICT_PROFILES)
    names.extend(d for d in districts if d and d not in DISTRICT_PROFILES)

    zones = HOLIDAY_ZONES.get(env.holiday, [])
    sports_live = env.sports_season in ("playoffs", "championship")
    economies = []

    for name in names:
        sensitivity, sectors = DISTRICT_PROFILES.get(name, (1.0, ()))
        local = mood
        count = 0

        for ripple in ripples:
            if not ripple.affects(name):
                continue
            effect = ripple.current_strength * sensitivity
            if ripple.primary_district == name:
                effect *= tuning.primary_district_boost
            local += effect * tuning.district_ripple_weight
            count += 1

        if name in zones:
            local += tuning.holiday_zone_bonus
            count += 1
        if env.is_first_friday and name in ("Temescal", "Jack London"):
            local += tuning.first_friday_bonus
        if sports_live and name == "Jack London":
            local += tuning.championship_zone_bonus if env.sports_season == "championship" else tuning.playoff_zone_bonus

        local = round_to(clamp(local, 0.0, 100.0), 2)
        economies.append(DistrictEconomy(
            district=name,
            mood=local,
            descriptor=district_descriptor(local),
            active_ripples=count,
            sectors=list(sectors),
            is_holiday_zone=name in zones,
            is_sports_zone=name == "Jack London" and env.sports_season != "off-season",
        ))

    return economies


def summarize(mood: float, descriptor: str, employment: float, ripples: List[EconomicRipple],
              economies: List[DistrictEconomy], env: CityEnvironment, previous_drift: int) -> Dict[str, Any]:
    """Reporting artifact; derivable entirely from the values passed in."""
    strongest = None
    for ripple in ripples:
        if strongest is None or abs(ripple.current_strength) > abs(strongest.current_strength):
            strongest = ripple
    if strongest is not None and strongest.current_strength == 0:
        strongest = None

    if previous_drift >= 15:
        drift_impact = "positive"
    elif previous_drift <= -15:
        drift_impact = "negative"
    else:
        drift_impact = "neutral"

    return {
        "mood": mood,
        "mood_descriptor": descriptor,
        "active_ripples": len(ripples),
        "positive_ripples": sum(1 for r in ripples if r.impact > 0),
        "negative_ripples": sum(1 for r in ripples if r.impact < 0),
        "migration_ripples": sum(1 for r in ripples if "POPULATION" in r.trigger or "WORKFORCE" in r.trigger),
        "derived_employment": employment,
        "strongest_ripple": {
            "type": strongest.trigger,
            "strength": strongest.current_strength,
            "district": strongest.primary_district,
        } if strongest else None,
        "narrative": NARRATIVES.get(strongest.trigger, "") if strongest else "",
        "struggling_districts": [e.district for e in economies if e.descriptor in ("struggling", "sluggish")],
        "thriving_districts": [e.district for e in economies if e.descriptor in ("thriving", "growing")],
        "calendar": {"holiday": env.holiday, "sports_season": env.sports_season, "season": env.season},
        "drift_impact": drift_impact,
    }
