import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class CityEnvironment:
    """
    Read-mostly signals describing the city for one cycle.

    Architecture Note:
        The calendar, weather and event collaborators live outside the core.
        They fill this object once per cycle (see ISignalProvider) and every
        engine reads from it. Only two fields are written back during a cycle:
        `sentiment` (civic outcomes, initiative ripples) and the city indices
        touched by initiative ripples (community, retail, nightlife).
    """
    season: str = "unknown"
    month: int = 0
    weather_type: str = "clear"
    # Severity multiplier: 1.0 is a normal day, 1.3+ is disruptive weather.
    weather_impact: float = 1.0

    # Free-text event feeds. Each entry is a dict with at least one of
    # 'headline' / 'description' / 'event', and optionally 'neighborhood',
    # 'domain', 'type' and 'severity'.
    world_events: List[Dict[str, Any]] = field(default_factory=list)
    citizen_events: List[Dict[str, Any]] = field(default_factory=list)
    crisis_spikes: List[Dict[str, Any]] = field(default_factory=list)

    # City indices (1.0 neutral, sentiment 0.0 neutral in [-1, 1])
    sentiment: float = 0.0
    cultural_activity: float = 1.0
    community_engagement: float = 1.0
    nightlife: float = 1.0
    public_spaces: float = 1.0
    traffic: float = 1.0
    retail: float = 1.0

    # Calendar
    holiday: str = "none"
    holiday_priority: str = "none"
    is_first_friday: bool = False
    is_creation_day: bool = False
    sports_season: str = "off-season"

    # Workforce transitions reported by the career collaborator
    layoffs: int = 0
    promotions: int = 0
    sector_shifts: int = 0

    # Domain-activity counters, e.g. {"HEALTH": 2, "BUSINESS": 3}
    domain_presence: Dict[str, int] = field(default_factory=dict)
    cycle_weight: str = "low-signal"
    shock_flag: str = "none"
    pattern_flag: str = "none"
    civic_load: str = "stable"

    @property
    def chaos_count(self) -> int:
        return len(self.world_events)

    @property
    def has_shock(self) -> bool:
        return self.shock_flag not in ("none", "")

    @property
    def calendar_trigger(self) -> str:
        """The tag recorded on arcs and ripples caused by the calendar."""
        if self.holiday != "none":
            return self.holiday
        if self.is_first_friday:
            return "FirstFriday"
        if self.is_creation_day:
            return "CreationDay"
        return ""

    def domain_count(self, domain: str) -> int:
        return int(self.domain_presence.get(domain, 0) or 0)

    def adjust_sentiment(self, delta: float) -> float:
        self.sentiment = max(-1.0, min(1.0, self.sentiment + delta))
        return self.sentiment

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CityEnvironment":
        """Builds an environment from a loose dict, ignoring unknown keys."""
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
