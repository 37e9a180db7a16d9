import dataclasses
import functools
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar, Union, get_args, get_origin, get_type_hints

import polars as pl

# Bump this whenever a ledger column is renamed, added or re-interpreted,
# and add the matching step to server/io/migrations.py.
LEDGER_SCHEMA_VERSION = 3

_TRUE_STRINGS = {"true", "yes", "y", "1", "x"}

R = TypeVar("R", bound="LedgerRecord")


def ledger_field(column: str, default: Any = None, default_factory: Any = None) -> Any:
    """Declares a record attribute and the ledger column it maps to."""
    metadata = {"column": column}
    if default_factory is not None:
        return field(default_factory=default_factory, metadata=metadata)
    return field(default=default, metadata=metadata)


@functools.lru_cache(maxsize=None)
def _hints(cls: type) -> Dict[str, Any]:
    return get_type_hints(cls)


def _unwrap_optional(target: Any) -> Any:
    if get_origin(target) is Union:
        args = [a for a in get_args(target) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return target


def _coerce(value: Any, target: Any, default: Any) -> Any:
    """
    Converts a raw ledger cell into the attribute's declared type.
    Blank cells and unparsable values fall back to the field default.
    """
    if value is None:
        return default
    if isinstance(value, str):
        value = value.strip()
        if value == "":
            return default

    target = _unwrap_optional(target)
    try:
        if target is bool:
            if isinstance(value, str):
                return value.lower() in _TRUE_STRINGS
            return bool(value)
        if target is int:
            return int(float(value))
        if target is float:
            return float(value)
        if target is str:
            if isinstance(value, float) and value.is_integer():
                return str(int(value))
            return str(value)
        if get_origin(target) in (list, List):
            if isinstance(value, (list, tuple)):
                parts = [str(v).strip() for v in value]
            else:
                parts = str(value).split(",")
            return [p.strip() for p in parts if p.strip()]
    except (TypeError, ValueError):
        return default
    return value


def _polars_dtype(target: Any) -> pl.DataType:
    target = _unwrap_optional(target)
    if target is bool:
        return pl.Boolean
    if target is int:
        return pl.Int64
    if target is float:
        return pl.Float64
    # Strings and comma-joined lists
    return pl.String


class LedgerRecord:
    """
    Mixin for dataclasses that mirror one row of a ledger table.

    Each attribute carries its ledger column name in the field metadata, so
    the mapping between Python names and the sheet headers lives in exactly
    one place. Reading is tolerant: missing columns and blank cells take the
    attribute default instead of failing the cycle.
    """

    @classmethod
    def columns(cls) -> List[str]:
        return [f.metadata.get("column", f.name) for f in dataclasses.fields(cls)]

    @classmethod
    def schema(cls) -> Dict[str, pl.DataType]:
        hints = _hints(cls)
        return {
            f.metadata.get("column", f.name): _polars_dtype(hints[f.name])
            for f in dataclasses.fields(cls)
        }

    @classmethod
    def from_row(cls: Type[R], row: Dict[str, Any]) -> R:
        hints = _hints(cls)
        kwargs = {}
        for f in dataclasses.fields(cls):
            column = f.metadata.get("column", f.name)
            if f.default_factory is not dataclasses.MISSING:
                default = f.default_factory()
            elif f.default is not dataclasses.MISSING:
                default = f.default
            else:
                default = None
            kwargs[f.name] = _coerce(row.get(column), hints[f.name], default)
        return cls(**kwargs)

    def to_row(self) -> Dict[str, Any]:
        row = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, list):
                value = ",".join(str(v) for v in value)
            row[f.metadata.get("column", f.name)] = value
        return row


def records_to_frame(cls: Type[LedgerRecord], records: List[LedgerRecord]) -> pl.DataFrame:
    schema = cls.schema()
    if not records:
        return pl.DataFrame(schema=schema)
    return pl.from_dicts([r.to_row() for r in records], schema=schema)


def frame_to_records(cls: Type[R], df: pl.DataFrame) -> List[R]:
    if df is None or df.is_empty():
        return []
    return [cls.from_row(row) for row in df.iter_rows(named=True)]


def normalize_frame(cls: Type[LedgerRecord], df: pl.DataFrame) -> pl.DataFrame:
    """Round-trips a raw (string-typed) ledger frame through its record type."""
    return records_to_frame(cls, frame_to_records(cls, df))


# --- Arc Ledger ---

@dataclass
class Arc(LedgerRecord):
    """One multi-cycle narrative situation (a row of the arc ledger)."""
    arc_id: str = ledger_field("ArcId", "")
    arc_type: str = ledger_field("Type", "crisis")
    phase: str = ledger_field("Phase", "early")
    tension: float = ledger_field("Tension", 0.0)
    # Empty district means the arc is city-wide.
    district: str = ledger_field("Neighborhood", "")
    domain: str = ledger_field("DomainTag", "GENERAL")
    summary: str = ledger_field("Summary", "")
    age: int = ledger_field("Age", 0)
    cycle_created: int = ledger_field("CycleCreated", 0)
    cycle_resolved: Optional[int] = ledger_field("ResolutionCycle", None)
    prev_phase: str = ledger_field("PrevPhase", "")
    phase_change_cycle: Optional[int] = ledger_field("PhaseChangeCycle", None)
    resolution_type: str = ledger_field("ResolutionType", "")
    resolution_reason: str = ledger_field("ResolutionReason", "")
    calendar_trigger: str = ledger_field("CalendarTrigger", "")
    season_context: str = ledger_field("SeasonContext", "")
    holiday_context: str = ledger_field("HolidayContext", "")
    hold: bool = ledger_field("MakerHold", False)

    @property
    def is_resolved(self) -> bool:
        return self.phase == "resolved"


# --- Economic Ripples ---

@dataclass
class EconomicRipple(LedgerRecord):
    ripple_id: str = ledger_field("RippleId", "")
    trigger: str = ledger_field("Type", "")
    impact: float = ledger_field("Impact", 0.0)
    sectors: List[str] = ledger_field("Sectors", default_factory=list)
    districts: List[str] = ledger_field("Neighborhoods", default_factory=list)
    primary_district: str = ledger_field("PrimaryNeighborhood", "")
    start_cycle: int = ledger_field("StartCycle", 0)
    end_cycle: int = ledger_field("EndCycle", 0)
    current_strength: float = ledger_field("CurrentStrength", 0.0)
    source: str = ledger_field("Source", "System")
    holiday: str = ledger_field("Holiday", "none")
    sports_season: str = ledger_field("SportsSeason", "off-season")
    season: str = ledger_field("Season", "")

    @property
    def duration(self) -> int:
        return self.end_cycle - self.start_cycle

    def affects(self, district: str) -> bool:
        return "all" in self.districts or district in self.districts


@dataclass
class DistrictEconomy(LedgerRecord):
    """Derived each cycle by the economy stage; never read back from disk."""
    district: str = ledger_field("Neighborhood", "")
    mood: float = ledger_field("Mood", 50.0)
    descriptor: str = ledger_field("Descriptor", "stable")
    active_ripples: int = ledger_field("ActiveRipples", 0)
    sectors: List[str] = ledger_field("Sectors", default_factory=list)
    is_holiday_zone: bool = ledger_field("IsHolidayZone", False)
    is_sports_zone: bool = ledger_field("IsSportsZone", False)
    feedback_delta: float = ledger_field("FeedbackDelta", 0.0)


# --- Civic Ledgers ---

@dataclass
class Initiative(LedgerRecord):
    """A row of the initiative tracker (17 columns plus affected districts)."""
    initiative_id: str = ledger_field("InitiativeID", "")
    name: str = ledger_field("Name", "")
    kind: str = ledger_field("Type", "vote")
    status: str = ledger_field("Status", "proposed")
    budget: str = ledger_field("Budget", "")
    vote_requirement: str = ledger_field("VoteRequirement", "5-4")
    vote_cycle: int = ledger_field("VoteCycle", 0)
    projection: str = ledger_field("Projection", "")
    lead_faction: str = ledger_field("LeadFaction", "")
    opposition_faction: str = ledger_field("OppositionFaction", "")
    swing_voter: str = ledger_field("SwingVoter", "")
    swing_voter_2: str = ledger_field("SwingVoter2", "")
    swing_voter_2_lean: str = ledger_field("SwingVoter2Lean", "")
    outcome: str = ledger_field("Outcome", "")
    consequences: str = ledger_field("Consequences", "")
    notes: str = ledger_field("Notes", "")
    last_updated: Optional[int] = ledger_field("LastUpdated", None)
    affected_districts: List[str] = ledger_field("AffectedNeighborhoods", default_factory=list)

    def append_note(self, note: str):
        self.notes = f"{self.notes}\n{note}" if self.notes else note


@dataclass
class CouncilMember(LedgerRecord):
    office_id: str = ledger_field("OfficeId", "")
    title: str = ledger_field("Title", "")
    holder: str = ledger_field("Holder", "")
    pop_id: str = ledger_field("PopId", "")
    status: str = ledger_field("Status", "active")
    faction: str = ledger_field("Faction", "")
    voting_power: str = ledger_field("VotingPower", "yes")


@dataclass
class InitiativeRipple(LedgerRecord):
    """A decaying civic after-effect started by a decided initiative."""
    initiative_name: str = ledger_field("InitiativeName", "")
    ripple_type: str = ledger_field("RippleType", "general")
    direction: str = ledger_field("Direction", "positive")
    strength: float = ledger_field("Strength", 1.0)
    sentiment_modifier: float = ledger_field("SentimentModifier", 0.0)
    community_modifier: float = ledger_field("CommunityModifier", 0.0)
    retail_modifier: float = ledger_field("RetailModifier", 0.0)
    nightlife_modifier: float = ledger_field("NightlifeModifier", 0.0)
    traffic_modifier: float = ledger_field("TrafficModifier", 0.0)
    sick_modifier: float = ledger_field("SickModifier", 0.0)
    unemployment_modifier: float = ledger_field("UnemploymentModifier", 0.0)
    public_spaces_modifier: float = ledger_field("PublicSpacesModifier", 0.0)
    stability_modifier: float = ledger_field("StabilityModifier", 0.0)
    student_modifier: float = ledger_field("StudentModifier", 0.0)
    affected_districts: List[str] = ledger_field("AffectedNeighborhoods", default_factory=list)
    start_cycle: int = ledger_field("StartCycle", 0)
    duration: int = ledger_field("Duration", 6)
    end_cycle: int = ledger_field("EndCycle", 0)
    status: str = ledger_field("Status", "active")


# --- City Registry ---

@dataclass
class PopulationRecord(LedgerRecord):
    """The single-row population sheet."""
    total_population: int = ledger_field("totalPopulation", 400000)
    illness_rate: float = ledger_field("illnessRate", 0.05)
    employment_rate: float = ledger_field("employmentRate", 0.91)
    migration: int = ledger_field("migration", 0)
    economy: str = ledger_field("economy", "stable")


@dataclass
class DistrictProfile(LedgerRecord):
    district: str = ledger_field("Neighborhood", "")
    crime_index: float = ledger_field("CrimeIndex", 1.0)
    sentiment: float = ledger_field("Sentiment", 0.0)
    retail_vitality: float = ledger_field("RetailVitality", 1.0)
    event_attractiveness: float = ledger_field("EventAttractiveness", 1.0)
    migration_flow: int = ledger_field("MigrationFlow", 0)


@dataclass
class DistrictDemographics(LedgerRecord):
    district: str = ledger_field("Neighborhood", "")
    students: int = ledger_field("Students", 0)
    adults: int = ledger_field("Adults", 0)
    seniors: int = ledger_field("Seniors", 0)
    unemployed: int = ledger_field("Unemployed", 0)
    sick: int = ledger_field("Sick", 0)

    @property
    def total(self) -> int:
        return self.students + self.adults + self.seniors


# Ledger tables persisted by the LedgerStore, keyed by file stem.
LEDGER_RECORDS: Dict[str, Type[LedgerRecord]] = {
    "arc_ledger": Arc,
    "economic_ripples": EconomicRipple,
    "initiative_tracker": Initiative,
    "council_roster": CouncilMember,
    "initiative_ripples": InitiativeRipple,
    "population": PopulationRecord,
    "district_map": DistrictProfile,
    "district_demographics": DistrictDemographics,
}
