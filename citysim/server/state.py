import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import polars as pl

from citysim.shared.actions import GameAction
from citysim.shared.environment import CityEnvironment
from citysim.shared.events import GameEvent

logger = logging.getLogger(__name__)


@dataclass
class EconomyState:
    """
    City-wide output of the economy stage.

    `pre_feedback_mood` is the mood as the ripple aggregation left it,
    before the drift stage nudged it. Keeping both lets reports show how
    much of the final mood came from population movement.
    """
    mood: float = 50.0
    mood_descriptor: str = "stable"
    employment_rate: float = 0.91
    economy_label: str = "stable"
    career_churn: bool = False
    pre_feedback_mood: float = 50.0
    narrative: str = ""
    summary: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DriftState:
    """
    Output of the drift stage.

    Invariants: -50 <= city_drift <= 50, and every value in `districts`
    lies within [-5, 5]. The economy stage runs before drift is recomputed,
    so it reads `city_drift` as last cycle's value; `previous_drift` keeps
    the value before that for reports.
    """
    city_drift: int = 0
    factors: List[str] = field(default_factory=list)
    districts: Dict[str, int] = field(default_factory=dict)
    previous_drift: int = 0
    previous_factors: List[str] = field(default_factory=list)
    economic_link: Dict[str, Any] = field(default_factory=dict)
    summary: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WorldState:
    """
    The central data store for the simulation.
    One instance is threaded through every system, in order, each cycle.
    """

    # Ledger tables keyed by ledger name ('arc_ledger', 'council_roster'...),
    # plus the derived 'district_economies' table.
    tables: Dict[str, pl.DataFrame] = field(default_factory=dict)

    # Signals supplied by the calendar/weather/event collaborators.
    environment: CityEnvironment = field(default_factory=CityEnvironment)

    economy: EconomyState = field(default_factory=EconomyState)
    drift: DriftState = field(default_factory=DriftState)

    # Holds other global simulation variables that don't fit into tables.
    globals: Dict[str, Any] = field(default_factory=lambda: {
        "cycle": 0,
    })

    # The Event Bus.
    # Systems append events here during their update.
    # The Engine clears this list at the start of every cycle.
    events: List[GameEvent] = field(default_factory=list)

    # Actions received for this specific cycle.
    current_actions: List[GameAction] = field(default_factory=list)

    @property
    def cycle(self) -> int:
        return int(self.globals.get("cycle", 0))

    def get_table(self, name: str) -> pl.DataFrame:
        """
        Retrieves a reference to a ledger table.
        """
        if name not in self.tables:
            raise KeyError(f"Table '{name}' not found in WorldState.")
        return self.tables[name]

    def read_table(self, name: str) -> pl.DataFrame:
        """
        Like get_table, but a missing ledger is treated as 'no rows'.
        """
        df = self.tables.get(name)
        if df is None:
            logger.info("[WorldState] Ledger '%s' not loaded; treating as empty.", name)
            return pl.DataFrame()
        return df

    def update_table(self, name: str, df: pl.DataFrame):
        """
        Replaces a table in the state (Copy-on-Write).
        """
        self.tables[name] = df

    def fork(self, environment: Optional[CityEnvironment] = None) -> "WorldState":
        """
        Returns the working copy a cycle mutates.

        DataFrames are immutable, so the table dict is copied shallowly.
        Everything else is deep-copied; if the cycle aborts, the committed state
        is untouched.
        """
        return WorldState(
            tables=dict(self.tables),
            environment=copy.deepcopy(environment if environment is not None else self.environment),
            economy=copy.deepcopy(self.economy),
            drift=copy.deepcopy(self.drift),
            globals=copy.deepcopy(self.globals),
        )
