from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class GameEvent:
    """
    Base class for all internal simulation events.

    Architecture Note:
        Events are distinct from Actions.
        - Actions: External commands FROM an operator TO the engine.
        - Events: Signals FROM one system TO later systems and downstream tools.

        Events only live for one cycle; the Engine clears the bus before the
        first system runs.
    """
    pass

@dataclass
class EventArcCreated(GameEvent):
    arc_id: str
    arc_type: str
    district: str
    tension: float

@dataclass
class EventArcPhaseChanged(GameEvent):
    """
    Fired when the lifecycle step moves an arc to a new phase.
    """
    arc_id: str
    arc_type: str
    from_phase: str
    to_phase: str
    tension: float
    cycle: int

@dataclass
class EventArcResolved(GameEvent):
    """
    Carries the narrative resolution seed consumed by the writing tools.
    """
    arc_id: str
    resolution_type: str
    reason: str
    seed: Dict[str, Any] = field(default_factory=dict)

@dataclass
class EventRippleCreated(GameEvent):
    ripple_id: str
    trigger: str
    impact: float
    primary_district: str

@dataclass
class EventInitiativeResolved(GameEvent):
    initiative_id: str
    name: str
    status: str
    vote_count: str

@dataclass
class EventDriftComputed(GameEvent):
    city_drift: int
    factors: List[str]

@dataclass
class EventCycleCompleted(GameEvent):
    """
    Always the last event of a cycle; lists the systems in the order they ran.
    """
    cycle: int
    systems: List[str]
