from dataclasses import dataclass


@dataclass
class GameAction:
    """
    Base class for all discrete commands following the Command Pattern.

    Architecture Note:
        Tools and operators never modify the WorldState directly.
        They issue Actions; the Engine hands them to the systems at the start
        of the next cycle so every override is applied in a fixed order and
        leaves an audit trail on the ledger row it touched.
    """
    # Identifies who issued the action ('operator', 'script', a desk name...).
    player_id: str

# --- Arc Interventions ---

@dataclass
class ActionHoldArc(GameAction):
    """
    Freezes an arc: the lifecycle step skips it until it is released.
    """
    arc_id: str

@dataclass
class ActionReleaseArc(GameAction):
    arc_id: str

@dataclass
class ActionForceResolveArc(GameAction):
    """
    Resolves an arc immediately with resolution type 'resolved-intervention'.
    """
    arc_id: str
    reason: str = "manual resolution"

@dataclass
class ActionEscalateArc(GameAction):
    """
    Adds a one-off tension boost (+2 by default) before the lifecycle step.
    """
    arc_id: str
    amount: float = 2.0

# --- Civic Actions ---

@dataclass
class ActionForceVote(GameAction):
    """
    Runs the vote for one initiative this cycle regardless of its scheduled
    cycle. Initiatives that are already decided are refused.
    """
    initiative_id: str
