from typing import List

from citysim.engine.interfaces import ISystem
from citysim.engine.mechanics.arcs import ArcTuning
from citysim.engine.mechanics.council import VoteTuning
from citysim.engine.mechanics.drift import DriftTuning
from citysim.engine.mechanics.ripples import RippleTuning
from citysim.engine.random_source import RandomSource
from citysim.shared.config import SimulationConfig
from citysim.systems.arc_system import ArcSystem
from citysim.systems.civic_system import CivicSystem
from citysim.systems.drift_system import DriftSystem
from citysim.systems.economy_system import EconomySystem


def register(config: SimulationConfig, rng: RandomSource) -> List[ISystem]:
    """
    Builds the four city systems with their tuning overrides applied.
    All of them share one RandomSource, so a seeded run is reproducible.
    """
    return [
        # Order in this list doesn't matter.
        # The Engine sorts them based on their .dependencies property.
        ArcSystem(rng, config.tuning_for("arcs", ArcTuning())),
        DriftSystem(rng, config.drift, config.tuning_for("drift", DriftTuning())),
        EconomySystem(rng, config.tuning_for("ripples", RippleTuning())),
        CivicSystem(rng, config.tuning_for("votes", VoteTuning())),
    ]
