import logging
from typing import Callable, List, Optional

import numpy as np
import polars as pl

from citysim.engine.interfaces import ISignalProvider
from citysim.engine.random_source import RandomSource
from citysim.engine.simulator import Engine
from citysim.server.io.ledger_store import LedgerStore
from citysim.server.io.save_loader import SaveStateLoader
from citysim.server.io.save_writer import SaveWriter
from citysim.server.state import WorldState
from citysim.shared.actions import GameAction
from citysim.shared.config import SimulationConfig
from citysim.shared.environment import CityEnvironment
from citysim.shared.errors import CycleAbortedError
from citysim.systems import registration

logger = logging.getLogger(__name__)


class SimulationSession:
    """
    The 'Host' of the simulation. It manages the lifecycle of one city.

    Architecture Note:
        This class uses the Factory Method pattern (`create_local`).
        The `__init__` method is lightweight and strictly for Dependency Injection.
        Loading ledgers and resolving the random source happen in
        `create_local`, which reports progress through a callback.

        Each cycle runs on a working copy of the state. The copy replaces
        the committed state, and the ledgers are written back, only after
        every system finished; a failed cycle leaves both untouched.
    """

    def __init__(self,
                 config: SimulationConfig,
                 store: LedgerStore,
                 writer: SaveWriter,
                 loader: SaveStateLoader,
                 engine: Engine,
                 rng: RandomSource,
                 initial_state: WorldState,
                 signals: Optional[ISignalProvider] = None):
        """
        Internal Constructor.
        Receives fully initialized subsystems. Use `SimulationSession.create_local()` instead.
        """
        self.config = config

        # Subsystems (Injected)
        self.store = store
        self.writer = writer
        self.loader = loader
        self.engine = engine
        self.rng = rng
        self.signals = signals

        # Simulation Data
        self.state = initial_state
        self.action_queue: List[GameAction] = []

        logger.info("[SimulationSession] Session initialized at cycle %d.", self.state.cycle)

    @classmethod
    def create_local(cls,
                     config: SimulationConfig,
                     progress_cb: Optional[Callable[[float, str], None]] = None,
                     signals: Optional[ISignalProvider] = None,
                     external_rng: Optional[np.random.Generator] = None) -> 'SimulationSession':
        """
        Factory Method: Orchestrates the full startup sequence.

        Responsibilities:
            1. Read the ledgers (and migrate old schemas).
            2. Resolve the random source.
            3. Initialize Engine & Systems.

        Args:
            config: Paths, toggles and tuning.
            progress_cb: Callback(fraction, text) for progress reporting.
            signals: Calendar/weather/event provider used when `advance` gets no environment.
            external_rng: Generator used when the config carries neither seed nor resume state.
        """
        def report(p: float, text: str):
            if progress_cb:
                progress_cb(p, text)

        try:
            # --- Step 1: Ledgers ---
            report(0.2, "Server: Loading ledgers...")
            store = LedgerStore(config)
            tables = store.load_all()
            state = WorldState(tables=tables)
            state.globals["cycle"] = store.last_cycle()

            # --- Step 2: Randomness ---
            report(0.5, "Server: Resolving random source...")
            rng = RandomSource.resolve(config.rng.seed, config.rng.resume_state, external_rng)
            state.globals["rng_source"] = rng.source

            # --- Step 3: Engine & Systems ---
            report(0.8, "Server: Registering city systems...")
            engine = Engine()
            engine.register_systems(registration.register(config, rng))

            report(1.0, "Server: Ready.")
            return cls(config, store, SaveWriter(config), SaveStateLoader(config), engine, rng, state, signals)

        except Exception as e:
            logger.critical("[SimulationSession] Startup failed: %s", e)
            raise

    def receive_action(self, action: GameAction):
        """
        Queues an operator command for the next cycle.
        """
        self.action_queue.append(action)

    def advance(self, environment: Optional[CityEnvironment] = None) -> WorldState:
        """
        Runs one full cycle and commits it.

        The environment comes from the argument, else the signal provider,
        else last cycle's environment is carried forward.
        """
        cycle = self.state.cycle + 1
        if environment is None and self.signals is not None:
            environment = self.signals.signals_for(cycle)

        working = self.state.fork(environment)
        rng_snapshot = self.rng.capture()

        try:
            self.engine.step(working, self.action_queue, cycle)
            working.globals["rng_state"] = self.rng.capture()
            self.store.write_tables(working.tables, cycle)
        except (CycleAbortedError, OSError, pl.exceptions.PolarsError) as e:
            # Roll back the generator so a retry replays the same draws.
            self.rng.restore(rng_snapshot)
            logger.error("[SimulationSession] Cycle %d not committed: %s", cycle, e)
            raise

        self.state = working
        self.action_queue.clear()
        logger.info("[SimulationSession] Cycle %d committed (%d events).", cycle, len(working.events))
        return working

    def get_state_snapshot(self) -> WorldState:
        """
        Returns the committed state (zero-copy).
        """
        return self.state

    def save(self, save_name: str) -> bool:
        self.state.globals["rng_state"] = self.rng.capture()
        return self.writer.save(self.state, save_name)

    def load_save(self, save_name: str) -> WorldState:
        """
        Replaces the committed state with a snapshot and resumes its generator.
        """
        state = self.loader.load(save_name)
        rng_state = state.globals.get("rng_state")
        if rng_state:
            self.rng.restore(rng_state)
        else:
            logger.warning("[SimulationSession] Save '%s' has no generator state; keeping current.", save_name)
        self.state = state
        self.action_queue.clear()
        return state
