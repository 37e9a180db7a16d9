import logging
from graphlib import TopologicalSorter, CycleError
from typing import List, Dict

from citysim.engine.interfaces import ISystem
from citysim.server.state import WorldState
from citysim.shared.actions import GameAction
from citysim.shared.errors import CycleAbortedError
from citysim.shared.events import EventCycleCompleted

logger = logging.getLogger(__name__)


class Engine:
    """
    The core logic driver.
    Orchestrates systems using a Dependency Graph to determine execution order.
    """

    def __init__(self):
        # Map: "city.economy" -> EconomySystem instance
        self.systems_map: Dict[str, ISystem] = {}

        # The finalized, sorted list used in the loop
        self.execution_order: List[ISystem] = []

        # Dirty flag to trigger rebuild on next cycle if systems changed
        self._is_dirty = False

    def register_systems(self, systems: List[ISystem]):
        """
        Registers a batch of systems and marks the graph for rebuild.
        """
        for system in systems:
            if system.id in self.systems_map:
                logger.warning("[Engine] System '%s' is being overwritten!", system.id)
            self.systems_map[system.id] = system

        self._is_dirty = True

    @property
    def order(self) -> List[str]:
        if self._is_dirty:
            self._rebuild_execution_order()
        return [s.id for s in self.execution_order]

    def _rebuild_execution_order(self):
        """
        Uses Topological Sort to resolve dependencies.
        """
        logger.debug("[Engine] Building dependency graph...")
        sorter = TopologicalSorter()

        # 1. Build the graph structure
        for sys_id, system in self.systems_map.items():
            sorter.add(sys_id, *system.dependencies)

        try:
            # 2. Resolve order
            sorted_ids = list(sorter.static_order())
        except CycleError as e:
            logger.critical("[Engine] Circular dependency detected! %s", e)
            raise

        # 3. Map IDs back to Instances (unknown dependencies are skipped)
        self.execution_order = [
            self.systems_map[sys_id]
            for sys_id in sorted_ids
            if sys_id in self.systems_map
        ]

        logger.info("[Engine] Graph resolved. Execution Order: %s", [s.id for s in self.execution_order])
        self._is_dirty = False

    def step(self, state: WorldState, actions: List[GameAction], cycle: int):
        """
        Runs one cycle of the simulation using the sorted graph.

        A failing system aborts the whole cycle: the error is logged and
        re-raised as CycleAbortedError so the caller can throw the working
        copy away instead of committing a half-applied cycle.
        """
        if self._is_dirty:
            self._rebuild_execution_order()

        # 1. Reset Frame State
        # Events are transient; they only exist for the duration of the current cycle.
        state.events.clear()

        # 2. Inject Inputs
        state.globals["cycle"] = cycle
        state.current_actions = list(actions)

        # 3. Run All Systems in Strict Order
        # Civic runs first and writes sentiment; arcs run last and see everything.
        for system in self.execution_order:
            try:
                system.update(state, cycle)
            except Exception as e:
                logger.error("[Engine] Error in system '%s' at cycle %d: %s", system.id, cycle, e)
                raise CycleAbortedError(system.id, cycle) from e

        state.events.append(EventCycleCompleted(cycle, [s.id for s in self.execution_order]))
