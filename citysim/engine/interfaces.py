from typing import Protocol, List, runtime_checkable

from citysim.server.state import WorldState
from citysim.shared.environment import CityEnvironment


@runtime_checkable
class ISystem(Protocol):
    """
    Interface for all simulation systems with Dependency Graph support.
    """

    @property
    def id(self) -> str:
        """
        Unique identifier for the system (e.g., 'city.economy').
        Namespace convention: 'package.system_name'
        """
        ...

    @property
    def dependencies(self) -> List[str]:
        """
        List of system IDs that must execute BEFORE this system.
        Example: ['city.civic']
        """
        ...

    def update(self, state: WorldState, cycle: int) -> None:
        """
        Performs the logic for a single cycle.
        """
        ...


@runtime_checkable
class ISignalProvider(Protocol):
    """
    Supplies the calendar, weather and event signals for a cycle.
    Injected into the session once; the session never falls back per call.
    """

    def signals_for(self, cycle: int) -> CityEnvironment:
        ...
