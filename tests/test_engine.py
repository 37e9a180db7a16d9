from graphlib import CycleError
from typing import List

import pytest

from citysim.engine.simulator import Engine
from citysim.server.state import WorldState
from citysim.shared.errors import CycleAbortedError
from citysim.shared.events import EventCycleCompleted
from citysim.systems import registration


class RecordingSystem:
    def __init__(self, sys_id: str, deps: List[str], log: List[str], fail: bool = False):
        self._id = sys_id
        self._deps = deps
        self.log = log
        self.fail = fail

    @property
    def id(self) -> str:
        return self._id

    @property
    def dependencies(self) -> List[str]:
        return self._deps

    def update(self, state: WorldState, cycle: int) -> None:
        if self.fail:
            raise RuntimeError("boom")
        self.log.append(self._id)


def test_core_systems_run_in_dependency_order(config, rng):
    engine = Engine()
    engine.register_systems(registration.register(config, rng))

    assert engine.order == ["city.civic", "city.economy", "city.drift", "city.arcs"]


def test_step_runs_systems_and_closes_with_cycle_event():
    log: List[str] = []
    engine = Engine()
    engine.register_systems([
        RecordingSystem("b", ["a"], log),
        RecordingSystem("a", [], log),
    ])
    state = WorldState()

    engine.step(state, [], 3)

    assert log == ["a", "b"]
    assert state.cycle == 3
    assert isinstance(state.events[-1], EventCycleCompleted)
    assert state.events[-1].systems == ["a", "b"]


def test_failing_system_aborts_cycle():
    log: List[str] = []
    engine = Engine()
    engine.register_systems([
        RecordingSystem("a", [], log),
        RecordingSystem("b", ["a"], log, fail=True),
        RecordingSystem("c", ["b"], log),
    ])

    with pytest.raises(CycleAbortedError) as exc:
        engine.step(WorldState(), [], 1)

    assert exc.value.system_id == "b"
    assert log == ["a"]


def test_circular_dependencies_are_rejected():
    engine = Engine()
    engine.register_systems([
        RecordingSystem("a", ["b"], []),
        RecordingSystem("b", ["a"], []),
    ])

    with pytest.raises(CycleError):
        engine.step(WorldState(), [], 1)


def test_events_are_cleared_each_cycle():
    engine = Engine()
    engine.register_systems([RecordingSystem("a", [], [])])
    state = WorldState()

    engine.step(state, [], 1)
    engine.step(state, [], 2)

    assert len(state.events) == 1
    assert state.events[0].cycle == 2
