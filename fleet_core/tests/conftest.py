import random

import pytest

from fleet_core.entities import Robot, Task
from fleet_core.oracle import DecisionOracle, RuleBasedGenerator
from fleet_core.scenarios import DisruptionEngine
from fleet_core.store import InMemoryFleetStore


@pytest.fixture
def store():
    return InMemoryFleetStore()


@pytest.fixture
def oracle(store):
    return DecisionOracle(store, RuleBasedGenerator())


@pytest.fixture
def run(store):
    return store.create_run("warehouse-a", {})


@pytest.fixture
def disruptions(store, oracle):
    return DisruptionEngine(store, oracle, rng=random.Random(7), world_size=100)


@pytest.fixture
def add_robot(store):
    def _add(name: str, x: float = 0.0, y: float = 0.0, **fields) -> Robot:
        return store.add_robot(Robot(id=name.lower(), name=name, position_x=x, position_y=y, **fields))

    return _add


@pytest.fixture
def add_task(store, run):
    def _add(priority: int = 5, x: float = 0.0, y: float = 0.0, **fields) -> Task:
        fields.setdefault("run_id", run.id)
        return store.add_task(
            Task(priority=priority, origin_x=x, origin_y=y, destination_x=x + 5, destination_y=y + 5, **fields)
        )

    return _add
