from fleet_core.oracle.adapter import DecisionOracle
from fleet_core.oracle.generators import (
    DecisionGenerator,
    FallbackGenerator,
    Generation,
    RemoteGenerator,
    RuleBasedGenerator,
    select_generator,
)
from fleet_core.oracle.prompts import RequestKind

__all__ = [
    "DecisionGenerator",
    "DecisionOracle",
    "FallbackGenerator",
    "Generation",
    "RemoteGenerator",
    "RequestKind",
    "RuleBasedGenerator",
    "select_generator",
]
