from __future__ import annotations

from fleet_core.settings import Settings
from fleet_core.store.base import FleetStore
from fleet_core.store.memory import InMemoryFleetStore
from fleet_core.store.mysql import MySQLFleetStore


def build_store(config: Settings) -> FleetStore:
    """Return the store selected by FLEET_STORE."""
    if config.fleet_store == "mysql":
        return MySQLFleetStore(config)
    if config.fleet_store == "memory":
        return InMemoryFleetStore()
    raise ValueError(f"invalid FLEET_STORE: {config.fleet_store}")


__all__ = ["FleetStore", "InMemoryFleetStore", "MySQLFleetStore", "build_store"]
