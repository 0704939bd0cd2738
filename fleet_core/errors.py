"""
File: fleet_core/errors.py
Purpose: Exception hierarchy surfaced by fleet core operations.
"""


class FleetError(Exception):
    """Base class for fleet core errors."""


class ValidationError(FleetError):
    """Missing or invalid identifiers, or an unknown scenario kind."""


class NotFoundError(FleetError):
    """A referenced run, robot, task or scenario does not exist."""


class ExternalServiceError(FleetError):
    """Oracle or notification sink unreachable or returned a malformed payload.

    Always recovered where it is raised; never reaches a caller of the core.
    """


class PersistenceError(FleetError):
    """The store is unreachable or rejected a write."""
