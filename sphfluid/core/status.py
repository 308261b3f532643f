"""
Setup status codes and the internal error taxonomy.

Building blocks raise the exceptions below; the simulation context
converts them into a SetupResult and disables the simulation instead
of letting them cross the tick boundary.
"""

import enum
from dataclasses import dataclass


class SetupStatus(enum.Enum):
    """Outcome of simulation setup."""
    OK = "ok"
    INVALID_CONFIG = "invalid_config"
    EMPTY_SPAWN_VOLUME = "empty_spawn_volume"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    CAPACITY_EXCEEDED = "capacity_exceeded"


@dataclass(frozen=True)
class SetupResult:
    """Status plus a human readable reason."""
    status: SetupStatus
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is SetupStatus.OK

    @staticmethod
    def success(message: str = "") -> 'SetupResult':
        return SetupResult(SetupStatus.OK, message)


class SimulationError(Exception):
    """Base class for errors that disable a simulation."""
    status = SetupStatus.INVALID_CONFIG


class ConfigurationError(SimulationError):
    """Invalid parameters (non-positive h, empty spawn volume, ...)."""
    status = SetupStatus.INVALID_CONFIG

    def __init__(self, message: str, status: SetupStatus = SetupStatus.INVALID_CONFIG):
        super().__init__(message)
        self.status = status


class CapacityError(SimulationError):
    """Sort/grid buffers would exceed their practical limits."""
    status = SetupStatus.CAPACITY_EXCEEDED


class BackendUnavailableError(SimulationError):
    """Requested compute backend is missing."""
    status = SetupStatus.BACKEND_UNAVAILABLE


def result_from_error(error: SimulationError) -> SetupResult:
    """Map a simulation error onto the status code reported to callers."""
    return SetupResult(error.status, str(error))
