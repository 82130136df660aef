from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SimulationError(Exception):
    """Base class for failures raised inside the simulation core."""


class RoutingFailure(SimulationError):
    def __init__(self, source: str, destination: str, detail: str = "no path") -> None:
        super().__init__(f"{detail}: {source} -> {destination}")
        self.source = source
        self.destination = destination


class InvariantViolation(SimulationError):
    def __init__(self, entity: str, detail: str) -> None:
        super().__init__(f"{entity}: {detail}")
        self.entity = entity
        self.detail = detail


class ServiceError(SimulationError):
    """Transport-level failure talking to the reasoning service."""


class ServiceTimeout(ServiceError):
    pass


class ServiceUnavailable(ServiceError):
    pass


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    ERROR = "error"
    INVALID = "invalid"
    DISABLED = "disabled"


@dataclass(frozen=True)
class ServiceFailure:
    kind: FailureKind
    detail: str = ""

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "detail": self.detail[:200]}
