from __future__ import annotations

from datetime import date


class CapacityError(RuntimeError):
    """Base class for engine failures."""


class InvalidRange(CapacityError, ValueError):
    def __init__(self, start: date, end: date) -> None:
        super().__init__(f"invalid range: {start.isoformat()} is after {end.isoformat()}")
        self.start = start
        self.end = end


class EntityNotFound(CapacityError, KeyError):
    def __init__(self, kind: str, entity_id: int) -> None:
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id

    def __str__(self) -> str:
        return self.args[0]


class PeriodNotFound(EntityNotFound):
    def __init__(self, period_id: int) -> None:
        super().__init__("planning period", period_id)


class InvalidPeriod(CapacityError):
    def __init__(self, period_id: int, start: date, end: date) -> None:
        super().__init__(
            f"planning period {period_id} is malformed: start {start.isoformat()} after end {end.isoformat()}"
        )
        self.period_id = period_id


class StorageUnavailable(CapacityError):
    """Raised by stores when data cannot be read or calculations cannot be committed."""
