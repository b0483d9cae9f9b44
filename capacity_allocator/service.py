from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Literal, Optional, Union

from .errors import InvalidPeriod, PeriodNotFound, StorageUnavailable
from .models import EngineConfig
from .optimizer import AllocationOptimizer, OptimizationResult
from .rollup import CapacityOverview, CapacityRollup, PersonCapacity, ProjectStaffing
from .stores import InMemoryStore

logger = logging.getLogger(__name__)

FailureReason = Literal["period_not_found", "invalid_period", "storage_unavailable"]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class OptimizationOk:
    result: OptimizationResult
    calculated_at: datetime


@dataclass(frozen=True)
class OptimizationFailed:
    reason: FailureReason
    message: str

    def to_result(self) -> OptimizationResult:
        return OptimizationResult(success=False, warnings=(self.message,))


OptimizationOutcome = Union[OptimizationOk, OptimizationFailed]


class CapacityService:
    def __init__(
        self,
        store: InMemoryStore,
        config: EngineConfig = EngineConfig(),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config
        self._clock = clock or _utc_now

    def run_optimization(self, planning_period_id: int) -> OptimizationOutcome:
        logger.info("Running optimization for planning period ID: %s", planning_period_id)
        try:
            with self.store.period_lock(planning_period_id):
                snapshot = self.store.snapshot(planning_period_id)
                result = AllocationOptimizer(self.config).optimize(snapshot)
                calculated_at = self._clock()
                self.store.commit_calculations(planning_period_id, result.calculations, calculated_at)
        except PeriodNotFound as exc:
            logger.error("Optimization failed: %s", exc)
            return OptimizationFailed("period_not_found", str(exc))
        except InvalidPeriod as exc:
            logger.error("Optimization failed: %s", exc)
            return OptimizationFailed("invalid_period", str(exc))
        except StorageUnavailable as exc:
            logger.error("Optimization failed, previous calculations kept: %s", exc)
            return OptimizationFailed("storage_unavailable", str(exc))
        logger.info("Optimization completed successfully")
        return OptimizationOk(result=result, calculated_at=calculated_at)

    def calculate_optimal_allocations(self, planning_period_id: int) -> OptimizationResult:
        outcome = self.run_optimization(planning_period_id)
        if isinstance(outcome, OptimizationFailed):
            return outcome.to_result()
        return outcome.result

    def _rollup(self, planning_period_id: int) -> CapacityRollup:
        return CapacityRollup(self.store.snapshot(planning_period_id), config=self.config)

    def get_capacity_overview(self, planning_period_id: int) -> CapacityOverview:
        logger.debug("Getting capacity overview for planning period ID: %s", planning_period_id)
        return self._rollup(planning_period_id).overview()

    def get_person_capacity(self, person_id: int, planning_period_id: int) -> PersonCapacity:
        logger.debug("Getting capacity for person ID: %s in period ID: %s", person_id, planning_period_id)
        self.store.get_person(person_id)
        return self._rollup(planning_period_id).person_capacity(person_id)

    def get_project_staffing(self, project_id: int, planning_period_id: int) -> ProjectStaffing:
        logger.debug("Getting staffing for project ID: %s in period ID: %s", project_id, planning_period_id)
        self.store.get_project(project_id)
        return self._rollup(planning_period_id).project_staffing(project_id)
