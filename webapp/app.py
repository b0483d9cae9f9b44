from __future__ import annotations

import logging
import os
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional

from flask import Flask, jsonify

from capacity_allocator.errors import EntityNotFound, StorageUnavailable
from capacity_allocator.io_utils import load_config
from capacity_allocator.models import EngineConfig, PlanningPeriod
from capacity_allocator.service import CapacityService, OptimizationFailed
from capacity_allocator.stores import DirectoryStore, InMemoryStore

logger = logging.getLogger(__name__)

FAILURE_STATUS = {
    "period_not_found": 404,
    "invalid_period": 422,
    "storage_unavailable": 503,
}


def _default_data_root() -> Path:
    return (Path(__file__).resolve().parent.parent / "portfolios" / "sample").resolve()


def _resolve_data_root() -> Path:
    env_value = os.getenv("CAPACITY_DATA_ROOT")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return _default_data_root()


def _period_to_dict(period: PlanningPeriod) -> Dict[str, object]:
    return {
        "id": period.id,
        "name": period.name,
        "start_date": period.start_date.isoformat(),
        "end_date": period.end_date.isoformat(),
    }


def _capacity_payload(item: object) -> Dict[str, object]:
    payload = asdict(item)
    if "priority" in payload:
        payload["priority"] = item.priority.label  # type: ignore[attr-defined]
    return payload


def create_app(store: Optional[InMemoryStore] = None, config: Optional[EngineConfig] = None) -> Flask:
    app = Flask(__name__)
    data_root = _resolve_data_root()
    app.config["CAPACITY_DATA_ROOT"] = data_root
    app.config["CAPACITY_SERVICE"] = None
    if store is not None:
        app.config["CAPACITY_SERVICE"] = CapacityService(store, config or EngineConfig())
    service_lock = threading.Lock()

    def service() -> CapacityService:
        # one store per app so runs share the same per-period locks
        with service_lock:
            current = app.config["CAPACITY_SERVICE"]
            if current is None:
                cfg = config or load_config(data_root / "input" / "config.json")
                current = CapacityService(DirectoryStore(data_root), cfg)
                app.config["CAPACITY_SERVICE"] = current
                logger.info("Loaded portfolio from %s", data_root)
        return current

    @app.errorhandler(EntityNotFound)
    def not_found(exc: EntityNotFound):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(StorageUnavailable)
    def storage_unavailable(exc: StorageUnavailable):
        logger.error("Storage unavailable: %s", exc)
        return jsonify({"error": str(exc)}), 503

    @app.errorhandler(ValueError)
    def bad_input(exc: ValueError):
        return jsonify({"error": str(exc)}), 400

    @app.get("/api/periods")
    def list_periods():
        periods = [_period_to_dict(period) for period in service().store.list_periods()]
        return jsonify({"planning_periods": periods})

    @app.post("/api/periods/<int:period_id>/optimize")
    def optimize(period_id: int):
        outcome = service().run_optimization(period_id)
        if isinstance(outcome, OptimizationFailed):
            payload = outcome.to_result().to_dict()
            payload["error"] = outcome.message
            return jsonify(payload), FAILURE_STATUS[outcome.reason]
        payload = outcome.result.to_dict()
        payload["calculated_at"] = outcome.calculated_at.isoformat()
        return jsonify(payload)

    @app.get("/api/periods/<int:period_id>/overview")
    def overview(period_id: int):
        return jsonify(service().get_capacity_overview(period_id).to_dict())

    @app.get("/api/periods/<int:period_id>/people/<int:person_id>")
    def person_capacity(period_id: int, person_id: int):
        return jsonify(_capacity_payload(service().get_person_capacity(person_id, period_id)))

    @app.get("/api/periods/<int:period_id>/projects/<int:project_id>")
    def project_staffing(period_id: int, project_id: int):
        return jsonify(_capacity_payload(service().get_project_staffing(project_id, period_id)))

    return app


if __name__ == "__main__":
    create_app().run(debug=True)
