import threading
import time
from dataclasses import replace
from datetime import date

import pytest

import webapp.app as webapp_module
from capacity_allocator.errors import StorageUnavailable
from capacity_allocator.models import PlanningPeriod
from capacity_allocator.stores import DirectoryStore, InMemoryStore
from webapp.app import create_app


class BrokenStore(InMemoryStore):
    def _persist_assignments(self, assignments):
        raise StorageUnavailable("disk full")


@pytest.fixture
def client(worked_store):
    app = create_app(store=worked_store)
    app.config["TESTING"] = True
    return app.test_client()


def test_optimize_returns_result(client):
    response = client.post("/api/periods/1/optimize")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["success"] is True
    assert len(payload["calculations"]) == 2
    assert payload["infeasible_projects"][0]["priority"] == "Low"
    assert payload["calculated_at"]


def test_optimize_unknown_period_is_404(client):
    response = client.post("/api/periods/99/optimize")
    assert response.status_code == 404
    assert response.get_json()["success"] is False


def test_optimize_malformed_period_is_422(worked_example, store_factory):
    bad = PlanningPeriod(id=1, start_date=date(2025, 1, 10), end_date=date(2025, 1, 6))
    client = create_app(store=store_factory(replace(worked_example, period=bad))).test_client()
    assert client.post("/api/periods/1/optimize").status_code == 422


def test_optimize_storage_failure_is_503(worked_example, store_factory):
    client = create_app(store=store_factory(worked_example, BrokenStore)).test_client()
    response = client.post("/api/periods/1/optimize")
    assert response.status_code == 503
    assert response.get_json()["error"] == "disk full"


def test_overview_after_optimize(client):
    client.post("/api/periods/1/optimize")
    payload = client.get("/api/periods/1/overview").get_json()
    assert payload["total_projects"] == 2
    assert payload["under_staffed_projects"] == 1
    assert payload["last_calculated_at"] is not None


def test_person_and_project_views(client):
    person = client.get("/api/periods/1/people/1").get_json()
    assert person["person_name"] == "Ada"
    project = client.get("/api/periods/1/projects/2").get_json()
    assert project["priority"] == "Low"
    assert project["required_hours"] == 30.0


def test_unknown_entities_are_404(client):
    assert client.get("/api/periods/1/people/42").status_code == 404
    assert client.get("/api/periods/1/projects/42").status_code == 404
    response = client.get("/api/periods/99/overview")
    assert response.status_code == 404
    assert "planning period 99" in response.get_json()["error"]


def test_portfolio_loaded_from_data_root(sample_dir, monkeypatch):
    monkeypatch.setenv("CAPACITY_DATA_ROOT", str(sample_dir))
    client = create_app().test_client()
    payload = client.get("/api/periods").get_json()
    assert payload["planning_periods"][0]["start_date"] == "2025-03-03"


def test_concurrent_first_requests_share_one_store(sample_dir, monkeypatch):
    built = []

    class SlowDirectoryStore(DirectoryStore):
        def __init__(self, root):
            time.sleep(0.05)
            built.append(root)
            super().__init__(root)

    monkeypatch.setenv("CAPACITY_DATA_ROOT", str(sample_dir))
    monkeypatch.setattr(webapp_module, "DirectoryStore", SlowDirectoryStore)
    app = create_app()
    statuses = []

    def first_request():
        statuses.append(app.test_client().get("/api/periods").status_code)

    threads = [threading.Thread(target=first_request) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert statuses == [200, 200, 200, 200]
    assert len(built) == 1


def test_missing_portfolio_is_503(tmp_path, monkeypatch):
    monkeypatch.setenv("CAPACITY_DATA_ROOT", str(tmp_path))
    client = create_app().test_client()
    assert client.get("/api/periods").status_code == 503
