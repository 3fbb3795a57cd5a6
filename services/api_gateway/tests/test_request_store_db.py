from __future__ import annotations

import os
from uuid import uuid4

import pytest

from services.api_gateway.app.state import RequestStore, make_request_id
from shared.schemas.domain import ChangeRequest, ProjectRecord, ProjectRules, RequestStatus


def _database_url() -> str | None:
    return os.getenv("DATABASE_URL")


pytestmark = pytest.mark.skipif(not _database_url(), reason="DATABASE_URL is required for DB-backed tests")


@pytest.fixture
def store(monkeypatch) -> RequestStore:
    monkeypatch.delenv("SCOPEQUOTE_STORE", raising=False)
    monkeypatch.setenv("SCOPEQUOTE_ENABLE_MEMORY_FALLBACK", "0")
    return RequestStore(_database_url())


def _project() -> ProjectRecord:
    suffix = uuid4().hex[:8]
    return ProjectRecord(
        project_id=f"proj_{suffix}",
        slug=f"acme-{suffix}",
        name="Acme",
        rules=ProjectRules(hourly_rate=120, deliverables=["Landing page"]),
        context_notes=["Prefers email"],
    )


def test_project_round_trip(store) -> None:
    project = _project()
    store.upsert_project(project)
    store.upsert_project(project.model_copy(update={"name": "Acme Renamed"}))

    loaded = store.get_project_by_slug(project.slug)
    assert loaded is not None
    assert loaded.name == "Acme Renamed"
    assert loaded.rules.hourly_rate == 120
    assert loaded.context_notes == ["Prefers email"]
    assert store.get_project_by_slug("missing-slug-" + uuid4().hex) is None


def test_request_lifecycle_and_corrections(store) -> None:
    project = _project()
    store.upsert_project(project)
    request = ChangeRequest(
        request_id=make_request_id(),
        project_id=project.project_id,
        request_text="Add a pricing page",
        ai_analysis={"reasoning": "in progress"},
    )
    store.create_request(request)
    store.update_request_fields(
        request.request_id,
        {
            "status": RequestStatus.PENDING_FREELANCER_APPROVAL,
            "suggested_price": 500.0,
            "quoted_price": 650.0,
            "freelancer_modified_price": True,
            "ai_analysis": {"suggestedPrice": 500},
            "run_metrics": {"run_id": "run_db"},
        },
    )

    loaded = store.get_request(request.request_id)
    assert loaded.status == RequestStatus.PENDING_FREELANCER_APPROVAL
    assert loaded.ai_analysis == {"suggestedPrice": 500}
    assert loaded.run_metrics == {"run_id": "run_db"}

    corrections = store.recent_corrections(project.project_id)
    assert [item.corrected_price for item in corrections] == [650.0]

    with pytest.raises(KeyError):
        store.update_request_fields("req_missing_" + uuid4().hex, {"status": RequestStatus.APPROVED})
    with pytest.raises(ValueError):
        store.update_request_fields(request.request_id, {"request_text": "nope"})
