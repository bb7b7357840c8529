"""
HTTP tests for the concession applications router.

The router runs on a bare FastAPI app with the in-memory repository and a
recording dispatcher injected through dependency overrides.
"""

from dataclasses import replace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.auth import Actor, ActorRole, get_current_actor
from app.modules.concession_applications.domain import StatusChange
from app.modules.concession_applications.router import (
    get_application_repository,
    get_notification_dispatcher,
    router,
)
from app.modules.concession_applications.workflow import ApplicationStatus

BASE = "/api/v1/applications"


@pytest.fixture
def api(repository, dispatcher):
    app = FastAPI()
    app.include_router(router, prefix=BASE)
    app.dependency_overrides[get_application_repository] = lambda: repository
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    with (
        patch(
            "app.modules.concession_applications.router.check_actor_rate_limit",
            new=AsyncMock(),
        ),
        TestClient(app) as client,
    ):
        yield client


def _act_as(api, actor: Actor) -> None:
    api.app.dependency_overrides[get_current_actor] = lambda: actor


@pytest.fixture
def seed(repository, student):
    """Put an application straight into the in-memory repository."""

    def _seed(application):
        repository._applications[application.id] = application
        repository._history[application.id] = [
            StatusChange(
                application_id=application.id,
                from_status=None,
                to_status=ApplicationStatus.PENDING,
                actor_role=ActorRole.STUDENT,
                actor_id=student.id,
                changed_at=application.application_date,
            )
        ]
        return application

    return _seed


@pytest.fixture
def payment_body():
    return {
        "transaction_id": "TXN1",
        "transaction_date": "2026-06-02",
        "account_holder": "Anjali Nair",
        "amount": "150.00",
        "payment_method": "UPI",
    }


class TestCreate:
    def test_student_creates_application(self, api, student, depot_id):
        _act_as(api, student)
        response = api.post(
            BASE,
            json={"depot_id": str(depot_id), "start_point": "Aluva", "end_point": "Edappally"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["student_id"] == str(student.scope_id)
        assert data["college_id"] == str(student.college_id)
        assert data["version"] == 0

    def test_duplicate_is_conflict(self, api, student, depot_id):
        _act_as(api, student)
        body = {"depot_id": str(depot_id), "start_point": "Aluva", "end_point": "Edappally"}
        api.post(BASE, json=body)

        response = api.post(BASE, json=body)
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "DUPLICATE_APPLICATION"

    def test_college_cannot_create(self, api, college, depot_id):
        _act_as(api, college)
        response = api.post(
            BASE,
            json={"depot_id": str(depot_id), "start_point": "Aluva", "end_point": "Edappally"},
        )
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "ROLE_NOT_ALLOWED"

    def test_same_start_and_end(self, api, student, depot_id):
        _act_as(api, student)
        response = api.post(
            BASE,
            json={"depot_id": str(depot_id), "start_point": "Aluva", "end_point": "aluva"},
        )
        assert response.status_code == 422


class TestReads:
    def test_get_and_list(self, api, seed, pending_application, college):
        seed(pending_application)
        _act_as(api, college)

        detail = api.get(f"{BASE}/{pending_application.id}")
        assert detail.status_code == 200
        assert detail.json()["id"] == str(pending_application.id)

        listing = api.get(BASE, params={"status": "pending"})
        assert listing.status_code == 200
        assert listing.json()["total"] == 1

        empty = api.get(BASE, params={"status": "issued"})
        assert empty.json()["total"] == 0

    def test_not_found(self, api, college):
        _act_as(api, college)
        response = api.get(f"{BASE}/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "APPLICATION_NOT_FOUND"

    def test_outsider_forbidden(self, api, seed, pending_application):
        seed(pending_application)
        _act_as(api, Actor(id=uuid4(), role=ActorRole.DEPOT, scope_id=uuid4()))
        response = api.get(f"{BASE}/{pending_application.id}")
        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "FORBIDDEN"

    def test_progress_and_history(self, api, seed, pending_application, student):
        seed(pending_application)
        _act_as(api, student)

        progress = api.get(f"{BASE}/{pending_application.id}/progress")
        assert progress.status_code == 200
        assert progress.json()["awaiting"] == "college"
        assert progress.json()["steps"][0]["completed"] is True

        history = api.get(f"{BASE}/{pending_application.id}/history")
        assert history.status_code == 200
        assert history.json()["history"][0]["to_status"] == "pending"


class TestStatusUpdate:
    def test_college_verifies(self, api, seed, pending_application, college):
        seed(pending_application)
        _act_as(api, college)

        response = api.patch(
            f"{BASE}/{pending_application.id}/status", json={"status": "college_verified"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "college_verified"
        assert response.json()["college_verified_at"] is not None

    def test_rejection_without_reason(self, api, seed, pending_application, college):
        seed(pending_application)
        _act_as(api, college)

        response = api.patch(
            f"{BASE}/{pending_application.id}/status", json={"status": "college_rejected"}
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "REASON_REQUIRED"

    def test_invalid_transition(self, api, seed, pending_application, depot):
        seed(pending_application)
        _act_as(api, depot)

        response = api.patch(
            f"{BASE}/{pending_application.id}/status", json={"status": "issued"}
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_TRANSITION"

    def test_student_cannot_patch(self, api, seed, pending_application, student):
        seed(pending_application)
        _act_as(api, student)

        response = api.patch(
            f"{BASE}/{pending_application.id}/status", json={"status": "college_verified"}
        )
        assert response.status_code == 403

    def test_conflict(self, api, repository, seed, pending_application, college):
        seed(pending_application)
        _act_as(api, college)
        # Loaded copy disagrees with the stored version
        repository.get = AsyncMock(return_value=replace(pending_application, version=7))

        response = api.patch(
            f"{BASE}/{pending_application.id}/status", json={"status": "college_verified"}
        )
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "CONFLICT"

    def test_unknown_status_value(self, api, seed, pending_application, college):
        seed(pending_application)
        _act_as(api, college)
        response = api.patch(
            f"{BASE}/{pending_application.id}/status", json={"status": "approved"}
        )
        assert response.status_code == 422


class TestPayment:
    def test_student_submits_payment(
        self, api, seed, make_application, student, payment_body
    ):
        application = make_application(ApplicationStatus.DEPOT_APPROVED)
        seed(application)
        _act_as(api, student)

        response = api.post(f"{BASE}/{application.id}/payment", json=payment_body)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "payment_pending"
        assert data["payment_details"]["transaction_id"] == "TXN1"
        assert data["depot_approved_at"] is not None
        assert data["payment_verified_at"] is None

    @pytest.mark.parametrize(
        "changes",
        [
            {"amount": "0"},
            {"amount": "-5"},
            {"transaction_id": ""},
            {"transaction_date": "not-a-date"},
        ],
    )
    def test_invalid_payment(
        self, api, seed, make_application, student, payment_body, changes
    ):
        application = make_application(ApplicationStatus.DEPOT_APPROVED)
        seed(application)
        _act_as(api, student)

        response = api.post(
            f"{BASE}/{application.id}/payment", json={**payment_body, **changes}
        )
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_PAYMENT"

    def test_missing_field(self, api, seed, make_application, student, payment_body):
        application = make_application(ApplicationStatus.DEPOT_APPROVED)
        seed(application)
        _act_as(api, student)
        del payment_body["payment_method"]

        response = api.post(f"{BASE}/{application.id}/payment", json=payment_body)
        assert response.status_code == 400
        assert "payment_method" in response.json()["detail"]["message"]

    def test_payment_before_approval(
        self, api, seed, pending_application, student, payment_body
    ):
        seed(pending_application)
        _act_as(api, student)

        response = api.post(f"{BASE}/{pending_application.id}/payment", json=payment_body)
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "INVALID_TRANSITION"
