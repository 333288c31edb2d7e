"""Tests for the HTTP routes."""

import base64

import pytest
from unittest.mock import Mock
from fastapi.testclient import TestClient

from app import (
    app,
    get_admin_user,
    get_auth_service,
    get_current_user,
    get_review_service,
    get_workflow,
)
from kyc.auth import AuthService
from kyc.exceptions import AuthenticationRequired, PermissionDenied
from kyc.quality import ImageQualityGate
from kyc.records import KycStatus
from kyc.review import ReviewService
from kyc.workflow import KycWorkflow

USER = {"id": "user-1", "email": "user@example.com"}
ADMIN = {"id": "admin-1", "email": "admin@example.com"}
AUTH = {"Authorization": "Bearer tok"}


class TestPublicRoutes:
    def test_health(self, test_client: TestClient) -> None:
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "kyc-capture"}

    def test_instructions(self, test_client: TestClient, repository, mock_storage: Mock) -> None:
        app.dependency_overrides[get_workflow] = lambda: KycWorkflow(repository, mock_storage)

        response = test_client.get("/kyc/instructions", params={"step": "face"})

        assert response.status_code == 200
        assert list(response.json()) == ["face"]

    def test_login(self, test_client: TestClient) -> None:
        auth = Mock(spec=AuthService)
        auth.sign_in.return_value = {"access_token": "tok", "refresh_token": "ref", "user": {"id": "user-1"}}
        auth.get_role.return_value = "user"
        app.dependency_overrides[get_auth_service] = lambda: auth

        response = test_client.post("/auth/login", json={"email": "user@example.com", "password": "secret123"})

        assert response.status_code == 200
        assert response.json() == {
            "access_token": "tok",
            "refresh_token": "ref",
            "token_type": "bearer",
            "user_id": "user-1",
            "role": "user",
        }

    def test_login_failure_maps_to_401(self, test_client: TestClient) -> None:
        auth = Mock(spec=AuthService)
        auth.sign_in.side_effect = AuthenticationRequired("Invalid email or password")
        app.dependency_overrides[get_auth_service] = lambda: auth

        response = test_client.post("/auth/login", json={"email": "user@example.com", "password": "wrong!!"})

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid email or password"}

    def test_missing_token_is_401(self, test_client: TestClient) -> None:
        auth = Mock(spec=AuthService)
        auth.get_current_user.side_effect = AuthenticationRequired("Please log in to continue")
        app.dependency_overrides[get_auth_service] = lambda: auth

        response = test_client.post("/kyc/verify", json={"document_number": "ABCDE1234F"})

        assert response.status_code == 401
        auth.get_current_user.assert_called_once_with(None)


class TestKycRoutes:
    """Test suite for the user workflow routes."""

    @pytest.fixture
    def workflow(self, repository, mock_storage: Mock) -> KycWorkflow:
        workflow = KycWorkflow(repository, mock_storage, quality_gate=ImageQualityGate(100, 50))
        app.dependency_overrides[get_current_user] = lambda: USER
        app.dependency_overrides[get_workflow] = lambda: workflow
        return workflow

    def test_verify(self, test_client: TestClient, workflow: KycWorkflow) -> None:
        response = test_client.post("/kyc/verify", json={"document_number": "abcde1234f"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["next"] == "instructions"
        assert response.json()["document_number"] == "ABCDE1234F"

    def test_verify_invalid_number(self, test_client: TestClient, workflow: KycWorkflow) -> None:
        response = test_client.post("/kyc/verify", json={"document_number": "ABCD"}, headers=AUTH)

        assert response.status_code == 422
        assert response.json()["detail"] == "PAN number must be exactly 10 characters"

    def test_capture_data_url(self, test_client: TestClient, workflow: KycWorkflow, good_image: bytes) -> None:
        data_url = "data:image/png;base64," + base64.b64encode(good_image).decode()

        response = test_client.post(
            "/kyc/capture",
            data={"document_number": "ABCDE1234F", "step": "identity", "image_data_url": data_url},
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.json()["current_step"] == "address"

    def test_capture_out_of_order(self, test_client: TestClient, workflow: KycWorkflow, good_image: bytes) -> None:
        data_url = "data:image/png;base64," + base64.b64encode(good_image).decode()

        response = test_client.post(
            "/kyc/capture",
            data={"document_number": "ABCDE1234F", "step": "address", "image_data_url": data_url},
            headers=AUTH,
        )

        assert response.status_code == 409

    def test_capture_rejects_dark_image(self, test_client: TestClient, workflow: KycWorkflow,
                                        dark_image: bytes) -> None:
        response = test_client.post(
            "/kyc/capture",
            data={"document_number": "ABCDE1234F", "step": "identity"},
            files={"file": ("scan.png", dark_image, "image/png")},
            headers=AUTH,
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "Image is too dark. Please improve lighting."

    def test_capture_without_image(self, test_client: TestClient, workflow: KycWorkflow) -> None:
        response = test_client.post(
            "/kyc/capture",
            data={"document_number": "ABCDE1234F", "step": "identity"},
            headers=AUTH,
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "No image provided"

    def test_submit_requires_confirmation(self, test_client: TestClient, workflow: KycWorkflow) -> None:
        response = test_client.post(
            "/kyc/submit",
            json={"document_number": "ABCDE1234F", "address": "12 MG Road, Bangalore"},
            headers=AUTH,
        )

        assert response.status_code == 400

    def test_progress(self, test_client: TestClient, workflow: KycWorkflow) -> None:
        response = test_client.get("/kyc/progress", params={"doc": "ABCDE1234F"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["current_step"] == "identity"


class TestAdminRoutes:
    """Test suite for the admin dashboard routes."""

    @pytest.fixture
    def reviews(self, repository, mock_storage: Mock) -> ReviewService:
        reviews = ReviewService(repository, mock_storage)
        app.dependency_overrides[get_admin_user] = lambda: ADMIN
        app.dependency_overrides[get_review_service] = lambda: reviews
        return reviews

    def test_non_admin_is_forbidden(self, test_client: TestClient) -> None:
        auth = Mock(spec=AuthService)
        auth.get_current_user.return_value = USER
        auth.get_role.return_value = "user"
        auth.require_admin.side_effect = PermissionDenied("You don't have permission to access this page.")
        app.dependency_overrides[get_auth_service] = lambda: auth

        response = test_client.get("/admin/records", headers=AUTH)

        assert response.status_code == 403

    def test_list_records(self, test_client: TestClient, reviews: ReviewService, repository) -> None:
        repository.add(document_number="ABCDE1234F", kyc_status="in_review")
        repository.add(document_number="PQRST6789Z", kyc_status="completed")

        response = test_client.get("/admin/records", params={"status": "approved"}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert [r["document_number"] for r in body["records"]] == ["PQRST6789Z"]
        assert body["counts"]["total"] == 2

    def test_unknown_status_filter(self, test_client: TestClient, reviews: ReviewService) -> None:
        response = test_client.get("/admin/records", params={"status": "archived"}, headers=AUTH)

        assert response.status_code == 422

    def test_review(self, test_client: TestClient, reviews: ReviewService, repository) -> None:
        record = repository.add(kyc_status="in_review", admin_notes=None)

        response = test_client.post(
            f"/admin/records/{record['id']}/review",
            json={"status": "rejected", "failure_reason": "Name <mismatch>", "admin_notes": "a & b"},
            headers=AUTH,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "KYC record updated successfully"
        assert body["record"]["kyc_status"] == KycStatus.REJECTED.value
        assert body["record"]["failure_reason"] == "Name &lt;mismatch&gt;"
        assert body["record"]["admin_notes"] == "a &amp; b"
        assert repository.rows[record["id"]]["failure_reason"] == "Name <mismatch>"
        assert repository.rows[record["id"]]["reviewed_by"] == "admin-1"

    def test_review_invalid_transition(self, test_client: TestClient, reviews: ReviewService, repository) -> None:
        record = repository.add(kyc_status="approved")

        response = test_client.post(
            f"/admin/records/{record['id']}/review",
            json={"status": "pending"},
            headers=AUTH,
        )

        assert response.status_code == 409

    def test_record_not_found(self, test_client: TestClient, reviews: ReviewService) -> None:
        response = test_client.get("/admin/records/missing", headers=AUTH)

        assert response.status_code == 404

    def test_delete_document(self, test_client: TestClient, reviews: ReviewService, repository) -> None:
        record = repository.add(current_step="address", identity_document_url="user-1/identity_1.jpg")

        response = test_client.delete(f"/admin/records/{record['id']}/documents/identity", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["record"]["identity_document_url"] is None
        assert response.json()["record"]["current_step"] == "identity"
