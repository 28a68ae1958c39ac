"""
Route tests through Flask's test client.

The app is built with TestingConfig. Auth and storage are doubles, the
wallet bridge is an httpx.MockTransport behind the app's shared HTTP
client, and minting runs on the real IssuanceService thread.
"""

import io
import time
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest

from app import create_app
from core.exceptions import InvalidCredentialsError, StorageServiceError
from core.supabase_client import SupabaseClient
from services.auth_service import AuthService
from services.storage_service import StorageService


PASSWORD = "secret1"


def _bridge_handler(request):
    routes = {
        ("POST", "/wallets/connect"): {"session": "w1", "address": "addr_test1qschool"},
        ("GET", "/wallets/w1/balance"): {"lovelace": 50_000_000},
        ("GET", "/wallets/w1/utxos"): {"utxos": [{"tx_hash": "u", "index": 0}]},
        ("POST", "/wallets/w1/policy"): {"policy_id": "policy-abc", "script": {"type": "sig"}},
        ("POST", "/wallets/w1/mint/build"): {"unsigned_tx": "84a4"},
        ("POST", "/wallets/w1/sign"): {"signed_tx": "84a5"},
        ("POST", "/wallets/w1/submit"): {"tx_hash": "txhash"},
    }
    body = routes.get((request.method, request.url.path))
    if body is None:
        return httpx.Response(404, json={"error": "not found"})
    return httpx.Response(200, json=body)


@pytest.fixture
def supabase(school):
    client = MagicMock(spec=SupabaseClient)
    client.sign_in_with_password.return_value = {
        "access_token": "access-token",
        "refresh_token": "refresh-token",
        "user": {"id": school.user_id, "email": school.email},
    }
    client.get_user.return_value = {"id": school.user_id, "email": school.email}
    client.refresh_session.return_value = None
    return client


@pytest.fixture
def app(supabase, storage, content_store, school):
    app = create_app(
        "config.TestingConfig",
        http_client=httpx.Client(transport=httpx.MockTransport(_bridge_handler)),
    )
    storage.for_session.return_value = storage
    storage.get_school_profile_by_user.return_value = school

    app.config["STORAGE_SERVICE"] = storage
    app.config["AUTH_SERVICE"] = AuthService(supabase, storage)
    app.config["BLOCKFROST_CLIENT"] = content_store
    yield app
    app.config["ISSUANCE_SERVICE"].shutdown(timeout_per_thread=2.0)
    app.config["SESSION_REGISTRY"].clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signed_in(client, school):
    response = client.post("/auth/signin", json={"email": school.email, "password": PASSWORD})
    assert response.status_code == 200
    return client


def _wait_until_complete(client, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get("/issuance/status").get_json()
        if body["complete"]:
            return body
        time.sleep(0.05)
    raise AssertionError("Minting did not finish in time")


class TestHealthAndGuards:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.get_json()
        assert body["checks"]["blockfrost"] == "configured"
        assert body["checks"]["issuance_service"] == "ok"

    @pytest.mark.parametrize("path", ["/dashboard", "/issuance", "/billing", "/students", "/settings"])
    def test_protected_routes_require_sign_in(self, client, path):
        response = client.get(path)

        assert response.status_code == 401
        assert response.get_json()["status"] == "unauthenticated"

    def test_unknown_route_is_json_404(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert "error" in response.get_json()


class TestAuthRoutes:

    def test_sign_in_authenticates_session(self, client, school):
        response = client.post("/auth/signin", json={"email": school.email, "password": PASSWORD})

        body = response.get_json()
        assert body["session"]["status"] == "authenticated"
        assert body["session"]["school_profile"]["id"] == school.id
        assert client.get("/auth/session").get_json()["session"]["status"] == "authenticated"

    def test_bad_credentials(self, client, supabase, school):
        supabase.sign_in_with_password.side_effect = InvalidCredentialsError()

        response = client.post("/auth/signin", json={"email": school.email, "password": "wrong"})

        assert response.status_code == 401
        assert response.get_json()["type"] == "InvalidCredentialsError"

    def test_sign_up_validation_error(self, client):
        response = client.post("/auth/signup", json={"email": "a@b.test", "password": "123", "school_name": "S"})

        assert response.status_code == 400
        assert response.get_json()["field"] == "password"

    def test_sign_up_sanitizes_school_name(self, client, supabase):
        supabase.sign_up.return_value = {"user": {"id": "u9", "email": "a@b.test"}, "session": None}

        response = client.post(
            "/auth/signup",
            json={"email": "a@b.test", "password": PASSWORD, "school_name": "<b>Lycée</b> Test"},
        )

        assert response.status_code == 201
        assert response.get_json()["needs_confirmation"] is True
        assert supabase.sign_up.call_args.kwargs["metadata"]["school_name"] == "Lycée Test"

    def test_sign_out_detaches(self, signed_in):
        response = signed_in.post("/auth/signout")

        assert response.get_json()["session"]["status"] == "unauthenticated"
        assert signed_in.get("/dashboard").status_code == 401

    def test_password_reset_request(self, client, supabase):
        response = client.post("/auth/password-reset", json={"email": "a@b.test"})

        assert response.status_code == 202
        supabase.request_password_reset.assert_called_once()

    def test_password_reset_confirm_needs_recovery_token(self, client):
        response = client.post("/auth/password-reset/confirm", json={"password": "new-secret"})

        assert response.status_code == 400

    def test_non_text_fields_are_client_errors(self, client, supabase):
        supabase.sign_in_with_password.side_effect = InvalidCredentialsError()

        signup = client.post("/auth/signup", json={"email": "a@b.test", "password": 123456, "school_name": 7})
        signin = client.post("/auth/signin", json={"email": 42, "password": ["x"]})
        confirm = client.post(
            "/auth/password-reset/confirm",
            json={"access_token": "recovery", "expires_at": "soon", "password": 5},
        )

        assert signup.status_code == 400
        assert signin.status_code == 401
        assert confirm.status_code == 400


class TestSessionRefresh:

    REFRESHED = {"access_token": "refreshed-access", "refresh_token": "refreshed-refresh", "expires_in": 3600}

    @pytest.fixture
    def expired(self, client):
        with client.session_transaction() as cookie:
            cookie["sid"] = "browser-expired"
            cookie["auth"] = {
                "access_token": "old-access",
                "refresh_token": "old-refresh",
                "expires_at": time.time() - 5,
            }
        return client

    def test_expired_token_refreshed_before_view(self, expired, supabase, storage):
        supabase.refresh_session.return_value = self.REFRESHED

        response = expired.get("/dashboard")

        assert response.status_code == 200
        supabase.refresh_session.assert_called_once_with("old-refresh")
        supabase.get_user.assert_called_once_with("refreshed-access")
        storage.for_session.assert_called_with("refreshed-access")
        with expired.session_transaction() as cookie:
            assert cookie["auth"]["access_token"] == "refreshed-access"
            assert cookie["auth"]["refresh_token"] == "refreshed-refresh"

    def test_rejected_refresh_requires_sign_in(self, expired, supabase):
        response = expired.get("/dashboard")

        assert response.status_code == 401
        supabase.get_user.assert_not_called()
        with expired.session_transaction() as cookie:
            assert "auth" not in cookie

    def test_workflow_follows_refreshed_token(self, expired, supabase, storage, students, price_config):
        refreshed = MagicMock(spec=StorageService)
        refreshed.count_diplomas.return_value = 0
        refreshed.get_price_config.return_value = price_config
        storage.for_session.side_effect = lambda token: refreshed if token == "refreshed-access" else storage
        expiring = {"refresh_token": "short-refresh", "expires_in": 0}
        supabase.refresh_session.side_effect = [
            dict(expiring, access_token="second-access"),
            dict(expiring, access_token="third-access"),
            self.REFRESHED,
        ]
        storage.get_students.return_value = students

        selected = expired.post("/issuance/recipients", json={"student_ids": [s.user_id for s in students]})
        response = expired.get("/issuance/quote")

        assert selected.status_code == 200
        assert response.status_code == 200
        refreshed.count_diplomas.assert_called_once()
        storage.count_diplomas.assert_not_called()


class TestDashboardAndBilling:

    def test_dashboard(self, signed_in, storage):
        storage.count_diplomas.return_value = 3
        storage.count_students.return_value = 7
        storage.list_revenue_records.return_value = []
        storage.list_diplomas.return_value = []

        body = signed_in.get("/dashboard").get_json()

        assert body["stats"]["total_issued"] == 3
        assert body["stats"]["total_students"] == 7
        assert body["recent_diplomas"] == []

    def test_billing_keeps_history_when_refresh_fails(self, signed_in, storage):
        storage.get_balance.return_value = Decimal("42")
        storage.list_transactions.return_value = []
        first = signed_in.get("/billing").get_json()
        assert first["ledger"]["balance"] == "42.00"

        storage.get_balance.side_effect = StorageServiceError("down")
        second = signed_in.get("/billing").get_json()

        assert second["ledger"]["balance"] == "42.00"
        assert second["ledger"]["balance_error"] is not None
        assert second["is_stale"] is True

    def test_quote(self, signed_in, storage):
        storage.count_diplomas.return_value = 95

        body = signed_in.get("/billing/quote?quantity=10").get_json()

        assert body["quote"]["billable_storage_units"] == 5
        assert body["quote"]["total"] == "5.05"

    @pytest.mark.parametrize("quantity", ["abc", "0"])
    def test_quote_rejects_bad_quantity(self, signed_in, quantity):
        assert signed_in.get(f"/billing/quote?quantity={quantity}").status_code == 400


class TestStudentsAndSettings:

    def test_create_student_sanitized(self, signed_in, storage):
        storage.create_student.side_effect = lambda student: student

        response = signed_in.post("/students", json={"full_name": "<i>Zoé</i> Kone", "level": "Master"})

        assert response.status_code == 201
        student = response.get_json()["student"]
        assert student["full_name"] == "Zoé Kone"
        assert student["user_id"]

    def test_create_student_requires_name(self, signed_in):
        assert signed_in.post("/students", json={"email": "x@y.test"}).status_code == 400

    def test_unknown_student(self, signed_in, storage):
        storage.get_student.return_value = None

        assert signed_in.get("/students/missing").status_code == 404

    def test_update_settings_refreshes_session(self, signed_in, storage, school):
        from models.records import SchoolProfile

        storage.update_school_profile.return_value = SchoolProfile(
            id=school.id, user_id=school.user_id, name="Renamed"
        )

        response = signed_in.patch("/settings", json={"name": "<b>Renamed</b>", "balance": 1000})

        assert response.status_code == 200
        storage.update_school_profile.assert_called_once_with(school.id, {"name": "Renamed"})
        assert signed_in.get("/settings").get_json()["school_profile"]["name"] == "Renamed"


class TestIssuanceRoutes:

    def test_empty_selection_cannot_proceed(self, signed_in):
        response = signed_in.post("/issuance/recipients/done")

        assert response.status_code == 400
        assert signed_in.get("/issuance").get_json()["workflow"]["state"] == "selecting_recipients"

    def test_unknown_students_rejected(self, signed_in, storage, students):
        storage.get_students.return_value = students[:1]

        response = signed_in.post(
            "/issuance/recipients", json={"student_ids": [students[0].user_id, "ghost"]}
        )

        assert response.status_code == 400
        assert response.get_json()["missing"] == ["ghost"]

    def test_non_text_template_id_is_rejected(self, signed_in, storage, students):
        storage.get_students.return_value = students[:1]
        signed_in.post("/issuance/recipients", json={"student_ids": [students[0].user_id]})
        signed_in.post("/issuance/recipients/done")

        response = signed_in.post("/issuance/asset/template", json={"template_id": 5})

        assert response.status_code == 400
        assert response.get_json()["field"] == "template_id"
        storage.get_template.assert_not_called()

    @pytest.mark.parametrize("address", [123, ["addr_test1q"], {"bech32": "addr_test1q"}])
    def test_non_text_wallet_address_is_rejected(self, signed_in, address):
        response = signed_in.post("/wallet/connect", json={"address": address})

        assert response.status_code == 400
        assert response.get_json()["field"] == "address"

    def test_mint_requires_wallet(self, signed_in, storage, students, template):
        storage.get_students.return_value = students
        storage.get_template.return_value = template

        signed_in.post("/issuance/recipients", json={"student_ids": [s.user_id for s in students]})
        signed_in.post("/issuance/recipients/done")
        signed_in.post("/issuance/asset/template", json={"template_id": template.id})
        signed_in.post("/issuance/confirm")

        response = signed_in.post("/issuance/mint")

        assert response.status_code == 422
        assert response.get_json()["type"] == "WalletNotConnectedError"

    def test_full_issuance_with_uploaded_image(self, signed_in, storage, students, png_bytes):
        storage.get_students.return_value = students[:2]

        response = signed_in.post(
            "/issuance/recipients", json={"student_ids": [s.user_id for s in students[:2]]}
        )
        assert len(response.get_json()["workflow"]["recipients"]) == 2
        assert signed_in.post("/issuance/recipients/done").status_code == 200

        response = signed_in.post(
            "/issuance/asset/image",
            data={"image": (io.BytesIO(png_bytes), "diploma.png")},
            content_type="multipart/form-data",
        )
        assert response.get_json()["workflow"]["asset"]["kind"] == "image"

        confirm = signed_in.post("/issuance/confirm").get_json()
        assert confirm["workflow"]["state"] == "ready_to_mint"
        assert confirm["quote"]["batch_size"] == 2

        assert signed_in.post("/wallet/connect", json={"address": "addr_test1qschool"}).status_code == 200

        response = signed_in.post("/issuance/mint")
        assert response.status_code == 202

        status = _wait_until_complete(signed_in)
        assert status["workflow"]["state"] == "completed"
        assert status["error"] is False
        assert len(status["workflow"]["issued"]) == 2
        assert len(storage.created) == 2

        # A second mint of the same batch is a state error, not a new batch
        assert signed_in.post("/issuance/mint").status_code == 409

        reset = signed_in.post("/issuance/reset").get_json()
        assert reset["workflow"]["state"] == "selecting_recipients"

    def test_invalid_image_rejected(self, signed_in, storage, students):
        storage.get_students.return_value = students[:1]
        signed_in.post("/issuance/recipients", json={"student_ids": [students[0].user_id]})
        signed_in.post("/issuance/recipients/done")

        response = signed_in.post(
            "/issuance/asset/image",
            data={"image": (io.BytesIO(b"not an image"), "diploma.png")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 400
        assert response.get_json()["field"] == "image"

    def test_cancel_then_reset(self, signed_in):
        assert signed_in.post("/issuance/cancel").get_json()["workflow"]["state"] == "cancelled"
        assert signed_in.post("/issuance/back").status_code == 409
        assert signed_in.post("/issuance/reset").status_code == 200

    def test_oversized_upload(self, app, signed_in, storage, students, png_bytes):
        app.config["MAX_CONTENT_LENGTH"] = 64
        storage.get_students.return_value = students[:1]
        signed_in.post("/issuance/recipients", json={"student_ids": [students[0].user_id]})
        signed_in.post("/issuance/recipients/done")

        response = signed_in.post(
            "/issuance/asset/image",
            data={"image": (io.BytesIO(png_bytes * 4), "diploma.png")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 413
