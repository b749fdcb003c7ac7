"""
test_wizard_routes.py — HTTP surface of the wizard service.

The app runs under FastAPI's TestClient with its lifespan; the shared httpx
client is swapped for one backed by httpx.MockTransport that plays the
construction REST backend.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from material_wizard.api.deps import get_http_client
from material_wizard.main import app

PREFIX = "/api/v1/material-wizard"
AUTH = {"Authorization": "Bearer site-token"}


class FakeBackend:
    """Answers the REST endpoints the wizard uses; records material POSTs."""

    def __init__(self, role="owner"):
        self.role = role
        self.created = []
        self.create_error = None
        self.capital_warning = None
        self.extra_categories = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/auth/me":
            return self._ok({"_id": "u-1", "role": self.role, "email": "site@example.com"})
        if path == "/api/categories":
            return self._ok([
                {"_id": "cat-cement", "name": "Cement & Concrete"},
                {"_id": "cat-tiles", "name": "Tiling & Terrazzo"},
                *self.extra_categories,
            ])
        if path == "/api/projects":
            return self._ok([
                {"_id": "P1", "projectName": "Riverside Apartments"},
                {"_id": "P2", "projectName": "Kilimani Offices"},
            ])
        if path == "/api/floors":
            pid = request.url.params["projectId"]
            return self._ok([{"_id": f"{pid}-G", "name": "Ground Floor", "floorNumber": 0}])
        if path == "/api/phases":
            pid = request.url.params["projectId"]
            return self._ok([{"_id": f"{pid}-PH1", "phaseName": "Superstructure"}])
        if path == "/api/materials" and request.method == "POST":
            if self.create_error:
                return httpx.Response(400, json={"success": False, "error": self.create_error})
            self.created.append(json.loads(request.content))
            data = {"_id": "m-100"}
            if self.capital_warning:
                data["capitalWarning"] = {"message": self.capital_warning}
            return httpx.Response(201, json={"success": True, "data": data})
        return httpx.Response(404, json={"success": False, "error": "Not found"})

    @staticmethod
    def _ok(data):
        return httpx.Response(200, json={"success": True, "data": data})


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    mock_http = httpx.AsyncClient(transport=httpx.MockTransport(backend), base_url="http://backend")
    app.dependency_overrides[get_http_client] = lambda: mock_http
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _start(client, **body):
    r = client.post(f"{PREFIX}/sessions", json=body or None, headers=AUTH)
    assert r.status_code == 201, r.text
    return r.json()


def _url(session_id, action=""):
    return f"{PREFIX}/sessions/{session_id}" + (f"/{action}" if action else "")


# ===========================================================================
# Class 1: Sessions & ownership
# ===========================================================================

class TestSessions:

    def test_requires_bearer_token(self, client):
        assert client.post(f"{PREFIX}/sessions").status_code == 401

    def test_start_loads_reference_data(self, client):
        body = _start(client)
        assert body["state"]["entryType"] is None
        assert body["state"]["step"] == 1
        assert [c["_id"] for c in body["categories"]] == ["cat-cement", "cat-tiles"]
        assert len(body["projects"]) == 2
        assert "bag" in body["unitOptions"]
        assert body["notices"] == []

    def test_project_prefill(self, client):
        body = _start(client, projectId="P2")
        assert body["state"]["draft"]["projectId"] == "P2"
        assert body["floors"][0]["_id"] == "P2-G"
        assert body["phases"][0]["_id"] == "P2-PH1"

    def test_session_private_to_token(self, client):
        sid = _start(client)["sessionId"]
        other = {"Authorization": "Bearer another-token"}
        assert client.get(_url(sid), headers=other).status_code == 404
        assert client.get(_url(sid), headers=AUTH).status_code == 200

    def test_abandon(self, client):
        sid = _start(client)["sessionId"]
        assert client.delete(_url(sid), headers=AUTH).status_code == 204
        assert client.get(_url(sid), headers=AUTH).status_code == 404

    def test_health_counts_sessions(self, client):
        _start(client)
        body = client.get("/health").json()
        assert body["status"] == "active"
        assert body["active_sessions"] == 1

    def test_malformed_category_row_skipped(self, client, backend):
        backend.extra_categories = [{"name": "no id"}, {"_id": "cat-elec", "name": "Electrical Works"}]
        body = _start(client)
        assert [c["_id"] for c in body["categories"]] == ["cat-cement", "cat-tiles", "cat-elec"]

    def test_request_id_echoed(self, client):
        r = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert r.headers["X-Request-ID"] == "req-42"
        assert r.headers["X-Content-Type-Options"] == "nosniff"


# ===========================================================================
# Class 2: Gate
# ===========================================================================

class TestGate:

    def test_steps_locked_before_retroactive(self, client):
        sid = _start(client)["sessionId"]
        assert client.post(_url(sid, "next"), headers=AUTH).status_code == 409

    def test_clerk_lands_on_new_purchase(self, client, backend):
        backend.role = "clerk"
        body = _start(client, projectId="P1")
        assert body["state"]["entryType"] == "new_purchase"
        assert body["materialRequestUrl"] == "/material-requests/new?projectId=P1"
        assert body["canEmergencyOverride"] is True

        r = client.post(_url(body["sessionId"], "emergency-override"), headers=AUTH)
        assert r.status_code == 200
        assert r.json()["state"]["entryType"] == "retroactive_entry"
        assert r.json()["state"]["emergencyOverride"] is True

    def test_override_forbidden_without_create_role(self, client, backend):
        backend.role = "accountant"
        sid = _start(client)["sessionId"]
        client.post(_url(sid, "entry-type"), json={"entryType": "new_purchase"}, headers=AUTH)
        assert client.post(_url(sid, "emergency-override"), headers=AUTH).status_code == 403

    def test_change_selection(self, client):
        sid = _start(client)["sessionId"]
        client.post(_url(sid, "entry-type"), json={"entryType": "retroactive_entry"}, headers=AUTH)
        r = client.post(_url(sid, "change-selection"), headers=AUTH)
        assert r.json()["state"]["entryType"] is None

    def test_invalid_entry_type(self, client):
        sid = _start(client)["sessionId"]
        r = client.post(_url(sid, "entry-type"), json={"entryType": "gift"}, headers=AUTH)
        assert r.status_code == 422


# ===========================================================================
# Class 3: Editing & navigation
# ===========================================================================

class TestEditing:

    @pytest.fixture
    def sid(self, client):
        sid = _start(client, projectId="P1")["sessionId"]
        client.post(_url(sid, "entry-type"), json={"entryType": "retroactive_entry"}, headers=AUTH)
        return sid

    def test_blocked_next_reports_error(self, client, sid):
        r = client.post(_url(sid, "next"), headers=AUTH)
        assert r.status_code == 200
        assert r.json()["advanced"] is False
        assert r.json()["state"]["error"] == "Material name is required"

    def test_unknown_field_rejected(self, client, sid):
        r = client.patch(_url(sid, "fields"), json={"colour": "red"}, headers=AUTH)
        assert r.status_code == 422

    def test_bad_payment_method_rejected(self, client, sid):
        r = client.patch(_url(sid, "fields"), json={"paymentMethod": "BARTER"}, headers=AUTH)
        assert r.status_code == 422

    def test_project_switch_via_route(self, client, sid):
        client.patch(_url(sid, "fields"), json={"phaseId": "P1-PH1", "floor": "P1-G"}, headers=AUTH)
        r = client.post(_url(sid, "project"), json={"projectId": "P2"}, headers=AUTH)
        draft = r.json()["state"]["draft"]
        assert draft["phaseId"] == ""
        assert draft["floor"] == ""
        assert r.json()["phases"][0]["_id"] == "P2-PH1"

    def test_finishing_fields(self, client, sid):
        client.patch(_url(sid, "fields"), json={"categoryId": "cat-tiles"}, headers=AUTH)
        r = client.patch(_url(sid, "finishing"), json={"tileType": "Porcelain"}, headers=AUTH)
        body = r.json()
        assert body["finishingType"] == "tiling"
        assert body["missingFinishingFields"] == ["squareMeters", "brand"]

    @pytest.mark.parametrize("field, value", [("quantity", "nan"), ("unitCost", "inf"), ("estimatedUnitCost", "-Infinity")])
    def test_non_finite_numbers_rejected(self, client, sid, field, value):
        r = client.patch(_url(sid, "fields"), json={field: value}, headers=AUTH)
        assert r.status_code == 422

        again = client.get(_url(sid), headers=AUTH)
        assert again.status_code == 200
        assert again.json()["state"]["draft"][field] is None
        assert again.json()["total"] == "0.00"

    def test_phase_from_other_project_rejected(self, client, sid):
        r = client.patch(_url(sid, "fields"), json={"phaseId": "P2-PH1"}, headers=AUTH)
        assert r.status_code == 422
        assert r.json()["detail"] == "Selected phase does not belong to this project"
        assert client.get(_url(sid), headers=AUTH).json()["state"]["draft"]["phaseId"] == ""

    def test_unknown_floor_rejected(self, client, sid):
        r = client.patch(_url(sid, "fields"), json={"phaseId": "P1-PH1", "floor": "BOGUS"}, headers=AUTH)
        assert r.status_code == 422
        draft = client.get(_url(sid), headers=AUTH).json()["state"]["draft"]
        assert draft["floor"] == ""
        assert draft["phaseId"] == ""

    def test_project_and_phase_in_one_patch(self, client, sid):
        r = client.patch(_url(sid, "fields"), json={"projectId": "P2", "phaseId": "P2-PH1"}, headers=AUTH)
        assert r.status_code == 200
        draft = r.json()["state"]["draft"]
        assert draft["projectId"] == "P2"
        assert draft["phaseId"] == "P2-PH1"

    def test_stale_phase_in_project_patch_pruned(self, client, sid):
        r = client.patch(_url(sid, "fields"), json={"projectId": "P2", "phaseId": "P1-PH1"}, headers=AUTH)
        assert r.status_code == 200
        assert r.json()["state"]["draft"]["phaseId"] == ""

    def test_library_prefill(self, client, sid):
        r = client.post(
            _url(sid, "library-material"),
            json={"_id": "lib-1", "name": "Portland Cement", "defaultUnit": "bag", "defaultUnitCost": 780},
            headers=AUTH,
        )
        draft = r.json()["state"]["draft"]
        assert draft["name"] == "Portland Cement"
        assert draft["unit"] == "bag"
        assert draft["estimatedUnitCost"] == 780


# ===========================================================================
# Class 4: End-to-end submit
# ===========================================================================

class TestSubmit:

    def _fill_to_review(self, client):
        sid = _start(client, projectId="P1")["sessionId"]
        client.post(_url(sid, "entry-type"), json={"entryType": "retroactive_entry"}, headers=AUTH)
        client.patch(
            _url(sid, "fields"),
            json={"name": "Cement", "phaseId": "P1-PH1", "quantity": 50, "unit": "bag"},
            headers=AUTH,
        )
        for _ in range(4):
            r = client.post(_url(sid, "next"), headers=AUTH)
            assert r.json()["advanced"] is True
        assert r.json()["state"]["step"] == 5
        return sid

    def test_review_summary(self, client):
        sid = self._fill_to_review(client)
        review = client.get(_url(sid, "review"), headers=AUTH).json()
        assert review["project"] == "Riverside Apartments"
        assert review["phase"] == "Superstructure"
        assert review["quantity"] == "50 bag"
        assert review["unitCost"] == "KES 0.00 (Missing)"

    def test_submit_creates_material(self, client, backend):
        sid = self._fill_to_review(client)
        r = client.post(_url(sid, "submit"), headers=AUTH)
        assert r.status_code == 200
        body = r.json()
        assert body["outcome"]["ok"] is True
        assert body["outcome"]["redirectTo"] == "/items/m-100"
        assert body["notices"][0]["message"] == "Material created successfully!"

        payload = backend.created[0]
        assert payload["entryType"] == "retroactive_entry"
        assert payload["isRetroactiveEntry"] is True
        assert payload["quantityPurchased"] == 50
        assert "unitCost" not in payload
        assert payload["costStatus"] == "missing"

        assert client.get(_url(sid), headers=AUTH).status_code == 404

    def test_capital_warning(self, client, backend):
        backend.capital_warning = "Only KES 10,000 left"
        sid = self._fill_to_review(client)
        notice = client.post(_url(sid, "submit"), headers=AUTH).json()["notices"][0]
        assert notice["level"] == "warning"
        assert notice["durationMs"] == 10000

    def test_backend_rejection_keeps_session(self, client, backend):
        backend.create_error = "Phase is locked"
        sid = self._fill_to_review(client)
        r = client.post(_url(sid, "submit"), headers=AUTH)
        assert r.status_code == 502
        detail = r.json()["detail"]
        assert detail["outcome"]["error"] == "Phase is locked"
        assert detail["state"]["step"] == 5

        again = client.get(_url(sid), headers=AUTH).json()
        assert again["state"]["error"] == "Phase is locked"

    def test_edits_conflict_while_submitting(self, client):
        sid = self._fill_to_review(client)
        client.app.state.sessions._sessions[sid].submitting = True

        r = client.patch(_url(sid, "fields"), json={"quantity": 80}, headers=AUTH)
        assert r.status_code == 409
        assert r.json()["detail"] == "Submission in progress; the draft cannot be changed"
        assert client.patch(_url(sid, "finishing"), json={"brand": "Bamburi"}, headers=AUTH).status_code == 409
        assert client.post(_url(sid, "prev"), headers=AUTH).status_code == 409
        assert client.post(_url(sid, "submit"), headers=AUTH).status_code == 409

        state = client.get(_url(sid), headers=AUTH).json()["state"]
        assert state["draft"]["quantity"] == 50
        assert state["step"] == 5

    def test_incomplete_draft_rejected(self, client, backend):
        sid = _start(client, projectId="P1")["sessionId"]
        client.post(_url(sid, "entry-type"), json={"entryType": "retroactive_entry"}, headers=AUTH)
        r = client.post(_url(sid, "submit"), headers=AUTH)
        assert r.status_code == 422
        assert r.json()["detail"]["outcome"]["failure"] == "validation"
        assert backend.created == []

    def test_metrics(self, client):
        sid = self._fill_to_review(client)
        client.post(_url(sid, "submit"), headers=AUTH)
        metrics = client.get("/metrics").json()
        assert metrics["sessions_started"] == 1
        assert metrics["materials_submitted"] == 1
