"""
Test request, template and dashboard endpoints
"""

from fastapi.testclient import TestClient

import app.main as main_module
from app.main import app

MANAGER_THEN_FINANCE = [
    {"order": 1, "name": "Manager review", "approver_spec": {"kind": "direct_manager"}},
    {"order": 2, "name": "Finance sign-off", "approver_spec": {"kind": "role", "value": "finance"}},
]

CAPEX_DRAFT = {
    "title": "New build servers",
    "description": "Two racks for CI",
    "metadata": {
        "form_type": "capex",
        "amount": "18000.00",
        "cost_center": "CC-100",
        "justification": "CI capacity",
    },
}


def publish_draft(client, headers, template_id):
    created = client.post("/v1/requests", json=CAPEX_DRAFT, headers=headers)
    assert created.status_code == 201
    request_id = created.json()["id"]
    published = client.post(
        f"/v1/requests/{request_id}/publish",
        json={"template_id": str(template_id)},
        headers=headers,
    )
    assert published.status_code == 200
    return published.json()["request"]


class TestHealth:
    """Liveness and request tracing"""

    def test_health(self, client: TestClient):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers

    def test_request_id_is_echoed(self, client: TestClient):
        response = client.get("/", headers={"X-Request-ID": "trace-123"})

        assert response.headers["X-Request-ID"] == "trace-123"

    def test_lifespan_prepares_tables(self, monkeypatch):
        calls = []
        monkeypatch.setattr(main_module, "create_tables", lambda: calls.append("created"))

        with TestClient(app) as test_client:
            assert calls == ["created"]
            assert test_client.get("/health").status_code == 200

        assert app.router.on_startup == []


class TestAuthentication:
    """Bearer token handling"""

    def test_missing_token_is_rejected(self, client: TestClient):
        response = client.get("/v1/requests/mine")
        assert response.status_code in (401, 403)

    def test_invalid_token_is_rejected(self, client: TestClient):
        response = client.get(
            "/v1/requests/mine", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    def test_inactive_user_is_rejected(self, client: TestClient, make_user, auth_headers):
        retired = make_user("retired", is_active=False)

        response = client.get("/v1/requests/mine", headers=auth_headers(retired))
        assert response.status_code == 401


class TestTemplateEndpoints:
    """Template management"""

    TEMPLATE = {
        "name": "Leave approval",
        "category": "leave",
        "steps": [
            {"order": 1, "name": "Manager", "approver_spec": {"kind": "direct_manager"}},
            {"order": 2, "name": "HR", "approver_spec": {"kind": "role", "value": "hr"}},
        ],
    }

    def test_hr_creates_template(self, client: TestClient, org, auth_headers):
        response = client.post("/v1/templates", json=self.TEMPLATE, headers=auth_headers(org["hr"]))

        assert response.status_code == 201
        data = response.json()
        assert data["version"] == 1
        assert [s["order"] for s in data["steps"]] == [1, 2]

        listed = client.get(
            "/v1/templates", params={"category": "leave"}, headers=auth_headers(org["requester"])
        )
        assert [t["id"] for t in listed.json()] == [data["id"]]

    def test_employee_cannot_create_template(self, client: TestClient, org, auth_headers):
        response = client.post(
            "/v1/templates", json=self.TEMPLATE, headers=auth_headers(org["requester"])
        )
        assert response.status_code == 403

    def test_role_spec_needs_value(self, client: TestClient, org, auth_headers):
        payload = {
            "name": "Broken",
            "steps": [{"order": 1, "approver_spec": {"kind": "role"}}],
        }
        response = client.post("/v1/templates", json=payload, headers=auth_headers(org["admin"]))
        assert response.status_code == 422

    def test_update_bumps_version(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)

        response = client.put(
            f"/v1/templates/{template.id}", json=self.TEMPLATE, headers=auth_headers(org["finance"])
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert response.json()["name"] == "Leave approval"

    def test_shared_order_must_be_parallel(self, client: TestClient, org, auth_headers):
        payload = {
            "name": "Tangled",
            "steps": [
                {"order": 1, "is_parallel": True, "approver_spec": {"kind": "direct_manager"}},
                {"order": 1, "approver_spec": {"kind": "role", "value": "finance"}},
            ],
        }

        response = client.post("/v1/templates", json=payload, headers=auth_headers(org["admin"]))
        assert response.status_code == 422
        assert "not all are parallel" in response.text

    def test_update_rejects_shared_order_without_parallel(
        self, client: TestClient, org, auth_headers, make_template
    ):
        template = make_template(MANAGER_THEN_FINANCE)
        payload = {
            "name": "Tangled",
            "steps": [
                {"order": 2, "approver_spec": {"kind": "direct_manager"}},
                {"order": 2, "approver_spec": {"kind": "role", "value": "finance"}},
            ],
        }

        response = client.put(
            f"/v1/templates/{template.id}", json=payload, headers=auth_headers(org["admin"])
        )
        assert response.status_code == 422

        listed = client.get("/v1/templates", headers=auth_headers(org["admin"]))
        assert [t["version"] for t in listed.json()] == [1]


class TestRequestEndpoints:
    """Request lifecycle over HTTP"""

    def test_create_draft(self, client: TestClient, org, auth_headers):
        response = client.post("/v1/requests", json=CAPEX_DRAFT, headers=auth_headers(org["requester"]))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "draft"
        assert data["metadata"]["amount"] == "18000.00"
        assert data["steps"] == []

    def test_invalid_metadata_is_rejected(self, client: TestClient, org, auth_headers):
        payload = {"title": "Leave", "metadata": {"form_type": "leave", "days": 0}}

        response = client.post("/v1/requests", json=payload, headers=auth_headers(org["requester"]))
        assert response.status_code == 422

    def test_publish_and_approve(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        request = publish_draft(client, auth_headers(org["requester"]), template.id)
        first, second = request["steps"]

        assert request["status"] == "pending"
        assert request["active_step_id"] == first["id"]

        pending = client.get("/v1/requests/pending-approvals", headers=auth_headers(org["manager"]))
        assert [item["step_id"] for item in pending.json()] == [first["id"]]

        response = client.post(
            f"/v1/requests/{request['id']}/decisions",
            json={"step_id": first["id"], "decision": "approve"},
            headers=auth_headers(org["manager"]),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["request"]["status"] == "in_review"
        assert [e["kind"] for e in body["events"]] == ["StepApproved"]

        response = client.post(
            f"/v1/requests/{request['id']}/decisions",
            json={"step_id": second["id"], "decision": "approve", "comment": "OK"},
            headers=auth_headers(org["finance"]),
        )
        assert response.json()["request"]["status"] == "approved"

        history = client.get(
            f"/v1/requests/{request['id']}/history", headers=auth_headers(org["requester"])
        )
        assert [h["event_kind"] for h in history.json()] == [
            "RequestPublished",
            "StepApproved",
            "StepApproved",
            "RequestCompleted",
        ]

    def test_reject_without_comment(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        request = publish_draft(client, auth_headers(org["requester"]), template.id)

        response = client.post(
            f"/v1/requests/{request['id']}/decisions",
            json={"step_id": request["steps"][0]["id"], "decision": "reject"},
            headers=auth_headers(org["manager"]),
        )
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "CommentRequired"

    def test_decision_on_waiting_step_conflicts(
        self, client: TestClient, org, auth_headers, make_template
    ):
        template = make_template(MANAGER_THEN_FINANCE)
        request = publish_draft(client, auth_headers(org["requester"]), template.id)

        response = client.post(
            f"/v1/requests/{request['id']}/decisions",
            json={"step_id": request["steps"][1]["id"], "decision": "approve"},
            headers=auth_headers(org["finance"]),
        )
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "NotCurrentStep"
        assert response.json()["detail"]["step_id"] == request["steps"][1]["id"]

    def test_step_from_another_request(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        request = publish_draft(client, auth_headers(org["requester"]), template.id)

        response = client.post(
            f"/v1/requests/{request['id']}/decisions",
            json={"step_id": "00000000-0000-4000-8000-000000000000", "decision": "approve"},
            headers=auth_headers(org["manager"]),
        )
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "NotCurrentStep"

    def test_unknown_request(self, client: TestClient, org, auth_headers):
        response = client.get(
            "/v1/requests/00000000-0000-4000-8000-000000000000",
            headers=auth_headers(org["requester"]),
        )
        assert response.status_code == 404

    def test_skip_requires_admin(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        request = publish_draft(client, auth_headers(org["requester"]), template.id)
        url = f"/v1/requests/{request['id']}/steps/{request['steps'][0]['id']}/skip"

        denied = client.post(url, json={"reason": "Away"}, headers=auth_headers(org["manager"]))
        assert denied.status_code == 403

        response = client.post(url, json={"reason": "Away"}, headers=auth_headers(org["admin"]))
        assert response.status_code == 200
        steps = response.json()["request"]["steps"]
        assert [s["status"] for s in steps] == ["skipped", "pending"]

    def test_withdraw(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        request = publish_draft(client, auth_headers(org["requester"]), template.id)

        response = client.post(
            f"/v1/requests/{request['id']}/withdraw", headers=auth_headers(org["requester"])
        )
        assert response.status_code == 200
        assert response.json()["request"]["status"] == "withdrawn"

        again = client.post(
            f"/v1/requests/{request['id']}/withdraw", headers=auth_headers(org["requester"])
        )
        assert again.status_code == 409

    def test_my_requests_and_summary(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        headers = auth_headers(org["requester"])
        request = publish_draft(client, headers, template.id)
        client.post("/v1/requests", json=CAPEX_DRAFT, headers=headers)

        drafts = client.get("/v1/requests/mine", params={"status": "draft"}, headers=headers)
        assert len(drafts.json()) == 1

        summary = client.get(f"/v1/requests/{request['id']}/summary", headers=headers)
        assert summary.status_code == 200
        assert summary.json()["pending_approvers"] == [str(org["manager"].id)]
        assert summary.json()["current_order"] == 1

        hidden = client.get(
            f"/v1/requests/{request['id']}/summary", headers=auth_headers(org["outsider"])
        )
        assert hidden.status_code == 403

    def test_dashboard_stats(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        publish_draft(client, auth_headers(org["requester"]), template.id)

        response = client.get("/v1/dashboard/stats", headers=auth_headers(org["manager"]))

        assert response.status_code == 200
        assert response.json()["pending_my_approval"] == 1
        assert response.json()["decided_by_me"] == 0

    def test_watchers_follow_a_request(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        headers = auth_headers(org["requester"])
        draft = dict(CAPEX_DRAFT, watcher_ids=[str(org["hr"].id)])

        created = client.post("/v1/requests", json=draft, headers=headers)
        assert created.status_code == 201
        assert created.json()["watcher_ids"] == [str(org["hr"].id)]

        client.post(
            f"/v1/requests/{created.json()['id']}/publish",
            json={"template_id": str(template.id)},
            headers=headers,
        )

        watching = client.get("/v1/requests/watching", headers=auth_headers(org["hr"]))
        assert watching.status_code == 200
        assert [r["id"] for r in watching.json()] == [created.json()["id"]]

        detail = client.get(f"/v1/requests/{created.json()['id']}", headers=auth_headers(org["hr"]))
        assert detail.status_code == 200

    def test_unknown_watcher(self, client: TestClient, org, auth_headers):
        draft = dict(CAPEX_DRAFT, watcher_ids=["00000000-0000-4000-8000-000000000000"])

        response = client.post("/v1/requests", json=draft, headers=auth_headers(org["requester"]))
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "UnknownWatcher"

    def test_decided_lists_my_decisions(self, client: TestClient, org, auth_headers, make_template):
        template = make_template(MANAGER_THEN_FINANCE)
        request = publish_draft(client, auth_headers(org["requester"]), template.id)
        client.post(
            f"/v1/requests/{request['id']}/decisions",
            json={"step_id": request["steps"][0]["id"], "decision": "approve", "comment": "Fine"},
            headers=auth_headers(org["manager"]),
        )

        response = client.get("/v1/requests/decided", headers=auth_headers(org["manager"]))

        assert response.status_code == 200
        [item] = response.json()
        assert item["request"]["id"] == request["id"]
        assert item["step_id"] == request["steps"][0]["id"]
        assert item["outcome"] == "approved"
        assert item["comment"] == "Fine"
        assert client.get("/v1/requests/decided", headers=auth_headers(org["finance"])).json() == []
