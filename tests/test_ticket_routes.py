from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from helpdesk.dependencies import tickets as ticket_deps
from helpdesk.main import create_app
from helpdesk.tickets import (
    InMemoryTicketRepository,
    InMemoryUserDirectory,
    Role,
    TicketPage,
    TicketService,
    TicketStatus,
    UserRecord,
    VersionConflictError,
)

ADMIN = {"Authorization": "Bearer admin-token"}
CSR = {"Authorization": "Bearer csr-token"}
FARMER = {"Authorization": "Bearer farmer-token"}
PROVIDER = {"Authorization": "Bearer provider-token"}

NEW_TICKET = {
    "title": "Tractor rental not delivered",
    "description": "The rental was paid for Monday but nobody showed up.",
    "issue_type": "service_complaint",
    "priority": "high",
    "related_service": "SRV-77",
}


@pytest.fixture
def live_client(audit):
    app = create_app()
    users = InMemoryUserDirectory(
        [
            UserRecord(id="csr", role=Role.CUSTOMER_SERVICE_REP),
            UserRecord(id="admin", role=Role.ADMIN),
        ]
    )
    app.state.ticket_service = TicketService(InMemoryTicketRepository(), users, audit=audit)
    return TestClient(app)


@pytest.fixture
def mocked_client():
    app = create_app()
    service = AsyncMock()

    async def override_service():
        return service

    app.dependency_overrides[ticket_deps.get_ticket_service] = override_service
    client = TestClient(app)
    try:
        yield client, service
    finally:
        app.dependency_overrides.clear()


def _create(client: TestClient) -> dict:
    response = client.post("/tickets", json=NEW_TICKET, headers=FARMER)
    assert response.status_code == 201
    return response.json()["data"]


def test_create_ticket_returns_envelope(live_client):
    response = live_client.post("/tickets", json=NEW_TICKET, headers=FARMER)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Ticket created successfully"
    data = body["data"]
    assert data["ticket_number"] == "TK000001"
    assert data["status"] == "open"
    assert data["priority"] == "high"
    assert data["submitted_by"] == "farmer"
    assert data["allowed_transitions"] == ["assigned", "closed"]
    assert [event["action"] for event in data["history"]] == ["created"]


def test_ticket_lifecycle_over_http(live_client):
    ticket = _create(live_client)
    ticket_id = ticket["id"]

    assigned = live_client.patch(f"/tickets/{ticket_id}/assign", json={"representative_id": "csr"}, headers=ADMIN)
    assert assigned.status_code == 200
    assert assigned.json()["data"]["status"] == "assigned"
    assert assigned.json()["data"]["assigned_to"] == "csr"

    progressed = live_client.patch(
        f"/tickets/{ticket_id}/status",
        json={"status": "in_progress", "notes": "Calling the provider"},
        headers=CSR,
    )
    assert progressed.status_code == 200
    assert progressed.json()["data"]["history"][-1]["notes"] == "Calling the provider"

    live_client.post(
        f"/tickets/{ticket_id}/comments",
        json={"message": "Provider blacklisted", "is_internal": True},
        headers=CSR,
    )
    live_client.post(f"/tickets/{ticket_id}/comments", json={"message": "Refund on its way"}, headers=CSR)

    farmer_view = live_client.get(f"/tickets/{ticket_id}", headers=FARMER).json()["data"]
    assert [comment["message"] for comment in farmer_view["comments"]] == ["Refund on its way"]
    assert [event["description"].split(" (ref")[0] for event in farmer_view["history"][-1:]] == ["Comment added"]
    assert not any(event["description"].startswith("Internal") for event in farmer_view["history"])
    staff_view = live_client.get(f"/tickets/{ticket_id}", headers=CSR).json()["data"]
    assert len(staff_view["comments"]) == 2
    assert len(staff_view["history"]) == len(farmer_view["history"]) + 1

    resolved = live_client.patch(f"/tickets/{ticket_id}/status", json={"status": "resolved"}, headers=CSR)
    assert resolved.json()["data"]["allowed_transitions"] == ["in_progress", "closed"]

    closed = live_client.patch(
        f"/tickets/{ticket_id}/close",
        json={"rating": 4, "feedback": "Took a while"},
        headers=FARMER,
    )
    assert closed.status_code == 200
    data = closed.json()["data"]
    assert data["status"] == "closed"
    assert data["customer_satisfaction"]["rating"] == 4
    assert data["allowed_transitions"] == []


def test_errors_use_failure_envelope(live_client):
    ticket_id = _create(live_client)["id"]

    denied = live_client.patch(f"/tickets/{ticket_id}/assign", json={"representative_id": "csr"}, headers=FARMER)
    assert denied.status_code == 403
    assert denied.json()["success"] is False
    assert denied.json()["error"]["kind"] == "permission_denied"

    invalid = live_client.patch(f"/tickets/{ticket_id}/status", json={"status": "resolved"}, headers=ADMIN)
    assert invalid.status_code == 409
    assert invalid.json()["error"]["kind"] == "invalid_transition"

    missing = live_client.get("/tickets/does-not-exist", headers=ADMIN)
    assert missing.status_code == 404
    assert missing.json()["error"]["kind"] == "not_found"

    unknown_user = live_client.patch(
        f"/tickets/{ticket_id}/assign", json={"representative_id": "farmer"}, headers=ADMIN
    )
    assert unknown_user.status_code == 404

    internal = live_client.post(
        f"/tickets/{ticket_id}/comments",
        json={"message": "psst", "is_internal": True},
        headers=FARMER,
    )
    assert internal.status_code == 403


def test_request_validation_uses_failure_envelope(live_client):
    response = live_client.post("/tickets", json={"description": "No title"}, headers=FARMER)

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["error"]["kind"] == "validation_error"
    assert "title" in body["error"]["message"]


def test_comment_edit_and_delete_routes(live_client):
    ticket_id = _create(live_client)["id"]
    created = live_client.post(f"/tickets/{ticket_id}/comments", json={"message": "First draft"}, headers=FARMER)
    assert created.status_code == 201
    comment_id = created.json()["data"]["comments"][0]["id"]

    edited = live_client.patch(
        f"/tickets/{ticket_id}/comments/{comment_id}", json={"message": "Final text"}, headers=FARMER
    )
    assert edited.json()["data"]["comments"][0]["message"] == "Final text"
    assert edited.json()["data"]["comments"][0]["edited_at"] is not None

    deleted = live_client.delete(f"/tickets/{ticket_id}/comments/{comment_id}", headers=FARMER)
    comment = deleted.json()["data"]["comments"][0]
    assert comment["is_deleted"] is True
    assert comment["message"] == "[comment deleted]"
    assert [event["action"] for event in deleted.json()["data"]["history"]] == ["created", "comment_added"]


def test_delete_ticket_route(live_client):
    ticket_id = _create(live_client)["id"]

    response = live_client.delete(f"/tickets/{ticket_id}", headers=FARMER)

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Ticket deleted successfully", "data": None}
    assert live_client.get(f"/tickets/{ticket_id}", headers=FARMER).status_code == 404


def test_statistics_routes(live_client):
    ticket_id = _create(live_client)["id"]
    live_client.patch(f"/tickets/{ticket_id}/assign", json={"representative_id": "csr"}, headers=ADMIN)

    overview = live_client.get("/tickets/stats", headers=ADMIN)
    assert overview.status_code == 200
    assert overview.json()["data"]["total"] == 1
    assert overview.json()["data"]["by_issue_type"]["service_complaint"] == 1

    assert live_client.get("/tickets/stats", headers=CSR).status_code == 403
    assert live_client.get("/tickets/stats/me", headers=PROVIDER).status_code == 403

    mine = live_client.get("/tickets/stats/me", headers=CSR)
    assert mine.json()["data"]["representative_id"] == "csr"
    assert mine.json()["data"]["total_assigned"] == 1

    other = live_client.get("/tickets/stats/representatives/csr", headers=ADMIN)
    assert other.json()["data"] == mine.json()["data"]


def test_list_tickets_resolves_me_filter(mocked_client, make_ticket):
    client, service = mocked_client
    ticket = make_ticket(status=TicketStatus.ASSIGNED, assigned_to="csr")
    service.list_tickets = AsyncMock(return_value=TicketPage(items=[ticket], total=11, page=2, limit=5))

    response = client.get(
        "/tickets",
        params={"assigned_to": "me", "status": "assigned", "page": 2, "limit": 5, "sort_order": "asc"},
        headers=CSR,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["pagination"] == {"current": 2, "pages": 3, "total": 11, "limit": 5}
    assert data["tickets"][0]["id"] == ticket.id
    actor, ticket_filter, pagination = service.list_tickets.await_args.args
    assert actor.id == "csr"
    assert ticket_filter.assigned_to == "csr"
    assert ticket_filter.status is TicketStatus.ASSIGNED
    assert pagination.page == 2
    assert pagination.descending is False


def test_version_conflict_maps_to_409(mocked_client):
    client, service = mocked_client
    service.assign_ticket = AsyncMock(side_effect=VersionConflictError("t-1", 3, 4))

    response = client.patch("/tickets/t-1/assign", json={"representative_id": "csr"}, headers=ADMIN)

    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "version_conflict"


def test_missing_service_returns_503():
    client = TestClient(create_app())

    response = client.get("/tickets", headers=ADMIN)

    assert response.status_code == 503
    assert response.json()["error"]["kind"] == "service_unavailable"
