import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from upilinker.core.security import StaticTokenVerifier
from upilinker.main import create_app
from upilinker.models.payment import PaymentStatus
from upilinker.services.lifecycle import InvalidStatusTransition
from upilinker.store.base import DocumentNotFoundError, StoreUnavailableError
from upilinker.store.memory import InMemoryRequestStore

OWNER = {"Authorization": "Bearer token-u1"}
OTHER = {"Authorization": "Bearer token-u2"}


@pytest.fixture()
def client():
    app = create_app()
    with TestClient(app) as client:
        client.app.state.token_verifier = StaticTokenVerifier({"token-u1": "U1", "token-u2": "U2"})
        yield client


def _payload(**overrides):
    payload = {"name": "Jane", "upi_id": "jane@bank", "amount": 250.50, "note": "Rent"}
    payload.update(overrides)
    return payload


def _errors(response):
    return {err["loc"][-1]: err["msg"] for err in response.json()["error"]["details"]["errors"]}


def test_anonymous_submission_is_public(client):
    response = client.post("/v1/payment-requests", json=_payload())
    assert response.status_code == 201
    body = response.json()
    request = body["request"]

    assert request["status"] == "pending"
    assert request["public"] is True
    assert request["owner_id"] is None
    for part in ("pa=jane@bank", "pn=Jane", "am=250.5", "tn=Rent", "cu=INR"):
        assert part in request["upi_link"]
    assert body["pay_path"] == f"/pay/{request['id']}?public=true"
    assert body["qr_url"].startswith("https://api.qrserver.com/v1/create-qr-code/?size=256x256&data=upi%3A")

    view = client.get(f"/v1/payment-requests/{request['id']}", params={"public": "true"})
    assert view.status_code == 200
    assert view.json()["upi_link"] == request["upi_link"]


def test_signed_in_submission_is_owned(client):
    response = client.post("/v1/payment-requests", json=_payload(), headers=OWNER)
    assert response.status_code == 201
    body = response.json()
    request_id = body["request"]["id"]

    assert body["request"]["owner_id"] == "U1"
    assert body["request"]["public"] is False
    assert body["pay_path"] == f"/pay/{request_id}"

    # Not in the public collection.
    assert client.get(f"/v1/payment-requests/{request_id}", params={"public": "true"}).status_code == 404

    history = client.get("/v1/payment-requests", headers=OWNER).json()["requests"]
    assert [r["id"] for r in history] == [request_id]


def test_owned_request_is_only_visible_to_owner(client):
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]

    anonymous = client.get(f"/v1/payment-requests/{request_id}")
    assert anonymous.status_code == 401
    assert anonymous.json()["error"]["code"] == "AUTH_REQUIRED"

    other = client.get(f"/v1/payment-requests/{request_id}", headers=OTHER)
    assert other.status_code == 404
    assert other.json()["error"]["code"] == "NOT_FOUND"

    assert client.get(f"/v1/payment-requests/{request_id}", headers=OWNER).status_code == 200


def test_session_cookie_authenticates(client):
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]
    client.cookies.set("__session", "token-u1")
    try:
        assert client.get(f"/v1/payment-requests/{request_id}").status_code == 200
    finally:
        client.cookies.clear()


def test_mark_completed_updates_live_history(client):
    service = client.app.state.request_service
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]

    snapshots = []
    subscription = service.watch_history("U1", snapshots.append)
    try:
        assert snapshots[0].loading is True
        assert snapshots[-1].data[0].status.value == "pending"

        response = client.post(f"/v1/payment-requests/{request_id}/complete", headers=OWNER)
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

        assert snapshots[-1].data[0].id == request_id
        assert snapshots[-1].data[0].status.value == "completed"
    finally:
        subscription.cancel()

    seen = len(snapshots)
    client.post("/v1/payment-requests", json=_payload(name="Later"), headers=OWNER)
    assert len(snapshots) == seen

    history = client.get("/v1/payment-requests", headers=OWNER).json()["requests"]
    assert history[-1]["status"] == "completed"


def test_terminal_status_cannot_change(client):
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]
    assert client.post(f"/v1/payment-requests/{request_id}/fail", headers=OWNER).status_code == 200

    again = client.post(f"/v1/payment-requests/{request_id}/fail", headers=OWNER)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "INVALID_TRANSITION"

    complete = client.post(f"/v1/payment-requests/{request_id}/complete", headers=OWNER)
    assert complete.status_code == 409
    assert complete.json()["error"]["details"] == {"current": "failed", "target": "completed"}


def test_owner_only_management(client):
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]

    assert client.get("/v1/payment-requests").status_code == 401
    assert client.post(f"/v1/payment-requests/{request_id}/complete").status_code == 401
    assert client.delete(f"/v1/payment-requests/{request_id}").status_code == 401
    assert client.post(f"/v1/payment-requests/{request_id}/complete", headers=OTHER).status_code == 404
    assert client.delete(f"/v1/payment-requests/{request_id}", headers=OTHER).status_code == 404
    assert client.get("/v1/payment-requests", headers=OTHER).json()["requests"] == []


def test_delete_removes_request(client):
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]
    client.post(f"/v1/payment-requests/{request_id}/complete", headers=OWNER)

    assert client.delete(f"/v1/payment-requests/{request_id}", headers=OWNER).status_code == 204
    assert client.get(f"/v1/payment-requests/{request_id}", headers=OWNER).status_code == 404
    assert client.delete(f"/v1/payment-requests/{request_id}", headers=OWNER).status_code == 404


def test_history_is_newest_first(client):
    ids = [
        client.post("/v1/payment-requests", json=_payload(name=f"Payee {i}"), headers=OWNER).json()["request"]["id"]
        for i in range(3)
    ]
    history = client.get("/v1/payment-requests", headers=OWNER).json()["requests"]
    assert [r["id"] for r in history] == list(reversed(ids))


def test_idempotency_key_replays_submission(client):
    headers = {"Idempotency-Key": "form-1"}
    first = client.post("/v1/payment-requests", json=_payload(), headers=headers)
    second = client.post("/v1/payment-requests", json=_payload(), headers=headers)

    assert first.status_code == 201
    assert second.status_code == 200
    assert second.json()["request"]["id"] == first.json()["request"]["id"]

    third = client.post("/v1/payment-requests", json=_payload(), headers={"Idempotency-Key": "form-2"})
    assert third.status_code == 201
    assert third.json()["request"]["id"] != first.json()["request"]["id"]


def test_submissions_without_key_are_distinct(client):
    first = client.post("/v1/payment-requests", json=_payload()).json()["request"]["id"]
    second = client.post("/v1/payment-requests", json=_payload()).json()["request"]["id"]
    assert first != second


@pytest.mark.parametrize(
    "overrides, field, message",
    [
        ({"name": "  "}, "name", "Name is required."),
        ({"upi_id": "a@b"}, "upi_id", "Please enter a valid UPI ID."),
        ({"upi_id": "janebank"}, "upi_id", "Invalid UPI ID format."),
        ({"amount": 0}, "amount", "Amount must be greater than 0."),
        ({"amount": -10}, "amount", "Amount must be greater than 0."),
        ({"amount": None}, "amount", "Amount must be greater than 0."),
        ({"amount": ""}, "amount", "Amount must be greater than 0."),
    ],
)
def test_validation_errors_write_nothing(client, overrides, field, message):
    response = client.post("/v1/payment-requests", json=_payload(**overrides), headers=OWNER)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert message in _errors(response)[field]
    assert client.get("/v1/payment-requests", headers=OWNER).json()["requests"] == []


def test_flexible_request_takes_amount_at_pay_time(client):
    created = client.post(
        "/v1/payment-requests",
        json=_payload(amount=None, allow_flexible_amount=True),
    ).json()["request"]
    assert "am=" not in created["upi_link"]
    assert created["amount"] is None

    url = f"/v1/payment-requests/{created['id']}"
    bare = client.get(url, params={"public": "true"}).json()
    assert bare["amount_required"] is True
    assert "am=" not in bare["upi_link"]

    custom = client.get(url, params={"public": "true", "amount": "150"}).json()
    assert custom["amount_required"] is False
    assert custom["amount"] == 150
    assert "am=150&" in custom["upi_link"]
    assert "am%3D150" in custom["qr_url"]

    assert client.get(url, params={"public": "true", "amount": "-1"}).status_code == 422


def test_fixed_amount_ignores_custom_amount(client):
    created = client.post("/v1/payment-requests", json=_payload()).json()["request"]
    view = client.get(
        f"/v1/payment-requests/{created['id']}", params={"public": "true", "amount": "999"}
    ).json()
    assert view["upi_link"] == created["upi_link"]
    assert view["amount"] == 250.5


def test_expired_request_is_gone(client):
    past = (datetime.now(tz=timezone.utc) - timedelta(minutes=1)).isoformat()
    created = client.post("/v1/payment-requests", json=_payload(expires_at=past)).json()
    assert created["request"]["expired"] is True

    response = client.get(f"/v1/payment-requests/{created['request']['id']}", params={"public": "true"})
    assert response.status_code == 410
    assert response.json()["error"]["code"] == "LINK_EXPIRED"


def test_expiry_follows_service_clock(client):
    expires_at = datetime(2030, 1, 1, tzinfo=timezone.utc)
    created = client.post("/v1/payment-requests", json=_payload(expires_at=expires_at.isoformat())).json()
    url = f"/v1/payment-requests/{created['request']['id']}"

    assert client.get(url, params={"public": "true"}).status_code == 200
    client.app.state.request_service._clock = lambda: expires_at + timedelta(seconds=1)
    assert client.get(url, params={"public": "true"}).status_code == 410


def test_missing_request_is_not_found(client):
    response = client.get("/v1/payment-requests/does-not-exist", params={"public": "true"})
    assert response.status_code == 404
    assert "invalid" in response.json()["error"]["message"]


def test_widget_link_is_not_stored(client):
    response = client.post("/v1/links", json={"name": "Jane", "upi_id": "jane@bank", "amount": "", "note": ""})
    assert response.status_code == 200
    body = response.json()
    assert body["upi_link"] == "upi://pay?pa=jane@bank&pn=Jane&cu=INR&tn=Payment"
    assert body["share_text"] == "Jane is requesting a payment."

    invalid = client.post("/v1/links", json={"name": "Jane", "upi_id": "jane"})
    assert invalid.status_code == 422


class DeniedReadStore(InMemoryRequestStore):
    """Reads fail the way Firestore reports a security-rule denial."""

    async def get(self, path, doc_id):
        raise DocumentNotFoundError(path, doc_id)


class DeniedDeleteStore(InMemoryRequestStore):
    async def delete(self, path, doc_id):
        raise DocumentNotFoundError(path, doc_id)


class OfflineStore(InMemoryRequestStore):
    async def create(self, path, data, doc_id=None):
        raise StoreUnavailableError("firestore offline")


class InterleavingStore(InMemoryRequestStore):
    """Yields to the event loop between the read and the caller's write."""

    async def get(self, path, doc_id):
        doc = await super().get(path, doc_id)
        await asyncio.sleep(0)
        return doc


def test_denied_read_is_not_found(client):
    client.app.state.request_service.store = DeniedReadStore()

    response = client.get("/v1/payment-requests/abc", params={"public": "true"})
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"

    owned = client.get("/v1/payment-requests/abc", headers=OWNER)
    assert owned.status_code == 404


def test_denied_delete_is_not_found(client):
    client.app.state.request_service.store = DeniedDeleteStore()
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]

    response = client.delete(f"/v1/payment-requests/{request_id}", headers=OWNER)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_store_outage_on_submit_writes_nothing(client):
    store = OfflineStore()
    client.app.state.request_service.store = store

    response = client.post("/v1/payment-requests", json=_payload(), headers=OWNER)
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"

    assert asyncio.run(store.list("users/U1/paymentRequests")) == []
    assert client.get("/v1/payment-requests", headers=OWNER).json()["requests"] == []


def test_concurrent_status_changes_have_one_winner(client):
    service = client.app.state.request_service
    service.store = InterleavingStore()
    request_id = client.post("/v1/payment-requests", json=_payload(), headers=OWNER).json()["request"]["id"]

    async def race():
        return await asyncio.gather(
            service.mark("U1", request_id, PaymentStatus.COMPLETED),
            service.mark("U1", request_id, PaymentStatus.FAILED),
            return_exceptions=True,
        )

    won, lost = asyncio.run(race())
    assert won.status is PaymentStatus.COMPLETED
    assert isinstance(lost, InvalidStatusTransition)
    assert lost.current is PaymentStatus.COMPLETED
    assert lost.target is PaymentStatus.FAILED

    stored = client.get(f"/v1/payment-requests/{request_id}", headers=OWNER).json()
    assert stored["request"]["status"] == "completed"
