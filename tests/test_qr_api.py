"""API tests for QR issuance and check-in."""

import uuid

import pytest


@pytest.fixture
def registered(make_event, register, organizer, attendee):
    """An event by `organizer` with `attendee` registered; returns (event_id, registration_id)."""
    async def _setup(**event_fields):
        event_id = (await make_event(organizer, **event_fields)).json()["event_id"]
        reg = (await register(event_id, attendee, name="Ada Lovelace")).json()
        return event_id, reg["id"]
    return _setup


async def _generate(client, auth, user, registration_id, **body):
    auth.login(user)
    return await client.post("/api/qr/generate", json={"registration_id": registration_id, **body})


async def _verify(client, auth, user, qr_token):
    auth.login(user)
    return await client.post("/api/qr/verify", json={"qr_token": qr_token})


class TestGenerate:

    @pytest.mark.asyncio
    async def test_registrant_gets_token(self, client, auth, registered, attendee, qr_service, clock):
        _, reg_id = await registered()
        resp = await _generate(client, auth, attendee, reg_id)
        assert resp.status_code == 200
        body = resp.json()
        assert body["qr_data"] == f"https://events.example.com/check-in/{body['qr_token']}"
        assert body["qr_image"] is None
        assert resp.headers["cache-control"] == "private, max-age=3600"

        decoded = qr_service.verify(body["qr_token"]).token
        assert decoded.registration_id == reg_id
        assert decoded.remaining_hours(clock.now) == 24

    @pytest.mark.asyncio
    async def test_organizer_may_generate(self, client, auth, registered, organizer):
        _, reg_id = await registered()
        resp = await _generate(client, auth, organizer, reg_id, expires_in_hours=2)
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_include_image(self, client, auth, registered, attendee):
        _, reg_id = await registered()
        resp = await _generate(client, auth, attendee, reg_id, include_image=True)
        assert resp.json()["qr_image"].startswith("data:image/svg+xml;base64,")

    @pytest.mark.asyncio
    async def test_stranger_forbidden(self, client, auth, registered):
        _, reg_id = await registered()
        resp = await _generate(client, auth, uuid.uuid4(), reg_id)
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_unknown_registration(self, client, auth, attendee, db_ready):
        resp = await _generate(client, auth, attendee, str(uuid.uuid4()))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_rejects_non_positive_expiry(self, client, auth, registered, attendee):
        _, reg_id = await registered()
        resp = await _generate(client, auth, attendee, reg_id, expires_in_hours=0)
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_png(self, client, auth, registered, attendee):
        _, reg_id = await registered()
        auth.login(attendee)
        resp = await client.get(f"/api/qr/registrations/{reg_id}.png")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        assert resp.content.startswith(b"\x89PNG")


class TestBatch:

    @pytest.mark.asyncio
    async def test_organizer_batch(self, client, auth, registered, register, organizer, qr_service):
        event_id, reg_id = await registered()
        await register(event_id, name="Grace", email="grace@example.com")

        auth.login(organizer)
        resp = await client.post("/api/qr/batch", json={"event_id": event_id, "expires_in_hours": 6})
        assert resp.status_code == 200
        items = resp.json()
        assert len(items) == 2
        assert items[0]["registration_id"] == reg_id
        for item in items:
            decoded = qr_service.verify(item["qr_token"]).token
            assert decoded.event_id == event_id
            assert decoded.registration_id == item["registration_id"]

    @pytest.mark.asyncio
    async def test_batch_organizer_only(self, client, auth, registered, attendee):
        event_id, _ = await registered()
        auth.login(attendee)
        resp = await client.post("/api/qr/batch", json={"event_id": event_id})
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_batch_unknown_event(self, client, auth, organizer, db_ready):
        auth.login(organizer)
        resp = await client.post("/api/qr/batch", json={"event_id": str(uuid.uuid4())})
        assert resp.status_code == 404


class TestVerify:

    @pytest.mark.asyncio
    async def test_check_in_once(self, client, auth, registered, attendee, organizer):
        event_id, reg_id = await registered()
        token = (await _generate(client, auth, attendee, reg_id)).json()["qr_token"]

        resp = await _verify(client, auth, organizer, token)
        assert resp.status_code == 200
        body = resp.json()
        assert body["checked_in"] is True
        assert body["registration_id"] == reg_id
        assert body["event_id"] == event_id
        assert body["message"] == "Ada Lovelace checked in successfully"
        assert body["checked_in_at"]

        again = await _verify(client, auth, organizer, token)
        assert again.status_code == 409
        assert again.json()["detail"]["code"] == "already_checked_in"
        assert again.json()["detail"]["checked_in_at"]

        auth.login(organizer)
        regs = (await client.get(f"/api/events/{event_id}/registrations")).json()
        assert regs[0]["check_in_status"] == "checked_in"

    @pytest.mark.asyncio
    async def test_scanned_url_accepted(self, client, auth, registered, attendee, organizer):
        _, reg_id = await registered()
        url = (await _generate(client, auth, attendee, reg_id)).json()["qr_data"]
        resp = await _verify(client, auth, organizer, url)
        assert resp.status_code == 200

    @pytest.mark.asyncio
    @pytest.mark.parametrize("scanned", [
        "not-a-token",
        "a.b.c",
        "https://events.example.com/events/42",
    ])
    async def test_garbage_is_unauthorized(self, client, auth, organizer, db_ready, scanned):
        resp = await _verify(client, auth, organizer, scanned)
        assert resp.status_code == 401
        assert resp.json()["detail"] == {"error": "Invalid or expired token", "code": "invalid_token"}

    @pytest.mark.asyncio
    async def test_expired_token(self, client, auth, registered, attendee, organizer, clock):
        _, reg_id = await registered()
        token = (await _generate(client, auth, attendee, reg_id)).json()["qr_token"]
        clock.advance(hours=25)
        resp = await _verify(client, auth, organizer, token)
        assert resp.status_code == 401
        assert resp.json()["detail"]["error"] == "Invalid or expired token"

    @pytest.mark.asyncio
    async def test_tampered_token(self, client, auth, registered, attendee, organizer):
        _, reg_id = await registered()
        token = (await _generate(client, auth, attendee, reg_id)).json()["qr_token"]
        head, payload, sig = token.split(".")
        tampered = f"{head}.{payload}.{'A' if sig[0] != 'A' else 'B'}{sig[1:]}"
        resp = await _verify(client, auth, organizer, tampered)
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_token_for_other_event(self, client, auth, registered, organizer, qr_service):
        _, reg_id = await registered()
        token = qr_service.generate(reg_id, 24, event_id=str(uuid.uuid4())).token
        resp = await _verify(client, auth, organizer, token)
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_token_for_deleted_registration(self, client, auth, organizer, qr_service, db_ready):
        token = qr_service.generate(str(uuid.uuid4()), 24).token
        resp = await _verify(client, auth, organizer, token)
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "registration_not_found"

    @pytest.mark.asyncio
    async def test_only_organizer_checks_in(self, client, auth, registered, attendee):
        _, reg_id = await registered()
        token = (await _generate(client, auth, attendee, reg_id)).json()["qr_token"]
        resp = await _verify(client, auth, attendee, token)
        assert resp.status_code == 403
        assert resp.json()["detail"]["code"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_requires_login(self, client, auth, qr_service):
        auth.logout()
        resp = await client.post("/api/qr/verify", json={"qr_token": qr_service.generate("reg-1", 1).token})
        assert resp.status_code == 401


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "service": "events-checkin-svc"}
