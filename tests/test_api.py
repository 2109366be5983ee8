"""HTTP surface tests: notification intake, summary reads, meeting events.

Runs the real application factory over ASGITransport with services placed
on ``app.state`` directly (the lifespan is not executed).
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.meetbot.core.security import create_access_token
from src.meetbot.main import create_app
from src.meetbot.meetings.configuration import MeetingConfigService
from src.meetbot.meetings.exceptions import MeetingStartError
from src.meetbot.meetings.schemas import MeetingConfiguration, MeetingState
from src.meetbot.meetings.summaries.access import SummaryAccessPolicy
from src.meetbot.meetings.summaries.store import SummaryStore

from tests.factories import MEETING_ID, MEETING_START, make_summary


def _auth(subject: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject)}"}


@pytest.fixture
def webhook_strategy():
    strategy = MagicMock()
    strategy.validate_client_state = MagicMock(side_effect=lambda value: value == "s3cret")
    strategy.process_notification = AsyncMock(return_value=1)
    return strategy


@pytest.fixture
def controller():
    ctrl = MagicMock()
    ctrl.start_meeting = AsyncMock(
        return_value=MeetingState(meeting_id=MEETING_ID, tenant_id="tenant-1", start_time=MEETING_START)
    )
    ctrl.end_meeting = AsyncMock(return_value=True)
    ctrl.is_active = MagicMock(return_value=True)
    ctrl.participants_joined = AsyncMock(return_value=1)
    ctrl.handle_command = AsyncMock(return_value="pong")
    ctrl.apply_configuration = MagicMock()
    return ctrl


@pytest.fixture
def store(backend, mock_platform):
    return SummaryStore(backend, SummaryAccessPolicy(mock_platform))


@pytest.fixture
def app(webhook_strategy, controller, store):
    application = create_app()
    application.state.webhook_strategy = webhook_strategy
    application.state.lifecycle_controller = controller
    application.state.summary_store = store
    application.state.config_service = MeetingConfigService(repository=None, defaults=MeetingConfiguration())
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


# ── Notifications ───────────────────────────────────────────────────────────


class TestNotifications:
    @pytest.mark.asyncio
    async def test_validation_token_is_echoed_as_plain_text(self, client):
        response = await client.post("/api/notifications", params={"validationToken": "abc 123"})

        assert response.status_code == 200
        assert response.text == "abc 123"
        assert response.headers["content-type"].startswith("text/plain")

    @pytest.mark.asyncio
    async def test_get_handshake(self, client):
        response = await client.get("/api/notifications", params={"validationToken": "tok"})

        assert response.status_code == 200
        assert response.text == "tok"

    @pytest.mark.asyncio
    async def test_notifications_accepted_and_processed(self, client, webhook_strategy):
        body = {
            "value": [
                {"clientState": "s3cret", "resource": "onlineMeetings/m1/transcripts/t1"},
                {"clientState": "forged", "resource": "onlineMeetings/m1/transcripts/t1"},
            ]
        }

        response = await client.post("/api/notifications", json=body)

        assert response.status_code == 202
        webhook_strategy.process_notification.assert_awaited_once()
        assert webhook_strategy.process_notification.call_args.args[0]["clientState"] == "s3cret"

    @pytest.mark.asyncio
    async def test_invalid_json(self, client):
        response = await client.post("/api/notifications", content=b"{nope")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_webhook_disabled_is_503(self, client, app):
        app.state.webhook_strategy = None

        response = await client.post("/api/notifications", json={"value": []})

        assert response.status_code == 503


# ── Summaries ───────────────────────────────────────────────────────────────


class TestSummaryEndpoints:
    @pytest.mark.asyncio
    async def test_missing_token_is_401(self, client):
        response = await client.get(f"/api/v1/meetings/{MEETING_ID}/summaries")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_bad_token_is_401(self, client):
        response = await client.get(
            f"/api/v1/meetings/{MEETING_ID}/summaries",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_participant_lists_summaries(self, client, store):
        await store.save(make_summary())

        response = await client.get(f"/api/v1/meetings/{MEETING_ID}/summaries", headers=_auth("alice"))

        assert response.status_code == 200
        assert len(response.json()) == 1

    @pytest.mark.asyncio
    async def test_non_member_is_403(self, client, store):
        await store.save(make_summary())

        response = await client.get(f"/api/v1/meetings/{MEETING_ID}/summaries", headers=_auth("mallory"))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_get_single_summary(self, client, store):
        saved = await store.save(make_summary())

        ok = await client.get(f"/api/v1/summaries/{saved.id}", headers=_auth("bob"))
        denied = await client.get(f"/api/v1/summaries/{saved.id}", headers=_auth("mallory"))
        missing = await client.get("/api/v1/summaries/summary-nope", headers=_auth("bob"))

        assert ok.status_code == 200
        assert ok.json()["content"] == saved.content
        assert denied.status_code == 403
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_storage_outage_is_503(self, client, backend):
        backend.down = True

        response = await client.get("/api/v1/summaries/summary-1", headers=_auth("alice"))

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_search(self, client, store):
        await store.save(make_summary(content="Budget review"))
        await store.save(make_summary(start_offset_minutes=10, content="Hiring plan"))

        response = await client.get(
            f"/api/v1/meetings/{MEETING_ID}/summaries/search",
            params={"q": "budget"},
            headers=_auth("alice"),
        )

        assert [s["content"] for s in response.json()] == ["Budget review"]

    @pytest.mark.asyncio
    async def test_delete_requires_membership(self, client, store, backend):
        await store.save(make_summary())

        denied = await client.delete(f"/api/v1/meetings/{MEETING_ID}/summaries", headers=_auth("mallory"))
        deleted = await client.delete(f"/api/v1/meetings/{MEETING_ID}/summaries", headers=_auth("alice"))

        assert denied.status_code == 403
        assert deleted.json()["deleted"] == 1
        assert backend.summaries == {}


# ── Meetings & Configuration ────────────────────────────────────────────────


class TestMeetingEndpoints:
    @pytest.mark.asyncio
    async def test_start(self, client, controller):
        response = await client.post(f"/api/v1/meetings/{MEETING_ID}/start", json={"tenant_id": "tenant-1"})

        assert response.status_code == 200
        assert response.json()["meeting_id"] == MEETING_ID
        assert controller.start_meeting.call_args.kwargs["tenant_id"] == "tenant-1"

    @pytest.mark.asyncio
    async def test_start_failure_is_502(self, client, controller):
        controller.start_meeting.side_effect = MeetingStartError("boom")

        response = await client.post(f"/api/v1/meetings/{MEETING_ID}/start", json={"tenant_id": "t"})

        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_end_unknown_meeting_is_404(self, client, controller):
        controller.end_meeting.return_value = False

        response = await client.post(f"/api/v1/meetings/{MEETING_ID}/end")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_participants_joined(self, client):
        response = await client.post(
            f"/api/v1/meetings/{MEETING_ID}/participants",
            json={"participants": [{"id": "carol", "join_time": "2026-03-02T14:20:00Z"}]},
        )

        assert response.json() == {"recorded": 1, "catch_up_delivered": 1}

    @pytest.mark.asyncio
    async def test_command(self, client):
        response = await client.post(f"/api/v1/meetings/{MEETING_ID}/commands", json={"text": "@bot help"})
        assert response.json() == {"reply": "pong"}

    @pytest.mark.asyncio
    async def test_configuration_round_trip(self, client, controller):
        put = await client.put(
            f"/api/v1/meetings/{MEETING_ID}/configuration",
            json={"summary_interval_minutes": 15, "transcript_method": "webhook"},
        )
        get = await client.get(f"/api/v1/meetings/{MEETING_ID}/configuration")

        assert put.status_code == 200
        assert get.json()["summary_interval_minutes"] == 15
        assert get.json()["transcript_method"] == "webhook"
        controller.apply_configuration.assert_called_once()

    @pytest.mark.asyncio
    async def test_invalid_configuration_is_422(self, client, controller):
        response = await client.put(
            f"/api/v1/meetings/{MEETING_ID}/configuration",
            json={"summary_interval_minutes": 2},
        )

        assert response.status_code == 422
        controller.apply_configuration.assert_not_called()

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/health")
        assert response.json()["status"] == "ok"
