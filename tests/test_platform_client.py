"""Tests for PlatformClient HTTP wrapper."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.meetbot.meetings.exceptions import (
    PlatformError,
    RateLimitedError,
    SourceNotAvailableError,
    TransientSourceError,
)
from src.meetbot.meetings.platform.client import PlatformClient

BASE_URL = "https://graph.test/v1.0"


@pytest.fixture
def platform_client():
    return PlatformClient(base_url=BASE_URL + "/", access_token="token-abc")


def _response(status: int, method: str = "GET", **kwargs) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request(method, "https://test.com"), **kwargs)


# ── Meetings & Rosters ──────────────────────────────────────────────────────


class TestMeetingReads:
    @pytest.mark.asyncio
    async def test_meeting_details_are_mapped(self, platform_client):
        mock_response = _response(
            200,
            json={
                "subject": "Launch sync",
                "startDateTime": "2026-03-02T14:00:00Z",
                "participants": {"organizer": {"identity": {"user": {"id": "org-1"}}}},
                "chatInfo": {"threadId": "19:thread"},
            },
        )

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=mock_response):
            details = await platform_client.get_meeting_details("m1")

        assert details.subject == "Launch sync"
        assert details.organizer_id == "org-1"
        assert details.chat_id == "19:thread"
        assert details.start_time == datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_participants_skip_non_user_entries(self, platform_client):
        mock_response = _response(
            200,
            json={
                "value": [
                    {"info": {"identity": {"user": {
                        "id": "alice", "displayName": "Alice", "userPrincipalName": "alice@x.com",
                    }}}},
                    {"info": {"identity": {"application": {"id": "bot"}}}},
                ]
            },
        )

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=mock_response) as mock_get:
            participants = await platform_client.get_participants("m1")

        assert [(p.id, p.email) for p in participants] == [("alice", "alice@x.com")]
        assert mock_get.call_args.args[0] == f"{BASE_URL}/communications/calls/m1/participants"

    @pytest.mark.asyncio
    async def test_retry_on_server_error(self, platform_client):
        call_count = 0

        async def mock_get(*args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count == 1:
                return _response(503)
            return _response(200, json={"value": []})

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, side_effect=mock_get):
            participants = await platform_client.get_participants("m1")

        assert participants == []
        assert call_count == 2

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, platform_client):
        mock_get = AsyncMock(return_value=_response(403))

        with patch("httpx.AsyncClient.get", new=mock_get):
            with pytest.raises(httpx.HTTPStatusError):
                await platform_client.get_participants("m1")

        assert mock_get.await_count == 1


# ── Chat ────────────────────────────────────────────────────────────────────


class TestChat:
    @pytest.mark.asyncio
    async def test_post_chat_message(self, platform_client):
        mock_response = _response(201, "POST", json={"id": "msg-1"})

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=mock_response) as mock_post:
            result = await platform_client.post_chat_message("chat-1", "hello")

        assert result["id"] == "msg-1"
        assert mock_post.call_args.args[0] == f"{BASE_URL}/chats/chat-1/messages"
        assert mock_post.call_args.kwargs["json"]["body"]["content"] == "hello"

    @pytest.mark.asyncio
    async def test_private_notification_attaches_card(self, platform_client):
        responses = [
            _response(201, "POST", json={"id": "one-on-one"}),
            _response(201, "POST", json={"id": "msg-9"}),
        ]
        card = {"type": "AdaptiveCard", "body": []}

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, side_effect=responses) as mock_post:
            await platform_client.send_private_notification("carol", text="Catch up", card=card)

        create_chat, send_message = mock_post.call_args_list
        assert create_chat.kwargs["json"]["chatType"] == "oneOnOne"
        assert send_message.args[0] == f"{BASE_URL}/chats/one-on-one/messages"
        attachment = send_message.kwargs["json"]["attachments"][0]
        assert attachment["contentType"] == "application/vnd.microsoft.card.adaptive"
        assert attachment["content"] == card

    @pytest.mark.asyncio
    async def test_private_notification_without_chat_id(self, platform_client):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            return_value=_response(201, "POST", json={}),
        ):
            with pytest.raises(PlatformError):
                await platform_client.send_private_notification("carol", text="hi")


# ── Transcripts ─────────────────────────────────────────────────────────────


class TestTranscripts:
    @pytest.mark.asyncio
    async def test_not_found_maps_to_source_not_available(self, platform_client):
        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=_response(404)):
            with pytest.raises(SourceNotAvailableError):
                await platform_client.get_transcript_content("m1", "t1")

    @pytest.mark.asyncio
    async def test_throttling_maps_to_rate_limited(self, platform_client):
        mock_response = _response(429, headers={"Retry-After": "7"})

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, return_value=mock_response):
            with pytest.raises(RateLimitedError) as exc_info:
                await platform_client.get_transcript_content("m1", "t1")

        assert exc_info.value.retry_after == 7.0

    @pytest.mark.asyncio
    async def test_transport_error_maps_to_transient(self, platform_client):
        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            side_effect=httpx.ConnectError("refused"),
        ):
            with pytest.raises(TransientSourceError):
                await platform_client.list_transcripts("m1")

    @pytest.mark.asyncio
    async def test_no_transcripts_yet(self, platform_client):
        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(200, json={"value": []}),
        ):
            with pytest.raises(SourceNotAvailableError):
                await platform_client.get_available_transcript_content("m1")

    @pytest.mark.asyncio
    async def test_available_content_joins_transcripts_oldest_first(self, platform_client):
        async def mock_get(url, params=None):
            if url.endswith("/transcripts"):
                return _response(200, json={"value": [
                    {"id": "t2", "createdDateTime": "2026-03-02T14:30:00Z"},
                    {"id": "t1", "createdDateTime": "2026-03-02T14:00:00Z"},
                ]})
            assert params == {"$format": "text/vtt"}
            return _response(200, text=f"content-{url.split('/')[-2]}")

        with patch("httpx.AsyncClient.get", new_callable=AsyncMock, side_effect=mock_get):
            content = await platform_client.get_available_transcript_content("m1")

        assert content == "content-t1\n\ncontent-t2"


# ── Subscriptions ───────────────────────────────────────────────────────────


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_create_subscription_payload(self, platform_client):
        mock_response = _response(201, "POST", json={"id": "sub-1"})
        expiration = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)

        with patch("httpx.AsyncClient.post", new_callable=AsyncMock, return_value=mock_response) as mock_post:
            await platform_client.create_subscription(
                resource="/communications/onlineMeetings/m1/transcripts",
                notification_url="https://bot/api/notifications",
                client_state="s3cret",
                expiration=expiration,
            )

        payload = mock_post.call_args.kwargs["json"]
        assert payload["clientState"] == "s3cret"
        assert payload["expirationDateTime"] == expiration.isoformat()

    @pytest.mark.asyncio
    async def test_delete_missing_subscription_is_ok(self, platform_client):
        with patch(
            "httpx.AsyncClient.delete",
            new_callable=AsyncMock,
            return_value=_response(404, "DELETE"),
        ):
            await platform_client.delete_subscription("sub-gone")
