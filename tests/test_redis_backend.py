"""Tests for RedisSummaryBackend key layout and error mapping."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.meetbot.meetings.exceptions import StorageUnavailableError
from src.meetbot.meetings.summaries.redis_backend import RedisSummaryBackend

from tests.factories import MEETING_ID, make_summary


@pytest.fixture
def pipe():
    pipeline = MagicMock()
    pipeline.execute = AsyncMock(return_value=[True, 1, True])
    pipeline.__aenter__ = AsyncMock(return_value=pipeline)
    pipeline.__aexit__ = AsyncMock(return_value=False)
    return pipeline


@pytest.fixture
def redis_client(pipe):
    client = AsyncMock()
    client.pipeline = MagicMock(return_value=pipe)
    return client


@pytest.fixture
def redis_backend(redis_client):
    return RedisSummaryBackend(redis_client)


class TestUpsert:
    @pytest.mark.asyncio
    async def test_writes_summary_and_index_with_ttl(self, redis_backend, redis_client, pipe):
        summary = make_summary(id="summary-1", ttl_seconds=3600)

        await redis_backend.upsert(summary)

        redis_client.pipeline.assert_called_once_with(transaction=True)
        key, payload = pipe.set.call_args.args
        assert key == "summary:summary-1"
        assert json.loads(payload)["meeting_id"] == MEETING_ID
        assert pipe.set.call_args.kwargs["ex"] == 3600
        pipe.zadd.assert_called_once_with(
            f"meeting:{MEETING_ID}:summaries",
            {"summary-1": summary.period_start.timestamp()},
        )
        pipe.expire.assert_called_once_with(f"meeting:{MEETING_ID}:summaries", 3600)

    @pytest.mark.asyncio
    async def test_redis_error_maps_to_storage_unavailable(self, redis_backend, pipe):
        pipe.execute.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(StorageUnavailableError):
            await redis_backend.upsert(make_summary(id="summary-1", ttl_seconds=60))


class TestReads:
    @pytest.mark.asyncio
    async def test_get_round_trips_json(self, redis_backend, redis_client):
        stored = make_summary(id="summary-1")
        redis_client.get = AsyncMock(return_value=stored.model_dump_json())

        assert await redis_backend.get("summary-1") == stored
        redis_client.get.assert_awaited_once_with("summary:summary-1")

    @pytest.mark.asyncio
    async def test_get_missing(self, redis_backend, redis_client):
        redis_client.get = AsyncMock(return_value=None)
        assert await redis_backend.get("summary-x") is None

    @pytest.mark.asyncio
    async def test_query_prunes_expired_members(self, redis_backend, redis_client):
        live = make_summary(id="summary-live")
        redis_client.zrange = AsyncMock(return_value=["summary-gone", "summary-live"])
        redis_client.mget = AsyncMock(return_value=[None, live.model_dump_json()])
        redis_client.zrem = AsyncMock()

        summaries = await redis_backend.query_meeting(MEETING_ID)

        assert [s.id for s in summaries] == ["summary-live"]
        redis_client.zrem.assert_awaited_once_with(f"meeting:{MEETING_ID}:summaries", "summary-gone")

    @pytest.mark.asyncio
    async def test_query_error_maps_to_storage_unavailable(self, redis_backend, redis_client):
        redis_client.zrange = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(StorageUnavailableError):
            await redis_backend.query_meeting(MEETING_ID)


class TestDeleteMeeting:
    @pytest.mark.asyncio
    async def test_deletes_summaries_and_index(self, redis_backend, redis_client):
        redis_client.zrange = AsyncMock(return_value=["summary-1", "summary-2"])
        redis_client.delete = AsyncMock(side_effect=[2, 1])

        removed = await redis_backend.delete_meeting(MEETING_ID)

        assert removed == 2
        first, second = redis_client.delete.call_args_list
        assert first.args == ("summary:summary-1", "summary:summary-2")
        assert second.args == (f"meeting:{MEETING_ID}:summaries",)
