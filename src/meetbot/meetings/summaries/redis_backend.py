"""Redis-backed durable storage for summaries.

Layout:
- ``summary:{id}``: the summary as JSON, written with its TTL.
- ``meeting:{meeting_id}:summaries``: sorted set of summary ids scored by
  period start. Members whose summary key has expired are pruned on read.

Every Redis failure is surfaced as StorageUnavailableError so the store can
fall back to its overflow queue.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from src.meetbot.meetings.exceptions import StorageUnavailableError
from src.meetbot.meetings.schemas import Summary

logger = structlog.get_logger(__name__)


def _summary_key(summary_id: str) -> str:
    return f"summary:{summary_id}"


def _meeting_index_key(meeting_id: str) -> str:
    return f"meeting:{meeting_id}:summaries"


class RedisSummaryBackend:
    """Summary persistence on top of a shared ``redis.asyncio`` client."""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self._redis = redis_client

    async def upsert(self, summary: Summary) -> None:
        """Write (or overwrite) a summary by id, applying its TTL."""
        index_key = _meeting_index_key(summary.meeting_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(_summary_key(summary.id), summary.model_dump_json(), ex=summary.ttl_seconds)
                pipe.zadd(index_key, {summary.id: summary.period_start.timestamp()})
                if summary.ttl_seconds:
                    pipe.expire(index_key, summary.ttl_seconds)
                await pipe.execute()
        except RedisError as exc:
            raise StorageUnavailableError(f"redis write failed: {exc}") from exc

    async def get(self, summary_id: str) -> Summary | None:
        try:
            raw = await self._redis.get(_summary_key(summary_id))
        except RedisError as exc:
            raise StorageUnavailableError(f"redis read failed: {exc}") from exc
        return Summary.model_validate_json(raw) if raw else None

    async def query_meeting(self, meeting_id: str) -> list[Summary]:
        """All live summaries of a meeting, ordered by period start."""
        index_key = _meeting_index_key(meeting_id)
        try:
            summary_ids = await self._redis.zrange(index_key, 0, -1)
            if not summary_ids:
                return []
            raws = await self._redis.mget([_summary_key(sid) for sid in summary_ids])

            expired = [sid for sid, raw in zip(summary_ids, raws) if raw is None]
            if expired:
                await self._redis.zrem(index_key, *expired)
                logger.debug("redis_backend.pruned_expired", meeting_id=meeting_id, count=len(expired))
        except RedisError as exc:
            raise StorageUnavailableError(f"redis query failed: {exc}") from exc

        return [Summary.model_validate_json(raw) for raw in raws if raw is not None]

    async def delete_meeting(self, meeting_id: str) -> int:
        """Delete every summary of a meeting. Returns how many were removed."""
        index_key = _meeting_index_key(meeting_id)
        try:
            summary_ids = await self._redis.zrange(index_key, 0, -1)
            removed = 0
            if summary_ids:
                removed = await self._redis.delete(*[_summary_key(sid) for sid in summary_ids])
            await self._redis.delete(index_key)
        except RedisError as exc:
            raise StorageUnavailableError(f"redis delete failed: {exc}") from exc
        return removed

