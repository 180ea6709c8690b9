"""
Sync Storage Manager

This module provides storage for calendar-to-job synchronization state:
the Google refresh token, the watch registration with its continuation
token, the event-to-job mapping table and the HCP directory cache.
"""

import json
import logging
import os
from typing import Dict, Any, Optional
from redis import asyncio as aioredis

from hcp_sync.utils.config import settings

# Set up logging
logger = logging.getLogger(__name__)

WATCH_FIELDS = ("channel_id", "resource_id", "expiration", "next_sync_token")

# Redis keys; each file-storage table is a JSON document of the same name
TOKENS_KEY = "hcp_sync:google_tokens"
WATCH_KEY = "hcp_sync:google_watch"
MAPPINGS_KEY = "hcp_sync:mappings"
CACHE_KEY = "hcp_sync:hcp_cache"

class SyncStorageManager:
    """
    Manages storage for calendar synchronization data.
    Supports both Redis and file-based storage.

    Every operation touches a single key or a single singleton row, so
    concurrent pulls need no extra locking around it.
    """

    def __init__(self, use_redis: bool = True, storage_path: Optional[str] = None):
        """Initialize the storage manager"""
        self.use_redis = bool(use_redis and settings.REDIS_HOST)
        self.redis = None
        self.file_storage_path = storage_path or os.environ.get("STORAGE_PATH", settings.STORAGE_PATH)

        # Create storage directory if it doesn't exist
        if not self.use_redis and not os.path.exists(self.file_storage_path):
            os.makedirs(self.file_storage_path)

    async def initialize(self):
        """Initialize storage connections"""
        if self.use_redis:
            try:
                self.redis = aioredis.from_url(
                    f"redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}",
                    password=settings.REDIS_PASSWORD or None,
                    encoding="utf-8",
                    decode_responses=True
                )
                await self.redis.ping()
                logger.info("Redis connection established for sync storage")
            except Exception as e:
                logger.error(f"Failed to connect to Redis: {e}")
                self.use_redis = False
                self.redis = None
                if not os.path.exists(self.file_storage_path):
                    os.makedirs(self.file_storage_path)
                logger.info("Falling back to file-based storage")

    async def close(self):
        """Close storage connections"""
        if self.use_redis and self.redis:
            await self.redis.aclose()

    # File tables

    def _table_path(self, key: str) -> str:
        return os.path.join(self.file_storage_path, f"{key.split(':', 1)[1]}.json")

    def _read_table(self, key: str) -> Dict[str, Any]:
        path = self._table_path(key)
        if os.path.exists(path):
            with open(path, "r") as f:
                return json.load(f)
        return {}

    def _write_table(self, key: str, data: Dict[str, Any]) -> None:
        path = self._table_path(key)
        tmp_path = f"{path}.tmp"
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_path, path)

    # Hash-style access shared by all tables

    async def _hget(self, key: str, field: str) -> Optional[str]:
        if self.use_redis and self.redis:
            return await self.redis.hget(key, field)
        return self._read_table(key).get(field)

    async def _hset(self, key: str, values: Dict[str, str]) -> None:
        if self.use_redis and self.redis:
            await self.redis.hset(key, mapping=values)
        else:
            table = self._read_table(key)
            table.update(values)
            self._write_table(key, table)

    async def _hdel(self, key: str, field: str) -> None:
        if self.use_redis and self.redis:
            await self.redis.hdel(key, field)
        else:
            table = self._read_table(key)
            if field in table:
                del table[field]
                self._write_table(key, table)

    async def _hgetall(self, key: str) -> Dict[str, str]:
        if self.use_redis and self.redis:
            return await self.redis.hgetall(key)
        return self._read_table(key)

    async def _delete_table(self, key: str) -> None:
        if self.use_redis and self.redis:
            await self.redis.delete(key)
        else:
            path = self._table_path(key)
            if os.path.exists(path):
                os.remove(path)

    # Google credential

    async def get_refresh_token(self) -> Optional[str]:
        """Get the stored Google refresh token"""
        return await self._hget(TOKENS_KEY, "refresh_token") or None

    async def save_refresh_token(self, refresh_token: str) -> None:
        """Save the Google refresh token"""
        await self._hset(TOKENS_KEY, {"refresh_token": refresh_token})

    async def clear_refresh_token(self) -> None:
        """Forget the Google refresh token"""
        await self._delete_table(TOKENS_KEY)

    # Watch registration and continuation token

    async def get_watch_state(self) -> Dict[str, str]:
        """Get the watch registration, including next_sync_token when present"""
        state = await self._hgetall(WATCH_KEY)
        return {field: state[field] for field in WATCH_FIELDS if state.get(field)}

    async def save_watch_state(self, fields: Dict[str, Any]) -> None:
        """
        Update the given watch fields.

        Fields not passed keep their stored value, so renewing a channel
        never touches the continuation token.
        """
        values = {k: "" if v is None else str(v) for k, v in fields.items() if k in WATCH_FIELDS}
        if values:
            await self._hset(WATCH_KEY, values)

    async def get_next_sync_token(self) -> Optional[str]:
        """Get the stored continuation token"""
        return await self._hget(WATCH_KEY, "next_sync_token") or None

    async def save_next_sync_token(self, token: str) -> None:
        """Replace the stored continuation token"""
        await self._hset(WATCH_KEY, {"next_sync_token": token})

    # Event-to-job mappings

    async def get_mapping(self, event_id: str) -> Optional[str]:
        """Get the HCP job id mapped to a Google event"""
        return await self._hget(MAPPINGS_KEY, event_id) or None

    async def put_mapping(self, event_id: str, job_id: str) -> None:
        """Map a Google event to an HCP job, replacing any previous job id"""
        await self._hset(MAPPINGS_KEY, {event_id: str(job_id)})

    async def delete_mapping(self, event_id: str) -> None:
        """Remove the mapping for a Google event"""
        await self._hdel(MAPPINGS_KEY, event_id)

    async def count_mappings(self) -> int:
        """Number of mapped events"""
        if self.use_redis and self.redis:
            return await self.redis.hlen(MAPPINGS_KEY)
        return len(self._read_table(MAPPINGS_KEY))

    # Directory cache

    async def cache_get(self, key: str) -> Optional[str]:
        """Get a cached HCP directory value"""
        return await self._hget(CACHE_KEY, key) or None

    async def cache_set(self, key: str, value: str) -> None:
        """Cache an HCP directory value; entries never expire"""
        await self._hset(CACHE_KEY, {key: str(value)})

    async def cache_delete(self, key: str) -> None:
        """Drop one cached directory value"""
        await self._hdel(CACHE_KEY, key)

    async def clear_cache(self) -> None:
        """Drop every cached directory value"""
        await self._delete_table(CACHE_KEY)
