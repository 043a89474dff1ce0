"""
Namespaced key-value state store.

Backs project records, render jobs, analytics, cached audio and the workflow
event log. Values are JSON documents; a missing key reads as None.

Two backends:
  - in-memory (default, single process)
  - Vercel KV / Upstash REST, enabled when KV_REST_API_URL and
    KV_REST_API_TOKEN are set

Writers that mutate a shared record go through `update()`, which holds an
asyncio lock per (namespace, key) for the whole read-modify-write. Locks are
held weakly and disappear once no writer is using or waiting on them.
"""
import asyncio
import copy
import json
import httpx
import logging
import weakref
from typing import Any, Callable, Dict, List, Optional

from .errors import StateStoreError

logger = logging.getLogger(__name__)


class MemoryBackend:
    def __init__(self):
        self._data: Dict[str, Dict[str, str]] = {}

    async def get(self, namespace: str, key: str) -> Optional[str]:
        return self._data.get(namespace, {}).get(key)

    async def set(self, namespace: str, key: str, raw: str) -> None:
        self._data.setdefault(namespace, {})[key] = raw

    async def delete(self, namespace: str, key: str) -> bool:
        group = self._data.get(namespace, {})
        existed = key in group
        group.pop(key, None)
        if not group:
            self._data.pop(namespace, None)
        return existed

    async def list_group(self, namespace: str) -> List[str]:
        return list(self._data.get(namespace, {}).values())


class RestBackend:
    """Upstash-compatible REST API. Each namespace keeps a member set so groups can be listed."""

    def __init__(self, url: str, token: str, timeout: float = 10):
        self.kv_rest_api_url = url.rstrip("/")
        self.kv_rest_api_token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    async def _command(self, *args: str) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.kv_rest_api_url,
                    headers=self._headers(),
                    json=list(args)
                )
                response.raise_for_status()
                return response.json().get("result")
        except httpx.HTTPError as e:
            logger.error(f"KV command {args[0]} failed: {e}")
            raise StateStoreError(f"KV command {args[0]} failed: {e}")

    @staticmethod
    def _key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    async def get(self, namespace: str, key: str) -> Optional[str]:
        return await self._command("GET", self._key(namespace, key))

    async def set(self, namespace: str, key: str, raw: str) -> None:
        await self._command("SET", self._key(namespace, key), raw)
        await self._command("SADD", f"group:{namespace}", key)

    async def delete(self, namespace: str, key: str) -> bool:
        removed = await self._command("DEL", self._key(namespace, key))
        await self._command("SREM", f"group:{namespace}", key)
        return bool(removed)

    async def list_group(self, namespace: str) -> List[str]:
        members = await self._command("SMEMBERS", f"group:{namespace}") or []
        values = []
        for key in members:
            raw = await self.get(namespace, key)
            if raw is not None:
                values.append(raw)
        return values


class KVStorage:
    def __init__(self, backend=None):
        self.backend = backend or MemoryBackend()
        self._locks = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(cls) -> "KVStorage":
        from . import settings
        if settings.KV_REST_API_URL and settings.KV_REST_API_TOKEN:
            logger.info("KV storage enabled (REST backend)")
            return cls(RestBackend(settings.KV_REST_API_URL, settings.KV_REST_API_TOKEN))
        logger.warning("KV storage not configured - using in-memory storage")
        return cls(MemoryBackend())

    def lock(self, namespace: str, key: str) -> asyncio.Lock:
        """The lock that serializes writers of one (namespace, key) record."""
        lock = self._locks.get((namespace, key))
        if lock is None:
            lock = self._locks[(namespace, key)] = asyncio.Lock()
        return lock

    async def get(self, namespace: str, key: str) -> Optional[Any]:
        raw = await self.backend.get(namespace, key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, namespace: str, key: str, value: Any) -> None:
        await self.backend.set(namespace, key, json.dumps(value))
        logger.debug(f"Stored {namespace}/{key}")

    async def delete(self, namespace: str, key: str) -> bool:
        existed = await self.backend.delete(namespace, key)
        if existed:
            logger.debug(f"Deleted {namespace}/{key}")
        return existed

    async def list_group(self, namespace: str) -> List[Any]:
        return [json.loads(raw) for raw in await self.backend.list_group(namespace)]

    async def update(self, namespace: str, key: str, fn: Callable[[Optional[Any]], Optional[Any]]) -> Optional[Any]:
        """
        Read-modify-write one record under its key lock.

        `fn` receives a private copy of the current value (or None) and returns
        the new value; returning None leaves the record untouched. Returns the
        value stored after the call.
        """
        async with self.lock(namespace, key):
            current = await self.get(namespace, key)
            updated = fn(copy.deepcopy(current))
            if updated is None:
                return current
            await self.set(namespace, key, updated)
            return updated

    async def append(self, namespace: str, key: str, item: Any, limit: Optional[int] = None) -> List[Any]:
        """Append to a list record, keeping at most `limit` newest items."""
        def _push(items):
            items = list(items or [])
            items.append(item)
            return items[-limit:] if limit else items
        return await self.update(namespace, key, _push)
