"""Test configuration and fixtures.

Redis is replaced by ``InMemoryRedis``, an in-process double implementing the
handful of commands the service uses, with a controllable clock so that key
expiry (rate-limit windows) can be exercised without sleeping. External
services (RPC, generation provider, blob storage) are patched per test.
"""

from collections.abc import AsyncGenerator, Iterator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from whitewall.config import settings
from whitewall.main import app
from whitewall.pipeline.client import SSEDecoder
from whitewall.pipeline.events import PipelineEvent
from whitewall.redis import get_redis
from whitewall.services.genapi import GeneratedArtifact

OWNER = "0xAbCdEf0000000000000000000000000000001234"


# ---------------------------------------------------------------------------
# In-memory Redis double
# ---------------------------------------------------------------------------


def _parse_bound(raw: str | float | int) -> tuple[float, bool]:
    """Return (value, exclusive) for a sorted-set score bound like '(123' or '+inf'."""
    if isinstance(raw, (int, float)):
        return float(raw), False
    exclusive = raw.startswith("(")
    text = raw[1:] if exclusive else raw
    return float(text), exclusive


def _above(score: float, bound: tuple[float, bool]) -> bool:
    value, exclusive = bound
    return score > value if exclusive else score >= value


def _below(score: float, bound: tuple[float, bool]) -> bool:
    value, exclusive = bound
    return score < value if exclusive else score <= value


class InMemoryRedis:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0
        self._data: dict[str, Any] = {}
        self._expires: dict[str, float] = {}

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _live(self, key: str) -> None:
        deadline = self._expires.get(key)
        if deadline is not None and self.now >= deadline:
            self._data.pop(key, None)
            self._expires.pop(key, None)

    def _get(self, key: str, default: Any) -> Any:
        self._live(key)
        return self._data.setdefault(key, default)

    # --- strings / counters ---

    async def incr(self, key: str) -> int:
        self._live(key)
        value = int(self._data.get(key, 0)) + 1
        self._data[key] = str(value)
        return value

    async def get(self, key: str) -> str | None:
        self._live(key)
        return self._data.get(key)

    async def expire(self, key: str, seconds: int) -> bool:
        self._live(key)
        if key not in self._data:
            return False
        self._expires[key] = self.now + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._live(key)
        if key not in self._data:
            return -2
        if key not in self._expires:
            return -1
        return int(self._expires[key] - self.now)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            removed += int(self._data.pop(key, None) is not None)
            self._expires.pop(key, None)
        return removed

    # --- hashes ---

    async def hset(self, key: str, mapping: dict[str, str]) -> int:
        h = self._get(key, {})
        added = len(set(mapping) - set(h))
        h.update({k: str(v) for k, v in mapping.items()})
        return added

    async def hgetall(self, key: str) -> dict[str, str]:
        self._live(key)
        return dict(self._data.get(key, {}))

    # --- sets ---

    async def sadd(self, key: str, *members: str) -> int:
        s = self._get(key, set())
        before = len(s)
        s.update(str(m) for m in members)
        return len(s) - before

    async def scard(self, key: str) -> int:
        self._live(key)
        return len(self._data.get(key, set()))

    # --- sorted sets ---

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        z = self._get(key, {})
        added = len(set(mapping) - set(z))
        z.update({str(m): float(s) for m, s in mapping.items()})
        return added

    async def zcard(self, key: str) -> int:
        self._live(key)
        return len(self._data.get(key, {}))

    async def zscore(self, key: str, member: str) -> float | None:
        self._live(key)
        return self._data.get(key, {}).get(member)

    def _zsorted(self, key: str) -> list[tuple[str, float]]:
        self._live(key)
        return sorted(self._data.get(key, {}).items(), key=lambda kv: (kv[1], kv[0]))

    async def zrangebyscore(self, key: str, min: Any, max: Any, start: int | None = None, num: int | None = None) -> list[str]:
        lo, hi = _parse_bound(min), _parse_bound(max)
        ids = [m for m, s in self._zsorted(key) if _above(s, lo) and _below(s, hi)]
        if start is not None and num is not None:
            ids = ids[start:start + num]
        return ids

    async def zrevrangebyscore(self, key: str, max: Any, min: Any, start: int | None = None, num: int | None = None) -> list[str]:
        lo, hi = _parse_bound(min), _parse_bound(max)
        ids = [m for m, s in reversed(self._zsorted(key)) if _above(s, lo) and _below(s, hi)]
        if start is not None and num is not None:
            ids = ids[start:start + num]
        return ids

    async def aclose(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_settings() -> Iterator[None]:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "simulation_time_scale", 0.0)
    object.__setattr__(settings, "genapi_api_key", "test-gen-key")
    object.__setattr__(settings, "genapi_base_url", "https://gen.test/v1")
    object.__setattr__(settings, "genapi_poll_interval_seconds", 0.0)
    object.__setattr__(settings, "blob_read_write_token", "test-blob-token")
    object.__setattr__(settings, "blob_api_url", "https://blob.test")
    yield
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()


@pytest_asyncio.fixture
async def client(fake_redis: InMemoryRedis) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with Redis overridden by the in-memory double."""

    async def override_get_redis() -> AsyncGenerator[InMemoryRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def live_services() -> Iterator[dict[str, AsyncMock]]:
    """Patch the external collaborators of a live run with happy-path doubles."""
    verify = AsyncMock(return_value=True)
    generate = AsyncMock(return_value=GeneratedArtifact(content=b"\x89PNG...", content_type="image/png"))
    upload = AsyncMock(return_value="https://blob.test/generations/artifact.png")
    with patch("whitewall.services.verification.is_human_verified", verify), \
         patch("whitewall.services.genapi.generate", generate), \
         patch("whitewall.services.blob.upload", upload):
        yield {"verify": verify, "generate": generate, "upload": upload}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_stream(body: str) -> list[PipelineEvent]:
    """Decode a complete event-stream body into pipeline events."""
    return SSEDecoder().feed(body)


def make_generate_body(**overrides: Any) -> dict[str, Any]:
    body = {"prompt": "a lighthouse at dusk", "agentId": "42", "ownerAddress": OWNER}
    body.update(overrides)
    return body
