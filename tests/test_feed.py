"""Tests for the license plate feed (ledger, pagination, stats, live tail)."""

import asyncio

import pytest
from httpx import AsyncClient

from tests.conftest import InMemoryRedis
from whitewall.schemas.feed import FeedEntry
from whitewall.services import feed

ALICE = "0xA11CE00000000000000000000000000000000001"
BOB = "0xB0B0000000000000000000000000000000000002"


def _decision(n: int, *, granted: bool = True, owner: str = ALICE, agent: str = "42") -> feed.Decision:
    return feed.Decision(
        record_id=f"rec-{n}",
        prompt=f"prompt {n}",
        granted=granted,
        agent_id=agent,
        owner_address=owner,
        human_verified=granted,
        tier=2,
        artifact_url=f"https://blob.test/{n}.png" if granted else "",
        reason="" if granted else "not verified",
        timestamp=1_000 + n,
    )


async def _seed(redis: InMemoryRedis, count: int, **kwargs) -> None:
    for n in range(count):
        await feed.record_decision(redis, _decision(n, **kwargs))


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_record_decision_writes_hash_indexes_and_counters(fake_redis: InMemoryRedis) -> None:
    await feed.record_decision(fake_redis, _decision(1))
    await feed.record_decision(fake_redis, _decision(2, granted=False, owner=BOB, agent="7"))

    raw = await fake_redis.hgetall("gen:rec-1")
    assert raw == {
        "id": "rec-1",
        "prompt": "prompt 1",
        "imageUrl": "https://blob.test/1.png",
        "status": "granted",
        "agentId": "42",
        "ownerAddress": ALICE.lower(),
        "humanVerified": "true",
        "tier": "2",
        "reason": "",
        "timestamp": "1001",
    }
    assert await fake_redis.zscore(feed.FEED_KEY, "rec-2") == 1002
    assert await fake_redis.zscore(feed.owner_feed_key(BOB), "rec-2") == 1002
    assert await fake_redis.get(feed.STATS_GRANTED) == "1"
    assert await fake_redis.get(feed.STATS_DENIED) == "1"
    assert await fake_redis.scard(feed.STATS_AGENTS) == 2


def test_entry_from_hash_normalizes_empty_values() -> None:
    entry = FeedEntry.from_hash({
        "id": "r", "prompt": "p", "imageUrl": "", "status": "denied", "agentId": "1",
        "ownerAddress": "0xabc", "humanVerified": "false", "tier": "", "reason": "", "timestamp": "5",
    })
    assert entry.image_url is None
    assert entry.reason is None
    assert entry.tier == 0
    assert entry.human_verified is False
    assert entry.model_dump(by_alias=True)["imageUrl"] is None


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_feed_newest_first_with_cursor(fake_redis: InMemoryRedis) -> None:
    await _seed(fake_redis, 5)

    page = await feed.list_feed(fake_redis, limit=2)
    assert [e.id for e in page.entries] == ["rec-4", "rec-3"]
    assert page.next_cursor == "1003"

    page = await feed.list_feed(fake_redis, cursor=int(page.next_cursor), limit=2)
    assert [e.id for e in page.entries] == ["rec-2", "rec-1"]
    assert page.next_cursor == "1001"

    page = await feed.list_feed(fake_redis, cursor=int(page.next_cursor), limit=2)
    assert [e.id for e in page.entries] == ["rec-0"]
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_list_feed_exact_page_has_no_cursor(fake_redis: InMemoryRedis) -> None:
    await _seed(fake_redis, 3)
    page = await feed.list_feed(fake_redis, limit=3)
    assert len(page.entries) == 3
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_list_feed_limit_is_capped(fake_redis: InMemoryRedis) -> None:
    await _seed(fake_redis, 60)
    page = await feed.list_feed(fake_redis, limit=500)
    assert len(page.entries) == 50
    assert page.next_cursor is not None

    default = await feed.list_feed(fake_redis)
    assert len(default.entries) == 20


@pytest.mark.asyncio
async def test_list_feed_owner_filter_is_case_insensitive(fake_redis: InMemoryRedis) -> None:
    await feed.record_decision(fake_redis, _decision(1, owner=ALICE))
    await feed.record_decision(fake_redis, _decision(2, owner=BOB))
    await feed.record_decision(fake_redis, _decision(3, owner=ALICE, granted=False))

    page = await feed.list_feed(fake_redis, owner=ALICE.upper().replace("0X", "0x"))
    assert [e.id for e in page.entries] == ["rec-3", "rec-1"]
    assert page.stats.total == 2


@pytest.mark.asyncio
async def test_stats(fake_redis: InMemoryRedis) -> None:
    await _seed(fake_redis, 3)
    await feed.record_decision(fake_redis, _decision(10, granted=False, agent="99"))
    stats = await feed.get_stats(fake_redis)
    assert stats.total == 4
    assert stats.granted == 3
    assert stats.denied == 1
    assert stats.unique_agents == 2


@pytest.mark.asyncio
async def test_empty_feed(fake_redis: InMemoryRedis) -> None:
    page = await feed.list_feed(fake_redis)
    assert page.entries == []
    assert page.next_cursor is None
    assert page.stats.total == 0


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_get_feed_json_shape(client: AsyncClient, fake_redis: InMemoryRedis) -> None:
    await _seed(fake_redis, 3)
    resp = await client.get("/feed", params={"limit": 2})
    assert resp.status_code == 200
    data = resp.json()
    assert data["nextCursor"] == "1001"
    assert data["stats"] == {"total": 3, "granted": 3, "denied": 0, "uniqueAgents": 1}
    first = data["entries"][0]
    assert first["id"] == "rec-2"
    assert first["imageUrl"] == "https://blob.test/2.png"
    assert first["humanVerified"] is True
    assert first["ownerAddress"] == ALICE.lower()


@pytest.mark.asyncio
async def test_get_feed_cursor_and_owner(client: AsyncClient, fake_redis: InMemoryRedis) -> None:
    await _seed(fake_redis, 3)
    await feed.record_decision(fake_redis, _decision(9, owner=BOB))

    resp = await client.get("/feed", params={"cursor": "1002", "owner": ALICE})
    assert resp.status_code == 200
    assert [e["id"] for e in resp.json()["entries"]] == ["rec-1", "rec-0"]


@pytest.mark.asyncio
async def test_get_feed_bad_cursor(client: AsyncClient) -> None:
    resp = await client.get("/feed", params={"cursor": "yesterday"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_get_feed_bad_limit(client: AsyncClient) -> None:
    resp = await client.get("/feed", params={"limit": 0})
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Live tail
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_iter_new_entries_yields_only_newer(fake_redis: InMemoryRedis) -> None:
    await _seed(fake_redis, 2)  # timestamps 1000, 1001
    tail = feed.iter_new_entries(fake_redis, since_ms=1000, poll_seconds=0.01)

    first = await asyncio.wait_for(tail.__anext__(), timeout=1)
    assert first.id == "rec-1"

    await feed.record_decision(fake_redis, _decision(5))
    second = await asyncio.wait_for(tail.__anext__(), timeout=1)
    assert second.id == "rec-5"
    await tail.aclose()
