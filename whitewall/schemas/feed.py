"""Pydantic v2 schemas for the public generation feed."""

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FeedEntry(_CamelModel):
    """One license plate: the durable record of a grant or denial decision."""

    id: str
    prompt: str
    image_url: str | None
    status: Literal["granted", "denied"]
    agent_id: str
    owner_address: str
    human_verified: bool
    tier: int
    reason: str | None
    timestamp: int

    @classmethod
    def from_hash(cls, raw: dict[str, str]) -> "FeedEntry":
        """Build from a ``gen:<id>`` hash (all values stored as strings)."""
        return cls(
            id=raw["id"],
            prompt=raw.get("prompt", ""),
            image_url=raw.get("imageUrl") or None,
            status="granted" if raw.get("status") == "granted" else "denied",
            agent_id=raw.get("agentId", ""),
            owner_address=raw.get("ownerAddress", ""),
            human_verified=raw.get("humanVerified") == "true",
            tier=_int_or_zero(raw.get("tier")),
            reason=raw.get("reason") or None,
            timestamp=_int_or_zero(raw.get("timestamp")),
        )


class FeedStats(_CamelModel):
    total: int
    granted: int
    denied: int
    unique_agents: int


class FeedPage(_CamelModel):
    entries: list[FeedEntry]
    next_cursor: str | None
    stats: FeedStats


def _int_or_zero(value: str | None) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0
