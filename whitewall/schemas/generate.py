"""Pydantic v2 schemas for the live generation endpoints."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class GenerateRequest(BaseModel):
    """Body of ``POST /generate`` and ``POST /generate-video``.

    ``agentId`` is the on-chain (uint256) agent id, accepted as a string or a
    number. The prompt is sanitized by the router, not here, so that an empty
    prompt is a 400 rather than a schema error.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    prompt: str
    agent_id: str
    owner_address: str = Field(..., min_length=1, max_length=128)

    @field_validator("agent_id", mode="before")
    @classmethod
    def coerce_agent_id(cls, v: object) -> object:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("owner_address")
    @classmethod
    def strip_owner(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("ownerAddress must not be blank")
        return v
