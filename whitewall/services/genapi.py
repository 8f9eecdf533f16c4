"""Client for the Whitewall generation API: submit a job, poll it, download the artifact."""

import asyncio
import contextlib
import enum
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

import httpx

from whitewall.config import settings

logger = logging.getLogger(__name__)


class MediaType(enum.Enum):
    IMAGE = "image"
    VIDEO = "video"


class JobStatus(enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Request bodies per media type
_JOB_PARAMS: dict[MediaType, dict] = {
    MediaType.IMAGE: {"width": 1024, "height": 1024, "steps": 30},
    MediaType.VIDEO: {"width": 512, "height": 320, "frames": 25, "steps": 20, "cfg": 4.0, "fps": 25},
}

_DEFAULT_CONTENT_TYPE = {
    MediaType.IMAGE: "image/png",
    MediaType.VIDEO: "image/webp",
}


class GenerationError(Exception):
    """Submit, poll or download failed. The message is safe to show to users."""


@dataclass(frozen=True)
class GeneratedArtifact:
    content: bytes
    content_type: str


StatusCallback = Callable[[JobStatus], None]


def _auth_headers() -> dict[str, str]:
    if not settings.genapi_api_key:
        raise GenerationError("Generation API is not configured (missing API key)")
    return {"Authorization": f"Bearer {settings.genapi_api_key}"}


@contextlib.asynccontextmanager
async def _client(client: httpx.AsyncClient | None) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(
        base_url=settings.genapi_base_url,
        timeout=settings.genapi_request_timeout_seconds,
    ) as owned:
        yield owned


def _error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and isinstance(body.get("error"), str) and body["error"]:
        return body["error"]
    return fallback


async def submit(
    prompt: str,
    media_type: MediaType,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Submit a generation job and return its job id."""
    headers = _auth_headers()
    async with _client(client) as http:
        try:
            resp = await http.post(
                f"/gen/{media_type.value}",
                headers=headers,
                json={"prompt": prompt, **_JOB_PARAMS[media_type]},
            )
        except httpx.RequestError as e:
            logger.error("Generation submit failed: %s", e)
            raise GenerationError("Failed to reach generation service") from e

    if resp.status_code >= 400:
        raise GenerationError(
            _error_message(resp, f"{media_type.value.capitalize()} submit failed ({resp.status_code})")
        )
    job_id = resp.json().get("job_id")
    if not job_id:
        raise GenerationError("Generation service returned no job id")
    logger.info("Submitted %s job %s", media_type.value, job_id)
    return str(job_id)


async def poll(
    job_id: str,
    on_status: StatusCallback | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict:
    """Poll a job until it completes. Raises GenerationError on failure or timeout."""
    headers = _auth_headers()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.genapi_timeout_seconds

    async with _client(client) as http:
        while loop.time() < deadline:
            try:
                resp = await http.get(f"/jobs/{job_id}", headers=headers)
            except httpx.RequestError as e:
                logger.error("Polling job %s failed: %s", job_id, e)
                raise GenerationError("Failed to reach generation service") from e
            if resp.status_code >= 400:
                raise GenerationError(f"Job poll failed ({resp.status_code})")

            data = resp.json()
            try:
                status = JobStatus(data.get("status"))
            except ValueError:
                raise GenerationError(f"Unknown job status: {data.get('status')}") from None
            if on_status is not None:
                on_status(status)

            if status is JobStatus.COMPLETED:
                return data
            if status is JobStatus.FAILED:
                raise GenerationError(data.get("error") or "Generation failed")

            await asyncio.sleep(settings.genapi_poll_interval_seconds)

    logger.warning("Job %s timed out after %ss", job_id, settings.genapi_timeout_seconds)
    raise GenerationError("Generation timed out")


async def download(
    job_id: str,
    media_type: MediaType = MediaType.IMAGE,
    client: httpx.AsyncClient | None = None,
) -> GeneratedArtifact:
    headers = _auth_headers()
    async with _client(client) as http:
        try:
            resp = await http.get(f"/jobs/{job_id}/artifact", headers=headers)
        except httpx.RequestError as e:
            logger.error("Artifact download for job %s failed: %s", job_id, e)
            raise GenerationError("Failed to reach generation service") from e

    if resp.status_code >= 400:
        raise GenerationError(f"Artifact download failed ({resp.status_code})")
    if not resp.content:
        raise GenerationError("Generation service returned an empty artifact")
    content_type = resp.headers.get("content-type") or _DEFAULT_CONTENT_TYPE[media_type]
    return GeneratedArtifact(content=resp.content, content_type=content_type)


async def generate(
    prompt: str,
    media_type: MediaType,
    on_status: StatusCallback | None = None,
    client: httpx.AsyncClient | None = None,
) -> GeneratedArtifact:
    """Submit, poll until done, download."""
    job_id = await submit(prompt, media_type, client=client)
    if on_status is not None:
        on_status(JobStatus.QUEUED)
    await poll(job_id, on_status, client=client)
    return await download(job_id, media_type, client=client)
