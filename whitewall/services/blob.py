"""Durable artifact storage (Vercel Blob REST API)."""

import logging

import httpx

from whitewall.config import settings

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT = 60  # seconds

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
}


class BlobUploadError(Exception):
    pass


def extension_for(content_type: str) -> str:
    base = content_type.split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(base, "bin")


def artifact_pathname(record_id: str, content_type: str) -> str:
    return f"generations/{record_id}.{extension_for(content_type)}"


async def upload(
    content: bytes,
    pathname: str,
    content_type: str,
    client: httpx.AsyncClient | None = None,
) -> str:
    """Store ``content`` publicly under ``pathname`` and return its URL."""
    if not settings.blob_read_write_token:
        raise BlobUploadError("Blob storage is not configured (missing token)")

    headers = {
        "Authorization": f"Bearer {settings.blob_read_write_token}",
        "x-content-type": content_type,
        "x-add-random-suffix": "0",
    }
    url = f"{settings.blob_api_url.rstrip('/')}/{pathname}"

    owned = client is None
    http = client or httpx.AsyncClient(timeout=UPLOAD_TIMEOUT)
    try:
        resp = await http.put(url, content=content, headers=headers)
    except httpx.RequestError as e:
        logger.error("Blob upload of %s failed: %s", pathname, e)
        raise BlobUploadError("Failed to reach blob storage") from e
    finally:
        if owned:
            await http.aclose()

    if resp.status_code >= 400:
        logger.error("Blob upload returned %d: %s", resp.status_code, resp.text[:500])
        raise BlobUploadError(f"Blob upload failed ({resp.status_code})")

    blob_url = resp.json().get("url")
    if not blob_url:
        raise BlobUploadError("Blob storage returned no URL")
    return blob_url
