from __future__ import annotations

import base64
import time
from dataclasses import dataclass

import httpx

from expense_intake.core.logging import get_logger, log_event, monotonic_ms

logger = get_logger(__name__)

DEFAULT_IMAGE_CONTENT_TYPE = "image/jpeg"


class ImageFetchError(RuntimeError):
    pass


class FetchError(ImageFetchError):
    pass


class UnsupportedMediaError(ImageFetchError):
    pass


@dataclass(frozen=True)
class ImagePayload:
    content_type: str
    data: bytes

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


async def fetch_image_payload(
    url: str, *, client: httpx.AsyncClient, timeout: float = 15.0
) -> ImagePayload:
    """Download ``url`` and keep it in memory as an inline image payload."""
    start = time.monotonic()
    try:
        resp = await client.get(url, timeout=timeout, follow_redirects=True)
    except httpx.HTTPError as e:
        raise FetchError(f"Failed to fetch image: {e.__class__.__name__}") from e

    if not resp.is_success:
        raise FetchError(f"Failed to fetch image: {resp.status_code}")

    content_type = _media_type(resp.headers.get("content-type"))
    if not content_type.startswith("image/"):
        raise UnsupportedMediaError(
            f"Unsupported file type: {content_type}. Only images supported."
        )

    body = resp.content
    log_event(
        logger,
        "receipts.fetch.success",
        content_type=content_type,
        byte_size=len(body),
        duration_ms=monotonic_ms(start),
    )
    return ImagePayload(content_type=content_type, data=body)


def _media_type(header: str | None) -> str:
    if not header:
        return DEFAULT_IMAGE_CONTENT_TYPE
    media = header.split(";", 1)[0].strip().lower()
    return media or DEFAULT_IMAGE_CONTENT_TYPE
