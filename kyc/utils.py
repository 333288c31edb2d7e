import asyncio
import requests
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

from config import settings
from .exceptions import ExtractionError
from .file_converter import data_url_to_bytes


def download_image(url: str, timeout: Optional[int] = None) -> bytes:
    """
    Fetch image bytes from a signed URL.
    Inline data URLs from older records are decoded instead of fetched.
    """
    if url.startswith("data:"):
        content, _ = data_url_to_bytes(url)
        return content

    if not is_valid_url(url):
        raise ExtractionError("Not a downloadable URL")

    try:
        response = requests.get(url, timeout=timeout or settings.HTTP_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ExtractionError(f"Failed to download image from {urlparse(url).path}: {str(e)}", original_error=e)

    return response.content


def is_valid_url(url: str) -> bool:
    """Check if string is a valid URL"""
    try:
        result = urlparse(url)
    except ValueError:
        return False
    return all([result.scheme in ("http", "https"), result.netloc])


async def run_until_disconnected(work: Awaitable[Any],
                                 is_disconnected: Callable[[], Awaitable[bool]],
                                 poll_interval: float = 0.5) -> Any:
    """
    Run `work` as a task tied to the caller's connection.

    When `is_disconnected` reports the client has gone, the task is cancelled
    and asyncio.CancelledError is raised so late results are never used.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval)
            if done:
                return task.result()
            if await is_disconnected():
                task.cancel()
                raise asyncio.CancelledError("Client disconnected")
    finally:
        if not task.done():
            task.cancel()
