# Overview: Object storage client used for product images.

from __future__ import annotations

import logging

import httpx
from flask import current_app


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when an upload to object storage fails; surfaces as 502."""
    pass


def put(key: str, data: bytes, content_type: str) -> dict:
    """
    Upload `data` under `key` and return {"key", "url"}.

    The storage endpoint is STORAGE_BASE_URL; the object is written with
    PUT {base}/{key}. When the server answers with JSON carrying a "url"
    that URL is used, otherwise the object URL itself.
    """
    base_url = current_app.config.get("STORAGE_BASE_URL")
    if not base_url:
        raise StorageError("Object storage is not configured")

    key = key.lstrip("/")
    url = f"{base_url.rstrip('/')}/{key}"
    headers = {"Content-Type": content_type}
    api_key = current_app.config.get("STORAGE_API_KEY")
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    timeout = current_app.config.get("COLLABORATOR_TIMEOUT_SECONDS", 5)
    try:
        response = httpx.put(url, content=data, headers=headers, timeout=timeout)
    except httpx.HTTPError as exc:
        logger.error("Upload of %s failed: %s", key, exc)
        raise StorageError(f"Upload failed: {exc}") from exc

    if not response.is_success:
        logger.error("Upload of %s rejected with HTTP %s", key, response.status_code)
        raise StorageError(f"Upload failed with HTTP {response.status_code}")

    public_url = url
    if response.headers.get("content-type", "").startswith("application/json"):
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("url"), str) and body["url"]:
            public_url = body["url"]

    return {"key": key, "url": public_url}
