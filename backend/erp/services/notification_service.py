# Overview: Owner notifications delivered through an outbound webhook.

from __future__ import annotations

import logging

import httpx
from flask import current_app


logger = logging.getLogger(__name__)


def notify_owner(title: str, content: str) -> bool:
    """
    POST {"title", "content"} to NOTIFY_WEBHOOK_URL.

    Returns True on a 2xx answer. Any failure (no URL configured, network
    error, timeout, non-2xx) is logged and reported as False; this function
    never raises.
    """
    url = current_app.config.get("NOTIFY_WEBHOOK_URL")
    if not url:
        logger.info("Owner notification skipped: NOTIFY_WEBHOOK_URL is not set")
        return False

    timeout = current_app.config.get("COLLABORATOR_TIMEOUT_SECONDS", 5)
    try:
        response = httpx.post(url, json={"title": title, "content": content}, timeout=timeout)
    except httpx.HTTPError as exc:
        logger.warning("Owner notification failed: %s", exc)
        return False

    if response.is_success:
        return True

    logger.warning("Owner notification rejected with HTTP %s", response.status_code)
    return False
