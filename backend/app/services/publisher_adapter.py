"""
Publishing boundary towards the social networks.

Every platform publisher implements:
    publish_post(payload) -> dict     (provider response: post id, url, ...)

Failures are raised as PublishFailure with a sanitized message and a
``retryable`` flag; a publisher never returns a half-successful result.
The default publisher for every platform is a webhook: the payload is
POSTed to the per-platform endpoint configured in PUBLISHER_ENDPOINTS.
"""
from __future__ import annotations

import abc
import logging
import re
from typing import Any

import httpx

from app.models import SocialPlatform
from app.services.capabilities import parse_platform
from app.services.errors import PublishFailure
from app.settings import get_settings

logger = logging.getLogger(__name__)


# ── Retry classification ─────────────────────────────────────

RETRYABLE_INDICATORS = (
    "timeout", "timed out", "429", "too many requests",
    "502", "503", "504", "connection", "reset by peer",
    "temporary", "service unavailable", "rate limit",
    "network", "ssl", "eof", "broken pipe",
)


def is_retryable_error(error: str | None) -> bool:
    if not error:
        return False
    lower = error.lower()
    return any(ind in lower for ind in RETRYABLE_INDICATORS)


# ── Credential sanitization ──────────────────────────────────

_SENSITIVE_PATTERNS = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_\.]+", re.IGNORECASE), "Bearer ***"),
    (re.compile(r"access_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "access_token=***"),
    (re.compile(r"refresh_token=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "refresh_token=***"),
    (re.compile(r"client_secret=[A-Za-z0-9\-_\.%]+", re.IGNORECASE), "client_secret=***"),
    # long opaque tokens
    (re.compile(r"[A-Za-z0-9\-_]{40,}"), "***TOKEN***"),
]

SENSITIVE_KEYS = {
    "access_token", "refresh_token", "client_secret",
    "session_id", "sessionid", "cookie", "cookies", "authorization",
}


def sanitize(text: str | None) -> str | None:
    """Strip credentials and tokens from error messages / response text."""
    if not text:
        return text
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_dict(d: dict | None) -> dict | None:
    """Mask sensitive keys (recursively) before a response is persisted."""
    if not d:
        return d
    cleaned: dict[str, Any] = {}
    for k, v in d.items():
        if str(k).lower() in SENSITIVE_KEYS:
            cleaned[k] = "***"
        elif isinstance(v, dict):
            cleaned[k] = sanitize_dict(v)
        elif isinstance(v, str):
            cleaned[k] = sanitize(v)
        else:
            cleaned[k] = v
    return cleaned


# ── Abstract publisher ───────────────────────────────────────

class PlatformPublisher(abc.ABC):
    """Base class for platform publishers."""

    platform: SocialPlatform

    @abc.abstractmethod
    async def publish_post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Publish one media file; return the provider response or raise PublishFailure."""
        ...

    def _fail(self, message: str, retryable: bool | None = None) -> PublishFailure:
        message = sanitize(message) or "Unknown publish error"
        logger.error(f"[{self.platform.value}] {message}")
        if retryable is None:
            retryable = is_retryable_error(message)
        return PublishFailure(message, retryable=retryable)


class WebhookPublisher(PlatformPublisher):
    """POSTs the payload to an HTTP service that talks to the network.

    The service answers 2xx with JSON like {"post_id": ..., "url": ...}.
    """

    def __init__(self, platform: SocialPlatform, endpoint: str, timeout: float = 300.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.platform = platform
        self.endpoint = endpoint
        self.timeout = timeout
        self._transport = transport

    async def publish_post(self, payload: dict[str, Any]) -> dict[str, Any]:
        body = {"platform": self.platform.value, **payload}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.endpoint, json=body)
        except httpx.HTTPError as exc:
            raise self._fail(f"{self.platform.display_name} request failed: {type(exc).__name__}: {exc}",
                             retryable=True) from exc

        if resp.status_code >= 400:
            raise self._fail(f"{self.platform.display_name} publish failed: {resp.status_code} {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError:
            raise self._fail(f"{self.platform.display_name} returned non-JSON response", retryable=False) from None
        if not isinstance(data, dict):
            raise self._fail(f"{self.platform.display_name} returned unexpected response", retryable=False)
        if data.get("error"):
            raise self._fail(f"{self.platform.display_name} publish error: {data['error']}")

        logger.info(f"[{self.platform.value}] published: {data.get('url') or data.get('post_id')}")
        return data


# ── Registry ─────────────────────────────────────────────────

_OVERRIDES: dict[SocialPlatform, PlatformPublisher] = {}


def register_publisher(platform: SocialPlatform | str, publisher: PlatformPublisher | None) -> None:
    """Install (or with None, remove) a publisher for a platform."""
    platform = parse_platform(platform)
    if publisher is None:
        _OVERRIDES.pop(platform, None)
    else:
        _OVERRIDES[platform] = publisher


def get_publisher(platform: SocialPlatform | str) -> PlatformPublisher:
    platform = parse_platform(platform)
    if platform in _OVERRIDES:
        return _OVERRIDES[platform]
    endpoint = get_settings().publisher_endpoints.get(platform.value)
    if not endpoint:
        raise PublishFailure(f"No publisher configured for {platform.display_name}", retryable=False)
    return WebhookPublisher(platform, endpoint)

