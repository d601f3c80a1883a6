"""httpx-based PushTransport.

POSTs an encrypted Web Push message to the subscription endpoint.
Encryption and VAPID headers come from a PushEncryptor; VapidPushEncryptor
is the one used in production, built on pywebpush and py_vapid.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx
from py_vapid import Vapid
from pywebpush import WebPusher

if TYPE_CHECKING:
    from healthbot.data.models import PushSubscription
    from healthbot.ports.push_port import PushEncryptor

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 10
_VAPID_CLAIM_TTL_SECONDS = 12 * 60 * 60


class HttpxPushTransport:
    def __init__(
        self,
        encryptor: PushEncryptor,
        client: httpx.AsyncClient | None = None,
        timeout: float = _TIMEOUT_SECONDS,
    ) -> None:
        self._encryptor = encryptor
        self._client = client
        self._timeout = timeout

    async def send(self, subscription: PushSubscription, payload: bytes, ttl: int) -> int:
        """Deliver one push message and return the HTTP status code.

        Network errors propagate as httpx exceptions.
        """
        body, headers = self._encryptor.encrypt(subscription, payload)
        headers = {"Content-Encoding": "aes128gcm", **headers, "TTL": str(ttl)}

        if self._client is not None:
            resp = await self._client.post(subscription.endpoint, content=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(subscription.endpoint, content=body, headers=headers)

        logger.debug("WebPush %s -> %d", subscription.endpoint, resp.status_code)
        return resp.status_code


class VapidPushEncryptor:
    """PushEncryptor backed by pywebpush (aes128gcm) and py_vapid signing."""

    def __init__(self, private_key: str, subject: str, claim_ttl: int = _VAPID_CLAIM_TTL_SECONDS) -> None:
        self._vapid = Vapid.from_string(private_key=private_key)
        self._subject = subject
        self._claim_ttl = claim_ttl

    def encrypt(self, subscription: PushSubscription, payload: bytes) -> tuple[bytes, dict[str, str]]:
        pusher = WebPusher({
            "endpoint": subscription.endpoint,
            "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
        })
        encoded = pusher.encode(payload, content_encoding="aes128gcm")

        url = urlparse(subscription.endpoint)
        claims = {
            "sub": self._subject,
            "aud": f"{url.scheme}://{url.netloc}",
            "exp": int(time.time()) + self._claim_ttl,
        }
        headers = self._vapid.sign(claims)
        return encoded["body"], {k: str(v) for k, v in headers.items()}
