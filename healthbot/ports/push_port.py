"""Push port — transport and encryption boundary for Web Push.

Message encryption and VAPID signing belong to an external collaborator;
the web push channel only needs something that delivers an opaque payload
to a subscription endpoint and reports the HTTP status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from healthbot.data.models import PushSubscription


class PushTransport(Protocol):
    async def send(self, subscription: PushSubscription, payload: bytes, ttl: int) -> int:
        """Deliver `payload` and return the push service's HTTP status code."""
        ...


class PushEncryptor(Protocol):
    def encrypt(
        self, subscription: PushSubscription, payload: bytes,
    ) -> tuple[bytes, dict[str, str]]:
        """Return the encrypted body and the headers (Authorization, Crypto-Key, ...)."""
        ...
