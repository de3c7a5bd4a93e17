"""Device identity and bearer-token freshness."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any, Callable

from loguru import logger

from imagesync.auth.credentials import (
    DEFAULT_EXPIRY_BUFFER_SECONDS,
    CredentialStore,
    DeviceCredential,
    is_token_expired,
)
from imagesync.errors import NotRegisteredError, RefreshFailedError
from imagesync.network.client import APIGatewayClient
from imagesync.network.endpoints import refresh_endpoint, register_endpoint
from imagesync.network.models import CredentialResponse

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DeviceAuthManager:
    """Registers the device and keeps a fresh bearer token.

    Register and refresh both rotate the credential server-side, so they run
    under one lock: concurrent callers wait for the in-flight operation and
    reuse its result instead of rotating again.
    """

    def __init__(
        self,
        *,
        gateway: APIGatewayClient,
        credentials: CredentialStore,
        expiry_buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        self.gateway = gateway
        self.credentials = credentials
        self.expiry_buffer_seconds = max(0, int(expiry_buffer_seconds))
        self._clock = clock or _utcnow
        self._cached: DeviceCredential | None = None
        self._lock = asyncio.Lock()

    async def ensure_authenticated(self) -> str:
        """Return a valid bearer token, registering or refreshing at most once."""
        cached = self._fresh_cached()
        if cached is not None:
            return cached.bearer_token

        async with self._lock:
            for attempt in range(2):
                cached = self._fresh_cached()
                if cached is not None:
                    return cached.bearer_token

                credential = self.credentials.load()
                if credential is None:
                    if attempt:
                        break
                    logger.info("No device credential stored, registering device")
                    await self._register_locked()
                    continue

                if self._expired(credential):
                    if attempt:
                        break
                    logger.info(f"Device token expiring at {credential.token_expiry.isoformat()}, refreshing")
                    await self._refresh_locked(credential)
                    continue

                self._cached = credential
                return credential.bearer_token

        logger.error("Device authentication did not yield a valid token after one retry")
        raise RefreshFailedError("credential still missing or expired after register/refresh")

    async def register(self) -> DeviceCredential:
        async with self._lock:
            return await self._register_locked()

    async def refresh_token(self) -> DeviceCredential:
        async with self._lock:
            credential = self.credentials.load()
            if credential is None:
                raise NotRegisteredError()
            return await self._refresh_locked(credential)

    def is_token_expired(self) -> bool:
        credential = self._cached
        if credential is None:
            try:
                credential = self.credentials.load()
            except Exception as e:
                logger.warning(f"Credential load failed during expiry check: {e}")
                return True
        return credential is None or self._expired(credential)

    def reset(self) -> None:
        """Forget the device identity (logout)."""
        self.credentials.delete()
        self._cached = None
        logger.info("Device credential cleared")

    def status_snapshot(self) -> dict[str, Any]:
        credential = self._cached or self.credentials.load()
        if credential is None:
            return {"registered": False, "device_id": "", "token_expiry": "", "expired": True}
        return {
            "registered": True,
            "device_id": credential.device_id,
            "token_expiry": credential.token_expiry.isoformat(),
            "expired": self._expired(credential),
        }

    def _fresh_cached(self) -> DeviceCredential | None:
        cached = self._cached
        if cached is None or self._expired(cached):
            return None
        return cached

    def _expired(self, credential: DeviceCredential) -> bool:
        return is_token_expired(
            credential.token_expiry,
            self._clock(),
            buffer_seconds=self.expiry_buffer_seconds,
        )

    async def _register_locked(self) -> DeviceCredential:
        response = await self.gateway.request(register_endpoint(), CredentialResponse)
        credential = self._store(response)
        logger.info(f"Device registered device_id={credential.device_id}")
        return credential

    async def _refresh_locked(self, current: DeviceCredential) -> DeviceCredential:
        response = await self.gateway.request(
            refresh_endpoint(),
            CredentialResponse,
            bearer_token=current.bearer_token,
        )
        credential = self._store(response)
        logger.info(f"Device token rotated device_id={credential.device_id}")
        return credential

    def _store(self, response: CredentialResponse) -> DeviceCredential:
        credential = DeviceCredential(
            device_id=response.device_id,
            device_secret=response.device_secret,
            token_expiry=response.expires_at,
        )
        self.credentials.save(credential)
        self._cached = credential
        return credential
