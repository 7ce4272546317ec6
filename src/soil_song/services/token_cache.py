"""IBM Cloud IAM bearer-token cache.

The cache owns exactly one live credential. Refreshes are single-flight: while a
fetch is in progress every caller awaits the same task, so concurrent requests
never hit the identity provider twice.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)

IAM_GRANT_TYPE = "urn:ibm:params:oauth:grant-type:apikey"
DEFAULT_EXPIRY_BUFFER_SECONDS = 5 * 60


class AuthFailure(RuntimeError):
    """Raised when a bearer token cannot be obtained from the identity provider."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class Credential:
    token: str
    expires_at: float

    def is_fresh(self, now: float, buffer_seconds: float) -> bool:
        return now + buffer_seconds < self.expires_at


class TokenCache:
    """Issue cached IAM tokens and refresh them on demand."""

    def __init__(
        self,
        *,
        api_key: Optional[str],
        token_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        expiry_buffer_seconds: float = DEFAULT_EXPIRY_BUFFER_SECONDS,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api_key = api_key
        self._token_url = token_url
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=timeout)
        )
        self._buffer = expiry_buffer_seconds
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._refresh_task: Optional[asyncio.Task[Credential]] = None

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def get_token(self) -> Credential:
        """Return the cached credential, refreshing it when inside the expiry buffer."""

        credential = self._credential
        if credential is not None and credential.is_fresh(self._clock(), self._buffer):
            logger.debug("Using cached IBM Cloud IAM token")
            return credential
        return await self._refresh()

    async def force_refresh(self) -> Credential:
        """Discard the cached credential and fetch a new one."""

        logger.info("Forcing IBM Cloud IAM token refresh")
        self._credential = None
        return await self._refresh()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _refresh(self) -> Credential:
        task = self._refresh_task
        if task is None:
            task = asyncio.create_task(self._fetch())
            self._refresh_task = task
            task.add_done_callback(self._clear_refresh)
        # Shielded so a cancelled caller does not cancel the fetch other callers share.
        return await asyncio.shield(task)

    def _clear_refresh(self, task: asyncio.Task[Credential]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # Mark the exception retrieved even if every waiter was cancelled.
            task.exception()

    async def _fetch(self) -> Credential:
        if not self._api_key:
            raise AuthFailure(
                "IBM API key is not configured in environment variables (IBM_API_KEY)"
            )

        logger.info("Getting new IBM Cloud IAM token")
        requested_at = self._clock()
        try:
            response = await self._http.post(
                self._token_url,
                data={"grant_type": IAM_GRANT_TYPE, "apikey": self._api_key},
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise AuthFailure(f"identity provider timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise AuthFailure(f"identity provider unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise AuthFailure(
                f"identity provider rejected the API key ({response.status_code})"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise AuthFailure("Invalid response from IBM IAM token service") from exc

        token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthFailure("Invalid response from IBM IAM token service")

        expires_in = body.get("expires_in")
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
            expires_at = requested_at + float(expires_in)
        elif isinstance(body.get("expiration"), (int, float)):
            expires_at = float(body["expiration"])
        else:
            logger.warning("IAM response carried no expiry; token will be refreshed on next use")
            expires_at = requested_at

        credential = Credential(token=token, expires_at=expires_at)
        self._credential = credential
        logger.info(
            "Successfully generated IBM Cloud IAM token (expires in %d minutes)",
            round((expires_at - requested_at) / 60),
        )
        return credential


__all__ = ["AuthFailure", "Credential", "TokenCache"]
