"""HTTP client for the SoilSong service."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Literal, Optional, Union

import httpx
from pydantic import ValidationError

from ..schemas.soil import SoilStoryResponse

logger = logging.getLogger(__name__)

DISCOVERY_TIMEOUT = 3.0
STORY_TIMEOUT = 15.0

# Tried in order when no explicit server list is given.
DEFAULT_SERVER_URLS = (
    "http://localhost:3000",
    "http://10.0.2.2:3000",
    "http://127.0.0.1:3000",
)

RequestErrorKind = Literal["timeout", "network", "validation", "server"]


class ServerUnavailable(RuntimeError):
    def __init__(self, reason: str = "Could not connect to the server"):
        super().__init__(reason)
        self.reason = reason


class StoryRequestError(RuntimeError):
    """Story request failed; ``kind`` tells the caller whether to retry."""

    def __init__(self, kind: RequestErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.reason = message
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"Server error: {response.status_code}"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, str):
        return detail
    if isinstance(detail, dict) and detail.get("message"):
        reason = detail.get("reason")
        return f"{detail['message']} ({reason})" if reason else str(detail["message"])
    return f"Server error: {response.status_code}"


class SoilSongClient:
    """Find a reachable server, request stories and resolve audio URLs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        discovery_timeout: float = DISCOVERY_TIMEOUT,
        story_timeout: float = STORY_TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/") if base_url else None
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None
        self._discovery_timeout = discovery_timeout
        self._story_timeout = story_timeout

    @property
    def base_url(self) -> Optional[str]:
        return self._base_url

    async def discover_server(self, urls: Iterable[str] = DEFAULT_SERVER_URLS) -> str:
        """Probe ``/health`` on each candidate and keep the first that answers 200."""

        for url in urls:
            candidate = url.rstrip("/")
            logger.debug("Testing connection to %s", candidate)
            try:
                response = await self._client.get(
                    f"{candidate}/health", timeout=self._discovery_timeout
                )
            except httpx.HTTPError as exc:
                logger.info("Failed to connect to %s: %s", candidate, exc)
                continue
            if response.status_code == 200:
                logger.info("Connected to %s", candidate)
                self._base_url = candidate
                return candidate
            logger.info("%s answered health check with %s", candidate, response.status_code)

        raise ServerUnavailable(
            "Could not connect to the server. Please ensure the server is running "
            "and you're connected to the same network."
        )

    async def request_story(
        self,
        acidity: Union[float, str],
        moisture: Union[float, str],
        image_base64: Optional[str] = None,
    ) -> SoilStoryResponse:
        if self._base_url is None:
            await self.discover_server()
        payload: dict[str, Any] = {
            "pH": acidity,
            "moisture": moisture,
            "base64Image": image_base64,
        }

        try:
            response = await self._client.post(
                f"{self._base_url}/api/story",
                json=payload,
                timeout=self._story_timeout,
            )
        except httpx.TimeoutException as exc:
            raise StoryRequestError("timeout", "The request timed out.") from exc
        except httpx.HTTPError as exc:
            raise StoryRequestError(
                "network", "Network error - please check your connection."
            ) from exc

        if response.status_code >= 500:
            raise StoryRequestError("server", _error_message(response), response.status_code)
        if response.status_code >= 400:
            raise StoryRequestError(
                "validation", _error_message(response), response.status_code
            )

        try:
            return SoilStoryResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise StoryRequestError(
                "server", "Server returned an unexpected response.", response.status_code
            ) from exc

    def resolve_audio_url(self, locator: str) -> str:
        if locator.startswith(("http://", "https://")):
            return locator
        if self._base_url is None:
            raise ServerUnavailable("No server selected; call discover_server() first")
        return f"{self._base_url}/{locator.lstrip('/')}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = [
    "DEFAULT_SERVER_URLS",
    "ServerUnavailable",
    "SoilSongClient",
    "StoryRequestError",
]
