import logging
import os

import httpx
from httpx import TransportError

from ..errors import InvalidDataError, NetworkError, NotFoundError

BASE_URL = os.getenv("HABITFLOW_API_URL", "http://backend:8000")
REQUEST_TIMEOUT = float(os.getenv("HABITFLOW_REQUEST_TIMEOUT", "10.0"))

HABITS_URL = "/api/habits"
STATS_URL = "/api/habits/stats"
HEALTH_URL = "/api/health"


logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or body)
    return str(body)


class HabitFlowAPI:
    """Async client for the HabitFlow JSON API.

    Transport failures, timeouts and 5xx answers raise ``NetworkError``;
    404 raises ``NotFoundError``; other 4xx raise ``InvalidDataError``.
    """

    def __init__(self, base_url: str = BASE_URL, timeout: float = REQUEST_TIMEOUT, transport=None):
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def _request(self, method: str, url: str, **kwargs):
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport
            ) as client:
                response = await client.request(method, url, **kwargs)
        except TransportError as e:
            logger.warning(f"{method} {url} failed: {e!r}")
            raise NetworkError(f"{method} {url}: {e!r}") from e

        if response.status_code >= 500:
            raise NetworkError(f"{method} {url}: server error {response.status_code}")
        if response.status_code == 404:
            raise NotFoundError(_error_message(response))
        if response.status_code >= 400:
            raise InvalidDataError(_error_message(response))
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            # a captive portal or proxy page, not the API
            logger.warning(f"{method} {url} returned a non-JSON body ({response.headers.get('content-type')})")
            raise NetworkError(f"{method} {url}: unexpected response body") from e

    async def health(self):
        return await self._request("GET", HEALTH_URL)

    async def get_habits(self):
        return await self._request("GET", HABITS_URL)

    async def get_stats(self):
        return await self._request("GET", STATS_URL)

    async def create_habit(self, habit_data: dict):
        return await self._request("POST", HABITS_URL, json=habit_data)

    async def update_habit(self, habit_id: int, update_data: dict):
        return await self._request("PATCH", f"{HABITS_URL}/{habit_id}", json=update_data)

    async def delete_habit(self, habit_id: int):
        return await self._request("DELETE", f"{HABITS_URL}/{habit_id}")

    async def complete_habit(self, habit_id: int):
        return await self._request("POST", f"{HABITS_URL}/{habit_id}/complete")

    async def undo_habit(self, habit_id: int):
        return await self._request("POST", f"{HABITS_URL}/{habit_id}/undo")

    async def record_progress(self, habit_id: int, delta: int = 1):
        return await self._request("POST", f"{HABITS_URL}/{habit_id}/progress", json={"delta": delta})
