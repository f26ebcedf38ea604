"""
Tool: Google Calendar Provider
Purpose: Google Calendar API v3 access over httpx with retry and backoff

Status mapping:
    401        -> AuthExpiredError (never retried)
    403, 429   -> RateLimitError, retried with exponential backoff plus jitter
    5xx        -> RemoteUnavailableError, retried from a longer base delay
    other 4xx  -> ProviderError
    transport  -> RemoteUnavailableError, retried like 5xx

Usage:
    from calsync.providers.google_calendar import GoogleCalendarProvider

    async with GoogleCalendarProvider(token, calendar_id="primary") as provider:
        events = await provider.list_events(time_min, time_max)
        created = await provider.create_event(body, conference=True)

Dependencies:
    - httpx
"""

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from calsync.errors import AuthExpiredError, ProviderError, RateLimitError, RemoteUnavailableError
from calsync.providers.base import CalendarProvider, RemoteEvent


logger = logging.getLogger(__name__)

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar API v3 provider for one calendar of one user."""

    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        server_error_delay: float = 5.0,
        timezone_name: str = "UTC",
        api_base: str = CALENDAR_API_BASE,
    ):
        """
        Args:
            access_token: Valid OAuth bearer token
            calendar_id: Target calendar
            client: Pre-built client (tests pass one with a mock transport)
            max_retries: Retries after the first attempt on retryable errors
            retry_base_delay: Backoff base in seconds for 403/429
            server_error_delay: Backoff base in seconds for 5xx and transport errors
            timezone_name: IANA zone sent with timed events
            api_base: API root URL
        """
        self._access_token = access_token
        self.calendar_id = calendar_id
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.server_error_delay = server_error_delay
        self.timezone_name = timezone_name
        self._api_base = api_base
        self._client = client
        self._owns_client = client is None

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def _events_path(self) -> str:
        return f"/calendars/{quote(self.calendar_id, safe='@.')}/events"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._api_base,
                headers={
                    "Authorization": f"Bearer {self._access_token}",
                    "Content-Type": "application/json",
                },
                timeout=30.0,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()

    def _backoff(self, attempt: int, base: float) -> float:
        return base * (2 ** attempt) + random.uniform(0, base)

    def _classify(self, response: httpx.Response) -> ProviderError:
        status = response.status_code
        try:
            message = response.json().get("error", {}).get("message") or response.text
        except ValueError:
            message = response.text
        if status == 401:
            return AuthExpiredError(f"Google rejected the access token: {message}", status)
        if status in (403, 429):
            return RateLimitError(f"Google Calendar rate limit: {message}", status)
        if status >= 500:
            return RemoteUnavailableError(f"Google Calendar unavailable ({status}): {message}", status)
        return ProviderError(f"Google Calendar error ({status}): {message}", status)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make API request, retrying rate limits and server errors."""
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self._access_token}"}

        attempt = 0
        while True:
            try:
                response = await client.request(method, endpoint, params=params, json=data, headers=headers)
            except httpx.RequestError as e:
                error: ProviderError = RemoteUnavailableError(f"Google Calendar request error: {e}")
                retry_after = None
            else:
                if response.is_success:
                    if response.status_code == 204 or not response.content:
                        return {}
                    return response.json()
                error = self._classify(response)
                retry_after = response.headers.get("Retry-After")

            if not error.retryable or attempt >= self.max_retries:
                logger.error("Google Calendar %s %s failed: %s", method, endpoint, error)
                raise error

            base = self.retry_base_delay if isinstance(error, RateLimitError) else self.server_error_delay
            delay = self._backoff(attempt, base)
            if retry_after and retry_after.isdigit():
                delay = max(delay, float(retry_after))
            logger.warning(
                "%s; retrying in %.1fs (%d/%d)", error, delay, attempt + 1, self.max_retries
            )
            await asyncio.sleep(delay)
            attempt += 1

    # =========================================================================
    # Event Operations
    # =========================================================================

    async def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        include_cancelled: bool = False,
    ) -> list[RemoteEvent]:
        """List single (expanded) events, following nextPageToken."""
        params: dict[str, Any] = {
            "timeMin": _rfc3339(time_min),
            "timeMax": _rfc3339(time_max),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": 250,
            "showDeleted": "true" if include_cancelled else "false",
        }

        events: list[RemoteEvent] = []
        while True:
            page = await self._make_request("GET", self._events_path, params=params)
            for item in page.get("items", []):
                if not item.get("start"):
                    continue
                event = RemoteEvent.from_google(item)
                if event.cancelled and not include_cancelled:
                    continue
                events.append(event)

            token = page.get("nextPageToken")
            if not token:
                break
            params = {**params, "pageToken": token}

        logger.debug("Listed %d event(s) from %s", len(events), self.calendar_id)
        return events

    async def create_event(self, body: dict[str, Any], conference: bool = False) -> dict[str, Any]:
        params = {"conferenceDataVersion": 1} if conference else None
        return await self._make_request("POST", self._events_path, params=params, data=body)

    async def update_event(self, event_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._make_request("PATCH", f"{self._events_path}/{quote(event_id, safe='')}", data=body)

    async def delete_event(self, event_id: str) -> None:
        await self._make_request("DELETE", f"{self._events_path}/{quote(event_id, safe='')}")


__all__ = ["CALENDAR_API_BASE", "GoogleCalendarProvider"]
