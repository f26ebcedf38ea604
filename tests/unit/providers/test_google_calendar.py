"""Tests for calsync/providers/google_calendar.py

Requests go through httpx.MockTransport, so no network is touched.
Key behavior:
- Pagination via nextPageToken, cancelled events dropped
- 401 raises AuthExpiredError immediately
- 403/429 and 5xx retried, then raised
- conferenceDataVersion=1 sent when a conference is requested
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from calsync.errors import AuthExpiredError, ProviderError, RateLimitError, RemoteUnavailableError
from calsync.providers.base import RemoteEvent
from calsync.providers.google_calendar import CALENDAR_API_BASE, GoogleCalendarProvider


UTC = timezone.utc
T0 = datetime(2026, 3, 1, tzinfo=UTC)
T1 = datetime(2026, 4, 1, tzinfo=UTC)


def make_provider(handler, **kwargs) -> GoogleCalendarProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=CALENDAR_API_BASE)
    kwargs.setdefault("retry_base_delay", 0)
    kwargs.setdefault("server_error_delay", 0)
    return GoogleCalendarProvider("token-abc", client=client, **kwargs)


def event(event_id: str, status: str = "confirmed") -> dict:
    return {
        "id": event_id,
        "summary": f"Event {event_id}",
        "status": status,
        "start": {"dateTime": "2026-03-02T10:00:00Z"},
        "end": {"dateTime": "2026-03-02T11:00:00Z"},
    }


# ─────────────────────────────────────────────────────────────────────────────
# Listing
# ─────────────────────────────────────────────────────────────────────────────


class TestListEvents:
    """Event listing and parsing."""

    @pytest.mark.asyncio
    async def test_follows_pages_and_drops_cancelled(self):
        seen_params = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen_params.append(dict(request.url.params))
            if "pageToken" not in request.url.params:
                return httpx.Response(200, json={"items": [event("a"), event("b", "cancelled")], "nextPageToken": "p2"})
            return httpx.Response(200, json={"items": [event("c")]})

        async with make_provider(handler) as provider:
            events = await provider.list_events(T0, T1)

        assert [e.event_id for e in events] == ["a", "c"]
        assert seen_params[0]["timeMin"] == "2026-03-01T00:00:00Z"
        assert seen_params[0]["singleEvents"] == "true"
        assert seen_params[1]["pageToken"] == "p2"

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        auth_headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            auth_headers.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={"items": []})

        async with make_provider(handler) as provider:
            await provider.list_events(T0, T1)

        assert auth_headers == ["Bearer token-abc"]

    def test_parses_all_day_and_conference_link(self):
        parsed = RemoteEvent.from_google({
            "id": "x",
            "start": {"date": "2026-03-05"},
            "end": {"date": "2026-03-06"},
            "conferenceData": {"entryPoints": [{"entryPointType": "video", "uri": "https://meet.google.com/xyz"}]},
        })

        assert parsed.all_day is True
        assert parsed.title == ""
        assert parsed.start_time == datetime(2026, 3, 5, tzinfo=UTC)
        assert parsed.end_time == datetime(2026, 3, 6, tzinfo=UTC)
        assert parsed.meet_link == "https://meet.google.com/xyz"


# ─────────────────────────────────────────────────────────────────────────────
# Error Mapping and Retry
# ─────────────────────────────────────────────────────────────────────────────


class TestRetries:
    """Status codes map onto the error taxonomy."""

    @pytest.mark.asyncio
    async def test_401_is_auth_expired_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, json={"error": {"message": "Invalid Credentials"}})

        async with make_provider(handler) as provider:
            with pytest.raises(AuthExpiredError):
                await provider.list_events(T0, T1)

        assert len(calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [403, 429])
    async def test_rate_limit_retried_then_succeeds(self, status):
        responses = [httpx.Response(status, json={}), httpx.Response(status, json={}), httpx.Response(200, json={"id": "new"})]

        def handler(request):
            return responses.pop(0)

        async with make_provider(handler) as provider:
            created = await provider.create_event({"summary": "x"})

        assert created == {"id": "new"}
        assert responses == []

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_after_three_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, json={"error": {"message": "Rate Limit Exceeded"}})

        async with make_provider(handler, max_retries=3) as provider:
            with pytest.raises(RateLimitError) as exc:
                await provider.create_event({"summary": "x"})

        assert len(calls) == 4
        assert exc.value.status_code == 429

    @pytest.mark.asyncio
    async def test_server_error_is_remote_unavailable(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        async with make_provider(handler, max_retries=1) as provider:
            with pytest.raises(RemoteUnavailableError):
                await provider.list_events(T0, T1)

    @pytest.mark.asyncio
    async def test_transport_error_is_remote_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_provider(handler, max_retries=0) as provider:
            with pytest.raises(RemoteUnavailableError):
                await provider.list_events(T0, T1)

    @pytest.mark.asyncio
    async def test_other_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "Bad Request"}})

        async with make_provider(handler) as provider:
            with pytest.raises(ProviderError) as exc:
                await provider.create_event({"summary": "x"})

        assert not exc.value.retryable
        assert len(calls) == 1

    def test_backoff_grows_exponentially(self):
        provider = GoogleCalendarProvider("t")

        for attempt in range(3):
            delay = provider._backoff(attempt, 1.0)
            assert 2 ** attempt <= delay <= 2 ** attempt + 1.0


# ─────────────────────────────────────────────────────────────────────────────
# Mutations
# ─────────────────────────────────────────────────────────────────────────────


class TestMutations:
    """Create, update and delete requests."""

    @pytest.mark.asyncio
    async def test_conference_request_sets_version_param(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "e1", "hangoutLink": "https://meet.google.com/e1"})

        body = {"summary": "Online", "conferenceData": {"createRequest": {"requestId": "r1"}}}
        async with make_provider(handler) as provider:
            created = await provider.create_event(body, conference=True)

        assert requests[0].method == "POST"
        assert requests[0].url.path == "/calendar/v3/calendars/primary/events"
        assert requests[0].url.params["conferenceDataVersion"] == "1"
        assert json.loads(requests[0].content) == body
        assert created["hangoutLink"] == "https://meet.google.com/e1"

    @pytest.mark.asyncio
    async def test_delete_accepts_empty_response(self):
        def handler(request):
            assert request.method == "DELETE"
            assert request.url.path.endswith("/events/e1")
            return httpx.Response(204)

        async with make_provider(handler) as provider:
            assert await provider.delete_event("e1") is None

    @pytest.mark.asyncio
    async def test_update_uses_patch(self):
        def handler(request):
            assert request.method == "PATCH"
            return httpx.Response(200, json={"id": "e1", "summary": "Renamed"})

        async with make_provider(handler) as provider:
            updated = await provider.update_event("e1", {"summary": "Renamed"})

        assert updated["summary"] == "Renamed"

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))

        async with GoogleCalendarProvider("t", client=client):
            pass

        assert not client.is_closed
        await client.aclose()
