"""
Calendar Client — the narrow calendar-provider interface the dialogs call.

Only dialogs talk to the calendar; the dispatch core just makes sure a
`calendarId` and credentials exist before they run.
"""
from __future__ import annotations

import abc
import structlog
from datetime import date, datetime, time, timezone
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.settings import CalendarConfig, get_settings
from core.errors import CalendarProviderError
from models.schemas import OAuthCredentials

logger = structlog.get_logger()


class CalendarInfo(BaseModel):
    id: str
    summary: str = ""
    time_zone: str = ""


class CalendarEvent(BaseModel):
    id: str
    title: str = ""
    start: datetime
    end: datetime


class CalendarClient(abc.ABC):
    """Abstract base for calendar providers."""

    @abc.abstractmethod
    async def get_primary_calendar(self, credentials: OAuthCredentials) -> CalendarInfo:
        ...

    @abc.abstractmethod
    async def list_events(
        self, credentials: OAuthCredentials, calendar_id: str,
        start: datetime, end: datetime, query: str = "",
    ) -> list[CalendarEvent]:
        ...

    @abc.abstractmethod
    async def create_event(
        self, credentials: OAuthCredentials, calendar_id: str,
        title: str, start: datetime, end: datetime,
    ) -> CalendarEvent:
        ...

    @abc.abstractmethod
    async def update_event(
        self, credentials: OAuthCredentials, calendar_id: str, event_id: str,
        start: datetime = None, end: datetime = None, title: str = None,
    ) -> CalendarEvent:
        ...

    @abc.abstractmethod
    async def delete_event(self, credentials: OAuthCredentials, calendar_id: str, event_id: str) -> None:
        ...

    @abc.abstractmethod
    async def free_busy(
        self, credentials: OAuthCredentials, calendar_id: str,
        start: datetime, end: datetime,
    ) -> list[tuple[datetime, datetime]]:
        """Busy intervals overlapping [start, end)."""
        ...

    async def close(self) -> None:
        pass


def _parse_event_time(raw: dict[str, Any]) -> datetime:
    if raw.get("dateTime"):
        return datetime.fromisoformat(raw["dateTime"].replace("Z", "+00:00"))
    # all-day events
    return datetime.combine(date.fromisoformat(raw["date"]), time.min, tzinfo=timezone.utc)


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class GoogleCalendarClient(CalendarClient):
    """Google Calendar v3 REST client."""

    def __init__(self, config: CalendarConfig = None):
        self.config = config or get_settings().calendar
        self.client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
            )
        return self.client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _send(self, method: str, url: str, credentials: OAuthCredentials, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"{credentials.token_type} {credentials.access_token}"}
        return await self._get_client().request(method, url, headers=headers, **kwargs)

    async def _request(self, method: str, url: str, credentials: OAuthCredentials, **kwargs) -> dict[str, Any]:
        try:
            response = await self._send(method, url, credentials, **kwargs)
        except httpx.HTTPError as e:
            logger.error("calendar_request_failed", method=method, url=url, error=str(e))
            raise CalendarProviderError(f"Calendar provider unreachable: {e}") from e
        if response.status_code >= 400:
            logger.warning("calendar_request_rejected",
                           method=method, url=url, status=response.status_code)
            raise CalendarProviderError(
                f"Calendar provider returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _to_event(raw: dict[str, Any]) -> CalendarEvent:
        return CalendarEvent(
            id=raw["id"],
            title=raw.get("summary", ""),
            start=_parse_event_time(raw["start"]),
            end=_parse_event_time(raw["end"]),
        )

    async def get_primary_calendar(self, credentials: OAuthCredentials) -> CalendarInfo:
        body = await self._request("GET", "/users/me/calendarList/primary", credentials)
        return CalendarInfo(
            id=body["id"],
            summary=body.get("summary", ""),
            time_zone=body.get("timeZone", ""),
        )

    async def list_events(
        self, credentials: OAuthCredentials, calendar_id: str,
        start: datetime, end: datetime, query: str = "",
    ) -> list[CalendarEvent]:
        params = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "orderBy": "startTime",
        }
        if query:
            params["q"] = query
        body = await self._request(
            "GET", f"/calendars/{quote(calendar_id, safe='')}/events", credentials, params=params,
        )
        return [self._to_event(item) for item in body.get("items", [])]

    async def create_event(
        self, credentials: OAuthCredentials, calendar_id: str,
        title: str, start: datetime, end: datetime,
    ) -> CalendarEvent:
        body = await self._request(
            "POST", f"/calendars/{quote(calendar_id, safe='')}/events", credentials,
            json={
                "summary": title,
                "start": {"dateTime": _rfc3339(start)},
                "end": {"dateTime": _rfc3339(end)},
            },
        )
        return self._to_event(body)

    async def update_event(
        self, credentials: OAuthCredentials, calendar_id: str, event_id: str,
        start: datetime = None, end: datetime = None, title: str = None,
    ) -> CalendarEvent:
        patch: dict[str, Any] = {}
        if title is not None:
            patch["summary"] = title
        if start is not None:
            patch["start"] = {"dateTime": _rfc3339(start)}
        if end is not None:
            patch["end"] = {"dateTime": _rfc3339(end)}
        body = await self._request(
            "PATCH",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
            credentials, json=patch,
        )
        return self._to_event(body)

    async def delete_event(self, credentials: OAuthCredentials, calendar_id: str, event_id: str) -> None:
        await self._request(
            "DELETE",
            f"/calendars/{quote(calendar_id, safe='')}/events/{quote(event_id, safe='')}",
            credentials,
        )

    async def free_busy(
        self, credentials: OAuthCredentials, calendar_id: str,
        start: datetime, end: datetime,
    ) -> list[tuple[datetime, datetime]]:
        body = await self._request("POST", "/freeBusy", credentials, json={
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "items": [{"id": calendar_id}],
        })
        busy = body.get("calendars", {}).get(calendar_id, {}).get("busy", [])
        return [
            (_parse_event_time({"dateTime": b["start"]}), _parse_event_time({"dateTime": b["end"]}))
            for b in busy
        ]

    async def close(self) -> None:
        if self.client is not None and not self.client.is_closed:
            await self.client.aclose()
