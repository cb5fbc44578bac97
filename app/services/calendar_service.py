"""Google Calendar gateway creating Meet links for virtual appointments."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any
from uuid import UUID, uuid4

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, settings
from app.models.appointments import appointments
from app.models.calendar_integrations import calendar_integrations
from app.services.appointment_formatter import full_name, split_populated_row
from app.services.appointment_queries import populated_appointment_query

logger = structlog.get_logger(__name__)


class CalendarIntegrationError(Exception):
    """Raised when a meeting link cannot be produced."""


@dataclass
class CalendarEvent:
    """Calendar event backing a virtual appointment."""

    event_id: str
    meeting_link: str


def _event_datetime(day: date, hhmm: str) -> str:
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(day, time(hours, minutes)).isoformat()


class GoogleCalendarGateway:
    """Talks to the Google Calendar v3 REST API with a user's refresh token."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        config: Settings = settings,
    ):
        """
        Initialize the gateway.

        Args:
            http_client: Client to reuse; a short-lived one is opened per call otherwise
            config: Settings providing OAuth client and API endpoints
        """
        self._http_client = http_client
        self._config = config

    async def create_meeting_for_appointment(
        self,
        doctor_user_id: UUID,
        appointment_id: UUID,
        existing_event_id: str | None,
        session: AsyncSession,
    ) -> CalendarEvent:
        """
        Create (or update) the calendar event of an appointment with a Meet link.

        Args:
            doctor_user_id: User whose calendar integration hosts the event
            appointment_id: Appointment to describe
            existing_event_id: Event to update instead of creating a new one
            session: Session used to read the integration and appointment

        Returns:
            The event id and its meeting link

        Raises:
            CalendarIntegrationError: If the user has no active integration, the
                token exchange fails or Google returns no meeting link
        """
        integration = await self._get_integration(session, doctor_user_id)
        event_body = await self._build_event(session, appointment_id)

        async with self._client() as client:
            access_token = await self._refresh_access_token(client, integration["refresh_token"])
            headers = {"Authorization": f"Bearer {access_token}"}
            events_url = (
                f"{self._config.google_calendar_api_url}/calendars/"
                f"{integration['calendar_id']}/events"
            )
            params = {"conferenceDataVersion": 1, "sendUpdates": "none"}

            if existing_event_id:
                response = await client.patch(
                    f"{events_url}/{existing_event_id}",
                    headers=headers,
                    params=params,
                    json=event_body,
                )
            else:
                response = await client.post(
                    events_url, headers=headers, params=params, json=event_body
                )

        if response.status_code not in (200, 201):
            logger.error(
                "calendar_event_request_failed",
                appointment_id=str(appointment_id),
                status_code=response.status_code,
                body=response.text,
            )
            raise CalendarIntegrationError("Calendar event could not be saved")

        event = response.json()
        meeting_link = event.get("hangoutLink")
        if not meeting_link:
            raise CalendarIntegrationError("Calendar event was saved without a meeting link")

        logger.info(
            "calendar_event_saved",
            appointment_id=str(appointment_id),
            event_id=event.get("id"),
            updated=bool(existing_event_id),
        )
        return CalendarEvent(event_id=event["id"], meeting_link=meeting_link)

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._config.google_calendar_timeout_seconds) as client:
            yield client

    async def _get_integration(self, session: AsyncSession, user_id: UUID) -> dict:
        result = await session.execute(
            select(calendar_integrations).where(
                calendar_integrations.c.user_id == user_id,
                calendar_integrations.c.is_active.is_(True),
            )
        )
        row = result.mappings().first()
        if not row:
            raise CalendarIntegrationError("No calendar connected for this doctor")
        return dict(row)

    async def _refresh_access_token(self, client: httpx.AsyncClient, refresh_token: str) -> str:
        response = await client.post(
            self._config.google_token_url,
            data={
                "client_id": self._config.google_client_id,
                "client_secret": self._config.google_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        if response.status_code != 200:
            logger.error("calendar_token_refresh_failed", status_code=response.status_code)
            raise CalendarIntegrationError("Calendar access token could not be refreshed")

        access_token = response.json().get("access_token")
        if not access_token:
            raise CalendarIntegrationError("Token response did not contain an access token")
        return access_token

    async def _build_event(self, session: AsyncSession, appointment_id: UUID) -> dict[str, Any]:
        result = await session.execute(
            populated_appointment_query().where(appointments.c.id == appointment_id)
        )
        row = result.mappings().first()
        if not row:
            raise CalendarIntegrationError("Appointment not found")

        populated = split_populated_row(row)
        appointment = populated.appointment
        doctor_last_name = (populated.doctor_user or {}).get("last_name") or ""
        timezone = self._config.google_calendar_timezone

        attendees = [
            {"email": user["email"]}
            for user in (populated.doctor_user, populated.patient_user)
            if user and user.get("email")
        ]

        return {
            "summary": (
                f"Appointment: {full_name(populated.patient_user)} with Dr. {doctor_last_name}"
            ),
            "description": appointment.get("reason_for_visit") or "Medical appointment",
            "start": {
                "dateTime": _event_datetime(appointment["date"], appointment["start_time"]),
                "timeZone": timezone,
            },
            "end": {
                "dateTime": _event_datetime(appointment["date"], appointment["end_time"]),
                "timeZone": timezone,
            },
            "attendees": attendees,
            "conferenceData": {
                "createRequest": {
                    "requestId": str(uuid4()),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
        }

