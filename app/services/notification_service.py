"""Notification service: in-app notifications plus push delivery via FCM."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from firebase_admin import messaging
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.notifications import notifications
from app.models.push_tokens import push_tokens
from app.services.appointment_formatter import PopulatedAppointment, format_date, full_name

logger = structlog.get_logger(__name__)

RELATED_MODEL = "Appointment"


def _event_messages(
    event_type: str,
    patient_name: str,
    doctor_last_name: str,
    day: str,
    start_time: str,
) -> tuple[str, str, str]:
    """Return (title, patient message, doctor message) for an appointment event."""
    doctor = f"Dr. {doctor_last_name}"

    if event_type == "created":
        return (
            "New Appointment Scheduled",
            f"Your appointment with {doctor} on {day} at {start_time} has been scheduled.",
            f"New appointment with {patient_name} on {day} at {start_time}.",
        )
    if event_type == "cancelled":
        return (
            "Appointment Cancelled",
            f"Your appointment with {doctor} on {day} at {start_time} has been cancelled.",
            f"Appointment with {patient_name} on {day} at {start_time} has been cancelled.",
        )
    if event_type == "checked-in":
        return (
            "Patient Checked In",
            f"You have checked in for your appointment with {doctor} on {day} at {start_time}.",
            f"{patient_name} has checked in for the appointment on {day} at {start_time}.",
        )
    if event_type == "in-progress":
        return (
            "Appointment In Progress",
            f"Your appointment with {doctor} is now in progress.",
            f"Your appointment with {patient_name} is now in progress.",
        )
    if event_type == "completed":
        return (
            "Appointment Completed",
            f"Your appointment with {doctor} on {day} has been completed.",
            f"Your appointment with {patient_name} on {day} has been completed.",
        )
    if event_type == "no-show":
        return (
            "Missed Appointment",
            f"You missed your appointment with {doctor} on {day} at {start_time}.",
            f"{patient_name} did not show up for the appointment on {day} at {start_time}.",
        )
    return (
        "Appointment Update",
        f"Your appointment with {doctor} on {day} at {start_time} has been updated.",
        f"Your appointment with {patient_name} on {day} at {start_time} has been updated.",
    )


class NotificationService:
    """Service for appointment notifications."""

    @staticmethod
    async def send_push_notification(
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> tuple[int, int]:
        """
        Send push notification to multiple devices.

        Args:
            tokens: List of FCM tokens
            title: Notification title
            body: Notification body
            data: Optional data payload

        Returns:
            Tuple of (success_count, failure_count)
        """
        if not tokens:
            return 0, 0

        try:
            message = messaging.MulticastMessage(
                notification=messaging.Notification(title=title, body=body),
                data=data or {},
                tokens=tokens,
                android=messaging.AndroidConfig(priority="high"),
            )
            response = messaging.send_each_for_multicast(message)

            logger.info(
                "push_notification_sent",
                title=title,
                success_count=response.success_count,
                failure_count=response.failure_count,
            )
            return response.success_count, response.failure_count

        except Exception as e:
            logger.error("push_notification_failed", error=str(e), title=title)
            return 0, len(tokens)

    async def notify_user(
        self,
        session: AsyncSession,
        user_id: UUID,
        notification_type: str,
        title: str,
        message: str,
        appointment_id: UUID,
    ) -> UUID:
        """
        Store an in-app notification for a user and push it to their devices.

        Args:
            session: Session of the enclosing transaction
            user_id: Recipient
            notification_type: ``appointment`` or ``reminder``
            title: Notification title
            message: Notification body
            appointment_id: Appointment the notification is about

        Returns:
            ID of the stored notification
        """
        now = datetime.now(UTC).isoformat()
        delivery_status: list[dict[str, Any]] = [
            {"channel": "in-app", "status": "sent", "sent_at": now, "error_message": None}
        ]

        result = await session.execute(
            insert(notifications)
            .values(
                user_id=user_id,
                type=notification_type,
                title=title,
                message=message,
                related_model=RELATED_MODEL,
                related_id=appointment_id,
                is_read=False,
                delivery_channels=["in-app", "push"],
                delivery_status=delivery_status,
            )
            .returning(notifications.c.id)
        )
        notification_id = result.scalar_one()

        token_result = await session.execute(
            select(push_tokens.c.fcm_token).where(
                push_tokens.c.user_id == user_id,
                push_tokens.c.is_active.is_(True),
            )
        )
        tokens = list(token_result.scalars().all())

        if tokens:
            success_count, failure_count = await self.send_push_notification(
                tokens=tokens,
                title=title,
                body=message,
                data={
                    "type": notification_type,
                    "appointment_id": str(appointment_id),
                    "notification_id": str(notification_id),
                },
            )
            push_status = "sent" if success_count > 0 else "failed"
            delivery_status.append(
                {
                    "channel": "push",
                    "status": push_status,
                    "sent_at": datetime.now(UTC).isoformat(),
                    "error_message": (
                        f"{failure_count} of {len(tokens)} devices failed" if failure_count else None
                    ),
                }
            )
            await session.execute(
                update(notifications)
                .where(notifications.c.id == notification_id)
                .values(delivery_status=delivery_status)
            )
        else:
            logger.info("no_active_tokens_for_user", user_id=str(user_id))

        return notification_id

    async def send_appointment_notifications(
        self,
        session: AsyncSession,
        populated: PopulatedAppointment,
        event_type: str,
    ) -> int:
        """
        Notify patient and doctor about an appointment event.

        Args:
            session: Session of the enclosing transaction
            populated: Appointment with its participants resolved
            event_type: ``created`` or the appointment's new status

        Returns:
            Number of notifications stored
        """
        patient_user = populated.patient_user
        doctor_user = populated.doctor_user
        if not patient_user or not doctor_user:
            logger.warning(
                "notification_recipients_missing",
                appointment_id=str(populated.appointment["id"]),
            )
            return 0

        appointment = populated.appointment
        title, patient_message, doctor_message = _event_messages(
            event_type,
            patient_name=full_name(patient_user),
            doctor_last_name=doctor_user.get("last_name") or "",
            day=format_date(appointment.get("date")),
            start_time=appointment.get("start_time") or "",
        )

        await self.notify_user(
            session, patient_user["id"], "appointment", title, patient_message, appointment["id"]
        )
        await self.notify_user(
            session, doctor_user["id"], "appointment", title, doctor_message, appointment["id"]
        )
        return 2

    async def send_appointment_reminder(
        self,
        session: AsyncSession,
        populated: PopulatedAppointment,
    ) -> UUID | None:
        """Remind the patient of an upcoming appointment."""
        patient_user = populated.patient_user
        if not patient_user:
            return None

        appointment = populated.appointment
        doctor_last_name = (populated.doctor_user or {}).get("last_name") or ""
        message = (
            f"You have an appointment with Dr. {doctor_last_name} on "
            f"{format_date(appointment.get('date'))} at {appointment.get('start_time')}."
        )
        return await self.notify_user(
            session,
            patient_user["id"],
            "reminder",
            "Upcoming Appointment Reminder",
            message,
            appointment["id"],
        )
