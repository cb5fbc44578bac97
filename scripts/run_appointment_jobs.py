#!/usr/bin/env python3
"""
Run the periodic appointment jobs.

Usage:
    python scripts/run_appointment_jobs.py            # reminders and no-shows
    python scripts/run_appointment_jobs.py reminders
    python scripts/run_appointment_jobs.py no-shows

Meant to be invoked from cron or a scheduler every few minutes.
"""

import argparse
import asyncio
import sys

import structlog

from app.config import settings
from app.core.firebase import initialize_firebase
from app.core.redis_client import close_redis_connection
from app.database import AsyncSessionLocal, engine
from app.dependencies import get_cache_manager
from app.middleware.logging import configure_logging
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditLogService
from app.services.calendar_service import GoogleCalendarGateway
from app.services.notification_service import NotificationService
from app.services.time_slot_service import TimeSlotService

JOBS = ("reminders", "no-shows")


def build_service() -> AppointmentService:
    """Compose the appointment service outside a request."""
    return AppointmentService(
        session_factory=AsyncSessionLocal,
        slot_service=TimeSlotService(),
        audit_service=AuditLogService(),
        notification_service=NotificationService(),
        calendar_gateway=GoogleCalendarGateway(),
        cache_manager=get_cache_manager(),
    )


async def run(jobs: list[str]) -> dict[str, int]:
    """Run the selected jobs and return how many appointments each touched."""
    logger = structlog.get_logger("appointment_jobs")
    service = build_service()
    results: dict[str, int] = {}

    try:
        if "reminders" in jobs:
            results["reminders"] = await service.schedule_appointment_reminders()
        if "no-shows" in jobs:
            results["no-shows"] = await service.handle_no_show_appointments()
    finally:
        await engine.dispose()
        close_redis_connection()

    logger.info("appointment_jobs_finished", **results)
    return results


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Run periodic appointment jobs")
    parser.add_argument(
        "jobs",
        nargs="*",
        help=f"Jobs to run, any of {', '.join(JOBS)} (default: all)",
    )
    args = parser.parse_args()
    unknown = set(args.jobs) - set(JOBS)
    if unknown:
        parser.error(f"unknown jobs: {', '.join(sorted(unknown))}")
    jobs = args.jobs or list(JOBS)

    configure_logging()
    try:
        initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
    except Exception as e:
        print(f"Warning: Firebase not initialized, push delivery will fail: {e}", file=sys.stderr)

    results = asyncio.run(run(jobs))
    for job, count in results.items():
        print(f"✓ {job}: {count}")


if __name__ == "__main__":
    main()
