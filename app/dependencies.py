"""FastAPI dependencies and service composition."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import decode_access_token
from app.database import get_db, get_session_factory
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditLogService
from app.services.calendar_service import GoogleCalendarGateway
from app.services.notification_service import NotificationService
from app.services.time_slot_service import TimeSlotService
from app.services.user_service import UserService

# Security
security = HTTPBearer()


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)
    user_id_str = payload.get("sub") if payload else None

    if not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict:
    """
    Get current user, with their patient/doctor profile ids, from the database.

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await UserService.get_user_by_id(db, user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user["is_active"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return user


async def require_admin(current_user: Annotated[dict, Depends(get_current_user)]) -> dict:
    """
    Ensure current user has the admin role.

    Raises:
        HTTPException: If user is not admin
    """
    if current_user.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return current_user


def get_cache_manager() -> CacheManager:
    """Get the Redis cache manager."""
    return CacheManager(get_redis_client())


def get_calendar_gateway() -> GoogleCalendarGateway:
    """Get the calendar gateway."""
    return GoogleCalendarGateway()


def get_notification_service() -> NotificationService:
    """Get the notification service."""
    return NotificationService()


def get_appointment_service(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    cache_manager: Annotated[CacheManager, Depends(get_cache_manager)],
    calendar_gateway: Annotated[GoogleCalendarGateway, Depends(get_calendar_gateway)],
    notification_service: Annotated[NotificationService, Depends(get_notification_service)],
) -> AppointmentService:
    """Compose the appointment service from its collaborators."""
    return AppointmentService(
        session_factory=session_factory,
        slot_service=TimeSlotService(),
        audit_service=AuditLogService(),
        notification_service=notification_service,
        calendar_gateway=calendar_gateway,
        cache_manager=cache_manager,
    )


# Type aliases for dependency injection
CurrentUser = Annotated[dict, Depends(get_current_user)]
AdminUser = Annotated[dict, Depends(require_admin)]
AppointmentServiceDep = Annotated[AppointmentService, Depends(get_appointment_service)]
