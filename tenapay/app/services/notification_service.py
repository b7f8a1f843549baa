"""
Notification Service.

Handles creation, read-state and deletion of notifications, plus the
best-effort dispatcher that runs after a ledger commit.
"""

import html
import logging
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select, update, delete, desc
from datetime import datetime, timezone
from typing import Optional, List

from tenapay.app.models.notification import Notification, NotificationType
from tenapay.app.models.user import User
from tenapay.app.services.connections import ConnectionDirectory, connection_directory
from tenapay.app.services.mailer import Mailer

logger = logging.getLogger(__name__)


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50
    ) -> List[Notification]:
        query = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            query = query.where(Notification.is_read == False)  # noqa: E712
        query = query.order_by(desc(Notification.created_at), desc(Notification.id)).limit(limit)
        result = await db.execute(query)
        return result.scalars().all()

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: str) -> bool:
        """Mark a notification as read."""
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).values(
            is_read=True,
            read_at=datetime.now(timezone.utc)
        )
        result = await db.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: str) -> int:
        """Mark all notifications for user as read."""
        stmt = update(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False  # noqa: E712
        ).values(
            is_read=True,
            read_at=datetime.now(timezone.utc)
        )
        result = await db.execute(stmt)
        return result.rowcount

    @staticmethod
    async def delete_notification(db: AsyncSession, notification_id: int, user_id: str) -> bool:
        """Delete a notification owned by the user."""
        stmt = delete(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        )
        result = await db.execute(stmt)
        return result.rowcount > 0


class NotificationDispatcher:
    """
    Emits user-facing side effects after a balance mutation commits.

    1. Persists a Notification row (own session, own commit)
    2. Pushes it to any live socket of the user
    3. Emails the user, independently of steps 1 and 2

    Every failure is logged and swallowed: nothing here may affect the ledger.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        connections: Optional[ConnectionDirectory] = None,
        mailer: Optional[Mailer] = None
    ):
        self.session_factory = session_factory
        self.connections = connections if connections is not None else connection_directory
        self.mailer = mailer

    async def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        email: Optional[str] = None
    ) -> Optional[Notification]:
        """
        Fan out one notification. 'email' overrides the account address.
        """
        notification = None
        account_email = None

        try:
            async with self.session_factory() as session:
                notification = await NotificationService.create_notification(
                    session, user_id, title, message, type
                )
                account_email = (await session.execute(
                    select(User.email).where(User.id == user_id)
                )).scalar_one_or_none()
                await session.commit()
        except Exception:
            logger.exception("Failed to persist %s notification for user %s", type.value, user_id)
            notification = None

        if notification is not None:
            try:
                await self.connections.send_to_user(
                    user_id, {"event": "notification", "data": notification.to_payload()}
                )
            except Exception:
                logger.exception("Real-time push failed for user %s", user_id)

        email = email or account_email
        if email and self.mailer is not None:
            try:
                await self.mailer.send(
                    email,
                    f"TenaPay: {title}",
                    f"<h3>{html.escape(title)}</h3><p>{html.escape(message)}</p>"
                )
            except Exception:
                logger.exception("Email notification failed for user %s", user_id)

        logger.info("Notification %s sent to user %s: %s", type.value, user_id, title)
        return notification
