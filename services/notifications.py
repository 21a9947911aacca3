"""Notification dispatch for transfer events."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from database.repositories import LedgerRepository
from database.schemas import Notification, NotificationStatus

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Fire-and-forget message delivery keyed by account id."""

    @abstractmethod
    async def send(
        self,
        account_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification: ...


class StoreNotificationDispatcher(NotificationDispatcher):
    """Persists notifications to the notifications collection as sent."""

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    async def send(
        self,
        account_id: str,
        notification_type: str,
        title: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Notification:
        notification = Notification(
            account_id=account_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data or {},
            status=NotificationStatus.SENT,
        )
        self.repository.save_notification(notification)
        logger.info(f"Notification {notification.notification_id} ({notification_type}) sent to {account_id}")
        return notification
