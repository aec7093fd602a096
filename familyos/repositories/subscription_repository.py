"""
Persistence for provider push channels (calendar_webhook_channels).

Rows are replaced, never mutated in place, on renewal: a new active row is
inserted and the old one is marked expired.
"""

from datetime import datetime
from typing import Protocol

from familyos.db.helpers import execute_query, fetch_all, fetch_one, with_db_retry
from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.calendar_domain import (
    ChannelRegistration,
    ChannelSubscription,
    SubscriptionStatus,
)

logger = get_logger(__name__)


class SubscriptionRepository(Protocol):
    async def get_active_for_calendar(self, calendar_ref: str) -> ChannelSubscription | None: ...

    async def list_active_for_calendar(self, calendar_ref: str) -> list[ChannelSubscription]: ...

    async def get_by_channel_id(self, channel_id: str) -> ChannelSubscription | None: ...

    async def create(
        self,
        calendar_ref: str,
        registration: ChannelRegistration,
        sync_token: str | None,
    ) -> ChannelSubscription: ...

    async def mark_expired(self, subscription_id: str) -> None: ...

    async def list_active_expiring_before(self, cutoff: datetime) -> list[ChannelSubscription]: ...

    async def update_sync_token(self, subscription_id: str, sync_token: str | None) -> None: ...

    async def touch_notification(self, subscription_id: str, at: datetime) -> None: ...


class PostgresSubscriptionRepository:
    """SQL for calendar_webhook_channels."""

    SELECT_COLUMNS = """
        id, connected_calendar_id, channel_id, resource_id, sync_token,
        expiration, status, created_at, last_notification_at
    """

    @staticmethod
    def _row_to_subscription(row: dict | None) -> ChannelSubscription | None:
        if not row:
            return None

        return ChannelSubscription(
            id=str(row["id"]),
            calendar_ref=str(row["connected_calendar_id"]),
            channel_id=row["channel_id"],
            resource_id=row["resource_id"],
            sync_token=row.get("sync_token"),
            expiration=row["expiration"],
            status=SubscriptionStatus(row["status"]),
            created_at=row["created_at"],
            last_notification_at=row.get("last_notification_at"),
        )

    @with_db_retry(max_retries=2)
    async def get_active_for_calendar(self, calendar_ref: str) -> ChannelSubscription | None:
        # Most recent active row wins while a renewal is mid-flight
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM calendar_webhook_channels
            WHERE connected_calendar_id = %s AND status = 'active'
            ORDER BY created_at DESC
            LIMIT 1
        """
        return self._row_to_subscription(await fetch_one(query, (calendar_ref,)))

    async def list_active_for_calendar(self, calendar_ref: str) -> list[ChannelSubscription]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM calendar_webhook_channels
            WHERE connected_calendar_id = %s AND status = 'active'
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (calendar_ref,))
        return [self._row_to_subscription(row) for row in rows]

    @with_db_retry(max_retries=2)
    async def get_by_channel_id(self, channel_id: str) -> ChannelSubscription | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM calendar_webhook_channels
            WHERE channel_id = %s
        """
        return self._row_to_subscription(await fetch_one(query, (channel_id,)))

    async def create(
        self,
        calendar_ref: str,
        registration: ChannelRegistration,
        sync_token: str | None,
    ) -> ChannelSubscription:
        query = f"""
            INSERT INTO calendar_webhook_channels (
                connected_calendar_id, channel_id, resource_id, sync_token,
                expiration, status
            )
            VALUES (%s, %s, %s, %s, %s, 'active')
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                calendar_ref,
                registration.channel_id,
                registration.resource_id,
                sync_token,
                registration.expiration,
            ),
        )
        logger.info(
            "Webhook channel row created",
            calendar_ref=calendar_ref,
            channel_id=registration.channel_id,
            has_sync_token=sync_token is not None,
        )
        return self._row_to_subscription(row)

    async def mark_expired(self, subscription_id: str) -> None:
        query = """
            UPDATE calendar_webhook_channels
            SET status = 'expired'
            WHERE id = %s AND status = 'active'
        """
        await execute_query(query, (subscription_id,))

    async def list_active_expiring_before(self, cutoff: datetime) -> list[ChannelSubscription]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM calendar_webhook_channels
            WHERE status = 'active' AND expiration <= %s
            ORDER BY expiration ASC
        """
        rows = await fetch_all(query, (cutoff,))
        return [self._row_to_subscription(row) for row in rows]

    @with_db_retry(max_retries=2)
    async def update_sync_token(self, subscription_id: str, sync_token: str | None) -> None:
        query = """
            UPDATE calendar_webhook_channels
            SET sync_token = %s
            WHERE id = %s
        """
        await execute_query(query, (sync_token, subscription_id))

    async def touch_notification(self, subscription_id: str, at: datetime) -> None:
        query = """
            UPDATE calendar_webhook_channels
            SET last_notification_at = %s
            WHERE id = %s
        """
        await execute_query(query, (at, subscription_id))
