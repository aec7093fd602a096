"""
Persistence for detected insights.
"""

from datetime import datetime
from typing import Protocol

from psycopg.types.json import Jsonb

from familyos.db.helpers import DatabaseError, execute_query, fetch_one
from familyos.models.domain.insight_domain import (
    DetectedInsight,
    Insight,
    InsightStatus,
    InsightType,
    Severity,
)


class InsightRepository(Protocol):
    async def find_recent_open(
        self, household_id: str, insight_type: InsightType, title: str, since: datetime
    ) -> Insight | None: ...

    async def create(self, household_id: str, detected: DetectedInsight, message: str) -> Insight: ...

    async def mark_sent(self, insight_id: str, at: datetime) -> None: ...

    async def latest_open_for_user(self, household_id: str, user_id: str) -> Insight | None: ...

    async def resolve(
        self, insight_id: str, resolution: str, resolved_by: str, at: datetime
    ) -> bool: ...


class PostgresInsightRepository:
    SELECT_COLUMNS = """
        id, household_id, type, severity, title, description, message,
        template_data, event_ids, target_user_id, status, created_at,
        sent_at, resolution, resolved_by, resolved_at
    """

    @staticmethod
    def _row_to_insight(row: dict | None) -> Insight | None:
        if not row:
            return None
        return Insight(
            id=str(row["id"]),
            household_id=str(row["household_id"]),
            type=InsightType(row["type"]),
            severity=Severity(row["severity"]),
            title=row["title"],
            description=row.get("description") or "",
            message=row.get("message") or "",
            template_data=row.get("template_data") or {},
            event_ids=list(row.get("event_ids") or []),
            target_user_id=str(row["target_user_id"]),
            status=InsightStatus(row["status"]),
            created_at=row["created_at"],
            sent_at=row.get("sent_at"),
            resolution=row.get("resolution"),
            resolved_by=row.get("resolved_by"),
            resolved_at=row.get("resolved_at"),
        )

    async def find_recent_open(
        self, household_id: str, insight_type: InsightType, title: str, since: datetime
    ) -> Insight | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM insights
            WHERE household_id = %s AND type = %s AND title = %s
              AND created_at >= %s
              AND status IN ('pending', 'sent')
            ORDER BY created_at DESC
            LIMIT 1
        """
        row = await fetch_one(query, (household_id, str(insight_type), title, since))
        return self._row_to_insight(row)

    async def create(self, household_id: str, detected: DetectedInsight, message: str) -> Insight:
        query = f"""
            INSERT INTO insights (
                household_id, type, severity, title, description, message,
                template_data, event_ids, target_user_id, status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 'pending')
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                household_id,
                str(detected.type),
                str(detected.severity),
                detected.title,
                detected.description,
                message,
                Jsonb(detected.template_data),
                detected.event_ids,
                detected.target_user_id,
            ),
        )
        if not row:
            raise DatabaseError("Failed to create insight", operation="create_insight")
        return self._row_to_insight(row)

    async def mark_sent(self, insight_id: str, at: datetime) -> None:
        await execute_query(
            "UPDATE insights SET status = 'sent', sent_at = %s WHERE id = %s AND status = 'pending'",
            (at, insight_id),
        )

    async def latest_open_for_user(self, household_id: str, user_id: str) -> Insight | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM insights
            WHERE household_id = %s AND target_user_id = %s
              AND status IN ('pending', 'sent')
            ORDER BY created_at DESC
            LIMIT 1
        """
        return self._row_to_insight(await fetch_one(query, (household_id, user_id)))

    async def resolve(
        self, insight_id: str, resolution: str, resolved_by: str, at: datetime
    ) -> bool:
        updated = await execute_query(
            """
            UPDATE insights
            SET status = 'resolved', resolution = %s, resolved_by = %s, resolved_at = %s
            WHERE id = %s AND status IN ('pending', 'sent')
            """,
            (resolution, resolved_by, at, insight_id),
        )
        return updated > 0
