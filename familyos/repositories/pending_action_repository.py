"""
Persistence for pending automation actions.

State transitions are conditional updates (`WHERE status = <from>`) so two
racing approvals or an approval racing the expiry sweep cannot both win.
"""

from datetime import datetime
from typing import Any, Protocol

from psycopg.types.json import Jsonb

from familyos.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from familyos.models.domain.action_payloads import (
    ActionPayload,
    payload_from_json,
    payload_to_json,
)
from familyos.models.domain.agent_domain import (
    TERMINAL_ACTION_STATUSES,
    ActionStatus,
    PendingAction,
    RiskLevel,
)


class PendingActionRepository(Protocol):
    async def create(
        self,
        *,
        household_id: str,
        user_id: str,
        payload: ActionPayload,
        risk_level: RiskLevel,
        reason: str | None,
        expires_at: datetime,
    ) -> PendingAction: ...

    async def get(self, action_id: str) -> PendingAction | None: ...

    async def transition(
        self,
        action_id: str,
        from_status: ActionStatus,
        to_status: ActionStatus,
        *,
        at: datetime,
        reason: str | None = None,
        outcome: dict[str, Any] | None = None,
    ) -> PendingAction | None: ...

    async def expire_stale(self, now: datetime) -> int: ...

    async def delete_terminal_before(self, cutoff: datetime) -> int: ...

    async def list_for_household(
        self,
        household_id: str,
        *,
        status: ActionStatus | None = None,
        include_expired: bool = False,
        now: datetime,
    ) -> list[PendingAction]: ...

    async def list_pending_for_user(self, user_id: str, now: datetime) -> list[PendingAction]: ...

    async def history(
        self,
        household_id: str,
        *,
        since: datetime,
        action_type: str | None = None,
        limit: int = 100,
    ) -> list[PendingAction]: ...


class PostgresPendingActionRepository:
    SELECT_COLUMNS = """
        id, household_id, user_id, action_type, payload, status, risk_level,
        reason, expires_at, created_at, updated_at, executed_at, outcome
    """

    @staticmethod
    def _row_to_action(row: dict | None) -> PendingAction | None:
        if not row:
            return None
        return PendingAction(
            id=str(row["id"]),
            household_id=str(row["household_id"]),
            user_id=str(row["user_id"]),
            action_type=row["action_type"],
            payload=payload_from_json(row["action_type"], row.get("payload")),
            status=ActionStatus(row["status"]),
            risk_level=RiskLevel(row["risk_level"]),
            reason=row.get("reason"),
            expires_at=row["expires_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            executed_at=row.get("executed_at"),
            outcome=row.get("outcome"),
        )

    async def create(
        self,
        *,
        household_id: str,
        user_id: str,
        payload: ActionPayload,
        risk_level: RiskLevel,
        reason: str | None,
        expires_at: datetime,
    ) -> PendingAction:
        query = f"""
            INSERT INTO pending_actions (
                household_id, user_id, action_type, payload, status,
                risk_level, reason, expires_at
            )
            VALUES (%s, %s, %s, %s, 'pending', %s, %s, %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                household_id,
                user_id,
                payload.action_type,
                Jsonb(payload_to_json(payload)),
                str(risk_level),
                reason,
                expires_at,
            ),
        )
        if not row:
            raise DatabaseError("Failed to create pending action", operation="create_pending_action")
        return self._row_to_action(row)

    async def get(self, action_id: str) -> PendingAction | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM pending_actions WHERE id = %s"
        return self._row_to_action(await fetch_one(query, (action_id,)))

    async def transition(
        self,
        action_id: str,
        from_status: ActionStatus,
        to_status: ActionStatus,
        *,
        at: datetime,
        reason: str | None = None,
        outcome: dict[str, Any] | None = None,
    ) -> PendingAction | None:
        executed_at = at if to_status in (ActionStatus.EXECUTED, ActionStatus.FAILED) else None
        query = f"""
            UPDATE pending_actions
            SET status = %s,
                updated_at = %s,
                reason = COALESCE(%s, reason),
                outcome = COALESCE(%s, outcome),
                executed_at = COALESCE(%s, executed_at)
            WHERE id = %s AND status = %s
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                str(to_status),
                at,
                reason,
                Jsonb(outcome) if outcome is not None else None,
                executed_at,
                action_id,
                str(from_status),
            ),
        )
        return self._row_to_action(row)

    async def expire_stale(self, now: datetime) -> int:
        return await execute_query(
            """
            UPDATE pending_actions
            SET status = 'expired', updated_at = %s
            WHERE status = 'pending' AND expires_at < %s
            """,
            (now, now),
        )

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        return await execute_query(
            """
            DELETE FROM pending_actions
            WHERE status = ANY(%s) AND updated_at < %s
            """,
            ([str(s) for s in TERMINAL_ACTION_STATUSES], cutoff),
        )

    async def list_for_household(
        self,
        household_id: str,
        *,
        status: ActionStatus | None = None,
        include_expired: bool = False,
        now: datetime,
    ) -> list[PendingAction]:
        conditions = ["household_id = %s"]
        params: list[Any] = [household_id]

        if status is not None:
            conditions.append("status = %s")
            params.append(str(status))
        if not include_expired:
            conditions.append("(status <> 'pending' OR expires_at > %s)")
            params.append(now)

        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM pending_actions
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, tuple(params))
        return [self._row_to_action(row) for row in rows]

    async def list_pending_for_user(self, user_id: str, now: datetime) -> list[PendingAction]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM pending_actions
            WHERE user_id = %s AND status = 'pending' AND expires_at > %s
            ORDER BY created_at DESC
        """
        rows = await fetch_all(query, (user_id, now))
        return [self._row_to_action(row) for row in rows]

    async def history(
        self,
        household_id: str,
        *,
        since: datetime,
        action_type: str | None = None,
        limit: int = 100,
    ) -> list[PendingAction]:
        conditions = ["household_id = %s", "created_at >= %s"]
        params: list[Any] = [household_id, since]
        if action_type:
            conditions.append("action_type = %s")
            params.append(action_type)
        params.append(limit)

        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM pending_actions
            WHERE {" AND ".join(conditions)}
            ORDER BY created_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, tuple(params))
        return [self._row_to_action(row) for row in rows]
