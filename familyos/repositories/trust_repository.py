"""
Persistence for per-household trust counters (action_trust).

Counters only ever change through a single INSERT ... ON CONFLICT statement
so concurrent outcome recordings for the same key never lose an update.
"""

from datetime import datetime
from typing import Protocol

from familyos.db.helpers import execute_query, fetch_all, fetch_one
from familyos.models.domain.agent_domain import Outcome, TrustRecord

_COUNTER_COLUMNS = {
    Outcome.SUCCESS: "success_count",
    Outcome.FAILURE: "failure_count",
    Outcome.REJECTED: "reject_count",
}


class TrustRepository(Protocol):
    async def get(self, household_id: str, action_type: str) -> TrustRecord | None: ...

    async def list_for_household(self, household_id: str) -> list[TrustRecord]: ...

    async def increment(
        self, household_id: str, action_type: str, outcome: Outcome, at: datetime
    ) -> None: ...

    async def set_auto_approve(self, household_id: str, action_type: str, enabled: bool) -> None: ...

    async def delete(self, household_id: str, action_type: str) -> bool: ...


class PostgresTrustRepository:
    SELECT_COLUMNS = """
        household_id, action_type, success_count, failure_count, reject_count,
        auto_approve, last_used_at
    """

    @staticmethod
    def _row_to_record(row: dict | None) -> TrustRecord | None:
        if not row:
            return None
        return TrustRecord(
            household_id=str(row["household_id"]),
            action_type=row["action_type"],
            success_count=row["success_count"],
            failure_count=row["failure_count"],
            reject_count=row["reject_count"],
            auto_approve=row["auto_approve"],
            last_used_at=row.get("last_used_at"),
        )

    async def get(self, household_id: str, action_type: str) -> TrustRecord | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM action_trust
            WHERE household_id = %s AND action_type = %s
        """
        return self._row_to_record(await fetch_one(query, (household_id, action_type)))

    async def list_for_household(self, household_id: str) -> list[TrustRecord]:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM action_trust
            WHERE household_id = %s
            ORDER BY action_type
        """
        rows = await fetch_all(query, (household_id,))
        return [self._row_to_record(row) for row in rows]

    async def increment(
        self, household_id: str, action_type: str, outcome: Outcome, at: datetime
    ) -> None:
        column = _COUNTER_COLUMNS[Outcome(outcome)]
        # column comes from a closed mapping, never from input
        query = f"""
            INSERT INTO action_trust (household_id, action_type, {column}, last_used_at)
            VALUES (%s, %s, 1, %s)
            ON CONFLICT (household_id, action_type)
            DO UPDATE SET
                {column} = action_trust.{column} + 1,
                last_used_at = EXCLUDED.last_used_at
        """
        await execute_query(query, (household_id, action_type, at))

    async def set_auto_approve(self, household_id: str, action_type: str, enabled: bool) -> None:
        query = """
            INSERT INTO action_trust (household_id, action_type, auto_approve)
            VALUES (%s, %s, %s)
            ON CONFLICT (household_id, action_type)
            DO UPDATE SET auto_approve = EXCLUDED.auto_approve
        """
        await execute_query(query, (household_id, action_type, enabled))

    async def delete(self, household_id: str, action_type: str) -> bool:
        deleted = await execute_query(
            "DELETE FROM action_trust WHERE household_id = %s AND action_type = %s",
            (household_id, action_type),
        )
        return deleted > 0
