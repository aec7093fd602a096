"""
Persistence for agent memory facts (agent_memory).
"""

from datetime import datetime
from typing import Any, Protocol

from psycopg.types.json import Jsonb

from familyos.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from familyos.models.domain.agent_domain import Memory, MemorySource, MemoryType


class MemoryRepository(Protocol):
    async def upsert(
        self,
        *,
        household_id: str,
        memory_type: MemoryType,
        key: str,
        value: dict[str, Any],
        confidence: float,
        source: MemorySource,
        expires_at: datetime | None,
        at: datetime,
    ) -> Memory: ...

    async def query(
        self,
        household_id: str,
        *,
        now: datetime,
        memory_type: MemoryType | None = None,
        key: str | None = None,
        min_confidence: float | None = None,
        created_since: datetime | None = None,
        include_expired: bool = False,
        limit: int | None = None,
    ) -> list[Memory]: ...

    async def delete(self, household_id: str, memory_type: MemoryType, key: str) -> bool: ...

    async def delete_all(self, household_id: str, memory_type: MemoryType | None = None) -> int: ...

    async def update_confidence(
        self, household_id: str, memory_type: MemoryType, key: str, confidence: float, at: datetime
    ) -> None: ...

    async def delete_expired(self, now: datetime) -> int: ...


class PostgresMemoryRepository:
    SELECT_COLUMNS = """
        id, household_id, type, key, value, confidence, source,
        expires_at, created_at, updated_at
    """

    @staticmethod
    def _row_to_memory(row: dict | None) -> Memory | None:
        if not row:
            return None
        return Memory(
            id=str(row["id"]),
            household_id=str(row["household_id"]),
            type=MemoryType(row["type"]),
            key=row["key"],
            value=row.get("value") or {},
            confidence=float(row["confidence"]),
            source=MemorySource(row["source"]),
            expires_at=row.get("expires_at"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def upsert(
        self,
        *,
        household_id: str,
        memory_type: MemoryType,
        key: str,
        value: dict[str, Any],
        confidence: float,
        source: MemorySource,
        expires_at: datetime | None,
        at: datetime,
    ) -> Memory:
        query = f"""
            INSERT INTO agent_memory (
                household_id, type, key, value, confidence, source,
                expires_at, created_at, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (household_id, type, key)
            DO UPDATE SET
                value = EXCLUDED.value,
                confidence = EXCLUDED.confidence,
                source = EXCLUDED.source,
                expires_at = EXCLUDED.expires_at,
                updated_at = EXCLUDED.updated_at
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                household_id,
                str(memory_type),
                key,
                Jsonb(value),
                confidence,
                str(source),
                expires_at,
                at,
                at,
            ),
        )
        if not row:
            raise DatabaseError("Failed to store memory", operation="upsert_memory")
        return self._row_to_memory(row)

    async def query(
        self,
        household_id: str,
        *,
        now: datetime,
        memory_type: MemoryType | None = None,
        key: str | None = None,
        min_confidence: float | None = None,
        created_since: datetime | None = None,
        include_expired: bool = False,
        limit: int | None = None,
    ) -> list[Memory]:
        conditions = ["household_id = %s"]
        params: list[Any] = [household_id]

        if memory_type is not None:
            conditions.append("type = %s")
            params.append(str(memory_type))
        if key is not None:
            conditions.append("key = %s")
            params.append(key)
        if min_confidence is not None:
            conditions.append("confidence >= %s")
            params.append(min_confidence)
        if created_since is not None:
            conditions.append("created_at >= %s")
            params.append(created_since)
        if not include_expired:
            conditions.append("(expires_at IS NULL OR expires_at > %s)")
            params.append(now)

        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM agent_memory
            WHERE {" AND ".join(conditions)}
            ORDER BY confidence DESC, updated_at DESC
        """
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)

        rows = await fetch_all(query, tuple(params))
        return [self._row_to_memory(row) for row in rows]

    async def delete(self, household_id: str, memory_type: MemoryType, key: str) -> bool:
        deleted = await execute_query(
            "DELETE FROM agent_memory WHERE household_id = %s AND type = %s AND key = %s",
            (household_id, str(memory_type), key),
        )
        return deleted > 0

    async def delete_all(self, household_id: str, memory_type: MemoryType | None = None) -> int:
        if memory_type is None:
            return await execute_query(
                "DELETE FROM agent_memory WHERE household_id = %s", (household_id,)
            )
        return await execute_query(
            "DELETE FROM agent_memory WHERE household_id = %s AND type = %s",
            (household_id, str(memory_type)),
        )

    async def update_confidence(
        self, household_id: str, memory_type: MemoryType, key: str, confidence: float, at: datetime
    ) -> None:
        await execute_query(
            """
            UPDATE agent_memory
            SET confidence = %s, updated_at = %s
            WHERE household_id = %s AND type = %s AND key = %s
            """,
            (confidence, at, household_id, str(memory_type), key),
        )

    async def delete_expired(self, now: datetime) -> int:
        return await execute_query(
            "DELETE FROM agent_memory WHERE expires_at IS NOT NULL AND expires_at < %s",
            (now,),
        )
