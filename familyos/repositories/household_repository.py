"""
Read-mostly access to households, their members and connected calendars.

These tables are owned by the onboarding side of the product; this service
only reads them (plus the last_synced_at stamp on connected calendars).
"""

from datetime import datetime
from typing import Protocol

from familyos.db.helpers import execute_query, fetch_all, fetch_one, fetch_val
from familyos.models.domain.calendar_domain import CalendarRef
from familyos.models.domain.insight_domain import Child, HouseholdContext, ParentIdentity


class HouseholdRepository(Protocol):
    async def get_calendar(self, calendar_ref: str) -> CalendarRef | None: ...

    async def list_included_calendars(self, household_id: str) -> list[CalendarRef]: ...

    async def list_calendars_without_active_channel(self) -> list[CalendarRef]: ...

    async def mark_calendar_synced(self, calendar_ref: str, at: datetime) -> None: ...

    async def get_household_context(self, household_id: str) -> HouseholdContext | None: ...

    async def list_households_with_calendars(self) -> list[str]: ...

    async def get_verified_phone(self, user_id: str) -> str | None: ...


class PostgresHouseholdRepository:
    CALENDAR_SELECT = """
        SELECT cc.id, cc.google_calendar_id, fm.user_id, fm.id AS family_member_id,
               fm.household_id, fm.display_name
        FROM connected_calendars cc
        JOIN family_members fm ON fm.id = cc.family_member_id
    """

    @staticmethod
    def _row_to_calendar(row: dict | None) -> CalendarRef | None:
        if not row:
            return None
        return CalendarRef(
            id=str(row["id"]),
            google_calendar_id=row["google_calendar_id"],
            user_id=str(row["user_id"]),
            family_member_id=str(row["family_member_id"]),
            household_id=str(row["household_id"]),
            owner_name=row.get("display_name") or "",
        )

    async def get_calendar(self, calendar_ref: str) -> CalendarRef | None:
        row = await fetch_one(f"{self.CALENDAR_SELECT} WHERE cc.id = %s", (calendar_ref,))
        return self._row_to_calendar(row)

    async def list_included_calendars(self, household_id: str) -> list[CalendarRef]:
        rows = await fetch_all(
            f"{self.CALENDAR_SELECT} WHERE fm.household_id = %s AND cc.included = TRUE",
            (household_id,),
        )
        return [self._row_to_calendar(row) for row in rows]

    async def list_calendars_without_active_channel(self) -> list[CalendarRef]:
        query = f"""
            {self.CALENDAR_SELECT}
            WHERE cc.included = TRUE
              AND NOT EXISTS (
                  SELECT 1 FROM calendar_webhook_channels ch
                  WHERE ch.connected_calendar_id = cc.id AND ch.status = 'active'
              )
        """
        rows = await fetch_all(query)
        return [self._row_to_calendar(row) for row in rows]

    async def mark_calendar_synced(self, calendar_ref: str, at: datetime) -> None:
        await execute_query(
            "UPDATE connected_calendars SET last_synced_at = %s WHERE id = %s",
            (at, calendar_ref),
        )

    async def get_household_context(self, household_id: str) -> HouseholdContext | None:
        household = await fetch_one(
            "SELECT id, timezone FROM households WHERE id = %s", (household_id,)
        )
        if not household:
            return None

        members = await fetch_all(
            """
            SELECT id, user_id, display_name, role
            FROM family_members
            WHERE household_id = %s AND role IN ('parent_a', 'parent_b')
            """,
            (household_id,),
        )
        parents = {
            row["role"]: ParentIdentity(
                id=str(row["id"]),
                name=row.get("display_name") or "Parent",
                user_id=str(row["user_id"]),
            )
            for row in members
        }
        if "parent_a" not in parents:
            return None

        children = await fetch_all(
            "SELECT id, name FROM children WHERE household_id = %s ORDER BY name",
            (household_id,),
        )

        return HouseholdContext(
            household_id=str(household["id"]),
            parent_a=parents["parent_a"],
            parent_b=parents.get("parent_b"),
            children=tuple(Child(id=str(c["id"]), name=c["name"]) for c in children),
            timezone=household.get("timezone") or "UTC",
        )

    async def list_households_with_calendars(self) -> list[str]:
        rows = await fetch_all(
            """
            SELECT DISTINCT fm.household_id
            FROM connected_calendars cc
            JOIN family_members fm ON fm.id = cc.family_member_id
            WHERE cc.included = TRUE
            """
        )
        return [str(row["household_id"]) for row in rows]

    async def get_verified_phone(self, user_id: str) -> str | None:
        return await fetch_val(
            "SELECT phone_number FROM users WHERE id = %s AND phone_verified = TRUE",
            (user_id,),
        )
