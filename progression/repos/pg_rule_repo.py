"""PostgreSQL implementation of RuleRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from progression.db.tables import ProgressionRuleRow
from progression.models.rule import (
    ConditionType,
    ProgressionRule,
    TargetType,
    parse_action,
)


class PgRuleRepo:
    """Satisfies the RuleRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_target(
        self,
        course_id: UUID,
        target_type: TargetType,
        target_id: UUID,
        *,
        active_only: bool = True,
    ) -> list[ProgressionRule]:
        stmt = select(ProgressionRuleRow).where(
            ProgressionRuleRow.course_id == course_id,
            ProgressionRuleRow.target_type == target_type.value,
            ProgressionRuleRow.target_id == target_id,
        )
        if active_only:
            stmt = stmt.where(ProgressionRuleRow.active.is_(True))
        stmt = stmt.order_by(ProgressionRuleRow.priority, ProgressionRuleRow.created_at)
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_rule(r) for r in rows]

    async def list_for_course(self, course_id: UUID) -> list[ProgressionRule]:
        stmt = (
            select(ProgressionRuleRow)
            .where(ProgressionRuleRow.course_id == course_id)
            .order_by(ProgressionRuleRow.priority, ProgressionRuleRow.created_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_rule(r) for r in rows]

    async def get(self, course_id: UUID, rule_id: UUID) -> ProgressionRule | None:
        stmt = select(ProgressionRuleRow).where(
            ProgressionRuleRow.id == rule_id,
            ProgressionRuleRow.course_id == course_id,
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        return None if row is None else _row_to_rule(row)

    async def add(self, rule: ProgressionRule) -> None:
        self._session.add(ProgressionRuleRow(id=rule.id, **_rule_values(rule)))
        await self._session.flush()

    async def update(self, rule: ProgressionRule) -> None:
        stmt = (
            update(ProgressionRuleRow)
            .where(ProgressionRuleRow.id == rule.id)
            .values(**_rule_values(rule))
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise KeyError("rule not found")

    async def delete(self, course_id: UUID, rule_id: UUID) -> bool:
        stmt = delete(ProgressionRuleRow).where(
            ProgressionRuleRow.id == rule_id,
            ProgressionRuleRow.course_id == course_id,
        )
        result = await self._session.execute(stmt)
        return result.rowcount > 0

    async def set_priorities(self, course_id: UUID, rule_ids: list[UUID]) -> int:
        updated = 0
        for index, rule_id in enumerate(rule_ids):
            result = await self._session.execute(
                update(ProgressionRuleRow)
                .where(
                    ProgressionRuleRow.id == rule_id,
                    ProgressionRuleRow.course_id == course_id,
                )
                .values(priority=index)
            )
            updated += result.rowcount
        return updated


def _rule_values(rule: ProgressionRule) -> dict:
    return {
        "course_id": rule.course_id,
        "type": rule.type,
        "target_type": rule.target_type.value if rule.target_type else None,
        "target_id": rule.target_id,
        "condition_type": rule.condition_type.value if rule.condition_type else None,
        "condition_id": rule.condition_id,
        "condition_value": rule.condition_value,
        "action": rule.action.value,
        "priority": rule.priority,
        "active": rule.active,
    }


def _row_to_rule(row: ProgressionRuleRow) -> ProgressionRule:
    return ProgressionRule(
        id=row.id,
        course_id=row.course_id,
        type=row.type,
        action=parse_action(row.action),
        target_type=TargetType(row.target_type) if row.target_type else None,
        target_id=row.target_id,
        condition_type=ConditionType(row.condition_type) if row.condition_type else None,
        condition_id=row.condition_id,
        condition_value=row.condition_value,
        priority=row.priority,
        active=row.active,
    )
