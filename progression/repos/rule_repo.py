from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from progression.models.rule import ProgressionRule, TargetType


class RuleRepo(Protocol):
    """Progression rules per course, always returned in priority order
    (lower first, insertion order breaking ties)."""

    async def list_for_target(
        self,
        course_id: UUID,
        target_type: TargetType,
        target_id: UUID,
        *,
        active_only: bool = True,
    ) -> list[ProgressionRule]: ...
    async def list_for_course(self, course_id: UUID) -> list[ProgressionRule]: ...
    async def get(self, course_id: UUID, rule_id: UUID) -> ProgressionRule | None: ...
    async def add(self, rule: ProgressionRule) -> None: ...
    async def update(self, rule: ProgressionRule) -> None: ...
    async def delete(self, course_id: UUID, rule_id: UUID) -> bool: ...
    async def set_priorities(self, course_id: UUID, rule_ids: list[UUID]) -> int: ...


class InMemoryRuleRepo:
    def __init__(self) -> None:
        # dict keeps insertion order, which is the tie-break after priority
        self._store: dict[UUID, ProgressionRule] = {}

    def clear(self) -> None:
        self._store.clear()

    def _ordered(self, course_id: UUID) -> list[ProgressionRule]:
        rules = [r for r in self._store.values() if r.course_id == course_id]
        return sorted(rules, key=lambda r: r.priority)

    async def list_for_target(
        self,
        course_id: UUID,
        target_type: TargetType,
        target_id: UUID,
        *,
        active_only: bool = True,
    ) -> list[ProgressionRule]:
        return [
            r
            for r in self._ordered(course_id)
            if r.target_type == target_type
            and r.target_id == target_id
            and (r.active or not active_only)
        ]

    async def list_for_course(self, course_id: UUID) -> list[ProgressionRule]:
        return self._ordered(course_id)

    async def get(self, course_id: UUID, rule_id: UUID) -> ProgressionRule | None:
        rule = self._store.get(rule_id)
        if rule is None or rule.course_id != course_id:
            return None
        return rule

    async def add(self, rule: ProgressionRule) -> None:
        if rule.id in self._store:
            raise ValueError("rule already exists")
        self._store[rule.id] = rule

    async def update(self, rule: ProgressionRule) -> None:
        if rule.id not in self._store:
            raise KeyError("rule not found")
        self._store[rule.id] = rule

    async def delete(self, course_id: UUID, rule_id: UUID) -> bool:
        rule = self._store.get(rule_id)
        if rule is None or rule.course_id != course_id:
            return False
        del self._store[rule_id]
        return True

    async def set_priorities(self, course_id: UUID, rule_ids: list[UUID]) -> int:
        updated = 0
        for index, rule_id in enumerate(rule_ids):
            rule = self._store.get(rule_id)
            if rule is None or rule.course_id != course_id:
                continue
            self._store[rule_id] = replace(rule, priority=index)
            updated += 1
        return updated
