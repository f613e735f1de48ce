from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4


class RuleType(str, Enum):
    LESSON_COMPLETION = "lesson_completion"
    TEST_PASSING = "test_passing"
    MINIMUM_SCORE = "minimum_score"
    ORDER_CONSTRAINT = "order_constraint"
    TIME_REQUIREMENT = "time_requirement"
    PREREQUISITE = "prerequisite"


class RuleAction(str, Enum):
    LOCK = "lock"
    REQUIRE = "require"
    ADVISORY = "advisory"

    @property
    def blocks(self) -> bool:
        return self is not RuleAction.ADVISORY


class TargetType(str, Enum):
    LESSON = "lesson"
    MODULE = "module"
    TEST = "test"
    COURSE = "course"


class ConditionType(str, Enum):
    LESSON = "lesson"
    MODULE = "module"
    TEST = "test"
    SCORE = "score"
    TIME = "time"


# Older rule rows carry "unlock"/"optional"; neither ever locks.
_LEGACY_ACTIONS = {"unlock": RuleAction.ADVISORY, "optional": RuleAction.ADVISORY}

DEFAULT_RULE_PRIORITY = 100


def parse_action(raw: str) -> RuleAction:
    if raw in _LEGACY_ACTIONS:
        return _LEGACY_ACTIONS[raw]
    return RuleAction(raw)


@dataclass(frozen=True, slots=True)
class ProgressionRule:
    """An authored override of the default unlock policy.

    ``type`` is kept as the stored text so that rows written by a newer
    authoring tool still load; ``rule_type`` is None for anything this
    service does not recognise and the evaluator treats that as satisfied.
    """

    id: UUID
    course_id: UUID
    type: str
    action: RuleAction = RuleAction.LOCK
    target_type: TargetType | None = None
    target_id: UUID | None = None
    condition_type: ConditionType | None = None
    condition_id: UUID | None = None
    condition_value: str | None = None
    priority: int = DEFAULT_RULE_PRIORITY
    active: bool = True

    @staticmethod
    def new(
        *,
        course_id: UUID,
        type: RuleType | str,
        action: RuleAction = RuleAction.LOCK,
        target_type: TargetType | None = None,
        target_id: UUID | None = None,
        condition_type: ConditionType | None = None,
        condition_id: UUID | None = None,
        condition_value: str | None = None,
        priority: int = DEFAULT_RULE_PRIORITY,
        active: bool = True,
    ) -> ProgressionRule:
        return ProgressionRule(
            id=uuid4(),
            course_id=course_id,
            type=type.value if isinstance(type, RuleType) else type,
            action=action,
            target_type=target_type,
            target_id=target_id,
            condition_type=condition_type,
            condition_id=condition_id,
            condition_value=condition_value,
            priority=priority,
            active=active,
        )

    @property
    def rule_type(self) -> RuleType | None:
        try:
            return RuleType(self.type)
        except ValueError:
            return None

    def threshold(self, default: int | None = None) -> int | None:
        """condition_value as an integer score, or ``default`` when unusable.

        Empty, ``"0"``, non-numeric and non-finite values are all unusable,
        so a ``minimum_score`` rule without a real threshold never passes.
        """
        if not self.condition_value or self.condition_value.strip() == "0":
            return default
        try:
            value = float(self.condition_value)
        except ValueError:
            return default
        if not math.isfinite(value):
            return default
        return int(value)
