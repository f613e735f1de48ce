"""Admin endpoints: progression rules, module structure hooks, recalculation.

Every route requires the ``admin`` role.  Module saves and deletes always
go through the engine so the course's cached percentages are refreshed.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field

from progression.api.dependencies import get_engine, http_error, require_role
from progression.models.catalog import PUBLISHED, Module
from progression.models.principal import Principal
from progression.models.rule import (
    DEFAULT_RULE_PRIORITY,
    ConditionType,
    ProgressionRule,
    RuleAction,
    RuleType,
    TargetType,
)
from progression.services.engine import ProgressionEngine
from progression.services.errors import ProgressionError
from progression.services.recalculation import RecalculationSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])

AdminPrincipal = Annotated[Principal, Depends(require_role("admin"))]
Engine = Annotated[ProgressionEngine, Depends(get_engine)]


# --- Pydantic schemas ---


class RuleIn(BaseModel):
    type: RuleType
    action: RuleAction = RuleAction.LOCK
    target_type: TargetType | None = None
    target_id: UUID | None = None
    condition_type: ConditionType | None = None
    condition_id: UUID | None = None
    condition_value: str | None = None
    priority: int = DEFAULT_RULE_PRIORITY
    active: bool = True


class RulePatchIn(BaseModel):
    type: RuleType | None = None
    action: RuleAction | None = None
    target_type: TargetType | None = None
    target_id: UUID | None = None
    condition_type: ConditionType | None = None
    condition_id: UUID | None = None
    condition_value: str | None = None
    priority: int | None = None
    active: bool | None = None


class RuleOut(BaseModel):
    id: str
    course_id: str
    type: str
    action: str
    target_type: str | None
    target_id: str | None
    condition_type: str | None
    condition_id: str | None
    condition_value: str | None
    priority: int
    active: bool


class ReorderIn(BaseModel):
    rule_ids: list[UUID] = Field(min_length=1)


class ReorderOut(BaseModel):
    updated: int


class ModuleIn(BaseModel):
    course_id: UUID
    order: int = Field(ge=0)
    title: str = ""
    status: str = PUBLISHED
    is_locked: bool = False


class RecalculationOut(BaseModel):
    course_id: str
    recalculated: int
    failed: int
    queued: bool


def _rule_out(rule: ProgressionRule) -> RuleOut:
    return RuleOut(
        id=str(rule.id),
        course_id=str(rule.course_id),
        type=rule.type,
        action=rule.action.value,
        target_type=rule.target_type.value if rule.target_type else None,
        target_id=str(rule.target_id) if rule.target_id else None,
        condition_type=rule.condition_type.value if rule.condition_type else None,
        condition_id=str(rule.condition_id) if rule.condition_id else None,
        condition_value=rule.condition_value,
        priority=rule.priority,
        active=rule.active,
    )


def _summary_out(summary: RecalculationSummary) -> RecalculationOut:
    return RecalculationOut(
        course_id=str(summary.course_id),
        recalculated=summary.recalculated,
        failed=summary.failed,
        queued=summary.queued,
    )


async def _existing_rule(
    engine: ProgressionEngine, course_id: UUID, rule_id: UUID
) -> ProgressionRule:
    rule = await engine.rules.get(course_id, rule_id)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found"
        )
    return rule


# --- Rules ---


@router.get("/courses/{course_id}/rules", response_model=list[RuleOut])
async def list_rules(
    course_id: UUID, principal: AdminPrincipal, engine: Engine
) -> list[RuleOut]:
    try:
        await engine.course_by_id(course_id)
    except ProgressionError as e:
        raise http_error(e) from None
    return [_rule_out(r) for r in await engine.rules.list_for_course(course_id)]


@router.post(
    "/courses/{course_id}/rules",
    response_model=RuleOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_rule(
    course_id: UUID, payload: RuleIn, principal: AdminPrincipal, engine: Engine
) -> RuleOut:
    try:
        await engine.course_by_id(course_id)
    except ProgressionError as e:
        raise http_error(e) from None

    rule = ProgressionRule.new(course_id=course_id, **payload.model_dump())
    await engine.rules.add(rule)
    logger.info(
        "Rule %s (%s) created by user=%s",
        rule.id,
        rule.type,
        principal.user_id,
        extra={"course_id": str(course_id), "user_id": principal.user_id},
    )
    return _rule_out(rule)


@router.patch("/courses/{course_id}/rules/{rule_id}", response_model=RuleOut)
async def update_rule(
    course_id: UUID,
    rule_id: UUID,
    payload: RulePatchIn,
    principal: AdminPrincipal,
    engine: Engine,
) -> RuleOut:
    rule = await _existing_rule(engine, course_id, rule_id)
    changes = payload.model_dump(exclude_unset=True)
    # not nullable; an explicit null means "leave as is"
    for key in ("type", "action", "priority", "active"):
        if key in changes and changes[key] is None:
            del changes[key]
    if "type" in changes:
        changes["type"] = changes["type"].value

    updated = replace(rule, **changes)
    await engine.rules.update(updated)
    logger.info(
        "Rule %s updated by user=%s fields=%s",
        rule.id,
        principal.user_id,
        sorted(changes),
        extra={"course_id": str(course_id), "user_id": principal.user_id},
    )
    return _rule_out(updated)


@router.delete(
    "/courses/{course_id}/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_rule(
    course_id: UUID, rule_id: UUID, principal: AdminPrincipal, engine: Engine
) -> Response:
    if not await engine.rules.delete(course_id, rule_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Rule not found"
        )
    logger.info(
        "Rule %s deleted by user=%s",
        rule_id,
        principal.user_id,
        extra={"course_id": str(course_id), "user_id": principal.user_id},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/courses/{course_id}/rules/{rule_id}/toggle", response_model=RuleOut)
async def toggle_rule(
    course_id: UUID, rule_id: UUID, principal: AdminPrincipal, engine: Engine
) -> RuleOut:
    rule = await _existing_rule(engine, course_id, rule_id)
    updated = replace(rule, active=not rule.active)
    await engine.rules.update(updated)
    logger.info(
        "Rule %s active=%s set by user=%s",
        rule.id,
        updated.active,
        principal.user_id,
        extra={"course_id": str(course_id), "user_id": principal.user_id},
    )
    return _rule_out(updated)


@router.post("/courses/{course_id}/rules/reorder", response_model=ReorderOut)
async def reorder_rules(
    course_id: UUID, payload: ReorderIn, principal: AdminPrincipal, engine: Engine
) -> ReorderOut:
    updated = await engine.rules.set_priorities(course_id, payload.rule_ids)
    logger.info(
        "Rules reordered by user=%s updated=%d",
        principal.user_id,
        updated,
        extra={"course_id": str(course_id), "user_id": principal.user_id},
    )
    return ReorderOut(updated=updated)


# --- Structure hooks ---


@router.put("/modules/{module_id}", response_model=RecalculationOut)
async def save_module(
    module_id: UUID, payload: ModuleIn, principal: AdminPrincipal, engine: Engine
) -> RecalculationOut:
    module = Module(id=module_id, **payload.model_dump())
    try:
        summary = await engine.save_module(module, acting_user_id=principal.user_id)
    except ProgressionError as e:
        raise http_error(e) from None
    return _summary_out(summary)


@router.delete("/modules/{module_id}", response_model=RecalculationOut)
async def delete_module(
    module_id: UUID, principal: AdminPrincipal, engine: Engine
) -> RecalculationOut:
    try:
        summary = await engine.delete_module(
            module_id, acting_user_id=principal.user_id
        )
    except ProgressionError as e:
        raise http_error(e) from None
    return _summary_out(summary)


@router.post("/courses/{course_id}/recalculate", response_model=RecalculationOut)
async def recalculate_course(
    course_id: UUID, principal: AdminPrincipal, engine: Engine
) -> RecalculationOut:
    try:
        course = await engine.course_by_id(course_id)
    except ProgressionError as e:
        raise http_error(e) from None
    logger.info(
        "Manual recalculation requested by user=%s",
        principal.user_id,
        extra={"course_id": str(course_id), "user_id": principal.user_id},
    )
    return _summary_out(await engine.recalculate_course_progress(course))
