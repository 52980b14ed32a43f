from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from batu.api.deps import optimization_service
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.domain.optimization import DEFAULT_COOLDOWN_MINUTES, OptimizationRule, RuleType
from batu.services.optimization import OptimizationService

router = APIRouter(
    prefix="/v1/optimization-rules",
    tags=["optimization"],
    dependencies=[Depends(require_roles(ROLE_ADVERTISER))],
)


class CreateRuleRequest(BaseModel):
    campaign_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)
    rule_type: RuleType
    conditions: list[dict[str, Any]] = Field(min_length=1)
    actions: list[dict[str, Any]] = Field(min_length=1)
    cooldown_minutes: int = Field(default=DEFAULT_COOLDOWN_MINUTES, ge=0)


class PresetRequest(BaseModel):
    campaign_id: uuid.UUID


class ToggleRequest(BaseModel):
    enabled: bool


def rule_to_dict(rule: OptimizationRule) -> dict[str, Any]:
    return {
        "id": str(rule.id),
        "campaign_id": str(rule.campaign_id),
        "name": rule.name,
        "rule_type": rule.rule_type.value,
        "conditions": [c.to_dict() for c in rule.conditions],
        "actions": [a.to_dict() for a in rule.actions],
        "is_enabled": rule.is_enabled,
        "cooldown_minutes": rule.cooldown_minutes,
        "last_triggered_at": rule.last_triggered_at.isoformat() if rule.last_triggered_at else None,
        "trigger_count": rule.trigger_count,
    }


@router.get("")
async def list_rules(
    campaign_id: uuid.UUID | None = None,
    principal: Principal = Depends(get_principal),
    svc: OptimizationService = Depends(optimization_service),
) -> dict[str, Any]:
    rules = await svc.list_rules(user_id=principal.user_id, campaign_id=campaign_id)
    return {"rules": [rule_to_dict(r) for r in rules]}


@router.post("", status_code=201)
async def create_rule(
    body: CreateRuleRequest,
    principal: Principal = Depends(get_principal),
    svc: OptimizationService = Depends(optimization_service),
) -> dict[str, Any]:
    rule = await svc.create_rule(
        user_id=principal.user_id,
        campaign_id=body.campaign_id,
        name=body.name,
        rule_type=body.rule_type,
        conditions=body.conditions,
        actions=body.actions,
        cooldown_minutes=body.cooldown_minutes,
    )
    return {"rule": rule_to_dict(rule)}


@router.post("/presets", status_code=201)
async def apply_presets(
    body: PresetRequest,
    principal: Principal = Depends(get_principal),
    svc: OptimizationService = Depends(optimization_service),
) -> dict[str, Any]:
    rules = await svc.apply_presets(user_id=principal.user_id, campaign_id=body.campaign_id)
    return {"rules": [rule_to_dict(r) for r in rules]}


@router.patch("/{rule_id}")
async def toggle_rule(
    rule_id: uuid.UUID,
    body: ToggleRequest,
    principal: Principal = Depends(get_principal),
    svc: OptimizationService = Depends(optimization_service),
) -> dict[str, Any]:
    rule = await svc.set_enabled(user_id=principal.user_id, rule_id=rule_id, enabled=body.enabled)
    return {"rule": rule_to_dict(rule)}


@router.delete("/{rule_id}")
async def delete_rule(
    rule_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: OptimizationService = Depends(optimization_service),
) -> dict[str, Any]:
    await svc.delete_rule(user_id=principal.user_id, rule_id=rule_id)
    return {"success": True}
