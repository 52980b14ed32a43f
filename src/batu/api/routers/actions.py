"""
batu.api.routers.actions

Confirmation endpoints for actions proposed by the agent.

Responsibilities:
- List the caller's pending actions.
- Confirm, modify or cancel one action (delegates to `ActionConfirmationService`).
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from batu.api.deps import action_service
from batu.auth.deps import get_principal, require_roles
from batu.auth.models import ROLE_ADVERTISER, Principal
from batu.services.action_confirmation import ActionConfirmationService, action_to_dict

router = APIRouter(
    prefix="/v1/agent/actions",
    tags=["actions"],
    dependencies=[Depends(require_roles(ROLE_ADVERTISER))],
)


class ModifyRequest(BaseModel):
    changes: dict[str, Any] = Field(min_length=1)


@router.get("")
async def list_pending(
    conversation_id: uuid.UUID | None = None,
    principal: Principal = Depends(get_principal),
    svc: ActionConfirmationService = Depends(action_service),
) -> dict[str, Any]:
    actions = await svc.list_pending(user_id=principal.user_id, conversation_id=conversation_id)
    return {"actions": [action_to_dict(a) for a in actions]}


@router.post("/{action_id}/confirm")
async def confirm(
    action_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: ActionConfirmationService = Depends(action_service),
) -> dict[str, Any]:
    result = await svc.confirm(action_id=action_id, user_id=principal.user_id)
    return result.to_dict()


@router.post("/{action_id}/modify")
async def modify(
    action_id: uuid.UUID,
    body: ModifyRequest,
    principal: Principal = Depends(get_principal),
    svc: ActionConfirmationService = Depends(action_service),
) -> dict[str, Any]:
    action = await svc.modify(action_id=action_id, user_id=principal.user_id, changes=body.changes)
    return {"action": action_to_dict(action)}


@router.post("/{action_id}/cancel")
async def cancel(
    action_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    svc: ActionConfirmationService = Depends(action_service),
) -> dict[str, Any]:
    action = await svc.cancel(action_id=action_id, user_id=principal.user_id)
    return {"action": action_to_dict(action)}
