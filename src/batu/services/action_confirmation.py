"""
batu.services.action_confirmation

Confirmation gate for mutating agent tools (transaction owner).

Responsibilities:
- Persist proposed mutations as PENDING actions with an expiry.
- Confirm: claim the action, run the tool once, store the outcome.
- Modify: merge new arguments, rebuild the confirmation card, renew expiry.
- Cancel, list and bulk-expire pending actions.

State machine:
    PENDING --confirm--> EXECUTING --ok--> COMPLETED
                                  +--error--> FAILED
    PENDING --modify--> PENDING
    PENDING --cancel--> CANCELLED
    PENDING --(expires_at passed)--> EXPIRED
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from batu.agent.tools import AgentTool, Confirmation, ToolContext, ToolRegistry
from batu.db.models import MessageRole, PendingAction, PendingActionStatus
from batu.db.repositories.conversations import ConversationRepo
from batu.db.repositories.pending_actions import PendingActionRepo
from batu.db.repositories.usage import UsageRepo
from batu.errors import ActionExpiredError, ConflictError, NotFoundError
from batu.integrations.meta_ads import MetaAdsClient
from batu.observability.logging import get_logger
from batu.settings import Settings

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ActionResult:
    action_id: uuid.UUID
    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["action_id"] = str(self.action_id)
        return out


def action_card(action: PendingAction) -> dict[str, Any]:
    """
    The `action_confirmation` chunk shown to the user for a pending action.
    """

    return {
        "type": "action_confirmation",
        "action_id": str(action.id),
        "tool_name": action.tool_name,
        "summary": action.display_summary,
        "details": list(action.details or []),
        "warnings": list(action.warnings or []),
        "expires_at": action.expires_at.isoformat(),
    }


def action_to_dict(action: PendingAction) -> dict[str, Any]:
    card = action_card(action)
    card.pop("type")
    return {
        **card,
        "conversation_id": str(action.conversation_id),
        "tool_args": dict(action.tool_args or {}),
        "status": action.status.value,
        "result": action.result,
        "error": action.error,
        "created_at": action.created_at.isoformat() if action.created_at else None,
    }


class ActionConfirmationService:
    def __init__(
        self,
        *,
        session: AsyncSession,
        settings: Settings,
        registry: ToolRegistry,
        meta: MetaAdsClient | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._registry = registry
        self._meta = meta

        self._actions = PendingActionRepo(session)
        self._conversations = ConversationRepo(session)
        self._usage = UsageRepo(session)

    @property
    def _ttl(self) -> timedelta:
        return timedelta(minutes=self._settings.pending_action_ttl_minutes)

    async def propose(
        self,
        *,
        conversation_id: uuid.UUID,
        user_id: str,
        tool_name: str,
        tool_args: dict[str, Any],
        confirmation: Confirmation,
        now: datetime | None = None,
    ) -> PendingAction:
        now = now or datetime.utcnow()
        action = await self._actions.create(
            conversation_id=conversation_id,
            user_id=user_id,
            tool_name=tool_name,
            tool_args=dict(tool_args),
            display_summary=confirmation.summary,
            details=confirmation.details_as_dicts(),
            warnings=list(confirmation.warnings),
            expires_at=now + self._ttl,
        )
        # Committed right away so the card can be confirmed while the chat stream is still open.
        await self._session.commit()
        log.info("action_proposed", action_id=str(action.id), tool=tool_name, user_id=user_id)
        return action

    async def _load(self, action_id: uuid.UUID, user_id: str) -> PendingAction:
        action = await self._actions.get_owned(action_id=action_id, user_id=user_id, for_update=True)
        if action is None:
            raise NotFoundError("작업을 찾을 수 없습니다", details={"action_id": str(action_id)})
        return action

    async def _expire(self, action: PendingAction, now: datetime) -> None:
        action.status = PendingActionStatus.expired
        action.updated_at = now
        await self._session.commit()
        log.info("action_expired", action_id=str(action.id))

    def _tool(self, action: PendingAction) -> AgentTool:
        tool = self._registry.get(action.tool_name)
        if tool is None:
            raise NotFoundError(f"알 수 없는 도구입니다: {action.tool_name}")
        return tool

    def _context(self, *, user_id: str, conversation_id: uuid.UUID, now: datetime) -> ToolContext:
        return ToolContext(
            session=self._session,
            settings=self._settings,
            user_id=user_id,
            conversation_id=conversation_id,
            meta=self._meta,
            now=now,
        )

    async def confirm(
        self, *, action_id: uuid.UUID, user_id: str, now: datetime | None = None
    ) -> ActionResult:
        now = now or datetime.utcnow()
        action = await self._load(action_id, user_id)

        if action.status == PendingActionStatus.completed:
            # Idempotent replay: a repeated confirm returns the stored outcome.
            stored = action.result or {}
            return ActionResult(action.id, True, str(stored.get("message", "")), stored.get("data"))
        if action.status == PendingActionStatus.executing:
            raise ConflictError("이미 실행 중인 작업입니다")
        if action.status == PendingActionStatus.expired:
            raise ActionExpiredError("작업 확인 시간이 만료되었습니다")
        if action.status == PendingActionStatus.cancelled:
            raise ConflictError("취소된 작업입니다")
        if action.status == PendingActionStatus.failed:
            raise ConflictError("실패한 작업은 다시 실행할 수 없습니다", details={"error": action.error})
        if now >= action.expires_at:
            await self._expire(action, now)
            raise ActionExpiredError("작업 확인 시간이 만료되었습니다")

        tool = self._tool(action)
        tool_args = dict(action.tool_args or {})
        conversation_id = action.conversation_id

        if not await self._actions.claim(action_id=action.id, now=now):
            raise ConflictError("이미 실행 중인 작업입니다")
        await self._session.commit()
        log.info("action_confirmed", action_id=str(action_id), tool=tool.name, user_id=user_id)

        ctx = self._context(user_id=user_id, conversation_id=conversation_id, now=now)
        try:
            result = await tool.execute(tool_args, ctx)
        except Exception as e:
            # Drop whatever the tool wrote before failing; the FAILED record is a fresh write.
            await self._session.rollback()
            message = f"작업 실행에 실패했습니다: {e}"
            action = await self._load(action_id, user_id)
            action.status = PendingActionStatus.failed
            action.error = str(e)
            action.executed_at = now
            action.updated_at = now
            await self._conversations.add_message(
                conversation_id=conversation_id,
                role=MessageRole.tool,
                content=message,
                tool_name=tool.name,
                tool_result={"action_id": str(action_id), "success": False, "error": str(e)},
            )
            await self._session.commit()
            log.warning("action_failed", action_id=str(action_id), tool=tool.name, error=str(e))
            return ActionResult(action_id, False, message)

        action = await self._load(action_id, user_id)
        action.status = PendingActionStatus.completed
        action.result = {"message": result.formatted_message, "data": result.data}
        action.executed_at = now
        action.updated_at = now
        await self._conversations.add_message(
            conversation_id=conversation_id,
            role=MessageRole.tool,
            content=result.formatted_message,
            tool_name=tool.name,
            tool_result={"action_id": str(action_id), "success": True, "data": result.data},
        )
        if tool.quota_feature is not None:
            await self._usage.log(user_id=user_id, feature=tool.quota_feature.value, at=now)
        await self._session.commit()
        log.info("action_completed", action_id=str(action_id), tool=tool.name)
        return ActionResult(action_id, True, result.formatted_message, result.data)

    async def modify(
        self,
        *,
        action_id: uuid.UUID,
        user_id: str,
        changes: dict[str, Any],
        now: datetime | None = None,
    ) -> PendingAction:
        now = now or datetime.utcnow()
        action = await self._load(action_id, user_id)

        if action.status == PendingActionStatus.expired:
            raise ActionExpiredError("작업 확인 시간이 만료되었습니다")
        if action.status != PendingActionStatus.pending:
            raise ConflictError(
                "대기 중인 작업만 수정할 수 있습니다", details={"status": action.status.value}
            )
        if now >= action.expires_at:
            await self._expire(action, now)
            raise ActionExpiredError("작업 확인 시간이 만료되었습니다")

        tool = self._tool(action)
        merged = {**(action.tool_args or {}), **changes}
        ctx = self._context(user_id=user_id, conversation_id=action.conversation_id, now=now)
        if tool.build_confirmation is None:
            raise ConflictError("수정할 수 없는 작업입니다")
        confirmation = await tool.build_confirmation(merged, ctx)

        previous = {d.get("label"): d.get("value") for d in action.details or []}
        details = []
        for d in confirmation.details_as_dicts():
            d["changed"] = previous.get(d["label"]) != d["value"]
            details.append(d)

        action.tool_args = merged
        action.display_summary = confirmation.summary
        action.details = details
        action.warnings = list(confirmation.warnings)
        action.expires_at = now + self._ttl
        action.updated_at = now
        await self._session.commit()
        log.info("action_modified", action_id=str(action_id), changed=sorted(changes))
        return action

    async def cancel(
        self, *, action_id: uuid.UUID, user_id: str, now: datetime | None = None
    ) -> PendingAction:
        now = now or datetime.utcnow()
        action = await self._load(action_id, user_id)
        if action.status == PendingActionStatus.cancelled:
            return action
        if action.status != PendingActionStatus.pending:
            raise ConflictError(
                "대기 중인 작업만 취소할 수 있습니다", details={"status": action.status.value}
            )
        action.status = PendingActionStatus.cancelled
        action.updated_at = now
        await self._session.commit()
        log.info("action_cancelled", action_id=str(action_id))
        return action

    async def list_pending(
        self,
        *,
        user_id: str,
        conversation_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> list[PendingAction]:
        return await self._actions.list_pending(
            user_id=user_id, now=now or datetime.utcnow(), conversation_id=conversation_id
        )

    async def expire_stale(self, *, now: datetime | None = None) -> int:
        count = await self._actions.expire_overdue(now=now or datetime.utcnow())
        await self._session.commit()
        if count:
            log.info("actions_expired", count=count)
        return count


# --- Module Notes -----------------------------------------------------------
# The claim is committed before the tool runs, so a second confirm arriving
# mid-execution sees EXECUTING and gets a conflict instead of a second run.
# Tool writes and the COMPLETED status are committed together.
