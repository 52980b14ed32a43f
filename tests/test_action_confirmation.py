"""
tests.test_action_confirmation

Confirmation gate: a mutating tool runs only on confirm, exactly once.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from conftest import make_settings

from batu.agent.builtin_tools import build_default_registry
from batu.agent.tools import ToolContext
from batu.db.models import MessageRole, PendingActionStatus
from batu.db.repositories.campaigns import CampaignRepo
from batu.db.repositories.conversations import ConversationRepo
from batu.db.repositories.pending_actions import PendingActionRepo
from batu.db.repositories.usage import UsageRepo
from batu.domain.campaign import CampaignStatus
from batu.errors import ActionExpiredError, ConflictError, NotFoundError
from batu.services.action_confirmation import ActionConfirmationService

USER = "user-1"
NOW = datetime(2024, 5, 1, 12, 0)


@pytest.fixture
def registry():
    return build_default_registry()


async def _setup(session, registry, *, tool: str, args_factory):
    settings = make_settings()
    conv = await ConversationRepo(session).create(user_id=USER)
    campaign = await CampaignRepo(session).create(
        user_id=USER,
        name="봄 세일",
        objective="OUTCOME_SALES",
        daily_budget=30000,
        status=CampaignStatus.active,
    )
    await session.commit()

    svc = ActionConfirmationService(session=session, settings=settings, registry=registry)
    ctx = ToolContext(
        session=session,
        settings=settings,
        user_id=USER,
        conversation_id=conv.id,
        meta=None,
        now=NOW,
    )
    args = args_factory(campaign)
    confirmation = await registry.get(tool).build_confirmation(args, ctx)
    action = await svc.propose(
        conversation_id=conv.id,
        user_id=USER,
        tool_name=tool,
        tool_args=args,
        confirmation=confirmation,
        now=NOW,
    )
    return svc, action, campaign, conv


def _pause_args(campaign):
    return {"campaign_id": str(campaign.id)}


def _budget_args(campaign):
    return {"campaign_id": str(campaign.id), "daily_budget": 50000}


@pytest.mark.asyncio
async def test_propose_does_not_mutate(session, registry) -> None:
    svc, action, campaign, _ = await _setup(
        session, registry, tool="pause_campaign", args_factory=_pause_args
    )

    assert action.status == PendingActionStatus.pending
    assert action.expires_at == NOW + timedelta(minutes=30)
    assert action.display_summary == "'봄 세일' 캠페인을 일시정지합니다"
    assert campaign.status == CampaignStatus.active

    pending = await svc.list_pending(user_id=USER, now=NOW)
    assert [a.id for a in pending] == [action.id]
    assert await svc.list_pending(user_id="someone-else", now=NOW) == []


@pytest.mark.asyncio
async def test_confirm_executes_once_and_replays(session, registry) -> None:
    svc, action, campaign, conv = await _setup(
        session, registry, tool="pause_campaign", args_factory=_pause_args
    )

    result = await svc.confirm(action_id=action.id, user_id=USER, now=NOW + timedelta(minutes=1))
    assert result.success
    assert result.message == "'봄 세일' 캠페인을 일시정지했습니다."

    refreshed = await CampaignRepo(session).get(campaign.id)
    assert refreshed.status == CampaignStatus.paused

    again = await svc.confirm(action_id=action.id, user_id=USER, now=NOW + timedelta(minutes=2))
    assert again.success
    assert again.message == result.message

    messages = await ConversationRepo(session).all_messages(conversation_id=conv.id)
    tool_messages = [m for m in messages if m.role == MessageRole.tool]
    assert len(tool_messages) == 1
    assert tool_messages[0].tool_result["success"] is True


@pytest.mark.asyncio
async def test_confirm_after_expiry_is_gone(session, registry) -> None:
    svc, action, campaign, _ = await _setup(
        session, registry, tool="pause_campaign", args_factory=_pause_args
    )

    with pytest.raises(ActionExpiredError):
        await svc.confirm(action_id=action.id, user_id=USER, now=NOW + timedelta(minutes=31))

    reloaded = await svc._load(action.id, USER)
    assert reloaded.status == PendingActionStatus.expired
    assert (await CampaignRepo(session).get(campaign.id)).status == CampaignStatus.active


@pytest.mark.asyncio
async def test_cancel_is_idempotent_and_blocks_confirm(session, registry) -> None:
    svc, action, _, _ = await _setup(
        session, registry, tool="pause_campaign", args_factory=_pause_args
    )

    first = await svc.cancel(action_id=action.id, user_id=USER, now=NOW)
    second = await svc.cancel(action_id=action.id, user_id=USER, now=NOW)
    assert first.status == second.status == PendingActionStatus.cancelled

    with pytest.raises(ConflictError):
        await svc.confirm(action_id=action.id, user_id=USER, now=NOW)


@pytest.mark.asyncio
async def test_modify_flags_changed_details_and_renews_expiry(session, registry) -> None:
    svc, action, _, _ = await _setup(
        session, registry, tool="update_campaign_budget", args_factory=_budget_args
    )
    later = NOW + timedelta(minutes=20)

    modified = await svc.modify(
        action_id=action.id, user_id=USER, changes={"daily_budget": 40000}, now=later
    )

    assert modified.tool_args["daily_budget"] == 40000
    assert modified.expires_at == later + timedelta(minutes=30)
    changed = {d["label"]: d["changed"] for d in modified.details}
    assert changed == {"캠페인": False, "현재 예산": False, "변경 예산": True}


@pytest.mark.asyncio
async def test_large_budget_change_warns(session, registry) -> None:
    _, action, _, _ = await _setup(
        session,
        registry,
        tool="update_campaign_budget",
        args_factory=lambda c: {"campaign_id": str(c.id), "daily_budget": 90000},
    )
    assert action.warnings and "50%" in action.warnings[0]


@pytest.mark.asyncio
async def test_failed_execution_is_recorded_not_retried(session, registry) -> None:
    svc, action, campaign, _ = await _setup(
        session, registry, tool="pause_campaign", args_factory=_pause_args
    )
    # Someone paused it in the meantime; the tool's transition check now fails.
    await CampaignRepo(session).set_status(campaign, CampaignStatus.paused)
    await session.commit()

    result = await svc.confirm(action_id=action.id, user_id=USER, now=NOW)
    assert not result.success
    assert result.message.startswith("작업 실행에 실패했습니다")

    with pytest.raises(ConflictError):
        await svc.confirm(action_id=action.id, user_id=USER, now=NOW)


@pytest.mark.asyncio
async def test_create_campaign_consumes_quota_on_confirm(session, registry) -> None:
    svc, action, _, _ = await _setup(
        session,
        registry,
        tool="create_campaign",
        args_factory=lambda c: {
            "name": "여름 세일",
            "objective": "OUTCOME_SALES",
            "daily_budget": 20000,
        },
    )
    usage = UsageRepo(session)
    since = NOW - timedelta(days=7)
    assert await usage.count_since(user_id=USER, feature="CAMPAIGN_CREATE", since=since) == 0

    result = await svc.confirm(action_id=action.id, user_id=USER, now=NOW)
    assert result.success
    assert result.data["status"] == "DRAFT"
    assert await usage.count_since(user_id=USER, feature="CAMPAIGN_CREATE", since=since) == 1


@pytest.mark.asyncio
async def test_expire_stale(session, registry) -> None:
    svc, action, _, _ = await _setup(
        session, registry, tool="pause_campaign", args_factory=_pause_args
    )
    assert await svc.expire_stale(now=NOW + timedelta(minutes=10)) == 0
    assert await svc.expire_stale(now=NOW + timedelta(minutes=30)) == 1
    assert (await svc._load(action.id, USER)).status == PendingActionStatus.expired


@pytest.mark.asyncio
async def test_actions_are_invisible_to_other_users(session, registry) -> None:
    svc, action, campaign, _ = await _setup(
        session, registry, tool="update_campaign_budget", args_factory=_budget_args
    )
    intruder = "user-2"

    with pytest.raises(NotFoundError):
        await svc.confirm(action_id=action.id, user_id=intruder, now=NOW)
    with pytest.raises(NotFoundError):
        await svc.modify(
            action_id=action.id, user_id=intruder, changes={"daily_budget": 1}, now=NOW
        )
    with pytest.raises(NotFoundError):
        await svc.cancel(action_id=action.id, user_id=intruder, now=NOW)
    assert await svc.list_pending(user_id=intruder, now=NOW) == []

    untouched = await svc._load(action.id, USER)
    assert untouched.status == PendingActionStatus.pending
    assert untouched.tool_args["daily_budget"] == 50000
    assert (await CampaignRepo(session).get(campaign.id)).daily_budget == 30000


@pytest.mark.asyncio
async def test_executing_action_cannot_be_claimed_twice(session, registry) -> None:
    svc, action, campaign, _ = await _setup(
        session, registry, tool="pause_campaign", args_factory=_pause_args
    )
    actions = PendingActionRepo(session)

    assert await actions.claim(action_id=action.id, now=NOW) is True
    await session.commit()
    assert await actions.claim(action_id=action.id, now=NOW) is False

    assert (await svc._load(action.id, USER)).status == PendingActionStatus.executing
    with pytest.raises(ConflictError):
        await svc.confirm(action_id=action.id, user_id=USER, now=NOW)
    with pytest.raises(ConflictError):
        await svc.cancel(action_id=action.id, user_id=USER, now=NOW)
    assert (await CampaignRepo(session).get(campaign.id)).status == CampaignStatus.active
