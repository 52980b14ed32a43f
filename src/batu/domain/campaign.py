"""
batu.domain.campaign

Campaign status machine and input validation.
"""

from __future__ import annotations

import enum

from batu.errors import ConflictError, ValidationError

MIN_DAILY_BUDGET = 10000
MAX_NAME_LENGTH = 255


class CampaignStatus(enum.StrEnum):
    draft = "DRAFT"
    pending_review = "PENDING_REVIEW"
    active = "ACTIVE"
    paused = "PAUSED"
    completed = "COMPLETED"


class CampaignObjective(enum.StrEnum):
    sales = "OUTCOME_SALES"
    traffic = "OUTCOME_TRAFFIC"
    awareness = "OUTCOME_AWARENESS"
    engagement = "OUTCOME_ENGAGEMENT"
    leads = "OUTCOME_LEADS"


_TRANSITIONS: dict[CampaignStatus, frozenset[CampaignStatus]] = {
    CampaignStatus.draft: frozenset({CampaignStatus.pending_review, CampaignStatus.active}),
    CampaignStatus.pending_review: frozenset({CampaignStatus.active, CampaignStatus.draft}),
    CampaignStatus.active: frozenset({CampaignStatus.paused, CampaignStatus.completed}),
    CampaignStatus.paused: frozenset({CampaignStatus.active, CampaignStatus.completed}),
    CampaignStatus.completed: frozenset(),
}


def can_transition(current: CampaignStatus, target: CampaignStatus) -> bool:
    return target in _TRANSITIONS[current]


def ensure_transition(current: CampaignStatus, target: CampaignStatus) -> None:
    if current == CampaignStatus.completed:
        raise ConflictError("완료된 캠페인은 변경할 수 없습니다")
    if not can_transition(current, target):
        raise ConflictError(
            f"캠페인 상태를 {current.value}에서 {target.value}(으)로 변경할 수 없습니다",
            details={"from": current.value, "to": target.value},
        )


def validate_campaign_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ValidationError("캠페인 이름을 입력해주세요")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(f"캠페인 이름은 {MAX_NAME_LENGTH}자 이하여야 합니다")
    return cleaned


def validate_daily_budget(amount: int | float) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int | float):
        raise ValidationError("일 예산은 숫자여야 합니다")
    if amount != int(amount):
        raise ValidationError("일 예산은 정수(원 단위)여야 합니다")
    if amount < MIN_DAILY_BUDGET:
        raise ValidationError(f"일 예산은 최소 {MIN_DAILY_BUDGET:,}원 이상이어야 합니다")
    return int(amount)
