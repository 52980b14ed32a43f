"""
batu.agent.guide

Campaign-guide interview: the question bank the agent walks a seller through
before creating a campaign, and the settings it recommends from the answers.

Responsibilities:
- Serve one question at a time with its options and interview progress.
- Turn the answers into a campaign mode, objective and daily budget.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from typing import Any

from batu.domain.campaign import MIN_DAILY_BUDGET, CampaignObjective
from batu.errors import ValidationError


class ExperienceLevel(enum.StrEnum):
    beginner = "BEGINNER"
    intermediate = "INTERMEDIATE"
    advanced = "ADVANCED"


class CampaignMode(enum.StrEnum):
    advantage_plus = "ADVANTAGE_PLUS"
    manual = "MANUAL"


@dataclass(frozen=True, slots=True)
class GuideOption:
    value: str
    label: str
    description: str | None = None


@dataclass(frozen=True, slots=True)
class GuideQuestion:
    question_id: str
    question: str
    options: tuple[GuideOption, ...]
    beginner_only: bool = False


QUESTIONS: tuple[GuideQuestion, ...] = (
    GuideQuestion(
        "experience_level",
        "Meta 광고 경험이 어느 정도이신가요?",
        (
            GuideOption(ExperienceLevel.beginner.value, "처음이에요"),
            GuideOption(ExperienceLevel.intermediate.value, "몇 번 해봤어요"),
            GuideOption(ExperienceLevel.advanced.value, "전문가예요"),
        ),
    ),
    GuideQuestion(
        "industry",
        "어떤 업종의 상품/서비스를 광고하시나요?",
        (
            GuideOption("fashion", "패션/의류"),
            GuideOption("beauty", "뷰티/화장품"),
            GuideOption("food", "식품/건강"),
            GuideOption("electronics", "가전/디지털"),
            GuideOption("other", "기타"),
        ),
    ),
    GuideQuestion(
        "objective",
        "이번 캠페인의 주요 목표는?",
        (
            GuideOption("sales", "매출 늘리기"),
            GuideOption("awareness", "브랜드 알리기"),
            GuideOption("traffic", "사이트 방문 유도"),
            GuideOption("engagement", "SNS 참여"),
        ),
    ),
    GuideQuestion(
        "budget",
        "하루 광고 예산은 어느 정도?",
        (
            GuideOption("1-10000", "1만원 이하"),
            GuideOption("10000-50000", "1-5만원"),
            GuideOption("50000-200000", "5-20만원"),
            GuideOption("200000-999999", "20만원 이상"),
        ),
    ),
    GuideQuestion(
        "target",
        "주요 타겟 고객은?",
        (
            GuideOption("broad", "넓은 타겟", "AI가 반응 좋은 고객을 찾아갑니다"),
            GuideOption("specific", "특정 연령대/성별"),
        ),
        beginner_only=True,
    ),
)

_BY_ID = {q.question_id: q for q in QUESTIONS}

OBJECTIVES = {
    "sales": CampaignObjective.sales,
    "awareness": CampaignObjective.awareness,
    "traffic": CampaignObjective.traffic,
    "engagement": CampaignObjective.engagement,
}

# Recommended daily budget per answer of the budget question.
BUDGETS = {
    "1-10000": MIN_DAILY_BUDGET,
    "10000-50000": 30000,
    "50000-200000": 100000,
    "200000-999999": 200000,
}


def _experience(raw: Any) -> ExperienceLevel | None:
    if raw in (None, ""):
        return None
    try:
        return ExperienceLevel(str(raw).upper())
    except ValueError as e:
        raise ValidationError(f"알 수 없는 광고 경험 수준입니다: {raw}") from e


def questions_for(experience: ExperienceLevel | None) -> list[GuideQuestion]:
    # Until the first answer is known, the beginner-only question is still counted.
    if experience in (None, ExperienceLevel.beginner):
        return list(QUESTIONS)
    return [q for q in QUESTIONS if not q.beginner_only]


def ask(question_id: str, *, experience_level: Any = None) -> dict[str, Any]:
    question = _BY_ID.get(question_id)
    if question is None:
        raise ValidationError(f"알 수 없는 가이드 질문입니다: {question_id}")
    flow = questions_for(_experience(experience_level))
    if question not in flow:
        raise ValidationError("초보자 가이드에서만 사용하는 질문입니다")
    return {
        "question_id": question.question_id,
        "question": question.question,
        "options": [asdict(o) for o in question.options],
        "progress": {"current": flow.index(question) + 1, "total": len(flow)},
    }


def recommend(answers: dict[str, Any]) -> dict[str, Any]:
    experience = _experience(answers.get("experience_level")) or ExperienceLevel.beginner
    objective = OBJECTIVES.get(str(answers.get("objective") or "sales"))
    if objective is None:
        raise ValidationError(f"알 수 없는 캠페인 목표입니다: {answers.get('objective')}")
    budget = BUDGETS.get(str(answers.get("budget") or ""), BUDGETS["10000-50000"])

    if experience == ExperienceLevel.advanced:
        mode = CampaignMode.manual
        reasoning = (
            "광고 운영 경험이 충분하므로 수동 모드로 타겟과 입찰을 직접 조정하는 것을 권장합니다. "
            "첫 주는 예산을 유지하며 CPA와 ROAS를 기준으로 세부 설정을 다듬어 보세요."
        )
    elif experience == ExperienceLevel.intermediate:
        mode = CampaignMode.advantage_plus
        reasoning = (
            "Advantage+ 캠페인으로 시작해 AI 최적화의 이점을 얻는 것을 권장합니다. "
            "성과 데이터가 쌓이면 수동 모드로 세부 타겟을 시험해 볼 수 있습니다."
        )
    else:
        mode = CampaignMode.advantage_plus
        reasoning = (
            "처음이시라면 Advantage+ 캠페인을 강력히 추천합니다. "
            "Meta의 AI가 타겟과 노출 위치를 자동으로 찾아주므로 복잡한 설정 없이 시작할 수 있습니다."
        )

    return {
        "campaign_mode": mode.value,
        "form_data": {
            "objective": objective.value,
            "daily_budget": budget,
            "campaign_mode": mode.value,
        },
        "reasoning": reasoning,
        "experience_level": experience.value,
    }


# --- Module Notes -----------------------------------------------------------
# Both guide tools are query tools: the recommendation only pre-fills a form.
# Creating the campaign still goes through `create_campaign` and its
# confirmation card.
