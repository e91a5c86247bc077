"""Static subscription plans, analysis levels and score display mapping."""

from __future__ import annotations

import enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class Limit(enum.Enum):
    UNLIMITED = "unlimited"


UNLIMITED = Limit.UNLIMITED

USAGE_TYPES = ("refresh", "level1", "level2", "level3")
DEFAULT_PLAN = "free"
PLAN_ORDER = ("free", "basic", "pro", "premium")

PLANS: dict[str, dict] = {
    "free": {
        "name": "Free",
        "price": 0.0,
        "period": None,
        "limits": {
            "watchlist": 1,
            "refresh": 5,
            "level1": UNLIMITED,
            "level2": 5,
            "level3": 0,
        },
    },
    "basic": {
        "name": "Basic",
        "price": 4.99,
        "period": "month",
        "limits": {
            "watchlist": 10,
            "refresh": 50,
            "level1": UNLIMITED,
            "level2": 50,
            "level3": 5,
        },
    },
    "pro": {
        "name": "Pro",
        "price": 14.99,
        "period": "month",
        "popular": True,
        "limits": {
            "watchlist": 50,
            "refresh": 200,
            "level1": UNLIMITED,
            "level2": 200,
            "level3": 30,
        },
    },
    "premium": {
        "name": "Premium",
        "price": 29.99,
        "period": "month",
        "limits": {
            "watchlist": UNLIMITED,
            # effectively unlimited, capped against abuse
            "refresh": 1000,
            "level1": UNLIMITED,
            "level2": 1000,
            "level3": 100,
        },
    },
}

ANALYSIS_LEVELS: dict[int, dict] = {
    1: {"name": "Basic", "description": "Rule-based analysis", "cost_per_request": 0.0, "format": "grade"},
    2: {"name": "Standard", "description": "AI text analysis", "cost_per_request": 0.001, "format": "grade"},
    3: {"name": "Premium", "description": "AI chart vision analysis", "cost_per_request": 0.02, "format": "numeric"},
}

# Store product id -> plan id. Short SKUs and reverse-DNS store ids both resolve.
PRODUCT_TO_PLAN: dict[str, str] = {}
for _plan in ("basic", "pro", "premium"):
    for _period in ("monthly", "yearly"):
        PRODUCT_TO_PLAN[f"{_plan}_{_period}"] = _plan
        PRODUCT_TO_PLAN[f"com.stockai.analyzer.{_plan}.{_period}"] = _plan


def resolve_plan_id(plan_id: str | None) -> str:
    return plan_id if plan_id in PLANS else DEFAULT_PLAN


def limits(plan_id: str | None, usage_type: str) -> int | Limit:
    """Return the daily limit of ``usage_type`` for ``plan_id``.

    Unknown plans resolve to the free plan. Unknown usage types have a
    limit of 0.
    """
    plan = PLANS[resolve_plan_id(plan_id)]
    return plan["limits"].get(usage_type, 0)


def plan_for_product(product_id: str) -> str | None:
    return PRODUCT_TO_PLAN.get(product_id)


def next_plan(plan_id: str | None) -> str | None:
    """Return the next tier above ``plan_id`` or ``None`` for the top tier."""
    idx = PLAN_ORDER.index(resolve_plan_id(plan_id))
    if idx + 1 < len(PLAN_ORDER):
        return PLAN_ORDER[idx + 1]
    return None


def render_limit(value: int | Limit) -> int | str:
    return value.value if isinstance(value, Limit) else value


def plans_payload() -> list[dict]:
    out = []
    for plan_id in PLAN_ORDER:
        plan = PLANS[plan_id]
        out.append(
            {
                "id": plan_id,
                "name": plan["name"],
                "price": plan["price"],
                "period": plan["period"],
                "popular": plan.get("popular", False),
                "limits": {k: render_limit(v) for k, v in plan["limits"].items()},
            }
        )
    return out


Grade = Literal["Low", "Middle", "High"]

_SIGNALS: dict[str, str] = {
    "High": "consider buying",
    "Middle": "hold",
    "Low": "caution",
}


def score_to_grade(score: int) -> Grade:
    if score >= 70:
        return "High"
    if score >= 40:
        return "Middle"
    return "Low"


def grade_to_signal(grade: str) -> str:
    return _SIGNALS.get(grade, _SIGNALS["Middle"])


class NumericDisplay(BaseModel):
    kind: Literal["numeric"] = "numeric"
    score: int


class GradeDisplay(BaseModel):
    kind: Literal["grade"] = "grade"
    grade: Grade
    signal: str


ScoreDisplay = Annotated[
    Union[NumericDisplay, GradeDisplay], Field(discriminator="kind")
]


def score_display(score: int, level: int) -> NumericDisplay | GradeDisplay:
    """Select the display shape for ``level``; only level 3 shows the number."""
    if ANALYSIS_LEVELS.get(level, ANALYSIS_LEVELS[1])["format"] == "numeric":
        return NumericDisplay(score=score)
    grade = score_to_grade(score)
    return GradeDisplay(grade=grade, signal=grade_to_signal(grade))


__all__ = [
    "Limit",
    "UNLIMITED",
    "USAGE_TYPES",
    "PLANS",
    "PLAN_ORDER",
    "ANALYSIS_LEVELS",
    "PRODUCT_TO_PLAN",
    "limits",
    "next_plan",
    "plan_for_product",
    "resolve_plan_id",
    "render_limit",
    "plans_payload",
    "score_to_grade",
    "grade_to_signal",
    "NumericDisplay",
    "GradeDisplay",
    "ScoreDisplay",
    "score_display",
]
