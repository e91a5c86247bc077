"""Ordered degradation from AI vision to AI text to rule-based scoring."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from stockai.config import Settings
from stockai.errors import ProviderUnavailable
from stockai.metrics import provider_failure_total
from stockai.services import ai_providers
from stockai.services.market_data import ChartRenderer, MarketSnapshot, get_chart_renderer
from stockai.services.plan_catalog import GradeDisplay, NumericDisplay, score_display
from stockai.services.scoring import clamp_score, ensure_enough_data, rule_based_score

settings = Settings()
logger = logging.getLogger(__name__)

METHOD_VISION = "ai-vision"
METHOD_TEXT = "ai-text"
METHOD_RULES = "rule-based"


@dataclass
class Stage:
    name: str
    level: int
    run: Callable[[MarketSnapshot], Awaitable[dict[str, Any]]]


@dataclass
class AnalysisResult:
    score: int
    method: str
    requested_level: int
    served_level: int
    signal: str = ""
    summary: str = ""
    risk_level: str | None = None
    reasons: list[str] = field(default_factory=list)
    patterns: list[str] = field(default_factory=list)
    support: float | None = None
    resistance: float | None = None
    trend: str | None = None
    confidence: str | None = None
    usage: dict[str, Any] | None = None
    attempts: list[dict[str, str]] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.served_level < self.requested_level

    @property
    def cost_usd(self) -> float:
        return float(self.usage["costUsd"]) if self.usage else 0.0

    @property
    def tokens_used(self) -> int:
        return int(self.usage["totalTokens"]) if self.usage else 0

    def display(self) -> NumericDisplay | GradeDisplay:
        return score_display(self.score, self.requested_level)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "display": self.display().model_dump(),
            "method": self.method,
            "requestedLevel": self.requested_level,
            "servedLevel": self.served_level,
            "degraded": self.degraded,
            "summary": self.summary,
            "riskLevel": self.risk_level,
            "reasons": self.reasons,
            "patterns": self.patterns,
        }
        display = data["display"]
        if display["kind"] == "numeric":
            data["score"] = self.score
        else:
            data["grade"] = display["grade"]
            data["signal"] = display["signal"]
        if self.requested_level == 3:
            data.update(
                {
                    "support": self.support,
                    "resistance": self.resistance,
                    "trend": self.trend,
                    "confidence": self.confidence,
                    "usage": self.usage,
                }
            )
        return data


def _checked(stage: Stage, payload: dict[str, Any]) -> dict[str, Any]:
    try:
        score = clamp_score(float(payload["score"]))
    except (KeyError, TypeError, ValueError, OverflowError) as exc:
        raise ProviderUnavailable(stage.name, "invalid score") from exc
    return {**payload, "score": score}


def _stage_failed(stage: Stage, snapshot: MarketSnapshot, reason: str, attempts: list) -> None:
    provider_failure_total.labels(stage=stage.name).inc()
    logger.warning(
        "analysis stage %s failed: %s",
        stage.name,
        reason,
        extra={"symbol": snapshot.symbol},
    )
    attempts.append({"stage": stage.name, "error": reason})


async def run_chain(
    stages: list[Stage], snapshot: MarketSnapshot
) -> tuple[Stage, dict[str, Any], list[dict[str, str]]]:
    """Try ``stages`` in order; return the first success and the failures before it."""
    attempts: list[dict[str, str]] = []
    for stage in stages:
        try:
            payload = _checked(stage, await stage.run(snapshot))
        except ProviderUnavailable as exc:
            _stage_failed(stage, snapshot, exc.reason, attempts)
            continue
        except Exception as exc:
            logger.exception("analysis stage %s raised unexpectedly", stage.name)
            _stage_failed(stage, snapshot, type(exc).__name__, attempts)
            continue
        return stage, payload, attempts
    raise ProviderUnavailable("chain", "no stage produced a result")


class AnalysisChain:
    def __init__(
        self,
        renderer: ChartRenderer,
        *,
        text_scorer: Callable[[MarketSnapshot], dict[str, Any]] | None = None,
        vision_scorer: Callable[[MarketSnapshot, str], dict[str, Any]] | None = None,
        timeout: float | None = None,
    ) -> None:
        self.renderer = renderer
        self.text_scorer = text_scorer or ai_providers.call_text_scoring
        self.vision_scorer = vision_scorer or ai_providers.call_vision_scoring
        self.timeout = timeout if timeout is not None else settings.provider_timeout_s

    async def _bounded(self, stage: str, func: Callable[..., dict[str, Any]], *args: Any) -> dict[str, Any]:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(stage, "timeout") from exc

    async def _vision(self, snapshot: MarketSnapshot) -> dict[str, Any]:
        try:
            image = await asyncio.wait_for(self.renderer.render(snapshot), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(METHOD_VISION, "chart render timeout") from exc
        except ProviderUnavailable as exc:
            raise ProviderUnavailable(METHOD_VISION, f"chart: {exc.reason}") from exc
        return await self._bounded(METHOD_VISION, self.vision_scorer, snapshot, image)

    async def _text(self, snapshot: MarketSnapshot) -> dict[str, Any]:
        return await self._bounded(METHOD_TEXT, self.text_scorer, snapshot)

    async def _rules(self, snapshot: MarketSnapshot) -> dict[str, Any]:
        return rule_based_score(snapshot)

    def stages_for(self, level: int) -> list[Stage]:
        stages = [Stage(METHOD_RULES, 1, self._rules)]
        if level >= 2:
            stages.insert(0, Stage(METHOD_TEXT, 2, self._text))
        if level >= 3:
            stages.insert(0, Stage(METHOD_VISION, 3, self._vision))
        return stages

    async def analyze(self, snapshot: MarketSnapshot, level: int) -> AnalysisResult:
        """Score ``snapshot`` at ``level``, degrading on provider failure.

        :class:`~stockai.errors.InsufficientData` propagates; provider errors
        never do.
        """
        ensure_enough_data(snapshot)
        stage, payload, attempts = await run_chain(self.stages_for(level), snapshot)
        result = AnalysisResult(
            score=payload["score"],
            method=stage.name,
            requested_level=level,
            served_level=stage.level,
            signal=payload.get("signal") or "",
            summary=payload.get("summary") or "",
            risk_level=payload.get("riskLevel"),
            reasons=list(payload.get("reasons") or []),
            patterns=list(payload.get("patterns") or []),
            support=payload.get("support"),
            resistance=payload.get("resistance"),
            trend=payload.get("trend"),
            confidence=payload.get("confidence"),
            usage=payload.get("usage"),
            attempts=attempts,
        )
        if result.degraded:
            logger.info(
                "analysis degraded: requested L%s served by %s",
                level,
                stage.name,
                extra={"symbol": snapshot.symbol},
            )
        return result


def get_analysis_chain() -> AnalysisChain:
    return AnalysisChain(get_chart_renderer())


__all__ = [
    "METHOD_VISION",
    "METHOD_TEXT",
    "METHOD_RULES",
    "Stage",
    "AnalysisResult",
    "AnalysisChain",
    "run_chain",
    "get_analysis_chain",
]
