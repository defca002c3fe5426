"""
Barrier planner: baseline barrier lists plus optional AI enrichment
"""
import logging
from typing import Optional, List, Dict, Any
from pydantic import ValidationError

from ..common.models import (
    DEFAULT_AI_CONFIDENCE,
    Barrier,
    BarrierStage,
    BarrierType,
    ComplexityLevel,
)
from ..common.results import Outcome
from .providers import ProviderRegistry
from .vision import VisionAnalyzer

logger = logging.getLogger(__name__)

AI_DEFAULT_LIKELIHOOD = 0.5
AI_DEFAULT_MINUTES = 3


def _unit_interval(value: Any, default: float) -> float:
    """Clamp a model-reported probability into [0, 1]"""
    if value is None:
        return default
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return default


def _whole_minutes(value: Any) -> int:
    try:
        minutes = int(round(float(value)))
    except (TypeError, ValueError, OverflowError):
        return AI_DEFAULT_MINUTES
    return minutes if minutes > 0 else AI_DEFAULT_MINUTES


def _barrier_from_ai(entry: Dict[str, Any]) -> Barrier:
    likelihood = entry.get("likelihood", entry.get("captcha_likelihood"))
    return Barrier(
        type=entry.get("type") or BarrierType.CAPTCHA,
        stage=entry.get("stage") or BarrierStage.REGISTRATION,
        captcha_likelihood=_unit_interval(likelihood, AI_DEFAULT_LIKELIHOOD),
        required_fields=entry.get("required_fields") or [],
        estimated_time_minutes=_whole_minutes(entry.get("estimated_time")),
        complexity_level=entry.get("complexity") or ComplexityLevel.MEDIUM,
        human_intervention_required=entry.get("human_required") is not False,
        description=entry.get("description") or "AI-detected barrier",
        bypass_possible=bool(entry.get("bypass_possible", False)),
        ai_confidence=_unit_interval(entry.get("confidence"), DEFAULT_AI_CONFIDENCE),
    )


def merge_ai_findings(
    baseline: List[Barrier],
    findings: Dict[str, Any],
    confidence_boost: float = 0.1
) -> List[Barrier]:
    """
    Fold AI findings into a baseline list.

    Baseline barriers keep their values but gain `confidence_boost`
    (capped at 1.0). An AI barrier is appended only when nothing already
    in the list shares its (type, stage). Entries that do not validate
    are dropped.
    """
    merged = [
        b.model_copy(update={"ai_confidence": min(1.0, b.confidence + confidence_boost)})
        for b in baseline
    ]

    entries = findings.get("barriers")
    if not isinstance(entries, list):
        return merged

    for entry in entries:
        if not isinstance(entry, dict):
            logger.debug(f"Skipping non-object AI barrier: {entry!r}")
            continue
        try:
            barrier = _barrier_from_ai(entry)
        except ValidationError as e:
            logger.debug(f"Skipping malformed AI barrier {entry!r}: {e}")
            continue

        if any(b.type == barrier.type and b.stage == barrier.stage for b in merged):
            continue
        merged.append(barrier)

    return merged


class BarrierPlanner:
    """Maps a provider URL to the ordered barriers its signup flow will show"""

    def __init__(
        self,
        registry: Optional[ProviderRegistry] = None,
        vision: Optional[VisionAnalyzer] = None,
        confidence_boost: float = 0.1
    ):
        self.registry = registry or ProviderRegistry()
        self.vision = vision
        self.confidence_boost = confidence_boost

    def classify(self, provider_url: str) -> str:
        return self.registry.classify(provider_url)

    def baseline_barriers(self, provider_type: str) -> List[Barrier]:
        return self.registry.baseline(provider_type)

    async def plan_barriers(self, provider_url: str, use_ai_enrichment: bool = True) -> Outcome[List[Barrier]]:
        """
        Baseline barriers for the provider, enriched when asked.

        Enrichment failures never propagate: the baseline comes back as a
        degraded outcome instead.
        """
        try:
            provider_type = self.classify(provider_url)
        except ValueError as e:
            logger.error(f"Cannot classify provider URL: {e}")
            return Outcome.fatal(e)

        baseline = self.baseline_barriers(provider_type)
        logger.info(f"Provider type {provider_type}: {len(baseline)} baseline barriers")

        if not use_ai_enrichment:
            return Outcome.ok(baseline)

        if self.vision is None:
            return Outcome.degraded(baseline, "No vision analyzer configured")

        try:
            findings = await self.vision.analyze(provider_url)
        except Exception as e:
            logger.warning(f"AI analysis failed, using base patterns: {e}")
            return Outcome.degraded(baseline, f"AI analysis failed: {e}")

        merged = merge_ai_findings(baseline, findings, self.confidence_boost)
        logger.info(f"AI enrichment added {len(merged) - len(baseline)} barriers")
        return Outcome.ok(merged)
