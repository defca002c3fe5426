"""
Barrier analysis service with a per-session requirements cache
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from ..common.models import (
    BarrierAnalysisRequest,
    BarrierSequenceAnalysis,
    SessionRequirements,
    RequirementCertainty,
    CertaintyEvidence,
    advance_certainty,
    utcnow,
)
from ..common.results import Outcome
from ..common.store import RecordStore
from .barriers import BarrierPlanner
from .flow import aggregate

logger = logging.getLogger(__name__)


class AnalysisNotFoundError(Exception):
    """Raised when no cached analysis exists for a session"""
    pass


class BarrierAnalysisService:
    """
    Answers barrier analysis requests.

    Results are cached in `session_requirements` for `cache_ttl_hours`;
    a forced refresh bypasses and replaces the cached row.
    """

    def __init__(self, store: RecordStore, planner: BarrierPlanner, cache_ttl_hours: int = 24):
        self.store = store
        self.planner = planner
        self.cache_ttl = timedelta(hours=cache_ttl_hours)

    async def cached(self, session_id: str, now: Optional[datetime] = None) -> Optional[SessionRequirements]:
        """Fresh cached requirements for a session, if any"""
        now = now or utcnow()
        record = await self.store.get_session_requirements(session_id)
        if record and record.is_fresh(now):
            return record
        return None

    async def analyze(
        self,
        request: BarrierAnalysisRequest,
        force_refresh: bool = False,
        now: Optional[datetime] = None
    ) -> Outcome[BarrierSequenceAnalysis]:
        now = now or utcnow()

        if not force_refresh:
            record = await self.cached(request.session_id, now)
            if record and record.provider_url == request.provider_url:
                logger.info(f"Using cached barrier analysis for session {request.session_id}")
                return Outcome.ok(record.analysis)

        logger.info(
            f"Analyzing barriers for {request.provider_url} "
            f"(session {request.session_id}, AI {'enabled' if request.use_ai_analysis else 'disabled'})"
        )
        planned = await self.planner.plan_barriers(request.provider_url, request.use_ai_analysis)
        if planned.is_fatal:
            return Outcome.fatal(planned.error)

        barriers = planned.value
        metrics = aggregate(barriers)
        ai_enriched = request.use_ai_analysis and planned.is_ok

        analysis = BarrierSequenceAnalysis(
            provider_url=request.provider_url,
            provider_type=self.planner.classify(request.provider_url),
            session_id=request.session_id,
            barriers=barriers,
            ai_enriched=ai_enriched,
            analyzed_at=now,
            **metrics.model_dump(exclude={"registration_flow"}),
            registration_flow=metrics.registration_flow,
        )

        certainty = RequirementCertainty.ESTIMATED
        if ai_enriched:
            certainty = advance_certainty(certainty, CertaintyEvidence.LIVE_INSPECTION)

        await self.store.put_session_requirements(SessionRequirements(
            session_id=request.session_id,
            provider_url=request.provider_url,
            analysis=analysis,
            analyzed_at=now,
            expires_at=now + self.cache_ttl,
            certainty=certainty,
        ))

        logger.info(
            f"Barrier analysis completed: {analysis.total_barriers} barriers, "
            f"{analysis.estimated_interruptions} interruptions, "
            f"{analysis.total_estimated_time} min, {analysis.overall_complexity}"
        )

        if planned.is_degraded:
            return Outcome.degraded(analysis, planned.reason)
        return Outcome.ok(analysis)

    async def confirm_requirements(
        self,
        session_id: str,
        evidence: CertaintyEvidence
    ) -> SessionRequirements:
        """Raise the certainty of a session's cached requirements by one step"""
        record = await self.store.get_session_requirements(session_id)
        if record is None:
            raise AnalysisNotFoundError(f"No barrier analysis cached for session {session_id}")

        record.certainty = advance_certainty(record.certainty, evidence)
        await self.store.put_session_requirements(record)
        logger.info(f"Session {session_id} requirements now {record.certainty.value}")
        return record
