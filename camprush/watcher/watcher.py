"""
Open watcher: the poll tick for monitored registration plans

Each tick walks every monitored plan, asks the scheduler whether its
detection URL is due, and if so fetches and inspects the page. When a
page shows registration open, the plan is activated and registrations
are created for every mapped child and session.
"""
import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, List

from ..common.config import Config
from ..common.models import (
    RegistrationPlan,
    PlanStatus,
    DetectionSignal,
    OpenDetectionLog,
    Registration,
    utcnow,
)
from ..common.scheduler import AdaptivePollScheduler, PollDecision
from ..common.store import RecordStore, StoreError
from .detector import OpenDetector, extract_registration_time
from .fetcher import PageFetcher, FetchError, RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    polled: int = 0
    skipped: int = 0
    total: int = 0
    rate_limited: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CheckResult:
    signal: DetectionSignal
    rate_limited: bool = False
    activated: bool = False
    registrations_created: int = 0


class OpenWatcher:
    """Runs poll ticks against the record store"""

    def __init__(
        self,
        config: Config,
        store: RecordStore,
        fetcher: Optional[PageFetcher] = None,
        detector: Optional[OpenDetector] = None,
        scheduler: Optional[AdaptivePollScheduler] = None
    ):
        self.config = config
        self.store = store
        self.fetcher = fetcher or PageFetcher(config.watcher)
        self.detector = detector or OpenDetector()
        self.scheduler = scheduler or AdaptivePollScheduler(config.watcher.default_timezone)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.fetcher.close()

    # ========================================
    # Tick
    # ========================================

    async def run_tick(self, now: Optional[datetime] = None) -> TickSummary:
        """Process every monitored plan once, sequentially"""
        now = now or utcnow()
        plans = await self.store.list_monitoring_plans()
        summary = TickSummary(total=len(plans))

        if not plans:
            logger.info("No active monitoring plans found")
            return summary

        for plan in plans:
            try:
                last_check_at = await self.store.last_check_at(plan.id)
                decision = self.scheduler.schedule(plan, last_check_at, now)

                if not decision.should_poll:
                    summary.skipped += 1
                    logger.info(
                        f"Skipped plan {plan.id}: {decision.reason}, "
                        f"next check at {decision.next_check_at.isoformat()}"
                    )
                    continue

                result = await self.perform_check(plan, decision, now)
                summary.polled += 1
                if result.rate_limited:
                    summary.rate_limited += 1
                logger.info(f"Polled plan {plan.id}: {decision.reason}")
            except Exception as e:
                # One bad plan must not stop the batch
                logger.exception(f"Error processing plan {plan.id}: {e}")

        logger.info(
            f"Adaptive polling completed: {summary.polled} polled, "
            f"{summary.skipped} skipped, {summary.total} total"
        )
        return summary

    async def run(self, iterations: Optional[int] = None):
        """Tick at the configured fixed interval"""
        count = 0
        while iterations is None or count < iterations:
            await self.run_tick()
            count += 1
            if iterations is None or count < iterations:
                await asyncio.sleep(self.config.watcher.tick_seconds)

    # ========================================
    # Single check
    # ========================================

    async def _log(self, plan: RegistrationPlan, seen_at: datetime, signal: DetectionSignal, note: str):
        await self.store.append_detection_log(
            OpenDetectionLog(plan_id=plan.id, seen_at=seen_at, signal=signal, note=note)
        )

    async def perform_check(
        self,
        plan: RegistrationPlan,
        decision: PollDecision,
        now: Optional[datetime] = None
    ) -> CheckResult:
        """Fetch the plan's detection URL and record what was seen"""
        check_time = now or utcnow()

        try:
            page = await self.fetcher.fetch(plan.detect_url)
        except RateLimitedError as e:
            retry = f", retry after {e.retry_after:g}s" if e.retry_after is not None else ""
            logger.warning(f"Rate limited polling {plan.detect_url}{retry}")
            await self._log(plan, check_time, DetectionSignal.ERROR, f"Rate limited{retry}")
            return CheckResult(signal=DetectionSignal.ERROR, rate_limited=True)
        except FetchError as e:
            logger.error(f"Failed to check {plan.detect_url}: {e}")
            await self._log(plan, check_time, DetectionSignal.ERROR, f"Polling error: {e}")
            return CheckResult(signal=DetectionSignal.ERROR)

        detection = self.detector.analyze(page.text, page.status_code)
        extraction = extract_registration_time(page.text, plan.timezone, check_time)

        min_confidence = self.config.watcher.time_extraction_min_confidence
        if extraction.extracted_time and extraction.confidence > min_confidence:
            await self.store.set_manual_open_at(plan.id, extraction.extracted_time)
            logger.info(
                f"Updated plan {plan.id} open time to {extraction.extracted_time.isoformat()} "
                f"(confidence {extraction.confidence})"
            )

        if detection.is_open:
            signal = DetectionSignal.OPEN_DETECTED
        elif extraction.extracted_time:
            signal = DetectionSignal.TIME_EXTRACTED
        else:
            signal = DetectionSignal.CLOSED_DETECTED

        if extraction.extracted_time:
            note = (
                f"Time extracted: {extraction.matched_text} -> "
                f"{extraction.extracted_time.isoformat()} (confidence: {extraction.confidence})"
            )
        else:
            note = f"Adaptive polling: {decision.reason}. Status: {page.status_code}"
        await self._log(plan, check_time, signal, note)

        result = CheckResult(signal=signal)
        if not detection.is_open:
            return result

        logger.info(f"REGISTRATION OPEN detected for plan {plan.id}!")
        result.activated = await self.store.transition_plan_status(
            plan.id, PlanStatus.MONITORING, PlanStatus.ACTIVE
        )
        if not result.activated:
            logger.info(f"Plan {plan.id} was already activated elsewhere")
            return result

        result.registrations_created = await self.create_registrations(plan, check_time)
        return result

    # ========================================
    # Registrations
    # ========================================

    async def create_registrations(self, plan: RegistrationPlan, now: Optional[datetime] = None) -> int:
        """
        Create one immediate registration per mapped (child, session).

        Pairs that already have a registration for the plan's user are
        skipped, so calling this twice creates nothing new.
        """
        now = now or utcnow()
        try:
            mappings = await self.store.child_mappings(plan.id)
            if not mappings:
                logger.info(f"No child mappings found for plan {plan.id}")
                return 0

            registrations: List[Registration] = []
            for mapping in mappings:
                for session_id in mapping.session_ids:
                    if await self.store.registration_exists(plan.user_id, mapping.child_id, session_id):
                        logger.info(
                            f"Registration already exists for child {mapping.child_id}, session {session_id}"
                        )
                        continue
                    registrations.append(Registration(
                        user_id=plan.user_id,
                        plan_id=plan.id,
                        child_id=mapping.child_id,
                        session_id=session_id,
                        scheduled_time=now,
                        priority_opt_in=mapping.priority == 0,
                    ))

            if not registrations:
                logger.info(f"No new registrations to create for plan {plan.id}")
                return 0

            inserted = await self.store.insert_registrations(registrations)
            logger.info(f"Created {len(inserted)} immediate registrations for plan {plan.id}")
            await self._log(
                plan, now, DetectionSignal.REGISTRATIONS_CREATED,
                f"Created {len(inserted)} immediate registrations"
            )
            return len(inserted)

        except (StoreError, OSError, ValueError) as e:
            logger.error(f"Error creating immediate registrations for plan {plan.id}: {e}")
            await self._log(
                plan, now, DetectionSignal.CREATION_ERROR,
                f"Failed to create registrations: {e}"
            )
            return 0
