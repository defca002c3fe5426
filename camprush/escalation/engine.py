"""
Notification escalation engine

Sends templated messages to parents over their preferred channel,
schedules fallback channels, samples engagement at fixed checkpoints
and escalates when a critical message goes unanswered.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from statistics import mean
from typing import Optional, Dict, Any, List, Callable, Awaitable, Set
from pydantic import BaseModel, Field
import pytz

from ..common.config import EscalationConfig
from ..common.models import (
    AuditEvent,
    Barrier,
    BarrierType,
    Channel,
    DispatchRequest,
    ParentProfile,
    Urgency,
    utcnow,
)
from ..common.notifications import NotificationProvider
from ..common.store import RecordStore
from .profiles import (
    CHANNEL_AVG_RESPONSE_MS,
    FallbackStrategy,
    build_strategy,
    fallback_schedule,
    predict_engagement,
)
from .queue import AssistanceQueue, AssistanceRequest
from .registry import EngagementRegistry, EngagementRecord
from .sequence import (
    BarrierNotification,
    BarrierNotificationKind,
    barrier_notification_sequence,
    is_urgent,
)
from .templates import (
    TemplateRegistry,
    difficulty_description,
    estimated_solution_time,
    format_provider_name,
    format_time_remaining,
    map_priority_to_urgency,
)
from .tokens import TokenVault, TokenPurpose

logger = logging.getLogger(__name__)

AUDIT_EVENT_TYPE = "PARENT_NOTIFICATION"
ANALYSIS_EVENT_TYPE = "SMART_NOTIFICATION_ANALYSIS"

TIMEFRAMES = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
}

EscalationHandler = Callable[[EngagementRecord], Awaitable[None]]


class ProfileNotFoundError(Exception):
    """Raised when a notification targets a parent with no profile"""
    pass


@dataclass
class SendResult:
    message_id: str
    channels_used: List[Channel]
    estimated_delivery_ms: int
    engagement_prediction: float
    assistance_request_id: Optional[str] = None


@dataclass
class BarrierNotificationPlan:
    session_id: str
    total_estimated_minutes: int
    queued: List[BarrierNotification] = field(default_factory=list)
    urgent_sent: List[SendResult] = field(default_factory=list)
    skipped: int = 0


class CommunicationMetrics(BaseModel):
    sent: int = 0
    failed: int = 0
    delivered: int = 0
    read: int = 0
    responded: int = 0
    response_rate: float = 0.0
    avg_response_time_ms: Optional[float] = None
    channel_breakdown: Dict[str, int] = Field(default_factory=dict)


class CaptchaContext(BaseModel):
    captcha_id: str
    session_id: str
    provider: str
    urgency: Urgency
    time_remaining_ms: int
    difficulty: str = "medium"
    queue_position: Optional[int] = None
    magic_url: Optional[str] = None


class ApprovalType(str, Enum):
    FORM_COMPLETION = "form_completion"
    CAPTCHA_SOLVING = "captcha_solving"
    PAYMENT_CONFIRMATION = "payment_confirmation"


class ApprovalContext(BaseModel):
    workflow_id: str
    type: ApprovalType
    title: str
    description: str
    priority: str = "normal"
    expires_at: datetime
    action_url: Optional[str] = None


class NotificationEscalationEngine:
    """
    Multi-channel parent notifications with engagement tracking.

    Follow-up timers run as asyncio tasks keyed by message id. Every
    follow-up is claimed in the engagement registry before it acts, so
    duplicate or late timers are harmless.
    """

    def __init__(
        self,
        config: EscalationConfig,
        store: RecordStore,
        providers: Dict[Channel, NotificationProvider],
        registry: Optional[EngagementRegistry] = None,
        templates: Optional[TemplateRegistry] = None,
        tokens: Optional[TokenVault] = None,
        queue: Optional[AssistanceQueue] = None,
        escalation_handler: Optional[EscalationHandler] = None
    ):
        self.config = config
        self.store = store
        self.providers = providers
        self.registry = registry or EngagementRegistry()
        self.templates = templates or TemplateRegistry()
        self.tokens = tokens or TokenVault(config.token_ttl_minutes)
        self.queue = queue or AssistanceQueue()
        self.escalation_handler = escalation_handler
        self._tasks: Dict[str, Set[asyncio.Task]] = {}

    # ========================================
    # Sending
    # ========================================

    async def _profile(self, user_id: str) -> ParentProfile:
        profile = await self.store.get_parent_profile(user_id)
        if profile is None:
            raise ProfileNotFoundError(f"No parent profile for user {user_id}")
        return profile

    async def send(
        self,
        user_id: str,
        template_id: str,
        urgency: Urgency,
        data: Optional[Dict[str, Any]] = None,
        fallback_strategy: FallbackStrategy = FallbackStrategy.ESCALATED,
        now: Optional[datetime] = None
    ) -> SendResult:
        """Send on the primary channel and arrange fallbacks and tracking"""
        logger.info(f"Sending notification to user {user_id} with template {template_id}")
        now = now or utcnow()
        data = data or {}

        profile = await self._profile(user_id)
        self.templates.get(template_id)
        strategy = build_strategy(profile, urgency, self.config)
        message_id = str(uuid.uuid4())

        await self.dispatch(
            DispatchRequest(
                user_id=user_id,
                template_id=template_id,
                channel=strategy.primary_channel,
                data=data,
                message_id=message_id,
            ),
            profile,
            urgency,
        )

        channels_used = [strategy.primary_channel]
        immediate = []
        for channel, delay in fallback_schedule(strategy, fallback_strategy, self.config):
            request = DispatchRequest(
                user_id=user_id,
                template_id=template_id,
                channel=channel,
                data=data,
                message_id=message_id,
            )
            if delay <= 0:
                immediate.append(self.dispatch(request, profile, urgency))
            else:
                self._schedule(message_id, delay, lambda r=request: self.dispatch(r, profile, urgency))
            channels_used.append(channel)

        if immediate:
            await asyncio.gather(*immediate)

        await self.store.enqueue_notification({
            "message_id": message_id,
            "user_id": user_id,
            "template_id": template_id,
            "urgency": urgency.value,
            "channels": [c.value for c in channels_used],
            "status": "sent",
            "created_at": now.isoformat(),
        })

        record = EngagementRecord(
            message_id=message_id,
            user_id=user_id,
            template_id=template_id,
            urgency=urgency,
            data=data,
            sent_at=now,
            strategy=strategy,
        )
        await self.start_tracking(record)

        return SendResult(
            message_id=message_id,
            channels_used=channels_used,
            estimated_delivery_ms=CHANNEL_AVG_RESPONSE_MS.get(strategy.primary_channel, 60000),
            engagement_prediction=predict_engagement(profile, strategy, urgency, now),
        )

    async def dispatch(
        self,
        request: DispatchRequest,
        profile: ParentProfile,
        urgency: Optional[Urgency] = None
    ) -> bool:
        """
        Deliver one message over one channel.

        The outcome is written to the compliance audit trail. Failures
        are not retried here; fallback channels cover that.
        """
        template = self.templates.get(request.template_id)
        payload = template.payload(
            request.channel,
            request.data,
            recipient=profile.recipient_for(request.channel),
            urgency=urgency,
            message_id=request.message_id,
        )
        if payload is None:
            logger.debug(f"Template {template.id} has no {request.channel.value} content")
            return False

        provider = self.providers.get(request.channel)
        if provider is None:
            logger.warning(f"No provider configured for {request.channel.value}")
            success = False
        else:
            success = await provider.send(payload)

        if not success:
            logger.error(f"Failed to send {request.channel.value} notification {request.message_id}")
        await self._audit(request.user_id, request.message_id, request.channel, "sent" if success else "failed")
        return success

    async def _audit(self, user_id: str, message_id: str, channel: Channel, status: str):
        event = AuditEvent(
            user_id=user_id,
            event_type=AUDIT_EVENT_TYPE,
            event_data={
                "message_id": message_id,
                "channel": channel.value,
                "status": status,
                "timestamp": utcnow().isoformat(),
            },
            payload_summary=f"Parent notification {status} via {channel.value}",
        )
        try:
            await self.store.append_audit(event)
        except OSError as e:
            logger.warning(f"Failed to log notification event: {e}")

    # ========================================
    # Tracking and follow-ups
    # ========================================

    def _schedule(self, message_id: str, delay_seconds: float, action: Callable[[], Awaitable[Any]]):
        async def run():
            await asyncio.sleep(delay_seconds)
            try:
                await action()
            except Exception as e:
                logger.exception(f"Follow-up for message {message_id} failed: {e}")

        def done(task: asyncio.Task):
            tasks.discard(task)
            if not tasks and self._tasks.get(message_id) is tasks:
                del self._tasks[message_id]

        task = asyncio.create_task(run())
        tasks = self._tasks.setdefault(message_id, set())
        tasks.add(task)
        task.add_done_callback(done)

    def pending_tasks(self, message_id: str) -> int:
        return len(self._tasks.get(message_id, ()))

    async def start_tracking(self, record: EngagementRecord):
        await self.registry.prune(
            record.sent_at - timedelta(seconds=self.config.tracking_retention_seconds),
            keep=set(self._tasks),
        )
        await self.registry.register(record)

        for seconds in self.config.checkpoints_seconds:
            self._schedule(
                record.message_id, seconds,
                lambda s=seconds: self.check_engagement(record.message_id, s)
            )

        if record.strategy.auto_escalation and record.strategy.escalation_delay_ms:
            self._schedule(
                record.message_id, record.strategy.escalation_delay_ms / 1000,
                lambda: self.handle_auto_escalation(record.message_id)
            )

    async def record_response(
        self,
        message_id: str,
        delivered: bool = False,
        read: bool = False,
        responded: bool = False
    ) -> Optional[EngagementRecord]:
        """Apply a delivery receipt from a provider webhook or the parent's click"""
        record = await self.registry.record_receipt(message_id, delivered, read, responded)
        if record is None:
            logger.warning(f"Receipt for untracked message {message_id}")
            return None

        channel = record.strategy.primary_channel
        for status, flag in (("delivered", delivered), ("read", read), ("responded", responded)):
            if flag:
                await self._audit(record.user_id, message_id, channel, status)
        return record

    async def check_engagement(self, message_id: str, checkpoint_seconds: float):
        """Sample receipts at a checkpoint and trigger fallback or reminder"""
        record = self.registry.get(message_id)
        if record is None or record.response_received:
            return

        checkpoint = await self.registry.record_checkpoint(message_id, checkpoint_seconds)
        if checkpoint is None:
            return

        if (
            not checkpoint.delivered
            and checkpoint_seconds == self.config.fallback_checkpoint_seconds
            and await self.registry.claim(message_id, "fallback_triggered")
        ):
            await self.trigger_fallback(record)

        if (
            checkpoint.read
            and not checkpoint.responded
            and checkpoint_seconds == self.config.reminder_checkpoint_seconds
            and await self.registry.claim(message_id, "reminder_sent")
        ):
            await self.send_reminder(record)

    def _follow_up_data(self, record: EngagementRecord) -> Dict[str, Any]:
        data = dict(record.data)
        data.setdefault("action_url", data.get("magic_url"))
        return data

    async def trigger_fallback(self, record: EngagementRecord):
        logger.info(f"Triggering fallback communication for message {record.message_id}")
        if not record.strategy.fallback_channels:
            logger.info(f"No fallback channel for message {record.message_id}")
            return

        profile = await self._profile(record.user_id)
        await self.dispatch(
            DispatchRequest(
                user_id=record.user_id,
                template_id=record.template_id,
                channel=record.strategy.fallback_channels[0],
                data=record.data,
                message_id=record.message_id,
            ),
            profile,
            record.urgency,
        )

    async def send_reminder(self, record: EngagementRecord):
        logger.info(f"Sending engagement reminder for message {record.message_id}")
        profile = await self._profile(record.user_id)
        await self.dispatch(
            DispatchRequest(
                user_id=record.user_id,
                template_id="engagement_reminder",
                channel=record.strategy.primary_channel,
                data=self._follow_up_data(record),
                message_id=record.message_id,
            ),
            profile,
            record.urgency,
        )

    async def handle_auto_escalation(self, message_id: str) -> bool:
        """Escalate an unanswered message; True only for the call that escalated"""
        if not await self.registry.claim(message_id, "escalated"):
            return False

        record = self.registry.get(message_id)
        logger.info(f"Handling auto-escalation for message {message_id}")

        if self.escalation_handler:
            await self.escalation_handler(record)
            return True

        profile = await self._profile(record.user_id)
        channels = record.strategy.fallback_channels or [record.strategy.primary_channel]
        await asyncio.gather(*[
            self.dispatch(
                DispatchRequest(
                    user_id=record.user_id,
                    template_id="escalation",
                    channel=channel,
                    data=self._follow_up_data(record),
                    message_id=message_id,
                ),
                profile,
                Urgency.CRITICAL,
            )
            for channel in channels
        ])
        return True

    async def shutdown(self):
        """Cancel every pending follow-up timer"""
        tasks = [t for group in self._tasks.values() for t in group]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ========================================
    # Barrier notifications
    # ========================================

    @staticmethod
    def _barrier_data(barrier: Barrier, session_id: str, total_minutes: int) -> Dict[str, Any]:
        return {
            "session_id": session_id,
            "barrier_label": barrier.type.value.replace("_", " "),
            "stage_label": barrier.stage.value.replace("_", " "),
            "description": barrier.description,
            "estimated_minutes": barrier.estimated_time_minutes,
            "total_minutes": total_minutes,
        }

    async def schedule_barrier_notifications(
        self,
        user_id: str,
        session_id: str,
        barriers: List[Barrier],
        now: Optional[datetime] = None
    ) -> BarrierNotificationPlan:
        """
        Queue pre-barrier and at-barrier notices for a signup flow.

        Barriers likely to need the parent right away also get an
        immediate heads-up. Every notice is written to the notification
        queue with the channel the parent's preferences pick for its
        priority. Pre-barrier notices already in the past are stored as
        skipped; the rest are sent by timers keyed by the session id.
        """
        now = now or utcnow()
        profile = await self._profile(user_id)
        sequence, total_minutes = barrier_notification_sequence(barriers, now)
        urgent = [b for b in barriers if is_urgent(b)]
        plan = BarrierNotificationPlan(session_id=session_id, total_estimated_minutes=total_minutes)

        logger.info(
            f"Scheduling {len(sequence)} barrier notifications for session {session_id} "
            f"({len(urgent)} urgent)"
        )

        for barrier in urgent:
            plan.urgent_sent.append(await self.send(
                user_id,
                "barrier_urgent",
                Urgency.HIGH,
                data=self._barrier_data(barrier, session_id, total_minutes),
                now=now,
            ))

        for notification in sequence:
            delay = (notification.scheduled_at - now).total_seconds()
            skipped = notification.kind == BarrierNotificationKind.PRE_BARRIER and delay < 0
            entry_id = str(uuid.uuid4())
            strategy = build_strategy(profile, notification.urgency, self.config)

            await self.store.enqueue_notification({
                "id": entry_id,
                "user_id": user_id,
                "session_id": session_id,
                "notification_type": notification.kind.value,
                "barrier_info": notification.barrier.model_dump(mode="json"),
                "scheduled_at": notification.scheduled_at.isoformat(),
                "priority": notification.priority,
                "channel": strategy.primary_channel.value,
                "status": "skipped" if skipped else "queued",
                "created_at": now.isoformat(),
            })

            if skipped:
                plan.skipped += 1
                continue
            plan.queued.append(notification)
            self._schedule(
                session_id, max(delay, 0.0),
                lambda n=notification, e=entry_id: self._send_barrier_notification(
                    user_id, session_id, n, e, total_minutes
                )
            )

        event = AuditEvent(
            user_id=user_id,
            event_type=ANALYSIS_EVENT_TYPE,
            event_data={
                "session_id": session_id,
                "total_barriers": len(barriers),
                "urgent_barriers": len(urgent),
                "notification_sequence_length": len(plan.queued),
                "total_estimated_minutes": total_minutes,
                "timestamp": now.isoformat(),
            },
            payload_summary=f"Smart notification analysis: {len(barriers)} barriers, {len(urgent)} urgent",
        )
        try:
            await self.store.append_audit(event)
        except OSError as e:
            logger.warning(f"Failed to log notification analysis: {e}")

        return plan

    async def _send_barrier_notification(
        self,
        user_id: str,
        session_id: str,
        notification: BarrierNotification,
        entry_id: str,
        total_minutes: int
    ):
        template_id = (
            "barrier_upcoming" if notification.kind == BarrierNotificationKind.PRE_BARRIER
            else "barrier_now"
        )
        result = await self.send(
            user_id,
            template_id,
            notification.urgency,
            data=self._barrier_data(notification.barrier, session_id, total_minutes),
        )
        await self.store.update_notification(entry_id, status="sent", message_id=result.message_id)

    # ========================================
    # CAPTCHA and approval helpers
    # ========================================

    def expected_response_ms(self, urgency: Urgency) -> int:
        return self.config.expected_response_ms.get(urgency.value, 300000)

    async def _assist_url(
        self,
        purpose: TokenPurpose,
        subject_id: str,
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None
    ) -> str:
        token = await self.tokens.issue(purpose, subject_id, ttl=ttl, now=now)
        return f"{self.config.assist_base_url.rstrip('/')}/{purpose.value}/{token.token}"

    async def send_captcha_assistance(self, user_id: str, context: CaptchaContext) -> SendResult:
        """
        Ask a parent to solve a CAPTCHA.

        Without a caller-supplied queue position the request joins the
        assistance queue and its place there is reported to the parent.
        """
        logger.info(f"Sending CAPTCHA assistance notification for session {context.session_id}")

        request_id = None
        if context.queue_position is None:
            request = await self.queue.enqueue(AssistanceRequest(
                session_id=context.session_id,
                user_id=user_id,
                barrier_type=BarrierType.CAPTCHA,
                context={"captcha_id": context.captcha_id, "provider": context.provider},
            ))
            request_id = request.id
            context = context.model_copy(update={"queue_position": self.queue.position(request.id)})

        if context.urgency == Urgency.CRITICAL and context.queue_position and context.queue_position < 10:
            template_id = "captcha_assistance_critical"
        else:
            template_id = "captcha_assistance_high"

        magic_url = context.magic_url or await self._assist_url(
            TokenPurpose.CAPTCHA,
            context.captcha_id,
            ttl=timedelta(milliseconds=max(context.time_remaining_ms, 0)),
        )
        provider_name = format_provider_name(context.provider)
        help_context = f"Automated signup paused for {provider_name}. "
        if context.queue_position:
            help_context += f"You're position {context.queue_position} in queue. "
        help_context += "Quick action preserves your spot!"

        result = await self.send(
            user_id,
            template_id,
            context.urgency,
            data={
                "provider_name": provider_name,
                "magic_url": magic_url,
                "time_remaining": format_time_remaining(context.time_remaining_ms),
                "queue_position": context.queue_position,
                "difficulty_description": difficulty_description(context.difficulty),
                "estimated_time": estimated_solution_time(context.difficulty),
                "help_context": help_context,
            },
            fallback_strategy=(
                FallbackStrategy.IMMEDIATE if context.urgency == Urgency.CRITICAL
                else FallbackStrategy.STAGGERED
            ),
        )
        result.assistance_request_id = request_id
        return result

    async def send_approval(self, user_id: str, context: ApprovalContext, now: Optional[datetime] = None) -> SendResult:
        logger.info(f"Sending approval workflow notification for {context.workflow_id}")
        now = now or utcnow()
        urgency = map_priority_to_urgency(context.priority)
        profile = await self._profile(user_id)

        action_url = context.action_url or await self._assist_url(
            TokenPurpose.APPROVAL,
            context.workflow_id,
            ttl=max(context.expires_at - now, timedelta(0)),
            now=now,
        )
        try:
            tz = pytz.timezone(profile.timezone)
        except pytz.UnknownTimeZoneError:
            tz = pytz.UTC

        return await self.send(
            user_id,
            f"approval_{context.type.value}",
            urgency,
            data={
                "workflow_type": context.type.value.replace("_", " "),
                "title": context.title,
                "description": context.description,
                "action_url": action_url,
                "expires_at": context.expires_at.astimezone(tz).strftime("%b %d, %I:%M %p %Z"),
                "time_remaining": format_time_remaining(
                    (context.expires_at - now).total_seconds() * 1000
                ),
                "expected_response_ms": self.expected_response_ms(urgency),
            },
            fallback_strategy=(
                FallbackStrategy.IMMEDIATE if urgency == Urgency.CRITICAL
                else FallbackStrategy.ESCALATED
            ),
            now=now,
        )

    # ========================================
    # Metrics
    # ========================================

    async def communication_metrics(
        self,
        user_id: Optional[str] = None,
        timeframe: str = "day",
        now: Optional[datetime] = None
    ) -> CommunicationMetrics:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe {timeframe!r}; use one of {', '.join(TIMEFRAMES)}")

        now = now or utcnow()
        events = await self.store.audit_events(AUDIT_EVENT_TYPE, since=now - TIMEFRAMES[timeframe], user_id=user_id)

        metrics = CommunicationMetrics()
        sent_at: Dict[str, datetime] = {}
        responded_at: Dict[str, datetime] = {}

        for event in events:
            status = event.event_data.get("status")
            channel = event.event_data.get("channel", "unknown")
            message_id = event.event_data.get("message_id")
            metrics.channel_breakdown[channel] = metrics.channel_breakdown.get(channel, 0) + 1

            if status in ("sent", "failed", "delivered", "read", "responded"):
                setattr(metrics, status, getattr(metrics, status) + 1)
            if status == "sent" and message_id:
                sent_at.setdefault(message_id, event.created_at)
            if status == "responded" and message_id:
                responded_at.setdefault(message_id, event.created_at)

        if metrics.sent:
            metrics.response_rate = metrics.responded / metrics.sent

        durations = [
            (responded_at[mid] - sent_at[mid]).total_seconds() * 1000
            for mid in responded_at if mid in sent_at
        ]
        if durations:
            metrics.avg_response_time_ms = mean(durations)
        return metrics
