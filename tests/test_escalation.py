"""
Tests for parent notification escalation (camprush/escalation)
"""
import asyncio
import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytz

from camprush.common.config import EscalationConfig
from camprush.common.models import Barrier, BarrierStage, BarrierType, Channel, ParentProfile, Urgency
from camprush.escalation.engine import (
    ANALYSIS_EVENT_TYPE,
    ApprovalContext,
    ApprovalType,
    CaptchaContext,
    NotificationEscalationEngine,
    ProfileNotFoundError,
)
from camprush.escalation.profiles import (
    DeliveryStrategy,
    FallbackStrategy,
    build_strategy,
    fallback_schedule,
    predict_engagement,
)
from camprush.escalation.registry import EngagementRecord, EngagementRegistry
from camprush.escalation.sequence import BarrierNotificationKind, barrier_notification_sequence
from camprush.escalation.templates import (
    TemplateNotFoundError,
    TemplateRegistry,
    format_provider_name,
    format_time_remaining,
    map_priority_to_urgency,
    render,
)
from camprush.escalation.tokens import TokenExpiredError, TokenPurpose


def provider():
    mock = MagicMock()
    mock.send = AsyncMock(return_value=True)
    return mock


def sent_payloads(mock):
    return [call.args[0] for call in mock.send.await_args_list]


@pytest.fixture()
def escalation_config():
    # Real timers only where a test asks for them
    return EscalationConfig(
        checkpoints_seconds=[],
        escalated_fallback_seconds=3600,
        stagger_seconds=3600,
        critical_escalation_delay_ms=3600000,
    )


@pytest.fixture()
def providers():
    return {Channel.SMS: provider(), Channel.EMAIL: provider(), Channel.PUSH: provider()}


@pytest_asyncio.fixture()
async def engine(escalation_config, store, providers, parent):
    await store.save_parent_profile(parent)
    engine = NotificationEscalationEngine(escalation_config, store, providers)
    yield engine
    await engine.shutdown()


class TestDeliveryStrategy:
    def test_critical_strategy(self, parent):
        strategy = build_strategy(parent, Urgency.CRITICAL)
        assert strategy.primary_channel == Channel.SMS
        assert strategy.fallback_channels == [Channel.EMAIL]
        assert strategy.immediate is True
        assert strategy.auto_escalation is True
        assert strategy.respect_quiet_hours is False
        assert strategy.escalation_delay_ms == 60000

    def test_high_strategy(self, parent):
        strategy = build_strategy(parent, Urgency.HIGH)
        assert strategy.staggered is True
        assert strategy.auto_escalation is False
        assert strategy.escalation_delay_ms == 300000

    def test_low_urgency_goes_to_email(self, parent):
        strategy = build_strategy(parent, Urgency.LOW)
        assert strategy.primary_channel == Channel.EMAIL
        assert strategy.fallback_channels == []

    @pytest.mark.parametrize("fallback, delays", [
        (FallbackStrategy.IMMEDIATE, [0, 0]),
        (FallbackStrategy.STAGGERED, [30, 60]),
        (FallbackStrategy.ESCALATED, [60, 60]),
    ])
    def test_fallback_schedule(self, fallback, delays):
        strategy = DeliveryStrategy(primary_channel=Channel.SMS, fallback_channels=[Channel.EMAIL, Channel.PUSH])
        schedule = fallback_schedule(strategy, fallback, EscalationConfig())
        assert schedule == list(zip([Channel.EMAIL, Channel.PUSH], delays))


class TestPredictEngagement:
    def test_outside_business_hours(self):
        profile = ParentProfile.from_contact("u", email="p@example.com", response_rate=0.3)
        strategy = build_strategy(profile, Urgency.LOW)
        night = pytz.UTC.localize(datetime(2030, 3, 1, 8))  # 2am in Chicago
        # email is also the last active channel for this profile
        assert predict_engagement(profile, strategy, Urgency.LOW, night) == pytest.approx(0.4)

    def test_business_hours_and_urgency(self):
        profile = ParentProfile.from_contact("u", email="p@example.com", response_rate=0.3)
        strategy = build_strategy(profile, Urgency.HIGH)
        morning = pytz.UTC.localize(datetime(2030, 3, 1, 16))  # 10am in Chicago
        assert predict_engagement(profile, strategy, Urgency.HIGH, morning) == pytest.approx(0.4)

    def test_clamped(self, parent):
        strategy = build_strategy(parent, Urgency.CRITICAL)
        assert predict_engagement(parent, strategy, Urgency.CRITICAL) == 0.95

        silent = ParentProfile.from_contact("u", email="p@example.com", response_rate=0.0)
        silent.last_active_channel = None
        night = pytz.UTC.localize(datetime(2030, 3, 1, 8))
        assert predict_engagement(silent, build_strategy(silent, Urgency.LOW), Urgency.LOW, night) == 0.1


class TestTemplates:
    def test_render_fills_and_blanks(self):
        assert render("Hi {{ name }}, {{missing}}!", {"name": "Sam"}) == "Hi Sam, !"

    def test_sms_truncated(self):
        template = TemplateRegistry().get("captcha_assistance_high")
        payload = template.payload(Channel.SMS, {"provider_name": "X" * 300, "magic_url": "https://a"})
        assert len(payload.message) == 160
        assert payload.url == "https://a"

    def test_unknown_template(self):
        with pytest.raises(TemplateNotFoundError):
            TemplateRegistry().get("nope")

    def test_template_without_channel_content(self):
        template = TemplateRegistry().get("escalation").model_copy(update={"push_title": None})
        assert template.payload(Channel.PUSH, {}) is None

    @pytest.mark.parametrize("provider_type, name", [
        ("ymca", "YMCA"),
        ("camp_brain", "CampBrain"),
        ("community_pass", "COMMUNITY PASS"),
    ])
    def test_provider_names(self, provider_type, name):
        assert format_provider_name(provider_type) == name

    @pytest.mark.parametrize("ms, text", [
        (30000, "less than 1 min"),
        (60000, "1 min"),
        (300000, "5 mins"),
        (5400000, "1h 30m"),
    ])
    def test_time_remaining(self, ms, text):
        assert format_time_remaining(ms) == text

    def test_priority_mapping(self):
        assert map_priority_to_urgency("urgent") == Urgency.CRITICAL
        assert map_priority_to_urgency("whatever") == Urgency.MEDIUM


class TestEngagementRegistry:
    @pytest.fixture()
    def record(self, parent):
        return EngagementRecord(
            message_id="m1",
            user_id=parent.user_id,
            template_id="escalation",
            urgency=Urgency.CRITICAL,
            strategy=build_strategy(parent, Urgency.CRITICAL),
        )

    @pytest.mark.asyncio
    async def test_claim_once(self, record):
        registry = EngagementRegistry()
        await registry.register(record)
        results = await asyncio.gather(*[registry.claim("m1", "escalated") for _ in range(5)])
        assert results.count(True) == 1

    @pytest.mark.asyncio
    async def test_response_blocks_claims(self, record):
        registry = EngagementRegistry()
        await registry.register(record)
        await registry.record_receipt("m1", responded=True)
        assert registry.get("m1").delivered and registry.get("m1").read
        assert await registry.claim("m1", "fallback_triggered") is False

    @pytest.mark.asyncio
    async def test_unknown_action(self, record):
        registry = EngagementRegistry()
        await registry.register(record)
        with pytest.raises(ValueError):
            await registry.claim("m1", "responded")

    @pytest.mark.asyncio
    async def test_checkpoint_taken_once(self, record):
        registry = EngagementRegistry()
        await registry.register(record)
        assert await registry.record_checkpoint("m1", 60) is not None
        assert await registry.record_checkpoint("m1", 60) is None
        assert await registry.record_checkpoint("unknown", 60) is None

    @pytest.mark.asyncio
    async def test_prune_forgets_old_records(self, record, now):
        registry = EngagementRegistry()
        await registry.register(record.model_copy(update={"message_id": "old", "sent_at": now - timedelta(hours=2)}))
        await registry.register(record.model_copy(update={"message_id": "busy", "sent_at": now - timedelta(hours=2)}))
        await registry.register(record.model_copy(update={"message_id": "new", "sent_at": now}))

        assert await registry.prune(now - timedelta(hours=1), keep={"busy"}) == 1

        assert registry.get("old") is None
        assert registry.get("busy") is not None
        assert len(registry) == 2


class TestSend:
    @pytest.mark.asyncio
    async def test_primary_then_scheduled_fallback(self, engine, providers, store):
        result = await engine.send("user-1", "approval_form_completion", Urgency.MEDIUM, {"title": "Waiver"})

        assert result.channels_used == [Channel.SMS, Channel.EMAIL]
        payload = sent_payloads(providers[Channel.SMS])[0]
        assert payload.recipient == "+15555550100"
        assert payload.message_id == result.message_id
        assert "Waiver" in payload.message
        providers[Channel.EMAIL].send.assert_not_called()
        assert engine.pending_tasks(result.message_id) == 1

        queued = await store.queued_notifications("user-1")
        assert queued[0]["channels"] == ["sms", "email"]
        audit = await store.audit_events("PARENT_NOTIFICATION")
        assert [e.event_data["status"] for e in audit] == ["sent"]

    @pytest.mark.asyncio
    async def test_immediate_fallback_sends_together(self, engine, providers):
        await engine.send(
            "user-1", "escalation", Urgency.HIGH, {"action_url": "https://a"},
            fallback_strategy=FallbackStrategy.IMMEDIATE,
        )
        providers[Channel.SMS].send.assert_awaited_once()
        email = sent_payloads(providers[Channel.EMAIL])[0]
        assert email.recipient == "parent@example.com"
        assert email.url == "https://a"

    @pytest.mark.asyncio
    async def test_failed_send_is_audited_not_retried(self, engine, providers, store):
        providers[Channel.SMS].send.return_value = False
        await engine.send("user-1", "escalation", Urgency.MEDIUM)
        providers[Channel.SMS].send.assert_awaited_once()
        audit = await store.audit_events("PARENT_NOTIFICATION")
        assert audit[0].event_data["status"] == "failed"

    @pytest.mark.asyncio
    async def test_missing_provider(self, escalation_config, store, parent):
        await store.save_parent_profile(parent)
        engine = NotificationEscalationEngine(escalation_config, store, {})
        await engine.send("user-1", "escalation", Urgency.LOW)
        audit = await store.audit_events("PARENT_NOTIFICATION")
        assert audit[0].event_data["status"] == "failed"
        assert audit[0].event_data["channel"] == "email"
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_parent(self, engine):
        with pytest.raises(ProfileNotFoundError):
            await engine.send("nobody", "escalation", Urgency.LOW)

    @pytest.mark.asyncio
    async def test_unknown_template(self, engine, providers):
        with pytest.raises(TemplateNotFoundError):
            await engine.send("user-1", "nope", Urgency.LOW)
        providers[Channel.EMAIL].send.assert_not_called()


class TestFollowUps:
    @pytest.mark.asyncio
    async def test_fallback_when_undelivered(self, engine, providers):
        result = await engine.send("user-1", "escalation", Urgency.MEDIUM)

        await engine.check_engagement(result.message_id, 60)
        await engine.check_engagement(result.message_id, 60)

        providers[Channel.EMAIL].send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_fallback_once_delivered(self, engine, providers):
        result = await engine.send("user-1", "escalation", Urgency.MEDIUM)
        await engine.record_response(result.message_id, delivered=True)

        await engine.check_engagement(result.message_id, 60)

        providers[Channel.EMAIL].send.assert_not_called()

    @pytest.mark.asyncio
    async def test_reminder_when_read_but_unanswered(self, engine, providers):
        result = await engine.send("user-1", "escalation", Urgency.MEDIUM, {"action_url": "https://a"})
        await engine.record_response(result.message_id, read=True)

        await engine.check_engagement(result.message_id, 120)

        reminders = sent_payloads(providers[Channel.SMS])[1:]
        assert len(reminders) == 1
        assert reminders[0].title == "Reminder"

    @pytest.mark.asyncio
    async def test_nothing_after_response(self, engine, providers):
        result = await engine.send("user-1", "escalation", Urgency.MEDIUM)
        await engine.record_response(result.message_id, responded=True)

        await engine.check_engagement(result.message_id, 60)
        await engine.check_engagement(result.message_id, 120)

        providers[Channel.EMAIL].send.assert_not_called()
        providers[Channel.SMS].send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_checkpoint_timers_fire(self, store, providers, parent):
        await store.save_parent_profile(parent)
        config = EscalationConfig(
            checkpoints_seconds=[0.01],
            fallback_checkpoint_seconds=0.01,
            escalated_fallback_seconds=3600,
        )
        engine = NotificationEscalationEngine(config, store, providers)

        await engine.send("user-1", "escalation", Urgency.MEDIUM)
        await asyncio.sleep(0.1)

        providers[Channel.EMAIL].send.assert_awaited_once()
        await engine.shutdown()


class TestAutoEscalation:
    @pytest.mark.asyncio
    async def test_handler_fires_exactly_once(self, store, providers, parent):
        await store.save_parent_profile(parent)
        handler = AsyncMock()
        config = EscalationConfig(checkpoints_seconds=[], critical_escalation_delay_ms=50)
        engine = NotificationEscalationEngine(config, store, providers, escalation_handler=handler)

        result = await engine.send("user-1", "captcha_assistance_critical", Urgency.CRITICAL)
        # A duplicate timer racing the scheduled one
        engine._schedule(result.message_id, 0.05, lambda: engine.handle_auto_escalation(result.message_id))
        await asyncio.sleep(0.2)

        handler.assert_awaited_once()
        assert handler.await_args.args[0].message_id == result.message_id
        assert await engine.handle_auto_escalation(result.message_id) is False
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_no_escalation_after_response(self, store, providers, parent):
        await store.save_parent_profile(parent)
        handler = AsyncMock()
        config = EscalationConfig(checkpoints_seconds=[], critical_escalation_delay_ms=50)
        engine = NotificationEscalationEngine(config, store, providers, escalation_handler=handler)

        result = await engine.send("user-1", "captcha_assistance_critical", Urgency.CRITICAL)
        await engine.record_response(result.message_id, responded=True)
        await asyncio.sleep(0.2)

        handler.assert_not_called()
        await engine.shutdown()

    @pytest.mark.asyncio
    async def test_default_escalation_uses_fallback_channels(self, engine, providers):
        result = await engine.send("user-1", "captcha_assistance_critical", Urgency.CRITICAL, {"magic_url": "https://a"})
        providers[Channel.EMAIL].send.reset_mock()

        assert await engine.handle_auto_escalation(result.message_id) is True

        payload = sent_payloads(providers[Channel.EMAIL])[0]
        assert "Registration at risk" in payload.title
        assert payload.urgency == Urgency.CRITICAL
        assert payload.url == "https://a"

    @pytest.mark.asyncio
    async def test_only_critical_schedules_escalation(self, engine):
        result = await engine.send("user-1", "escalation", Urgency.HIGH)
        # Only the delayed fallback timer
        assert engine.pending_tasks(result.message_id) == 1


class TestCaptchaAndApproval:
    @pytest.mark.asyncio
    async def test_critical_captcha_near_front_of_queue(self, engine, providers):
        context = CaptchaContext(
            captcha_id="c1",
            session_id="s1",
            provider="community_pass",
            urgency=Urgency.CRITICAL,
            time_remaining_ms=600000,
            queue_position=3,
        )

        result = await engine.send_captcha_assistance("user-1", context)

        assert result.channels_used == [Channel.SMS, Channel.EMAIL]
        sms = sent_payloads(providers[Channel.SMS])[0]
        assert "COMMUNITY PASS" in sms.message
        assert sms.url.startswith("https://camprush.app/assist/captcha/")
        token = await engine.tokens.verify(sms.url.rsplit("/", 1)[1], TokenPurpose.CAPTCHA)
        assert token.subject_id == "c1"

        email = sent_payloads(providers[Channel.EMAIL])[0]
        assert "10 mins" in email.title

    @pytest.mark.asyncio
    async def test_captcha_far_back_uses_high_template(self, engine, providers):
        context = CaptchaContext(
            captcha_id="c1",
            session_id="s1",
            provider="ymca",
            urgency=Urgency.CRITICAL,
            time_remaining_ms=600000,
            queue_position=25,
            magic_url="https://solve.example/c1",
        )
        await engine.send_captcha_assistance("user-1", context)
        sms = sent_payloads(providers[Channel.SMS])[0]
        assert sms.title == "High Priority CAPTCHA Assistance"
        assert sms.url == "https://solve.example/c1"

    @pytest.mark.asyncio
    async def test_approval(self, engine, providers, now):
        context = ApprovalContext(
            workflow_id="w1",
            type=ApprovalType.PAYMENT_CONFIRMATION,
            title="Camp deposit",
            description="Confirm the $50 deposit.",
            priority="high",
            expires_at=now + timedelta(hours=1),
        )

        result = await engine.send_approval("user-1", context, now=now)

        assert result.channels_used == [Channel.SMS, Channel.EMAIL]
        sms = sent_payloads(providers[Channel.SMS])[0]
        assert sms.title == "Payment Confirmation Approval"
        assert "Camp deposit" in sms.message
        assert sms.url.startswith("https://camprush.app/assist/approval/")


class TestMetrics:
    @pytest.mark.asyncio
    async def test_counts_and_response_rate(self, engine, providers):
        first = await engine.send("user-1", "escalation", Urgency.MEDIUM)
        await engine.send("user-1", "escalation", Urgency.MEDIUM)
        await engine.record_response(first.message_id, responded=True)

        metrics = await engine.communication_metrics("user-1", "day")

        assert metrics.sent == 2
        assert metrics.responded == 1
        assert metrics.response_rate == 0.5
        assert metrics.avg_response_time_ms is not None
        assert metrics.channel_breakdown["sms"] == 3

    @pytest.mark.asyncio
    async def test_unknown_timeframe(self, engine):
        with pytest.raises(ValueError):
            await engine.communication_metrics(timeframe="year")


def captcha_context(session_id="s1", urgency=Urgency.HIGH, **kwargs):
    return CaptchaContext(
        captcha_id=f"c-{session_id}",
        session_id=session_id,
        provider="community_pass",
        urgency=urgency,
        time_remaining_ms=kwargs.pop("time_remaining_ms", 600000),
        **kwargs,
    )


class TestCaptchaQueueing:
    @pytest.mark.asyncio
    async def test_request_joins_assistance_queue(self, engine, providers):
        first = await engine.send_captcha_assistance("user-1", captcha_context("s1", Urgency.CRITICAL))
        second = await engine.send_captcha_assistance("user-1", captcha_context("s2", Urgency.CRITICAL))

        assert first.assistance_request_id is not None
        assert engine.queue.position(first.assistance_request_id) == 1
        assert engine.queue.position(second.assistance_request_id) == 2
        sms = sent_payloads(providers[Channel.SMS])[-1]
        assert "position 2" in sms.message

    @pytest.mark.asyncio
    async def test_caller_position_skips_queue(self, engine):
        result = await engine.send_captcha_assistance("user-1", captcha_context(queue_position=4))
        assert result.assistance_request_id is None
        assert len(engine.queue) == 0

    @pytest.mark.asyncio
    async def test_queued_critical_request_uses_critical_template(self, engine, providers):
        await engine.send_captcha_assistance("user-1", captcha_context(urgency=Urgency.CRITICAL))
        sms = sent_payloads(providers[Channel.SMS])[0]
        assert sms.title == "Critical CAPTCHA Assistance"
        assert "position 1" in sms.message

    @pytest.mark.asyncio
    async def test_finished_requests_leave_the_queue(self, engine):
        result = await engine.send_captcha_assistance("user-1", captcha_context())
        await engine.queue.activate_next("s1")
        await engine.queue.complete(result.assistance_request_id)
        assert len(engine.queue) == 0


class TestAssistTokenExpiry:
    @pytest.mark.asyncio
    async def test_no_time_left_gives_expired_link(self, engine, providers):
        await engine.send_captcha_assistance("user-1", captcha_context(time_remaining_ms=0))
        token = sent_payloads(providers[Channel.SMS])[0].url.rsplit("/", 1)[1]
        with pytest.raises(TokenExpiredError):
            await engine.tokens.verify(token, TokenPurpose.CAPTCHA)

    @pytest.mark.asyncio
    async def test_lapsed_approval_gives_expired_link(self, engine, providers, now):
        context = ApprovalContext(
            workflow_id="w1",
            type=ApprovalType.FORM_COMPLETION,
            title="Waiver",
            description="Sign the waiver.",
            expires_at=now - timedelta(minutes=5),
        )
        await engine.send_approval("user-1", context, now=now)

        url = sent_payloads(providers[Channel.SMS])[0].url
        token = await engine.tokens.verify(url.rsplit("/", 1)[1], now=now - timedelta(seconds=1))
        assert token.expires_at == now
        with pytest.raises(TokenExpiredError):
            await engine.tokens.verify(token.token, now=now)


@pytest.fixture()
def flow_barriers():
    login = Barrier(type=BarrierType.LOGIN, stage=BarrierStage.ACCOUNT_SETUP, estimated_time_minutes=5)
    captcha = Barrier(captcha_likelihood=0.9, estimated_time_minutes=2, description="Image grid")
    return [login, captcha]


class TestBarrierNotificationSequence:
    def test_times_follow_cumulative_duration(self, flow_barriers, now):
        sequence, total = barrier_notification_sequence(flow_barriers, now)

        assert total == 7
        assert [(n.kind, n.scheduled_at) for n in sequence] == [
            (BarrierNotificationKind.PRE_BARRIER, now - timedelta(minutes=2)),
            (BarrierNotificationKind.AT_BARRIER, now),
            (BarrierNotificationKind.PRE_BARRIER, now + timedelta(minutes=3)),
            (BarrierNotificationKind.AT_BARRIER, now + timedelta(minutes=5)),
        ]

    def test_priorities(self, flow_barriers, now):
        sequence, _ = barrier_notification_sequence(flow_barriers, now)
        assert [n.priority for n in sequence] == ["medium", "low", "high", "high"]
        assert [n.urgency for n in sequence] == [Urgency.MEDIUM, Urgency.LOW, Urgency.HIGH, Urgency.HIGH]

    def test_urgency_threshold_is_exclusive(self, now):
        borderline = Barrier(type=BarrierType.VERIFICATION, captcha_likelihood=0.8)
        sequence, _ = barrier_notification_sequence([borderline], now)
        # 0.8 still needs a human but is not urgent
        assert [n.priority for n in sequence] == ["medium", "high"]

    def test_empty_flow(self, now):
        assert barrier_notification_sequence([], now) == ([], 0)


class TestBarrierNotifications:
    @pytest.mark.asyncio
    async def test_queues_notices_for_each_barrier(self, engine, store, providers, flow_barriers, now):
        plan = await engine.schedule_barrier_notifications("user-1", "s1", flow_barriers, now=now)

        assert plan.total_estimated_minutes == 7
        assert plan.skipped == 1
        assert len(plan.queued) == 3
        assert len(plan.urgent_sent) == 1
        assert sent_payloads(providers[Channel.SMS])[0].title == "Urgent Step Ahead"

        rows = [r for r in await store.queued_notifications("user-1") if r.get("session_id") == "s1"]
        assert [(r["notification_type"], r["priority"], r["channel"]) for r in rows] == [
            ("pre_barrier", "medium", "sms"),
            ("at_barrier", "low", "email"),
            ("pre_barrier", "high", "sms"),
            ("at_barrier", "high", "sms"),
        ]
        assert rows[0]["status"] == "skipped"
        assert rows[2]["scheduled_at"] == (now + timedelta(minutes=3)).isoformat()
        assert rows[3]["barrier_info"]["type"] == "captcha"

    @pytest.mark.asyncio
    async def test_timers_send_due_notices(self, engine, store, providers, flow_barriers, now):
        await engine.schedule_barrier_notifications("user-1", "s1", flow_barriers, now=now)

        await asyncio.sleep(0.05)

        email = sent_payloads(providers[Channel.EMAIL])[0]
        assert email.title == "Action may be needed: login"
        rows = [r for r in await store.queued_notifications("user-1") if r.get("session_id") == "s1"]
        assert rows[1]["status"] == "sent"
        assert rows[1]["message_id"]
        assert rows[2]["status"] == "queued"
        assert engine.pending_tasks("s1") == 2

    @pytest.mark.asyncio
    async def test_analysis_is_audited(self, engine, store, flow_barriers, now):
        await engine.schedule_barrier_notifications("user-1", "s1", flow_barriers, now=now)

        events = await store.audit_events(ANALYSIS_EVENT_TYPE, user_id="user-1")

        assert len(events) == 1
        assert events[0].event_data["total_barriers"] == 2
        assert events[0].event_data["urgent_barriers"] == 1
        assert events[0].event_data["notification_sequence_length"] == 3

    @pytest.mark.asyncio
    async def test_unknown_parent(self, engine, flow_barriers):
        with pytest.raises(ProfileNotFoundError):
            await engine.schedule_barrier_notifications("nobody", "s1", flow_barriers)
