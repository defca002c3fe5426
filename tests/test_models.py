"""
Tests for data models (camprush/common/models.py)
"""
import pytest

from pydantic import ValidationError

from camprush.common.models import (
    Barrier,
    BarrierType,
    Channel,
    CertaintyEvidence,
    InvalidTransitionError,
    OpenDetectionLog,
    DetectionSignal,
    ParentProfile,
    PlanStatus,
    RegistrationPlan,
    RequirementCertainty,
    Urgency,
    advance_certainty,
    can_transition,
)
from camprush.common.results import Outcome


class TestPlanStatus:
    def test_forward_moves_allowed(self):
        assert can_transition(PlanStatus.DRAFT, PlanStatus.MONITORING)
        assert can_transition(PlanStatus.MONITORING, PlanStatus.ACTIVE)
        assert can_transition(PlanStatus.ACTIVE, PlanStatus.COMPLETED)

    def test_backward_and_same_moves_rejected(self):
        assert not can_transition(PlanStatus.ACTIVE, PlanStatus.MONITORING)
        assert not can_transition(PlanStatus.MONITORING, PlanStatus.MONITORING)

    def test_failed_from_anywhere_and_reset_to_draft(self):
        assert can_transition(PlanStatus.EXECUTING, PlanStatus.FAILED)
        assert can_transition(PlanStatus.FAILED, PlanStatus.DRAFT)
        assert not can_transition(PlanStatus.FAILED, PlanStatus.MONITORING)

    def test_advance_raises_on_illegal_move(self):
        plan = RegistrationPlan(user_id="u", status=PlanStatus.ACTIVE)
        with pytest.raises(InvalidTransitionError):
            plan.advance(PlanStatus.MONITORING)
        assert plan.status == PlanStatus.ACTIVE

    def test_advance_updates_status(self):
        plan = RegistrationPlan(user_id="u")
        plan.advance(PlanStatus.MONITORING)
        assert plan.status == PlanStatus.MONITORING


class TestOpenDetectionLog:
    def test_log_entries_are_immutable(self, now):
        entry = OpenDetectionLog(plan_id="p", seen_at=now, signal=DetectionSignal.CLOSED_DETECTED)
        with pytest.raises(ValidationError):
            entry.note = "changed"


class TestBarrier:
    def test_high_captcha_likelihood_forces_human(self):
        barrier = Barrier(type=BarrierType.CAPTCHA, captcha_likelihood=0.61)
        assert barrier.human_intervention_required is True

    def test_threshold_itself_does_not_force_human(self):
        barrier = Barrier(type=BarrierType.CAPTCHA, captcha_likelihood=0.6)
        assert barrier.human_intervention_required is False

    @pytest.mark.parametrize("barrier_type", [BarrierType.DOCUMENT_UPLOAD, BarrierType.PAYMENT])
    def test_document_and_payment_always_need_human(self, barrier_type):
        barrier = Barrier(type=barrier_type, captcha_likelihood=0.0, human_intervention_required=False)
        assert barrier.human_intervention_required is True

    def test_likelihood_is_bounded(self):
        with pytest.raises(ValidationError):
            Barrier(captcha_likelihood=1.5)

    def test_confidence_defaults(self):
        assert Barrier().confidence == 0.7
        assert Barrier(ai_confidence=0.9).confidence == 0.9


class TestRequirementCertainty:
    def test_inspection_verifies_estimate(self):
        result = advance_certainty(RequirementCertainty.ESTIMATED, CertaintyEvidence.LIVE_INSPECTION)
        assert result == RequirementCertainty.VERIFIED

    def test_user_research_verifies_estimate(self):
        result = advance_certainty(RequirementCertainty.ESTIMATED, CertaintyEvidence.USER_RESEARCH)
        assert result == RequirementCertainty.VERIFIED

    def test_signoff_confirms_verified(self):
        result = advance_certainty(RequirementCertainty.VERIFIED, CertaintyEvidence.HUMAN_SIGNOFF)
        assert result == RequirementCertainty.CONFIRMED

    def test_signoff_cannot_skip_verification(self):
        with pytest.raises(InvalidTransitionError):
            advance_certainty(RequirementCertainty.ESTIMATED, CertaintyEvidence.HUMAN_SIGNOFF)

    def test_inspection_cannot_confirm(self):
        with pytest.raises(InvalidTransitionError):
            advance_certainty(RequirementCertainty.VERIFIED, CertaintyEvidence.LIVE_INSPECTION)

    def test_confirmed_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            advance_certainty(RequirementCertainty.CONFIRMED, CertaintyEvidence.HUMAN_SIGNOFF)


class TestParentProfile:
    def test_verified_phone_prefers_sms(self, parent):
        assert parent.primary_channel == Channel.SMS
        assert parent.fallback_channels == [Channel.EMAIL]
        assert parent.urgency_channels[Urgency.LOW] == Channel.EMAIL
        assert parent.urgency_channels[Urgency.CRITICAL] == Channel.SMS

    def test_unverified_phone_prefers_email(self):
        profile = ParentProfile.from_contact("u", phone_e164="+15555550100", email="p@example.com")
        assert profile.primary_channel == Channel.EMAIL
        assert profile.fallback_channels == [Channel.SMS]
        assert profile.urgency_channels[Urgency.MEDIUM] == Channel.EMAIL

    def test_recipient_for_channel(self, parent):
        assert parent.recipient_for(Channel.SMS) == "+15555550100"
        assert parent.recipient_for(Channel.EMAIL) == "parent@example.com"
        assert parent.recipient_for(Channel.PUSH) == "user-1"


class TestOutcome:
    def test_ok(self):
        outcome = Outcome.ok([1])
        assert outcome.is_ok
        assert outcome.unwrap() == [1]

    def test_degraded_keeps_value_and_reason(self):
        outcome = Outcome.degraded([1], "fallback")
        assert outcome.is_degraded
        assert outcome.reason == "fallback"
        assert outcome.unwrap() == [1]

    def test_fatal_unwrap_raises(self):
        outcome = Outcome.fatal(ValueError("bad url"))
        assert outcome.is_fatal
        assert outcome.reason == "bad url"
        with pytest.raises(ValueError):
            outcome.unwrap()
