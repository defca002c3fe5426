"""
Data models for CampRush
"""
import uuid
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, model_validator
from enum import Enum
import pytz


class InvalidTransitionError(Exception):
    """Raised when a lifecycle status is moved backwards or sideways"""
    pass


def utcnow() -> datetime:
    return datetime.now(pytz.UTC)


# ========================================
# Registration plans
# ========================================

class OpenStrategy(str, Enum):
    MANUAL = "manual"
    PUBLISHED = "published"
    AUTO = "auto"


class PlanStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    SCHEDULED = "scheduled"
    MONITORING = "monitoring"
    EXECUTING = "executing"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# Forward order; FAILED is reachable from anywhere and resets to DRAFT
PLAN_STATUS_ORDER = [
    PlanStatus.DRAFT,
    PlanStatus.PENDING,
    PlanStatus.SCHEDULED,
    PlanStatus.MONITORING,
    PlanStatus.EXECUTING,
    PlanStatus.ACTIVE,
    PlanStatus.COMPLETED,
]


def can_transition(current: PlanStatus, new: PlanStatus) -> bool:
    """Check whether a plan may move from `current` to `new`"""
    if new == PlanStatus.FAILED:
        return current != PlanStatus.FAILED
    if current == PlanStatus.FAILED:
        return new == PlanStatus.DRAFT
    return PLAN_STATUS_ORDER.index(new) > PLAN_STATUS_ORDER.index(current)


class RegistrationPlan(BaseModel):
    """A user's intent to register children once signup opens"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    detect_url: Optional[str] = None
    manual_open_at: Optional[datetime] = None
    timezone: str = "America/Chicago"
    open_strategy: OpenStrategy = OpenStrategy.PUBLISHED
    status: PlanStatus = PlanStatus.DRAFT
    created_at: datetime = Field(default_factory=utcnow)

    def advance(self, new_status: PlanStatus):
        """Move to a new status, enforcing forward-only lifecycle"""
        if not can_transition(self.status, new_status):
            raise InvalidTransitionError(
                f"Plan {self.id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status


class DetectionSignal(str, Enum):
    OPEN_DETECTED = "open_detected"
    CLOSED_DETECTED = "closed_detected"
    TIME_EXTRACTED = "time_extracted"
    ERROR = "error"
    REGISTRATIONS_CREATED = "registrations_created"
    CREATION_ERROR = "creation_error"


class OpenDetectionLog(BaseModel):
    """One poll attempt against a plan's detection URL (append-only)"""
    model_config = {"frozen": True}

    plan_id: str
    seen_at: datetime
    signal: DetectionSignal
    note: str = ""


class ChildSessionMapping(BaseModel):
    """Which sessions each child on a plan should be registered for"""
    plan_id: str
    child_id: str
    session_ids: List[str] = Field(default_factory=list)
    priority: int = 0


class Registration(BaseModel):
    """Registration created the moment a plan's signup opens"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    plan_id: str
    child_id: str
    session_id: str
    scheduled_time: datetime
    status: str = "pending"
    priority_opt_in: bool = False
    retry_attempts: int = 3
    retry_delay_ms: int = 500
    fallback_strategy: str = "alert_parent"
    error_recovery: str = "restart"


# ========================================
# Barriers and registration flow
# ========================================

class BarrierType(str, Enum):
    ACCOUNT_CREATION = "account_creation"
    LOGIN = "login"
    CAPTCHA = "captcha"
    DOCUMENT_UPLOAD = "document_upload"
    PAYMENT = "payment"
    VERIFICATION = "verification"


class BarrierStage(str, Enum):
    INITIAL = "initial"
    ACCOUNT_SETUP = "account_setup"
    REGISTRATION = "registration"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"


STAGE_ORDER = [
    BarrierStage.INITIAL,
    BarrierStage.ACCOUNT_SETUP,
    BarrierStage.REGISTRATION,
    BarrierStage.PAYMENT,
    BarrierStage.CONFIRMATION,
]


class ComplexityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXPERT = "expert"


# Above this CAPTCHA likelihood a human is assumed to be needed
HUMAN_CAPTCHA_THRESHOLD = 0.6

# Barrier types that need a real signature or funding instrument
NON_AUTOMATABLE_TYPES = {BarrierType.DOCUMENT_UPLOAD, BarrierType.PAYMENT}

DEFAULT_AI_CONFIDENCE = 0.7


class Barrier(BaseModel):
    """A predicted obstacle in a provider's signup flow"""
    type: BarrierType = BarrierType.CAPTCHA
    stage: BarrierStage = BarrierStage.REGISTRATION
    captcha_likelihood: float = Field(default=0.0, ge=0.0, le=1.0)
    required_fields: List[str] = Field(default_factory=list)
    estimated_time_minutes: int = 3
    complexity_level: ComplexityLevel = ComplexityLevel.MEDIUM
    human_intervention_required: bool = False
    description: str = ""
    bypass_possible: bool = False
    ai_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _force_human_intervention(self) -> "Barrier":
        if (
            self.captcha_likelihood > HUMAN_CAPTCHA_THRESHOLD
            or self.type in NON_AUTOMATABLE_TYPES
        ):
            self.human_intervention_required = True
        return self

    @property
    def confidence(self) -> float:
        return self.ai_confidence if self.ai_confidence is not None else DEFAULT_AI_CONFIDENCE

    @property
    def is_interruption(self) -> bool:
        return self.human_intervention_required or self.captcha_likelihood > HUMAN_CAPTCHA_THRESHOLD


class StepType(str, Enum):
    AUTOMATED = "automated"
    HUMAN_ASSISTED = "human_assisted"
    MANUAL_ONLY = "manual_only"


class FlowStep(BaseModel):
    """One stage-grouped step of a provider's registration flow"""
    step_number: int
    step_name: str
    stage: BarrierStage
    step_type: StepType
    barriers_in_step: List[Barrier] = Field(default_factory=list)
    automation_possible: bool
    parent_assistance_likely: bool
    estimated_duration_minutes: int
    success_probability: float


class FlowMetrics(BaseModel):
    """Whole-flow statistics rolled up from a barrier list"""
    total_barriers: int
    registration_flow: List[FlowStep]
    estimated_interruptions: int
    total_estimated_time: int
    overall_complexity: str
    success_probability: float
    recommended_strategy: str
    parent_preparation_needed: List[str] = Field(default_factory=list)


class BarrierAnalysisRequest(BaseModel):
    provider_url: str
    session_id: str
    use_ai_analysis: bool = True


class BarrierSequenceAnalysis(BaseModel):
    """Response body of a barrier analysis invocation"""
    provider_url: str
    provider_type: str
    session_id: str
    total_barriers: int
    barriers: List[Barrier]
    registration_flow: List[FlowStep]
    estimated_interruptions: int
    total_estimated_time: int
    overall_complexity: str
    success_probability: float
    recommended_strategy: str
    parent_preparation_needed: List[str] = Field(default_factory=list)
    ai_enriched: bool = False
    analyzed_at: datetime = Field(default_factory=utcnow)


# ========================================
# Requirement certainty
# ========================================

class RequirementCertainty(str, Enum):
    ESTIMATED = "estimated"
    VERIFIED = "verified"
    CONFIRMED = "confirmed"


class CertaintyEvidence(str, Enum):
    LIVE_INSPECTION = "live_inspection"
    USER_RESEARCH = "user_research"
    HUMAN_SIGNOFF = "human_signoff"


_CERTAINTY_RULES = {
    RequirementCertainty.ESTIMATED: (
        RequirementCertainty.VERIFIED,
        {CertaintyEvidence.LIVE_INSPECTION, CertaintyEvidence.USER_RESEARCH},
    ),
    RequirementCertainty.VERIFIED: (
        RequirementCertainty.CONFIRMED,
        {CertaintyEvidence.HUMAN_SIGNOFF},
    ),
}


def advance_certainty(
    current: RequirementCertainty,
    evidence: CertaintyEvidence
) -> RequirementCertainty:
    """
    Move certainty one step up given a piece of evidence.

    estimated -> verified needs live inspection or accepted user research;
    verified -> confirmed needs explicit human sign-off.
    """
    rule = _CERTAINTY_RULES.get(current)
    if rule is None:
        raise InvalidTransitionError(f"Certainty is already {current.value}")
    target, accepted = rule
    if evidence not in accepted:
        raise InvalidTransitionError(
            f"{evidence.value} cannot move certainty from {current.value} to {target.value}"
        )
    return target


class SessionRequirements(BaseModel):
    """Cached barrier analysis for a session"""
    session_id: str
    provider_url: str
    analysis: BarrierSequenceAnalysis
    analyzed_at: datetime
    expires_at: datetime
    certainty: RequirementCertainty = RequirementCertainty.ESTIMATED

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


# ========================================
# Notifications
# ========================================

class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"
    PUSH = "push"


class NotificationPayload(BaseModel):
    """Rendered notification content for one channel"""
    title: str
    message: str
    url: Optional[str] = None
    recipient: Optional[str] = None
    urgency: Urgency = Urgency.MEDIUM
    message_id: Optional[str] = None


class DispatchRequest(BaseModel):
    """Request to deliver one templated message over one channel"""
    user_id: str
    template_id: str
    channel: Channel
    data: Dict[str, Any] = Field(default_factory=dict)
    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class AuditEvent(BaseModel):
    """compliance_audit row"""
    user_id: Optional[str] = None
    event_type: str
    event_data: Dict[str, Any] = Field(default_factory=dict)
    payload_summary: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class ParentProfile(BaseModel):
    """How and where a parent can be reached"""
    user_id: str
    phone_e164: Optional[str] = None
    phone_verified: bool = False
    email: Optional[str] = None
    timezone: str = "America/Chicago"
    primary_channel: Channel = Channel.EMAIL
    fallback_channels: List[Channel] = Field(default_factory=list)
    urgency_channels: Dict[Urgency, Channel] = Field(default_factory=dict)
    response_rate: float = 0.85
    avg_response_time_ms: int = 180000
    last_active_channel: Optional[Channel] = None

    @classmethod
    def from_contact(
        cls,
        user_id: str,
        phone_e164: Optional[str] = None,
        phone_verified: bool = False,
        email: Optional[str] = None,
        timezone: str = "America/Chicago",
        response_rate: float = 0.85
    ) -> "ParentProfile":
        """Default routing for a parent given only their contact details"""
        preferred = Channel.SMS if phone_verified else Channel.EMAIL
        return cls(
            user_id=user_id,
            phone_e164=phone_e164,
            phone_verified=phone_verified,
            email=email,
            timezone=timezone,
            primary_channel=preferred,
            fallback_channels=[Channel.EMAIL] if phone_verified else [Channel.SMS],
            urgency_channels={
                Urgency.LOW: Channel.EMAIL,
                Urgency.MEDIUM: preferred,
                Urgency.HIGH: Channel.SMS,
                Urgency.CRITICAL: Channel.SMS,
            },
            response_rate=response_rate,
            last_active_channel=preferred,
        )

    def recipient_for(self, channel: Channel) -> Optional[str]:
        if channel == Channel.SMS:
            return self.phone_e164
        if channel == Channel.EMAIL:
            return self.email
        return self.user_id
