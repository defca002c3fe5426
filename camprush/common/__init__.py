"""
Common utilities for CampRush
"""
from .config import Config, load_config
from .models import (
    RegistrationPlan,
    PlanStatus,
    OpenStrategy,
    OpenDetectionLog,
    DetectionSignal,
    ChildSessionMapping,
    Registration,
    Barrier,
    FlowStep,
    FlowMetrics,
    BarrierAnalysisRequest,
    BarrierSequenceAnalysis,
    SessionRequirements,
    RequirementCertainty,
    ParentProfile,
    NotificationPayload,
    InvalidTransitionError,
)
from .results import Outcome, OutcomeKind
from .scheduler import AdaptivePollScheduler, TargetWindow, PollDecision, compute_target_window, RateLimiter
from .store import RecordStore, StoreError

__all__ = [
    "Config",
    "load_config",
    "RegistrationPlan",
    "PlanStatus",
    "OpenStrategy",
    "OpenDetectionLog",
    "DetectionSignal",
    "ChildSessionMapping",
    "Registration",
    "Barrier",
    "FlowStep",
    "FlowMetrics",
    "BarrierAnalysisRequest",
    "BarrierSequenceAnalysis",
    "SessionRequirements",
    "RequirementCertainty",
    "ParentProfile",
    "NotificationPayload",
    "InvalidTransitionError",
    "Outcome",
    "OutcomeKind",
    "AdaptivePollScheduler",
    "TargetWindow",
    "PollDecision",
    "compute_target_window",
    "RateLimiter",
    "RecordStore",
    "StoreError",
]
