"""Parent notification and escalation"""
from .engine import (
    NotificationEscalationEngine,
    SendResult,
    BarrierNotificationPlan,
    CommunicationMetrics,
    CaptchaContext,
    ApprovalContext,
    ApprovalType,
    ProfileNotFoundError,
)
from .profiles import FallbackStrategy, DeliveryStrategy, build_strategy, select_channel, predict_engagement
from .queue import AssistanceQueue, AssistanceRequest, AssistanceStatus, QueueError
from .registry import EngagementRegistry, EngagementRecord
from .sequence import BarrierNotification, BarrierNotificationKind, barrier_notification_sequence
from .templates import TemplateRegistry, NotificationTemplate, TemplateNotFoundError
from .tokens import TokenVault, ApprovalToken, TokenPurpose, TokenExpiredError, TokenInvalidError

__all__ = [
    "NotificationEscalationEngine",
    "SendResult",
    "BarrierNotificationPlan",
    "CommunicationMetrics",
    "CaptchaContext",
    "ApprovalContext",
    "ApprovalType",
    "ProfileNotFoundError",
    "FallbackStrategy",
    "DeliveryStrategy",
    "build_strategy",
    "select_channel",
    "predict_engagement",
    "AssistanceQueue",
    "AssistanceRequest",
    "AssistanceStatus",
    "QueueError",
    "EngagementRegistry",
    "EngagementRecord",
    "BarrierNotification",
    "BarrierNotificationKind",
    "barrier_notification_sequence",
    "TemplateRegistry",
    "NotificationTemplate",
    "TemplateNotFoundError",
    "TokenVault",
    "ApprovalToken",
    "TokenPurpose",
    "TokenExpiredError",
    "TokenInvalidError",
]
