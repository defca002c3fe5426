"""
Channel selection, delivery strategy and engagement prediction
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List, Tuple
from pydantic import BaseModel, Field
import pytz

from ..common.config import EscalationConfig
from ..common.models import Channel, Urgency, ParentProfile


class FallbackStrategy(str, Enum):
    IMMEDIATE = "immediate"
    STAGGERED = "staggered"
    ESCALATED = "escalated"


# Typical time to a response once a message lands on a channel
CHANNEL_AVG_RESPONSE_MS = {
    Channel.SMS: 60000,
    Channel.EMAIL: 300000,
    Channel.PUSH: 120000,
}

BUSINESS_HOURS = range(9, 18)
MIN_ENGAGEMENT = 0.1
MAX_ENGAGEMENT = 0.95


class DeliveryStrategy(BaseModel):
    primary_channel: Channel
    fallback_channels: List[Channel] = Field(default_factory=list)
    immediate: bool = False
    staggered: bool = False
    respect_quiet_hours: bool = True
    auto_escalation: bool = False
    escalation_delay_ms: int = 300000


def select_channel(profile: ParentProfile, urgency: Urgency) -> Channel:
    return profile.urgency_channels.get(urgency, profile.primary_channel)


def build_strategy(
    profile: ParentProfile,
    urgency: Urgency,
    config: Optional[EscalationConfig] = None
) -> DeliveryStrategy:
    config = config or EscalationConfig()
    channel = select_channel(profile, urgency)
    critical = urgency == Urgency.CRITICAL

    return DeliveryStrategy(
        primary_channel=channel,
        fallback_channels=[c for c in profile.fallback_channels if c != channel],
        immediate=critical,
        staggered=urgency == Urgency.HIGH,
        respect_quiet_hours=not critical,
        auto_escalation=critical,
        escalation_delay_ms=(
            config.critical_escalation_delay_ms if critical
            else config.default_escalation_delay_ms
        ),
    )


def fallback_schedule(
    strategy: DeliveryStrategy,
    fallback_strategy: FallbackStrategy,
    config: Optional[EscalationConfig] = None
) -> List[Tuple[Channel, float]]:
    """(channel, delay in seconds) for every fallback channel"""
    config = config or EscalationConfig()
    schedule = []
    for index, channel in enumerate(strategy.fallback_channels):
        if fallback_strategy == FallbackStrategy.IMMEDIATE:
            delay = 0.0
        elif fallback_strategy == FallbackStrategy.STAGGERED:
            delay = config.stagger_seconds * (index + 1)
        else:
            delay = config.escalated_fallback_seconds
        schedule.append((channel, delay))
    return schedule


def predict_engagement(
    profile: ParentProfile,
    strategy: DeliveryStrategy,
    urgency: Urgency,
    now: Optional[datetime] = None
) -> float:
    """Rough chance the parent responds; for display and ordering only"""
    prediction = profile.response_rate

    if strategy.primary_channel == profile.last_active_channel:
        prediction += 0.1

    if urgency == Urgency.CRITICAL:
        prediction += 0.15
    elif urgency == Urgency.HIGH:
        prediction += 0.05

    try:
        tz = pytz.timezone(profile.timezone)
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    local = (now or datetime.now(pytz.UTC)).astimezone(tz)
    if local.hour in BUSINESS_HOURS:
        prediction += 0.05

    return min(MAX_ENGAGEMENT, max(MIN_ENGAGEMENT, prediction))
