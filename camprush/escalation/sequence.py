"""
Barrier notification sequence

Turns a planned barrier list into timed parent notifications: a heads-up
shortly before each barrier is expected and a call to action when the
flow reaches it. Barrier start times are the running sum of the
estimated minutes of the barriers before it.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Tuple

from ..common.models import Barrier, Urgency

PRE_BARRIER_LEAD = timedelta(minutes=2)
URGENT_CAPTCHA_LIKELIHOOD = 0.8


class BarrierNotificationKind(str, Enum):
    PRE_BARRIER = "pre_barrier"
    AT_BARRIER = "at_barrier"


PRIORITY_URGENCY = {
    "low": Urgency.LOW,
    "medium": Urgency.MEDIUM,
    "high": Urgency.HIGH,
}


@dataclass
class BarrierNotification:
    kind: BarrierNotificationKind
    barrier: Barrier
    scheduled_at: datetime
    priority: str

    @property
    def urgency(self) -> Urgency:
        return PRIORITY_URGENCY[self.priority]


def is_urgent(barrier: Barrier) -> bool:
    return barrier.captcha_likelihood > URGENT_CAPTCHA_LIKELIHOOD


def barrier_notification_sequence(
    barriers: List[Barrier],
    start: datetime
) -> Tuple[List[BarrierNotification], int]:
    """
    Build the pre/at notification pair for every barrier.

    Returns the notifications in barrier order and the total estimated
    minutes of the whole flow. A pre-barrier notice for the first
    barrier lands before `start`; callers decide what to do with notices
    already in the past.
    """
    notifications = []
    elapsed = 0

    for barrier in barriers:
        at = start + timedelta(minutes=elapsed)
        notifications.append(BarrierNotification(
            kind=BarrierNotificationKind.PRE_BARRIER,
            barrier=barrier,
            scheduled_at=at - PRE_BARRIER_LEAD,
            priority="high" if is_urgent(barrier) else "medium",
        ))
        notifications.append(BarrierNotification(
            kind=BarrierNotificationKind.AT_BARRIER,
            barrier=barrier,
            scheduled_at=at,
            priority="high" if barrier.human_intervention_required else "low",
        ))
        elapsed += barrier.estimated_time_minutes

    return notifications, elapsed
