"""
Engagement registry: per-message delivery state behind one lock

Timers for checkpoints, fallbacks and escalation may fire in any order
and more than once. Every follow-up action is claimed through this
registry first, so each happens at most once per message.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List, Set
from pydantic import BaseModel, Field

from ..common.models import Urgency, utcnow
from .profiles import DeliveryStrategy

logger = logging.getLogger(__name__)

CLAIMABLE = ("fallback_triggered", "reminder_sent", "escalated")


class Checkpoint(BaseModel):
    seconds: float
    delivered: bool
    read: bool
    responded: bool


class EngagementRecord(BaseModel):
    message_id: str
    user_id: str
    template_id: str
    urgency: Urgency
    data: Dict[str, Any] = Field(default_factory=dict)
    sent_at: datetime = Field(default_factory=utcnow)
    strategy: DeliveryStrategy
    checkpoints: List[Checkpoint] = Field(default_factory=list)
    delivered: bool = False
    read: bool = False
    responded: bool = False
    response_received: bool = False
    fallback_triggered: bool = False
    reminder_sent: bool = False
    escalated: bool = False


class EngagementRegistry:
    def __init__(self):
        self._records: Dict[str, EngagementRecord] = {}
        self._lock = asyncio.Lock()

    async def register(self, record: EngagementRecord) -> EngagementRecord:
        async with self._lock:
            self._records[record.message_id] = record
        return record

    async def prune(self, before: datetime, keep: Optional[Set[str]] = None) -> int:
        """Forget records sent before `before` unless their id is in `keep`"""
        keep = keep or set()
        async with self._lock:
            stale = [
                mid for mid, record in self._records.items()
                if record.sent_at < before and mid not in keep
            ]
            for mid in stale:
                del self._records[mid]
        if stale:
            logger.debug(f"Pruned {len(stale)} engagement records")
        return len(stale)

    def get(self, message_id: str) -> Optional[EngagementRecord]:
        return self._records.get(message_id)

    def __len__(self) -> int:
        return len(self._records)

    async def record_receipt(
        self,
        message_id: str,
        delivered: bool = False,
        read: bool = False,
        responded: bool = False
    ) -> Optional[EngagementRecord]:
        """
        Merge a delivery receipt. Flags only ever turn on; a response
        implies the message was read and delivered.
        """
        async with self._lock:
            record = self._records.get(message_id)
            if record is None:
                return None
            if responded:
                record.responded = record.read = record.delivered = True
                record.response_received = True
            if read:
                record.read = record.delivered = True
            if delivered:
                record.delivered = True
            return record

    async def record_checkpoint(self, message_id: str, seconds: float) -> Optional[Checkpoint]:
        """Snapshot receipts at a checkpoint; None if already taken or not tracked"""
        async with self._lock:
            record = self._records.get(message_id)
            if record is None or any(c.seconds == seconds for c in record.checkpoints):
                return None
            checkpoint = Checkpoint(
                seconds=seconds,
                delivered=record.delivered,
                read=record.read,
                responded=record.responded,
            )
            record.checkpoints.append(checkpoint)
            return checkpoint

    async def claim(self, message_id: str, action: str) -> bool:
        """
        Compare-and-set one follow-up flag.

        True for exactly one caller, and only while no response has
        been received.
        """
        if action not in CLAIMABLE:
            raise ValueError(f"Unknown engagement action {action!r}")

        async with self._lock:
            record = self._records.get(message_id)
            if record is None or record.response_received or getattr(record, action):
                return False
            setattr(record, action, True)
            return True
