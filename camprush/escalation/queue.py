"""
Assistance queue: barriers waiting for a parent to step in
"""
import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from ..common.models import BarrierType, utcnow

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Raised on an illegal assistance request transition"""
    pass


class AssistanceStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED = {
    AssistanceStatus.QUEUED: {AssistanceStatus.ACTIVE, AssistanceStatus.FAILED},
    AssistanceStatus.ACTIVE: {AssistanceStatus.COMPLETED, AssistanceStatus.FAILED},
}


class AssistanceRequest(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    user_id: str
    barrier_type: BarrierType
    context: Dict[str, Any] = Field(default_factory=dict)
    status: AssistanceStatus = AssistanceStatus.QUEUED
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class AssistanceQueue:
    """
    FIFO of assistance requests.

    A session has at most one active request; the next one for that
    session is activated only after the current one finishes.
    """

    def __init__(self):
        self._requests: Dict[str, AssistanceRequest] = {}
        self._order: List[str] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._requests)

    async def enqueue(self, request: AssistanceRequest) -> AssistanceRequest:
        async with self._lock:
            self._requests[request.id] = request
            self._order.append(request.id)
        logger.info(f"Queued {request.barrier_type.value} assistance for session {request.session_id}")
        return request

    def get(self, request_id: str) -> Optional[AssistanceRequest]:
        return self._requests.get(request_id)

    def active_for(self, session_id: str) -> Optional[AssistanceRequest]:
        for request in self._requests.values():
            if request.session_id == session_id and request.status == AssistanceStatus.ACTIVE:
                return request
        return None

    def pending(self, session_id: Optional[str] = None) -> List[AssistanceRequest]:
        return [
            self._requests[rid] for rid in self._order
            if self._requests[rid].status == AssistanceStatus.QUEUED
            and (session_id is None or self._requests[rid].session_id == session_id)
        ]

    def position(self, request_id: str) -> Optional[int]:
        """1-based place among all queued requests, None once it left the queue"""
        for index, request in enumerate(self.pending(), start=1):
            if request.id == request_id:
                return index
        return None

    def _move(self, request: AssistanceRequest, status: AssistanceStatus):
        if status not in _ALLOWED.get(request.status, set()):
            raise QueueError(
                f"Assistance request {request.id}: cannot move from "
                f"{request.status.value} to {status.value}"
            )
        request.status = status

    async def activate_next(self, session_id: str, now: Optional[datetime] = None) -> Optional[AssistanceRequest]:
        """Start the oldest queued request for a session, if none is active"""
        async with self._lock:
            if self.active_for(session_id):
                return None
            queued = self.pending(session_id)
            if not queued:
                return None
            request = queued[0]
            self._move(request, AssistanceStatus.ACTIVE)
            request.started_at = now or utcnow()
        logger.info(f"Activated assistance request {request.id} for session {session_id}")
        return request

    async def complete(self, request_id: str, now: Optional[datetime] = None) -> AssistanceRequest:
        return await self._finish(request_id, AssistanceStatus.COMPLETED, None, now)

    async def fail(self, request_id: str, reason: str, now: Optional[datetime] = None) -> AssistanceRequest:
        return await self._finish(request_id, AssistanceStatus.FAILED, reason, now)

    async def _finish(
        self,
        request_id: str,
        status: AssistanceStatus,
        reason: Optional[str],
        now: Optional[datetime]
    ) -> AssistanceRequest:
        async with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise QueueError(f"Unknown assistance request {request_id}")
            self._move(request, status)
            request.finished_at = now or utcnow()
            request.failure_reason = reason
            # Finished requests leave the queue; callers keep the returned copy
            del self._requests[request_id]
            self._order.remove(request_id)
        logger.info(f"Assistance request {request_id} {status.value}")
        return request
