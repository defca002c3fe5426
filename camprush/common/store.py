"""
Record store for CampRush

Holds plans, detection logs, registrations, cached barrier analyses,
the notification queue and the compliance audit trail. Backed by a JSON
file when a path is given, in memory otherwise.
"""
import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List, Iterable

from .models import (
    RegistrationPlan,
    PlanStatus,
    OpenStrategy,
    OpenDetectionLog,
    ChildSessionMapping,
    Registration,
    SessionRequirements,
    AuditEvent,
    ParentProfile,
    can_transition,
)

logger = logging.getLogger(__name__)

TABLES = (
    "registration_plans",
    "plan_children_map",
    "registrations",
    "open_detection_logs",
    "session_requirements",
    "notification_queue",
    "compliance_audit",
    "parent_profiles",
)


class StoreError(Exception):
    """Raised when a write would break a table invariant"""
    pass


class RecordStore:
    """
    Single source of truth for plan status and logs.

    Every mutation runs under one asyncio lock and is persisted before the
    lock is released, so row updates are last-writer-wins except where a
    conditional update is used.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in TABLES}
        self._lock = asyncio.Lock()
        self.load()

    # ========================================
    # Persistence
    # ========================================

    def load(self) -> bool:
        """Load tables from file"""
        if not self.path or not self.path.exists():
            return False

        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load store from {self.path}: {e}")
            return False

        for name in TABLES:
            self._tables[name] = data.get(name, [])

        logger.debug(f"Store loaded from {self.path}")
        return True

    def save(self):
        """Save tables to file"""
        if not self.path:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._tables, f, indent=2, default=str)

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        return self._tables[table]

    # ========================================
    # registration_plans
    # ========================================

    async def save_plan(self, plan: RegistrationPlan) -> RegistrationPlan:
        async with self._lock:
            rows = self._rows("registration_plans")
            data = plan.model_dump(mode="json")
            for i, row in enumerate(rows):
                if row["id"] == plan.id:
                    rows[i] = data
                    break
            else:
                rows.append(data)
            self.save()
        return plan

    async def get_plan(self, plan_id: str) -> Optional[RegistrationPlan]:
        for row in self._rows("registration_plans"):
            if row["id"] == plan_id:
                return RegistrationPlan.model_validate(row)
        return None

    async def list_plans(self) -> List[RegistrationPlan]:
        return [RegistrationPlan.model_validate(row) for row in self._rows("registration_plans")]

    async def list_monitoring_plans(self) -> List[RegistrationPlan]:
        """Plans the open watcher should consider on this tick"""
        watched = {OpenStrategy.PUBLISHED.value, OpenStrategy.AUTO.value}
        return [
            RegistrationPlan.model_validate(row)
            for row in self._rows("registration_plans")
            if row.get("open_strategy") in watched
            and row.get("status") == PlanStatus.MONITORING.value
            and row.get("detect_url")
        ]

    async def transition_plan_status(
        self,
        plan_id: str,
        expected: PlanStatus,
        new_status: PlanStatus
    ) -> bool:
        """
        Conditionally move a plan to `new_status`.

        Returns False when the stored status no longer equals `expected`
        (another tick got there first) or the move is not allowed.
        """
        async with self._lock:
            for row in self._rows("registration_plans"):
                if row["id"] != plan_id:
                    continue
                current = PlanStatus(row["status"])
                if current != expected or not can_transition(current, new_status):
                    return False
                row["status"] = new_status.value
                self.save()
                return True
        return False

    async def set_manual_open_at(self, plan_id: str, open_at: datetime) -> bool:
        async with self._lock:
            for row in self._rows("registration_plans"):
                if row["id"] == plan_id:
                    row["manual_open_at"] = open_at.isoformat()
                    self.save()
                    return True
        return False

    # ========================================
    # open_detection_logs
    # ========================================

    async def append_detection_log(self, entry: OpenDetectionLog) -> OpenDetectionLog:
        """Append a log entry; entries for a plan never go back in time"""
        async with self._lock:
            last = self._last_seen_at(entry.plan_id)
            if last and entry.seen_at < last:
                raise StoreError(
                    f"Detection log for plan {entry.plan_id} at {entry.seen_at.isoformat()} "
                    f"is older than latest entry {last.isoformat()}"
                )
            self._rows("open_detection_logs").append(entry.model_dump(mode="json"))
            self.save()
        return entry

    def _last_seen_at(self, plan_id: str) -> Optional[datetime]:
        latest = None
        for row in self._rows("open_detection_logs"):
            if row["plan_id"] != plan_id:
                continue
            seen_at = datetime.fromisoformat(row["seen_at"])
            if latest is None or seen_at > latest:
                latest = seen_at
        return latest

    async def last_check_at(self, plan_id: str) -> Optional[datetime]:
        return self._last_seen_at(plan_id)

    async def detection_logs(self, plan_id: str) -> List[OpenDetectionLog]:
        return [
            OpenDetectionLog.model_validate(row)
            for row in self._rows("open_detection_logs")
            if row["plan_id"] == plan_id
        ]

    # ========================================
    # plan_children_map / registrations
    # ========================================

    async def save_child_mapping(self, mapping: ChildSessionMapping):
        async with self._lock:
            self._rows("plan_children_map").append(mapping.model_dump(mode="json"))
            self.save()

    async def child_mappings(self, plan_id: str) -> List[ChildSessionMapping]:
        mappings = [
            ChildSessionMapping.model_validate(row)
            for row in self._rows("plan_children_map")
            if row["plan_id"] == plan_id
        ]
        return sorted(mappings, key=lambda m: m.priority)

    async def registration_exists(self, user_id: str, child_id: str, session_id: str) -> bool:
        return any(
            row["user_id"] == user_id
            and row["child_id"] == child_id
            and row["session_id"] == session_id
            for row in self._rows("registrations")
        )

    async def insert_registrations(self, registrations: Iterable[Registration]) -> List[Registration]:
        inserted = list(registrations)
        async with self._lock:
            self._rows("registrations").extend(r.model_dump(mode="json") for r in inserted)
            self.save()
        return inserted

    async def registrations_for_plan(self, plan_id: str) -> List[Registration]:
        return [
            Registration.model_validate(row)
            for row in self._rows("registrations")
            if row["plan_id"] == plan_id
        ]

    # ========================================
    # session_requirements
    # ========================================

    async def get_session_requirements(self, session_id: str) -> Optional[SessionRequirements]:
        for row in self._rows("session_requirements"):
            if row["session_id"] == session_id:
                return SessionRequirements.model_validate(row)
        return None

    async def put_session_requirements(self, record: SessionRequirements) -> SessionRequirements:
        async with self._lock:
            rows = self._rows("session_requirements")
            data = record.model_dump(mode="json")
            for i, row in enumerate(rows):
                if row["session_id"] == record.session_id:
                    rows[i] = data
                    break
            else:
                rows.append(data)
            self.save()
        return record

    # ========================================
    # notification_queue / compliance_audit
    # ========================================

    async def enqueue_notification(self, entry: Dict[str, Any]):
        async with self._lock:
            self._rows("notification_queue").append(json.loads(json.dumps(entry, default=str)))
            self.save()

    async def update_notification(self, entry_id: str, **fields) -> bool:
        """Merge fields into a queued notification; False if no row has that id"""
        async with self._lock:
            for row in self._rows("notification_queue"):
                if row.get("id") == entry_id:
                    row.update(json.loads(json.dumps(fields, default=str)))
                    self.save()
                    return True
        return False

    async def queued_notifications(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            row for row in self._rows("notification_queue")
            if user_id is None or row.get("user_id") == user_id
        ]

    async def append_audit(self, event: AuditEvent) -> AuditEvent:
        async with self._lock:
            self._rows("compliance_audit").append(event.model_dump(mode="json"))
            self.save()
        return event

    async def audit_events(
        self,
        event_type: str,
        since: Optional[datetime] = None,
        user_id: Optional[str] = None
    ) -> List[AuditEvent]:
        events = []
        for row in self._rows("compliance_audit"):
            event = AuditEvent.model_validate(row)
            if event.event_type != event_type:
                continue
            if user_id and event.user_id != user_id:
                continue
            if since and event.created_at < since:
                continue
            events.append(event)
        return events

    # ========================================
    # parent_profiles
    # ========================================

    async def save_parent_profile(self, profile: ParentProfile) -> ParentProfile:
        async with self._lock:
            rows = self._rows("parent_profiles")
            data = profile.model_dump(mode="json")
            for i, row in enumerate(rows):
                if row["user_id"] == profile.user_id:
                    rows[i] = data
                    break
            else:
                rows.append(data)
            self.save()
        return profile

    async def get_parent_profile(self, user_id: str) -> Optional[ParentProfile]:
        for row in self._rows("parent_profiles"):
            if row["user_id"] == user_id:
                return ParentProfile.model_validate(row)
        return None
