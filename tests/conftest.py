from datetime import datetime

import pytest
import pytz

from camprush.common.config import Config, StoreConfig, LoggingConfig, NotificationsConfig
from camprush.common.models import (
    ChildSessionMapping,
    OpenStrategy,
    ParentProfile,
    PlanStatus,
    RegistrationPlan,
)
from camprush.common.store import RecordStore


@pytest.fixture()
def config(tmp_path):
    return Config(
        store=StoreConfig(path=str(tmp_path / "camprush.json")),
        notifications=NotificationsConfig(console=False),
        logging=LoggingConfig(file=None),
    )


@pytest.fixture()
def store(config):
    return RecordStore(config.store.path)


@pytest.fixture()
def now():
    return pytz.UTC.localize(datetime(2030, 3, 1, 12, 0))


@pytest.fixture()
def plan():
    return RegistrationPlan(
        user_id="user-1",
        detect_url="https://register.example.org/camps",
        timezone="America/Chicago",
        open_strategy=OpenStrategy.PUBLISHED,
        status=PlanStatus.MONITORING,
    )


@pytest.fixture()
def mappings(plan):
    return [
        ChildSessionMapping(plan_id=plan.id, child_id="kid-a", session_ids=["s1", "s2"], priority=0),
        ChildSessionMapping(plan_id=plan.id, child_id="kid-b", session_ids=["s1"], priority=1),
    ]


@pytest.fixture()
def parent():
    return ParentProfile.from_contact(
        "user-1",
        phone_e164="+15555550100",
        phone_verified=True,
        email="parent@example.com",
    )
