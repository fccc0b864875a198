import copy
import os
from datetime import date

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["OPENAI_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from habitflow.backend import crud, models
from habitflow.backend.coaching import CoachingService
from habitflow.backend.main import app, get_clock, get_coach, get_db
from habitflow.client.errors import NetworkError
from habitflow.client.offline.cache import HabitCache
from habitflow.client.offline.connectivity import ConnectivityMonitor
from habitflow.client.offline.storage import OfflineStorage
from habitflow.clock import FrozenClock
from habitflow.services.stats import HabitStats, compute_stats

TODAY = date(2024, 3, 15)


@pytest.fixture
def clock():
    return FrozenClock(TODAY)


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    crud.ensure_user(db, 1)
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def client(db_session, clock):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_coach] = lambda: CoachingService(api_key=None)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_habit(client):
    def _make(name="Drink water", category="health", **fields):
        response = client.post("/api/habits", json={"name": name, "category": category, **fields})
        assert response.status_code == 201, response.text
        return response.json()
    return _make


class FakeAPI:
    """In-memory stand-in for HabitFlowAPI that records every call."""

    def __init__(self, habits=None, stats=None):
        self.habits = habits or []
        self.stats = stats
        self.calls = []
        self.failures = {}
        self.offline = False
        self.gate = None
        self.next_id = 100

    async def _call(self, name, *args):
        self.calls.append((name, *args))
        if self.gate is not None:
            await self.gate.wait()
        if self.offline:
            raise NetworkError("connection refused")
        key = (name, args[0] if args else None)
        for failure_key, error in self.failures.items():
            if failure_key == key:
                raise error

    async def health(self):
        await self._call("health")
        return {"status": "ok"}

    async def get_habits(self):
        await self._call("get_habits")
        return copy.deepcopy(self.habits)

    async def get_stats(self):
        await self._call("get_stats")
        return copy.deepcopy(self.stats) or HabitStats().model_dump()

    async def create_habit(self, data):
        await self._call("create_habit", data)
        habit = {**data, "id": self.next_id}
        self.next_id += 1
        return habit

    async def update_habit(self, habit_id, data):
        await self._call("update_habit", habit_id, data)
        return {"id": habit_id, **data}

    async def delete_habit(self, habit_id):
        await self._call("delete_habit", habit_id)
        return {"success": True}

    async def complete_habit(self, habit_id):
        await self._call("complete_habit", habit_id)
        return {"changed": True}

    async def undo_habit(self, habit_id):
        await self._call("undo_habit", habit_id)
        return {"changed": True}

    async def record_progress(self, habit_id, delta=1):
        await self._call("record_progress", habit_id, delta)
        return {"changed": True}

    def action_calls(self):
        return [call for call in self.calls if call[0] not in ("health", "get_habits", "get_stats")]


def cached_habit(habit_id, name="Drink water", **fields):
    habit = {
        "id": habit_id,
        "user_id": 1,
        "name": name,
        "category": "health",
        "frequency": "daily",
        "goal": 1,
        "unit": "times",
        "reminder_time": None,
        "streak": 0,
        "is_active": True,
        "created_at": "2024-03-01T08:00:00",
        "progress_date": TODAY.isoformat(),
        "today_progress": 0,
        "is_completed_today": False,
        "completed_yesterday": False,
        "streak_before": None,
    }
    habit.update(fields)
    return habit


def cached_stats(completed=0, total=1, streak=0):
    return compute_stats([], [], TODAY).model_copy(update={
        "today_progress": f"{completed}/{total}",
        "total_habits": total,
        "today_completed": completed,
        "total_streak": streak,
        "completion_rate": completed / total if total else 0.0,
    }).model_dump()


@pytest.fixture
def fake_api():
    return FakeAPI()


@pytest.fixture
def storage(tmp_path):
    with OfflineStorage(tmp_path / "offline.json") as store:
        yield store


@pytest.fixture
def connectivity(fake_api):
    return ConnectivityMonitor(api=fake_api, online=True)


@pytest.fixture
def cache(storage, fake_api, connectivity, clock):
    return HabitCache(storage, fake_api, connectivity, clock=clock)
