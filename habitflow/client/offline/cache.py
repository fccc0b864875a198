"""Offline-aware habit cache.

Reads come from the server when online and from the persisted snapshot
otherwise. Mutations are applied to the snapshot right away with the same
transitions the server runs, queued as pending actions, and replayed in order
by :meth:`HabitCache.sync`.
"""
import copy
import logging
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from ...clock import Clock, previous_day
from ...schemas import HabitCreate, HabitUpdate
from ...services import habit_manager
from ...services.habit_manager import CompletionState, HabitState
from ...services.stats import HabitStats
from ...threats import scan_payload
from ..errors import HabitFlowClientError, InvalidDataError, NetworkError, NotFoundError
from ..services.api import HABITS_URL, STATS_URL
from .queue import drain_pending_actions, new_action
from .storage import OfflineStorage

HABITS_KEY = HABITS_URL
STATS_KEY = STATS_URL
STALE_AFTER_MS = 10 * 60 * 1000

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    SYNCED = "synced"
    STALE = "stale"
    DIRTY = "dirty"
    SYNCING = "syncing"


class SyncTrigger(str, Enum):
    STARTUP = "startup"
    TIMER = "timer"
    RECONNECT = "reconnect"
    MANUAL = "manual"


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" for item in error.errors()
    )


def _reject_threats(payload: dict):
    threat = scan_payload(payload)
    if threat:
        raise InvalidDataError(f"Request blocked due to {threat.name} ({threat.code})")


class HabitCache:
    def __init__(self, storage: OfflineStorage, api, connectivity, clock: Optional[Clock] = None):
        self.storage = storage
        self.api = api
        self.connectivity = connectivity
        self.clock = clock or Clock()
        self._syncing = False

    def now_ms(self) -> int:
        return self.clock.epoch_ms()

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def is_stale(self) -> bool:
        return self.now_ms() - self.storage.last_sync > STALE_AFTER_MS

    @property
    def state(self) -> SyncState:
        if self._syncing:
            return SyncState.SYNCING
        if self.storage.pending_actions:
            return SyncState.DIRTY
        if self.is_stale():
            return SyncState.STALE
        return SyncState.SYNCED

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "is_online": self.connectivity.is_online,
            "is_stale": self.is_stale(),
            "pending_actions": len(self.storage.pending_actions),
            "last_sync": self.storage.last_sync,
        }

    # reads

    def cached(self, key: str):
        if key == HABITS_KEY:
            return copy.deepcopy(self.storage.habits)
        if key == STATS_KEY:
            return copy.deepcopy(self.storage.stats) or HabitStats().model_dump()
        raise ValueError(f"Unsupported cache key: {key}")

    async def read(self, key: str):
        if key not in (HABITS_KEY, STATS_KEY):
            raise ValueError(f"Unsupported cache key: {key}")

        if not self.connectivity.is_online:
            logger.debug(f"Offline: returning cached data for {key}")
            return self.cached(key)

        try:
            if key == HABITS_KEY:
                data = await self.api.get_habits()
            else:
                data = await self.api.get_stats()
        except HabitFlowClientError as e:
            logger.warning(f"Failed to fetch {key}, using cached data: {e}")
            return self.cached(key)

        if key == HABITS_KEY:
            self.storage.set_habits(data, self.now_ms())
        else:
            self.storage.set_stats(data, self.now_ms())
        self.storage.save()
        return copy.deepcopy(data)

    # optimistic mutations

    def _find(self, habit_id: int) -> dict:
        for habit in self.storage.habits:
            if habit.get("id") == habit_id:
                return habit
        raise NotFoundError(f"Habit {habit_id} not found")

    def _today_view(self, habit: dict):
        """Today's completion and yesterday's status as seen from the snapshot."""
        day = self.clock.today_str()
        progress_date = habit.get("progress_date")
        completed = bool(habit.get("is_completed_today"))
        if progress_date == day:
            today = CompletionState(
                date=day,
                progress=habit.get("today_progress", 0),
                is_completed=completed,
                streak_before=habit.get("streak_before"),
            )
            return day, today, bool(habit.get("completed_yesterday"))
        # snapshot taken on an earlier day
        return day, None, progress_date == previous_day(day) and completed

    def _adjust_stats(self, completed_delta: int = 0, streak_delta: int = 0, habits_delta: int = 0):
        stats = self.storage.stats
        weekly = (stats or {}).get("weekly_progress") or []
        if not weekly or weekly[-1].get("date") != self.clock.today_str():
            return

        total = max(0, stats.get("total_habits", 0) + habits_delta)
        completed = min(total, max(0, stats.get("today_completed", 0) + completed_delta))
        stats["total_habits"] = total
        stats["today_completed"] = completed
        stats["today_progress"] = f"{completed}/{total}"
        stats["completion_rate"] = completed / total if total else 0.0
        stats["total_streak"] = max(0, stats.get("total_streak", 0) + streak_delta)
        weekly[-1]["completed"] = completed
        weekly[-1]["total"] = total

    def _enqueue(self, action_type: str, habit_id: Optional[int] = None, payload: Optional[dict] = None):
        action = new_action(action_type, self.now_ms(), habit_id=habit_id, payload=payload)
        self.storage.append_action(action)
        # snapshot and queue go to disk in one write
        self.storage.save()
        logger.debug(f"Queued {action.type} ({action.id})")
        return action

    def _apply_transition(self, habit: dict, state: HabitState, today, day: str, completed_yesterday: bool, transition):
        was_completed = bool(today and today.is_completed)
        completion = transition.completion
        habit.update({
            "progress_date": day,
            "today_progress": completion.progress,
            "is_completed_today": completion.is_completed,
            "completed_yesterday": completed_yesterday,
            "streak_before": completion.streak_before,
            "streak": transition.streak,
        })
        self._adjust_stats(
            completed_delta=int(completion.is_completed) - int(was_completed),
            streak_delta=transition.streak - state.streak,
        )

    def _run_transition(self, habit_id: int, compute, payload: Optional[dict] = None) -> dict:
        habit = self._find(habit_id)
        day, today, completed_yesterday = self._today_view(habit)
        state = HabitState(goal=habit.get("goal", 1), streak=habit.get("streak", 0))

        transition, action_type = compute(state, today, day, completed_yesterday)
        if not transition.changed:
            return copy.deepcopy(habit)

        self._apply_transition(habit, state, today, day, completed_yesterday, transition)
        self._enqueue(action_type, habit_id, payload)
        return copy.deepcopy(habit)

    def complete_habit(self, habit_id: int) -> dict:
        def compute(state, today, day, completed_yesterday):
            transition = habit_manager.complete(state, today, day, completed_yesterday, self.clock.now())
            return transition, "complete_habit"
        return self._run_transition(habit_id, compute)

    def undo_habit(self, habit_id: int) -> dict:
        def compute(state, today, day, completed_yesterday):
            return habit_manager.undo(state, today, day), "undo_habit"
        return self._run_transition(habit_id, compute)

    def toggle_habit(self, habit_id: int) -> dict:
        # queued as the resolved direction so a replay stays idempotent
        def compute(state, today, day, completed_yesterday):
            if today is not None and today.is_completed:
                return habit_manager.undo(state, today, day), "undo_habit"
            transition = habit_manager.complete(state, today, day, completed_yesterday, self.clock.now())
            return transition, "complete_habit"
        return self._run_transition(habit_id, compute)

    def record_progress(self, habit_id: int, delta: int = 1) -> dict:
        def compute(state, today, day, completed_yesterday):
            transition = habit_manager.record_progress(
                state, today, day, completed_yesterday, self.clock.now(), delta=delta
            )
            return transition, "progress_habit"
        return self._run_transition(habit_id, compute, payload={"delta": delta})

    def _next_local_id(self) -> int:
        ids = [habit.get("id", 0) for habit in self.storage.habits]
        ids += [action.habit_id for action in self.storage.pending_actions if action.habit_id is not None]
        return min([0] + ids) - 1

    def create_habit(self, data: dict) -> dict:
        """Add a provisional habit with a negative local id and queue its creation."""
        payload = {key: value for key, value in data.items() if key in HabitCreate.model_fields}
        _reject_threats(payload)
        try:
            habit = HabitCreate(**data)
        except ValidationError as e:
            raise InvalidDataError(_validation_message(e)) from e

        local_id = self._next_local_id()
        cached = {
            **habit.model_dump(),
            "id": local_id,
            "user_id": None,
            "streak": 0,
            "is_active": True,
            "created_at": self.clock.now().isoformat(),
            "progress_date": self.clock.today_str(),
            "today_progress": 0,
            "is_completed_today": False,
            "completed_yesterday": False,
            "streak_before": None,
        }
        self.storage.habits.append(cached)
        self._adjust_stats(habits_delta=1)

        self._enqueue("create_habit", local_id, payload)
        logger.info(f"Habit created locally: id={local_id}, name={cached['name']}")
        return copy.deepcopy(cached)

    def _remove(self, habit: dict):
        day, today, _ = self._today_view(habit)
        self.storage.habits.remove(habit)
        self._adjust_stats(
            completed_delta=-int(bool(today and today.is_completed)),
            streak_delta=-habit.get("streak", 0),
            habits_delta=-1,
        )

    def _reconcile_goal(self, habit: dict):
        # the server reconciles on its own when it applies the update
        day, today, completed_yesterday = self._today_view(habit)
        state = HabitState(goal=habit["goal"], streak=habit.get("streak", 0))
        transition = habit_manager.reconcile_goal(state, today, day, completed_yesterday, self.clock.now())
        if transition.changed:
            self._apply_transition(habit, state, today, day, completed_yesterday, transition)

    def update_habit(self, habit_id: int, data: dict) -> Optional[dict]:
        """Apply an allowlisted update; returns None when it deactivated the habit."""
        habit = self._find(habit_id)
        allowed = habit_manager.filter_updates(data)
        _reject_threats(allowed)
        try:
            changes = HabitUpdate(**allowed).changes()
        except ValidationError as e:
            raise InvalidDataError(_validation_message(e)) from e
        if not changes:
            raise InvalidDataError("No valid fields to update")

        if changes.get("is_active") is False:
            self._remove(habit)
            result = None
        else:
            if "streak" in changes:
                self._adjust_stats(streak_delta=changes["streak"] - habit.get("streak", 0))
            habit.update(changes)
            if "goal" in changes:
                self._reconcile_goal(habit)
            result = copy.deepcopy(habit)

        self._enqueue("update_habit", habit_id, allowed)
        return result

    def delete_habit(self, habit_id: int):
        habit = self._find(habit_id)
        self._remove(habit)
        self._enqueue("delete_habit", habit_id)

    # sync

    async def _refresh(self) -> bool:
        try:
            habits = await self.api.get_habits()
            stats = await self.api.get_stats()
        except HabitFlowClientError as e:
            logger.warning(f"Failed to fetch fresh data: {e}")
            return False

        synced_at = self.now_ms()
        self.storage.set_habits(habits, synced_at)
        self.storage.set_stats(stats, synced_at)
        self.storage.save()
        return True

    async def sync(self, reason: SyncTrigger = SyncTrigger.MANUAL) -> bool:
        """Drain the pending queue, then refresh the snapshot from the server.

        Only one sync runs at a time; a call made while one is in flight is
        dropped. Returns True when the queue was fully drained.
        """
        if self._syncing:
            logger.debug(f"Sync already in progress, dropping {reason.value} request")
            return False
        if not self.connectivity.is_online:
            logger.debug(f"Offline, skipping {reason.value} sync")
            return False

        self._syncing = True
        try:
            logger.info(f"Sync started ({reason.value}), {len(self.storage.pending_actions)} pending actions")
            result = await drain_pending_actions(self.storage, self.api)
            if self.connectivity.is_online:
                await self._refresh()
        finally:
            self._syncing = False

        logger.info(
            f"Sync finished ({reason.value}): applied={result.applied}, "
            f"dropped={result.dropped}, remaining={result.remaining}"
        )
        return result.remaining == 0

    async def force_sync(self) -> bool:
        if not self.connectivity.is_online:
            raise NetworkError("Cannot sync while offline")
        return await self.sync(SyncTrigger.MANUAL)
