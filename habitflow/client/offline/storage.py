"""Durable client-side state: last habit/stats snapshot plus the pending queue.

Everything lives in one JSON document that is rewritten atomically (temp
file + rename), so the snapshot and the queue are always persisted together.
"""
import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel

from ..errors import StorageError

DEFAULT_CACHE_PATH = os.getenv("HABITFLOW_CACHE_PATH", "~/.habitflow/offline.json")

ActionType = Literal[
    "complete_habit",
    "undo_habit",
    "create_habit",
    "update_habit",
    "progress_habit",
    "delete_habit",
]

logger = logging.getLogger(__name__)


class PendingAction(BaseModel):
    id: str
    type: ActionType
    habit_id: Optional[int] = None
    payload: Optional[dict] = None
    timestamp: int


class OfflineData(BaseModel):
    habits: List[dict] = []
    stats: Optional[dict] = None
    last_sync: int = 0
    pending_actions: List[PendingAction] = []


class OfflineStorage:
    def __init__(self, path=DEFAULT_CACHE_PATH):
        self.path = Path(path).expanduser()
        self.data = OfflineData()
        self.is_open = False

    def open(self):
        self.data = self._load()
        self.is_open = True
        logger.debug(f"Offline cache opened: {self.path} ({len(self.data.pending_actions)} pending actions)")
        return self

    def close(self):
        if not self.is_open:
            return
        self.save()
        self.is_open = False

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _load(self) -> OfflineData:
        if not self.path.exists():
            return OfflineData()
        try:
            return OfflineData.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to parse offline data in {self.path}, using defaults: {e}")
            return OfflineData()

    def _write(self):
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(self.data.model_dump_json(), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to save offline data to {self.path}: {e}") from e

    def save(self) -> bool:
        """Persist snapshot and queue. Failures are logged, never raised."""
        try:
            self._write()
        except StorageError as e:
            logger.error(str(e))
            return False
        return True

    # The lists below are the live in-memory state; call save() after changing them.

    @property
    def habits(self) -> List[dict]:
        return self.data.habits

    @property
    def stats(self) -> Optional[dict]:
        return self.data.stats

    @property
    def last_sync(self) -> int:
        return self.data.last_sync

    @property
    def pending_actions(self) -> List[PendingAction]:
        return self.data.pending_actions

    def set_habits(self, habits: List[dict], synced_at: int):
        self.data.habits = habits
        self.data.last_sync = synced_at

    def set_stats(self, stats: dict, synced_at: int):
        self.data.stats = stats
        self.data.last_sync = synced_at

    def append_action(self, action: PendingAction):
        self.data.pending_actions.append(action)

    def next_action(self) -> Optional[PendingAction]:
        if not self.data.pending_actions:
            return None
        return self.data.pending_actions[0]

    def remove_action(self, action_id: str):
        self.data.pending_actions = [
            action for action in self.data.pending_actions if action.id != action_id
        ]

    def remap_habit_id(self, old_id: int, new_id: int):
        """Point queued actions and the cached habit at a server-assigned id."""
        for action in self.data.pending_actions:
            if action.habit_id == old_id:
                action.habit_id = new_id
        for habit in self.data.habits:
            if habit.get("id") == old_id:
                habit["id"] = new_id
