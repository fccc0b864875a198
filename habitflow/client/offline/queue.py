import logging
import uuid
from typing import NamedTuple, Optional

from ..errors import InvalidDataError, NetworkError, NotFoundError
from .storage import OfflineStorage, PendingAction

logger = logging.getLogger(__name__)


class DrainResult(NamedTuple):
    applied: int
    dropped: int
    remaining: int
    error: Optional[str] = None


def new_action(action_type: str, timestamp: int, habit_id: Optional[int] = None, payload: Optional[dict] = None) -> PendingAction:
    return PendingAction(
        id=f"{action_type}_{habit_id}_{timestamp}_{uuid.uuid4().hex[:8]}",
        type=action_type,
        habit_id=habit_id,
        payload=payload,
        timestamp=timestamp,
    )


async def send_action(api, action: PendingAction):
    if action.type == "complete_habit":
        return await api.complete_habit(action.habit_id)
    elif action.type == "undo_habit":
        return await api.undo_habit(action.habit_id)
    elif action.type == "progress_habit":
        return await api.record_progress(action.habit_id, (action.payload or {}).get("delta", 1))
    elif action.type == "create_habit":
        return await api.create_habit(action.payload or {})
    elif action.type == "update_habit":
        return await api.update_habit(action.habit_id, action.payload or {})
    elif action.type == "delete_habit":
        return await api.delete_habit(action.habit_id)
    raise ValueError(f"Unknown action type: {action.type}")


async def drain_pending_actions(storage: OfflineStorage, api) -> DrainResult:
    """Send queued actions to the server one at a time, oldest first.

    An applied action leaves the queue. A rejected one (not found, invalid) is
    dropped, since retrying cannot help. A network failure stops the drain
    and leaves that action and everything behind it queued.
    """
    applied = dropped = 0
    while True:
        action = storage.next_action()
        if action is None:
            return DrainResult(applied, dropped, remaining=0)

        try:
            response = await send_action(api, action)
        except NetworkError as e:
            logger.warning(f"Sync stopped at {action.type} ({action.id}): {e}")
            return DrainResult(applied, dropped, remaining=len(storage.pending_actions), error=str(e))
        except (NotFoundError, InvalidDataError) as e:
            logger.error(f"Server rejected {action.type} ({action.id}), dropping it: {e}")
            storage.remove_action(action.id)
            storage.save()
            dropped += 1
            continue

        if action.type == "create_habit" and action.habit_id is not None:
            server_id = response.get("id") if isinstance(response, dict) else None
            if server_id is None:
                logger.error(f"Create {action.id} answered without an id, dropping it")
                storage.remove_action(action.id)
                storage.save()
                dropped += 1
                continue
            storage.remap_habit_id(action.habit_id, server_id)
        storage.remove_action(action.id)
        storage.save()
        applied += 1
