"""Habit state transitions.

The functions here are pure: they take a habit's goal/streak and the
completion row for one day and return the new completion and streak. The API
persists the result; the offline client applies it to its cached snapshot.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

CATEGORIES = ("health", "fitness", "mindfulness", "learning", "productivity", "other")
FREQUENCIES = ("daily", "weekly", "custom")

UPDATABLE_FIELDS = (
    "name",
    "category",
    "frequency",
    "goal",
    "unit",
    "streak",
    "reminder_time",
    "is_active",
)


class HabitState(BaseModel):
    goal: int = 1
    streak: int = 0

    class Config:
        from_attributes = True
        frozen = True


class CompletionState(BaseModel):
    date: str
    progress: int = 0
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    streak_before: Optional[int] = None

    class Config:
        from_attributes = True
        frozen = True


class Transition(BaseModel):
    completion: CompletionState
    streak: int
    changed: bool = True

    class Config:
        frozen = True


def filter_updates(data: dict) -> dict:
    """Keep only the fields a habit update may touch."""
    return {key: value for key, value in data.items() if key in UPDATABLE_FIELDS}


def continued_streak(habit: HabitState, completed_yesterday: bool) -> int:
    if completed_yesterday:
        return habit.streak + 1
    return 1


def restored_streak(habit: HabitState, completion: CompletionState) -> int:
    if completion.streak_before is not None:
        return completion.streak_before
    return max(0, habit.streak - 1)


def complete(
        habit: HabitState,
        today: Optional[CompletionState],
        day: str,
        completed_yesterday: bool,
        now: datetime
) -> Transition:
    current = today or CompletionState(date=day)
    if current.is_completed:
        return Transition(completion=current, streak=habit.streak, changed=False)

    completion = current.model_copy(update={
        "progress": habit.goal,
        "is_completed": True,
        "completed_at": now,
        "streak_before": habit.streak,
    })
    return Transition(completion=completion, streak=continued_streak(habit, completed_yesterday))


def undo(habit: HabitState, today: Optional[CompletionState], day: str) -> Transition:
    current = today or CompletionState(date=day)
    if not current.is_completed:
        return Transition(completion=current, streak=habit.streak, changed=False)

    return Transition(
        completion=CompletionState(date=current.date),
        streak=restored_streak(habit, current)
    )


def toggle_completion(
        habit: HabitState,
        today: Optional[CompletionState],
        day: str,
        completed_yesterday: bool,
        now: datetime
) -> Transition:
    if today is not None and today.is_completed:
        return undo(habit, today, day)
    return complete(habit, today, day, completed_yesterday, now)


def record_progress(
        habit: HabitState,
        today: Optional[CompletionState],
        day: str,
        completed_yesterday: bool,
        now: datetime,
        delta: int = 1
) -> Transition:
    """Add ``delta`` to the day's progress, clamped to ``[0, goal]``.

    Reaching the goal completes the day with the same streak rule as
    :func:`complete`. Falling back below the goal after completion counts as
    one undo.
    """
    current = today or CompletionState(date=day)
    progress = min(max(current.progress + delta, 0), habit.goal)

    if progress >= habit.goal and not current.is_completed:
        return complete(habit, current, day, completed_yesterday, now)

    if progress < habit.goal and current.is_completed:
        reverted = undo(habit, current, day)
        return Transition(
            completion=reverted.completion.model_copy(update={"progress": progress}),
            streak=reverted.streak
        )

    return Transition(
        completion=current.model_copy(update={"progress": progress}),
        streak=habit.streak,
        changed=progress != current.progress
    )


def reconcile_goal(
        habit: HabitState,
        today: Optional[CompletionState],
        day: str,
        completed_yesterday: bool,
        now: datetime
) -> Transition:
    """Bring the day's completion in line with a changed goal.

    ``habit`` already carries the new goal. Progress is clamped to it, and the
    day is completed or undone so that ``is_completed`` matches
    ``progress >= goal`` again.
    """
    return record_progress(habit, today, day, completed_yesterday, now, delta=0)
