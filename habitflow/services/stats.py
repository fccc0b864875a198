from datetime import date
from typing import Iterable, List

from pydantic import BaseModel

from ..clock import last_n_days, to_date_str


class DailyProgress(BaseModel):
    date: str
    completed: int
    total: int


class HabitStats(BaseModel):
    today_progress: str = "0/0"
    total_habits: int = 0
    total_streak: int = 0
    today_completed: int = 0
    weekly_progress: List[DailyProgress] = []
    completion_rate: float = 0.0


def _existed_on(habit, day: str) -> bool:
    created_at = getattr(habit, "created_at", None)
    if created_at is None:
        return True
    return to_date_str(created_at) <= day


def compute_stats(habits: Iterable, completions: Iterable, today: date, window: int = 7) -> HabitStats:
    """Aggregate active habits and their completions over the last ``window`` days.

    The rolling window counts, per day, the active habits that existed that day
    and how many of them were completed. Today's numbers count every active
    habit.
    """
    active = [habit for habit in habits if habit.is_active]
    completed_days = {
        (completion.habit_id, completion.date)
        for completion in completions
        if completion.is_completed
    }

    days = last_n_days(today, window)
    weekly_progress = []
    for day in days:
        existing = [habit for habit in active if _existed_on(habit, day)]
        weekly_progress.append(DailyProgress(
            date=day,
            completed=sum(1 for habit in existing if (habit.id, day) in completed_days),
            total=len(existing),
        ))

    today_str = to_date_str(today)
    total_habits = len(active)
    today_completed = sum(1 for habit in active if (habit.id, today_str) in completed_days)

    return HabitStats(
        today_progress=f"{today_completed}/{total_habits}",
        total_habits=total_habits,
        total_streak=sum(habit.streak for habit in active),
        today_completed=today_completed,
        weekly_progress=weekly_progress,
        completion_rate=today_completed / total_habits if total_habits else 0.0,
    )
