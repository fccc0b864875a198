from datetime import date, datetime, timedelta

from habitflow.clock import to_date_str
from habitflow.services.habit_manager import (
    CompletionState,
    HabitState,
    complete,
    filter_updates,
    reconcile_goal,
    record_progress,
    toggle_completion,
    undo,
)

DAY = "2024-03-15"
NOW = datetime(2024, 3, 15, 9, 30)


def test_complete_starts_streak_after_gap():
    result = complete(HabitState(streak=4), None, DAY, completed_yesterday=False, now=NOW)

    assert result.changed
    assert result.streak == 1
    assert result.completion.is_completed
    assert result.completion.progress == 1
    assert result.completion.completed_at == NOW
    assert result.completion.streak_before == 4


def test_complete_continues_streak():
    result = complete(HabitState(streak=4), None, DAY, completed_yesterday=True, now=NOW)
    assert result.streak == 5


def test_complete_is_noop_when_already_completed():
    done = CompletionState(date=DAY, progress=1, is_completed=True, streak_before=2)
    result = complete(HabitState(streak=3), done, DAY, completed_yesterday=True, now=NOW)

    assert not result.changed
    assert result.streak == 3
    assert result.completion == done


def test_undo_without_completion_is_noop():
    result = undo(HabitState(streak=3), None, DAY)
    assert not result.changed
    assert result.streak == 3
    assert not result.completion.is_completed


def test_undo_falls_back_to_decrement():
    done = CompletionState(date=DAY, progress=1, is_completed=True)
    assert undo(HabitState(streak=3), done, DAY).streak == 2
    assert undo(HabitState(streak=0), done, DAY).streak == 0


def test_undo_of_complete_restores_habit():
    for streak, completed_yesterday in [(0, False), (4, False), (4, True)]:
        habit = HabitState(goal=3, streak=streak)

        done = complete(habit, None, DAY, completed_yesterday, NOW)
        reverted = undo(HabitState(goal=3, streak=done.streak), done.completion, DAY)

        assert reverted.streak == streak
        assert reverted.completion == CompletionState(date=DAY)


def test_consecutive_days_build_streak():
    habit = HabitState()
    start = date(2024, 3, 1)
    for offset in range(5):
        day = to_date_str(start + timedelta(days=offset))
        result = complete(habit, None, day, completed_yesterday=offset > 0, now=NOW)
        habit = HabitState(streak=result.streak)

    assert habit.streak == 5


def test_gap_resets_streak():
    day1 = complete(HabitState(), None, "2024-03-01", completed_yesterday=False, now=NOW)
    day3 = complete(HabitState(streak=day1.streak), None, "2024-03-03", completed_yesterday=False, now=NOW)
    assert day3.streak == 1


def test_toggle_dispatches_on_today_state():
    habit = HabitState(streak=2)
    first = toggle_completion(habit, None, DAY, completed_yesterday=True, now=NOW)
    assert first.completion.is_completed
    assert first.streak == 3

    second = toggle_completion(HabitState(streak=first.streak), first.completion, DAY, True, NOW)
    assert not second.completion.is_completed
    assert second.streak == 2


def test_progress_reaches_goal_and_clamps():
    habit = HabitState(goal=8)
    today = None
    for _ in range(4):
        result = record_progress(habit, today, DAY, completed_yesterday=False, now=NOW, delta=2)
        habit = HabitState(goal=8, streak=result.streak)
        today = result.completion

    assert today.progress == 8
    assert today.is_completed
    assert habit.streak == 1

    extra = record_progress(habit, today, DAY, completed_yesterday=False, now=NOW, delta=2)
    assert extra.completion.progress == 8
    assert not extra.changed


def test_progress_never_negative():
    result = record_progress(HabitState(goal=5), None, DAY, False, NOW, delta=-3)
    assert result.completion.progress == 0
    assert not result.changed

    partial = CompletionState(date=DAY, progress=2)
    result = record_progress(HabitState(goal=5), partial, DAY, False, NOW, delta=-10)
    assert result.completion.progress == 0
    assert result.changed


def test_progress_below_goal_after_completion_counts_as_undo():
    habit = HabitState(goal=4, streak=6)
    done = CompletionState(date=DAY, progress=4, is_completed=True, streak_before=5)

    result = record_progress(habit, done, DAY, completed_yesterday=True, now=NOW, delta=-1)

    assert result.changed
    assert result.completion.progress == 3
    assert not result.completion.is_completed
    assert result.streak == 5


def test_reconcile_goal_follows_new_goal():
    done = CompletionState(date=DAY, progress=8, is_completed=True, streak_before=2)

    lowered = reconcile_goal(HabitState(goal=5, streak=3), done, DAY, True, NOW)
    assert lowered.changed
    assert lowered.completion.progress == 5
    assert lowered.completion.is_completed
    assert lowered.streak == 3

    raised = reconcile_goal(HabitState(goal=10, streak=3), done, DAY, True, NOW)
    assert raised.completion.progress == 8
    assert not raised.completion.is_completed
    assert raised.streak == 2

    partial = CompletionState(date=DAY, progress=6)
    reached = reconcile_goal(HabitState(goal=6, streak=0), partial, DAY, False, NOW)
    assert reached.completion.is_completed
    assert reached.streak == 1

    assert not reconcile_goal(HabitState(goal=3), None, DAY, False, NOW).changed


def test_filter_updates_drops_unknown_fields():
    data = {"name": "Run", "goal": 2, "id": 7, "user_id": 3, "is_active": False}
    assert filter_updates(data) == {"name": "Run", "goal": 2, "is_active": False}
