from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from . import models
from ..schemas import HabitCreate, MoodCreate
from ..services.habit_manager import Transition


def get_user(db: Session, user_id: int):
    return db.query(models.User).filter(models.User.id == user_id).first()


def ensure_user(db: Session, user_id: int, username: str = "demo"):
    user = get_user(db, user_id)
    if user:
        return user
    user = models.User(id=user_id, username=username)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_habit(db: Session, habit_id: int):
    return db.query(models.Habit).filter(
        models.Habit.id == habit_id,
        models.Habit.is_active == True
    ).first()


def get_habits(db: Session, user_id: int, skip: int = 0, limit: int = 100):
    return db.query(models.Habit).filter(
        models.Habit.user_id == user_id,
        models.Habit.is_active == True
    ).order_by(models.Habit.id).offset(skip).limit(limit).all()


def create_habit(db: Session, user_id: int, habit: HabitCreate, created_at: datetime):
    db_habit = models.Habit(
        **habit.model_dump(),
        user_id=user_id,
        streak=0,
        is_active=True,
        created_at=created_at
    )
    db.add(db_habit)
    db.commit()
    db.refresh(db_habit)
    return db_habit


def update_habit(db: Session, habit: models.Habit, changes: dict):
    for field, value in changes.items():
        setattr(habit, field, value)
    db.commit()
    db.refresh(habit)
    return habit


def deactivate_habit(db: Session, habit_id: int):
    habit = get_habit(db, habit_id)
    if not habit:
        return False

    habit.is_active = False
    db.commit()
    return True


def get_completion(db: Session, habit_id: int, date: str):
    return db.query(models.HabitCompletion).filter(
        models.HabitCompletion.habit_id == habit_id,
        models.HabitCompletion.date == date
    ).first()


def get_completions_since(db: Session, habit_ids: Iterable[int], since: str) -> List[models.HabitCompletion]:
    habit_ids = list(habit_ids)
    if not habit_ids:
        return []
    return db.query(models.HabitCompletion).filter(
        models.HabitCompletion.habit_id.in_(habit_ids),
        models.HabitCompletion.date >= since
    ).all()


def save_transition(db: Session, habit: models.Habit, transition: Transition) -> Optional[models.HabitCompletion]:
    state = transition.completion
    completion = get_completion(db, habit.id, state.date)
    if not transition.changed:
        return completion

    if completion is None:
        completion = models.HabitCompletion(habit_id=habit.id, date=state.date)
        db.add(completion)

    completion.progress = state.progress
    completion.is_completed = state.is_completed
    completion.completed_at = state.completed_at
    completion.streak_before = state.streak_before
    habit.streak = transition.streak

    db.commit()
    db.refresh(completion)
    db.refresh(habit)
    return completion


def get_mood_entries(db: Session, user_id: int):
    return db.query(models.MoodEntry).filter(
        models.MoodEntry.user_id == user_id
    ).order_by(models.MoodEntry.date).all()


def get_recent_mood_entries(db: Session, user_id: int, limit: int = 7):
    return db.query(models.MoodEntry).filter(
        models.MoodEntry.user_id == user_id
    ).order_by(models.MoodEntry.date.desc()).limit(limit).all()


def get_mood_entry_by_date(db: Session, user_id: int, date: str):
    return db.query(models.MoodEntry).filter(
        models.MoodEntry.user_id == user_id,
        models.MoodEntry.date == date
    ).first()


def upsert_mood_entry(db: Session, user_id: int, date: str, entry: MoodCreate, created_at: datetime):
    """Store today's mood, replacing an earlier entry for the same day.

    Returns ``(entry, created)``.
    """
    db_entry = get_mood_entry_by_date(db, user_id, date)
    created = db_entry is None
    if created:
        db_entry = models.MoodEntry(user_id=user_id, date=date, created_at=created_at)
        db.add(db_entry)

    db_entry.mood = entry.mood
    db_entry.energy = entry.energy
    db_entry.notes = entry.notes
    db.commit()
    db.refresh(db_entry)
    return db_entry, created


def create_coaching_tip(db: Session, user_id: int, tip: str, created_at: datetime, category: str = "general"):
    db_tip = models.CoachingTip(user_id=user_id, tip=tip, category=category, created_at=created_at)
    db.add(db_tip)
    db.commit()
    db.refresh(db_tip)
    return db_tip


def get_latest_coaching_tip(db: Session, user_id: int):
    return db.query(models.CoachingTip).filter(
        models.CoachingTip.user_id == user_id
    ).order_by(models.CoachingTip.created_at.desc(), models.CoachingTip.id.desc()).first()


def create_chat_message(db: Session, user_id: int, message: str, response: str, created_at: datetime):
    db_message = models.ChatMessage(
        user_id=user_id,
        message=message,
        response=response,
        created_at=created_at
    )
    db.add(db_message)
    db.commit()
    db.refresh(db_message)
    return db_message


def get_chat_messages(db: Session, user_id: int, limit: int = 20):
    latest = db.query(models.ChatMessage).filter(
        models.ChatMessage.user_id == user_id
    ).order_by(models.ChatMessage.id.desc()).limit(limit).all()
    return list(reversed(latest))
