import html
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, conint, constr, field_validator

from .services.habit_manager import CATEGORIES, FREQUENCIES
from .services.stats import DailyProgress, HabitStats

Category = Literal[CATEGORIES]
Frequency = Literal[FREQUENCIES]
ReminderTime = constr(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")


def clean_text(value):
    """Trim free text and escape markup characters."""
    if value is None:
        return value
    return html.escape(value.strip(), quote=False)


class HabitBase(BaseModel):
    name: constr(min_length=1, max_length=100)
    category: Category
    frequency: Frequency = "daily"
    goal: conint(ge=1) = 1
    unit: constr(min_length=1, max_length=30) = "times"
    reminder_time: Optional[ReminderTime] = None


class HabitCreate(HabitBase):
    @field_validator("name", "unit", mode="before")
    @classmethod
    def sanitize(cls, value):
        if isinstance(value, str):
            return clean_text(value)
        return value


class HabitUpdate(BaseModel):
    name: Optional[constr(min_length=1, max_length=100)] = None
    category: Optional[Category] = None
    frequency: Optional[Frequency] = None
    goal: Optional[conint(ge=1)] = None
    unit: Optional[constr(min_length=1, max_length=30)] = None
    streak: Optional[conint(ge=0)] = None
    reminder_time: Optional[ReminderTime] = None
    is_active: Optional[bool] = None

    @field_validator("name", "unit", mode="before")
    @classmethod
    def sanitize(cls, value):
        if isinstance(value, str):
            return clean_text(value)
        return value

    def changes(self) -> dict:
        """Fields that were sent, without nulls for columns that cannot be null."""
        data = self.model_dump(exclude_unset=True)
        return {
            key: value for key, value in data.items()
            if value is not None or key == "reminder_time"
        }


class HabitResponse(BaseModel):
    id: int
    user_id: int
    name: str
    category: str
    frequency: str
    goal: int
    unit: str
    reminder_time: Optional[str] = None
    streak: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class HabitWithProgress(HabitResponse):
    progress_date: str
    today_progress: int = 0
    is_completed_today: bool = False
    completed_yesterday: bool = False
    streak_before: Optional[int] = None


class CompletionResponse(BaseModel):
    id: int
    habit_id: int
    date: str
    progress: int
    is_completed: bool
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class HabitActionResponse(BaseModel):
    message: str
    changed: bool
    habit: HabitWithProgress
    completion: Optional[CompletionResponse] = None


class ProgressUpdate(BaseModel):
    delta: int = 1


class MoodCreate(BaseModel):
    mood: conint(ge=1, le=5)
    energy: conint(ge=1, le=5)
    notes: Optional[constr(max_length=500)] = None


class MoodResponse(BaseModel):
    id: int
    user_id: int
    date: str
    mood: int
    energy: int
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CoachingAdvice(BaseModel):
    advice: str


class CoachingTipResponse(BaseModel):
    tip: str


class ChatRequest(BaseModel):
    message: constr(strip_whitespace=True, min_length=1, max_length=1000)


class ChatReply(BaseModel):
    response: str


class ChatMessageResponse(BaseModel):
    id: int
    message: str
    response: str
    created_at: datetime

    class Config:
        from_attributes = True


__all__ = [
    "Category",
    "ChatMessageResponse",
    "ChatReply",
    "ChatRequest",
    "CoachingAdvice",
    "CoachingTipResponse",
    "CompletionResponse",
    "DailyProgress",
    "HabitActionResponse",
    "HabitCreate",
    "HabitResponse",
    "HabitStats",
    "HabitUpdate",
    "HabitWithProgress",
    "MoodCreate",
    "MoodResponse",
    "ProgressUpdate",
    "clean_text",
]
