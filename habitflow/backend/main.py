import logging
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Body, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from . import config, crud, models
from .coaching import CoachingService, DEFAULT_TIP
from .database import SessionLocal, engine
from .security import block_malicious_content, log_data_access
from ..clock import Clock, last_n_days, previous_day
from ..schemas import (
    ChatMessageResponse, ChatReply, ChatRequest, CoachingAdvice, CoachingTipResponse,
    CompletionResponse, HabitActionResponse, HabitCreate, HabitResponse, HabitStats,
    HabitUpdate, HabitWithProgress, MoodCreate, MoodResponse, ProgressUpdate,
)
from ..services import habit_manager
from ..services.habit_manager import CompletionState, HabitState
from ..services.stats import compute_stats

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="HabitFlow API",
    redirect_slashes=False,
    dependencies=[Depends(block_malicious_content)]
)
app.middleware("http")(log_data_access)

clock = Clock(config.HABITFLOW_TIMEZONE)
coach = CoachingService(api_key=config.OPENAI_API_KEY, model=config.OPENAI_MODEL)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Clock:
    return clock


def get_coach() -> CoachingService:
    return coach


def get_user_id() -> int:
    return config.DEFAULT_USER_ID


@app.on_event("startup")
def init_database():
    models.Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        crud.ensure_user(db, config.DEFAULT_USER_ID)
    finally:
        db.close()
    logger.info(f"Database ready, serving user {config.DEFAULT_USER_ID}")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"message": "Invalid habit data", "errors": errors})


def with_progress(db: Session, habit: models.Habit, day: str) -> HabitWithProgress:
    today = crud.get_completion(db, habit.id, day)
    yesterday = crud.get_completion(db, habit.id, previous_day(day))
    return HabitWithProgress(
        **HabitResponse.model_validate(habit).model_dump(),
        progress_date=day,
        today_progress=today.progress if today else 0,
        is_completed_today=bool(today and today.is_completed),
        completed_yesterday=bool(yesterday and yesterday.is_completed),
        streak_before=today.streak_before if today else None,
    )


def load_habit_state(db: Session, habit_id: int, day: str):
    habit = crud.get_habit(db, habit_id=habit_id)
    if not habit:
        raise HTTPException(status_code=404, detail="Habit not found")

    today = crud.get_completion(db, habit.id, day)
    yesterday = crud.get_completion(db, habit.id, previous_day(day))
    current = CompletionState.model_validate(today) if today else None
    return habit, HabitState.model_validate(habit), current, bool(yesterday and yesterday.is_completed)


def action_response(db: Session, habit: models.Habit, transition, message: str, day: str) -> HabitActionResponse:
    completion = crud.save_transition(db, habit, transition)
    return HabitActionResponse(
        message=message,
        changed=transition.changed,
        habit=with_progress(db, habit, day),
        completion=CompletionResponse.model_validate(completion) if completion else None,
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/habits", response_model=List[HabitWithProgress])
def read_habits(
        skip: int = 0,
        limit: int = 100,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        user_id: int = Depends(get_user_id)
):
    day = clock.today_str()
    habits = crud.get_habits(db, user_id=user_id, skip=skip, limit=limit)
    return [with_progress(db, habit, day) for habit in habits]


@app.post("/api/habits", response_model=HabitResponse, status_code=status.HTTP_201_CREATED)
def create_habit(
        habit: HabitCreate,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        user_id: int = Depends(get_user_id)
):
    db_habit = crud.create_habit(db, user_id=user_id, habit=habit, created_at=clock.now())
    logger.info(f"Habit created: id={db_habit.id}, name={db_habit.name}")
    return db_habit


@app.get("/api/habits/stats", response_model=HabitStats)
def read_stats(
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        user_id: int = Depends(get_user_id)
):
    today = clock.today()
    habits = crud.get_habits(db, user_id=user_id, limit=None)
    window = last_n_days(today, config.STATS_WINDOW_DAYS)
    completions = crud.get_completions_since(db, [habit.id for habit in habits], since=window[0])
    return compute_stats(habits, completions, today, window=config.STATS_WINDOW_DAYS)


@app.get("/api/habits/{habit_id}", response_model=HabitWithProgress)
def read_habit(habit_id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    habit = crud.get_habit(db, habit_id=habit_id)
    if not habit:
        raise HTTPException(status_code=404, detail="Habit not found")
    return with_progress(db, habit, clock.today_str())


@app.patch("/api/habits/{habit_id}", response_model=HabitResponse)
def update_habit(
        habit_id: int,
        data: dict = Body(...),
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock)
):
    try:
        changes = HabitUpdate(**habit_manager.filter_updates(data)).changes()
    except ValidationError as e:
        errors = [{"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()]
        raise HTTPException(status_code=400, detail={"message": "Invalid habit data", "errors": errors})
    if not changes:
        raise HTTPException(status_code=400, detail="No valid fields to update")

    habit = crud.get_habit(db, habit_id=habit_id)
    if not habit:
        raise HTTPException(status_code=404, detail="Habit not found")

    habit = crud.update_habit(db, habit, changes)
    if "goal" in changes and habit.is_active:
        day = clock.today_str()
        _, state, today, completed_yesterday = load_habit_state(db, habit.id, day)
        transition = habit_manager.reconcile_goal(state, today, day, completed_yesterday, clock.now())
        crud.save_transition(db, habit, transition)
    return habit


@app.delete("/api/habits/{habit_id}")
def delete_habit(habit_id: int, db: Session = Depends(get_db)):
    success = crud.deactivate_habit(db, habit_id=habit_id)
    if not success:
        raise HTTPException(status_code=404, detail="Habit not found")
    logger.info(f"Habit deactivated: id={habit_id}")
    return {"success": True}


@app.post("/api/habits/{habit_id}/toggle", response_model=HabitActionResponse)
def toggle_habit(habit_id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    day = clock.today_str()
    habit, state, today, completed_yesterday = load_habit_state(db, habit_id, day)
    transition = habit_manager.toggle_completion(state, today, day, completed_yesterday, clock.now())
    if transition.completion.is_completed:
        message = f"{habit.name} completed! Great job!"
    else:
        message = f"{habit.name} completion undone"
    return action_response(db, habit, transition, message, day)


@app.post("/api/habits/{habit_id}/complete", response_model=HabitActionResponse)
def complete_habit(habit_id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    day = clock.today_str()
    habit, state, today, completed_yesterday = load_habit_state(db, habit_id, day)
    transition = habit_manager.complete(state, today, day, completed_yesterday, clock.now())
    if transition.changed:
        message = f"{habit.name} completed! Great job!"
    else:
        message = f"{habit.name} already completed today"
    return action_response(db, habit, transition, message, day)


@app.post("/api/habits/{habit_id}/undo", response_model=HabitActionResponse)
def undo_habit(habit_id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    day = clock.today_str()
    habit, state, today, _ = load_habit_state(db, habit_id, day)
    transition = habit_manager.undo(state, today, day)
    if transition.changed:
        message = f"{habit.name} completion undone"
    else:
        message = f"{habit.name} wasn't completed today"
    return action_response(db, habit, transition, message, day)


@app.post("/api/habits/{habit_id}/progress", response_model=HabitActionResponse)
def record_habit_progress(
        habit_id: int,
        update: Optional[ProgressUpdate] = None,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock)
):
    day = clock.today_str()
    habit, state, today, completed_yesterday = load_habit_state(db, habit_id, day)
    delta = update.delta if update else 1
    transition = habit_manager.record_progress(state, today, day, completed_yesterday, clock.now(), delta=delta)
    progress = transition.completion.progress
    message = f"{habit.name}: {progress}/{habit.goal} {habit.unit}"
    return action_response(db, habit, transition, message, day)


@app.post("/api/mood", response_model=MoodResponse)
def save_mood(
        entry: MoodCreate,
        response: Response,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        user_id: int = Depends(get_user_id)
):
    db_entry, created = crud.upsert_mood_entry(db, user_id, clock.today_str(), entry, clock.now())
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return db_entry


@app.get("/api/mood", response_model=List[MoodResponse])
def read_mood_entries(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    return crud.get_mood_entries(db, user_id)


@app.get("/api/mood/recent", response_model=List[MoodResponse])
def read_recent_mood_entries(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    return crud.get_recent_mood_entries(db, user_id, limit=7)


@app.get("/api/mood/{date}", response_model=Optional[MoodResponse])
def read_mood_entry(date: str, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    return crud.get_mood_entry_by_date(db, user_id, date)


@app.post("/api/coaching/advice", response_model=CoachingAdvice)
async def coaching_advice(
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        coach: CoachingService = Depends(get_coach),
        user_id: int = Depends(get_user_id)
):
    stats = read_stats(db=db, clock=clock, user_id=user_id)
    habits = crud.get_habits(db, user_id=user_id, limit=None)
    recent_progress = [f"{day.completed}/{day.total}" for day in stats.weekly_progress]

    advice = await coach.advice([habit.name for habit in habits], recent_progress)
    crud.create_coaching_tip(db, user_id, advice, created_at=clock.now())
    return {"advice": advice}


@app.get("/api/coaching/latest", response_model=CoachingTipResponse)
def latest_coaching_tip(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    tip = crud.get_latest_coaching_tip(db, user_id)
    return {"tip": tip.tip if tip else DEFAULT_TIP}


@app.post("/api/coaching/chat", response_model=ChatReply)
async def coaching_chat(
        request: ChatRequest,
        db: Session = Depends(get_db),
        clock: Clock = Depends(get_clock),
        coach: CoachingService = Depends(get_coach),
        user_id: int = Depends(get_user_id)
):
    stats = read_stats(db=db, clock=clock, user_id=user_id)
    habits = crud.get_habits(db, user_id=user_id, limit=None)
    moods = crud.get_recent_mood_entries(db, user_id, limit=7)
    average_mood = sum(entry.mood for entry in moods) / len(moods) if moods else None

    reply = await coach.chat(
        request.message,
        [habit.name for habit in habits],
        completed_today=stats.today_completed,
        total_habits=stats.total_habits,
        average_mood=average_mood,
    )
    crud.create_chat_message(db, user_id, request.message, reply, created_at=clock.now())
    return {"response": reply}


@app.get("/api/coaching/chat", response_model=List[ChatMessageResponse])
def chat_history(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    return crud.get_chat_messages(db, user_id, limit=20)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("habitflow.backend.main:app", host="0.0.0.0", port=8000)
