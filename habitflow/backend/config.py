import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://habit_user:habit_pass@db:5432/habit_db")
HABITFLOW_TIMEZONE = os.getenv("HABITFLOW_TIMEZONE") or None
DEFAULT_USER_ID = int(os.getenv("DEFAULT_USER_ID", "1"))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or None
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

STATS_WINDOW_DAYS = 7
