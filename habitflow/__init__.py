"""HabitFlow: habit tracking API and offline-aware client."""

__version__ = "1.0.0"
