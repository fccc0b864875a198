import asyncio
import logging
import os
from contextlib import asynccontextmanager

import click

from .errors import InvalidDataError, NotFoundError
from .offline.cache import HABITS_KEY, STATS_KEY, HabitCache, SyncTrigger
from .offline.connectivity import ConnectivityMonitor
from .offline.storage import DEFAULT_CACHE_PATH, OfflineStorage
from .offline.sync import PROBE_INTERVAL, SYNC_INTERVAL, SyncOrchestrator
from .services.api import BASE_URL, HabitFlowAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_cache(obj: dict, sync_after: bool = False):
    """Open the offline store, probe the API and yield a ready cache."""
    api = obj.get("api") or HabitFlowAPI(base_url=obj["api_url"])
    connectivity = ConnectivityMonitor(api=api, online=False)
    with OfflineStorage(obj["cache_path"]) as storage:
        cache = HabitCache(storage, api, connectivity, clock=obj.get("clock"))
        await connectivity.probe()
        try:
            yield cache
        except NotFoundError as e:
            raise click.ClickException(f"Not found: {e}")
        except InvalidDataError as e:
            raise click.ClickException(f"Invalid data: {e}")
        if sync_after:
            await cache.sync(SyncTrigger.MANUAL)


def run(coro):
    return asyncio.run(coro)


def format_habit(habit: dict) -> str:
    mark = "x" if habit.get("is_completed_today") else " "
    progress = f"{habit.get('today_progress', 0)}/{habit.get('goal', 1)} {habit.get('unit', '')}".rstrip()
    local = " (not synced)" if habit.get("id", 0) < 0 else ""
    return (
        f"[{mark}] {habit['id']:>4}  {habit['name']}  "
        f"{progress}  streak {habit.get('streak', 0)}{local}"
    )


def echo_status(cache: HabitCache):
    status = cache.status()
    if not status["is_online"]:
        click.echo(f"offline, {status['pending_actions']} pending")
    elif status["pending_actions"]:
        click.echo(f"{status['pending_actions']} pending")


@click.group()
@click.option("--api-url", default=BASE_URL, show_default=True, help="HabitFlow API base URL")
@click.option("--cache", "cache_path", default=DEFAULT_CACHE_PATH, show_default=True, help="Offline cache file")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log sync activity")
@click.pass_context
def main(ctx, api_url, cache_path, verbose):
    """HabitFlow habit tracker"""
    logging.basicConfig(level=logging.DEBUG if verbose else os.getenv("LOG_LEVEL", "WARNING"))
    ctx.ensure_object(dict)
    ctx.obj.setdefault("api_url", api_url)
    ctx.obj.setdefault("cache_path", cache_path)


@main.command("list")
@click.pass_obj
def list_habits(obj):
    """Show habits with today's progress."""
    async def _run():
        async with open_cache(obj) as cache:
            habits = await cache.read(HABITS_KEY)
            if not habits:
                click.echo("No habits yet.")
            for habit in habits:
                click.echo(format_habit(habit))
            echo_status(cache)
    run(_run())


@main.command()
@click.pass_obj
def stats(obj):
    """Show today's totals and the weekly trail."""
    async def _run():
        async with open_cache(obj) as cache:
            data = await cache.read(STATS_KEY)
            click.echo(f"Today: {data['today_progress']} ({data['completion_rate']:.0%})")
            click.echo(f"Habits: {data['total_habits']}  total streak: {data['total_streak']}")
            for day in data.get("weekly_progress", []):
                click.echo(f"  {day['date']}  {day['completed']}/{day['total']}")
            echo_status(cache)
    run(_run())


@main.command()
@click.argument("name")
@click.option("--category", default="other", show_default=True)
@click.option("--frequency", default="daily", show_default=True)
@click.option("--goal", default=1, type=int, show_default=True)
@click.option("--unit", default="times", show_default=True)
@click.option("--reminder", "reminder_time", default=None, help="Reminder time (HH:MM)")
@click.pass_obj
def add(obj, name, category, frequency, goal, unit, reminder_time):
    """Create a habit."""
    data = {"name": name, "category": category, "frequency": frequency, "goal": goal, "unit": unit}
    if reminder_time:
        data["reminder_time"] = reminder_time

    async def _run():
        async with open_cache(obj, sync_after=True) as cache:
            habit = cache.create_habit(data)
            click.echo(f"Added '{habit['name']}'")
    run(_run())


async def _apply(obj, method_name: str, habit_id: int, *args):
    async with open_cache(obj, sync_after=True) as cache:
        habit = getattr(cache, method_name)(habit_id, *args)
        click.echo(format_habit(habit))


@main.command()
@click.argument("habit_id", type=int)
@click.pass_obj
def done(obj, habit_id):
    """Mark a habit completed today."""
    run(_apply(obj, "complete_habit", habit_id))


@main.command()
@click.argument("habit_id", type=int)
@click.pass_obj
def undo(obj, habit_id):
    """Undo today's completion."""
    run(_apply(obj, "undo_habit", habit_id))


@main.command()
@click.argument("habit_id", type=int)
@click.pass_obj
def toggle(obj, habit_id):
    """Complete the habit, or undo it if already completed today."""
    run(_apply(obj, "toggle_habit", habit_id))


@main.command()
@click.argument("habit_id", type=int)
@click.option("--delta", default=1, type=int, show_default=True, help="Amount to add (negative to subtract)")
@click.pass_obj
def progress(obj, habit_id, delta):
    """Record partial progress towards the goal."""
    run(_apply(obj, "record_progress", habit_id, delta))


@main.command()
@click.argument("habit_id", type=int)
@click.option("--name", default=None)
@click.option("--category", default=None)
@click.option("--frequency", default=None)
@click.option("--goal", default=None, type=int)
@click.option("--unit", default=None)
@click.option("--streak", default=None, type=int)
@click.option("--reminder", "reminder_time", default=None, help="Reminder time (HH:MM)")
@click.pass_obj
def edit(obj, habit_id, **fields):
    """Change habit fields."""
    changes = {key: value for key, value in fields.items() if value is not None}

    async def _run():
        async with open_cache(obj, sync_after=True) as cache:
            habit = cache.update_habit(habit_id, changes)
            click.echo(format_habit(habit) if habit else f"Habit {habit_id} deactivated")
    run(_run())


@main.command()
@click.argument("habit_id", type=int)
@click.pass_obj
def delete(obj, habit_id):
    """Deactivate a habit."""
    async def _run():
        async with open_cache(obj, sync_after=True) as cache:
            cache.delete_habit(habit_id)
            click.echo(f"Habit {habit_id} deleted")
    run(_run())


@main.command()
@click.pass_obj
def sync(obj):
    """Push pending actions and refresh the cache."""
    async def _run():
        async with open_cache(obj) as cache:
            if not cache.connectivity.is_online:
                click.echo(f"Offline, {len(cache.storage.pending_actions)} actions kept for later")
                return
            drained = await cache.force_sync()
            remaining = len(cache.storage.pending_actions)
            click.echo("Synced" if drained else f"Sync incomplete, {remaining} actions pending")
    run(_run())


@main.command()
@click.pass_obj
def status(obj):
    """Show sync state."""
    async def _run():
        async with open_cache(obj) as cache:
            for key, value in cache.status().items():
                click.echo(f"{key}: {value}")
    run(_run())


@main.command()
@click.option("--interval", default=SYNC_INTERVAL, type=int, show_default=True, help="Seconds between syncs")
@click.option("--probe-interval", default=PROBE_INTERVAL, type=int, show_default=True,
              help="Seconds between connectivity checks")
@click.pass_obj
def watch(obj, interval, probe_interval):
    """Keep syncing in the background until interrupted."""
    async def _run():
        async with open_cache(obj) as cache:
            orchestrator = SyncOrchestrator(cache, cache.connectivity, interval, probe_interval)
            orchestrator.start()
            orchestrator.request_sync(SyncTrigger.STARTUP)
            click.echo("Watching for changes, press Ctrl+C to stop")
            try:
                await asyncio.Event().wait()
            finally:
                orchestrator.shutdown()
                await orchestrator.wait_idle()

    try:
        run(_run())
    except KeyboardInterrupt:
        click.echo("Stopped")


if __name__ == "__main__":
    main()
