import json

import pytest
from click.testing import CliRunner

from conftest import cached_habit
from habitflow.client.main import main


@pytest.fixture
def cache_file(tmp_path):
    return str(tmp_path / "offline.json")


@pytest.fixture
def invoke(fake_api, clock, cache_file):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(main, ["--cache", cache_file, *args], obj={"api": fake_api, "clock": clock})
    return _invoke


def pending(cache_file):
    with open(cache_file, encoding="utf-8") as f:
        return [action["type"] for action in json.load(f)["pending_actions"]]


def test_offline_add_and_list(invoke, fake_api, cache_file):
    fake_api.offline = True

    result = invoke("add", "Stretch", "--category", "fitness", "--goal", "2")
    assert result.exit_code == 0, result.output
    assert "Added 'Stretch'" in result.output

    result = invoke("list")
    assert result.exit_code == 0
    assert "Stretch" in result.output
    assert "(not synced)" in result.output
    assert "offline, 1 pending" in result.output
    assert pending(cache_file) == ["create_habit"]


def test_online_done_syncs_immediately(invoke, fake_api, cache_file):
    fake_api.habits = [cached_habit(1)]
    assert invoke("list").exit_code == 0

    fake_api.habits = [cached_habit(1, streak=1, today_progress=1, is_completed_today=True)]
    result = invoke("done", "1")

    assert result.exit_code == 0, result.output
    assert "[x]" in result.output
    assert ("complete_habit", 1) in fake_api.calls
    assert pending(cache_file) == []


def test_offline_actions_sync_later(invoke, fake_api, cache_file):
    fake_api.habits = [cached_habit(1, goal=3)]
    invoke("list")

    fake_api.offline = True
    assert invoke("progress", "1", "--delta", "2").exit_code == 0
    assert invoke("undo", "1").exit_code == 0
    assert pending(cache_file) == ["progress_habit"]

    result = invoke("sync")
    assert "Offline" in result.output

    fake_api.offline = False
    result = invoke("sync")
    assert result.exit_code == 0
    assert "Synced" in result.output
    assert ("record_progress", 1, 2) in fake_api.calls
    assert pending(cache_file) == []


def test_unknown_habit_fails(invoke, fake_api):
    fake_api.offline = True

    result = invoke("done", "42")

    assert result.exit_code == 1
    assert "Not found" in result.output


def test_invalid_edit_fails(invoke, fake_api, cache_file):
    fake_api.habits = [cached_habit(1)]
    invoke("list")

    result = invoke("edit", "1", "--goal", "0")

    assert result.exit_code == 1
    assert "Invalid data" in result.output
    assert pending(cache_file) == []


def test_status(invoke, fake_api):
    fake_api.offline = True
    result = invoke("status")

    assert result.exit_code == 0
    assert "state: stale" in result.output
    assert "is_online: False" in result.output


def test_add_with_blocked_pattern_fails(invoke, fake_api, cache_file):
    fake_api.habits = []
    invoke("list")
    fake_api.offline = True

    result = invoke("add", "Run 5k -- morning", "--category", "fitness")

    assert result.exit_code == 1
    assert "Invalid data" in result.output
    assert pending(cache_file) == []
    assert "Run 5k" not in invoke("list").output
