"""CLI tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from core.event_bus import CHANGE_EVENT
from core.orchestrator import Orchestrator
from ui.cli import commands
from ui.cli.cli import app

runner = CliRunner()


def invoke(tmp_path: Path, *args: str):
    return runner.invoke(app, ["--root", str(tmp_path), *args])


def store_pain(tmp_path: Path) -> str:
    result = invoke(
        tmp_path,
        "memory",
        "store",
        "pain",
        "Docker deploy failed on missing env",
        "--content",
        "The container crashed because DATABASE_URL was unset.",
        "--rule",
        "Check env vars before deploying containers",
        "--tag",
        "deployment",
        "--tag",
        "configuration",
        "--skip-gate",
    )
    assert result.exit_code == 0, result.output
    assert result.output.startswith("accept: ")
    return result.output.split()[1]


def test_store_list_show_and_delete(tmp_path: Path) -> None:
    memory_id = store_pain(tmp_path)

    listed = invoke(tmp_path, "memory", "list")
    assert listed.exit_code == 0
    assert f"{memory_id} [pain/" in listed.output
    assert "1 memories" in listed.output

    shown = invoke(tmp_path, "memory", "show", memory_id)
    assert shown.exit_code == 0
    assert json.loads(shown.stdout)["tags"] == ["deployment", "configuration"]

    deleted = invoke(tmp_path, "memory", "delete", memory_id)
    assert deleted.exit_code == 0
    assert "1 memories" not in invoke(tmp_path, "memory", "list").output


def test_unknown_memory_exits_with_error(tmp_path: Path) -> None:
    result = invoke(tmp_path, "memory", "show", "mem_missing")

    assert result.exit_code == 1


def test_invalid_memory_type_exits_with_error(tmp_path: Path) -> None:
    result = invoke(tmp_path, "memory", "store", "rumor", "Heard something")

    assert result.exit_code == 1


def test_retrieve_json(tmp_path: Path) -> None:
    memory_id = store_pain(tmp_path)

    result = invoke(tmp_path, "retrieve", "docker deploy failing", "--json")

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [item["id"] for item in payload["pain"]] == [memory_id]
    assert payload["attention"].startswith("DEPLOYMENT")


def test_retrieve_without_matches(tmp_path: Path) -> None:
    result = invoke(tmp_path, "retrieve", "tune the css grid")

    assert result.exit_code == 0
    assert "No relevant memories." in result.output


def test_health_maintain_review_and_config(tmp_path: Path) -> None:
    store_pain(tmp_path)

    health = invoke(tmp_path, "health")
    assert health.exit_code == 0
    assert health.output.startswith("Brain Health: ")

    health_json = invoke(tmp_path, "health", "--json")
    assert json.loads(health_json.stdout)["memories"]["total"] == 1

    maintained = invoke(tmp_path, "maintain")
    assert maintained.exit_code == 0
    assert json.loads(maintained.stdout)["mode"] == "deep"

    light = invoke(tmp_path, "maintain", "--mode", "light")
    assert json.loads(light.stdout)["mode"] == "light"

    assert invoke(tmp_path, "memory", "review").output.strip() == "Nothing to review."
    assert invoke(tmp_path, "cortex", "candidates").output.strip() == "No promotion candidates."

    config = invoke(tmp_path, "config", "show")
    assert json.loads(config.stdout)["brain"]["project_id"] == "default"


def test_commands_flush_change_events_on_exit(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    bundle = Orchestrator(root=tmp_path).build()
    received: list[dict[str, Any]] = []
    bundle.event_bus.subscribe(CHANGE_EVENT, received.append)
    monkeypatch.setattr(commands, "_runtime", lambda: bundle)

    memory_id = store_pain(tmp_path)

    assert len(received) == 1
    assert received[0]["files"] == ["memories"]
    assert memory_id in received[0]["summary"]
    assert not bundle.notifier.pending

    invoke(tmp_path, "memory", "delete", memory_id)

    assert received[-1]["summary"] == f"deleted {memory_id}"
