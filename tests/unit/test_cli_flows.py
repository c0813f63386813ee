import asyncio
import json

from typer.testing import CliRunner

import nexflow.persistence as persistence
from nexflow.cli import app
from nexflow.contracts import FlowConfig, LogStep
from nexflow.persistence import InMemoryFlowRepository

FLOW_YAML = """
name: Daily Heartbeat
schedule: "0 9 * * *"
steps:
  - type: log
    message: still alive
"""

runner = CliRunner()


def _setup_repo() -> InMemoryFlowRepository:
    repo = InMemoryFlowRepository()
    persistence._repository_instance = repo
    return repo


def _write_flow(tmp_path, text=FLOW_YAML, name="flow.yaml"):
    path = tmp_path / name
    path.write_text(text)
    return path


def test_flow_create_and_list(tmp_path):
    repo = _setup_repo()
    path = _write_flow(tmp_path)

    result = runner.invoke(app, ["flow", "create", str(path)])
    assert result.exit_code == 0, result.stdout
    assert "Created flow daily-heartbeat" in result.stdout
    assert asyncio.run(repo.get_flow("daily-heartbeat")).schedule == "0 9 * * *"

    listed = runner.invoke(app, ["flow", "list"])
    assert listed.exit_code == 0
    assert "daily-heartbeat\t0 9 * * *\tenabled\tnever" in listed.stdout


def test_flow_create_from_json(tmp_path):
    _setup_repo()
    document = {
        "name": "Json Flow",
        "schedule": "*/5 * * * *",
        "steps": [{"type": "delay", "duration": "1s"}],
    }
    path = _write_flow(tmp_path, json.dumps(document), name="flow.json")

    result = runner.invoke(app, ["flow", "create", str(path)])
    assert result.exit_code == 0, result.stdout
    assert "Created flow json-flow" in result.stdout


def test_flow_create_duplicate_fails(tmp_path):
    _setup_repo()
    path = _write_flow(tmp_path)
    runner.invoke(app, ["flow", "create", str(path)])

    result = runner.invoke(app, ["flow", "create", str(path)])
    assert result.exit_code == 1
    assert "Flow already exists: daily-heartbeat" in result.stdout


def test_flow_create_rejects_invalid_definition(tmp_path):
    repo = _setup_repo()
    path = _write_flow(
        tmp_path,
        """
name: Bad
schedule: "* * * * *"
steps:
  - type: notify
    method: webhook
    url: https://hooks.test
""",
    )

    result = runner.invoke(app, ["flow", "create", str(path)])
    assert result.exit_code == 1
    assert "Invalid flow file" in result.stdout
    assert asyncio.run(repo.list_flows()) == []


def test_flow_create_missing_file(tmp_path):
    _setup_repo()
    result = runner.invoke(app, ["flow", "create", str(tmp_path / "nope.yaml")])
    assert result.exit_code == 1
    assert "Flow file not found" in result.stdout


def test_flow_list_empty():
    _setup_repo()
    result = runner.invoke(app, ["flow", "list"])
    assert result.exit_code == 0
    assert "No flows found" in result.stdout


def test_flow_show_and_missing():
    repo = _setup_repo()
    asyncio.run(repo.create_flow(FlowConfig(name="Shown", schedule="* * * * *", steps=[LogStep(message="x")])))

    result = runner.invoke(app, ["flow", "show", "shown"])
    assert result.exit_code == 0
    assert "Flow shown: Shown" in result.stdout
    assert "1. log" in result.stdout

    missing = runner.invoke(app, ["flow", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "Flow not found: missing-id" in missing.stdout


def test_flow_update(tmp_path):
    repo = _setup_repo()
    runner.invoke(app, ["flow", "create", str(_write_flow(tmp_path))])
    changed = _write_flow(
        tmp_path, FLOW_YAML.replace("0 9 * * *", "30 8 * * 1-5"), name="changed.yaml"
    )

    result = runner.invoke(app, ["flow", "update", "daily-heartbeat", str(changed)])
    assert result.exit_code == 0, result.stdout
    assert asyncio.run(repo.get_flow("daily-heartbeat")).schedule == "30 8 * * 1-5"


def test_flow_enable_disable():
    repo = _setup_repo()
    asyncio.run(repo.create_flow(FlowConfig(name="Toggle", schedule="* * * * *")))

    result = runner.invoke(app, ["flow", "disable", "toggle"])
    assert result.exit_code == 0
    assert "Flow toggle disabled" in result.stdout
    assert asyncio.run(repo.is_enabled("toggle")) is False

    result = runner.invoke(app, ["flow", "enable", "toggle"])
    assert "Flow toggle enabled" in result.stdout
    assert asyncio.run(repo.is_enabled("toggle")) is True


def test_flow_run_records_history_and_logs():
    repo = _setup_repo()
    asyncio.run(
        repo.create_flow(
            FlowConfig(name="Runner", schedule="0 0 1 1 *", steps=[LogStep(message="hello")])
        )
    )

    result = runner.invoke(app, ["flow", "run", "runner"])
    assert result.exit_code == 0, result.stdout
    assert " success" in result.stdout
    assert "[system] Triggered by manual at" in result.stdout
    assert "[log] hello" in result.stdout

    [run] = asyncio.run(repo.list_runs("runner"))
    assert run.trigger == "manual"

    logs = runner.invoke(app, ["flow", "logs", "runner"])
    assert logs.exit_code == 0
    assert f"manual\tsuccess\t{run.id}" in logs.stdout


def test_flow_run_failure_exits_nonzero():
    repo = _setup_repo()
    asyncio.run(
        repo.create_flow(
            FlowConfig.model_validate(
                {
                    "name": "Bad Delay",
                    "schedule": "* * * * *",
                    "steps": [{"type": "delay", "duration": "soon"}],
                }
            )
        )
    )

    result = runner.invoke(app, ["flow", "run", "bad-delay"])
    assert result.exit_code == 1
    assert " failure" in result.stdout
    assert '[delay] Error: Invalid duration format "soon"' in result.stdout

    logs = runner.invoke(app, ["flow", "logs", "bad-delay"])
    assert 'delay: Invalid duration format "soon"' in logs.stdout


def test_flow_logs_empty_and_delete():
    repo = _setup_repo()
    asyncio.run(repo.create_flow(FlowConfig(name="Gone", schedule="* * * * *")))

    logs = runner.invoke(app, ["flow", "logs", "gone"])
    assert "No runs recorded" in logs.stdout

    result = runner.invoke(app, ["flow", "delete", "gone"])
    assert result.exit_code == 0
    assert "Deleted flow gone" in result.stdout
    assert asyncio.run(repo.list_flows()) == []

    again = runner.invoke(app, ["flow", "delete", "gone"])
    assert again.exit_code == 1


def test_cron_check_due_and_wait():
    due = runner.invoke(
        app,
        [
            "cron",
            "check",
            "*/5 * * * *",
            "--last-run",
            "2025-01-01T11:55:00Z",
            "--now",
            "2025-01-01T12:00:00Z",
        ],
    )
    assert due.exit_code == 0
    assert "DUE (next run 2025-01-01T12:00:00+00:00)" in due.stdout

    wait = runner.invoke(
        app,
        [
            "cron",
            "check",
            "*/5 * * * *",
            "--last-run",
            "2025-01-01T11:55:00Z",
            "--now",
            "2025-01-01T11:59:00Z",
        ],
    )
    assert wait.exit_code == 0
    assert wait.stdout.startswith("WAIT")


def test_cron_check_invalid_expression():
    result = runner.invoke(app, ["cron", "check", "every minute"])
    assert result.exit_code == 1
    assert "Invalid cron expression" in result.stdout


def test_scheduler_start_with_lifespan():
    repo = _setup_repo()
    asyncio.run(
        repo.create_flow(
            FlowConfig(name="Tick", schedule="* * * * *", steps=[LogStep(message="tick")])
        )
    )

    result = runner.invoke(
        app, ["scheduler", "start", "--interval", "0.05", "--lifespan", "0.2"]
    )
    assert result.exit_code == 0, result.stdout
    assert "Starting scheduler" in result.stdout
    assert len(asyncio.run(repo.list_runs("tick"))) >= 1
