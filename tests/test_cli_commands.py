import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from mspbots import __version__
from mspbots.cli import commands
from mspbots.config_sync.reconcile import ConfigReconciler, SyncOutcome
from mspbots.utils.exceptions import ConfigWriteError

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_log_files(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setattr(commands, "ensure_rotating_log_file", lambda name, level="INFO": tmp_path / f"{name}.log")
    monkeypatch.delenv("MSPBOTS_CONFIG_SYNC__API_URL", raising=False)


def _config_file(tmp_path: Path, data: dict | None = None) -> Path:
    path = tmp_path / "openclaw.json"
    path.write_text(json.dumps(data or {}), encoding="utf-8")
    return path


def test_version() -> None:
    result = runner.invoke(commands.app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_sync_requires_api_url(tmp_path: Path) -> None:
    result = runner.invoke(commands.app, ["sync", "--config", str(_config_file(tmp_path))])
    assert result.exit_code == 1
    assert "No API URL" in result.output


@pytest.mark.parametrize(
    ("outcome", "exit_code"),
    [(SyncOutcome.UP_TO_DATE, 0), (SyncOutcome.UPDATED, 0), (SyncOutcome.EXHAUSTED_RETRIES, 2)],
)
def test_sync_exit_codes(tmp_path: Path, monkeypatch, outcome: SyncOutcome, exit_code: int) -> None:
    seen: list[ConfigReconciler] = []

    def fake_run(self):
        seen.append(self)
        return outcome

    monkeypatch.setattr(ConfigReconciler, "run", fake_run)
    target = tmp_path / "target.json"
    result = runner.invoke(
        commands.app,
        [
            "sync",
            "--config", str(_config_file(tmp_path)),
            "--api-url", "http://dist.example/configs?ip=",
            "--target", str(target),
            "--poll-interval-ms", "10",
            "--max-retries", "2",
            "--no-restart",
        ],
    )

    assert result.exit_code == exit_code
    assert outcome.value in result.output
    reconciler = seen[0]
    assert reconciler.local_path == target
    assert reconciler.poll_interval == pytest.approx(0.01)
    assert reconciler.max_attempts == 2
    assert reconciler.restart is None
    assert reconciler.client.api_url == "http://dist.example/configs?ip="


def test_sync_write_failure_exits_1(tmp_path: Path, monkeypatch) -> None:
    def failing_run(self):
        raise ConfigWriteError(str(self.local_path), "read-only file system")

    monkeypatch.setattr(ConfigReconciler, "run", failing_run)
    result = runner.invoke(
        commands.app,
        ["sync", "--config", str(_config_file(tmp_path)), "--api-url", "http://dist.example/c?ip="],
    )
    assert result.exit_code == 1
    assert "read-only" in result.output


def test_accounts_lists_resolved_accounts(tmp_path: Path) -> None:
    path = _config_file(
        tmp_path,
        {"channels": {"mspbots": {"accounts": {"main": {"rooturl": "bots.example.com", "accesstoken": "tok"}}}}},
    )
    result = runner.invoke(commands.app, ["accounts", "--config", str(path)])
    assert result.exit_code == 0
    assert "main" in result.output
    assert "wss://bots.example.com/ws/openclaw" in result.output


def test_identity_shows_lookup_key(monkeypatch, identity) -> None:
    monkeypatch.setattr("mspbots.infra.system_info.collect_machine_identity", lambda refresh=False: identity)
    result = runner.invoke(commands.app, ["identity"])
    assert result.exit_code == 0
    assert "10.1.2.3" in result.output
    assert "worker-1" in result.output


@pytest.mark.parametrize("value", ["0", "-1"])
def test_sync_rejects_non_positive_max_retries(tmp_path: Path, monkeypatch, value: str) -> None:
    def fail_run(self):
        raise AssertionError("sync should not run")

    monkeypatch.setattr(ConfigReconciler, "run", fail_run)
    result = runner.invoke(
        commands.app,
        ["sync", "--config", str(_config_file(tmp_path)), "--api-url", "http://dist.example/c?ip=", "--max-retries", value],
    )
    assert result.exit_code == 2
    assert result.exception is None or isinstance(result.exception, SystemExit)
