import json

import pytest

from jukegame import main as cli
from jukegame.scheduler import cron


def test_run_tick_prints_result_and_writes_health(services, tmp_path, capsys):
    result = cli.run_tick(services, tmp_path)

    assert json.loads(capsys.readouterr().out) == result
    health = json.loads((tmp_path / "health.json").read_text())
    assert health["status"] == "healthy"


def test_tick_command(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("JUKEGAME_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("METRICS_ENABLED", "false")
    monkeypatch.delenv("TICK_SCHEDULE", raising=False)
    monkeypatch.delenv("JUKEGAME_DB_PATH", raising=False)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)

    assert cli.main(["tick", "--token", "cli-token"]) == 0
    last_line = capsys.readouterr().out.strip().splitlines()[-1]
    assert json.loads(last_line)["processed"] == 0
    assert (tmp_path / "jukegame_cache.db").exists()


def test_invalid_configuration_exits_nonzero(monkeypatch, tmp_path):
    monkeypatch.setenv("JUKEGAME_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_FORMAT", "xml")

    assert cli.main(["tick"]) == 1


def test_run_with_schedule_counts_runs_and_survives_errors(monkeypatch):
    monkeypatch.setattr(cron, "wait_until", lambda target: None)
    calls = []

    def job(n):
        calls.append(n)
        if len(calls) == 1:
            raise RuntimeError("first run fails")

    assert cron.run_with_schedule(job, "*/5 * * * *", max_runs=3, n=7) == 3
    assert calls == [7, 7, 7]


def test_run_with_schedule_rejects_bad_cron():
    with pytest.raises(ValueError):
        cron.run_with_schedule(lambda: None, "not a cron", max_runs=1)


def test_calculate_next_run():
    from datetime import datetime, timezone
    now = datetime(2026, 3, 1, 12, 2, tzinfo=timezone.utc)
    assert cron.calculate_next_run("*/5 * * * *", now) == datetime(2026, 3, 1, 12, 5, tzinfo=timezone.utc)
