from __future__ import annotations

from pathlib import Path

import allure
import pytest

from taskchain.config import Settings, WorkerSettings

pytestmark = [
    allure.epic("Task Engine"),
    allure.feature("Configuration"),
]

_ENV_KEYS = (
    "TASKCHAIN_DB_PATH",
    "TASKCHAIN_SQLITE_BUSY_TIMEOUT_MS",
    "TASKCHAIN_CLIENT_ID",
    "TASKCHAIN_WORKER_ID",
    "TASKCHAIN_WORKER_POLL_INTERVAL_SECONDS",
    "TASKCHAIN_WORKER_STALE_CLAIM_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_from_env_defaults() -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".taskchain.db")
    assert settings.sqlite_busy_timeout_ms == 5000
    assert settings.client_id == "default_client"
    assert settings.worker.worker_id.startswith("worker-")
    assert settings.worker.poll_interval_seconds == 1.0
    assert settings.worker.stale_claim_seconds == 600


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKCHAIN_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("TASKCHAIN_SQLITE_BUSY_TIMEOUT_MS", "250")
    monkeypatch.setenv("TASKCHAIN_CLIENT_ID", "acme")
    monkeypatch.setenv("TASKCHAIN_WORKER_ID", "  worker-7  ")
    monkeypatch.setenv("TASKCHAIN_WORKER_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("TASKCHAIN_WORKER_STALE_CLAIM_SECONDS", "0")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.sqlite_busy_timeout_ms == 250
    assert settings.client_id == "acme"
    assert settings.worker == WorkerSettings(
        worker_id="worker-7",
        poll_interval_seconds=0.5,
        stale_claim_seconds=0,
    )


def test_explicit_db_path_wins_over_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TASKCHAIN_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("TASKCHAIN_SQLITE_BUSY_TIMEOUT_MS", "0", "BUSY_TIMEOUT_MS must be > 0"),
        ("TASKCHAIN_CLIENT_ID", "   ", "CLIENT_ID must not be empty"),
        ("TASKCHAIN_WORKER_POLL_INTERVAL_SECONDS", "-1", "POLL_INTERVAL_SECONDS must be >= 0"),
        ("TASKCHAIN_WORKER_STALE_CLAIM_SECONDS", "-5", "STALE_CLAIM_SECONDS must be >= 0"),
    ],
)
def test_from_env_rejects_out_of_range_values(
    monkeypatch: pytest.MonkeyPatch,
    key: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env()
