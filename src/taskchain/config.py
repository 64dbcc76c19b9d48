"""Runtime configuration for the workflow engine and its worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from uuid import uuid4


def _default_worker_id() -> str:
    return f"worker-{uuid4().hex[:8]}"


@dataclass(slots=True)
class WorkerSettings:
    """Scheduler loop settings."""

    worker_id: str = field(default_factory=_default_worker_id)
    poll_interval_seconds: float = 1.0
    stale_claim_seconds: int = 600


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".taskchain.db")
    sqlite_busy_timeout_ms: int = 5_000
    client_id: str = "default_client"
    worker: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        settings = cls(
            db_path=db_path or Path(os.getenv("TASKCHAIN_DB_PATH", ".taskchain.db")),
            sqlite_busy_timeout_ms=int(os.getenv("TASKCHAIN_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            client_id=os.getenv("TASKCHAIN_CLIENT_ID", "default_client"),
            worker=WorkerSettings(
                worker_id=os.getenv("TASKCHAIN_WORKER_ID", "").strip() or _default_worker_id(),
                poll_interval_seconds=float(
                    os.getenv("TASKCHAIN_WORKER_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                stale_claim_seconds=int(os.getenv("TASKCHAIN_WORKER_STALE_CLAIM_SECONDS", "600")),
            ),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("TASKCHAIN_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if not self.client_id.strip():
            raise ValueError("TASKCHAIN_CLIENT_ID must not be empty.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("TASKCHAIN_WORKER_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.stale_claim_seconds < 0:
            raise ValueError("TASKCHAIN_WORKER_STALE_CLAIM_SECONDS must be >= 0.")
