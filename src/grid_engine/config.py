"""Runtime configuration for the orchestration engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_DB_PATH = Path("~/.grid/grid.db")


@dataclass(slots=True)
class OrchestratorSettings:
    """Batch scheduling settings."""

    batch_size: int = 3


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = DEFAULT_DB_PATH
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "WARNING"
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=(db_path or Path(os.getenv("GRID_DB", str(DEFAULT_DB_PATH)))).expanduser(),
            sqlite_busy_timeout_ms=int(os.getenv("GRID_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("GRID_LOG_LEVEL", "WARNING").upper(),
            orchestrator=OrchestratorSettings(
                batch_size=int(os.getenv("GRID_BATCH_SIZE", "3")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("GRID_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.orchestrator.batch_size <= 0:
            raise ValueError("GRID_BATCH_SIZE must be > 0.")
