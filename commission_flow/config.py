from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DB_PATH = BASE_DIR / "data/commission_flow.db"

STORAGE_BACKENDS = {"sqlite", "memory"}


@dataclass(frozen=True)
class Settings:
    db_path: Path = DEFAULT_DB_PATH
    storage: str = "sqlite"
    commission_percent: float = 6.0
    log_level: str = "INFO"
    log_format: str = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:8001"])

    def validate(self) -> None:
        if self.storage not in STORAGE_BACKENDS:
            raise ValueError(f"Invalid COMMISSION_FLOW_STORAGE: {self.storage}")
        if not 0 <= self.commission_percent < 100:
            raise ValueError(f"COMMISSION_PERCENT must be in [0, 100): {self.commission_percent}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def get_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "http://localhost:8001")
    settings = Settings(
        db_path=Path(os.getenv("COMMISSION_FLOW_DB_PATH", str(DEFAULT_DB_PATH))),
        storage=os.getenv("COMMISSION_FLOW_STORAGE", "sqlite").strip().lower(),
        commission_percent=_float_env("COMMISSION_PERCENT", 6.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("LOG_FORMAT", Settings.log_format),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
    )
    settings.validate()
    return settings
