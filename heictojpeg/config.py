import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

ENV_WORKERS = "HEICTOJPEG_WORKERS"
ENV_LOG_LEVEL = "HEICTOJPEG_LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    workers: int
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        """Read settings from the environment, after loading a .env file if there is one."""
        _ = load_dotenv(dotenv_path)
        return cls(
            workers=_parse_workers(os.getenv(ENV_WORKERS)),
            log_level=os.getenv(ENV_LOG_LEVEL, "WARNING").upper(),
        )


def _parse_workers(value: Optional[str]) -> int:
    default = os.cpu_count() or 1
    if not value:
        return default
    try:
        workers = int(value)
    except ValueError:
        return default
    return workers if workers > 0 else default
