import os
from functools import lru_cache
from pathlib import Path

from aggregation import CANONICAL_CATEGORIES


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        extra_categories: tuple[str, ...] = (),
        audit_log_enabled: bool = True,
        report_warmup_enabled: bool = True,
        log_level: str = "INFO",
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.extra_categories = extra_categories
        self.audit_log_enabled = audit_log_enabled
        self.report_warmup_enabled = report_warmup_enabled
        self.log_level = log_level

    @property
    def categories(self) -> tuple[str, ...]:
        names = list(CANONICAL_CATEGORIES)
        for name in self.extra_categories:
            if name not in names:
                names.append(name)
        return tuple(names)


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("COSTS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _parse_categories(raw: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("COSTS_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'costs.db'}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("COSTS_TIMEZONE", "Europe/Berlin"),
        extra_categories=_parse_categories(os.getenv("COSTS_EXTRA_CATEGORIES", "")),
        audit_log_enabled=_env_flag("COSTS_AUDIT_LOG", "1"),
        report_warmup_enabled=_env_flag("COSTS_REPORT_WARMUP", "1"),
        log_level=os.getenv("COSTS_LOG_LEVEL", "INFO").upper(),
    )
