from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()

MAX_SAMPLE_SIZE = 10


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    inference_model: str
    inference_api_key: str
    sample_size: int
    batch_size: int
    catalog_mode: str
    writable_relations: tuple[str, ...]
    max_recovery_retries: int
    retry_backoff_seconds: float
    analyze_after_load: bool


@dataclass(frozen=True)
class Capabilities:
    can_infer: bool

    @classmethod
    def from_settings(cls, settings: Settings) -> "Capabilities":
        return cls(can_infer=bool(settings.inference_api_key))


def get_settings() -> Settings:
    catalog_mode = os.getenv("CATALOG_MODE", "fixed").strip().lower()
    if catalog_mode not in {"fixed", "open"}:
        raise ValueError(f"CATALOG_MODE must be 'fixed' or 'open', got {catalog_mode!r}")

    batch_size = int(os.getenv("BATCH_SIZE", "100"))
    if batch_size < 1:
        raise ValueError(f"BATCH_SIZE must be at least 1, got {batch_size}")

    return Settings(
        app_name=os.getenv("APP_NAME", "adaptive-ingest"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./ingest.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        inference_model=os.getenv("INFERENCE_MODEL", "gpt-4o-mini"),
        inference_api_key=os.getenv("OPENAI_API_KEY", ""),
        sample_size=min(int(os.getenv("SAMPLE_SIZE", "5")), MAX_SAMPLE_SIZE),
        batch_size=batch_size,
        catalog_mode=catalog_mode,
        writable_relations=_env_list("WRITABLE_RELATIONS"),
        max_recovery_retries=int(os.getenv("MAX_RECOVERY_RETRIES", "1")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "0")),
        analyze_after_load=_env_bool("ANALYZE_AFTER_LOAD", "false"),
    )
