from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    api_base_url: str
    api_auth_token: str
    fetch_timeout_seconds: float
    roster_path: str
    output_dir: str
    max_retries: int
    retry_failed_individually: bool
    retry_delay_seconds: float
    individual_retry_delay_seconds: float
    max_concurrency: int
    preserve_roster_order: bool
    inter_origin_delay_seconds: float
    schedule_cron: str
    webhook_url: str | None
    webhook_timeout_seconds: float


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "originsweep"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./originsweep.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        api_base_url=os.getenv("API_BASE_URL", "https://api.fortex-hero.us").rstrip("/"),
        api_auth_token=os.getenv("API_AUTH_TOKEN", ""),
        fetch_timeout_seconds=float(os.getenv("FETCH_TIMEOUT_SECONDS", "120")),
        roster_path=os.getenv("ROSTER_PATH", "./authEndpointResponse.json"),
        output_dir=os.getenv("OUTPUT_DIR", "./results"),
        max_retries=int(os.getenv("MAX_RETRIES", "6")),
        retry_failed_individually=_env_bool("RETRY_FAILED_INDIVIDUALLY", "true"),
        retry_delay_seconds=float(os.getenv("RETRY_DELAY_SECONDS", "2")),
        individual_retry_delay_seconds=float(os.getenv("INDIVIDUAL_RETRY_DELAY_SECONDS", "1")),
        max_concurrency=int(os.getenv("MAX_CONCURRENCY", "10")),
        preserve_roster_order=_env_bool("PRESERVE_ROSTER_ORDER", "false"),
        inter_origin_delay_seconds=float(os.getenv("INTER_ORIGIN_DELAY_SECONDS", "2")),
        schedule_cron=os.getenv("SCHEDULE_CRON", "0 */2 * * *"),
        webhook_url=os.getenv("WEBHOOK_URL") or None,
        webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "30")),
    )
