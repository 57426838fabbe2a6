from pathlib import Path
import logging
import multiprocessing

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class CustomSettings(BaseSettings):
    """Grabber settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    listing_url_template: str = "https://www.directv.com/guide?start={start}&hours={hours}"
    detail_url_template: str = "https://www.directv.com/program?id={programme_id}"
    channel_id_suffix: str = "directv.com"

    workers: int = 8
    listing_window_hours: int = 3
    days: int = 1
    day_offset: int = 0
    utc_offset_hours: int = -8  # Pacific
    observes_dst: bool = True

    request_timeout_sec: float = 30.0
    max_retries: int = 3
    backoff_factor: float = 2.0
    cache_dir: str | None = None
    work_dir: str | None = None  # System temp dir when unset

    spawn_retry_limit: int = 5
    spawn_backoff_sec: float = 1.0
    mp_start_method: str | None = None  # Platform default when unset

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="TVGRAB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("listing_url_template")
    @classmethod
    def validate_listing_template(cls, value: str) -> str:
        """Validate listing URL template is HTTP/HTTPS and has a start placeholder."""
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"Listing URL must be HTTP/HTTPS: {value}")
        if "{start}" not in value:
            raise ValueError("listing_url_template must contain a {start} placeholder")
        return value

    @field_validator("detail_url_template")
    @classmethod
    def validate_detail_template(cls, value: str) -> str:
        """Validate detail URL template is HTTP/HTTPS and has a programme placeholder."""
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"Detail URL must be HTTP/HTTPS: {value}")
        if "{programme_id}" not in value:
            raise ValueError("detail_url_template must contain a {programme_id} placeholder")
        return value

    @field_validator("workers", "listing_window_hours", "max_retries", "spawn_retry_limit")
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure counters are positive integers."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("days")
    @classmethod
    def validate_days(cls, value: int) -> int:
        """Validate day count is positive and reasonable."""
        if value <= 0:
            raise ValueError("days must be > 0")
        if value > 14:
            raise ValueError("days must be <= 14")
        return value

    @field_validator("day_offset")
    @classmethod
    def validate_day_offset(cls, value: int) -> int:
        if value < 0:
            raise ValueError("day_offset must be >= 0")
        return value

    @field_validator("utc_offset_hours")
    @classmethod
    def validate_utc_offset(cls, value: int) -> int:
        """Validate the zone offset is a real UTC offset."""
        if not -12 <= value <= 14:
            raise ValueError("utc_offset_hours must be between -12 and 14")
        return value

    @field_validator("request_timeout_sec", "backoff_factor")
    @classmethod
    def validate_positive_floats(cls, value: float, info) -> float:
        """Ensure floating-point HTTP settings are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("spawn_backoff_sec")
    @classmethod
    def validate_spawn_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("spawn_backoff_sec must be >= 0")
        return value

    @field_validator("cache_dir", "work_dir")
    @classmethod
    def validate_directory(cls, value: str | None, info) -> str | None:
        """Validate directory is accessible."""
        if not value:
            return None
        path = Path(value).expanduser()
        try:
            path.mkdir(parents=True, exist_ok=True)
            return str(path)
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access {info.field_name} '{value}': {exc}") from exc

    @field_validator("mp_start_method")
    @classmethod
    def validate_start_method(cls, value: str | None) -> str | None:
        """Validate multiprocessing start method is supported on this platform."""
        if not value:
            return None
        allowed = multiprocessing.get_all_start_methods()
        if value not in allowed:
            raise ValueError(f"mp_start_method must be one of {allowed}")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @model_validator(mode="after")
    def validate_window_configuration(self):
        """Validate cross-field configuration."""
        if 24 % self.listing_window_hours:
            raise ValueError("listing_window_hours must divide a day evenly")

        if not self.observes_dst:
            logger.warning(
                "DST disabled - all times use fixed offset %+d", self.utc_offset_hours
            )

        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.debug("Configuration loaded:")
        logger.debug("  Listing URL: %s", self.listing_url_template)
        logger.debug("  Detail URL: %s", self.detail_url_template)
        logger.debug("  Workers: %s", self.workers)
        logger.debug("  Window: %s hours", self.listing_window_hours)
        logger.debug("  Days: %s (offset %s)", self.days, self.day_offset)
        logger.debug(
            "  Zone: UTC%+d (DST %s)",
            self.utc_offset_hours,
            "observed" if self.observes_dst else "not observed",
        )
        logger.debug(
            "  HTTP: timeout=%.1fs retries=%s backoff=%.1f",
            self.request_timeout_sec,
            self.max_retries,
            self.backoff_factor,
        )
        logger.debug("  Cache: %s", self.cache_dir or "disabled")
        logger.debug(
            "  Spawn retries: %s (backoff %.1fs)",
            self.spawn_retry_limit,
            self.spawn_backoff_sec,
        )


settings = CustomSettings()


def setup_logging(level: str | None = None) -> None:
    """Configure logging on the diagnostic stream."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
