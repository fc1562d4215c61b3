"""Configuration settings for the Vital Insights engine."""

from datetime import timezone, tzinfo
from pathlib import Path
from functools import lru_cache
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict


# __file__ = src/vital_insights/config.py
PACKAGE_ROOT = Path(__file__).parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent


class Settings(BaseSettings):
    """Engine settings loaded from environment variables (prefix ``VITAL_INSIGHTS_``)."""

    model_config = SettingsConfigDict(
        env_prefix="VITAL_INSIGHTS_",
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    db_path: Path | None = None

    # Logging
    log_level: str = "INFO"

    # IANA zone used for morning/evening buckets
    local_timezone: str = "UTC"

    # Generation window
    default_lookback_days: int = 30
    min_readings: int = 3

    # Trend analysis
    trend_min_samples: int = 5
    stable_threshold_pct: float = 5.0
    variability_threshold_pct: float = 20.0
    significant_change_pct: float = 15.0

    # Goal progress
    good_control_pct: float = 70.0
    excellent_control_pct: float = 90.0
    improvement_min_samples: int = 10

    # Monitoring habits
    monitoring_coverage_ratio: float = 0.3
    max_recording_gap_days: int = 7

    # Recommendation lifecycle
    dedup_window_hours: int = 24
    retention_days: int = 90
    alert_expiry_days: int = 3
    warning_expiry_days: int = 7
    suggestion_expiry_days: int = 14
    congratulation_expiry_days: int = 7

    @property
    def bucket_timezone(self) -> tzinfo:
        if self.local_timezone.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.local_timezone)

    def model_post_init(self, __context) -> None:
        """Set default database path after initialization."""
        if self.db_path is None:
            self.db_path = PROJECT_ROOT / "vital_insights.db"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
