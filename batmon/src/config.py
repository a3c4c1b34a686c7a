"""
Battery monitor configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Every variable carries the ``BATMON_`` prefix (e.g. ``BATMON_DATA_DIR``) and
may also come from a ``.env`` file. All values have defaults, so an empty
environment yields a working configuration.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BatmonSettings(BaseSettings):
    """Battery monitor configuration.

    Attributes:
        data_dir: Directory holding the history and calibration documents.
        health_path: Liveness JSON file rewritten after every poll.
        poll_interval_s: Seconds between snapshot reads.
        history_full_resolution_days: Days of history kept at full resolution.
        history_retention_days: Days after which history is discarded.
        history_bucket_s: Compaction bucket width for aged history.
        calibration_full_percent: Percentage at which a test run starts.
        calibration_end_percent: Percentage at which a test run completes.
        calibration_max_gap_s: Maximum seconds between samples during a run.
        calibration_recent_limit: Number of completed results kept.
        api_token: Bearer token required for calibration commands over
            HTTP. Empty disables the check.
    """

    data_dir: str = "/data/batmon"
    health_path: str = "/data/batmon/health.json"
    poll_interval_s: int = 30
    history_full_resolution_days: int = 7
    history_retention_days: int = 30
    history_bucket_s: int = 300
    calibration_full_percent: int = 99
    calibration_end_percent: int = 5
    calibration_max_gap_s: int = 300
    calibration_recent_limit: int = 5
    api_token: str = ""

    model_config = SettingsConfigDict(
        env_prefix="BATMON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("poll_interval_s", "history_full_resolution_days", "history_bucket_s")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        """Intervals and windows must be at least 1."""
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @field_validator("calibration_recent_limit")
    @classmethod
    def recent_limit_must_be_positive(cls, v: int) -> int:
        """At least one completed result must be kept."""
        if v < 1:
            raise ValueError("BATMON_CALIBRATION_RECENT_LIMIT must be >= 1")
        return v

    @field_validator("calibration_max_gap_s")
    @classmethod
    def max_gap_must_be_non_negative(cls, v: int) -> int:
        """The sample gap threshold cannot be negative."""
        if v < 0:
            raise ValueError("BATMON_CALIBRATION_MAX_GAP_S must be >= 0")
        return v

    @field_validator("calibration_full_percent")
    @classmethod
    def full_percent_in_range(cls, v: int) -> int:
        """Start threshold is a percentage between 1 and 100."""
        if v < 1 or v > 100:
            raise ValueError("BATMON_CALIBRATION_FULL_PERCENT must be between 1 and 100")
        return v

    @field_validator("calibration_end_percent")
    @classmethod
    def end_percent_in_range(cls, v: int) -> int:
        """End threshold is a percentage between 0 and 99."""
        if v < 0 or v > 99:
            raise ValueError("BATMON_CALIBRATION_END_PERCENT must be between 0 and 99")
        return v

    @model_validator(mode="after")
    def _check_ordering(self) -> "BatmonSettings":
        """Retention must outlast full resolution; a run must have room to discharge."""
        if self.history_retention_days <= self.history_full_resolution_days:
            raise ValueError(
                "BATMON_HISTORY_RETENTION_DAYS must be greater than "
                "BATMON_HISTORY_FULL_RESOLUTION_DAYS"
            )
        if self.calibration_end_percent >= self.calibration_full_percent:
            raise ValueError(
                "BATMON_CALIBRATION_END_PERCENT must be below "
                "BATMON_CALIBRATION_FULL_PERCENT"
            )
        return self
