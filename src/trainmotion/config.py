"""
Configuration for the motion engine.

Values can be overridden with TRAINMOTION_* environment variables or a .env file.
"""
import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ENV_PREFIX = "TRAINMOTION_"


@dataclass
class EngineConfig:
    """Engine constants. Times in seconds, distances in km, speeds in km/s."""

    # Train physics
    max_speed: float = 0.025
    max_acceleration_time: float = 40.0

    # Bus physics
    max_bus_speed: float = 0.012
    max_bus_acceleration_time: float = 20.0

    # Scheduling
    min_standing_duration: float = 30.0
    min_bus_standing_duration: float = 10.0
    min_delay: float = 0.0
    refresh_interval: float = 60.0
    realtime_check_interval: float = 60.0
    timetable_refresh_interval: float = 86400.0
    service_day_start: float = 3 * 3600.0  # 03:00

    # Live tracking
    live_poll_interval: float = 10.0
    default_segment_speed: float = 0.012
    min_implied_speed: float = 0.0015
    max_implied_speed: float = 0.03
    min_live_duration: float = 15.0
    live_duration_margin: float = 1.05
    max_live_progress: float = 0.99
    max_forward_correction: float = 0.2
    overlap_progress_spacing: float = 0.02
    stale_after: float = 30.0

    # Feed
    tfl_app_key: Optional[str] = None
    tfl_line_id: str = "victoria"
    feed_timeout: float = 10.0
    feed_cache_ttl: float = 5.0

    log_level: str = "INFO"

    @property
    def acceleration(self) -> float:
        return self.max_speed / self.max_acceleration_time

    @property
    def bus_acceleration(self) -> float:
        return self.max_bus_speed / self.max_bus_acceleration_time


def load_config(dotenv_path: Optional[str] = None) -> EngineConfig:
    """
    Build an EngineConfig from the environment.

    Args:
        dotenv_path: Optional .env file to load first. Defaults to searching
            from the current directory.

    Returns:
        EngineConfig with environment overrides applied.
    """
    load_dotenv(dotenv_path)

    config = EngineConfig()
    for f in fields(EngineConfig):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        default = getattr(config, f.name)
        if isinstance(default, float):
            setattr(config, f.name, float(raw))
        else:
            setattr(config, f.name, raw)

    # TfL keys are commonly shared with other tools under this name
    if config.tfl_app_key is None:
        config.tfl_app_key = os.environ.get("TFL_APP_KEY") or None

    return config


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging in the format used across the project."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
