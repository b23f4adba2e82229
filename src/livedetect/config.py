"""
Configuration management for LiveDetect using Pydantic settings.

Loads configuration from:
1. .env file (if present)
2. config/config.json (defaults)
3. Environment variables (override with LIVEDETECT_ prefix)
"""

import json
import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"
RUNTIME_DIR = PROJECT_ROOT / "runtime"

# Load .env file from project root (if exists)
_env_file = PROJECT_ROOT / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
    logger.debug(f"Loaded environment from {_env_file}")


def load_json_config() -> dict[str, Any]:
    """Load configuration from config.json file."""
    config_file = CONFIG_DIR / "config.json"
    if config_file.exists():
        with open(config_file) as f:
            return json.load(f)
    return {}


_json_config = load_json_config()


class ServiceConfig(BaseSettings):
    """Remote detection service configuration."""

    model_config = {"env_prefix": "LIVEDETECT_SERVICE_"}

    base_url: str = Field(
        default=_json_config.get("service", {}).get("base_url", "http://localhost:5000"),
        description="Base URL of the detection backend",
    )
    request_timeout_seconds: float = Field(
        default=_json_config.get("service", {}).get("request_timeout_seconds", 10.0),
        description="Total timeout for a single request to the backend",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError(f"request_timeout_seconds must be positive, got {v}")
        return v


class CameraConfig(BaseSettings):
    """Local camera configuration."""

    model_config = {"env_prefix": "LIVEDETECT_CAMERA_"}

    device: int | str = Field(
        default=_json_config.get("camera", {}).get("device", 0),
        description="OpenCV device index, device path or stream URL",
    )
    resolution: tuple[int, int] = Field(
        default=tuple(_json_config.get("camera", {}).get("resolution", [960, 540])),
        description="Ideal capture resolution (the device may pick another)",
    )
    framerate: int = Field(
        default=_json_config.get("camera", {}).get("framerate", 30),
        description="Capture thread polling rate",
    )
    jpeg_quality: float = Field(
        default=_json_config.get("camera", {}).get("jpeg_quality", 0.85),
        description="JPEG quality for uploaded frames (0-1)",
    )

    @field_validator("device", mode="before")
    @classmethod
    def parse_device(cls, v):
        if isinstance(v, str) and v.strip().isdigit():
            return int(v)
        return v

    @field_validator("resolution", mode="before")
    @classmethod
    def parse_resolution(cls, v):
        if isinstance(v, list):
            return tuple(v)
        return v

    @field_validator("framerate")
    @classmethod
    def validate_framerate(cls, v):
        if v < 1 or v > 120:
            raise ValueError(f"framerate must be between 1 and 120, got {v}")
        return v

    @field_validator("jpeg_quality")
    @classmethod
    def validate_jpeg_quality(cls, v):
        if not 0.0 < v <= 1.0:
            raise ValueError(f"jpeg_quality must be in (0, 1], got {v}")
        return v


class LoopConfig(BaseSettings):
    """Poll loop configuration."""

    model_config = {"env_prefix": "LIVEDETECT_LOOP_"}

    interval_seconds: float = Field(
        default=_json_config.get("loop", {}).get("interval_seconds", 0.12),
        description="Tick cadence, measured from tick start (~8 rounds/s)",
    )
    history_size: int = Field(
        default=_json_config.get("loop", {}).get("history_size", 25),
        description="Number of detection tallies kept in the rolling history",
    )

    @field_validator("interval_seconds")
    @classmethod
    def validate_interval(cls, v):
        if v <= 0 or v > 10:
            raise ValueError(f"interval_seconds must be in (0, 10], got {v}")
        return v

    @field_validator("history_size")
    @classmethod
    def validate_history_size(cls, v):
        if v < 1 or v > 1000:
            raise ValueError(f"history_size must be 1-1000, got {v}")
        return v


class DetectionConfig(BaseSettings):
    """Initial detection parameters."""

    model_config = {"env_prefix": "LIVEDETECT_DETECTION_"}

    threshold: float = Field(
        default=_json_config.get("detection", {}).get("threshold", 0.5),
        description="Initial confidence threshold (0.1-0.9)",
    )
    classes: list[str] = Field(
        default=_json_config.get("detection", {}).get("classes", ["person", "car", "dog"]),
        description="Initially selected class labels (empty for no filter)",
    )
    snapshot_dir: str = Field(
        default=_json_config.get("detection", {}).get(
            "snapshot_dir", str(RUNTIME_DIR / "snapshots")
        ),
        description="Directory for saved annotated snapshots",
    )

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v):
        if not 0.1 <= v <= 0.9:
            raise ValueError(f"threshold must be 0.1-0.9, got {v}")
        return v


class APIConfig(BaseSettings):
    """FastAPI control server configuration."""

    model_config = {"env_prefix": "LIVEDETECT_API_"}

    enabled: bool = Field(
        default=_json_config.get("api", {}).get("enabled", True),
        description="Enable local control API",
    )
    host: str = Field(
        default=_json_config.get("api", {}).get("host", "127.0.0.1"),
        description="API server bind host",
    )
    port: int = Field(
        default=_json_config.get("api", {}).get("port", 8080),
        description="API server port",
    )


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = {"env_prefix": "LIVEDETECT_LOGGING_"}

    level: str = Field(
        default=_json_config.get("logging", {}).get("level", "INFO"),
        description="Log level",
    )
    file: str = Field(
        default=_json_config.get("logging", {}).get(
            "file", str(RUNTIME_DIR / "logs" / "livedetect.log")
        ),
        description="Log file path",
    )


# Global configuration instances
service_config = ServiceConfig()
camera_config = CameraConfig()
loop_config = LoopConfig()
detection_config = DetectionConfig()
api_config = APIConfig()
logging_config = LoggingConfig()


def setup_logging() -> None:
    """Configure logging for the application with log rotation."""
    from logging.handlers import RotatingFileHandler

    log_dir = Path(logging_config.file).parent
    log_dir.mkdir(parents=True, exist_ok=True)

    # 10MB max, keep 5 backups
    file_handler = RotatingFileHandler(
        logging_config.file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, logging_config.level.upper()))
    root_logger.addHandler(file_handler)
    root_logger.addHandler(logging.StreamHandler())

    logger.info(
        f"Logging configured: level={logging_config.level}, "
        f"file={logging_config.file} (rotating, 10MB max, 5 backups)"
    )


def ensure_runtime_dirs() -> None:
    """Create runtime directories if they don't exist."""
    dirs = [
        Path(detection_config.snapshot_dir),
        Path(logging_config.file).parent,
    ]
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {d}")
