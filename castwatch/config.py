# castwatch/config.py
#
# Runtime settings for the monitor. Everything comes from the environment
# so the same code runs against a local backend or a plant server.

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Tuple

# -------------------------------------------------
# Config
# -------------------------------------------------

API_BASE_URL = os.getenv("CASTWATCH_API_URL", "http://localhost:5000/api")

POLL_SECONDS = float(os.getenv("CASTWATCH_POLL_SECONDS", "30"))
PREDICT_STEPS = int(os.getenv("CASTWATCH_PREDICT_STEPS", "20"))
REQUEST_TIMEOUT = float(os.getenv("CASTWATCH_REQUEST_TIMEOUT", "5"))
LONG_REQUEST_TIMEOUT = float(os.getenv("CASTWATCH_LONG_TIMEOUT", "120"))  # train / upload
STATUS_DELAY_SECONDS = float(os.getenv("CASTWATCH_STATUS_DELAY", "3"))
IDLE_TIMEOUT_SECONDS = float(os.getenv("CASTWATCH_IDLE_TIMEOUT", "300"))  # 0 keeps sessions forever

DEFAULT_MACHINE = os.getenv("CASTWATCH_DEFAULT_MACHINE", "Machine-001")
DEFAULT_PARAMETER = os.getenv("CASTWATCH_DEFAULT_PARAMETER", "metal_temperature")

LOG_LEVEL = os.getenv("CASTWATCH_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

UPLOAD_EXTENSIONS = (".xlsx", ".xls", ".csv")

# (lower, upper) per parameter
DEFAULT_BANDS: Dict[str, Tuple[float, float]] = {
    "metal_temperature": (675.0, 755.0),
    "solidification_time": (40.0, 50.0),
    "tilting_angle": (20.0, 35.0),
    "tilting_speed": (15.0, 25.0),
    "top_die_temperature": (280.0, 370.0),
}

PARAMETER_LABELS: Dict[str, str] = {
    "metal_temperature": "Metal Temperature (°C)",
    "solidification_time": "Solidification Time (min)",
    "tilting_angle": "Tilting Angle (°)",
    "tilting_speed": "Tilting Speed (rpm)",
    "top_die_temperature": "Top Die Temperature (°C)",
}


@dataclass(frozen=True)
class Settings:
    api_base_url: str = API_BASE_URL
    poll_seconds: float = POLL_SECONDS
    predict_steps: int = PREDICT_STEPS
    request_timeout: float = REQUEST_TIMEOUT
    long_request_timeout: float = LONG_REQUEST_TIMEOUT
    status_delay_seconds: float = STATUS_DELAY_SECONDS
    idle_timeout: float = IDLE_TIMEOUT_SECONDS
    default_machine: str = DEFAULT_MACHINE
    default_parameter: str = DEFAULT_PARAMETER
    default_bands: Dict[str, Tuple[float, float]] = field(
        default_factory=lambda: dict(DEFAULT_BANDS)
    )


def get_settings() -> Settings:
    """Read settings fresh from the environment (module constants are import-time)."""
    return Settings(
        api_base_url=os.getenv("CASTWATCH_API_URL", API_BASE_URL),
        poll_seconds=float(os.getenv("CASTWATCH_POLL_SECONDS", str(POLL_SECONDS))),
        predict_steps=int(os.getenv("CASTWATCH_PREDICT_STEPS", str(PREDICT_STEPS))),
        request_timeout=float(os.getenv("CASTWATCH_REQUEST_TIMEOUT", str(REQUEST_TIMEOUT))),
        long_request_timeout=float(
            os.getenv("CASTWATCH_LONG_TIMEOUT", str(LONG_REQUEST_TIMEOUT))
        ),
        status_delay_seconds=float(
            os.getenv("CASTWATCH_STATUS_DELAY", str(STATUS_DELAY_SECONDS))
        ),
        idle_timeout=float(os.getenv("CASTWATCH_IDLE_TIMEOUT", str(IDLE_TIMEOUT_SECONDS))),
        default_machine=os.getenv("CASTWATCH_DEFAULT_MACHINE", DEFAULT_MACHINE),
        default_parameter=os.getenv("CASTWATCH_DEFAULT_PARAMETER", DEFAULT_PARAMETER),
    )


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
