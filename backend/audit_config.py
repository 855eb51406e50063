"""
Audit Engine Configuration

Centralized settings with environment variable support.
Every value has a development default so the engine runs without any
environment configured.
"""

import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Prefix for environment variable names
ENV_VAR_PREFIX = "AUDIT_"

DEFAULT_SUBMISSION_THRESHOLD = 95.0
DEFAULT_STRATEGY = "round-robin"
DEFAULT_EXCEPTION_DISPOSITIONS = (
    "Fail 1 - Regulatory",
    "Fail 2 - Procedure",
    "Question to LOB",
)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(f"{ENV_VAR_PREFIX}{name}")
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the assignment and consolidation engine."""
    # Minimum completion percentage before a workbook may be submitted
    submission_threshold: float = DEFAULT_SUBMISSION_THRESHOLD
    default_strategy: str = DEFAULT_STRATEGY
    # Dispositions reported in the exceptions list (fails are always included)
    exception_dispositions: Tuple[str, ...] = DEFAULT_EXCEPTION_DISPOSITIONS
    log_level: str = "INFO"
    demo_seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "EngineSettings":
        threshold_raw = _env("SUBMISSION_THRESHOLD")
        threshold = DEFAULT_SUBMISSION_THRESHOLD
        if threshold_raw is not None:
            try:
                threshold = float(threshold_raw)
            except ValueError:
                logger.warning(
                    f"Invalid {ENV_VAR_PREFIX}SUBMISSION_THRESHOLD={threshold_raw!r}, "
                    f"using {DEFAULT_SUBMISSION_THRESHOLD}"
                )

        exceptions_raw = _env("EXCEPTION_DISPOSITIONS")
        if exceptions_raw is not None:
            exception_dispositions = tuple(
                part.strip() for part in exceptions_raw.split(",") if part.strip()
            )
        else:
            exception_dispositions = DEFAULT_EXCEPTION_DISPOSITIONS

        seed_raw = _env("DEMO_SEED")
        demo_seed = None
        if seed_raw is not None:
            try:
                demo_seed = int(seed_raw)
            except ValueError:
                logger.warning(f"Invalid {ENV_VAR_PREFIX}DEMO_SEED={seed_raw!r}, ignoring")

        return cls(
            submission_threshold=threshold,
            default_strategy=_env("DEFAULT_STRATEGY", DEFAULT_STRATEGY),
            exception_dispositions=exception_dispositions,
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            demo_seed=demo_seed,
        )


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Process-wide settings, read once from the environment."""
    return EngineSettings.from_env()


def configure_logging(settings: Optional[EngineSettings] = None) -> None:
    """
    Apply the configured log level for a hosting process.

    Library modules never install handlers themselves.
    """
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
