"""
Engine settings.

Settings are read from ``INGEST_*`` environment variables, after loading a
``.env`` file if one is present.
"""

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "INGEST_"


class EngineSettings(BaseModel):
    """Runtime settings for executors and the services they share with processors."""
    generic_workers: int = Field(4, ge=1)
    default_timeout: float = Field(30.0, gt=0)
    log_level: str = "INFO"
    trace_steps: bool = False
    lookup_base_url: Optional[str] = None
    lookup_timeout: float = Field(10.0, gt=0)
    lookup_retries: int = Field(3, ge=0)
    lookup_backoff: float = Field(0.5, ge=0)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "EngineSettings":
        """
        Build settings from the environment.

        Args:
            dotenv_path: Optional path to a .env file (defaults to searching upwards)

        Returns:
            Validated settings; unset variables keep their defaults
        """
        load_dotenv(dotenv_path)
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)


def configure_logging(settings: EngineSettings) -> None:
    """Configure root logging from the settings."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
