"""
AI Core Lab - Settings

Environment driven configuration shared by the trainer, the inference server
and the emulator API.
"""

from __future__ import annotations
from functools import lru_cache
from typing import Optional
import logging

from pydantic_settings import BaseSettings, SettingsConfigDict


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "AI Core Lab"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Emulator API
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    RESOURCE_GROUP: str = "default"

    # Inference server
    SERVING_PORT: int = 9001
    MODEL_PATH: str = "/mnt/models/model.pkl"

    # Training
    TRAINING_DATA_PATH: str = "/app/data/train.csv"
    MODEL_OUTPUT_DIR: str = "/app/model"
    TARGET_COLUMN: str = "target"
    TEST_SIZE: float = 0.3
    DT_MAX_DEPTH: Optional[int] = None
    RANDOM_STATE: Optional[int] = None

    # Local emulation
    STORAGE_PATH: str = "./storage"
    OBJECT_STORE_PATH: str = "./object_store"
    OBJECT_STORE_TYPE: str = "local"
    WORKSPACE_PATH: str = "./workspaces"


@lru_cache()
def get_settings() -> Settings:
    """Get settings singleton."""
    return Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for CLI and server entry points."""
    logging.basicConfig(
        level=(level or get_settings().LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
