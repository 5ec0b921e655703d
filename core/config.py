"""
POSECOACH Configuration

Environment variables and application settings.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "POSECOACH"
    DEBUG: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173", "http://localhost:8080"]

    # WebSocket
    WS_MAX_CONNECTIONS: int = 100
    WS_HEARTBEAT_INTERVAL: int = 30

    # Exercise configuration document
    EXERCISE_CONFIG_PATH: str = "exercise_config.json"

    # Session timing (seconds, session-wide)
    DESCRIPTION_DISPLAY_SECONDS: float = 5.0
    IMAGE_DISPLAY_SECONDS: float = 5.0
    POSE_HOLD_SECONDS: float = 4.0

    # Pose evaluation
    EASY_MODE_TOLERANCE: float = 20.0  # degrees added to both ends of a range
    VISIBILITY_THRESHOLD: float = 0.3

    # Speech
    ANNOUNCEMENT_GAP_SECONDS: float = 0.5

    # Display frame used when a client omits its size
    DEFAULT_FRAME_WIDTH: int = 1280
    DEFAULT_FRAME_HEIGHT: int = 720

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
