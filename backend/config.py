from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List, Literal


class Settings(BaseSettings):
    # "memory" keeps all records in-process (local play, tests, simulate.py);
    # "firestore" shares them between every client of a game.
    store_backend: Literal["memory", "firestore"] = "memory"
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None
    store_timeout_seconds: float = 10.0

    # Coordination tuning. Game rules (phase durations, frame options, player
    # limits) are fixed constants in models.game, not settings.
    quorum_retry_attempts: int = 3
    transition_retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    poll_interval_seconds: float = 2.0

    # CORS origins: set ALLOWED_ORIGINS env var for production (comma-separated)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin (e.g. Cloud Run URL); appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    @property
    def cors_origins(self) -> List[str]:
        if self.extra_origin:
            return [*self.allowed_origins, self.extra_origin]
        return list(self.allowed_origins)


settings = Settings()
