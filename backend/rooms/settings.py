"""Deployment-tunable room coordination settings via environment variables."""

from typing import Literal, Self

from pydantic import Field, ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings


class RoomSettings(BaseSettings):
    model_config = {"env_prefix": "ROOMS_"}

    max_players: int = Field(default=10, ge=2)
    min_players_to_start: int = Field(default=2, ge=1)

    # Digits-only keeps codes easy to type on phones; deployments may swap in a
    # confusion-reduced alphanumeric set but must keep it stable.
    room_code_length: int = Field(default=6, ge=4, le=6)
    room_code_alphabet: str = Field(default="0123456789", min_length=2)
    code_retry_limit: int = Field(default=10, ge=1)

    room_expiry_seconds: float = Field(default=2 * 60 * 60, gt=0)
    finished_inactivity_seconds: float = Field(default=30 * 60, ge=0)
    inactive_player_seconds: float = Field(default=5 * 60, gt=0)
    host_disconnect_grace_seconds: float = Field(default=1.0, ge=0)
    reaper_interval_seconds: float = Field(default=5 * 60, gt=0)
    heartbeat_interval_seconds: float = Field(default=30, gt=0)

    score_sync_throttle_seconds: float = Field(default=0.5, ge=0)
    countdown_seconds: float = Field(default=3, ge=0)
    game_data_timeout_seconds: float = Field(default=120, ge=0)  # 0 waits forever
    game_data_max_bytes: int = Field(default=200 * 1024, ge=1)

    log_dir: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["console", "json"] = "console"

    @field_validator("room_code_alphabet")
    @classmethod
    def validate_alphabet(cls, v: str) -> str:
        if len(set(v)) != len(v):
            raise ValueError("room_code_alphabet must not repeat characters")
        return v

    @field_validator("log_level", "log_format", mode="before")
    @classmethod
    def normalize_log_option(cls, v: object, info: ValidationInfo) -> object:
        if not isinstance(v, str):
            return v
        return v.upper() if info.field_name == "log_level" else v.lower()

    @model_validator(mode="after")
    def validate_player_bounds(self) -> Self:
        if self.min_players_to_start > self.max_players:
            raise ValueError(
                f"min_players_to_start ({self.min_players_to_start}) exceeds max_players ({self.max_players})",
            )
        return self
