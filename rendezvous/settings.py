from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict  # type: ignore[import-not-found]


def yaml_config_settings_source(_: type[BaseSettings]):
    def _source() -> dict:
        path = Path(os.getenv("APP_CONFIG_FILE", "config.yaml"))
        if not path.exists():
            return {}
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return data
    return _source


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origin_regex: str | None = None

    # Join tokens
    jwt_secret: str = "dev-secret-change-me"
    join_token_ttl_seconds: int = 600

    # Rooms
    max_room_members: int = 2
    approval_timeout_seconds: float = 120.0
    bcrypt_rounds: int = 12

    # Abuse limits
    max_connections_per_ip: int = 15
    max_messages_per_second: int = 50
    max_message_bytes: int = 64 * 1024

    # Liveness
    heartbeat_interval_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    log_file: str | None = None

    @classmethod
    def settings_customise_sources(cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings):
        # Order = highest priority first. Env should override YAML.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
            yaml_config_settings_source(cls),
        )


settings = AppSettings()
