from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WIREGUARD_EXPORTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # One of CRITICAL, ERROR, WARNING, INFO, DEBUG (WARN and FATAL are accepted as aliases).
    log_level: str = "INFO"

    listen_host: str = "0.0.0.0"
    listen_port: int = 9586
    metrics_path: str = "/metrics"

    # Friendly peer names. Inline list is "keyA:foo,keyB:bar"; the TOML file takes priority on collisions.
    peer_names: str = ""
    peer_file: str = ""

    wg_binary: str = "wg"
    # Fail fast at startup if WireGuard devices cannot be listed (missing module, no CAP_NET_ADMIN, ...).
    startup_probe: bool = True

    # Optional bearer token for the metrics endpoint. Empty means the endpoint is open.
    auth_token: str = ""
    server_cert: str | None = None
    server_key: str | None = None
    ca_cert: str | None = None

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = str(value or "").strip().upper()
        level = _LOG_LEVEL_ALIASES.get(level, level)
        if level not in _LOG_LEVELS:
            raise ValueError(f"unsupported log level {value!r}")
        return level


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
