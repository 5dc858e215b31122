from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from atomic_review.domain.constants import (
    BACKUP_INTERVAL,
    MAX_BACKUPS,
    MIN_SAVE_INTERVAL,
    REVIEW_LOG_CAP,
    SAVE_DEBOUNCE,
    SAVE_MAX_ATTEMPTS,
    SAVE_RETRY_BASE_DELAY,
    STATS_CACHE_TTL,
)

DATA_DIR_NAME = ".atomic-review"

CONFIG_FILES = [
    Path.home() / ".config/atomic-review/config.toml",
    Path.home() / ".atomic-review.toml",
]


class AppConfig(BaseSettings):
    """
    Runtime configuration for atomic-review.
    Supports loading from:
    1. Environment variables (ATOMIC_REVIEW_*)
    2. Config file (~/.config/atomic-review/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="ATOMIC_REVIEW_",
        toml_file=CONFIG_FILES,
        extra="ignore",
    )

    # Paths
    vault_root: Path | None = None
    data_dir: Path | None = None  # defaults to <vault_root>/.atomic-review

    # Persistence
    save_debounce: float = SAVE_DEBOUNCE
    min_save_interval: float = MIN_SAVE_INTERVAL
    save_max_attempts: int = SAVE_MAX_ATTEMPTS
    save_retry_base_delay: float = SAVE_RETRY_BASE_DELAY
    max_backups: int = MAX_BACKUPS
    backup_interval: float = BACKUP_INTERVAL
    review_log_cap: int = REVIEW_LOG_CAP

    # Queues
    stats_cache_ttl: float = STATS_CACHE_TTL

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins
        toml_file = next((f for f in CONFIG_FILES if f.exists()), None)

        # Earlier sources take priority
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (init_settings, env_settings)

    @field_validator("vault_root", "data_dir", mode="before")
    @classmethod
    def resolve_path(cls, v: Any) -> Path | None:
        if v is None or v == "":
            return None
        return Path(v).expanduser().resolve()


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/atomic-review/config.toml (if exists)
    3. Environment variables (ATOMIC_REVIEW_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = AppConfig(**overrides)

    if config.vault_root is None:
        config.vault_root = Path.cwd().resolve()
    if config.data_dir is None:
        config.data_dir = config.vault_root / DATA_DIR_NAME

    return config
