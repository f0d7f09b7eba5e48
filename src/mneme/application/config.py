from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from mneme.domain.constants import (
    DEFAULT_DUE_CARD_LIMIT,
    DEFAULT_HOST,
    DEFAULT_NEW_CARD_LIMIT,
    DEFAULT_PORT,
    DEFAULT_REQUEUE_OFFSET,
    DEFAULT_STALE_SESSION_HOURS,
    DEFAULT_USER_ID,
)


def config_file_candidates() -> list[Path]:
    return [
        Path.home() / ".config/mneme/config.toml",
        Path.home() / ".mneme.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration model for mneme.
    Supports loading from:
    1. Environment variables (MNEME_*)
    2. Config file (~/.config/mneme/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="MNEME_",
        extra="ignore",
    )

    # Storage
    backend: Literal["sqlite", "memory"] = "sqlite"
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".config/mneme/mneme.db"
    )

    # Session building
    new_card_limit: int = DEFAULT_NEW_CARD_LIMIT
    due_card_limit: int = DEFAULT_DUE_CARD_LIMIT
    due_repetition_tiers: Annotated[list[int] | None, NoDecode] = None
    requeue_offset: int = DEFAULT_REQUEUE_OFFSET
    stale_session_hours: float = DEFAULT_STALE_SESSION_HOURS

    # Server
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    default_user_id: int = DEFAULT_USER_ID

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

        # Find the first existing file
        toml_file = next((f for f in config_file_candidates() if f.exists()), None)

        # Earlier sources win: overrides, then env, then the TOML file.
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("database_path", mode="before")
    @classmethod
    def resolve_database_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("new_card_limit", "due_card_limit", "requeue_offset")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("stale_session_hours")
    @classmethod
    def stale_bound_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("due_repetition_tiers", mode="before")
    @classmethod
    def parse_tiers(cls, v: Any) -> list[int] | None:
        # Env vars arrive as "1,2,3"
        if v is None or v == "":
            return None
        if isinstance(v, str):
            return [int(part) for part in v.split(",") if part.strip()]
        return v


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/mneme/config.toml (if exists)
    3. Environment variables (MNEME_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
