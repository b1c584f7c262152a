"""Application configuration management for podsync.

This module defines the application settings model and the settings source
that reads a YAML file named by one of the settings themselves. Values are
resolved from init arguments, environment variables, a dotenv file, and
finally the YAML file.
"""

import logging
from pathlib import Path
import re
from typing import Any, Literal, cast

from pydantic import Field, SecretStr, field_validator
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
import yaml

from ..exceptions import ConfigLoadError
from .types import CronExpression

logger = logging.getLogger(__name__)

_MASTER_KEY_PATTERN = re.compile(r"^[0-9a-fA-F]{64}$")


class YamlFileFromFieldSource(PydanticBaseSettingsSource):
    """Load configuration from a YAML file named by the ``config_file`` field.

    Must run after every source that may populate ``config_file``.

    Attributes:
        yaml_file_encoding: Encoding to use when reading the YAML file.
        yaml_data: Data loaded from the file.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file_encoding: str | None = None,
    ):
        super().__init__(settings_cls)
        self.yaml_file_encoding = yaml_file_encoding or "utf-8"
        self.yaml_data: dict[str, Any] = {}

    def _get_current_state_of(self, field_name: str) -> Any:
        value = self.current_state.get(field_name)
        if value not in (None, PydanticUndefined):
            return value

        field_info = self.settings_cls.model_fields[field_name]
        if isinstance(field_info.validation_alias, str):
            value = self.current_state.get(field_info.validation_alias)
            if value not in (None, PydanticUndefined):
                return value
        return field_info.get_default()

    def _get_yaml_path(self) -> Path | None:
        path_value = self._get_current_state_of("config_file")
        match path_value:
            case None:
                return None
            case Path():
                return path_value.expanduser()
            case str():
                return Path(path_value).expanduser()
            case _:
                raise TypeError(
                    f"Field 'config_file' must resolve to a Path or string, "
                    f"received type '{type(path_value).__name__}'"
                )

    def _read_yaml_file(self, file_path: Path) -> dict[str, Any]:
        logger.debug(
            "Reading YAML configuration file.", extra={"file_path": str(file_path)}
        )
        with Path.open(file_path, encoding=self.yaml_file_encoding) as f:
            loaded_yaml = yaml.safe_load(f)

        match loaded_yaml:
            case dict():
                return cast(dict[str, Any], loaded_yaml)
            case None:
                logger.info(
                    "YAML configuration file is empty.",
                    extra={"file_path": str(file_path)},
                )
                return {}
            case _:
                raise TypeError(
                    f"Invalid YAML config format: expected dict, got {type(loaded_yaml).__name__}"
                )

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        """Get a value from the loaded YAML data."""
        return self.yaml_data.get(field_name), field_name, self.field_is_complex(field)

    def __call__(self) -> dict[str, Any]:
        """Load YAML data from the file named by ``config_file``.

        A missing file is not an error: every setting has a default or can
        come from the environment.
        """
        try:
            yaml_path = self._get_yaml_path()
        except TypeError as e:
            raise ConfigLoadError(
                "Failed to resolve YAML configuration file path."
            ) from e

        if yaml_path is None or not yaml_path.exists():
            logger.debug(
                "No YAML configuration file found; skipping YAML loading.",
                extra={"file_path": str(yaml_path)},
            )
            self.yaml_data = {}
            return {}

        try:
            self.yaml_data = self._read_yaml_file(yaml_path)
        except (TypeError, OSError, yaml.YAMLError) as e:
            raise ConfigLoadError(
                "Failed to load or parse YAML configuration file.",
                config_file=str(yaml_path),
            ) from e
        return self.yaml_data.copy()


class AppSettings(BaseSettings):
    """Global application settings.

    Attributes:
        log_format: Format for application logs (human or json).
        log_level: Logging level for the application.
        log_include_stacktrace: Include full stack traces in error logs.
        data_dir: Root directory for the database, temp files, and local storage.
        config_file: Path to the YAML config file.
        master_key: Hex-encoded 256-bit key wrapping each user's data key.
        check_schedule: Cron schedule of the per-user check tick.
        stats_schedule: Cron schedule of the daily statistics job.
        feed_timeout_seconds: Timeout for a single feed request.
        audio_timeout_seconds: Read timeout for an episode's audio stream.
        image_timeout_seconds: Timeout for cover art requests.
        user_agent: User-Agent header sent with every outbound request.
    """

    log_format: Literal["human", "json"] = Field(
        default="json",
        validation_alias="LOG_FORMAT",
        description="Format for application logs ('human' or 'json').",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Logging level for the application (e.g., DEBUG, INFO). Case-insensitive.",
    )
    log_include_stacktrace: bool = Field(
        default=False,
        validation_alias="LOG_INCLUDE_STACKTRACE",
        description="Include full stack traces in error logs (true/false).",
    )
    data_dir: Path = Field(
        default=Path("/data"),
        validation_alias="DATA_DIR",
        description="Root directory for all application data (database, storage, temp files).",
    )
    config_file: Path = Field(
        default=Path("/config/podsync.yaml"),
        validation_alias="CONFIG_FILE",
        description="Path to the YAML config file.",
    )
    master_key: SecretStr = Field(
        ...,
        validation_alias="MASTER_KEY",
        description="Master key as 64 hex characters (32 bytes). Wraps every user's encryption key.",
    )
    check_schedule: CronExpression = Field(
        default=CronExpression("*/15 * * * *"),
        validation_alias="CHECK_SCHEDULE",
        description="Cron schedule for checking which users are due for a sync.",
    )
    stats_schedule: CronExpression = Field(
        default=CronExpression("0 0 * * *"),
        validation_alias="STATS_SCHEDULE",
        description="Cron schedule for the daily statistics update.",
    )
    feed_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias="FEED_TIMEOUT_SECONDS",
        description="Timeout for fetching a single RSS feed.",
    )
    audio_timeout_seconds: float = Field(
        default=2 * 60 * 60,
        gt=0,
        validation_alias="AUDIO_TIMEOUT_SECONDS",
        description="Read timeout for an episode's audio stream.",
    )
    image_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias="IMAGE_TIMEOUT_SECONDS",
        description="Timeout for fetching cover art.",
    )
    user_agent: str = Field(
        default="podsync/1.0",
        validation_alias="USER_AGENT",
        description="User-Agent header for feed, audio, and image requests.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
        yaml_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    @field_validator("master_key", mode="after")
    @classmethod
    def validate_master_key(cls, v: SecretStr) -> SecretStr:
        """Ensure the master key is 32 bytes of hex.

        Raises:
            ValueError: If the key is not exactly 64 hex characters.
        """
        if not _MASTER_KEY_PATTERN.match(v.get_secret_value()):
            raise ValueError("Master key must be 64 hex characters (32 bytes)")
        return v

    @field_validator("check_schedule", "stats_schedule", mode="before")
    @classmethod
    def parse_schedule(cls, v: Any) -> CronExpression:
        """Parse a cron string into a CronExpression.

        Raises:
            ValueError: If the schedule is empty or not a valid cron expression.
            TypeError: If the value is not a string or CronExpression.
        """
        match v:
            case CronExpression():
                return v
            case str() if v.strip():
                return CronExpression(v.strip())
            case str():
                raise ValueError("Schedule cannot be empty")
            case _:
                raise TypeError(
                    f"schedule must be a cron string or CronExpression, got {type(v).__name__}"
                )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Process init/env/dotenv first so they can set ``config_file``, then YAML."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlFileFromFieldSource(settings_cls=settings_cls),
            file_secret_settings,
        )
