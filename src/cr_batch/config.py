"""Configuration model and loading logic."""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar

from dotenv import dotenv_values
from pydantic import ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from cr_batch.errors import ConfigError

DEFAULT_CONFIG_FILE = Path("config.txt")
REQUIRED_KEYS: tuple[str, ...] = ("cellranger_path", "reference_path")


class KeyValueConfigSettingsSource(PydanticBaseSettingsSource):
    """Read settings from a flat ``key=value`` text file."""

    def __init__(self, settings_cls: type[BaseSettings], config_file: Path | None) -> None:
        super().__init__(settings_cls)
        self.config_file = config_file
        self._values: dict[str, str] = {}
        if config_file is not None and config_file.is_file():
            for key, value in dotenv_values(config_file).items():
                if value is not None:
                    self._values[key.strip()] = value.strip()

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._values.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field, field_name)
            if value is not None:
                data[key] = value
        return data


class RunnerConfig(BaseSettings):
    """Resolved locations of the cellranger install and reference dataset."""

    _config_file_override: ClassVar[Path | None] = None

    cellranger_path: Path
    reference_path: Path

    model_config = SettingsConfigDict(
        env_prefix="CR_BATCH_",
        extra="ignore",
    )

    @field_validator("cellranger_path", "reference_path", mode="before")
    @classmethod
    def _reject_blank(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() == "":
            raise ValueError("value must not be empty")
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Read the key=value file while allowing env vars to override values."""

        file_settings = KeyValueConfigSettingsSource(settings_cls, cls._config_file_override)
        return (init_settings, env_settings, file_settings)

    @property
    def executable_path(self) -> Path:
        """Path of the ``cellranger`` binary inside the install directory."""

        return self.cellranger_path / "bin" / "cellranger"

    def as_dict(self) -> dict[str, object]:
        """Return settings as a plain dictionary, including derived paths."""

        payload = self.model_dump(mode="json")
        payload["executable_path"] = str(self.executable_path)
        return payload


def _missing_keys(exc: ValidationError) -> list[str]:
    keys: list[str] = []
    for error in exc.errors():
        loc = error.get("loc") or ()
        if loc and str(loc[0]) not in keys:
            keys.append(str(loc[0]))
    return keys


def load_config(config_file: Path | None = None) -> RunnerConfig:
    """Load runner config from a key=value file with environment overrides.

    Raises ``ConfigError`` when the file is absent or when a required key is
    missing or blank after overrides are applied.
    """

    chosen = config_file or DEFAULT_CONFIG_FILE
    if not chosen.is_file():
        raise ConfigError(f"Configuration file '{chosen}' not found.")

    RunnerConfig._config_file_override = chosen
    try:
        config = RunnerConfig()  # type: ignore[call-arg]
    except ValidationError as exc:
        missing = ", ".join(_missing_keys(exc))
        required = " and ".join(f"'{key}'" for key in REQUIRED_KEYS)
        raise ConfigError(
            f"Missing configuration values in '{chosen}': {missing}. Ensure {required} are set."
        ) from exc
    finally:
        RunnerConfig._config_file_override = None
    return config
