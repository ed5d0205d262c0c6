from functools import cached_property
from pathlib import Path

import rich.repr
import typing as t
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .adapters import default_adapters, get_settings_path, load_adapter_selection
from .depends import depends


class Settings(BaseSettings):
    """Base class for adapter settings.

    Values are resolved, highest priority first, from constructor keyword
    arguments, ``NFY_<CATEGORY>_*`` environment variables and the YAML file
    ``<settings path>/<settings_file>``.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        arbitrary_types_allowed=True,
        validate_default=True,
        protected_namespaces=("model_", "settings_"),
    )

    settings_file: t.ClassVar[str | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        sources: tuple[PydanticBaseSettingsSource, ...] = (init_settings, env_settings)
        if cls.settings_file:
            yaml_file = get_settings_path() / cls.settings_file
            sources += (YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),)
        return sources


@rich.repr.auto
class Config:
    """Process-wide configuration: where settings live and which adapters run."""

    def __init__(self, settings_path: Path | None = None) -> None:
        self._settings_path = settings_path

    @property
    def settings_path(self) -> Path:
        return self._settings_path or get_settings_path()

    @cached_property
    def adapters(self) -> dict[str, str]:
        return default_adapters | load_adapter_selection(self.settings_path)

    def __rich_repr__(self) -> rich.repr.Result:
        yield "settings_path", self.settings_path


depends.set(Config, Config())
