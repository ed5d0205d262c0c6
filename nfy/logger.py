"""Loguru-based logger.

The queue adapters log send/receive events through the ``Logger`` registered
in the dependency container. Outside of tests a configured instance is
registered on import; settings come from ``NFY_LOGGER_*`` environment
variables or ``<settings path>/logger.yml``.
"""

import os
import sys

import typing as t
from loguru._logger import Core as _Core
from loguru._logger import Logger as _Logger
from pydantic_settings import SettingsConfigDict

from .config import Settings
from .depends import depends


class LoggerSettings(Settings):
    model_config = SettingsConfigDict(env_prefix="NFY_LOGGER_")
    settings_file: t.ClassVar[str | None] = "logger.yml"

    log_level: str = "INFO"
    serialize: bool = False
    colorize: bool = True
    format: dict[str, str] = {
        "time": "<b><e>[</e> <w>{time:YYYY-MM-DD HH:mm:ss.SSS}</w> <e>]</e></b>",
        "level": " <level>{level:>8}</level>",
        "sep": " <b><w>in</w></b> ",
        "name": "<b>{extra[mod_name]:>20}</b>",
        "line": "<b><e>[</e><w>{line:^5}</w><e>]</e></b>",
        "message": "  <level>{message}</level>",
    }
    # Module-specific logging levels
    level_per_module: dict[str, str] = {}

    def sink_options(self) -> dict[str, t.Any]:
        return {
            "level": self.log_level.upper(),
            "format": "".join(self.format.values()),
            "serialize": self.serialize,
            "colorize": self.colorize and not self.serialize,
            "backtrace": False,
            "diagnose": False,
        }


class Logger(_Logger):  # type: ignore[misc]
    """Loguru-based logger."""

    def __init__(self, settings: LoggerSettings | None = None) -> None:
        _Logger.__init__(  # type: ignore[no-untyped-call]
            self,
            core=_Core(),  # type: ignore[no-untyped-call]
            exception=None,
            depth=0,
            record=False,
            lazy=False,
            colors=False,
            raw=False,
            capture=True,
            patchers=[],
            extra={},
        )
        self._settings = settings
        self._initialized = False
        self._active_sinks: list[int] = []

    @property
    def settings(self) -> LoggerSettings:
        if self._settings is None:
            self._settings = LoggerSettings()
        return self._settings

    @staticmethod
    def _is_testing_mode() -> bool:
        return "pytest" in sys.modules or os.getenv("TESTING", "").lower() == "true"

    @staticmethod
    def _patch_name(record: dict[str, t.Any]) -> None:
        record["extra"]["mod_name"] = ".".join(record["name"].split(".")[-2:])

    def _filter_by_module(self, record: dict[str, t.Any]) -> bool:
        """Filter log records by module-specific levels."""
        for module, level in self.settings.level_per_module.items():
            if record["name"] == module or record["name"].startswith(f"{module}."):
                return record["level"].no >= self.level(level.upper()).no  # type: ignore[no-untyped-call]
        return True

    def init(self, sink: t.Any = None) -> None:
        """Configure sinks. Idempotent; tests get a logger without handlers."""
        if self._initialized:
            return
        self.remove()  # type: ignore[no-untyped-call]
        self._active_sinks.clear()
        if sink is None and self._is_testing_mode():
            self._initialized = True
            return
        self.configure(patcher=self._patch_name)  # type: ignore[no-untyped-call]
        sink_id = self.add(  # type: ignore[no-untyped-call]
            sink or sys.stderr,
            filter=t.cast("t.Any", self._filter_by_module),
            **self.settings.sink_options(),
        )
        self._active_sinks.append(sink_id)
        self._initialized = True


def _initialize_logger() -> None:
    """Register a configured Logger with the dependency container.

    Skipped in testing mode; adapters then fall back to loguru's default
    logger unless a test registers its own.
    """
    if Logger._is_testing_mode():
        return
    logger = Logger()
    logger.init()
    depends.set(Logger, logger)


_initialize_logger()

__all__ = ["Logger", "LoggerSettings"]
