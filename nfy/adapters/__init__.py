import os
from enum import Enum
from importlib import import_module
from pathlib import Path
from uuid import UUID, uuid4

import typing as t
import yaml
from contextlib import suppress
from pydantic import BaseModel, ConfigDict, Field


class AdapterStatus(str, Enum):
    ALPHA = "alpha"
    BETA = "beta"
    STABLE = "stable"
    DEPRECATED = "deprecated"
    EXPERIMENTAL = "experimental"


class AdapterCapability(str, Enum):
    ASYNC_OPERATIONS = "async_operations"
    HEALTH_CHECKS = "health_checks"
    INTER_PROCESS = "inter_process"
    BLOCKING_RECEIVE = "blocking_receive"
    BOUNDED_CAPACITY = "bounded_capacity"


def generate_adapter_id() -> UUID:
    """Generate a module UUID."""
    return uuid4()


class AdapterMetadata(BaseModel):
    module_id: UUID
    name: str
    category: str
    provider: str | None = None
    version: str = "1.0.0"
    status: AdapterStatus = AdapterStatus.STABLE
    description: str | None = None
    settings_class: str | None = None
    config_example: dict[str, t.Any] | None = None
    capabilities: list[AdapterCapability] = Field(default_factory=list)
    required_packages: list[str] = Field(default_factory=list)


class Adapter(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    class_name: str
    category: str
    module: str

    def __str__(self) -> str:
        return f"{self.category}:{self.name}"


class AdapterNotFound(Exception):
    pass


# Module level constants
core_adapters = [
    Adapter(
        name="sysv",
        module="nfy.adapters.queue.sysv",
        class_name="SysVQueue",
        category="queue",
    ),
]

default_adapters: dict[str, str] = {"queue": "sysv"}


def get_settings_path() -> Path:
    """Directory holding adapters.yml and per-category settings files."""
    return Path(os.getenv("NFY_SETTINGS_PATH", Path.cwd() / "settings"))


def _parse_adapter_config(raw: str) -> dict[str, str]:
    """Parse adapters YAML into normalized mapping."""
    try:
        loaded: t.Any = yaml.safe_load(raw) or {}
    except yaml.YAMLError:
        return {}
    if not isinstance(loaded, dict):
        return {}
    normalized: dict[str, str] = {}
    for category, adapter_name in loaded.items():
        if isinstance(category, str) and isinstance(adapter_name, str):
            normalized[category.strip().lower()] = adapter_name.strip().lower()
    return normalized


def load_adapter_selection(settings_path: Path | None = None) -> dict[str, str]:
    """Load adapter selections from settings/adapters.(y)aml."""
    settings_path = settings_path or get_settings_path()
    for filename in ("adapters.yaml", "adapters.yml"):
        config_file = settings_path / filename
        with suppress(FileNotFoundError):
            normalized = _parse_adapter_config(config_file.read_text())
            if normalized:
                return normalized
    return {}


def get_adapter(
    category: str,
    adapter_name: str | None = None,
    settings_path: Path | None = None,
) -> Adapter:
    if adapter_name is None:
        selection = default_adapters | load_adapter_selection(settings_path)
        adapter_name = selection.get(category)
    for adapter in core_adapters:
        if adapter.category == category and adapter.name == adapter_name:
            return adapter
    msg = f"No adapter found for category '{category}'{' and name ' + adapter_name if adapter_name else ''}"
    raise AdapterNotFound(msg)


def import_adapter(
    category: str,
    adapter_name: str | None = None,
    settings_path: Path | None = None,
) -> t.Any:
    """Import the adapter class configured for a category.

    Args:
        category: The category of the adapter, e.g. ``"queue"``
        adapter_name: Optional specific adapter name, if None uses the one
            selected in ``adapters.yml`` (falling back to the default)
        settings_path: Optional override of the settings directory

    Returns:
        The adapter class
    """
    adapter = get_adapter(category, adapter_name, settings_path)
    module = import_module(adapter.module)
    return getattr(module, adapter.class_name)


def get_adapter_info(obj: t.Any) -> dict[str, t.Any]:
    """Return a dictionary of adapter info for debugging/reporting."""
    module = import_module(obj.__module__)
    meta: AdapterMetadata | None = getattr(module, "MODULE_METADATA", None)
    info: dict[str, t.Any] = {"has_metadata": meta is not None}
    if meta:
        info.update(
            {
                "name": meta.name,
                "category": meta.category,
                "provider": meta.provider,
                "version": meta.version,
                "capabilities": [c.value for c in meta.capabilities],
            },
        )
    return info
