"""Tests for the adapter registry."""

from pathlib import Path

import pytest

from nfy.adapters import (
    AdapterCapability,
    AdapterMetadata,
    AdapterNotFound,
    _parse_adapter_config,
    get_adapter,
    get_adapter_info,
    get_settings_path,
    import_adapter,
    load_adapter_selection,
)
from nfy.adapters.queue.sysv import SysVQueue


class TestAdapterConfigParsing:
    def test_parse_normalizes(self) -> None:
        assert _parse_adapter_config("Queue: SysV\n") == {"queue": "sysv"}

    def test_parse_ignores_non_string_values(self) -> None:
        assert _parse_adapter_config("queue: sysv\ncache: 3\n") == {"queue": "sysv"}

    @pytest.mark.parametrize("raw", ["", "- a\n- b\n", "queue: [unclosed"])
    def test_parse_invalid(self, raw: str) -> None:
        assert _parse_adapter_config(raw) == {}

    def test_load_selection_missing_file(self, isolated_settings) -> None:
        assert load_adapter_selection(isolated_settings) == {}

    def test_load_selection(self, isolated_settings) -> None:
        (isolated_settings / "adapters.yml").write_text("queue: sysv\n")

        assert load_adapter_selection() == {"queue": "sysv"}

    def test_settings_path_from_env(self, isolated_settings) -> None:
        assert get_settings_path() == isolated_settings


class TestAdapterLookup:
    def test_default_queue_adapter(self) -> None:
        adapter = get_adapter("queue")

        assert adapter.name == "sysv"
        assert str(adapter) == "queue:sysv"

    def test_import_adapter(self) -> None:
        assert import_adapter("queue") is SysVQueue

    def test_unknown_adapter(self) -> None:
        with pytest.raises(AdapterNotFound, match="redis"):
            get_adapter("queue", "redis")

    def test_unknown_category(self) -> None:
        with pytest.raises(AdapterNotFound):
            import_adapter("cache")

    def test_selection_file_is_honoured(self, isolated_settings) -> None:
        (isolated_settings / "adapters.yml").write_text("queue: missing\n")

        with pytest.raises(AdapterNotFound, match="missing"):
            get_adapter("queue")


class TestAdapterInfo:
    def test_info_from_metadata(self, queue) -> None:
        info = get_adapter_info(queue)

        assert info["has_metadata"] is True
        assert info["category"] == "queue"
        assert info["name"] == "System V Queue"
        assert AdapterCapability.INTER_PROCESS.value in info["capabilities"]

    def test_info_without_metadata(self) -> None:
        info = get_adapter_info(Path())

        assert info == {"has_metadata": False}

    def test_metadata_schema(self) -> None:
        assert {c.value for c in AdapterCapability} == {
            "async_operations",
            "health_checks",
            "inter_process",
            "blocking_receive",
            "bounded_capacity",
        }
        assert set(AdapterMetadata.model_fields) == {
            "module_id",
            "name",
            "category",
            "provider",
            "version",
            "status",
            "description",
            "settings_class",
            "config_example",
            "capabilities",
            "required_packages",
        }
