"""Tests for the package-level queue factory."""

import pytest

import nfy
from nfy.adapters.queue._base import SendStatus
from nfy.adapters.queue.sysv import SysVQueue, SysVQueueSettings
from nfy.config import Config
from nfy.depends import depends


@pytest.fixture
def fresh_config(isolated_settings):
    original = depends.get_sync(Config)
    config = depends.set(Config, Config(settings_path=isolated_settings))
    yield config
    depends.set(Config, original)


class TestGetQueue:
    def test_builds_default_backend(self, fake_sysv, fresh_config) -> None:
        queue = nfy.get_queue(SysVQueueSettings(id="q", label="main"))

        assert isinstance(queue, SysVQueue)
        assert queue.settings.label == "main"

    def test_settings_from_yaml(self, fake_sysv, fresh_config, isolated_settings) -> None:
        (isolated_settings / "queue.yml").write_text("id: y\nlabel: jobs\n")

        queue = nfy.get_queue()

        assert queue.settings.id == "y"
        assert queue.settings.label == "jobs"

    @pytest.mark.asyncio
    async def test_hooks_are_forwarded(self, fake_sysv, fresh_config, mock_logger) -> None:
        queue = nfy.get_queue(
            SysVQueueSettings(id="q", label="main"),
            before_send=lambda message: False,
        )
        queue.logger = mock_logger

        assert await queue.send("x") is SendStatus.SKIPPED
