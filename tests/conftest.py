"""Configuration for pytest testing framework."""

import threading
from collections import deque
from unittest.mock import MagicMock

import pytest
import typing as t

from nfy.adapters.queue import sysv


class FakeMessageQueue:
    """In-memory stand-in for ``sysv_ipc.MessageQueue``."""

    def __init__(
        self,
        owner: "FakeSysVIPC",
        key: int,
        mode: int,
        max_message_size: int,
        max_messages: int,
    ) -> None:
        self._owner = owner
        self.key = key
        self.mode = mode
        self.max_message_size = max_message_size
        self.max_messages = max_messages
        self._messages: deque[tuple[bytes, int]] = deque()
        self._cond = threading.Condition()

    @property
    def current_messages(self) -> int:
        return len(self._messages)

    def send(self, message: bytes, block: bool = True, type: int = 1) -> None:
        if len(message) > self.max_message_size:
            raise ValueError("The message length exceeds queue's max_message_size")
        with self._cond:
            if len(self._messages) >= self.max_messages:
                if not block:
                    raise self._owner.BusyError("The queue is full")
                self._cond.wait_for(lambda: len(self._messages) < self.max_messages)
            self._messages.append((message, type))
            self._cond.notify_all()

    def receive(self, block: bool = True, type: int = 0) -> tuple[bytes, int]:
        with self._cond:
            if not self._messages:
                if not block:
                    raise self._owner.BusyError("No available messages")
                self._cond.wait_for(lambda: bool(self._messages))
            item = self._messages.popleft()
            self._cond.notify_all()
            return item

    def push_raw(self, data: bytes) -> None:
        with self._cond:
            self._messages.append((data, 1))
            self._cond.notify_all()


class FakeSysVIPC:
    """Replacement for the ``sysv_ipc`` module handed out by ``_get_sysv_ipc``."""

    IPC_CREAT = 0o1000

    class Error(Exception):
        pass

    class BusyError(Error):
        pass

    class PermissionsError(Error):
        pass

    def __init__(self, max_messages: int = 16) -> None:
        self.max_messages = max_messages
        self.queues: dict[int, FakeMessageQueue] = {}
        self.ftok_calls: list[tuple[str, int]] = []
        self.open_calls = 0
        self.deny = False

    def ftok(self, path: str, id: int, silence_warning: bool = False) -> int:
        self.ftok_calls.append((path, id))
        return (hash(path) & 0xFFFF) << 8 | id

    def MessageQueue(
        self,
        key: int,
        flags: int = 0,
        mode: int = 0o600,
        max_message_size: int = 2048,
    ) -> FakeMessageQueue:
        self.open_calls += 1
        if self.deny:
            raise self.PermissionsError("Permission denied")
        if key not in self.queues:
            self.queues[key] = FakeMessageQueue(
                self,
                key,
                mode,
                max_message_size,
                self.max_messages,
            )
        return self.queues[key]


@pytest.fixture(autouse=True)
def isolated_settings(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: t.Any,
) -> t.Any:
    """Point the settings directory at an empty tmp dir and drop NFY_* env."""
    import os

    for name in list(os.environ):
        if name.startswith("NFY_"):
            monkeypatch.delenv(name)
    settings_path = tmp_path / "settings"
    settings_path.mkdir()
    monkeypatch.setenv("NFY_SETTINGS_PATH", str(settings_path))
    return settings_path


@pytest.fixture
def fake_sysv(monkeypatch: pytest.MonkeyPatch) -> FakeSysVIPC:
    fake = FakeSysVIPC()
    monkeypatch.setattr(sysv, "_get_sysv_ipc", lambda: fake)
    return fake


@pytest.fixture
def mock_logger() -> MagicMock:
    return MagicMock()


@pytest.fixture
def queue_factory(
    fake_sysv: FakeSysVIPC,
    mock_logger: MagicMock,
) -> t.Callable[..., sysv.SysVQueue]:
    """Build SysVQueue instances on the fake transport with a mock logger."""

    def make_queue(id: str = "q", **kwargs: t.Any) -> sysv.SysVQueue:
        hooks = {
            name: kwargs.pop(name)
            for name in ("format_message", "before_send", "after_send")
            if name in kwargs
        }
        queue = sysv.SysVQueue(
            sysv.SysVQueueSettings(id=id, label=kwargs.pop("label", "test"), **kwargs),
            **hooks,
        )
        queue.logger = mock_logger
        return queue

    return make_queue


@pytest.fixture
def queue(queue_factory: t.Callable[..., sysv.SysVQueue]) -> sysv.SysVQueue:
    return queue_factory()

