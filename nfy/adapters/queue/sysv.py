"""System V Message Queue Backend Adapter for nfy.

Sends and receives messages through a System V IPC message queue: a
kernel-managed, bounded FIFO channel shared by every process that derives the
same key. The key comes from ``ftok()`` over an anchor file and the queue's
one-character id, so producers and consumers only need to agree on the id.

The transport can only hand a message over by removing it from the channel,
so there is no peeking, reservation or acknowledgement, and it has no notion
of subscribers. Only ``send`` and ``receive`` are supported.

Requirements:
    - A POSIX kernel with System V IPC enabled
    - sysv_ipc

Example:
    ```python
    from nfy.adapters.queue.sysv import SysVQueue, SysVQueueSettings

    queue = SysVQueue(SysVQueueSettings(id="q", label="jobs"))
    await queue.send({"job": 42})
    messages = await queue.receive(limit=10)
    ```
"""

import asyncio
import typing as t
from collections import deque
from types import ModuleType

import msgspec
from pydantic import ValidationError
from nfy.adapters import (
    AdapterCapability,
    AdapterMetadata,
    AdapterStatus,
    generate_adapter_id,
)
from nfy.context import SenderId

from ._base import (
    Message,
    MessageStatus,
    QueueBackend,
    QueueConfigurationError,
    QueueConnectionError,
    QueueFullError,
    QueueOperation,
    QueueOperationError,
    QueueSettings,
    UnsupportedOperationError,
)

MSG_MAXSIZE = 1024

_NO_RESERVATION = (
    "System V queues cannot leave a message pending once it is read, "
    "so reserving and acknowledging messages is impossible. Use receive()."
)
_NO_SUBSCRIPTIONS = "System V queues have no concept of subscribers."

MODULE_METADATA = AdapterMetadata(
    module_id=generate_adapter_id(),
    name="System V Queue",
    category="queue",
    provider="sysv",
    version="1.0.0",
    status=AdapterStatus.STABLE,
    capabilities=[
        AdapterCapability.ASYNC_OPERATIONS,
        AdapterCapability.HEALTH_CHECKS,
        AdapterCapability.INTER_PROCESS,
        AdapterCapability.BLOCKING_RECEIVE,
        AdapterCapability.BOUNDED_CAPACITY,
    ],
    required_packages=["sysv-ipc>=1.1.0"],
    description="Inter-process queue over a System V IPC message queue",
    settings_class="SysVQueueSettings",
    config_example={
        "id": "q",
        "label": "jobs",
        "blocking": False,
        "permissions": 0o666,
    },
)


def _get_sysv_ipc() -> ModuleType:
    """Lazy import of sysv_ipc."""
    try:
        import sysv_ipc
    except ImportError as e:
        raise ImportError(
            "sysv_ipc is required for SysVQueue. "
            "Install with: pip install sysv-ipc>=1.1.0"
        ) from e
    return sysv_ipc


class SysVQueueSettings(QueueSettings):
    """Settings for the System V queue.

    ``id`` must be a single byte: it is the project id passed to ``ftok()``.
    """

    # New queues' permission bits, only applied when the queue is created
    permissions: int = 0o666
    max_message_size: int = MSG_MAXSIZE
    # Wait for free space when the queue is full instead of failing
    send_blocking: bool = False
    # Seconds between attempts while a blocking call waits on the channel
    poll_interval: float = 0.05
    # File anchoring the ftok() key; processes must agree on it
    key_path: str = __file__


class SysVQueue(QueueBackend):
    """System V message queue backend."""

    supported_operations = frozenset({QueueOperation.SEND, QueueOperation.RECEIVE})
    unsupported_reasons = {
        QueueOperation.PEEK: "System V queues do not support peeking. Use receive().",
        QueueOperation.RESERVE: _NO_RESERVATION,
        QueueOperation.DELETE: _NO_RESERVATION,
        QueueOperation.RELEASE: _NO_RESERVATION,
        QueueOperation.RELEASE_TIMEDOUT: _NO_RESERVATION,
        QueueOperation.SUBSCRIBE: _NO_SUBSCRIPTIONS,
        QueueOperation.UNSUBSCRIBE: _NO_SUBSCRIPTIONS,
        QueueOperation.IS_SUBSCRIBED: _NO_SUBSCRIPTIONS,
        QueueOperation.GET_SUBSCRIPTIONS: _NO_SUBSCRIPTIONS,
    }

    def __init__(
        self,
        settings: SysVQueueSettings | None = None,
        **hooks: t.Any,
    ) -> None:
        if settings is None:
            try:
                settings = SysVQueueSettings()  # type: ignore[call-arg]
            except ValidationError as e:
                raise QueueConfigurationError(
                    f"Invalid System V queue settings: {e}",
                    original_error=e,
                ) from e
        super().__init__(settings, **hooks)
        self._settings: SysVQueueSettings = settings
        if len(settings.id.encode()) != 1:
            raise QueueConfigurationError(
                f"Queue id must be exactly one character, got {settings.id!r}.",
            )
        self._key: int | None = None
        # Messages drained by a receive() that was cancelled before returning
        self._pending: deque[Message] = deque()

    # ========================================================================
    # Connection Management (Private Implementation)
    # ========================================================================

    @property
    def key(self) -> int:
        """Number identifying the queue, obtained by ftok()."""
        if self._key is None:
            sysv_ipc = _get_sysv_ipc()
            try:
                self._key = sysv_ipc.ftok(
                    self._settings.key_path,
                    self._settings.id.encode()[0],
                    silence_warning=True,
                )
            except (OSError, sysv_ipc.Error) as e:
                raise QueueConnectionError(
                    f"Cannot derive a key for queue {self._settings.label}",
                    original_error=e,
                ) from e
        return self._key

    async def _ensure_client(self) -> t.Any:
        """Open (creating if needed) the System V queue.

        Raises:
            QueueConnectionError: If the queue cannot be opened
        """
        if self._client is None:
            sysv_ipc = _get_sysv_ipc()
            try:
                self._client = sysv_ipc.MessageQueue(
                    self.key,
                    sysv_ipc.IPC_CREAT,
                    mode=self._settings.permissions,
                    max_message_size=self._settings.max_message_size,
                )
            except (OSError, sysv_ipc.Error) as e:
                self.logger.debug(f"Failed to open System V queue: {e}")
                raise QueueConnectionError(
                    f"Failed to open queue {self._settings.label}",
                    original_error=e,
                ) from e
            self.logger.debug(
                f"System V queue {self._settings.label} opened (key {self.key:#x})",
            )
        return self._client

    async def _disconnect(self) -> None:
        # The kernel object outlives this process; only drop the handle.
        self._client = None

    async def _health_check(self) -> dict[str, t.Any]:
        try:
            client = await self._get_client()
        except QueueConnectionError as e:
            return {
                "healthy": False,
                "connected": False,
                "error": str(e),
                "backend_info": {"label": self._settings.label},
            }
        return {
            "healthy": True,
            "connected": self._connected,
            "backend_info": {
                "key": self.key,
                "label": self._settings.label,
                "current_messages": client.current_messages,
                "max_message_size": self._settings.max_message_size,
            },
        }

    async def get_queue_size(self) -> int:
        """Number of messages currently pending on the channel."""
        client = await self._get_client()
        return int(client.current_messages)

    # ========================================================================
    # Message Operations (Private Implementation)
    # ========================================================================

    async def _send(
        self,
        message: Message,
        category: str | None = None,
        block: bool | None = None,
    ) -> None:
        try:
            data = message.to_bytes()
        except (TypeError, ValueError, OverflowError, msgspec.MsgspecError) as e:
            raise QueueOperationError(
                f"Cannot encode message body: {e}",
                original_error=e,
            ) from e
        if len(data) > self._settings.max_message_size:
            raise QueueOperationError(
                f"Message of {len(data)} bytes exceeds the "
                f"{self._settings.max_message_size} byte limit",
            )
        if block is None:
            block = self._settings.send_blocking

        client = await self._get_client()
        sysv_ipc = _get_sysv_ipc()
        # Poll instead of blocking in msgsnd; a cancelled send leaves nothing queued
        while True:
            try:
                client.send(data, False, 1)
            except sysv_ipc.BusyError as e:
                if not block:
                    raise QueueFullError("Queue is full", original_error=e) from e
            except (ValueError, OSError, sysv_ipc.Error) as e:
                raise QueueOperationError(str(e), original_error=e) from e
            else:
                return
            await asyncio.sleep(self._settings.poll_interval)

    async def _receive(
        self,
        subscriber_id: SenderId | None,
        limit: int,
    ) -> list[Message]:
        """Gets available messages from the queue and removes them from it.

        In blocking mode every read waits for a message, so an unlimited
        receive only returns once the channel reports an error. Messages
        already taken off the channel when the caller is cancelled are kept
        and returned first by the next call.
        """
        if subscriber_id is not None:
            raise UnsupportedOperationError(QueueOperation.RECEIVE, _NO_SUBSCRIPTIONS)

        messages: list[Message] = []
        if limit != -1 and limit <= 0:
            return messages

        try:
            client = await self._get_client()
        except QueueConnectionError as e:
            self.logger.debug(f"Stopped reading queue {self._settings.label}: {e}")
            client = None

        while self._pending and (limit == -1 or len(messages) < limit):
            messages.append(self._pending.popleft())
        if client is None:
            return messages
        sysv_ipc = _get_sysv_ipc()
        blocking = self._settings.blocking

        while limit == -1 or len(messages) < limit:
            try:
                data, _ = client.receive(False, 0)
            except sysv_ipc.BusyError:
                if not blocking:
                    break
                try:
                    await asyncio.sleep(self._settings.poll_interval)
                except asyncio.CancelledError:
                    self._pending.extendleft(reversed(messages))
                    raise
                continue
            except (OSError, sysv_ipc.Error) as e:
                self.logger.debug(f"Stopped reading queue {self._settings.label}: {e}")
                break

            try:
                message = Message.from_bytes(data)
            except (TypeError, ValueError, msgspec.MsgspecError) as e:
                self.logger.error(
                    f"Discarded malformed message from queue {self._settings.label}: {e}",
                )
                continue
            message.subscriber_id = subscriber_id
            message.status = MessageStatus.AVAILABLE
            messages.append(message)

        return messages
