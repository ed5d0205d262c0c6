"""Base queue adapter interface for nfy.

This module provides the queue contract shared by every backend. A backend
binds the contract to one transport and declares, through a capability
matrix, which operations that transport can actually perform.

Key Design Principles:
1. One operation surface for all backends (send, receive, peek, reserve,
   delete, release, subscriptions)
2. Backends declare supported operations statically so callers can query
   them before invoking anything
3. Unsupported operations fail fast with ``UnsupportedOperationError``
4. Send failures are reported through the return value, never raised
5. Lazy client initialization with the ``_ensure_client`` pattern
"""

import asyncio
import inspect
import typing as t
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum, IntEnum
from uuid import UUID, uuid4

import msgspec
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import SettingsConfigDict
from nfy.config import Config, Settings
from nfy.context import SenderId, get_sender_id
from nfy.depends import depends

__all__ = [
    "Message",
    "MessageStatus",
    "QueueBackend",
    "QueueConfigurationError",
    "QueueConnectionError",
    "QueueException",
    "QueueFullError",
    "QueueOperation",
    "QueueOperationError",
    "QueueSettings",
    "SendStatus",
    "Subscription",
    "UnsupportedOperationError",
]


# ============================================================================
# Enums and Constants
# ============================================================================


class MessageStatus(IntEnum):
    """Delivery state of a message."""

    AVAILABLE = 0
    RESERVED = 1
    DELETED = 2


class QueueOperation(str, Enum):
    """Operations of the queue contract, used as the capability matrix."""

    SEND = "send"
    PEEK = "peek"
    RESERVE = "reserve"
    RECEIVE = "receive"
    DELETE = "delete"
    RELEASE = "release"
    RELEASE_TIMEDOUT = "release_timedout"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    IS_SUBSCRIBED = "is_subscribed"
    GET_SUBSCRIPTIONS = "get_subscriptions"


class SendStatus(str, Enum):
    """Outcome of ``QueueBackend.send``. Only ``SENT`` is truthy."""

    SENT = "sent"
    SKIPPED = "skipped"  # vetoed by before_send
    FULL = "full"
    FAILED = "failed"

    def __bool__(self) -> bool:
        return self is SendStatus.SENT


# ============================================================================
# Exception Hierarchy
# ============================================================================


class QueueException(Exception):
    """Base exception for all queue-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.original_error = original_error


class QueueConfigurationError(QueueException, ValueError):
    """Raised when queue settings are missing or invalid."""


class QueueConnectionError(QueueException):
    """Raised when the backend transport cannot be opened."""


class QueueOperationError(QueueException):
    """Raised when a queue operation fails."""


class QueueFullError(QueueOperationError):
    """Raised when queue capacity is exceeded."""


class UnsupportedOperationError(QueueException, NotImplementedError):
    """Raised when a backend cannot perform an operation.

    ``transport_limitation`` is True when the transport fundamentally lacks
    the capability and False when the backend merely has not implemented it.
    """

    def __init__(
        self,
        operation: QueueOperation,
        reason: str,
        transport_limitation: bool = True,
    ) -> None:
        prefix = "Not supported" if transport_limitation else "Not implemented"
        super().__init__(f"{prefix}: {operation.value}. {reason}")
        self.operation = operation
        self.reason = reason
        self.transport_limitation = transport_limitation


# ============================================================================
# Data Models
# ============================================================================


class Message(BaseModel):
    """A queued message.

    ``created_on`` and ``sender_id`` are fixed when the message is built;
    ``status`` and ``subscriber_id`` are delivery metadata set by the backend.
    """

    model_config = ConfigDict(validate_assignment=True)

    message_id: UUID = Field(default_factory=uuid4)
    created_on: datetime = Field(
        default_factory=lambda: datetime.now(tz=UTC),
        frozen=True,
    )
    sender_id: SenderId | None = Field(default=None, frozen=True)
    body: t.Any = None
    status: MessageStatus = MessageStatus.AVAILABLE
    subscriber_id: SenderId | None = None

    def to_bytes(self) -> bytes:
        """Serialize message to msgpack bytes for transport.

        The body keeps its Python types: bytes stay bytes, and tuples and
        sets are tagged so they are not flattened into lists.

        Raises:
            TypeError: If the body holds a type msgpack cannot encode
        """
        envelope = self.model_dump(mode="json", exclude={"body"})
        envelope["body"] = _pack_body(self.body)
        return msgspec.msgpack.encode(envelope)

    @classmethod
    def from_bytes(cls, data: bytes) -> "Message":
        """Deserialize message from msgpack bytes.

        Raises:
            ValueError: If ``data`` is not an encoded message
        """
        try:
            envelope = msgspec.msgpack.decode(data, ext_hook=_unpack_ext)
        except msgspec.DecodeError as e:
            raise ValueError(f"Malformed message frame: {e}") from e
        if not isinstance(envelope, dict):
            raise ValueError("Message frame is not a mapping")
        return cls.model_validate(envelope)


# msgpack extension codes for containers it would otherwise decode as lists
_EXT_CODES: dict[type, int] = {tuple: 1, set: 2, frozenset: 3}
_EXT_TYPES = {code: kind for kind, code in _EXT_CODES.items()}


def _pack_body(value: t.Any) -> t.Any:
    if isinstance(value, dict):
        return {key: _pack_body(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_pack_body(item) for item in value]
    code = _EXT_CODES.get(type(value))
    if code is not None:
        items = [_pack_body(item) for item in value]
        return msgspec.msgpack.Ext(code, msgspec.msgpack.encode(items))
    return value


def _unpack_ext(code: int, data: memoryview) -> t.Any:
    kind = _EXT_TYPES.get(code)
    if kind is None:
        raise ValueError(f"Unknown msgpack extension type {code}")
    return kind(msgspec.msgpack.decode(data, ext_hook=_unpack_ext))


class Subscription(BaseModel):
    """A subscriber's registration with a queue (subscription backends only)."""

    subscriber_id: SenderId
    label: str | None = None
    categories: list[str] = Field(default_factory=list)
    exceptions: list[str] = Field(default_factory=list)
    created_on: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


class QueueSettings(Settings):
    """Base settings for queue adapters.

    Subclasses should extend this with backend-specific configuration.
    """

    model_config = SettingsConfigDict(env_prefix="NFY_QUEUE_")
    settings_file: t.ClassVar[str | None] = "queue.yml"

    id: str
    label: str = ""
    blocking: bool = False


FormatHook = Callable[[Message], Message | Awaitable[Message]]
BeforeSendHook = Callable[[Message], bool | Awaitable[bool]]
AfterSendHook = Callable[[Message], t.Any]


async def _call_hook(hook: Callable[..., t.Any], *args: t.Any) -> t.Any:
    result = hook(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


# ============================================================================
# Queue Backend Interface
# ============================================================================


class QueueBackend(ABC):
    """Queue contract shared by all backends.

    Producers call ``send``; consumers call ``receive`` (or, where supported,
    ``peek``/``reserve`` followed by ``delete``/``release``). Every public
    operation other than ``send`` is checked against ``supported_operations``
    first; operations missing from it raise ``UnsupportedOperationError``
    carrying the reason from ``unsupported_reasons``.

    The send pipeline can be customised without subclassing by passing
    ``format_message``, ``before_send`` and ``after_send`` callables (plain
    functions or coroutine functions). Subclasses may override the methods of
    the same name instead.
    """

    supported_operations: t.ClassVar[frozenset[QueueOperation]] = frozenset(
        {QueueOperation.SEND},
    )
    unsupported_reasons: t.ClassVar[dict[QueueOperation, str]] = {}

    def __init__(
        self,
        settings: QueueSettings,
        *,
        format_message: FormatHook | None = None,
        before_send: BeforeSendHook | None = None,
        after_send: AfterSendHook | None = None,
    ) -> None:
        self.config: Config = depends.get_sync(Config)
        self._settings = settings
        self._logger: t.Any = None

        self._format_hook = format_message
        self._before_send_hook = before_send
        self._after_send_hook = after_send

        # Connection state
        self._client: t.Any = None
        self._connected = False
        self._connection_lock = asyncio.Lock()

    @property
    def settings(self) -> QueueSettings:
        return self._settings

    @property
    def logger(self) -> t.Any:
        if self._logger is None:
            from nfy.logger import Logger

            try:
                self._logger = depends.get_sync(Logger)
            except Exception:
                from loguru import logger

                self._logger = logger
        return self._logger

    @logger.setter
    def logger(self, value: t.Any) -> None:
        self._logger = value

    # ========================================================================
    # Capability Matrix
    # ========================================================================

    def get_capabilities(self) -> frozenset[QueueOperation]:
        """Return the operations this backend supports."""
        return self.supported_operations

    def supports_operation(self, operation: QueueOperation) -> bool:
        return operation in self.supported_operations

    def _require(self, operation: QueueOperation) -> None:
        if operation not in self.supported_operations:
            reason = self.unsupported_reasons.get(
                operation,
                f"{type(self).__name__} does not provide this operation.",
            )
            raise UnsupportedOperationError(operation, reason)

    def _not_implemented(self, operation: QueueOperation) -> t.NoReturn:
        raise UnsupportedOperationError(
            operation,
            f"{type(self).__name__} declares it but has no implementation yet.",
            transport_limitation=False,
        )

    # ========================================================================
    # Connection Management (Public API)
    # ========================================================================

    async def connect(self) -> None:
        """Open the backend transport. Idempotent."""
        async with self._connection_lock:
            if self._connected:
                return
            try:
                await self._ensure_client()
            except QueueConnectionError:
                self.logger.exception(f"Failed to connect queue {self._settings.label}")
                raise
            self._connected = True

    async def disconnect(self) -> None:
        """Release the backend handle."""
        async with self._connection_lock:
            self._connected = False
            await self._disconnect()

    async def _get_client(self) -> t.Any:
        """Return the transport handle, opening it under the connection lock."""
        async with self._connection_lock:
            return await self._ensure_client()

    async def is_connected(self) -> bool:
        return self._connected and self._client is not None

    async def health_check(self) -> dict[str, t.Any]:
        """Perform health check on queue backend.

        Returns:
            Health status dict with ``healthy``, ``connected`` and
            ``backend_info`` keys
        """
        return await self._health_check()

    # ========================================================================
    # Message Construction
    # ========================================================================

    async def create_message(
        self,
        body: t.Any,
        sender_id: SenderId | None = None,
    ) -> Message:
        """Build a Message for ``body`` and pass it through format_message().

        ``sender_id`` defaults to the identity bound with
        ``nfy.context.sender_context``, if any.
        """
        message = Message(
            sender_id=sender_id if sender_id is not None else get_sender_id(),
            body=body,
        )
        return await self.format_message(message)

    async def format_message(self, message: Message) -> Message:
        if self._format_hook is None:
            return message
        return await _call_hook(self._format_hook, message)

    async def before_send(self, message: Message) -> bool:
        """Return True to let ``message`` be sent; anything else skips it."""
        if self._before_send_hook is None:
            return True
        return await _call_hook(self._before_send_hook, message)

    async def after_send(self, message: Message) -> None:
        if self._after_send_hook is not None:
            await _call_hook(self._after_send_hook, message)

    # ========================================================================
    # Message Operations (Public API)
    # ========================================================================

    async def send(
        self,
        body: t.Any,
        category: str | None = None,
        sender_id: SenderId | None = None,
        block: bool | None = None,
    ) -> SendStatus:
        """Send a message to the queue.

        Args:
            body: Message body, any msgpack-encodable value
            category: Routing category, ignored by backends without routing
            sender_id: Sender identity, defaults to the ambient sender
            block: Wait for free space instead of failing when the transport
                is full. None uses the backend default.

        Returns:
            ``SENT`` on success, ``SKIPPED`` when before_send() vetoed the
            message, ``FULL`` or ``FAILED`` when the transport rejected it
        """
        message = await self.create_message(body, sender_id)
        label = self._settings.label

        if await self.before_send(message) is not True:
            self.logger.info(f"Not sending message '{message.body}' to queue {label}.")
            return SendStatus.SKIPPED

        try:
            await self._send(message, category, block)
        except QueueException as e:
            self.logger.error(f"Failed to save message '{message.body}' in queue {label}.")
            if isinstance(e, QueueFullError):
                self.logger.error(f"Queue {label} is full.")
                return SendStatus.FULL
            self.logger.debug(f"Send failure in queue {label}: {e}")
            return SendStatus.FAILED

        await self.after_send(message)
        self.logger.info(f"Sent message '{message.body}' to queue {label}.")
        return SendStatus.SENT

    async def receive(
        self,
        subscriber_id: SenderId | None = None,
        limit: int = -1,
    ) -> list[Message]:
        """Get available messages and remove them from the queue.

        Args:
            subscriber_id: Subscriber to receive for, None for none
            limit: Maximum number of messages, -1 for no limit

        Returns:
            Messages in delivery order, possibly empty
        """
        self._require(QueueOperation.RECEIVE)
        return await self._receive(subscriber_id, limit)

    async def peek(
        self,
        subscriber_id: SenderId | None = None,
        limit: int = -1,
        status: MessageStatus = MessageStatus.AVAILABLE,
    ) -> list[Message]:
        """Return messages without removing them from the queue."""
        self._require(QueueOperation.PEEK)
        return await self._peek(subscriber_id, limit, status)

    async def reserve(
        self,
        subscriber_id: SenderId | None = None,
        limit: int = -1,
    ) -> list[Message]:
        """Reserve messages until they are deleted or released."""
        self._require(QueueOperation.RESERVE)
        return await self._reserve(subscriber_id, limit)

    async def delete(
        self,
        message_id: UUID | list[UUID],
        subscriber_id: SenderId | None = None,
    ) -> list[UUID]:
        """Delete reserved messages; returns the ids actually deleted."""
        self._require(QueueOperation.DELETE)
        return await self._delete(message_id, subscriber_id)

    async def release(
        self,
        message_id: UUID | list[UUID],
        subscriber_id: SenderId | None = None,
    ) -> list[UUID]:
        """Make reserved messages available again."""
        self._require(QueueOperation.RELEASE)
        return await self._release(message_id, subscriber_id)

    async def release_timedout(self) -> list[UUID]:
        """Release messages whose reservation expired."""
        self._require(QueueOperation.RELEASE_TIMEDOUT)
        return await self._release_timedout()

    async def subscribe(
        self,
        subscriber_id: SenderId,
        label: str | None = None,
        categories: list[str] | None = None,
        exceptions: list[str] | None = None,
    ) -> None:
        self._require(QueueOperation.SUBSCRIBE)
        await self._subscribe(subscriber_id, label, categories, exceptions)

    async def unsubscribe(
        self,
        subscriber_id: SenderId,
        categories: list[str] | None = None,
    ) -> None:
        self._require(QueueOperation.UNSUBSCRIBE)
        await self._unsubscribe(subscriber_id, categories)

    async def is_subscribed(self, subscriber_id: SenderId) -> bool:
        self._require(QueueOperation.IS_SUBSCRIBED)
        return await self._is_subscribed(subscriber_id)

    async def get_subscriptions(
        self,
        subscriber_id: SenderId | None = None,
    ) -> list[Subscription]:
        self._require(QueueOperation.GET_SUBSCRIPTIONS)
        return await self._get_subscriptions(subscriber_id)

    # ========================================================================
    # Async Context Manager Support
    # ========================================================================

    async def __aenter__(self) -> "QueueBackend":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.disconnect()

    # ========================================================================
    # Abstract Methods (Private Implementation)
    # ========================================================================

    @abstractmethod
    async def _ensure_client(self) -> t.Any:
        """Ensure backend client is initialized (lazy initialization).

        Implementations should:
        1. Check if self._client is None
        2. If None, open the transport and cache it in self._client
        3. Return the client

        Raises:
            QueueConnectionError: If the transport cannot be opened
        """
        ...

    @abstractmethod
    async def _disconnect(self) -> None: ...

    @abstractmethod
    async def _health_check(self) -> dict[str, t.Any]: ...

    @abstractmethod
    async def _send(
        self,
        message: Message,
        category: str | None = None,
        block: bool | None = None,
    ) -> None:
        """Transmit one formatted message.

        Raises:
            QueueFullError: If the transport is at capacity
            QueueOperationError: If the transport rejects the message
            QueueConnectionError: If the transport cannot be opened
        """
        ...

    # Optional operations, reached only when declared in supported_operations

    async def _receive(
        self,
        subscriber_id: SenderId | None,
        limit: int,
    ) -> list[Message]:
        self._not_implemented(QueueOperation.RECEIVE)

    async def _peek(
        self,
        subscriber_id: SenderId | None,
        limit: int,
        status: MessageStatus,
    ) -> list[Message]:
        self._not_implemented(QueueOperation.PEEK)

    async def _reserve(
        self,
        subscriber_id: SenderId | None,
        limit: int,
    ) -> list[Message]:
        self._not_implemented(QueueOperation.RESERVE)

    async def _delete(
        self,
        message_id: UUID | list[UUID],
        subscriber_id: SenderId | None,
    ) -> list[UUID]:
        self._not_implemented(QueueOperation.DELETE)

    async def _release(
        self,
        message_id: UUID | list[UUID],
        subscriber_id: SenderId | None,
    ) -> list[UUID]:
        self._not_implemented(QueueOperation.RELEASE)

    async def _release_timedout(self) -> list[UUID]:
        self._not_implemented(QueueOperation.RELEASE_TIMEDOUT)

    async def _subscribe(
        self,
        subscriber_id: SenderId,
        label: str | None,
        categories: list[str] | None,
        exceptions: list[str] | None,
    ) -> None:
        self._not_implemented(QueueOperation.SUBSCRIBE)

    async def _unsubscribe(
        self,
        subscriber_id: SenderId,
        categories: list[str] | None,
    ) -> None:
        self._not_implemented(QueueOperation.UNSUBSCRIBE)

    async def _is_subscribed(self, subscriber_id: SenderId) -> bool:
        self._not_implemented(QueueOperation.IS_SUBSCRIBED)

    async def _get_subscriptions(
        self,
        subscriber_id: SenderId | None,
    ) -> list[Subscription]:
        self._not_implemented(QueueOperation.GET_SUBSCRIPTIONS)
