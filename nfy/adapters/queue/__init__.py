"""nfy Queue Adapter Package.

Queue contract and backends. Every backend implements ``QueueBackend`` and
declares which operations its transport supports:

- System V (``sysv``): inter-process queue over a System V IPC message
  queue; supports ``send`` and ``receive`` only

Example Usage:
    ```python
    from nfy import get_queue

    queue = get_queue()  # backend and settings from settings/*.yml

    if await queue.send("hello"):
        ...
    messages = await queue.receive(limit=10)

    if queue.supports_operation(QueueOperation.RESERVE):
        reserved = await queue.reserve(limit=1)
    ```
"""

from nfy.adapters.queue._base import (
    Message,
    MessageStatus,
    QueueBackend,
    QueueConfigurationError,
    QueueConnectionError,
    QueueException,
    QueueFullError,
    QueueOperation,
    QueueOperationError,
    QueueSettings,
    SendStatus,
    Subscription,
    UnsupportedOperationError,
)

__all__ = [
    # Base interface
    "QueueBackend",
    "QueueSettings",
    "Message",
    "Subscription",
    # Enums
    "MessageStatus",
    "QueueOperation",
    "SendStatus",
    # Exceptions
    "QueueException",
    "QueueConfigurationError",
    "QueueConnectionError",
    "QueueOperationError",
    "QueueFullError",
    "UnsupportedOperationError",
]
