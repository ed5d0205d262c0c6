"""Ambient sender identity.

Hosts that have a notion of a logged-in user or service identity can bind it
for the duration of a request so that messages created inside it carry a
``sender_id`` without threading the value through every ``send`` call.
"""

from collections.abc import Iterator
from contextvars import ContextVar

from contextlib import contextmanager

SenderId = str | int

_current_sender: ContextVar[SenderId | None] = ContextVar(
    "nfy_current_sender",
    default=None,
)


def get_sender_id() -> SenderId | None:
    """Return the identity bound to the current context, or None."""
    return _current_sender.get()


@contextmanager
def sender_context(sender_id: SenderId | None) -> Iterator[SenderId | None]:
    """Bind ``sender_id`` as the current sender inside the ``with`` block."""
    token = _current_sender.set(sender_id)
    try:
        yield sender_id
    finally:
        _current_sender.reset(token)


__all__ = ["SenderId", "get_sender_id", "sender_context"]
