import typing as t

from .adapters import import_adapter
from .config import Config
from .context import get_sender_id, sender_context
from .depends import depends

__all__ = [
    "Config",
    "depends",
    "get_queue",
    "get_sender_id",
    "import_adapter",
    "sender_context",
]


def get_queue(settings: t.Any = None, **hooks: t.Any) -> t.Any:
    """Build the queue backend selected in ``adapters.yml``.

    Without ``settings`` the backend loads its own from the environment and
    ``<settings path>/queue.yml``. ``hooks`` (``format_message``,
    ``before_send``, ``after_send``) are passed to the backend.
    """
    config: Config = depends.get_sync(Config)
    queue_class = import_adapter(
        "queue",
        config.adapters.get("queue"),
        config.settings_path,
    )
    return queue_class(settings, **hooks)
