import typing as t
from bevy import get_container


class Depends:
    """Dependency injection manager for nfy.

    Thin facade over the Bevy container. Shared singletons (``Config``,
    ``Logger``) are registered here and looked up by the queue adapters.
    """

    @staticmethod
    def set(class_: t.Any, instance: t.Any = None, module: str | None = None) -> t.Any:
        """Register a class/instance in the dependency container.

        Returns the instance that was registered.
        """
        if instance is None:
            instance = class_()
        get_container().add(class_, instance, qualifier=module)
        return instance

    @staticmethod
    def get_sync(category: t.Any, module: str | None = None) -> t.Any:
        """Get dependency instance synchronously.

        Args:
            category: The dependency class to retrieve
            module: Optional qualifier the dependency was registered under

        Returns:
            The dependency instance
        """
        result = get_container().get(category, qualifier=module)
        if isinstance(result, tuple):
            if len(result) == 1:
                return result[0]
            msg = f"Dependency '{category}' returned {len(result)} values, expected one"
            raise RuntimeError(msg)
        return result

    async def get(self, category: t.Any, module: str | None = None) -> t.Any:
        """Async alias of get_sync() for use inside coroutines."""
        return self.get_sync(category, module)


depends = Depends()

__all__ = ["Depends", "depends", "get_container"]
