from collections.abc import Callable
from typing import Any, Generic, Protocol, TypeVar, overload

T = TypeVar("T")


class Registry(Generic[T]):
    """
    Named implementations of one pluggable concern.

    ``register`` works as a plain call or as a decorator::

        @job_queue_registry.register("memory")
        def build_memory_queue(settings, session_factory): ...
    """

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    @overload
    def register(self, name: str) -> Callable[[T], T]: ...

    @overload
    def register(self, name: str, implementation: T) -> T: ...

    def register(self, name: str, implementation: Any = None) -> Any:
        """Register ``implementation`` under ``name``, later entries win."""
        if implementation is None:
            return lambda impl: self.register(name, impl)

        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen outside development"
            )
        self._implementations[name] = implementation
        return implementation

    def get(self, name: str) -> T:
        try:
            return self._implementations[name]
        except KeyError:
            available = ", ".join(sorted(self._implementations)) or "none"
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: "
                f"{name} (available: {available})"
            ) from None

    def list(self) -> list[str]:
        return list(self._implementations)

    def __contains__(self, name: object) -> bool:
        return name in self._implementations

    def freeze(self) -> None:
        """Reject further registrations, lookups keep working."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen


class JobQueueFactory(Protocol):
    """Builds a job queue backend for the current process."""

    def __call__(self, settings: Any, session_factory: Any) -> Any:
        """
        Build a queue for the given settings.

        Args:
            settings: Application settings (job_* fields)
            session_factory: async_sessionmaker for durable backends, may be
                None for backends that keep no state outside the process

        Returns:
            An object implementing the JobQueue protocol
        """
        ...


# Queue backends, keyed by the JOB_BACKEND setting value
job_queue_registry: Registry[JobQueueFactory] = Registry("JobQueue")
