"""The pod pool: registration and the setup/teardown surface."""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional, TypeVar

from podpool.context import Context
from podpool.entries import ParsedPod, parse_pod
from podpool.lifecycle import LifecycleCoordinator
from podpool.resolution import resolve

__all__ = ["PodPool"]

logger = logging.getLogger(__name__)

P = TypeVar("P")


class PodPool:
    """A set of pods wired together through their import, export and filter entries.

    Example:
        >>> pool = PodPool()
        >>> pool.register(Greeting())
        >>> pool.register(Greeter())
        >>> with pool.running():
        ...     ...
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._pods: list[ParsedPod] = []
        self._order: list[int] = []

    @property
    def pods(self) -> list[Any]:
        """Registered pod objects, in registration order."""
        return [pod.raw for pod in self._pods]

    @property
    def order(self) -> list[Any]:
        """Pod objects in the order of the last successful setup; empty if none succeeded."""
        return [self._pods[index].raw for index in self._order]

    def register(self, pod: P) -> P:
        """Parse a pod and add it to the pool.

        Args:
            pod: An instance of a class with annotated entry fields.

        Returns:
            The pod itself.

        Raises:
            InvalidComponent: If the object cannot be a pod.
            BadImportEntry, BadExportEntry, BadFilterEntry: If an entry is malformed.
                The pool is left unchanged.
        """
        parsed = parse_pod(pod, len(self._pods))
        self._pods.append(parsed)
        logger.debug(
            "Registered pod %s in pool %s (%d import, %d export, %d filter)",
            parsed.name,
            self.name,
            len(parsed.imports),
            len(parsed.exports),
            len(parsed.filters),
        )
        return pod

    def set_up(self, ctx: Optional[Context] = None) -> None:
        """Resolve the pods and set them up in dependency order.

        Args:
            ctx: Context handed to every hook; a background context if omitted.

        Raises:
            DependencyError: If resolution fails; nothing has been set up.
            SetupFailed, FilterFailed: If a hook fails; pods already set up
                have been torn down again.
        """
        if ctx is None:
            ctx = Context.background()

        self._order = []
        order = resolve(self._pods)
        LifecycleCoordinator(self._pods).set_up(order, ctx)
        self._order = order
        logger.debug("Pool %s set up with %d pod(s)", self.name, len(order))

    def tear_down(self) -> None:
        """Tear down the pods in reverse setup order.

        Walks back from the last pod set up by the last successful :meth:`set_up`,
        every time it is called; does nothing if no setup has succeeded. Hook
        failures are logged, never raised.
        """
        LifecycleCoordinator(self._pods).tear_down(self._order)
        if self._order:
            logger.debug("Pool %s torn down", self.name)

    @contextmanager
    def running(self, ctx: Optional[Context] = None) -> Iterator["PodPool"]:
        """Set the pool up for the duration of a ``with`` block."""
        self.set_up(ctx)
        try:
            yield self
        finally:
            self.tear_down()
