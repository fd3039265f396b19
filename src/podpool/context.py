"""Cancellation-bearing context handed to pod hooks.

The pool never checks the context itself. Hooks that can be interrupted call
:meth:`Context.raise_if_cancelled` (or inspect :attr:`Context.cancelled`)
and the resulting exception aborts the setup like any other hook failure.

Example:
    >>> ctx, cancel = Context.background().with_cancel()
    >>> cancel()
    >>> ctx.cancelled
    True
"""

import threading
from typing import Callable, Optional

__all__ = ["Cancelled", "Context"]


class Cancelled(Exception):
    """Raised by :meth:`Context.raise_if_cancelled` once the context is cancelled."""

    def __init__(self, reason: str = "context cancelled"):
        self.reason = reason
        super().__init__(reason)


class Context:
    """A node in a tree of cancellable contexts.

    Cancelling a context cancels every context derived from it; cancelling a
    child leaves its parent untouched. The flag is a ``threading.Event`` so
    that another thread may cancel while a hook is running.
    """

    def __init__(self, parent: Optional["Context"] = None):
        self._parent = parent
        self._event = threading.Event()
        self._reason: Optional[str] = None

    @classmethod
    def background(cls) -> "Context":
        """Return a fresh root context."""
        return cls()

    def with_cancel(self) -> tuple["Context", Callable[[], None]]:
        """Derive a child context and the function that cancels it."""
        child = Context(self)
        return child, child.cancel

    def cancel(self, reason: str = "context cancelled") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self.err() is not None

    def err(self) -> Optional[Cancelled]:
        """Return the cancellation of this context or its nearest cancelled ancestor."""
        context: Optional[Context] = self
        while context is not None:
            if context._event.is_set():
                return Cancelled(context._reason)
            context = context._parent
        return None

    def raise_if_cancelled(self) -> None:
        err = self.err()
        if err is not None:
            raise err
