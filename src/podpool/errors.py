"""Exceptions raised while registering, resolving and running pods.

Every error carries a short ``reason`` plus structured ``details``, which are
also exposed as attributes, and formats both into one diagnostic line::

    bad import entry: export entry not found by ref id; import_entry_path='app.Api.db' ref_id='db'
"""

from typing import Any, Optional

__all__ = [
    "DependencyError",
    "InvalidComponent",
    "BadEntry",
    "BadImportEntry",
    "BadExportEntry",
    "BadFilterEntry",
    "CircularDependency",
    "LifecycleError",
    "SetupFailed",
    "FilterFailed",
]


class DependencyError(Exception):
    """Raised when a pod's dependency cannot be resolved or is misdeclared."""

    kind = "dependency error"

    def __init__(self, reason: str, **details: Any):
        self.reason = reason
        self.details = details
        for key, value in details.items():
            setattr(self, key, value)
        super().__init__(self._format())

    def _format(self) -> str:
        message = f"{self.kind}: {self.reason}"
        if self.details:
            message += "; " + " ".join(
                f"{key}={value!r}" for key, value in self.details.items()
            )
        return message


class InvalidComponent(DependencyError):
    """The object handed to the pool cannot be used as a pod."""

    kind = "invalid pod"


class BadEntry(DependencyError):
    """An import, export or filter entry is malformed or cannot be resolved."""

    kind = "bad entry"


class BadImportEntry(BadEntry):
    kind = "bad import entry"


class BadExportEntry(BadEntry):
    kind = "bad export entry"


class BadFilterEntry(BadEntry):
    kind = "bad filter entry"


class CircularDependency(DependencyError):
    """Pods depend on each other in a cycle; ``stack_trace`` shows the path."""

    kind = "pod circular dependency"


class LifecycleError(DependencyError):
    """A user hook failed while the pool was being set up.

    The hook's exception is chained as ``__cause__`` and kept as ``cause``.
    """

    kind = "lifecycle error"

    def __init__(self, reason: str, cause: Optional[BaseException] = None, **details: Any):
        self.cause = cause
        super().__init__(reason, **details)

    def _format(self) -> str:
        message = super()._format()
        if self.cause is not None:
            message += f" | {type(self.cause).__name__}: {self.cause}"
        return message


class SetupFailed(LifecycleError):
    kind = "pod setup failed"


class FilterFailed(LifecycleError):
    kind = "filter function failed"
