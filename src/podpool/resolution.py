"""Resolution of pod entries into a setup order.

Resolution runs in three phases over every pod of a pool:

1. Reference links are resolved by their owning pods and every export is
   indexed, by ref id when it has one and by value type otherwise.
2. Imports and filters are bound to the exports they name. Filters are
   attached to their export, ordered by descending priority.
3. Pods are ordered depth first. A pod depends on the owners of the exports
   it imports and on the owners of the filters attached to its exports, so
   those are set up before it. Meeting a pod that is still being visited is a
   circular dependency.

Every phase is idempotent: running the resolution again over the same pods
yields the same bindings, the same order, or the same error.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Sequence

from podpool.declarations import type_name
from podpool.domain import Ref
from podpool.entries import Entry, ExportEntry, FilterEntry, ImportEntry, ParsedPod
from podpool.errors import CircularDependency

__all__ = ["resolve"]

logger = logging.getLogger(__name__)


def resolve(pods: Sequence[ParsedPod]) -> list[int]:
    """Bind the entries of ``pods`` and return pod indexes in setup order.

    Raises:
        BadImportEntry: If an import cannot be bound.
        BadExportEntry: If an export collides with another one.
        BadFilterEntry: If a filter cannot be bound.
        CircularDependency: If the pods depend on each other in a cycle.
    """
    exports = _ExportIndex()

    for pod in pods:
        _resolve_links_and_index_exports(pod, exports)

    for pod in pods:
        _bind_imports_and_filters(pod, exports)

    for pod in pods:
        for export in pod.exports:
            export.sort_filters()

    ordering = _Ordering(pods)
    for pod in pods:
        ordering.visit(pod.index)

    logger.debug("Resolved setup order %s", [pods[index].name for index in ordering.order])
    return ordering.order


class _ExportIndex:
    """Exports keyed by ref id, or by value type for exports without one."""

    def __init__(self):
        self._by_ref_id: dict[str, ExportEntry] = {}
        self._by_type: dict[Any, ExportEntry] = {}

    def add(self, export: ExportEntry) -> None:
        """Index an export.

        Raises:
            BadExportEntry: If another export already holds the same ref id or type.
        """
        if export.ref_id:
            conflicting = self._by_ref_id.setdefault(export.ref_id, export)
            if conflicting is not export:
                raise export.error(
                    "duplicate ref id",
                    conflicting_export_entry_path=conflicting.path,
                    ref_id=export.ref_id,
                )
        else:
            conflicting = self._by_type.setdefault(export.value_type, export)
            if conflicting is not export:
                raise export.error(
                    "duplicate field type",
                    conflicting_export_entry_path=conflicting.path,
                    field_type=type_name(export.value_type),
                )

    def find(self, entry: Entry, value_type: Any) -> ExportEntry:
        """Look up the export an import or filter names.

        Raises:
            BadImportEntry, BadFilterEntry: If there is no such export.
        """
        if entry.ref_id:
            export = self._by_ref_id.get(entry.ref_id)
            if export is None:
                raise entry.error("export entry not found by ref id", ref_id=entry.ref_id)
        else:
            export = self._by_type.get(value_type)
            if export is None:
                raise entry.error(
                    "export entry not found by field type", field_type=type_name(value_type)
                )
        return export


def _resolve_links_and_index_exports(pod: ParsedPod, exports: _ExportIndex) -> None:
    for entry in pod.imports:
        _resolve_ref_link(pod, entry)

    for export in pod.exports:
        _resolve_ref_link(pod, export)
        exports.add(export)

    for entry in pod.filters:
        _resolve_ref_link(pod, entry)


def _resolve_ref_link(pod: ParsedPod, entry: Entry) -> None:
    ref_link = entry.ref_link
    if ref_link is None:
        return

    ref_id = pod.raw.resolve_ref_link(ref_link)
    if ref_id is None:
        raise entry.error("unresolvable ref link", ref_link=ref_link)
    entry.ref_id = ref_id


def _bind_imports_and_filters(pod: ParsedPod, exports: _ExportIndex) -> None:
    for entry in pod.imports:
        _bind_import(entry, exports)

    for entry in pod.filters:
        _bind_filter(entry, exports)


def _bind_import(entry: ImportEntry, exports: _ExportIndex) -> None:
    export = exports.find(entry, entry.value_type)

    # only a lookup by ref id can land on an export of another type
    if export.value_type != entry.value_type:
        raise entry.error(
            "field type mismatch",
            field_type=type_name(entry.value_type),
            expected_field_type=type_name(export.value_type),
            export_entry_path=export.path,
        )

    entry.export = export


def _bind_filter(entry: FilterEntry, exports: _ExportIndex) -> None:
    export = exports.find(entry, entry.target_type)

    if export.value_type != entry.target_type:
        raise entry.error(
            "field type mismatch",
            field_type=type_name(entry.value_type),
            expected_field_type=type_name(Ref[export.value_type]),
            export_entry_path=export.path,
        )

    export.attach(entry)


class _VisitState(enum.Enum):
    UNVISITED = enum.auto()
    ENTERED = enum.auto()
    LEFT = enum.auto()


@dataclass
class _Frame:
    """A pod on the traversal stack.

    Attributes:
        pod_index: The pod being visited.
        target_entry_path: Entry of this pod through which it was reached.
        active_entry_path: Entry of this pod whose dependencies are being visited.
    """

    pod_index: int
    target_entry_path: str
    active_entry_path: str = ""

    def describe(self) -> str:
        return " ... ".join(
            path for path in (self.target_entry_path, self.active_entry_path) if path
        )


class _Ordering:
    """Depth-first ordering of pods with cycle detection.

    Visit states are kept in a side table indexed like the pods. Pods are
    appended to ``order`` as they are left, which puts every pod after the
    pods it depends on.
    """

    def __init__(self, pods: Sequence[ParsedPod]):
        self._pods = pods
        self._states = [_VisitState.UNVISITED] * len(pods)
        self._stack: list[_Frame] = []
        self.order: list[int] = []

    def visit(self, pod_index: int, target_entry_path: str = "") -> None:
        state = self._states[pod_index]
        if state is _VisitState.LEFT:
            return

        self._stack.append(_Frame(pod_index, target_entry_path))
        if state is _VisitState.ENTERED:
            raise CircularDependency("cycle detected", stack_trace=self._dump_stack())
        self._states[pod_index] = _VisitState.ENTERED

        pod = self._pods[pod_index]
        frame = self._stack[-1]

        for entry in pod.imports:
            frame.active_entry_path = entry.path
            self.visit(entry.export.pod_index, entry.export.path)

        for export in pod.exports:
            frame.active_entry_path = export.path
            for filter_entry in export.filters:
                # a pod filtering its own export does not depend on itself
                if filter_entry.pod_index == pod_index:
                    continue
                self.visit(filter_entry.pod_index, filter_entry.path)

        self._stack.pop()
        self._states[pod_index] = _VisitState.LEFT
        self.order.append(pod_index)

    def _dump_stack(self) -> str:
        return " ==> ".join(frame.describe() for frame in self._stack)
