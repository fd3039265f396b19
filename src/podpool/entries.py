"""Import, export and filter entries, and the parsing of a pod into them."""

import dataclasses
import inspect
from dataclasses import dataclass, field
from itertools import chain
from typing import Any, Callable, ClassVar, Iterator, Optional, get_args, get_origin

from podpool.context import Context
from podpool.declarations import (
    Export,
    FieldDeclaration,
    Filter,
    Import,
    extract_declarations,
    is_ref_link,
    type_name,
)
from podpool.domain import Ref
from podpool.errors import (
    BadEntry,
    BadExportEntry,
    BadFilterEntry,
    BadImportEntry,
    InvalidComponent,
)

__all__ = ["Entry", "ImportEntry", "ExportEntry", "FilterEntry", "ParsedPod", "parse_pod"]

_POD_METHODS = ("resolve_ref_link", "set_up", "tear_down")


@dataclass(eq=False)
class Entry:
    """A field of a pod that takes part in wiring.

    Attributes:
        path: Diagnostic path of the field.
        field_name: Attribute name on the pod object.
        value_type: Declared type of the field.
        declared_ref_id: Ref id as declared; may be a reference link.
        pod_index: Index of the owning pod in its pool.
        ref_id: Concrete ref id, set when the reference link is resolved.
    """

    kind: ClassVar[str] = "entry"
    error_class: ClassVar[type[BadEntry]] = BadEntry

    path: str
    field_name: str
    value_type: Any
    declared_ref_id: str
    pod_index: int
    ref_id: str = field(init=False, default="")

    def __post_init__(self):
        self.ref_id = self.declared_ref_id

    @property
    def ref_link(self) -> Optional[str]:
        return self.declared_ref_id if is_ref_link(self.declared_ref_id) else None

    def error(self, reason: str, **details: Any) -> BadEntry:
        """Build the error for this kind of entry, naming the entry path first."""
        return self.error_class(reason, **{f"{self.kind}_entry_path": self.path}, **details)


@dataclass(eq=False)
class ImportEntry(Entry):
    kind: ClassVar[str] = "import"
    error_class: ClassVar[type[BadEntry]] = BadImportEntry

    export: Optional["ExportEntry"] = None


@dataclass(eq=False)
class ExportEntry(Entry):
    """An exported field and the filters attached to it, highest priority first."""

    kind: ClassVar[str] = "export"
    error_class: ClassVar[type[BadEntry]] = BadExportEntry

    filters: list["FilterEntry"] = field(default_factory=list)

    def attach(self, filter_entry: "FilterEntry") -> None:
        if filter_entry not in self.filters:
            self.filters.append(filter_entry)

    def sort_filters(self) -> None:
        # stable: equal priorities keep discovery order
        self.filters.sort(key=lambda filter_entry: -filter_entry.priority)


@dataclass(eq=False)
class FilterEntry(Entry):
    """A ``Ref[T]`` field plus the bound hook that mutates the export through it."""

    kind: ClassVar[str] = "filter"
    error_class: ClassVar[type[BadEntry]] = BadFilterEntry

    hook: Optional[Callable[[Context], Any]] = None
    priority: int = 0

    @property
    def target_type(self) -> Any:
        """The export type this filter applies to: ``T`` of ``Ref[T]``."""
        return get_args(self.value_type)[0]


@dataclass(eq=False)
class ParsedPod:
    """A registered pod object and its entries, addressed by ``index`` in the pool."""

    raw: Any
    index: int
    name: str
    imports: list[ImportEntry] = field(default_factory=list)
    exports: list[ExportEntry] = field(default_factory=list)
    filters: list[FilterEntry] = field(default_factory=list)

    @property
    def entries(self) -> Iterator[Entry]:
        return chain(self.imports, self.exports, self.filters)


def parse_pod(raw: Any, index: int) -> ParsedPod:
    """Validate a pod object and build its entries.

    Args:
        raw: The user's pod object.
        index: Position the pod will take in its pool.

    Returns:
        The parsed pod.

    Raises:
        InvalidComponent: If ``raw`` is not a mutable pod instance or declares no entries.
        BadImportEntry: If an import field is malformed.
        BadExportEntry: If an export field is malformed.
        BadFilterEntry: If a filter field, its method or its priority is malformed.
    """
    _validate_shape(raw)

    pod_type = type(raw)
    pod = ParsedPod(raw, index, type_name(pod_type))

    for declaration in extract_declarations(pod_type):
        marker = declaration.marker
        if isinstance(marker, Import):
            pod.imports.append(_make_entry(ImportEntry, declaration, index))
        elif isinstance(marker, Export):
            pod.exports.append(_make_entry(ExportEntry, declaration, index))
        else:
            pod.filters.append(_make_filter_entry(raw, declaration, index))

    if not (pod.imports or pod.exports or pod.filters):
        raise InvalidComponent("no import/export/filter entry", pod_type=pod.name)

    return pod


def _validate_shape(raw: Any) -> None:
    if inspect.isclass(raw):
        raise InvalidComponent("non-instance type", pod_type=type_name(raw))

    pod_type = type(raw)
    if pod_type.__module__ == "builtins":
        raise InvalidComponent("non-record type", pod_type=type_name(pod_type))

    if (
        isinstance(raw, tuple)
        or not isinstance(getattr(raw, "__dict__", None), dict)
        or (dataclasses.is_dataclass(raw) and pod_type.__dataclass_params__.frozen)
    ):
        raise InvalidComponent("immutable type", pod_type=type_name(pod_type))

    for method_name in _POD_METHODS:
        if not callable(getattr(raw, method_name, None)):
            raise InvalidComponent(
                "missing pod method", pod_type=type_name(pod_type), method_name=method_name
            )


def _make_entry(entry_class, declaration: FieldDeclaration, index: int):
    entry = entry_class(
        declaration.path,
        declaration.field_name,
        declaration.value_type,
        declaration.marker.ref_id,
        index,
    )
    if declaration.field_name.startswith("_"):
        raise entry.error("field unexported")
    return entry


def _make_filter_entry(raw: Any, declaration: FieldDeclaration, index: int) -> FilterEntry:
    entry: FilterEntry = _make_entry(FilterEntry, declaration, index)
    marker: Filter = declaration.marker

    if get_origin(entry.value_type) is not Ref:
        raise entry.error("non-pointer field type", field_type=type_name(entry.value_type))

    method_name = marker.method
    if method_name is None:
        raise entry.error("missing argument `method`")

    hook = None if method_name.startswith("_") else getattr(raw, method_name, None)
    if not callable(hook):
        raise entry.error("method undefined or unexported", method_name=method_name)

    if not _accepts_context(hook):
        raise entry.error(
            "function type mismatch",
            method_name=method_name,
            expected="(ctx)",
            got=_describe_signature(hook),
        )
    entry.hook = hook

    if marker.priority is None:
        raise entry.error("missing argument `priority`")
    entry.priority = _parse_priority(entry, marker.priority)

    return entry


def _parse_priority(entry: FilterEntry, priority: Any) -> int:
    if isinstance(priority, int) and not isinstance(priority, bool):
        return priority
    try:
        return int(str(priority))
    except ValueError as err:
        raise entry.error("priority parse failed", priority_str=str(priority)) from err


def _accepts_context(hook: Callable) -> bool:
    """A filter hook is a plain callable taking the context as its only argument."""
    if inspect.iscoroutinefunction(hook):
        return False
    try:
        inspect.signature(hook).bind(None)
    except (TypeError, ValueError):
        return False
    return True


def _describe_signature(hook: Callable) -> str:
    try:
        signature = str(inspect.signature(hook))
    except (TypeError, ValueError):
        return "<unknown>"
    if inspect.iscoroutinefunction(hook):
        return f"async {signature}"
    return signature
