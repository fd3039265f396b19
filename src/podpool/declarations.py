"""Declaration markers and the walk over a pod class's annotated fields.

Entries are declared with :class:`typing.Annotated`, using either marker
objects or the equivalent textual tags:

    >>> class Greeter(BasePod):
    ...     greeting: Annotated[str, Export("the_greeting")]
    ...     name: Annotated[str, "import:user_name"]
    ...     shout: Annotated[Ref[str], Filter("the_greeting", "add_name", 0)]

An empty ref id means "match by the declared value type". A ref id starting
with ``@`` is a reference link, resolved later by the owning pod.
"""

import inspect
from dataclasses import dataclass
from typing import (
    Annotated,
    Any,
    ClassVar,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from podpool.errors import InvalidComponent

__all__ = [
    "REF_LINK_PREFIX",
    "Import",
    "Export",
    "Filter",
    "Marker",
    "FieldDeclaration",
    "parse_tag",
    "extract_declarations",
    "is_ref_link",
    "type_name",
]

REF_LINK_PREFIX = "@"


@dataclass(frozen=True)
class Import:
    """Marks a field to be populated from another pod's export."""

    ref_id: str = ""


@dataclass(frozen=True)
class Export:
    """Marks a field published for import or filtering by other pods."""

    ref_id: str = ""


@dataclass(frozen=True)
class Filter:
    """Marks a ``Ref[T]`` field whose owner post-processes an export.

    Attributes:
        ref_id: Export to filter; empty to match the export of type ``T``.
        method: Name of the pod method called with the context.
        priority: Signed integer, or a string holding one. Higher runs earlier.
    """

    ref_id: str = ""
    method: Optional[str] = None
    priority: Union[int, str, None] = None


Marker = Union[Import, Export, Filter]

_MARKER_TYPES = (Import, Export, Filter)


@dataclass(frozen=True)
class FieldDeclaration:
    """A marked field found on a pod class.

    Attributes:
        path: Diagnostic path, ``<module>.<PodClass>[.<DeclaringBase>].<field>``.
        field_name: Attribute name on the pod object.
        value_type: The annotation with ``Annotated`` stripped.
        marker: The marker that declared the field.
    """

    path: str
    field_name: str
    value_type: Any
    marker: Marker


def parse_tag(text: str) -> Optional[Marker]:
    """Parse a textual tag into a marker.

    Returns None when the string is not a tag at all, so that other
    ``Annotated`` metadata is left alone.

    Example:
        >>> parse_tag("import:db")
        Import(ref_id='db')
        >>> parse_tag("filter:,add_name,-1")
        Filter(ref_id='', method='add_name', priority='-1')
    """
    kind, _, arguments = text.partition(":")
    kind = kind.strip()
    args = [arg.strip() for arg in arguments.split(",")]

    if kind == "import":
        return Import(args[0])
    if kind == "export":
        return Export(args[0])
    if kind == "filter":
        return Filter(
            args[0],
            args[1] if len(args) >= 2 else None,
            args[2] if len(args) >= 3 else None,
        )
    return None


def is_ref_link(ref_id: str) -> bool:
    return ref_id.startswith(REF_LINK_PREFIX)


def type_name(tp: Any) -> str:
    """Render a declared type for diagnostics: ``int``, ``app.Db``, ``list[int]``."""
    if isinstance(tp, type) and not get_args(tp):
        if tp.__module__ == "builtins":
            return tp.__qualname__
        return f"{tp.__module__}.{tp.__qualname__}"
    return repr(tp)


def extract_declarations(cls: type) -> list[FieldDeclaration]:
    """Collect the marked fields of a pod class, base class fields first.

    Fields inherited from a base class keep their position and get the base
    class name inserted into their path. A field redeclared in a subclass is
    taken from the subclass.

    Raises:
        InvalidComponent: If the class annotations cannot be evaluated.
    """
    declaring_classes: dict[str, type] = {}
    for klass in reversed(cls.__mro__):
        if klass is object:
            continue
        for field_name in inspect.get_annotations(klass):
            declaring_classes[field_name] = klass

    hints_by_class: dict[type, dict[str, Any]] = {}
    declarations = []

    for field_name, klass in declaring_classes.items():
        if klass not in hints_by_class:
            hints_by_class[klass] = _type_hints(klass, cls)
        annotation = hints_by_class[klass][field_name]

        if get_origin(annotation) is not Annotated:
            continue
        value_type, *metadata = get_args(annotation)
        if get_origin(value_type) is ClassVar:
            continue

        marker = _find_marker(metadata)
        if marker is None:
            continue

        declarations.append(
            FieldDeclaration(
                _field_path(cls, klass, field_name), field_name, value_type, marker
            )
        )

    return declarations


def _type_hints(klass: type, pod_class: type) -> dict[str, Any]:
    try:
        return get_type_hints(klass, include_extras=True)
    except NameError as err:
        raise InvalidComponent(
            "unresolvable annotation", pod_type=type_name(pod_class), error=str(err)
        ) from err


def _find_marker(metadata: list[Any]) -> Optional[Marker]:
    """Pick the marker of a field; import wins over export, export over filter."""
    markers = []
    for item in metadata:
        if isinstance(item, type) and issubclass(item, _MARKER_TYPES):
            item = item()
        elif isinstance(item, str):
            item = parse_tag(item)
        if isinstance(item, _MARKER_TYPES):
            markers.append(item)

    for marker_type in _MARKER_TYPES:
        for marker in markers:
            if isinstance(marker, marker_type):
                return marker
    return None


def _field_path(pod_class: type, declaring_class: type, field_name: str) -> str:
    root = f"{pod_class.__module__}.{pod_class.__qualname__}"
    if declaring_class is pod_class:
        return f"{root}.{field_name}"
    return f"{root}.{declaring_class.__qualname__}.{field_name}"
