"""Domain models shared by pods and the pool."""

from typing import Any, Generic, Optional, Protocol, TypeVar

from podpool.context import Context

__all__ = ["Pod", "BasePod", "Ref"]

T = TypeVar("T")


class Pod(Protocol):
    """The contract every registered pod fulfils.

    Pods declare their entries as annotated fields (see
    :mod:`podpool.declarations`) and implement three hooks.
    """

    def resolve_ref_link(self, ref_link: str) -> Optional[str]:
        """Translate a reference link such as ``"@db"`` into a concrete ref id.

        Returns None if the link is unknown to this pod. Entry fields have not
        been initialised when this is called, so it must not touch them.
        """
        ...

    def set_up(self, ctx: Context) -> None:
        """Called once all import fields are populated.

        Export fields must be populated before returning. Raising aborts the
        setup of the whole pool.
        """
        ...

    def tear_down(self) -> None:
        """Called in reverse setup order while all fields are still valid.

        Fields are reset to None straight afterwards.
        """
        ...


class BasePod:
    """Default :class:`Pod` implementation with no-op hooks, meant to be subclassed.

    Example:
        >>> class Greeting(BasePod):
        ...     text: Annotated[str, Export("the_greeting")]
        ...
        ...     def set_up(self, ctx):
        ...         self.text = "Hi!"
    """

    def resolve_ref_link(self, ref_link: str) -> Optional[str]:
        return None

    def set_up(self, ctx: Context) -> None:
        pass

    def tear_down(self) -> None:
        pass


class Ref(Generic[T]):
    """Indirect handle on the field of another object.

    A filter field is declared as ``Ref[T]``. During setup it receives a
    ``Ref`` onto the export field it filters, so the filter hook can change
    the exported value in place through :attr:`value`.
    """

    __slots__ = ("_owner", "_field_name")

    def __init__(self, owner: Any, field_name: str):
        self._owner = owner
        self._field_name = field_name

    @property
    def value(self) -> T:
        return getattr(self._owner, self._field_name, None)

    @value.setter
    def value(self, value: T) -> None:
        setattr(self._owner, self._field_name, value)

    def get(self) -> T:
        return self.value

    def set(self, value: T) -> None:
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Ref):
            return NotImplemented
        return self._owner is other._owner and self._field_name == other._field_name

    def __hash__(self) -> int:
        return hash((id(self._owner), self._field_name))

    def __repr__(self) -> str:
        return f"Ref({type(self._owner).__name__}.{self._field_name}={self.value!r})"
