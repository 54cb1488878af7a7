"""Single-owner token primitives backing generated cell groups.

A cell's value may only be read or written by presenting the live owner of
the cell's marker.  ``TCellOwner`` allows one live owner per marker in the
whole process; ``TLCellOwner`` allows one per marker per thread and may only
be used from the thread that created it.
"""
from __future__ import annotations

import threading
import weakref
from typing import Generic, TypeVar

from ..errors import BorrowError, CapabilityMismatch, OwnerExistsError, OwnerReleasedError

T = TypeVar("T")


class OwnerRegistry:
    """Tracks the live owner of each marker.

    Owners are held weakly: an owner dropped without ``release`` frees its
    marker once it is collected.
    """

    def __init__(self, per_thread: bool = False):
        self.per_thread = per_thread
        self._lock = threading.Lock()
        self._shared = weakref.WeakValueDictionary()
        self._local = threading.local()

    def _table(self) -> weakref.WeakValueDictionary:
        if not self.per_thread:
            return self._shared
        table = getattr(self._local, "live", None)
        if table is None:
            table = self._local.live = weakref.WeakValueDictionary()
        return table

    def claim(self, marker, owner) -> None:
        with self._lock:
            table = self._table()
            if marker in table:
                where = " in this thread" if self.per_thread else ""
                raise OwnerExistsError(
                    f"an owner for {marker.__name__} is already live{where}"
                )
            table[marker] = owner

    def release(self, marker, owner) -> None:
        with self._lock:
            table = self._table()
            if table.get(marker) is owner:
                del table[marker]

    def live_owner(self, marker):
        with self._lock:
            return self._table().get(marker)


class CellOwner:
    """Exclusive-access token for every cell sharing its marker."""

    marker = None
    registry = OwnerRegistry()

    def __init__(self):
        marker = type(self).marker
        if marker is None:
            raise TypeError(f"{type(self).__name__} does not name a marker")
        self._released = False
        self._thread = threading.get_ident()
        type(self).registry.claim(marker, self)

    @classmethod
    def try_new(cls):
        """Return a new owner, or ``None`` if one is already live."""
        try:
            return cls()
        except OwnerExistsError:
            return None

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._check_thread()
        self._released = True
        type(self).registry.release(type(self).marker, self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()

    def shared(self) -> "OwnerRef":
        self._ensure_live()
        return OwnerRef(self, mutable=False)

    def exclusive(self) -> "OwnerRef":
        self._ensure_live()
        return OwnerRef(self, mutable=True)

    def ro(self, cell):
        return cell.ro(self)

    def rw(self, cell):
        return cell.rw(self)

    def rw2(self, first, second):
        """Borrow two distinct cells mutably at once."""
        if first is second:
            raise BorrowError("rw2 requires two distinct cells")
        return first.rw(self), second.rw(self)

    def _ensure_live(self) -> None:
        if self._released:
            raise OwnerReleasedError(f"{type(self).__name__} has been released")

    def _check_thread(self) -> None:
        pass

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        state = "released" if self._released else "live"
        return f"<{type(self).__name__} {state}>"


class TCellOwner(CellOwner):
    """Owner unique per marker across the whole process."""

    registry = OwnerRegistry()


class TLCellOwner(CellOwner):
    """Owner unique per marker within one thread."""

    registry = OwnerRegistry(per_thread=True)

    def _check_thread(self) -> None:
        if threading.get_ident() != self._thread:
            raise BorrowError(f"{type(self).__name__} belongs to another thread")


class OwnerRef:
    """Shared or exclusive reference to an owner."""

    __slots__ = ("owner", "mutable")

    def __init__(self, owner: CellOwner, mutable: bool):
        self.owner = owner
        self.mutable = mutable

    def shared(self) -> "OwnerRef":
        return OwnerRef(self.owner, mutable=False)

    def exclusive(self) -> "OwnerRef":
        if not self.mutable:
            raise BorrowError(
                f"cannot take an exclusive reference through a shared "
                f"reference to {type(self.owner).__name__}"
            )
        return self

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        prefix = "&mut " if self.mutable else "&"
        return f"{prefix}{self.owner!r}"


def _unwrap_owner(owner):
    if isinstance(owner, OwnerRef):
        return owner.owner, owner.mutable
    return owner, True


class Ref(Generic[T]):
    """Read-only view of a cell's value, valid while its owner is live."""

    __slots__ = ("_cell", "_owner")

    def __init__(self, cell: "Cell[T]", owner: CellOwner):
        self._cell = cell
        self._owner = owner

    @property
    def alive(self) -> bool:
        return not self._owner.released

    def _check(self) -> None:
        if self._owner.released:
            raise BorrowError("reference outlived the owner that granted it")

    def _get(self) -> T:
        self._check()
        return self._cell._value

    value = property(_get)

    def deref(self) -> T:
        return self.value

    @property
    def cell(self) -> "Cell[T]":
        return self._cell

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<{type(self).__name__} of {type(self._cell).__name__}>"


class RefMut(Ref[T]):
    """Read-write view of a cell's value, valid while its owner is live."""

    __slots__ = ()

    def _set(self, value: T) -> None:
        self._check()
        self._cell._value = value

    value = property(Ref._get, _set)


class ValueRef(Generic[T]):
    """Reference to a fixed value; used for double indirection."""

    __slots__ = ("_target",)

    def __init__(self, target: T):
        self._target = target

    @property
    def value(self) -> T:
        return self._target

    def deref(self) -> T:
        return self._target

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<ValueRef {self._target!r}>"


class Cell(Generic[T]):
    """Container whose value is gated on presenting the matching owner."""

    marker = None
    owner_family: type = CellOwner

    def __init__(self, value: T):
        if type(self).marker is None:
            raise TypeError(f"{type(self).__name__} does not name a marker")
        self._value = value

    def ro(self, owner) -> Ref[T]:
        return Ref(self, self._authorize(owner, mutable=False))

    def rw(self, owner) -> RefMut[T]:
        return RefMut(self, self._authorize(owner, mutable=True))

    def into_inner(self) -> T:
        return self._value

    def _authorize(self, owner, mutable: bool) -> CellOwner:
        owner, ref_mutable = _unwrap_owner(owner)
        family = type(self).owner_family
        if not isinstance(owner, CellOwner):
            raise CapabilityMismatch(f"{type(owner).__name__} is not a cell owner")
        if not isinstance(owner, family):
            raise CapabilityMismatch(
                f"{type(self).__name__} requires a {family.__name__}, "
                f"got {type(owner).__name__}"
            )
        if type(owner).marker is not type(self).marker:
            raise CapabilityMismatch(
                f"owner of {type(owner).marker.__name__} cannot access a cell "
                f"of {type(self).marker.__name__}"
            )
        owner._ensure_live()
        owner._check_thread()
        if mutable and not ref_mutable:
            raise BorrowError("read-write access requires an exclusive owner reference")
        return owner

    def __repr__(self) -> str:  # pragma: no cover - representation helper
        return f"<{type(self).__name__}>"


class TCell(Cell[T]):
    owner_family = TCellOwner


class TLCell(Cell[T]):
    owner_family = TLCellOwner


__all__ = [
    "Cell",
    "CellOwner",
    "OwnerRef",
    "OwnerRegistry",
    "Ref",
    "RefMut",
    "TCell",
    "TCellOwner",
    "TLCell",
    "TLCellOwner",
    "ValueRef",
]
