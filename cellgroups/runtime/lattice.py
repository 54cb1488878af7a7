"""Capability lattice for generated marker, owner and cell types.

Every generated type is classified on three independent axes:

  kind:   direct | thread_local
  access: uniform | private | public
  role:   marker | owner | cell

Each axis value is a mixin exposing classmethod accessors, so the same query
works on the type itself and on any instance of it.  Composite interfaces are
intersections: ``isinstance(x, IsThreadLocalUniformOwner)`` holds iff ``x``
satisfies all three component interfaces.
"""
from __future__ import annotations

from dataclasses import dataclass

from ..constants import ACCESS_LEVELS, IMPL_KINDS, KIND_LABELS, LEVEL_LABELS, ROLES, ROLE_LABELS
from ..errors import CapabilityMismatch


class _KindAxis:
    __slots__ = ()


class _AccessAxis:
    __slots__ = ()

    @classmethod
    def is_uniform(cls) -> bool:
        return cls.access_level() == "uniform"

    @classmethod
    def is_private(cls) -> bool:
        return cls.access_level() == "private"

    @classmethod
    def is_public(cls) -> bool:
        return cls.access_level() == "public"


class _RoleAxis:
    __slots__ = ()


class IsDirectImpl(_KindAxis):
    """Backed by the process-wide owner primitive (``TCellOwner``)."""

    __slots__ = ()

    @classmethod
    def implementation_kind(cls) -> str:
        return "direct"


class IsThreadLocalImpl(_KindAxis):
    """Backed by the per-thread owner primitive (``TLCellOwner``)."""

    __slots__ = ()

    @classmethod
    def implementation_kind(cls) -> str:
        return "thread_local"


class IsUniformAccess(_AccessAxis):
    """Usable by anyone holding the owner type."""

    __slots__ = ()

    @classmethod
    def access_level(cls) -> str:
        return "uniform"


class IsPrivateAccess(_AccessAxis):
    """Intended for internal, self-only use sites."""

    __slots__ = ()

    @classmethod
    def access_level(cls) -> str:
        return "private"


class IsPublicAccess(_AccessAxis):
    """Intended for cross-component use."""

    __slots__ = ()

    @classmethod
    def access_level(cls) -> str:
        return "public"


class IsMarkerRole(_RoleAxis):
    __slots__ = ()

    @classmethod
    def role(cls) -> str:
        return "marker"


class IsOwnerRole(_RoleAxis):
    __slots__ = ()

    @classmethod
    def role(cls) -> str:
        return "owner"


class IsCellRole(_RoleAxis):
    __slots__ = ()

    @classmethod
    def role(cls) -> str:
        return "cell"


KIND_INTERFACES = {"direct": IsDirectImpl, "thread_local": IsThreadLocalImpl}
ACCESS_INTERFACES = {
    "uniform": IsUniformAccess,
    "private": IsPrivateAccess,
    "public": IsPublicAccess,
}
ROLE_INTERFACES = {"marker": IsMarkerRole, "owner": IsOwnerRole, "cell": IsCellRole}

_AXES = (
    ("implementation kind", _KindAxis, KIND_INTERFACES),
    ("access level", _AccessAxis, ACCESS_INTERFACES),
    ("role", _RoleAxis, ROLE_INTERFACES),
)


@dataclass(frozen=True)
class CapabilityTag:
    """Derived classification of a lattice type."""

    kind: str
    access: str
    role: str

    def describe(self) -> str:
        return f"{KIND_LABELS[self.kind]} {LEVEL_LABELS[self.access]} {ROLE_LABELS[self.role]}"


def _as_type(target):
    return target if isinstance(target, type) else type(target)


def has_capabilities(target) -> bool:
    """Return ``True`` if *target* participates in the lattice at all."""

    cls = _as_type(target)
    return any(issubclass(cls, base) for _, base, _ in _AXES)


def validate_capabilities(target) -> CapabilityTag:
    """Check that *target* implements exactly one interface on every axis."""

    cls = _as_type(target)
    values = []
    for axis_name, _, interfaces in _AXES:
        matches = [value for value, iface in interfaces.items() if issubclass(cls, iface)]
        if len(matches) != 1:
            found = ", ".join(matches) or "none"
            raise CapabilityMismatch(
                f"{cls.__name__} must implement exactly one {axis_name} "
                f"interface (found: {found})"
            )
        values.append(matches[0])
    return CapabilityTag(*values)


def capability_tag(target) -> CapabilityTag:
    """Return the :class:`CapabilityTag` of a type or instance."""

    return validate_capabilities(target)


def interfaces_for(kind: str, access: str, role: str) -> tuple[type, type, type]:
    """Return the three axis interfaces a type of this position implements."""

    try:
        return (KIND_INTERFACES[kind], ACCESS_INTERFACES[access], ROLE_INTERFACES[role])
    except KeyError as exc:
        raise CapabilityMismatch(f"unknown lattice position: {exc.args[0]!r}") from None


def ensure_compatible(cell, owner) -> CapabilityTag:
    """Reject an owner whose kind or access level differs from the cell's."""

    cell_tag = capability_tag(cell)
    owner_tag = capability_tag(owner)
    if cell_tag.role != "cell":
        raise CapabilityMismatch(f"{_as_type(cell).__name__} is a {cell_tag.role}, not a cell")
    if owner_tag.role != "owner":
        raise CapabilityMismatch(f"{_as_type(owner).__name__} is a {owner_tag.role}, not an owner")
    if (cell_tag.kind, cell_tag.access) != (owner_tag.kind, owner_tag.access):
        raise CapabilityMismatch(
            f"{owner_tag.describe()} cannot access a {cell_tag.describe()}"
        )
    return owner_tag


class _Intersection(type):
    """Metaclass of composite interfaces."""

    def __instancecheck__(cls, obj):
        return cls.__subclasscheck__(type(obj))

    def __subclasscheck__(cls, other):
        if cls is other:
            return True
        return all(issubclass(other, part) for part in cls.parts)

    def __repr__(cls):
        return f"<composite {cls.__name__}>"


def intersection(name, *parts):
    """Build a composite interface satisfied by types implementing all *parts*."""

    if not parts:
        raise ValueError("a composite interface needs at least one component")
    doc = " & ".join(part.__name__ for part in parts)
    return _Intersection(name, (), {"parts": tuple(parts), "__doc__": doc})


IsDirectUniformAccess = intersection("IsDirectUniformAccess", IsDirectImpl, IsUniformAccess)
IsDirectPrivateAccess = intersection("IsDirectPrivateAccess", IsDirectImpl, IsPrivateAccess)
IsDirectPublicAccess = intersection("IsDirectPublicAccess", IsDirectImpl, IsPublicAccess)
IsThreadLocalUniformAccess = intersection("IsThreadLocalUniformAccess", IsThreadLocalImpl, IsUniformAccess)
IsThreadLocalPrivateAccess = intersection("IsThreadLocalPrivateAccess", IsThreadLocalImpl, IsPrivateAccess)
IsThreadLocalPublicAccess = intersection("IsThreadLocalPublicAccess", IsThreadLocalImpl, IsPublicAccess)

IsDirectUniformMarker = intersection("IsDirectUniformMarker", IsDirectImpl, IsUniformAccess, IsMarkerRole)
IsDirectUniformOwner = intersection("IsDirectUniformOwner", IsDirectImpl, IsUniformAccess, IsOwnerRole)
IsDirectUniformCell = intersection("IsDirectUniformCell", IsDirectImpl, IsUniformAccess, IsCellRole)
IsDirectPrivateMarker = intersection("IsDirectPrivateMarker", IsDirectImpl, IsPrivateAccess, IsMarkerRole)
IsDirectPrivateOwner = intersection("IsDirectPrivateOwner", IsDirectImpl, IsPrivateAccess, IsOwnerRole)
IsDirectPrivateCell = intersection("IsDirectPrivateCell", IsDirectImpl, IsPrivateAccess, IsCellRole)
IsDirectPublicMarker = intersection("IsDirectPublicMarker", IsDirectImpl, IsPublicAccess, IsMarkerRole)
IsDirectPublicOwner = intersection("IsDirectPublicOwner", IsDirectImpl, IsPublicAccess, IsOwnerRole)
IsDirectPublicCell = intersection("IsDirectPublicCell", IsDirectImpl, IsPublicAccess, IsCellRole)
IsThreadLocalUniformMarker = intersection("IsThreadLocalUniformMarker", IsThreadLocalImpl, IsUniformAccess, IsMarkerRole)
IsThreadLocalUniformOwner = intersection("IsThreadLocalUniformOwner", IsThreadLocalImpl, IsUniformAccess, IsOwnerRole)
IsThreadLocalUniformCell = intersection("IsThreadLocalUniformCell", IsThreadLocalImpl, IsUniformAccess, IsCellRole)
IsThreadLocalPrivateMarker = intersection("IsThreadLocalPrivateMarker", IsThreadLocalImpl, IsPrivateAccess, IsMarkerRole)
IsThreadLocalPrivateOwner = intersection("IsThreadLocalPrivateOwner", IsThreadLocalImpl, IsPrivateAccess, IsOwnerRole)
IsThreadLocalPrivateCell = intersection("IsThreadLocalPrivateCell", IsThreadLocalImpl, IsPrivateAccess, IsCellRole)
IsThreadLocalPublicMarker = intersection("IsThreadLocalPublicMarker", IsThreadLocalImpl, IsPublicAccess, IsMarkerRole)
IsThreadLocalPublicOwner = intersection("IsThreadLocalPublicOwner", IsThreadLocalImpl, IsPublicAccess, IsOwnerRole)
IsThreadLocalPublicCell = intersection("IsThreadLocalPublicCell", IsThreadLocalImpl, IsPublicAccess, IsCellRole)

_COMPOSITES = {
    (kind, access, role): globals()[
        f"Is{KIND_LABELS[kind]}{LEVEL_LABELS[access]}{ROLE_LABELS[role]}"
    ]
    for kind in IMPL_KINDS
    for access in ACCESS_LEVELS
    for role in ROLES
}


def composite_for(kind: str, access: str, role: str | None = None):
    """Return the composite interface addressing one lattice position."""

    if role is None:
        name = f"Is{KIND_LABELS.get(kind, '?')}{LEVEL_LABELS.get(access, '?')}Access"
        found = globals().get(name)
        if not isinstance(found, _Intersection):
            raise CapabilityMismatch(f"unknown lattice position: ({kind!r}, {access!r})")
        return found
    try:
        return _COMPOSITES[(kind, access, role)]
    except KeyError:
        raise CapabilityMismatch(
            f"unknown lattice position: ({kind!r}, {access!r}, {role!r})"
        ) from None


def iter_composites():
    """Yield ``((kind, access, role), interface)`` for all 18 positions."""

    yield from _COMPOSITES.items()


# ---------- Owner bridges ----------


def provides_owner(owner_type):
    """Mark a method as the provider of *owner_type* for self-lookup scopes."""

    def decorate(func):
        func.__provides_owner__ = owner_type
        return func

    return decorate


def _provider_level(owner_type) -> str:
    if not isinstance(owner_type, type) or not issubclass(owner_type, _AccessAxis):
        raise TypeError(f"{owner_type!r} does not carry an access level")
    return owner_type.access_level()


class OwnerProvider:
    """Base for context objects that hand out owners on request."""

    __slots__ = ()
    _owner_providers: dict = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        inherited: dict = {}
        for base in reversed(cls.__mro__[1:]):
            inherited.update(getattr(base, "_owner_providers", {}))

        declared: dict = {}
        for attr, value in vars(cls).items():
            owner_type = getattr(value, "__provides_owner__", None)
            if owner_type is None:
                continue
            level = _provider_level(owner_type)
            consumer = CONSUMERS[level]
            if not issubclass(cls, consumer):
                raise TypeError(
                    f"{cls.__name__}.{attr} provides a {level} owner but "
                    f"{cls.__name__} does not implement {consumer.__name__}"
                )
            key = (level, owner_type)
            if key in declared:
                raise TypeError(
                    f"{cls.__name__} declares two providers for "
                    f"{owner_type.__name__}: {declared[key]} and {attr}"
                )
            declared[key] = attr

        inherited.update(declared)
        cls._owner_providers = inherited

    def _provide(self, level, owner_type):
        attr = type(self)._owner_providers.get((level, owner_type))
        if attr is None:
            raise CapabilityMismatch(
                f"{type(self).__name__} provides no {level} owner of type "
                f"{getattr(owner_type, '__name__', owner_type)}"
            )
        owner = getattr(self, attr)()
        if not isinstance(owner, owner_type):
            raise CapabilityMismatch(
                f"{type(self).__name__}.{attr} returned {type(owner).__name__}, "
                f"expected {owner_type.__name__}"
            )
        return owner


class ProvidesUniformOwner(OwnerProvider):
    __slots__ = ()

    def uniform_owner(self, owner_type):
        return self._provide("uniform", owner_type)


class ProvidesPrivateOwner(OwnerProvider):
    __slots__ = ()

    def private_owner(self, owner_type):
        return self._provide("private", owner_type)


class ProvidesPublicOwner(OwnerProvider):
    __slots__ = ()

    def public_owner(self, owner_type):
        return self._provide("public", owner_type)


CONSUMERS = {
    "uniform": ProvidesUniformOwner,
    "private": ProvidesPrivateOwner,
    "public": ProvidesPublicOwner,
}


class OwnerBridge:
    """Lets a scope obtain an owner for a cell without naming the owner type."""

    __slots__ = ()
    owner_type = None
    consumer: type = OwnerProvider
    request = ""

    @classmethod
    def bridged_owner_type(cls):
        if cls.owner_type is None:
            raise CapabilityMismatch(f"{cls.__name__} does not name an owner type")
        return cls.owner_type

    def fresh_owner(self):
        return self.bridged_owner_type()()

    def matching_owner(self, source):
        owner_type = self.bridged_owner_type()
        consumer = type(self).consumer
        if not isinstance(source, consumer):
            raise CapabilityMismatch(
                f"{type(source).__name__} does not implement {consumer.__name__}"
            )
        return getattr(source, self.request)(owner_type)


class UniformOwnerBridge(OwnerBridge):
    __slots__ = ()
    consumer = ProvidesUniformOwner
    request = "uniform_owner"


class PrivateOwnerBridge(OwnerBridge):
    __slots__ = ()
    consumer = ProvidesPrivateOwner
    request = "private_owner"


class PublicOwnerBridge(OwnerBridge):
    __slots__ = ()
    consumer = ProvidesPublicOwner
    request = "public_owner"


BRIDGES = {
    "uniform": UniformOwnerBridge,
    "private": PrivateOwnerBridge,
    "public": PublicOwnerBridge,
}


__all__ = [
    "ACCESS_INTERFACES",
    "BRIDGES",
    "CONSUMERS",
    "CapabilityTag",
    "IsCellRole",
    "IsDirectImpl",
    "IsMarkerRole",
    "IsOwnerRole",
    "IsPrivateAccess",
    "IsPublicAccess",
    "IsThreadLocalImpl",
    "IsUniformAccess",
    "KIND_INTERFACES",
    "OwnerBridge",
    "OwnerProvider",
    "PrivateOwnerBridge",
    "ProvidesPrivateOwner",
    "ProvidesPublicOwner",
    "ProvidesUniformOwner",
    "PublicOwnerBridge",
    "ROLE_INTERFACES",
    "UniformOwnerBridge",
    "capability_tag",
    "composite_for",
    "ensure_compatible",
    "has_capabilities",
    "interfaces_for",
    "intersection",
    "iter_composites",
    "provides_owner",
    "validate_capabilities",
]
__all__ += [name for (name, value) in list(globals().items()) if isinstance(value, _Intersection)]
