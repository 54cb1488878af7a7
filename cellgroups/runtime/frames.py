"""Runtime support for compiled scope blocks.

Compiled blocks reach this module through the reserved ``_scope_rt`` name.
A :class:`ScopeFrame` gives a block its own bindings on top of the caller's
namespace: names bound inside are restored to their previous values (or
removed) on exit, and owners the block created are released.
"""
from __future__ import annotations

import logging
from types import UnionType
from typing import Annotated, Any, Union, get_args, get_origin

from ..errors import CapabilityMismatch, ScopeError
from .lattice import OwnerBridge, ensure_compatible, has_capabilities, validate_capabilities
from .primitives import CellOwner, OwnerRef, Ref, ValueRef

logger = logging.getLogger(__name__)

_MISSING = object()


def _reference(owner, mutable):
    method = getattr(owner, "exclusive" if mutable else "shared", None)
    if callable(method):
        return method()
    return owner


class ScopeFrame:
    def __init__(self, namespace, names):
        self.namespace = namespace
        self.saved = {name: namespace.get(name, _MISSING) for name in names}
        self.held = []

    def hold(self, owner, mutable):
        """Keep *owner* until the frame closes; return the reference to use."""
        self.held.append(owner)
        return _reference(owner, mutable)

    def close(self):
        try:
            while self.held:
                owner = self.held.pop()
                release = getattr(owner, "release", None)
                if callable(release):
                    release()
                    logger.debug("released %s at scope exit", type(owner).__name__)
        finally:
            for name, value in self.saved.items():
                if value is _MISSING:
                    self.namespace.pop(name, None)
                else:
                    self.namespace[name] = value


def explicit_owner(owner_type):
    if not callable(owner_type):
        raise CapabilityMismatch(f"{owner_type!r} is not an owner type")
    if has_capabilities(owner_type):
        tag = validate_capabilities(owner_type)
        if tag.role != "owner":
            raise CapabilityMismatch(f"{owner_type.__name__} is a {tag.role}, not an owner")
    return owner_type()


def _bridge(cell) -> OwnerBridge:
    if not isinstance(cell, OwnerBridge):
        raise CapabilityMismatch(
            f"{type(cell).__name__} does not bridge to an owner type; "
            "name the owner with 'use'"
        )
    return cell


def auto_owner(cell):
    return _bridge(cell).fresh_owner()


def self_owner(cell, context):
    return _bridge(cell).matching_owner(context)


def borrow_owner(owner, mutable):
    if isinstance(owner, (CellOwner, OwnerRef)):
        return owner.exclusive() if mutable else owner.shared()
    return owner


def check_pair(cell, owner):
    if isinstance(owner, OwnerRef):
        owner = owner.owner
    if has_capabilities(cell) and has_capabilities(owner):
        ensure_compatible(cell, owner)


def require_outer(namespace, name):
    if name not in namespace:
        raise ScopeError(f"external binding {name!r} does not name an existing variable")


def deref(ref):
    if isinstance(ref, (Ref, ValueRef)):
        return ref.value
    method = getattr(ref, "deref", None)
    if callable(method):
        return method()
    return getattr(ref, "value", ref)


def store(ref, value):
    try:
        ref.value = value
    except AttributeError:
        raise CapabilityMismatch(
            f"cannot write back through {type(ref).__name__}"
        ) from None


def coerce(value, target_type):
    return target_type(value)


def _runtime_type(target_type):
    """Reduce an annotation to something ``isinstance`` accepts."""
    if target_type is Any:
        return object
    origin = get_origin(target_type)
    if origin is Union or origin is UnionType:
        return tuple(_runtime_type(arg) for arg in get_args(target_type))
    if origin is Annotated:
        return _runtime_type(get_args(target_type)[0])
    return origin or target_type


def check_type(ref, target_type, name):
    value = deref(ref)
    if not isinstance(value, _runtime_type(target_type)):
        shown = getattr(target_type, "__name__", target_type)
        if get_origin(target_type):
            shown = repr(target_type)
        raise TypeError(f"{name} is declared as {shown} but the cell holds {type(value).__name__}")
    return ref


__all__ = [
    "ScopeFrame",
    "ValueRef",
    "auto_owner",
    "borrow_owner",
    "check_pair",
    "check_type",
    "coerce",
    "deref",
    "explicit_owner",
    "require_outer",
    "self_owner",
    "store",
]
