from types import SimpleNamespace
from typing import Optional

import pytest

from cellgroups.errors import BorrowError, CapabilityMismatch, ScopeError
from cellgroups.runtime.compiler import compile_scope, scope_access
from cellgroups.runtime.expander import expand_group
from cellgroups.runtime.lattice import ProvidesPrivateOwner, ProvidesPublicOwner, provides_owner
from cellgroups.runtime.primitives import Ref, ValueRef


def _counter(value=5, kind="direct"):
    grp = expand_group("counter", kind, "uniform")
    return grp, grp.new_uniform_cell(value)


def _value(grp, cell):
    with grp.GrpOwner() as owner:
        return cell.ro(owner).value


class PlainCell:
    """A cell-like object outside the capability lattice."""

    def __init__(self, value):
        self.value = value

    def ro(self, owner):
        return ValueRef(self.value)

    def rw(self, owner):
        return self


class Token:
    released = False

    def release(self):
        self.released = True


def test_mutable_deref_writes_back():
    grp, counter = _counter(5)
    ns = {"grp": grp, "counter": counter}
    scope_access("use grp.GrpOwner => counter => mut *n { n += 1 }", ns)
    assert _value(grp, counter) == 6
    assert "n" not in ns
    assert "_scope_owner" not in ns


def test_mutable_borrow_updates_through_the_reference():
    grp, counter = _counter(5)
    ns = {"counter": counter}
    scope_access("auto => counter => mut x { x.value += 1 }", ns)
    scope_access("auto => counter => &mut x { x.value *= 2 }", ns)
    assert _value(grp, counter) == 12


def test_external_bindings_outlive_the_block():
    grp, counter = _counter(5)
    ns = {"counter": counter, "result": None, "view": None}

    scope_access("auto => counter => *out result", ns)
    assert ns["result"] == 5

    scope_access("auto => counter => *out result as float", ns)
    assert ns["result"] == 5.0
    assert isinstance(ns["result"], float)

    scope_access("auto => counter => out view", ns)
    view = ns["view"]
    assert isinstance(view, Ref)
    assert not view.alive
    with pytest.raises(BorrowError, match="outlived"):
        view.value


def test_hard_borrow_through_a_borrowed_owner():
    grp, counter = _counter(5)
    owner = grp.GrpOwner()
    try:
        ns = {"owner": owner, "counter": counter, "handle": None}
        scope_access("&owner => counter => &out handle", ns)
        handle = ns["handle"]
        assert isinstance(handle, ValueRef)
        assert handle.value.value == 5
        assert not owner.released
    finally:
        owner.release()


def test_borrowed_scopes_reuse_the_same_owner():
    grp, counter = _counter(5)
    with grp.GrpOwner() as owner:
        ns = {"owner": owner, "counter": counter, "seen": []}
        for _ in range(2):
            scope_access(
                "&mut owner => counter => mut *n { n += 1; seen.append(_scope_owner.owner) }", ns
            )
        assert all(used is owner for used in ns["seen"])
        assert len(ns["seen"]) == 2
        assert counter.ro(owner).value == 7
    assert owner.released


def test_external_binding_needs_an_existing_name():
    grp, counter = _counter()
    with pytest.raises(ScopeError, match="does not name an existing variable"):
        scope_access("auto => counter => *out missing", {"counter": counter})
    grp.GrpOwner().release()


def test_repeated_external_overwrite():
    grp, counter = _counter(1)
    ns = {"counter": counter, "total": 0}
    for _ in range(3):
        scope_access("auto => counter => mut *n { n += 1 }", ns)
        scope_access("auto => counter => *out total", ns)
    assert ns["total"] == 4


def test_internal_names_shadow_and_restore():
    grp, counter = _counter(5)
    ns = {"counter": counter, "x": "outer", "seen": []}
    scope_access("auto => counter => *x { seen.append(x) }", ns)
    assert ns["seen"] == [5]
    assert ns["x"] == "outer"


def test_owner_released_when_the_block_raises():
    grp, counter = _counter()
    with pytest.raises(RuntimeError, match="boom"):
        scope_access("auto => counter => x { raise RuntimeError('boom') }", {"counter": counter})
    with grp.GrpOwner() as owner:
        assert counter.ro(owner).value == 5


def test_borrowed_owner_is_used_as_is():
    token = Token()
    cell = PlainCell(1)
    ns = {"owner": token, "cell": cell}
    scope_access("&mut owner => cell => mut *v { v = v * 10 }", ns)
    assert cell.value == 10
    assert not token.released

    scope_access("&owner => cell => *v { seen = v }", ns)
    assert ns["seen"] == 10


def test_self_lookup_dispatches_on_owner_type():
    grp = expand_group("grp", "direct", "access")
    other = expand_group("other", "direct", "public")

    class Component(ProvidesPublicOwner, ProvidesPrivateOwner):
        def __init__(self):
            self.calls = []

        @provides_owner(grp.PubOwner)
        def grp_public(self):
            self.calls.append("grp.public")
            return grp.PubOwner()

        @provides_owner(other.PubOwner)
        def other_public(self):
            self.calls.append("other.public")
            return other.PubOwner()

        @provides_owner(grp.PvtOwner)
        def grp_private(self):
            self.calls.append("grp.private")
            return grp.PvtOwner()

    component = Component()
    ns = {
        "self": component,
        "pub": grp.new_public_cell("a"),
        "pvt": grp.new_private_cell("b"),
        "foreign": other.new_public_cell("c"),
        "seen": [],
    }
    for name in ("pvt", "foreign", "pub"):
        scope_access(f"self => {name} => *v {{ seen.append(v) }}", ns)
    assert ns["seen"] == ["b", "c", "a"]
    assert component.calls == ["grp.private", "other.public", "grp.public"]


def test_self_lookup_without_a_matching_provider():
    grp = expand_group("grp", "direct", "access")
    other = expand_group("other", "direct", "public")

    class PublicOnly(ProvidesPublicOwner):
        @provides_owner(grp.PubOwner)
        def owner(self):
            return grp.PubOwner()

    ns = {"self": PublicOnly(), "pvt": grp.new_private_cell(1), "foreign": other.new_public_cell(2)}
    with pytest.raises(CapabilityMismatch, match="does not implement ProvidesPrivateOwner"):
        scope_access("self => pvt => x", ns)
    with pytest.raises(CapabilityMismatch, match="provides no public owner"):
        scope_access("self => foreign => x", ns)


def test_auto_needs_a_bridged_cell():
    with pytest.raises(CapabilityMismatch, match="does not bridge to an owner type"):
        scope_access("auto => cell => x", {"cell": PlainCell(1)})


def test_owner_of_another_kind_is_rejected():
    local = expand_group("local", "thread_local", "uniform")
    _, counter = _counter()
    with pytest.raises(CapabilityMismatch):
        scope_access("use local.GrpOwner => counter => x", {"local": local, "counter": counter})
    local.GrpOwner().release()


def test_explicit_source_must_name_an_owner():
    grp, counter = _counter()
    with pytest.raises(CapabilityMismatch, match="is a cell, not an owner"):
        scope_access("use grp.GrpCell => counter => x", {"grp": grp, "counter": counter})


def test_immutable_binding_cannot_be_written():
    _, counter = _counter()
    with pytest.raises(AttributeError):
        scope_access("auto => counter => x { x.value = 9 }", {"counter": counter})


def test_declared_binding_type_is_checked():
    _, counter = _counter(5)
    ns = {"counter": counter, "seen": []}
    scope_access("auto => counter => x: int { seen.append(x.value) }", ns)
    assert ns["seen"] == [5]
    with pytest.raises(TypeError, match="declared as str"):
        scope_access("auto => counter => x: str", ns)


def test_nested_blocks_borrow_the_outer_owner():
    grp = expand_group("grp", "direct", "uniform")
    outer, inner = grp.new_uniform_cell(1), grp.new_uniform_cell(10)
    ns = {"scope_access": scope_access, "outer": outer, "inner": inner, "seen": []}
    scope_access(
        "auto => outer => mut x {"
        " scope_access('&_scope_owner => inner => *y { seen.append(y) }', globals());"
        " x.value += 1 }",
        ns,
    )
    assert ns["seen"] == [10]
    assert _value(grp, outer) == 2
    assert "_scope_frame" not in ns


def test_nested_block_cannot_upgrade_a_shared_owner():
    grp = expand_group("grp", "direct", "uniform")
    ns = {
        "scope_access": scope_access,
        "outer": grp.new_uniform_cell(1),
        "inner": grp.new_uniform_cell(2),
    }
    with pytest.raises(BorrowError, match="shared reference"):
        scope_access(
            "auto => outer => x {"
            " scope_access('&mut _scope_owner => inner => mut y', globals()) }",
            ns,
        )
    grp.GrpOwner().release()


def test_bare_selection_only_holds_the_owner():
    grp, counter = _counter()
    ns = {"counter": counter, "seen": []}
    scope_access("auto => mut counter { seen.append(_scope_owner.mutable) }", ns)
    scope_access("auto => counter { seen.append(_scope_owner.mutable) }", ns)
    assert ns["seen"] == [True, False]
    grp.GrpOwner().release()


def test_blocks_run_against_dicts_only():
    block = compile_scope("auto => counter => x")
    with pytest.raises(TypeError, match="dict namespace"):
        block.run(SimpleNamespace())


def test_generic_binding_types_are_checked():
    grp = expand_group("grp", "direct", "uniform")
    ns = {"cell": grp.new_uniform_cell([1, 2]), "Optional": Optional, "seen": []}
    scope_access("auto => cell => x: list[int] { seen.append(len(x.value)) }", ns)
    scope_access("auto => cell => x: list | None { seen.append(x.value[0]) }", ns)
    scope_access("auto => cell => x: Optional[list] { seen.append(x.value[1]) }", ns)
    assert ns["seen"] == [2, 1, 2]
    with pytest.raises(TypeError, match=r"declared as dict\[str, int\] but the cell holds list"):
        scope_access("auto => cell => x: dict[str, int]", ns)


def test_compound_header_and_multiline_string_run():
    grp, counter = _counter(5)
    ns = {"counter": counter, "seen": []}
    scope_access(
        "auto => counter => mut x { if x.value > 0:\n        x.value -= 1\n    x.value *= 10\n}", ns
    )
    assert _value(grp, counter) == 40

    scope_access(
        'auto => counter => *x {\n    text = """a\n  b\n"""\n    seen.append((x, text))\n}', ns
    )
    assert ns["seen"] == [(40, "a\n  b\n")]


def test_runtime_name_does_not_leak():
    _, counter = _counter()
    ns = {"counter": counter}
    scope_access("auto => counter => x", ns)
    assert "_scope_rt" not in ns

    with pytest.raises(RuntimeError):
        scope_access("auto => counter => x { raise RuntimeError }", ns)
    assert "_scope_rt" not in ns

    ns["_scope_rt"] = "caller's own"
    scope_access("auto => counter => x", ns)
    assert ns["_scope_rt"] == "caller's own"
