import pytest

from cellgroups.errors import CapabilityMismatch
from cellgroups.runtime import lattice
from cellgroups.runtime.lattice import (
    IsCellRole,
    IsDirectImpl,
    IsMarkerRole,
    IsOwnerRole,
    IsPrivateAccess,
    IsPublicAccess,
    IsThreadLocalImpl,
    IsUniformAccess,
    ProvidesPrivateOwner,
    ProvidesPublicOwner,
    PublicOwnerBridge,
    OwnerProvider,
    capability_tag,
    composite_for,
    ensure_compatible,
    has_capabilities,
    iter_composites,
    provides_owner,
    validate_capabilities,
)


class PubOwner(IsDirectImpl, IsPublicAccess, IsOwnerRole):
    pass


class OtherPubOwner(IsDirectImpl, IsPublicAccess, IsOwnerRole):
    pass


class PvtOwner(IsDirectImpl, IsPrivateAccess, IsOwnerRole):
    pass


class PubCell(IsDirectImpl, IsPublicAccess, IsCellRole, PublicOwnerBridge):
    owner_type = PubOwner


def test_axis_accessors_work_on_types_and_instances():
    class Marker(IsThreadLocalImpl, IsUniformAccess, IsMarkerRole):
        __slots__ = ()

    assert Marker.implementation_kind() == "thread_local"
    assert Marker().access_level() == "uniform"
    assert Marker.is_uniform()
    assert not Marker.is_private()
    assert not Marker().is_public()
    assert Marker.role() == "marker"


def test_composite_interfaces_are_intersections():
    class Owner(IsThreadLocalImpl, IsUniformAccess, IsOwnerRole):
        pass

    owner = Owner()
    assert isinstance(owner, lattice.IsThreadLocalUniformOwner)
    assert issubclass(Owner, lattice.IsThreadLocalUniformAccess)
    assert not isinstance(owner, lattice.IsDirectUniformOwner)
    assert not isinstance(owner, lattice.IsThreadLocalUniformCell)
    assert not isinstance(object(), lattice.IsThreadLocalUniformOwner)


def test_every_lattice_position_has_a_composite():
    positions = dict(iter_composites())
    assert len(positions) == 18
    assert positions[("direct", "private", "cell")] is lattice.IsDirectPrivateCell
    assert composite_for("thread_local", "public", "marker") is lattice.IsThreadLocalPublicMarker
    assert composite_for("direct", "public") is lattice.IsDirectPublicAccess


def test_composite_for_rejects_unknown_positions():
    with pytest.raises(CapabilityMismatch, match="unknown lattice position"):
        composite_for("direct", "secret", "cell")
    with pytest.raises(CapabilityMismatch, match="unknown lattice position"):
        composite_for("remote", "public")


def test_capability_tag_derives_position():
    tag = capability_tag(PubCell())
    assert (tag.kind, tag.access, tag.role) == ("direct", "public", "cell")
    assert tag.describe() == "Direct Public Cell"
    assert has_capabilities(PubCell)
    assert not has_capabilities(object)


def test_validate_capabilities_requires_one_interface_per_axis():
    class MissingAccess(IsDirectImpl, IsCellRole):
        pass

    class TwoKinds(IsDirectImpl, IsThreadLocalImpl, IsUniformAccess, IsCellRole):
        pass

    with pytest.raises(CapabilityMismatch, match="exactly one access level"):
        validate_capabilities(MissingAccess)
    with pytest.raises(CapabilityMismatch, match="found: direct, thread_local"):
        validate_capabilities(TwoKinds)


def test_ensure_compatible_checks_kind_access_and_roles():
    assert ensure_compatible(PubCell(), PubOwner()).role == "owner"
    with pytest.raises(CapabilityMismatch, match="cannot access"):
        ensure_compatible(PubCell(), PvtOwner())
    with pytest.raises(CapabilityMismatch, match="not a cell"):
        ensure_compatible(PubOwner(), PubOwner())
    with pytest.raises(CapabilityMismatch, match="not an owner"):
        ensure_compatible(PubCell(), PubCell())


def test_providers_dispatch_on_owner_type():
    class Context(ProvidesPublicOwner, ProvidesPrivateOwner):
        @provides_owner(PubOwner)
        def make_pub(self):
            return PubOwner()

        @provides_owner(OtherPubOwner)
        def make_other(self):
            return OtherPubOwner()

        @provides_owner(PvtOwner)
        def make_pvt(self):
            return PvtOwner()

    ctx = Context()
    assert isinstance(ctx.public_owner(PubOwner), PubOwner)
    assert isinstance(ctx.public_owner(OtherPubOwner), OtherPubOwner)
    assert isinstance(ctx.private_owner(PvtOwner), PvtOwner)
    with pytest.raises(CapabilityMismatch, match="provides no private owner"):
        ctx.private_owner(PubOwner)


def test_provider_without_consumer_interface_is_rejected():
    with pytest.raises(TypeError, match="does not implement ProvidesPublicOwner"):

        class Broken(OwnerProvider):
            @provides_owner(PubOwner)
            def make(self):
                return PubOwner()


def test_duplicate_providers_are_rejected():
    with pytest.raises(TypeError, match="two providers for PubOwner"):

        class Twice(ProvidesPublicOwner):
            @provides_owner(PubOwner)
            def first(self):
                return PubOwner()

            @provides_owner(PubOwner)
            def second(self):
                return PubOwner()


def test_provider_returning_wrong_type_is_reported():
    class Liar(ProvidesPublicOwner):
        @provides_owner(PubOwner)
        def make(self):
            return OtherPubOwner()

    with pytest.raises(CapabilityMismatch, match="expected PubOwner"):
        Liar().public_owner(PubOwner)


def test_bridge_builds_and_requests_owners():
    class Context(ProvidesPublicOwner):
        @provides_owner(PubOwner)
        def make(self):
            return PubOwner()

    cell = PubCell()
    assert PubCell.bridged_owner_type() is PubOwner
    assert isinstance(cell.fresh_owner(), PubOwner)
    assert isinstance(cell.matching_owner(Context()), PubOwner)
    with pytest.raises(CapabilityMismatch, match="does not implement ProvidesPublicOwner"):
        cell.matching_owner(object())
