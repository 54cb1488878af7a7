"""Group expander: declaration -> marker/owner/cell module.

Expansion runs in three steps, each usable on its own:

``plan_group``
    Dispatch on the access category to one generator per category; each
    returns a :class:`GroupBundle` naming the triples to produce.
``render_group``
    Turn a bundle into the Python source of a standalone module.
``load_group``
    Execute that source into a fresh module object and check that every
    generated type sits at the lattice position its declaration implies.
"""
from __future__ import annotations

import ast
from dataclasses import dataclass
import keyword
import linecache
import logging
import types

from ..constants import (
    ACCESS_CATEGORIES,
    CATEGORY_LEVELS,
    IMPL_KINDS,
    KIND_LABELS,
    LEVEL_LABELS,
    LEVEL_PREFIXES,
    PRIMITIVE_TYPES,
    ROLE_LABELS,
)
from ..errors import CapabilityMismatch, DeclarationError
from .lattice import BRIDGES, interfaces_for, validate_capabilities

logger = logging.getLogger(__name__)


def _check_attribute(attr: str) -> str:
    attr = (attr or "").strip()
    if attr.startswith("@"):
        attr = attr[1:].strip()
    try:
        ast.parse(f"@{attr}\nclass _Probe:\n    pass\n")
    except SyntaxError:
        raise DeclarationError(f"invalid attribute: @{attr}") from None
    return attr


@dataclass(frozen=True)
class Group:
    """One cell-group declaration."""

    name: str
    kind: str
    category: str
    attributes: tuple = ()
    visibility: str = "pub"

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.isidentifier() or keyword.iskeyword(self.name):
            raise DeclarationError(f"invalid group name: {self.name!r}")
        if self.kind not in IMPL_KINDS:
            raise DeclarationError(
                f"group {self.name} has unknown implementation kind: {self.kind!r}"
            )
        if self.category not in ACCESS_CATEGORIES:
            raise DeclarationError(
                f"group {self.name} has unknown access category: {self.category!r}"
            )
        object.__setattr__(
            self, "attributes", tuple(_check_attribute(a) for a in self.attributes)
        )

    @property
    def levels(self) -> tuple:
        return CATEGORY_LEVELS[self.category]

    def supports(self, level: str) -> bool:
        return level in self.levels

    @property
    def exported(self) -> bool:
        return self.visibility.startswith("pub")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "kind": self.kind,
            "category": self.category,
            "attributes": list(self.attributes),
            "visibility": self.visibility,
        }

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise TypeError("Group must be built from a mapping")
        return cls(
            data.get("name"),
            data.get("kind"),
            data.get("category"),
            tuple(data.get("attributes") or ()),
            data.get("visibility", "pub"),
        )


@dataclass(frozen=True)
class TripleSpec:
    """Names of one marker/owner/cell triple inside a group namespace."""

    access: str

    @property
    def prefix(self) -> str:
        return LEVEL_PREFIXES[self.access]

    @property
    def marker_name(self) -> str:
        return f"{self.prefix}Marker"

    @property
    def owner_name(self) -> str:
        return f"{self.prefix}Owner"

    @property
    def cell_name(self) -> str:
        return f"{self.prefix}Cell"

    def names(self) -> dict:
        return {"marker": self.marker_name, "owner": self.owner_name, "cell": self.cell_name}


@dataclass(frozen=True)
class GroupBundle:
    """Everything needed to emit one group module."""

    group: Group
    triples: tuple

    def triple_for(self, level: str) -> TripleSpec | None:
        for triple in self.triples:
            if triple.access == level:
                return triple
        return None

    def type_names(self) -> list[str]:
        names = []
        for triple in self.triples:
            names.extend(triple.names().values())
        return names


def _generate_uniform(group: Group) -> GroupBundle:
    return GroupBundle(group, (TripleSpec("uniform"),))


def _generate_private(group: Group) -> GroupBundle:
    return GroupBundle(group, (TripleSpec("private"),))


def _generate_public(group: Group) -> GroupBundle:
    return GroupBundle(group, (TripleSpec("public"),))


def _generate_access(group: Group) -> GroupBundle:
    return GroupBundle(group, (TripleSpec("public"), TripleSpec("private")))


GENERATORS = {
    "uniform": _generate_uniform,
    "private": _generate_private,
    "public": _generate_public,
    "access": _generate_access,
}


def plan_group(group: Group) -> GroupBundle:
    """Select the generator for *group*'s category and run it."""

    generator = GENERATORS.get(group.category)
    if generator is None:
        raise DeclarationError(f"no generator for access category {group.category!r}")
    bundle = generator(group)
    logger.debug(
        "planned group %s (%s/%s): %s",
        group.name,
        group.kind,
        group.category,
        ", ".join(bundle.type_names()),
    )
    return bundle


def _bases(kind: str, access: str, role: str) -> list[str]:
    return [f"_lattice.{iface.__name__}" for iface in interfaces_for(kind, access, role)]


def _emit_class(lines, attributes, name, bases, body):
    lines.append("")
    lines.append("")
    for attr in attributes:
        lines.append(f"@{attr}")
    lines.append(f"class {name}({', '.join(bases)}):")
    lines.extend(f"    {line}" if line else "" for line in body)


def render_group(bundle: GroupBundle, preamble=()) -> str:
    """Return the Python source of the module for *bundle*."""

    group = bundle.group
    kind_label = KIND_LABELS[group.kind]
    cell_base, owner_base = PRIMITIVE_TYPES[group.kind]
    lines = [
        f'"""Cell group ``{group.name}``: {group.category} access, '
        f'{kind_label.lower()} owners.',
        "",
        "Generated by cellgroups; do not edit.",
        '"""',
        "from cellgroups.errors import CapabilityUnavailable as _CapabilityUnavailable",
        "from cellgroups.runtime import lattice as _lattice",
        "from cellgroups.runtime import primitives as _primitives",
        "from cellgroups.runtime.expander import Group as _Group",
    ]
    lines.extend(preamble)

    for triple in bundle.triples:
        level = LEVEL_LABELS[triple.access].lower()
        _emit_class(
            lines,
            group.attributes,
            triple.marker_name,
            _bases(group.kind, triple.access, "marker"),
            [f'"""Marker keying the {level} owner and cells of ``{group.name}``."""', "", "__slots__ = ()"],
        )
        _emit_class(
            lines,
            group.attributes,
            triple.owner_name,
            [f"_primitives.{owner_base}"] + _bases(group.kind, triple.access, "owner"),
            [f"marker = {triple.marker_name}"],
        )
        _emit_class(
            lines,
            group.attributes,
            triple.cell_name,
            [f"_primitives.{cell_base}"]
            + _bases(group.kind, triple.access, "cell")
            + [f"_lattice.{BRIDGES[triple.access].__name__}"],
            [f"marker = {triple.marker_name}", f"owner_type = {triple.owner_name}"],
        )

    first = bundle.triples[0]
    lines += [
        "",
        "",
        "def implementation_kind():",
        f"    return {first.marker_name}.implementation_kind()",
    ]
    for level in ("private", "uniform", "public"):
        lines += [
            "",
            "",
            f"def supports_{level}():",
            f"    return {group.supports(level)!r}",
        ]

    for artifact in ("owner", "cell"):
        for level in ("private", "uniform", "public"):
            triple = bundle.triple_for(level)
            params = "value" if artifact == "cell" else ""
            lines += ["", "", f"def new_{level}_{artifact}({params}):"]
            if triple is None:
                lines.append(f"    raise _CapabilityUnavailable({level!r}, {artifact!r})")
            elif artifact == "owner":
                lines.append(f"    return {triple.owner_name}()")
            else:
                lines.append(f"    return {triple.cell_name}(value)")

    type_names = bundle.type_names()
    accessors = ["implementation_kind"] + [
        f"supports_{level}" for level in ("private", "uniform", "public")
    ] + [
        f"new_{level}_{artifact}"
        for artifact in ("owner", "cell")
        for level in ("private", "uniform", "public")
    ]
    lines += [
        "",
        "",
        f"__cell_group__ = _Group({group.name!r}, {group.kind!r}, {group.category!r}, "
        f"{tuple(group.attributes)!r}, {group.visibility!r})",
        f"__cell_types__ = ({', '.join(type_names)},)",
        f"__all__ = {type_names + accessors!r}",
        "",
    ]
    return "\n".join(lines)


def _check_generated(module, bundle: GroupBundle) -> None:
    kind = bundle.group.kind
    for triple in bundle.triples:
        for role, name in triple.names().items():
            cls = getattr(module, name, None)
            if not isinstance(cls, type):
                raise CapabilityMismatch(
                    f"{module.__name__}.{name} is no longer a class after decoration"
                )
            tag = validate_capabilities(cls)
            if (tag.kind, tag.access, tag.role) != (kind, triple.access, role):
                raise CapabilityMismatch(
                    f"{module.__name__}.{name} is a {tag.describe()}, expected "
                    f"{KIND_LABELS[kind]} {LEVEL_LABELS[triple.access]} {ROLE_LABELS[role]}"
                )


def load_group(bundle: GroupBundle, module_name: str | None = None, context=None, preamble=()):
    """Execute the rendered source of *bundle* into a new module."""

    module_name = module_name or bundle.group.name
    source = render_group(bundle, preamble)
    filename = f"<cellgroup {module_name}>"
    linecache.cache[filename] = (len(source), None, source.splitlines(True), filename)

    module = types.ModuleType(module_name)
    module.__file__ = filename
    if context:
        module.__dict__.update(context)
    exec(compile(source, filename, "exec"), module.__dict__)
    module.__cellgroups_source__ = source

    _check_generated(module, bundle)
    logger.debug("loaded group module %s", module_name)
    return module


def expand_group(
    name,
    kind,
    category,
    attributes=(),
    *,
    visibility="pub",
    module_name=None,
    context=None,
):
    """Plan, render and load a single group in one call."""

    group = Group(name, kind, category, tuple(attributes), visibility)
    return load_group(plan_group(group), module_name or name, context)


__all__ = [
    "GENERATORS",
    "Group",
    "GroupBundle",
    "TripleSpec",
    "expand_group",
    "load_group",
    "plan_group",
    "render_group",
]
