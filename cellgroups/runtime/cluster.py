"""Resolve declaration trees into nested namespaces of group modules."""

from __future__ import annotations

import logging
import sys
import types

from ..constants import DEFAULT_ROOT
from .declarations import ClusterNode, GroupNode, parse_declarations
from .expander import load_group, plan_group, render_group

logger = logging.getLogger(__name__)


def _namespace_module(qualname: str, doc: str):
    module = types.ModuleType(qualname, doc)
    module.__path__ = []
    module.__package__ = qualname
    return module


def _populate(parent, nodes, path, context, register):
    exported = []
    for node in nodes:
        qualname = f"{path}.{node.name}"
        if isinstance(node, ClusterNode):
            child = _namespace_module(qualname, f"Cell-group cluster ``{node.name}``.")
            _populate(child, node.children, qualname, context, register)
        elif isinstance(node, GroupNode):
            child = load_group(plan_group(node.group), qualname, context)
        else:
            raise TypeError(f"unexpected declaration node: {node!r}")
        setattr(parent, node.name, child)
        if node.exported:
            exported.append(node.name)
        if register:
            sys.modules[qualname] = child
    parent.__all__ = exported


def resolve(nodes, root: str = DEFAULT_ROOT, context=None, register: bool = False):
    """Turn parsed declarations into a namespace module rooted at *root*.

    ``context`` supplies the names attribute decorators refer to.  With
    ``register`` the root and every nested module are added to
    ``sys.modules`` so they can be imported by dotted name.
    """

    module = _namespace_module(root, f"Cell-group namespace ``{root}``.")
    _populate(module, nodes, root, context, register)
    if register:
        sys.modules[root] = module
    logger.info("resolved %d declarations under %s", len(nodes), root)
    return module


def expand(text: str, root: str = DEFAULT_ROOT, context=None, register: bool = False):
    """Parse *text* and resolve it in one step."""

    return resolve(parse_declarations(text), root, context, register)


def iter_groups(nodes, prefix: str = ""):
    """Yield ``(dotted_path, GroupNode)`` for every group in *nodes*."""

    for node in nodes:
        path = f"{prefix}.{node.name}" if prefix else node.name
        if isinstance(node, ClusterNode):
            yield from iter_groups(node.children, path)
        else:
            yield path, node


def iter_group_modules(module, prefix: str | None = None):
    """Yield ``(dotted_path, module)`` for every group module under *module*."""

    prefix = module.__name__ if prefix is None else prefix
    for name, value in sorted(vars(module).items()):
        if not isinstance(value, types.ModuleType) or not value.__name__.startswith(module.__name__ + "."):
            continue
        path = f"{prefix}.{name}"
        if hasattr(value, "__cell_group__"):
            yield path, value
        else:
            yield from iter_group_modules(value, path)


def _package_init(nodes, doc):
    lines = [f'"""{doc}"""']
    names = [node.name for node in nodes]
    if names:
        lines.append(f"from . import {', '.join(names)}")
    exported = [node.name for node in nodes if node.exported]
    lines += ["", f"__all__ = {exported!r}", ""]
    return "\n".join(lines)


def render_tree(nodes, root: str = DEFAULT_ROOT, preamble=()) -> dict:
    """Return ``{relative_path: source}`` for a package implementing *nodes*."""

    files = {}

    def render(level_nodes, directory, doc):
        files[f"{directory}/__init__.py" if directory else "__init__.py"] = _package_init(level_nodes, doc)
        for node in level_nodes:
            base = f"{directory}/{node.name}" if directory else node.name
            if isinstance(node, ClusterNode):
                render(node.children, base, f"Cell-group cluster ``{node.name}``.")
            else:
                files[f"{base}.py"] = render_group(plan_group(node.group), preamble)

    render(nodes, "", f"Cell-group namespace ``{root}``.")
    return files


__all__ = [
    "expand",
    "iter_group_modules",
    "iter_groups",
    "render_tree",
    "resolve",
]
