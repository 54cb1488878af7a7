"""Command-line interface for cellgroups."""
from __future__ import annotations

import argparse
from pathlib import Path
import sys

from ..constants import DEFAULT_ROOT, EXAMPLE_DECLARATIONS, KIND_LABELS, LEVEL_LABELS, ROLE_LABELS
from ..errors import CellGroupError
from ..logging import setup_logging
from .analysis import capability_table, export_graphviz, print_tree, visualize_namespace
from .cluster import iter_group_modules, resolve
from .compiler import compile_scope
from .declarations import parse_declarations
from .lattice import iter_composites
from .manifest import build_manifest, diff_manifests, dump_manifest, hash_manifest_document


def _runtime_callable(name, fallback):
    runtime_mod = sys.modules.get("cellgroups.runtime")
    if runtime_mod and hasattr(runtime_mod, name):
        return getattr(runtime_mod, name)
    return fallback


def parse_args(args):
    argp = argparse.ArgumentParser(description="Cell-group code generator and scope compiler")

    argp.add_argument("--src", help="Inline declarations", default=EXAMPLE_DECLARATIONS)
    argp.add_argument("--decl", metavar="FILE", help="Read declarations from a file")
    argp.add_argument("--root", default=DEFAULT_ROOT, help="Name of the root namespace")
    argp.add_argument(
        "--print",
        dest="print_source",
        action="store_true",
        help="Print the generated source of every group",
    )
    argp.add_argument(
        "--manifest",
        action="store_true",
        help="Print a JSON manifest of the expansion",
    )
    argp.add_argument(
        "--hash",
        action="store_true",
        help="Print the SHA-256 digest of the expansion's manifest",
    )
    argp.add_argument(
        "--diff",
        metavar="SRC",
        help="Compare the expansion with that of other inline declarations",
    )
    argp.add_argument(
        "--lattice",
        action="store_true",
        help="List the composite capability interfaces",
    )
    argp.add_argument(
        "--scope",
        action="append",
        metavar="EXPR",
        help="Compile a scope-access expression and show its IR and Python",
    )
    argp.add_argument(
        "--viz",
        metavar="OUTPUT",
        help="Export a Graphviz namespace visualization to an SVG file",
    )
    argp.add_argument(
        "--visualize",
        nargs="?",
        const="",
        metavar="OUTPUT",
        help="Draw the namespace graph; optionally save it to OUTPUT",
    )
    argp.add_argument("--log-level", help="Logging level (default: $CELLGROUPS_LOG_LEVEL or WARNING)")

    return argp.parse_args(args)


def _print_lattice():
    print("Capability lattice:")
    for (kind, access, role), composite in iter_composites():
        print(f"  {composite.__name__:<30} {KIND_LABELS[kind]} / {LEVEL_LABELS[access]} / {ROLE_LABELS[role]}")


def _print_scopes(expressions):
    status = 0
    for expr in expressions:
        print(f"Scope: {expr}")
        try:
            block = compile_scope(expr)
        except CellGroupError as exc:
            print(f"  ✗ {exc}")
            status = 1
            continue
        owner, locality, mutability, cell = block.access.canonical
        print(f"  ✓ owner={owner} locality={locality} mutability={mutability} cell={cell}")
        print("\nScope IR:")
        print(block.program)
        print("\nPython:")
        print(block.python)
    return status


def main(args):
    params = parse_args(args)
    setup_logging(params.log_level)

    if params.lattice:
        _print_lattice()
        return 0
    if params.scope:
        return _print_scopes(params.scope)

    root = params.root
    try:
        source = Path(params.decl).read_text(encoding="utf-8") if params.decl else params.src
        nodes = parse_declarations(source)
        namespace = resolve(nodes, root)
        other = parse_declarations(params.diff) if params.diff is not None else None
    except (CellGroupError, ValueError, OSError) as exc:
        print(f"  ✗ {exc}")
        return 1

    print("Declarations:")
    print_tree(nodes, 1)

    print("\nGenerated types:")
    for path, kind, access, role in capability_table(namespace):
        print(f"  ✓ {path}: {KIND_LABELS[kind]} {LEVEL_LABELS[access]} {ROLE_LABELS[role]}")

    if params.print_source:
        for path, module in iter_group_modules(namespace):
            print(f"\n# --- {path} ---")
            print(module.__cellgroups_source__)

    doc = build_manifest(nodes, root, source)
    if params.manifest:
        print("\nManifest:")
        print(dump_manifest(doc))
    if params.hash:
        print(f"SHA256({root}) = {hash_manifest_document(doc)}")
    if params.viz:
        _runtime_callable("export_graphviz", export_graphviz)(nodes, params.viz, root)
    if params.visualize is not None:
        _runtime_callable("visualize_namespace", visualize_namespace)(nodes, params.visualize or None, root)
    if other is not None:
        same = diff_manifests(
            build_manifest(nodes, root), build_manifest(other, root), labels=("declarations", "--diff")
        )
        return 0 if same else 1
    return 0


def run():  # pragma: no cover
    sys.exit(main(sys.argv[1:]))


__all__ = [
    "main",
    "parse_args",
]


if __name__ == "__main__":  # pragma: no cover
    run()
