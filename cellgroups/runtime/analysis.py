"""Inspection and visualization of the lattice and of expanded namespaces."""
from __future__ import annotations

from pathlib import Path

try:
    import networkx as nx
except ModuleNotFoundError:  # pragma: no cover
    nx = None

try:
    import matplotlib.pyplot as plt
except ModuleNotFoundError:  # pragma: no cover
    plt = None

try:
    import pydot
except ModuleNotFoundError:  # pragma: no cover
    pydot = None

from ..constants import CATEGORY_COLORS, DEFAULT_ROOT, KIND_LABELS, LEVEL_PREFIXES, ROLE_LABELS
from .cluster import iter_group_modules
from .declarations import ClusterNode
from .expander import plan_group
from .lattice import (
    ACCESS_INTERFACES,
    KIND_INTERFACES,
    ROLE_INTERFACES,
    capability_tag,
    iter_composites,
)


def _require_networkx():
    if nx is None:
        raise RuntimeError("Graph analysis requires networkx to be installed")


def lattice_graph():
    """Return a DiGraph linking every composite interface to its components."""

    _require_networkx()
    graph = nx.DiGraph()
    for axis, table in (
        ("kind", KIND_INTERFACES),
        ("access", ACCESS_INTERFACES),
        ("role", ROLE_INTERFACES),
    ):
        for value, iface in table.items():
            graph.add_node(iface.__name__, kind="interface", axis=axis, value=value)
    for (kind, access, role), composite in iter_composites():
        graph.add_node(
            composite.__name__,
            kind="composite",
            position=(kind, access, role),
        )
        for part in composite.parts:
            graph.add_edge(composite.__name__, part.__name__)
    return graph


def namespace_graph(nodes, root: str = DEFAULT_ROOT):
    """Return a DiGraph of clusters, groups and the types each group defines."""

    _require_networkx()
    graph = nx.DiGraph()
    graph.add_node(root, kind="cluster", label=root)

    def walk(level_nodes, parent):
        for node in level_nodes:
            path = f"{parent}.{node.name}"
            if isinstance(node, ClusterNode):
                graph.add_node(path, kind="cluster", label=node.name)
                graph.add_edge(parent, path)
                walk(node.children, path)
                continue
            group = node.group
            graph.add_node(
                path,
                kind="group",
                label=node.name,
                category=group.category,
                impl=group.kind,
                exported=node.exported,
            )
            graph.add_edge(parent, path)
            for triple in plan_group(group).triples:
                for role, type_name in triple.names().items():
                    type_path = f"{path}.{type_name}"
                    graph.add_node(
                        type_path,
                        kind="type",
                        label=type_name,
                        role=role,
                        access=triple.access,
                        impl=group.kind,
                    )
                    graph.add_edge(path, type_path)

    walk(nodes, root)
    return graph


def capability_table(module) -> list[tuple[str, str, str, str]]:
    """Return ``(path, kind, access, role)`` for every generated type.

    *module* may be a single group module or a resolved namespace.
    """

    if hasattr(module, "__cell_group__"):
        groups = [(module.__name__, module)]
    else:
        groups = list(iter_group_modules(module))
    rows = []
    for path, group_module in groups:
        for cls in group_module.__cell_types__:
            tag = capability_tag(cls)
            rows.append((f"{path}.{cls.__name__}", tag.kind, tag.access, tag.role))
    return rows


def print_tree(nodes, indent: int = 0) -> None:
    pad = "  " * indent
    for node in nodes:
        vis = node.visibility or "private"
        if isinstance(node, ClusterNode):
            print(f"{pad}{node.name} :: {{}}  [{vis}]")
            print_tree(node.children, indent + 1)
            continue
        group = node.group
        prefixes = ", ".join(LEVEL_PREFIXES[level] for level in group.levels)
        print(
            f"{pad}{node.name} : {KIND_LABELS[group.kind]} {group.category}  "
            f"[{vis}] -> {prefixes}"
        )
        for attr in group.attributes:
            print(f"{pad}  @{attr}")


def export_graphviz(nodes, output_path, root: str = DEFAULT_ROOT):  # pragma: no cover
    """Export an SVG of the namespace with one Graphviz cluster per module."""

    if pydot is None:
        raise RuntimeError("Graphviz export requires pydot to be installed")

    graph = pydot.Dot(
        "cellgroups_namespace",
        graph_type="digraph",
        rankdir="LR",
        fontname="Helvetica",
    )

    def build_cluster(level_nodes, path, label):
        cluster = pydot.Cluster(
            path.replace(".", "_"),
            label=label,
            color="#7f8c8d",
            fontname="Helvetica",
            fontsize="10",
            style="rounded",
        )
        for node in level_nodes:
            child = f"{path}.{node.name}"
            if isinstance(node, ClusterNode):
                cluster.add_subgraph(build_cluster(node.children, child, node.name))
                continue
            group_cluster = pydot.Cluster(
                child.replace(".", "_"),
                label=f"{node.name}\\n[{node.group.category}]",
                style="filled",
                fillcolor=CATEGORY_COLORS.get(node.group.category, "#ECEFF1"),
                fontname="Helvetica",
            )
            for triple in plan_group(node.group).triples:
                names = triple.names()
                for role, type_name in names.items():
                    group_cluster.add_node(
                        pydot.Node(
                            f"{child}.{type_name}".replace(".", "_"),
                            label=type_name,
                            shape="box" if role == "cell" else "ellipse",
                            fontname="Helvetica",
                        )
                    )
                owner = f"{child}.{names['owner']}".replace(".", "_")
                cell = f"{child}.{names['cell']}".replace(".", "_")
                graph.add_edge(pydot.Edge(owner, cell, style="dashed", color="#34495e"))
            cluster.add_subgraph(group_cluster)
        return cluster

    graph.add_subgraph(build_cluster(nodes, root, root))

    output_path = Path(output_path)
    if output_path.parent and not output_path.parent.exists():
        output_path.parent.mkdir(parents=True, exist_ok=True)

    graph.write_svg(str(output_path))
    print(f"  ✓ Graphviz namespace exported → {output_path}")


def visualize_namespace(nodes, output=None, root: str = DEFAULT_ROOT):  # pragma: no cover
    """Draw :func:`namespace_graph` with matplotlib; save to *output* if given."""

    if nx is None or plt is None:
        raise RuntimeError("Visualization requires networkx and matplotlib to be installed")

    graph = namespace_graph(nodes, root)
    labels = {n: graph.nodes[n].get("label", n) for n in graph.nodes}

    def color(node):
        data = graph.nodes[node]
        if data["kind"] == "group":
            return CATEGORY_COLORS.get(data["category"], "#B0BEC5")
        if data["kind"] == "type":
            return CATEGORY_COLORS.get(data["access"], "#B0BEC5")
        return CATEGORY_COLORS["cluster"]

    plt.figure()
    nx.draw(
        graph,
        nx.spring_layout(graph, seed=42),
        with_labels=True,
        labels=labels,
        node_color=[color(n) for n in graph.nodes],
        edgecolors="black",
        font_size=8,
    )
    plt.title(f"Cell groups under {root}")
    plt.tight_layout()
    if output:
        plt.savefig(output)
        print(f"  ✓ Namespace graph saved → {output}")
    else:
        plt.show()


def role_summary(module) -> dict[str, int]:
    """Count generated types per role across *module*."""

    counts = {label: 0 for label in ROLE_LABELS.values()}
    for _, _, _, role in capability_table(module):
        counts[ROLE_LABELS[role]] += 1
    return counts


__all__ = [
    "capability_table",
    "export_graphviz",
    "lattice_graph",
    "namespace_graph",
    "print_tree",
    "role_summary",
    "visualize_namespace",
]
