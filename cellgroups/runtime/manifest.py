"""Cell-group manifests: an in-memory JSON record of an expanded namespace.

Manifests are plain dicts. Callers that want to keep one serialize it with
:func:`dump_manifest` and hand the text wherever they like.
"""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import json

from ..constants import DEFAULT_ROOT, MANIFEST_VERSION
from .cluster import iter_groups
from .declarations import node_from_dict, node_to_dict
from .expander import plan_group, render_group


def _source_digest(group) -> str:
    source = render_group(plan_group(group))
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def _group_entry(path, node):
    group = node.group
    bundle = plan_group(group)
    return {
        "path": path,
        "kind": group.kind,
        "category": group.category,
        "visibility": node.visibility,
        "attributes": list(group.attributes),
        "types": bundle.type_names(),
        "supports": {level: group.supports(level) for level in ("private", "uniform", "public")},
        "source_digest": _source_digest(group),
    }


def build_manifest(nodes, root: str = DEFAULT_ROOT, source: str | None = None):
    """Create an in-memory manifest for parsed declarations."""

    doc = {
        "cellgroups_version": MANIFEST_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "root": root,
        "declarations": [node_to_dict(node) for node in nodes],
        "groups": [_group_entry(f"{root}.{path}", node) for path, node in iter_groups(nodes)],
    }
    if source is not None:
        doc["source_sha256"] = hashlib.sha256(source.encode("utf-8")).hexdigest()
    return doc


def dump_manifest(doc) -> str:
    """Serialize *doc* as indented JSON."""
    return json.dumps(doc, indent=2)


def reconstruct_nodes(doc):
    """Rebuild declaration nodes from a manifest document."""
    return [node_from_dict(entry) for entry in doc.get("declarations", [])]


def verify_manifest(doc):
    """Check the recorded groups against a fresh expansion of the declarations."""

    if doc.get("cellgroups_version") != MANIFEST_VERSION:
        raise ValueError(
            f"unsupported manifest version: {doc.get('cellgroups_version')!r}"
        )
    root = doc.get("root", DEFAULT_ROOT)
    expected = {
        f"{root}.{path}": _group_entry(f"{root}.{path}", node)
        for path, node in iter_groups(reconstruct_nodes(doc))
    }
    recorded = {entry.get("path"): entry for entry in doc.get("groups", [])}
    if set(recorded) != set(expected):
        missing = sorted(set(expected) ^ set(recorded))
        raise ValueError(f"manifest group list does not match declarations: {missing}")
    for path, entry in recorded.items():
        if entry != expected[path]:
            raise ValueError(f"manifest entry for {path} does not match its declaration")
    return True


def parse_manifest(text: str):
    """Decode and verify manifest JSON produced by :func:`dump_manifest`."""
    doc = json.loads(text)
    if not isinstance(doc, dict):
        raise ValueError("manifest JSON must be an object")
    verify_manifest(doc)
    return doc


def canonicalize_manifest(doc):
    """
    Normalize a manifest so equivalent expansions produce identical JSON
    strings regardless of when they were written or of key order.
    """

    def sort_dict(d):
        if isinstance(d, dict):
            return {k: sort_dict(v) for k, v in sorted(d.items()) if k != "timestamp"}
        elif isinstance(d, list):
            return [sort_dict(x) for x in d]
        else:
            return d

    return sort_dict(doc)


def hash_manifest_document(doc):
    """Compute SHA-256 hash of an in-memory manifest."""
    canon = canonicalize_manifest(doc)
    data = json.dumps(canon, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def diff_manifests(doc_a, doc_b, labels=("a", "b")):
    """Compare two manifests; return ``True`` when they are equivalent."""
    a = canonicalize_manifest(doc_a)
    b = canonicalize_manifest(doc_b)

    ha, hb = hash_manifest_document(a), hash_manifest_document(b)
    if ha == hb:
        print(f"✓ Manifests are identical ({ha})")
        return True

    print(f"✗ Manifests differ\n  {labels[0]}: {ha}\n  {labels[1]}: {hb}")
    groups_a = {g["path"]: g for g in a.get("groups", [])}
    groups_b = {g["path"]: g for g in b.get("groups", [])}
    for path in sorted(set(groups_a) - set(groups_b)):
        print(f"  - {path}")
    for path in sorted(set(groups_b) - set(groups_a)):
        print(f"  + {path}")
    for path in sorted(set(groups_a) & set(groups_b)):
        ga, gb = groups_a[path], groups_b[path]
        for key in ("kind", "category", "visibility", "attributes"):
            if ga.get(key) != gb.get(key):
                print(f"  • {path} {key} differs: {ga.get(key)} vs {gb.get(key)}")
    return False


__all__ = [
    "build_manifest",
    "canonicalize_manifest",
    "diff_manifests",
    "dump_manifest",
    "hash_manifest_document",
    "parse_manifest",
    "reconstruct_nodes",
    "verify_manifest",
]
