import pytest

from cellgroups.errors import DeclarationError
from cellgroups.runtime.declarations import (
    ClusterNode,
    GroupNode,
    node_from_dict,
    node_to_dict,
    parse_declarations,
    tokenize_declarations,
)
from cellgroups.runtime.expander import Group

SOURCE = """
# three levels deep
@tagged
pub mod outer :: {
    leaf : TCellUniGrp,
    middle :: {
        inner : AccessKind<ThreadLocalImpl>;
        deepest :: { core : TLCellPvtGrp },
    },
};
hidden : PublicKind<DirectImpl>;
pub(crate) mod crate_vis : TLCellPubGrp;
"""


def test_parse_nested_clusters():
    nodes = parse_declarations(SOURCE)
    assert [node.name for node in nodes] == ["outer", "hidden", "crate_vis"]

    outer = nodes[0]
    assert isinstance(outer, ClusterNode)
    assert outer.attributes == ("tagged",)
    assert outer.line == 4

    leaf, middle = outer.children
    assert isinstance(leaf, GroupNode)
    assert leaf.group == Group("leaf", "direct", "uniform", ("tagged",), "pub")
    assert leaf.attributes == ()

    inner, deepest = middle.children
    assert (inner.group.kind, inner.group.category) == ("thread_local", "access")
    core = deepest.children[0]
    assert core.group.category == "private"
    assert core.group.attributes == ("tagged",)


def test_visibility_forms():
    nodes = parse_declarations(SOURCE)
    hidden, crate_vis = nodes[1], nodes[2]
    assert hidden.visibility == ""
    assert not hidden.exported
    assert crate_vis.visibility == "pub(crate)"
    assert crate_vis.exported
    assert nodes[0].children[0].exported


def test_blank_and_repeated_separators_are_ignored():
    nodes = parse_declarations(";; pub a : TCellUniGrp;;\n\n pub b : TLCellAccGrp;")
    assert [node.name for node in nodes] == ["a", "b"]
    assert parse_declarations("") == []


@pytest.mark.parametrize(
    "text, message",
    [
        ("pub x : TCellUniGrp", "expected ';' after declaration"),
        ("pub x;", "needs either"),
        ("pub x :: { a : TCellUniGrp } : TCellUniGrp;", "both a cluster body and a category"),
        ("pub x : TCellUniGrp :: { a : TCellUniGrp };", "both a category and a cluster body"),
        ("pub x : Bogus;", "unknown category keyword 'Bogus'"),
        ("pub x : UniformKind<Fast>;", "unknown implementation kind 'Fast'"),
        ("pub x :: { a : TCellUniGrp, a : TCellPvtGrp };", "duplicate name 'a' in x"),
        ("a : TCellUniGrp; a : TLCellUniGrp;", "duplicate name 'a' in top level"),
        ("pub class : TCellUniGrp;", "reserved word"),
        ("pub x :: { a : TCellUniGrp ;", "closing cluster"),
        ("pub x :: { a : TCellUniGrp b : TCellUniGrp };", "expected ',' or"),
        ("pub x : TCellUniGrp $;", "unexpected character"),
        ("pub x :: {};", "cluster x needs at least one entry"),
        ("pub x :: { a : TCellUniGrp, y :: { } };", "cluster y needs at least one entry"),
    ],
)
def test_malformed_declarations(text, message):
    with pytest.raises(DeclarationError, match=message):
        parse_declarations(text)


def test_errors_carry_positions():
    with pytest.raises(DeclarationError) as excinfo:
        parse_declarations("pub x : TCellUniGrp;\npub y : Bogus;")
    assert excinfo.value.line == 2
    assert excinfo.value.column == 9
    assert "(line 2, column 9)" in str(excinfo.value)


def test_tokenizer_keeps_attributes_whole():
    tokens = tokenize_declarations("@dataclass(eq=False)\npub x : TCellUniGrp;")
    assert tokens[0].kind == "ATTR"
    assert tokens[0].text == "@dataclass(eq=False)"
    assert tokens[-1].kind == "EOF"


def test_nodes_rebuild_from_dicts():
    outer = parse_declarations(SOURCE)[0]
    data = node_to_dict(outer)
    assert data["children"][0] == {
        "name": "leaf",
        "visibility": "pub",
        "attributes": [],
        "kind": "direct",
        "category": "uniform",
    }
    assert node_from_dict(data) == outer


def test_empty_cluster_is_rejected():
    with pytest.raises(DeclarationError) as excinfo:
        parse_declarations("pub a : TCellUniGrp;\npub x :: { };")
    assert (excinfo.value.line, excinfo.value.column) == (2, 10)

    with pytest.raises(DeclarationError, match="cluster x needs at least one entry"):
        node_from_dict({"name": "x", "children": []})
