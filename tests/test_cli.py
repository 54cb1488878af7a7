import sys
from types import SimpleNamespace

import pytest

from cellgroups import runtime
from cellgroups.__main__ import _run
from cellgroups.constants import DEFAULT_ROOT, EXAMPLE_DECLARATIONS
from cellgroups.runtime import cli as runtime_cli
from cellgroups.runtime.declarations import parse_declarations
from cellgroups.runtime.manifest import hash_manifest_document, parse_manifest, reconstruct_nodes

SOURCE = "pub g : TCellUniGrp; pub mod c :: { a : TLCellAccGrp };"


def test_parse_args_defaults():
    params = runtime_cli.parse_args([])
    assert params.src == EXAMPLE_DECLARATIONS
    assert params.root == DEFAULT_ROOT
    assert not params.manifest
    assert params.diff is None
    assert params.visualize is None
    assert params.scope is None
    assert not params.print_source

    params = runtime_cli.parse_args(["--manifest", "--visualize", "--scope", "a", "--scope", "b"])
    assert params.manifest
    assert params.visualize == ""
    assert params.scope == ["a", "b"]


def test_runtime_callable_prefers_runtime_module(monkeypatch):
    monkeypatch.setitem(sys.modules, "cellgroups.runtime", SimpleNamespace(custom=lambda: "runtime"))
    assert runtime_cli._runtime_callable("custom", lambda: "fallback")() == "runtime"

    monkeypatch.setitem(sys.modules, "cellgroups.runtime", SimpleNamespace())
    fallback = lambda: "fallback"  # noqa: E731
    assert runtime_cli._runtime_callable("custom", fallback) is fallback


def test_main_expands_the_example_declarations(capsys):
    assert runtime_cli.main([]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Declarations:")
    assert "example_acc_grp : ThreadLocal access  [pub] -> Pub, Pvt" in out
    assert f"✓ {DEFAULT_ROOT}.example_uni_grp.GrpOwner: ThreadLocal Uniform Owner" in out
    assert f"✓ {DEFAULT_ROOT}.example_cluster.nested.shared.PubCell: ThreadLocal Public Cell" in out


def test_main_reports_bad_declarations(capsys):
    assert runtime_cli.main(["--src", "pub x : Bogus;"]) == 1
    assert "✗ unknown category keyword 'Bogus'" in capsys.readouterr().out


def test_main_reads_declaration_files(tmp_path, capsys):
    decl = tmp_path / "groups.cells"
    decl.write_text(SOURCE, encoding="utf-8")
    assert runtime_cli.main(["--decl", str(decl), "--root", "app", "--print"]) == 0
    out = capsys.readouterr().out
    assert "✓ app.c.a.PvtOwner: ThreadLocal Private Owner" in out
    assert "# --- app.g ---" in out
    assert "class GrpOwner(_primitives.TCellOwner" in out

    assert runtime_cli.main(["--decl", str(tmp_path / "missing.cells")]) == 1


def test_main_compiles_scope_expressions(capsys):
    status = runtime_cli.main(
        ["--scope", "auto => counter => mut *n { n += 1 }", "--scope", "auto counter"]
    )
    assert status == 1
    out = capsys.readouterr().out
    assert "✓ owner=auto locality=internal mutability=mutable cell=counter" in out
    assert "Scope IR:" in out
    assert "s0 = FRAME" in out
    assert "Python:" in out
    assert "_scope_rt.store(_scope_ref, n)" in out
    assert "✗ expected '=>' after the owner source" in out


def test_main_lists_the_lattice(capsys):
    assert runtime_cli.main(["--lattice"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Capability lattice:"
    assert len(lines) == 19


def test_main_prints_manifest_and_hash(capsys):
    assert runtime_cli.main(["--src", SOURCE, "--root", "app", "--manifest", "--hash"]) == 0
    out = capsys.readouterr().out
    text = out.split("\nManifest:\n", 1)[1].split("\nSHA256(app) = ", 1)[0]
    doc = parse_manifest(text)
    assert [group["path"] for group in doc["groups"]] == ["app.g", "app.c.a"]
    assert reconstruct_nodes(doc) == parse_declarations(SOURCE)
    digest = out.rsplit("SHA256(app) = ", 1)[1].strip()
    assert digest == hash_manifest_document(doc)


def test_main_diffs_against_other_declarations(capsys):
    assert runtime_cli.main(["--src", SOURCE, "--diff", " " + SOURCE]) == 0
    assert "✓ Manifests are identical" in capsys.readouterr().out

    changed = SOURCE.replace("g : TCellUniGrp", "g : TCellPvtGrp")
    assert runtime_cli.main(["--src", SOURCE, "--diff", changed]) == 1
    out = capsys.readouterr().out
    assert "✗ Manifests differ" in out
    assert f"  • {DEFAULT_ROOT}.g category differs: uniform vs private" in out

    assert runtime_cli.main(["--src", SOURCE, "--diff", "pub x :: {};"]) == 1
    assert "✗ cluster x needs at least one entry" in capsys.readouterr().out


def test_persistence_flags_are_gone():
    for flag in (["--load", "m.json"], ["--out", "gen"], ["--hash", "m.json"]):
        with pytest.raises(SystemExit):
            runtime_cli.parse_args(flag)


def test_main_delegates_visualization(monkeypatch):
    calls = []
    monkeypatch.setattr(
        runtime, "export_graphviz", lambda nodes, output, root: calls.append(("viz", output, root))
    )
    monkeypatch.setattr(
        runtime,
        "visualize_namespace",
        lambda nodes, output, root: calls.append(("visualize", output, root)),
    )
    assert runtime_cli.main(["--src", SOURCE, "--viz", "ns.svg", "--visualize"]) == 0
    assert calls == [("viz", "ns.svg", DEFAULT_ROOT), ("visualize", None, DEFAULT_ROOT)]

    calls.clear()
    runtime_cli.main(["--src", SOURCE, "--visualize", "graph.png"])
    assert calls == [("visualize", "graph.png", DEFAULT_ROOT)]


def test_module_entry_point_exits_with_status(monkeypatch, capsys):
    monkeypatch.setattr(sys, "argv", ["cellgroups", "--lattice"])
    with pytest.raises(SystemExit) as excinfo:
        _run()
    assert excinfo.value.code == 0
    assert "Capability lattice:" in capsys.readouterr().out
