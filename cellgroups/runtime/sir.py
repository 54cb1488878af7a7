"""Scope IR: the instruction form a scope-access expression compiles to.

Every compiled access is a straight-line program:

  FRAME    stash the names the block is about to bind
  REQUIRE  assert an outer name exists (external bindings only)
  CELL     evaluate the cell selector once
  ACQUIRE  obtain the owner (constructed, bridged or borrowed)
  CHECK    reject an owner whose kind or access level differs
  ACCESS   one ro/rw access through the owner
  BIND     bind the access result to the pattern's name
  RUN      the trailing statements
  STORE    write a rebound deref name back into the cell
  CLOSE    release owned owners, restore stashed names

``lower_to_python`` turns a program into the Python source that runs it.
"""
from __future__ import annotations

import io
import json
import tokenize

from ..constants import (
    SCOPE_CELL_NAME,
    SCOPE_FRAME_NAME,
    SCOPE_OWNER_NAME,
    SCOPE_REF_NAME,
    SCOPE_RUNTIME_NAME,
)

SCOPE_OPS = [
    "FRAME",
    "REQUIRE",
    "CELL",
    "ACQUIRE",
    "CHECK",
    "ACCESS",
    "BIND",
    "RUN",
    "STORE",
    "CLOSE",
]


class ScopeInstruction:
    """Single scope IR instruction."""

    def __init__(self, id, op, args=None, metadata=None):
        if op not in SCOPE_OPS:
            raise ValueError(f"unknown scope op: {op}")
        self.id = id
        self.op = op
        self.args = args or {}
        self.metadata = metadata or {}

    def to_dict(self):
        return {"id": self.id, "op": self.op, "args": dict(self.args)}

    def __repr__(self):  # pragma: no cover - representation helper
        args = " ".join(
            f"{key}={json.dumps(value) if isinstance(value, str) else value}"
            for key, value in self.args.items()
        )
        return f"{self.id} = {self.op} {args}".rstrip()


class ScopeProgram:
    """Ordered list of scope IR instructions."""

    def __init__(self):
        self.instructions: list[ScopeInstruction] = []
        self.next_id = 0

    def new_id(self):
        sid = f"s{self.next_id}"
        self.next_id += 1
        return sid

    def emit(self, op, /, metadata=None, **args):
        sid = self.new_id()
        self.instructions.append(ScopeInstruction(sid, op, args, metadata))
        return sid

    def ops(self) -> list[str]:
        return [instr.op for instr in self.instructions]

    def find(self, op):
        for instr in self.instructions:
            if instr.op == op:
                return instr
        return None

    def to_dict(self):
        return {"instructions": [instr.to_dict() for instr in self.instructions]}

    def __repr__(self):  # pragma: no cover - debugging helper
        return "\n".join(map(repr, self.instructions))


def _acquire_expr(args) -> str:
    source = args["source"]
    target = args.get("target")
    if source == "explicit":
        return f"{SCOPE_RUNTIME_NAME}.explicit_owner({target})"
    if source == "auto":
        return f"{SCOPE_RUNTIME_NAME}.auto_owner({SCOPE_CELL_NAME})"
    if source == "self":
        return f"{SCOPE_RUNTIME_NAME}.self_owner({SCOPE_CELL_NAME}, self)"
    if source == "borrowed":
        return f"{SCOPE_RUNTIME_NAME}.borrow_owner({target}, {args['mutable']!r})"
    raise ValueError(f"unknown owner source: {source}")


def _bind_expr(args) -> str:
    kind = args["kind"]
    coerce = args.get("coerce")
    rt = SCOPE_RUNTIME_NAME
    if kind == "borrow":
        if coerce is None:
            return SCOPE_REF_NAME
        if args["locality"] == "internal":
            return f"{rt}.check_type({SCOPE_REF_NAME}, {coerce}, {args['name']!r})"
        return f"{rt}.coerce({SCOPE_REF_NAME}, {coerce})"
    if kind == "deref":
        value = f"{rt}.deref({SCOPE_REF_NAME})"
        return value if coerce is None else f"{rt}.coerce({value}, {coerce})"
    if kind == "hard_borrow":
        target = SCOPE_REF_NAME if coerce is None else f"{rt}.coerce({SCOPE_REF_NAME}, {coerce})"
        return f"{rt}.ValueRef({target})"
    raise ValueError(f"unknown binding kind: {kind}")


def string_continuation_lines(text: str) -> set[int]:
    """Return the 0-based indices of lines that continue a multi-line token.

    Such lines belong to a string literal and must be neither dedented nor
    re-indented.
    """

    inside = set()
    for tok in tokenize.generate_tokens(io.StringIO(text).readline):
        if tok.end[0] > tok.start[0] and tok.type not in (tokenize.NL, tokenize.NEWLINE):
            inside.update(range(tok.start[0], tok.end[0]))
    return inside


def _indent(text: str, prefix: str = "    ") -> list[str]:
    verbatim = string_continuation_lines(text)
    return [
        line if i in verbatim or not line.strip() else prefix + line
        for i, line in enumerate(text.splitlines())
    ]


def lower_to_python(program: ScopeProgram) -> str:
    """Render *program* as Python source for ``exec`` in a namespace dict."""

    rt = SCOPE_RUNTIME_NAME
    head: list[str] = []
    body: list[str] = []
    for instr in program.instructions:
        args = instr.args
        if instr.op == "FRAME":
            head.append(f"{SCOPE_FRAME_NAME} = {rt}.ScopeFrame(locals(), {tuple(args['names'])!r})")
        elif instr.op == "REQUIRE":
            body.append(f"{rt}.require_outer(locals(), {args['name']!r})")
        elif instr.op == "CELL":
            body.append(f"{SCOPE_CELL_NAME} = ({args['expr']})")
        elif instr.op == "ACQUIRE":
            expr = _acquire_expr(args)
            if args["owned"]:
                expr = f"{SCOPE_FRAME_NAME}.hold({expr}, {args['mutable']!r})"
            body.append(f"{SCOPE_OWNER_NAME} = {expr}")
        elif instr.op == "CHECK":
            body.append(f"{rt}.check_pair({SCOPE_CELL_NAME}, {SCOPE_OWNER_NAME})")
        elif instr.op == "ACCESS":
            body.append(f"{SCOPE_REF_NAME} = {SCOPE_CELL_NAME}.{args['method']}({SCOPE_OWNER_NAME})")
        elif instr.op == "BIND":
            body.append(f"{args['name']} = {_bind_expr(args)}")
        elif instr.op == "RUN":
            body.extend(args["statements"].splitlines())
        elif instr.op == "STORE":
            body.append(f"{rt}.store({SCOPE_REF_NAME}, {args['name']})")
        elif instr.op == "CLOSE":
            pass
        else:  # pragma: no cover - guarded by ScopeInstruction
            raise ValueError(f"cannot lower op {instr.op}")

    if not head:
        raise ValueError("scope program has no FRAME instruction")
    if program.ops()[-1] != "CLOSE":
        raise ValueError("scope program must end with CLOSE")
    lines = head + ["try:"]
    lines += _indent("\n".join(body)) or ["    pass"]
    lines += ["finally:", f"    {SCOPE_FRAME_NAME}.close()", ""]
    return "\n".join(lines)


__all__ = [
    "SCOPE_OPS",
    "ScopeInstruction",
    "ScopeProgram",
    "lower_to_python",
    "string_continuation_lines",
]
