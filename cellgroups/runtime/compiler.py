"""Scope-access compiler.

A scope-access expression names where an owner comes from, which cell to
open with it, how to bind the result and what to run while it is open::

    use grp.GrpOwner => counter => mut *n { n += 1 }
    auto => self.cell => view { print(view.value) }
    &mut owner => (cell => out result)

Compilation is two passes.  :func:`parse_scope_access` normalizes the
text into a :class:`ScopeAccess`; :func:`build_scope_program` dispatches
on its canonical ``(owner_source, locality, mutability, cell)`` tuple to
emit a :class:`~cellgroups.runtime.sir.ScopeProgram`, which is lowered to
Python and compiled once.
"""
from __future__ import annotations

import ast
from dataclasses import dataclass, field
from functools import lru_cache
import hashlib
import io
import keyword
import linecache
import logging
import re
import tokenize

from ..constants import (
    RESERVED_SCOPE_NAMES,
    SCOPE_CACHE_SIZE,
    SCOPE_CELL_NAME,
    SCOPE_FRAME_NAME,
    SCOPE_OWNER_NAME,
    SCOPE_REF_NAME,
    SCOPE_RUNTIME_NAME,
)
from ..errors import ScopeSyntaxError
from . import frames
from .sir import ScopeProgram, lower_to_python

logger = logging.getLogger(__name__)

_UNSET = object()

OWNER_SOURCES = ["explicit", "auto", "self", "borrowed"]
LOCALITIES = ["internal", "external", "none"]
BINDING_KINDS = ["borrow", "deref", "hard_borrow"]

EXPLICIT_SOURCE = re.compile(r"^use\s+(?P<path>[A-Za-z_]\w*(?:\s*\.\s*[A-Za-z_]\w*)*)$")
BORROWED_SOURCE = re.compile(r"^&\s*(?P<mut>mut\s+)?(?P<name>[A-Za-z_]\w*)$")
MUT_PREFIX = re.compile(r"^mut\s+(?=\S)")
BINDING_PATTERN = re.compile(
    r"""
    ^(?P<mut>mut\s+)?
    (?P<marker>\*\s*out\s+|&\s*out\s+|out\s+|&\s*mut\s+|\*\s*|&\s*)?
    (?P<name>[A-Za-z_]\w*)
    \s*(?:(?P<sep>:|\bas\b)\s*(?P<type>\S.*?))?\s*$
    """,
    re.VERBOSE | re.DOTALL,
)

# marker -> (locality, binding kind, forces read-write)
PATTERN_MARKERS = {
    "": ("internal", "borrow", False),
    "&": ("internal", "borrow", False),
    "&mut": ("internal", "borrow", True),
    "*": ("internal", "deref", False),
    "out": ("external", "borrow", False),
    "*out": ("external", "deref", False),
    "&out": ("external", "hard_borrow", False),
}


@dataclass(frozen=True)
class OwnerSource:
    kind: str
    target: str | None = None
    mutable: bool = False


@dataclass(frozen=True)
class Binding:
    locality: str
    kind: str
    name: str
    coerce: str | None = None


@dataclass(frozen=True)
class ScopeAccess:
    """Normalized form of one scope-access expression."""

    owner: OwnerSource
    locality: str
    mutability: str
    cell_expr: str
    binding: Binding | None = None
    statements: str = ""
    source: str = field(default="", compare=False)

    @property
    def canonical(self) -> tuple:
        return (self.owner.kind, self.locality, self.mutability, self.cell_expr)

    @property
    def mutable(self) -> bool:
        return self.mutability == "mutable"

    def scoped_names(self) -> tuple:
        names = [SCOPE_FRAME_NAME, SCOPE_CELL_NAME, SCOPE_OWNER_NAME, SCOPE_REF_NAME]
        if self.binding is not None and self.binding.locality == "internal":
            names.append(self.binding.name)
        return tuple(names)


# ---------- Pass 1: text -> ScopeAccess ----------


@dataclass(frozen=True)
class _Tok:
    text: str
    start: int
    end: int
    depth: int


_OPENERS = {"(": ")", "[": "]", "{": "}"}
_LAYOUT = {
    tokenize.NL,
    tokenize.NEWLINE,
    tokenize.COMMENT,
    tokenize.INDENT,
    tokenize.DEDENT,
    tokenize.ENDMARKER,
}


def _scan(text: str) -> list[_Tok]:
    lines = io.StringIO(text).readlines()
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))

    tokens: list[_Tok] = []
    stack: list[str] = []
    try:
        for tok in tokenize.generate_tokens(io.StringIO(text).readline):
            if tok.type in _LAYOUT:
                continue
            start = offsets[tok.start[0] - 1] + tok.start[1]
            end = offsets[tok.end[0] - 1] + tok.end[1]
            if tok.type == tokenize.OP and tok.string in _OPENERS:
                tokens.append(_Tok(tok.string, start, end, len(stack)))
                stack.append(tok.string)
            elif tok.type == tokenize.OP and tok.string in ")]}":
                if not stack or _OPENERS[stack.pop()] != tok.string:
                    raise ScopeSyntaxError("unbalanced brackets", text)
                tokens.append(_Tok(tok.string, start, end, len(stack)))
            else:
                tokens.append(_Tok(tok.string, start, end, len(stack)))
    except (tokenize.TokenError, SyntaxError) as exc:
        raise ScopeSyntaxError(f"cannot tokenize scope expression ({exc.args[0]})", text) from None
    if stack:
        raise ScopeSyntaxError("unbalanced brackets", text)
    return tokens


def _arrows(tokens: list[_Tok], depth: int) -> list[int]:
    return [
        i
        for i in range(len(tokens) - 1)
        if tokens[i].depth == depth
        and tokens[i].text == "="
        and tokens[i + 1].text == ">"
        and tokens[i].end == tokens[i + 1].start
    ]


def _check_expression(text: str, what: str) -> str:
    try:
        ast.parse(text, mode="eval")
    except SyntaxError:
        raise ScopeSyntaxError(f"{what} is not a Python expression", text) from None
    return text


def _block_statements(block: str, start: int, tokens: list[_Tok]) -> str:
    """Dedent the code between the outer braces into a statement list.

    *tokens* are the scanned tokens of *block*, which sits at offset *start*
    of the expression. Lines inside a multi-line string are kept verbatim.
    A compound header on the brace line gets the following lines as its body.
    """

    lines = block.splitlines()
    if not lines:
        return ""

    def row(offset: int) -> int:
        return block.count("\n", 0, offset - start)

    verbatim: set[int] = set()
    for tok in tokens:
        if "\n" in tok.text:
            verbatim.update(range(row(tok.start) + 1, row(tok.end) + 1))
    code = [i for i in range(1, len(lines)) if i not in verbatim and lines[i].strip()]
    margin = min((len(lines[i]) - len(lines[i].lstrip()) for i in code), default=0)
    header = [tok for tok in tokens if row(tok.start) == 0]
    nest = (
        bool(header)
        and header[-1].text == ":"
        and header[-1].depth == 1
        and bool(code)
        and len(lines[code[0]]) - len(lines[code[0]].lstrip()) == margin
    )

    body = []
    for i, line in enumerate(lines):
        if i in verbatim:
            body.append(line)
            continue
        if i == 0:
            line = line.lstrip()
        elif line.strip():
            line = ("    " if nest else "") + line[margin:]
        if i + 1 not in verbatim:
            line = line.rstrip()
        body.append(line)
    text = "\n".join(body).strip("\n")
    try:
        ast.parse(text)
    except SyntaxError as exc:
        raise ScopeSyntaxError(f"trailing code is not valid Python ({exc.msg})", text) from None
    return text


def _parse_owner(text: str) -> OwnerSource:
    normalized = " ".join(text.split())
    if normalized == "auto":
        return OwnerSource("auto")
    if normalized == "self":
        return OwnerSource("self")
    match = EXPLICIT_SOURCE.match(normalized)
    if match:
        return OwnerSource("explicit", re.sub(r"\s+", "", match.group("path")))
    match = BORROWED_SOURCE.match(normalized)
    if match:
        return OwnerSource("borrowed", match.group("name"), bool(match.group("mut")))
    raise ScopeSyntaxError("unknown owner source", text or "<empty>")


def _parse_binding(text: str) -> tuple[Binding, bool]:
    match = BINDING_PATTERN.match(text.strip())
    if not match:
        raise ScopeSyntaxError("unrecognised binding pattern", text)
    marker = re.sub(r"\s+", "", match.group("marker") or "")
    locality, kind, marker_mut = PATTERN_MARKERS[marker]
    name = match.group("name")
    if name in RESERVED_SCOPE_NAMES or keyword.iskeyword(name):
        raise ScopeSyntaxError(f"{name!r} cannot be bound by a scope block", text)

    sep, type_text = match.group("sep"), match.group("type")
    if sep == ":" and locality == "external":
        raise ScopeSyntaxError("external bindings take 'as' coercion, not ': T'", text)
    if sep == "as" and locality == "internal":
        raise ScopeSyntaxError("internal bindings declare a type with ': T', not 'as'", text)
    coerce = _check_expression(type_text.strip(), "binding type") if type_text else None
    return Binding(locality, kind, name, coerce), bool(match.group("mut")) or marker_mut


def parse_scope_access(text: str) -> ScopeAccess:
    """Normalize a scope-access expression without running anything."""

    if not isinstance(text, str):
        raise TypeError("scope-access expressions must be text")
    source = text.strip()
    if not source:
        raise ScopeSyntaxError("empty scope expression")
    tokens = _scan(source)
    while tokens and tokens[-1].text == ";" and tokens[-1].depth == 0:
        tokens.pop()

    statements = ""
    if tokens and tokens[-1].text == "}" and tokens[-1].depth == 0:
        close = len(tokens) - 1
        opener = max(i for i in range(close) if tokens[i].depth == 0)
        start = tokens[opener].end
        statements = _block_statements(
            source[start:tokens[close].start], start, tokens[opener + 1:close]
        )
        tokens = tokens[:opener]

    arrows = _arrows(tokens, 0)
    if not arrows:
        raise ScopeSyntaxError("expected '=>' after the owner source", source)
    owner = _parse_owner(source[:tokens[arrows[0]].start])

    rest = tokens[arrows[0] + 2:]
    depth = 0
    if (
        len(rest) > 2
        and rest[0].text == "("
        and rest[-1].text == ")"
        and all(tok.depth >= 1 for tok in rest[1:-1])
        and _arrows(rest[1:-1], 1)
    ):
        rest, depth = rest[1:-1], 1
    if not rest:
        raise ScopeSyntaxError("missing cell selector", source)

    cuts = _arrows(rest, depth)
    if len(cuts) > 1:
        raise ScopeSyntaxError("too many '=>' in scope expression", source)
    pattern_text = None
    if cuts:
        cut = cuts[0]
        if cut == 0:
            raise ScopeSyntaxError("missing cell selector", source)
        if cut + 2 >= len(rest):
            raise ScopeSyntaxError("missing binding pattern after '=>'", source)
        cell_text = source[rest[0].start:rest[cut].start]
        pattern_text = source[rest[cut + 2].start:rest[-1].end]
    else:
        cell_text = source[rest[0].start:rest[-1].end]

    cell_mut = MUT_PREFIX.match(cell_text.strip())
    if cell_mut:
        if pattern_text is not None:
            raise ScopeSyntaxError(
                "'mut' before the cell is only valid without a binding pattern", source
            )
        cell_text = cell_text.strip()[cell_mut.end():]
    cell_expr = _check_expression(cell_text.strip(), "cell selector")

    if pattern_text is None:
        binding, mutable, locality = None, bool(cell_mut), "none"
    else:
        binding, mutable = _parse_binding(pattern_text)
        locality = binding.locality

    access = ScopeAccess(
        owner,
        locality,
        "mutable" if mutable else "immutable",
        cell_expr,
        binding,
        statements,
        source,
    )
    logger.debug("parsed scope access %s", access.canonical)
    return access


# ---------- Pass 2: ScopeAccess -> ScopeProgram ----------


def _acquire_owned(program, access):
    program.emit(
        "ACQUIRE",
        source=access.owner.kind,
        target=access.owner.target,
        mutable=access.mutable,
        owned=True,
    )


def _acquire_borrowed(program, access):
    program.emit(
        "ACQUIRE",
        source="borrowed",
        target=access.owner.target,
        mutable=access.mutable or access.owner.mutable,
        owned=False,
    )


ACQUIRERS = {
    "explicit": _acquire_owned,
    "auto": _acquire_owned,
    "self": _acquire_owned,
    "borrowed": _acquire_borrowed,
}

# (locality, binding kind, mutability) combinations that store back on exit.
WRITE_BACK = {("internal", "deref", "mutable")}


def build_scope_program(access: ScopeAccess) -> ScopeProgram:
    """Emit the scope IR program for *access*."""

    owner_kind, locality, mutability, cell_expr = access.canonical
    acquire = ACQUIRERS.get(owner_kind)
    if acquire is None:
        raise ScopeSyntaxError(f"unknown owner source {owner_kind!r}")
    if locality not in LOCALITIES:
        raise ScopeSyntaxError(f"unknown binding locality {locality!r}")

    binding = access.binding
    program = ScopeProgram()
    program.emit("FRAME", names=access.scoped_names())
    if locality == "external":
        program.emit("REQUIRE", name=binding.name)
    program.emit("CELL", expr=cell_expr)
    acquire(program, access)
    program.emit("CHECK")
    if binding is not None:
        program.emit("ACCESS", method="rw" if mutability == "mutable" else "ro")
        program.emit(
            "BIND",
            locality=locality,
            kind=binding.kind,
            name=binding.name,
            coerce=binding.coerce,
        )
    if access.statements:
        program.emit("RUN", statements=access.statements)
    if binding is not None and (locality, binding.kind, mutability) in WRITE_BACK:
        program.emit("STORE", name=binding.name)
    program.emit("CLOSE")
    return program


# ---------- Compilation and execution ----------


@dataclass(frozen=True)
class ScopeBlock:
    """A compiled scope-access expression, ready to run."""

    source: str
    access: ScopeAccess
    program: ScopeProgram = field(compare=False)
    python: str = field(compare=False)
    code: object = field(compare=False, repr=False)

    def run(self, namespace: dict) -> dict:
        """Execute the block with *namespace* as its surrounding scope."""
        if not isinstance(namespace, dict):
            raise TypeError("scope blocks run against a dict namespace")
        previous = namespace.get(SCOPE_RUNTIME_NAME, _UNSET)
        namespace[SCOPE_RUNTIME_NAME] = frames
        try:
            exec(self.code, namespace)
        finally:
            if previous is _UNSET:
                namespace.pop(SCOPE_RUNTIME_NAME, None)
            else:
                namespace[SCOPE_RUNTIME_NAME] = previous
        return namespace


def _stable_id(text: str) -> str:
    return hashlib.blake2s(text.encode("utf-8"), digest_size=6).hexdigest()


def compile_access(access: ScopeAccess) -> ScopeBlock:
    program = build_scope_program(access)
    python = lower_to_python(program)
    filename = f"<scope-access {_stable_id(access.source or python)}>"
    try:
        code = compile(python, filename, "exec")
    except SyntaxError as exc:
        raise ScopeSyntaxError(f"scope block does not compile ({exc.msg})", access.source) from None
    linecache.cache[filename] = (len(python), None, python.splitlines(True), filename)
    return ScopeBlock(access.source, access, program, python, code)


@lru_cache(maxsize=SCOPE_CACHE_SIZE)
def compile_scope(text: str) -> ScopeBlock:
    """Parse and compile *text*; results are cached by source text."""

    block = compile_access(parse_scope_access(text))
    logger.debug(
        "compiled scope %r into %d instructions", block.source, len(block.program.instructions)
    )
    return block


def scope_access(text: str, namespace: dict) -> dict:
    """Compile *text* and run it against *namespace*."""

    return compile_scope(text).run(namespace)


__all__ = [
    "BINDING_KINDS",
    "Binding",
    "LOCALITIES",
    "OWNER_SOURCES",
    "OwnerSource",
    "ScopeAccess",
    "ScopeBlock",
    "build_scope_program",
    "compile_access",
    "compile_scope",
    "parse_scope_access",
    "scope_access",
]
