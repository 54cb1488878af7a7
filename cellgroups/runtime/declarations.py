"""Parser for cell-group and cluster declarations.

Grammar (one declaration per ``;``-terminated line)::

    line      := attribute* [visibility] ["mod"] name body ";"+
    body      := ":" category | "::" "{" entries "}"
    entries   := (attribute* [visibility] name body) ("," | ";") ...
    category  := CombinedKeyword | AccessKind "<" ImplKind ">"
    attribute := "@" decorator-expression   (rest of its own line)

Cluster attributes are inherited by every group inside the cluster.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import keyword
import re

from ..constants import (
    ACCESS_KIND_KEYWORDS,
    COMBINED_CATEGORY_KEYWORDS,
    IMPL_KIND_KEYWORDS,
)
from ..errors import DeclarationError
from .expander import Group

TOKEN_PATTERN = re.compile(
    r"""
    (?P<ATTR>@[^\n]*)
  | (?P<COMMENT>\#[^\n]*)
  | (?P<NEWLINE>\n)
  | (?P<SKIP>[ \t\r]+)
  | (?P<DCOLON>::)
  | (?P<COLON>:)
  | (?P<SEMI>;)
  | (?P<COMMA>,)
  | (?P<LBRACE>\{)
  | (?P<RBRACE>\})
  | (?P<LPAREN>\()
  | (?P<RPAREN>\))
  | (?P<LT><)
  | (?P<GT>>)
  | (?P<NAME>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<MISMATCH>.)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class Token:
    kind: str
    text: str
    line: int
    column: int


def tokenize_declarations(text: str) -> list[Token]:
    tokens = []
    line, line_start = 1, 0
    for match in TOKEN_PATTERN.finditer(text):
        kind = match.lastgroup
        column = match.start() - line_start + 1
        if kind == "NEWLINE":
            line += 1
            line_start = match.end()
            continue
        if kind in ("SKIP", "COMMENT"):
            continue
        if kind == "MISMATCH":
            raise DeclarationError(f"unexpected character {match.group()!r}", line, column)
        tokens.append(Token(kind, match.group(), line, column))
    tokens.append(Token("EOF", "", line, len(text) - line_start + 1))
    return tokens


@dataclass(frozen=True)
class GroupNode:
    """A declared cell group at some position in the namespace tree."""

    name: str
    group: Group
    visibility: str = "pub"
    attributes: tuple = ()
    line: int | None = field(default=None, compare=False)

    @property
    def exported(self) -> bool:
        return self.visibility.startswith("pub")


@dataclass(frozen=True)
class ClusterNode:
    """A named namespace nesting further groups and clusters."""

    name: str
    children: tuple
    visibility: str = "pub"
    attributes: tuple = ()
    line: int | None = field(default=None, compare=False)

    @property
    def exported(self) -> bool:
        return self.visibility.startswith("pub")


class _Parser:
    def __init__(self, text):
        self.tokens = tokenize_declarations(text)
        self.pos = 0

    def peek(self, offset=0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.peek()
        self.pos += 1
        return token

    def accept(self, kind, text=None):
        token = self.peek()
        if token.kind == kind and (text is None or token.text == text):
            self.pos += 1
            return token
        return None

    def expect(self, kind, what):
        token = self.peek()
        if token.kind != kind:
            found = token.text or "end of input"
            raise DeclarationError(f"expected {what}, found {found!r}", token.line, token.column)
        self.pos += 1
        return token

    def parse_document(self):
        nodes = []
        while self.peek().kind != "EOF":
            if self.accept("SEMI"):
                continue
            node = self.parse_declaration(top_level=True, inherited=())
            self.expect("SEMI", "';' after declaration")
            nodes.append(node)
        _check_unique(nodes, "top level")
        return nodes

    def parse_attributes(self):
        attrs = []
        while self.peek().kind == "ATTR":
            attrs.append(self.advance().text[1:].strip())
        return tuple(attrs)

    def parse_visibility(self, top_level):
        if not self.accept("NAME", "pub"):
            return "" if top_level else "pub"
        if self.accept("LPAREN"):
            scope = self.expect("NAME", "visibility scope")
            self.expect("RPAREN", "')'")
            return f"pub({scope.text})"
        return "pub"

    def parse_name(self):
        token = self.expect("NAME", "a name")
        if keyword.iskeyword(token.text):
            raise DeclarationError(
                f"{token.text!r} is a reserved word and cannot name a declaration",
                token.line,
                token.column,
            )
        return token

    def parse_declaration(self, top_level, inherited):
        attrs = self.parse_attributes()
        visibility = self.parse_visibility(top_level)
        if top_level and self.peek().text == "mod" and self.peek(1).kind == "NAME":
            self.advance()
        name_token = self.parse_name()
        name = name_token.text
        attributes = inherited + attrs

        if self.accept("DCOLON"):
            brace = self.expect("LBRACE", "'{' after '::'")
            children = self.parse_entries(attributes)
            if not children:
                raise DeclarationError(
                    f"cluster {name} needs at least one entry", brace.line, brace.column
                )
            self.expect("RBRACE", "'}' closing cluster")
            if self.peek().kind in ("COLON", "DCOLON"):
                token = self.peek()
                raise DeclarationError(
                    f"{name} declares both a cluster body and a category",
                    token.line,
                    token.column,
                )
            _check_unique(children, name)
            return ClusterNode(name, tuple(children), visibility, attrs, name_token.line)

        if self.accept("COLON"):
            kind, category = self.parse_category()
            if self.peek().kind in ("COLON", "DCOLON"):
                token = self.peek()
                raise DeclarationError(
                    f"{name} declares both a category and a cluster body",
                    token.line,
                    token.column,
                )
            group = Group(name, kind, category, attributes, visibility)
            return GroupNode(name, group, visibility, attrs, name_token.line)

        raise DeclarationError(
            f"{name} needs either ': Category' or ':: {{ ... }}'",
            name_token.line,
            name_token.column,
        )

    def parse_entries(self, inherited):
        children = []
        while self.peek().kind not in ("RBRACE", "EOF"):
            children.append(self.parse_declaration(top_level=False, inherited=inherited))
            if self.accept("COMMA") or self.accept("SEMI"):
                continue
            if self.peek().kind != "RBRACE":
                token = self.peek()
                raise DeclarationError(
                    f"expected ',' or '}}', found {token.text or 'end of input'!r}",
                    token.line,
                    token.column,
                )
        return children

    def parse_category(self):
        token = self.expect("NAME", "a category keyword")
        if token.text in COMBINED_CATEGORY_KEYWORDS:
            return COMBINED_CATEGORY_KEYWORDS[token.text]
        if token.text in ACCESS_KIND_KEYWORDS:
            self.expect("LT", "'<' after access kind")
            impl = self.expect("NAME", "an implementation kind")
            if impl.text not in IMPL_KIND_KEYWORDS:
                raise DeclarationError(
                    f"unknown implementation kind {impl.text!r}", impl.line, impl.column
                )
            self.expect("GT", "'>'")
            return IMPL_KIND_KEYWORDS[impl.text], ACCESS_KIND_KEYWORDS[token.text]
        raise DeclarationError(
            f"unknown category keyword {token.text!r}", token.line, token.column
        )


def _check_unique(nodes, where):
    seen = set()
    for node in nodes:
        if node.name in seen:
            raise DeclarationError(f"duplicate name {node.name!r} in {where}", node.line)
        seen.add(node.name)


def parse_declarations(text: str) -> list:
    """Parse declaration text into a list of GroupNode/ClusterNode trees."""

    if not isinstance(text, str):
        raise TypeError("declarations must be given as text")
    return _Parser(text).parse_document()


def node_to_dict(node) -> dict:
    if isinstance(node, ClusterNode):
        return {
            "name": node.name,
            "visibility": node.visibility,
            "attributes": list(node.attributes),
            "children": [node_to_dict(child) for child in node.children],
        }
    return {
        "name": node.name,
        "visibility": node.visibility,
        "attributes": list(node.attributes),
        "kind": node.group.kind,
        "category": node.group.category,
    }


def node_from_dict(data, inherited=()):
    """Rebuild a node tree from :func:`node_to_dict` output."""

    if not isinstance(data, dict):
        raise TypeError("declaration node must be a mapping")
    attrs = tuple(data.get("attributes") or ())
    visibility = data.get("visibility", "pub")
    name = data.get("name")
    if "children" in data:
        children = [node_from_dict(child, inherited + attrs) for child in data["children"]]
        if not children:
            raise DeclarationError(f"cluster {name} needs at least one entry")
        _check_unique(children, name)
        return ClusterNode(name, tuple(children), visibility, attrs)
    group = Group(name, data.get("kind"), data.get("category"), inherited + attrs, visibility)
    return GroupNode(name, group, visibility, attrs)


__all__ = [
    "ClusterNode",
    "GroupNode",
    "Token",
    "node_from_dict",
    "node_to_dict",
    "parse_declarations",
    "tokenize_declarations",
]
