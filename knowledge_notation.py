#!/usr/bin/env python3
"""Compiler for the knowledge notation: entity descriptions into triples.

The notation describes entities with properties (``a => b: c``), cites
properties to describe the statements they produce (``a => b: c => d: e``),
names statements (``a => b: c ! s``) and reuses fragments through variables
(``@x := b: c`` / ``a => *x``). Parsing and graph construction are
interleaved: a Pratt (top-down operator precedence) parser drives the
grammar's semantic actions, which emit triples into a ``GraphStore`` as each
expression is reduced.
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import ClassVar, NamedTuple, NoReturn

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

ANONYMOUS_MARKER = "&"
DEFAULT_MAX_DEPTH = 200


class Position(NamedTuple):
    """One-based line and column of a token in the source text."""
    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


# =============================================================================
# Errors
# =============================================================================


class NotationError(ValueError):
    """Base class for every error raised while compiling notation text."""

    def __init__(self, source: str, line: int, column: int, message: str):
        """Initialize an error with source location details."""
        super().__init__(f"{source}:{line}:{column}: {message}")
        self.source = source
        self.line = line
        self.column = column
        self.message = message

    @property
    def position(self) -> Position:
        return Position(self.line, self.column)


class LexicalError(NotationError):
    """Raised when no lexical rule matches at the current offset."""

    def __init__(self, source: str, line: int, column: int, offset: int, message: str):
        super().__init__(source, line, column, message)
        self.offset = offset


class ParseError(NotationError):
    """Raised on token-stream errors: bad advance, missing rules, nesting."""


def format_expected(kinds: Iterable[str]) -> str:
    """Join expected kinds as ``'a'``, ``'a' or 'b'`` or ``'a', 'b', or 'c'``."""
    quoted = [f"'{kind}'" for kind in kinds]
    if len(quoted) == 1:
        return quoted[0]
    if len(quoted) == 2:
        return " or ".join(quoted)
    return ", ".join(quoted[:-1]) + ", or " + quoted[-1]


class UnexpectedSymbolError(ParseError):
    """Raised when a grammar rule finds a node or token of the wrong kind."""

    def __init__(
        self,
        source: str,
        line: int,
        column: int,
        context: str,
        expected: Iterable[str],
        found: str,
    ):
        self.context = context
        self.expected = tuple(expected)
        self.found = found
        super().__init__(
            source,
            line,
            column,
            f"Invalid {context}: expected {format_expected(self.expected)}, but found {found}",
        )


class SemanticError(NotationError):
    """Raised when well-formed input violates a binding or arity rule."""


class VariableRedefinitionError(SemanticError):
    """Raised when a variable name is assigned a second time."""


class UndefinedVariableError(SemanticError):
    """Raised when a variable is referenced before it is assigned."""


class LabelArityError(SemanticError):
    """Raised when a label is not exactly one entity naming exactly one property."""


class DuplicateStatementError(SemanticError):
    """Raised when a label names a statement identifier already in the store."""


class CitationDepthError(SemanticError):
    """Raised when citations nest deeper than the configured limit."""


# =============================================================================
# Identifiers and triples
# =============================================================================


class Namespace(str, Enum):
    """Identifier namespaces; ids from different namespaces never compare equal."""

    USER = "user"
    UNIQUE = "uniq"
    AUTO_ENTITY = "auto_ent"
    AUTO_STATEMENT = "auto_expr"
    AUTO_REIFICATION = "auto_reify"
    REIFICATION = "reif"


@dataclass(frozen=True, order=True)
class EntityId:
    """Namespaced identifier for entities and statements."""
    namespace: Namespace
    value: str

    @classmethod
    def user(cls, text: str) -> EntityId:
        return cls(Namespace.USER, text)

    def __str__(self) -> str:
        if self.namespace is Namespace.REIFICATION:
            return f"reif:{self.value}"
        return f"_:{self.namespace.value}/{self.value}"


REIFY_SUBJECT = EntityId(Namespace.REIFICATION, "subject")
REIFY_PREDICATE = EntityId(Namespace.REIFICATION, "predicate")
REIFY_OBJECT = EntityId(Namespace.REIFICATION, "object")


class Triple(NamedTuple):
    """One statement; ``id`` can itself appear as the subject of other triples."""
    id: EntityId
    subject: EntityId
    predicate: EntityId
    object: EntityId


def parse_entity_id(value: str) -> EntityId:
    """Parse a rendered identifier such as ``_:user/a``; bare text is a user id."""
    raw = value.strip()
    if not raw:
        raise ValueError("entity identifier must not be empty")
    if raw.startswith("_:"):
        prefix, sep, rest = raw[2:].partition("/")
        if not sep or not rest:
            raise ValueError(f"invalid entity identifier '{value}': expected _:namespace/value")
        try:
            namespace = Namespace(prefix)
        except ValueError as exc:
            raise ValueError(f"unknown identifier namespace '{prefix}' in '{value}'") from exc
        return EntityId(namespace, rest)
    if raw.startswith("reif:"):
        return EntityId(Namespace.REIFICATION, raw[5:])
    return EntityId.user(raw)


# =============================================================================
# Graph store
# =============================================================================


def _locate(position: Position | None) -> Position:
    return position if position is not None else Position(0, 0)


class GraphStore:
    """Ordered triple list with identifier allocation and reification."""

    def __init__(self, source: str = "<string>"):
        """Initialize an empty store for one parse of ``source``."""
        self.source = source
        self._triples: list[Triple] = []
        # Keys double as the registry of statement ids in use.
        self._provenance: dict[EntityId, Position | None] = {}
        self._next_entity = 0
        self._next_statement = 0
        self._next_reification = 0

    def __len__(self) -> int:
        return len(self._triples)

    def __iter__(self) -> Iterator[Triple]:
        return iter(self._triples)

    @property
    def triples(self) -> tuple[Triple, ...]:
        """Return the triples in emission order."""
        return tuple(self._triples)

    @property
    def provenance(self) -> dict[EntityId, Position | None]:
        """Return a copy of the statement id to source position map."""
        return dict(self._provenance)

    def provenance_of(self, statement_id: EntityId) -> Position | None:
        """Return the source position recorded for a statement id."""
        return self._provenance.get(statement_id)

    def statements(self) -> list[tuple[EntityId, EntityId, EntityId]]:
        """Return ``(subject, predicate, object)`` tuples without statement ids."""
        return [(t.subject, t.predicate, t.object) for t in self._triples]

    def _next_entity_id(self) -> int:
        value = self._next_entity
        self._next_entity += 1
        return value

    def allocate_entity_id(self, text: str | None = None) -> EntityId:
        """Resolve identifier text into an entity id.

        Text carrying the anonymous marker gets each marker replaced by a fresh
        counter value, so identical text never resolves to the same id twice.
        Plain text resolves to the same user id every time.
        """
        if not text:
            return EntityId(Namespace.AUTO_ENTITY, str(self._next_entity_id()))
        if ANONYMOUS_MARKER in text:
            value = re.sub(
                re.escape(ANONYMOUS_MARKER),
                lambda _match: str(self._next_entity_id()),
                text,
            )
            return EntityId(Namespace.UNIQUE, value)
        return EntityId.user(text)

    def _add(
        self,
        statement_id: EntityId,
        subject: EntityId,
        predicate: EntityId,
        obj: EntityId,
        provenance: Position | None,
    ) -> None:
        self._triples.append(Triple(statement_id, subject, predicate, obj))
        self._provenance[statement_id] = provenance

    def add_statement(
        self,
        subject: EntityId,
        predicate: EntityId,
        obj: EntityId,
        provenance: Position | None = None,
    ) -> EntityId:
        """Append a triple under a fresh statement id and return the id."""
        statement_id = EntityId(Namespace.AUTO_STATEMENT, str(self._next_statement))
        self._next_statement += 1
        self._add(statement_id, subject, predicate, obj, provenance)
        return statement_id

    def add_reified_statement(
        self,
        subject: EntityId,
        predicate: EntityId,
        obj: EntityId,
        provenance: Position | None = None,
        statement_id: EntityId | None = None,
    ) -> EntityId:
        """Append a triple plus the three triples that make it addressable.

        The main triple is stored under ``statement_id`` when given, otherwise
        under a fresh statement id. Returns the main triple's id.
        """
        if statement_id is None:
            statement_id = self.add_statement(subject, predicate, obj, provenance)
        else:
            if statement_id in self._provenance:
                raise DuplicateStatementError(
                    self.source,
                    *_locate(provenance),
                    f"statement identifier {statement_id} is already in use",
                )
            self._add(statement_id, subject, predicate, obj, provenance)

        group = self._next_reification
        self._next_reification += 1
        for suffix, reify_predicate, value in (
            ("s", REIFY_SUBJECT, subject),
            ("p", REIFY_PREDICATE, predicate),
            ("o", REIFY_OBJECT, obj),
        ):
            reification_id = EntityId(Namespace.AUTO_REIFICATION, f"{group}.{suffix}")
            self._add(reification_id, statement_id, reify_predicate, value, provenance)
        logger.debug("reified %s as %s (group %d)", (str(subject), str(predicate), str(obj)), statement_id, group)
        return statement_id

    def for_subject(self, subject: EntityId) -> GraphStore:
        """Return a snapshot store holding only the triples about ``subject``.

        Provenance and all counters are copied, so ids minted from the
        projection never collide with ids already issued by this store.
        """
        projection = GraphStore(source=self.source)
        projection._triples = [t for t in self._triples if t.subject == subject]
        projection._provenance = dict(self._provenance)
        projection._next_entity = self._next_entity
        projection._next_statement = self._next_statement
        projection._next_reification = self._next_reification
        return projection


# =============================================================================
# Parse nodes
# =============================================================================


@dataclass(frozen=True)
class Property:
    """A predicate/object pair awaiting a subject.

    ``citations`` are attached to the statement this property produces;
    ``label`` replaces that statement's generated id.
    """
    kind: ClassVar[str] = "property"
    predicate: EntityId
    object: EntityId
    position: Position
    citations: tuple[Property, ...] = ()
    label: EntityId | None = None

    def cite(self, citations: Iterable[Property]) -> Property:
        return replace(self, citations=self.citations + tuple(citations))

    def labelled(self, label: EntityId) -> Property:
        return replace(self, label=label)


@dataclass(frozen=True)
class Entities:
    """An ordered set of entity ids (a single identifier or a list)."""
    kind: ClassVar[str] = "entities"
    ids: tuple[EntityId, ...]
    position: Position


@dataclass(frozen=True)
class Descriptor:
    """An ordered list of properties."""
    kind: ClassVar[str] = "descriptor"
    properties: tuple[Property, ...]
    position: Position

    def cite(self, citations: Iterable[Property]) -> Descriptor:
        citations = tuple(citations)
        return Descriptor(tuple(p.cite(citations) for p in self.properties), self.position)


@dataclass(frozen=True)
class Assignment:
    kind: ClassVar[str] = "assignment"
    name: str
    position: Position


@dataclass(frozen=True)
class VariableName:
    kind: ClassVar[str] = "variable"
    name: str
    position: Position


Node = Entities | Descriptor | Assignment | VariableName


def symbol_name(node: Node | Token | None) -> str:
    """Return the textual form of a node or token used in error messages."""
    if node is None:
        return "nothing"
    if isinstance(node, Token):
        return str(node)
    if isinstance(node, VariableName):
        return f"variable:{node.name}"
    return getattr(node, "kind", repr(node))


# =============================================================================
# Materialization
# =============================================================================


def attach_property(
    store: GraphStore,
    subject: EntityId,
    prop: Property,
    provenance: Position | None = None,
    *,
    depth: int = 0,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> EntityId:
    """Emit the statement ``subject prop.predicate prop.object`` into ``store``.

    A cited or labelled property is reified and each citation is attached,
    recursively, with the new statement id as its subject. Returns the id of
    the statement produced for ``prop``.
    """
    if depth > max_depth:
        raise CitationDepthError(
            store.source,
            *_locate(provenance),
            f"citations nested deeper than {max_depth} levels",
        )
    if prop.citations or prop.label is not None:
        statement_id = store.add_reified_statement(
            subject, prop.predicate, prop.object, provenance, statement_id=prop.label
        )
        for citation in prop.citations:
            attach_property(
                store,
                statement_id,
                citation,
                citation.position,
                depth=depth + 1,
                max_depth=max_depth,
            )
        return statement_id
    return store.add_statement(subject, prop.predicate, prop.object, provenance)


# =============================================================================
# Variable environment
# =============================================================================


class VariableEnvironment:
    """Write-once variable bindings for a single parse.

    Bound nodes are immutable, so every reference can share the bound object.
    """

    def __init__(self, source: str = "<string>"):
        self.source = source
        self._bindings: dict[str, Entities | Descriptor] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._bindings

    def __len__(self) -> int:
        return len(self._bindings)

    def require_unbound(self, name: str, position: Position) -> None:
        """Raise `VariableRedefinitionError` if ``name`` is already bound."""
        if name in self._bindings:
            raise VariableRedefinitionError(
                self.source, *position, f"variable '{name}' is already defined"
            )

    def bind(self, name: str, node: Entities | Descriptor, position: Position) -> None:
        """Bind ``name`` to ``node``; each name can be bound only once."""
        self.require_unbound(name, position)
        self._bindings[name] = node

    def lookup(self, name: str, position: Position) -> Entities | Descriptor:
        """Return the node bound to ``name``."""
        try:
            return self._bindings[name]
        except KeyError:
            raise UndefinedVariableError(
                self.source, *position, f"variable '{name}' is not defined"
            ) from None


# =============================================================================
# Lexer
# =============================================================================


class TokenKind(str, Enum):
    IDENTIFIER = "identifier"
    VARIABLE = "variable"
    REFERENCE = "reference"
    ASSIGN = ":="
    ARROW = "=>"
    COLON = ":"
    BANG = "!"
    OPEN_PAREN = "("
    CLOSE_PAREN = ")"
    TERMINATOR = "terminator"
    EOF = "eof"


@dataclass(frozen=True)
class Token:
    """A lexical unit; ``value`` holds the meaningful part of the match."""
    kind: TokenKind
    text: str
    line: int
    column: int
    offset: int
    value: str | None = None

    @property
    def position(self) -> Position:
        return Position(self.line, self.column)

    def __str__(self) -> str:
        if self.value is None:
            return self.kind.value
        return f"{self.kind.value}:{self.value}"


class LexicalRule(NamedTuple):
    """Token kind, pattern and the group that supplies the token value, if any."""
    kind: TokenKind
    pattern: re.Pattern[str]
    capture: int | None = None


# First match wins, so longer operators precede the shorter ones they start with.
NOTATION_RULES: tuple[LexicalRule, ...] = (
    LexicalRule(TokenKind.IDENTIFIER, re.compile(r"[\w&-]+"), 0),
    LexicalRule(TokenKind.VARIABLE, re.compile(r"@([\w-]+)"), 1),
    LexicalRule(TokenKind.REFERENCE, re.compile(r"\*([\w-]+)"), 1),
    LexicalRule(TokenKind.ASSIGN, re.compile(r"\s*:=\s*")),
    LexicalRule(TokenKind.ARROW, re.compile(r"\s*=>\s*")),
    LexicalRule(TokenKind.COLON, re.compile(r"\s*:\s*")),
    LexicalRule(TokenKind.BANG, re.compile(r"\s*!\s*")),
    LexicalRule(TokenKind.OPEN_PAREN, re.compile(r"\(\s*")),
    LexicalRule(TokenKind.CLOSE_PAREN, re.compile(r"\s*\)")),
    LexicalRule(TokenKind.TERMINATOR, re.compile(r"[\s;]+")),
)


def _advance_position(text: str, line: int, column: int) -> tuple[int, int]:
    newlines = text.count("\n")
    if newlines:
        return line + newlines, len(text) - text.rfind("\n")
    return line, column + len(text)


class Lexer:
    """Ordered regular-expression tokenizer with line and column tracking."""

    def __init__(self, rules: Iterable[LexicalRule] = NOTATION_RULES, source: str = "<string>"):
        self.rules = tuple(rules)
        self.source = source

    def tokens(self, text: str) -> Iterator[Token]:
        """Yield the tokens of ``text`` followed by a single `EOF` token."""
        offset = 0
        line, column = 1, 1
        while offset < len(text):
            for rule in self.rules:
                match = rule.pattern.match(text, offset)
                if match is not None and match.end() > offset:
                    break
            else:
                raise LexicalError(
                    self.source,
                    line,
                    column,
                    offset,
                    f"unexpected character {text[offset]!r} at offset {offset}",
                )
            matched = match.group(0)
            value = match.group(rule.capture) if rule.capture is not None else None
            yield Token(rule.kind, matched, line, column, offset, value)
            line, column = _advance_position(matched, line, column)
            offset = match.end()
        yield Token(TokenKind.EOF, "", line, column, offset)


# =============================================================================
# Parsing core
# =============================================================================


PrefixRule = Callable[[Token], "Node | None"]
InfixRule = Callable[[Token, "Node | None"], "Node | None"]


@dataclass
class SymbolDefinition:
    """Shared behavior of every token of one kind."""
    kind: TokenKind
    binding_power: int = 0
    prefix: PrefixRule | None = None
    infix: InfixRule | None = None

    def prefix_rule(self, rule: PrefixRule) -> PrefixRule:
        self.prefix = rule
        return rule

    def infix_rule(self, rule: InfixRule) -> InfixRule:
        self.infix = rule
        return rule


class PrattParser:
    """Generic top-down operator precedence parser over a token stream.

    The parser knows nothing about the notation itself; a grammar registers
    binding powers and prefix/infix rules through `symbol()`.
    """

    def __init__(
        self,
        tokens: Iterable[Token],
        source: str = "<string>",
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.source = source
        self.max_depth = max_depth
        self._tokens = iter(tokens)
        self._symbols: dict[TokenKind, SymbolDefinition] = {}
        self._token: Token | None = None
        self._depth = 0

    def symbol(self, kind: TokenKind, binding_power: int = 0) -> SymbolDefinition:
        """Get or create the definition for ``kind``, raising its binding power."""
        definition = self._symbols.get(kind)
        if definition is None:
            definition = SymbolDefinition(kind, binding_power)
            self._symbols[kind] = definition
        else:
            definition.binding_power = max(definition.binding_power, binding_power)
        return definition

    def error(self, token: Token, message: str) -> NoReturn:
        raise ParseError(self.source, token.line, token.column, message)

    def advance(self, expected: TokenKind | None = None) -> Token:
        """Move to the next token, optionally requiring the current one's kind."""
        current = self._token
        if current is not None and current.kind is TokenKind.EOF:
            self.error(current, "unexpected end of input")
        if expected is not None and (current is None or current.kind is not expected):
            if current is None:
                raise ParseError(self.source, 1, 1, f"expected '{expected.value}' before start of input")
            self.error(current, f"expected '{expected.value}', found {current}")
        token = next(self._tokens, None)
        if token is None:
            raise ParseError(self.source, 0, 0, "token stream ended without an end-of-input token")
        if token.kind not in self._symbols:
            self.error(token, f"no symbol defined for token kind '{token.kind.value}'")
        self._token = token
        return token

    def peek(self) -> Token:
        """Return the current token without consuming it."""
        if self._token is None:
            raise ParseError(self.source, 1, 1, "parsing has not started")
        return self._token

    def binding_power(self, token: Token) -> int:
        return self._symbols[token.kind].binding_power

    def expression(self, rbp: int = 0) -> Node | None:
        """Parse one expression whose operators bind tighter than ``rbp``."""
        if self._depth >= self.max_depth:
            self.error(self.peek(), f"expressions nested deeper than {self.max_depth} levels")
        self._depth += 1
        indent = "| " * self._depth
        try:
            token = self.peek()
            self.advance()
            definition = self._symbols[token.kind]
            if definition.prefix is None:
                self.error(token, f"'{token}' cannot start an expression")
            logger.debug("%sprefix %s at %s (rbp %d)", indent, token, token.position, rbp)
            left = definition.prefix(token)
            while rbp < self.binding_power(self.peek()):
                token = self.peek()
                self.advance()
                definition = self._symbols[token.kind]
                if definition.infix is None:
                    self.error(token, f"'{token}' cannot continue an expression")
                logger.debug("%sinfix %s at %s on %s", indent, token, token.position, symbol_name(left))
                left = definition.infix(token, left)
            logger.debug("%sresult %s, stopped at %s", indent, symbol_name(left), self.peek())
            return left
        finally:
            self._depth -= 1

    def parse(self) -> list[Node]:
        """Parse the whole token stream and return its top-level expressions."""
        self.advance()
        results: list[Node] = []
        while self.peek().kind is not TokenKind.EOF:
            result = self.expression(0)
            if result is not None:
                results.append(result)
        return results


# =============================================================================
# Grammar
# =============================================================================


CONSTRUCT_ENDS = frozenset({TokenKind.CLOSE_PAREN, TokenKind.EOF})


class NotationGrammar:
    """Semantic actions of the notation, installed into a `PrattParser`.

    Actions build immutable parse nodes and emit triples into the store as a
    side effect of reducing ``=>`` with entities on its left.
    """

    def __init__(
        self,
        parser: PrattParser,
        store: GraphStore,
        environment: VariableEnvironment,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.parser = parser
        self.store = store
        self.environment = environment
        self.max_depth = max_depth
        for kind, (binding_power, prefix, infix) in self.RULES.items():
            definition = parser.symbol(kind, binding_power)
            if prefix is not None:
                definition.prefix_rule(partial(prefix, self))
            if infix is not None:
                definition.infix_rule(partial(infix, self))

    def _at_construct_end(self) -> bool:
        return self.parser.peek().kind in CONSTRUCT_ENDS

    def _unexpected(
        self, node: Node | None, context: str, expected: tuple[type, ...]
    ) -> UnexpectedSymbolError:
        position = node.position if node is not None else self.parser.peek().position
        return UnexpectedSymbolError(
            self.parser.source,
            *position,
            context,
            [kind.kind for kind in expected],
            symbol_name(node),
        )

    def _expect(self, node: Node | None, context: str, *expected: type) -> Node:
        if not isinstance(node, expected):
            raise self._unexpected(node, context, expected)
        return node

    def identifier(self, token: Token) -> Entities:
        return Entities((self.store.allocate_entity_id(token.value),), token.position)

    def group(self, token: Token) -> Node | None:
        inner = self.parser.expression(0)
        self.parser.advance(TokenKind.CLOSE_PAREN)
        return inner

    def variable(self, token: Token) -> VariableName:
        return VariableName(token.value, token.position)

    def reference(self, token: Token) -> Entities | Descriptor:
        node = self.environment.lookup(token.value, token.position)
        return replace(node, position=token.position)

    def properties(self, token: Token, left: Node | None) -> Descriptor:
        """``predicates : objects`` builds one property per pair."""
        predicates = self._expect(left, "predicate for property (colon) operator", Entities)
        objects = self._expect(
            self.parser.expression(70), "object for property (colon) operator", Entities
        )
        return Descriptor(
            tuple(
                Property(predicate, obj, predicates.position)
                for predicate in predicates.ids
                for obj in objects.ids
            ),
            token.position,
        )

    def description(self, token: Token, left: Node | None) -> Entities | Descriptor:
        """``subjects => descriptor`` emits triples; ``descriptor => descriptor`` cites."""
        if isinstance(left, Entities):
            right = self._expect(
                self.parser.expression(49),
                "target (right hand operand) for description (arrow) operator",
                Descriptor,
            )
            for subject in left.ids:
                for prop in right.properties:
                    attach_property(
                        self.store, subject, prop, token.position, max_depth=self.max_depth
                    )
            return left
        if isinstance(left, Descriptor):
            right = self._expect(
                self.parser.expression(49),
                "target (right hand operand) for citation (arrow) operator",
                Descriptor,
            )
            return left.cite(right.properties)
        raise self._unexpected(
            left,
            "subject (left hand operand) for description (arrow) operator",
            (Entities, Descriptor),
        )

    def label(self, token: Token, left: Node | None) -> Descriptor:
        target = self._expect(left, "target (left hand operand) for label (bang) operator", Descriptor)
        if len(target.properties) != 1:
            raise LabelArityError(
                self.parser.source,
                *token.position,
                f"a label must name exactly one property, found {len(target.properties)}",
            )
        name = self._expect(
            self.parser.expression(60), "name (right hand operand) for label (bang) operator", Entities
        )
        if len(name.ids) != 1:
            raise LabelArityError(
                self.parser.source,
                *name.position,
                f"a label must be exactly one entity, found {len(name.ids)}",
            )
        return Descriptor((target.properties[0].labelled(name.ids[0]),), target.position)

    def assignment(self, token: Token, left: Node | None) -> Assignment:
        variable = self._expect(left, "target (left hand operand) for assignment operator", VariableName)
        self.environment.require_unbound(variable.name, variable.position)
        value = self._expect(
            self.parser.expression(2),
            "value (right hand operand) for assignment operator",
            Entities,
            Descriptor,
        )
        self.environment.bind(variable.name, value, variable.position)
        return Assignment(variable.name, token.position)

    def terminator_prefix(self, token: Token) -> Node | None:
        if self._at_construct_end():
            return None
        return self.parser.expression(0)

    def terminator_infix(self, token: Token, left: Node | None) -> Node | None:
        """Fold a sequence of siblings into one node."""
        if self._at_construct_end():
            return left
        if isinstance(left, Assignment):
            # The caller's loop picks up the remaining siblings.
            return self.parser.expression(1)
        if isinstance(left, Entities):
            right = self.parser.expression(1)
            if right is None or isinstance(right, Assignment):
                return left
            right = self._expect(right, "entities", Entities, Assignment)
            return Entities(left.ids + right.ids, left.position)
        if isinstance(left, Descriptor):
            right = self.parser.expression(1)
            if right is None:
                return left
            right = self._expect(right, "descriptor", Descriptor)
            return Descriptor(left.properties + right.properties, left.position)
        raise self._unexpected(left, "expression", (Entities, Descriptor, Assignment))

    # kind: (binding power, prefix rule, infix rule)
    RULES: ClassVar[dict[TokenKind, tuple[int, Callable | None, Callable | None]]] = {
        TokenKind.OPEN_PAREN: (100, group, None),
        TokenKind.COLON: (70, None, properties),
        TokenKind.BANG: (60, None, label),
        TokenKind.ARROW: (50, None, description),
        TokenKind.ASSIGN: (2, None, assignment),
        TokenKind.TERMINATOR: (1, terminator_prefix, terminator_infix),
        TokenKind.IDENTIFIER: (0, identifier, None),
        TokenKind.VARIABLE: (0, variable, None),
        TokenKind.REFERENCE: (0, reference, None),
        TokenKind.CLOSE_PAREN: (0, None, None),
        TokenKind.EOF: (0, None, None),
    }


# =============================================================================
# Front end
# =============================================================================


@dataclass(frozen=True)
class CompilerOptions:
    """Options controlling a single compilation."""
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be a positive integer, got {self.max_depth}")


def parse_notation(
    text: str, source: str = "<string>", options: CompilerOptions | None = None
) -> GraphStore:
    """Compile notation text and return the store holding its triples."""
    options = options or CompilerOptions()
    store = GraphStore(source=source)
    environment = VariableEnvironment(source=source)
    parser = PrattParser(
        Lexer(source=source).tokens(text), source=source, max_depth=options.max_depth
    )
    NotationGrammar(parser, store, environment, max_depth=options.max_depth)
    results = parser.parse()
    logger.debug(
        "compiled %s: %d top-level expression(s), %d triple(s), %d variable(s)",
        source,
        len(results),
        len(store),
        len(environment),
    )
    return store


OUTPUT_FORMATS = ("tsv", "nt", "json")


def serialize_triples(
    triples: Iterable[Triple],
    fmt: str = "tsv",
    provenance: dict[EntityId, Position | None] | None = None,
) -> str:
    """Serialize triples as tab-separated rows, ``s p o .`` lines or JSON."""
    triples = list(triples)
    if fmt == "json":
        provenance = provenance or {}
        records = []
        for triple in triples:
            position = provenance.get(triple.id)
            records.append(
                {
                    "id": str(triple.id),
                    "subject": str(triple.subject),
                    "predicate": str(triple.predicate),
                    "object": str(triple.object),
                    "line": position.line if position else None,
                    "column": position.column if position else None,
                }
            )
        return json.dumps(records, indent=2, ensure_ascii=False) + "\n"
    if fmt == "tsv":
        lines = ["\t".join(str(part) for part in triple) for triple in triples]
    elif fmt == "nt":
        lines = [f"{t.subject} {t.predicate} {t.object} ." for t in triples]
    else:
        raise ValueError(f"unsupported output format: {fmt}")
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def compute_graph_stats(store: GraphStore) -> dict[str, int]:
    """Compute counts describing the compiled graph."""
    triples = store.triples
    reification = [t for t in triples if t.id.namespace is Namespace.AUTO_REIFICATION]
    reified = {t.subject for t in reification if t.predicate == REIFY_SUBJECT}
    entities: set[EntityId] = set()
    for triple in triples:
        if triple.id.namespace is Namespace.AUTO_REIFICATION:
            continue
        entities.update((triple.subject, triple.predicate, triple.object))
    return {
        "triples": len(triples),
        "statements": len(triples) - len(reification),
        "reification_triples": len(reification),
        "reified_statements": len(reified),
        "labelled_statements": sum(
            1 for statement_id in reified if statement_id.namespace is not Namespace.AUTO_STATEMENT
        ),
        "subjects_unique": len({t.subject for t in triples}),
        "predicates_unique": len({t.predicate for t in triples}),
        "objects_unique": len({t.object for t in triples}),
        "user_entities_unique": sum(1 for e in entities if e.namespace is Namespace.USER),
        "anonymous_entities_unique": sum(1 for e in entities if e.namespace is Namespace.UNIQUE),
    }


STDIO_PATH = "-"


def read_input(path: str) -> tuple[str, str]:
    """Return the notation text and the source name used in diagnostics."""
    if path == STDIO_PATH:
        return sys.stdin.read(), "<stdin>"
    with open(path, encoding="utf-8") as handle:
        return handle.read(), path


def write_output(path: str, data: str) -> None:
    """Write serialized triples with ``\\n`` line endings on every platform."""
    if path == STDIO_PATH:
        sys.stdout.write(data)
        sys.stdout.flush()
        return
    with open(path, "w", encoding="utf-8", newline="\n") as handle:
        handle.write(data)


def emit_stats(stats: dict[str, int]) -> None:
    """Print graph statistics to stderr."""
    print("stats:", file=sys.stderr)
    for key, value in stats.items():
        print(f"{key}: {value}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line argument parser."""
    parser = argparse.ArgumentParser(
        prog="knowledge-notation",
        description="Compile knowledge notation into subject-predicate-object triples.",
        epilog="--validate-only compiles the input only and does not write output.",
    )
    parser.add_argument("input", help="Input file path, or '-' for stdin.")
    parser.add_argument(
        "output",
        nargs="?",
        help="Output file path, or '-' for stdout. Optional with --validate-only.",
    )
    parser.add_argument(
        "--format",
        choices=OUTPUT_FORMATS,
        default="tsv",
        help="Output format (default: tsv with statement ids).",
    )
    parser.add_argument(
        "--subject",
        default=None,
        help="Only output triples about this subject (_:namespace/value, reif:name or plain text).",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help=f"Maximum expression and citation nesting depth (default: {DEFAULT_MAX_DEPTH}).",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Compile the input only; do not write output.",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print graph statistics to stderr.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log parser trace messages to stderr.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the ``knowledge-notation`` command-line interface."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    try:
        options = CompilerOptions(max_depth=args.max_depth)
        if args.output is None and not args.validate_only:
            raise ValueError("output path is required unless --validate-only")
        subject = parse_entity_id(args.subject) if args.subject is not None else None

        input_text, source_name = read_input(args.input)
        store = parse_notation(input_text, source=source_name, options=options)
        if subject is not None:
            store = store.for_subject(subject)

        if not args.validate_only:
            write_output(args.output, serialize_triples(store, args.format, store.provenance))
        if args.stats:
            emit_stats(compute_graph_stats(store))
        return 0
    except (NotationError, ValueError) as exc:
        parser.exit(status=1, message=f"Error: {exc}\n")


if __name__ == "__main__":
    raise SystemExit(main())
