"""Format-preserving document model.

`parse_config` groups the token stream into a tree of attributes and blocks.
Every node holds the exact tokens it was built from, so an unmodified tree
renders back to the original bytes and an edited tree changes only the
nodes that were touched.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from injector.core.models import Diagnostic, Diagnostics, Pos, Range
from injector.syntax.lexer import tokenize
from injector.syntax.tokens import CLOSERS, OPENERS, Token, Tokens, TokenType, tokens_text

INDENT = "  "


@dataclass
class Unstructured:
    """Tokens with no structure of their own: blank lines, detached comments."""

    tokens: Tokens

    def build_tokens(self) -> Tokens:
        return list(self.tokens)


@dataclass
class Attribute:
    """A `name = expression` pair."""

    lead: Tokens
    name_token: Token
    equals: Token
    expr: Tokens
    end: Tokens = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.name_token.text

    @property
    def range(self) -> Range | None:
        """Source range from the attribute name to the end of its expression."""
        return _span(self.name_token, self.expr[-1] if self.expr else self.equals)

    def set_expr(self, tokens: Tokens) -> None:
        """Replace the expression, keeping the whitespace after `=`."""
        tokens = [Token(t.type, t.text, t.space, t.pos) for t in tokens]
        if tokens:
            tokens[0].space = self.expr[0].space if self.expr else " "
        self.expr = tokens

    def build_tokens(self) -> Tokens:
        return [*self.lead, self.name_token, self.equals, *self.expr, *self.end]


@dataclass
class Block:
    """A `type "label" ... { body }` section."""

    lead: Tokens
    type_token: Token
    label_tokens: list[Tokens]
    obrace: Token
    open_end: Tokens
    body: Body
    cbrace: Token
    end: Tokens = field(default_factory=list)

    @classmethod
    def new(cls, block_type: str, labels: list[str], indent: str = "") -> Block:
        """Build an empty block, laid out one attribute per line."""
        label_tokens = [
            [
                Token(TokenType.OQUOTE, '"', " "),
                Token(TokenType.QUOTED_LIT, _escape(label)),
                Token(TokenType.CQUOTE, '"'),
            ]
            for label in labels
        ]
        return cls(
            lead=[],
            type_token=Token(TokenType.IDENT, block_type, indent),
            label_tokens=label_tokens,
            obrace=Token(TokenType.OBRACE, "{", " "),
            open_end=[Token(TokenType.NEWLINE, "\n")],
            body=Body(items=[], default_indent=indent + INDENT),
            cbrace=Token(TokenType.CBRACE, "}", indent),
            end=[Token(TokenType.NEWLINE, "\n")],
        )

    @property
    def type(self) -> str:
        return self.type_token.text

    @property
    def labels(self) -> list[str]:
        return [label_value(tokens) for tokens in self.label_tokens]

    @property
    def range(self) -> Range | None:
        return _span(self.type_token, self.cbrace)

    def build_tokens(self) -> Tokens:
        tokens = [*self.lead, self.type_token]
        for label in self.label_tokens:
            tokens.extend(label)
        tokens.append(self.obrace)
        tokens.extend(self.open_end)
        tokens.extend(self.body.build_tokens())
        tokens.append(self.cbrace)
        tokens.extend(self.end)
        return tokens


Node = Unstructured | Attribute | Block


@dataclass
class Body:
    """The ordered contents of a file or block."""

    items: list[Node] = field(default_factory=list)
    default_indent: str = ""

    @property
    def indent(self) -> str:
        """Indentation used for new attributes, copied from existing ones."""
        for item in self.items:
            if isinstance(item, (Attribute, Block)):
                first = item.lead[0] if item.lead else item.build_tokens()[0]
                return first.space
        return self.default_indent

    def attributes(self) -> list[Attribute]:
        return [item for item in self.items if isinstance(item, Attribute)]

    def blocks(self) -> list[Block]:
        return [item for item in self.items if isinstance(item, Block)]

    def get_attribute(self, name: str) -> Attribute | None:
        for attr in self.attributes():
            if attr.name == name:
                return attr
        return None

    def first_matching_block(self, block_type: str, labels: list[str]) -> Block | None:
        for block in self.blocks():
            if block.type == block_type and block.labels == labels:
                return block
        return None

    def set_attribute_raw(self, name: str, tokens: Tokens) -> Attribute:
        """Set an attribute's expression to the given raw tokens.

        An existing attribute keeps its position, comments and spacing; a new
        one is appended on its own line.
        """
        attr = self.get_attribute(name)
        if attr is not None:
            attr.set_expr(tokens)
            return attr

        attr = Attribute(
            lead=[],
            name_token=Token(TokenType.IDENT, name, self.indent),
            equals=Token(TokenType.EQUAL, "=", " "),
            expr=[],
            end=[Token(TokenType.NEWLINE, "\n")],
        )
        attr.set_expr(tokens)
        self.items.append(attr)
        return attr

    def append_block(self, block: Block) -> None:
        self.items.append(block)

    def remove_block(self, block: Block) -> None:
        self.items = [item for item in self.items if item is not block]

    def build_tokens(self) -> Tokens:
        tokens: Tokens = []
        for item in self.items:
            tokens.extend(item.build_tokens())
        return tokens


@dataclass
class File:
    """A parsed config document."""

    body: Body
    eof: Token = field(default_factory=lambda: Token(TokenType.EOF, ""))
    filename: str = "<input>"

    def build_tokens(self) -> Tokens:
        return [*self.body.build_tokens(), self.eof]

    def text(self) -> str:
        return tokens_text(self.build_tokens())

    def walk_blocks(self) -> Iterator[Block]:
        """Yield top-level blocks in file order."""
        yield from self.body.blocks()


def label_value(tokens: Tokens) -> str:
    """The string value of a block label (quoted or bare)."""
    parts = []
    for token in tokens:
        if token.type is TokenType.IDENT:
            return token.text
        if token.type is TokenType.QUOTED_LIT:
            parts.append(_unescape(token.text))
    return "".join(parts)


def _escape(s: str) -> str:
    return s.replace("\\", "\\\\").replace('"', '\\"')


def _unescape(s: str) -> str:
    return s.replace('\\"', '"').replace("\\\\", "\\")


def _span(first: Token, last: Token) -> Range | None:
    if first.pos is None or last.pos is None:
        return None
    text = last.text.rstrip("\n")
    end = Pos(last.pos.line + text.count("\n"), last.pos.column + len(text), last.pos.offset + len(text))
    return Range("", first.pos, end)


class _Parser:
    """Groups a token stream into bodies, attributes and blocks."""

    def __init__(self, tokens: Tokens, filename: str) -> None:
        self._tokens = tokens
        self._filename = filename
        self._i = 0
        self.diags = Diagnostics()

    def _peek(self, ahead: int = 0) -> Token:
        index = min(self._i + ahead, len(self._tokens) - 1)
        return self._tokens[index]

    def _next(self) -> Token:
        token = self._peek()
        if token.type is not TokenType.EOF:
            self._i += 1
        return token

    def _error(self, summary: str, detail: str, token: Token) -> None:
        pos = token.pos or Pos()
        self.diags.append(Diagnostic.error(summary, detail, Range(self._filename, pos, pos)))

    def parse_file(self) -> File:
        body = self.parse_body(nested=False)
        return File(body=body, eof=self._peek(), filename=self._filename)

    def parse_body(self, nested: bool, default_indent: str = "") -> Body:
        body = Body(default_indent=default_indent)
        lead: Tokens = []

        while True:
            token = self._peek()

            if token.type is TokenType.EOF:
                if nested:
                    self._error(
                        "Unclosed configuration block",
                        "There is no closing brace for this block before the end of the file.",
                        token,
                    )
                break

            if token.type is TokenType.CBRACE and nested:
                break

            if token.type is TokenType.COMMENT:
                lead.append(self._next())
                continue

            if token.type is TokenType.NEWLINE:
                if lead:
                    body.items.append(Unstructured(lead))
                    lead = []
                body.items.append(Unstructured([self._next()]))
                continue

            if token.type is TokenType.IDENT:
                following = self._peek(1)
                if following.type is TokenType.EQUAL:
                    body.items.append(self._parse_attribute(lead))
                    lead = []
                    continue
                if following.type in (TokenType.OQUOTE, TokenType.IDENT, TokenType.OBRACE):
                    body.items.append(self._parse_block(lead, default_indent))
                    lead = []
                    continue

            self._error(
                "Argument or block definition required",
                "An argument or block definition is required here.",
                token,
            )
            lead.extend(self._skip_line())
            body.items.append(Unstructured(lead))
            lead = []

        if lead:
            body.items.append(Unstructured(lead))
        return body

    def _skip_line(self) -> Tokens:
        skipped: Tokens = []
        while self._peek().type not in (TokenType.EOF, TokenType.NEWLINE, TokenType.COMMENT):
            skipped.append(self._next())
        if self._peek().type is not TokenType.EOF:
            skipped.append(self._next())
        return skipped

    def _scan_expr(self) -> Tokens:
        """Collect expression tokens up to the end of the logical line."""
        expr: Tokens = []
        depth = 0
        start = self._peek()
        while True:
            token = self._peek()
            if token.type is TokenType.EOF:
                if depth:
                    self._error(
                        "Unbalanced brackets",
                        "The expression starting here is not closed before the end of the file.",
                        start,
                    )
                break
            if depth == 0 and token.type in (TokenType.NEWLINE, TokenType.COMMENT):
                break
            if token.type in OPENERS:
                depth += 1
            elif token.type in CLOSERS:
                if depth == 0:
                    break
                depth -= 1
            expr.append(self._next())
        return expr

    def _line_end(self) -> Tokens:
        if self._peek().type in (TokenType.NEWLINE, TokenType.COMMENT):
            return [self._next()]
        return []

    def _parse_attribute(self, lead: Tokens) -> Attribute:
        name = self._next()
        equals = self._next()
        expr = self._scan_expr()
        if not expr:
            self._error(
                "Missing expression",
                f'Expected an expression after "{name.text} =".',
                equals,
            )
        return Attribute(lead=lead, name_token=name, equals=equals, expr=expr, end=self._line_end())

    def _parse_block(self, lead: Tokens, indent: str) -> Block:
        type_token = self._next()
        labels: list[Tokens] = []
        while True:
            token = self._peek()
            if token.type is TokenType.IDENT:
                labels.append([self._next()])
            elif token.type is TokenType.OQUOTE:
                label = [self._next()]
                while self._peek().type is TokenType.QUOTED_LIT:
                    label.append(self._next())
                if self._peek().type is TokenType.CQUOTE:
                    label.append(self._next())
                else:
                    self._error("Invalid block label", "Block labels must be plain strings.", token)
                labels.append(label)
            else:
                break

        obrace = self._peek()
        if obrace.type is not TokenType.OBRACE:
            self._error(
                "Invalid block definition",
                f'A block definition must have block content delimited by "{{" and "}}", '
                f'starting on the same line as the block header "{type_token.text}".',
                obrace,
            )
            rest = self._skip_line()
            return Block(
                lead=lead,
                type_token=type_token,
                label_tokens=labels,
                obrace=Token(TokenType.OBRACE, ""),
                open_end=rest,
                body=Body(),
                cbrace=Token(TokenType.CBRACE, ""),
            )
        self._next()

        open_end = self._line_end()
        body = self.parse_body(nested=True, default_indent=indent + INDENT)
        cbrace = self._peek()
        if cbrace.type is TokenType.CBRACE:
            self._next()
        else:
            cbrace = Token(TokenType.CBRACE, "")

        return Block(
            lead=lead,
            type_token=type_token,
            label_tokens=labels,
            obrace=obrace,
            open_end=open_end,
            body=body,
            cbrace=cbrace,
            end=self._line_end(),
        )


def parse_tokens(tokens: Tokens, filename: str = "<input>") -> tuple[File, Diagnostics]:
    """Group an EOF-terminated token stream into a File."""
    parser = _Parser(tokens, filename)
    file = parser.parse_file()
    return file, parser.diags


def parse_config(src: str, filename: str = "<input>") -> tuple[File, Diagnostics]:
    """Parse a config document into an editable File.

    The File is returned even when diagnostics contain errors, so callers can
    inspect what was understood.
    """
    tokens, diags = tokenize(src, filename)
    file, parse_diags = parse_tokens(tokens, filename)
    diags.extend(parse_diags)
    return file, diags
