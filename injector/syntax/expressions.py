"""Expression parsing and evaluation.

Covers the part of the expression language config documents use: literals,
string templates and heredocs with `${...}` interpolation, variables and
traversals, function calls, tuples, objects and the usual operators.

Evaluation never stops at the first problem. A failing sub-expression records
a diagnostic and evaluates to UNKNOWN, which then propagates silently, so
independent failures are all reported once.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from injector.core.exceptions import FunctionCallError
from injector.core.models import Diagnostic, Diagnostics, Pos, Range
from injector.syntax.lexer import tokenize, tokenize_template
from injector.syntax.tokens import Token, Tokens, TokenType


class _Unknown:
    """Placeholder for a value that could not be computed."""

    def __repr__(self) -> str:
        return "<unknown>"


UNKNOWN: Any = _Unknown()

_BINARY_PRECEDENCE = {
    "||": 1,
    "&&": 2,
    "==": 3,
    "!=": 3,
    "<": 4,
    ">": 4,
    "<=": 4,
    ">=": 4,
    "+": 5,
    "-": 5,
    "*": 6,
    "/": 6,
    "%": 6,
}

_QUOTED_ESCAPE_RE = re.compile(r"\\(u[0-9A-Fa-f]{4}|U[0-9A-Fa-f]{8}|.)|\$\$\{|%%\{", re.DOTALL)
_TEMPLATE_ESCAPE_RE = re.compile(r"\$\$\{|%%\{")
_SIMPLE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}


@dataclass
class EvalContext:
    """Variables and functions visible to an expression."""

    variables: Mapping[str, Any] = field(default_factory=dict)
    functions: Mapping[str, Callable[..., Any]] = field(default_factory=dict)


class Expr:
    """Base class for expression nodes."""

    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        raise NotImplementedError


@dataclass
class LiteralExpr(Expr):
    val: Any
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        return self.val


@dataclass
class TemplateExpr(Expr):
    parts: list[str | Expr]
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        # "${x}" alone yields x's value unchanged.
        if len(self.parts) == 1 and isinstance(self.parts[0], Expr):
            return self.parts[0].value(ctx, diags)

        pieces = []
        unknown = False
        for part in self.parts:
            if isinstance(part, str):
                pieces.append(part)
                continue
            val = part.value(ctx, diags)
            if val is UNKNOWN:
                unknown = True
                continue
            if val is None:
                diags.append(
                    Diagnostic.error(
                        "Invalid template interpolation value",
                        "The expression result is null. Cannot include a null value in a "
                        "string template.",
                        part.range,
                    )
                )
                unknown = True
            elif isinstance(val, (list, dict)):
                diags.append(
                    Diagnostic.error(
                        "Invalid template interpolation value",
                        "Cannot include the given value in a string template: string required.",
                        part.range,
                    )
                )
                unknown = True
            else:
                pieces.append(to_string(val))
        return UNKNOWN if unknown else "".join(pieces)


@dataclass
class VariableExpr(Expr):
    name: str
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        if self.name not in ctx.variables:
            diags.append(
                Diagnostic.error(
                    "Unknown variable",
                    f'There is no variable named "{self.name}".',
                    self.range,
                )
            )
            return UNKNOWN
        return ctx.variables[self.name]


@dataclass
class TraversalExpr(Expr):
    source: Expr
    steps: list[tuple[str, Any]]
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        current = self.source.value(ctx, diags)
        for kind, key in self.steps:
            if current is UNKNOWN:
                return UNKNOWN
            if kind == "index":
                key = key.value(ctx, diags)
                if key is UNKNOWN:
                    return UNKNOWN
            current = self._step(current, kind, key, diags)
        return current

    def _step(self, current: Any, kind: str, key: Any, diags: Diagnostics) -> Any:
        if isinstance(current, dict):
            name = to_string(key) if not isinstance(key, str) else key
            if name in current:
                return current[name]
            summary = "Unsupported attribute" if kind == "attr" else "Invalid index"
            diags.append(
                Diagnostic.error(
                    summary, f'This object does not have an attribute named "{name}".', self.range
                )
            )
            return UNKNOWN
        if isinstance(current, list):
            try:
                index = int(key)
            except (TypeError, ValueError):
                index = -1
            if 0 <= index < len(current):
                return current[index]
            diags.append(
                Diagnostic.error(
                    "Invalid index", "The given key does not identify an element in this collection value.", self.range
                )
            )
            return UNKNOWN
        diags.append(
            Diagnostic.error(
                "Unsupported attribute", "This value does not have any attributes or elements.", self.range
            )
        )
        return UNKNOWN


@dataclass
class FunctionCallExpr(Expr):
    name: str
    args: list[Expr]
    expand_final: bool = False
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        func = ctx.functions.get(self.name)
        if func is None:
            diags.append(
                Diagnostic.error(
                    "Call to unknown function",
                    f'There is no function named "{self.name}".',
                    self.range,
                )
            )
            return UNKNOWN

        args = [arg.value(ctx, diags) for arg in self.args]
        if any(arg is UNKNOWN for arg in args):
            return UNKNOWN
        if self.expand_final and args:
            last = args.pop()
            if not isinstance(last, list):
                diags.append(
                    Diagnostic.error(
                        "Invalid expanding argument value",
                        "The expanding argument (indicated by ...) must be of a tuple or list type.",
                        self.range,
                    )
                )
                return UNKNOWN
            args.extend(last)

        try:
            return func(*args)
        except FunctionCallError as e:
            for diag in e.diagnostics:
                if diag.subject is None:
                    diag.subject = self.range
                diags.append(diag)
            return UNKNOWN


@dataclass
class TupleExpr(Expr):
    items: list[Expr]
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        values = [item.value(ctx, diags) for item in self.items]
        return UNKNOWN if any(v is UNKNOWN for v in values) else values


@dataclass
class ObjectExpr(Expr):
    items: list[tuple[Expr, Expr]]
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        result: dict[str, Any] = {}
        unknown = False
        for key_expr, value_expr in self.items:
            key = key_expr.value(ctx, diags)
            val = value_expr.value(ctx, diags)
            if key is UNKNOWN or val is UNKNOWN:
                unknown = True
                continue
            if key is None or isinstance(key, (list, dict)):
                diags.append(
                    Diagnostic.error(
                        "Incorrect key type",
                        "Can't use this value as a key: string required.",
                        key_expr.range,
                    )
                )
                unknown = True
                continue
            result[to_string(key)] = val
        return UNKNOWN if unknown else result


@dataclass
class UnaryExpr(Expr):
    op: str
    operand: Expr
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        val = self.operand.value(ctx, diags)
        if val is UNKNOWN:
            return UNKNOWN
        if self.op == "!":
            flag = _as_bool(val)
            if flag is None:
                return _operand_error(diags, self.range, "bool")
            return not flag
        number = _as_number(val)
        if number is None:
            return _operand_error(diags, self.range, "number")
        return -number


@dataclass
class BinaryExpr(Expr):
    op: str
    left: Expr
    right: Expr
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        left = self.left.value(ctx, diags)
        right = self.right.value(ctx, diags)
        if left is UNKNOWN or right is UNKNOWN:
            return UNKNOWN

        op = self.op
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op in ("&&", "||"):
            lb, rb = _as_bool(left), _as_bool(right)
            if lb is None or rb is None:
                return _operand_error(diags, self.range, "bool")
            return (lb and rb) if op == "&&" else (lb or rb)

        ln, rn = _as_number(left), _as_number(right)
        if ln is None or rn is None:
            return _operand_error(diags, self.range, "number")
        if op in ("/", "%") and rn == 0:
            diags.append(Diagnostic.error("Division by zero", "Cannot divide by zero.", self.range))
            return UNKNOWN
        result = {
            "+": lambda: ln + rn,
            "-": lambda: ln - rn,
            "*": lambda: ln * rn,
            "/": lambda: ln / rn,
            "%": lambda: ln % rn,
            "<": lambda: ln < rn,
            ">": lambda: ln > rn,
            "<=": lambda: ln <= rn,
            ">=": lambda: ln >= rn,
        }[op]()
        if isinstance(result, float) and result.is_integer() and op != "/":
            return int(result)
        return result


@dataclass
class ConditionalExpr(Expr):
    condition: Expr
    true_result: Expr
    false_result: Expr
    range: Range | None = None

    def value(self, ctx: EvalContext, diags: Diagnostics) -> Any:
        cond = self.condition.value(ctx, diags)
        if cond is UNKNOWN:
            return UNKNOWN
        flag = _as_bool(cond)
        if flag is None:
            return _operand_error(diags, self.range, "bool")
        return (self.true_result if flag else self.false_result).value(ctx, diags)


def to_string(value: Any) -> str:
    """Convert a primitive value to its string form."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if value in ("true", "false"):
        return value == "true"
    return None


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return None
    return None


def _operand_error(diags: Diagnostics, subject: Range | None, wanted: str) -> Any:
    diags.append(Diagnostic.error("Invalid operand", f"Unsuitable value for operand: {wanted} required.", subject))
    return UNKNOWN


def _unescape_quoted(text: str) -> str:
    def replace(m: re.Match[str]) -> str:
        whole = m.group(0)
        if whole == "$${":
            return "${"
        if whole == "%%{":
            return "%{"
        esc = m.group(1)
        if esc[0] in "uU" and len(esc) > 1:
            return chr(int(esc[1:], 16))
        return _SIMPLE_ESCAPES.get(esc, "\\" + esc)

    return _QUOTED_ESCAPE_RE.sub(replace, text)


def _unescape_template(text: str) -> str:
    return _TEMPLATE_ESCAPE_RE.sub(lambda m: m.group(0)[1:], text)


def _parse_number(text: str) -> int | float:
    try:
        return int(text)
    except ValueError:
        return float(text)


class _SyntaxAbort(Exception):
    """Stops parsing after a syntax diagnostic has been recorded."""


class _ExprParser:
    def __init__(self, tokens: Tokens, filename: str) -> None:
        self._tokens = [t for t in tokens if t.type not in (TokenType.NEWLINE, TokenType.COMMENT)]
        if not self._tokens or self._tokens[-1].type is not TokenType.EOF:
            last = self._tokens[-1].pos if self._tokens else None
            self._tokens.append(Token(TokenType.EOF, "", "", last))
        self._filename = filename
        self._i = 0
        self.diags = Diagnostics()

    def _peek(self) -> Token:
        return self._tokens[self._i]

    def _next(self) -> Token:
        token = self._tokens[self._i]
        if token.type is not TokenType.EOF:
            self._i += 1
        return token

    def _range(self, start: Token, end: Token | None = None) -> Range | None:
        if start.pos is None:
            return None
        end_pos = (end or start).pos or start.pos
        return Range(self._filename, start.pos, end_pos)

    def _fail(self, summary: str, detail: str, token: Token) -> _SyntaxAbort:
        self.diags.append(Diagnostic.error(summary, detail, self._range(token)))
        return _SyntaxAbort()

    def _expect(self, token_type: TokenType, what: str) -> Token:
        token = self._peek()
        if token.type is not token_type:
            found = token.text.strip() or token.type.value
            raise self._fail("Invalid expression", f"Expected {what}, but found {found!r}.", token)
        return self._next()

    def parse(self) -> Expr | None:
        try:
            expr = self._parse_conditional()
            token = self._peek()
            if token.type is not TokenType.EOF:
                raise self._fail(
                    "Extra characters after expression",
                    "An expression was successfully parsed, but extra characters were found after it.",
                    token,
                )
            return expr
        except _SyntaxAbort:
            return None

    def parse_template_body(self) -> TemplateExpr | None:
        try:
            start = self._peek()
            parts = self._template_parts(end=TokenType.EOF, literal=TokenType.STRING_LIT)
            return TemplateExpr(parts=parts, range=self._range(start))
        except _SyntaxAbort:
            return None

    def _parse_conditional(self) -> Expr:
        start = self._peek()
        cond = self._parse_binary(1)
        if self._peek().type is TokenType.QUESTION:
            self._next()
            true_result = self._parse_conditional()
            self._expect(TokenType.COLON, '":"')
            false_result = self._parse_conditional()
            return ConditionalExpr(cond, true_result, false_result, self._range(start))
        return cond

    def _parse_binary(self, min_precedence: int) -> Expr:
        start = self._peek()
        left = self._parse_unary()
        while True:
            token = self._peek()
            precedence = _BINARY_PRECEDENCE.get(token.text) if token.type is TokenType.OPERATOR else None
            if precedence is None or precedence < min_precedence:
                return left
            self._next()
            right = self._parse_binary(precedence + 1)
            left = BinaryExpr(token.text, left, right, self._range(start))

    def _parse_unary(self) -> Expr:
        token = self._peek()
        if token.type is TokenType.OPERATOR and token.text in ("!", "-"):
            self._next()
            return UnaryExpr(token.text, self._parse_unary(), self._range(token))
        return self._parse_postfix()

    def _parse_postfix(self) -> Expr:
        start = self._peek()
        expr = self._parse_primary()
        steps: list[tuple[str, Any]] = []
        while True:
            token = self._peek()
            if token.type is TokenType.DOT:
                self._next()
                key = self._next()
                if key.type is TokenType.IDENT:
                    steps.append(("attr", key.text))
                elif key.type is TokenType.NUMBER_LIT:
                    steps.append(("index", LiteralExpr(_parse_number(key.text), self._range(key))))
                else:
                    raise self._fail("Invalid attribute name", "An attribute name is required after a dot.", key)
            elif token.type is TokenType.OBRACK:
                self._next()
                index = self._parse_conditional()
                self._expect(TokenType.CBRACK, '"]"')
                steps.append(("index", index))
            else:
                break
        if steps:
            return TraversalExpr(expr, steps, self._range(start))
        return expr

    def _parse_primary(self) -> Expr:
        token = self._next()
        kind = token.type

        if kind is TokenType.NUMBER_LIT:
            return LiteralExpr(_parse_number(token.text), self._range(token))

        if kind is TokenType.IDENT:
            if token.text in ("true", "false"):
                return LiteralExpr(token.text == "true", self._range(token))
            if token.text == "null":
                return LiteralExpr(None, self._range(token))
            if self._peek().type is TokenType.OPAREN:
                return self._parse_call(token)
            return VariableExpr(token.text, self._range(token))

        if kind is TokenType.OQUOTE:
            parts = self._template_parts(end=TokenType.CQUOTE, literal=TokenType.QUOTED_LIT)
            end = self._expect(TokenType.CQUOTE, "the end of the string")
            return TemplateExpr(parts, self._range(token, end))

        if kind is TokenType.OHEREDOC:
            parts = self._template_parts(end=TokenType.CHEREDOC, literal=TokenType.STRING_LIT)
            end = self._expect(TokenType.CHEREDOC, "the heredoc closing marker")
            if token.text.startswith("<<-"):
                parts = _strip_heredoc_indent(parts)
            return TemplateExpr(parts, self._range(token, end))

        if kind is TokenType.OPAREN:
            inner = self._parse_conditional()
            self._expect(TokenType.CPAREN, '")"')
            return inner

        if kind is TokenType.OBRACK:
            items: list[Expr] = []
            while self._peek().type is not TokenType.CBRACK:
                items.append(self._parse_conditional())
                if self._peek().type is TokenType.COMMA:
                    self._next()
                elif self._peek().type is not TokenType.CBRACK:
                    raise self._fail("Missing item separator", "Expected a comma to mark the beginning of the next item.", self._peek())
            end = self._next()
            return TupleExpr(items, self._range(token, end))

        if kind is TokenType.OBRACE:
            return self._parse_object(token)

        found = token.text.strip() or kind.value
        raise self._fail("Invalid expression", f"Expected the start of an expression, but found {found!r}.", token)

    def _parse_call(self, name: Token) -> FunctionCallExpr:
        self._next()
        args: list[Expr] = []
        expand_final = False
        while self._peek().type is not TokenType.CPAREN:
            args.append(self._parse_conditional())
            if self._peek().type is TokenType.ELLIPSIS:
                self._next()
                expand_final = True
                break
            if self._peek().type is TokenType.COMMA:
                self._next()
            elif self._peek().type is not TokenType.CPAREN:
                raise self._fail(
                    "Missing argument separator",
                    "A comma is required to separate each function argument from the next.",
                    self._peek(),
                )
        end = self._expect(TokenType.CPAREN, '")"')
        return FunctionCallExpr(name.text, args, expand_final, self._range(name, end))

    def _parse_object(self, start: Token) -> ObjectExpr:
        items: list[tuple[Expr, Expr]] = []
        while self._peek().type is not TokenType.CBRACE:
            key_token = self._peek()
            if key_token.type is TokenType.IDENT and self._tokens[self._i + 1].type in (
                TokenType.EQUAL,
                TokenType.COLON,
            ):
                self._next()
                key: Expr = LiteralExpr(key_token.text, self._range(key_token))
            else:
                key = self._parse_conditional()
            if self._peek().type not in (TokenType.EQUAL, TokenType.COLON):
                raise self._fail(
                    "Missing key/value separator",
                    'Expected an equals sign ("=") to mark the beginning of the attribute value.',
                    self._peek(),
                )
            self._next()
            items.append((key, self._parse_conditional()))
            if self._peek().type is TokenType.COMMA:
                self._next()
        end = self._next()
        return ObjectExpr(items, self._range(start, end))

    def _template_parts(self, end: TokenType, literal: TokenType) -> list[str | Expr]:
        parts: list[str | Expr] = []
        while True:
            token = self._peek()
            if token.type is end or token.type is TokenType.EOF:
                return parts
            self._next()
            if token.type is literal:
                text = _unescape_quoted(token.text) if literal is TokenType.QUOTED_LIT else _unescape_template(token.text)
                if parts and isinstance(parts[-1], str):
                    parts[-1] += text
                else:
                    parts.append(text)
            elif token.type is TokenType.TEMPLATE_INTERP:
                parts.append(self._parse_conditional())
                self._expect(TokenType.TEMPLATE_SEQ_END, 'a closing brace "}"')
            elif token.type is TokenType.TEMPLATE_CONTROL:
                raise self._fail(
                    "Unsupported template directive",
                    "Template directives (%{ ... }) are not supported; use an interpolation instead.",
                    token,
                )
            else:
                raise self._fail("Invalid template", f"Unexpected {token.text!r} in template.", token)


def _strip_heredoc_indent(parts: list[str | Expr]) -> list[str | Expr]:
    """Remove the common leading whitespace of a `<<-` heredoc's lines."""
    indents = []
    at_line_start = True
    for part in parts:
        if not isinstance(part, str):
            if at_line_start:
                indents.append(0)
            at_line_start = False
            continue
        for piece in part.splitlines(keepends=True):
            if at_line_start and not (piece.strip() == "" and piece.endswith("\n")):
                indents.append(len(piece) - len(piece.lstrip(" \t")))
            at_line_start = piece.endswith("\n")
    strip = min(indents, default=0)
    if not strip:
        return parts

    result: list[str | Expr] = []
    at_line_start = True
    for part in parts:
        if not isinstance(part, str):
            result.append(part)
            at_line_start = False
            continue
        pieces = []
        for piece in part.splitlines(keepends=True):
            if at_line_start:
                lead = len(piece) - len(piece.lstrip(" \t"))
                piece = piece[min(strip, lead) :]
            pieces.append(piece)
            at_line_start = piece.endswith("\n")
        result.append("".join(pieces))
    return result


def parse_expression(tokens: Tokens, filename: str = "<expr>") -> tuple[Expr | None, Diagnostics]:
    """Parse expression tokens, such as an attribute's right-hand side."""
    parser = _ExprParser(tokens, filename)
    expr = parser.parse()
    return expr, parser.diags


def parse_expression_text(text: str, filename: str = "<expr>") -> tuple[Expr | None, Diagnostics]:
    """Tokenize and parse a standalone expression."""
    tokens, diags = tokenize(text, filename)
    if diags.has_errors():
        return None, diags
    expr, parse_diags = parse_expression(tokens, filename)
    diags.extend(parse_diags)
    return expr, diags


def parse_template(
    text: str, filename: str = "<template>", start: Pos | None = None
) -> tuple[TemplateExpr | None, Diagnostics]:
    """Parse bare template text: literal text with `${...}` interpolations."""
    tokens, diags = tokenize_template(text, filename, start)
    if diags.has_errors():
        return None, diags
    parser = _ExprParser(tokens, filename)
    expr = parser.parse_template_body()
    diags.extend(parser.diags)
    return expr, diags


def evaluate(expr: Expr, ctx: EvalContext | None = None) -> tuple[Any, Diagnostics]:
    """Evaluate an expression, returning its value and any diagnostics."""
    diags = Diagnostics()
    val = expr.value(ctx or EvalContext(), diags)
    return val, diags
