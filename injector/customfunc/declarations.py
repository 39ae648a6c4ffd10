"""Read `custom_function` declarations from a document.

A command body references the function's own parameters, which are unknown
while the document is decoded. So the command is never evaluated here: its
tokens are turned back into the literal template text they came from.
"""

from __future__ import annotations

import logging
import textwrap

from injector.core.models import Diagnostic, Diagnostics, Pos, Range
from injector.customfunc.models import BLOCK_TYPE, FunctionDeclaration
from injector.syntax.expressions import TupleExpr, VariableExpr, parse_expression
from injector.syntax.tokens import Tokens, TokenType, tokens_text
from injector.syntax.writer import Attribute, Block, File

_REQUIRED = ("params", "command")
_QUOTE_ESCAPES = {"n": "\n", "r": "\r", "t": "\t", '"': '"', "\\": "\\"}

_logger = logging.getLogger(__name__)


def _unescape_command(text: str) -> str:
    """Apply quoted-string escapes, leaving `$${` for the template parser."""
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt in _QUOTE_ESCAPES:
                out.append(_QUOTE_ESCAPES[nxt])
                i += 2
                continue
            if nxt == "u" and i + 6 <= len(text):
                try:
                    out.append(chr(int(text[i + 2 : i + 6], 16)))
                    i += 6
                    continue
                except ValueError:
                    pass
        out.append(ch)
        i += 1
    return "".join(out)


def command_tokens_to_str(tokens: Tokens) -> tuple[str, int, int]:
    """Literal command text from a `command` expression's tokens.

    Quote and heredoc delimiters are dropped and their contents kept.

    Returns:
        (text, start_offset, end_offset): the line offsets adjust the
        attribute's range for each removed heredoc marker.
    """
    start_offset = 0
    end_offset = 0
    kept: Tokens = []
    heredoc_indented = False
    quoted = False
    for token in tokens:
        if token.type is TokenType.OHEREDOC:
            start_offset += 1
            heredoc_indented = token.text.startswith("<<-")
            continue
        if token.type is TokenType.CHEREDOC:
            end_offset -= 1
            continue
        if token.type in (TokenType.OQUOTE, TokenType.CQUOTE):
            quoted = True
            continue
        kept.append(token)

    text = tokens_text(kept)
    if heredoc_indented:
        text = textwrap.dedent(text)
    text = text.strip()
    if quoted:
        text = _unescape_command(text)
    return text, start_offset, end_offset


def _range(attr: Attribute, filename: str, start_offset: int, end_offset: int) -> Range:
    start = attr.name_token.pos or Pos()
    last = attr.expr[-1] if attr.expr else attr.equals
    end = last.pos or start
    return Range(
        filename,
        Pos(start.line + start_offset, 1, start.offset),
        Pos(end.line + end_offset, 1, end.offset),
    )


def _block_subject(block: Block, filename: str) -> Range | None:
    pos = block.type_token.pos
    return Range(filename, pos, pos) if pos else None


def _read_params(attr: Attribute, filename: str, diags: Diagnostics) -> tuple[str, ...] | None:
    expr, expr_diags = parse_expression(attr.expr, filename)
    diags.extend(expr_diags)
    if expr is None:
        return None
    if not isinstance(expr, TupleExpr):
        diags.append(
            Diagnostic.error(
                "Invalid params",
                "The params argument must be a list of parameter names.",
                expr.range,
            )
        )
        return None

    names = []
    for item in expr.items:
        if not isinstance(item, VariableExpr):
            diags.append(
                Diagnostic.error(
                    "Invalid param element",
                    "Each parameter name must be an identifier.",
                    item.range,
                )
            )
            return None
        names.append(item.name)
    return tuple(names)


def _declaration(
    block: Block, filename: str, diags: Diagnostics, log: logging.Logger
) -> FunctionDeclaration | None:
    subject = _block_subject(block, filename)
    if len(block.labels) != 1:
        diags.append(
            Diagnostic.error(
                "Invalid custom_function block",
                f"A custom_function block needs exactly one label (its name), got {len(block.labels)}.",
                subject,
            )
        )
        return None
    name = block.labels[0]

    block_diags = Diagnostics()
    attrs: dict[str, Attribute] = {}
    for attr in block.body.attributes():
        if attr.name not in _REQUIRED:
            block_diags.append(
                Diagnostic.error(
                    "Unsupported argument",
                    f'An argument named "{attr.name}" is not expected here.',
                    attr.range and Range(filename, attr.range.start, attr.range.end),
                )
            )
            continue
        attrs[attr.name] = attr
    for nested in block.body.blocks():
        block_diags.append(
            Diagnostic.error(
                "Unsupported block type",
                f'Blocks of type "{nested.type}" are not expected here.',
                _block_subject(nested, filename),
            )
        )
    for required in _REQUIRED:
        if required not in attrs:
            block_diags.append(
                Diagnostic.error(
                    "Missing required argument",
                    f'The argument "{required}" is required, but no definition was found.',
                    subject,
                )
            )
    diags.extend(block_diags)
    if block_diags.has_errors():
        return None

    params = _read_params(attrs["params"], filename, diags)
    if params is None:
        return None

    command = attrs["command"]
    first = command.expr[0].type if command.expr else None
    if first not in (TokenType.OQUOTE, TokenType.OHEREDOC):
        diags.append(
            Diagnostic.error(
                "Invalid command",
                f'The command of custom_function "{name}" must be a quoted string or a heredoc.',
                subject,
            )
        )
        return None

    text, start_offset, end_offset = command_tokens_to_str(command.expr)
    log.debug("custom_function %s: command template [%s]", name, text)
    return FunctionDeclaration(
        name=name,
        params=params,
        command_template=text,
        source_range=_range(command, filename, start_offset, end_offset),
    )


def extract_declarations(
    file: File, logger: logging.Logger | None = None
) -> tuple[list[FunctionDeclaration], Diagnostics]:
    """Collect every well-formed `custom_function` declaration in a file.

    A malformed block adds diagnostics and is skipped; the rest are still
    returned.
    """
    log = logger or _logger
    diags = Diagnostics()
    declarations: list[FunctionDeclaration] = []
    seen: set[str] = set()
    for block in file.walk_blocks():
        if block.type != BLOCK_TYPE:
            continue
        decl = _declaration(block, file.filename, diags, log)
        if decl is None:
            continue
        if decl.name in seen:
            diags.append(
                Diagnostic.error(
                    "Duplicate custom_function",
                    f'A custom_function named "{decl.name}" was already declared.',
                    _block_subject(block, file.filename),
                )
            )
            continue
        seen.add(decl.name)
        declarations.append(decl)
    return declarations, diags
