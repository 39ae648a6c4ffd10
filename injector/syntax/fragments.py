"""Helpers for turning raw text into re-serializable tokens."""

from __future__ import annotations

from injector.core.models import Diagnostics
from injector.syntax.expressions import parse_expression
from injector.syntax.lexer import tokenize
from injector.syntax.tokens import Token, Tokens, strip_eof
from injector.syntax.writer import Attribute, Body, File, parse_tokens


def _parse_fragment(text: str, filename: str) -> tuple[File | None, Tokens, Diagnostics]:
    tokens, diags = tokenize(text, filename)
    if diags.has_errors():
        return None, tokens, diags

    file, parse_diags = parse_tokens(tokens, filename)
    diags.extend(parse_diags)
    if diags.has_errors():
        return None, tokens, diags

    for attr in _walk_attributes(file.body):
        _, expr_diags = parse_expression(attr.expr, filename)
        diags.extend(expr_diags)
    if diags.has_errors():
        return None, tokens, diags
    return file, tokens, diags


def _walk_attributes(body: Body):
    for item in body.items:
        if isinstance(item, Attribute):
            yield item
    for block in body.blocks():
        yield from _walk_attributes(block.body)


def _copy(tokens: Tokens) -> Tokens:
    return [Token(t.type, t.text, t.space, t.pos) for t in tokens]


def tokenize_fragment(text: str, filename: str = "<fragment>") -> tuple[Tokens | None, Diagnostics]:
    """Tokenize text that must be a valid document on its own.

    Returns the tokens without the trailing EOF, or None with the
    diagnostics explaining why the fragment was rejected.
    """
    file, tokens, diags = _parse_fragment(text, filename)
    if file is None:
        return None, diags
    return _copy(strip_eof(tokens)), diags


def extract_attribute_value_tokens(
    text: str, name: str, filename: str = "<fragment>"
) -> tuple[Tokens | None, Diagnostics]:
    """Return the tokens after `name =` in a fragment.

    A missing attribute gives None with no error diagnostics, so callers can
    tell "absent" from "malformed".
    """
    file, _, diags = _parse_fragment(text, filename)
    if file is None:
        return None, diags
    attr = file.body.get_attribute(name)
    if attr is None:
        return None, diags
    return _copy(attr.expr), diags
