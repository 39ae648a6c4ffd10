"""Token types and token streams."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from injector.core.models import Pos


class TokenType(Enum):
    """Kinds of tokens produced by the lexer."""

    OBRACE = "OBrace"
    CBRACE = "CBrace"
    OBRACK = "OBrack"
    CBRACK = "CBrack"
    OPAREN = "OParen"
    CPAREN = "CParen"
    OQUOTE = "OQuote"
    CQUOTE = "CQuote"
    OHEREDOC = "OHeredoc"
    CHEREDOC = "CHeredoc"
    QUOTED_LIT = "QuotedLit"
    STRING_LIT = "StringLit"
    TEMPLATE_INTERP = "TemplateInterp"
    TEMPLATE_CONTROL = "TemplateControl"
    TEMPLATE_SEQ_END = "TemplateSeqEnd"
    NUMBER_LIT = "NumberLit"
    IDENT = "Ident"
    EQUAL = "Equal"
    COMMA = "Comma"
    COLON = "Colon"
    DOT = "Dot"
    QUESTION = "Question"
    ELLIPSIS = "Ellipsis"
    FAT_ARROW = "FatArrow"
    OPERATOR = "Operator"
    COMMENT = "Comment"
    NEWLINE = "Newline"
    EOF = "EOF"
    INVALID = "Invalid"


OPENERS = frozenset(
    {
        TokenType.OBRACE,
        TokenType.OBRACK,
        TokenType.OPAREN,
        TokenType.OQUOTE,
        TokenType.OHEREDOC,
        TokenType.TEMPLATE_INTERP,
        TokenType.TEMPLATE_CONTROL,
    }
)

CLOSERS = frozenset(
    {
        TokenType.CBRACE,
        TokenType.CBRACK,
        TokenType.CPAREN,
        TokenType.CQUOTE,
        TokenType.CHEREDOC,
        TokenType.TEMPLATE_SEQ_END,
    }
)


@dataclass
class Token:
    """A lexical token.

    `space` is the exact whitespace that preceded the token on its line, so
    writing `space + text` for every token reproduces the source verbatim.
    """

    type: TokenType
    text: str
    space: str = ""
    pos: Pos | None = None

    def __str__(self) -> str:
        return self.space + self.text


Tokens = list[Token]


def tokens_text(tokens: Iterable[Token]) -> str:
    """Render tokens back to source text."""
    return "".join(str(t) for t in tokens)


def strip_eof(tokens: Tokens) -> Tokens:
    """Drop a trailing EOF token, if present."""
    if tokens and tokens[-1].type is TokenType.EOF:
        return tokens[:-1]
    return tokens
