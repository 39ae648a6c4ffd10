"""Lexer for the config document syntax.

The scanner keeps a stack of modes (file body, quoted string, heredoc,
interpolation) and never drops input: every character ends up either in a
token's text or in the whitespace recorded before it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from injector.core.models import Diagnostic, Diagnostics, Pos, Range
from injector.syntax.tokens import Token, Tokens, TokenType

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_NUMBER_RE = re.compile(r"[0-9]+(?:\.[0-9]+)?(?:[eE][+-]?[0-9]+)?")
_HEREDOC_RE = re.compile(r"<<(-?)([A-Za-z_][A-Za-z0-9_-]*)(\r?\n)")

# Longest match first.
_PUNCTUATION: list[tuple[str, TokenType]] = [
    ("...", TokenType.ELLIPSIS),
    ("=>", TokenType.FAT_ARROW),
    ("==", TokenType.OPERATOR),
    ("!=", TokenType.OPERATOR),
    ("<=", TokenType.OPERATOR),
    (">=", TokenType.OPERATOR),
    ("&&", TokenType.OPERATOR),
    ("||", TokenType.OPERATOR),
    ("[", TokenType.OBRACK),
    ("]", TokenType.CBRACK),
    ("(", TokenType.OPAREN),
    (")", TokenType.CPAREN),
    (",", TokenType.COMMA),
    (":", TokenType.COLON),
    (".", TokenType.DOT),
    ("?", TokenType.QUESTION),
    ("=", TokenType.EQUAL),
    ("!", TokenType.OPERATOR),
    ("<", TokenType.OPERATOR),
    (">", TokenType.OPERATOR),
    ("+", TokenType.OPERATOR),
    ("-", TokenType.OPERATOR),
    ("*", TokenType.OPERATOR),
    ("/", TokenType.OPERATOR),
    ("%", TokenType.OPERATOR),
]

_FILE = "file"
_INTERP = "interp"
_QUOTED = "quoted"
_HEREDOC = "heredoc"
_TEMPLATE = "template"


@dataclass
class _Frame:
    """One entry of the lexer mode stack."""

    kind: str
    depth: int = 0
    marker: str = ""
    line_start: bool = True
    opened_at: Pos | None = None


class _Lexer:
    def __init__(self, src: str, filename: str, start: Pos, root: str) -> None:
        self._src = src
        self._filename = filename
        self._i = 0
        self._line = start.line
        self._column = start.column
        self._base_offset = start.offset
        self._space = ""
        self._frames = [_Frame(root, opened_at=start)]
        self.tokens: Tokens = []
        self.diags = Diagnostics()

    def run(self) -> tuple[Tokens, Diagnostics]:
        while self._i < len(self._src):
            frame = self._frames[-1]
            if frame.kind in (_FILE, _INTERP):
                self._scan_normal(frame)
            elif frame.kind == _QUOTED:
                self._scan_quoted()
            else:
                self._scan_heredoc(frame)

        frame = self._frames[-1]
        if frame.kind == _QUOTED:
            self._error(
                "Unterminated template string",
                "No closing marker was found for the string.",
                frame.opened_at,
            )
        elif frame.kind == _HEREDOC:
            self._error(
                "Unterminated template string",
                f'There is no closing marker "{frame.marker}" for this heredoc.',
                frame.opened_at,
            )
        elif frame.kind == _INTERP:
            self._error(
                "Unterminated template interpolation",
                'Expected a closing brace "}" for this interpolation sequence.',
                frame.opened_at,
            )

        self.tokens.append(Token(TokenType.EOF, "", self._space, self._pos()))
        return self.tokens, self.diags

    def _pos(self) -> Pos:
        return Pos(self._line, self._column, self._base_offset + self._i)

    def _error(self, summary: str, detail: str, pos: Pos | None = None) -> None:
        pos = pos or self._pos()
        self.diags.append(Diagnostic.error(summary, detail, Range(self._filename, pos, pos)))

    def _advance(self, text: str) -> None:
        newlines = text.count("\n")
        if newlines:
            self._line += newlines
            self._column = len(text) - text.rfind("\n")
        else:
            self._column += len(text)
        self._i += len(text)

    def _emit(self, token_type: TokenType, text: str) -> Token:
        token = Token(token_type, text, self._space, self._pos())
        self._space = ""
        self._advance(text)
        self.tokens.append(token)
        return token

    def _push(self, kind: str, marker: str = "") -> None:
        self._frames.append(_Frame(kind, marker=marker, opened_at=self._pos()))

    def _scan_normal(self, frame: _Frame) -> None:
        src, i = self._src, self._i
        ch = src[i]

        if ch in " \t":
            self._space += ch
            self._advance(ch)
            return

        if ch == "\n" or src.startswith("\r\n", i):
            self._emit(TokenType.NEWLINE, "\r\n" if ch == "\r" else "\n")
            return

        # Line comments own their newline.
        if ch == "#" or src.startswith("//", i):
            end = src.find("\n", i)
            self._emit(TokenType.COMMENT, src[i:] if end == -1 else src[i : end + 1])
            return

        if src.startswith("/*", i):
            end = src.find("*/", i + 2)
            if end == -1:
                self._error("Unterminated comment", "There is no closing */ for this comment.")
                self._emit(TokenType.COMMENT, src[i:])
            else:
                self._emit(TokenType.COMMENT, src[i : end + 2])
            return

        if ch == '"':
            self._push(_QUOTED)
            self._emit(TokenType.OQUOTE, ch)
            return

        m = _HEREDOC_RE.match(src, i)
        if m:
            self._push(_HEREDOC, marker=m.group(2))
            self._emit(TokenType.OHEREDOC, m.group(0))
            return

        if ch == "{":
            frame.depth += 1
            self._emit(TokenType.OBRACE, ch)
            return

        if ch == "}":
            if frame.kind == _INTERP and frame.depth == 0:
                self._frames.pop()
                self._emit(TokenType.TEMPLATE_SEQ_END, ch)
            else:
                frame.depth = max(frame.depth - 1, 0)
                self._emit(TokenType.CBRACE, ch)
            return

        m = _NUMBER_RE.match(src, i)
        if m:
            self._emit(TokenType.NUMBER_LIT, m.group(0))
            return

        m = _IDENT_RE.match(src, i)
        if m:
            self._emit(TokenType.IDENT, m.group(0))
            return

        for text, token_type in _PUNCTUATION:
            if src.startswith(text, i):
                self._emit(token_type, text)
                return

        self._error("Invalid character", f"The character {ch!r} is not valid here.")
        self._emit(TokenType.INVALID, ch)

    def _scan_quoted(self) -> None:
        src, i, n = self._src, self._i, len(self._src)
        j = i
        while j < n:
            c = src[j]
            if c == '"' or c == "\n" or src.startswith("\r\n", j):
                break
            if c == "\\":
                j += 2
                continue
            if src.startswith("$${", j) or src.startswith("%%{", j):
                j += 3
                continue
            if src.startswith("${", j) or src.startswith("%{", j):
                break
            j += 1
        j = min(j, n)

        if j > i:
            self._emit(TokenType.QUOTED_LIT, src[i:j])
            return

        if src[i] == '"':
            self._frames.pop()
            self._emit(TokenType.CQUOTE, '"')
        elif src.startswith("${", i):
            self._emit(TokenType.TEMPLATE_INTERP, "${")
            self._push(_INTERP)
        elif src.startswith("%{", i):
            self._emit(TokenType.TEMPLATE_CONTROL, "%{")
            self._push(_INTERP)
        else:
            self._error(
                "Unterminated template string",
                "Quoted strings may not be split over multiple lines. "
                "To produce a multi-line string, use a heredoc.",
            )
            self._frames.pop()

    def _scan_heredoc(self, frame: _Frame) -> None:
        src, i, n = self._src, self._i, len(self._src)

        if frame.kind == _HEREDOC and frame.line_start:
            end = src.find("\n", i)
            line = (src[i:] if end == -1 else src[i:end]).rstrip("\r")
            if line.strip() == frame.marker:
                self._frames.pop()
                self._emit(TokenType.CHEREDOC, line)
                return
        frame.line_start = False

        j = i
        while j < n:
            if src.startswith("$${", j) or src.startswith("%%{", j):
                j += 3
                continue
            if src.startswith("${", j) or src.startswith("%{", j):
                break
            if src[j] == "\n":
                j += 1
                frame.line_start = True
                break
            j += 1
        j = min(j, n)

        if j > i:
            self._emit(TokenType.STRING_LIT, src[i:j])
        elif src.startswith("${", i):
            self._emit(TokenType.TEMPLATE_INTERP, "${")
            self._push(_INTERP)
        else:
            self._emit(TokenType.TEMPLATE_CONTROL, "%{")
            self._push(_INTERP)


def tokenize(src: str, filename: str = "<input>", start: Pos | None = None) -> tuple[Tokens, Diagnostics]:
    """Tokenize a config document.

    Returns the token stream (always terminated by an EOF token) and any
    lexical diagnostics.
    """
    return _Lexer(src, filename, start or Pos(), _FILE).run()


def tokenize_template(
    text: str, filename: str = "<template>", start: Pos | None = None
) -> tuple[Tokens, Diagnostics]:
    """Tokenize bare template text, as found between heredoc markers.

    Literal runs become STRING_LIT tokens; `${ ... }` sequences are lexed as
    expressions.
    """
    return _Lexer(text, filename, start or Pos(), _TEMPLATE).run()
