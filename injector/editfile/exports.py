"""The `exports` object of a context block, as editable records.

Given

    context "dev" {
      exports = {
        # database
        DB_USER     = "app"
        DB_PASSWORD = decrypt("DEV2024", "AQBdqk1S...") # rotated 2024-01
      }
    }

the exports tokens become one record per line: a comment record, then two
key records. Each record keeps its exact text, so writing the list back
changes nothing but the records that were edited.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from injector.core.models import Diagnostic, Diagnostics
from injector.syntax.fragments import tokenize_fragment
from injector.syntax.lexer import tokenize
from injector.syntax.tokens import CLOSERS, OPENERS, Token, Tokens, TokenType, strip_eof
from injector.syntax.writer import INDENT, Attribute, Block, File

EXPORT_NAME_RE = re.compile(r"^[A-Z_][A-Z0-9_]*$")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

_logger = logging.getLogger(__name__)


def valid_export_name(name: str) -> bool:
    """True if `name` can be used as an environment variable."""
    return EXPORT_NAME_RE.match(name) is not None


@dataclass
class ExportRecord:
    """One line (or multi-line value) of an exports object.

    `name` holds the key with its indentation and the space before `=`.
    `separator` is the comma after the value, if any, with its spacing.
    A record with an empty `value` is passed through verbatim: `name` is
    then a comment (when `is_comment`) or a blank line's whitespace.
    """

    name: str
    value: str = ""
    is_comment: bool = False
    separator: str = ""
    trailing_comment: str = ""
    eol: str = "\n"

    @property
    def key(self) -> str:
        key = self.name.strip()
        if len(key) >= 2 and key[0] == key[-1] == '"':
            return key[1:-1]
        return key

    @property
    def is_quoted(self) -> bool:
        return self.key != self.name.strip()

    @property
    def is_passthrough(self) -> bool:
        return self.value == ""

    def set_value(self, value: str) -> None:
        self.value = value

    def _render(self, name: str, separator: str) -> str:
        if self.is_passthrough:
            text = self.name
        else:
            text = f"{name}={self.value}{separator}{self.trailing_comment}"
        if not text.endswith("\n"):
            text += self.eol
        return text

    def fragment(self) -> str:
        """The record as a standalone attribute: no separator, bare key."""
        name = self.name
        if self.is_quoted:
            name = name.replace(f'"{self.key}"', self.key, 1)
        return self._render(name, "")

    def __str__(self) -> str:
        return self._render(self.name, self.separator)


@dataclass
class ExportRecordList:
    """Ordered export records plus the layout of the surrounding braces."""

    records: list[ExportRecord] = field(default_factory=list)
    open_space: str = ""
    open_eol_space: str = ""
    close_space: str = ""
    multiline: bool = True
    close_on_last_line: bool = False

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def keys(self) -> list[str]:
        return [r.key for r in self.records if not r.is_passthrough]

    def exists(self, name: str) -> bool:
        return self.find(name) is not None

    def find(self, name: str) -> ExportRecord | None:
        for record in self.records:
            if not record.is_passthrough and record.key == name:
                return record
        return None

    def duplicates(self) -> list[str]:
        seen: set[str] = set()
        dupes: list[str] = []
        for key in self.keys():
            if key in seen and key not in dupes:
                dupes.append(key)
            seen.add(key)
        return dupes

    def record_indent(self) -> str:
        """Indentation for a new record, copied from existing ones."""
        for record in self.records:
            if not record.is_passthrough:
                return record.name[: len(record.name) - len(record.name.lstrip())]
        return self.close_space + INDENT

    def append(self, name: str, value: str) -> ExportRecord:
        record = ExportRecord(name=f"{self.record_indent()}{name} ", value=value)
        self.records.append(record)
        return record

    def __str__(self) -> str:
        body = "".join(str(r) for r in self.records)
        return f"{{{self.open_eol_space}\n{body}{self.close_space}}}"

    def tokens(self) -> tuple[Tokens | None, Diagnostics]:
        """Re-tokenize the list as an object expression.

        Every record is checked on its own first; if any record is invalid,
        no tokens are returned.
        """
        diags = Diagnostics()
        for record in self.records:
            if record.is_quoted and not IDENTIFIER_RE.match(record.key):
                diags.append(
                    Diagnostic.error(
                        "unsupported export key",
                        f"The quoted key {record.name.strip()} is not an identifier and cannot be edited.",
                    )
                )
                continue
            _, record_diags = tokenize_fragment(record.fragment(), "<export record>")
            diags.extend(record_diags)
        if diags.has_errors():
            return None, diags

        tokens, lex_diags = tokenize(str(self), "<exports>")
        diags.extend(lex_diags)
        if diags.has_errors():
            return None, diags
        tokens = strip_eof(tokens)
        tokens[0] = Token(TokenType.OBRACE, "{", self.open_space)
        return tokens, diags


class _State(Enum):
    AT_KEY = "AtKey"
    AT_VALUE = "AtValue"


class _RecordScanner:
    """State machine turning object-body tokens into records.

    AtKey collects the key up to `=`; a comment or newline seen there is a
    pass-through record. AtValue collects the value until a newline or comma
    at bracket depth zero, so nested objects and heredocs stay in one record.
    """

    def __init__(self) -> None:
        self.records: list[ExportRecord] = []
        self._reset()

    def _reset(self) -> None:
        self.state = _State.AT_KEY
        self.key = ""
        self.value = ""
        self.separator = ""
        self.trailing = ""
        self.depth = 0

    def _emit_value(self, eol: Token | None, eol_text: str = "\n") -> None:
        value, separator = self.value, self.separator
        if eol is not None and not self.trailing:
            if separator:
                separator += eol.space
            else:
                value += eol.space
        self.records.append(
            ExportRecord(
                name=self.key,
                value=value,
                separator=separator,
                trailing_comment=self.trailing,
                eol=eol.text if eol is not None else eol_text,
            )
        )
        self._reset()

    def _emit_passthrough(self, text: str, is_comment: bool, eol: str = "\n") -> None:
        self.records.append(ExportRecord(name=text, is_comment=is_comment, eol=eol))
        self._reset()

    def feed(self, token: Token) -> None:
        kind = token.type
        if self.state is _State.AT_KEY:
            if kind is TokenType.NEWLINE:
                last = self.records[-1] if self.records else None
                if not self.key and last is not None and last.is_comment and not last.name.endswith("\n"):
                    # Newline closing a /* block comment */ line.
                    last.name += str(token)
                    return
                text = self.key + token.space
                self._emit_passthrough(text + token.text, is_comment=False, eol=token.text)
            elif kind is TokenType.COMMENT:
                self._emit_passthrough(self.key + str(token), is_comment=True)
            elif kind is TokenType.EQUAL:
                self.key += token.space
                self.state = _State.AT_VALUE
            else:
                self.key += str(token)
            return

        if self.trailing:
            # Only a newline may follow a block comment that trails a value.
            if kind is TokenType.NEWLINE:
                self.trailing += str(token)
                self._emit_value(None)
            else:
                self.trailing += str(token)
            return

        if self.separator and kind not in (TokenType.NEWLINE, TokenType.COMMENT):
            # `A = "x", B = "y"`: the next entry starts on the same line.
            self._emit_value(None, eol_text="")
            self.feed(token)
            return

        if self.depth == 0 and kind is TokenType.COMMA:
            self.separator = str(token)
            return
        if kind in OPENERS:
            self.depth += 1
        elif kind in CLOSERS:
            self.depth = max(self.depth - 1, 0)
        elif self.depth == 0 and kind is TokenType.NEWLINE:
            self._emit_value(token)
            return
        elif self.depth == 0 and kind is TokenType.COMMENT:
            self.trailing = str(token)
            if token.text.endswith("\n"):
                self._emit_value(None)
            return
        self.value += str(token)

    def finish(self) -> None:
        if self.state is _State.AT_VALUE and self.value:
            self._emit_value(None)
        elif self.key.strip():
            self._emit_passthrough(self.key, is_comment=False)


def parse_exports(tokens: Tokens) -> ExportRecordList:
    """Split the tokens of an `{ ... }` object into export records.

    Input is assumed to be syntactically valid; duplicates are kept in order.
    """
    body = list(tokens)
    result = ExportRecordList()
    if body and body[0].type is TokenType.OBRACE:
        result.open_space = body.pop(0).space
    if body and body[-1].type is TokenType.CBRACE:
        result.close_space = body.pop().space
    ends_line = [t.type is TokenType.NEWLINE or (t.type is TokenType.COMMENT and t.text.endswith("\n")) for t in body]
    result.multiline = any(ends_line)
    result.close_on_last_line = bool(body) and not ends_line[-1]
    if body and body[0].type is TokenType.NEWLINE:
        result.open_eol_space = body.pop(0).space

    scanner = _RecordScanner()
    for token in body:
        scanner.feed(token)
    scanner.finish()
    result.records = scanner.records
    return result


class Exports:
    """Reads and edits the exports of one named context."""

    def __init__(self, file: File, context_name: str, logger: logging.Logger | None = None) -> None:
        self._file = file
        self.context_name = context_name
        self._logger = logger or _logger
        self._records: ExportRecordList | None = None
        self._diags: Diagnostics | None = None

    def _find_context(self) -> tuple[Block | None, Diagnostics]:
        block = self._file.body.first_matching_block("context", [self.context_name])
        if block is None:
            return None, Diagnostics(
                [
                    Diagnostic.error(
                        "could not find context block",
                        f"The context block {self.context_name} cannot be found.",
                    )
                ]
            )
        return block, Diagnostics()

    def _find_exports_attr(self) -> tuple[Attribute | None, Diagnostics]:
        block, diags = self._find_context()
        if block is None:
            return None, diags
        attr = block.body.get_attribute("exports")
        if attr is None:
            diags.append(
                Diagnostic.error(
                    "could not find exports object",
                    f'The object "exports" cannot be found in the "{self.context_name}" context block.',
                )
            )
        return attr, diags

    def get_all(self) -> tuple[ExportRecordList | None, Diagnostics]:
        """Parse the exports object once and cache the result."""
        if self._diags is not None:
            return self._records, self._diags

        attr, diags = self._find_exports_attr()
        if attr is None:
            return None, diags

        expr = attr.expr
        if not expr or expr[0].type is not TokenType.OBRACE or expr[-1].type is not TokenType.CBRACE:
            diags.append(
                Diagnostic.error(
                    "exports is not an object",
                    f'The "exports" attribute of context "{self.context_name}" must be written as '
                    "an object literal ({ KEY = value ... }) to be edited.",
                    attr.range,
                )
            )
            return None, diags

        records = parse_exports(expr)
        if not records.multiline:
            # `exports = {}` or `{ A = "x", B = "y" }`: lay records out one per line.
            for record in records:
                if not record.is_passthrough:
                    record.name = attr.name_token.space + INDENT + record.name.lstrip()
                    record.separator = record.separator.strip()
                    record.eol = "\n"
        if not records.multiline or records.close_on_last_line:
            records.close_space = attr.name_token.space
        for name in records.duplicates():
            diags.append(
                Diagnostic.error(
                    "duplicate export",
                    f'The export "{name}" is defined more than once in context "{self.context_name}". '
                    "Remove the duplicate before editing.",
                    attr.range,
                )
            )

        # Cached even with errors; re-parsing would find the same problems.
        self._records = records
        self._diags = diags
        return records, diags

    def names(self) -> tuple[list[str], Diagnostics]:
        records, diags = self.get_all()
        if records is None:
            return [], diags
        return records.keys(), diags

    def exists(self, export_name: str) -> tuple[bool, Diagnostics]:
        records, diags = self.get_all()
        if records is None or diags.has_errors():
            return False, diags
        return records.exists(export_name), diags

    def set_encrypted_value(
        self, export_name: str, pubkey_name: str, encrypted_b64: str, overwrite: bool = False
    ) -> Diagnostics:
        """Set `export_name` to `decrypt("<pubkey_name>", "<encrypted_b64>")`.

        An existing export is replaced only when `overwrite` is set. Nothing
        in the document changes unless the whole edit succeeds.
        """
        if not valid_export_name(export_name):
            return Diagnostics(
                [
                    Diagnostic.error(
                        "invalid export name",
                        f'The export named "{export_name}" in context block "{self.context_name}" cannot be '
                        "added/overwritten in config file. An export must be a valid environment variable name.",
                    )
                ]
            )

        cached, diags = self.get_all()
        if cached is None or diags.has_errors():
            return diags

        if cached.exists(export_name) and not overwrite:
            diags = Diagnostics(diags)
            diags.append(
                Diagnostic.error(
                    "cannot overwrite export",
                    f'export "{export_name}" already exists, and overwrite not requested',
                )
            )
            return diags

        records = copy.deepcopy(cached)
        value = f' decrypt("{pubkey_name}", "{encrypted_b64}")'
        record = records.find(export_name)
        if record is not None:
            record.set_value(value)
        else:
            records.append(export_name, value)

        tokens, token_diags = records.tokens()
        if tokens is None:
            return token_diags

        block, find_diags = self._find_context()
        if block is None:
            return find_diags
        block.body.set_attribute_raw("exports", tokens)
        self._records = records
        self._logger.debug(
            "%s export %s in context %s", "updated" if record else "added", export_name, self.context_name
        )
        return token_diags
