"""Edit a config document in place.

The document is parsed once per editor into a format-preserving tree.
Every mutating operation either fully succeeds and rewrites the file, or
returns error diagnostics and leaves the file untouched.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import logging
import os
import re
import stat
import tempfile
from pathlib import Path

from injector.core.crypto import Encryptor
from injector.core.exceptions import ConfigFileError, CryptoError
from injector.core.models import Diagnostic, Diagnostics
from injector.editfile.exports import Exports
from injector.syntax.fragments import extract_attribute_value_tokens
from injector.syntax.tokens import Token, TokenType
from injector.syntax.writer import Attribute, Block, Body, File, Unstructured, parse_config

PUBLIC_KEY_BLOCK = "public_key"
CONTEXT_BLOCK = "context"
FUNCTION_BLOCK = "custom_function"

# Two characters minimum: a letter, then letters or digits.
PUBKEY_NAME_RE = re.compile(r"^[A-Z][A-Z0-9]+$")

_SECTION_ORDER = (FUNCTION_BLOCK, PUBLIC_KEY_BLOCK, CONTEXT_BLOCK)
_WRAP = 64

_logger = logging.getLogger(__name__)


def valid_pubkey_name(name: str) -> bool:
    return PUBKEY_NAME_RE.match(name) is not None


def _newline() -> Token:
    return Token(TokenType.NEWLINE, "\n")


def _section(block: Block) -> int:
    try:
        return _SECTION_ORDER.index(block.type)
    except ValueError:
        return len(_SECTION_ORDER)


def sort_blocks(file: File) -> File:
    """Return `file` with its top-level blocks in canonical order.

    custom_function blocks come first, then public_key, then context, then
    anything else, each group sorted by first label. Top-level attributes
    and detached comments stay ahead of the blocks, in file order. Blocks are
    separated by exactly one blank line.
    """
    preamble = []
    blocks: list[Block] = []
    for item in file.body.items:
        if isinstance(item, Block):
            blocks.append(item)
        elif isinstance(item, Unstructured):
            if any(t.type is not TokenType.NEWLINE for t in item.tokens):
                preamble.append(item)
        else:
            preamble.append(item)

    # Stable: equal keys keep file order.
    blocks.sort(key=lambda b: (_section(b), b.labels[0] if b.labels else ""))

    items = []
    for item in preamble:
        tokens = item.build_tokens()
        if tokens and not tokens[-1].text.endswith("\n"):
            if isinstance(item, Attribute):
                item.end = [*item.end, _newline()]
            else:
                item = Unstructured([*item.tokens, _newline()])
        items.append(item)
    for i, block in enumerate(blocks):
        if not block.end:
            block.end = [_newline()]
        if i > 0 or preamble:
            items.append(Unstructured([_newline()]))
        items.append(block)

    return File(
        body=Body(items=items, default_indent=file.body.default_indent),
        eof=Token(TokenType.EOF, ""),
        filename=file.filename,
    )


def wrap_base64(data: bytes) -> str:
    """`base64 = <<-EOT ... EOT` text with at most 64 characters per line."""
    encoded = base64.b64encode(data).decode("ascii")
    lines = [f"    {encoded[i : i + _WRAP]}" for i in range(0, len(encoded), _WRAP)]
    return "base64 = <<-EOT\n" + "\n".join(lines) + "\n  EOT\n"


def write_atomic(path: Path, text: str) -> None:
    """Replace `path` with `text` so readers never see a partial file.

    The original file's permission bits are kept.
    """
    mode = stat.S_IMODE(path.stat().st_mode) if path.exists() else None
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp)
        raise


class EditConfigFile:
    """Format-preserving editor for one config document.

    Not safe for concurrent use; give each caller its own instance.
    """

    def __init__(self, path: Path | str, logger: logging.Logger | None = None) -> None:
        self.path = Path(path)
        self._logger = logger or _logger
        self._file: File | None = None
        self._exports: dict[str, Exports] = {}

    def _parse(self) -> tuple[File | None, Diagnostics]:
        """Parse the document on first use and return the cached tree.

        Raises:
            ConfigFileError: The file cannot be read.
        """
        if self._file is not None:
            return self._file, Diagnostics()
        try:
            src = self.path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigFileError(f"error reading config file at path {self.path}: {e}") from e

        file, diags = parse_config(src, str(self.path))
        if diags.has_errors():
            return None, diags
        self._file = file
        self._logger.debug("parsed %s", self.path)
        return file, diags

    def _write(self, file: File) -> None:
        self._file = file
        try:
            write_atomic(self.path, file.text())
        except OSError as e:
            raise ConfigFileError(f"cannot write config file {self.path}: {e}") from e
        self._logger.info("wrote %s", self.path)

    def _exports_for(self, file: File, context_name: str) -> Exports:
        if context_name not in self._exports:
            self._exports[context_name] = Exports(file, context_name, self._logger)
        return self._exports[context_name]

    def _labels_of(self, block_type: str) -> tuple[list[str], Diagnostics]:
        file, diags = self._parse()
        if file is None:
            return [], diags
        names = [b.labels[0] for b in file.body.blocks() if b.type == block_type and b.labels]
        return names, diags

    def context_names(self) -> tuple[list[str], Diagnostics]:
        """Labels of all context blocks, in file order."""
        return self._labels_of(CONTEXT_BLOCK)

    def public_key_names(self) -> tuple[list[str], Diagnostics]:
        """Labels of all public_key blocks, in file order."""
        return self._labels_of(PUBLIC_KEY_BLOCK)

    def export_names(self, context_name: str) -> tuple[list[str], Diagnostics]:
        """Export keys of one context, in file order."""
        file, diags = self._parse()
        if file is None:
            return [], diags
        names, export_diags = self._exports_for(file, context_name).names()
        diags.extend(export_diags)
        return names, diags

    def sort(self) -> Diagnostics:
        """Put the blocks in canonical order and rewrite the file."""
        file, diags = self._parse()
        if file is None:
            return diags
        self._exports.clear()
        self._write(sort_blocks(file))
        return diags

    def add_public_key(self, name: str, key_material: bytes, overwrite: bool = False) -> Diagnostics:
        """Add a `public_key` block holding `key_material`, base64 encoded.

        With `overwrite`, an existing block of the same name is replaced.
        """
        if not valid_pubkey_name(name):
            return Diagnostics(
                [
                    Diagnostic.error(
                        "invalid public_key name",
                        f'cannot add public key "{name}" to config file, name of public key must consist of '
                        "an uppercase letter followed by uppercase letters and numbers",
                    )
                ]
            )

        file, diags = self._parse()
        if file is None:
            return diags

        body = file.body
        existing = body.first_matching_block(PUBLIC_KEY_BLOCK, [name])
        if existing is not None and not overwrite:
            diags.append(
                Diagnostic.error(
                    "cannot overwrite public_key block",
                    f"cannot overwrite existing public_key block named {name}.",
                )
            )
            return diags

        tokens, token_diags = extract_attribute_value_tokens(wrap_base64(key_material), "base64")
        diags.extend(token_diags)
        if tokens is None or diags.has_errors():
            return diags

        block = Block.new(PUBLIC_KEY_BLOCK, [name])
        block.body.set_attribute_raw("base64", tokens)
        if existing is not None:
            block.lead = existing.lead
            body.remove_block(existing)
        body.append_block(block)

        self._exports.clear()
        self._write(sort_blocks(file))
        self._logger.info("%s public_key %s", "replaced" if existing else "added", name)
        return diags

    def _get_pubkey(self, file: File, name: str) -> tuple[bytes | None, Diagnostics]:
        diags = Diagnostics()
        block = file.body.first_matching_block(PUBLIC_KEY_BLOCK, [name])
        if block is None:
            diags.append(
                Diagnostic.error("Invalid public_key block", f"A public_key block named {name} cannot be found")
            )
            return None, diags
        attr = block.body.get_attribute("base64")
        if attr is None:
            diags.append(
                Diagnostic.error(
                    "Invalid public_key block",
                    f'The public_key block named {name} has no "base64" attribute',
                    block.range,
                )
            )
            return None, diags

        text = "".join(
            t.text for t in attr.expr if t.type in (TokenType.STRING_LIT, TokenType.QUOTED_LIT)
        )
        encoded = "".join(text.split())
        try:
            return base64.b64decode(encoded, validate=True), diags
        except binascii.Error as e:
            diags.append(
                Diagnostic.error(
                    "Cannot base64 decode",
                    f'While processing public_key "{name}", could not base64 decode "{encoded}": {e}',
                )
            )
            return None, diags

    def add_secret(
        self,
        context_name: str,
        export_name: str,
        secret: str,
        pubkey_name: str,
        overwrite: bool = False,
    ) -> Diagnostics:
        """Encrypt `secret` to a public key and store it as an export.

        The export becomes `decrypt("<pubkey_name>", "<ciphertext>")` in the
        context's exports object.
        """
        file, diags = self._parse()
        if file is None:
            return diags

        pubkey, key_diags = self._get_pubkey(file, pubkey_name)
        diags.extend(key_diags)
        if pubkey is None:
            return diags

        try:
            ciphertext = Encryptor(pubkey).encrypt(secret.encode("utf-8"))
        except CryptoError as e:
            diags.append(
                Diagnostic.error(
                    "Could not encrypt",
                    f'Could not encrypt secret using public_key "{pubkey_name}": {e}',
                )
            )
            return diags
        encrypted = base64.b64encode(ciphertext).decode("ascii")

        set_diags = self._exports_for(file, context_name).set_encrypted_value(
            export_name, pubkey_name, encrypted, overwrite
        )
        diags.extend(set_diags)
        if diags.has_errors():
            return diags

        self._write(file)
        self._logger.info("set export %s in context %s", export_name, context_name)
        return diags
