"""Decode a config document into contexts.

A document holds several top-level sections:

    custom_function "greet" { ... }
    public_key "DEV2024" { ... }
    context "dev" { vars = { ... }  exports = { ... } }

Decoding only looks at `context` blocks. Custom functions are built first
so context values can call them alongside the built-ins; the other block
types are the editor's concern.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from injector.core.exceptions import ConfigFileError, DiagnosticsError, InjectorError
from injector.core.models import Context, Diagnostic, Diagnostics, Range
from injector.core.settings import DEFAULT_CONFIG_FILE
from injector.customfunc.decode import decode_file_functions
from injector.syntax.expressions import UNKNOWN, EvalContext, evaluate, parse_expression, to_string
from injector.syntax.functions import Function, builtin_functions
from injector.syntax.writer import Attribute, Block, parse_config

CONTEXT_BLOCK = "context"
_CONTEXT_ATTRIBUTES = ("vars", "exports")

_logger = logging.getLogger(__name__)


@dataclass
class ConfigFile:
    """The decoded contexts of a config document."""

    path: Path
    contexts: dict[str, Context] = field(default_factory=dict)
    functions: dict[str, Function] = field(default_factory=dict)
    diagnostics: Diagnostics = field(default_factory=Diagnostics)

    def context(self, name: str) -> Context:
        try:
            return self.contexts[name]
        except KeyError:
            raise InjectorError(f'context "{name}" not found in {self.path}') from None

    def context_names(self) -> list[str]:
        return list(self.contexts)


def _subject(block: Block, filename: str) -> Range | None:
    pos = block.type_token.pos
    return Range(filename, pos, pos) if pos else None


def _string_map(
    attr: Attribute, filename: str, ctx: EvalContext, diags: Diagnostics
) -> dict[str, str] | None:
    expr, parse_diags = parse_expression(attr.expr, filename)
    diags.extend(parse_diags)
    if expr is None:
        return None

    value, eval_diags = evaluate(expr, ctx)
    diags.extend(eval_diags)
    if value is UNKNOWN:
        return None
    if not isinstance(value, dict):
        diags.append(
            Diagnostic.error(
                "Incorrect attribute value type",
                f'Inappropriate value for attribute "{attr.name}": map of string required.',
                expr.range,
            )
        )
        return None

    result: dict[str, str] = {}
    for key, item in value.items():
        if item is None or isinstance(item, (list, dict)):
            diags.append(
                Diagnostic.error(
                    "Incorrect attribute value type",
                    f'Inappropriate value for element "{key}" of attribute "{attr.name}": string required.',
                    expr.range,
                )
            )
            continue
        result[key] = to_string(item)
    return result


def _decode_context(block: Block, filename: str, ctx: EvalContext, diags: Diagnostics) -> Context | None:
    subject = _subject(block, filename)
    if len(block.labels) != 1:
        diags.append(
            Diagnostic.error(
                "Invalid context block",
                f"A context block needs exactly one label (its name), got {len(block.labels)}.",
                subject,
            )
        )
        return None

    attrs: dict[str, Attribute] = {}
    for attr in block.body.attributes():
        if attr.name not in _CONTEXT_ATTRIBUTES:
            diags.append(
                Diagnostic.error(
                    "Unsupported argument",
                    f'An argument named "{attr.name}" is not expected here.',
                    subject,
                )
            )
            continue
        attrs[attr.name] = attr
    for nested in block.body.blocks():
        diags.append(
            Diagnostic.error(
                "Unsupported block type",
                f'Blocks of type "{nested.type}" are not expected here.',
                _subject(nested, filename),
            )
        )
    if "exports" not in attrs:
        diags.append(
            Diagnostic.error(
                "Missing required argument",
                'The argument "exports" is required, but no definition was found.',
                subject,
            )
        )
        return None

    exports = _string_map(attrs["exports"], filename, ctx, diags)
    variables: dict[str, str] | None = {}
    if "vars" in attrs:
        variables = _string_map(attrs["vars"], filename, ctx, diags)
    if exports is None or variables is None:
        return None
    return Context(name=block.labels[0], vars=variables, exports=exports)


def decode_config(
    src: str,
    filename: str,
    environ: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
    only_context: str | None = None,
) -> ConfigFile:
    """Decode document text.

    Args:
        src: Document text.
        filename: Name used in diagnostics.
        environ: Environment for `decrypt` and custom functions; defaults to
            the process environment.
        logger: Logger for progress messages.
        only_context: Decode just this context, so secrets of other contexts
            need no private key.

    Raises:
        DiagnosticsError: The document has error diagnostics.
        FunctionNameCollisionError: A custom function shadows a built-in.
    """
    log = logger or _logger
    file, diags = parse_config(src, filename)
    if diags.has_errors():
        raise DiagnosticsError(diags)

    builtins = builtin_functions(environ)
    custom, func_diags = decode_file_functions(file, builtins, environ, logger=log)
    diags.extend(func_diags)
    functions: dict[str, Function] = {**builtins, **custom}
    log.debug("decoded %d custom function(s) from %s", len(custom), filename)

    ctx = EvalContext(variables={}, functions=functions)
    config = ConfigFile(path=Path(filename), functions=functions, diagnostics=diags)
    for block in file.walk_blocks():
        if block.type != CONTEXT_BLOCK:
            continue
        if only_context is not None and block.labels[:1] != [only_context]:
            continue
        context = _decode_context(block, filename, ctx, diags)
        if context is None:
            continue
        if context.name in config.contexts:
            diags.append(
                Diagnostic.error(
                    "Duplicate context",
                    f'A context named "{context.name}" was already defined.',
                    _subject(block, filename),
                )
            )
            continue
        config.contexts[context.name] = context
        log.debug("decoded context %s with %d export(s)", context.name, len(context.exports))

    diags.raise_for_errors()
    return config


def load_config_file(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
    only_context: str | None = None,
) -> ConfigFile:
    """Read and decode a config document.

    Raises:
        ConfigFileError: The file cannot be read.
        DiagnosticsError: The document has error diagnostics.
    """
    path = Path(path or DEFAULT_CONFIG_FILE)
    try:
        src = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(f"error reading config file at path {path}: {e}") from e
    return decode_config(src, str(path), environ=environ, logger=logger, only_context=only_context)
