"""Data models for custom functions."""

from __future__ import annotations

from dataclasses import dataclass

from injector.core.models import Range

BLOCK_TYPE = "custom_function"


@dataclass(frozen=True)
class FunctionDeclaration:
    """A `custom_function` block, read without evaluating its command.

    `command_template` is the command text exactly as written, so `${param}`
    placeholders are still unresolved. `source_range` points at the command
    in the document; line numbers are close but not exact for heredocs.
    """

    name: str
    params: tuple[str, ...]
    command_template: str
    source_range: Range
