"""Data models for Injector."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum

from injector.core.exceptions import DiagnosticsError


@dataclass(frozen=True)
class Pos:
    """A position in a source document (1-based line and column)."""

    line: int = 1
    column: int = 1
    offset: int = 0


@dataclass(frozen=True)
class Range:
    """A span of source text."""

    filename: str
    start: Pos
    end: Pos

    def __str__(self) -> str:
        return f"{self.filename}:{self.start.line},{self.start.column}"


class Severity(Enum):
    """How serious a diagnostic is."""

    ERROR = "error"
    WARNING = "warning"


@dataclass
class Diagnostic:
    """A structured error or warning."""

    severity: Severity
    summary: str
    detail: str = ""
    subject: Range | None = None

    @classmethod
    def error(cls, summary: str, detail: str = "", subject: Range | None = None) -> Diagnostic:
        return cls(Severity.ERROR, summary, detail, subject)

    @classmethod
    def warning(cls, summary: str, detail: str = "", subject: Range | None = None) -> Diagnostic:
        return cls(Severity.WARNING, summary, detail, subject)

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        prefix = f"{self.subject}: " if self.subject else ""
        text = f"{prefix}{self.summary}"
        if self.detail:
            text += f"; {self.detail}"
        return text


class Diagnostics(list[Diagnostic]):
    """An ordered batch of diagnostics produced by one operation."""

    def __init__(self, items: Iterable[Diagnostic] = ()) -> None:
        super().__init__(items)

    def has_errors(self) -> bool:
        """True if any diagnostic is an error."""
        return any(d.is_error for d in self)

    def errors(self) -> list[Diagnostic]:
        return [d for d in self if d.is_error]

    def raise_for_errors(self) -> None:
        """Raise DiagnosticsError if this batch contains an error."""
        if self.has_errors():
            raise DiagnosticsError(self)


@dataclass
class Context:
    """A decoded `context` block: the environment one deployment runs with."""

    name: str
    vars: dict[str, str] = field(default_factory=dict)
    exports: dict[str, str] = field(default_factory=dict)
