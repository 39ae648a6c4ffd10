"""Injector custom exceptions."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from injector.core.models import Diagnostics


class InjectorError(Exception):
    """Base exception for Injector errors."""


class ConfigFileError(InjectorError):
    """The config document cannot be read or written."""


class DiagnosticsError(InjectorError):
    """One or more error diagnostics aborted an operation."""

    def __init__(self, diagnostics: Diagnostics, message: str | None = None) -> None:
        self.diagnostics = diagnostics
        if message is None:
            message = "; ".join(str(d) for d in diagnostics.errors()) or "operation failed"
        super().__init__(message)


class FunctionCallError(DiagnosticsError):
    """A document function call failed.

    Raised by built-in and custom functions alike; the expression evaluator
    turns it back into diagnostics at the call site.
    """


class FunctionNameCollisionError(InjectorError):
    """A custom function tries to replace a built-in function."""


class CryptoError(InjectorError):
    """Keyset or encryption failure."""


class EncryptionError(CryptoError):
    """Plaintext could not be encrypted."""


class DecryptionError(CryptoError):
    """Ciphertext could not be decrypted.

    The reason is deliberately not exposed.
    """

    def __init__(self) -> None:
        super().__init__("decryption failed")
