"""
Core module: data models, exceptions, encryption and settings.

Models (models.py):
    - Diagnostic/Diagnostics: Structured errors and warnings with source ranges
    - Context: A decoded context block (vars and exports)

Exceptions (exceptions.py):
    - InjectorError: Base exception for all injector errors
    - DiagnosticsError: Error diagnostics aborted an operation
    - ConfigFileError: The document cannot be read or written
    - DecryptionError: Opaque decryption failure

Encryption (crypto.py):
    - generate_keyset/public_keyset: JSON keyset helpers
    - Encryptor/Decryptor: Hybrid X25519 + AES-GCM encryption

Settings (settings.py, log.py):
    - Settings: Values read from the environment
    - get_logger: Rich-backed logger for the command line

Decoding a whole document lives in config_file.py, which depends on the
syntax and customfunc packages and is imported from there directly.
"""

from injector.core.crypto import Decryptor, Encryptor, generate_keyset, public_keyset
from injector.core.exceptions import (
    ConfigFileError,
    CryptoError,
    DecryptionError,
    DiagnosticsError,
    EncryptionError,
    FunctionCallError,
    FunctionNameCollisionError,
    InjectorError,
)
from injector.core.log import get_logger
from injector.core.models import Context, Diagnostic, Diagnostics, Pos, Range, Severity
from injector.core.settings import Settings

__all__ = [
    # Models
    "Pos",
    "Range",
    "Severity",
    "Diagnostic",
    "Diagnostics",
    "Context",
    # Exceptions
    "InjectorError",
    "ConfigFileError",
    "DiagnosticsError",
    "FunctionCallError",
    "FunctionNameCollisionError",
    "CryptoError",
    "EncryptionError",
    "DecryptionError",
    # Encryption
    "generate_keyset",
    "public_keyset",
    "Encryptor",
    "Decryptor",
    # Settings
    "Settings",
    "get_logger",
]
