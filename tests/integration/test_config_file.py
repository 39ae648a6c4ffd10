"""Integration tests for decoding config documents."""

import base64
import os
import tempfile
from pathlib import Path

import pytest

from injector.core.config_file import decode_config, load_config_file
from injector.core.crypto import Encryptor, generate_keyset, public_keyset
from injector.core.exceptions import (
    ConfigFileError,
    DiagnosticsError,
    FunctionNameCollisionError,
    InjectorError,
)

DEV_PROD = """
context "dev" {
  exports = {
    DB_USER     = "user"
    DB_PASSWORD = "pass"
  }
}

context "prod" {
  exports = {
    DB_USER     = "user"
    DB_PASSWORD = "pass"
  }
}
"""


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def environ():
    """A minimal environment so custom functions run with /bin/sh."""
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}


class TestDecodeConfig:
    """Tests for decode_config."""

    def test_dev_and_prod(self, environ) -> None:
        """Test that both contexts report their exports."""
        config = decode_config(DEV_PROD, "config.inj.hcl", environ=environ)

        assert config.context_names() == ["dev", "prod"]
        for name in ("dev", "prod"):
            assert config.context(name).exports == {"DB_USER": "user", "DB_PASSWORD": "pass"}
            assert config.context(name).vars == {}

    def test_vars_and_conversions(self, environ) -> None:
        """Test optional vars and conversion of scalars to strings."""
        src = 'context "a" {\n  vars = { region = "eu" }\n  exports = { PORT = 8080, DEBUG = true, NAME = upper("x") }\n}\n'
        config = decode_config(src, "c.hcl", environ=environ)
        context = config.context("a")

        assert context.vars == {"region": "eu"}
        assert context.exports == {"PORT": "8080", "DEBUG": "true", "NAME": "X"}

    def test_custom_function_in_exports(self, environ) -> None:
        """Test that exports can call document functions."""
        src = """
custom_function "greet" {
  params  = [name]
  command = "echo \\"Hello, ${name}.\\""
}

context "dev" {
  exports = {
    GREETING = greet("Peter")
  }
}
"""
        config = decode_config(src, "c.hcl", environ=environ)

        assert config.context("dev").exports == {"GREETING": "Hello, Peter."}
        assert "greet" in config.functions

    def test_decrypt_in_exports(self, environ) -> None:
        """Test decrypting a secret during decode."""
        private = generate_keyset()
        ciphertext = base64.b64encode(Encryptor(public_keyset(private)).encrypt(b"s3cr3t")).decode()
        src = f'context "dev" {{\n  exports = {{\n    SECRET = decrypt("DEV", "{ciphertext}")\n  }}\n}}\n'
        environ["PRIVATE_JSON_KEYSET_DEV"] = base64.b64encode(private.encode()).decode()

        config = decode_config(src, "c.hcl", environ=environ)

        assert config.context("dev").exports == {"SECRET": "s3cr3t"}

    def test_only_context_skips_other_secrets(self, environ) -> None:
        """Test that decoding one context needs only that context's keys."""
        src = DEV_PROD + 'context "locked" {\n  exports = { S = decrypt("NOKEY", "AAAA") }\n}\n'

        with pytest.raises(DiagnosticsError):
            decode_config(src, "c.hcl", environ=environ)
        config = decode_config(src, "c.hcl", environ=environ, only_context="dev")

        assert config.context_names() == ["dev"]

    def test_missing_exports(self, environ) -> None:
        """Test that exports is required."""
        with pytest.raises(DiagnosticsError) as exc_info:
            decode_config('context "a" {\n  vars = {}\n}\n', "c.hcl", environ=environ)

        assert exc_info.value.diagnostics[0].summary == "Missing required argument"

    def test_unknown_attribute(self, environ) -> None:
        """Test that unexpected attributes are errors."""
        with pytest.raises(DiagnosticsError) as exc_info:
            decode_config('context "a" {\n  exprts = {}\n  exports = {}\n}\n', "c.hcl", environ=environ)

        assert exc_info.value.diagnostics[0].summary == "Unsupported argument"

    def test_collection_value_rejected(self, environ) -> None:
        """Test that exports must map to strings."""
        with pytest.raises(DiagnosticsError) as exc_info:
            decode_config('context "a" {\n  exports = { A = [1] }\n}\n', "c.hcl", environ=environ)

        assert exc_info.value.diagnostics[0].summary == "Incorrect attribute value type"

    def test_no_ambient_variables(self, environ) -> None:
        """Test that exports cannot reference vars or other names."""
        src = 'context "a" {\n  vars = { x = "1" }\n  exports = { A = "${x}" }\n}\n'

        with pytest.raises(DiagnosticsError) as exc_info:
            decode_config(src, "c.hcl", environ=environ)

        assert exc_info.value.diagnostics[0].summary == "Unknown variable"

    def test_duplicate_context(self, environ) -> None:
        """Test that a context name may only be used once."""
        with pytest.raises(DiagnosticsError) as exc_info:
            decode_config(DEV_PROD + DEV_PROD, "c.hcl", environ=environ)

        assert exc_info.value.diagnostics[0].summary == "Duplicate context"

    def test_function_collision(self, environ) -> None:
        """Test that shadowing a built-in is fatal."""
        src = 'custom_function "lower" {\n  params = [s]\n  command = "echo ${s}"\n}\n'

        with pytest.raises(FunctionNameCollisionError):
            decode_config(src, "c.hcl", environ=environ)

    def test_unknown_context(self, environ) -> None:
        """Test asking for a context that does not exist."""
        config = decode_config(DEV_PROD, "c.hcl", environ=environ)

        with pytest.raises(InjectorError) as exc_info:
            config.context("staging")

        assert "staging" in str(exc_info.value)

    def test_other_blocks_ignored(self, environ) -> None:
        """Test that public_key and unknown blocks do not affect decode."""
        src = DEV_PROD + 'public_key "DEV" {\n  base64 = "e30="\n}\n'

        config = decode_config(src, "c.hcl", environ=environ)

        assert config.context_names() == ["dev", "prod"]


class TestLoadConfigFile:
    """Tests for load_config_file."""

    def test_load(self, temp_dir: Path, environ) -> None:
        """Test loading from disk."""
        path = temp_dir / "config.inj.hcl"
        path.write_text(DEV_PROD)

        config = load_config_file(path, environ=environ)

        assert config.path == path
        assert config.context("prod").exports["DB_USER"] == "user"

    def test_missing_file(self, temp_dir: Path) -> None:
        """Test that an unreadable document raises ConfigFileError."""
        with pytest.raises(ConfigFileError) as exc_info:
            load_config_file(temp_dir / "missing.hcl")

        assert "missing.hcl" in str(exc_info.value)

    def test_syntax_error(self, temp_dir: Path, environ) -> None:
        """Test that syntax errors raise DiagnosticsError."""
        path = temp_dir / "config.inj.hcl"
        path.write_text('context "dev" {\n')

        with pytest.raises(DiagnosticsError):
            load_config_file(path, environ=environ)
