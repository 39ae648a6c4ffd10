"""Integration tests for the command line."""

import json
import tempfile
from pathlib import Path

import pytest
from typer.testing import CliRunner

from injector.cli import app, shell_quote

runner = CliRunner()

DEV_PROD = """context "prod" {
  exports = {
    DB_USER     = "user"
    DB_PASSWORD = "pass"
  }
}

context "dev" {
  exports = {
    DB_USER = "user"
  }
}
"""


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def config(temp_dir: Path) -> Path:
    """A config document with two contexts."""
    path = temp_dir / "config.inj.hcl"
    path.write_text(DEV_PROD)
    return path


def keyset_line(output: str) -> tuple[str, str]:
    for line in output.splitlines():
        if line.startswith("PRIVATE_JSON_KEYSET_"):
            name, _, value = line.partition("=")
            return name, value
    raise AssertionError(f"no keyset line in {output!r}")


class TestListing:
    """Tests for the listing commands."""

    def test_contexts(self, config: Path) -> None:
        """Test listing contexts in document order."""
        result = runner.invoke(app, ["contexts", "-c", str(config)])

        assert result.exit_code == 0
        assert result.stdout.split() == ["prod", "dev"]

    def test_contexts_json(self, config: Path) -> None:
        """Test JSON output."""
        result = runner.invoke(app, ["contexts", "-c", str(config), "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == ["prod", "dev"]

    def test_exports_json(self, config: Path) -> None:
        """Test listing the exports of one context."""
        result = runner.invoke(app, ["exports", "prod", "-c", str(config), "-j"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == ["DB_USER", "DB_PASSWORD"]

    def test_pubkeys_empty(self, config: Path) -> None:
        """Test that no public keys gives an empty list."""
        result = runner.invoke(app, ["pubkeys", "-c", str(config), "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == []

    def test_config_from_environment(self, config: Path) -> None:
        """Test that CONFIG_FILE_PATH selects the document."""
        result = runner.invoke(app, ["contexts", "--json"], env={"CONFIG_FILE_PATH": str(config)})

        assert result.exit_code == 0
        assert json.loads(result.stdout) == ["prod", "dev"]

    def test_option_overrides_environment(self, config: Path, temp_dir: Path) -> None:
        """Test that --config wins over CONFIG_FILE_PATH."""
        env = {"CONFIG_FILE_PATH": str(temp_dir / "missing.hcl")}
        result = runner.invoke(app, ["contexts", "-c", str(config), "--json"], env=env)

        assert result.exit_code == 0
        assert json.loads(result.stdout) == ["prod", "dev"]

    def test_environment_path_used_for_edits(self, config: Path) -> None:
        """Test that editing commands also read CONFIG_FILE_PATH."""
        result = runner.invoke(app, ["sort"], env={"CONFIG_FILE_PATH": str(config)})

        assert result.exit_code == 0
        assert config.read_text().index('context "dev"') < config.read_text().index('context "prod"')

    def test_missing_document(self, temp_dir: Path) -> None:
        """Test that an unreadable document exits with status 1."""
        result = runner.invoke(app, ["contexts", "-c", str(temp_dir / "missing.hcl")])

        assert result.exit_code == 1

    def test_unknown_context(self, config: Path) -> None:
        """Test that listing exports of an unknown context fails."""
        result = runner.invoke(app, ["exports", "staging", "-c", str(config)])

        assert result.exit_code == 1


class TestKeygenAndSecrets:
    """Tests for keygen, add-secret and render together."""

    def test_keygen(self, config: Path) -> None:
        """Test that keygen stores the public key and prints the private one."""
        result = runner.invoke(app, ["keygen", "DEV2024", "-c", str(config)])

        assert result.exit_code == 0
        name, value = keyset_line(result.output)
        assert name == "PRIVATE_JSON_KEYSET_DEV2024"
        assert value
        assert config.read_text().startswith('public_key "DEV2024" {\n  base64 = <<-EOT\n')

    def test_keygen_invalid_name(self, config: Path) -> None:
        """Test that a bad key name leaves the document untouched."""
        result = runner.invoke(app, ["keygen", "dev", "-c", str(config)])

        assert result.exit_code == 1
        assert config.read_text() == DEV_PROD

    def test_keygen_refuses_overwrite(self, config: Path) -> None:
        """Test that a second keygen with the same name needs --overwrite."""
        runner.invoke(app, ["keygen", "DEV2024", "-c", str(config)])

        assert runner.invoke(app, ["keygen", "DEV2024", "-c", str(config)]).exit_code == 1
        assert runner.invoke(app, ["keygen", "DEV2024", "-c", str(config), "--overwrite"]).exit_code == 0

    def test_add_secret_and_render(self, config: Path) -> None:
        """Test encrypting a secret and reading it back."""
        keygen = runner.invoke(app, ["keygen", "DEV2024", "-c", str(config)])
        name, value = keyset_line(keygen.output)

        added = runner.invoke(app, ["add-secret", "dev", "DEV2024", "DB_PASSWORD", "s3cr3t", "-c", str(config)])
        assert added.exit_code == 0
        assert 'DB_PASSWORD = decrypt("DEV2024", "' in config.read_text()

        rendered = runner.invoke(app, ["render", "--context", "dev", "-c", str(config), "--json"], env={name: value})
        assert rendered.exit_code == 0
        assert json.loads(rendered.stdout) == {"DB_USER": "user", "DB_PASSWORD": "s3cr3t"}

    def test_add_secret_prompts_for_value(self, config: Path) -> None:
        """Test that the secret is read from a prompt when omitted."""
        runner.invoke(app, ["keygen", "DEV2024", "-c", str(config)])

        result = runner.invoke(app, ["add-secret", "dev", "DEV2024", "API_KEY", "-c", str(config)], input="hidden\n")

        assert result.exit_code == 0
        assert "API_KEY = decrypt(" in config.read_text()
        assert "hidden" not in config.read_text()

    def test_add_secret_unknown_pubkey(self, config: Path) -> None:
        """Test that a missing public key fails without editing."""
        result = runner.invoke(app, ["add-secret", "dev", "NOPE", "API_KEY", "x", "-c", str(config)])

        assert result.exit_code == 1
        assert config.read_text() == DEV_PROD

    def test_render_without_key(self, config: Path) -> None:
        """Test that rendering a secret without its private key fails."""
        runner.invoke(app, ["keygen", "DEV2024", "-c", str(config)])
        runner.invoke(app, ["add-secret", "dev", "DEV2024", "DB_PASSWORD", "s3cr3t", "-c", str(config)])

        result = runner.invoke(app, ["render", "--context", "dev", "-c", str(config)])

        assert result.exit_code == 1


class TestRender:
    """Tests for render and exec."""

    def test_shell_lines(self, config: Path) -> None:
        """Test KEY="value" output."""
        result = runner.invoke(app, ["render", "--context", "prod", "-c", str(config)])

        assert result.exit_code == 0
        assert result.stdout.splitlines() == ['DB_USER="user"', 'DB_PASSWORD="pass"']

    def test_context_from_environment(self, config: Path) -> None:
        """Test that CONTEXT_NAME selects the context."""
        result = runner.invoke(app, ["render", "-c", str(config), "-j"], env={"CONTEXT_NAME": "dev"})

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"DB_USER": "user"}

    def test_unknown_context(self, config: Path) -> None:
        """Test that rendering an unknown context fails."""
        result = runner.invoke(app, ["render", "--context", "staging", "-c", str(config)])

        assert result.exit_code == 1

    def test_exec_missing_program(self, config: Path) -> None:
        """Test that a program that cannot be started is reported."""
        result = runner.invoke(
            app, ["exec", "--context", "prod", "-c", str(config), "--", "injector-test-no-such-program"]
        )

        assert result.exit_code == 1

    @pytest.mark.parametrize(
        ("value", "quoted"),
        [
            ("plain", '"plain"'),
            ('say "hi"', '"say \\"hi\\""'),
            ("$HOME", '"\\$HOME"'),
            ("a\\b", '"a\\\\b"'),
        ],
    )
    def test_shell_quote(self, value: str, quoted: str) -> None:
        """Test quoting values for shells."""
        assert shell_quote(value) == quoted


class TestSort:
    """Tests for the sort command."""

    def test_sort(self, config: Path) -> None:
        """Test that contexts are put in name order."""
        result = runner.invoke(app, ["sort", "-c", str(config)])

        assert result.exit_code == 0
        text = config.read_text()
        assert text.index('context "dev"') < text.index('context "prod"')
