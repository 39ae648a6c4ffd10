"""Tests for environment settings and the CLI logger."""

import logging
from pathlib import Path

from rich.logging import RichHandler

from injector.core.log import get_logger
from injector.core.settings import DEFAULT_CONFIG_FILE, DEFAULT_SHELL, Settings, scrub_private_keysets


class TestSettings:
    """Tests for Settings.from_env."""

    def test_defaults(self) -> None:
        """Test the values used when nothing is set."""
        settings = Settings.from_env({})

        assert settings.config_file_path == Path(DEFAULT_CONFIG_FILE)
        assert settings.context_name is None
        assert settings.log_level == "WARNING"
        assert settings.shell == DEFAULT_SHELL
        assert settings.private_keysets == {}

    def test_from_environment(self) -> None:
        """Test reading every variable."""
        settings = Settings.from_env(
            {
                "CONFIG_FILE_PATH": "conf/app.hcl",
                "CONTEXT_NAME": "prod",
                "LOG_LEVEL": "DEBUG",
                "SHELL": "/bin/bash",
                "PRIVATE_JSON_KEYSET_PROD2024": "e30=",
                "PRIVATE_JSON_KEYSET_EMPTY": "",
            }
        )

        assert settings.config_file_path == Path("conf/app.hcl")
        assert settings.context_name == "prod"
        assert settings.log_level == "DEBUG"
        assert settings.shell == "/bin/bash"
        assert settings.private_keysets == {"PROD2024": "e30="}

    def test_scrub_private_keysets(self) -> None:
        """Test that keyset variables are removed and others kept."""
        env = {"PATH": "/bin", "PRIVATE_JSON_KEYSET_DEV": "x", "DB_USER": "user"}

        assert scrub_private_keysets(env) == {"PATH": "/bin", "DB_USER": "user"}


class TestGetLogger:
    """Tests for the CLI logger."""

    def test_level_argument(self) -> None:
        """Test an explicit level name."""
        logger = get_logger("debug", name="injector.test.level")

        assert logger.level == logging.DEBUG
        assert not logger.propagate

    def test_level_from_environment(self, monkeypatch) -> None:
        """Test LOG_LEVEL as the fallback."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")

        assert get_logger(name="injector.test.env").level == logging.ERROR

    def test_argument_beats_environment(self, monkeypatch) -> None:
        """Test that an explicit level ignores LOG_LEVEL."""
        monkeypatch.setenv("LOG_LEVEL", "ERROR")

        assert get_logger("INFO", name="injector.test.explicit").level == logging.INFO

    def test_unknown_level(self, monkeypatch) -> None:
        """Test that an unknown level keeps the default."""
        monkeypatch.delenv("LOG_LEVEL", raising=False)

        assert get_logger("loud", name="injector.test.unknown").level == logging.WARNING

    def test_single_handler(self) -> None:
        """Test that building the logger twice adds one handler."""
        get_logger(name="injector.test.handlers")
        logger = get_logger(name="injector.test.handlers")

        assert sum(isinstance(h, RichHandler) for h in logger.handlers) == 1
