"""Runtime settings read from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CONFIG_FILE = "config.inj.hcl"
DEFAULT_SHELL = "/bin/sh"
PRIVATE_KEYSET_PREFIX = "PRIVATE_JSON_KEYSET_"


@dataclass
class Settings:
    """Environment-derived settings shared by the CLI commands."""

    config_file_path: Path = Path(DEFAULT_CONFIG_FILE)
    context_name: str | None = None
    log_level: str = "WARNING"
    shell: str = DEFAULT_SHELL
    private_keysets: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        keysets = {
            key[len(PRIVATE_KEYSET_PREFIX) :]: value
            for key, value in env.items()
            if key.startswith(PRIVATE_KEYSET_PREFIX) and value
        }
        return cls(
            config_file_path=Path(env.get("CONFIG_FILE_PATH") or DEFAULT_CONFIG_FILE),
            context_name=env.get("CONTEXT_NAME") or None,
            log_level=env.get("LOG_LEVEL") or "WARNING",
            shell=env.get("SHELL") or DEFAULT_SHELL,
            private_keysets=keysets,
        )


def scrub_private_keysets(environ: Mapping[str, str]) -> dict[str, str]:
    """Copy of an environment without any private keyset variables."""
    return {k: v for k, v in environ.items() if not k.startswith(PRIVATE_KEYSET_PREFIX)}
