"""
Injector: encrypted secrets and plaintext configuration in one document.

Injector keeps a `config.inj.hcl` document that holds public keys, custom
shell-backed functions and per-environment contexts, and lets you:
- Add public keys and encrypted secrets without disturbing formatting
- Evaluate a context's exports, decrypting secrets at runtime
- Call document-declared functions whose bodies are shell commands

Usage:
    from injector.editfile import EditConfigFile
    from injector.core.config_file import load_config_file

    editor = EditConfigFile(Path("config.inj.hcl"))
    diags = editor.add_secret("dev", "DB_PASSWORD", "s3cr3t", "DEV2024")

    config = load_config_file(Path("config.inj.hcl"))
    exports = config.context("dev").exports
"""

__version__ = "0.1.0"
