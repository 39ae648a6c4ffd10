"""Build callable functions from `custom_function` declarations.

Each call interpolates the declaration's command template against a scope
holding only that call's arguments, runs the result with the shell and
returns its output.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping
from typing import Any

from injector.core.exceptions import FunctionCallError, FunctionNameCollisionError
from injector.core.models import Diagnostics
from injector.core.settings import Settings
from injector.customfunc.declarations import extract_declarations
from injector.customfunc.models import FunctionDeclaration
from injector.syntax.expressions import EvalContext, evaluate, parse_template, to_string
from injector.syntax.functions import Function, builtin_functions, call_error
from injector.syntax.writer import File, parse_config

_logger = logging.getLogger(__name__)


class CustomFunction(Function):
    """A document function whose body is a shell command."""

    def __init__(
        self,
        declaration: FunctionDeclaration,
        environ: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(declaration.name, list(declaration.params), self._run)
        self.declaration = declaration
        self._environ = environ
        self._logger = logger or _logger

    def _shell(self) -> str:
        return Settings.from_env(self._environ).shell

    def _command(self, args: tuple[Any, ...]) -> str:
        decl = self.declaration
        variables = {}
        for name, arg in zip(decl.params, args):
            if arg is None or isinstance(arg, (list, dict)):
                raise call_error(
                    "Invalid function argument",
                    f'Argument "{name}" of custom_function "{decl.name}" must be a string.',
                )
            variables[name] = to_string(arg)

        template, diags = parse_template(decl.command_template, decl.source_range.filename, decl.source_range.start)
        if template is None or diags.has_errors():
            raise FunctionCallError(diags)

        # Parameters only: no document variables, no functions.
        value, eval_diags = evaluate(template, EvalContext(variables=variables, functions={}))
        if eval_diags.has_errors():
            raise FunctionCallError(eval_diags)
        return to_string(value)

    def _run(self, *args: Any) -> str:
        decl = self.declaration
        command = self._command(args)
        self._logger.debug("custom_function %s: interpolated command [%s]", decl.name, command)

        env = None if self._environ is None else dict(self._environ)
        try:
            proc = subprocess.run(
                [self._shell(), "-c", command],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
                check=False,
            )
            exit_code = proc.returncode
            output = proc.stdout.decode("utf-8", errors="replace")
            reason = f"exit status {exit_code}"
        except OSError as e:
            exit_code = -1
            output = ""
            reason = str(e)

        self._logger.debug("custom_function %s: exec returned %d", decl.name, exit_code)
        if exit_code != 0:
            raise call_error(
                "Cannot execute command",
                f'Command "{decl.command_template}" defined by the custom_function "{decl.name}" '
                f"returned non-zero ({exit_code}): {reason}, stdout_stderr={output}",
            )
        return output.removesuffix("\n")


def build_functions(
    declarations: list[FunctionDeclaration],
    builtins: Mapping[str, Function],
    environ: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> dict[str, CustomFunction]:
    """Wrap declarations as callables.

    Raises:
        FunctionNameCollisionError: A declaration reuses a built-in name.
    """
    functions = {}
    for decl in declarations:
        if decl.name in builtins:
            raise FunctionNameCollisionError(
                f'custom_function "{decl.name}" at {decl.source_range} has the same name as a built-in function'
            )
        functions[decl.name] = CustomFunction(decl, environ=environ, logger=logger)
    return functions


def decode_file_functions(
    file: File,
    builtins: Mapping[str, Function] | None = None,
    environ: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> tuple[dict[str, CustomFunction], Diagnostics]:
    """Custom functions of an already parsed document."""
    if builtins is None:
        builtins = builtin_functions(environ)
    declarations, diags = extract_declarations(file, logger=logger)
    return build_functions(declarations, builtins, environ, logger), diags


def decode_functions(
    src: str,
    filename: str = "<input>",
    builtins: Mapping[str, Function] | None = None,
    environ: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> tuple[dict[str, CustomFunction], Diagnostics]:
    """Parse a document and build its custom functions.

    Declarations with problems are reported and skipped, the others are
    still returned. A name clash with a built-in raises
    FunctionNameCollisionError.
    """
    file, diags = parse_config(src, filename)
    if diags.has_errors():
        return {}, diags
    functions, decl_diags = decode_file_functions(file, builtins, environ, logger)
    diags.extend(decl_diags)
    return functions, diags
