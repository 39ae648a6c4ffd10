"""Tests for custom_function declarations and their callables."""

import os

import pytest

from injector.core.exceptions import FunctionCallError, FunctionNameCollisionError
from injector.customfunc import command_tokens_to_str, decode_functions, extract_declarations
from injector.syntax.expressions import UNKNOWN, EvalContext, evaluate, parse_expression_text
from injector.syntax.functions import builtin_functions
from injector.syntax.tokens import strip_eof
from injector.syntax.lexer import tokenize
from injector.syntax.writer import parse_config

GREET = """
custom_function "greet" {
  params = [name]
  command = "echo \\"Hello, ${name}.\\""
}
"""


@pytest.fixture
def environ():
    """A minimal environment so commands run with /bin/sh."""
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}


def call(src: str, expr_text: str, environ):
    """Decode functions from src, evaluate expr_text, and collect all diagnostics."""
    builtins = builtin_functions(environ)
    functions, diags = decode_functions(src, "config", builtins=builtins, environ=environ)
    expr, parse_diags = parse_expression_text(expr_text, "testexpr")
    diags.extend(parse_diags)
    assert expr is not None
    value, eval_diags = evaluate(expr, EvalContext(functions={**builtins, **functions}))
    diags.extend(eval_diags)
    return value, diags


class TestDeclarations:
    """Tests for reading declarations without evaluating them."""

    def test_literal_command_template(self) -> None:
        """Test that the command text is kept with placeholders unresolved."""
        file, _ = parse_config(GREET, "config")
        declarations, diags = extract_declarations(file)

        assert not diags
        assert len(declarations) == 1
        decl = declarations[0]
        assert decl.name == "greet"
        assert decl.params == ("name",)
        assert decl.command_template == 'echo "Hello, ${name}."'
        assert decl.source_range.filename == "config"

    def test_indented_heredoc_is_dedented(self) -> None:
        """Test that a <<- heredoc command loses its indentation."""
        tokens, _ = tokenize('<<-EOT\n    echo "a"\n      echo "b"\n  EOT\n')
        text, start, end = command_tokens_to_str(strip_eof(tokens))

        assert text == 'echo "a"\n  echo "b"'
        assert (start, end) == (1, -1)

    def test_quoted_escapes_applied(self) -> None:
        """Test that quoted-string escapes are applied but $${ is kept."""
        tokens, _ = tokenize('"printf \\"%s\\\\n\\" $${HOME}"')
        text, _, _ = command_tokens_to_str(strip_eof(tokens))

        assert text == 'printf "%s\\n" $${HOME}'

    def test_duplicate_declaration(self) -> None:
        """Test that a second function with the same name is reported."""
        file, _ = parse_config(GREET + GREET, "config")
        declarations, diags = extract_declarations(file)

        assert len(declarations) == 1
        assert diags[0].summary == "Duplicate custom_function"

    def test_params_must_be_identifiers(self) -> None:
        """Test that quoted parameter names are rejected."""
        src = 'custom_function "f" {\n  params = ["name"]\n  command = "echo"\n}\n'
        file, _ = parse_config(src, "config")
        declarations, diags = extract_declarations(file)

        assert declarations == []
        assert diags[0].summary == "Invalid param element"

    def test_command_must_be_literal(self) -> None:
        """Test that a computed command is rejected."""
        src = 'custom_function "f" {\n  params = []\n  command = upper("echo")\n}\n'
        file, _ = parse_config(src, "config")
        declarations, diags = extract_declarations(file)

        assert declarations == []
        assert diags[0].summary == "Invalid command"

    def test_missing_label(self) -> None:
        """Test that an unlabeled block is reported."""
        file, _ = parse_config('custom_function {\n  params = []\n  command = "x"\n}\n', "config")
        _, diags = extract_declarations(file)

        assert diags[0].summary == "Invalid custom_function block"


class TestCustomFunctionCalls:
    """Tests for calling decoded custom functions."""

    @pytest.mark.parametrize(
        ("src", "expr", "want"),
        [
            (GREET, 'greet("Peter")', "Hello, Peter."),
            (
                'custom_function "greet_heredoc" {\n  params = [name]\n  command = <<EOT\n'
                'echo "Hello, ${name}."\nEOT\n}\n',
                'greet_heredoc("Peter")',
                "Hello, Peter.",
            ),
            (
                'custom_function "greet_heredoc2" {\n  params = [name]\n  command = <<-EOT\n'
                '    echo "Hello, ${name}."\n  EOT\n}\n',
                'greet_heredoc2("Peter")',
                "Hello, Peter.",
            ),
            (
                'custom_function "greet_multiline_heredoc" {\n  params = [name]\n  command = <<-EOT\n'
                '    echo "Hello, ${name}."\n    echo "Hello again, ${name}."\n  EOT\n}\n',
                'greet_multiline_heredoc("Peter")',
                "Hello, Peter.\nHello again, Peter.",
            ),
            (
                'custom_function "greet_multiline_pipe_heredoc" {\n  params = [name]\n  command = <<-EOT\n'
                '    (echo "Hello, ${name}."\n     echo "Hello again, ${name}.") |\n    grep again\n  EOT\n}\n',
                'greet_multiline_pipe_heredoc("Peter")',
                "Hello again, Peter.",
            ),
            (
                'custom_function "greet_empty_params" {\n  params = []\n  command = <<-EOT\n'
                '    echo "Hello."\n  EOT\n}\n',
                "greet_empty_params()",
                "Hello.",
            ),
            (
                'custom_function "stderr_test" {\n  params = [name]\n  command = <<-EOT\n'
                '    echo "Hello ${name}! stderr" 1>&2\n    exit 0\n  EOT\n}\n',
                'stderr_test("Peter")',
                "Hello Peter! stderr",
            ),
        ],
    )
    def test_successful_calls(self, environ, src: str, expr: str, want: str) -> None:
        """Test commands that run and return their output."""
        value, diags = call(src, expr, environ)

        assert not diags, [str(d) for d in diags]
        assert value == want

    @pytest.mark.parametrize(
        ("src", "expr", "count"),
        [
            (GREET, "greet()", 1),
            (GREET, 'greet("Peter", "extra")', 1),
            (
                'custom_function "missing_command" {\n  params = [name, age]\n'
                '  commnd = "echo Hi ${name}, I hear you are ${age} years old."\n}\n',
                'missing_command("Peter", 20)',
                3,
            ),
            (
                'custom_function "missing_var" {\n  params = []\n  command = "echo \\"${nonexist}\\""\n}\n',
                "missing_var()",
                1,
            ),
            (
                'custom_function "missing_var_heredoc" {\n  params = []\n  command = <<EOT\n'
                'echo "${nonexist}"\nEOT\n}\n',
                "missing_var_heredoc()",
                1,
            ),
            (
                'custom_function "failed_command" {\n  params = []\n  command = "exit 1"\n}\n',
                "failed_command()",
                1,
            ),
            (
                'custom_function "failed_command_with_stderr" {\n  params = []\n  command = <<-EOT\n'
                '    echo "There was a problem getting the CFN output named blah" >&2\n    exit 1\n  EOT\n}\n',
                "failed_command_with_stderr()",
                1,
            ),
        ],
    )
    def test_failing_calls(self, environ, src: str, expr: str, count: int) -> None:
        """Test that each failure yields the expected number of diagnostics."""
        value, diags = call(src, expr, environ)

        assert len(diags) == count, [str(d) for d in diags]
        assert value is UNKNOWN

    def test_missing_params_attribute(self, environ) -> None:
        """Test that a misspelled params attribute gives two diagnostics."""
        src = 'custom_function "missing_params" {\n  parrams = [val]\n  command = "echo \\"${val}\\""\n}\n'
        value, diags = call(src, "null", environ)

        assert value is None
        assert sorted(d.summary for d in diags) == ["Missing required argument", "Unsupported argument"]

    def test_failure_detail(self, environ) -> None:
        """Test that a failed command reports its template, exit code and output."""
        src = (
            'custom_function "fail" {\n  params = []\n  command = <<-EOT\n'
            '    echo "boom" >&2\n    exit 3\n  EOT\n}\n'
        )
        _, diags = call(src, "fail()", environ)

        diag = diags[0]
        assert diag.summary == "Cannot execute command"
        assert 'echo "boom" >&2' in diag.detail
        assert "(3)" in diag.detail
        assert "stdout_stderr=boom" in diag.detail

    def test_scope_has_only_parameters(self, environ) -> None:
        """Test that the command cannot see anything but its parameters."""
        src = 'custom_function "leak" {\n  params = [a]\n  command = "echo ${b}"\n}\n'
        functions, _ = decode_functions(src, "config", environ=environ)

        with pytest.raises(FunctionCallError) as exc_info:
            functions["leak"]("x")

        assert exc_info.value.diagnostics[0].summary == "Unknown variable"

    def test_escaped_interpolation_reaches_shell(self, environ) -> None:
        """Test that $${VAR} is left for the shell to expand."""
        src = 'custom_function "home" {\n  params = []\n  command = "echo $${GREETING}"\n}\n'
        functions, _ = decode_functions(src, "config", environ={**environ, "GREETING": "hi there"})

        assert functions["home"]() == "hi there"

    def test_non_string_argument(self, environ) -> None:
        """Test that numbers are passed as their string form."""
        src = 'custom_function "age" {\n  params = [n]\n  command = "echo ${n}"\n}\n'
        value, diags = call(src, "age(20)", environ)

        assert not diags
        assert value == "20"

    def test_builtin_name_collision(self, environ) -> None:
        """Test that shadowing a built-in function is fatal."""
        src = 'custom_function "upper" {\n  params = [s]\n  command = "echo ${s}"\n}\n'

        with pytest.raises(FunctionNameCollisionError):
            decode_functions(src, "config", environ=environ)

    def test_invalid_syntax(self, environ) -> None:
        """Test that an unparseable document returns no functions."""
        src = 'custom_function "greet" {\n  params = [name]\n  command = "echo ${name}"\n'
        functions, diags = decode_functions(src, "config", environ=environ)

        assert functions == {}
        assert diags.has_errors()
