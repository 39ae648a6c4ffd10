"""
Custom functions: shell commands declared in the document.

    custom_function "greet" {
      params  = [name]
      command = "echo \\"Hello, ${name}.\\""
    }

Declarations (declarations.py):
    - extract_declarations: Read each block's literal, uninterpolated command

Callables (decode.py):
    - CustomFunction: Interpolates arguments into the command and runs it
    - decode_functions: Parse a document and build all of its functions
"""

from injector.customfunc.decode import (
    CustomFunction,
    build_functions,
    decode_file_functions,
    decode_functions,
)
from injector.customfunc.declarations import command_tokens_to_str, extract_declarations
from injector.customfunc.models import BLOCK_TYPE, FunctionDeclaration

__all__ = [
    "BLOCK_TYPE",
    "FunctionDeclaration",
    "CustomFunction",
    "build_functions",
    "command_tokens_to_str",
    "decode_file_functions",
    "decode_functions",
    "extract_declarations",
]
