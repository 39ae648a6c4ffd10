"""
Syntax layer: tokens, document tree and expressions.

Lexer (lexer.py):
    - tokenize: Source text to tokens, keeping every byte of whitespace
    - tokenize_template: Bare template text, as found inside heredocs

Document tree (writer.py):
    - parse_config: Build an editable File of attributes and blocks
    - File/Body/Block/Attribute: Nodes that render back to their exact source

Expressions (expressions.py, functions.py):
    - parse_expression/parse_template: Expression and template parsers
    - evaluate: Evaluate against an EvalContext of variables and functions
    - builtin_functions: The functions every document can call

Fragments (fragments.py):
    - tokenize_fragment: Tokens for a self-contained piece of text
    - extract_attribute_value_tokens: The tokens after `name =` in a fragment
"""

from injector.syntax.expressions import (
    UNKNOWN,
    EvalContext,
    evaluate,
    parse_expression,
    parse_expression_text,
    parse_template,
)
from injector.syntax.fragments import extract_attribute_value_tokens, tokenize_fragment
from injector.syntax.functions import Function, builtin_functions
from injector.syntax.lexer import tokenize, tokenize_template
from injector.syntax.tokens import Token, Tokens, TokenType, tokens_text
from injector.syntax.writer import Attribute, Block, Body, File, parse_config

__all__ = [
    # Tokens
    "Token",
    "Tokens",
    "TokenType",
    "tokens_text",
    "tokenize",
    "tokenize_template",
    # Document tree
    "File",
    "Body",
    "Block",
    "Attribute",
    "parse_config",
    # Expressions
    "UNKNOWN",
    "EvalContext",
    "evaluate",
    "parse_expression",
    "parse_expression_text",
    "parse_template",
    "Function",
    "builtin_functions",
    # Fragments
    "tokenize_fragment",
    "extract_attribute_value_tokens",
]
