"""Tests for fragment tokenizing helpers."""

from injector.syntax.fragments import extract_attribute_value_tokens, tokenize_fragment
from injector.syntax.tokens import TokenType, tokens_text


class TestTokenizeFragment:
    """Tests for tokenize_fragment."""

    def test_valid_fragment(self) -> None:
        """Test that a valid fragment returns its tokens without EOF."""
        tokens, diags = tokenize_fragment('    DB_USER = "app" # owner\n')

        assert not diags.has_errors()
        assert tokens[-1].type is not TokenType.EOF
        assert tokens_text(tokens) == '    DB_USER = "app" # owner\n'

    def test_invalid_lexing(self) -> None:
        """Test that an unterminated string rejects the fragment."""
        tokens, diags = tokenize_fragment('A = "open\n')

        assert tokens is None
        assert diags.has_errors()

    def test_invalid_structure(self) -> None:
        """Test that text that is not an attribute or block is rejected."""
        tokens, diags = tokenize_fragment("just words here\n")

        assert tokens is None
        assert diags.has_errors()

    def test_invalid_expression(self) -> None:
        """Test that a malformed expression rejects the fragment."""
        tokens, diags = tokenize_fragment("A = decrypt(\"K\" \"v\")\n")

        assert tokens is None
        assert diags[0].summary == "Missing argument separator"

    def test_comment_only(self) -> None:
        """Test that a comment line is a valid fragment."""
        tokens, diags = tokenize_fragment("  # just a note\n")

        assert not diags
        assert [t.type for t in tokens] == [TokenType.COMMENT]


class TestExtractAttributeValueTokens:
    """Tests for extract_attribute_value_tokens."""

    def test_extracts_value(self) -> None:
        """Test that the tokens after `=` are returned."""
        tokens, diags = extract_attribute_value_tokens('name = "value"\n', "name")

        assert not diags
        assert [t.type for t in tokens] == [TokenType.OQUOTE, TokenType.QUOTED_LIT, TokenType.CQUOTE]

    def test_heredoc_value(self) -> None:
        """Test extracting a heredoc value."""
        tokens, _ = extract_attribute_value_tokens("base64 = <<-EOT\n    QUJD\n  EOT\n", "base64")

        assert tokens[0].type is TokenType.OHEREDOC
        assert tokens[-1].type is TokenType.CHEREDOC
        assert tokens_text(tokens) == " <<-EOT\n    QUJD\n  EOT"

    def test_absent_attribute(self) -> None:
        """Test that a missing attribute is None without errors."""
        tokens, diags = extract_attribute_value_tokens('other = "x"\n', "name")

        assert tokens is None
        assert not diags.has_errors()

    def test_malformed_fragment(self) -> None:
        """Test that a malformed fragment is None with errors."""
        tokens, diags = extract_attribute_value_tokens('name = "x\n', "name")

        assert tokens is None
        assert diags.has_errors()
