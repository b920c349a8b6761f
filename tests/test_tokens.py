"""
Tests for token values, built by hand and read from parsed source.
"""

from rblint.models import SourceRange
from rblint.tokens import Token


def make_token(type_, text, line=1, column=0, begin_pos=0):
    end_pos = begin_pos + len(text.encode("utf-8"))
    pos = SourceRange(begin_pos, end_pos, line, column, line, column + len(text))
    return Token(type_, text, pos)


def test_from_parser_token():
    pos = SourceRange(4, 7, 2, 2, 2, 5)
    token = Token.from_parser_token(("identifier", ("foo", pos)))
    assert token.type == "identifier"
    assert token.text == "foo"
    assert token.pos == pos
    assert token.line == 2
    assert token.column == 2
    assert token.begin_pos == 4
    assert token.end_pos == 7


def test_predicates():
    assert make_token(",", ",").is_comma()
    assert make_token(";", ";").is_semicolon()
    assert make_token(".", ".").is_dot()
    assert make_token("&.", "&.").is_dot()
    assert make_token("(", "(").is_left_paren()
    assert make_token(")", ")").is_right_paren()
    assert make_token("[", "[").is_left_bracket()
    assert make_token("]", "]").is_right_bracket()
    assert make_token("{", "{").is_left_brace()
    assert make_token("#{", "#{").is_left_brace()
    assert make_token("}", "}").is_right_brace()
    assert make_token("def", "def").is_keyword()
    assert not make_token("identifier", "foo").is_keyword()
    assert not make_token("identifier", "foo").is_comma()


def test_str():
    assert str(make_token("def", "def", line=3, column=2)) == "[[3, 2], def, 'def']"


def test_tokens_are_immutable_values():
    a = make_token("identifier", "foo")
    b = make_token("identifier", "foo")
    assert a == b
    assert hash(a) == hash(b)


class TestParsedTokens:

    def test_method_definition(self, parse_source):
        source = parse_source("def foo; end")
        assert [t.text for t in source.tokens] == ["def", "foo", ";", "end"]
        assert [t.type for t in source.tokens] == ["def", "identifier", ";", "end"]
        assert source.tokens[0].is_keyword()
        assert source.tokens[2].is_semicolon()

    def test_call_tokens(self, parse_source):
        source = parse_source("a.b(c)")
        assert [t.text for t in source.tokens] == ["a", ".", "b", "(", "c", ")"]
        assert source.tokens[1].is_dot()
        assert source.tokens[3].is_left_paren()
        assert source.tokens[5].is_right_paren()

    def test_tokens_are_in_source_order(self, parse_source):
        source = parse_source("x = [1, 2]\ny = { a: x }\n")
        offsets = [t.begin_pos for t in source.tokens]
        assert offsets == sorted(offsets)
        assert source.tokens[-1].line == 2

    def test_columns_count_characters(self, parse_source):
        source = parse_source('x = "é"; y')
        last = source.tokens[-1]
        assert last.text == "y"
        assert last.column == 9
        assert last.begin_pos == 10

    def test_comments_are_not_tokens(self, parse_source):
        source = parse_source("foo # note\n")
        assert [t.text for t in source.tokens] == ["foo"]
        assert [c.text for c in source.comments] == ["# note"]
