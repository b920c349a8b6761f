"""
Tests for the parser adapter: versions, encodings and diagnostics.
"""

import hashlib
import logging

import pytest

from rblint.errors import RblintError, SourceEncodingError, UnsupportedRubyVersionError
from rblint.models import AnalysisConfig, DiagnosticLevel
from rblint.node import NodeType
from rblint.parse import (
    STRING_SOURCE_NAME,
    ParserAdapter,
    content_hash,
    decode_source,
    detect_encoding,
    make_buffer,
)


class TestVersions:

    def test_unsupported_version(self):
        with pytest.raises(UnsupportedRubyVersionError) as excinfo:
            ParserAdapter("1.8")
        assert excinfo.value.version == "1.8"
        assert "3.3" in excinfo.value.supported
        assert isinstance(excinfo.value, RblintError)
        assert isinstance(excinfo.value, ValueError)

    def test_grammar_map_is_configurable(self):
        config = AnalysisConfig(grammars={"9.9": "ruby"})
        adapter = ParserAdapter("9.9", config)
        assert adapter.grammar == "ruby"
        assert adapter.parse("1").ast.type == NodeType.INT
        with pytest.raises(UnsupportedRubyVersionError):
            ParserAdapter("3.3", config)

    @pytest.mark.parametrize("version", ["2.7", "3.0", "3.1", "3.2", "3.3", "3.4"])
    def test_default_versions(self, version):
        assert ParserAdapter(version).ruby_version == version


class TestEncoding:

    @pytest.mark.parametrize("data, expected", [
        (b"# encoding: iso-8859-1\nx\n", "iso-8859-1"),
        (b"#!/usr/bin/env ruby\n# -*- coding: euc-jp -*-\n", "euc-jp"),
        (b"x = 1\ny = 2\n# encoding: ascii\n", "utf-8"),
        (b"# just a note\n# encoding: euc-jp\n", "utf-8"),
        (b"x = 1\n# coding: euc-jp\n", "utf-8"),
        (b"", "utf-8"),
    ])
    def test_detect_encoding(self, data, expected):
        assert detect_encoding(data) == expected

    def test_decode_strips_utf8_bom(self):
        assert decode_source(b"\xef\xbb\xbfx = 1") == "x = 1"

    def test_binary_alias(self):
        assert decode_source(b"# encoding: binary\n\xff") == "# encoding: binary\n\xff"

    def test_unknown_encoding(self):
        with pytest.raises(SourceEncodingError):
            decode_source(b"# encoding: klingon\nx\n")

    def test_invalid_bytes(self):
        with pytest.raises(SourceEncodingError):
            decode_source(b'x = "\xff"\n')

    def test_make_buffer_normalises_newlines(self):
        buffer = make_buffer(b"a\r\nb\r\n", "t.rb")
        assert buffer.source == "a\nb\n"
        assert buffer.data == b"a\nb\n"
        assert buffer.name == "t.rb"

    def test_latin1_source(self):
        data = b'# encoding: iso-8859-1\nx = "caf\xe9"\n'
        result = ParserAdapter("3.3").parse(data, "latin.rb")
        assert result.parser_error is None
        assert result.ast.to_sexp() == '(lvasgn :x (str "café"))'

    def test_encoding_failure_is_reported(self, caplog):
        with caplog.at_level(logging.WARNING, logger="rblint.parse"):
            result = ParserAdapter("3.3").parse(b'x = "\xff"\n', "bad.rb")
        assert isinstance(result.parser_error, SourceEncodingError)
        assert result.ast is None
        assert result.tokens == []
        assert "bad.rb" in caplog.text


class TestParse:

    def test_default_name(self):
        result = ParserAdapter("3.3").parse("x")
        assert result.buffer.name == STRING_SOURCE_NAME

    def test_valid_source(self):
        result = ParserAdapter("3.3").parse("puts 1 # hi\n", "a.rb")
        assert result.ast.to_sexp() == "(send nil :puts (int 1))"
        assert result.diagnostics == []
        assert result.parser_error is None
        assert [c.text for c in result.comments] == ["# hi"]

    def test_syntax_error(self):
        result = ParserAdapter("3.3").parse('puts "abc')
        assert result.ast is None
        assert result.tokens == []
        assert result.comments == []
        assert result.parser_error is None
        assert result.diagnostics
        assert all(d.level.is_error for d in result.diagnostics)

    def test_diagnostics_in_source_order(self):
        result = ParserAdapter("3.3").parse("def foo(\nx = )\n")
        lines = [d.location.line for d in result.diagnostics]
        assert lines == sorted(lines)

    def test_diagnostic_str(self):
        result = ParserAdapter("3.3").parse("foo(")
        diagnostic = result.diagnostics[0]
        assert diagnostic.level in (DiagnosticLevel.ERROR, DiagnosticLevel.FATAL)
        assert str(diagnostic).startswith(f"{diagnostic.location.line}:")

    def test_adapter_is_reusable(self):
        adapter = ParserAdapter("3.3")
        first = adapter.parse("a = 1")
        second = adapter.parse("b = 2")
        assert first.ast.to_sexp() == "(lvasgn :a (int 1))"
        assert second.ast.to_sexp() == "(lvasgn :b (int 2))"


def test_content_hash():
    assert content_hash(b"x") == hashlib.sha256(b"x").hexdigest()
