"""Tree-sitter parsing: encoding, diagnostics, tokens and comments."""

import codecs
import functools
import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from tree_sitter import Language, Node as CSTNode, Parser, Tree
from tree_sitter_language_pack import get_language

from .builder import Builder, node_text, source_range
from .errors import RubySyntaxError, SourceEncodingError, UnsupportedRubyVersionError
from .models import AnalysisConfig, Comment, Diagnostic, DiagnosticLevel
from .node import Node
from .tokens import Token

log = logging.getLogger(__name__)

STRING_SOURCE_NAME = "(string)"

_MAGIC_COMMENT = re.compile(rb"\A#.*?\b(?:en)?coding\s*[:=]\s*([\w.-]+)", re.IGNORECASE)
_ENCODING_ALIASES = {
    "binary": "latin-1",
    "ascii-8bit": "latin-1",
    "us-ascii": "ascii",
}


@functools.lru_cache(maxsize=None)
def _get_language(name: str) -> Language:
    return get_language(name)


def content_hash(source: bytes) -> str:
    return hashlib.sha256(source).hexdigest()


@dataclass(frozen=True)
class SourceBuffer:
    name: str
    source: str                 # decoded, "\r\n" normalised to "\n"
    data: bytes                 # utf-8 encoding of source; tree positions index this


@dataclass
class ParseResult:
    buffer: SourceBuffer
    ast: Node | None = None
    comments: list[Comment] = field(default_factory=list)
    tokens: list[Token] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    parser_error: Exception | None = None


# ── encoding ─────────────────────────────────────────────────────────────────

def detect_encoding(data: bytes, default: str = "utf-8") -> str:
    """
    Encoding named by a magic comment, else ``default``.

    The comment must be on the first line, or on the second after a shebang.
    """
    lines = data.splitlines()[:2]
    if len(lines) == 2 and not lines[0].startswith(b"#!"):
        lines = lines[:1]
    for line in lines:
        match = _MAGIC_COMMENT.match(line)
        if match:
            return match.group(1).decode("ascii")
    return default


def decode_source(data: bytes, default: str = "utf-8") -> str:
    encoding = detect_encoding(data, default)
    encoding = _ENCODING_ALIASES.get(encoding.lower(), encoding)
    try:
        codec = codecs.lookup(encoding)
    except LookupError as e:
        raise SourceEncodingError(f"unknown encoding {encoding!r}") from e
    if codec.name == "utf-8":
        encoding = "utf-8-sig"
    try:
        return data.decode(encoding)
    except UnicodeDecodeError as e:
        raise SourceEncodingError(f"invalid byte sequence in {codec.name}: {e.reason}") from e


def make_buffer(source: str | bytes, name: str, default_encoding: str = "utf-8") -> SourceBuffer:
    text = decode_source(source, default_encoding) if isinstance(source, bytes) else source
    text = text.replace("\r\n", "\n")
    try:
        data = text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise SourceEncodingError(f"source is not encodable as utf-8: {e.reason}") from e
    return SourceBuffer(name, text, data)


# ── CST scanning ─────────────────────────────────────────────────────────────

def _snippet(text: str) -> str:
    first_line = text.split("\n", 1)[0]
    return first_line if len(first_line) <= 20 else first_line[:20] + "..."


def collect_diagnostics(root: CSTNode, source: bytes,
                        consumer: Callable[[Diagnostic], None]) -> None:
    """Report every ERROR and missing node to ``consumer`` in source order."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node.is_missing:
            consumer(Diagnostic(DiagnosticLevel.ERROR, f"missing {node.type!r}",
                                source_range(node, source)))
            continue
        if node.is_error:
            text = node_text(node, source)
            message = f"unexpected {_snippet(text)!r}" if text else "unexpected end of input"
            consumer(Diagnostic(DiagnosticLevel.ERROR, message, source_range(node, source)))
            continue
        if node.has_error:
            stack.extend(reversed(node.children))


def _data_section_start(root: CSTNode, source: bytes) -> int | None:
    """Byte offset of the ``__END__`` line, if the program has a data section."""
    for child in root.children:
        if child.type == "uninterpreted":
            marker = source.rfind(b"__END__", 0, child.start_byte + 1)
            return marker if marker >= 0 else child.start_byte
    return None


def collect_leaves(root: CSTNode, source: bytes) -> tuple[list[Token], list[Comment]]:
    """Tokens and comments in source order, stopping at the data section."""
    cutoff = _data_section_start(root, source)
    tokens: list[Token] = []
    comments: list[Comment] = []
    stack = [root]
    while stack:
        node = stack.pop()
        if cutoff is not None and node.start_byte >= cutoff:
            continue
        if node.type == "comment":
            comments.append(Comment(node_text(node, source).rstrip("\n"), source_range(node, source)))
            continue
        if node.child_count == 0:
            if node.end_byte > node.start_byte:
                raw = (node.type, (node_text(node, source), source_range(node, source)))
                tokens.append(Token.from_parser_token(raw))
            continue
        stack.extend(reversed(node.children))
    tokens.sort(key=lambda t: t.begin_pos)
    comments.sort(key=lambda c: c.location.begin_pos)
    return tokens, comments


# ── adapter ──────────────────────────────────────────────────────────────────

class ParserAdapter:
    """
    Parses Ruby source for one language version.

    Each adapter owns its tree-sitter ``Parser``; share adapters between
    threads only with external locking, or create one per worker.
    """

    def __init__(self, ruby_version: str, config: AnalysisConfig | None = None) -> None:
        self.config = config or AnalysisConfig()
        grammar = self.config.grammars.get(ruby_version)
        if grammar is None:
            raise UnsupportedRubyVersionError(ruby_version, sorted(self.config.grammars))
        self.ruby_version = ruby_version
        self.grammar = grammar
        self._parser = Parser(_get_language(grammar))

    def parse(self, source: str | bytes, path: str | None = None) -> ParseResult:
        name = path or STRING_SOURCE_NAME
        try:
            buffer = make_buffer(source, name, self.config.default_encoding)
        except SourceEncodingError as e:
            log.warning("Cannot decode %s: %s", name, e)
            fallback = source.decode("utf-8", errors="replace") if isinstance(source, bytes) else ""
            return ParseResult(buffer=SourceBuffer(name, fallback, b""), parser_error=e)

        result = ParseResult(buffer=buffer)
        try:
            result.ast, result.comments, result.tokens = self._tokenize(
                buffer, result.diagnostics.append)
        except RubySyntaxError as e:
            # All errors are in the diagnostics already.
            log.debug("Syntax error in %s: %s", name, e)
        except Exception as e:
            log.warning("Parse error in %s: %s", name, e)
            result.parser_error = e
        return result

    def _tokenize(self, buffer: SourceBuffer, consumer: Callable[[Diagnostic], None]
                  ) -> tuple[Node | None, list[Comment], list[Token]]:
        tree: Tree = self._parser.parse(buffer.data)
        root = tree.root_node
        if root.has_error:
            errors: list[Diagnostic] = []

            def record(diagnostic: Diagnostic) -> None:
                errors.append(diagnostic)
                consumer(diagnostic)

            collect_diagnostics(root, buffer.data, record)
            if not errors:
                consumer(Diagnostic(DiagnosticLevel.FATAL, "unrecoverable syntax error",
                                    source_range(root, buffer.data)))
            raise RubySyntaxError(f"{len(errors)} syntax error(s) in {buffer.name}")

        ast = Builder(tree, buffer.data).build()
        tokens, comments = collect_leaves(root, buffer.data)
        return ast, comments, tokens
