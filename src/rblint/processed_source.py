"""
ProcessedSource: the parsed form of one Ruby file.

Holds the tree, tokens, comments and diagnostics produced by the parser
along with derived views (logical lines, checksum, disabled line ranges)
that rules query. Instances are never mutated after construction; the
derived views are computed on first access and cached. Two threads racing
on a first access may both compute a view, which is harmless because the
result is deterministic and attribute assignment is atomic.
"""

from functools import cached_property
from pathlib import Path
from typing import Any, Callable, Iterator

from .comment_config import CommentConfig
from .models import AnalysisConfig, Comment, Diagnostic
from .node import Node
from .parse import ParserAdapter, content_hash
from .tokens import Token

DATA_MARKER = "__END__"


class ProcessedSource:
    def __init__(
        self,
        source: str | bytes,
        ruby_version: str,
        path: str | None = None,
        *,
        config: AnalysisConfig | None = None,
        comment_config_factory: Callable[["ProcessedSource"], Any] | None = None,
    ) -> None:
        self.config = config or AnalysisConfig()
        self.path = path
        self.ruby_version = ruby_version
        self._raw_bytes = (source if isinstance(source, bytes)
                           else source.encode("utf-8", errors="surrogatepass"))
        self._comment_config_factory = comment_config_factory

        result = ParserAdapter(ruby_version, self.config).parse(source, path)
        self.buffer = result.buffer
        self.raw_source = source if isinstance(source, str) else result.buffer.source
        self.ast: Node | None = result.ast
        self.comments: list[Comment] = result.comments
        self.tokens: list[Token] = result.tokens
        self.diagnostics: list[Diagnostic] = result.diagnostics
        self.parser_error: Exception | None = result.parser_error

    @classmethod
    def from_file(cls, path: str | Path, ruby_version: str, **kwargs) -> "ProcessedSource":
        """Read ``path`` as bytes and parse it; OSError propagates to the caller."""
        data = Path(path).read_bytes()
        return cls(data, ruby_version, str(path), **kwargs)

    @property
    def file_path(self) -> str:
        return self.buffer.name

    # ── derived views ────────────────────────────────────────────────────────

    @cached_property
    def lines(self) -> list[str]:
        """Source lines without terminators, cut at a trailing ``__END__`` line."""
        source = self.buffer.source
        all_lines = source.split("\n") if source else []
        last_token_line = self.tokens[-1].line if self.tokens else len(all_lines)
        result = []
        for index, line in enumerate(all_lines):
            if index >= last_token_line and line == DATA_MARKER:
                break
            result.append(line)
        return result

    @cached_property
    def checksum(self) -> str:
        """SHA-256 of the raw input, independent of whether it parsed."""
        return content_hash(self._raw_bytes)

    @property
    def valid_syntax(self) -> bool:
        if self.parser_error is not None:
            return False
        return not any(d.level.is_error for d in self.diagnostics)

    @cached_property
    def comment_config(self):
        if self._comment_config_factory is not None:
            return self._comment_config_factory(self)
        return CommentConfig(self, self.config.directive)

    @property
    def disabled_line_ranges(self) -> dict[str, list[range]]:
        return self.comment_config.cop_disabled_line_ranges()

    def __getitem__(self, index):
        return self.lines[index]

    def __len__(self) -> int:
        return len(self.lines)

    def __repr__(self) -> str:
        return f"<ProcessedSource {self.file_path} ruby={self.ruby_version} valid={self.valid_syntax}>"

    # ── lines ────────────────────────────────────────────────────────────────

    def is_blank(self) -> bool:
        return not self.buffer.source.strip()

    def start_with(self, string: str) -> bool:
        if not self.lines:
            return False
        return self.lines[0].startswith(string)

    def current_line(self, token: Token) -> str:
        return self.lines[token.line - 1]

    def preceding_line(self, token: Token) -> str | None:
        return self.lines[token.line - 2] if token.line > 1 else None

    def following_line(self, token: Token) -> str | None:
        return self.lines[token.line] if token.line < len(self.lines) else None

    def line_indentation(self, line_number: int) -> int:
        line = self.lines[line_number - 1]
        return len(line) - len(line.lstrip(" \t"))

    # ── comments ─────────────────────────────────────────────────────────────

    @cached_property
    def _comments_by_line(self) -> dict[int, Comment]:
        return {c.line: c for c in self.comments}

    def comment_at_line(self, line: int) -> Comment | None:
        return self._comments_by_line.get(line)

    def line_with_comment(self, line: int) -> bool:
        return line in self._comments_by_line

    def comments_before_line(self, line: int) -> list[Comment]:
        return [c for c in self.comments if c.line <= line]

    def each_comment(self) -> Iterator[Comment]:
        return iter(self.comments)

    def find_comment(self, predicate: Callable[[Comment], bool]) -> Comment | None:
        return next((c for c in self.comments if predicate(c)), None)

    # ── tokens ───────────────────────────────────────────────────────────────

    def each_token(self) -> Iterator[Token]:
        return iter(self.tokens)

    def find_token(self, predicate: Callable[[Token], bool]) -> Token | None:
        return next((t for t in self.tokens if predicate(t)), None)

    def tokens_within(self, node: Node) -> list[Token]:
        if node.loc is None:
            return []
        expression = node.loc.expression
        return [t for t in self.tokens if expression.contains(t.pos)]

    def first_token_of(self, node: Node) -> Token | None:
        tokens = self.tokens_within(node)
        return tokens[0] if tokens else None

    def last_token_of(self, node: Node) -> Token | None:
        tokens = self.tokens_within(node)
        return tokens[-1] if tokens else None
