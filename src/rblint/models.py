"""Core data structures for rblint."""

from dataclasses import dataclass, field
from enum import Enum

DEFAULT_RUBY_VERSION = "3.3"


@dataclass(frozen=True)
class SourceRange:
    begin_pos: int              # byte offset into the utf-8 buffer
    end_pos: int                # byte offset, exclusive
    line: int                   # 1-based
    column: int                 # 0-based, in characters
    last_line: int
    last_column: int

    @property
    def size(self) -> int:
        return self.end_pos - self.begin_pos

    def contains(self, other: "SourceRange") -> bool:
        return self.begin_pos <= other.begin_pos and other.end_pos <= self.end_pos


class DiagnosticLevel(Enum):
    NOTE = "note"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"

    @property
    def is_error(self) -> bool:
        return self in (DiagnosticLevel.ERROR, DiagnosticLevel.FATAL)


@dataclass(frozen=True)
class Diagnostic:
    level: DiagnosticLevel
    message: str
    location: SourceRange

    def __str__(self) -> str:
        loc = self.location
        return f"{loc.line}:{loc.column + 1}: {self.level.value}: {self.message}"


@dataclass(frozen=True)
class Comment:
    text: str                   # including the leading "#" or "=begin"
    location: SourceRange

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def is_document(self) -> bool:
        """True for =begin/=end block comments."""
        return self.text.startswith("=begin")


def _default_grammars() -> dict[str, str]:
    # tree-sitter-ruby ships a single grammar that covers every supported version
    return {version: "ruby" for version in ("2.7", "3.0", "3.1", "3.2", "3.3", "3.4")}


@dataclass
class AnalysisConfig:
    ruby_version: str = DEFAULT_RUBY_VERSION
    grammars: dict[str, str] = field(default_factory=_default_grammars)
    default_encoding: str = "utf-8"
    directive: str = "rblint"   # "# rblint:disable Name" comment prefix
