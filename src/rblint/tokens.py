"""Token values built from the leaves of the parser's concrete syntax tree."""

from dataclasses import dataclass

from .models import SourceRange

KEYWORDS = frozenset({
    "BEGIN", "END", "__ENCODING__", "__FILE__", "__LINE__", "alias", "and",
    "begin", "break", "case", "class", "def", "defined?", "do", "else", "elsif",
    "end", "ensure", "false", "for", "if", "in", "module", "next", "nil", "not",
    "or", "redo", "rescue", "retry", "return", "self", "super", "then", "true",
    "undef", "unless", "until", "when", "while", "yield",
})


@dataclass(frozen=True)
class Token:
    type: str                   # leaf kind: "def", "identifier", "(", ...
    text: str
    pos: SourceRange

    @classmethod
    def from_parser_token(cls, parser_token: tuple[str, tuple[str, SourceRange]]) -> "Token":
        type_, (text, pos) = parser_token
        return cls(type_, text, pos)

    @property
    def line(self) -> int:
        return self.pos.line

    @property
    def column(self) -> int:
        return self.pos.column

    @property
    def begin_pos(self) -> int:
        return self.pos.begin_pos

    @property
    def end_pos(self) -> int:
        return self.pos.end_pos

    def is_comma(self) -> bool:
        return self.type == ","

    def is_semicolon(self) -> bool:
        return self.type == ";"

    def is_dot(self) -> bool:
        return self.type in (".", "&.")

    def is_left_paren(self) -> bool:
        return self.type == "("

    def is_right_paren(self) -> bool:
        return self.type == ")"

    def is_left_bracket(self) -> bool:
        return self.type == "["

    def is_right_bracket(self) -> bool:
        return self.type == "]"

    def is_left_brace(self) -> bool:
        return self.type in ("{", "#{")

    def is_right_brace(self) -> bool:
        return self.type == "}"

    def is_keyword(self) -> bool:
        return self.type in KEYWORDS

    def __str__(self) -> str:
        return f"[[{self.line}, {self.column}], {self.type}, {self.text!r}]"
