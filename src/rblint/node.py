"""
Syntax tree elements.

Node type tags follow the naming of the Ruby `parser` gem so that rules
written against that vocabulary read naturally: a method call is ``send``,
local assignment is ``lvasgn``, and so on. The set is closed; adding a tag
means adding a member here and a traversal rule in ``traversal``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Union

from .models import SourceRange
from .tokens import Token


class NodeType(Enum):
    # literals and keywords
    TRUE = "true"
    FALSE = "false"
    NIL = "nil"
    INT = "int"
    FLOAT = "float"
    COMPLEX = "complex"
    RATIONAL = "rational"
    STR = "str"
    DSTR = "dstr"
    XSTR = "xstr"
    SYM = "sym"
    DSYM = "dsym"
    REGEXP = "regexp"
    REGOPT = "regopt"
    ARRAY = "array"
    HASH = "hash"
    PAIR = "pair"
    KWARGS = "kwargs"
    SPLAT = "splat"
    KWSPLAT = "kwsplat"
    IRANGE = "irange"
    ERANGE = "erange"
    SELF = "self"
    FILE = "__FILE__"
    LINE = "__LINE__"
    ENCODING = "__ENCODING__"

    # variables and constants
    LVAR = "lvar"
    IVAR = "ivar"
    CVAR = "cvar"
    GVAR = "gvar"
    NTH_REF = "nth_ref"
    BACK_REF = "back_ref"
    CONST = "const"
    CBASE = "cbase"

    # assignment
    LVASGN = "lvasgn"
    IVASGN = "ivasgn"
    CVASGN = "cvasgn"
    GVASGN = "gvasgn"
    CASGN = "casgn"
    MLHS = "mlhs"
    MASGN = "masgn"
    RASGN = "rasgn"
    MRASGN = "mrasgn"
    OP_ASGN = "op_asgn"
    OR_ASGN = "or_asgn"
    AND_ASGN = "and_asgn"
    MATCH_WITH_LVASGN = "match_with_lvasgn"

    # definitions
    MODULE = "module"
    CLASS = "class"
    SCLASS = "sclass"
    DEF = "def"
    DEFS = "defs"
    UNDEF = "undef"
    ALIAS = "alias"
    ARGS = "args"
    ARG = "arg"
    OPTARG = "optarg"
    RESTARG = "restarg"
    KWARG = "kwarg"
    KWOPTARG = "kwoptarg"
    KWRESTARG = "kwrestarg"
    KWNILARG = "kwnilarg"
    BLOCKARG = "blockarg"
    SHADOWARG = "shadowarg"
    PROCARG0 = "procarg0"
    ARG_EXPR = "arg_expr"
    FORWARD_ARGS = "forward_args"
    FORWARD_ARG = "forward_arg"

    # calls
    SEND = "send"
    CSEND = "csend"
    INDEX = "index"
    INDEXASGN = "indexasgn"
    SUPER = "super"
    ZSUPER = "zsuper"
    YIELD = "yield"
    BLOCK = "block"
    NUMBLOCK = "numblock"
    LAMBDA = "lambda"
    BLOCK_PASS = "block_pass"
    FORWARDED_ARGS = "forwarded_args"
    FORWARDED_RESTARG = "forwarded_restarg"
    FORWARDED_KWRESTARG = "forwarded_kwrestarg"
    DEFINED = "defined?"

    # control flow
    AND = "and"
    OR = "or"
    NOT = "not"
    IF = "if"
    CASE = "case"
    WHEN = "when"
    WHILE = "while"
    UNTIL = "until"
    WHILE_POST = "while_post"
    UNTIL_POST = "until_post"
    FOR = "for"
    BREAK = "break"
    NEXT = "next"
    REDO = "redo"
    RETRY = "retry"
    RETURN = "return"
    BEGIN = "begin"
    KWBEGIN = "kwbegin"
    RESCUE = "rescue"
    RESBODY = "resbody"
    ENSURE = "ensure"
    PREEXE = "preexe"
    POSTEXE = "postexe"
    IFLIPFLOP = "iflipflop"
    EFLIPFLOP = "eflipflop"
    MATCH_CURRENT_LINE = "match_current_line"

    # pattern matching
    CASE_MATCH = "case_match"
    IN_PATTERN = "in_pattern"
    IN_MATCH = "in_match"
    MATCH_PATTERN = "match_pattern"
    MATCH_PATTERN_P = "match_pattern_p"
    MATCH_VAR = "match_var"
    PIN = "pin"
    MATCH_ALT = "match_alt"
    MATCH_AS = "match_as"
    MATCH_REST = "match_rest"
    MATCH_NIL_PATTERN = "match_nil_pattern"
    MATCH_WITH_TRAILING_COMMA = "match_with_trailing_comma"
    ARRAY_PATTERN = "array_pattern"
    ARRAY_PATTERN_WITH_TAIL = "array_pattern_with_tail"
    HASH_PATTERN = "hash_pattern"
    FIND_PATTERN = "find_pattern"
    CONST_PATTERN = "const_pattern"
    IF_GUARD = "if_guard"
    UNLESS_GUARD = "unless_guard"
    EMPTY_ELSE = "empty_else"

    @property
    def handler(self) -> str:
        """Name of the visitor method handling this type, e.g. ``on_send``."""
        return f"on_{self.name.lower()}"

    def __repr__(self) -> str:
        return f"NodeType.{self.name}"


@dataclass(frozen=True)
class Location:
    expression: SourceRange
    keyword: Token | None = None    # "if", "while", "def", ...
    begin: Token | None = None      # "do", "then", "(", "{", ...
    end: Token | None = None        # "end", ")", "}", ...


Child = Union["Node", str, int, float, None]

# Children of these types are values rather than identifiers.
_QUOTED = frozenset({NodeType.STR})
_VERBATIM = frozenset({NodeType.INT, NodeType.FLOAT, NodeType.COMPLEX, NodeType.RATIONAL,
                       NodeType.NTH_REF})


@dataclass(frozen=True)
class Node:
    type: NodeType
    children: tuple[Child, ...] = ()
    loc: Location | None = None

    @property
    def child_nodes(self) -> list["Node"]:
        return [c for c in self.children if isinstance(c, Node)]

    @property
    def first_line(self) -> int | None:
        return self.loc.expression.line if self.loc else None

    @property
    def last_line(self) -> int | None:
        return self.loc.expression.last_line if self.loc else None

    def each_node(self, *types: NodeType) -> Iterator["Node"]:
        """Depth-first generator over this node and its descendants."""
        if not types or self.type in types:
            yield self
        for child in self.children:
            if isinstance(child, Node):
                yield from child.each_node(*types)

    def to_sexp(self) -> str:
        """Render as an s-expression, e.g. ``(send nil :puts (int 1))``."""
        parts = [self.type.value]
        for child in self.children:
            parts.append(self._format_child(child))
        return "(" + " ".join(parts) + ")"

    def _format_child(self, child: Child) -> str:
        if isinstance(child, Node):
            return child.to_sexp()
        if child is None:
            return "nil"
        if self.type in _QUOTED:
            return '"' + str(child).replace("\\", "\\\\").replace('"', '\\"') + '"'
        if self.type in _VERBATIM or not isinstance(child, str):
            return str(child)
        return ":" + child

    # ── loops ────────────────────────────────────────────────────────────────

    def is_loop(self) -> bool:
        return self.type in (NodeType.WHILE, NodeType.UNTIL, NodeType.WHILE_POST,
                             NodeType.UNTIL_POST, NodeType.FOR)

    def is_post_condition_loop(self) -> bool:
        """``begin ... end while cond``: the body runs before the first check."""
        return self.type in (NodeType.WHILE_POST, NodeType.UNTIL_POST)

    def loop_keyword(self) -> str | None:
        if self.type in (NodeType.WHILE, NodeType.WHILE_POST):
            return "while"
        if self.type in (NodeType.UNTIL, NodeType.UNTIL_POST):
            return "until"
        if self.type == NodeType.FOR:
            return "for"
        return None

    def inverse_keyword(self) -> str | None:
        return {"while": "until", "until": "while"}.get(self.loop_keyword() or "")

    def is_do(self) -> bool:
        return bool(self.loc and self.loc.begin and self.loc.begin.text == "do")

    def __repr__(self) -> str:
        return self.to_sexp()
