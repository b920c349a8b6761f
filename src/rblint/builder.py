"""
Lowering of tree-sitter-ruby concrete syntax trees into ``Node`` trees.

tree-sitter keeps every token and names nodes after grammar rules
(``call``, ``method``, ``if_modifier``); rules expect the abstract shapes of
the ``parser`` gem (``send``, ``def``, ``if``). The builder walks the CST
once, top-down, tracking local variable scopes so that a bare identifier
becomes ``lvar`` when it names a local and ``send nil`` otherwise.

Uses tree-walking (child_by_field_name, named_children) rather than the
Query API.
"""

import logging
import re
import textwrap

from tree_sitter import Node as CSTNode, Tree

from .models import SourceRange
from .node import Location, Node, NodeType
from .tokens import KEYWORDS, Token

log = logging.getLogger(__name__)

T = NodeType

# Nodes tree-sitter may attach anywhere; they never carry semantics here.
_EXTRAS = frozenset({"comment", "heredoc_body", "empty_statement"})

_BEGIN_TOKENS = frozenset({"(", "[", "{", "then", "do"})
_END_TOKENS = frozenset({")", "]", "}", "end"})
_NOT_KEYWORDS = frozenset({"do", "then", "end"})

_BACK_REFS = frozenset({"$&", "$`", "$'", "$+"})
_NUMBERED_PARAM = re.compile(r"_[1-9]\Z")
_NAMED_GROUP = re.compile(r"\(\?<([A-Za-z_]\w*)>")
_ESCAPES = {
    "n": "\n", "t": "\t", "s": " ", "r": "\r", "0": "\0",
    "e": "\x1b", "a": "\a", "b": "\b", "f": "\f", "v": "\v",
}


# ── positions ────────────────────────────────────────────────────────────────

def _char_column(source: bytes, byte_offset: int, byte_column: int) -> int:
    if byte_column == 0:
        return 0
    return len(source[byte_offset - byte_column:byte_offset].decode("utf-8", errors="replace"))


def source_range(cst: CSTNode, source: bytes) -> SourceRange:
    """SourceRange of a CST node; columns are converted from bytes to characters."""
    start_row, start_col = cst.start_point
    end_row, end_col = cst.end_point
    return SourceRange(
        begin_pos=cst.start_byte,
        end_pos=cst.end_byte,
        line=start_row + 1,
        column=_char_column(source, cst.start_byte, start_col),
        last_line=end_row + 1,
        last_column=_char_column(source, cst.end_byte, end_col),
    )


def node_text(cst: CSTNode, source: bytes) -> str:
    return source[cst.start_byte:cst.end_byte].decode("utf-8", errors="replace")


def _join(first: SourceRange, last: SourceRange) -> SourceRange:
    return SourceRange(first.begin_pos, last.end_pos, first.line, first.column,
                       last.last_line, last.last_column)


# ── literal helpers ──────────────────────────────────────────────────────────

def _parse_int(text: str) -> int:
    digits = text.replace("_", "").lower()
    sign = -1 if digits.startswith("-") else 1
    digits = digits.lstrip("+-")
    if digits.startswith("0d"):
        value = int(digits[2:])
    elif digits.startswith(("0x", "0b", "0o")):
        value = int(digits, 0)
    elif len(digits) > 1 and digits.startswith("0"):
        value = int(digits[1:], 8)
    else:
        value = int(digits)
    return sign * value


def _unescape(text: str) -> str:
    if len(text) < 2 or not text.startswith("\\"):
        return text
    body = text[1:]
    if len(body) == 1 and body in _ESCAPES:
        return _ESCAPES[body]
    try:
        if body.startswith("u"):
            return "".join(chr(int(code, 16)) for code in body[1:].strip("{}").split())
        if body.startswith("x"):
            return chr(int(body[1:], 16))
        if body.isdigit():
            return chr(int(body, 8))
    except ValueError:
        return text
    return body


class Builder:
    """Builds the ``Node`` tree for one parse; not reusable across trees."""

    def __init__(self, tree: Tree, source: bytes) -> None:
        self.tree = tree
        self.source = source
        self._scopes: list[set[str]] = [set()]
        self._heredoc_bodies: dict[int, CSTNode] = {}

    def build(self) -> Node | None:
        root = self.tree.root_node
        self._pair_heredocs(root)
        statements = [c for c in self._named(root) if c.type != "uninterpreted"]
        return self._body([self._lower(c) for c in statements])

    # ── plumbing ─────────────────────────────────────────────────────────────

    def _named(self, cst: CSTNode | None) -> list[CSTNode]:
        if cst is None:
            return []
        return [c for c in cst.named_children if c.type not in _EXTRAS]

    def _text(self, cst: CSTNode) -> str:
        return node_text(cst, self.source)

    def _range(self, cst: CSTNode) -> SourceRange:
        return source_range(cst, self.source)

    def _token(self, cst: CSTNode) -> Token:
        return Token(cst.type, self._text(cst), self._range(cst))

    def _loc(self, cst: CSTNode, *extra: CSTNode | None) -> Location:
        keyword = begin = end = None
        for holder in (cst, *extra):
            if holder is None:
                continue
            for child in holder.children:
                if child.is_named:
                    continue
                kind = child.type
                if keyword is None and kind in KEYWORDS and kind not in _NOT_KEYWORDS:
                    keyword = self._token(child)
                elif begin is None and kind in _BEGIN_TOKENS:
                    begin = self._token(child)
                elif kind in _END_TOKENS:
                    end = self._token(child)
        return Location(self._range(cst), keyword, begin, end)

    def _node(self, node_type: NodeType, children: tuple, cst: CSTNode | None,
              *extra: CSTNode | None) -> Node:
        loc = self._loc(cst, *extra) if cst is not None else None
        return Node(node_type, children, loc)

    def _field(self, cst: CSTNode, name: str) -> CSTNode | None:
        return cst.child_by_field_name(name)

    def _lower(self, cst: CSTNode | None) -> Node | None:
        if cst is None:
            return None
        handler = getattr(self, f"_on_{cst.type}", None)
        if handler is None:
            log.debug("No lowering for %s at %d:%d", cst.type,
                      cst.start_point[0] + 1, cst.start_point[1])
            return self._node(T.BEGIN, tuple(self._statements(cst)), cst)
        return handler(cst)

    def _statements(self, cst: CSTNode | None) -> list[Node]:
        out = []
        for child in self._named(cst):
            node = self._lower(child)
            if node is not None:
                out.append(node)
        return out

    def _body(self, nodes: list[Node | None]) -> Node | None:
        nodes = [n for n in nodes if n is not None]
        if not nodes:
            return None
        if len(nodes) == 1:
            return nodes[0]
        return Node(T.BEGIN, tuple(nodes), self._span(nodes))

    def _span(self, nodes: list[Node]) -> Location | None:
        if nodes[0].loc is None or nodes[-1].loc is None:
            return None
        return Location(_join(nodes[0].loc.expression, nodes[-1].loc.expression))

    def _clause(self, cst: CSTNode | None) -> Node | None:
        """Body of a then/else/do/ensure clause."""
        return self._body(self._statements(cst))

    # ── scopes ───────────────────────────────────────────────────────────────

    def _push_scope(self, inherit: bool) -> None:
        self._scopes.append(set(self._scopes[-1]) if inherit else set())

    def _pop_scope(self) -> None:
        self._scopes.pop()

    def _declare(self, name: str) -> None:
        self._scopes[-1].add(name)

    def _is_local(self, name: str) -> bool:
        return name in self._scopes[-1]

    # ── literals ─────────────────────────────────────────────────────────────

    def _on_integer(self, cst):
        return self._node(T.INT, (_parse_int(self._text(cst)),), cst)

    def _on_float(self, cst):
        return self._node(T.FLOAT, (float(self._text(cst).replace("_", "")),), cst)

    def _on_rational(self, cst):
        return self._node(T.RATIONAL, (self._text(cst),), cst)

    def _on_complex(self, cst):
        return self._node(T.COMPLEX, (self._text(cst),), cst)

    def _on_true(self, cst):
        return self._node(T.TRUE, (), cst)

    def _on_false(self, cst):
        return self._node(T.FALSE, (), cst)

    def _on_nil(self, cst):
        return self._node(T.NIL, (), cst)

    def _on_self(self, cst):
        return self._node(T.SELF, (), cst)

    def _on_file(self, cst):
        return self._node(T.FILE, (), cst)

    def _on_line(self, cst):
        return self._node(T.LINE, (), cst)

    def _on_encoding(self, cst):
        return self._node(T.ENCODING, (), cst)

    def _string_parts(self, cst: CSTNode) -> tuple[list[Node], bool]:
        """Split literal contents into str runs and interpolated begin nodes."""
        parts: list[Node] = []
        run: list[str] = []
        run_csts: list[CSTNode] = []
        dynamic = False

        def flush():
            if run_csts:
                loc = Location(_join(self._range(run_csts[0]), self._range(run_csts[-1])))
                parts.append(Node(T.STR, ("".join(run),), loc))
                run.clear()
                run_csts.clear()

        for child in cst.named_children:
            if child.type == "interpolation":
                flush()
                parts.append(self._node(T.BEGIN, tuple(self._statements(child)), child))
                dynamic = True
            elif child.type == "escape_sequence":
                run.append(_unescape(self._text(child)))
                run_csts.append(child)
            elif child.type in ("string_content", "heredoc_content"):
                run.append(self._text(child))
                run_csts.append(child)
        flush()
        return parts, dynamic

    def _string_like(self, cst: CSTNode, static_type: NodeType, dynamic_type: NodeType) -> Node:
        parts, dynamic = self._string_parts(cst)
        if dynamic:
            return self._node(dynamic_type, tuple(parts), cst)
        value = parts[0].children[0] if parts else ""
        return self._node(static_type, (value,), cst)

    def _on_string(self, cst):
        return self._string_like(cst, T.STR, T.DSTR)

    def _on_bare_string(self, cst):
        return self._string_like(cst, T.STR, T.DSTR)

    def _on_chained_string(self, cst):
        return self._node(T.DSTR, tuple(self._statements(cst)), cst)

    def _on_subshell(self, cst):
        parts, _ = self._string_parts(cst)
        return self._node(T.XSTR, tuple(parts), cst)

    def _on_character(self, cst):
        return self._node(T.STR, (_unescape(self._text(cst)[1:]),), cst)

    def _on_simple_symbol(self, cst):
        return self._node(T.SYM, (self._text(cst).lstrip(":"),), cst)

    def _on_hash_key_symbol(self, cst):
        return self._node(T.SYM, (self._text(cst),), cst)

    def _on_delimited_symbol(self, cst):
        return self._string_like(cst, T.SYM, T.DSYM)

    def _on_bare_symbol(self, cst):
        return self._string_like(cst, T.SYM, T.DSYM)

    def _on_string_array(self, cst):
        return self._node(T.ARRAY, tuple(self._statements(cst)), cst)

    def _on_symbol_array(self, cst):
        return self._node(T.ARRAY, tuple(self._statements(cst)), cst)

    def _on_regex(self, cst):
        parts, _ = self._string_parts(cst)
        flags = re.search(r"[a-z]*\Z", self._text(cst)).group()
        regopt = Node(T.REGOPT, tuple(sorted(flags)))
        return self._node(T.REGEXP, (*parts, regopt), cst)

    def _pair_heredocs(self, root: CSTNode) -> None:
        beginnings: list[CSTNode] = []
        bodies: list[CSTNode] = []
        stack = [root]
        while stack:
            cst = stack.pop()
            if cst.type == "heredoc_beginning":
                beginnings.append(cst)
            elif cst.type == "heredoc_body":
                bodies.append(cst)
                continue
            stack.extend(reversed(cst.children))
        beginnings.sort(key=lambda c: c.start_byte)
        bodies.sort(key=lambda c: c.start_byte)
        for beginning, body in zip(beginnings, bodies):
            self._heredoc_bodies[beginning.start_byte] = body

    def _on_heredoc_beginning(self, cst):
        opener = self._text(cst)
        body = self._heredoc_bodies.get(cst.start_byte)
        if body is None:
            return self._node(T.STR, ("",), cst)
        parts, dynamic = self._string_parts(body)
        # the body starts with the line break that ends the opener's line
        if parts and parts[0].type == T.STR and parts[0].children[0].startswith("\n"):
            first = parts[0].children[0][1:]
            parts[0] = Node(T.STR, (first,), parts[0].loc)
            if not first:
                del parts[0]
        if opener.strip("<~-").startswith("`"):
            return self._node(T.XSTR, tuple(parts), cst)
        if dynamic:
            return self._node(T.DSTR, tuple(parts), cst)
        value = parts[0].children[0] if parts else ""
        if opener.startswith("<<~"):
            value = textwrap.dedent(value)
        return self._node(T.STR, (value,), cst)

    def _on_array(self, cst):
        return self._node(T.ARRAY, tuple(self._arguments(cst, T.HASH)), cst)

    def _on_hash(self, cst):
        return self._node(T.HASH, tuple(self._statements(cst)), cst)

    def _on_pair(self, cst):
        key_cst = self._field(cst, "key")
        value_cst = self._field(cst, "value")
        key = self._lower(key_cst)
        if value_cst is not None:
            value = self._lower(value_cst)
        else:
            # {x:} shorthand reads the local or calls the method named x
            value = self._identifier(key_cst, self._text(key_cst).rstrip(":"))
        return self._node(T.PAIR, (key, value), cst)

    def _on_range(self, cst):
        operator = self._field(cst, "operator")
        if operator is None:
            operator = next((c for c in cst.children if c.type in ("..", "...")), None)
        node_type = T.ERANGE if operator is not None and operator.type == "..." else T.IRANGE
        begin = self._lower(self._field(cst, "begin"))
        end = self._lower(self._field(cst, "end"))
        return self._node(node_type, (begin, end), cst)

    def _on_parenthesized_statements(self, cst):
        return self._node(T.BEGIN, tuple(self._statements(cst)), cst)

    def _on_interpolation(self, cst):
        return self._node(T.BEGIN, tuple(self._statements(cst)), cst)

    # ── variables ────────────────────────────────────────────────────────────

    def _identifier(self, cst: CSTNode, name: str) -> Node:
        if self._is_local(name):
            return self._node(T.LVAR, (name,), cst)
        return self._node(T.SEND, (None, name), cst)

    def _on_identifier(self, cst):
        return self._identifier(cst, self._text(cst))

    def _on_constant(self, cst):
        return self._node(T.CONST, (None, self._text(cst)), cst)

    def _on_instance_variable(self, cst):
        return self._node(T.IVAR, (self._text(cst),), cst)

    def _on_class_variable(self, cst):
        return self._node(T.CVAR, (self._text(cst),), cst)

    def _on_global_variable(self, cst):
        name = self._text(cst)
        if re.fullmatch(r"\$[1-9]\d*", name):
            return self._node(T.NTH_REF, (int(name[1:]),), cst)
        if name in _BACK_REFS:
            return self._node(T.BACK_REF, (name,), cst)
        return self._node(T.GVAR, (name,), cst)

    def _scope_and_name(self, cst: CSTNode) -> tuple[Node, str, CSTNode]:
        scope_cst = self._field(cst, "scope")
        name_cst = self._field(cst, "name")
        if scope_cst is not None:
            scope = self._lower(scope_cst)
        else:
            colons = next(c for c in cst.children if c.type == "::")
            scope = self._node(T.CBASE, (), colons)
        return scope, self._text(name_cst), name_cst

    def _on_scope_resolution(self, cst):
        scope, name, name_cst = self._scope_and_name(cst)
        if name_cst.type == "identifier":
            return self._node(T.SEND, (scope, name), cst)
        return self._node(T.CONST, (scope, name), cst)

    def _on_super(self, cst):
        return self._node(T.ZSUPER, (), cst)

    # ── assignment ───────────────────────────────────────────────────────────

    def _target(self, cst: CSTNode, setter: bool = True) -> Node:
        """Assignment target without its value slot."""
        kind = cst.type
        if kind == "identifier":
            name = self._text(cst)
            self._declare(name)
            return self._node(T.LVASGN, (name,), cst)
        if kind == "instance_variable":
            return self._node(T.IVASGN, (self._text(cst),), cst)
        if kind == "class_variable":
            return self._node(T.CVASGN, (self._text(cst),), cst)
        if kind == "global_variable":
            return self._node(T.GVASGN, (self._text(cst),), cst)
        if kind == "constant":
            return self._node(T.CASGN, (None, self._text(cst)), cst)
        if kind == "scope_resolution":
            scope, name, _ = self._scope_and_name(cst)
            return self._node(T.CASGN, (scope, name), cst)
        if kind == "element_reference":
            receiver = self._lower(self._field(cst, "object"))
            args = self._arguments_of(self._named(cst)[1:])
            return self._node(T.INDEXASGN, (receiver, *args), cst)
        if kind == "call":
            receiver = self._lower(self._field(cst, "receiver"))
            name = self._text(self._field(cst, "method"))
            node_type = T.CSEND if self._call_operator(cst) == "&." else T.SEND
            return self._node(node_type, (receiver, name + "=" if setter else name), cst)
        if kind in ("left_assignment_list", "destructured_left_assignment"):
            return self._node(T.MLHS, tuple(self._target(c) for c in self._named(cst)), cst)
        if kind == "rest_assignment":
            inner = self._named(cst)
            return self._node(T.SPLAT, (self._target(inner[0]),) if inner else (), cst)
        return self._lower(cst)

    def _with_value(self, target: Node, value: Node | None, cst: CSTNode) -> Node:
        return Node(target.type, (*target.children, value), self._loc(cst))

    def _on_assignment(self, cst):
        left_cst = self._field(cst, "left")
        right_cst = self._field(cst, "right")
        target = self._target(left_cst)
        if right_cst.type == "right_assignment_list":
            value = self._node(T.ARRAY, tuple(self._arguments(right_cst, T.HASH)), right_cst)
        elif right_cst.type == "splat_argument":
            value = self._node(T.ARRAY, (self._lower(right_cst),), right_cst)
        else:
            value = self._lower(right_cst)
        if target.type == T.MLHS:
            return self._node(T.MASGN, (target, value), cst)
        return self._with_value(target, value, cst)

    def _on_operator_assignment(self, cst):
        operator = self._text(self._field(cst, "operator"))
        target = self._target(self._field(cst, "left"), setter=False)
        value = self._lower(self._field(cst, "right"))
        if operator == "||=":
            return self._node(T.OR_ASGN, (target, value), cst)
        if operator == "&&=":
            return self._node(T.AND_ASGN, (target, value), cst)
        return self._node(T.OP_ASGN, (target, operator[:-1], value), cst)

    # ── definitions ──────────────────────────────────────────────────────────

    def _method_name(self, cst: CSTNode) -> str:
        return self._text(cst).lstrip(":")

    def _definition_body(self, cst: CSTNode | None) -> Node | None:
        if cst is None:
            return None
        if cst.type == "body_statement":
            return self._compound(self._named(cst))
        # endless method: def foo = expr
        return self._lower(cst)

    def _on_method(self, cst):
        name = self._method_name(self._field(cst, "name"))
        self._push_scope(inherit=False)
        try:
            args = self._parameters(self._field(cst, "parameters"))
            body = self._definition_body(self._field(cst, "body"))
        finally:
            self._pop_scope()
        return self._node(T.DEF, (name, args, body), cst)

    def _on_singleton_method(self, cst):
        receiver = self._lower(self._field(cst, "object"))
        name = self._method_name(self._field(cst, "name"))
        self._push_scope(inherit=False)
        try:
            args = self._parameters(self._field(cst, "parameters"))
            body = self._definition_body(self._field(cst, "body"))
        finally:
            self._pop_scope()
        return self._node(T.DEFS, (receiver, name, args, body), cst)

    def _parameters(self, cst: CSTNode | None) -> Node:
        if cst is None:
            return Node(T.ARGS, ())
        shadow = {c.start_byte for c in cst.children_by_field_name("locals")}
        params = []
        for child in self._named(cst):
            if child.start_byte in shadow:
                name = self._text(child)
                self._declare(name)
                params.append(self._node(T.SHADOWARG, (name,), child))
            else:
                params.append(self._parameter(child))
        return self._node(T.ARGS, tuple(params), cst)

    def _optional_name(self, cst: CSTNode) -> tuple:
        name_cst = self._field(cst, "name")
        if name_cst is None:
            return ()
        name = self._text(name_cst)
        self._declare(name)
        return (name,)

    def _parameter(self, cst: CSTNode) -> Node:
        kind = cst.type
        if kind == "identifier":
            name = self._text(cst)
            self._declare(name)
            return self._node(T.ARG, (name,), cst)
        if kind == "optional_parameter":
            name = self._optional_name(cst)
            return self._node(T.OPTARG, (*name, self._lower(self._field(cst, "value"))), cst)
        if kind == "keyword_parameter":
            name = self._optional_name(cst)
            value_cst = self._field(cst, "value")
            if value_cst is None:
                return self._node(T.KWARG, name, cst)
            return self._node(T.KWOPTARG, (*name, self._lower(value_cst)), cst)
        if kind == "splat_parameter":
            return self._node(T.RESTARG, self._optional_name(cst), cst)
        if kind == "hash_splat_parameter":
            return self._node(T.KWRESTARG, self._optional_name(cst), cst)
        if kind == "hash_splat_nil":
            return self._node(T.KWNILARG, (), cst)
        if kind == "block_parameter":
            return self._node(T.BLOCKARG, self._optional_name(cst), cst)
        if kind == "forward_parameter":
            return self._node(T.FORWARD_ARG, (), cst)
        if kind == "destructured_parameter":
            return self._node(T.MLHS, tuple(self._parameter(c) for c in self._named(cst)), cst)
        return self._lower(cst)

    def _on_class(self, cst):
        name = self._lower(self._field(cst, "name"))
        superclass_cst = self._field(cst, "superclass")
        superclass = None
        if superclass_cst is not None:
            superclass = self._body(self._statements(superclass_cst))
        self._push_scope(inherit=False)
        try:
            body = self._definition_body(self._field(cst, "body"))
        finally:
            self._pop_scope()
        return self._node(T.CLASS, (name, superclass, body), cst)

    def _on_module(self, cst):
        name = self._lower(self._field(cst, "name"))
        self._push_scope(inherit=False)
        try:
            body = self._definition_body(self._field(cst, "body"))
        finally:
            self._pop_scope()
        return self._node(T.MODULE, (name, body), cst)

    def _on_singleton_class(self, cst):
        value = self._lower(self._field(cst, "value"))
        self._push_scope(inherit=False)
        try:
            body = self._definition_body(self._field(cst, "body"))
        finally:
            self._pop_scope()
        return self._node(T.SCLASS, (value, body), cst)

    def _method_symbol(self, cst: CSTNode) -> Node:
        if cst.type in ("global_variable", "simple_symbol", "delimited_symbol"):
            return self._lower(cst)
        return self._node(T.SYM, (self._method_name(cst),), cst)

    def _on_alias(self, cst):
        names = [self._method_symbol(c) for c in self._named(cst)]
        return self._node(T.ALIAS, tuple(names[:2]), cst)

    def _on_undef(self, cst):
        return self._node(T.UNDEF, tuple(self._method_symbol(c) for c in self._named(cst)), cst)

    # ── rescue / ensure ──────────────────────────────────────────────────────

    def _compound(self, children: list[CSTNode], wrap: NodeType | None = None,
                  cst: CSTNode | None = None) -> Node | None:
        """Statements followed by optional rescue/else/ensure clauses."""
        statements: list[Node] = []
        resbodies: list[Node] = []
        else_cst = ensure_cst = None
        for child in children:
            if child.type == "rescue":
                resbodies.append(self._resbody(child))
            elif child.type == "else":
                else_cst = child
            elif child.type == "ensure":
                ensure_cst = child
            else:
                node = self._lower(child)
                if node is not None:
                    statements.append(node)

        if not resbodies and else_cst is None and ensure_cst is None:
            if wrap is not None:
                return self._node(wrap, tuple(statements), cst)
            return self._body(statements)

        body = self._body(statements)
        if resbodies:
            else_body = self._clause(else_cst)
            body = Node(T.RESCUE, (body, *resbodies, else_body), self._span_of(children))
        elif else_cst is not None:
            body = self._body([body, self._clause(else_cst)])
        if ensure_cst is not None:
            body = Node(T.ENSURE, (body, self._clause(ensure_cst)), self._span_of(children))
        if wrap is not None:
            return self._node(wrap, (body,), cst)
        return body

    def _span_of(self, children: list[CSTNode]) -> Location:
        return Location(_join(self._range(children[0]), self._range(children[-1])))

    def _resbody(self, cst: CSTNode) -> Node:
        exceptions_cst = self._field(cst, "exceptions")
        exceptions = None
        if exceptions_cst is not None:
            exceptions = self._node(T.ARRAY, tuple(self._statements(exceptions_cst)), exceptions_cst)
        variable_cst = self._field(cst, "variable")
        variable = None
        if variable_cst is not None:
            inner = self._named(variable_cst)
            variable = self._target(inner[0]) if inner else None
        body = self._clause(self._field(cst, "body"))
        return self._node(T.RESBODY, (exceptions, variable, body), cst)

    def _on_begin(self, cst):
        children = self._named(cst)
        if len(children) == 1 and children[0].type == "body_statement":
            children = self._named(children[0])
        return self._compound(children, wrap=T.KWBEGIN, cst=cst)

    def _on_body_statement(self, cst):
        return self._compound(self._named(cst))

    def _on_rescue_modifier(self, cst):
        body = self._lower(self._field(cst, "body"))
        handler_cst = self._field(cst, "handler")
        resbody = self._node(T.RESBODY, (None, None, self._lower(handler_cst)), handler_cst)
        return self._node(T.RESCUE, (body, resbody, None), cst)

    # ── control flow ─────────────────────────────────────────────────────────

    def _on_if(self, cst):
        condition = self._lower(self._field(cst, "condition"))
        consequence_cst = self._field(cst, "consequence")
        alternative_cst = self._field(cst, "alternative")
        consequence = self._clause(consequence_cst)
        alternative = self._else_branch(alternative_cst)
        return self._node(T.IF, (condition, consequence, alternative), cst, consequence_cst)

    _on_elsif = _on_if

    def _else_branch(self, cst: CSTNode | None) -> Node | None:
        if cst is None:
            return None
        if cst.type == "elsif":
            return self._lower(cst)
        return self._clause(cst)

    def _on_unless(self, cst):
        condition = self._lower(self._field(cst, "condition"))
        consequence_cst = self._field(cst, "consequence")
        consequence = self._clause(consequence_cst)
        alternative = self._else_branch(self._field(cst, "alternative"))
        return self._node(T.IF, (condition, alternative, consequence), cst, consequence_cst)

    def _on_if_modifier(self, cst):
        body = self._lower(self._field(cst, "body"))
        condition = self._lower(self._field(cst, "condition"))
        return self._node(T.IF, (condition, body, None), cst)

    def _on_unless_modifier(self, cst):
        body = self._lower(self._field(cst, "body"))
        condition = self._lower(self._field(cst, "condition"))
        return self._node(T.IF, (condition, None, body), cst)

    def _on_conditional(self, cst):
        condition = self._lower(self._field(cst, "condition"))
        consequence = self._lower(self._field(cst, "consequence"))
        alternative = self._lower(self._field(cst, "alternative"))
        return self._node(T.IF, (condition, consequence, alternative), cst)

    def _loop(self, cst: CSTNode, node_type: NodeType) -> Node:
        condition = self._lower(self._field(cst, "condition"))
        body_cst = self._field(cst, "body")
        return self._node(node_type, (condition, self._clause(body_cst)), cst, body_cst)

    def _on_while(self, cst):
        return self._loop(cst, T.WHILE)

    def _on_until(self, cst):
        return self._loop(cst, T.UNTIL)

    def _loop_modifier(self, cst: CSTNode, node_type: NodeType, post_type: NodeType) -> Node:
        body_cst = self._field(cst, "body")
        body = self._lower(body_cst)
        condition = self._lower(self._field(cst, "condition"))
        if body_cst.type == "begin":
            return self._node(post_type, (condition, body), cst)
        return self._node(node_type, (condition, body), cst)

    def _on_while_modifier(self, cst):
        return self._loop_modifier(cst, T.WHILE, T.WHILE_POST)

    def _on_until_modifier(self, cst):
        return self._loop_modifier(cst, T.UNTIL, T.UNTIL_POST)

    def _on_for(self, cst):
        variable = self._target(self._field(cst, "pattern"))
        value_cst = self._field(cst, "value")
        iterable = self._body(self._statements(value_cst))
        body_cst = self._field(cst, "body")
        return self._node(T.FOR, (variable, iterable, self._clause(body_cst)), cst, body_cst)

    def _on_case(self, cst):
        subject = self._lower(self._field(cst, "value"))
        whens = [self._lower(c) for c in self._named(cst) if c.type == "when"]
        else_cst = next((c for c in self._named(cst) if c.type == "else"), None)
        return self._node(T.CASE, (subject, *whens, self._clause(else_cst)), cst)

    def _on_when(self, cst):
        conditions = [self._lower(c) for c in self._named(cst) if c.type == "pattern"]
        body = self._clause(self._field(cst, "body"))
        return self._node(T.WHEN, (*conditions, body), cst)

    def _on_pattern(self, cst):
        return self._body(self._statements(cst))

    def _on_case_match(self, cst):
        subject = self._lower(self._field(cst, "value"))
        clauses = [self._lower(c) for c in self._named(cst) if c.type == "in_clause"]
        else_cst = next((c for c in self._named(cst) if c.type == "else"), None)
        else_body = None
        if else_cst is not None:
            else_body = self._clause(else_cst) or self._node(T.EMPTY_ELSE, (), else_cst)
        return self._node(T.CASE_MATCH, (subject, *clauses, else_body), cst)

    def _on_in_clause(self, cst):
        pattern = self._pattern(self._field(cst, "pattern"))
        guard_cst = self._field(cst, "guard")
        guard = None
        if guard_cst is not None:
            node_type = T.IF_GUARD if guard_cst.type == "if_guard" else T.UNLESS_GUARD
            condition_cst = self._field(guard_cst, "condition")
            if condition_cst is None:
                condition_cst = self._named(guard_cst)[0]
            guard = self._node(node_type, (self._lower(condition_cst),), guard_cst)
        body = self._clause(self._field(cst, "body"))
        return self._node(T.IN_PATTERN, (pattern, guard, body), cst)

    def _jump_arguments(self, cst: CSTNode) -> list[Node]:
        arguments = next((c for c in self._named(cst) if c.type == "argument_list"), None)
        return self._arguments(arguments) if arguments is not None else []

    def _on_return(self, cst):
        return self._node(T.RETURN, tuple(self._jump_arguments(cst)), cst)

    def _single_value_jump(self, cst: CSTNode, node_type: NodeType) -> Node:
        args = self._jump_arguments(cst)
        if len(args) > 1:
            args = [Node(T.ARRAY, tuple(args), self._span(args))]
        return self._node(node_type, tuple(args), cst)

    def _on_break(self, cst):
        return self._single_value_jump(cst, T.BREAK)

    def _on_next(self, cst):
        return self._single_value_jump(cst, T.NEXT)

    def _on_redo(self, cst):
        return self._node(T.REDO, (), cst)

    def _on_retry(self, cst):
        return self._node(T.RETRY, (), cst)

    def _on_yield(self, cst):
        return self._node(T.YIELD, tuple(self._jump_arguments(cst)), cst)

    def _on_begin_block(self, cst):
        return self._node(T.PREEXE, (self._clause(cst),), cst)

    def _on_end_block(self, cst):
        return self._node(T.POSTEXE, (self._clause(cst),), cst)

    # ── operators ────────────────────────────────────────────────────────────

    def _on_binary(self, cst):
        left_cst = self._field(cst, "left")
        operator = self._text(self._field(cst, "operator"))
        if operator == "=~" and left_cst.type == "regex":
            names = _NAMED_GROUP.findall(self._text(left_cst))
            left = self._lower(left_cst)
            right = self._lower(self._field(cst, "right"))
            if names and all(p.type in (T.STR, T.REGOPT) for p in left.child_nodes):
                for name in names:
                    self._declare(name)
                return self._node(T.MATCH_WITH_LVASGN, (left, right), cst)
            return self._node(T.SEND, (left, operator, right), cst)
        left = self._lower(left_cst)
        right = self._lower(self._field(cst, "right"))
        if operator in ("and", "&&"):
            return self._node(T.AND, (left, right), cst)
        if operator in ("or", "||"):
            return self._node(T.OR, (left, right), cst)
        return self._node(T.SEND, (left, operator, right), cst)

    def _on_unary(self, cst):
        operator = self._text(self._field(cst, "operator"))
        operand_cst = self._field(cst, "operand")
        if operator == "defined?":
            inner = operand_cst
            if inner.type == "parenthesized_statements" and len(self._named(inner)) == 1:
                inner = self._named(inner)[0]
            return self._node(T.DEFINED, (self._lower(inner),), cst)
        if operator == "-" and operand_cst.type in ("integer", "float"):
            literal = self._lower(operand_cst)
            return self._node(literal.type, (-literal.children[0],), cst)
        operand = self._lower(operand_cst)
        if operator in ("!", "not"):
            return self._node(T.SEND, (operand, "!"), cst)
        if operator in ("-", "+"):
            return self._node(T.SEND, (operand, operator + "@"), cst)
        return self._node(T.SEND, (operand, operator), cst)

    def _on_not(self, cst):
        operand = self._body(self._statements(cst))
        return self._node(T.SEND, (operand, "!"), cst)

    # ── calls ────────────────────────────────────────────────────────────────

    def _call_operator(self, cst: CSTNode) -> str | None:
        operator = self._field(cst, "operator")
        if operator is None:
            operator = next((c for c in cst.children if c.type in (".", "&.", "::")), None)
        return operator.type if operator is not None else None

    def _on_call(self, cst):
        receiver_cst = self._field(cst, "receiver")
        method_cst = self._field(cst, "method")
        arguments_cst = self._field(cst, "arguments")
        block_cst = self._field(cst, "block")

        call_end = next(c for c in (arguments_cst, method_cst, receiver_cst) if c is not None)
        call_loc = self._loc(cst, arguments_cst)
        if block_cst is not None:
            call_loc = Location(_join(self._range(cst), self._range(call_end)))

        if receiver_cst is None and method_cst is not None and method_cst.type == "super":
            if arguments_cst is None:
                call = Node(T.ZSUPER, (), call_loc)
            else:
                call = Node(T.SUPER, tuple(self._arguments(arguments_cst)), call_loc)
        else:
            receiver = self._lower(receiver_cst)
            if method_cst is None or method_cst.type == "argument_list":
                # a.() is shorthand for a.call()
                name = "call"
                if method_cst is not None:
                    arguments_cst = method_cst
            else:
                name = self._method_name(method_cst)
            args = self._arguments(arguments_cst) if arguments_cst is not None else []
            node_type = T.CSEND if self._call_operator(cst) == "&." else T.SEND
            call = Node(node_type, (receiver, name, *args), call_loc)

        if block_cst is None:
            return call
        return self._attach_block(call, block_cst, cst)

    def _on_lambda(self, cst):
        lambda_node = Node(T.LAMBDA, (), Location(self._range(cst.children[0])))
        return self._attach_block(lambda_node, self._field(cst, "body"), cst,
                                  params_cst=self._field(cst, "parameters"))

    def _numbered_params(self, cst: CSTNode | None) -> int:
        """Highest _1.._9 referenced in a block body, ignoring nested blocks."""
        if cst is None:
            return 0
        highest = 0
        stack = [cst]
        while stack:
            node = stack.pop()
            if node.type in ("block", "do_block", "lambda"):
                continue
            if node.type == "identifier":
                text = self._text(node)
                if _NUMBERED_PARAM.match(text):
                    highest = max(highest, int(text[1]))
            stack.extend(node.named_children)
        return highest

    def _attach_block(self, call: Node, block_cst: CSTNode, cst: CSTNode,
                      params_cst: CSTNode | None = None) -> Node:
        if params_cst is None:
            params_cst = self._field(block_cst, "parameters")
        body_cst = self._field(block_cst, "body")
        self._push_scope(inherit=True)
        try:
            numbered = 0 if params_cst is not None else self._numbered_params(body_cst)
            if numbered:
                for i in range(1, numbered + 1):
                    self._declare(f"_{i}")
                body = self._block_body(body_cst)
                return self._node(T.NUMBLOCK, (call, numbered, body), cst, block_cst)
            args = self._parameters(params_cst)
            body = self._block_body(body_cst)
        finally:
            self._pop_scope()
        return self._node(T.BLOCK, (call, args, body), cst, block_cst)

    def _block_body(self, cst: CSTNode | None) -> Node | None:
        if cst is None:
            return None
        return self._compound(self._named(cst))

    def _arguments(self, cst: CSTNode, kwargs_type: NodeType = T.KWARGS) -> list[Node]:
        return self._arguments_of(self._named(cst), kwargs_type)

    def _arguments_of(self, children: list[CSTNode], kwargs_type: NodeType = T.KWARGS) -> list[Node]:
        """Lower call arguments, gathering trailing pairs into one hash node."""
        out: list[Node | list[Node]] = []
        pairs: list[Node] | None = None
        for child in children:
            node = self._lower(child)
            if node is None:
                continue
            if child.type in ("pair", "hash_splat_argument"):
                if pairs is None:
                    pairs = []
                    out.append(pairs)
                pairs.append(node)
            else:
                out.append(node)
        return [Node(kwargs_type, tuple(item), self._span(item)) if isinstance(item, list) else item
                for item in out]

    def _on_argument_list(self, cst):
        return self._body(self._arguments(cst))

    def _on_splat_argument(self, cst):
        inner = self._named(cst)
        if not inner:
            return self._node(T.FORWARDED_RESTARG, (), cst)
        return self._node(T.SPLAT, (self._lower(inner[0]),), cst)

    def _on_hash_splat_argument(self, cst):
        inner = self._named(cst)
        if not inner:
            return self._node(T.FORWARDED_KWRESTARG, (), cst)
        return self._node(T.KWSPLAT, (self._lower(inner[0]),), cst)

    def _on_block_argument(self, cst):
        inner = self._named(cst)
        return self._node(T.BLOCK_PASS, (self._lower(inner[0]) if inner else None,), cst)

    def _on_forward_argument(self, cst):
        return self._node(T.FORWARDED_ARGS, (), cst)

    def _on_element_reference(self, cst):
        receiver = self._lower(self._field(cst, "object"))
        args = self._arguments_of(self._named(cst)[1:])
        return self._node(T.INDEX, (receiver, *args), cst)

    # ── pattern matching ─────────────────────────────────────────────────────

    def _on_match_pattern(self, cst):
        value = self._lower(self._field(cst, "value"))
        return self._node(T.MATCH_PATTERN, (value, self._pattern(self._field(cst, "pattern"))), cst)

    def _on_test_pattern(self, cst):
        value = self._lower(self._field(cst, "value"))
        return self._node(T.MATCH_PATTERN_P, (value, self._pattern(self._field(cst, "pattern"))), cst)

    def _match_var(self, cst: CSTNode) -> Node:
        name = self._text(cst)
        self._declare(name)
        return self._node(T.MATCH_VAR, (name,), cst)

    def _match_rest(self, cst: CSTNode) -> Node:
        name_cst = self._field(cst, "name")
        if name_cst is None:
            return self._node(T.MATCH_REST, (), cst)
        return self._node(T.MATCH_REST, (self._match_var(name_cst),), cst)

    def _with_const(self, cst: CSTNode, node_type: NodeType, items: list[Node]) -> Node:
        const_cst = self._field(cst, "class")
        inner = self._node(node_type, tuple(items), cst)
        if const_cst is None:
            return inner
        return self._node(T.CONST_PATTERN, (self._lower(const_cst), inner), cst)

    def _pattern_items(self, cst: CSTNode) -> list[Node]:
        const_cst = self._field(cst, "class")
        skip = const_cst.start_byte if const_cst is not None else None
        return [self._pattern(c) for c in self._named(cst) if c.start_byte != skip]

    def _pattern(self, cst: CSTNode | None) -> Node | None:
        if cst is None:
            return None
        kind = cst.type
        if kind == "identifier":
            return self._match_var(cst)
        if kind in ("splat_parameter", "hash_splat_parameter"):
            return self._match_rest(cst)
        if kind == "hash_splat_nil":
            return self._node(T.MATCH_NIL_PATTERN, (), cst)
        if kind == "array_pattern":
            return self._with_const(cst, T.ARRAY_PATTERN, self._pattern_items(cst))
        if kind == "find_pattern":
            return self._with_const(cst, T.FIND_PATTERN, self._pattern_items(cst))
        if kind == "hash_pattern":
            return self._with_const(cst, T.HASH_PATTERN, self._pattern_items(cst))
        if kind == "keyword_pattern":
            key_cst = self._field(cst, "key")
            value_cst = self._field(cst, "value")
            if value_cst is None:
                name = self._text(key_cst).rstrip(":")
                self._declare(name)
                return self._node(T.MATCH_VAR, (name,), cst)
            key = self._lower(key_cst)
            return self._node(T.PAIR, (key, self._pattern(value_cst)), cst)
        if kind == "alternative_pattern":
            alternatives = [self._pattern(c) for c in self._named(cst)]
            result = alternatives[0]
            for alternative in alternatives[1:]:
                result = self._node(T.MATCH_ALT, (result, alternative), cst)
            return result
        if kind == "as_pattern":
            value = self._pattern(self._field(cst, "value"))
            return self._node(T.MATCH_AS, (value, self._match_var(self._field(cst, "name"))), cst)
        if kind == "parenthesized_pattern":
            return self._node(T.BEGIN, tuple(self._pattern(c) for c in self._named(cst)), cst)
        if kind == "variable_reference_pattern":
            inner = self._named(cst)
            return self._node(T.PIN, (self._lower(inner[0]),), cst)
        if kind == "expression_reference_pattern":
            value = self._node(T.BEGIN, tuple(self._statements(cst)), cst)
            return self._node(T.PIN, (value,), cst)
        return self._lower(cst)

    # ── clause containers reached outside their parents ─────────────────────

    def _on_then(self, cst):
        return self._clause(cst)

    def _on_else(self, cst):
        return self._clause(cst)

    def _on_do(self, cst):
        return self._clause(cst)

    def _on_in(self, cst):
        return self._clause(cst)

    def _on_block_body(self, cst):
        return self._clause(cst)

    def _on_superclass(self, cst):
        return self._clause(cst)
