"""
Generic depth-first traversal over ``Node`` trees.

Every ``NodeType`` is classified into a traversal shape that says which child
slots hold expressions worth visiting. ``walk`` dispatches a node to the
visitor's ``on_<type>`` method when one exists and otherwise applies the
shape through ``descend``. Visitors that override a handler and still want
the subtree visited call ``descend`` themselves::

    class SendCounter(Visitor):
        def __init__(self):
            self.count = 0

        def on_send(self, node):
            self.count += 1
            self.descend(node)

The module holds no mutable state, so any number of walks may run
concurrently on different trees.
"""

from enum import Enum
from typing import Callable, Iterable

from .errors import UnclassifiedNodeTypeError, UnknownNodeTypeError
from .node import Child, Node, NodeType

T = NodeType


class Shape(Enum):
    LEAF = "leaf"                           # nothing to traverse
    SINGLE_OPTIONAL = "single-optional"     # children[0], if present
    ALL_CHILDREN = "all-children"           # every present child, in order
    SECOND_SLOT_ONLY = "second-slot-only"   # children[1], if a node
    NODE_CHILDREN = "node-children"         # every child that is a node
    BESPOKE = "bespoke"                     # per-type rule below


Rule = Callable[[Node], Iterable[Child]]


def _slot(children: tuple, index: int) -> Child:
    return children[index] if index < len(children) else None


# ── shape rules ──────────────────────────────────────────────────────────────

def _leaf(node: Node) -> Iterable[Child]:
    return ()


def _single_optional(node: Node) -> Iterable[Child]:
    return (_slot(node.children, 0),)


def _all_children(node: Node) -> Iterable[Child]:
    return node.children


def _second_slot_only(node: Node) -> Iterable[Child]:
    # lvasgn inside mlhs has no value slot
    child = _slot(node.children, 1)
    return (child,) if isinstance(child, Node) else ()


def _node_children(node: Node) -> Iterable[Child]:
    return [c for c in node.children if isinstance(c, Node)]


# ── bespoke rules ────────────────────────────────────────────────────────────

def _const(node: Node) -> Iterable[Child]:
    # (const scope :Name)
    return (node.children[0],)


def _casgn(node: Node) -> Iterable[Child]:
    # (casgn scope :Name value)
    return (node.children[0], _slot(node.children, 2))


def _class(node: Node) -> Iterable[Child]:
    # (class name superclass body)
    name, superclass, body = node.children
    return (name, superclass, body)


def _def(node: Node) -> Iterable[Child]:
    # (def :name args body); args is visited even when empty
    return (node.children[1], node.children[2])


def _defs(node: Node) -> Iterable[Child]:
    # (defs receiver :name args body)
    return (node.children[0], node.children[2], node.children[3])


def _send(node: Node) -> Iterable[Child]:
    # (send receiver :method *args); the method name is data
    return (c for i, c in enumerate(node.children) if i != 1)


def _op_asgn(node: Node) -> Iterable[Child]:
    # (op_asgn target :op value)
    return (node.children[0], node.children[2])


def _if(node: Node) -> Iterable[Child]:
    # (if cond then else)
    return node.children[:3]


def _while(node: Node) -> Iterable[Child]:
    # (while cond body), (module name body), (sclass expr body)
    return node.children[:2]


def _block(node: Node) -> Iterable[Child]:
    # (block call args body)
    return node.children[:3]


def _numblock(node: Node) -> Iterable[Child]:
    # (numblock call max_param body); max_param is an integer, not a node
    return (node.children[0], node.children[2])


def _present_children(node: Node) -> Iterable[Child]:
    return node.children


# ── classification table ─────────────────────────────────────────────────────

_SHAPE_RULES: dict[Shape, Rule] = {
    Shape.LEAF: _leaf,
    Shape.SINGLE_OPTIONAL: _single_optional,
    Shape.ALL_CHILDREN: _all_children,
    Shape.SECOND_SLOT_ONLY: _second_slot_only,
    Shape.NODE_CHILDREN: _node_children,
}

_LEAF_TYPES = (
    T.TRUE, T.FALSE, T.NIL, T.INT, T.FLOAT, T.COMPLEX, T.RATIONAL, T.STR, T.SYM,
    T.REGOPT, T.SELF, T.LVAR, T.IVAR, T.CVAR, T.GVAR, T.NTH_REF, T.BACK_REF,
    T.CBASE, T.ARG, T.RESTARG, T.BLOCKARG, T.SHADOWARG, T.KWRESTARG, T.ZSUPER,
    T.REDO, T.RETRY, T.FORWARD_ARGS, T.FORWARDED_ARGS, T.MATCH_VAR,
    T.MATCH_NIL_PATTERN, T.EMPTY_ELSE, T.FORWARD_ARG, T.LAMBDA, T.PROCARG0,
    T.ENCODING,
)
_SINGLE_OPTIONAL_TYPES = (
    T.SPLAT, T.KWSPLAT, T.BLOCK_PASS, T.NOT, T.BREAK, T.NEXT, T.PREEXE,
    T.POSTEXE, T.MATCH_CURRENT_LINE, T.DEFINED, T.ARG_EXPR, T.PIN, T.MATCH_REST,
    T.IF_GUARD, T.UNLESS_GUARD, T.MATCH_WITH_TRAILING_COMMA,
)
_ALL_CHILDREN_TYPES = (
    T.DSTR, T.DSYM, T.XSTR, T.REGEXP, T.ARRAY, T.HASH, T.PAIR, T.MLHS, T.MASGN,
    T.OR_ASGN, T.AND_ASGN, T.RASGN, T.MRASGN, T.UNDEF, T.ALIAS, T.ARGS, T.SUPER,
    T.YIELD, T.OR, T.AND, T.WHILE_POST, T.UNTIL_POST, T.IFLIPFLOP, T.EFLIPFLOP,
    T.MATCH_WITH_LVASGN, T.BEGIN, T.KWBEGIN, T.RETURN, T.IN_MATCH, T.MATCH_ALT,
    T.MATCH_AS, T.ARRAY_PATTERN, T.ARRAY_PATTERN_WITH_TAIL, T.HASH_PATTERN,
    T.CONST_PATTERN, T.FIND_PATTERN, T.INDEX, T.INDEXASGN,
)
_SECOND_SLOT_ONLY_TYPES = (
    T.LVASGN, T.IVASGN, T.CVASGN, T.GVASGN, T.OPTARG, T.KWARG, T.KWOPTARG,
)
_BESPOKE_RULES: dict[NodeType, Rule] = {
    T.CONST: _const,
    T.CASGN: _casgn,
    T.CLASS: _class,
    T.DEF: _def,
    T.DEFS: _defs,
    T.SEND: _send,
    T.CSEND: _send,
    T.OP_ASGN: _op_asgn,
    T.IF: _if,
    T.WHILE: _while,
    T.UNTIL: _while,
    T.MODULE: _while,
    T.SCLASS: _while,
    T.BLOCK: _block,
    T.NUMBLOCK: _numblock,
    T.CASE: _present_children,
    T.RESCUE: _present_children,
    T.RESBODY: _present_children,
    T.ENSURE: _present_children,
    T.FOR: _present_children,
    T.WHEN: _present_children,
    T.CASE_MATCH: _present_children,
    T.IN_PATTERN: _present_children,
    T.IRANGE: _present_children,
    T.ERANGE: _present_children,
}
# Every other type falls back to NODE_CHILDREN.
_DEFAULT_SHAPE_TYPES = (
    T.KWNILARG, T.KWARGS, T.MATCH_PATTERN, T.MATCH_PATTERN_P,
    T.FORWARDED_RESTARG, T.FORWARDED_KWRESTARG, T.FILE, T.LINE,
)


def _build_table() -> tuple[dict[NodeType, Shape], dict[NodeType, Rule]]:
    shapes: dict[NodeType, Shape] = {}
    groups = (
        (Shape.LEAF, _LEAF_TYPES),
        (Shape.SINGLE_OPTIONAL, _SINGLE_OPTIONAL_TYPES),
        (Shape.ALL_CHILDREN, _ALL_CHILDREN_TYPES),
        (Shape.SECOND_SLOT_ONLY, _SECOND_SLOT_ONLY_TYPES),
        (Shape.BESPOKE, tuple(_BESPOKE_RULES)),
        (Shape.NODE_CHILDREN, _DEFAULT_SHAPE_TYPES),
    )
    for shape, types in groups:
        for node_type in types:
            if node_type in shapes:
                raise UnclassifiedNodeTypeError(
                    f"{node_type!r} is classified as both {shapes[node_type].value} "
                    f"and {shape.value}"
                )
            shapes[node_type] = shape

    missing = [t for t in NodeType if t not in shapes]
    if missing:
        raise UnclassifiedNodeTypeError(
            "no traversal shape for " + ", ".join(t.value for t in missing)
        )

    rules = {
        node_type: _BESPOKE_RULES[node_type] if shape is Shape.BESPOKE else _SHAPE_RULES[shape]
        for node_type, shape in shapes.items()
    }
    return shapes, rules


SHAPES, _RULES = _build_table()


def shape_of(node_type: NodeType) -> Shape:
    return SHAPES[node_type]


def traversed_children(node: Node) -> list[Node]:
    """The children ``descend`` would visit, in visiting order."""
    return [c for c in _RULES[node.type](node) if isinstance(c, Node)]


# ── walking ──────────────────────────────────────────────────────────────────

def walk(node: Node | None, visitor: object) -> None:
    """Visit ``node`` with ``visitor``; no-op for ``None``."""
    if node is None:
        return
    node_type = getattr(node, "type", None)
    if not isinstance(node_type, NodeType):
        raise UnknownNodeTypeError(f"cannot walk {node!r}: not a node")
    handler = getattr(visitor, node_type.handler, None)
    if handler is None:
        descend(node, visitor)
    else:
        handler(node)


def descend(node: Node, visitor: object) -> None:
    """Apply the default traversal for ``node``: walk each traversed child."""
    for child in _RULES[node.type](node):
        if child is not None:
            walk(child, visitor)


class Visitor:
    """Base class for visitors; define ``on_<type>`` methods to hook nodes."""

    def walk(self, node: Node | None) -> None:
        walk(node, self)

    def descend(self, node: Node) -> None:
        descend(node, self)
