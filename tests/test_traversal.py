"""
Tests for the traversal engine over hand-built trees.
"""

import pytest

from rblint.errors import UnknownNodeTypeError
from rblint.node import Node, NodeType as T
from rblint.traversal import SHAPES, Shape, Visitor, descend, shape_of, traversed_children, walk


def n(node_type, *children):
    return Node(node_type, tuple(children))


A = n(T.LVAR, "a")
B = n(T.LVAR, "b")
C = n(T.LVAR, "c")
ONE = n(T.INT, 1)


class TestClassificationTable:

    def test_every_type_is_classified(self):
        assert set(SHAPES) == set(T)

    @pytest.mark.parametrize("node_type, shape", [
        (T.INT, Shape.LEAF),
        (T.LAMBDA, Shape.LEAF),
        (T.SPLAT, Shape.SINGLE_OPTIONAL),
        (T.DEFINED, Shape.SINGLE_OPTIONAL),
        (T.ARRAY, Shape.ALL_CHILDREN),
        (T.INDEXASGN, Shape.ALL_CHILDREN),
        (T.LVASGN, Shape.SECOND_SLOT_ONLY),
        (T.KWOPTARG, Shape.SECOND_SLOT_ONLY),
        (T.SEND, Shape.BESPOKE),
        (T.NUMBLOCK, Shape.BESPOKE),
        (T.KWARGS, Shape.NODE_CHILDREN),
        (T.FILE, Shape.NODE_CHILDREN),
    ])
    def test_shape_of(self, node_type, shape):
        assert shape_of(node_type) is shape

    def test_handler_names(self):
        assert T.SEND.handler == "on_send"
        assert T.DEFINED.handler == "on_defined"
        assert T.ENCODING.handler == "on_encoding"
        assert len({t.handler for t in T}) == len(T)


class TestChildOrder:

    @pytest.mark.parametrize("node, expected", [
        (n(T.CONST, None, "Foo"), []),
        (n(T.CONST, A, "Foo"), [A]),
        (n(T.CASGN, A, "Foo", ONE), [A, ONE]),
        (n(T.CASGN, None, "Foo"), []),
        (n(T.CLASS, A, None, C), [A, C]),
        (n(T.CLASS, A, B, C), [A, B, C]),
        (n(T.SEND, A, "b", B, C), [A, B, C]),
        (n(T.CSEND, A, "b"), [A]),
        (n(T.SEND, None, "puts", ONE), [ONE]),
        (n(T.OP_ASGN, n(T.LVASGN, "a"), "+", ONE), [n(T.LVASGN, "a"), ONE]),
        (n(T.IF, A, None, C), [A, C]),
        (n(T.IF, A, B, None), [A, B]),
        (n(T.WHILE, A, None), [A]),
        (n(T.UNTIL, A, B), [A, B]),
        (n(T.MODULE, A, B), [A, B]),
        (n(T.SCLASS, A, None), [A]),
        (n(T.CASE, A, n(T.WHEN, ONE, B), None), [A, n(T.WHEN, ONE, B)]),
        (n(T.RESBODY, None, n(T.LVASGN, "e"), B), [n(T.LVASGN, "e"), B]),
        (n(T.IRANGE, None, ONE), [ONE]),
        (n(T.LVASGN, "a"), []),
        (n(T.LVASGN, "a", ONE), [ONE]),
        (n(T.OPTARG, "a", ONE), [ONE]),
        (n(T.SPLAT), []),
        (n(T.SPLAT, A), [A]),
        (n(T.INT, 1), []),
        (n(T.MATCH_PATTERN, A, n(T.MATCH_VAR, "x")), [A, n(T.MATCH_VAR, "x")]),
        (n(T.FORWARDED_RESTARG), []),
    ])
    def test_traversed_children(self, node, expected):
        assert traversed_children(node) == expected

    def test_def_visits_empty_args(self):
        args = n(T.ARGS)
        assert traversed_children(n(T.DEF, "foo", args, None)) == [args]

    def test_defs_skips_method_name(self):
        args = n(T.ARGS, n(T.ARG, "x"))
        node = n(T.DEFS, n(T.SELF), "foo", args, B)
        assert traversed_children(node) == [n(T.SELF), args, B]

    def test_block_visits_call_args_body(self):
        call = n(T.SEND, None, "each")
        args = n(T.ARGS)
        assert traversed_children(n(T.BLOCK, call, args, None)) == [call, args]

    def test_numblock_skips_parameter_count(self):
        call = n(T.SEND, None, "each")
        assert traversed_children(n(T.NUMBLOCK, call, 2, B)) == [call, B]


class TestWalk:

    def test_walk_none_is_noop(self, recorder):
        walk(None, recorder)
        assert recorder.visited == []

    def test_walk_rejects_non_nodes(self, recorder):
        with pytest.raises(UnknownNodeTypeError):
            walk("foo", recorder)

    def test_send_method_name_is_never_dispatched(self, recorder):
        tree = n(T.SEND, n(T.SEND, None, "a"), "b", n(T.SEND, None, "c"))
        walk(tree, recorder)
        assert recorder.types == [T.SEND, T.SEND, T.SEND]
        assert [v.children[1] for v in recorder.visited] == ["b", "a", "c"]

    def test_preorder(self, recorder):
        tree = n(T.BEGIN, n(T.LVASGN, "x", ONE), n(T.IF, A, n(T.ARRAY, B, C), None))
        walk(tree, recorder)
        assert recorder.types == [
            T.BEGIN, T.LVASGN, T.INT, T.IF, T.LVAR, T.ARRAY, T.LVAR, T.LVAR,
        ]

    def test_def_args_reach_visitor(self):
        class ParamCollector(Visitor):
            def __init__(self):
                self.args_seen = 0
                self.names = []

            def on_args(self, node):
                self.args_seen += 1
                self.descend(node)

            def on_arg(self, node):
                self.names.append(node.children[0])

        visitor = ParamCollector()
        visitor.walk(n(T.DEF, "foo", n(T.ARGS), None))
        visitor.walk(n(T.DEF, "bar", n(T.ARGS, n(T.ARG, "x"), n(T.ARG, "y")), None))
        assert visitor.args_seen == 2
        assert visitor.names == ["x", "y"]

    def test_mlhs_targets_without_values(self, recorder):
        tree = n(T.MASGN, n(T.MLHS, n(T.LVASGN, "a"), n(T.LVASGN, "b")), n(T.ARRAY, ONE, ONE))
        walk(tree, recorder)
        assert recorder.types == [
            T.MASGN, T.MLHS, T.LVASGN, T.LVASGN, T.ARRAY, T.INT, T.INT,
        ]

    def test_default_shape_skips_literal_children(self, recorder):
        tree = n(T.KWARGS, n(T.PAIR, n(T.SYM, "a"), ONE))
        walk(tree, recorder)
        assert recorder.types == [T.KWARGS, T.PAIR, T.SYM, T.INT]


class TestOverrides:

    TREE = n(T.BEGIN,
             n(T.SEND, A, "foo", n(T.SEND, B, "bar")),
             n(T.SEND, None, "baz", C))

    def test_override_without_descend_stops(self):
        class Shallow(Visitor):
            def __init__(self):
                self.sends = []
                self.lvars = []

            def on_send(self, node):
                self.sends.append(node.children[1])

            def on_lvar(self, node):
                self.lvars.append(node.children[0])

        visitor = Shallow()
        visitor.walk(self.TREE)
        assert visitor.sends == ["foo", "baz"]
        assert visitor.lvars == []

    def test_override_with_descend_matches_default(self, recorder):
        class Counting(Visitor):
            def __init__(self):
                self.sends = []
                self.lvars = []

            def on_send(self, node):
                self.sends.append(node.children[1])
                self.descend(node)

            def on_lvar(self, node):
                self.lvars.append(node.children[0])

        visitor = Counting()
        visitor.walk(self.TREE)
        assert visitor.sends == ["foo", "bar", "baz"]
        assert visitor.lvars == ["a", "b", "c"]

        walk(self.TREE, recorder)
        assert [v.children[0] for v in recorder.visited if v.type == T.LVAR] == visitor.lvars

    def test_module_level_descend(self, recorder):
        descend(n(T.ARRAY, A, B), recorder)
        assert recorder.types == [T.LVAR, T.LVAR]

    def test_visitor_without_handlers_walks_everything(self):
        class Nothing(Visitor):
            pass

        Nothing().walk(self.TREE)
