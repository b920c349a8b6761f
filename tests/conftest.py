"""Shared fixtures for the rblint tests."""

import pytest

from rblint.node import NodeType
from rblint.processed_source import ProcessedSource
from rblint.traversal import Visitor

RUBY_VERSION = "3.3"


class RecordingVisitor(Visitor):
    """Records every node it is dispatched, then continues the walk."""

    def __init__(self):
        self.visited = []

    def _record(self, node):
        self.visited.append(node)
        self.descend(node)

    @property
    def types(self):
        return [n.type for n in self.visited]


for _node_type in NodeType:
    setattr(RecordingVisitor, _node_type.handler, RecordingVisitor._record)


@pytest.fixture
def parse_source():
    def _parse(source, ruby_version=RUBY_VERSION, **kwargs):
        return ProcessedSource(source, ruby_version, **kwargs)
    return _parse


@pytest.fixture
def recorder():
    return RecordingVisitor()
