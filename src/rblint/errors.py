"""Exception hierarchy for rblint.

Only caller mistakes (an unsupported Ruby version) and programming errors
(an unclassified node type) propagate. Problems with the source text itself
are recorded on the ``ProcessedSource`` instead of being raised.
"""


class RblintError(Exception):
    """Base class for every error raised by rblint."""


class UnsupportedRubyVersionError(RblintError, ValueError):
    def __init__(self, version: str, supported: list[str]) -> None:
        self.version = version
        self.supported = supported
        super().__init__(
            f"Ruby version {version!r} is not supported "
            f"(supported: {', '.join(supported) or 'none'})"
        )


class SourceEncodingError(RblintError):
    """The source bytes could not be decoded into a buffer."""


class RubySyntaxError(RblintError):
    """The parser could not build a tree; details are in the diagnostics."""


class UnknownNodeTypeError(RblintError, TypeError):
    """walk() was handed something that is not a known node."""


class UnclassifiedNodeTypeError(RblintError):
    """A NodeType member has no traversal rule."""
