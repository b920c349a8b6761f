"""
Resolution of ``# rblint:disable`` / ``# rblint:enable`` comment directives.

A directive on a line of its own opens (or closes) a region; one that
trails code on the same line applies to that line only. An unterminated region runs
to the last line of the file.
"""

import logging
import re
from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .processed_source import ProcessedSource

log = logging.getLogger(__name__)

ALL_RULES = "all"


class CommentConfig:
    def __init__(self, processed_source: "ProcessedSource", directive: str = "rblint") -> None:
        self.processed_source = processed_source
        self._pattern = re.compile(
            r"#\s*" + re.escape(directive) + r"\s*:\s*(disable|enable)\b\s*(.*)"
        )

    def _directives(self):
        for comment in self.processed_source.comments:
            match = self._pattern.search(comment.text)
            if match is None:
                continue
            names = [n.strip() for n in match.group(2).split(",") if n.strip()]
            if not names:
                log.debug("Directive without rule names on line %d", comment.line)
                continue
            yield comment, match.group(1), names

    def _on_own_line(self, comment) -> bool:
        lines = self.processed_source.lines
        if comment.line > len(lines):
            return True
        return not lines[comment.line - 1][:comment.location.column].strip()

    def cop_disabled_line_ranges(self) -> dict[str, list[range]]:
        ranges: dict[str, list[range]] = defaultdict(list)
        open_since: dict[str, int] = {}
        last_line = len(self.processed_source.lines)

        for comment, action, names in self._directives():
            line = comment.line
            single_line = not self._on_own_line(comment)
            for name in names:
                if single_line:
                    if action == "disable":
                        ranges[name].append(range(line, line + 1))
                    continue
                if action == "disable":
                    open_since.setdefault(name, line)
                elif name in open_since:
                    start = open_since.pop(name)
                    ranges[name].append(range(start, line + 1))

        for name, start in open_since.items():
            ranges[name].append(range(start, max(last_line, start) + 1))
        return dict(ranges)
