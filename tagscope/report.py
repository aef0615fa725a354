"""
tagscope/report.py
══════════════════

Line-oriented text views over a finished analysis.

Output formats
──────────────
  • Provenance : one stanza per fact that guards at least one access

        OADD
        walk.go:12
            walk.go:14:&n.Left [#1]

  • Summary    : every tag in table order with the fields used under it

        OADD
            Left
            Right
        OXXX

Both views are pure reads of the finalized results.  Colour is optional
and uses ``termcolor``; it is off unless the caller asks for it.
"""

from __future__ import annotations

import sys
from typing import Optional, Sequence, TextIO

from termcolor import colored

from tagscope.accesses import Deduction
from tagscope.aggregate import AggregateDescriptor
from tagscope.usage import FieldUsageSet

INDENT = "\t"


class Reporter:
    """Writes provenance and summary views to a text stream."""

    def __init__(self, descriptor: AggregateDescriptor,
                 stream: Optional[TextIO] = None, color: bool = False) -> None:
        self.descriptor = descriptor
        self.stream = stream if stream is not None else sys.stdout
        self.color = color

    def _paint(self, text: str, color: str, bold: bool = False) -> str:
        if not self.color:
            return text
        attrs = ["bold"] if bold else None
        return colored(text, color, attrs=attrs, force_color=True)

    def _line(self, text: str) -> None:
        self.stream.write(text + "\n")

    # ----- views ------------------------------------------------------------

    def provenance(self, deductions: Sequence[Deduction]) -> int:
        """Print every fact with at least one access; return how many."""
        shown = 0
        for d in deductions:
            if not d.accesses:
                continue
            shown += 1
            self._line(self._paint(self.descriptor.tag_name(d.fact.tag),
                                   "cyan", bold=True))
            self._line(self._paint(str(d.fact.anchor.pos), "yellow"))
            for a in d.accesses:
                self._line(f"{INDENT}{a.instr.pos}:{a.instr}")
        return shown

    def summary(self, usage: FieldUsageSet) -> None:
        """Print every tag, in table order, followed by its used fields."""
        for tag, _ in usage.items():
            self._line(self._paint(self.descriptor.tag_name(tag),
                                   "cyan", bold=True))
            for name in usage.field_names(tag):
                self._line(f"{INDENT}{name}")
