"""
tagscope.accesses
═════════════════

Field Access Collector: for each typing fact, find the field accesses on
the fact's subject that the fact provably guards.

A referrer of the subject is kept when

  * it is a FIELD or FIELD_ADDR instruction,
  * it does not touch the discriminant itself, and
  * its block is dominated by the fact's effective-from block.

The dominance test is one ancestor query per use; accesses that are merely
*reachable* from the fact's block are not counted.

Write anchoring
───────────────
Facts from direct tag writes are anchored at block granularity by default
(``WriteAnchor.BLOCK``): accesses earlier in the same block than the store
still count for the new tag, which reproduces the historical output.
``WriteAnchor.INSTRUCTION`` drops those same-block accesses that precede
the store.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import FrozenSet, List, Sequence, Tuple

from tagscope.aggregate import AggregateDescriptor
from tagscope.constraints import FactOrigin, TypingFact
from tagscope.errors import InvariantViolation
from tagscope.ir import BasicBlock, Value

logger = logging.getLogger(__name__)


class WriteAnchor(enum.Enum):
    BLOCK = "block"
    INSTRUCTION = "instruction"


def field_index(instr: Value) -> int:
    """Return the member index touched by a FIELD / FIELD_ADDR instruction.

    Raises
    ------
    InvariantViolation
        If *instr* is any other kind of instruction.
    """
    if not instr.is_field_access:
        raise InvariantViolation(
            f"expected field or field-addr instruction, got "
            f"{instr.opcode.value} ({instr}) at {instr.pos}")
    return instr.field


@dataclass(frozen=True)
class FieldAccess:
    """One accepted access, attached to the fact that guards it."""

    fact: TypingFact
    instr: Value

    @property
    def block(self) -> BasicBlock:
        return self.instr.block

    @property
    def field(self) -> int:
        return field_index(self.instr)


@dataclass(frozen=True)
class Deduction:
    """A typing fact together with every access it guards."""

    fact: TypingFact
    accesses: Tuple[FieldAccess, ...]

    @property
    def fields(self) -> FrozenSet[int]:
        return frozenset(a.field for a in self.accesses)

    @property
    def mask(self) -> int:
        """The accepted field indices as a bitset."""
        bits = 0
        for a in self.accesses:
            bits |= 1 << a.field
        return bits


class FieldAccessCollector:
    """Collects the guarded accesses of typing facts."""

    def __init__(self, descriptor: AggregateDescriptor,
                 write_anchor: WriteAnchor = WriteAnchor.BLOCK) -> None:
        self.descriptor = descriptor
        self.write_anchor = write_anchor

    def collect(self, fact: TypingFact) -> Deduction:
        accepted: List[FieldAccess] = []
        for r in fact.subject.referrers:
            if not r.is_field_access:
                continue
            if r.field == self.descriptor.discriminant:
                continue
            if r.block is None or not fact.block.dominates(r.block):
                continue
            if self._before_write(fact, r):
                continue
            accepted.append(FieldAccess(fact, r))
        return Deduction(fact, tuple(accepted))

    def _before_write(self, fact: TypingFact, use: Value) -> bool:
        if self.write_anchor is not WriteAnchor.INSTRUCTION:
            return False
        if fact.origin is not FactOrigin.WRITE or use.block is not fact.block:
            return False
        block = fact.block
        return block.position_of(use) < block.position_of(fact.anchor)


def collect_accesses(
    facts: Sequence[TypingFact],
    descriptor: AggregateDescriptor,
    write_anchor: WriteAnchor = WriteAnchor.BLOCK,
    workers: int = 1,
) -> List[Deduction]:
    """Return one :class:`Deduction` per fact, in fact order."""
    collector = FieldAccessCollector(descriptor, write_anchor)
    if workers > 1 and len(facts) > 1:
        for fact in facts:
            fact.block.function.domtree()
        with ThreadPoolExecutor(max_workers=workers) as executor:
            deductions = list(executor.map(collector.collect, facts))
    else:
        deductions = [collector.collect(f) for f in facts]
    logger.info("collected %d field accesses for %d facts",
                sum(len(d.accesses) for d in deductions), len(deductions))
    return deductions
