"""
tagscope.constraints
════════════════════

Constraint Generator: derives *typing facts* from the IR.

A typing fact says "from the start of block B onward, value V carries tag
T".  Three rules produce facts:

  1. **Guarded comparison**: a read of the discriminant feeds a boolean
     ``==`` / ``!=`` against a constant, and the comparison feeds an
     ``if``.  The tag is confirmed on the true edge for ``==`` and on the
     false edge for ``!=``.  The fact is only emitted when the branching
     block dominates the confirmed successor; that excludes back-edges and
     join points reachable around the branch.

  2. **Two-tag complement**: when the tag table holds exactly two values,
     the successor that refutes one tag confirms the other, under the same
     dominance condition.

  3. **Direct tag write**: a store of a constant through the address of
     the discriminant.  The fact is anchored at the store's own block, so
     accesses earlier in that block are also attributed to the new tag.

The scan is structural: facts depend only on the instruction and the
dominance relation of its own function, so functions can be scanned in
any order and in parallel.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from tagscope.aggregate import AggregateDescriptor
from tagscope.ir import BOOL, BasicBlock, EdgeKind, Function, Opcode, Value

logger = logging.getLogger(__name__)


class FactOrigin(enum.Enum):
    GUARD = "guard"
    COMPLEMENT = "complement"
    WRITE = "write"


@dataclass(frozen=True)
class TypingFact:
    """*subject* carries *tag* everywhere *block* dominates.

    ``anchor`` is the discriminant read for guard facts and the store for
    write facts; its position is what provenance output reports.
    """

    subject: Value
    tag: int
    block: BasicBlock
    anchor: Value
    origin: FactOrigin

    def __repr__(self) -> str:
        return (f"TypingFact({self.subject.ref()}, tag={self.tag}, "
                f"from={self.block.name}, origin={self.origin.value})")


def as_tag_comparison(instr: Value) -> bool:
    """True for a boolean-typed ``==`` or ``!=`` comparison."""
    return (instr.opcode is Opcode.COMPARE
            and instr.type == BOOL
            and instr.op in ("==", "!="))


class ConstraintGenerator:
    """Emits :class:`TypingFact` objects for one aggregate descriptor."""

    def __init__(self, descriptor: AggregateDescriptor) -> None:
        self.descriptor = descriptor

    def generate(self, function: Function) -> List[TypingFact]:
        """Return every fact derivable from *function*."""
        facts: List[TypingFact] = []
        for instr in function.instructions():
            facts.extend(self.facts_from(instr))
        if facts:
            logger.debug("%s: %d facts", function.name, len(facts))
        return facts

    def facts_from(self, instr: Value) -> Iterator[TypingFact]:
        d = self.descriptor
        if d.is_discriminant_read(instr):
            for r in instr.referrers:
                yield from self._guard_facts(r, instr, instr.base)
        elif d.is_discriminant_addr(instr):
            for r in instr.referrers:
                if r.opcode is Opcode.LOAD:
                    for rr in r.referrers:
                        yield from self._guard_facts(rr, r, instr.base)
                elif r.opcode is Opcode.STORE and r.operands[0] is instr:
                    fact = self._write_fact(r, instr.base)
                    if fact is not None:
                        yield fact

    # ----- shapes -----------------------------------------------------------

    def _guard_facts(self, cmp: Value, read: Value, base: Value) -> Iterator[TypingFact]:
        if not as_tag_comparison(cmp):
            return
        x, y = cmp.operands
        other = y if x is read else x
        if not other.is_const:
            return
        tag = other.const
        if not self._known_tag(tag, cmp):
            return
        if cmp.op == "==":
            confirm, refute = EdgeKind.BRANCH_TRUE, EdgeKind.BRANCH_FALSE
        else:
            confirm, refute = EdgeKind.BRANCH_FALSE, EdgeKind.BRANCH_TRUE
        other_tag = self._complement(tag)
        for r in cmp.referrers:
            if r.opcode is not Opcode.IF:
                continue
            bb = r.block
            target = self._scoped_successor(bb, confirm, cmp)
            if target is not None:
                yield TypingFact(subject=base, tag=tag, block=target,
                                 anchor=read, origin=FactOrigin.GUARD)
            if other_tag is None:
                continue
            target = self._scoped_successor(bb, refute, cmp)
            if target is not None:
                yield TypingFact(subject=base, tag=other_tag, block=target,
                                 anchor=read, origin=FactOrigin.COMPLEMENT)

    def _scoped_successor(self, bb: BasicBlock, kind: EdgeKind,
                          cmp: Value) -> Optional[BasicBlock]:
        target = bb.successor(kind)
        if target is None:
            return None
        if not bb.dominates(target):
            logger.debug("%s: %s does not dominate %s, no fact for %s",
                         bb.function.name, bb.name, target.name, cmp)
            return None
        return target

    def _complement(self, tag: int) -> Optional[int]:
        """The only other tag of a table declaring exactly two tags, else ``None``.

        A ``<N>`` placeholder is not a declared tag.
        """
        d = self.descriptor
        if d.tag_count != 2 or d.declared_tag_count != 2:
            return None
        return 1 - tag

    def _write_fact(self, store: Value, base: Value) -> Optional[TypingFact]:
        val = store.operands[1]
        if not val.is_const:
            return None
        if not self._known_tag(val.const, store):
            return None
        return TypingFact(subject=base, tag=val.const, block=store.block,
                          anchor=store, origin=FactOrigin.WRITE)

    def _known_tag(self, tag: int, where: Value) -> bool:
        if self.descriptor.has_tag(tag):
            return True
        logger.debug("constant %d at %s is outside the tag table", tag, where.pos)
        return False


def generate_constraints(
    functions: Sequence[Function],
    descriptor: AggregateDescriptor,
    workers: int = 1,
) -> List[TypingFact]:
    """Scan *functions* and return the concatenated fact list.

    With ``workers > 1`` the functions are scanned on a thread pool; the
    per-function lists are concatenated in function order either way.
    """
    gen = ConstraintGenerator(descriptor)
    if workers > 1 and len(functions) > 1:
        for fn in functions:
            fn.domtree()
        with ThreadPoolExecutor(max_workers=workers) as executor:
            per_function = list(executor.map(gen.generate, functions))
    else:
        per_function = [gen.generate(fn) for fn in functions]
    facts = [f for chunk in per_function for f in chunk]
    logger.info("generated %d typing facts from %d functions",
                len(facts), len(functions))
    return facts
