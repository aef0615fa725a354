"""
tagscope.usage
══════════════

Usage Aggregator: folds every deduction's accepted field set into one
bitset per tag value.

The fold is a pure union.  Facts that share a tag (two branches both
confirming ``OADD``, a guard and a write …) contribute to the same bitset
without overwriting each other, and the order of deductions never affects
the result.
"""

from __future__ import annotations

import logging
from functools import reduce
from typing import Iterable, Iterator, List, Sequence, Tuple

from tagscope.accesses import Deduction
from tagscope.aggregate import AggregateDescriptor
from tagscope.errors import InvariantViolation

logger = logging.getLogger(__name__)


class FieldUsageSet:
    """Mapping tag value → bitset over field indices.

    Created empty, filled through :meth:`merge`, then :meth:`freeze`-d
    before anything reads it for reporting.
    """

    __slots__ = ("descriptor", "_bits", "_frozen")

    def __init__(self, descriptor: AggregateDescriptor) -> None:
        self.descriptor = descriptor
        self._bits: List[int] = [0] * descriptor.tag_count
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def merge(self, tag: int, mask: int) -> None:
        if self._frozen:
            raise InvariantViolation("field usage set is already finalized")
        if not self.descriptor.has_tag(tag):
            raise InvariantViolation(f"tag value {tag} is outside the tag table")
        if mask >> self.descriptor.field_count:
            raise InvariantViolation(
                f"field mask {mask:#x} exceeds {self.descriptor.field_count} fields")
        self._bits[tag] |= mask

    def freeze(self) -> "FieldUsageSet":
        self._frozen = True
        return self

    def bits(self, tag: int) -> int:
        return self._bits[tag]

    def fields(self, tag: int) -> List[int]:
        """Indices of the fields used under *tag*, ascending."""
        mask = self._bits[tag]
        return [i for i in range(self.descriptor.field_count) if mask >> i & 1]

    def field_names(self, tag: int) -> List[str]:
        return [self.descriptor.field_name(i) for i in self.fields(tag)]

    def items(self) -> Iterator[Tuple[int, int]]:
        """(tag, bitset) pairs in tag-table order."""
        return iter(enumerate(self._bits))

    def as_tuple(self) -> Tuple[int, ...]:
        return tuple(self._bits)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldUsageSet):
            return NotImplemented
        return (self.descriptor == other.descriptor
                and self._bits == other._bits)

    def __repr__(self) -> str:
        used = sum(1 for b in self._bits if b)
        return f"FieldUsageSet(tags={len(self._bits)}, used={used})"


def _fold(acc: Tuple[int, ...], item: Tuple[int, int]) -> Tuple[int, ...]:
    tag, mask = item
    if not mask:
        return acc
    return acc[:tag] + (acc[tag] | mask,) + acc[tag + 1:]


def reduce_masks(pairs: Iterable[Tuple[int, int]], tag_count: int) -> Tuple[int, ...]:
    """Reduce ``(tag, mask)`` pairs into one immutable bitset per tag."""
    return reduce(_fold, pairs, (0,) * tag_count)


def aggregate_usage(
    deductions: Sequence[Deduction],
    descriptor: AggregateDescriptor,
) -> FieldUsageSet:
    """Union every deduction's field set into a finalized usage set."""
    pairs = [(d.fact.tag, d.mask) for d in deductions]
    for tag, _ in pairs:
        if not descriptor.has_tag(tag):
            raise InvariantViolation(f"tag value {tag} is outside the tag table")
    usage = FieldUsageSet(descriptor)
    for tag, mask in enumerate(reduce_masks(pairs, descriptor.tag_count)):
        usage.merge(tag, mask)
    logger.info("aggregated %d deductions into %d tag sets",
                len(deductions), descriptor.tag_count)
    return usage.freeze()
