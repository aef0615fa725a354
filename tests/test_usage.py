# tests/test_usage.py
"""
Tests for the Usage Aggregator and the FieldUsageSet container.
"""

import pytest

from tagscope.errors import InvariantViolation
from tagscope.pipeline import analyze
from tagscope.usage import FieldUsageSet, aggregate_usage, reduce_masks
from tests.conftest import CONCRETE_CONFIG, WALK_IR


class TestFieldUsageSet:

    def test_starts_empty(self, descriptor):
        usage = FieldUsageSet(descriptor)
        assert usage.as_tuple() == (0, 0, 0)
        assert not usage.frozen

    def test_merge_is_or(self, descriptor):
        usage = FieldUsageSet(descriptor)
        usage.merge(1, 0b0010)
        usage.merge(1, 0b1000)
        usage.merge(1, 0b0010)
        assert usage.bits(1) == 0b1010
        assert usage.fields(1) == [1, 3]
        assert usage.field_names(1) == ["a", "c"]

    def test_frozen_rejects_merge(self, descriptor):
        usage = FieldUsageSet(descriptor).freeze()
        with pytest.raises(InvariantViolation, match="finalized"):
            usage.merge(0, 1)

    def test_tag_out_of_range(self, descriptor):
        with pytest.raises(InvariantViolation, match="outside the tag table"):
            FieldUsageSet(descriptor).merge(3, 1)

    def test_mask_too_wide(self, descriptor):
        with pytest.raises(InvariantViolation, match="exceeds 4 fields"):
            FieldUsageSet(descriptor).merge(0, 1 << 4)

    def test_items_in_tag_order(self, descriptor):
        usage = FieldUsageSet(descriptor)
        usage.merge(2, 0b100)
        assert list(usage.items()) == [(0, 0), (1, 0), (2, 0b100)]

    def test_equality(self, descriptor):
        a, b = FieldUsageSet(descriptor), FieldUsageSet(descriptor)
        a.merge(1, 2)
        assert a != b
        b.merge(1, 2)
        assert a == b


class TestReduce:

    def test_reduce_masks(self):
        assert reduce_masks([(0, 1), (2, 4), (0, 2), (2, 4)], 3) == (3, 0, 4)

    def test_order_does_not_matter(self):
        pairs = [(0, 1), (1, 8), (0, 2), (1, 1)]
        assert reduce_masks(pairs, 2) == reduce_masks(reversed(pairs), 2)

    def test_empty(self):
        assert reduce_masks([], 2) == (0, 0)


class TestAggregate:

    def test_union_law(self, walk_program):
        result = analyze(walk_program)
        for tag in range(result.descriptor.tag_count):
            expected = 0
            for ded in result.deductions:
                if ded.fact.tag == tag:
                    expected |= ded.mask
            assert result.usage.bits(tag) == expected

    def test_shared_tag_accumulates(self, concrete_program):
        result = analyze(concrete_program, CONCRETE_CONFIG)
        doubled = list(result.deductions) + list(result.deductions)
        assert aggregate_usage(doubled, result.descriptor) == result.usage

    def test_result_is_frozen(self, concrete_program):
        result = analyze(concrete_program, CONCRETE_CONFIG)
        assert result.usage.frozen

    def test_idempotence(self, walk_program):
        first = analyze(walk_program).usage.as_tuple()
        second = analyze(walk_program).usage.as_tuple()
        assert first == second

    def test_idempotence_across_loads(self):
        from tagscope.irtext import load_program
        a = analyze(load_program(WALK_IR)).usage
        b = analyze(load_program(WALK_IR)).usage
        assert a == b

    def test_unreached_tag_is_empty(self, walk_program):
        result = analyze(walk_program)
        assert result.usage.bits(0) == 0
        assert result.usage.fields(0) == []
