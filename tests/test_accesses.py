# tests/test_accesses.py
"""
Tests for the Field Access Collector.
"""

import pytest

from tagscope.accesses import (
    FieldAccessCollector,
    WriteAnchor,
    collect_accesses,
    field_index,
)
from tagscope.constraints import generate_constraints
from tagscope.errors import InvariantViolation
from tagscope.ir import Opcode
from tests.conftest import (
    build_bypass,
    build_guard,
    build_loop,
    build_write,
    descriptor_for,
    make_program,
)


def _deductions(prog, anchor=WriteAnchor.BLOCK, workers=1):
    d = descriptor_for(prog)
    facts = generate_constraints(prog.functions, d)
    return collect_accesses(facts, d, write_anchor=anchor, workers=workers)


class TestFieldIndex:

    def test_field_and_field_addr(self, program):
        fn = program.add_function("f")
        x = fn.add_param("x", "*T")
        b = fn.add_block()
        assert field_index(b.field_addr(x, 3)) == 3
        assert field_index(b.field(b.load(x), 2)) == 2

    @pytest.mark.parametrize("opcode", ["load", "call", "other", "param"])
    def test_anything_else_is_an_invariant_violation(self, program, opcode):
        fn = program.add_function("f")
        x = fn.add_param("x", "*T")
        b = fn.add_block()
        instr = {"load": lambda: b.load(x),
                 "call": lambda: b.call("g", x),
                 "other": lambda: b.other(x),
                 "param": lambda: x}[opcode]()
        with pytest.raises(InvariantViolation) as info:
            field_index(instr)
        assert info.value.exit_code == 3


class TestScope:

    @pytest.mark.parametrize("via_pointer", [False, True])
    def test_guarded_arm_only(self, program, via_pointer):
        build_guard(program, "==", tag=1, then_field=2, else_field=3,
                    via_pointer=via_pointer)
        (ded,) = _deductions(program)
        assert ded.fields == frozenset({2})
        assert ded.mask == 0b100
        assert [a.instr.name for a in ded.accesses] == ["t3"]

    def test_uninterpreted_referrers_are_skipped(self, program):
        fn, b = build_guard(program, "==", tag=1)
        jump = b["then"].instrs.pop()
        opaque = b["then"].other(fn.params[0], name="t9")
        b["then"].instrs.append(jump)
        assert opaque in fn.params[0].referrers
        (ded,) = _deductions(program)
        assert ded.fields == frozenset({2})
        assert [a.instr.name for a in ded.accesses] == ["t3"]

    def test_discriminant_access_is_excluded(self, program):
        fn, b = build_guard(program, "==", tag=1)
        b["then"].field(fn.params[0], 0, "again")
        (ded,) = _deductions(program)
        assert ded.fields == frozenset({2})

    def test_dominance_exclusion_in_loop(self, program):
        # exit is reachable from body's fact (via the header) but not
        # dominated by it.
        build_loop(program, tag=1)
        (ded,) = _deductions(program)
        assert ded.fields == frozenset({1})

    def test_join_block_not_counted(self, program):
        fn, b = build_guard(program, "==", tag=1)
        b["done"].instrs.pop()
        b["done"].field(fn.params[0], 1, "joined")
        b["done"].ret()
        (ded,) = _deductions(program)
        assert 1 not in ded.fields

    def test_bypass_has_no_deductions(self, program):
        build_bypass(program)
        assert _deductions(program) == []

    def test_soundness_of_scope(self, walk_program):
        from tagscope.pipeline import analyze
        result = analyze(walk_program)
        assert result.deductions
        for ded in result.deductions:
            for access in ded.accesses:
                assert ded.fact.block.dominates(access.block)
                assert access.field != result.descriptor.discriminant


class TestWriteAnchor:

    def test_block_anchor_counts_earlier_accesses(self, program):
        build_write(program, tag=1)
        (ded,) = _deductions(program, WriteAnchor.BLOCK)
        assert ded.fields == frozenset({1, 2})

    def test_instruction_anchor_drops_earlier_accesses(self, program):
        build_write(program, tag=1)
        (ded,) = _deductions(program, WriteAnchor.INSTRUCTION)
        assert ded.fields == frozenset({1})

    def test_instruction_anchor_leaves_guards_alone(self, program):
        build_guard(program, "==", tag=1)
        (ded,) = _deductions(program, WriteAnchor.INSTRUCTION)
        assert ded.fields == frozenset({2})

    def test_direct_write_then_read(self):
        prog = make_program()
        fn = prog.add_function("f")
        x = fn.add_param("x", "*T")
        b = fn.add_block()
        b.store(b.field_addr(x, 0), fn.const(2))
        read = b.load(b.field_addr(x, 3))
        b.ret(read)
        for anchor in WriteAnchor:
            (ded,) = _deductions(prog, anchor)
            assert ded.fact.tag == 2
            assert 3 in ded.fields


class TestCollectAccesses:

    def test_one_deduction_per_fact_in_order(self, program):
        build_guard(program, "==", tag=1)
        build_write(program, tag=2)
        deds = _deductions(program)
        assert [d.fact.tag for d in deds] == [1, 2]

    def test_workers(self, program):
        build_guard(program, "==", tag=1)
        build_loop(program, tag=2)
        build_write(program, tag=2)
        serial = _deductions(program)
        parallel = _deductions(program, workers=3)
        assert serial == parallel

    def test_access_records_its_block(self, program):
        _, b = build_guard(program)
        (ded,) = _deductions(program)
        (access,) = ded.accesses
        assert access.block is b["then"]
        assert access.instr.opcode is Opcode.FIELD
        assert access.fact is ded.fact

    def test_fact_with_no_accesses(self, program):
        fn, b = build_guard(program)
        b["then"].instrs[:] = [i for i in b["then"].instrs
                               if i.opcode is not Opcode.FIELD]
        fn.params[0].referrers[:] = [r for r in fn.params[0].referrers
                                     if r.block is not b["then"]]
        (ded,) = _deductions(program)
        assert ded.accesses == ()
        assert ded.mask == 0

    def test_collector_is_reusable(self, program):
        build_guard(program)
        d = descriptor_for(program)
        fact = generate_constraints(program.functions, d)[0]
        collector = FieldAccessCollector(d)
        assert collector.collect(fact) == collector.collect(fact)
