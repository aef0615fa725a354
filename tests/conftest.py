# tests/conftest.py
"""
Shared fixtures for the tagscope test-suite.

Two ways of getting a program under test:

  * IR sources (``CONCRETE_IR``, ``WALK_IR`` …) fed through
    :func:`tagscope.irtext.load_program`, for end-to-end tests;
  * small builder helpers that emit a function directly through the
    block API, for tests that need a particular CFG shape.
"""

from __future__ import annotations

from typing import Dict, Sequence, Tuple

import pytest

from tagscope.aggregate import AggregateDescriptor, resolve_aggregate
from tagscope.ir import (
    BasicBlock,
    ConstGroup,
    Function,
    Program,
    StructType,
    pointer_to,
)
from tagscope.irtext import load_program
from tagscope.pipeline import AnalysisConfig


# ── IR sources ──────────────────────────────────────────────────────

# if x.tag == ONE { x.b } else { x.c }
CONCRETE_IR = """
(program concrete
  (struct T (tag a b c))
  (consts (ZERO 0) (ONE 1))
  (func f (file "f.go") (params (x T))
    (block entry
      (t0 = field x tag (line 2))
      (t1 = eq t0 ONE (line 2))
      (if t1 then else))
    (block then
      (t2 = field x b (line 3))
      (jump done))
    (block else
      (t3 = field x c (line 5))
      (jump done))
    (block done
      (return))))
"""

CONCRETE_CONFIG = AnalysisConfig(type_name="T", discriminant="tag",
                                 sentinel="ZERO")

WALK_IR = """
; a cut-down compiler walk over Node
(program walk
  (struct Node ((Op int) (Left *Node) (Right *Node) (Val int) (Sym *Sym)))
  (struct Sym (Name Pkg))
  (consts OXXX ONAME OADD OLITERAL)
  (func walk (file "walk.go") (params (n *Node))
    (block entry
      (t0 = field-addr n Op (line 10))
      (t1 = load t0 (line 10))
      (t2 = eq t1 OADD (line 10))
      (if t2 add next (line 10)))
    (block add
      (t3 = field-addr n Left (line 11 5))
      (t4 = field-addr n Right (line 12 5))
      (jump done))
    (block next
      (t5 = ne t1 ONAME (line 14))
      (if t5 done name))
    (block name
      (t6 = field-addr n Sym (line 15))
      (jump done))
    (block done
      (return)))
  (func mklit (file "const.go") (params (v int))
    (block entry
      (t0 = alloc Node)
      (t1 = field-addr t0 Op (line 20))
      (store t1 OLITERAL (line 20))
      (t2 = field-addr t0 Val (line 21))
      (store t2 v (line 21))
      (return t0))))
"""

WALK_SUMMARY = (
    "OXXX\n"
    "ONAME\n"
    "\tSym\n"
    "OADD\n"
    "\tLeft\n"
    "\tRight\n"
    "OLITERAL\n"
    "\tVal\n"
)

WALK_PROVENANCE = (
    "OADD\n"
    "walk.go:10\n"
    "\twalk.go:11:5:&n.Left [#1]\n"
    "\twalk.go:12:5:&n.Right [#2]\n"
    "ONAME\n"
    "walk.go:10\n"
    "\twalk.go:15:&n.Sym [#4]\n"
    "OLITERAL\n"
    "const.go:20\n"
    "\tconst.go:21:&t0.Val [#3]\n"
)


# ── Builders ────────────────────────────────────────────────────────

FIELDS = ("tag", "a", "b", "c")
TAGS = ("KNONE", "KA", "KB")


def make_program(fields: Sequence[str] = FIELDS,
                 tags: Sequence[str] = TAGS,
                 type_name: str = "T") -> Program:
    """A program holding only the type layer: one struct, one tag group."""
    prog = Program("test")
    prog.add_struct(StructType(type_name, tuple(fields)))
    prog.add_const_group(ConstGroup(tuple((n, i) for i, n in enumerate(tags))))
    return prog


def descriptor_for(prog: Program, type_name: str = "T",
                   discriminant: str = "tag") -> AggregateDescriptor:
    return resolve_aggregate(prog, type_name, discriminant, prog.const_groups[0].first_name)


def build_guard(prog: Program, op: str = "==", tag: int = 1,
                then_field: int = 2, else_field: int = 3,
                via_pointer: bool = False,
                type_name: str = "T") -> Tuple[Function, Dict[str, BasicBlock]]:
    """``if x.tag <op> tag { x.<then_field> } else { x.<else_field> }``

    With *via_pointer* the discriminant is read as ``*(&x.tag)`` and the
    arms take field addresses instead of field values.
    """
    fn = prog.add_function("guard", "g.go")
    x = fn.add_param("x", pointer_to(type_name) if via_pointer else type_name)
    entry = fn.add_block("entry")
    then = fn.add_block("then")
    els = fn.add_block("else")
    done = fn.add_block("done")

    if via_pointer:
        addr = entry.field_addr(x, 0, "t0", field_name="tag", pos=fn.pos(1))
        read = entry.load(addr, "t1", type="int", pos=fn.pos(1))
    else:
        read = entry.field(x, 0, "t1", field_name="tag", type="int", pos=fn.pos(1))
    cmp = entry.compare(op, read, fn.const(tag), "t2", pos=fn.pos(1))
    entry.branch(cmp, then, els)

    access = then.field_addr if via_pointer else then.field
    access(x, then_field, "t3", pos=fn.pos(2))
    then.jump(done)
    access = els.field_addr if via_pointer else els.field
    access(x, else_field, "t4", pos=fn.pos(4))
    els.jump(done)
    done.ret()
    return fn, {"entry": entry, "then": then, "else": els, "done": done}


def build_loop(prog: Program, tag: int = 1) -> Tuple[Function, Dict[str, BasicBlock]]:
    """``for x.tag == tag { x.a }; x.b`` with the guard in the loop header."""
    fn = prog.add_function("loop", "l.go")
    x = fn.add_param("x", "T")
    entry = fn.add_block("entry")
    header = fn.add_block("header")
    body = fn.add_block("body")
    exit_ = fn.add_block("exit")

    entry.jump(header)
    read = header.field(x, 0, "t0", type="int", pos=fn.pos(1))
    cmp = header.compare("==", read, fn.const(tag), "t1", pos=fn.pos(1))
    header.branch(cmp, body, exit_)
    body.field(x, 1, "t2", pos=fn.pos(2))
    body.jump(header)
    exit_.field(x, 2, "t3", pos=fn.pos(4))
    exit_.ret()
    return fn, {"entry": entry, "header": header, "body": body, "exit": exit_}


def build_bypass(prog: Program, tag: int = 1) -> Tuple[Function, Dict[str, BasicBlock]]:
    """A guard whose confirmed successor is also reachable around it.

    ::

        entry: if p goto test else join
        test:  if x.tag == tag goto join else other
        join:  x.a
    """
    fn = prog.add_function("bypass", "b.go")
    x = fn.add_param("x", "T")
    p = fn.add_param("p", "bool")
    entry = fn.add_block("entry")
    test = fn.add_block("test")
    join = fn.add_block("join")
    other = fn.add_block("other")

    entry.branch(p, test, join)
    read = test.field(x, 0, "t0", type="int", pos=fn.pos(2))
    cmp = test.compare("==", read, fn.const(tag), "t1", pos=fn.pos(2))
    test.branch(cmp, join, other)
    join.field(x, 1, "t2", pos=fn.pos(3))
    join.ret()
    other.ret()
    return fn, {"entry": entry, "test": test, "join": join, "other": other}


def build_write(prog: Program, tag: int = 1) -> Tuple[Function, Dict[str, BasicBlock]]:
    """``x.b; x.tag = tag; x.a`` in one straight-line block."""
    fn = prog.add_function("write", "w.go")
    x = fn.add_param("x", "*T")
    entry = fn.add_block("entry")
    entry.field_addr(x, 2, "t0", pos=fn.pos(1))
    addr = entry.field_addr(x, 0, "t1", pos=fn.pos(2))
    entry.store(addr, fn.const(tag), pos=fn.pos(2))
    entry.field_addr(x, 1, "t2", pos=fn.pos(3))
    entry.ret()
    return fn, {"entry": entry}


# ── Fixtures ────────────────────────────────────────────────────────

@pytest.fixture
def program() -> Program:
    return make_program()


@pytest.fixture
def descriptor(program) -> AggregateDescriptor:
    return descriptor_for(program)


@pytest.fixture
def walk_program() -> Program:
    return load_program(WALK_IR, "walk.ir")


@pytest.fixture
def concrete_program() -> Program:
    return load_program(CONCRETE_IR, "concrete.ir")
