"""
tagscope.ir
===========

Read-only, SSA-style intermediate representation consumed by the analysis.

A :class:`Program` owns an ordered list of :class:`Function` objects plus a
small *type layer* (struct layouts and named constant groups).  Each
function is a list of :class:`BasicBlock` objects; ``blocks[0]`` is the
entry block.  Blocks hold :class:`Value` instructions and are connected by
:class:`Edge` objects that carry control-flow semantics (fall-through,
branch-true, branch-false).

Every value keeps a *referrer* list: the instructions that consume it as an
operand.  Referrers are wired automatically when an instruction is created,
so the graph is complete as soon as the front end finishes emitting code.

Public API
----------
    Opcode       - instruction classification
    EdgeKind     - classification of a control-flow edge
    SourcePos    - a point in a source file
    Value        - an SSA value / instruction
    Edge         - a directed edge between two blocks
    BasicBlock   - a basic block, with builder helpers
    Function     - one function body
    StructType   - an aggregate layout from the type layer
    ConstGroup   - an ordered group of named integer constants
    Program      - functions + type layer

Typical usage::

    prog = Program("demo")
    prog.add_struct(StructType("Node", ("tag", "a", "b")))
    fn = prog.add_function("walk")
    x = fn.add_param("x", "*Node")
    entry = fn.add_block("entry")
    addr = entry.field_addr(x, 0, field_name="tag")
    ...
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import (
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
)

# ---------------------------------------------------------------------------
# Classifications
# ---------------------------------------------------------------------------


class Opcode(enum.Enum):
    """Instruction classification."""

    PARAM = "param"
    ALLOC = "alloc"
    CONST = "const"
    FIELD = "field"              # value of x.f
    FIELD_ADDR = "field-addr"    # &x.f
    LOAD = "load"                # *p
    STORE = "store"              # *p = v
    COMPARE = "compare"
    IF = "if"
    JUMP = "jump"
    RETURN = "return"
    CALL = "call"
    OTHER = "other"


#: Opcodes whose instructions touch a member of an aggregate.
FIELD_OPCODES = frozenset({Opcode.FIELD, Opcode.FIELD_ADDR})

#: Comparison operators understood by :meth:`BasicBlock.compare`.
COMPARE_OPS = ("==", "!=", "<", "<=", ">", ">=")

BOOL = "bool"
INT = "int"


class EdgeKind(enum.Enum):
    """Classification of a control-flow edge."""

    FALL_THROUGH = "fall-through"
    BRANCH_TRUE = "branch-true"
    BRANCH_FALSE = "branch-false"


def pointer_to(type_name: str) -> str:
    return "*" + type_name


def deref(type_name: str) -> Optional[str]:
    """Return the element type of a pointer type, or ``None``."""
    if type_name.startswith("*"):
        return type_name[1:]
    return None


@dataclass(frozen=True)
class SourcePos:
    """A point in a source file."""

    file: str = ""
    line: int = 0
    column: int = 0

    @property
    def valid(self) -> bool:
        return self.line > 0

    def __str__(self) -> str:
        if not self.valid:
            return "-"
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


NO_POS = SourcePos()


# ---------------------------------------------------------------------------
# Value  -  an SSA value or instruction
# ---------------------------------------------------------------------------


class Value:
    """An SSA value.

    Parameters and constants live outside any block; every other opcode
    is an instruction with a containing ``block``.

    Attributes
    ----------
    opcode : Opcode
    name : str
        Register name (``"t3"``), parameter name, or ``""``.
    type : str
        Static type name: ``"Node"``, ``"*Node"``, ``"bool"``, ``"int"`` …
    operands : tuple[Value, ...]
    referrers : list[Value]
        Instructions that use this value as an operand, in creation order.
    block : BasicBlock or None
    pos : SourcePos
    field : int
        Field index for FIELD / FIELD_ADDR, ``-1`` otherwise.
    field_name : str or None
    op : str or None
        Operator for COMPARE, callee name for CALL.
    const : int or None
        Literal value for CONST.
    """

    __slots__ = (
        "opcode",
        "name",
        "type",
        "operands",
        "referrers",
        "block",
        "pos",
        "field",
        "field_name",
        "op",
        "const",
    )

    def __init__(
        self,
        opcode: Opcode,
        *,
        name: str = "",
        type: str = "",
        operands: Sequence[Value] = (),
        block: Optional[BasicBlock] = None,
        pos: SourcePos = NO_POS,
        field: int = -1,
        field_name: Optional[str] = None,
        op: Optional[str] = None,
        const: Optional[int] = None,
    ) -> None:
        self.opcode = opcode
        self.name = name
        self.type = type
        self.operands: Tuple[Value, ...] = tuple(operands)
        self.referrers: List[Value] = []
        self.block = block
        self.pos = pos
        self.field = field
        self.field_name = field_name
        self.op = op
        self.const = const
        for operand in self.operands:
            operand.referrers.append(self)

    # ----- queries ----------------------------------------------------------

    @property
    def base(self) -> Optional[Value]:
        """The aggregate (or pointer) operand of FIELD / FIELD_ADDR / LOAD."""
        if self.opcode in (Opcode.FIELD, Opcode.FIELD_ADDR, Opcode.LOAD):
            return self.operands[0]
        return None

    @property
    def is_field_access(self) -> bool:
        return self.opcode in FIELD_OPCODES

    @property
    def is_const(self) -> bool:
        return self.opcode is Opcode.CONST

    def ref(self) -> str:
        """Short operand spelling used when rendering other instructions."""
        if self.opcode is Opcode.CONST:
            return str(self.const)
        return self.name or f"<{self.opcode.value}>"

    def _member(self) -> str:
        label = self.field_name if self.field_name else f"#{self.field}"
        return f"{self.operands[0].ref()}.{label} [#{self.field}]"

    def __str__(self) -> str:
        oc = self.opcode
        if oc is Opcode.FIELD:
            return self._member()
        if oc is Opcode.FIELD_ADDR:
            return "&" + self._member()
        if oc is Opcode.LOAD:
            return f"*{self.operands[0].ref()}"
        if oc is Opcode.STORE:
            return f"*{self.operands[0].ref()} = {self.operands[1].ref()}"
        if oc is Opcode.COMPARE:
            x, y = self.operands
            return f"{x.ref()} {self.op} {y.ref()}"
        if oc is Opcode.IF:
            block = self.block
            t = block.successor(EdgeKind.BRANCH_TRUE) if block else None
            f = block.successor(EdgeKind.BRANCH_FALSE) if block else None
            tn = t.name if t else "?"
            fn = f.name if f else "?"
            return f"if {self.operands[0].ref()} goto {tn} else {fn}"
        if oc is Opcode.JUMP:
            succ = self.block.successors[0].dst if self.block and self.block.successors else None
            return f"jump {succ.name if succ else '?'}"
        if oc is Opcode.RETURN:
            if self.operands:
                return "return " + ", ".join(o.ref() for o in self.operands)
            return "return"
        if oc is Opcode.CALL:
            args = ", ".join(o.ref() for o in self.operands)
            return f"{self.op}({args})"
        if oc is Opcode.OTHER:
            args = ", ".join(o.ref() for o in self.operands)
            return f"other({args})"
        if oc is Opcode.ALLOC:
            return f"new {deref(self.type) or self.type}"
        return self.ref()

    def __repr__(self) -> str:
        return f"Value({self.opcode.value}, name={self.name!r}, type={self.type!r})"


# ---------------------------------------------------------------------------
# Edge
# ---------------------------------------------------------------------------


class Edge:
    """A directed control-flow edge."""

    __slots__ = ("src", "dst", "kind")

    def __init__(self, src: BasicBlock, dst: BasicBlock,
                 kind: EdgeKind = EdgeKind.FALL_THROUGH) -> None:
        self.src = src
        self.dst = dst
        self.kind = kind

    def __repr__(self) -> str:
        return f"Edge({self.src.name} -> {self.dst.name}, kind={self.kind.value!r})"


# ---------------------------------------------------------------------------
# BasicBlock
# ---------------------------------------------------------------------------


class BasicBlock:
    """A basic block.

    The emit helpers (:meth:`field`, :meth:`store`, :meth:`branch` …) create
    an instruction, append it to this block, and wire referrer lists and
    control-flow edges.
    """

    __slots__ = (
        "index",
        "name",
        "function",
        "instrs",
        "successors",
        "predecessors",
    )

    def __init__(self, function: Function, index: int, name: str) -> None:
        self.function = function
        self.index = index
        self.name = name
        self.instrs: List[Value] = []
        self.successors: List[Edge] = []
        self.predecessors: List[Edge] = []

    # ----- graph queries ----------------------------------------------------

    @property
    def succs(self) -> List[BasicBlock]:
        return [e.dst for e in self.successors]

    @property
    def preds(self) -> List[BasicBlock]:
        return [e.src for e in self.predecessors]

    def successor(self, kind: EdgeKind) -> Optional[BasicBlock]:
        """Return the first successor reached through an edge of *kind*."""
        for e in self.successors:
            if e.kind is kind:
                return e.dst
        return None

    def dominates(self, other: BasicBlock) -> bool:
        """True iff every path from the entry to *other* passes through self."""
        return self.function.domtree().dominates(self, other)

    def position_of(self, instr: Value) -> int:
        """Index of *instr* within this block."""
        for i, candidate in enumerate(self.instrs):
            if candidate is instr:
                return i
        raise ValueError(f"{instr!r} is not in block {self.name}")

    # ----- emit helpers -----------------------------------------------------

    def _emit(self, value: Value) -> Value:
        value.block = self
        self.instrs.append(value)
        return value

    def _link(self, dst: BasicBlock, kind: EdgeKind) -> Edge:
        e = Edge(self, dst, kind)
        self.successors.append(e)
        dst.predecessors.append(e)
        self.function._invalidate()
        return e

    def field(self, x: Value, index: int, name: str = "", *,
              field_name: Optional[str] = None, type: str = "",
              pos: SourcePos = NO_POS) -> Value:
        """Read member *index* of the aggregate value *x*."""
        return self._emit(Value(Opcode.FIELD, name=name, type=type,
                                operands=(x,), field=index,
                                field_name=field_name, pos=pos))

    def field_addr(self, x: Value, index: int, name: str = "", *,
                   field_name: Optional[str] = None, type: str = "",
                   pos: SourcePos = NO_POS) -> Value:
        """Take the address of member *index* through the pointer *x*."""
        return self._emit(Value(Opcode.FIELD_ADDR, name=name, type=type,
                                operands=(x,), field=index,
                                field_name=field_name, pos=pos))

    def load(self, addr: Value, name: str = "", *, type: str = "",
             pos: SourcePos = NO_POS) -> Value:
        if not type:
            type = deref(addr.type) or ""
        return self._emit(Value(Opcode.LOAD, name=name, type=type,
                                operands=(addr,), pos=pos))

    def store(self, addr: Value, val: Value, *,
              pos: SourcePos = NO_POS) -> Value:
        return self._emit(Value(Opcode.STORE, operands=(addr, val), pos=pos))

    def compare(self, op: str, x: Value, y: Value, name: str = "", *,
                type: str = BOOL, pos: SourcePos = NO_POS) -> Value:
        if op not in COMPARE_OPS:
            raise ValueError(f"unknown comparison operator {op!r}")
        return self._emit(Value(Opcode.COMPARE, name=name, type=type,
                                operands=(x, y), op=op, pos=pos))

    def branch(self, cond: Value, then: BasicBlock, els: BasicBlock, *,
               pos: SourcePos = NO_POS) -> Value:
        """Terminate the block with a conditional branch on *cond*."""
        instr = self._emit(Value(Opcode.IF, operands=(cond,), pos=pos))
        self._link(then, EdgeKind.BRANCH_TRUE)
        self._link(els, EdgeKind.BRANCH_FALSE)
        return instr

    def jump(self, target: BasicBlock, *, pos: SourcePos = NO_POS) -> Value:
        instr = self._emit(Value(Opcode.JUMP, pos=pos))
        self._link(target, EdgeKind.FALL_THROUGH)
        return instr

    def ret(self, *results: Value, pos: SourcePos = NO_POS) -> Value:
        return self._emit(Value(Opcode.RETURN, operands=results, pos=pos))

    def alloc(self, type_name: str, name: str = "", *,
              pos: SourcePos = NO_POS) -> Value:
        """Allocate a fresh aggregate; the result is a pointer to it."""
        return self._emit(Value(Opcode.ALLOC, name=name,
                                type=pointer_to(type_name), pos=pos))

    def call(self, callee: str, *args: Value, name: str = "", type: str = "",
             pos: SourcePos = NO_POS) -> Value:
        return self._emit(Value(Opcode.CALL, name=name, type=type,
                                operands=args, op=callee, pos=pos))

    def other(self, *operands: Value, name: str = "", type: str = "",
              pos: SourcePos = NO_POS) -> Value:
        """An instruction the analysis does not interpret, such as arithmetic."""
        return self._emit(Value(Opcode.OTHER, name=name, type=type,
                                operands=operands, pos=pos))

    def __repr__(self) -> str:
        return f"BasicBlock({self.index}, {self.name!r}, ninstrs={len(self.instrs)})"


# ---------------------------------------------------------------------------
# Function
# ---------------------------------------------------------------------------


class Function:
    """One function body."""

    def __init__(self, name: str, file: str = "") -> None:
        self.name = name
        self.file = file
        self.params: List[Value] = []
        self.blocks: List[BasicBlock] = []
        self._domtree = None

    @property
    def entry(self) -> Optional[BasicBlock]:
        return self.blocks[0] if self.blocks else None

    def add_param(self, name: str, type: str) -> Value:
        p = Value(Opcode.PARAM, name=name, type=type)
        self.params.append(p)
        return p

    def add_block(self, name: Optional[str] = None) -> BasicBlock:
        index = len(self.blocks)
        block = BasicBlock(self, index, name or f"b{index}")
        self.blocks.append(block)
        self._invalidate()
        return block

    def const(self, value: int, type: str = INT) -> Value:
        return Value(Opcode.CONST, type=type, const=value)

    def instructions(self) -> Iterator[Value]:
        for block in self.blocks:
            yield from block.instrs

    def pos(self, line: int, column: int = 0) -> SourcePos:
        """Build a position inside this function's file."""
        return SourcePos(self.file, line, column)

    def domtree(self):
        """Return the (cached) dominator tree of this function."""
        if self._domtree is None:
            from tagscope.dominators import DominatorTree
            self._domtree = DominatorTree(self).compute()
        return self._domtree

    def _invalidate(self) -> None:
        self._domtree = None

    def __repr__(self) -> str:
        return f"Function({self.name!r}, blocks={len(self.blocks)})"


# ---------------------------------------------------------------------------
# Type layer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StructType:
    """An aggregate layout: a name and its ordered member names."""

    name: str
    fields: Tuple[str, ...]

    def index_of(self, field_name: str) -> Optional[int]:
        for i, f in enumerate(self.fields):
            if f == field_name:
                return i
        return None


@dataclass(frozen=True)
class ConstGroup:
    """A contiguous, ordered declaration of named integer constants."""

    members: Tuple[Tuple[str, int], ...]

    @property
    def first_name(self) -> Optional[str]:
        return self.members[0][0] if self.members else None

    def __iter__(self) -> Iterator[Tuple[str, int]]:
        return iter(self.members)

    def __len__(self) -> int:
        return len(self.members)


class Program:
    """A whole program: functions plus the type layer."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.functions: List[Function] = []
        self.structs: Dict[str, StructType] = {}
        self.const_groups: List[ConstGroup] = []

    def add_function(self, name: str, file: str = "") -> Function:
        fn = Function(name, file)
        self.functions.append(fn)
        return fn

    def add_struct(self, struct: StructType) -> StructType:
        self.structs[struct.name] = struct
        return struct

    def add_const_group(self, group: ConstGroup) -> ConstGroup:
        self.const_groups.append(group)
        return group

    def lookup_struct(self, name: str) -> Optional[StructType]:
        return self.structs.get(name)

    def lookup_const(self, name: str) -> Optional[int]:
        """Return the value of a named constant from any group."""
        for group in self.const_groups:
            for cname, cval in group:
                if cname == name:
                    return cval
        return None

    def __repr__(self) -> str:
        return (f"Program({self.name!r}, functions={len(self.functions)}, "
                f"structs={len(self.structs)})")
